"""Deterministic test doubles shared by the test suite."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Sequence

from agentmem.embeddings.base import EmbeddingProvider, fingerprint, validate_vectors


def bow_vector(text: str, dims: int = 16) -> list[float]:
    """Bag-of-words vector: one md5 bucket per token, plus a small bias so it is never zero."""
    vec = [0.01] * dims
    for token in re.findall(r"\w+", text.lower()):
        vec[int(hashlib.md5(token.encode()).hexdigest(), 16) % dims] += 1.0
    return vec


class FakeProvider(EmbeddingProvider):
    """Deterministic offline provider; records every embed() call."""

    def __init__(
        self,
        name: str = "fake",
        model: str | None = None,
        dims: int = 16,
        available: bool = True,
        fail_with: Exception | None = None,
    ) -> None:
        self.name = name
        super().__init__(model or f"{name}/bow-{dims}")
        self.dims = dims
        self.available = available
        self.fail_with = fail_with
        self.calls: list[list[str]] = []

    def probe(self) -> bool:
        return self.available

    @property
    def credential_fingerprint(self) -> str:
        return fingerprint(self.name)

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.fail_with is not None:
            raise self.fail_with
        return validate_vectors([bow_vector(t, self.dims) for t in texts], len(texts), self.name)

    @property
    def embedded_texts(self) -> list[str]:
        return [t for call in self.calls for t in call]


class FakeClock:
    """Manually advanced clock for debounce tests."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.t = start

    def now(self) -> float:
        return self.t

    def advance(self, seconds: float) -> None:
        self.t += seconds
