"""Embedding provider interface.

Every backend exposes one capability, ``embed(texts)``, and a cheap
``probe()`` used by the FallbackChain to decide whether it is worth trying.
Selection and fallback logic only ever talk to this interface.
"""

from __future__ import annotations

import hashlib
import math
from abc import ABC, abstractmethod
from collections.abc import Sequence
from typing import Any

from agentmem.errors import InvalidResponse


class EmbeddingProvider(ABC):
    """Abstract base for embedding backends.

    Attributes:
        name: Provider family (``openai``, ``gemini``, ``local``). Part of the
            cache key.
        model: Provider-qualified model id (e.g. ``openai/text-embedding-3-small``).
            Dense vectors are stored per model id.
    """

    name: str = ""

    def __init__(self, model: str) -> None:
        self.model = model

    @abstractmethod
    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        """Embed *texts* and return one vector per input, in order.

        Raises:
            ProviderUnavailable: Network, credential, or local-model failure.
            RateLimited: Rate limit persisted through the provider's retries.
            InvalidResponse: Malformed or misaligned vectors.
        """

    @abstractmethod
    def probe(self) -> bool:
        """Return True if the provider looks usable (no network call)."""

    @property
    @abstractmethod
    def credential_fingerprint(self) -> str:
        """Stable, non-secret identifier of the credential or weights in use."""

    def __repr__(self) -> str:
        return f"{type(self).__name__}(model={self.model!r})"


def fingerprint(*parts: str | None) -> str:
    """Return a short sha256 fingerprint of *parts* (never the secret itself)."""
    digest = hashlib.sha256("\x00".join(p or "" for p in parts).encode("utf-8"))
    return digest.hexdigest()[:16]


def validate_vectors(raw: Any, expected: int, provider: str) -> list[list[float]]:
    """Check and L2-normalise provider output.

    Args:
        raw: Sequence of vectors as returned by the backend.
        expected: Number of input texts.
        provider: Provider name for error messages.

    Returns:
        Normalised vectors as lists of floats.

    Raises:
        InvalidResponse: On a count mismatch, ragged dimensions, empty,
            non-numeric, non-finite or zero-norm vectors.
    """
    if raw is None or len(raw) != expected:
        got = "none" if raw is None else len(raw)
        raise InvalidResponse(
            f"'{provider}' returned {got} vectors for {expected} inputs.", provider=provider
        )

    vectors: list[list[float]] = []
    dims: int | None = None
    for item in raw:
        try:
            vector = [float(x) for x in item]
        except (TypeError, ValueError) as exc:
            raise InvalidResponse(f"'{provider}' returned a non-numeric vector.", provider=provider) from exc
        if not vector:
            raise InvalidResponse(f"'{provider}' returned an empty vector.", provider=provider)
        if dims is None:
            dims = len(vector)
        elif len(vector) != dims:
            raise InvalidResponse(
                f"'{provider}' returned vectors of mixed dimensionality.", provider=provider
            )
        if not all(math.isfinite(x) for x in vector):
            raise InvalidResponse(f"'{provider}' returned non-finite values.", provider=provider)
        norm = math.sqrt(sum(x * x for x in vector))
        if norm == 0.0:
            raise InvalidResponse(f"'{provider}' returned a zero vector.", provider=provider)
        vectors.append([x / norm for x in vector])
    return vectors
