"""On-device embedding provider (sentence-transformers).

The model is materialised from a downloaded weights directory on first use.
The provider is only a candidate when that path is configured; it reports
itself unavailable when the path is missing or the optional
``sentence-transformers`` dependency (``pip install 'agentmem[local]'``) is
not installed.
"""

from __future__ import annotations

import importlib.util
import logging
import threading
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from agentmem.embeddings.base import EmbeddingProvider, fingerprint, validate_vectors
from agentmem.errors import ProviderUnavailable

logger = logging.getLogger(__name__)


class LocalProvider(EmbeddingProvider):
    """Embed with a local sentence-transformers model.

    Args:
        model_path: Directory (or hub cache path) holding the model weights.
        device: Torch device string; None lets sentence-transformers choose.
    """

    name = "local"

    def __init__(self, model_path: str | Path, device: str | None = None) -> None:
        self.model_path = Path(model_path).expanduser()
        # Same-named weights directories in different places are different models.
        super().__init__(f"local/{self.model_path.name}-{self.credential_fingerprint[:8]}")
        self.device = device
        self._model: Any = None
        self._load_lock = threading.Lock()

    def probe(self) -> bool:
        if not self.model_path.exists():
            return False
        return importlib.util.find_spec("sentence_transformers") is not None

    @property
    def credential_fingerprint(self) -> str:
        return fingerprint(str(self.model_path.resolve()))

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        if not texts:
            return []
        model = self._load()
        try:
            raw = model.encode(list(texts), normalize_embeddings=True, show_progress_bar=False)
        except (RuntimeError, ValueError) as exc:
            raise ProviderUnavailable(f"Local model inference failed: {exc}", provider=self.name) from exc
        return validate_vectors([list(v) for v in raw], len(texts), self.name)

    def _load(self) -> Any:
        with self._load_lock:
            if self._model is not None:
                return self._model
            if not self.model_path.exists():
                raise ProviderUnavailable(
                    f"Local embedding model not found at '{self.model_path}'.", provider=self.name
                )
            try:
                from sentence_transformers import SentenceTransformer
            except ImportError as exc:
                raise ProviderUnavailable(
                    "sentence-transformers is not installed. Run: pip install 'agentmem[local]'",
                    provider=self.name,
                ) from exc
            try:
                self._model = SentenceTransformer(str(self.model_path), device=self.device)
            except (OSError, ValueError, RuntimeError) as exc:
                raise ProviderUnavailable(
                    f"Failed to load local model '{self.model_path}': {exc}", provider=self.name
                ) from exc
            logger.info("Loaded local embedding model %s", self.model_path)
            return self._model
