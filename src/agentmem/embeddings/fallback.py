"""Provider selection and fallback.

The chain holds the candidate providers in priority order. ``resolve()``
selects the first whose probe passes and keeps it as the active provider for
this index. A provider that fails during use is dropped from the active slot
and the remaining candidates are tried; when none works the chain raises
SearchDisabled and callers fall back to lexical-only search.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Iterator, Sequence

from agentmem.config import MemoryConfig
from agentmem.embeddings.base import EmbeddingProvider
from agentmem.embeddings.local import LocalProvider
from agentmem.embeddings.remote import GeminiProvider, OpenAIProvider
from agentmem.errors import ProviderError, SearchDisabled

logger = logging.getLogger(__name__)

_AUTO_REMOTE_ORDER = ("openai", "gemini")


class FallbackChain:
    """Ordered provider candidates with per-index active-provider state.

    Args:
        candidates: Providers in priority order; the first is the preferred one.
        requested: The configured provider name (``auto`` or a provider name),
            reported by status.
    """

    def __init__(self, candidates: Sequence[EmbeddingProvider], requested: str = "auto") -> None:
        self._candidates = list(candidates)
        self.requested = requested
        self._active: EmbeddingProvider | None = None
        self._last_error: str | None = None
        self._lock = threading.Lock()

    @property
    def candidates(self) -> list[EmbeddingProvider]:
        return list(self._candidates)

    @property
    def active(self) -> EmbeddingProvider | None:
        """The currently selected provider, without triggering resolution."""
        return self._active

    @property
    def is_fallback(self) -> bool:
        """True when the active provider is not the first preference."""
        return (
            self._active is not None
            and bool(self._candidates)
            and self._active is not self._candidates[0]
        )

    @property
    def last_error(self) -> str | None:
        return self._last_error

    def resolve(self) -> EmbeddingProvider:
        """Return the active provider, selecting one if none is active.

        Raises:
            SearchDisabled: If no candidate passes its availability probe.
        """
        with self._lock:
            if self._active is not None:
                return self._active
            for provider in self._candidates:
                if provider.probe():
                    self._active = provider
                    logger.info("Embedding provider resolved: %s (%s)", provider.name, provider.model)
                    return provider
            self._last_error = "no embedding provider is available"
        raise SearchDisabled(
            "No embedding provider is available "
            f"(tried: {', '.join(p.name for p in self._candidates) or 'none'})."
        )

    def is_disabled(self) -> bool:
        """Return True if no provider can currently be resolved."""
        try:
            self.resolve()
        except SearchDisabled:
            return True
        return False

    def attempts(self) -> Iterator[EmbeddingProvider]:
        """Yield the active provider, then every other candidate whose probe passes.

        Raises:
            SearchDisabled: On the first iteration if nothing can be resolved.
        """
        primary = self.resolve()
        yield primary
        for provider in self._candidates:
            if provider is primary:
                continue
            if provider.probe():
                yield provider

    def report_failure(self, provider: EmbeddingProvider, exc: ProviderError) -> None:
        """Forget *provider* as active so the next use re-resolves."""
        logger.warning("Embedding provider %s failed: %s", provider.name, exc)
        with self._lock:
            self._last_error = f"{provider.name}: {exc}"
            if self._active is provider:
                self._active = None

    def report_success(self, provider: EmbeddingProvider) -> None:
        """Make *provider* the active provider."""
        with self._lock:
            if self._active is not provider:
                logger.info("Embedding provider switched to %s (%s)", provider.name, provider.model)
            self._active = provider
            self._last_error = None

    def embed(self, texts: Sequence[str]) -> tuple[EmbeddingProvider, list[list[float]]]:
        """Embed *texts* with the first provider that succeeds (no caching).

        Raises:
            SearchDisabled: If every candidate fails.
        """
        last: ProviderError | None = None
        for provider in self.attempts():
            try:
                vectors = provider.embed(texts)
            except ProviderError as exc:
                self.report_failure(provider, exc)
                last = exc
                continue
            self.report_success(provider)
            return provider, vectors
        raise SearchDisabled("All embedding providers failed.") from last


# ------------------------------------------------------------------
# Construction from config
# ------------------------------------------------------------------


def create_provider(name: str, cfg: MemoryConfig) -> EmbeddingProvider | None:
    """Build the provider called *name* from *cfg*.

    Returns None for ``local`` when no model path is configured.
    """
    model = cfg.model if cfg.model and (
        cfg.provider == name or cfg.model.startswith(f"{name}/")
    ) else None
    timeout = cfg.batch.timeout_seconds

    if name == "openai":
        return OpenAIProvider(
            model=model, base_url=cfg.remote.base_url, num_retries=cfg.remote.num_retries, timeout=timeout
        )
    if name == "gemini":
        return GeminiProvider(
            model=model, base_url=cfg.remote.base_url, num_retries=cfg.remote.num_retries, timeout=timeout
        )
    if name == "local":
        if not cfg.local.model_path:
            return None
        return LocalProvider(cfg.local.model_path)
    raise ValueError(f"Unknown embedding provider '{name}'")


def build_chain(cfg: MemoryConfig) -> FallbackChain:
    """Build the FallbackChain for *cfg*.

    ``auto`` tries local (when a weights path is configured), then each cloud
    provider. An explicit provider is followed by the configured fallback.
    """
    names: list[str]
    if cfg.provider == "auto":
        names = ["local", *_AUTO_REMOTE_ORDER]
    else:
        names = [cfg.provider]
        if cfg.fallback not in ("none", cfg.provider):
            names.append(cfg.fallback)

    candidates = [p for p in (create_provider(n, cfg) for n in names) if p is not None]
    return FallbackChain(candidates, requested=cfg.provider)
