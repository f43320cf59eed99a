"""Error taxonomy for the memory index.

Provider-level errors (ProviderUnavailable, RateLimited, InvalidResponse) are
absorbed by the FallbackChain. SyncEngine failures are recorded per file.
Only SearchUnavailable and NotFound are meant to reach the tool caller.
"""

from __future__ import annotations


class AgentMemError(Exception):
    """Base class for every error raised by agentmem."""


# ---------------------------------------------------------------------------
# Embedding providers
# ---------------------------------------------------------------------------


class ProviderError(AgentMemError):
    """Base class for embedding provider failures.

    Attributes:
        provider: Name of the provider that failed (e.g. ``"openai"``).
    """

    def __init__(self, message: str, provider: str = "") -> None:
        super().__init__(message)
        self.provider = provider


class ProviderUnavailable(ProviderError):
    """Network, credential, timeout or missing local model."""


class RateLimited(ProviderError):
    """Provider rejected the call for rate reasons after retries were exhausted."""


class InvalidResponse(ProviderError):
    """Provider returned malformed, misaligned or wrong-dimension vectors."""


class SearchDisabled(AgentMemError):
    """No embedding provider could be resolved; only lexical search is possible."""


# ---------------------------------------------------------------------------
# Query / tool surface
# ---------------------------------------------------------------------------


class SearchUnavailable(AgentMemError):
    """Neither the vector nor the lexical channel produced an answer."""


class NotFound(AgentMemError):
    """Requested snippet path is outside the indexable roots or does not exist."""


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class IndexCorrupt(AgentMemError):
    """A sub-index invariant is violated; the index must be rebuilt."""
