"""Cloud embedding providers routed through LiteLLM.

LiteLLM's built-in retry (num_retries, exponential backoff) absorbs transient
rate limits; a RateLimitError that survives the retries becomes RateLimited
so the FallbackChain can move on. API keys come from the environment only.
"""

from __future__ import annotations

import os
from collections.abc import Sequence
from typing import Any

import litellm

from agentmem.embeddings.base import EmbeddingProvider, fingerprint, validate_vectors
from agentmem.errors import InvalidResponse, ProviderUnavailable, RateLimited

# Disable LiteLLM verbose logging unless explicitly enabled
litellm.suppress_debug_info = True

_UNAVAILABLE_ERRORS: tuple[type[BaseException], ...] = (
    litellm.Timeout,
    litellm.APIConnectionError,
    litellm.AuthenticationError,
    litellm.NotFoundError,
    litellm.BadRequestError,
    litellm.ServiceUnavailableError,
    litellm.InternalServerError,
    litellm.APIError,
)


class LiteLLMProvider(EmbeddingProvider):
    """Embedding provider backed by ``litellm.embedding()``.

    Subclasses set ``name``, ``default_model`` and ``env_vars``.

    Args:
        model: Model id; a bare name is prefixed with the provider name.
        base_url: Optional API base override (proxies, gateways).
        num_retries: LiteLLM retries on transient errors.
        timeout: Per-request timeout in seconds.
    """

    default_model: str = ""
    env_vars: tuple[str, ...] = ()

    def __init__(
        self,
        model: str | None = None,
        base_url: str | None = None,
        num_retries: int = 3,
        timeout: float = 60.0,
    ) -> None:
        model = model or self.default_model
        if "/" not in model:
            model = f"{self.name}/{model}"
        super().__init__(model)
        self.base_url = base_url
        self.num_retries = num_retries
        self.timeout = timeout

    def _api_key(self) -> str | None:
        for env_var in self.env_vars:
            if value := os.environ.get(env_var):
                return value
        return None

    def probe(self) -> bool:
        return self._api_key() is not None

    @property
    def credential_fingerprint(self) -> str:
        return fingerprint(self._api_key(), self.base_url)

    def embed(self, texts: Sequence[str]) -> list[list[float]]:
        api_key = self._api_key()
        if api_key is None:
            raise ProviderUnavailable(
                f"API key not found for provider '{self.name}'. "
                f"Set the {self.env_vars[0]} environment variable.",
                provider=self.name,
            )
        if not texts:
            return []

        kwargs: dict[str, Any] = {
            "model": self.model,
            "input": list(texts),
            "api_key": api_key,
            "num_retries": self.num_retries,
            "timeout": self.timeout,
        }
        if self.base_url:
            kwargs["api_base"] = self.base_url

        try:
            response = litellm.embedding(**kwargs)
        except litellm.RateLimitError as exc:
            raise RateLimited(f"'{self.name}' rate limited: {exc}", provider=self.name) from exc
        except _UNAVAILABLE_ERRORS as exc:
            raise ProviderUnavailable(f"'{self.name}' embedding failed: {exc}", provider=self.name) from exc

        return validate_vectors(_extract_vectors(response, self.name), len(texts), self.name)


class OpenAIProvider(LiteLLMProvider):
    name = "openai"
    default_model = "openai/text-embedding-3-small"
    env_vars = ("OPENAI_API_KEY",)


class GeminiProvider(LiteLLMProvider):
    name = "gemini"
    default_model = "gemini/text-embedding-004"
    env_vars = ("GEMINI_API_KEY", "GOOGLE_API_KEY")


def _extract_vectors(response: Any, provider: str) -> list[Any]:
    """Pull embeddings out of a LiteLLM EmbeddingResponse, ordered by index."""
    try:
        items = list(response.data)
        if items and _field(items[0], "index") is not None:
            items.sort(key=lambda item: _field(item, "index"))
        return [_field(item, "embedding") for item in items]
    except (AttributeError, KeyError, TypeError) as exc:
        raise InvalidResponse(f"'{provider}' returned a malformed response.", provider=provider) from exc


def _field(item: Any, key: str) -> Any:
    if isinstance(item, dict):
        return item.get(key)
    return getattr(item, key, None)
