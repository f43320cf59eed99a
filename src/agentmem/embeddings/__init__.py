"""Embedding providers, fallback policy, and the cached batch embedder."""

from agentmem.embeddings.base import EmbeddingProvider, validate_vectors
from agentmem.embeddings.embedder import CachedEmbedder, EmbeddingBatch
from agentmem.embeddings.fallback import FallbackChain, build_chain, create_provider
from agentmem.embeddings.local import LocalProvider
from agentmem.embeddings.remote import GeminiProvider, LiteLLMProvider, OpenAIProvider

__all__ = [
    "CachedEmbedder",
    "EmbeddingBatch",
    "EmbeddingProvider",
    "FallbackChain",
    "GeminiProvider",
    "LiteLLMProvider",
    "LocalProvider",
    "OpenAIProvider",
    "build_chain",
    "create_provider",
    "validate_vectors",
]
