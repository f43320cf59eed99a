"""Tests for the LiteLLM-backed cloud providers."""

from __future__ import annotations

import math
from unittest.mock import MagicMock, patch

import litellm
import pytest

from agentmem.embeddings.remote import GeminiProvider, OpenAIProvider
from agentmem.errors import InvalidResponse, ProviderUnavailable, RateLimited


def _response(*items):
    resp = MagicMock()
    resp.data = list(items)
    return resp


# ------------------------------------------------------------------
# Construction / probe
# ------------------------------------------------------------------


def test_openai_default_model():
    assert OpenAIProvider().model == "openai/text-embedding-3-small"


def test_bare_model_is_prefixed():
    assert GeminiProvider(model="text-embedding-004").model == "gemini/text-embedding-004"


def test_probe_requires_api_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    assert OpenAIProvider().probe() is False
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    assert OpenAIProvider().probe() is True


def test_gemini_accepts_google_api_key(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.setenv("GOOGLE_API_KEY", "g-test")
    assert GeminiProvider().probe() is True


def test_fingerprint_is_not_the_secret(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-secret-value")
    fp = OpenAIProvider().credential_fingerprint
    assert "sk-secret-value" not in fp
    monkeypatch.setenv("OPENAI_API_KEY", "sk-other-value")
    assert OpenAIProvider().credential_fingerprint != fp


# ------------------------------------------------------------------
# embed()
# ------------------------------------------------------------------


def test_embed_without_key_is_unavailable(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ProviderUnavailable, match="OPENAI_API_KEY"):
        OpenAIProvider().embed(["x"])


def test_embed_orders_by_index_and_normalises(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    resp = _response({"index": 1, "embedding": [0.0, 2.0]}, {"index": 0, "embedding": [3.0, 4.0]})
    with patch("agentmem.embeddings.remote.litellm.embedding", return_value=resp) as mock_embed:
        vectors = OpenAIProvider(num_retries=5, timeout=9.0).embed(["first", "second"])

    assert vectors[0] == pytest.approx([0.6, 0.8])
    assert vectors[1] == pytest.approx([0.0, 1.0])
    kwargs = mock_embed.call_args.kwargs
    assert kwargs["model"] == "openai/text-embedding-3-small"
    assert kwargs["input"] == ["first", "second"]
    assert kwargs["num_retries"] == 5
    assert kwargs["timeout"] == 9.0
    assert "api_base" not in kwargs


def test_embed_passes_base_url(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    resp = _response({"index": 0, "embedding": [1.0]})
    with patch("agentmem.embeddings.remote.litellm.embedding", return_value=resp) as mock_embed:
        OpenAIProvider(base_url="http://proxy.local/v1").embed(["x"])
    assert mock_embed.call_args.kwargs["api_base"] == "http://proxy.local/v1"


def test_rate_limit_maps_to_rate_limited(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    err = litellm.RateLimitError(message="slow down", llm_provider="openai", model="x")
    with patch("agentmem.embeddings.remote.litellm.embedding", side_effect=err):
        with pytest.raises(RateLimited):
            OpenAIProvider().embed(["x"])


def test_connection_error_maps_to_unavailable(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    err = litellm.APIConnectionError(message="down", llm_provider="openai", model="x")
    with patch("agentmem.embeddings.remote.litellm.embedding", side_effect=err):
        with pytest.raises(ProviderUnavailable):
            OpenAIProvider().embed(["x"])


def test_wrong_vector_count_is_invalid(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    resp = _response({"index": 0, "embedding": [1.0]})
    with patch("agentmem.embeddings.remote.litellm.embedding", return_value=resp):
        with pytest.raises(InvalidResponse):
            OpenAIProvider().embed(["a", "b"])


def test_non_finite_vector_is_invalid(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    resp = _response({"index": 0, "embedding": [math.nan, 1.0]})
    with patch("agentmem.embeddings.remote.litellm.embedding", return_value=resp):
        with pytest.raises(InvalidResponse, match="non-finite"):
            OpenAIProvider().embed(["a"])


def test_attribute_style_response_items(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "g-test")
    item = MagicMock()
    item.index = 0
    item.embedding = [1.0, 0.0]
    with patch("agentmem.embeddings.remote.litellm.embedding", return_value=_response(item)):
        assert GeminiProvider().embed(["a"]) == [[1.0, 0.0]]
