"""Tests for FallbackChain provider selection and chain construction."""

from __future__ import annotations

import pytest
from fakes import FakeProvider

from agentmem.config import LocalCfg, MemoryConfig
from agentmem.embeddings.fallback import FallbackChain, build_chain, create_provider
from agentmem.embeddings.local import LocalProvider
from agentmem.embeddings.remote import GeminiProvider, OpenAIProvider
from agentmem.errors import ProviderUnavailable, RateLimited, SearchDisabled


# ------------------------------------------------------------------
# resolve / is_fallback
# ------------------------------------------------------------------


def test_resolve_picks_first_available():
    a, b = FakeProvider("a", available=False), FakeProvider("b")
    chain = FallbackChain([a, b])
    assert chain.resolve() is b
    assert chain.is_fallback is True


def test_resolve_primary_is_not_fallback():
    a = FakeProvider("a")
    chain = FallbackChain([a, FakeProvider("b")])
    assert chain.resolve() is a
    assert chain.is_fallback is False


def test_resolve_caches_active_provider():
    a = FakeProvider("a")
    chain = FallbackChain([a])
    chain.resolve()
    a.available = False
    assert chain.resolve() is a


def test_resolve_nothing_available_raises():
    chain = FallbackChain([FakeProvider("a", available=False)])
    with pytest.raises(SearchDisabled, match="tried: a"):
        chain.resolve()
    assert chain.is_disabled() is True


def test_empty_chain_is_disabled():
    assert FallbackChain([]).is_disabled() is True


# ------------------------------------------------------------------
# embed() fallback
# ------------------------------------------------------------------


def test_embed_falls_back_on_failure():
    a = FakeProvider("a", fail_with=ProviderUnavailable("down", provider="a"))
    b = FakeProvider("b")
    chain = FallbackChain([a, b])
    provider, vectors = chain.embed(["hello"])
    assert provider is b
    assert len(vectors) == 1
    assert chain.active is b
    assert chain.is_fallback is True
    assert chain.last_error is None


def test_embed_re_resolves_after_failure():
    a = FakeProvider("a")
    b = FakeProvider("b")
    chain = FallbackChain([a, b])
    assert chain.embed(["x"])[0] is a
    a.fail_with = RateLimited("429", provider="a")
    assert chain.embed(["x"])[0] is b
    assert chain.active is b


def test_embed_all_fail_raises_search_disabled():
    a = FakeProvider("a", fail_with=ProviderUnavailable("down", provider="a"))
    chain = FallbackChain([a])
    with pytest.raises(SearchDisabled):
        chain.embed(["x"])
    assert chain.active is None
    assert "down" in (chain.last_error or "")


def test_attempts_skip_unavailable_candidates():
    a, b, c = FakeProvider("a"), FakeProvider("b", available=False), FakeProvider("c")
    chain = FallbackChain([a, b, c])
    assert [p.name for p in chain.attempts()] == ["a", "c"]


# ------------------------------------------------------------------
# Construction from config
# ------------------------------------------------------------------


def test_auto_without_local_path_tries_cloud_providers():
    chain = build_chain(MemoryConfig(provider="auto"))
    assert [type(p) for p in chain.candidates] == [OpenAIProvider, GeminiProvider]
    assert chain.requested == "auto"


def test_auto_with_local_path_prefers_local(tmp_path):
    cfg = MemoryConfig(provider="auto", local=LocalCfg(model_path=str(tmp_path)))
    chain = build_chain(cfg)
    assert isinstance(chain.candidates[0], LocalProvider)


def test_explicit_provider_with_fallback():
    chain = build_chain(MemoryConfig(provider="gemini", fallback="openai"))
    assert [p.name for p in chain.candidates] == ["gemini", "openai"]


def test_explicit_provider_fallback_none():
    chain = build_chain(MemoryConfig(provider="openai", fallback="none"))
    assert [p.name for p in chain.candidates] == ["openai"]


def test_model_override_applies_to_its_provider():
    cfg = MemoryConfig(provider="openai", fallback="gemini", model="text-embedding-3-large")
    openai, gemini = build_chain(cfg).candidates
    assert openai.model == "openai/text-embedding-3-large"
    assert gemini.model == "gemini/text-embedding-004"


def test_create_local_without_path_is_none():
    assert create_provider("local", MemoryConfig()) is None


def test_create_unknown_provider_raises():
    with pytest.raises(ValueError, match="Unknown"):
        create_provider("nope", MemoryConfig())
