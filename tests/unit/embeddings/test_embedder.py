"""Tests for CachedEmbedder: caching, batching, timeouts and fallback."""

from __future__ import annotations

import threading
import time

import pytest
from fakes import FakeProvider

from agentmem.db.cache import EmbeddingCache
from agentmem.embeddings.embedder import CachedEmbedder
from agentmem.embeddings.fallback import FallbackChain
from agentmem.errors import InvalidResponse, ProviderUnavailable, SearchDisabled


class SlowProvider(FakeProvider):
    """Blocks inside embed() until released."""

    def __init__(self, name: str = "slow") -> None:
        super().__init__(name)
        self.release = threading.Event()

    def embed(self, texts):
        self.release.wait(5)
        return super().embed(texts)


class SteadyProvider(FakeProvider):
    """Takes a fixed time per call."""

    def __init__(self, name: str = "steady", delay: float = 0.2) -> None:
        super().__init__(name)
        self.delay = delay

    def embed(self, texts):
        time.sleep(self.delay)
        return super().embed(texts)


@pytest.fixture
def cache(store):
    return EmbeddingCache(store, max_entries=1000)


def _embedder(providers, cache=None, **kw) -> CachedEmbedder:
    return CachedEmbedder(FallbackChain(providers), cache, **kw)


def test_second_call_is_served_from_cache(cache):
    provider = FakeProvider()
    embedder = _embedder([provider], cache)

    first = embedder.embed(["alpha", "beta"])
    second = embedder.embed(["alpha", "beta"])

    assert first.cache_hits == 0
    assert second.cache_hits == 2
    assert second.vectors == first.vectors
    assert provider.embedded_texts == ["alpha", "beta"]
    embedder.close()


def test_duplicates_embedded_once(cache):
    provider = FakeProvider()
    embedder = _embedder([provider], cache)

    batch = embedder.embed(["same", "other", "same"])

    assert provider.embedded_texts == ["same", "other"]
    assert batch.vectors[0] == batch.vectors[2]
    embedder.close()


def test_order_preserved_across_sub_batches():
    provider = FakeProvider()
    embedder = _embedder([provider], batch_size=1, concurrency=3)
    texts = ["one", "two", "three", "four"]

    batch = embedder.embed(texts)

    assert len(provider.calls) == 4
    expected = FakeProvider().embed(texts)
    assert batch.vectors == expected
    embedder.close()


def test_partial_cache_hit_only_computes_missing(cache):
    provider = FakeProvider()
    embedder = _embedder([provider], cache)
    embedder.embed(["cached"])
    provider.calls.clear()

    batch = embedder.embed(["new", "cached"])

    assert provider.embedded_texts == ["new"]
    assert batch.cache_hits == 1
    embedder.close()


def test_falls_back_to_next_provider(cache):
    broken = FakeProvider("a", fail_with=ProviderUnavailable("down", provider="a"))
    backup = FakeProvider("b")
    embedder = _embedder([broken, backup], cache)

    batch = embedder.embed(["hello"])

    assert batch.provider == "b"
    assert batch.model == "b/bow-16"
    assert embedder.chain.is_fallback is True
    embedder.close()


def test_failure_writes_nothing_to_cache(cache):
    broken = FakeProvider("a", fail_with=ProviderUnavailable("down", provider="a"))
    embedder = _embedder([broken], cache)

    with pytest.raises(SearchDisabled):
        embedder.embed(["hello"])

    assert cache.count() == 0
    embedder.close()


def test_timeout_counts_as_unavailable_and_falls_back():
    slow = SlowProvider()
    backup = FakeProvider("b")
    embedder = _embedder([slow, backup], timeout=0.05)

    try:
        batch = embedder.embed(["hello"])
    finally:
        slow.release.set()

    assert batch.provider == "b"
    assert embedder.chain.active is backup
    embedder.close()


def test_timeout_without_fallback_disables_search():
    slow = SlowProvider()
    embedder = _embedder([slow], timeout=0.05)

    try:
        with pytest.raises(SearchDisabled) as excinfo:
            embedder.embed(["hello"])
    finally:
        slow.release.set()

    assert isinstance(excinfo.value.__cause__, ProviderUnavailable)
    embedder.close()


def test_dimension_change_against_cache_is_invalid(cache):
    embedder = _embedder([FakeProvider(dims=16)], cache)
    embedder.embed(["cached"])
    embedder.close()

    # Same cache key, different width.
    resized = FakeProvider(dims=8, model="fake/bow-16")
    embedder = _embedder([resized], cache)
    with pytest.raises(SearchDisabled) as excinfo:
        embedder.embed(["cached", "fresh"])
    assert isinstance(excinfo.value.__cause__, InvalidResponse)
    embedder.close()


def test_empty_input_returns_empty_batch():
    provider = FakeProvider()
    embedder = _embedder([provider])
    batch = embedder.embed([])
    assert batch.vectors == []
    assert provider.calls == []
    embedder.close()


def test_embed_query_returns_single_vector():
    embedder = _embedder([FakeProvider()])
    batch, vector = embedder.embed_query("what is the policy")
    assert vector == batch.vectors[0]
    assert len(vector) == 16
    embedder.close()


def test_invalid_settings_rejected():
    with pytest.raises(ValueError):
        _embedder([FakeProvider()], batch_size=0)


def test_queued_sub_batches_do_not_count_against_timeout():
    steady = SteadyProvider(delay=0.2)
    embedder = _embedder([steady], batch_size=1, concurrency=1, timeout=0.5)

    # Four calls run back to back; the last one waits 0.6s in the queue.
    batch = embedder.embed(["a", "b", "c", "d"])

    assert batch.provider == "steady"
    assert len(batch.vectors) == 4
    assert embedder.chain.active is steady
    embedder.close()


def test_query_during_bulk_embed_keeps_primary():
    primary = SteadyProvider("primary", delay=0.3)
    backup = FakeProvider("backup")
    embedder = _embedder([primary, backup], batch_size=1, concurrency=2, timeout=0.5)
    bulk_errors: list[BaseException] = []

    def bulk() -> None:
        try:
            embedder.embed([f"doc {i}" for i in range(8)])
        except BaseException as exc:  # noqa: BLE001
            bulk_errors.append(exc)

    worker = threading.Thread(target=bulk)
    worker.start()
    time.sleep(0.05)
    try:
        batch, _ = embedder.embed_query("query")
    finally:
        worker.join(10)

    assert batch.provider == "primary"
    assert embedder.chain.active is primary
    assert backup.calls == []
    assert bulk_errors == []
    embedder.close()
