"""Tests for hybrid fusion and channel degradation."""

from __future__ import annotations

import sqlite3
import threading

import pytest
from fakes import FakeProvider

from agentmem.db.models import Chunk
from agentmem.embeddings.embedder import CachedEmbedder
from agentmem.embeddings.fallback import FallbackChain
from agentmem.errors import SearchUnavailable
from agentmem.ingest.markdown import MarkdownChunker
from agentmem.search.hybrid import HybridSearcher, SearchOptions


def _chunk(cid: str, path: str = "memory/a.md", start: int = 1, end: int = 1, text: str = "x") -> Chunk:
    return Chunk(id=cid, path=path, source="memory", start_line=start, end_line=end, text=text, hash=cid)


# ------------------------------------------------------------------
# Fusion
# ------------------------------------------------------------------


def test_weighted_fusion():
    c = _chunk("c1", text="JWT tokens expire after 15 minutes.")
    # similarity 0.7 and lexical 0.6 (rank 2/3)
    results = HybridSearcher._fuse([(c, 0.3)], [(c, 2 / 3)], SearchOptions(min_score=0.0))
    assert len(results) == 1
    r = results[0]
    assert r.score == pytest.approx(0.7 * 0.7 + 0.3 * 0.6)
    assert r.vector_score == pytest.approx(0.7)
    assert r.text_score == pytest.approx(0.6)
    assert r.snippet == "JWT tokens expire after 15 minutes."


def test_fusion_passes_default_floor():
    c = _chunk("c1")
    # similarity 0.9, lexical 0.2 (rank 4)
    results = HybridSearcher._fuse([(c, 0.1)], [(c, 4.0)], SearchOptions())
    assert results[0].score == pytest.approx(0.69)


def test_missing_channel_contributes_zero():
    only_vec = _chunk("v")
    only_lex = _chunk("l", path="memory/b.md")
    results = HybridSearcher._fuse(
        [(only_vec, 0.0)], [(only_lex, -4.0)], SearchOptions(min_score=0.0)
    )
    scores = {r.path: r.score for r in results}
    assert scores["memory/a.md"] == pytest.approx(0.7)
    assert scores["memory/b.md"] == pytest.approx(0.3)
    assert results[0].text_score is None


def test_min_score_filters():
    strong, weak = _chunk("s"), _chunk("w", path="memory/b.md")
    results = HybridSearcher._fuse(
        [(strong, 0.1), (weak, 0.8)], [], SearchOptions(min_score=0.35)
    )
    assert [r.path for r in results] == ["memory/a.md"]


def test_ties_break_by_path_then_line():
    a2 = _chunk("a2", path="memory/a.md", start=5, end=6)
    a1 = _chunk("a1", path="memory/a.md", start=1, end=2)
    b1 = _chunk("b1", path="memory/b.md", start=1, end=2)
    results = HybridSearcher._fuse(
        [(b1, 0.2), (a2, 0.2), (a1, 0.2)], [], SearchOptions(min_score=0.0)
    )
    assert [(r.path, r.start_line) for r in results] == [
        ("memory/a.md", 1),
        ("memory/a.md", 5),
        ("memory/b.md", 1),
    ]


def test_max_results_truncates():
    hits = [(_chunk(f"c{i}", path=f"memory/{i}.md"), 0.1) for i in range(10)]
    results = HybridSearcher._fuse(hits, [], SearchOptions(max_results=3, min_score=0.0))
    assert len(results) == 3


def test_lexical_only_scores_capped_by_text_weight():
    c = _chunk("c")
    results = HybridSearcher._fuse(None, [(c, -12.0)], SearchOptions(min_score=0.0))
    assert results[0].score == pytest.approx(0.3)
    assert HybridSearcher._fuse(None, [(c, -12.0)], SearchOptions()) == []


def test_renormalize_degraded():
    c = _chunk("c")
    opts = SearchOptions(renormalize_degraded=True)
    results = HybridSearcher._fuse(None, [(c, -12.0)], opts)
    assert results[0].score == pytest.approx(1.0)


# ------------------------------------------------------------------
# Channels against a real store
# ------------------------------------------------------------------

DOC = (
    "# Auth\n\n"
    "The JWT token expiration policy is 15 minutes for access tokens.\n\n"
    "# Deploys\n\n"
    "Deploys happen on Tuesdays after the standup.\n"
)


def _index(store, provider=None):
    chunks = MarkdownChunker(tokens=20, overlap=0).chunk(DOC, "memory/notes.md")
    if provider is not None:
        store.upsert_chunks(chunks, provider.embed([c.text for c in chunks]), provider.model)
    else:
        store.upsert_chunks(chunks)
    return chunks


def test_lexical_only_without_embedder(store):
    _index(store)
    searcher = HybridSearcher(store)
    try:
        response = searcher.search("token expiration", SearchOptions(min_score=0.0))
    finally:
        searcher.close()
    assert response.mode == "lexical"
    assert response.provider is None
    assert response.results and "JWT" in response.results[0].text


def test_hybrid_search_reports_provider(vec_store):
    provider = FakeProvider()
    _index(vec_store, provider)
    embedder = CachedEmbedder(FallbackChain([provider]))
    searcher = HybridSearcher(vec_store, embedder)
    try:
        response = searcher.search("JWT token expiration policy")
    finally:
        searcher.close()
        embedder.close()
    assert response.mode == "hybrid"
    assert response.model == provider.model
    assert response.results[0].path == "memory/notes.md"
    assert "expiration" in response.results[0].text
    assert response.results[0].score >= 0.35


def test_disabled_provider_degrades_to_lexical(vec_store):
    provider = FakeProvider(available=False)
    _index(vec_store)
    embedder = CachedEmbedder(FallbackChain([provider]))
    searcher = HybridSearcher(vec_store, embedder)
    try:
        response = searcher.search("deploys", SearchOptions(min_score=0.0))
    finally:
        searcher.close()
        embedder.close()
    assert response.mode == "lexical"
    assert response.results[0].text_score == pytest.approx(1.0)


def test_unavailable_when_lexical_fails_without_vectors(store, monkeypatch):
    _index(store)

    def broken(*args, **kwargs):
        raise sqlite3.OperationalError("fts5: syntax error")

    monkeypatch.setattr(store, "lexical_query", broken)
    searcher = HybridSearcher(store)
    try:
        with pytest.raises(SearchUnavailable):
            searcher.search("token")
    finally:
        searcher.close()


def test_empty_query_returns_nothing(store):
    searcher = HybridSearcher(store)
    try:
        response = searcher.search("   ")
    finally:
        searcher.close()
    assert response.results == []


def test_vector_channel_error_degrades_to_lexical(vec_store, monkeypatch):
    provider = FakeProvider()
    _index(vec_store, provider)

    def broken(*args, **kwargs):
        raise sqlite3.OperationalError("vec0: no such table")

    monkeypatch.setattr(vec_store, "vector_query", broken)
    embedder = CachedEmbedder(FallbackChain([provider]))
    searcher = HybridSearcher(vec_store, embedder)
    try:
        response = searcher.search("deploys", SearchOptions(min_score=0.0))
    finally:
        searcher.close()
        embedder.close()
    assert response.mode == "lexical"
    assert response.provider is None
    assert response.results and "Tuesdays" in response.results[0].text
    assert response.results[0].vector_score is None


def test_channels_run_concurrently(vec_store, monkeypatch):
    provider = FakeProvider()
    _index(vec_store, provider)
    # Each channel blocks until the other has started; run one after the other they would time out.
    barrier = threading.Barrier(2, timeout=5)
    vector_query, lexical_query = vec_store.vector_query, vec_store.lexical_query

    def gated_vector(*args, **kwargs):
        barrier.wait()
        return vector_query(*args, **kwargs)

    def gated_lexical(*args, **kwargs):
        barrier.wait()
        return lexical_query(*args, **kwargs)

    monkeypatch.setattr(vec_store, "vector_query", gated_vector)
    monkeypatch.setattr(vec_store, "lexical_query", gated_lexical)
    embedder = CachedEmbedder(FallbackChain([provider]))
    searcher = HybridSearcher(vec_store, embedder)
    try:
        response = searcher.search("JWT token expiration policy")
    finally:
        searcher.close()
        embedder.close()
    assert response.mode == "hybrid"
    assert not barrier.broken
    assert response.results[0].path == "memory/notes.md"


def test_vector_channel_without_embedder_is_skipped(store):
    searcher = HybridSearcher(store)
    try:
        assert searcher._vector_channel("token", SearchOptions()) is None
    finally:
        searcher.close()
