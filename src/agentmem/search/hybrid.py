"""HybridSearcher — concurrent vector + BM25 retrieval with weighted fusion.

Both channels fetch ``max_results × candidate_multiplier`` candidates. Each
candidate gets ``vector_weight × v + text_weight × t``, where a channel that
did not return the chunk contributes 0. When the vector channel is absent for
the whole query its weight is simply dropped (no renormalisation unless
``renormalize_degraded`` is set), so lexical-only scores never exceed
``text_weight``.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import asdict, dataclass, field

from agentmem.config import QueryCfg
from agentmem.db.models import Chunk
from agentmem.db.store import IndexStore
from agentmem.embeddings.embedder import CachedEmbedder, EmbeddingBatch
from agentmem.errors import AgentMemError, SearchDisabled, SearchUnavailable
from agentmem.search.query import build_fts_query, lexical_score, make_snippet, vector_score

logger = logging.getLogger(__name__)

MODE_HYBRID = "hybrid"
MODE_LEXICAL = "lexical"
MODE_VECTOR = "vector"


@dataclass
class SearchOptions:
    """Per-query tuning; defaults mirror QueryCfg."""

    max_results: int = 6
    min_score: float = 0.35
    vector_weight: float = 0.7
    text_weight: float = 0.3
    candidate_multiplier: int = 4
    sources: list[str] = field(default_factory=lambda: ["memory"])
    renormalize_degraded: bool = False

    @classmethod
    def from_config(cls, cfg: QueryCfg, sources: Sequence[str]) -> SearchOptions:
        return cls(
            max_results=cfg.max_results,
            min_score=cfg.min_score,
            vector_weight=cfg.vector_weight,
            text_weight=cfg.text_weight,
            candidate_multiplier=cfg.candidate_multiplier,
            sources=list(sources),
            renormalize_degraded=cfg.renormalize_degraded,
        )

    @property
    def pool_size(self) -> int:
        return max(1, self.max_results * self.candidate_multiplier)


@dataclass
class SearchResult:
    """One citable hit."""

    path: str
    start_line: int
    end_line: int
    text: str
    snippet: str
    score: float
    source: str
    vector_score: float | None = None
    text_score: float | None = None

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class SearchResponse:
    """Ranked results plus which embedding space answered the query.

    Attributes:
        mode: ``hybrid`` when both channels answered, ``lexical`` or
            ``vector`` when only one did.
        fallback: True when the embedding provider is not the first preference.
    """

    results: list[SearchResult] = field(default_factory=list)
    provider: str | None = None
    model: str | None = None
    mode: str = MODE_HYBRID
    fallback: bool = False

    def to_dict(self) -> dict[str, object]:
        return {
            "results": [r.to_dict() for r in self.results],
            "provider": self.provider,
            "model": self.model,
            "mode": self.mode,
            "fallback": self.fallback,
        }


@dataclass
class _Candidate:
    chunk: Chunk
    vector_score: float | None = None
    text_score: float | None = None


class HybridSearcher:
    """Read-only query side of one agent's index.

    Args:
        store: The agent's IndexStore.
        embedder: Embeds the query; None means lexical-only search.
    """

    def __init__(self, store: IndexStore, embedder: CachedEmbedder | None = None) -> None:
        self._store = store
        self._embedder = embedder
        self._executor = ThreadPoolExecutor(max_workers=2, thread_name_prefix="agentmem-search")

    def close(self) -> None:
        self._executor.shutdown(wait=True)

    def search(self, query: str, options: SearchOptions | None = None) -> SearchResponse:
        """Run *query* against both channels and fuse the results.

        Raises:
            SearchUnavailable: If neither channel could answer.
        """
        opts = options or SearchOptions()
        fallback = self._embedder.chain.is_fallback if self._embedder is not None else False
        if not query.strip() or not opts.sources or opts.max_results < 1:
            return SearchResponse(mode=MODE_LEXICAL, fallback=fallback)

        vector_future: Future[tuple[EmbeddingBatch, list[tuple[Chunk, float]]] | None] | None = None
        if self._embedder is not None and self._store.vector_available:
            vector_future = self._executor.submit(self._vector_channel, query, opts)
        lexical_future = self._executor.submit(self._lexical_channel, query, opts)

        vector_hits: list[tuple[Chunk, float]] | None = None
        batch: EmbeddingBatch | None = None
        vector_failed = False
        if vector_future is not None:
            try:
                outcome = vector_future.result()
            except (sqlite3.Error, AgentMemError) as exc:
                logger.warning("Vector channel failed: %s", exc)
                vector_failed = True
            else:
                if outcome is not None:
                    batch, vector_hits = outcome

        lexical_hits: list[tuple[Chunk, float]] | None = None
        try:
            lexical_hits = lexical_future.result()
        except sqlite3.Error as exc:
            logger.warning("Lexical channel failed: %s", exc)

        if lexical_hits is None and vector_hits is None:
            reason = "both channels failed" if vector_failed else "lexical channel failed"
            raise SearchUnavailable(f"Memory search is unavailable: {reason}.")

        if self._embedder is not None:
            fallback = self._embedder.chain.is_fallback
        results = self._fuse(vector_hits, lexical_hits, opts)
        if vector_hits is not None and lexical_hits is not None:
            mode = MODE_HYBRID
        elif vector_hits is not None:
            mode = MODE_VECTOR
        else:
            mode = MODE_LEXICAL
        return SearchResponse(
            results=results,
            provider=batch.provider if batch is not None else None,
            model=batch.model if batch is not None else None,
            mode=mode,
            fallback=fallback,
        )

    # ------------------------------------------------------------------
    # Channels
    # ------------------------------------------------------------------

    def _vector_channel(
        self, query: str, opts: SearchOptions
    ) -> tuple[EmbeddingBatch, list[tuple[Chunk, float]]] | None:
        """Embed *query* and fetch nearest chunks; None when embeddings are disabled."""
        if self._embedder is None:
            return None
        try:
            batch, vector = self._embedder.embed_query(query)
        except SearchDisabled as exc:
            logger.info("Vector search disabled for this query: %s", exc)
            return None
        hits = self._store.vector_query(vector, batch.model, opts.sources, opts.pool_size)
        return batch, hits

    def _lexical_channel(self, query: str, opts: SearchOptions) -> list[tuple[Chunk, float]]:
        fts_query = build_fts_query(query)
        if fts_query is None:
            return []
        return self._store.lexical_query(fts_query, opts.sources, opts.pool_size)

    # ------------------------------------------------------------------
    # Fusion
    # ------------------------------------------------------------------

    @staticmethod
    def _fuse(
        vector_hits: list[tuple[Chunk, float]] | None,
        lexical_hits: list[tuple[Chunk, float]] | None,
        opts: SearchOptions,
    ) -> list[SearchResult]:
        candidates: dict[str, _Candidate] = {}
        for chunk, distance in vector_hits or []:
            candidates.setdefault(chunk.id, _Candidate(chunk)).vector_score = vector_score(distance)
        for chunk, rank in lexical_hits or []:
            candidates.setdefault(chunk.id, _Candidate(chunk)).text_score = lexical_score(rank)

        vw = opts.vector_weight if vector_hits is not None else 0.0
        tw = opts.text_weight if lexical_hits is not None else 0.0
        scale = 1.0
        if opts.renormalize_degraded and (vector_hits is None or lexical_hits is None):
            surviving = vw + tw
            scale = 1.0 / surviving if surviving > 0 else 1.0

        scored: list[tuple[float, _Candidate]] = []
        for cand in candidates.values():
            score = (vw * (cand.vector_score or 0.0) + tw * (cand.text_score or 0.0)) * scale
            if score >= opts.min_score:
                scored.append((score, cand))

        scored.sort(
            key=lambda item: (
                -item[0],
                item[1].chunk.path,
                item[1].chunk.start_line,
                item[1].chunk.end_line,
                item[1].chunk.part,
            )
        )
        return [
            SearchResult(
                path=cand.chunk.path,
                start_line=cand.chunk.start_line,
                end_line=cand.chunk.end_line,
                text=cand.chunk.text,
                snippet=make_snippet(cand.chunk.text),
                score=score,
                source=cand.chunk.source,
                vector_score=cand.vector_score,
                text_score=cand.text_score,
            )
            for score, cand in scored[: opts.max_results]
        ]
