"""Per-agent memory index: the tool contract exposed to the agent runtime.

``MemoryIndexManager.get(agent_id, cfg)`` returns one manager per agent.
Each manager owns its own IndexStore, FallbackChain, EmbeddingCache and
SyncEngine; nothing is shared between agents.

Tool surface:
    search(query)                         → SearchResponse
    read_snippet(path, from_line, count)  → str
    status()                              → MemoryStatus
"""

from __future__ import annotations

import logging
import sqlite3
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import ClassVar

from agentmem.config import MemoryConfig
from agentmem.db.cache import EmbeddingCache
from agentmem.db.models import SourceCounts
from agentmem.db.store import IndexStore
from agentmem.embeddings.embedder import CachedEmbedder
from agentmem.embeddings.fallback import FallbackChain, build_chain
from agentmem.errors import AgentMemError, IndexCorrupt, NotFound, SearchDisabled, SearchUnavailable
from agentmem.search.hybrid import HybridSearcher, SearchOptions, SearchResponse
from agentmem.sync.clock import Clock
from agentmem.sync.corpus import Corpus
from agentmem.sync.engine import SyncEngine, SyncReport

logger = logging.getLogger(__name__)


@dataclass
class MemoryStatus:
    """Diagnostics snapshot for one agent's index."""

    agent_id: str
    db_path: str
    provider: str | None
    model: str | None
    requested_provider: str
    fallback: bool
    vector_available: bool
    lexical_available: bool
    sources: dict[str, SourceCounts] = field(default_factory=dict)
    cache_entries: int = 0
    dirty: bool = False
    last_error: str | None = None

    @property
    def total_files(self) -> int:
        return sum(c.files for c in self.sources.values())

    @property
    def total_chunks(self) -> int:
        return sum(c.chunks for c in self.sources.values())

    def to_dict(self) -> dict[str, object]:
        return {
            "agent_id": self.agent_id,
            "db_path": self.db_path,
            "provider": self.provider,
            "model": self.model,
            "requested_provider": self.requested_provider,
            "fallback": self.fallback,
            "vector_available": self.vector_available,
            "lexical_available": self.lexical_available,
            "sources": {
                name: {"files": c.files, "chunks": c.chunks} for name, c in self.sources.items()
            },
            "cache_entries": self.cache_entries,
            "dirty": self.dirty,
            "last_error": self.last_error,
        }


class MemoryIndexManager:
    """Search, snippet and status operations for one agent.

    Args:
        agent_id: Agent identity; selects the index file.
        cfg: Resolved configuration for the agent.
        chain: Provider chain override (defaults to build_chain(cfg)).
        clock: Clock for the SyncEngine (defaults to the system clock).
    """

    _registry: ClassVar[dict[tuple[str, Path], MemoryIndexManager]] = {}
    _registry_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(
        self,
        agent_id: str,
        cfg: MemoryConfig,
        *,
        chain: FallbackChain | None = None,
        clock: Clock | None = None,
    ) -> None:
        if not cfg.enabled:
            raise SearchUnavailable(f"Memory search is disabled for agent '{agent_id}'.")
        self.agent_id = agent_id
        self.cfg = cfg
        self._db_path = cfg.store_path(agent_id)
        self._corpus = Corpus(cfg)
        self._store = IndexStore.open(self._db_path)
        self._chain = chain if chain is not None else build_chain(cfg)
        self._cache = (
            EmbeddingCache(self._store, cfg.cache.max_entries) if cfg.cache.enabled else None
        )
        self._embedder: CachedEmbedder | None = None
        if self._chain.candidates:
            self._embedder = CachedEmbedder(
                self._chain,
                self._cache,
                batch_size=cfg.batch.size,
                concurrency=cfg.batch.concurrency,
                timeout=cfg.batch.timeout_seconds,
            )
        self._engine = SyncEngine(
            self._store,
            self._corpus,
            self._embedder,
            chunking=cfg.chunking,
            sync_cfg=cfg.sync,
            clock=clock,
        )
        self._searcher = HybridSearcher(self._store, self._embedder)
        self._closed = False
        self.verify()

    # ------------------------------------------------------------------
    # Registry
    # ------------------------------------------------------------------

    @classmethod
    def get(
        cls,
        agent_id: str,
        cfg: MemoryConfig,
        *,
        chain: FallbackChain | None = None,
        clock: Clock | None = None,
    ) -> MemoryIndexManager:
        """Return the manager for *agent_id*, opening its index on first use."""
        key = (agent_id, cfg.store_path(agent_id))
        with cls._registry_lock:
            manager = cls._registry.get(key)
            if manager is None:
                manager = cls(agent_id, cfg, chain=chain, clock=clock)
                cls._registry[key] = manager
            return manager

    @classmethod
    def close_all(cls) -> None:
        """Close every open manager."""
        with cls._registry_lock:
            managers = list(cls._registry.values())
        for manager in managers:
            manager.close()

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def store(self) -> IndexStore:
        return self._store

    @property
    def engine(self) -> SyncEngine:
        return self._engine

    @property
    def chain(self) -> FallbackChain:
        return self._chain

    @property
    def cache(self) -> EmbeddingCache | None:
        return self._cache

    # ------------------------------------------------------------------
    # Tool contract
    # ------------------------------------------------------------------

    def search(
        self,
        query: str,
        max_results: int | None = None,
        min_score: float | None = None,
    ) -> SearchResponse:
        """Hybrid search over this agent's memory.

        Raises:
            SearchUnavailable: If neither search channel can answer.
        """
        if self.cfg.sync.on_search:
            try:
                self._engine.sync("search")
            except (sqlite3.Error, AgentMemError) as exc:
                logger.warning("Sync before search failed for %s: %s", self.agent_id, exc)

        opts = SearchOptions.from_config(self.cfg.query, self.cfg.sources)
        if max_results is not None:
            opts.max_results = max_results
        if min_score is not None:
            opts.min_score = min_score
        return self._searcher.search(query, opts)

    def read_snippet(
        self,
        path: str,
        from_line: int | None = None,
        line_count: int | None = None,
    ) -> str:
        """Return lines of a memory file, e.g. to expand a search citation.

        Raises:
            NotFound: If *path* is outside the indexable roots, is not a
                memory file, or does not exist.
        """
        if line_count is not None and line_count < 1:
            raise ValueError("line_count must be >= 1")
        start = max(1, from_line or 1)

        cf = self._corpus.resolve(path)
        if cf is None:
            raise NotFound(f"'{path}' is not inside the memory roots.")

        if cf.source == "memory":
            if not cf.abs_path.is_file():
                raise NotFound(f"'{path}' does not exist.")
            lines = cf.abs_path.read_text(encoding="utf-8", errors="replace").split("\n")
            end = len(lines) if line_count is None else start + line_count - 1
            return "\n".join(lines[start - 1 : end])

        sliced = self._store.get_file_slice(cf.path, start, line_count, source=cf.source)
        if sliced is None:
            raise NotFound(f"'{path}' has not been indexed.")
        return sliced

    def status(self) -> MemoryStatus:
        """Report provider, index availability and per-source counts."""
        provider = None
        if self._embedder is not None:
            try:
                provider = self._chain.resolve()
            except SearchDisabled:
                provider = None
        return MemoryStatus(
            agent_id=self.agent_id,
            db_path=str(self._db_path),
            provider=provider.name if provider is not None else None,
            model=provider.model if provider is not None else None,
            requested_provider=self._chain.requested,
            fallback=self._chain.is_fallback,
            vector_available=self._store.vector_available and provider is not None,
            lexical_available=self._store.lexical_available,
            sources=self._store.counts_by_source(),
            cache_entries=self._cache.count() if self._cache is not None else 0,
            dirty=self._engine.dirty,
            last_error=self._chain.last_error,
        )

    def sync(self, force: bool = False) -> SyncReport:
        """Run a full sweep; *force* re-chunks unchanged files too."""
        return self._engine.sync("explicit", force=force)

    # ------------------------------------------------------------------
    # Integrity
    # ------------------------------------------------------------------

    def verify(self) -> bool:
        """Check index integrity, rebuilding it if corrupt.

        Returns:
            True if the index was healthy, False if it had to be rebuilt.
        """
        try:
            self._store.check_integrity()
        except IndexCorrupt as exc:
            logger.warning("%s; rebuilding", exc)
            self.rebuild()
            return False
        return True

    def rebuild(self) -> SyncReport:
        """Drop every corpus-derived row and re-index from scratch (cache kept)."""
        self._store.reset()
        self._engine.mark_dirty()
        return self._engine.sync("rebuild", force=True)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def start(self) -> None:
        """Start background sync (watcher and periodic sweep)."""
        self._engine.start()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._engine.stop()
        self._searcher.close()
        if self._embedder is not None:
            self._embedder.close()
        self._store.close()
        with self._registry_lock:
            for key, manager in list(self._registry.items()):
                if manager is self:
                    del self._registry[key]

    def __enter__(self) -> MemoryIndexManager:
        return self

    def __exit__(self, *args: object) -> None:
        self.close()
