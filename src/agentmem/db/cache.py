"""Content-addressed embedding cache stored inside the agent's index file.

Entries are keyed by (provider, model, provider_key, sha256(text)); each key
is an independent upsert, so concurrent writers of the same key are
last-writer-wins and never disturb other keys.
"""

from __future__ import annotations

import hashlib
import json
import logging
import threading
import time
from collections.abc import Sequence
from dataclasses import dataclass

from agentmem.db.store import IndexStore

logger = logging.getLogger(__name__)

_MAX_LOOKUP = 400


@dataclass
class CacheStats:
    """Statistics for embedding cache operations."""

    hits: int = 0
    misses: int = 0
    writes: int = 0
    entries_count: int = 0

    @property
    def total_queries(self) -> int:
        return self.hits + self.misses

    @property
    def hit_rate(self) -> float:
        """Get cache hit rate (0-1)."""
        if self.total_queries == 0:
            return 0.0
        return self.hits / self.total_queries


@dataclass(frozen=True)
class CacheKey:
    """Identity of the embedding space a cached vector belongs to."""

    provider: str
    model: str
    provider_key: str


def content_hash(text: str) -> str:
    """Return the sha256 hex digest used to address *text*."""
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class EmbeddingCache:
    """SQLite-backed embedding cache sharing the index file of *store*.

    Args:
        store: Open IndexStore whose ``embedding_cache`` table is used.
        max_entries: Keep at most this many entries (least recently written
            are pruned after each write batch). None disables pruning.
    """

    def __init__(self, store: IndexStore, max_entries: int | None = None) -> None:
        self._store = store
        self._max_entries = max_entries
        self._stats = CacheStats()
        self._stats_lock = threading.Lock()

    def get_many(self, key: CacheKey, hashes: Sequence[str]) -> dict[str, list[float]]:
        """Return the cached vectors for *hashes* under *key* (hash → vector)."""
        found: dict[str, list[float]] = {}
        unique = list(dict.fromkeys(hashes))
        conn = self._store.reader()
        for i in range(0, len(unique), _MAX_LOOKUP):
            batch = unique[i : i + _MAX_LOOKUP]
            placeholders = ",".join("?" * len(batch))
            rows = conn.execute(
                f"""
                SELECT hash, embedding FROM embedding_cache
                WHERE provider = ? AND model = ? AND provider_key = ? AND hash IN ({placeholders})
                """,
                (key.provider, key.model, key.provider_key, *batch),
            ).fetchall()
            for row in rows:
                found[row["hash"]] = json.loads(row["embedding"])

        with self._stats_lock:
            self._stats.hits += sum(1 for h in hashes if h in found)
            self._stats.misses += sum(1 for h in hashes if h not in found)
        return found

    def get(self, key: CacheKey, text: str) -> list[float] | None:
        """Return the cached vector for *text*, or None on a miss."""
        h = content_hash(text)
        return self.get_many(key, [h]).get(h)

    def put_many(self, key: CacheKey, entries: dict[str, Sequence[float]]) -> None:
        """Upsert *entries* (hash → vector) under *key*."""
        if not entries:
            return
        now = time.time()
        with self._store.transaction() as conn:
            conn.executemany(
                """
                INSERT INTO embedding_cache
                    (provider, model, provider_key, hash, embedding, dims, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(provider, model, provider_key, hash) DO UPDATE SET
                    embedding = excluded.embedding,
                    dims = excluded.dims,
                    updated_at = excluded.updated_at
                """,
                [
                    (
                        key.provider,
                        key.model,
                        key.provider_key,
                        h,
                        json.dumps(list(vector)),
                        len(vector),
                        now,
                    )
                    for h, vector in entries.items()
                ],
            )
        with self._stats_lock:
            self._stats.writes += len(entries)
        if self._max_entries is not None:
            self.prune(self._max_entries)

    def put(self, key: CacheKey, text: str, vector: Sequence[float]) -> None:
        self.put_many(key, {content_hash(text): vector})

    def prune(self, max_entries: int) -> int:
        """Remove the oldest entries beyond *max_entries*.

        Returns:
            Number of entries removed.
        """
        with self._store.transaction() as conn:
            count = conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]
            if count <= max_entries:
                return 0
            cur = conn.execute(
                """
                DELETE FROM embedding_cache
                WHERE rowid IN (
                    SELECT rowid FROM embedding_cache
                    ORDER BY updated_at ASC
                    LIMIT ?
                )
                """,
                (count - max_entries,),
            )
        removed = cur.rowcount
        if removed > 0:
            logger.info("Pruned %d embedding cache entries", removed)
        return removed

    def clear(self) -> int:
        """Delete every cache entry. Returns the number removed."""
        with self._store.transaction() as conn:
            cur = conn.execute("DELETE FROM embedding_cache")
        return cur.rowcount

    def count(self) -> int:
        return self._store.reader().execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]

    def get_stats(self) -> CacheStats:
        """Return hit/miss/write counters plus the current entry count."""
        with self._stats_lock:
            stats = CacheStats(
                hits=self._stats.hits,
                misses=self._stats.misses,
                writes=self._stats.writes,
            )
        stats.entries_count = self.count()
        return stats
