"""SyncEngine — keeps one agent's index consistent with its corpus.

Triggers:
- ``notify_change(path)``: a file was created, modified or deleted. The file
  is marked dirty and scheduled ``debounce_ms`` in the future; further
  notifications push the deadline back, so a burst of saves is indexed once.
- ``sync(reason)``: explicit (full sweep), or ``search`` (only when dirty).
- Periodic sweep every ``interval_minutes`` (0 disables it).

Time comes from an injected Clock; ``run_due()`` processes whatever is due.
A background thread calling ``run_due()`` is started with ``start()``.

Per file: hash the bytes; an unchanged hash is a no-op. Otherwise chunk,
drop stale chunk ids, upsert the chunk text (lexically searchable at once),
embed chunks that lack a vector for the active model, then record the file
hash. Embedding unavailability leaves chunks lexical-only; a later pass fills
them in. Any other failure marks the file ``error``; it is retried on the
next sweep or notification.
"""

from __future__ import annotations

import enum
import hashlib
import logging
import sqlite3
import threading
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path

from agentmem.config import ChunkingCfg, SyncCfg
from agentmem.db.models import Chunk, FileRecord
from agentmem.db.store import IndexStore
from agentmem.embeddings.embedder import CachedEmbedder
from agentmem.errors import AgentMemError, InvalidResponse, SearchDisabled
from agentmem.ingest.base import BaseChunker
from agentmem.ingest.markdown import MarkdownChunker
from agentmem.ingest.sessions import SessionChunker
from agentmem.sync.clock import Clock, SystemClock
from agentmem.sync.corpus import Corpus, CorpusFile
from agentmem.sync.watcher import CorpusWatcher

logger = logging.getLogger(__name__)

_EMBED_PAGE = 256
_POLL_SECONDS = 0.25

FileKey = tuple[str, str]


class FileState(str, enum.Enum):
    CLEAN = "clean"
    DIRTY = "dirty"
    INDEXING = "indexing"
    ERROR = "error"


@dataclass
class SyncReport:
    """Outcome of one sync pass."""

    reason: str
    indexed: int = 0
    unchanged: int = 0
    removed: int = 0
    errors: int = 0
    embedded: int = 0

    @property
    def changed(self) -> bool:
        return bool(self.indexed or self.removed or self.embedded)


class SyncEngine:
    """Drive chunking, embedding and indexing for one agent.

    Args:
        store: The agent's index; the engine is its only corpus writer.
        corpus: File discovery for the agent's workspace.
        embedder: Cache-aware embedder, or None for a lexical-only index.
        chunking: Chunk size and overlap.
        sync_cfg: Debounce and sweep settings.
        clock: Time source; defaults to the monotonic system clock.
    """

    def __init__(
        self,
        store: IndexStore,
        corpus: Corpus,
        embedder: CachedEmbedder | None = None,
        chunking: ChunkingCfg | None = None,
        sync_cfg: SyncCfg | None = None,
        clock: Clock | None = None,
    ) -> None:
        chunking = chunking or ChunkingCfg()
        self._cfg = sync_cfg or SyncCfg()
        self._store = store
        self._corpus = corpus
        self._embedder = embedder
        self._clock = clock or SystemClock()
        self._chunkers: dict[str, BaseChunker] = {
            "memory": MarkdownChunker(chunking.tokens, chunking.overlap),
            "sessions": SessionChunker(chunking.tokens, chunking.overlap),
        }

        self._states: dict[FileKey, FileState] = {}
        self._pending: dict[FileKey, float] = {}
        self._needs_sweep = True
        self._vectors_pending = False
        self._next_sweep = self._schedule_sweep()

        self._state_lock = threading.Lock()
        self._sync_lock = threading.Lock()
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self._watcher: CorpusWatcher | None = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def debounce_seconds(self) -> float:
        return self._cfg.debounce_ms / 1000.0

    @property
    def dirty(self) -> bool:
        """True when a search-triggered sync would have work to do."""
        with self._state_lock:
            return self._needs_sweep or bool(self._pending) or self._vectors_pending

    def state(self, path: str, source: str = "memory") -> FileState | None:
        with self._state_lock:
            return self._states.get((path, source))

    def states(self) -> dict[FileKey, FileState]:
        with self._state_lock:
            return dict(self._states)

    def mark_dirty(self) -> None:
        """Invalidate everything; the next sync performs a full sweep."""
        with self._state_lock:
            self._needs_sweep = True

    def notify_change(self, path: str | Path) -> bool:
        """Schedule *path* for re-indexing after the debounce window.

        Returns:
            False if *path* is not part of the corpus.
        """
        cf = self._corpus.resolve(path)
        if cf is None:
            logger.debug("Ignoring change outside the corpus: %s", path)
            return False
        key = (cf.path, cf.source)
        with self._state_lock:
            self._pending[key] = self._clock.now() + self.debounce_seconds
            self._states[key] = FileState.DIRTY
        return True

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def run_due(self) -> SyncReport | None:
        """Process debounced changes whose deadline passed and a due sweep.

        Returns:
            The pass report, or None if nothing was due.
        """
        now = self._clock.now()
        with self._state_lock:
            due = [key for key, deadline in self._pending.items() if deadline <= now]
            sweep = self._next_sweep is not None and now >= self._next_sweep
        if not due and not sweep:
            return None
        if sweep:
            self._next_sweep = self._schedule_sweep()
            return self._run("interval", keys=None, force=False)
        return self._run("watch", keys=due, force=False)

    def sync(self, reason: str = "explicit", force: bool = False) -> SyncReport:
        """Bring the index up to date.

        Args:
            reason: ``search`` only does work when the engine is dirty and
                skips the debounce wait; anything else runs a full sweep.
            force: Re-chunk every file even if its hash is unchanged.
        """
        if reason == "search" and not force:
            if not self.dirty:
                return SyncReport(reason)
            with self._state_lock:
                full = self._needs_sweep
                keys = None if full else list(self._pending)
            return self._run(reason, keys=keys, force=False)
        return self._run(reason, keys=None, force=force)

    # ------------------------------------------------------------------
    # Background operation
    # ------------------------------------------------------------------

    def start(self, watch: bool | None = None) -> None:
        """Start the background loop (and the filesystem watcher if enabled)."""
        if self._thread is not None:
            return
        if self._cfg.watch if watch is None else watch:
            self._watcher = CorpusWatcher(self._corpus.watch_targets(), self.notify_change)
            self._watcher.start()
        self._stop.clear()
        self._thread = threading.Thread(target=self._loop, name="agentmem-sync", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        """Stop the background loop and watcher; waits for a running pass."""
        if self._watcher is not None:
            self._watcher.stop()
            self._watcher = None
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=30)
            self._thread = None

    def _loop(self) -> None:
        while not self._stop.wait(_POLL_SECONDS):
            try:
                self.run_due()
            except Exception:
                logger.exception("Background sync failed")

    # ------------------------------------------------------------------
    # Passes
    # ------------------------------------------------------------------

    def _schedule_sweep(self) -> float | None:
        if self._cfg.interval_minutes <= 0:
            return None
        return self._clock.now() + self._cfg.interval_minutes * 60

    def _run(self, reason: str, keys: Sequence[FileKey] | None, force: bool) -> SyncReport:
        report = SyncReport(reason)
        with self._sync_lock:
            if keys is None:
                with self._state_lock:
                    self._needs_sweep = False
                    self._pending.clear()
                self._sweep(report, force)
            else:
                with self._state_lock:
                    for key in keys:
                        self._pending.pop(key, None)
                for path, source in keys:
                    cf = self._corpus.resolve(self._corpus.locate(path))
                    if cf is None or cf.source != source:
                        continue
                    self._sync_file(cf, report, force)

            if self._embedder is not None and (keys is None or self._vectors_pending):
                report.embedded += self.embed_missing()

        level = logging.INFO if report.changed or report.errors else logging.DEBUG
        logger.log(
            level,
            "Sync (%s): %d indexed, %d unchanged, %d removed, %d embedded, %d error(s)",
            reason,
            report.indexed,
            report.unchanged,
            report.removed,
            report.embedded,
            report.errors,
        )
        return report

    def _sweep(self, report: SyncReport, force: bool) -> None:
        files = self._corpus.files()
        wanted = {(cf.path, cf.source) for cf in files}
        for path, source in sorted(self._store.indexed_paths() - wanted):
            self._store.delete_by_path(path, source)
            with self._state_lock:
                self._states.pop((path, source), None)
            report.removed += 1
            logger.debug("Removed %s (%s) from the index", path, source)
        for cf in files:
            self._sync_file(cf, report, force)

    def _sync_file(self, cf: CorpusFile, report: SyncReport, force: bool) -> None:
        key = (cf.path, cf.source)
        if not cf.abs_path.is_file():
            record = self._store.get_file(cf.path, cf.source)
            if self._store.delete_by_path(cf.path, cf.source) or record is not None:
                report.removed += 1
            with self._state_lock:
                self._states.pop(key, None)
            return

        self._set_state(key, FileState.INDEXING)
        try:
            raw = cf.abs_path.read_bytes()
            digest = hashlib.sha256(raw).hexdigest()
            record = self._store.get_file(cf.path, cf.source)
            if record is not None and record.hash == digest and not force:
                report.unchanged += 1
                self._set_state(key, FileState.CLEAN)
                return

            chunker = self._chunkers.get(cf.source, self._chunkers["memory"])
            chunks = chunker.chunk(raw.decode("utf-8", errors="replace"), cf.path, cf.source)
            self._store.delete_stale(cf.path, cf.source, [c.id for c in chunks])
            self._store.upsert_chunks(chunks)
            report.embedded += self._embed_chunks(chunks)

            stat = cf.abs_path.stat()
            self._store.upsert_file(
                FileRecord(cf.path, cf.source, digest, mtime=stat.st_mtime, size=stat.st_size)
            )
        except (OSError, sqlite3.Error, AgentMemError, ValueError) as exc:
            logger.warning("Failed to index %s: %s", cf.path, exc)
            report.errors += 1
            self._set_state(key, FileState.ERROR)
            return
        report.indexed += 1
        self._set_state(key, FileState.CLEAN)

    def _set_state(self, key: FileKey, state: FileState) -> None:
        with self._state_lock:
            self._states[key] = state

    # ------------------------------------------------------------------
    # Embedding
    # ------------------------------------------------------------------

    def _active_model(self) -> str | None:
        if self._embedder is None or not self._store.vector_available:
            return None
        try:
            return self._embedder.chain.resolve().model
        except SearchDisabled:
            self._vectors_pending = True
            return None

    def _embed_chunks(self, chunks: Sequence[Chunk]) -> int:
        """Embed the chunks of one file that have no vector for the active model."""
        model = self._active_model()
        if model is None or self._embedder is None:
            return 0
        missing = [c for c in chunks if c.model != model]
        if not missing:
            return 0
        return self._embed_and_attach(missing)

    def embed_missing(self) -> int:
        """Fill vectors for every chunk lacking one under the active model.

        Returns:
            Number of vectors attached.
        """
        total = 0
        while True:
            model = self._active_model()
            if model is None:
                break
            missing = self._store.chunks_missing_vectors(model, limit=_EMBED_PAGE)
            if not missing:
                self._vectors_pending = False
                break
            written = self._embed_and_attach(missing)
            total += written
            if written == 0:
                break
        return total

    def _embed_and_attach(self, chunks: Sequence[Chunk]) -> int:
        if self._embedder is None:
            return 0
        try:
            batch = self._embedder.embed([c.text for c in chunks])
        except SearchDisabled as exc:
            logger.info("Embeddings unavailable; chunks stay lexical-only: %s", exc)
            self._vectors_pending = True
            return 0
        try:
            return self._store.attach_vectors([c.id for c in chunks], batch.vectors, batch.model)
        except InvalidResponse as exc:
            logger.warning("Could not store vectors for %s: %s", batch.model, exc)
            self._vectors_pending = False
            return 0
