"""Filesystem watcher feeding corpus changes to the SyncEngine.

Uses ``watchdog`` for cross-platform events. Debouncing is not done here:
every relevant event is forwarded to the callback, and the SyncEngine
collapses bursts against its own clock.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from pathlib import Path

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

logger = logging.getLogger(__name__)

_SUFFIXES = (".md", ".jsonl")

_IGNORE_DIRS: set[str] = {
    ".git",
    "node_modules",
    "__pycache__",
    ".venv",
    "venv",
}

ChangeCallback = Callable[[str], object]


class CorpusWatcher:
    """Watch *targets* and call *callback(path)* for markdown/JSONL changes.

    Args:
        targets: (directory, recursive) pairs to observe.
        callback: Receives the absolute path of each changed file.
    """

    def __init__(self, targets: Sequence[tuple[Path, bool]], callback: ChangeCallback) -> None:
        self._targets = list(targets)
        self._callback = callback
        self._observer: Observer | None = None

    @property
    def is_running(self) -> bool:
        return self._observer is not None and self._observer.is_alive()

    def start(self) -> None:
        if self._observer is not None:
            return
        handler = _WatchHandler(self)
        observer = Observer()
        observer.daemon = True
        for directory, recursive in self._targets:
            observer.schedule(handler, str(directory), recursive=recursive)
        observer.start()
        self._observer = observer
        logger.info("Watching %d director(ies) for memory changes", len(self._targets))

    def stop(self) -> None:
        if self._observer is None:
            return
        self._observer.stop()
        self._observer.join(timeout=5)
        self._observer = None
        logger.info("Memory watcher stopped")

    def _handle(self, file_path: str) -> None:
        if self._should_ignore(file_path):
            return
        try:
            self._callback(file_path)
        except Exception:
            logger.exception("Exception in memory watcher callback for %s", file_path)

    @staticmethod
    def _should_ignore(file_path: str) -> bool:
        p = Path(file_path)
        if p.suffix not in _SUFFIXES:
            return True
        return any(part in _IGNORE_DIRS for part in p.parts)


class _WatchHandler(FileSystemEventHandler):
    """Watchdog event handler that forwards file events to ``CorpusWatcher``."""

    def __init__(self, watcher: CorpusWatcher) -> None:
        super().__init__()
        self._watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher._handle(str(event.src_path))

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher._handle(str(event.src_path))

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher._handle(str(event.src_path))

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._watcher._handle(str(event.src_path))
            dest = getattr(event, "dest_path", None)
            if dest:
                self._watcher._handle(str(dest))
