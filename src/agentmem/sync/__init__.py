"""Corpus discovery, change tracking and incremental indexing."""

from agentmem.sync.clock import Clock, SystemClock
from agentmem.sync.corpus import Corpus, CorpusFile
from agentmem.sync.engine import FileState, SyncEngine, SyncReport
from agentmem.sync.watcher import CorpusWatcher

__all__ = [
    "Clock",
    "Corpus",
    "CorpusFile",
    "CorpusWatcher",
    "FileState",
    "SyncEngine",
    "SyncReport",
    "SystemClock",
]
