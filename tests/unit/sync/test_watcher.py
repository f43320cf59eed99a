"""Tests for the watchdog-backed corpus watcher."""

from __future__ import annotations

from watchdog.events import (
    DirCreatedEvent,
    FileCreatedEvent,
    FileDeletedEvent,
    FileModifiedEvent,
    FileMovedEvent,
)

from agentmem.sync.watcher import CorpusWatcher, _WatchHandler


def _watcher(seen: list[str]) -> CorpusWatcher:
    return CorpusWatcher([], seen.append)


def test_forwards_markdown_and_jsonl_events():
    seen: list[str] = []
    handler = _WatchHandler(_watcher(seen))

    handler.on_created(FileCreatedEvent("/ws/memory/a.md"))
    handler.on_modified(FileModifiedEvent("/sessions/s1.jsonl"))
    handler.on_deleted(FileDeletedEvent("/ws/MEMORY.md"))

    assert seen == ["/ws/memory/a.md", "/sessions/s1.jsonl", "/ws/MEMORY.md"]


def test_move_reports_both_ends():
    seen: list[str] = []
    handler = _WatchHandler(_watcher(seen))
    handler.on_moved(FileMovedEvent("/ws/memory/old.md", "/ws/memory/new.md"))
    assert seen == ["/ws/memory/old.md", "/ws/memory/new.md"]


def test_ignores_other_files_and_directories():
    seen: list[str] = []
    handler = _WatchHandler(_watcher(seen))

    handler.on_created(DirCreatedEvent("/ws/memory/2026.md"))
    handler.on_modified(FileModifiedEvent("/ws/memory/.notes.md.swp"))
    handler.on_modified(FileModifiedEvent("/ws/memory/.git/HEAD.md"))

    assert seen == []


def test_callback_errors_are_contained(caplog):
    def boom(path: str) -> None:
        raise RuntimeError("index locked")

    watcher = CorpusWatcher([], boom)
    watcher._handle("/ws/memory/a.md")

    assert "index locked" in caplog.text


def test_start_and_stop_real_observer(tmp_path):
    watcher = CorpusWatcher([(tmp_path, True)], lambda path: None)
    watcher.start()
    try:
        assert watcher.is_running
    finally:
        watcher.stop()
    assert not watcher.is_running
