"""Corpus discovery: which files on disk belong to which source.

The ``memory`` source is ``MEMORY.md`` / ``memory.md`` at the workspace
root, every ``*.md`` under ``memory/``, and the configured extra paths
(markdown files, or directories searched recursively). The ``sessions``
source is every ``*.jsonl`` directly inside ``sessions_dir``.

Index keys are POSIX paths relative to the workspace, or absolute POSIX
paths for files outside it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

from agentmem.config import MemoryConfig

logger = logging.getLogger(__name__)

_ROOT_MEMORY_FILES = ("MEMORY.md", "memory.md")
_MEMORY_DIR = "memory"


@dataclass(frozen=True)
class CorpusFile:
    """A file covered by the corpus.

    Attributes:
        path: Index key (workspace-relative POSIX path, or absolute).
        source: Source tag (``memory`` or ``sessions``).
        abs_path: Location on disk (may not exist for deleted files).
    """

    path: str
    source: str
    abs_path: Path


class Corpus:
    """Resolve corpus membership for *cfg*'s workspace and sources."""

    def __init__(self, cfg: MemoryConfig) -> None:
        self.workspace = Path(cfg.workspace).expanduser().resolve()
        self.sources = list(cfg.sources)
        self.extra_paths = [self._absolute(p) for p in cfg.extra_paths]
        self.sessions_dir = (
            self._absolute(cfg.sessions_dir)
            if cfg.sessions_dir and "sessions" in self.sources
            else None
        )

    def _absolute(self, path: str | Path) -> Path:
        p = Path(path).expanduser()
        if not p.is_absolute():
            p = self.workspace / p
        return p.resolve()

    def key(self, abs_path: Path) -> str:
        """Index key for *abs_path*."""
        try:
            return abs_path.relative_to(self.workspace).as_posix()
        except ValueError:
            return abs_path.as_posix()

    def locate(self, key: str) -> Path:
        """Inverse of key(): the on-disk location of an index key."""
        return self._absolute(key)

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    def resolve(self, path: str | Path) -> CorpusFile | None:
        """Return the CorpusFile for *path* if it is covered, else None.

        *path* may be absolute or workspace-relative and need not exist, so
        deletions can be mapped back to their index key.
        """
        p = self._absolute(path)
        source = self._source_of(p)
        if source is None:
            return None
        return CorpusFile(self.key(p), source, p)

    def _source_of(self, p: Path) -> str | None:
        if "memory" in self.sources and p.suffix == ".md":
            if p.parent == self.workspace and p.name in _ROOT_MEMORY_FILES:
                return "memory"
            if _is_within(p, self.workspace / _MEMORY_DIR):
                return "memory"
            for extra in self.extra_paths:
                if p == extra or (extra.suffix != ".md" and _is_within(p, extra)):
                    return "memory"
        if self.sessions_dir is not None and p.suffix == ".jsonl" and p.parent == self.sessions_dir:
            return "sessions"
        return None

    # ------------------------------------------------------------------
    # Enumeration
    # ------------------------------------------------------------------

    def files(self) -> list[CorpusFile]:
        """Every existing corpus file, deduplicated, in a stable order."""
        found: list[CorpusFile] = []
        seen: set[tuple[int, int]] = set()

        def add(p: Path, source: str) -> None:
            if p.is_symlink() or not p.is_file():
                return
            st = p.stat()
            ident = (st.st_dev, st.st_ino)
            if ident in seen:
                return
            seen.add(ident)
            found.append(CorpusFile(self.key(p), source, p))

        if "memory" in self.sources:
            for name in _ROOT_MEMORY_FILES:
                add(self.workspace / name, "memory")
            memory_dir = self.workspace / _MEMORY_DIR
            if memory_dir.is_dir():
                for p in sorted(memory_dir.rglob("*.md")):
                    add(p, "memory")
            for extra in self.extra_paths:
                if extra.is_dir():
                    for p in sorted(extra.rglob("*.md")):
                        add(p, "memory")
                elif extra.suffix == ".md":
                    add(extra, "memory")
                else:
                    logger.debug("Ignoring extra path %s (not markdown)", extra)

        if self.sessions_dir is not None and self.sessions_dir.is_dir():
            for p in sorted(self.sessions_dir.glob("*.jsonl")):
                add(p, "sessions")
        return found

    def watch_targets(self) -> list[tuple[Path, bool]]:
        """Existing directories to watch, as (directory, recursive) pairs."""
        targets: list[tuple[Path, bool]] = []
        if "memory" in self.sources:
            targets.append((self.workspace, False))
            targets.append((self.workspace / _MEMORY_DIR, True))
            for extra in self.extra_paths:
                if extra.is_dir():
                    targets.append((extra, True))
                else:
                    targets.append((extra.parent, False))
        if self.sessions_dir is not None:
            targets.append((self.sessions_dir, False))

        unique: dict[Path, bool] = {}
        for directory, recursive in targets:
            if directory.is_dir():
                unique[directory] = unique.get(directory, False) or recursive
        return list(unique.items())


def _is_within(path: Path, root: Path) -> bool:
    try:
        path.relative_to(root)
    except ValueError:
        return False
    return path != root
