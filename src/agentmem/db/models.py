"""Domain models for the index storage layer."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass
class Chunk:
    id: str
    path: str
    source: str
    start_line: int
    end_line: int
    text: str
    hash: str
    part: int = 0  # >0 only for segments of one overlong line
    model: str | None = None  # model of the attached vector; None until embedded
    rowid: int | None = None  # set after insert; None for unsaved chunks


@dataclass
class FileRecord:
    path: str
    source: str
    hash: str
    mtime: float = 0.0
    size: int = 0
    indexed_at: str | None = None


@dataclass
class SourceCounts:
    """Per-source totals reported by the status surface."""

    source: str
    files: int = 0
    chunks: int = 0
