"""Markdown chunker — paragraph/heading-aware, fence-preserving, with overlap.

Strategy:
- Split the document into blocks: paragraphs end at blank lines, every
  heading starts a new block, and a fenced code block (``` or ~~~) is a
  single block from its opening to its closing fence.
- Blocks are packed greedily into chunks of at most ``tokens``.
- A block that alone exceeds ``tokens`` (fenced or not) is split at line
  boundaries; a single line that exceeds it is cut into character segments
  that keep the line's number and get a distinct ``part``.
- Each new chunk starts with the trailing whole lines of the previous chunk,
  up to ``overlap`` tokens.
- Chunks are recorded as source line ranges; chunk text is exactly those
  lines, so citations always point into the original file.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from agentmem.db.models import Chunk
from agentmem.ingest.base import BaseChunker

_FENCE_RE = re.compile(r"^ {0,3}(`{3,}|~{3,})")
_HEADING_RE = re.compile(r"^ {0,3}#{1,6}(\s|$)")


@dataclass
class _Unit:
    """A packable piece: a line range, or one segment of an overlong line."""

    start: int
    end: int
    segment: str | None = None
    part: int = 0


class MarkdownChunker(BaseChunker):
    """Split Markdown into overlapping, bounded chunks with line ranges."""

    def chunk(self, text: str, path: str, source: str = "memory") -> list[Chunk]:
        if not text.strip():
            return []

        lines = text.split("\n")
        units: list[_Unit] = []
        for start, end in _blocks(lines):
            if _size(lines, start, end) <= self.max_chars:
                units.append(_Unit(start, end))
            else:
                units.extend(self._split_block(lines, start, end))

        chunks: list[Chunk] = []
        cur_start: int | None = None
        cur_end = 0

        def flush() -> None:
            if cur_start is None:
                return
            body = "\n".join(lines[cur_start - 1 : cur_end])
            if body.strip():
                chunks.append(self._make_chunk(path, source, cur_start, cur_end, body))

        for unit in units:
            if unit.segment is not None:
                flush()
                cur_start = None
                chunks.append(
                    self._make_chunk(path, source, unit.start, unit.end, unit.segment, part=unit.part)
                )
                continue

            if cur_start is not None and _size(lines, cur_start, unit.end) > self.max_chars:
                flush()
                carry = self._overlap_start(lines, cur_start, cur_end)
                if carry is not None and _size(lines, carry, unit.end) <= self.max_chars:
                    cur_start = carry
                else:
                    cur_start = unit.start
            elif cur_start is None:
                cur_start = unit.start
            cur_end = unit.end

        flush()
        return chunks

    def _split_block(self, lines: list[str], start: int, end: int) -> list[_Unit]:
        """Break an oversized block into single-line units (segments for overlong lines)."""
        units: list[_Unit] = []
        for line_no in range(start, end + 1):
            line = lines[line_no - 1]
            if len(line) <= self.max_chars:
                if line.strip():
                    units.append(_Unit(line_no, line_no))
                continue
            step = self.max_chars
            for part, offset in enumerate(range(0, len(line), step), start=1):
                units.append(
                    _Unit(line_no, line_no, segment=line[offset : offset + step], part=part)
                )
        return units

    def _overlap_start(self, lines: list[str], start: int, end: int) -> int | None:
        """First line of the trailing context carried into the next chunk."""
        if self.overlap_chars == 0:
            return None
        budget = self.overlap_chars
        first: int | None = None
        line_no = end
        while line_no > start:
            cost = len(lines[line_no - 1]) + 1
            if cost > budget:
                break
            budget -= cost
            first = line_no
            line_no -= 1
        while first is not None and first <= end and not lines[first - 1].strip():
            first += 1
        if first is None or first > end:
            return None
        return first


# ------------------------------------------------------------------
# Block scanning
# ------------------------------------------------------------------


def _blocks(lines: list[str]) -> list[tuple[int, int]]:
    """Return (start, end) 1-based inclusive line ranges of paragraphs, headings and fences."""
    blocks: list[tuple[int, int]] = []
    start: int | None = None
    i = 0
    n = len(lines)

    def close(end_index: int) -> None:
        nonlocal start
        if start is not None:
            blocks.append((start, end_index))
            start = None

    while i < n:
        line = lines[i]
        fence = _FENCE_RE.match(line)
        if fence:
            close(i)
            marker = fence.group(1)
            closing = re.compile(rf"^ {{0,3}}{re.escape(marker[0])}{{{len(marker)},}}\s*$")
            j = i + 1
            while j < n and not closing.match(lines[j]):
                j += 1
            last = min(j, n - 1)
            blocks.append((i + 1, last + 1))
            i = last + 1
            continue
        if not line.strip():
            close(i)
        else:
            if _HEADING_RE.match(line):
                close(i)
            if start is None:
                start = i + 1
        i += 1
    close(n)
    return blocks


def _size(lines: list[str], start: int, end: int) -> int:
    """Characters in lines start..end (1-based, inclusive), counting newlines."""
    return sum(len(line) + 1 for line in lines[start - 1 : end]) - 1
