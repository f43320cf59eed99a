"""Base chunker interface for memory sources."""

from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod

from agentmem.db.models import Chunk


def chunk_id(source: str, path: str, start_line: int, end_line: int, part: int = 0) -> str:
    """Stable chunk identity derived from provenance only.

    Re-chunking unchanged content reproduces the same ids, which makes
    re-indexing a no-op.
    """
    key = f"{source}:{path}:{start_line}:{end_line}:{part}"
    return hashlib.sha256(key.encode("utf-8")).hexdigest()


def text_hash(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class BaseChunker(ABC):
    """Abstract base for all chunkers.

    Token counting uses a 4-chars-per-token approximation; no external
    tokenizer dependency is required.

    Args:
        tokens: Target chunk size in approximate tokens.
        overlap: Tokens of trailing context repeated at the start of the next chunk.
    """

    def __init__(self, tokens: int = 400, overlap: int = 80) -> None:
        if tokens < 1:
            raise ValueError("tokens must be >= 1")
        if not 0 <= overlap < tokens:
            raise ValueError("overlap must be >= 0 and < tokens")
        self.tokens = tokens
        self.overlap = overlap

    @property
    def max_chars(self) -> int:
        return self.tokens * 4

    @property
    def overlap_chars(self) -> int:
        return self.overlap * 4

    @abstractmethod
    def chunk(self, text: str, path: str, source: str = "memory") -> list[Chunk]:
        """Split *text* into ordered Chunk objects for *path*.

        Args:
            text: Full decoded text of the document.
            path: Workspace-relative path, used in ids and citations.
            source: Source tag the chunks belong to.
        """

    @staticmethod
    def count_tokens(text: str) -> int:
        """Approximate token count: 4 characters ≈ 1 token."""
        return max(1, len(text) // 4)

    @staticmethod
    def _make_chunk(
        path: str, source: str, start_line: int, end_line: int, text: str, part: int = 0
    ) -> Chunk:
        return Chunk(
            id=chunk_id(source, path, start_line, end_line, part),
            path=path,
            source=source,
            start_line=start_line,
            end_line=end_line,
            part=part,
            text=text,
            hash=text_hash(text),
        )
