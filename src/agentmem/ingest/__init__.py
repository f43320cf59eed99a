"""Corpus ingestion — chunkers for memory notes and session transcripts."""

from agentmem.ingest.base import BaseChunker, chunk_id
from agentmem.ingest.markdown import MarkdownChunker
from agentmem.ingest.sessions import SessionChunker, render_transcript

__all__ = [
    "BaseChunker",
    "MarkdownChunker",
    "SessionChunker",
    "chunk_id",
    "render_transcript",
]
