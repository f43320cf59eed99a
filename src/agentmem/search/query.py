"""Query tokenisation and score conversion helpers for hybrid search."""

from __future__ import annotations

import math
import re

SNIPPET_MAX_CHARS = 240

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)
_SENTENCE_RE = re.compile(r"^(.+?[.!?])(?:\s|$)")
_WS_RE = re.compile(r"\s+")


def tokenize(query: str) -> list[str]:
    """Return the distinct lower-cased word tokens of *query*, in order."""
    return list(dict.fromkeys(t.lower() for t in _TOKEN_RE.findall(query)))


def build_fts_query(query: str) -> str | None:
    """Build an FTS5 MATCH expression requiring every token of *query*.

    Tokens are quoted so FTS5 operators in user text are inert; phrases are
    not required verbatim, only that all tokens occur in the chunk.

    Returns:
        The MATCH expression, or None if *query* has no word tokens.
    """
    tokens = tokenize(query)
    if not tokens:
        return None
    return " AND ".join(f'"{t}"' for t in tokens)


def vector_score(distance: float) -> float:
    """Cosine distance → similarity (``1 - distance``); not clamped."""
    return 1.0 - distance


def lexical_score(rank: float) -> float:
    """BM25 rank → 0..1 score: ``1 / (1 + max(0, rank))``.

    FTS5 ranks are negative for matches (lower is better), so every match
    with rank <= 0 scores 1.0; positive ranks decay towards 0.
    """
    normalized = max(0.0, rank) if math.isfinite(rank) else 999.0
    return 1.0 / (1.0 + normalized)


def make_snippet(text: str, max_chars: int = SNIPPET_MAX_CHARS) -> str:
    """Short preview of *text*: its first sentence if short enough, else a prefix."""
    flat = _WS_RE.sub(" ", text).strip()
    match = _SENTENCE_RE.match(flat)
    if match and len(match.group(1)) <= max_chars:
        return match.group(1)
    if len(flat) <= max_chars:
        return flat
    return flat[: max_chars - 1].rstrip() + "…"
