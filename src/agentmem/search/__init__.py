"""Hybrid (vector + BM25) search over an agent's index."""

from agentmem.search.hybrid import HybridSearcher, SearchOptions, SearchResponse, SearchResult
from agentmem.search.query import build_fts_query, lexical_score, make_snippet, vector_score

__all__ = [
    "HybridSearcher",
    "SearchOptions",
    "SearchResponse",
    "SearchResult",
    "build_fts_query",
    "lexical_score",
    "make_snippet",
    "vector_score",
]
