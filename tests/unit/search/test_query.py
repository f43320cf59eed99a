"""Tests for query tokenisation, score conversion and snippets."""

from __future__ import annotations

import math

import pytest

from agentmem.search.query import (
    SNIPPET_MAX_CHARS,
    build_fts_query,
    lexical_score,
    make_snippet,
    tokenize,
    vector_score,
)


def test_tokenize_lowercases_and_dedupes():
    assert tokenize("JWT token, jwt TOKEN expiry") == ["jwt", "token", "expiry"]


def test_fts_query_quotes_every_token():
    assert build_fts_query('token AND "expiration" OR policy*') == (
        '"token" AND "and" AND "expiration" AND "or" AND "policy"'
    )


def test_fts_query_none_without_tokens():
    assert build_fts_query("  ?! -- ") is None


@pytest.mark.parametrize(
    ("rank", "expected"),
    [
        (-5.0, 1.0),
        (-0.001, 1.0),
        (0.0, 1.0),
        (1.0, 0.5),
        (3.0, 0.25),
    ],
)
def test_lexical_score(rank, expected):
    assert lexical_score(rank) == pytest.approx(expected)


def test_lexical_score_non_finite_rank_is_tiny():
    assert lexical_score(math.nan) == pytest.approx(1 / 1000)
    assert lexical_score(math.inf) == pytest.approx(1 / 1000)


def test_vector_score_is_one_minus_distance():
    assert vector_score(0.0) == 1.0
    assert vector_score(0.2) == pytest.approx(0.8)
    assert vector_score(1.5) == pytest.approx(-0.5)


def test_snippet_first_sentence():
    assert make_snippet("JWT tokens expire.  Refresh later.") == "JWT tokens expire."


def test_snippet_collapses_whitespace():
    assert make_snippet("# Auth\n\n  no   punctuation here") == "# Auth no punctuation here"


def test_snippet_truncates_long_text():
    text = "word " * 200
    snippet = make_snippet(text)
    assert len(snippet) <= SNIPPET_MAX_CHARS
    assert snippet.endswith("…")


def test_snippet_long_first_sentence_falls_back_to_prefix():
    text = "a" * 300 + ". Short."
    snippet = make_snippet(text)
    assert snippet == "a" * (SNIPPET_MAX_CHARS - 1) + "…"
