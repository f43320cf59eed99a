"""Per-model sqlite-vec virtual table management."""

from __future__ import annotations

import hashlib
import re
import sqlite3


def model_to_slug(model: str) -> str:
    """Convert a provider/model string to a valid table name suffix.

    The readable part is lossy, so a short sha256 of the exact model id is
    appended; ids differing only in case or punctuation get distinct slugs.

    Examples:
        "openai/text-embedding-3-small" -> "openai_text_embedding_3_small_<hash8>"
        "local/all-MiniLM-L6-v2"        -> "local_all_minilm_l6_v2_<hash8>"
    """
    readable = re.sub(r"[^a-z0-9]", "_", model.lower())
    digest = hashlib.sha256(model.encode("utf-8")).hexdigest()[:8]
    return f"{readable}_{digest}"


def vec_table_name(model_slug: str) -> str:
    """Return the full vec table name for a model slug."""
    return f"vec_chunks_{model_slug}"


def list_vec_tables(conn: sqlite3.Connection) -> list[str]:
    """Return the names of every per-model vec table in the index."""
    return [
        r[0]
        for r in conn.execute(
            "SELECT name FROM sqlite_master "
            "WHERE type='table' AND sql LIKE 'CREATE VIRTUAL TABLE%' "
            "AND name LIKE 'vec\\_chunks\\_%' ESCAPE '\\'"
        ).fetchall()
    ]


def ensure_vec_table(conn: sqlite3.Connection, model_slug: str, dimensions: int) -> str:
    """Create vec_chunks_{model_slug} if it doesn't already exist.

    The table uses cosine distance so ``distance`` is directly ``1 - similarity``.
    The caller owns the transaction; nothing is committed here.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        model_slug: Sanitized model identifier (use model_to_slug() to generate).
        dimensions: Embedding vector dimensions (e.g. 1536 for text-embedding-3-small).

    Returns:
        The table name (vec_chunks_{model_slug}).
    """
    if not re.fullmatch(r"[a-z0-9_]+", model_slug):
        raise ValueError(
            f"Invalid model_slug '{model_slug}' — use model_to_slug() to sanitize."
        )
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    table = vec_table_name(model_slug)
    existing = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (table,)
    ).fetchone()

    if existing is None:
        conn.execute(
            f"CREATE VIRTUAL TABLE {table} USING vec0("
            f"embedding float[{dimensions}] distance_metric=cosine)"
        )

    return table
