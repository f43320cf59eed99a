"""Forward-only migration runner for the index schema.

Vec tables (vec_chunks_*) are NOT migration-managed — use ensure_vec_table().
"""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

_V1_SQL = """
CREATE TABLE IF NOT EXISTS meta (
    key     TEXT PRIMARY KEY,
    value   TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS files (
    path        TEXT NOT NULL,
    source      TEXT NOT NULL DEFAULT 'memory',
    hash        TEXT NOT NULL,
    mtime       REAL NOT NULL DEFAULT 0,
    size        INTEGER NOT NULL DEFAULT 0,
    indexed_at  DATETIME NOT NULL DEFAULT (datetime('now')),
    PRIMARY KEY (path, source)
);

CREATE TABLE IF NOT EXISTS chunks (
    id          TEXT NOT NULL UNIQUE,
    path        TEXT NOT NULL,
    source      TEXT NOT NULL DEFAULT 'memory',
    start_line  INTEGER NOT NULL,
    end_line    INTEGER NOT NULL,
    part        INTEGER NOT NULL DEFAULT 0,
    hash        TEXT NOT NULL,
    model       TEXT,
    text        TEXT NOT NULL,
    updated_at  DATETIME NOT NULL DEFAULT (datetime('now'))
);

CREATE INDEX IF NOT EXISTS idx_chunks_path ON chunks(path, source);
CREATE INDEX IF NOT EXISTS idx_chunks_source ON chunks(source);

CREATE VIRTUAL TABLE IF NOT EXISTS chunks_fts USING fts5(text, tokenize='porter unicode61');

CREATE TABLE IF NOT EXISTS vec_models (
    model       TEXT PRIMARY KEY,
    slug        TEXT NOT NULL,
    dimensions  INTEGER NOT NULL
);

CREATE TABLE IF NOT EXISTS embedding_cache (
    provider      TEXT NOT NULL,
    model         TEXT NOT NULL,
    provider_key  TEXT NOT NULL,
    hash          TEXT NOT NULL,
    embedding     TEXT NOT NULL,
    dims          INTEGER NOT NULL,
    updated_at    REAL NOT NULL,
    PRIMARY KEY (provider, model, provider_key, hash)
);

CREATE INDEX IF NOT EXISTS idx_embedding_cache_updated_at ON embedding_cache(updated_at);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]

CURRENT_VERSION = MIGRATIONS[-1][0]


def run_migrations(conn: sqlite3.Connection) -> None:
    """Apply all pending migrations in ascending version order.

    Idempotent: safe to call on a database at any version.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    row = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    current = row[0] if row[0] is not None else 0

    for version, sql in MIGRATIONS:
        if version > current:
            conn.executescript(sql)
            conn.execute(
                "INSERT INTO schema_version (version) VALUES (?)", (version,)
            )
            conn.commit()
