"""IndexStore — the per-agent dual index (chunk rows, FTS5, sqlite-vec).

Single interface for: chunks, the lexical sub-index, per-model dense
sub-indexes, file records, and integrity checks. Writes go through one
connection guarded by a lock, each in a single transaction, so the chunk
table and both sub-indexes change together. Reads use per-thread
connections (WAL mode) and run as single SELECT statements, so a reader
observes either the pre- or post-state of any write.
"""

from __future__ import annotations

import json
import logging
import sqlite3
import threading
from collections.abc import Iterable, Iterator, Sequence
from contextlib import contextmanager
from pathlib import Path

from agentmem.db.connection import Database
from agentmem.db.migrations import run_migrations
from agentmem.db.models import Chunk, FileRecord, SourceCounts
from agentmem.db.vectors import (
    ensure_vec_table,
    list_vec_tables,
    model_to_slug,
    vec_table_name,
)
from agentmem.errors import IndexCorrupt, InvalidResponse

logger = logging.getLogger(__name__)

# SQLite's default SQLITE_MAX_VARIABLE_NUMBER is 999 on older builds.
_MAX_PARAMS = 500

_CHUNK_COLUMNS = "c.rowid AS rowid, c.id, c.path, c.source, c.start_line, c.end_line, c.part, c.text, c.hash, c.model"


class IndexStore:
    """Data access layer for one agent's index file.

    Args:
        db: Database handle for the index file. The store opens and owns its
            connections; call close() when done.
    """

    def __init__(self, db: Database) -> None:
        self._db = db
        self._write_conn = db.connect()
        run_migrations(self._write_conn)
        self._write_lock = threading.RLock()
        self._local = threading.local()
        self._readers: list[sqlite3.Connection] = []
        self._readers_lock = threading.Lock()

    @classmethod
    def open(cls, path: Path | str) -> IndexStore:
        """Open (creating if needed) the index file at *path*."""
        return cls(Database(path))

    @property
    def path(self) -> Path:
        return self._db.db_path

    @property
    def vector_available(self) -> bool:
        """True when sqlite-vec is loaded and dense queries are possible."""
        return self._db.vector_available

    @property
    def lexical_available(self) -> bool:
        """True when the FTS5 sub-index exists."""
        row = self.reader().execute(
            "SELECT name FROM sqlite_master WHERE type='table' AND name='chunks_fts'"
        ).fetchone()
        return row is not None

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def reader(self) -> sqlite3.Connection:
        """Return this thread's read connection, opening it on first use."""
        conn = getattr(self._local, "conn", None)
        if conn is None:
            conn = self._db.connect()
            self._local.conn = conn
            with self._readers_lock:
                self._readers.append(conn)
        return conn

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        """Serialise a write transaction; commits on success, rolls back on error."""
        with self._write_lock:
            conn = self._write_conn
            try:
                yield conn
                conn.commit()
            except BaseException:
                conn.rollback()
                raise

    def close(self) -> None:
        """Close the writer and every reader connection."""
        with self._write_lock:
            self._write_conn.close()
        with self._readers_lock:
            for conn in self._readers:
                conn.close()
            self._readers.clear()
        self._local = threading.local()

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def upsert_chunks(
        self,
        chunks: Sequence[Chunk],
        vectors: Sequence[Sequence[float]] | None = None,
        model: str | None = None,
    ) -> int:
        """Insert or update *chunks* (by id) in the chunk table and FTS index.

        Unchanged chunks (same id and text hash) are left untouched. A chunk
        whose text changed loses every attached vector until re-embedded.
        When *vectors* is given they are attached under *model* in the same
        transaction.

        Returns:
            Number of rows inserted or updated.
        """
        if vectors is not None:
            if model is None:
                raise ValueError("model is required when vectors are given")
            if len(vectors) != len(chunks):
                raise ValueError("vectors must align with chunks")

        written = 0
        with self.transaction() as conn:
            for chunk in chunks:
                row = conn.execute(
                    "SELECT rowid, hash, model FROM chunks WHERE id = ?", (chunk.id,)
                ).fetchone()
                if row is None:
                    cur = conn.execute(
                        """
                        INSERT INTO chunks (id, path, source, start_line, end_line, part, hash, text)
                        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                        """,
                        (
                            chunk.id,
                            chunk.path,
                            chunk.source,
                            chunk.start_line,
                            chunk.end_line,
                            chunk.part,
                            chunk.hash,
                            chunk.text,
                        ),
                    )
                    chunk.rowid = cur.lastrowid
                    conn.execute(
                        "INSERT INTO chunks_fts(rowid, text) VALUES (?, ?)",
                        (chunk.rowid, chunk.text),
                    )
                    chunk.model = None
                    written += 1
                elif row["hash"] != chunk.hash:
                    chunk.rowid = row["rowid"]
                    conn.execute(
                        """
                        UPDATE chunks
                        SET text = ?, hash = ?, model = NULL, updated_at = datetime('now')
                        WHERE rowid = ?
                        """,
                        (chunk.text, chunk.hash, chunk.rowid),
                    )
                    conn.execute("DELETE FROM chunks_fts WHERE rowid = ?", (chunk.rowid,))
                    conn.execute(
                        "INSERT INTO chunks_fts(rowid, text) VALUES (?, ?)",
                        (chunk.rowid, chunk.text),
                    )
                    self._delete_vectors(conn, [chunk.rowid])
                    chunk.model = None
                    written += 1
                else:
                    chunk.rowid = row["rowid"]
                    chunk.model = row["model"]

            if vectors is not None and chunks and self.vector_available:
                self._attach(conn, [c.rowid for c in chunks], vectors, model)
                for c in chunks:
                    c.model = model
        return written

    def attach_vectors(
        self,
        chunk_ids: Sequence[str],
        vectors: Sequence[Sequence[float]],
        model: str,
    ) -> int:
        """Attach (replacing) *vectors* for *chunk_ids* under *model*.

        Ids that no longer exist (deleted by a concurrent sync) are skipped.

        Returns:
            Number of vectors written.
        """
        if len(chunk_ids) != len(vectors):
            raise ValueError("vectors must align with chunk_ids")
        if not chunk_ids:
            return 0
        if not self.vector_available:
            return 0

        with self.transaction() as conn:
            rowids: list[int] = []
            kept: list[Sequence[float]] = []
            for chunk_id, vector in zip(chunk_ids, vectors):
                row = conn.execute(
                    "SELECT rowid FROM chunks WHERE id = ?", (chunk_id,)
                ).fetchone()
                if row is not None:
                    rowids.append(row["rowid"])
                    kept.append(vector)
            if rowids:
                self._attach(conn, rowids, kept, model)
        return len(rowids)

    def get_chunk_by_id(self, chunk_id: str) -> Chunk | None:
        """Return a chunk by its stable id, or None if not found."""
        row = self.reader().execute(
            f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.id = ?", (chunk_id,)
        ).fetchone()
        return _row_to_chunk(row) if row else None

    def chunks_for_path(self, path: str, source: str | None = None) -> list[Chunk]:
        """Return the chunks of *path* ordered by position."""
        sql = f"SELECT {_CHUNK_COLUMNS} FROM chunks c WHERE c.path = ?"
        params: list[object] = [path]
        if source is not None:
            sql += " AND c.source = ?"
            params.append(source)
        sql += " ORDER BY c.start_line, c.part, c.end_line"
        return [_row_to_chunk(r) for r in self.reader().execute(sql, params).fetchall()]

    def chunks_missing_vectors(self, model: str, limit: int | None = None) -> list[Chunk]:
        """Return chunks that have no vector under *model* (oldest first)."""
        if not self.vector_available:
            return []
        table = self.model_table(model)
        sql = f"SELECT {_CHUNK_COLUMNS} FROM chunks c"
        if table is not None:
            sql += f" WHERE c.rowid NOT IN (SELECT rowid FROM {table})"
        sql += " ORDER BY c.rowid"
        if limit is not None:
            sql += f" LIMIT {int(limit)}"
        return [_row_to_chunk(r) for r in self.reader().execute(sql).fetchall()]

    def delete_by_path(self, path: str, source: str | None = None) -> int:
        """Delete every chunk (and its sub-index rows) plus the file record of *path*.

        Returns:
            Number of chunks deleted.
        """
        with self.transaction() as conn:
            sql = "SELECT rowid FROM chunks WHERE path = ?"
            params: list[object] = [path]
            if source is not None:
                sql += " AND source = ?"
                params.append(source)
            rowids = [r[0] for r in conn.execute(sql, params).fetchall()]
            self._delete_rowids(conn, rowids)
            file_sql = "DELETE FROM files WHERE path = ?"
            if source is not None:
                file_sql += " AND source = ?"
            conn.execute(file_sql, params)
        return len(rowids)

    def delete_stale(self, path: str, source: str, keep_ids: Iterable[str]) -> int:
        """Delete chunks of *path* whose id is not in *keep_ids*.

        Returns:
            Number of chunks deleted.
        """
        keep = set(keep_ids)
        with self.transaction() as conn:
            rows = conn.execute(
                "SELECT rowid, id FROM chunks WHERE path = ? AND source = ?",
                (path, source),
            ).fetchall()
            stale = [r["rowid"] for r in rows if r["id"] not in keep]
            self._delete_rowids(conn, stale)
        return len(stale)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def vector_query(
        self,
        vector: Sequence[float],
        model: str,
        sources: Sequence[str],
        limit: int,
    ) -> list[tuple[Chunk, float]]:
        """Nearest chunks to *vector* among those embedded under *model*.

        Only *model*'s own vec table is consulted, so entries embedded by any
        other model can never appear. Chunks without a vector are absent.

        Returns:
            (chunk, cosine distance) pairs, closest first.

        Raises:
            InvalidResponse: If *vector* does not match the model's dimensionality.
        """
        if not self.vector_available or not sources or limit < 1:
            return []
        row = self.reader().execute(
            "SELECT slug, dimensions FROM vec_models WHERE model = ?", (model,)
        ).fetchone()
        if row is None:
            return []
        dims = row["dimensions"]
        if len(vector) != dims:
            raise InvalidResponse(
                f"Query vector has {len(vector)} dimensions; '{model}' is indexed with {dims}.",
                provider=model,
            )
        table = vec_table_name(row["slug"])
        placeholders = ",".join("?" * len(sources))
        rows = self.reader().execute(
            f"""
            SELECT {_CHUNK_COLUMNS}, vec_distance_cosine(v.embedding, ?) AS distance
            FROM {table} v
            JOIN chunks c ON c.rowid = v.rowid
            WHERE c.source IN ({placeholders})
            ORDER BY distance ASC, c.rowid ASC
            LIMIT ?
            """,
            (json.dumps(list(vector)), *sources, limit),
        ).fetchall()
        return [(_row_to_chunk(r), r["distance"]) for r in rows]

    def lexical_query(
        self,
        fts_query: str,
        sources: Sequence[str],
        limit: int,
    ) -> list[tuple[Chunk, float]]:
        """BM25 full-text search. Returns (chunk, rank) sorted best-first.

        bm25() returns negative values; lower (more negative) = better match.
        The raw rank is returned so callers can convert it to a score.
        """
        if not fts_query or not sources or limit < 1:
            return []
        placeholders = ",".join("?" * len(sources))
        rows = self.reader().execute(
            f"""
            SELECT {_CHUNK_COLUMNS}, bm25(chunks_fts) AS rank
            FROM chunks_fts
            JOIN chunks c ON c.rowid = chunks_fts.rowid
            WHERE chunks_fts MATCH ? AND c.source IN ({placeholders})
            ORDER BY rank ASC
            LIMIT ?
            """,
            (fts_query, *sources, limit),
        ).fetchall()
        return [(_row_to_chunk(r), r["rank"]) for r in rows]

    def get_file_slice(
        self,
        path: str,
        from_line: int = 1,
        line_count: int | None = None,
        source: str | None = None,
    ) -> str | None:
        """Rebuild lines of the indexed version of *path* from its chunks.

        Lines not covered by any chunk (blank separators) come back empty.

        Returns:
            The requested slice, or None if *path* has no indexed chunks.
        """
        chunks = self.chunks_for_path(path, source)
        if not chunks:
            return None

        lines: dict[int, str] = {}
        segments: dict[int, list[tuple[int, str]]] = {}
        split_lines = {c.start_line for c in chunks if c.part > 0}
        for chunk in chunks:
            if chunk.start_line in split_lines and chunk.start_line == chunk.end_line:
                segments.setdefault(chunk.start_line, []).append((chunk.part, chunk.text))
                continue
            body = chunk.text.split("\n")
            if len(body) != chunk.end_line - chunk.start_line + 1:
                continue
            for offset, line in enumerate(body):
                lines.setdefault(chunk.start_line + offset, line)
        for line_no, parts in segments.items():
            lines[line_no] = "".join(text for _, text in sorted(parts))

        last = max(c.end_line for c in chunks)
        start = max(1, from_line)
        end = last if line_count is None else min(last, start + line_count - 1)
        return "\n".join(lines.get(i, "") for i in range(start, end + 1))

    # ------------------------------------------------------------------
    # File records
    # ------------------------------------------------------------------

    def get_file(self, path: str, source: str) -> FileRecord | None:
        """Return the last indexed state of *path*, or None."""
        row = self.reader().execute(
            "SELECT path, source, hash, mtime, size, indexed_at FROM files WHERE path = ? AND source = ?",
            (path, source),
        ).fetchone()
        return _row_to_file(row) if row else None

    def list_files(self, source: str | None = None) -> list[FileRecord]:
        """Return indexed file records ordered by path."""
        sql = "SELECT path, source, hash, mtime, size, indexed_at FROM files"
        params: tuple[object, ...] = ()
        if source is not None:
            sql += " WHERE source = ?"
            params = (source,)
        sql += " ORDER BY path"
        return [_row_to_file(r) for r in self.reader().execute(sql, params).fetchall()]

    def upsert_file(self, record: FileRecord) -> None:
        """Record *record* as the last indexed state of its path."""
        with self.transaction() as conn:
            conn.execute(
                """
                INSERT INTO files (path, source, hash, mtime, size)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(path, source) DO UPDATE SET
                    hash = excluded.hash,
                    mtime = excluded.mtime,
                    size = excluded.size,
                    indexed_at = datetime('now')
                """,
                (record.path, record.source, record.hash, record.mtime, record.size),
            )

    def indexed_paths(self) -> set[tuple[str, str]]:
        """Every (path, source) with a file record or at least one chunk."""
        rows = self.reader().execute(
            "SELECT path, source FROM files UNION SELECT DISTINCT path, source FROM chunks"
        ).fetchall()
        return {(r["path"], r["source"]) for r in rows}

    def delete_file(self, path: str, source: str) -> None:
        """Forget the file record of *path* (its chunks are left alone)."""
        with self.transaction() as conn:
            conn.execute("DELETE FROM files WHERE path = ? AND source = ?", (path, source))

    # ------------------------------------------------------------------
    # Models, meta, counts
    # ------------------------------------------------------------------

    def model_dimensions(self, model: str) -> int | None:
        """Return the registered dimensionality of *model*, or None if unseen."""
        row = self.reader().execute(
            "SELECT dimensions FROM vec_models WHERE model = ?", (model,)
        ).fetchone()
        return row["dimensions"] if row else None

    def model_table(self, model: str) -> str | None:
        """Return the vec table registered for *model*, or None if unseen."""
        row = self.reader().execute(
            "SELECT slug FROM vec_models WHERE model = ?", (model,)
        ).fetchone()
        return vec_table_name(row["slug"]) if row else None

    def get_meta(self, key: str) -> str | None:
        row = self.reader().execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self.transaction() as conn:
            conn.execute(
                "INSERT INTO meta (key, value) VALUES (?, ?) "
                "ON CONFLICT(key) DO UPDATE SET value = excluded.value",
                (key, value),
            )

    def count_chunks(self) -> int:
        return self.reader().execute("SELECT COUNT(*) FROM chunks").fetchone()[0]

    def counts_by_source(self) -> dict[str, SourceCounts]:
        """Return file and chunk totals per source tag."""
        conn = self.reader()
        counts: dict[str, SourceCounts] = {}
        for row in conn.execute("SELECT source, COUNT(*) AS n FROM files GROUP BY source"):
            counts.setdefault(row["source"], SourceCounts(row["source"])).files = row["n"]
        for row in conn.execute("SELECT source, COUNT(*) AS n FROM chunks GROUP BY source"):
            counts.setdefault(row["source"], SourceCounts(row["source"])).chunks = row["n"]
        return counts

    # ------------------------------------------------------------------
    # Integrity / rebuild
    # ------------------------------------------------------------------

    def check_integrity(self) -> None:
        """Verify that chunk rows and both sub-indexes agree.

        Raises:
            IndexCorrupt: If an FTS or vec row has no chunk row, a chunk has no
                FTS row, or a registered model has lost its vec table.
        """
        conn = self.reader()
        problems: list[str] = []

        orphan_fts = conn.execute(
            "SELECT COUNT(*) FROM chunks_fts WHERE rowid NOT IN (SELECT rowid FROM chunks)"
        ).fetchone()[0]
        if orphan_fts:
            problems.append(f"{orphan_fts} lexical row(s) without a chunk")

        missing_fts = conn.execute(
            "SELECT COUNT(*) FROM chunks WHERE rowid NOT IN (SELECT rowid FROM chunks_fts)"
        ).fetchone()[0]
        if missing_fts:
            problems.append(f"{missing_fts} chunk(s) missing from the lexical index")

        if self.vector_available:
            tables = set(list_vec_tables(conn))
            for row in conn.execute("SELECT model, slug FROM vec_models").fetchall():
                table = vec_table_name(row["slug"])
                if table not in tables:
                    problems.append(f"vec table for '{row['model']}' is missing")
                    continue
                orphans = conn.execute(
                    f"SELECT COUNT(*) FROM {table} WHERE rowid NOT IN (SELECT rowid FROM chunks)"
                ).fetchone()[0]
                if orphans:
                    problems.append(f"{orphans} dense row(s) in {table} without a chunk")

        if problems:
            raise IndexCorrupt(f"Index '{self.path}' is corrupt: " + "; ".join(problems))

    def reset(self) -> None:
        """Drop every corpus-derived row so the index can be rebuilt.

        The embedding cache and meta table survive, so a rebuild does not
        repeat embedding calls.
        """
        with self.transaction() as conn:
            if self.vector_available:
                for table in list_vec_tables(conn):
                    conn.execute(f"DROP TABLE IF EXISTS {table}")
            conn.execute("DELETE FROM vec_models")
            conn.execute("DELETE FROM chunks_fts")
            conn.execute("DELETE FROM chunks")
            conn.execute("DELETE FROM files")
        logger.info("Index %s reset for rebuild", self.path)

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _attach(
        self,
        conn: sqlite3.Connection,
        rowids: Sequence[int | None],
        vectors: Sequence[Sequence[float]],
        model: str,
    ) -> None:
        dims = len(vectors[0])
        if any(len(v) != dims for v in vectors):
            raise InvalidResponse("Vectors in one batch differ in dimensionality.", provider=model)

        row = conn.execute(
            "SELECT slug, dimensions FROM vec_models WHERE model = ?", (model,)
        ).fetchone()
        if row is None:
            slug = model_to_slug(model)
            ensure_vec_table(conn, slug, dims)
            conn.execute(
                "INSERT INTO vec_models (model, slug, dimensions) VALUES (?, ?, ?)",
                (model, slug, dims),
            )
        else:
            slug = row["slug"]
            if row["dimensions"] != dims:
                raise InvalidResponse(
                    f"'{model}' returned {dims} dimensions; index expects {row['dimensions']}.",
                    provider=model,
                )

        table = vec_table_name(slug)
        for rowid, vector in zip(rowids, vectors):
            conn.execute(f"DELETE FROM {table} WHERE rowid = ?", (rowid,))
            conn.execute(
                f"INSERT INTO {table}(rowid, embedding) VALUES (?, ?)",
                (rowid, json.dumps(list(vector))),
            )
            conn.execute("UPDATE chunks SET model = ? WHERE rowid = ?", (model, rowid))

    def _delete_vectors(self, conn: sqlite3.Connection, rowids: Sequence[int]) -> None:
        if not rowids or not self.vector_available:
            return
        for table in list_vec_tables(conn):
            for batch in _batched(rowids):
                placeholders = ",".join("?" * len(batch))
                conn.execute(
                    f"DELETE FROM {table} WHERE rowid IN ({placeholders})",  # noqa: S608
                    batch,
                )

    def _delete_rowids(self, conn: sqlite3.Connection, rowids: Sequence[int]) -> None:
        """Delete chunks + FTS + vec rows (cascade not available on virtual tables)."""
        if not rowids:
            return
        self._delete_vectors(conn, rowids)
        for batch in _batched(rowids):
            placeholders = ",".join("?" * len(batch))
            conn.execute(f"DELETE FROM chunks_fts WHERE rowid IN ({placeholders})", batch)
            conn.execute(f"DELETE FROM chunks WHERE rowid IN ({placeholders})", batch)


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _batched(items: Sequence[int]) -> Iterator[list[int]]:
    for i in range(0, len(items), _MAX_PARAMS):
        yield list(items[i : i + _MAX_PARAMS])


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        rowid=row["rowid"],
        id=row["id"],
        path=row["path"],
        source=row["source"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        part=row["part"],
        text=row["text"],
        hash=row["hash"],
        model=row["model"],
    )


def _row_to_file(row: sqlite3.Row) -> FileRecord:
    return FileRecord(
        path=row["path"],
        source=row["source"],
        hash=row["hash"],
        mtime=row["mtime"],
        size=row["size"],
        indexed_at=row["indexed_at"],
    )
