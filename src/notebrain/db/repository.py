"""Repository pattern for all memory index database operations.

Single interface for: file records, chunks, FTS5 search, vec embeddings,
the embedding cache and index metadata. The vec table is dimension-managed
(ensure_vec_table / drop_vec_table); the repository handles read + write.

The connection is shared between the sync threads (the only writer) and
readers, so every public method holds a re-entrant lock and commits its own
transaction.
"""

from __future__ import annotations

import logging
import re
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from notebrain.db.models import Chunk, FileRecord, IndexMeta, IndexStatus
from notebrain.db.vectors import (
    VEC_TABLE,
    deserialize,
    drop_vec_table,
    ensure_vec_table,
    serialize,
    vec_table_exists,
)

logger = logging.getLogger(__name__)

_TOKEN_RE = re.compile(r"\w+", re.UNICODE)

# meta table keys
META_PROVIDER = "embeddings_provider"
META_MODEL = "embeddings_model"
META_DIMENSIONS = "dimensions"
META_CHUNK_MAX = "chunk_max_chars"
META_CHUNK_OVERLAP = "chunk_overlap_chars"
META_LAST_SYNC = "last_sync"


class Repository:
    """Data access layer for the memory index.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with sqlite-vec loaded and schema
                initialised (see notebrain.db.schema.initialize).
        """
        self._conn = conn
        self._lock = threading.RLock()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        with self._lock:
            try:
                yield self._conn
                self._conn.commit()
            except BaseException:
                self._conn.rollback()
                raise

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def get_file(self, path: str) -> FileRecord | None:
        """Return the file record for *path*, or None if it is not indexed."""
        with self._lock:
            row = self._conn.execute(
                "SELECT path, hash, mtime, size, indexed_at, indexed_with_embeddings "
                "FROM files WHERE path = ?",
                (path,),
            ).fetchone()
        return _row_to_file(row) if row else None

    def upsert_file(self, record: FileRecord) -> None:
        """Insert or replace the record for ``record.path``."""
        with self._transaction() as conn:
            conn.execute(
                """
                INSERT OR REPLACE INTO files
                    (path, hash, mtime, size, indexed_at, indexed_with_embeddings)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    record.path,
                    record.hash,
                    record.mtime,
                    record.size,
                    record.indexed_at,
                    1 if record.indexed_with_embeddings else 0,
                ),
            )

    def delete_file(self, path: str) -> None:
        """Delete the file record only. Chunks are left alone; see remove_file()."""
        with self._transaction() as conn:
            conn.execute("DELETE FROM files WHERE path = ?", (path,))

    def set_indexed_with_embeddings(self, path: str, value: bool) -> None:
        with self._transaction() as conn:
            conn.execute(
                "UPDATE files SET indexed_with_embeddings = ? WHERE path = ?",
                (1 if value else 0, path),
            )

    def list_files(self) -> list[FileRecord]:
        """Return all file records ordered by path."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT path, hash, mtime, size, indexed_at, indexed_with_embeddings "
                "FROM files ORDER BY path"
            ).fetchall()
        return [_row_to_file(r) for r in rows]

    def remove_file(self, path: str) -> int:
        """Drop every index row for *path* (chunks, FTS, vectors, record).

        Returns:
            Number of chunks removed.
        """
        with self._transaction() as conn:
            removed = self._delete_chunks(conn, path)
            conn.execute("DELETE FROM files WHERE path = ?", (path,))
        return removed

    # ------------------------------------------------------------------
    # Chunks
    # ------------------------------------------------------------------

    def insert_chunk(self, chunk: Chunk) -> int:
        """Insert chunk + mirror it into FTS5. Returns the new chunk id."""
        with self._transaction() as conn:
            cur = conn.execute(
                """
                INSERT INTO chunks (file_path, heading, start_line, end_line, text, hash)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    chunk.file_path,
                    chunk.heading,
                    chunk.start_line,
                    chunk.end_line,
                    chunk.text,
                    chunk.hash,
                ),
            )
            chunk_id = cur.lastrowid
            # Keep FTS5 in sync with explicit rowid mapping
            conn.execute(
                "INSERT INTO chunks_fts(rowid, text, heading, file_path) VALUES (?, ?, ?, ?)",
                (chunk_id, chunk.text, chunk.heading or "", chunk.file_path),
            )
        chunk.id = chunk_id
        return chunk_id

    def get_chunk(self, chunk_id: int) -> Chunk | None:
        """Return a chunk by id, or None if it no longer exists."""
        with self._lock:
            row = self._conn.execute(
                "SELECT id, file_path, heading, start_line, end_line, text, hash "
                "FROM chunks WHERE id = ?",
                (chunk_id,),
            ).fetchone()
        return _row_to_chunk(row) if row else None

    def get_chunks_for_file(self, path: str) -> list[Chunk]:
        """Return the chunks of *path* in document order."""
        with self._lock:
            rows = self._conn.execute(
                "SELECT id, file_path, heading, start_line, end_line, text, hash "
                "FROM chunks WHERE file_path = ? ORDER BY start_line, id",
                (path,),
            ).fetchall()
        return [_row_to_chunk(r) for r in rows]

    def count_chunks(self, path: str | None = None) -> int:
        """Return the number of chunks, optionally restricted to one file."""
        with self._lock:
            if path is None:
                return self._conn.execute("SELECT COUNT(*) FROM chunks").fetchone()[0]
            return self._conn.execute(
                "SELECT COUNT(*) FROM chunks WHERE file_path = ?", (path,)
            ).fetchone()[0]

    def delete_chunks_for_file(self, path: str) -> list[int]:
        """Delete chunks + FTS rows + vectors for *path* in one transaction.

        Returns:
            The ids of the deleted chunks.
        """
        with self._transaction() as conn:
            ids = self._chunk_ids(conn, path)
            self._delete_chunk_ids(conn, ids)
        return ids

    def _chunk_ids(self, conn: sqlite3.Connection, path: str) -> list[int]:
        return [
            r[0]
            for r in conn.execute("SELECT id FROM chunks WHERE file_path = ?", (path,)).fetchall()
        ]

    def _delete_chunks(self, conn: sqlite3.Connection, path: str) -> int:
        ids = self._chunk_ids(conn, path)
        self._delete_chunk_ids(conn, ids)
        return len(ids)

    def _delete_chunk_ids(self, conn: sqlite3.Connection, ids: list[int]) -> None:
        if not ids:
            return
        placeholders = ",".join("?" * len(ids))
        conn.execute(f"DELETE FROM chunks_fts WHERE rowid IN ({placeholders})", ids)
        # No vec table yet (embeddings never configured); nothing to delete.
        if vec_table_exists(conn):
            conn.executemany(f"DELETE FROM {VEC_TABLE} WHERE rowid = ?", [(i,) for i in ids])
        conn.execute(f"DELETE FROM chunks WHERE id IN ({placeholders})", ids)

    # ------------------------------------------------------------------
    # Vec embeddings
    # ------------------------------------------------------------------

    def insert_vector(self, chunk_id: int, embedding: list[float]) -> None:
        """Insert an embedding into chunks_vec with rowid = chunk id.

        Raises:
            RuntimeError: If no vector index exists yet.
        """
        with self._transaction() as conn:
            if not vec_table_exists(conn):
                raise RuntimeError(
                    "No vector index exists. Activate an embedding provider first."
                )
            conn.execute(
                f"INSERT INTO {VEC_TABLE}(rowid, embedding) VALUES (?, ?)",
                (chunk_id, serialize(embedding)),
            )

    def delete_vectors(self, chunk_ids: list[int]) -> None:
        """Drop the vectors of *chunk_ids*, keeping the chunks themselves."""
        with self._transaction() as conn:
            if chunk_ids and vec_table_exists(conn):
                conn.executemany(
                    f"DELETE FROM {VEC_TABLE} WHERE rowid = ?", [(i,) for i in chunk_ids]
                )

    def count_vectors(self) -> int:
        """Return the number of stored vectors (0 when there is no vector index)."""
        with self._lock:
            if not vec_table_exists(self._conn):
                return 0
            return self._conn.execute(f"SELECT COUNT(*) FROM {VEC_TABLE}").fetchone()[0]

    def vector_dimensions(self) -> int | None:
        """Return the dimensionality recorded for the vector index."""
        value = self.get_meta(META_DIMENSIONS)
        return int(value) if value else None

    def has_vector_index(self) -> bool:
        with self._lock:
            return vec_table_exists(self._conn)

    def drop_and_recreate_vector_index(self, dimensions: int) -> None:
        """Drop every vector and the embedding cache; recreate at *dimensions*."""
        with self._transaction() as conn:
            drop_vec_table(conn)
            conn.execute("DELETE FROM embedding_cache")
            conn.execute("UPDATE files SET indexed_with_embeddings = 0")
            ensure_vec_table(conn, dimensions)
            self._set_meta(conn, META_DIMENSIONS, str(dimensions))

    def reset_vector_index(self, provider_id: str, model: str, dimensions: int) -> bool:
        """Align the vector index with the active provider.

        Drops vectors and the embedding cache when the provider, the model or
        the dimensionality differs from what the index was built with, then
        (re)creates the vector table and records the new provider/model.

        Returns:
            True if the existing vector space was discarded.
        """
        meta = self.get_index_meta()
        changed = (
            meta.embeddings_provider != provider_id
            or meta.embeddings_model != model
            or (meta.dimensions is not None and meta.dimensions != dimensions)
        )
        with self._lock:
            if changed:
                logger.info(
                    "Embedding space changed (%s/%s/%s -> %s/%s/%s); dropping vectors",
                    meta.embeddings_provider,
                    meta.embeddings_model,
                    meta.dimensions,
                    provider_id,
                    model,
                    dimensions,
                )
                self.drop_and_recreate_vector_index(dimensions)
            else:
                with self._transaction() as conn:
                    ensure_vec_table(conn, dimensions)
                    self._set_meta(conn, META_DIMENSIONS, str(dimensions))
            self.set_index_meta(embeddings_provider=provider_id, embeddings_model=model)
        return changed

    def vector_search(self, embedding: list[float], limit: int = 15) -> list[tuple[int, float]]:
        """Nearest-neighbour search. Returns (chunk_id, distance), closest first."""
        with self._lock:
            if not vec_table_exists(self._conn):
                return []
            rows = self._conn.execute(
                f"SELECT rowid, distance FROM {VEC_TABLE} "
                "WHERE embedding MATCH ? AND k = ? ORDER BY distance",
                (serialize(embedding), limit),
            ).fetchall()
        return [(int(r["rowid"]), float(r["distance"])) for r in rows]

    # ------------------------------------------------------------------
    # Embedding cache
    # ------------------------------------------------------------------

    def get_cached_embedding(self, content_hash: str, model: str) -> list[float] | None:
        with self._lock:
            row = self._conn.execute(
                "SELECT embedding FROM embedding_cache WHERE hash = ? AND model = ?",
                (content_hash, model),
            ).fetchone()
        return deserialize(row["embedding"]) if row else None

    def cache_embedding(self, content_hash: str, model: str, embedding: list[float]) -> None:
        with self._transaction() as conn:
            conn.execute(
                "INSERT OR REPLACE INTO embedding_cache (hash, model, embedding) VALUES (?, ?, ?)",
                (content_hash, model, serialize(embedding)),
            )

    def count_cached_embeddings(self) -> int:
        with self._lock:
            return self._conn.execute("SELECT COUNT(*) FROM embedding_cache").fetchone()[0]

    # ------------------------------------------------------------------
    # FTS5 / BM25 search
    # ------------------------------------------------------------------

    def lexical_search(self, query: str, limit: int = 15) -> list[tuple[int, float]]:
        """BM25 full-text search over chunk text and heading.

        Returns (chunk_id, bm25) pairs best-first. bm25() is negative; lower is
        better. Query words are quoted and OR-ed so punctuation and FTS5
        operators in user input cannot break the MATCH expression; anything
        that still fails to parse yields an empty result.
        """
        tokens = query_tokens(query)
        if not tokens:
            return []
        fts_query = " OR ".join(f'"{t}"' for t in dict.fromkeys(tokens))
        try:
            with self._lock:
                rows = self._conn.execute(
                    "SELECT rowid, bm25(chunks_fts) AS score FROM chunks_fts "
                    "WHERE chunks_fts MATCH ? ORDER BY score LIMIT ?",
                    (fts_query, limit),
                ).fetchall()
        except sqlite3.OperationalError as exc:
            logger.debug("FTS query %r rejected: %s", fts_query, exc)
            return []
        return [(int(r["rowid"]), float(r["score"])) for r in rows]

    # ------------------------------------------------------------------
    # Index metadata
    # ------------------------------------------------------------------

    def get_meta(self, key: str) -> str | None:
        with self._lock:
            row = self._conn.execute("SELECT value FROM meta WHERE key = ?", (key,)).fetchone()
        return row["value"] if row else None

    def set_meta(self, key: str, value: str) -> None:
        with self._transaction() as conn:
            self._set_meta(conn, key, value)

    def delete_meta(self, key: str) -> None:
        with self._transaction() as conn:
            conn.execute("DELETE FROM meta WHERE key = ?", (key,))

    @staticmethod
    def _set_meta(conn: sqlite3.Connection, key: str, value: str) -> None:
        conn.execute("INSERT OR REPLACE INTO meta (key, value) VALUES (?, ?)", (key, value))

    def get_index_meta(self) -> IndexMeta:
        def _int(key: str) -> int | None:
            value = self.get_meta(key)
            return int(value) if value else None

        return IndexMeta(
            embeddings_provider=self.get_meta(META_PROVIDER),
            embeddings_model=self.get_meta(META_MODEL),
            dimensions=_int(META_DIMENSIONS),
            chunk_max_chars=_int(META_CHUNK_MAX),
            chunk_overlap_chars=_int(META_CHUNK_OVERLAP),
            last_sync=self.get_meta(META_LAST_SYNC),
        )

    _META_FIELDS = {
        "embeddings_provider": META_PROVIDER,
        "embeddings_model": META_MODEL,
        "dimensions": META_DIMENSIONS,
        "chunk_max_chars": META_CHUNK_MAX,
        "chunk_overlap_chars": META_CHUNK_OVERLAP,
        "last_sync": META_LAST_SYNC,
    }

    def set_index_meta(self, **fields: str | int | None) -> None:
        """Update IndexMeta fields by name; None deletes the key."""
        unknown = set(fields) - set(self._META_FIELDS)
        if unknown:
            raise ValueError(f"Unknown index meta field(s): {', '.join(sorted(unknown))}")
        with self._transaction() as conn:
            for name, value in fields.items():
                key = self._META_FIELDS[name]
                if value is None:
                    conn.execute("DELETE FROM meta WHERE key = ?", (key,))
                else:
                    self._set_meta(conn, key, str(value))

    # ------------------------------------------------------------------
    # Status + maintenance
    # ------------------------------------------------------------------

    def get_status(self) -> IndexStatus:
        meta = self.get_index_meta()
        with self._lock:
            files = self._conn.execute("SELECT COUNT(*) FROM files").fetchone()[0]
        return IndexStatus(
            files_indexed=files,
            total_chunks=self.count_chunks(),
            total_vectors=self.count_vectors(),
            cached_embeddings=self.count_cached_embeddings(),
            last_sync=meta.last_sync,
            embeddings_ready=meta.dimensions is not None and self.has_vector_index(),
            embeddings_provider=meta.embeddings_provider,
            embeddings_model=meta.embeddings_model,
            dimensions=meta.dimensions,
        )

    def clear_all(self) -> None:
        """Delete every derived row plus the file records (used by rebuild).

        The vector table itself is kept (emptied) so its dimensionality
        survives; index metadata is kept too.
        """
        with self._transaction() as conn:
            conn.execute("DELETE FROM chunks_fts")
            if vec_table_exists(conn):
                conn.execute(f"DELETE FROM {VEC_TABLE}")
            conn.execute("DELETE FROM chunks")
            conn.execute("DELETE FROM files")
            conn.execute("DELETE FROM embedding_cache")


# ------------------------------------------------------------------
# Row → model helpers
# ------------------------------------------------------------------


def _row_to_file(row: sqlite3.Row) -> FileRecord:
    return FileRecord(
        path=row["path"],
        hash=row["hash"],
        mtime=row["mtime"],
        size=row["size"],
        indexed_at=row["indexed_at"],
        indexed_with_embeddings=bool(row["indexed_with_embeddings"]),
    )


def _row_to_chunk(row: sqlite3.Row) -> Chunk:
    return Chunk(
        id=row["id"],
        file_path=row["file_path"],
        heading=row["heading"],
        start_line=row["start_line"],
        end_line=row["end_line"],
        text=row["text"],
        hash=row["hash"],
    )


def query_tokens(query: str) -> list[str]:
    """Lowercased word tokens of *query*, punctuation dropped."""
    return _TOKEN_RE.findall(query.lower())
