"""sqlite-vec virtual table management for chunk embeddings.

There is exactly one vector table. Its dimensionality is fixed when it is
created; switching to a model with a different output size means dropping
and recreating it (mixed-dimension vectors are never stored together).
"""

from __future__ import annotations

import json
import sqlite3

VEC_TABLE = "chunks_vec"


def vec_table_exists(conn: sqlite3.Connection) -> bool:
    """Return True if the vector table has been created."""
    row = conn.execute(
        "SELECT name FROM sqlite_master WHERE type='table' AND name=?", (VEC_TABLE,)
    ).fetchone()
    return row is not None


def ensure_vec_table(conn: sqlite3.Connection, dimensions: int) -> str:
    """Create the chunks_vec virtual table if it doesn't already exist.

    Args:
        conn: Active database connection (sqlite-vec must be loaded).
        dimensions: Embedding vector dimensions (e.g. 768 for nomic-embed-text).

    Returns:
        The table name.

    Does not commit; the caller owns the transaction.
    """
    if dimensions < 1:
        raise ValueError(f"dimensions must be >= 1, got {dimensions}")

    if not vec_table_exists(conn):
        conn.execute(
            f"CREATE VIRTUAL TABLE {VEC_TABLE} USING vec0(embedding float[{int(dimensions)}])"
        )
    return VEC_TABLE


def drop_vec_table(conn: sqlite3.Connection) -> None:
    """Drop the vector table if present. Does not commit."""
    conn.execute(f"DROP TABLE IF EXISTS {VEC_TABLE}")


def serialize(embedding: list[float]) -> str:
    """Encode a vector in the JSON form accepted by sqlite-vec."""
    return json.dumps(embedding)


def deserialize(raw: str) -> list[float]:
    """Decode a vector previously stored with serialize()."""
    return json.loads(raw)
