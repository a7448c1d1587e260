"""Database schema initialization."""

from __future__ import annotations

import sqlite3

from notebrain.db.migrations import MIGRATIONS, run_migrations

CURRENT_VERSION = MIGRATIONS[-1][0]

# Tables every initialized database must contain (vector table excluded).
REQUIRED_TABLES: frozenset[str] = frozenset(
    ["schema_version", "files", "chunks", "chunks_fts", "embedding_cache", "meta"]
)


def initialize(conn: sqlite3.Connection) -> None:
    """Initialize the database schema via the migration runner (idempotent)."""
    run_migrations(conn)
