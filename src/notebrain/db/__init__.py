"""Memory index database layer."""

from notebrain.db.connection import Database
from notebrain.db.migrations import MIGRATIONS, run_migrations
from notebrain.db.models import Chunk, FileRecord, IndexMeta, IndexStatus
from notebrain.db.repository import Repository
from notebrain.db.schema import initialize
from notebrain.db.vectors import VEC_TABLE, drop_vec_table, ensure_vec_table, vec_table_exists

__all__ = [
    "Database",
    "Repository",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "Chunk",
    "FileRecord",
    "IndexMeta",
    "IndexStatus",
    "VEC_TABLE",
    "ensure_vec_table",
    "drop_vec_table",
    "vec_table_exists",
]
