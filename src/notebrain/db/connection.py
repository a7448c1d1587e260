"""SQLite connection layer with sqlite-vec extension."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import sqlite_vec


class Database:
    """Memory index database (SQLite + FTS5 + sqlite-vec).

    The file is fully derived from the notebook and may be deleted at any time
    to force a rebuild.
    """

    def __init__(self, db_path: Path | str, busy_timeout_ms: int = 5000) -> None:
        """Store the database path. Call connect() to open the connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
            busy_timeout_ms: How long a writer waits on a locked database.
        """
        self.db_path = Path(db_path)
        self.busy_timeout_ms = busy_timeout_ms
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Open a connection, load sqlite-vec, and return the connection.

        The connection may be used from the watcher and timer threads; callers
        serialize access through :class:`~notebrain.db.repository.Repository`.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(self.db_path, check_same_thread=False)
        conn.row_factory = sqlite3.Row
        conn.enable_load_extension(True)
        sqlite_vec.load(conn)
        conn.enable_load_extension(False)
        conn.execute("PRAGMA foreign_keys = ON")
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute(f"PRAGMA busy_timeout = {int(self.busy_timeout_ms)}")
        self._conn = conn
        return conn

    def close(self) -> None:
        """Close the connection opened by connect(), if any."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        return self.connect()

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        self.close()
