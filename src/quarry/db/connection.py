"""SQLite connection layer (WAL mode, one writer / many readers)."""

from __future__ import annotations

import sqlite3
from pathlib import Path


class Database:
    """Per-project SQLite database file holding the chunk table."""

    def __init__(self, db_path: Path | str) -> None:
        """Store the database path. Call connect() to open a connection.

        Args:
            db_path: Path to the SQLite database file (created if missing).
        """
        self.db_path = Path(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self, *, check_same_thread: bool = True) -> sqlite3.Connection:
        """Open a connection with WAL journaling and return it.

        WAL lets readers keep a consistent snapshot while the single writer
        commits, so searches are never blocked by an indexing run.

        Args:
            check_same_thread: Passed to sqlite3; the store disables it for the
                lock-guarded writer connection.
        """
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self.db_path, timeout=30.0, check_same_thread=check_same_thread
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        conn.execute("PRAGMA temp_store = MEMORY")
        conn.execute("PRAGMA cache_size = -32000")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        """Open the database and return the connection (context manager support)."""
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        """Close the connection when leaving the context manager."""
        if self._conn:
            self._conn.close()
            self._conn = None
