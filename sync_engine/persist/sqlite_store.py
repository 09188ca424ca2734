"""
Shared SQLite connection handling for engine stores.

Each store owns one connection opened in WAL mode and serializes its
writes through a lock, so several asyncio tasks and worker threads can
share it safely.
"""

import sqlite3
import threading
from pathlib import Path


class SQLiteStore:
    """
    File-backed SQLite store base class.

    Subclasses provide `SCHEMA`, a list of DDL statements run on open.
    Thread-safe with WAL mode and a per-store write lock.
    """

    SCHEMA: list[str] = []

    def __init__(self, db_path: Path | str):
        """
        Open (or create) the database at the given path.

        Args:
            db_path: Path to SQLite database file, or ":memory:"
        """
        self.db_path = Path(db_path) if str(db_path) != ":memory:" else db_path
        if isinstance(self.db_path, Path):
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._conn = sqlite3.connect(
            str(db_path),
            check_same_thread=False,  # Allow multi-threaded access
            timeout=10.0,
        )
        self._conn.row_factory = sqlite3.Row
        self._lock = threading.RLock()

        self._conn.execute("PRAGMA journal_mode=WAL")
        self._conn.execute("PRAGMA synchronous=NORMAL")
        self._conn.execute("PRAGMA foreign_keys=ON")

        self._init_tables()

    def _init_tables(self) -> None:
        """Create tables and indexes if they don't exist."""
        with self._lock:
            for statement in self.SCHEMA:
                self._conn.execute(statement)
            self._conn.commit()

    def _execute(self, sql: str, params: tuple | list = ()) -> sqlite3.Cursor:
        """Run one write statement and commit it under the store lock."""
        with self._lock:
            cursor = self._conn.execute(sql, params)
            self._conn.commit()
            return cursor

    def _fetchone(self, sql: str, params: tuple | list = ()) -> sqlite3.Row | None:
        with self._lock:
            return self._conn.execute(sql, params).fetchone()

    def _fetchall(self, sql: str, params: tuple | list = ()) -> list[sqlite3.Row]:
        with self._lock:
            return self._conn.execute(sql, params).fetchall()

    def ping(self) -> bool:
        """Return True if the connection answers a trivial query."""
        try:
            self._fetchone("SELECT 1")
        except sqlite3.Error:
            return False
        return True

    def close(self) -> None:
        """Close database connection."""
        with self._lock:
            self._conn.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
