"""SQLite connection layer for the record store."""

from __future__ import annotations

import sqlite3
from pathlib import Path

# Seconds a writer waits for a lock held by a concurrent harvest
_DEFAULT_BUSY_TIMEOUT = 30.0


class Database:
    """Record store database file (records + dedup groups).

    Several harvester processes may share one file; WAL journaling lets
    readers proceed while one of them writes.
    """

    def __init__(self, db_path: Path | str, timeout: float = _DEFAULT_BUSY_TIMEOUT) -> None:
        """Remember where the store lives; nothing is opened until connect().

        Args:
            db_path: SQLite file, created on first connect if missing.
            timeout: Lock wait in seconds before a write fails as busy.
        """
        self.db_path = Path(db_path)
        self.timeout = timeout
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Return a new connection with name-addressable rows and WAL enabled."""
        conn = sqlite3.connect(self.db_path, timeout=self.timeout)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        return conn

    def __enter__(self) -> sqlite3.Connection:
        self._conn = self.connect()
        return self._conn

    def __exit__(self, *args: object) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
