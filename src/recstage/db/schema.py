"""Schema bootstrap for a record store connection."""

from __future__ import annotations

import sqlite3

from recstage.db.migrations import MIGRATIONS, run_migrations

CURRENT_VERSION = max(version for version, _ in MIGRATIONS)


def initialize(conn: sqlite3.Connection) -> None:
    """Create or upgrade the schema on *conn*; a no-op when already current."""
    run_migrations(conn)
