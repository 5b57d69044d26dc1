"""Forward-only migration runner for the record store schema."""

from __future__ import annotations

import sqlite3

# schema_version is the bootstrap table, created before migrations run.
_CREATE_SCHEMA_VERSION = """
CREATE TABLE IF NOT EXISTS schema_version (
    version     INTEGER NOT NULL,
    applied_at  DATETIME NOT NULL DEFAULT (datetime('now'))
)
"""

# List-valued columns hold JSON arrays; timestamps are ISO-8601 UTC strings
# with microseconds so that string order equals time order.
_V1_SQL = """
CREATE TABLE IF NOT EXISTS records (
    id              TEXT PRIMARY KEY,
    source_id       TEXT NOT NULL,
    main_id         TEXT,
    oai_id          TEXT NOT NULL DEFAULT '',
    format          TEXT NOT NULL DEFAULT '',
    original_data   BLOB NOT NULL DEFAULT x'',
    normalized_data BLOB NOT NULL DEFAULT x'',
    host_record_id  TEXT NOT NULL DEFAULT '[]',
    linking_id      TEXT NOT NULL DEFAULT '[]',
    dedup_id        TEXT,
    title_keys      TEXT NOT NULL DEFAULT '[]',
    isbn_keys       TEXT NOT NULL DEFAULT '[]',
    id_keys         TEXT NOT NULL DEFAULT '[]',
    update_needed   INTEGER NOT NULL DEFAULT 0,
    deleted         INTEGER NOT NULL DEFAULT 0,
    mark            INTEGER,
    created         TEXT NOT NULL,
    updated         TEXT NOT NULL,
    date            TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_records_source_oai ON records (source_id, oai_id);
CREATE INDEX IF NOT EXISTS idx_records_source_main ON records (source_id, main_id);
CREATE INDEX IF NOT EXISTS idx_records_update_needed ON records (update_needed);
CREATE INDEX IF NOT EXISTS idx_records_dedup ON records (dedup_id);

CREATE TABLE IF NOT EXISTS dedup (
    id          TEXT PRIMARY KEY,
    ids         TEXT NOT NULL DEFAULT '[]',
    deleted     INTEGER NOT NULL DEFAULT 0,
    changed     TEXT
);
"""

# Append-only. Each entry: (version: int, sql: str).
# executescript() issues an implicit COMMIT before running.
MIGRATIONS: list[tuple[int, str]] = [
    (1, _V1_SQL),
]


def current_version(conn: sqlite3.Connection) -> int:
    """Highest applied migration, 0 for a fresh store."""
    (applied,) = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()
    return applied or 0


def run_migrations(conn: sqlite3.Connection) -> None:
    """Bring the store up to the newest entry in MIGRATIONS.

    Versions already recorded are skipped, so reruns are harmless.
    """
    conn.execute(_CREATE_SCHEMA_VERSION)
    conn.commit()

    applied = current_version(conn)
    for version, script in sorted(MIGRATIONS):
        if version <= applied:
            continue
        conn.executescript(script)
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (version,))
        conn.commit()
