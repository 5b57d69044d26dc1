"""Repository pattern for all record store operations.

Single interface for: stored records, bulk conditional updates, dedup groups
and the store's monotonic timestamp source. List-valued record fields are
kept as JSON arrays; set-membership predicates use SQLite's json_each().
"""

from __future__ import annotations

import json
import sqlite3
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from recstage.db.models import DedupGroup, StoredRecord

_RECORD_COLUMNS = (
    "id, source_id, main_id, oai_id, format, original_data, normalized_data, "
    "host_record_id, linking_id, dedup_id, title_keys, isbn_keys, id_keys, "
    "update_needed, deleted, mark, created, updated, date"
)

# Columns a bulk patch may touch. Everything else is owned by save_record().
_PATCHABLE = frozenset(
    ["main_id", "dedup_id", "update_needed", "deleted", "mark", "updated", "date"]
)

_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


class RecordNotFoundError(LookupError):
    """Raised when an update targets a record id that is not stored."""


def format_timestamp(moment: datetime) -> str:
    """Render *moment* as the store's sortable UTC timestamp string."""
    return moment.astimezone(timezone.utc).strftime(_TIMESTAMP_FORMAT)


# ---------------------------------------------------------------------------
# Filters
# ---------------------------------------------------------------------------


@dataclass
class RecordFilter:
    """Conjunctive predicate over the records table.

    Unset attributes do not constrain the match. Sequence attributes match
    on membership; ``linking_ids`` matches records whose stored linking ids
    intersect the given ones.
    """

    ids: Sequence[str] | None = None
    source_ids: Sequence[str] | None = None
    oai_id: str | None = None
    main_id: str | None = None
    linking_ids: Sequence[str] | None = None
    dedup_id: str | None = None
    deleted: bool | None = None
    update_needed: bool | None = None
    updated_before: str | None = None
    unmarked: bool = False

    def to_sql(self) -> tuple[str, list[Any]]:
        """Return a ``(where_clause, params)`` pair for this filter."""
        clauses: list[str] = []
        params: list[Any] = []

        def _in(column: str, values: Sequence[str]) -> None:
            if not values:
                clauses.append("0")
                return
            clauses.append(f"{column} IN ({','.join('?' * len(values))})")
            params.extend(values)

        if self.ids is not None:
            _in("id", self.ids)
        if self.source_ids is not None:
            _in("source_id", self.source_ids)
        if self.oai_id is not None:
            clauses.append("oai_id = ?")
            params.append(self.oai_id)
        if self.main_id is not None:
            clauses.append("main_id = ?")
            params.append(self.main_id)
        if self.linking_ids is not None:
            if not self.linking_ids:
                clauses.append("0")
            else:
                placeholders = ",".join("?" * len(self.linking_ids))
                clauses.append(
                    "EXISTS (SELECT 1 FROM json_each(records.linking_id) "
                    f"WHERE json_each.value IN ({placeholders}))"
                )
                params.extend(self.linking_ids)
        if self.dedup_id is not None:
            clauses.append("dedup_id = ?")
            params.append(self.dedup_id)
        if self.deleted is not None:
            clauses.append("deleted = ?")
            params.append(int(self.deleted))
        if self.update_needed is not None:
            clauses.append("update_needed = ?")
            params.append(int(self.update_needed))
        if self.updated_before is not None:
            clauses.append("updated < ?")
            params.append(self.updated_before)
        if self.unmarked:
            clauses.append("(mark IS NULL OR mark = 0)")

        return (" AND ".join(clauses) if clauses else "1"), params


class Repository:
    """Data access layer for stored records and dedup groups.

    Wraps an open sqlite3.Connection. The connection is owned by the caller
    and must be closed after use. Every write commits immediately; there is
    no transaction spanning several records.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        """Initialise with an open database connection.

        Args:
            conn: An open sqlite3.Connection with the schema initialised
                (see recstage.db.schema.initialize).
        """
        self._conn = conn
        self._last_timestamp: datetime | None = None

    # ------------------------------------------------------------------
    # Timestamps
    # ------------------------------------------------------------------

    def get_timestamp(self) -> str:
        """Return the current UTC time, strictly increasing per repository.

        Two calls never return the same value, so ``updated < start`` checks
        against a snapshot taken earlier are reliable even within one
        microsecond.
        """
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return format_timestamp(now)

    # ------------------------------------------------------------------
    # Records
    # ------------------------------------------------------------------

    def get_record(self, record_id: str) -> StoredRecord | None:
        """Return a record by ID, or None if not found.

        Args:
            record_id: Global record id (``prefix.localId``).

        Returns:
            StoredRecord instance or None.
        """
        row = self._conn.execute(
            f"SELECT {_RECORD_COLUMNS} FROM records WHERE id = ?", (record_id,)
        ).fetchone()
        return _row_to_record(row) if row else None

    def save_record(self, record: StoredRecord) -> None:
        """Insert or fully replace a record (upsert by id)."""
        self._conn.execute(
            f"""
            INSERT INTO records ({_RECORD_COLUMNS})
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                source_id = excluded.source_id,
                main_id = excluded.main_id,
                oai_id = excluded.oai_id,
                format = excluded.format,
                original_data = excluded.original_data,
                normalized_data = excluded.normalized_data,
                host_record_id = excluded.host_record_id,
                linking_id = excluded.linking_id,
                dedup_id = excluded.dedup_id,
                title_keys = excluded.title_keys,
                isbn_keys = excluded.isbn_keys,
                id_keys = excluded.id_keys,
                update_needed = excluded.update_needed,
                deleted = excluded.deleted,
                mark = excluded.mark,
                created = excluded.created,
                updated = excluded.updated,
                date = excluded.date
            """,
            _record_to_params(record),
        )
        self._conn.commit()

    def update_record(self, record_id: str, patch: dict[str, Any]) -> None:
        """Apply *patch* to a single record.

        Raises:
            RecordNotFoundError: If *record_id* is not stored.
        """
        if self.update_records(RecordFilter(ids=[record_id]), patch) == 0:
            raise RecordNotFoundError(f"Record '{record_id}' not found")

    def update_records(self, flt: RecordFilter, patch: dict[str, Any]) -> int:
        """Apply *patch* to every record matching *flt* in one statement.

        Args:
            flt: Records to update.
            patch: Column → new value. Only scalar bookkeeping columns are
                accepted (see ``_PATCHABLE``).

        Returns:
            Number of records updated.

        Raises:
            ValueError: If *patch* is empty or names an unknown column.
        """
        if not patch:
            raise ValueError("patch must not be empty")
        unknown = set(patch) - _PATCHABLE
        if unknown:
            raise ValueError(f"Cannot patch column(s): {', '.join(sorted(unknown))}")

        where, params = flt.to_sql()
        assignments = ", ".join(f"{col} = ?" for col in patch)
        values = [_to_column_value(v) for v in patch.values()]
        cur = self._conn.execute(
            f"UPDATE records SET {assignments} WHERE {where}", values + params
        )
        self._conn.commit()
        return cur.rowcount

    def iterate_records(
        self, flt: RecordFilter | None = None, page_size: int = 500
    ) -> Iterator[StoredRecord]:
        """Yield matching records ordered by id.

        Pages through the table by id, so callers may modify or delete the
        records they receive without disturbing the iteration.
        """
        where, params = (flt or RecordFilter()).to_sql()
        last_id: str | None = None
        while True:
            sql = f"SELECT {_RECORD_COLUMNS} FROM records WHERE {where}"
            page_params = list(params)
            if last_id is not None:
                sql += " AND id > ?"
                page_params.append(last_id)
            sql += " ORDER BY id LIMIT ?"
            page_params.append(page_size)
            rows = self._conn.execute(sql, page_params).fetchall()
            for row in rows:
                yield _row_to_record(row)
            if len(rows) < page_size:
                return
            last_id = rows[-1]["id"]

    def count_records(self, flt: RecordFilter | None = None) -> int:
        where, params = (flt or RecordFilter()).to_sql()
        return self._conn.execute(
            f"SELECT COUNT(*) FROM records WHERE {where}", params
        ).fetchone()[0]

    def delete_records(self, flt: RecordFilter) -> int:
        """Physically delete matching records. Returns the number removed."""
        where, params = flt.to_sql()
        cur = self._conn.execute(f"DELETE FROM records WHERE {where}", params)
        self._conn.commit()
        return cur.rowcount

    # ------------------------------------------------------------------
    # Dedup groups
    # ------------------------------------------------------------------

    def get_dedup(self, dedup_id: str) -> DedupGroup | None:
        row = self._conn.execute(
            "SELECT id, ids, deleted, changed FROM dedup WHERE id = ?", (dedup_id,)
        ).fetchone()
        if row is None:
            return None
        return DedupGroup(
            id=row["id"],
            ids=json.loads(row["ids"]),
            deleted=bool(row["deleted"]),
            changed=row["changed"],
        )

    def save_dedup(self, group: DedupGroup) -> None:
        """Insert or replace a dedup group."""
        self._conn.execute(
            """
            INSERT INTO dedup (id, ids, deleted, changed)
            VALUES (?, ?, ?, ?)
            ON CONFLICT(id) DO UPDATE SET
                ids = excluded.ids,
                deleted = excluded.deleted,
                changed = excluded.changed
            """,
            (group.id, json.dumps(group.ids), int(group.deleted), group.changed),
        )
        self._conn.commit()

    def purge_dedups(self, changed_before: str | None = None) -> int:
        """Delete dedup groups marked deleted, optionally only older ones."""
        sql = "DELETE FROM dedup WHERE deleted = 1"
        params: list[Any] = []
        if changed_before is not None:
            sql += " AND changed < ?"
            params.append(changed_before)
        cur = self._conn.execute(sql, params)
        self._conn.commit()
        return cur.rowcount


# ---------------------------------------------------------------------------
# Row mapping
# ---------------------------------------------------------------------------


def _to_column_value(value: Any) -> Any:
    if isinstance(value, bool):
        return int(value)
    return value


def _record_to_params(record: StoredRecord) -> tuple:
    return (
        record.id,
        record.source_id,
        record.main_id,
        record.oai_id,
        record.format,
        record.original_data,
        record.normalized_data,
        json.dumps(record.host_record_ids),
        json.dumps(record.linking_ids),
        record.dedup_id,
        json.dumps(record.title_keys),
        json.dumps(record.isbn_keys),
        json.dumps(record.id_keys),
        int(record.update_needed),
        int(record.deleted),
        None if record.mark is None else int(record.mark),
        record.created,
        record.updated,
        record.date,
    )


def _row_to_record(row: sqlite3.Row) -> StoredRecord:
    return StoredRecord(
        id=row["id"],
        source_id=row["source_id"],
        main_id=row["main_id"],
        oai_id=row["oai_id"],
        format=row["format"],
        original_data=bytes(row["original_data"]),
        normalized_data=bytes(row["normalized_data"]),
        host_record_ids=json.loads(row["host_record_id"]),
        linking_ids=json.loads(row["linking_id"]),
        dedup_id=row["dedup_id"],
        title_keys=json.loads(row["title_keys"]),
        isbn_keys=json.loads(row["isbn_keys"]),
        id_keys=json.loads(row["id_keys"]),
        update_needed=bool(row["update_needed"]),
        deleted=bool(row["deleted"]),
        mark=None if row["mark"] is None else bool(row["mark"]),
        created=row["created"],
        updated=row["updated"],
        date=row["date"],
    )
