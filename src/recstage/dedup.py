"""Dedup handler contract and the store-backed implementation.

The ingestion pipeline only stages records for deduplication: it refreshes a
record's candidate keys and detaches records from dedup groups. Deciding
which records are duplicates happens elsewhere.
"""

from __future__ import annotations

import logging
from typing import Protocol

from recstage.db.models import StoredRecord
from recstage.db.repository import RecordFilter, Repository
from recstage.records.base import BaseRecord

logger = logging.getLogger(__name__)

_KEY_FIELDS = ("title_keys", "isbn_keys", "id_keys")


class DedupHandler(Protocol):
    def update_dedup_candidate_keys(
        self, record: StoredRecord, metadata_record: BaseRecord
    ) -> bool:
        """Refresh *record*'s candidate keys; return True if they changed."""
        ...

    def remove_from_dedup_record(self, dedup_id: str, record_id: str) -> None:
        """Detach *record_id* from dedup group *dedup_id*."""
        ...


class StoreDedupHandler:
    """Dedup bookkeeping against the record store.

    Candidate keys are taken from the metadata record's ``dedup_keys()``;
    a record needs (re)processing whenever any key list changed.

    Args:
        repo: Open Repository instance.
    """

    def __init__(self, repo: Repository) -> None:
        self._repo = repo

    def update_dedup_candidate_keys(
        self, record: StoredRecord, metadata_record: BaseRecord
    ) -> bool:
        keys = metadata_record.dedup_keys()
        changed = False
        for name in _KEY_FIELDS:
            new = list(keys.get(name, []))
            if sorted(getattr(record, name)) != sorted(new):
                setattr(record, name, new)
                changed = True
        return changed

    def remove_from_dedup_record(self, dedup_id: str, record_id: str) -> None:
        """Remove *record_id* from group *dedup_id*.

        A group left with a single member is dissolved: it is marked deleted
        and the remaining record loses its dedup_id and is queued for
        processing. Remaining members of a surviving group are queued too,
        since the preferred record of the group may change.
        """
        group = self._repo.get_dedup(dedup_id)
        if group is None:
            logger.error("Found dangling reference to dedup record %s in %s", dedup_id, record_id)
            return
        if group.deleted:
            logger.error("Found reference to deleted dedup record %s in %s", dedup_id, record_id)
            return
        if record_id not in group.ids:
            return

        group.ids = [i for i in group.ids if i != record_id]
        if len(group.ids) == 1:
            other_id = group.ids[0]
            group.ids = []
            group.deleted = True
            other = self._repo.get_record(other_id)
            if other is not None:
                other.dedup_id = None
                if not other.deleted:
                    other.update_needed = True
                self._repo.save_record(other)
        elif not group.ids:
            group.deleted = True
        group.changed = self._repo.get_timestamp()
        self._repo.save_dedup(group)

        if group.ids:
            self._repo.update_records(
                RecordFilter(ids=group.ids, deleted=False),
                {"update_needed": True},
            )
