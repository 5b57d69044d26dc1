"""Domain models for the recstage database layer."""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class StoredRecord:
    """One persisted bibliographic/archival record.

    ``normalized_data`` is empty when normalization produced output identical
    to ``original_data``; use :meth:`record_data` to read the effective payload.
    """

    id: str
    source_id: str
    oai_id: str = ""
    format: str = ""
    original_data: bytes = b""
    normalized_data: bytes = b""
    main_id: str | None = None
    host_record_ids: list[str] = field(default_factory=list)
    linking_ids: list[str] = field(default_factory=list)
    dedup_id: str | None = None
    title_keys: list[str] = field(default_factory=list)
    isbn_keys: list[str] = field(default_factory=list)
    id_keys: list[str] = field(default_factory=list)
    update_needed: bool = False
    deleted: bool = False
    mark: bool | None = None
    created: str | None = None
    updated: str | None = None
    date: str | None = None

    def record_data(self, normalized: bool = True) -> bytes:
        """Return normalized data (falling back to original) or original data."""
        if normalized and self.normalized_data:
            return self.normalized_data
        return self.original_data

    def clear_dedup_keys(self) -> None:
        self.title_keys = []
        self.isbn_keys = []
        self.id_keys = []


@dataclass
class DedupGroup:
    id: str
    ids: list[str] = field(default_factory=list)
    deleted: bool = False
    changed: str | None = None
