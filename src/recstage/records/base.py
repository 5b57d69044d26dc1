"""Base record interface for all metadata formats."""

from __future__ import annotations

from abc import ABC, abstractmethod


class RecordParseError(ValueError):
    """Raised when a metadata payload cannot be parsed by its format."""


class BaseRecord(ABC):
    """Abstract base for all metadata record formats.

    A record wraps one parsed metadata payload and exposes the capabilities
    the ingestion pipeline relies on: a local id, a suppression flag, host
    and linking ids, in-place normalization and serialization back to bytes.
    Subclasses parse in ``__init__`` and raise RecordParseError on bad input.
    """

    def __init__(self, data: bytes, oai_id: str = "", source_id: str = "") -> None:
        self.oai_id = oai_id
        self.source_id = source_id

    @abstractmethod
    def record_id(self) -> str:
        """Return the local record id, or an empty string if it has none."""

    @abstractmethod
    def serialize(self) -> bytes:
        """Serialize the record for storing in the database."""

    def suppressed(self) -> bool:
        """Whether the record should be treated as deleted."""
        return False

    def host_record_ids(self) -> list[str]:
        """Return ids of the host records this record is a component part of."""
        return []

    def linking_ids(self) -> list[str]:
        """Return ids by which other records may reference this one as host."""
        record_id = self.record_id()
        return [record_id] if record_id else []

    def normalize(self) -> None:
        """Normalize the record in place (optional)."""

    def dedup_keys(self) -> dict[str, list[str]]:
        """Return dedup candidate keys by kind (title_keys, isbn_keys, id_keys)."""
        return {}

    @staticmethod
    def _unique(values: list[str]) -> list[str]:
        """Drop empty and repeated values, keeping first-seen order."""
        seen: dict[str, None] = {}
        for v in values:
            if v:
                seen.setdefault(v, None)
        return list(seen)
