"""Format-keyed registry that turns raw metadata into record objects."""

from __future__ import annotations

from recstage.config import ConfigError
from recstage.records.base import BaseRecord
from recstage.records.dc import DcRecord
from recstage.records.json_record import JsonRecord

_DEFAULT_FORMATS: dict[str, type[BaseRecord]] = {
    "dc": DcRecord,
    "json": JsonRecord,
}


class RecordFactory:
    """Create records of a configured format.

    Args:
        formats: Format name → record class. Defaults to the built-in
            ``dc`` and ``json`` formats.
    """

    def __init__(self, formats: dict[str, type[BaseRecord]] | None = None) -> None:
        self._formats = dict(_DEFAULT_FORMATS if formats is None else formats)

    def register(self, name: str, record_cls: type[BaseRecord]) -> None:
        """Add or replace the record class used for format *name*."""
        self._formats[name] = record_cls

    def formats(self) -> list[str]:
        return sorted(self._formats)

    def create(self, fmt: str, data: bytes, oai_id: str, source_id: str) -> BaseRecord:
        """Parse *data* as format *fmt*.

        Raises:
            ConfigError: If *fmt* is not registered.
            RecordParseError: If *data* is malformed for the format.
        """
        record_cls = self._formats.get(fmt)
        if record_cls is None:
            raise ConfigError(f"Unsupported record format: {fmt!r}")
        return record_cls(data, oai_id, source_id)
