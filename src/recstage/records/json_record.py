"""JSON record: one JSON object per record.

Recognised keys:
  id           local record id
  suppressed   truthy → record is treated as deleted
  host_ids     list of host record ids (component part)
  linking_ids  list of ids published for component parts (default: [id])
  title, isbns, identifiers   dedup candidate material
"""

from __future__ import annotations

import json
from typing import Any

from recstage.records.base import BaseRecord, RecordParseError


def _strip_strings(value: Any) -> Any:
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, list):
        return [_strip_strings(v) for v in value]
    if isinstance(value, dict):
        return {k: _strip_strings(v) for k, v in value.items()}
    return value


def _as_list(value: Any) -> list[str]:
    if value is None:
        return []
    if isinstance(value, (str, int)):
        return [str(value)]
    return [str(v) for v in value]


class JsonRecord(BaseRecord):
    """Record stored as a flat JSON object."""

    def __init__(self, data: bytes, oai_id: str = "", source_id: str = "") -> None:
        super().__init__(data, oai_id, source_id)
        try:
            doc = json.loads(data)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise RecordParseError(f"Invalid JSON record: {exc}") from exc
        if not isinstance(doc, dict):
            raise RecordParseError("JSON record must be an object")
        self._doc: dict[str, Any] = doc

    def record_id(self) -> str:
        return str(self._doc.get("id") or "").strip()

    def suppressed(self) -> bool:
        return bool(self._doc.get("suppressed", False))

    def host_record_ids(self) -> list[str]:
        return self._unique(_as_list(self._doc.get("host_ids")))

    def linking_ids(self) -> list[str]:
        if "linking_ids" in self._doc:
            return self._unique(_as_list(self._doc["linking_ids"]))
        return super().linking_ids()

    def normalize(self) -> None:
        """Strip surrounding whitespace from every string value."""
        self._doc = _strip_strings(self._doc)

    def serialize(self) -> bytes:
        return json.dumps(self._doc, ensure_ascii=False, separators=(",", ":")).encode(
            "utf-8"
        )

    def dedup_keys(self) -> dict[str, list[str]]:
        title = str(self._doc.get("title") or "").strip().lower()
        return {
            "title_keys": [title] if title else [],
            "isbn_keys": self._unique(_as_list(self._doc.get("isbns"))),
            # Bad metadata must not produce overly long keys
            "id_keys": self._unique([s[:200] for s in _as_list(self._doc.get("identifiers"))]),
        }
