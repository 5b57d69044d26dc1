"""Dublin Core record: simple ``oai_dc`` XML documents.

Local id comes from a ``recordID`` element when present, otherwise from the
OAI identifier (the part after ``oai:<repository>:``). Host links are read
from ``dcterms:isPartOf``.
"""

from __future__ import annotations

import re
import xml.etree.ElementTree as ET

from recstage.records.base import BaseRecord, RecordParseError

DC_NS = "http://purl.org/dc/elements/1.1/"
DCTERMS_NS = "http://purl.org/dc/terms/"
OAI_DC_NS = "http://www.openarchives.org/OAI/2.0/oai_dc/"

ET.register_namespace("dc", DC_NS)
ET.register_namespace("dcterms", DCTERMS_NS)
ET.register_namespace("oai_dc", OAI_DC_NS)

_ISBN_RE = re.compile(r"([0-9]{9,12}[0-9xX])")


def isbn10_to_13(isbn: str) -> str:
    """Convert a 10-digit ISBN to ISBN-13 (978 prefix, recomputed check digit)."""
    body = "978" + isbn[:9]
    total = sum(int(d) * (1 if i % 2 == 0 else 3) for i, d in enumerate(body))
    return body + str((10 - total % 10) % 10)


class DcRecord(BaseRecord):
    """Dublin Core XML record."""

    def __init__(self, data: bytes, oai_id: str = "", source_id: str = "") -> None:
        super().__init__(data, oai_id, source_id)
        try:
            self._root = ET.fromstring(data)
        except ET.ParseError as exc:
            raise RecordParseError(f"Invalid Dublin Core XML: {exc}") from exc

    def record_id(self) -> str:
        node = self._root.find("recordID")
        if node is not None and (node.text or "").strip():
            return node.text.strip()
        # oai:repository:local-id → local-id
        parts = self.oai_id.split(":", 2)
        return parts[2] if len(parts) == 3 else ""

    def host_record_ids(self) -> list[str]:
        return self._unique(self._texts(f"{{{DCTERMS_NS}}}isPartOf"))

    def suppressed(self) -> bool:
        return self._root.get("suppressed", "").lower() in ("1", "true", "yes")

    def normalize(self) -> None:
        """Trim surrounding whitespace from every element text and tail."""
        for el in self._root.iter():
            if el.text is not None:
                el.text = el.text.strip()
            if el.tail is not None:
                el.tail = el.tail.strip() or None

    def serialize(self) -> bytes:
        return ET.tostring(self._root, encoding="unicode").encode("utf-8")

    def dedup_keys(self) -> dict[str, list[str]]:
        isbns: list[str] = []
        for identifier in self._texts(f"{{{DC_NS}}}identifier"):
            match = _ISBN_RE.search(identifier.replace("-", ""))
            if not match:
                continue
            isbn = match.group(1).upper()
            if len(isbn) == 10:
                isbn = isbn10_to_13(isbn)
            elif len(isbn) != 13:
                continue
            isbns.append(isbn)
        titles = [t.lower() for t in self._texts(f"{{{DC_NS}}}title")[:1]]
        return {"title_keys": titles, "isbn_keys": self._unique(isbns)}

    def _texts(self, tag: str) -> list[str]:
        return [
            (el.text or "").strip()
            for el in self._root.iter(tag)
            if (el.text or "").strip()
        ]
