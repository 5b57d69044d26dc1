"""XML splitter: one chunk per element matching a record path.

Record paths use ElementTree's path syntax (``.//record``,
``{http://www.loc.gov/MARC21/slim}record`` …), evaluated from the document
root.
"""

from __future__ import annotations

import xml.etree.ElementTree as ET
from collections.abc import Iterator

from recstage.records.base import RecordParseError
from recstage.splitters.base import BaseSplitter

_DEFAULT_RECORD_PATH = ".//record"


def _record_path(path: str) -> str:
    """Accept ``//record`` style paths by anchoring them at the root."""
    if path.startswith("//"):
        return "." + path
    return path or _DEFAULT_RECORD_PATH


def _parse(payload: bytes) -> ET.Element:
    try:
        return ET.fromstring(payload)
    except ET.ParseError as exc:
        raise RecordParseError(f"Invalid XML payload: {exc}") from exc


def iter_xml_records(
    payload: bytes, record_path: str = _DEFAULT_RECORD_PATH, oai_id_path: str = ""
) -> Iterator[tuple[str, bytes]]:
    """Yield ``(oai_id, record_xml)`` for each record element in *payload*.

    Args:
        payload: Complete XML document.
        record_path: Path of record elements.
        oai_id_path: Path of the OAI identifier relative to each record.
            When empty, the yielded OAI id is an empty string.

    Raises:
        RecordParseError: If *payload* is not well-formed, or *oai_id_path*
            is set and a record has no identifier at that path.
    """
    root = _parse(payload)
    for el in root.iterfind(_record_path(record_path)):
        oai_id = ""
        if oai_id_path:
            oai_id = (el.findtext(oai_id_path) or "").strip()
            if not oai_id:
                raise RecordParseError(
                    f"No OAI ID found with path '{oai_id_path}' "
                    f"starting at element '{el.tag}'"
                )
        # tostring() would otherwise carry the text following the element
        el.tail = None
        yield oai_id, ET.tostring(el, encoding="unicode").encode("utf-8")


class XmlSplitter(BaseSplitter):
    """Split an XML bundle on a record path.

    Params:
        record_xpath: Path of record elements (default ``.//record``).
    """

    def split(self, payload: bytes) -> Iterator[bytes]:
        path = self.params.get("record_xpath", _DEFAULT_RECORD_PATH)
        for _oai_id, chunk in iter_xml_records(payload, path):
            yield chunk
