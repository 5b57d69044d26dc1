"""recstage splitters: break bundled payloads into per-record chunks."""

from __future__ import annotations

from typing import Any

from recstage.config import ConfigError
from recstage.splitters.base import BaseSplitter
from recstage.splitters.json_tree import JsonTreeSplitter
from recstage.splitters.xml_file import XmlSplitter, iter_xml_records

SPLITTERS: dict[str, type[BaseSplitter]] = {
    "xml": XmlSplitter,
    "json_tree": JsonTreeSplitter,
}


def get_splitter(name: str, params: dict[str, Any] | None = None) -> BaseSplitter:
    """Return a fresh splitter instance for *name*.

    Raises:
        ConfigError: If no splitter is registered under *name*.
    """
    splitter_cls = SPLITTERS.get(name)
    if splitter_cls is None:
        raise ConfigError(f"Unknown record splitter: {name!r}")
    return splitter_cls(**(params or {}))


__all__ = [
    "BaseSplitter",
    "JsonTreeSplitter",
    "SPLITTERS",
    "XmlSplitter",
    "get_splitter",
    "iter_xml_records",
]
