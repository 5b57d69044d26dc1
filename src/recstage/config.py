"""Data source settings loader.

Path priority (high → low):
  1. Explicit ``path`` argument  (CLI --config)
  2. Environment variable RECSTAGE_DATASOURCES
  3. ``datasources.yaml`` in the current working directory

The file maps each source id to its settings. ``institution`` and ``format``
are required; everything else has a default. After loading, every source's
``host_record_source_ids`` is resolved from the ``component_part_source_id``
lists of the sources that link to it.
All YAML reads use yaml.safe_load(), never yaml.load().
"""

from __future__ import annotations

import os
import warnings
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_DATASOURCES_ENV = "RECSTAGE_DATASOURCES"
_DEFAULT_DATASOURCES_NAME = "datasources.yaml"

_REQUIRED_KEYS: tuple[str, ...] = ("institution", "format")

# Known per-source keys; unknown keys produce a warning
_KNOWN_KEYS: frozenset[str] = frozenset(
    [
        "institution",
        "format",
        "id_prefix",
        "dedup",
        "keep_missing_hierarchy_members",
        "record_splitter",
        "record_splitter_params",
        "record_xpath",
        "oai_id_xpath",
        "component_part_source_id",
    ]
)


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------


class ConfigError(ValueError):
    """Raised when configuration is missing, invalid or incomplete."""


# ---------------------------------------------------------------------------
# Data model
# ---------------------------------------------------------------------------


@dataclass
class DataSourceSettings:
    """Settings of one configured data source.

    Attributes:
        source_id: The source id (top-level key in the YAML file).
        institution: Owning institution code.
        format: Record format, selects the record parser.
        id_prefix: Prefix of stored record ids (``prefix.localId``).
        dedup: Whether records of this source take part in deduplication.
        keep_missing_hierarchy_members: Keep children of a split batch that
            did not appear in the latest harvest instead of deleting them.
        record_splitter: Name of the splitter that breaks a harvested payload
            into sub-records, or None for single-record payloads.
        record_splitter_params: Parameters passed to the splitter.
        record_xpath: Element path of records in imported XML files.
        oai_id_xpath: Path of the OAI identifier inside a record (optional).
        component_part_source_id: Sources whose records may be component
            parts of this source's records.
        host_record_source_ids: Resolved list of sources whose records may be
            hosts for this source's records. Always starts with source_id.
    """

    source_id: str
    institution: str
    format: str
    id_prefix: str = ""
    dedup: bool = False
    keep_missing_hierarchy_members: bool = False
    record_splitter: str | None = None
    record_splitter_params: dict[str, Any] = field(default_factory=dict)
    record_xpath: str = ".//record"
    oai_id_xpath: str = ""
    component_part_source_id: list[str] = field(default_factory=list)
    host_record_source_ids: list[str] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.id_prefix:
            self.id_prefix = self.source_id

    def linked_host_source_ids(self) -> list[str]:
        """Return the sources to search for host records (at least this one)."""
        return list(self.host_record_source_ids) or [self.source_id]


# ---------------------------------------------------------------------------
# Validation + build
# ---------------------------------------------------------------------------


def _warn_unknown_keys(source_id: str, data: dict[str, Any], source: Path) -> None:
    """Emit a UserWarning for unrecognised per-source keys."""
    for key in data:
        if key not in _KNOWN_KEYS:
            warnings.warn(
                f"Unknown setting '{key}' for data source '{source_id}' in '{source}'; ignored.",
                UserWarning,
                stacklevel=4,
            )


def _settings_from_dict(source_id: str, raw: dict[str, Any]) -> DataSourceSettings:
    for key in _REQUIRED_KEYS:
        if not raw.get(key):
            raise ConfigError(f"{key} not set for data source '{source_id}'")

    linked = raw.get("component_part_source_id") or []
    if isinstance(linked, str):
        linked = [linked]

    return DataSourceSettings(
        source_id=source_id,
        institution=str(raw["institution"]),
        format=str(raw["format"]),
        id_prefix=str(raw.get("id_prefix") or ""),
        dedup=bool(raw.get("dedup", False)),
        keep_missing_hierarchy_members=bool(
            raw.get("keep_missing_hierarchy_members", False)
        ),
        record_splitter=raw.get("record_splitter") or None,
        record_splitter_params=dict(raw.get("record_splitter_params") or {}),
        record_xpath=str(raw.get("record_xpath") or ".//record"),
        oai_id_xpath=str(raw.get("oai_id_xpath") or ""),
        component_part_source_id=[str(s) for s in linked],
    )


def resolve_host_links(datasources: dict[str, DataSourceSettings]) -> None:
    """Fill in ``host_record_source_ids`` from component part declarations.

    A source C listed in S.component_part_source_id gets S appended to its
    host sources, after C itself. Sources nobody links to are left empty and
    fall back to themselves (see DataSourceSettings.linked_host_source_ids).
    """
    for source_id, settings in datasources.items():
        for linked in settings.component_part_source_id:
            target = datasources.get(linked)
            if target is None:
                raise ConfigError(
                    f"Data source '{source_id}' links to unknown component part "
                    f"source '{linked}'"
                )
            if not target.host_record_source_ids:
                target.host_record_source_ids = [linked]
            target.host_record_source_ids.append(source_id)


def datasources_from_dict(
    data: dict[str, Any], source: Path = Path("<memory>")
) -> dict[str, DataSourceSettings]:
    """Build resolved settings for every source in a raw mapping."""
    datasources: dict[str, DataSourceSettings] = {}
    for source_id, raw in data.items():
        raw = raw or {}
        if not isinstance(raw, dict):
            raise ConfigError(f"Settings for data source '{source_id}' must be a mapping")
        _warn_unknown_keys(str(source_id), raw, source)
        datasources[str(source_id)] = _settings_from_dict(str(source_id), raw)
    resolve_host_links(datasources)
    return datasources


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def datasources_path(path: Path | None = None) -> Path:
    """Return the data source file to use (argument → env var → CWD)."""
    if path is not None:
        return path
    if env_path := os.environ.get(_DATASOURCES_ENV):
        return Path(env_path)
    return Path.cwd() / _DEFAULT_DATASOURCES_NAME


def load_datasources(path: Path | None = None) -> dict[str, DataSourceSettings]:
    """Load and return resolved data source settings keyed by source id.

    Args:
        path: YAML file to read. Defaults to $RECSTAGE_DATASOURCES, then
            ``datasources.yaml`` in the current directory.

    Returns:
        Mapping of source id → DataSourceSettings with host links resolved.

    Raises:
        ConfigError: If the file is missing, is not a mapping, or a source
            lacks a required setting.
    """
    target = datasources_path(path)
    if not target.exists():
        raise ConfigError(f"Data source configuration not found: '{target}'")

    raw = yaml.safe_load(target.read_text(encoding="utf-8")) or {}
    if not isinstance(raw, dict):
        raise ConfigError(f"Data source configuration '{target}' must be a mapping")

    return datasources_from_dict(raw, target)
