"""recstage mark-deleted / purge-deleted / renormalize: bulk maintenance.

Usage:
  recstage mark-deleted --source libA
  recstage purge-deleted --days 30 --yes
  recstage renormalize --source libA --record-id libA.123
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer

from recstage.cli.common import (
    DEFAULT_DB,
    build_pipeline,
    console,
    load_settings,
    open_db,
    require_source,
)
from recstage.cli.errors import err_bad_record, err_config
from recstage.config import ConfigError
from recstage.db.repository import RecordFilter, Repository
from recstage.ingest.maintenance import mark_source_deleted, purge_deleted, renormalize
from recstage.records.base import RecordParseError

_Db = Annotated[Path, typer.Option("--db", help="Path to the record database.")]
_Config = Annotated[
    Path | None, typer.Option("--config", "-c", help="Data source YAML file.")
]
_Yes = Annotated[bool, typer.Option("--yes", "-y", help="Skip confirmation prompt.")]


def mark_deleted_cmd(
    source: Annotated[str, typer.Option("--source", "-s", help="Data source id.")],
    record_id: Annotated[
        str | None,
        typer.Option("--record-id", help="Only mark this record deleted."),
    ] = None,
    db: _Db = DEFAULT_DB,
    config: _Config = None,
    yes: _Yes = False,
) -> None:
    """Mark all live records of a data source deleted."""
    datasources = load_settings(config)
    require_source(datasources, source)

    conn = open_db(db)
    try:
        pipeline = build_pipeline(conn, datasources)
        total = pipeline.repo.count_records(
            RecordFilter(
                ids=[record_id] if record_id else None,
                source_ids=[source],
                deleted=False,
            )
        )
        console.print(f"\nMark deleted: [bold]{source}[/]  ({total} live records)")
        if not yes and not typer.confirm("Confirm?", default=False):
            console.print("[dim]Cancelled.[/]")
            raise typer.Exit(0)
        try:
            count = mark_source_deleted(pipeline, source, record_id)
        except ConfigError as exc:
            console.print(err_config(str(exc)))
            raise typer.Exit(1) from exc
        except RecordParseError as exc:
            console.print(err_bad_record(str(exc)))
            raise typer.Exit(1) from exc
    finally:
        conn.close()

    console.print(f"[green]✓[/] {count} records marked deleted")


def purge_deleted_cmd(
    source: Annotated[
        str | None,
        typer.Option("--source", "-s", help="Only purge this data source."),
    ] = None,
    days: Annotated[
        int,
        typer.Option("--days", min=0, help="Keep records deleted within this many days."),
    ] = 0,
    db: _Db = DEFAULT_DB,
    yes: _Yes = False,
) -> None:
    """Physically remove records (and dedup groups) marked deleted."""
    conn = open_db(db)
    try:
        if not yes:
            scope = f"'{source}'" if source else "all sources"
            if not typer.confirm(f"Purge deleted records of {scope}?", default=False):
                console.print("[dim]Cancelled.[/]")
                raise typer.Exit(0)
        records, groups = purge_deleted(Repository(conn), source, days)
    finally:
        conn.close()

    console.print(f"[green]✓[/] Purged {records} records, {groups} dedup groups")


def renormalize_cmd(
    source: Annotated[
        str | None,
        typer.Option("--source", "-s", help="Data source id (default: all)."),
    ] = None,
    record_id: Annotated[
        str | None,
        typer.Option("--record-id", help="Only renormalize this record."),
    ] = None,
    db: _Db = DEFAULT_DB,
    config: _Config = None,
) -> None:
    """Re-run normalization over stored records."""
    datasources = load_settings(config)
    if source is not None:
        require_source(datasources, source)

    conn = open_db(db)
    try:
        count = renormalize(build_pipeline(conn, datasources), source, record_id)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    except RecordParseError as exc:
        console.print(err_bad_record(str(exc)))
        raise typer.Exit(1) from exc
    finally:
        conn.close()

    console.print(f"[green]✓[/] {count} records renormalized")
