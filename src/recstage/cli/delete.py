"""recstage delete: retire every record carrying an OAI identifier.

Usage:
  recstage delete --source libA --oai-id oai:libA:123
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
from recstage.records.base import RecordParseError


def delete_cmd(
    source: Annotated[str, typer.Option("--source", "-s", help="Data source id.")],
    oai_id: Annotated[str, typer.Option("--oai-id", help="OAI identifier to delete.")],
    db: Annotated[Path, typer.Option("--db", help="Path to the record database.")] = DEFAULT_DB,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Data source YAML file."),
    ] = None,
) -> None:
    """Mark deleted all records of a source that came from one OAI identifier."""
    datasources = load_settings(config)
    require_source(datasources, source)

    conn = open_db(db)
    try:
        count = build_pipeline(conn, datasources).delete_by_oai_id(source, oai_id)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    except RecordParseError as exc:
        console.print(err_bad_record(str(exc)))
        raise typer.Exit(1) from exc
    finally:
        conn.close()

    if count == 0:
        console.print(f"[yellow]No live records with OAI ID '{oai_id}' in '{source}'.[/]")
        return
    console.print(f"[green]✓[/] {count} records marked deleted")
