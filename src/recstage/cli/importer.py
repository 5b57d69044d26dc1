"""recstage import: store records from a local file.

XML sources are split on the source's ``record_xpath``; each record's OAI
identifier is read from ``oai_id_xpath`` when configured. Files of ``json``
sources are stored as a single payload (the source's record splitter, if
any, breaks them up further).

Usage:
  recstage import --source libA records.xml
  recstage import --source libA --delete withdrawn.xml
"""

from __future__ import annotations

from pathlib import Path
from typing import Annotated

import typer
from rich.progress import Progress, SpinnerColumn, TextColumn

from recstage.cli.common import (
    DEFAULT_DB,
    build_pipeline,
    console,
    load_settings,
    open_db,
    require_source,
)
from recstage.cli.errors import err_bad_record, err_config, err_no_input_file
from recstage.config import ConfigError
from recstage.ingest.pipeline import IdentificationError
from recstage.records.base import RecordParseError
from recstage.splitters import iter_xml_records

_SINGLE_PAYLOAD_FORMATS = {"json"}


def import_cmd(
    file: Annotated[Path, typer.Argument(help="File of records to import.")],
    source: Annotated[
        str,
        typer.Option("--source", "-s", help="Data source id the records belong to."),
    ],
    db: Annotated[
        Path,
        typer.Option("--db", help="Path to the record database (created if missing)."),
    ] = DEFAULT_DB,
    config: Annotated[
        Path | None,
        typer.Option("--config", "-c", help="Data source YAML file."),
    ] = None,
    delete: Annotated[
        bool,
        typer.Option("--delete", help="Mark the records in the file deleted."),
    ] = False,
    mark: Annotated[
        bool,
        typer.Option("--mark", help="Flag stored records as seen (full reharvest)."),
    ] = False,
) -> None:
    """Import records from FILE into a data source."""
    if not file.exists():
        console.print(err_no_input_file(str(file)))
        raise typer.Exit(1)

    datasources = load_settings(config)
    settings = require_source(datasources, source)
    payload = file.read_bytes()

    conn = open_db(db, create=True)
    pipeline = build_pipeline(conn, datasources, mark_records=mark)
    count = 0
    try:
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            transient=True,
            console=console,
        ) as prog:
            prog.add_task(f"Importing into '{source}'…", total=None)
            if settings.format in _SINGLE_PAYLOAD_FORMATS:
                count = pipeline.store_record(source, "", delete, payload)
            else:
                for oai_id, data in iter_xml_records(
                    payload, settings.record_xpath, settings.oai_id_xpath
                ):
                    count += pipeline.store_record(source, oai_id, delete, data)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc
    except (RecordParseError, IdentificationError) as exc:
        console.print(err_bad_record(str(exc)))
        raise typer.Exit(1) from exc
    finally:
        conn.close()

    verb = "deleted" if delete else "stored"
    console.print(f"[green]✓[/] {count} records {verb} in '{source}'")
