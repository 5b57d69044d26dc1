"""Shared helpers for recstage commands: database and pipeline setup."""

from __future__ import annotations

import sqlite3
from pathlib import Path

import typer
from rich.console import Console

from recstage.cli.errors import err_config, err_no_db, err_unknown_source
from recstage.config import ConfigError, DataSourceSettings, load_datasources
from recstage.db.connection import Database
from recstage.db.repository import Repository
from recstage.db.schema import initialize
from recstage.dedup import StoreDedupHandler
from recstage.ingest.pipeline import IngestionPipeline

console = Console()

DEFAULT_DB = Path("recstage.db")


def open_db(db_path: Path, create: bool = False) -> sqlite3.Connection:
    """Open (and migrate) the record database; exit 1 if it is missing."""
    if not create and not db_path.exists():
        console.print(err_no_db(str(db_path)))
        raise typer.Exit(1)
    conn = Database(db_path).connect()
    initialize(conn)
    return conn


def load_settings(config: Path | None) -> dict[str, DataSourceSettings]:
    """Load data sources; exit 1 with a readable message on ConfigError."""
    try:
        return load_datasources(config)
    except ConfigError as exc:
        console.print(err_config(str(exc)))
        raise typer.Exit(1) from exc


def require_source(datasources: dict[str, DataSourceSettings], source: str) -> DataSourceSettings:
    settings = datasources.get(source)
    if settings is None:
        console.print(err_unknown_source(source, list(datasources)))
        raise typer.Exit(1)
    return settings


def build_pipeline(
    conn: sqlite3.Connection,
    datasources: dict[str, DataSourceSettings],
    mark_records: bool = False,
) -> IngestionPipeline:
    repo = Repository(conn)
    return IngestionPipeline(
        repo, datasources, StoreDedupHandler(repo), mark_records=mark_records
    )
