"""Entry point for the ``recstage`` command."""

from __future__ import annotations

import importlib.metadata
import logging
from typing import Annotated

import typer

from recstage.cli.delete import delete_cmd
from recstage.cli.importer import import_cmd
from recstage.cli.maintenance import mark_deleted_cmd, purge_deleted_cmd, renormalize_cmd

_LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def _echo_version() -> None:
    try:
        installed = importlib.metadata.version("recstage")
    except importlib.metadata.PackageNotFoundError:
        installed = "dev"
    typer.echo(f"recstage {installed}")


def _on_version(flag: bool) -> None:
    if flag:
        _echo_version()
        raise typer.Exit()


app = typer.Typer(
    name="recstage",
    help=(
        "Staging store for harvested metadata records.\n\n"
        "  recstage import         Load a harvested file into a data source.\n"
        "  recstage delete         Retire every record of an OAI identifier.\n"
        "  recstage mark-deleted   Flag a whole source (or one record) deleted.\n"
        "  recstage purge-deleted  Drop deleted records for good.\n"
        "  recstage renormalize    Rebuild normalized data from the originals."
    ),
    add_completion=False,
)


@app.callback()
def main_callback(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Log per-record progress."),
    ] = False,
    version: Annotated[
        bool,
        typer.Option("--version", callback=_on_version, is_eager=True, help="Print the version and exit."),
    ] = False,
) -> None:
    """Staging store for harvested metadata records."""
    logging.basicConfig(level=logging.DEBUG if verbose else logging.INFO, format=_LOG_FORMAT)


for _name, _command in (
    ("import", import_cmd),
    ("delete", delete_cmd),
    ("mark-deleted", mark_deleted_cmd),
    ("purge-deleted", purge_deleted_cmd),
    ("renormalize", renormalize_cmd),
):
    app.command(_name)(_command)


@app.command("version")
def version_cmd() -> None:
    """Print the installed recstage version."""
    _echo_version()


if __name__ == "__main__":
    app()
