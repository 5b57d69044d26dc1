"""recstage rich error messages.

Every error shown to the user names what went wrong and the action that
fixes it.

Usage:
    from recstage.cli.errors import err_no_db
    console.print(err_no_db("recstage.db"))
    raise typer.Exit(1)
"""

from __future__ import annotations


def err_no_db(db_path: str = "recstage.db") -> str:
    """No record database at *db_path*."""
    return (
        f"[red]Error:[/] No database found at '{db_path}'.\n"
        "  Run:  recstage import --source <id> <file>  to create it, or pass --db."
    )


def err_config(message: str) -> str:
    """Data source configuration is missing or invalid."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Check the data source file (--config, $RECSTAGE_DATASOURCES or ./datasources.yaml)."
    )


def err_unknown_source(source: str, known: list[str]) -> str:
    """Source id is not configured."""
    known_list = ", ".join(sorted(known)) if known else "(none)"
    return (
        f"[red]Error:[/] Data source '{source}' is not configured.\n"
        f"  Configured sources: {known_list}"
    )


def err_no_input_file(path: str) -> str:
    """Import file does not exist."""
    return f"[red]Error:[/] Input file not found: '{path}'"


def err_bad_record(message: str) -> str:
    """A payload could not be parsed or identified."""
    return (
        f"[red]Error:[/] {message}\n"
        "  Fix the input data or the source's record_xpath / oai_id_xpath settings."
    )
