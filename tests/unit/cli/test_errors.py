"""Tests for recstage rich error messages."""

from __future__ import annotations

from recstage.cli.errors import (
    err_bad_record,
    err_config,
    err_no_db,
    err_no_input_file,
    err_unknown_source,
)


def test_err_no_db_names_path_and_action() -> None:
    msg = err_no_db("x.db")
    assert "x.db" in msg
    assert "recstage import" in msg


def test_err_config_points_at_config_locations() -> None:
    msg = err_config("format not set for data source 'libA'")
    assert "format not set" in msg
    assert "RECSTAGE_DATASOURCES" in msg


def test_err_unknown_source_lists_known_sorted() -> None:
    msg = err_unknown_source("ghost", ["libB", "libA"])
    assert "'ghost'" in msg
    assert "libA, libB" in msg


def test_err_unknown_source_none_configured() -> None:
    assert "(none)" in err_unknown_source("ghost", [])


def test_err_no_input_file() -> None:
    assert "in.xml" in err_no_input_file("in.xml")


def test_err_bad_record_has_action() -> None:
    msg = err_bad_record("Invalid XML payload")
    assert "Invalid XML payload" in msg
    assert "record_xpath" in msg


def test_all_errors_are_red() -> None:
    for msg in (
        err_no_db(),
        err_config("x"),
        err_unknown_source("x", []),
        err_no_input_file("x"),
        err_bad_record("x"),
    ):
        assert msg.startswith("[red]Error:[/]")
