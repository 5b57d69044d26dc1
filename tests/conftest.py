"""Shared pytest fixtures."""

from __future__ import annotations

import pytest

from recstage.config import datasources_from_dict
from recstage.db.connection import Database
from recstage.db.repository import Repository
from recstage.db.schema import initialize
from recstage.dedup import StoreDedupHandler
from recstage.ingest.pipeline import IngestionPipeline


@pytest.fixture
def tmp_db(tmp_path):
    """File-based DB in tmp_path with schema initialized, closed after test."""
    db = Database(tmp_path / "recstage.db")
    conn = db.connect()
    initialize(conn)
    yield conn
    conn.close()


@pytest.fixture
def repo(tmp_db):
    return Repository(tmp_db)


@pytest.fixture
def datasources():
    """Sources used across pipeline tests.

    libA   Dublin Core, deduplicated
    arch   JSON tree split into hierarchy members
    parts  JSON component parts whose hosts may live in libA
    """
    return datasources_from_dict(
        {
            "libA": {"institution": "A", "format": "dc", "dedup": True},
            "arch": {
                "institution": "B",
                "format": "json",
                "record_splitter": "json_tree",
            },
            "parts": {"institution": "A", "format": "json", "dedup": True},
            "plain": {"institution": "C", "format": "json"},
            "libB": {
                "institution": "A",
                "format": "dc",
                "dedup": True,
                "component_part_source_id": ["parts"],
            },
        }
    )


@pytest.fixture
def pipeline(repo, datasources):
    return IngestionPipeline(repo, datasources, StoreDedupHandler(repo))


@pytest.fixture
def make_pipeline(repo):
    """Build a pipeline over ``repo`` from a raw data source mapping."""

    def _make(raw: dict, **kwargs) -> IngestionPipeline:
        return IngestionPipeline(
            repo, datasources_from_dict(raw), StoreDedupHandler(repo), **kwargs
        )

    return _make
