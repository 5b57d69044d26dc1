"""recstage database layer."""

from recstage.db.connection import Database
from recstage.db.migrations import MIGRATIONS, run_migrations
from recstage.db.models import DedupGroup, StoredRecord
from recstage.db.repository import RecordFilter, RecordNotFoundError, Repository
from recstage.db.schema import initialize

__all__ = [
    "Database",
    "DedupGroup",
    "initialize",
    "run_migrations",
    "MIGRATIONS",
    "RecordFilter",
    "RecordNotFoundError",
    "Repository",
    "StoredRecord",
]
