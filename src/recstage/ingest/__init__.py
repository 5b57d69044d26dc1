"""recstage ingest: record storage pipeline and bulk maintenance."""

from recstage.ingest.maintenance import mark_source_deleted, purge_deleted, renormalize
from recstage.ingest.pipeline import IdentificationError, IngestionPipeline

__all__ = [
    "IdentificationError",
    "IngestionPipeline",
    "mark_source_deleted",
    "purge_deleted",
    "renormalize",
]
