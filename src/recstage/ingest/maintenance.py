"""Bulk maintenance of stored records: mark deleted, purge, renormalize.

All three operate on whole data sources (or a single record) and log their
progress every 1000 records.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from recstage.db.repository import RecordFilter, Repository, format_timestamp
from recstage.ingest.pipeline import IngestionPipeline

logger = logging.getLogger(__name__)

_PROGRESS_EVERY = 1000


def _record_filter(source_id: str, record_id: str | None) -> RecordFilter:
    return RecordFilter(
        ids=[record_id] if record_id else None,
        source_ids=[source_id],
        deleted=False,
    )


def mark_source_deleted(
    pipeline: IngestionPipeline, source_id: str, record_id: str | None = None
) -> int:
    """Mark every live record of *source_id* (or just *record_id*) deleted.

    Dedup membership is dropped and host records in other sources are
    flagged for reprocessing.

    Returns:
        Number of records marked deleted.
    """
    pipeline.settings(source_id)
    repo = pipeline.repo
    flt = _record_filter(source_id, record_id)
    logger.info(
        "Marking deleted %d records from '%s'", repo.count_records(flt), source_id
    )

    count = 0
    for record in repo.iterate_records(flt):
        # Dedup removal of an earlier record may have changed this one
        current = repo.get_record(record.id)
        if current is None or current.deleted:
            continue
        pipeline.mark_record_deleted(current, defer_host_update=True)
        count += 1
        if count % _PROGRESS_EVERY == 0:
            logger.info("%d records marked deleted from '%s'", count, source_id)

    logger.info("Completed with %d records marked deleted from '%s'", count, source_id)
    return count


def purge_deleted(
    repo: Repository, source_id: str | None = None, days_to_keep: int = 0
) -> tuple[int, int]:
    """Physically remove records marked deleted.

    Args:
        repo: Open Repository.
        source_id: Only purge this source. Dedup groups are left alone when
            a source is given, since they may span sources.
        days_to_keep: Keep deleted records updated within this many days.

    Returns:
        ``(records_purged, dedup_groups_purged)``.
    """
    cutoff = None
    if days_to_keep:
        cutoff = format_timestamp(datetime.now(timezone.utc) - timedelta(days=days_to_keep))

    flt = RecordFilter(
        source_ids=[source_id] if source_id else None,
        deleted=True,
        updated_before=cutoff,
    )
    records = repo.delete_records(flt)
    logger.info(
        "Purged %d deleted records%s", records, f" from '{source_id}'" if source_id else ""
    )

    if source_id:
        logger.info("Source specified, skipping dedup groups")
        return records, 0

    groups = repo.purge_dedups(changed_before=cutoff)
    logger.info("Purged %d deleted dedup groups", groups)
    return records, groups


def renormalize(
    pipeline: IngestionPipeline,
    source_id: str | None = None,
    record_id: str | None = None,
) -> int:
    """Re-run transform and normalization over stored original data.

    Refreshes normalized data, linking and host ids, the suppression flag and
    dedup staging of every live record. Hosts are not notified.

    Args:
        pipeline: Pipeline holding the repository, settings and dedup handler.
        source_id: Source to process; all configured sources when None.
        record_id: Only process this record.

    Returns:
        Number of records processed.
    """
    dedup_handler = pipeline.require_dedup_handler()
    repo = pipeline.repo
    if source_id is not None:
        source_ids = [pipeline.settings(source_id).source_id]
    else:
        source_ids = list(pipeline.datasources)

    total = 0
    for sid in source_ids:
        settings = pipeline.settings(sid)
        logger.info("Renormalizing records of '%s'", sid)
        count = 0
        for record in repo.iterate_records(_record_filter(sid, record_id)):
            metadata_record, original_data, normalized_data = pipeline.parse_record(
                settings, record.original_data, record.oai_id
            )
            if metadata_record.suppressed():
                record.deleted = True
            record.original_data = original_data
            record.normalized_data = normalized_data
            record.linking_ids = metadata_record.linking_ids()
            record.host_record_ids = metadata_record.host_record_ids()

            if settings.dedup and not record.host_record_ids and not record.deleted:
                record.update_needed = dedup_handler.update_dedup_candidate_keys(
                    record, metadata_record
                )
            else:
                if record.dedup_id:
                    dedup_handler.remove_from_dedup_record(record.dedup_id, record.id)
                    record.dedup_id = None
                record.clear_dedup_keys()
                record.update_needed = False

            record.updated = repo.get_timestamp()
            repo.save_record(record)
            count += 1
            if count % _PROGRESS_EVERY == 0:
                logger.info("%d records processed from '%s'", count, sid)

        logger.info("Completed with %d records processed from '%s'", count, sid)
        total += count
    return total
