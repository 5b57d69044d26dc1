"""Ingestion pipeline: store harvested records and keep hierarchy/dedup state.

One ``store_record()`` call handles one harvested unit:

  payload → [splitter] → per chunk: [pre-transform] → parse → normalize
          → resolve id / hierarchy → dedup staging → upsert

After a multi-chunk batch, children of the batch that were not refreshed by
this harvest are marked deleted (unless the source keeps missing hierarchy
members). Changes to component parts are pushed to their host records with
single bulk updates scoped by the source's linked host sources.

The pipeline is synchronous and holds no locks. Concurrent calls touching the
same record id must be serialized by the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping

from recstage.config import ConfigError, DataSourceSettings
from recstage.db.models import StoredRecord
from recstage.db.repository import RecordFilter, Repository
from recstage.dedup import DedupHandler
from recstage.records.base import BaseRecord
from recstage.records.factory import RecordFactory
from recstage.splitters import get_splitter

logger = logging.getLogger(__name__)

# (data, oai_id) -> transformed data, applied before parsing.
Transform = Callable[[bytes, str], bytes]

_NO_PREVIOUS_ID = "[none]"


class IdentificationError(ValueError):
    """Raised when a parsed record has no id and no OAI id to fall back on."""


class IngestionPipeline:
    """Store, delete and re-stage records of configured data sources.

    Args:
        repo: Open Repository (the record store).
        datasources: Resolved data source settings keyed by source id.
        dedup_handler: Dedup handler; ``store_record()`` refuses to run
            without one.
        record_factory: Format-keyed record parser registry.
        transforms: Optional pre-normalization transform per source id.
        mark_records: Set ``mark`` on every stored record ("seen" flag used
            by full-reharvest sweeps).
    """

    def __init__(
        self,
        repo: Repository,
        datasources: Mapping[str, DataSourceSettings],
        dedup_handler: DedupHandler | None,
        record_factory: RecordFactory | None = None,
        transforms: Mapping[str, Transform] | None = None,
        mark_records: bool = False,
    ) -> None:
        self._repo = repo
        self._datasources = datasources
        self._dedup_handler = dedup_handler
        self._factory = record_factory or RecordFactory()
        self._transforms = dict(transforms or {})
        self.mark_records = mark_records

    @property
    def repo(self) -> Repository:
        return self._repo

    @property
    def datasources(self) -> Mapping[str, DataSourceSettings]:
        return self._datasources

    def settings(self, source_id: str) -> DataSourceSettings:
        """Return settings for *source_id*.

        Raises:
            ConfigError: If the source is not configured.
        """
        settings = self._datasources.get(source_id)
        if settings is None:
            raise ConfigError(f"Settings not found for data source '{source_id}'")
        return settings

    # ------------------------------------------------------------------
    # Store
    # ------------------------------------------------------------------

    def store_record(
        self, source_id: str, oai_id: str, deleted: bool, payload: bytes
    ) -> int:
        """Save one harvested unit, which may produce several records.

        Args:
            source_id: Configured data source id.
            oai_id: Identifier as received from the harvest (may be empty).
            deleted: Whether the harvest reported the unit deleted.
            payload: Raw metadata.

        Returns:
            Number of records written (or retired, for OAI deletions).

        Raises:
            ConfigError: No dedup handler, unknown source, format or splitter.
            IdentificationError: A chunk has neither a record id nor an OAI id.
            RecordParseError: The payload or a chunk is malformed.
        """
        dedup_handler = self.require_dedup_handler()

        settings = self.settings(source_id)
        if deleted and oai_id:
            return self.delete_by_oai_id(source_id, oai_id)

        chunks = self._split(settings, payload)

        # Children of a hierarchy not refreshed after this point are stale
        start_time = self._repo.get_timestamp()

        count = 0
        main_id: str | None = None
        previous_id = _NO_PREVIOUS_ID
        for data in chunks:
            metadata_record, original_data, normalized_data = self.parse_record(
                settings, data, oai_id
            )

            local_id = metadata_record.record_id() or oai_id
            if not local_id:
                raise IdentificationError(
                    "Empty ID returned for record, and no OAI ID "
                    f"(previous record ID: {previous_id})"
                )
            previous_id = local_id
            record_id = f"{settings.id_prefix}.{local_id}"

            stored = self._repo.get_record(record_id)
            now = self._repo.get_timestamp()
            if stored is not None:
                logger.debug("Updating record %s", record_id)
                stored.updated = now
            else:
                logger.debug("Adding record %s", record_id)
                stored = StoredRecord(
                    id=record_id, source_id=source_id, created=now, updated=now
                )
            stored.date = stored.updated
            if self.mark_records:
                stored.mark = True

            stored.oai_id = oai_id
            stored.deleted = deleted or metadata_record.suppressed()
            stored.linking_ids = metadata_record.linking_ids()
            stored.host_record_ids = metadata_record.host_record_ids()
            if main_id is not None:
                stored.main_id = main_id
            stored.format = settings.format
            stored.original_data = original_data
            stored.normalized_data = normalized_data

            self.stage_for_dedup(settings, stored, metadata_record, dedup_handler)
            self._repo.save_record(stored)
            count += 1
            if main_id is None:
                main_id = record_id

        logger.debug("Stored %d record(s) from '%s'", count, source_id)

        if count > 1 and main_id and not settings.keep_missing_hierarchy_members:
            retired = self._repo.update_records(
                RecordFilter(
                    source_ids=[source_id],
                    main_id=main_id,
                    updated_before=start_time,
                    deleted=False,
                ),
                {
                    "deleted": True,
                    "updated": self._repo.get_timestamp(),
                    "update_needed": False,
                },
            )
            if retired:
                logger.info(
                    "Marked %d missing hierarchy member(s) of %s deleted", retired, main_id
                )

        return count

    def _split(self, settings: DataSourceSettings, payload: bytes) -> Iterable[bytes]:
        if not settings.record_splitter:
            return [payload]
        logger.debug("Splitting records with '%s'", settings.record_splitter)
        splitter = get_splitter(settings.record_splitter, settings.record_splitter_params)
        return splitter.split(payload)

    def parse_record(
        self, settings: DataSourceSettings, data: bytes, oai_id: str
    ) -> tuple[BaseRecord, bytes, bytes]:
        """Parse *data*; return the normalized record, original and normalized bytes.

        Normalized bytes are empty when normalization changed nothing.
        """
        source_id = settings.source_id
        transform = self._transforms.get(source_id)
        if transform is not None:
            metadata_record = self._factory.create(
                settings.format, transform(data, oai_id), oai_id, source_id
            )
            metadata_record.normalize()
            normalized_data = metadata_record.serialize()
            original_data = self._factory.create(
                settings.format, data, oai_id, source_id
            ).serialize()
        else:
            metadata_record = self._factory.create(settings.format, data, oai_id, source_id)
            original_data = metadata_record.serialize()
            metadata_record.normalize()
            normalized_data = metadata_record.serialize()

        if normalized_data == original_data:
            normalized_data = b""
        return metadata_record, original_data, normalized_data

    def stage_for_dedup(
        self,
        settings: DataSourceSettings,
        stored: StoredRecord,
        metadata_record: BaseRecord,
        dedup_handler: DedupHandler,
    ) -> None:
        """Set update_needed / dedup fields and notify host records."""
        host_ids = stored.host_record_ids
        if not settings.dedup:
            # Dedup may have been switched off after the record was grouped
            if stored.dedup_id:
                dedup_handler.remove_from_dedup_record(stored.dedup_id, stored.id)
                stored.dedup_id = None
            stored.clear_dedup_keys()
            stored.update_needed = False
            if host_ids:
                self._repo.update_records(
                    self._host_filter(settings, host_ids),
                    {"updated": self._repo.get_timestamp()},
                )
            return

        if stored.deleted:
            if stored.dedup_id:
                dedup_handler.remove_from_dedup_record(stored.dedup_id, stored.id)
                stored.dedup_id = None
            stored.update_needed = False
        elif not host_ids:
            stored.update_needed = dedup_handler.update_dedup_candidate_keys(
                stored, metadata_record
            )
        else:
            # Component parts have no dedup identity of their own; their host
            # gets reprocessed instead.
            if stored.dedup_id:
                dedup_handler.remove_from_dedup_record(stored.dedup_id, stored.id)
                stored.dedup_id = None
            self._repo.update_records(
                self._host_filter(settings, host_ids), {"update_needed": True}
            )
            stored.update_needed = False

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def mark_record_deleted(
        self, record: StoredRecord, defer_host_update: bool = False
    ) -> None:
        """Mark a stored record deleted and notify its host records.

        Args:
            record: The full stored record.
            defer_host_update: Flag hosts with update_needed instead of
                touching their updated timestamp right away.
        """
        dedup_id = record.dedup_id
        record.dedup_id = None
        record.deleted = True
        record.updated = self._repo.get_timestamp()
        record.update_needed = False
        self._repo.save_record(record)

        # The record no longer points at the group, so it is safe to shrink it
        if dedup_id:
            self.require_dedup_handler().remove_from_dedup_record(dedup_id, record.id)

        settings = self.settings(record.source_id)
        metadata_record = self._factory.create(
            record.format, record.record_data(normalized=True), record.oai_id, record.source_id
        )
        host_ids = metadata_record.host_record_ids()
        if host_ids:
            patch = (
                {"update_needed": True}
                if defer_host_update
                else {"updated": self._repo.get_timestamp()}
            )
            self._repo.update_records(self._host_filter(settings, host_ids), patch)

    def delete_by_oai_id(self, source_id: str, oai_id: str) -> int:
        """Mark deleted every live record of *source_id* carrying *oai_id*.

        One OAI identifier may have been split into several records.

        Returns:
            Number of records marked deleted.
        """
        count = 0
        for record in self._repo.iterate_records(
            RecordFilter(source_ids=[source_id], oai_id=oai_id, deleted=False)
        ):
            logger.debug("Delete by oai_id %s: %s", oai_id, record.id)
            self.mark_record_deleted(record)
            count += 1
        return count

    # ------------------------------------------------------------------
    # Full reharvest sweep
    # ------------------------------------------------------------------

    def unmark_source(self, source_id: str) -> int:
        """Clear the "seen" flag on all live records of *source_id*."""
        logger.info("Unmarking records of '%s' for reharvest", source_id)
        return self._repo.update_records(
            RecordFilter(source_ids=[source_id], deleted=False), {"mark": None}
        )

    def mark_seen(self, source_id: str, oai_id: str, deleted: bool) -> int:
        """Flag records of *oai_id* as seen without re-storing them."""
        if deleted:
            return 0
        return self._repo.update_records(
            RecordFilter(source_ids=[source_id], oai_id=oai_id), {"mark": True}
        )

    def mark_unseen_deleted(self, source_id: str) -> int:
        """Delete every live record of *source_id* not seen since unmarking.

        Returns:
            Number of records retired, including split siblings that share
            an OAI id with an unseen record.
        """
        logger.info("Marking unseen records of '%s' deleted", source_id)
        count = 0
        for record in self._repo.iterate_records(
            RecordFilter(source_ids=[source_id], deleted=False, unmarked=True)
        ):
            if record.oai_id:
                retired = self.store_record(source_id, record.oai_id, True, b"")
            else:
                self.mark_record_deleted(record)
                retired = 1
            before = count
            count += retired
            if count // 1000 > before // 1000:
                logger.info("Deleted %d records", count)
        logger.info("Deleted %d unseen records from '%s'", count, source_id)
        return count

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def require_dedup_handler(self) -> DedupHandler:
        """Return the dedup handler or raise ConfigError if none is set."""
        if self._dedup_handler is None:
            raise ConfigError("Dedup handler missing")
        return self._dedup_handler

    @staticmethod
    def _host_filter(settings: DataSourceSettings, host_ids: list[str]) -> RecordFilter:
        """Live records that may be hosts of *host_ids*, across linked sources.

        Uses the component's own source settings to resolve linked sources.
        """
        return RecordFilter(
            source_ids=settings.linked_host_source_ids(),
            linking_ids=list(host_ids),
            deleted=False,
        )
