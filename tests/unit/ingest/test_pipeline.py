"""Tests for IngestionPipeline: store, delete and hierarchy/dedup upkeep."""

from __future__ import annotations

import json
from collections.abc import Iterator
from unittest.mock import MagicMock

import pytest

from recstage.config import ConfigError
from recstage.db.models import DedupGroup
from recstage.db.repository import RecordFilter
from recstage.dedup import StoreDedupHandler
from recstage.ingest.pipeline import IdentificationError, IngestionPipeline
from recstage.records.base import RecordParseError
from recstage.splitters import SPLITTERS
from recstage.splitters.base import BaseSplitter


def _dc(record_id: str = "", body: str = "", suppressed: bool = False) -> bytes:
    attr = ' suppressed="true"' if suppressed else ""
    rid = f"<recordID>{record_id}</recordID>" if record_id else ""
    return (
        f'<record xmlns:dc="http://purl.org/dc/elements/1.1/" '
        f'xmlns:dcterms="http://purl.org/dc/terms/"{attr}>{rid}{body}</record>'
    ).encode("utf-8")


def _js(doc: dict) -> bytes:
    return json.dumps(doc, separators=(",", ":")).encode("utf-8")


def _tree(*child_ids: str) -> bytes:
    return _js({"id": "F1", "children": [{"id": c} for c in child_ids]})


class _LineSplitter(BaseSplitter):
    """One chunk per non-empty line."""

    def split(self, payload: bytes) -> Iterator[bytes]:
        for line in payload.splitlines():
            if line.strip():
                yield line


# ---------------------------------------------------------------------------
# Configuration errors
# ---------------------------------------------------------------------------


def test_store_without_dedup_handler_raises(repo, datasources):
    pipeline = IngestionPipeline(repo, datasources, None)
    with pytest.raises(ConfigError, match="Dedup handler"):
        pipeline.store_record("libA", "oai:libA:1", False, _dc("1"))


def test_store_unknown_source_raises(pipeline):
    with pytest.raises(ConfigError, match="ghost"):
        pipeline.store_record("ghost", "", False, _dc("1"))


def test_oai_delete_unknown_source_raises(pipeline):
    with pytest.raises(ConfigError, match="ghost"):
        pipeline.store_record("ghost", "oai:ghost:1", True, b"")


def test_parse_error_propagates(pipeline):
    with pytest.raises(RecordParseError):
        pipeline.store_record("libA", "oai:libA:1", False, b"<record>")


# ---------------------------------------------------------------------------
# Single records
# ---------------------------------------------------------------------------


def test_end_to_end_single_record(repo, datasources):
    handler = MagicMock()
    handler.update_dedup_candidate_keys.return_value = True
    pipeline = IngestionPipeline(repo, datasources, handler)

    count = pipeline.store_record("libA", "oai:lib:1", False, _dc())

    assert count == 1
    assert repo.count_records() == 1
    record = repo.get_record("libA.1")
    assert record is not None
    assert record.deleted is False
    assert record.main_id is None
    assert record.update_needed is True
    assert record.oai_id == "oai:lib:1"
    assert record.format == "dc"
    assert record.created == record.updated == record.date
    handler.update_dedup_candidate_keys.assert_called_once()


def test_store_is_idempotent(repo, pipeline):
    payload = _dc("1", "<dc:title>Title</dc:title>")
    pipeline.store_record("libA", "oai:libA:1", False, payload)
    first = repo.get_record("libA.1")

    assert pipeline.store_record("libA", "oai:libA:1", False, payload) == 1
    second = repo.get_record("libA.1")

    assert repo.count_records() == 1
    assert second.created == first.created
    assert second.updated > first.updated
    assert second.original_data == first.original_data
    assert second.title_keys == first.title_keys == ["title"]
    # Keys unchanged on the second pass
    assert first.update_needed is True
    assert second.update_needed is False


def test_id_prefix_applied(repo, make_pipeline):
    pipeline = make_pipeline(
        {"libP": {"institution": "P", "format": "json", "id_prefix": "pref"}}
    )
    pipeline.store_record("libP", "", False, _js({"id": "x"}))
    assert repo.get_record("pref.x") is not None
    assert repo.get_record("libP.x") is None


def test_local_id_falls_back_to_oai_id(repo, pipeline):
    pipeline.store_record("plain", "oai:plain:7", False, _js({"title": "no id"}))
    assert repo.get_record("plain.oai:plain:7") is not None


def test_identification_error_before_first_record(pipeline):
    with pytest.raises(IdentificationError, match=r"\[none\]"):
        pipeline.store_record("plain", "", False, _js({"title": "no id"}))


def test_identification_error_names_previous_id(repo, make_pipeline, monkeypatch):
    monkeypatch.setitem(SPLITTERS, "lines", _LineSplitter)
    pipeline = make_pipeline(
        {"lines": {"institution": "L", "format": "json", "record_splitter": "lines"}}
    )
    payload = _js({"id": "a"}) + b"\n" + _js({"title": "broken"}) + b"\n" + _js({"id": "c"})

    with pytest.raises(IdentificationError, match="previous record ID: a"):
        pipeline.store_record("lines", "", False, payload)

    # No rollback of chunks already stored
    assert repo.get_record("lines.a") is not None
    assert repo.get_record("lines.c") is None


def test_suppressed_record_stored_deleted(repo, pipeline):
    pipeline.store_record("libA", "oai:libA:1", False, _dc("1", suppressed=True))
    record = repo.get_record("libA.1")
    assert record.deleted is True
    assert record.update_needed is False


def test_deleted_flag_without_oai_id_stores_deleted(repo, pipeline):
    assert pipeline.store_record("plain", "", True, _js({"id": "p1"})) == 1
    assert repo.get_record("plain.p1").deleted is True


def test_mark_mode_sets_mark(repo, pipeline):
    pipeline.store_record("plain", "", False, _js({"id": "p1"}))
    assert repo.get_record("plain.p1").mark is None

    pipeline.mark_records = True
    pipeline.store_record("plain", "", False, _js({"id": "p1"}))
    assert repo.get_record("plain.p1").mark is True


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


def test_noop_normalization_compacts(repo, pipeline):
    payload = _js({"id": "p1", "title": "clean"})
    pipeline.store_record("plain", "", False, payload)
    record = repo.get_record("plain.p1")
    assert record.normalized_data == b""
    assert record.original_data == payload
    assert record.record_data() == payload


def test_normalization_result_kept_when_different(repo, pipeline):
    pipeline.store_record("plain", "", False, _js({"id": "p1", "title": "  padded "}))
    record = repo.get_record("plain.p1")
    assert json.loads(record.original_data)["title"] == "  padded "
    assert json.loads(record.normalized_data)["title"] == "padded"


def test_transform_applied_before_parse(repo, datasources):
    calls = []

    def transform(data: bytes, oai_id: str) -> bytes:
        calls.append(oai_id)
        return data.replace(b"old", b"new")

    pipeline = IngestionPipeline(
        repo, datasources, StoreDedupHandler(repo), transforms={"plain": transform}
    )
    pipeline.store_record("plain", "oai:p:1", False, _js({"id": "t1", "title": "old"}))

    record = repo.get_record("plain.t1")
    assert calls == ["oai:p:1"]
    assert json.loads(record.original_data)["title"] == "old"
    assert json.loads(record.normalized_data)["title"] == "new"


# ---------------------------------------------------------------------------
# Splitter batches
# ---------------------------------------------------------------------------


def test_main_id_grouping(repo, pipeline):
    count = pipeline.store_record("arch", "o42", False, _tree("C1", "C2", "C3"))

    assert count == 4
    records = list(repo.iterate_records(RecordFilter(source_ids=["arch"])))
    without_main = [r for r in records if r.main_id is None]
    assert [r.id for r in without_main] == ["arch.F1"]
    assert {r.main_id for r in records if r.main_id} == {"arch.F1"}


def test_stale_children_retired(repo, pipeline):
    pipeline.store_record("arch", "o42", False, _tree("C1", "C2", "C3"))
    pipeline.store_record("arch", "o42", False, _tree("C1", "C2"))

    assert repo.get_record("arch.F1_C3").deleted is True
    assert repo.get_record("arch.F1_C3").update_needed is False
    assert repo.get_record("arch.F1_C1").deleted is False
    assert repo.get_record("arch.F1_C2").deleted is False
    assert repo.get_record("arch.F1").deleted is False


def test_stale_children_kept_when_configured(repo, make_pipeline):
    pipeline = make_pipeline(
        {
            "arch": {
                "institution": "B",
                "format": "json",
                "record_splitter": "json_tree",
                "keep_missing_hierarchy_members": True,
            }
        }
    )
    pipeline.store_record("arch", "o42", False, _tree("C1", "C2", "C3"))
    pipeline.store_record("arch", "o42", False, _tree("C1", "C2"))
    assert repo.get_record("arch.F1_C3").deleted is False


def test_single_chunk_batch_does_not_sweep(repo, pipeline):
    pipeline.store_record("arch", "o42", False, _tree("C1"))
    pipeline.store_record("arch", "o42", False, _tree())
    assert repo.get_record("arch.F1_C1").deleted is False


def test_oai_fan_out_delete(repo, pipeline):
    pipeline.store_record("arch", "o42", False, _tree("C1", "C2"))
    pipeline.store_record("arch", "o43", False, _js({"id": "other"}))

    assert pipeline.delete_by_oai_id("arch", "o42") == 3
    for rid in ("arch.F1", "arch.F1_C1", "arch.F1_C2"):
        assert repo.get_record(rid).deleted is True
    assert repo.get_record("arch.other").deleted is False
    # Already deleted records are not visited again
    assert pipeline.delete_by_oai_id("arch", "o42") == 0


def test_store_deleted_with_oai_id_delegates(repo, pipeline):
    pipeline.store_record("arch", "o42", False, _tree("C1", "C2"))
    assert pipeline.store_record("arch", "o42", True, b"") == 3


# ---------------------------------------------------------------------------
# Hosts and dedup
# ---------------------------------------------------------------------------


def test_component_propagates_to_host(repo, pipeline):
    pipeline.store_record("libB", "", False, _dc("H1"))
    assert repo.get_record("libB.H1").update_needed is False

    pipeline.store_record("parts", "", False, _js({"id": "c1", "host_ids": ["H1"]}))

    assert repo.get_record("libB.H1").update_needed is True
    assert repo.get_record("parts.c1").update_needed is False


def test_component_propagation_limited_to_linked_sources(repo, pipeline):
    pipeline.store_record("libA", "", False, _dc("H1"))
    pipeline.store_record("parts", "", False, _js({"id": "c1", "host_ids": ["H1"]}))
    assert repo.get_record("libA.H1").update_needed is False


def test_component_propagation_skips_deleted_host(repo, pipeline):
    pipeline.store_record("libB", "", False, _dc("H1", suppressed=True))
    pipeline.store_record("parts", "", False, _js({"id": "c1", "host_ids": ["H1"]}))
    host = repo.get_record("libB.H1")
    assert host.deleted is True
    assert host.update_needed is False


def test_component_leaves_dedup_group(repo, pipeline):
    pipeline.store_record("parts", "", False, _js({"id": "c1", "title": "T"}))
    pipeline.store_record("parts", "", False, _js({"id": "c2", "title": "T"}))
    repo.update_records(RecordFilter(ids=["parts.c1", "parts.c2"]), {"dedup_id": "d1"})
    repo.save_dedup(DedupGroup(id="d1", ids=["parts.c1", "parts.c2"]))

    pipeline.store_record("parts", "", False, _js({"id": "c1", "host_ids": ["H1"]}))

    assert repo.get_record("parts.c1").dedup_id is None
    assert repo.get_record("parts.c2").dedup_id is None
    assert repo.get_dedup("d1").deleted is True


def test_deleted_record_leaves_dedup_group(repo, pipeline):
    pipeline.store_record("libA", "", False, _dc("1"))
    pipeline.store_record("libB", "", False, _dc("1"))
    repo.update_records(RecordFilter(ids=["libA.1", "libB.1"]), {"dedup_id": "d1"})
    repo.save_dedup(DedupGroup(id="d1", ids=["libA.1", "libB.1"]))

    pipeline.store_record("libA", "", False, _dc("1", suppressed=True))

    record = repo.get_record("libA.1")
    assert record.dedup_id is None
    assert record.update_needed is False
    assert repo.get_record("libB.1").update_needed is True


def test_non_dedup_source_clears_keys_and_touches_host(repo, pipeline):
    pipeline.store_record("plain", "", False, _js({"id": "H1"}))
    before = repo.get_record("plain.H1").updated

    pipeline.store_record("plain", "", False, _js({"id": "c1", "host_ids": ["H1"], "title": "T"}))

    host = repo.get_record("plain.H1")
    component = repo.get_record("plain.c1")
    assert host.updated > before
    assert host.update_needed is False
    assert component.title_keys == []
    assert component.update_needed is False


def test_dedup_switched_off_leaves_group(repo, make_pipeline):
    sources = {"s": {"institution": "A", "format": "json", "dedup": True}}
    make_pipeline(sources).store_record("s", "", False, _js({"id": "a", "title": "T"}))
    make_pipeline(sources).store_record("s", "", False, _js({"id": "b", "title": "T"}))
    repo.update_records(RecordFilter(ids=["s.a", "s.b"]), {"dedup_id": "d1"})
    repo.save_dedup(DedupGroup(id="d1", ids=["s.a", "s.b"]))

    sources["s"]["dedup"] = False
    make_pipeline(sources).store_record("s", "", False, _js({"id": "a", "title": "T"}))

    record = repo.get_record("s.a")
    assert record.dedup_id is None
    assert record.title_keys == []
    assert record.update_needed is False
    assert repo.get_dedup("d1").deleted is True
    assert repo.get_record("s.b").dedup_id is None


def test_deleted_and_component_rules_hold_after_mixed_ingest(repo, pipeline):
    pipeline.store_record("libB", "", False, _dc("H1", "<dc:title>Host</dc:title>"))
    pipeline.store_record("parts", "", False, _js({"id": "c1", "host_ids": ["H1"]}))
    pipeline.store_record("libA", "", False, _dc("2", suppressed=True))
    pipeline.store_record("arch", "o1", False, _tree("C1", "C2"))
    pipeline.store_record("arch", "o1", False, _tree("C1"))
    pipeline.delete_by_oai_id("arch", "o1")

    for record in repo.iterate_records():
        if record.deleted:
            assert record.update_needed is False
        if pipeline.settings(record.source_id).dedup and record.host_record_ids:
            assert record.dedup_id is None


# ---------------------------------------------------------------------------
# mark_record_deleted
# ---------------------------------------------------------------------------


def test_mark_record_deleted_deferred_flags_host(repo, pipeline):
    pipeline.store_record("libB", "", False, _dc("H1"))
    pipeline.store_record("parts", "", False, _js({"id": "c1", "host_ids": ["H1"]}))
    repo.update_record("libB.H1", {"update_needed": False})

    pipeline.mark_record_deleted(repo.get_record("parts.c1"), defer_host_update=True)

    assert repo.get_record("parts.c1").deleted is True
    assert repo.get_record("libB.H1").update_needed is True


def test_mark_record_deleted_touches_host(repo, pipeline):
    pipeline.store_record("libB", "", False, _dc("H1"))
    pipeline.store_record("parts", "", False, _js({"id": "c1", "host_ids": ["H1"]}))
    repo.update_record("libB.H1", {"update_needed": False})
    before = repo.get_record("libB.H1").updated

    pipeline.mark_record_deleted(repo.get_record("parts.c1"))

    host = repo.get_record("libB.H1")
    assert host.updated > before
    assert host.update_needed is False


def test_mark_record_deleted_saves_before_leaving_group(repo, datasources):
    seen = {}
    handler = MagicMock()

    def _remove(dedup_id, record_id):
        seen["stored_dedup_id"] = repo.get_record(record_id).dedup_id
        seen["stored_deleted"] = repo.get_record(record_id).deleted

    handler.remove_from_dedup_record.side_effect = _remove
    handler.update_dedup_candidate_keys.return_value = True
    pipeline = IngestionPipeline(repo, datasources, handler)
    pipeline.store_record("libA", "", False, _dc("1"))
    repo.update_record("libA.1", {"dedup_id": "d1"})

    pipeline.mark_record_deleted(repo.get_record("libA.1"))

    handler.remove_from_dedup_record.assert_called_once_with("d1", "libA.1")
    assert seen == {"stored_dedup_id": None, "stored_deleted": True}
    record = repo.get_record("libA.1")
    assert record.update_needed is False


def test_mark_record_deleted_is_idempotent(repo, pipeline):
    pipeline.store_record("plain", "", False, _js({"id": "p1"}))
    pipeline.mark_record_deleted(repo.get_record("plain.p1"))
    pipeline.mark_record_deleted(repo.get_record("plain.p1"))
    record = repo.get_record("plain.p1")
    assert record.deleted is True
    assert record.update_needed is False


# ---------------------------------------------------------------------------
# Full reharvest sweep
# ---------------------------------------------------------------------------


def test_mark_unseen_deleted(repo, pipeline):
    pipeline.mark_records = True
    pipeline.store_record("plain", "o1", False, _js({"id": "p1"}))
    pipeline.store_record("plain", "o2", False, _js({"id": "p2"}))
    pipeline.store_record("plain", "", False, _js({"id": "p3"}))
    pipeline.mark_records = False

    assert pipeline.unmark_source("plain") == 3
    assert pipeline.mark_seen("plain", "o1", False) == 1
    assert pipeline.mark_seen("plain", "o2", True) == 0

    assert pipeline.mark_unseen_deleted("plain") == 2
    assert repo.get_record("plain.p1").deleted is False
    assert repo.get_record("plain.p2").deleted is True
    assert repo.get_record("plain.p3").deleted is True


def test_mark_unseen_deleted_counts_split_siblings(repo, pipeline):
    pipeline.mark_records = True
    pipeline.store_record("arch", "o42", False, _tree("C1", "C2"))
    pipeline.mark_records = False

    assert pipeline.unmark_source("arch") == 3
    assert pipeline.mark_unseen_deleted("arch") == 3
    for rid in ("arch.F1", "arch.F1_C1", "arch.F1_C2"):
        assert repo.get_record(rid).deleted is True
