from __future__ import annotations

import json
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import pytest

from swappy.core.errors import ConflictError, InvalidInputError, NotFoundError
from swappy.domain.models import AssetKind, AssetRecord, DerivedAssetState, DerivedKind, DerivedStatus, utcnow
from swappy.services import Catalog


def _record(asset_id: str, kind: AssetKind = AssetKind.audio, **overrides) -> AssetRecord:
    record = AssetRecord.new(
        asset_id=asset_id,
        kind=kind,
        original_filename=f"{asset_id}.bin",
        size_bytes=10,
        storage_path=f"{kind.value}/{asset_id}_{asset_id}.bin",
    )
    return record.model_copy(update=overrides)


def test_new_record_starts_every_applicable_kind_not_started():
    video = _record("v1", AssetKind.video)
    audio = _record("a1", AssetKind.audio)
    assert set(video.derived) == {DerivedKind.thumbnail}
    assert set(audio.derived) == {DerivedKind.transient_markers, DerivedKind.waveform}
    assert all(state.status == DerivedStatus.not_started for state in audio.derived.values())


def test_duplicate_id_is_a_conflict():
    catalog = Catalog()
    catalog.insert(_record("a1"))
    with pytest.raises(ConflictError) as excinfo:
        catalog.insert(_record("a1"))
    assert excinfo.value.code == "asset_id_conflict"
    assert len(catalog) == 1


def test_reads_are_copies():
    catalog = Catalog()
    catalog.insert(_record("a1"))
    copy = catalog.require("a1")
    copy.derived[DerivedKind.waveform] = DerivedAssetState.pending("rogue")
    assert catalog.require("a1").derived[DerivedKind.waveform].status == DerivedStatus.not_started


def test_unknown_id_is_not_found():
    catalog = Catalog()
    assert catalog.get("nope") is None
    with pytest.raises(NotFoundError):
        catalog.require("nope")
    with pytest.raises(NotFoundError):
        catalog.update_derived("nope", DerivedKind.waveform, DerivedAssetState.pending("j"))
    with pytest.raises(NotFoundError):
        catalog.remove("nope")


def test_list_orders_by_upload_time_then_insertion():
    catalog = Catalog()
    now = utcnow()
    catalog.insert(_record("late", uploaded_at=now + timedelta(seconds=5)))
    catalog.insert(_record("early", uploaded_at=now))
    catalog.insert(_record("tie", uploaded_at=now))
    catalog.insert(_record("video", AssetKind.video, uploaded_at=now))

    assert [r.id for r in catalog.list(AssetKind.audio)] == ["early", "tie", "late"]
    assert [r.id for r in catalog.list()] == ["early", "tie", "video", "late"]


def test_pending_claim_is_exclusive():
    catalog = Catalog()
    catalog.insert(_record("a1"))

    first = catalog.update_derived("a1", DerivedKind.waveform, DerivedAssetState.pending("job-1"))
    second = catalog.update_derived("a1", DerivedKind.waveform, DerivedAssetState.pending("job-2"))
    assert first.job_id == "job-1"
    assert second.job_id == "job-1"


def test_concurrent_claims_have_one_winner():
    catalog = Catalog()
    catalog.insert(_record("a1"))

    def claim(index: int) -> str:
        state = catalog.update_derived("a1", DerivedKind.transient_markers, DerivedAssetState.pending(f"job-{index}"))
        return state.job_id

    with ThreadPoolExecutor(max_workers=8) as pool:
        owners = set(pool.map(claim, range(32)))
    assert len(owners) == 1


def test_terminal_states_require_pending_owner():
    catalog = Catalog()
    catalog.insert(_record("a1"))

    untouched = catalog.update_derived("a1", DerivedKind.waveform, DerivedAssetState.ready("waveforms/a1.json"))
    assert untouched.status == DerivedStatus.not_started

    catalog.update_derived("a1", DerivedKind.waveform, DerivedAssetState.pending("job-1"))
    stale = catalog.update_derived(
        "a1",
        DerivedKind.waveform,
        DerivedAssetState.failed("timeout", job_id="job-0"),
        expected_job_id="job-0",
    )
    assert stale.status == DerivedStatus.pending

    done = catalog.update_derived(
        "a1",
        DerivedKind.waveform,
        DerivedAssetState.ready("waveforms/a1.json", job_id="job-1"),
        expected_job_id="job-1",
    )
    assert done.status == DerivedStatus.ready

    late = catalog.update_derived(
        "a1",
        DerivedKind.waveform,
        DerivedAssetState.failed("late", job_id="job-1"),
        expected_job_id="job-1",
    )
    assert late.status == DerivedStatus.ready
    assert catalog.require("a1").derived[DerivedKind.waveform].storage_key == "waveforms/a1.json"


def test_inapplicable_kind_is_rejected():
    catalog = Catalog()
    catalog.insert(_record("v1", AssetKind.video))
    with pytest.raises(InvalidInputError) as excinfo:
        catalog.update_derived("v1", DerivedKind.waveform, DerivedAssetState.pending("j"))
    assert excinfo.value.code == "derived_kind_not_applicable"


def test_snapshot_round_trip_marks_pending_interrupted(tmp_path):
    snapshot = tmp_path / "state" / "catalog.json"
    catalog = Catalog(snapshot_path=snapshot)
    catalog.insert(_record("a1"))
    catalog.insert(_record("v1", AssetKind.video))
    catalog.update_derived("a1", DerivedKind.waveform, DerivedAssetState.pending("job-1"))
    catalog.update_derived("v1", DerivedKind.thumbnail, DerivedAssetState.pending("job-2"))
    catalog.update_derived(
        "v1",
        DerivedKind.thumbnail,
        DerivedAssetState.ready("thumbnails/v1.jpg", job_id="job-2"),
        expected_job_id="job-2",
    )
    catalog.close()
    assert len(json.loads(snapshot.read_text())) == 2

    restored = Catalog(snapshot_path=snapshot)
    assert restored.load() == 2
    waveform = restored.require("a1").derived[DerivedKind.waveform]
    assert waveform.status == DerivedStatus.failed
    assert waveform.reason == "interrupted"
    assert restored.require("v1").derived[DerivedKind.thumbnail].status == DerivedStatus.ready
    assert [r.id for r in restored.list()] == ["a1", "v1"]
    restored.close()


def test_remove_updates_snapshot(tmp_path):
    snapshot = tmp_path / "catalog.json"
    catalog = Catalog(snapshot_path=snapshot)
    catalog.insert(_record("a1"))
    removed = catalog.remove("a1")
    assert removed.id == "a1"
    assert "a1" not in catalog
    catalog.close()
    assert json.loads(snapshot.read_text()) == []


def test_load_without_snapshot_is_empty(tmp_path):
    assert Catalog().load() == 0
    assert Catalog(snapshot_path=tmp_path / "missing.json").load() == 0


def test_snapshot_writes_are_coalesced_off_the_caller_thread(tmp_path):
    snapshot = tmp_path / "catalog.json"
    catalog = Catalog(snapshot_path=snapshot, flush_interval_s=0.2)
    writers: list[str] = []
    write_snapshot = catalog._write_snapshot

    def recording_write(payload: bytes) -> None:
        writers.append(threading.current_thread().name)
        write_snapshot(payload)

    catalog._write_snapshot = recording_write
    catalog.insert(_record("a1"))
    for index in range(20):
        catalog.update_derived("a1", DerivedKind.waveform, DerivedAssetState.pending(f"job-{index}"))
        catalog.update_derived(
            "a1",
            DerivedKind.waveform,
            DerivedAssetState.failed("boom", job_id=f"job-{index}"),
            expected_job_id=f"job-{index}",
        )
    catalog.close()

    assert 1 <= len(writers) <= 3
    assert all(name == "swappy-catalog-snapshot" for name in writers)
    saved = json.loads(snapshot.read_text())
    assert saved[0]["derived"]["waveform"]["job_id"] == "job-19"


def test_changes_after_close_are_still_written(tmp_path):
    snapshot = tmp_path / "catalog.json"
    catalog = Catalog(snapshot_path=snapshot, flush_interval_s=0)
    catalog.insert(_record("a1"))
    catalog.close()
    catalog.insert(_record("a2"))
    catalog.close()
    assert [item["id"] for item in json.loads(snapshot.read_text())] == ["a1", "a2"]
