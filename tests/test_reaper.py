"""Reaper sweeps: deletion of spent shares, idempotence, failure isolation."""

import asyncio
import threading

import pytest

from coordinator import TransferCoordinator
from errors import ShareStatus, StorageError
from reaper import Reaper
from share_store import ShareRecordStore
from storage import StorageBackend


class FlakyDeleteBlobs(StorageBackend):
    """Fails deletes for the keys listed in ``failing``."""

    def __init__(self, *args, failing=(), **kwargs):
        super().__init__(*args, **kwargs)
        self.failing = set(failing)
        self.delete_calls = []

    def delete(self, key):
        self.delete_calls.append(key)
        if key in self.failing:
            raise StorageError("bucket unavailable")
        super().delete(key)


class SweepAfterClaimStore(ShareRecordStore):
    """Runs a reaper pass right after a download claims its share."""

    def __init__(self, reaper):
        self.reaper = reaper
        self.reports = []

    def mark_downloaded(self, db, share_id, now):
        claimed = super().mark_downloaded(db, share_id, now)
        if claimed:
            self.reports.append(self.reaper.sweep())
        return claimed


def _upload(coordinator, db, name, data=b"0123456789"):
    return coordinator.upload_and_share(db, filename=name, file_type="text/plain", data=data)


def test_sweep_removes_expired_share(coordinator, reaper, db, clock, blobs):
    record = _upload(coordinator, db, "old.txt")

    clock.at(601)
    report = reaper.sweep()

    assert report.deleted == 1
    assert report.results[0].reason == "expired"
    assert not blobs.exists(record.storage_path)
    assert coordinator.resolve(db, record.code).status is ShareStatus.NOT_FOUND


def test_sweep_removes_downloaded_share(coordinator, reaper, db, clock, blobs):
    record = _upload(coordinator, db, "taken.txt")
    clock.at(6)
    assert coordinator.complete_download(db, record.code).status is ShareStatus.FOUND

    report = reaper.sweep()

    assert [r.reason for r in report.results] == ["downloaded"]
    assert not blobs.exists(record.storage_path)
    assert coordinator.resolve(db, record.code).status is ShareStatus.NOT_FOUND
    assert coordinator.complete_download(db, record.code).status is ShareStatus.NOT_FOUND


def test_sweep_leaves_active_shares_alone(coordinator, reaper, db, clock, blobs):
    active = _upload(coordinator, db, "fresh.txt")

    clock.at(300)
    report = reaper.sweep()

    assert report.results == []
    assert blobs.exists(active.storage_path)
    assert coordinator.resolve(db, active.code).status is ShareStatus.FOUND


def test_resolve_stays_expired_until_swept(coordinator, reaper, db, clock):
    record = _upload(coordinator, db, "late.txt")

    clock.at(601)
    assert coordinator.resolve(db, record.code).status is ShareStatus.EXPIRED
    assert coordinator.resolve(db, record.code).status is ShareStatus.EXPIRED
    reaper.sweep()
    assert coordinator.resolve(db, record.code).status is ShareStatus.NOT_FOUND


def test_second_sweep_is_a_noop(coordinator, reaper, db, clock):
    _upload(coordinator, db, "a.txt")
    _upload(coordinator, db, "b.txt")
    clock.at(700)

    first = reaper.sweep()
    second = reaper.sweep()

    assert first.deleted == 2
    assert first.failed == 0
    assert second.results == []


def test_sweep_tolerates_blob_already_gone(coordinator, reaper, db, clock, blobs):
    record = _upload(coordinator, db, "gone.txt")
    blobs.delete(record.storage_path)

    clock.at(601)
    report = reaper.sweep()

    assert report.deleted == 1
    assert report.failed == 0


def test_blob_failure_keeps_record_for_next_pass(session_factory, coordinator, db, clock, tmp_path):
    record = _upload(coordinator, db, "stuck.txt")
    other = _upload(coordinator, db, "fine.txt")
    flaky = FlakyDeleteBlobs(
        use_minio=False,
        upload_dir=coordinator.blobs.upload_dir,
        failing={record.storage_path},
    )
    reaper = Reaper(session_factory=session_factory, blobs=flaky, clock=clock)

    clock.at(601)
    report = reaper.sweep()

    by_id = {r.id: r for r in report.results}
    assert by_id[record.id].status == "error"
    assert "bucket unavailable" in by_id[record.id].error
    assert by_id[other.id].status == "deleted"
    # The stuck record is still there, and still reads as expired.
    assert coordinator.resolve(db, record.code).status is ShareStatus.EXPIRED

    flaky.failing.clear()
    retry = reaper.sweep()
    assert [r.id for r in retry.results] == [record.id]
    assert retry.deleted == 1
    assert coordinator.resolve(db, record.code).status is ShareStatus.NOT_FOUND


def test_overlapping_sweeps_do_not_fail(coordinator, session_factory, blobs, db, clock):
    records = [_upload(coordinator, db, f"f{i}.txt") for i in range(5)]
    clock.at(601)

    reapers = [Reaper(session_factory=session_factory, blobs=blobs, clock=clock) for _ in range(2)]
    barrier = threading.Barrier(len(reapers))
    reports = []

    def run(r):
        barrier.wait()
        reports.append(r.sweep())

    threads = [threading.Thread(target=run, args=(r,)) for r in reapers]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(reports) == 2
    assert all(report.failed == 0 for report in reports)
    for record in records:
        assert not blobs.exists(record.storage_path)
        assert coordinator.resolve(db, record.code).status is ShareStatus.NOT_FOUND


class _StopLoop(BaseException):
    pass


def test_run_forever_survives_a_failing_tick(session_factory, blobs, clock, monkeypatch):
    reaper = Reaper(session_factory=session_factory, blobs=blobs, clock=clock)
    calls = []

    def sweep():
        calls.append(1)
        if len(calls) == 1:
            raise RuntimeError("database unavailable")
        raise _StopLoop()

    monkeypatch.setattr(reaper, "sweep", sweep)

    with pytest.raises(_StopLoop):
        asyncio.run(reaper.run_forever(0))
    assert len(calls) == 2


def test_sweep_between_claim_and_read(reaper, blobs, db, clock):
    store = SweepAfterClaimStore(reaper)
    coordinator = TransferCoordinator(blobs=blobs, store=store, clock=clock)
    record = _upload(coordinator, db, "raced.txt")

    clock.at(6)
    result = coordinator.complete_download(db, record.code)

    # The pass took the blob before it could be read; the share is still spent.
    assert result.status is ShareStatus.STORAGE_ERROR
    assert result.data is None
    [report] = store.reports
    assert report.failed == 0
    assert [r.reason for r in report.results] == ["downloaded"]
    assert not blobs.exists(record.storage_path)
    assert coordinator.resolve(db, record.code).status is ShareStatus.NOT_FOUND
    assert reaper.sweep().results == []


def test_spent_and_expired_share_is_reported_as_expired(coordinator, reaper, db, clock):
    record = _upload(coordinator, db, "both.txt")
    clock.at(6)
    assert coordinator.complete_download(db, record.code).status is ShareStatus.FOUND

    clock.at(601)
    report = reaper.sweep()

    assert [(r.id, r.reason) for r in report.results] == [(record.id, "expired")]
