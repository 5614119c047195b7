from __future__ import annotations

import threading

import pytest

from webinar_data.models import SyncRun, SyncRunStatus
from webinar_data.sync.progress import ProgressTracker

pytestmark = pytest.mark.django_db


@pytest.fixture
def sync_run(connection) -> SyncRun:
    return SyncRun.objects.create(connection=connection, sync_type="incremental")


def test_progress_only_moves_forward(sync_run: SyncRun) -> None:
    tracker = ProgressTracker(sync_run.pk, heartbeat_interval=60)

    assert tracker.set_stage("fetching", 10) == 10
    assert tracker.set_stage("baseline", 5) == 10
    assert tracker.set_stage("syncing_participants", 40, webinar_external_id="w-1", processed=3, total=9) == 40

    sync_run.refresh_from_db()
    assert sync_run.sync_status == SyncRunStatus.IN_PROGRESS
    assert sync_run.stage == "syncing_participants"
    assert sync_run.progress_percentage == 40
    assert sync_run.current_webinar_external_id == "w-1"
    assert (sync_run.processed_items, sync_run.total_items) == (3, 9)


def test_progress_stays_below_100_until_complete(sync_run: SyncRun) -> None:
    tracker = ProgressTracker(sync_run.pk, heartbeat_interval=60)

    assert tracker.set_stage("verifying", 150) == 99

    assert tracker.complete(SyncRunStatus.COMPLETED)
    sync_run.refresh_from_db()
    assert sync_run.progress_percentage == 100
    assert sync_run.sync_status == SyncRunStatus.COMPLETED
    assert sync_run.completed_at is not None


def test_complete_writes_exactly_once(sync_run: SyncRun) -> None:
    tracker = ProgressTracker(sync_run.pk, heartbeat_interval=60)

    assert tracker.complete(SyncRunStatus.PARTIAL, "2 of 3 webinars failed", ["webinar 1: boom"])
    assert not tracker.complete(SyncRunStatus.COMPLETED)
    assert not ProgressTracker(sync_run.pk).complete(SyncRunStatus.FAILED)

    sync_run.refresh_from_db()
    assert sync_run.sync_status == SyncRunStatus.PARTIAL
    assert sync_run.error_message == "2 of 3 webinars failed"
    assert sync_run.error_details == ["webinar 1: boom"]


def test_complete_rejects_active_status(sync_run: SyncRun) -> None:
    with pytest.raises(ValueError, match="not a terminal"):
        ProgressTracker(sync_run.pk).complete(SyncRunStatus.IN_PROGRESS)


def test_stage_updates_are_ignored_after_completion(sync_run: SyncRun) -> None:
    tracker = ProgressTracker(sync_run.pk, heartbeat_interval=60)
    tracker.complete(SyncRunStatus.FAILED, "boom")

    tracker.set_stage("late", 50)

    sync_run.refresh_from_db()
    assert sync_run.stage == "failed"
    assert sync_run.progress_percentage == 100


def test_heartbeat_touches_active_runs_only(sync_run: SyncRun) -> None:
    tracker = ProgressTracker(sync_run.pk, heartbeat_interval=60)

    assert tracker.heartbeat()
    tracker.complete(SyncRunStatus.COMPLETED)
    assert not tracker.heartbeat()


def test_heartbeat_thread_runs_and_stops(sync_run: SyncRun, monkeypatch: pytest.MonkeyPatch) -> None:
    tracker = ProgressTracker(sync_run.pk, heartbeat_interval=0.01)
    beat = threading.Event()

    def fake_heartbeat() -> bool:
        beat.set()
        return True

    monkeypatch.setattr(tracker, "heartbeat", fake_heartbeat)

    with tracker.heartbeat_running() as thread:
        assert beat.wait(timeout=5)
        assert thread.is_alive()

    assert not thread.is_alive()


def test_heartbeat_thread_stops_when_the_body_raises(sync_run: SyncRun, monkeypatch: pytest.MonkeyPatch) -> None:
    tracker = ProgressTracker(sync_run.pk, heartbeat_interval=0.01)
    beat = threading.Event()
    monkeypatch.setattr(tracker, "heartbeat", lambda: beat.set() or True)
    started: list[threading.Thread] = []

    with pytest.raises(RuntimeError, match="sync step blew up"):
        with tracker.heartbeat_running() as thread:
            started.append(thread)
            assert beat.wait(timeout=5)
            raise RuntimeError("sync step blew up")

    assert not started[0].is_alive()
