import logging
import threading
from collections.abc import Iterator, Sequence
from contextlib import contextmanager

from django.db import DatabaseError, connection as db_connection
from django.db.models import QuerySet
from django.utils.timezone import now

from webinar_api.config import settings
from webinar_data.models import ACTIVE_SYNC_STATUSES, SyncRun, SyncRunStatus

logger = logging.getLogger(__name__)

TERMINAL_SYNC_STATUSES = (
    SyncRunStatus.COMPLETED,
    SyncRunStatus.COMPLETED_WITH_ERRORS,
    SyncRunStatus.PARTIAL,
    SyncRunStatus.FAILED,
)


class ProgressTracker:
    def __init__(self, run_id: int, heartbeat_interval: float | None = None) -> None:
        self.run_id = run_id
        self.heartbeat_interval = (
            heartbeat_interval if heartbeat_interval is not None else settings.sync.heartbeat_interval_seconds
        )
        self._percent = (
            SyncRun.objects.filter(pk=run_id).values_list("progress_percentage", flat=True).first() or 0
        )
        self._completed = False

    @property
    def percent(self) -> int:
        return self._percent

    def _active_run(self) -> QuerySet[SyncRun]:
        return SyncRun.objects.filter(pk=self.run_id, sync_status__in=ACTIVE_SYNC_STATUSES)

    def set_stage(
        self,
        stage: str,
        percent: int,
        webinar_external_id: str | None = None,
        processed: int | None = None,
        total: int | None = None,
    ) -> int:
        """Record the current stage; progress only ever moves forward and stays below 100 until completion."""
        self._percent = max(self._percent, min(99, int(percent)))
        updates: dict[str, object] = {
            "stage": stage,
            "progress_percentage": self._percent,
            "sync_status": SyncRunStatus.IN_PROGRESS,
            "current_webinar_external_id": webinar_external_id,
            "updated_at": now(),
        }
        if processed is not None:
            updates["processed_items"] = processed
        if total is not None:
            updates["total_items"] = total
        self._active_run().update(**updates)
        logger.debug("Sync run %s stage=%s progress=%s%%", self.run_id, stage, self._percent)
        return self._percent

    def record(self, **fields: object) -> None:
        """Persist summary blobs (fetch summary, baseline, verification) on the run."""
        SyncRun.objects.filter(pk=self.run_id).update(updated_at=now(), **fields)

    def heartbeat(self) -> bool:
        return bool(self._active_run().update(updated_at=now()))

    def _heartbeat_loop(self, stop_event: threading.Event) -> None:
        try:
            while not stop_event.wait(self.heartbeat_interval):
                try:
                    self.heartbeat()
                except DatabaseError as exc:
                    logger.warning("Heartbeat for sync run %s failed: %s", self.run_id, exc)
        finally:
            db_connection.close()

    @contextmanager
    def heartbeat_running(self) -> Iterator[threading.Thread]:
        stop_event = threading.Event()
        thread = threading.Thread(
            target=self._heartbeat_loop,
            args=(stop_event,),
            name=f"sync-heartbeat-{self.run_id}",
            daemon=True,
        )
        thread.start()
        try:
            yield thread
        finally:
            stop_event.set()
            thread.join()

    def complete(
        self,
        status: SyncRunStatus,
        message: str | None = None,
        error_details: Sequence[str] = (),
    ) -> bool:
        if status not in TERMINAL_SYNC_STATUSES:
            raise ValueError(f"{status!r} is not a terminal sync status")
        if self._completed:
            logger.warning("Sync run %s already completed; ignoring %s", self.run_id, status)
            return False

        current_time = now()
        updated = self._active_run().update(
            sync_status=status,
            stage=str(status),
            progress_percentage=100,
            current_webinar_external_id=None,
            completed_at=current_time,
            updated_at=current_time,
            error_message=message,
            error_details=list(error_details),
        )
        self._completed = True
        self._percent = 100
        if not updated:
            logger.warning("Sync run %s was no longer active when completing as %s", self.run_id, status)
            return False
        logger.info("SYNC_RUN done run_id=%s status=%s", self.run_id, status)
        return True
