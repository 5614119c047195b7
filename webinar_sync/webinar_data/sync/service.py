import logging
import threading
from datetime import datetime, timedelta
from typing import Any

from django.db import connection as db_connection, transaction
from django.utils.timezone import now

from webinar_api.config import settings
from webinar_data.models import ACTIVE_SYNC_STATUSES, Connection, SyncRun, SyncRunStatus
from webinar_data.sync.fetcher import build_strategy
from webinar_data.sync.pipeline import ClientFactory, PipelineResult, SyncPipeline, default_client_factory

logger = logging.getLogger(__name__)


class SyncAlreadyRunning(RuntimeError):
    def __init__(self, run_id: int) -> None:
        self.run_id = run_id
        super().__init__(f"Sync run {run_id} is already in progress for this connection")


def _isoformat(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat()


def stale_cutoff(current_time: datetime | None = None) -> datetime:
    return (current_time or now()) - timedelta(minutes=settings.sync.stale_run_minutes)


def clear_stale_runs(connection: Connection, current_time: datetime | None = None) -> int:
    current_time = current_time or now()
    cleared = SyncRun.objects.filter(
        connection=connection,
        sync_status__in=ACTIVE_SYNC_STATUSES,
        updated_at__lt=stale_cutoff(current_time),
    ).update(
        sync_status=SyncRunStatus.FAILED,
        stage=SyncRunStatus.FAILED,
        progress_percentage=100,
        completed_at=current_time,
        updated_at=current_time,
        error_message=f"No heartbeat for {settings.sync.stale_run_minutes} minutes; marked failed",
    )
    if cleared:
        logger.warning("Cleared %s stale sync runs for connection %s", cleared, connection.pk)
    return cleared


def run_pipeline(
    run_id: int,
    webinar_id: str | None = None,
    client_factory: ClientFactory = default_client_factory,
) -> PipelineResult:
    run = SyncRun.objects.select_related("connection").get(pk=run_id)
    pipeline = SyncPipeline(run, client_factory(run.connection), webinar_id=webinar_id)
    return pipeline.run()


def _run_in_background(run_id: int, webinar_id: str | None, client_factory: ClientFactory) -> None:
    try:
        run_pipeline(run_id, webinar_id, client_factory)
    except Exception:
        logger.exception("Background sync run %s crashed", run_id)
    finally:
        db_connection.close()


def start_sync(
    connection_id: int,
    sync_type: str,
    webinar_id: str | None = None,
    background: bool = True,
    client_factory: ClientFactory = default_client_factory,
) -> dict[str, Any]:
    """
    Create a ``SyncRun`` for the connection and execute it.

    Only one run may be active per connection. Runs whose heartbeat went
    quiet for ``stale_run_minutes`` are failed first so they cannot block new
    runs forever. With ``background`` the pipeline runs on a daemon thread and
    the returned status is ``started``; otherwise it runs inline and the
    terminal status is returned.
    """
    build_strategy(sync_type, webinar_id)

    with transaction.atomic():
        connection = Connection.objects.select_for_update().get(pk=connection_id)
        clear_stale_runs(connection)
        active_run = SyncRun.objects.filter(connection=connection, sync_status__in=ACTIVE_SYNC_STATUSES).first()
        if active_run is not None:
            raise SyncAlreadyRunning(active_run.pk)
        run = SyncRun.objects.create(connection=connection, sync_type=sync_type)

    logger.info("SYNC_RUN queued run_id=%s connection=%s type=%s", run.pk, connection_id, sync_type)
    if background:
        thread = threading.Thread(
            target=_run_in_background,
            args=(run.pk, webinar_id, client_factory),
            name=f"sync-run-{run.pk}",
            daemon=True,
        )
        thread.start()
        return {"run_id": run.pk, "status": SyncRunStatus.STARTED.value}

    result = run_pipeline(run.pk, webinar_id, client_factory)
    return {"run_id": run.pk, "status": str(result.status)}


def get_run_status(run_id: int) -> dict[str, Any] | None:
    run = SyncRun.objects.filter(pk=run_id).first()
    if run is None:
        return None

    current_time = now()
    heartbeat_age_seconds = max(0, int((current_time - run.updated_at).total_seconds()))
    return {
        "run_id": run.pk,
        "connection_id": run.connection_id,
        "sync_type": run.sync_type,
        "status": run.sync_status,
        "stage": run.stage,
        "progress_percentage": run.progress_percentage,
        "processed_items": run.processed_items,
        "total_items": run.total_items,
        "current_webinar_external_id": run.current_webinar_external_id,
        "started_at": _isoformat(run.started_at),
        "completed_at": _isoformat(run.completed_at),
        "updated_at": _isoformat(run.updated_at),
        "heartbeat_age_seconds": heartbeat_age_seconds,
        "is_stale": run.is_active and run.updated_at < stale_cutoff(current_time),
        "error_message": run.error_message,
        "error_details": run.error_details,
        "fetch_summary": run.fetch_summary,
        "verification": run.verification,
    }
