import json
from typing import Any

from django.core.management.base import BaseCommand

from webinar_data.models import SyncRun
from webinar_data.sync.service import get_run_status

UNKNOWN_PAYLOAD: dict[str, Any] = {
    "run_id": None,
    "connection_id": None,
    "sync_type": None,
    "status": "unknown",
    "stage": None,
    "progress_percentage": 0,
    "processed_items": 0,
    "total_items": 0,
    "current_webinar_external_id": None,
    "started_at": None,
    "completed_at": None,
    "updated_at": None,
    "heartbeat_age_seconds": None,
    "is_stale": False,
    "error_message": None,
    "error_details": [],
    "fetch_summary": None,
    "verification": None,
}


class Command(BaseCommand):
    help = "Emit webinar sync run status as single-line JSON"

    def add_arguments(self, parser) -> None:  # type: ignore[no-untyped-def]
        parser.add_argument("--run-id", type=int, default=None, help="Report this run instead of the latest.")
        parser.add_argument(
            "--connection-id",
            type=int,
            default=None,
            help="Report the latest run of this connection.",
        )
        parser.add_argument(
            "--stale-threshold-seconds",
            type=int,
            default=0,
            help="Mark an active run stale when its heartbeat is older than this threshold.",
        )
        parser.add_argument(
            "--fail-on-stale",
            action="store_true",
            help="Exit with status code 2 when the reported run is stale.",
        )

    @staticmethod
    def _latest_run_id(connection_id: int | None) -> int | None:
        runs = SyncRun.objects.all()
        if connection_id is not None:
            runs = runs.filter(connection_id=connection_id)
        return runs.order_by("-started_at", "-id").values_list("id", flat=True).first()

    def _build_payload(
        self, run_id: int | None, connection_id: int | None, stale_threshold_seconds: int
    ) -> dict[str, Any]:
        if run_id is None:
            run_id = self._latest_run_id(connection_id)
        payload = get_run_status(run_id) if run_id is not None else None
        if payload is None:
            return dict(UNKNOWN_PAYLOAD)

        heartbeat_age_seconds = payload["heartbeat_age_seconds"]
        if stale_threshold_seconds > 0 and payload["status"] in ("started", "in_progress"):
            payload["is_stale"] = bool(
                payload["is_stale"]
                or (heartbeat_age_seconds is not None and heartbeat_age_seconds > stale_threshold_seconds)
            )
        return payload

    def handle(self, *args, **options) -> None:
        _ = args
        stale_threshold_seconds = max(0, int(options["stale_threshold_seconds"]))
        fail_on_stale = bool(options["fail_on_stale"])

        payload = self._build_payload(options["run_id"], options["connection_id"], stale_threshold_seconds)
        self.stdout.write(json.dumps(payload, sort_keys=True, separators=(",", ":"), default=str))

        if fail_on_stale and payload.get("is_stale"):
            raise SystemExit(2)
