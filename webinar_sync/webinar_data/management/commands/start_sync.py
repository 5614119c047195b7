import json

from django.core.management.base import BaseCommand, CommandError

from webinar_data.models import Connection
from webinar_data.sync.fetcher import SYNC_TYPES
from webinar_data.sync.service import SyncAlreadyRunning, start_sync


class Command(BaseCommand):
    help = "Run a webinar sync for one connection and print the outcome as JSON"

    def add_arguments(self, parser) -> None:  # type: ignore[no-untyped-def]
        parser.add_argument("connection_id", type=int, help="Connection to sync.")
        parser.add_argument(
            "--type",
            dest="sync_type",
            choices=SYNC_TYPES,
            default="incremental",
            help="Fetch strategy for this run.",
        )
        parser.add_argument("--webinar-id", default=None, help="Webinar to sync with --type single.")
        parser.add_argument(
            "--background",
            action="store_true",
            help="Return immediately and let the run continue on a background thread.",
        )

    def handle(self, *args, **options) -> None:
        _ = args
        try:
            payload = start_sync(
                options["connection_id"],
                options["sync_type"],
                webinar_id=options["webinar_id"],
                background=bool(options["background"]),
            )
        except Connection.DoesNotExist as exc:
            raise CommandError(f"Connection {options['connection_id']} does not exist") from exc
        except SyncAlreadyRunning as exc:
            raise CommandError(str(exc)) from exc
        except ValueError as exc:
            raise CommandError(str(exc)) from exc

        self.stdout.write(json.dumps(payload, sort_keys=True, separators=(",", ":")))
