import json

from django.core.management.base import BaseCommand

from webinar_api.client import Client
from webinar_data.models import Connection
from webinar_data.sync.fetcher import ExclusionList, WebinarFetcher
from webinar_data.sync.pipeline import retry_handler
from webinar_data.sync.reconciler import Reconciler
from webinar_data.sync.retry import RetryScheduler


class Command(BaseCommand):
    help = "Execute due participant-sync retries and print the outcome per connection as JSON"

    def add_arguments(self, parser) -> None:  # type: ignore[no-untyped-def]
        parser.add_argument(
            "--connection-id",
            type=int,
            default=None,
            help="Only process retries for this connection.",
        )

    def handle(self, *args, **options) -> None:
        _ = args
        connections = Connection.objects.order_by("id")
        if options["connection_id"] is not None:
            connections = connections.filter(pk=options["connection_id"])

        client = Client()
        for connection in connections:
            scheduler = RetryScheduler(connection)
            due = list(scheduler.due_entries())
            if not due:
                continue
            fetcher = WebinarFetcher(client, ExclusionList.from_store(connection.pk))
            handler = retry_handler(fetcher, Reconciler(connection))
            outcome = scheduler.execute(due, handler)
            self.stdout.write(
                json.dumps(
                    {"connection_id": connection.pk, **outcome.to_dict()},
                    sort_keys=True,
                    separators=(",", ":"),
                )
            )
