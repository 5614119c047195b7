from __future__ import annotations

from collections.abc import Iterator
from datetime import datetime, timedelta

import pytest

from webinar_api.client import NotFoundError
from webinar_api.config.sections import Sync
from webinar_api.type_defs import JsonObject


class FakeUpstream:
    """Stands in for ``webinar_api.client.Client`` with canned pages and per-webinar rows."""

    def __init__(self) -> None:
        self.pages: dict[str, list[list[JsonObject]]] = {}
        self.list_failures: dict[tuple[str, int], Exception] = {}
        self.details: dict[str, JsonObject] = {}
        self.participants: dict[str, list[JsonObject] | Exception] = {}
        self.registrants: dict[str, list[JsonObject] | Exception] = {}
        self.polls: dict[str, list[JsonObject] | Exception] = {}
        self.questions: dict[str, list[JsonObject] | Exception] = {}
        self.participant_calls: list[str] = []

    def list_webinars(self, category, date_from=None, date_to=None, page_number=1, page_size=None, deadline=None):
        failure = self.list_failures.get((category, page_number))
        if failure is not None:
            raise failure
        category_pages = self.pages.get(category) or [[]]
        return category_pages[page_number - 1], len(category_pages)

    def get_webinar(self, webinar_id, deadline=None):
        if webinar_id not in self.details:
            raise NotFoundError(f"Resource not found (404): webinars/{webinar_id}", 404)
        return self.details[webinar_id]

    @staticmethod
    def _rows(source: dict[str, list[JsonObject] | Exception], webinar_id: str) -> Iterator[JsonObject]:
        rows = source.get(webinar_id, [])
        if isinstance(rows, Exception):
            raise rows
        return iter(rows)

    def iter_participants(self, webinar_id, deadline=None, max_pages=None):
        self.participant_calls.append(webinar_id)
        return self._rows(self.participants, webinar_id)

    def iter_registrants(self, webinar_id, deadline=None, max_pages=None):
        return self._rows(self.registrants, webinar_id)

    def iter_polls(self, webinar_id, deadline=None, max_pages=None):
        return self._rows(self.polls, webinar_id)

    def iter_questions(self, webinar_id, deadline=None, max_pages=None):
        return self._rows(self.questions, webinar_id)


def webinar_payload(external_id: str, start_time: datetime, **overrides: object) -> JsonObject:
    payload: JsonObject = {
        "id": external_id,
        "uuid": f"uuid-{external_id}",
        "topic": f"Webinar {external_id}",
        "host_id": "host-1",
        "start_time": start_time.isoformat(),
        "duration": 60,
    }
    payload.update(overrides)  # type: ignore[arg-type]
    return payload


@pytest.fixture
def upstream() -> FakeUpstream:
    return FakeUpstream()


@pytest.fixture
def upstream_with_webinars(upstream: FakeUpstream, fixed_now: datetime) -> FakeUpstream:
    """Two concluded webinars and one upcoming one."""
    upstream.pages = {
        "past": [
            [
                webinar_payload("101", fixed_now - timedelta(days=3)),
                webinar_payload("102", fixed_now - timedelta(days=2)),
            ]
        ],
        "upcoming": [[webinar_payload("103", fixed_now + timedelta(days=2))]],
        "live": [[]],
    }
    upstream.participants["101"] = [
        {"id": "p1", "name": "Ada", "join_time": (fixed_now - timedelta(days=3)).isoformat(), "duration": 1800},
        {"id": "p2", "name": "Bob", "join_time": (fixed_now - timedelta(days=3)).isoformat(), "duration": 1200},
    ]
    upstream.participants["102"] = []
    upstream.registrants["103"] = [{"id": "r1", "email": "carol@example.com"}]
    return upstream


@pytest.fixture
def sync_settings() -> Sync:
    sync = Sync()
    sync.from_dict({"max_concurrency": 2, "heartbeat_interval_seconds": 3600, "batch_size": 10})
    return sync
