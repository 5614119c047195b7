from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from webinar_api.client import ApiError, NotFoundError
from webinar_api.utils import Deadline
from webinar_data.models import SyncExclusion
from webinar_data.sync.fetcher import (
    ExclusionList,
    FetchError,
    IncrementalStrategy,
    InitialStrategy,
    ParticipantsOnlyStrategy,
    SingleWebinarStrategy,
    WebinarFetcher,
    build_strategy,
)

NOW = datetime(2026, 3, 10, 12, tzinfo=timezone.utc)


class FakeClient:
    def __init__(
        self,
        pages: dict[str, list[list[dict]]],
        failures: dict[tuple[str, int], Exception] | None = None,
    ) -> None:
        self.pages = pages
        self.failures = failures or {}
        self.list_calls: list[tuple[str, int]] = []
        self.details: dict[str, dict] = {}
        self.participants: dict[str, list[dict] | Exception] = {}
        self.registrants: dict[str, list[dict] | Exception] = {}
        self.polls: dict[str, list[dict] | Exception] = {}
        self.questions: dict[str, list[dict] | Exception] = {}
        self.page_ceilings: list[int | None] = []

    def list_webinars(self, category, date_from=None, date_to=None, page_number=1, page_size=None, deadline=None):
        self.list_calls.append((category, page_number))
        failure = self.failures.get((category, page_number))
        if failure is not None:
            raise failure
        category_pages = self.pages.get(category, [[]])
        return category_pages[page_number - 1], len(category_pages)

    def get_webinar(self, webinar_id, deadline=None):
        if webinar_id not in self.details:
            raise NotFoundError(f"Resource not found (404): webinars/{webinar_id}", 404)
        return self.details[webinar_id]

    def _rows(self, source: dict, webinar_id: str):
        rows = source.get(webinar_id, [])
        if isinstance(rows, Exception):
            raise rows
        return iter(rows)

    def iter_participants(self, webinar_id, deadline=None, max_pages=None):
        self.page_ceilings.append(max_pages)
        return self._rows(self.participants, webinar_id)

    def iter_registrants(self, webinar_id, deadline=None, max_pages=None):
        return self._rows(self.registrants, webinar_id)

    def iter_polls(self, webinar_id, deadline=None, max_pages=None):
        return self._rows(self.polls, webinar_id)

    def iter_questions(self, webinar_id, deadline=None, max_pages=None):
        return self._rows(self.questions, webinar_id)


def _webinars(*ids: int) -> list[dict]:
    return [{"id": webinar_id, "topic": f"Webinar {webinar_id}"} for webinar_id in ids]


def test_overlapping_queries_are_deduplicated() -> None:
    client = FakeClient(
        {
            "past": [_webinars(1, 2, 3, 4), _webinars(5, 6)],
            "upcoming": [_webinars(6, 7, 8, 9, 10)],
            "live": [_webinars(1, 2)],
        }
    )
    fetcher = WebinarFetcher(client, page_size=10, max_pages=50, max_workers=3)  # type: ignore[arg-type]

    result = fetcher.fetch(IncrementalStrategy(30, 30), current_time=NOW)

    summary = result.summary
    assert summary.total_fetched == 13
    assert summary.duplicates_removed == 3
    assert summary.final_count == 10
    assert summary.per_query == {"past": 6, "upcoming": 5, "live": 2}
    assert sorted(int(record.external_id) for record in result.webinars) == list(range(1, 11))
    assert not summary.has_failures


def test_fetch_is_idempotent_over_repeated_runs() -> None:
    pages = {"past": [_webinars(1, 2, 2, 3)], "upcoming": [_webinars(3)], "live": [[]]}
    fetcher = WebinarFetcher(FakeClient(pages), max_workers=1)  # type: ignore[arg-type]

    first = fetcher.fetch(IncrementalStrategy(30, 30), current_time=NOW)
    second = fetcher.fetch(IncrementalStrategy(30, 30), current_time=NOW)

    assert [record.external_id for record in first.webinars] == ["1", "2", "3"]
    assert [record.external_id for record in second.webinars] == ["1", "2", "3"]
    assert first.summary.to_dict() == second.summary.to_dict()


def test_first_page_of_primary_query_is_a_hard_failure() -> None:
    client = FakeClient(
        {"past": [_webinars(1)], "upcoming": [_webinars(2)], "live": [[]]},
        failures={("past", 1): ApiError("Received unexpected status code: 500", 500)},
    )
    fetcher = WebinarFetcher(client, max_workers=1)  # type: ignore[arg-type]

    with pytest.raises(FetchError, match="Initial past query failed"):
        fetcher.fetch(IncrementalStrategy(30, 30), current_time=NOW)


def test_later_query_failures_are_recorded() -> None:
    client = FakeClient(
        {
            "past": [_webinars(1, 2), _webinars(3)],
            "upcoming": [_webinars(4)],
            "live": [_webinars(5)],
        },
        failures={
            ("past", 2): ApiError("Received unexpected status code: 502", 502),
            ("upcoming", 1): TimeoutError("read timed out"),
        },
    )
    fetcher = WebinarFetcher(client, max_workers=2)  # type: ignore[arg-type]

    result = fetcher.fetch(IncrementalStrategy(30, 30), current_time=NOW)

    assert [record.external_id for record in result.webinars] == ["1", "2", "5"]
    assert result.summary.failed_queries == ["past", "upcoming"]
    assert result.summary.per_query["upcoming"] == 0
    assert any("page 2" in error for error in result.summary.errors)


def test_permission_error_on_secondary_query_is_recorded() -> None:
    client = FakeClient(
        {
            "past": [_webinars(1, 2), _webinars(3)],
            "upcoming": [_webinars(4)],
            "live": [_webinars(5)],
        },
        failures={
            ("past", 2): PermissionError("Authorization failed (403) for past page 2"),
            ("live", 1): PermissionError("Authorization failed (403) for live"),
        },
    )
    fetcher = WebinarFetcher(client, max_workers=3)  # type: ignore[arg-type]

    result = fetcher.fetch(IncrementalStrategy(30, 30), current_time=NOW)

    assert [record.external_id for record in result.webinars] == ["1", "2", "4"]
    assert result.summary.failed_queries == ["past", "live"]
    assert result.summary.per_query == {"past": 2, "upcoming": 1, "live": 0}
    assert any(error.startswith("live: page 1") and "403" in error for error in result.summary.errors)


def test_permission_error_on_primary_first_page_propagates() -> None:
    client = FakeClient(
        {"past": [_webinars(1)], "upcoming": [_webinars(2)], "live": [[]]},
        failures={("past", 1): PermissionError("Authorization failed (401) for past")},
    )
    fetcher = WebinarFetcher(client, max_workers=1)  # type: ignore[arg-type]

    with pytest.raises(PermissionError, match="401"):
        fetcher.fetch(IncrementalStrategy(30, 30), current_time=NOW)


def test_pagination_stops_at_page_ceiling() -> None:
    pages = {"past": [_webinars(page) for page in range(1, 11)], "upcoming": [[]], "live": [[]]}
    client = FakeClient(pages)
    fetcher = WebinarFetcher(client, max_pages=3, max_workers=1)  # type: ignore[arg-type]

    result = fetcher.fetch(IncrementalStrategy(30, 30), current_time=NOW)

    assert [call for call in client.list_calls if call[0] == "past"] == [("past", 1), ("past", 2), ("past", 3)]
    assert result.summary.final_count == 3


def test_pagination_stops_on_empty_page() -> None:
    client = FakeClient({"past": [_webinars(1), [], _webinars(3)], "upcoming": [[]], "live": [[]]})
    fetcher = WebinarFetcher(client, max_workers=1)  # type: ignore[arg-type]

    result = fetcher.fetch(IncrementalStrategy(30, 30), current_time=NOW)

    assert [call for call in client.list_calls if call[0] == "past"] == [("past", 1), ("past", 2)]
    assert result.summary.final_count == 1


def test_excluded_and_invalid_records_are_not_counted_as_fetched() -> None:
    client = FakeClient(
        {
            "past": [[*_webinars(1, 2, 3), {"topic": "no id"}]],
            "upcoming": [_webinars(3, 4)],
            "live": [[]],
        }
    )
    fetcher = WebinarFetcher(client, ExclusionList(["2", 4]), max_workers=1)  # type: ignore[arg-type]

    result = fetcher.fetch(IncrementalStrategy(30, 30), current_time=NOW)

    summary = result.summary
    assert summary.excluded == 2
    assert summary.invalid == 1
    assert summary.total_fetched == 3
    assert summary.final_count == 2
    assert summary.duplicates_removed == summary.total_fetched - summary.final_count


def test_single_strategy_fetches_detail() -> None:
    client = FakeClient({})
    client.details["77"] = {"id": 77, "topic": "Detail", "status": "waiting"}
    fetcher = WebinarFetcher(client)  # type: ignore[arg-type]

    result = fetcher.fetch(SingleWebinarStrategy("77"))

    assert [record.topic for record in result.webinars] == ["Detail"]
    assert client.list_calls == []

    with pytest.raises(FetchError, match="webinar 78"):
        fetcher.fetch(SingleWebinarStrategy("78"))


def test_participants_only_strategy_skips_upstream_listing() -> None:
    client = FakeClient({"past": [_webinars(1)]})
    fetcher = WebinarFetcher(client)  # type: ignore[arg-type]

    result = fetcher.fetch(ParticipantsOnlyStrategy())

    assert result.webinars == []
    assert client.list_calls == []


def test_strategy_windows() -> None:
    initial = InitialStrategy(913, 365).queries(NOW)
    incremental = build_strategy("incremental").queries(NOW)

    assert [query.category for query in initial] == ["past", "upcoming", "live"]
    assert initial[0].date_from == NOW - timedelta(days=913)
    assert initial[1].date_to == NOW + timedelta(days=365)
    assert initial[2].date_from is None
    assert incremental[0].date_from == NOW - timedelta(days=30)
    assert incremental[1].date_to == NOW + timedelta(days=30)


def test_build_strategy_validates_input() -> None:
    assert isinstance(build_strategy("single", "123"), SingleWebinarStrategy)
    assert isinstance(build_strategy("participants_only"), ParticipantsOnlyStrategy)
    with pytest.raises(ValueError, match="needs a webinar id"):
        build_strategy("single")
    with pytest.raises(ValueError, match="Unknown sync type"):
        build_strategy("everything")


def test_fetch_dependents_parses_rows_and_tolerates_registrant_errors() -> None:
    client = FakeClient({})
    client.participants["9"] = [
        {"id": "p1", "name": "Ada", "duration": 600},
        {"name": "Anonymous", "join_time": "2026-03-01T10:00:00Z"},
    ]
    client.registrants["9"] = ApiError("Received unexpected status code: 400", 400)
    fetcher = WebinarFetcher(client)  # type: ignore[arg-type]

    fetched = fetcher.fetch_dependents("9", Deadline.never())

    assert fetched.participants_fetched
    assert [participant.name for participant in fetched.participants] == ["Ada", "Anonymous"]
    assert fetched.participants[1].external_id.startswith("synthetic-")
    assert fetched.registrants == []
    assert "400" in (fetched.registrant_error or "")


def test_fetch_dependents_collects_polls_and_questions() -> None:
    client = FakeClient({})
    client.participants["9"] = [{"id": "p1", "name": "Ada"}]
    client.registrants["9"] = PermissionError("Authorization failed (403) for registrants")
    client.polls["9"] = [
        {"id": "poll-1", "title": "Satisfaction", "type": "single", "questions": [{"name": "How was it?"}]},
        {"name": "Ada", "email": "ada@example.com", "question_details": [{"question": "Q1", "answer": "Yes"}]},
    ]
    client.questions["9"] = [
        {
            "name": "Ada",
            "email": "ada@example.com",
            "question_details": [
                {"question": "Is there a recording?", "answer": "Yes, tomorrow"},
                {"question": "Slides?"},
            ],
        },
        {"question_id": "q-9", "question": "Flat row", "upvote_count": "3"},
    ]
    fetcher = WebinarFetcher(client, max_pages=7)  # type: ignore[arg-type]

    fetched = fetcher.fetch_dependents("9", Deadline.never())

    assert client.page_ceilings == [7]
    assert "403" in (fetched.registrant_error or "")
    assert fetched.poll_error is None and fetched.question_error is None

    structured, respondent = fetched.polls
    assert (structured.external_id, structured.title, structured.poll_type) == ("poll-1", "Satisfaction", "single")
    assert structured.questions == [{"name": "How was it?"}]
    assert structured.anonymous is False
    assert respondent.external_id.startswith("synthetic-")
    assert respondent.respondent_email == "ada@example.com"
    assert respondent.questions == [{"question": "Q1", "answer": "Yes"}]

    questions = fetched.questions
    assert [question.question for question in questions] == ["Is there a recording?", "Slides?", "Flat row"]
    assert {question.asker_email for question in questions[:2]} == {"ada@example.com"}
    assert questions[0].external_id != questions[1].external_id
    assert questions[0].external_id.startswith("synthetic-")
    assert (questions[2].external_id, questions[2].upvote_count, questions[2].status) == ("q-9", 3, "open")


def test_fetch_dependents_tolerates_poll_and_question_errors() -> None:
    client = FakeClient({})
    client.participants["9"] = []
    client.polls["9"] = PermissionError("Authorization failed (403) for polls")
    client.questions["9"] = NotFoundError("Resource not found (404): report/webinars/9/qa", 404)
    fetcher = WebinarFetcher(client)  # type: ignore[arg-type]

    fetched = fetcher.fetch_dependents("9", Deadline.never())

    assert fetched.participants_fetched
    assert fetched.polls == [] and fetched.questions == []
    assert "403" in (fetched.poll_error or "")
    assert "404" in (fetched.question_error or "")


def test_fetch_dependents_skips_polls_and_questions_when_participants_are_not_eligible() -> None:
    client = FakeClient({})
    client.polls["9"] = ApiError("should not be requested", 500)
    client.questions["9"] = ApiError("should not be requested", 500)
    fetcher = WebinarFetcher(client)  # type: ignore[arg-type]

    fetched = fetcher.fetch_dependents("9", include_participants=False)

    assert not fetched.participants_fetched
    assert fetched.poll_error is None and fetched.question_error is None


def test_fetch_dependents_propagates_participant_errors() -> None:
    client = FakeClient({})
    client.participants["9"] = ApiError("Received unexpected status code: 503", 503)
    fetcher = WebinarFetcher(client)  # type: ignore[arg-type]

    with pytest.raises(ApiError):
        fetcher.fetch_dependents("9")


@pytest.mark.django_db
def test_exclusion_list_reads_global_and_connection_rows(connection) -> None:
    SyncExclusion.objects.create(connection=None, webinar_external_id="100", reason="broken upstream")
    SyncExclusion.objects.create(connection=connection, webinar_external_id="200")
    other = type(connection).objects.create(external_account_id="acct-2")
    SyncExclusion.objects.create(connection=other, webinar_external_id="300")

    exclusions = ExclusionList.from_store(connection.pk)

    assert "100" in exclusions
    assert 200 in exclusions
    assert "300" not in exclusions
    assert len(exclusions) == 2
