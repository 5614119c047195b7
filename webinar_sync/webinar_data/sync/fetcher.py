import logging
from collections.abc import Iterable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta

import requests
from django.db.models import Q
from django.utils.timezone import now as django_now

from webinar_api.client import Client
from webinar_api.config import settings
from webinar_api.config.sections import Sync
from webinar_api.models import (
    ParticipantRecord,
    PollRecord,
    QuestionRecord,
    RecordParseError,
    RegistrantRecord,
    WebinarRecord,
    expand_question_rows,
)
from webinar_api.type_defs import JsonObject, normalize_external_id
from webinar_api.utils import Deadline
from webinar_data.models import SyncExclusion

logger = logging.getLogger(__name__)

FETCH_ERRORS = (requests.RequestException, TimeoutError)
UPSTREAM_ERRORS = (*FETCH_ERRORS, PermissionError)


class FetchError(RuntimeError):
    """The first page of the primary query failed; credentials or connectivity are broken."""


@dataclass(frozen=True)
class ListQuery:
    category: str
    date_from: datetime | None = None
    date_to: datetime | None = None

    @property
    def label(self) -> str:
        return self.category


class FetchStrategy:
    name = "base"
    uses_list_fetch = True
    reads_store = False

    def __init__(self, batch_size: int | None = None) -> None:
        self.batch_size = batch_size or settings.sync.batch_size

    def queries(self, current_time: datetime) -> list[ListQuery]:
        return []

    def __repr__(self) -> str:
        return f"{type(self).__name__}(batch_size={self.batch_size})"


class WindowedStrategy(FetchStrategy):
    past_days = 0
    future_days = 0

    def __init__(self, past_days: int | None = None, future_days: int | None = None, batch_size: int | None = None) -> None:
        super().__init__(batch_size)
        if past_days is not None:
            self.past_days = past_days
        if future_days is not None:
            self.future_days = future_days

    def queries(self, current_time: datetime) -> list[ListQuery]:
        return [
            ListQuery("past", current_time - timedelta(days=self.past_days), current_time),
            ListQuery("upcoming", current_time, current_time + timedelta(days=self.future_days)),
            ListQuery("live"),
        ]


class InitialStrategy(WindowedStrategy):
    name = "initial"


class IncrementalStrategy(WindowedStrategy):
    name = "incremental"


class SingleWebinarStrategy(FetchStrategy):
    name = "single"
    uses_list_fetch = False

    def __init__(self, webinar_id: str, batch_size: int | None = None) -> None:
        super().__init__(batch_size)
        normalized = normalize_external_id(webinar_id)
        if normalized is None:
            raise ValueError(f"Invalid webinar id: {webinar_id!r}")
        self.webinar_id = normalized


class ParticipantsOnlyStrategy(FetchStrategy):
    name = "participants_only"
    uses_list_fetch = False
    reads_store = True


SYNC_TYPES = ("initial", "incremental", "single", "participants_only")


def build_strategy(sync_type: str, webinar_id: str | None = None, sync_settings: Sync | None = None) -> FetchStrategy:
    sync_settings = sync_settings or settings.sync
    batch_size = sync_settings.batch_size
    if sync_type == "initial":
        return InitialStrategy(sync_settings.initial_past_days, sync_settings.initial_future_days, batch_size)
    if sync_type == "incremental":
        return IncrementalStrategy(
            sync_settings.incremental_past_days, sync_settings.incremental_future_days, batch_size
        )
    if sync_type == "single":
        if not webinar_id:
            raise ValueError("A single-webinar sync needs a webinar id")
        return SingleWebinarStrategy(webinar_id, batch_size)
    if sync_type == "participants_only":
        return ParticipantsOnlyStrategy(batch_size)
    raise ValueError(f"Unknown sync type {sync_type!r}; expected one of {', '.join(SYNC_TYPES)}")


class ExclusionList:
    def __init__(self, external_ids: Iterable[str] = ()) -> None:
        self._ids = frozenset(
            normalized for normalized in (normalize_external_id(value) for value in external_ids) if normalized
        )

    @classmethod
    def from_store(cls, connection_id: int | None = None) -> "ExclusionList":
        rows = SyncExclusion.objects.filter(Q(connection__isnull=True) | Q(connection_id=connection_id))
        return cls(rows.values_list("webinar_external_id", flat=True))

    def __contains__(self, external_id: object) -> bool:
        return normalize_external_id(external_id) in self._ids

    def __len__(self) -> int:
        return len(self._ids)


@dataclass
class QueryOutcome:
    label: str
    fetched: int = 0
    pages: int = 0
    error: str | None = None


@dataclass
class FetchSummary:
    strategy: str
    total_fetched: int = 0
    duplicates_removed: int = 0
    final_count: int = 0
    per_query: dict[str, int] = field(default_factory=dict)
    excluded: int = 0
    invalid: int = 0
    failed_queries: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)

    @property
    def has_failures(self) -> bool:
        return bool(self.failed_queries)

    def to_dict(self) -> dict[str, object]:
        return asdict(self)


@dataclass
class FetchResult:
    webinars: list[WebinarRecord]
    summary: FetchSummary


@dataclass
class DependentFetch:
    webinar_external_id: str
    participants: list[ParticipantRecord] = field(default_factory=list)
    registrants: list[RegistrantRecord] = field(default_factory=list)
    participants_fetched: bool = False
    invalid: int = 0
    polls: list[PollRecord] = field(default_factory=list)
    questions: list[QuestionRecord] = field(default_factory=list)
    registrant_error: str | None = None
    poll_error: str | None = None
    question_error: str | None = None


class WebinarFetcher:
    def __init__(
        self,
        client: Client,
        exclusions: ExclusionList | None = None,
        page_size: int | None = None,
        max_pages: int | None = None,
        max_workers: int | None = None,
    ) -> None:
        self.client = client
        self.exclusions = exclusions or ExclusionList()
        self.page_size = page_size or settings.upstream.page_size
        self.max_pages = max_pages or settings.sync.page_ceiling
        self.max_workers = max_workers or settings.sync.max_concurrency

    def fetch(
        self, strategy: FetchStrategy, deadline: Deadline | None = None, current_time: datetime | None = None
    ) -> FetchResult:
        deadline = deadline or Deadline.never()
        summary = FetchSummary(strategy=strategy.name)

        if isinstance(strategy, SingleWebinarStrategy):
            raw_rows = [(strategy.webinar_id, [self._fetch_detail(strategy.webinar_id, deadline)])]
        elif strategy.uses_list_fetch:
            queries = strategy.queries(current_time or django_now())
            raw_rows = self._run_queries(queries, deadline, summary)
        else:
            return FetchResult([], summary)

        webinars = self._deduplicate(raw_rows, summary)
        logger.info(
            "Fetched %s webinars for %s sync (%s raw, %s duplicates, %s excluded, %s invalid, %s failed queries)",
            summary.final_count,
            strategy.name,
            summary.total_fetched,
            summary.duplicates_removed,
            summary.excluded,
            summary.invalid,
            len(summary.failed_queries),
        )
        return FetchResult(webinars, summary)

    def _fetch_detail(self, webinar_id: str, deadline: Deadline) -> JsonObject:
        try:
            return self.client.get_webinar(webinar_id, deadline=deadline)
        except FETCH_ERRORS as exc:
            raise FetchError(f"Failed to fetch webinar {webinar_id}: {exc}") from exc

    def _run_queries(
        self, queries: list[ListQuery], deadline: Deadline, summary: FetchSummary
    ) -> list[tuple[str, list[JsonObject]]]:
        if not queries:
            return []
        with ThreadPoolExecutor(max_workers=max(1, min(self.max_workers, len(queries)))) as executor:
            futures = [
                executor.submit(self._run_query, query, deadline, index == 0)
                for index, query in enumerate(queries)
            ]
            # Results are read in query order so deduplication is deterministic.
            results = [future.result() for future in futures]

        raw_rows: list[tuple[str, list[JsonObject]]] = []
        for outcome, rows in results:
            summary.per_query[outcome.label] = outcome.fetched
            if outcome.error is not None:
                summary.failed_queries.append(outcome.label)
                summary.errors.append(f"{outcome.label}: {outcome.error}")
            raw_rows.append((outcome.label, rows))
        return raw_rows

    def _run_query(
        self, query: ListQuery, deadline: Deadline, is_primary: bool
    ) -> tuple[QueryOutcome, list[JsonObject]]:
        outcome = QueryOutcome(label=query.label)
        rows: list[JsonObject] = []
        page_number = 1
        while True:
            if page_number > self.max_pages:
                logger.warning("Query %s hit the page ceiling of %s pages", query.label, self.max_pages)
                break
            try:
                deadline.check()
                items, page_count = self.client.list_webinars(
                    query.category,
                    query.date_from,
                    query.date_to,
                    page_number=page_number,
                    page_size=self.page_size,
                    deadline=deadline,
                )
            except UPSTREAM_ERRORS as exc:
                if is_primary and page_number == 1:
                    if isinstance(exc, PermissionError):
                        raise
                    raise FetchError(f"Initial {query.label} query failed: {exc}") from exc
                logger.warning("Query %s failed on page %s: %s", query.label, page_number, exc)
                outcome.error = f"page {page_number}: {exc}"
                break

            outcome.pages += 1
            rows.extend(items)
            if not items or page_number >= page_count:
                break
            page_number += 1

        outcome.fetched = len(rows)
        return outcome, rows

    def _deduplicate(
        self, raw_rows: list[tuple[str, list[JsonObject]]], summary: FetchSummary
    ) -> list[WebinarRecord]:
        webinars: dict[str, WebinarRecord] = {}
        for label, rows in raw_rows:
            for row in rows:
                try:
                    record = WebinarRecord.from_dict(row)
                except RecordParseError as exc:
                    summary.invalid += 1
                    logger.warning("Skipping unparseable webinar from %s: %s", label, exc)
                    continue
                if record.external_id in self.exclusions:
                    summary.excluded += 1
                    continue
                summary.total_fetched += 1
                webinars.setdefault(record.external_id, record)

        summary.final_count = len(webinars)
        summary.duplicates_removed = summary.total_fetched - summary.final_count
        return list(webinars.values())

    def fetch_dependents(
        self,
        webinar_external_id: str,
        deadline: Deadline | None = None,
        include_participants: bool = True,
        include_registrants: bool = True,
    ) -> DependentFetch:
        """
        Fetch participants, registrants, polls and Q&A for one webinar.

        Participant failures propagate so the caller can classify and schedule
        a retry. The other collections are recorded as errors on the result;
        many webinars have registration, polling or Q&A disabled and the
        report endpoints reject them. Polls and Q&A only exist for webinars
        whose participants are fetched.
        """
        deadline = deadline or Deadline.never()
        result = DependentFetch(webinar_external_id=webinar_external_id)

        if include_participants:
            for row in self.client.iter_participants(
                webinar_external_id, deadline=deadline, max_pages=self.max_pages
            ):
                try:
                    result.participants.append(
                        ParticipantRecord.from_dict(row, webinar_external_id=webinar_external_id)
                    )
                except RecordParseError as exc:
                    result.invalid += 1
                    logger.warning("Skipping participant for webinar %s: %s", webinar_external_id, exc)
            result.participants_fetched = True

        if include_registrants:
            try:
                for row in self.client.iter_registrants(
                    webinar_external_id, deadline=deadline, max_pages=self.max_pages
                ):
                    try:
                        result.registrants.append(RegistrantRecord.from_dict(row))
                    except RecordParseError as exc:
                        result.invalid += 1
                        logger.warning("Skipping registrant for webinar %s: %s", webinar_external_id, exc)
            except UPSTREAM_ERRORS as exc:
                logger.info("Registrants unavailable for webinar %s: %s", webinar_external_id, exc)
                result.registrant_error = str(exc)

        if include_participants:
            result.poll_error = self._collect_polls(webinar_external_id, deadline, result)
            result.question_error = self._collect_questions(webinar_external_id, deadline, result)

        return result

    def _collect_polls(self, webinar_external_id: str, deadline: Deadline, result: DependentFetch) -> str | None:
        try:
            for row in self.client.iter_polls(webinar_external_id, deadline=deadline, max_pages=self.max_pages):
                try:
                    result.polls.append(PollRecord.from_dict(row, webinar_external_id=webinar_external_id))
                except RecordParseError as exc:
                    result.invalid += 1
                    logger.warning("Skipping poll for webinar %s: %s", webinar_external_id, exc)
        except UPSTREAM_ERRORS as exc:
            logger.info("Polls unavailable for webinar %s: %s", webinar_external_id, exc)
            return str(exc)
        return None

    def _collect_questions(
        self, webinar_external_id: str, deadline: Deadline, result: DependentFetch
    ) -> str | None:
        try:
            for row in self.client.iter_questions(
                webinar_external_id, deadline=deadline, max_pages=self.max_pages
            ):
                for question_row in expand_question_rows(row):
                    try:
                        result.questions.append(
                            QuestionRecord.from_dict(question_row, webinar_external_id=webinar_external_id)
                        )
                    except RecordParseError as exc:
                        result.invalid += 1
                        logger.warning("Skipping question for webinar %s: %s", webinar_external_id, exc)
        except UPSTREAM_ERRORS as exc:
            logger.info("Q&A unavailable for webinar %s: %s", webinar_external_id, exc)
            return str(exc)
        return None
