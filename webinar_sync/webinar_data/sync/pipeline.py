"""
One sync run, end to end.

``SyncPipeline.run`` captures a baseline, fetches webinars for the run's
strategy, resolves their status, reconciles them into the store, syncs
participants and registrants in chunks, schedules retries for what failed,
verifies the result against the baseline, and finally writes exactly one
terminal status on the ``SyncRun``.

Network fetches for a chunk run on worker threads. Everything that touches the
database runs on the pipeline thread.
"""

import json
import logging
import threading
from collections.abc import Callable, Iterable, Mapping, Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from django.utils.timezone import now

from webinar_api.client import Client
from webinar_api.config import settings
from webinar_api.config.sections import Sync
from webinar_api.models import WebinarRecord
from webinar_api.utils import Deadline, DeadlineExceeded
from webinar_data.models import Connection, ParticipantSyncStatus, RetryScheduleEntry, SyncRun, SyncRunStatus, Webinar
from webinar_data.sync.fetcher import (
    UPSTREAM_ERRORS,
    DependentFetch,
    ExclusionList,
    FetchError,
    FetchStrategy,
    FetchSummary,
    SingleWebinarStrategy,
    WebinarFetcher,
    build_strategy,
)
from webinar_data.sync.progress import ProgressTracker
from webinar_data.sync.reconciler import BatchOutcome, Reconciler
from webinar_data.sync.retry import EntityFailure, RetryScheduler
from webinar_data.sync.status import has_concluded, resolve_status
from webinar_data.sync.verification import Baseline, BaselineVerifier, VerificationResult

logger = logging.getLogger(__name__)

ClientFactory = Callable[[Connection], Client]

PROCESSING_START_PERCENT = 15
PROCESSING_END_PERCENT = 90


def default_client_factory(_connection: Connection) -> Client:
    return Client()


class ErrorCollector:
    """Thread-safe list of human-readable issues for ``SyncRun.error_details``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._items: list[str] = []

    def add(self, message: str) -> None:
        with self._lock:
            self._items.append(message)

    def extend(self, messages: Iterable[str]) -> None:
        with self._lock:
            self._items.extend(messages)

    @property
    def items(self) -> list[str]:
        with self._lock:
            return list(self._items)

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)


@dataclass
class DependentOutcome:
    participants: BatchOutcome = field(default_factory=BatchOutcome)
    registrants: BatchOutcome = field(default_factory=BatchOutcome)
    polls: BatchOutcome = field(default_factory=BatchOutcome)
    questions: BatchOutcome = field(default_factory=BatchOutcome)

    @property
    def failure_messages(self) -> list[str]:
        return [
            f"{failure.entity_type} {failure.external_id}: {failure.error}"
            for batch in (self.participants, self.registrants, self.polls, self.questions)
            for failure in batch.failures
        ]


@dataclass
class PipelineResult:
    run_id: int
    status: SyncRunStatus
    message: str | None = None
    processed: int = 0
    failed_webinars: int = 0
    retries_scheduled: int = 0
    fetch_summary: FetchSummary | None = None
    verification: VerificationResult | None = None
    errors: list[str] = field(default_factory=list)


def store_dependents(
    reconciler: Reconciler,
    webinar: Webinar,
    fetched: DependentFetch,
    clock: Callable[[], datetime] = now,
) -> DependentOutcome:
    """Persist the fetched dependents of one webinar and refresh its aggregates."""
    outcome = DependentOutcome()
    if fetched.participants:
        outcome.participants = reconciler.upsert_participants(webinar, fetched.participants)
    if fetched.registrants:
        outcome.registrants = reconciler.upsert_registrants(webinar, fetched.registrants)
    if fetched.polls:
        outcome.polls = reconciler.upsert_polls(webinar, fetched.polls)
    if fetched.questions:
        outcome.questions = reconciler.upsert_questions(webinar, fetched.questions)
    if outcome.participants.stored or outcome.registrants.stored:
        reconciler.recompute_aggregates(webinar, include_attendance=outcome.participants.stored > 0)

    if fetched.participants_fetched:
        participant_status = (
            ParticipantSyncStatus.SYNCED if fetched.participants else ParticipantSyncStatus.NO_PARTICIPANTS
        )
        failures = outcome.failure_messages
        Webinar.objects.filter(pk=webinar.pk).update(
            participant_sync_status=participant_status,
            participant_sync_error="; ".join(failures) if failures else None,
            participant_sync_attempted_at=clock(),
        )
        webinar.participant_sync_status = participant_status
    return outcome


def retry_handler(
    fetcher: WebinarFetcher,
    reconciler: Reconciler,
    timeout_seconds: float | None = None,
) -> Callable[[RetryScheduleEntry], DependentOutcome]:
    """Build the ``RetryScheduler.execute`` handler that re-syncs one webinar's participants."""
    timeout_seconds = timeout_seconds if timeout_seconds is not None else settings.sync.webinar_timeout_seconds

    def handle(entry: RetryScheduleEntry) -> DependentOutcome:
        webinar = entry.webinar
        if webinar is None:
            raise LookupError(f"Webinar {entry.entity_id} no longer exists")
        deadline = Deadline(timeout_seconds, label=f"retry {entry.entity_id}")
        fetched = fetcher.fetch_dependents(webinar.external_id, deadline=deadline)
        return store_dependents(reconciler, webinar, fetched)

    return handle


class SyncPipeline:
    def __init__(
        self,
        run: SyncRun,
        client: Client | None = None,
        *,
        strategy: FetchStrategy | None = None,
        webinar_id: str | None = None,
        exclusions: ExclusionList | None = None,
        sync_settings: Sync | None = None,
        deadline: Deadline | None = None,
        clock: Callable[[], datetime] = now,
    ) -> None:
        self.run_record = run
        self.connection: Connection = run.connection
        self.sync_settings = sync_settings or settings.sync
        self.client = client or default_client_factory(self.connection)
        self.strategy = strategy or build_strategy(run.sync_type, webinar_id, self.sync_settings)
        self.exclusions = exclusions if exclusions is not None else ExclusionList.from_store(self.connection.pk)
        self.clock = clock
        self.deadline = deadline or Deadline(self.sync_settings.overall_timeout_minutes * 60, label="sync run")

        self.tracker = ProgressTracker(run.pk, self.sync_settings.heartbeat_interval_seconds)
        self.fetcher = WebinarFetcher(
            self.client,
            self.exclusions,
            max_pages=self.sync_settings.page_ceiling,
            max_workers=self.sync_settings.max_concurrency,
        )
        self.reconciler = Reconciler(self.connection, self.strategy.batch_size)
        self.verifier = BaselineVerifier(self.connection.pk, sample_size=self.sync_settings.verification_sample_size)
        self.scheduler = RetryScheduler(
            self.connection,
            max_attempts=self.sync_settings.retry_max_attempts,
            base_delay_ms=self.sync_settings.retry_base_delay_ms,
            multiplier=self.sync_settings.retry_backoff_multiplier,
            max_delay_ms=self.sync_settings.retry_max_delay_ms,
            clock=clock,
        )

        self.errors = ErrorCollector()
        self.entity_failures: list[EntityFailure] = []
        self.failed_webinars: set[str] = set()
        self.result = PipelineResult(run_id=run.pk, status=SyncRunStatus.FAILED)

    def run(self) -> PipelineResult:
        logger.info(
            "SYNC_RUN start run_id=%s connection=%s strategy=%s",
            self.run_record.pk,
            self.connection.pk,
            self.strategy.name,
        )
        status = SyncRunStatus.FAILED
        message: str | None = None
        try:
            with self.tracker.heartbeat_running():
                status, message = self._execute()
        except DeadlineExceeded as exc:
            message = f"Sync run exceeded its time budget: {exc}"
            logger.error("Sync run %s timed out: %s", self.run_record.pk, exc)
            self.errors.add(message)
        except (FetchError, PermissionError) as exc:
            message = str(exc)
            logger.error("Sync run %s failed: %s", self.run_record.pk, exc)
            self.errors.add(message)
        except Exception as exc:
            message = f"Unexpected error: {exc}"
            self.errors.add(message)
            raise
        finally:
            self.result.status = status
            self.result.message = message
            self.result.errors = self.errors.items
            self.tracker.complete(status, message, self.result.errors)
            self._log_sync_check("sync_run_finished", self._check_payload())
        return self.result

    def _execute(self) -> tuple[SyncRunStatus, str | None]:
        baseline = self._capture_baseline()

        self.tracker.set_stage("fetching", 10)
        if self.strategy.reads_store:
            webinars = self._stored_concluded_webinars()
        else:
            records = self._fetch_records()
            webinars = self._reconcile_webinars(records)

        self._sync_dependents(webinars)

        self.tracker.set_stage("scheduling_retries", 92, processed=len(webinars), total=len(webinars))
        self.result.retries_scheduled = self.scheduler.schedule(self.entity_failures)

        verification = self._verify(baseline)
        return self._final_status(verification)

    def _capture_baseline(self) -> Baseline | None:
        self.tracker.set_stage("baseline", 5)
        deadline = self.deadline.child(self.sync_settings.baseline_timeout_seconds, "baseline")
        try:
            baseline = self.verifier.capture_baseline(deadline)
        except DeadlineExceeded as exc:
            self._raise_if_overall_expired(exc)
            self.errors.add(f"Baseline capture timed out: {exc}")
            return None
        self.tracker.record(baseline=baseline.to_dict())
        return baseline

    def _fetch_records(self) -> list[WebinarRecord]:
        if isinstance(self.strategy, SingleWebinarStrategy):
            timeout = self.sync_settings.detail_fetch_timeout_seconds
        else:
            timeout = self.sync_settings.list_fetch_timeout_seconds
        fetch_result = self.fetcher.fetch(
            self.strategy, self.deadline.child(timeout, "webinar fetch"), current_time=self.clock()
        )
        summary = fetch_result.summary
        self.result.fetch_summary = summary
        self.tracker.record(fetch_summary=summary.to_dict())
        self.errors.extend(f"Fetch {error}" for error in summary.errors)
        self.deadline.check()

        with_fallbacks = [record for record in fetch_result.webinars if record.fallbacks]
        for record in with_fallbacks:
            logger.debug("Webinar %s parsed with fallbacks: %s", record.external_id, ", ".join(record.fallbacks))
        if with_fallbacks:
            logger.info("%s of %s webinars needed parse fallbacks", len(with_fallbacks), len(fetch_result.webinars))
        return fetch_result.webinars

    def _reconcile_webinars(self, records: Sequence[WebinarRecord]) -> list[Webinar]:
        current_time = self.clock()
        pairs = [
            (record, resolve_status(record.raw_status, record.start_time, record.duration_minutes, current_time))
            for record in records
        ]
        self.tracker.set_stage("storing_webinars", 12, total=len(pairs))
        outcome = self.reconciler.upsert_webinars(pairs)
        self.result.processed += len(outcome.failures)
        for failure in outcome.failures:
            self.failed_webinars.add(failure.external_id)
            self.errors.add(f"webinar {failure.external_id}: {failure.error}")

        webinars_by_pk = Webinar.objects.in_bulk(list(outcome.stored_ids.values()))
        return [
            webinars_by_pk[stored_id]
            for stored_id in outcome.stored_ids.values()
            if stored_id in webinars_by_pk
        ]

    def _stored_concluded_webinars(self) -> list[Webinar]:
        current_time = self.clock()
        candidates = Webinar.objects.filter(connection=self.connection, start_time__isnull=False).order_by(
            "start_time", "id"
        )
        return [
            webinar
            for webinar in candidates
            if webinar.external_id not in self.exclusions
            and has_concluded(webinar.start_time, webinar.duration_minutes, current_time)
        ]

    def _sync_dependents(self, webinars: Sequence[Webinar]) -> None:
        total = len(webinars)
        chunk_size = max(1, self.sync_settings.max_concurrency)
        processed = 0
        self.tracker.set_stage("syncing_participants", PROCESSING_START_PERCENT, processed=0, total=total)

        with ThreadPoolExecutor(max_workers=chunk_size, thread_name_prefix="webinar-fetch") as executor:
            for start in range(0, total, chunk_size):
                self.deadline.check()
                chunk = webinars[start : start + chunk_size]
                futures = self._submit_chunk(executor, chunk)
                for webinar, include_participants, future in futures:
                    self._store_chunk_result(webinar, include_participants, future)
                    processed += 1
                    self.result.processed += 1
                    span = PROCESSING_END_PERCENT - PROCESSING_START_PERCENT
                    self.tracker.set_stage(
                        "syncing_participants",
                        PROCESSING_START_PERCENT + (span * processed) // max(1, total),
                        webinar_external_id=webinar.external_id,
                        processed=processed,
                        total=total,
                    )

    def _submit_chunk(
        self, executor: ThreadPoolExecutor, chunk: Sequence[Webinar]
    ) -> list[tuple[Webinar, bool, Future[DependentFetch]]]:
        current_time = self.clock()
        submitted = []
        for webinar in chunk:
            include_participants = has_concluded(webinar.start_time, webinar.duration_minutes, current_time)
            deadline = self.deadline.child(self.sync_settings.webinar_timeout_seconds, f"webinar {webinar.external_id}")
            future = executor.submit(
                self.fetcher.fetch_dependents,
                webinar.external_id,
                deadline,
                include_participants,
            )
            submitted.append((webinar, include_participants, future))
        return submitted

    def _store_chunk_result(
        self, webinar: Webinar, include_participants: bool, future: Future[DependentFetch]
    ) -> None:
        try:
            fetched = future.result()
        except UPSTREAM_ERRORS as exc:
            if isinstance(exc, DeadlineExceeded):
                self._raise_if_overall_expired(exc)
            logger.warning("Dependent fetch for webinar %s failed: %s", webinar.external_id, exc)
            self.failed_webinars.add(webinar.external_id)
            self.errors.add(f"webinar {webinar.external_id}: {exc}")
            self.entity_failures.append(EntityFailure.from_exception(webinar, exc))
            Webinar.objects.filter(pk=webinar.pk).update(
                participant_sync_error=str(exc), participant_sync_attempted_at=self.clock()
            )
            return

        outcome = store_dependents(self.reconciler, webinar, fetched, self.clock)
        if not include_participants:
            Webinar.objects.filter(pk=webinar.pk).update(participant_sync_status=ParticipantSyncStatus.NOT_ELIGIBLE)
        for label, error in (
            ("registrants", fetched.registrant_error),
            ("polls", fetched.poll_error),
            ("Q&A", fetched.question_error),
        ):
            if error:
                logger.debug("Webinar %s %s skipped: %s", webinar.external_id, label, error)
        failures = outcome.failure_messages
        if failures:
            self.failed_webinars.add(webinar.external_id)
            self.errors.extend(f"webinar {webinar.external_id} {failure}" for failure in failures)

    def _verify(self, baseline: Baseline | None) -> VerificationResult | None:
        self.tracker.set_stage("verifying", 95)
        if baseline is None:
            self.errors.add("Verification skipped: no baseline was captured")
            return None
        verification = self.verifier.verify(
            baseline, self.deadline.child(self.sync_settings.verification_timeout_seconds, "verification")
        )
        self.result.verification = verification
        self.tracker.record(verification=verification.to_dict())
        self.errors.extend(str(issue) for issue in verification.issues)
        self.deadline.check()
        return verification

    def _final_status(self, verification: VerificationResult | None) -> tuple[SyncRunStatus, str | None]:
        self.result.failed_webinars = len(self.failed_webinars)
        processed = self.result.processed
        data_loss = verification is not None and verification.data_loss
        fetch_failed = self.result.fetch_summary is not None and self.result.fetch_summary.has_failures
        mostly_failed = processed > 0 and self.result.failed_webinars * 2 > processed

        if data_loss:
            return SyncRunStatus.PARTIAL, "Data loss detected during verification"
        if fetch_failed:
            return SyncRunStatus.PARTIAL, "Some webinar queries failed; results are incomplete"
        if mostly_failed:
            return SyncRunStatus.PARTIAL, f"{self.result.failed_webinars} of {processed} webinars failed"
        if len(self.errors):
            return SyncRunStatus.COMPLETED_WITH_ERRORS, f"Completed with {len(self.errors)} issues"
        return SyncRunStatus.COMPLETED, None

    def _raise_if_overall_expired(self, exc: DeadlineExceeded) -> None:
        if self.deadline.expired:
            raise DeadlineExceeded(self.deadline.label, self.deadline.budget_seconds) from exc

    def _check_payload(self) -> Mapping[str, object]:
        summary = self.result.fetch_summary
        verification = self.result.verification
        return {
            "run_id": self.run_record.pk,
            "connection_id": self.connection.pk,
            "strategy": self.strategy.name,
            "status": str(self.result.status),
            "processed": self.result.processed,
            "failed_webinars": len(self.failed_webinars),
            "retries_scheduled": self.result.retries_scheduled,
            "fetched": summary.final_count if summary else None,
            "integrity_score": verification.score if verification else None,
            "issues": len(self.errors),
        }

    @staticmethod
    def _log_sync_check(event: str, payload: Mapping[str, object]) -> None:
        logger.info(
            "SYNC_CHECK %s",
            json.dumps({"event": event, **payload}, sort_keys=True, default=str),
        )
