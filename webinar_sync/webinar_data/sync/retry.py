import logging
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from http import HTTPStatus

import requests
from django.db.models import QuerySet
from django.utils.timezone import now

from webinar_api.config import settings
from webinar_data.models import Connection, ParticipantSyncStatus, RetryScheduleEntry, Webinar
from webinar_data.sync.status import has_concluded

logger = logging.getLogger(__name__)


class ErrorClass(StrEnum):
    RATE_LIMIT = "rate_limit"
    TIMEOUT = "timeout"
    NETWORK = "network"
    AUTH_ERROR = "auth_error"
    NOT_FOUND = "not_found"
    NO_DATA = "no_data"
    API_ERROR = "api_error"


RETRYABLE = frozenset({ErrorClass.RATE_LIMIT, ErrorClass.TIMEOUT, ErrorClass.NETWORK, ErrorClass.API_ERROR})

MESSAGE_PATTERNS: tuple[tuple[ErrorClass, tuple[str, ...]], ...] = (
    (ErrorClass.RATE_LIMIT, ("rate limit", "too many requests", "429")),
    (ErrorClass.TIMEOUT, ("timed out", "timeout", "deadline")),
    (ErrorClass.AUTH_ERROR, ("unauthorized", "forbidden", "invalid token", "authorization", "401", "403")),
    (ErrorClass.NOT_FOUND, ("not found", "404")),
    (ErrorClass.NO_DATA, ("no participants", "no data", "no registrants")),
    (ErrorClass.NETWORK, ("connection", "network", "econnreset", "enotfound", "socket")),
)


def _status_code_of(error: BaseException) -> int | None:
    status_code = getattr(error, "status_code", None)
    if isinstance(status_code, int):
        return status_code
    response = getattr(error, "response", None)
    response_status = getattr(response, "status_code", None)
    return response_status if isinstance(response_status, int) else None


def _classify_status(status_code: int) -> ErrorClass:
    if status_code == HTTPStatus.TOO_MANY_REQUESTS:
        return ErrorClass.RATE_LIMIT
    if status_code in (HTTPStatus.UNAUTHORIZED, HTTPStatus.FORBIDDEN):
        return ErrorClass.AUTH_ERROR
    if status_code == HTTPStatus.NOT_FOUND:
        return ErrorClass.NOT_FOUND
    if status_code in (HTTPStatus.REQUEST_TIMEOUT, HTTPStatus.GATEWAY_TIMEOUT):
        return ErrorClass.TIMEOUT
    return ErrorClass.API_ERROR


def classify_error(error: BaseException | str | None) -> ErrorClass:
    """Map an exception or error message onto a retry class; HTTP status wins over the message."""
    if isinstance(error, BaseException):
        status_code = _status_code_of(error)
        if status_code is not None:
            return _classify_status(status_code)
        if isinstance(error, PermissionError):
            return ErrorClass.AUTH_ERROR
        if isinstance(error, (TimeoutError, requests.Timeout)):
            return ErrorClass.TIMEOUT
        if isinstance(error, (ConnectionError, requests.ConnectionError)):
            return ErrorClass.NETWORK
        message = str(error)
    else:
        message = error or ""

    lowered = message.lower()
    for error_class, patterns in MESSAGE_PATTERNS:
        if any(pattern in lowered for pattern in patterns):
            return error_class
    return ErrorClass.API_ERROR


def backoff_delay_ms(attempt: int, base: int = 1000, multiplier: float = 2, cap: int = 8000) -> int:
    return int(min(base * multiplier ** max(0, attempt), cap))


@dataclass
class EntityFailure:
    webinar: Webinar
    error: str
    error_class: ErrorClass
    attempt: int = 0

    @classmethod
    def from_exception(cls, webinar: Webinar, error: BaseException, attempt: int = 0) -> "EntityFailure":
        return cls(webinar, str(error) or type(error).__name__, classify_error(error), attempt)


@dataclass
class RetryOutcome:
    successful: int = 0
    failed: int = 0
    deferred: int = 0
    rescheduled: int = 0
    errors: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, object]:
        return {
            "successful": self.successful,
            "failed": self.failed,
            "deferred": self.deferred,
            "rescheduled": self.rescheduled,
            "errors": list(self.errors),
        }


class RetryScheduler:
    def __init__(
        self,
        connection: Connection,
        max_attempts: int | None = None,
        base_delay_ms: int | None = None,
        multiplier: float | None = None,
        max_delay_ms: int | None = None,
        clock: Callable[[], datetime] = now,
    ) -> None:
        self.connection = connection
        self.max_attempts = max_attempts if max_attempts is not None else settings.sync.retry_max_attempts
        self.base_delay_ms = base_delay_ms or settings.sync.retry_base_delay_ms
        self.multiplier = multiplier or settings.sync.retry_backoff_multiplier
        self.max_delay_ms = max_delay_ms or settings.sync.retry_max_delay_ms
        self.clock = clock

    def delay_for(self, attempt: int) -> timedelta:
        return timedelta(
            milliseconds=backoff_delay_ms(attempt, self.base_delay_ms, self.multiplier, self.max_delay_ms)
        )

    def is_eligible(self, webinar: Webinar | None, error_class: ErrorClass, attempt: int) -> bool:
        if webinar is None or attempt >= self.max_attempts:
            return False
        if error_class not in RETRYABLE:
            return False
        return has_concluded(webinar.start_time, webinar.duration_minutes, self.clock())

    def schedule(self, failures: Iterable[EntityFailure]) -> int:
        scheduled = 0
        for failure in failures:
            webinar = failure.webinar
            if not self.is_eligible(webinar, failure.error_class, failure.attempt):
                logger.info(
                    "Not retrying webinar %s (%s, attempt %s)",
                    webinar.external_id,
                    failure.error_class,
                    failure.attempt,
                )
                self.mark_failed(webinar, failure.error)
                continue

            RetryScheduleEntry.objects.update_or_create(
                connection=self.connection,
                entity_id=webinar.external_id,
                defaults={
                    "webinar": webinar,
                    "attempt_number": failure.attempt + 1,
                    "error_class": failure.error_class.value,
                    "scheduled_for": self.clock() + self.delay_for(failure.attempt),
                    "original_error": failure.error,
                },
            )
            scheduled += 1
        if scheduled:
            logger.info("Scheduled %s participant retries for connection %s", scheduled, self.connection.pk)
        return scheduled

    def due_entries(self) -> QuerySet[RetryScheduleEntry]:
        return RetryScheduleEntry.objects.filter(
            connection=self.connection, scheduled_for__lte=self.clock()
        ).select_related("webinar")

    def mark_failed(self, webinar: Webinar, error: str) -> None:
        Webinar.objects.filter(pk=webinar.pk).update(
            participant_sync_status=ParticipantSyncStatus.FAILED,
            participant_sync_error=error,
            participant_sync_attempted_at=self.clock(),
        )

    def execute(
        self,
        entries: Sequence[RetryScheduleEntry] | QuerySet[RetryScheduleEntry],
        handler: Callable[[RetryScheduleEntry], object],
    ) -> RetryOutcome:
        outcome = RetryOutcome()
        for entry in list(entries):
            if entry.scheduled_for > self.clock():
                outcome.deferred += 1
                continue

            try:
                handler(entry)
            except Exception as exc:
                self._handle_retry_failure(entry, exc, outcome)
                continue

            entry.delete()
            outcome.successful += 1
        logger.info(
            "Retry pass for connection %s: %s succeeded, %s failed, %s deferred",
            self.connection.pk,
            outcome.successful,
            outcome.failed,
            outcome.deferred,
        )
        return outcome

    def _handle_retry_failure(self, entry: RetryScheduleEntry, error: Exception, outcome: RetryOutcome) -> None:
        error_class = classify_error(error)
        message = str(error) or type(error).__name__
        outcome.failed += 1
        outcome.errors.append(f"{entry.entity_id}: {message}")

        if self.is_eligible(entry.webinar, error_class, entry.attempt_number):
            entry.attempt_number += 1
            entry.error_class = error_class.value
            entry.original_error = message
            entry.scheduled_for = self.clock() + self.delay_for(entry.attempt_number - 1)
            entry.save(update_fields=["attempt_number", "error_class", "original_error", "scheduled_for", "updated_at"])
            outcome.rescheduled += 1
            logger.warning(
                "Retry %s for webinar %s failed (%s); rescheduled", entry.attempt_number - 1, entry.entity_id, error_class
            )
            return

        logger.error("Giving up on webinar %s after %s attempts: %s", entry.entity_id, entry.attempt_number, message)
        if entry.webinar is not None:
            self.mark_failed(entry.webinar, message)
        entry.delete()
