import logging
import math
import pprint
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass, field
from typing import Any, TypeVar

from django.db import DatabaseError, transaction
from django.db.models import Sum

from webinar_api.config import settings
from webinar_api.models import (
    BaseRecord,
    ParticipantRecord,
    PollRecord,
    QuestionRecord,
    RegistrantRecord,
    WebinarRecord,
)
from webinar_data.models import Connection, Participant, Poll, Registrant, Webinar, WebinarQuestion, WebinarStatus

logger = logging.getLogger(__name__)

AGGREGATE_FIELDS = frozenset(
    {"total_registrants", "total_attendees", "total_minutes", "avg_attendance_duration"}
)
RECORD_ERRORS = (DatabaseError, ValueError, TypeError)

RecordT = TypeVar("RecordT")


@dataclass(frozen=True)
class UpsertResult:
    action: str
    stored_id: int

    @property
    def created(self) -> bool:
        return self.action == "created"


@dataclass(frozen=True)
class RecordFailure:
    entity_type: str
    external_id: str
    error: str
    exception: Exception | None = field(default=None, compare=False, repr=False)


@dataclass
class BatchOutcome:
    created: int = 0
    updated: int = 0
    stored_ids: dict[str, int] = field(default_factory=dict)
    failures: list[RecordFailure] = field(default_factory=list)

    @property
    def stored(self) -> int:
        return self.created + self.updated

    def record(self, external_id: str, result: UpsertResult) -> None:
        if result.created:
            self.created += 1
        else:
            self.updated += 1
        self.stored_ids[external_id] = result.stored_id


@dataclass(frozen=True)
class WebinarAggregates:
    total_registrants: int
    total_attendees: int
    total_minutes: int
    avg_attendance_duration: int | None


def merge_payload(record: BaseRecord, exclude: Sequence[str] = ()) -> dict[str, Any]:
    """Fields that may overwrite stored values: everything fetched and non-null."""
    skipped = AGGREGATE_FIELDS | {"external_id", *exclude}
    return {
        name: value
        for name, value in record.to_fields().items()
        if value is not None and name not in skipped
    }


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


class Reconciler:
    def __init__(self, connection: Connection, batch_size: int | None = None) -> None:
        self.connection = connection
        self.batch_size = max(1, batch_size or settings.sync.batch_size)

    def upsert_webinar(self, record: WebinarRecord, status: WebinarStatus) -> UpsertResult:
        defaults = merge_payload(record)
        defaults["status"] = status
        webinar, created = Webinar.objects.update_or_create(
            connection=self.connection,
            external_id=record.external_id,
            defaults=defaults,
        )
        return UpsertResult("created" if created else "updated", webinar.pk)

    def upsert_webinars(self, pairs: Sequence[tuple[WebinarRecord, WebinarStatus]]) -> BatchOutcome:
        return self._apply_in_batches(
            "webinar",
            pairs,
            lambda pair: pair[0].external_id,
            lambda pair: self.upsert_webinar(*pair),
        )

    def upsert_participant(self, webinar: Webinar, record: ParticipantRecord) -> UpsertResult:
        participant, created = Participant.objects.update_or_create(
            webinar=webinar,
            participant_external_id=record.external_id,
            join_time=record.join_time,
            defaults=merge_payload(record, exclude=("join_time",)),
        )
        return UpsertResult("created" if created else "updated", participant.pk)

    def upsert_participants(self, webinar: Webinar, records: Sequence[ParticipantRecord]) -> BatchOutcome:
        return self._apply_in_batches(
            "participant",
            records,
            lambda record: record.external_id,
            lambda record: self.upsert_participant(webinar, record),
        )

    def upsert_registrant(self, webinar: Webinar, record: RegistrantRecord) -> UpsertResult:
        registrant, created = Registrant.objects.update_or_create(
            webinar=webinar,
            registrant_external_id=record.external_id,
            defaults=merge_payload(record),
        )
        return UpsertResult("created" if created else "updated", registrant.pk)

    def upsert_registrants(self, webinar: Webinar, records: Sequence[RegistrantRecord]) -> BatchOutcome:
        return self._apply_in_batches(
            "registrant",
            records,
            lambda record: record.external_id,
            lambda record: self.upsert_registrant(webinar, record),
        )

    def upsert_poll(self, webinar: Webinar, record: PollRecord) -> UpsertResult:
        poll, created = Poll.objects.update_or_create(
            webinar=webinar,
            poll_external_id=record.external_id,
            defaults=merge_payload(record),
        )
        return UpsertResult("created" if created else "updated", poll.pk)

    def upsert_polls(self, webinar: Webinar, records: Sequence[PollRecord]) -> BatchOutcome:
        return self._apply_in_batches(
            "poll",
            records,
            lambda record: record.external_id,
            lambda record: self.upsert_poll(webinar, record),
        )

    def upsert_question(self, webinar: Webinar, record: QuestionRecord) -> UpsertResult:
        question, created = WebinarQuestion.objects.update_or_create(
            webinar=webinar,
            question_external_id=record.external_id,
            defaults=merge_payload(record),
        )
        return UpsertResult("created" if created else "updated", question.pk)

    def upsert_questions(self, webinar: Webinar, records: Sequence[QuestionRecord]) -> BatchOutcome:
        return self._apply_in_batches(
            "question",
            records,
            lambda record: record.external_id,
            lambda record: self.upsert_question(webinar, record),
        )

    def _apply_in_batches(
        self,
        entity_type: str,
        items: Sequence[RecordT],
        key_of: Callable[[RecordT], str],
        upsert_one: Callable[[RecordT], UpsertResult],
    ) -> BatchOutcome:
        outcome = BatchOutcome()
        for start in range(0, len(items), self.batch_size):
            batch = items[start : start + self.batch_size]
            try:
                with transaction.atomic():
                    results = [(key_of(item), upsert_one(item)) for item in batch]
            except RECORD_ERRORS as exc:
                logger.warning(
                    "Batch of %s %s rows failed (%s); replaying record by record",
                    len(batch),
                    entity_type,
                    exc,
                )
                self._replay_batch(entity_type, batch, key_of, upsert_one, outcome)
                continue

            for external_id, result in results:
                outcome.record(external_id, result)
        return outcome

    @staticmethod
    def _replay_batch(
        entity_type: str,
        batch: Sequence[RecordT],
        key_of: Callable[[RecordT], str],
        upsert_one: Callable[[RecordT], UpsertResult],
        outcome: BatchOutcome,
    ) -> None:
        for item in batch:
            external_id = key_of(item)
            try:
                with transaction.atomic():
                    result = upsert_one(item)
            except RECORD_ERRORS as exc:
                logger.error(
                    "Failed to store %s %s: %s\n%s",
                    entity_type,
                    external_id,
                    exc,
                    pprint.pformat(item),
                )
                outcome.failures.append(RecordFailure(entity_type, external_id, str(exc), exc))
                continue
            outcome.record(external_id, result)

    def recompute_aggregates(self, webinar: Webinar, include_attendance: bool = True) -> WebinarAggregates:
        """
        Recompute and persist the aggregate columns from stored rows.

        With ``include_attendance`` off only the registrant total is refreshed
        and the stored attendance figures are kept as they are.
        """
        total_registrants = Registrant.objects.filter(webinar=webinar).count()
        if include_attendance:
            participants = Participant.objects.filter(webinar=webinar)
            total_attendees = participants.values("participant_external_id").distinct().count()
            total_seconds = participants.aggregate(total=Sum("duration"))["total"] or 0
            total_minutes = _round_half_up(total_seconds / 60)
            avg_attendance_duration = (
                _round_half_up(total_minutes / total_attendees) if total_attendees else None
            )
        else:
            webinar.refresh_from_db(fields=["total_attendees", "total_minutes", "avg_attendance_duration"])
            total_attendees = webinar.total_attendees
            total_minutes = webinar.total_minutes
            avg_attendance_duration = webinar.avg_attendance_duration

        aggregates = WebinarAggregates(
            total_registrants=total_registrants,
            total_attendees=total_attendees,
            total_minutes=total_minutes,
            avg_attendance_duration=avg_attendance_duration,
        )
        values = asdict(aggregates)
        Webinar.objects.filter(pk=webinar.pk).update(**values)
        for name, value in values.items():
            setattr(webinar, name, value)
        return aggregates
