from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Mapping

from webinar_api.base.model import BaseRecord
from webinar_api.models.poll import synthesize_content_id
from webinar_api.type_defs import JsonObject, is_json_object


def expand_question_rows(row: JsonObject) -> Iterator[JsonObject]:
    """
    Flatten one Q&A report row into one row per question.

    The report groups questions under the attendee who asked them
    (``question_details``); rows that are already flat pass through.
    """
    details = row.get("question_details")
    if not isinstance(details, list):
        yield row
        return
    asker = {key: value for key, value in row.items() if key != "question_details"}
    for detail in details:
        if is_json_object(detail):
            yield {**asker, **detail}


@dataclass
class QuestionRecord(BaseRecord):
    question: str | None = None
    answer: str | None = None
    asker_name: str | None = None
    asker_email: str | None = None
    answered_by: str | None = None
    asked_at: datetime | None = None
    answered_at: datetime | None = None
    upvote_count: int | None = None
    status: str | None = None
    anonymous: bool | None = None

    FIELD_SOURCES: ClassVar[dict[str, tuple[str, ...]]] = {
        "external_id": ("question_id", "id"),
        "asker_name": ("asker_name", "name", "user_name"),
        "asker_email": ("asker_email", "email", "user_email"),
        "asked_at": ("asked_at", "question_time", "create_time"),
        "answered_at": ("answered_at", "answer_time"),
    }

    def finalize(self, data: Mapping[str, Any], **context: Any) -> None:
        if self.upvote_count is None:
            self.upvote_count = 0
            self.note_fallback("upvote_count:default")
        if not self.status:
            self.status = "open"
            self.note_fallback("status:default")
        if self.anonymous is None:
            self.anonymous = False
            self.note_fallback("anonymous:default")

        if not self.external_id:
            if not self.question:
                super().finalize(data, **context)
            self.external_id = synthesize_content_id(
                context.get("webinar_external_id"),
                self.asker_email or self.asker_name,
                self.question,
                self.asked_at.isoformat() if self.asked_at else None,
            )
            self.note_fallback("external_id:synthesized")
