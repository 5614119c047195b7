import hashlib
from dataclasses import dataclass
from typing import Any, ClassVar, Mapping

from webinar_api.base.model import BaseRecord
from webinar_api.models.participant import SYNTHETIC_ID_PREFIX


def synthesize_content_id(webinar_external_id: str | None, *parts: object) -> str:
    """Deterministic id for poll and Q&A rows that arrive without one."""
    key = "|".join((webinar_external_id or "", *(str(part or "").strip().lower() for part in parts)))
    return f"{SYNTHETIC_ID_PREFIX}{hashlib.sha1(key.encode('utf-8')).hexdigest()[:20]}"


@dataclass
class PollRecord(BaseRecord):
    title: str | None = None
    poll_type: str | None = None
    status: str | None = None
    anonymous: bool | None = None
    respondent_name: str | None = None
    respondent_email: str | None = None
    questions: list[dict[str, Any]] | None = None

    FIELD_SOURCES: ClassVar[dict[str, tuple[str, ...]]] = {
        "external_id": ("id", "poll_id", "polling_id"),
        "title": ("title", "poll_title"),
        "poll_type": ("type", "poll_type"),
        "respondent_name": ("name", "user_name"),
        "respondent_email": ("email", "user_email"),
        "questions": ("questions", "question_details"),
    }

    def finalize(self, data: Mapping[str, Any], **context: Any) -> None:
        if self.anonymous is None:
            self.anonymous = False
            self.note_fallback("anonymous:default")
        if self.questions is None:
            self.questions = []
            self.note_fallback("questions:default")

        if not self.external_id:
            # Report rows are per respondent and carry no poll id.
            self.external_id = synthesize_content_id(
                context.get("webinar_external_id"),
                self.title,
                self.respondent_email or self.respondent_name,
            )
            self.note_fallback("external_id:synthesized")
