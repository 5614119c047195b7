import hashlib
from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Mapping

from webinar_api.base.model import BaseRecord

SYNTHETIC_ID_PREFIX = "synthetic-"


def synthesize_participant_id(
    webinar_external_id: str | None, identity: str | None, join_time: datetime | None
) -> str:
    """Deterministic stand-in id for participants the upstream did not identify."""
    key = "|".join(
        (
            webinar_external_id or "",
            (identity or "anonymous").strip().lower(),
            join_time.isoformat() if join_time else "no-join-time",
        )
    )
    return f"{SYNTHETIC_ID_PREFIX}{hashlib.sha1(key.encode('utf-8')).hexdigest()[:20]}"


@dataclass
class ParticipantRecord(BaseRecord):
    name: str | None = None
    email: str | None = None
    user_id: str | None = None
    registrant_id: str | None = None
    join_time: datetime | None = None
    leave_time: datetime | None = None
    duration: int | None = None
    device: str | None = None
    location: str | None = None
    status: str | None = None
    attentiveness_score: int | None = None
    posted_chat: bool | None = None
    raised_hand: bool | None = None
    answered_polling: bool | None = None
    asked_question: bool | None = None

    FIELD_SOURCES: ClassVar[dict[str, tuple[str, ...]]] = {
        "external_id": ("id", "participant_id", "participant_uuid"),
        "name": ("name", "participant_name", "user_name"),
        "email": ("user_email", "email", "participant_email"),
    }

    def finalize(self, data: Mapping[str, Any], **context: Any) -> None:
        if not self.external_id:
            self.external_id = synthesize_participant_id(
                context.get("webinar_external_id"),
                self.email or self.name,
                self.join_time,
            )
            self.note_fallback("external_id:synthesized")

        if not self.name:
            self.name = self.email or f"Participant {self.external_id}"
            self.note_fallback("name:default")

        if self.duration is None:
            if self.join_time and self.leave_time and self.leave_time >= self.join_time:
                self.duration = int((self.leave_time - self.join_time).total_seconds())
                self.note_fallback("duration<-join_time/leave_time")
            else:
                self.note_fallback("duration:missing")
