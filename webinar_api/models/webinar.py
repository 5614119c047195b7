from dataclasses import dataclass
from datetime import datetime
from typing import Any, ClassVar, Mapping

from webinar_api.base.model import BaseRecord

UNDEFINED_STATUS_TOKEN = "undefined"


@dataclass
class WebinarRecord(BaseRecord):
    uuid: str | None = None
    topic: str | None = None
    agenda: str | None = None
    host_id: str | None = None
    host_email: str | None = None
    webinar_type: int | None = None
    raw_status: str | None = None
    start_time: datetime | None = None
    duration_minutes: int | None = None
    timezone: str | None = None
    join_url: str | None = None
    registration_url: str | None = None
    settings: dict[str, Any] | None = None
    webinar_created_at: datetime | None = None

    FIELD_SOURCES: ClassVar[dict[str, tuple[str, ...]]] = {
        "external_id": ("id", "webinar_id"),
        "uuid": ("uuid", "webinar_uuid"),
        "topic": ("topic", "title"),
        "webinar_type": ("type",),
        "raw_status": ("status",),
        "duration_minutes": ("duration",),
        "webinar_created_at": ("created_at",),
    }

    def finalize(self, data: Mapping[str, Any], **context: Any) -> None:
        super().finalize(data, **context)
        if self.raw_status is not None and self.raw_status.strip().lower() == UNDEFINED_STATUS_TOKEN:
            self.note_fallback("raw_status:undefined")
        if self.duration_minutes is None:
            self.note_fallback("duration_minutes:missing")
        if self.start_time is None:
            self.note_fallback("start_time:missing")
