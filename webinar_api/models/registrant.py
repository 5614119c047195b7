from dataclasses import dataclass
from datetime import datetime
from typing import ClassVar

from webinar_api.base.model import BaseRecord


@dataclass
class RegistrantRecord(BaseRecord):
    email: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    status: str | None = None
    join_url: str | None = None
    registered_at: datetime | None = None

    FIELD_SOURCES: ClassVar[dict[str, tuple[str, ...]]] = {
        "external_id": ("id", "registrant_id"),
        "registered_at": ("create_time", "registered_at", "created_at"),
    }
