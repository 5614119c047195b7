"""
Canonical lifecycle status for webinars.

The upstream status field is missing on list payloads often enough, and
sometimes arrives as the literal ``"undefined"``, so a usable value is mapped
through ``STATUS_MAP`` and anything else falls back to the schedule.
"""

from datetime import datetime, timedelta

from webinar_api.models.webinar import UNDEFINED_STATUS_TOKEN
from webinar_api.utils import ensure_utc
from webinar_data.models import WebinarStatus

PRE_START_BUFFER = timedelta(minutes=15)
POST_END_BUFFER = timedelta(minutes=30)
DEFAULT_DURATION_MINUTES = 60

STATUS_MAP: dict[str, WebinarStatus] = {
    "scheduled": WebinarStatus.SCHEDULED,
    "waiting": WebinarStatus.SCHEDULED,
    "available": WebinarStatus.SCHEDULED,
    "started": WebinarStatus.LIVE,
    "live": WebinarStatus.LIVE,
    "in_progress": WebinarStatus.LIVE,
    "ended": WebinarStatus.ENDED,
    "finished": WebinarStatus.ENDED,
    "completed": WebinarStatus.ENDED,
    "aborted": WebinarStatus.ABORTED,
    "cancelled": WebinarStatus.ABORTED,
    "canceled": WebinarStatus.ABORTED,
    "deleted": WebinarStatus.DELETED,
}


def _usable_raw_status(raw_status: str | None) -> str | None:
    if not isinstance(raw_status, str):
        return None
    normalized = raw_status.strip().lower()
    if not normalized or normalized == UNDEFINED_STATUS_TOKEN:
        return None
    return normalized


def scheduled_end(start_time: datetime, duration_minutes: int | None) -> datetime:
    minutes = duration_minutes if duration_minutes and duration_minutes > 0 else DEFAULT_DURATION_MINUTES
    return ensure_utc(start_time) + timedelta(minutes=minutes)


def resolve_status(
    raw_status: str | None,
    start_time: datetime | None,
    duration_minutes: int | None,
    now: datetime,
) -> WebinarStatus:
    usable = _usable_raw_status(raw_status)
    if usable is not None:
        return STATUS_MAP.get(usable, WebinarStatus.UNKNOWN)

    if start_time is None:
        return WebinarStatus.UNKNOWN

    current_time = ensure_utc(now)
    window_opens = ensure_utc(start_time) - PRE_START_BUFFER
    window_closes = scheduled_end(start_time, duration_minutes) + POST_END_BUFFER
    if current_time < window_opens:
        return WebinarStatus.SCHEDULED
    if current_time <= window_closes:
        return WebinarStatus.LIVE
    return WebinarStatus.ENDED


def has_concluded(start_time: datetime | None, duration_minutes: int | None, now: datetime) -> bool:
    """True once the post-end buffer has passed; unknown start times never conclude."""
    if start_time is None:
        return False
    return ensure_utc(now) > scheduled_end(start_time, duration_minutes) + POST_END_BUFFER
