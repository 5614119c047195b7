from __future__ import annotations

import re
from datetime import date, datetime, timezone


_TZ_WITHOUT_COLON_RE = re.compile(r"([+-]\d{2})(\d{2})$")
_EXCESS_MICROS_RE = re.compile(r"(\.\d{6})\d+")


def _normalize_datetime_string(value: str) -> str:
    normalized = value.strip()
    if normalized.endswith(("Z", "z")):
        normalized = f"{normalized[:-1]}+00:00"
    normalized = normalized.replace(" UTC", "+00:00")
    normalized = normalized.replace(" GMT", "+00:00")

    if _TZ_WITHOUT_COLON_RE.search(normalized):
        normalized = _TZ_WITHOUT_COLON_RE.sub(r"\1:\2", normalized)

    # Python supports microseconds up to 6 digits; trim longer fractions.
    normalized = _EXCESS_MICROS_RE.sub(r"\1", normalized)
    return normalized


def parse_datetime(value: str) -> datetime | None:
    if not isinstance(value, str):
        return None

    normalized = _normalize_datetime_string(value)
    candidates = [normalized]
    if " " in normalized:
        candidates.append(normalized.replace(" ", "T", 1))

    for candidate in candidates:
        try:
            return datetime.fromisoformat(candidate)
        except ValueError:
            continue
    return None


def coerce_datetime(value: object) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value
    if isinstance(value, date):
        return datetime.combine(value, datetime.min.time())
    if isinstance(value, str):
        return parse_datetime(value)
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        timestamp = float(value)
        if timestamp > 10_000_000_000:
            timestamp /= 1000.0
        try:
            return datetime.fromtimestamp(timestamp, tz=timezone.utc)
        except (OSError, OverflowError, ValueError):
            return None
    return None


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC; convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def format_query_date(value: datetime | date) -> str:
    if isinstance(value, datetime):
        value = ensure_utc(value).date()
    return value.isoformat()
