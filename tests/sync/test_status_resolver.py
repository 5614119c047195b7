from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from webinar_data.models import WebinarStatus
from webinar_data.sync.status import has_concluded, resolve_status

START = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


@pytest.mark.parametrize(
    ("offset_minutes", "expected"),
    [
        (-20, WebinarStatus.SCHEDULED),
        (-15, WebinarStatus.LIVE),
        (30, WebinarStatus.LIVE),
        (90, WebinarStatus.LIVE),
        (91, WebinarStatus.ENDED),
        (120, WebinarStatus.ENDED),
    ],
)
def test_timing_derivation_uses_buffers(offset_minutes: int, expected: WebinarStatus) -> None:
    now = START + timedelta(minutes=offset_minutes)

    assert resolve_status(None, START, 60, now) == expected


@pytest.mark.parametrize("raw_status", ["undefined", "UNDEFINED", "", "   "])
def test_unusable_raw_status_falls_through_to_timing(raw_status: str) -> None:
    assert resolve_status(raw_status, START, 60, START + timedelta(minutes=30)) == WebinarStatus.LIVE
    assert resolve_status(raw_status, START, 60, START + timedelta(minutes=120)) == WebinarStatus.ENDED


@pytest.mark.parametrize(
    ("raw_status", "expected"),
    [
        ("waiting", WebinarStatus.SCHEDULED),
        ("available", WebinarStatus.SCHEDULED),
        ("started", WebinarStatus.LIVE),
        ("In_Progress", WebinarStatus.LIVE),
        ("finished", WebinarStatus.ENDED),
        ("completed", WebinarStatus.ENDED),
        ("cancelled", WebinarStatus.ABORTED),
        ("canceled", WebinarStatus.ABORTED),
        ("deleted", WebinarStatus.DELETED),
        ("paused-forever", WebinarStatus.UNKNOWN),
    ],
)
def test_usable_raw_status_wins_over_timing(raw_status: str, expected: WebinarStatus) -> None:
    far_future = START + timedelta(days=30)

    assert resolve_status(raw_status, START, 60, far_future) == expected


def test_missing_duration_defaults_to_an_hour() -> None:
    assert resolve_status(None, START, None, START + timedelta(minutes=90)) == WebinarStatus.LIVE
    assert resolve_status(None, START, 0, START + timedelta(minutes=91)) == WebinarStatus.ENDED


def test_missing_start_time_is_unknown() -> None:
    assert resolve_status(None, None, 60, START) == WebinarStatus.UNKNOWN
    assert resolve_status("undefined", None, None, START) == WebinarStatus.UNKNOWN


def test_naive_times_are_treated_as_utc() -> None:
    naive_start = START.replace(tzinfo=None)

    assert resolve_status(None, naive_start, 60, START + timedelta(minutes=10)) == WebinarStatus.LIVE


def test_has_concluded_after_post_end_buffer() -> None:
    assert not has_concluded(START, 60, START + timedelta(minutes=90))
    assert has_concluded(START, 60, START + timedelta(minutes=91))
    assert not has_concluded(None, 60, START + timedelta(days=365))
