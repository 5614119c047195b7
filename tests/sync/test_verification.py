from __future__ import annotations

from datetime import datetime, timezone

import pytest

from webinar_data.models import Participant, Webinar, WebinarStatus
from webinar_data.sync.verification import (
    CRITICAL,
    INFO,
    WARNING,
    Baseline,
    BaselineVerifier,
    VerificationIssue,
    integrity_score,
)

START = datetime(2026, 3, 1, 15, tzinfo=timezone.utc)


def _complete_webinar(connection, external_id: str, **fields: object) -> Webinar:
    values = {
        "topic": f"Webinar {external_id}",
        "start_time": START,
        "duration_minutes": 60,
        "host_id": "host-1",
        "uuid": f"uuid-{external_id}",
        **fields,
    }
    return Webinar.objects.create(connection=connection, external_id=external_id, **values)


def test_integrity_score_penalties() -> None:
    issues = [
        VerificationIssue("a", CRITICAL, "x"),
        VerificationIssue("b", WARNING, "x"),
        VerificationIssue("c", INFO, "x"),
    ]

    assert integrity_score([]) == 100
    assert integrity_score(issues) == 65
    assert integrity_score(issues, data_loss=True) == 15
    assert integrity_score([VerificationIssue("a", CRITICAL, "x")] * 6, data_loss=True) == 0


@pytest.mark.django_db
def test_baseline_counts_store(connection) -> None:
    webinar = _complete_webinar(connection, "1")
    _complete_webinar(connection, "2", host_id=None)
    Participant.objects.create(webinar=webinar, participant_external_id="p1")

    baseline = BaselineVerifier(connection.pk).capture_baseline()

    assert baseline.webinar_count == 2
    assert baseline.participant_count == 1
    assert baseline.registrant_count == 0
    assert baseline.sampled_rows == 2
    assert baseline.missing_fields["host_id"] == 1
    assert baseline.field_population_rate == 0.9
    assert Baseline.from_dict(baseline.to_dict()) == baseline


@pytest.mark.django_db
def test_count_drop_is_critical_data_loss(connection) -> None:
    _complete_webinar(connection, "1")
    baseline = Baseline(
        webinar_count=3,
        participant_count=0,
        registrant_count=0,
        field_population_rate=1.0,
        captured_at=START,
    )

    result = BaselineVerifier(connection.pk).verify(baseline)

    assert result.data_loss
    issue = result.issues[0]
    assert (issue.kind, issue.severity) == ("data_loss", CRITICAL)
    assert issue.details == {"entity": "webinars", "before": 3, "after": 1}
    assert result.score == 30


@pytest.mark.django_db
def test_growth_passes_cleanly(connection) -> None:
    verifier = BaselineVerifier(connection.pk)
    baseline = verifier.capture_baseline()
    _complete_webinar(connection, "1")
    _complete_webinar(connection, "2")

    result = verifier.verify(baseline)

    assert result.passed
    assert result.score == 100
    assert result.after is not None and result.after.webinar_count == 2


@pytest.mark.django_db
def test_field_missing_on_most_rows_is_a_mapping_error(connection) -> None:
    verifier = BaselineVerifier(connection.pk)
    before = verifier.capture_baseline()
    for external_id in ("1", "2", "3"):
        Webinar.objects.create(connection=connection, external_id=external_id, topic="t", start_time=START)
    _complete_webinar(connection, "4")

    result = verifier.verify(before)

    flagged = {issue.details["field"] for issue in result.issues if issue.kind == "field_mapping_error"}
    assert flagged == {"duration_minutes", "host_id", "uuid"}
    assert not result.data_loss


@pytest.mark.django_db
def test_population_drop_is_reported(connection) -> None:
    verifier = BaselineVerifier(connection.pk)
    _complete_webinar(connection, "1")
    _complete_webinar(connection, "2")
    before = verifier.capture_baseline()
    Webinar.objects.filter(external_id="2").update(host_id=None, uuid=None)

    result = verifier.verify(before)

    kinds = [issue.kind for issue in result.issues]
    assert "field_population_drop" in kinds
    assert before.field_population_rate == 1.0
    assert result.after is not None and result.after.field_population_rate == 0.8
    drop = next(issue for issue in result.issues if issue.kind == "field_population_drop")
    assert drop.message == "field population fell from 100.0% to 80.0%"


@pytest.mark.django_db
def test_ended_webinar_with_attendees_needs_participant_rows(connection) -> None:
    verifier = BaselineVerifier(connection.pk)
    before = verifier.capture_baseline()
    _complete_webinar(connection, "1", status=WebinarStatus.ENDED, total_attendees=5)
    covered = _complete_webinar(connection, "2", status=WebinarStatus.ENDED, total_attendees=1)
    Participant.objects.create(webinar=covered, participant_external_id="p1")

    result = verifier.verify(before)

    assert [issue.kind for issue in result.issues] == ["missing_participants"]
    assert result.issues[0].details == {"webinar_external_ids": ["1"]}


@pytest.mark.django_db
def test_verify_never_raises(connection, monkeypatch: pytest.MonkeyPatch) -> None:
    verifier = BaselineVerifier(connection.pk)
    baseline = verifier.capture_baseline()

    def broken_capture(deadline=None):
        raise RuntimeError("database went away")

    monkeypatch.setattr(verifier, "capture_baseline", broken_capture)

    result = verifier.verify(baseline)

    assert [issue.kind for issue in result.issues] == ["verification_error"]
    assert result.issues[0].severity == WARNING
    assert result.score == 90
    assert not result.data_loss
