"""
Before/after snapshots of the store for one connection.

A baseline is captured before any write and compared against a second
snapshot once reconciliation is done. Comparison reports issues with a
severity and folds them into a 0-100 integrity score. Verification is
advisory: it never raises, so a broken check cannot block a run from
completing.
"""

import logging
from collections.abc import Sequence
from dataclasses import asdict, dataclass, field
from datetime import datetime

from django.utils.timezone import now

from webinar_api.config import settings
from webinar_api.utils import Deadline, coerce_datetime
from webinar_data.models import Participant, Registrant, Webinar, WebinarStatus

logger = logging.getLogger(__name__)

CRITICAL = "critical"
WARNING = "warning"
INFO = "info"

SEVERITY_PENALTIES = {CRITICAL: 20, WARNING: 10, INFO: 5}
DATA_LOSS_PENALTY = 50
POPULATION_DROP_THRESHOLD = 0.10

DEFAULT_REQUIRED_FIELDS = ("topic", "start_time", "duration_minutes", "host_id", "uuid")


@dataclass(frozen=True)
class Baseline:
    webinar_count: int
    participant_count: int
    registrant_count: int
    field_population_rate: float
    captured_at: datetime
    missing_fields: dict[str, int] = field(default_factory=dict)
    sampled_rows: int = 0

    def to_dict(self) -> dict[str, object]:
        payload = asdict(self)
        payload["captured_at"] = self.captured_at.isoformat()
        return payload

    @classmethod
    def from_dict(cls, data: dict[str, object]) -> "Baseline":
        captured_at = coerce_datetime(data.get("captured_at")) or now()
        missing_fields = data.get("missing_fields")
        return cls(
            webinar_count=int(data.get("webinar_count") or 0),
            participant_count=int(data.get("participant_count") or 0),
            registrant_count=int(data.get("registrant_count") or 0),
            field_population_rate=float(data.get("field_population_rate") or 0.0),
            captured_at=captured_at,
            missing_fields=dict(missing_fields) if isinstance(missing_fields, dict) else {},
            sampled_rows=int(data.get("sampled_rows") or 0),
        )


@dataclass(frozen=True)
class VerificationIssue:
    kind: str
    severity: str
    message: str
    details: dict[str, object] = field(default_factory=dict)

    def __str__(self) -> str:
        return f"[{self.severity}] {self.kind}: {self.message}"


@dataclass
class VerificationResult:
    issues: list[VerificationIssue] = field(default_factory=list)
    after: Baseline | None = None

    @property
    def data_loss(self) -> bool:
        return any(issue.kind == "data_loss" for issue in self.issues)

    @property
    def score(self) -> int:
        return integrity_score(self.issues, self.data_loss)

    @property
    def passed(self) -> bool:
        return not self.issues

    def to_dict(self) -> dict[str, object]:
        return {
            "score": self.score,
            "data_loss": self.data_loss,
            "issues": [asdict(issue) for issue in self.issues],
            "after": self.after.to_dict() if self.after else None,
        }


def integrity_score(issues: Sequence[VerificationIssue], data_loss: bool = False) -> int:
    score = 100
    for issue in issues:
        score -= SEVERITY_PENALTIES.get(issue.severity, 0)
    if data_loss:
        score -= DATA_LOSS_PENALTY
    return max(0, score)


class BaselineVerifier:
    def __init__(
        self,
        connection_id: int,
        required_fields: Sequence[str] = DEFAULT_REQUIRED_FIELDS,
        sample_size: int | None = None,
    ) -> None:
        self.connection_id = connection_id
        self.required_fields = tuple(required_fields)
        self.sample_size = sample_size or settings.sync.verification_sample_size

    def capture_baseline(self, deadline: Deadline | None = None) -> Baseline:
        deadline = deadline or Deadline.never()
        webinars = Webinar.objects.filter(connection_id=self.connection_id)
        webinar_count = webinars.count()
        deadline.check()
        participant_count = Participant.objects.filter(webinar__connection_id=self.connection_id).count()
        registrant_count = Registrant.objects.filter(webinar__connection_id=self.connection_id).count()
        deadline.check()

        sample = list(webinars.order_by("-updated_at", "-id").values(*self.required_fields)[: self.sample_size])
        missing_fields = {
            name: sum(1 for row in sample if row.get(name) in (None, ""))
            for name in self.required_fields
        }
        total_cells = len(sample) * len(self.required_fields)
        if total_cells:
            populated = total_cells - sum(missing_fields.values())
            population_rate = round(populated / total_cells, 3)
        else:
            population_rate = 1.0

        return Baseline(
            webinar_count=webinar_count,
            participant_count=participant_count,
            registrant_count=registrant_count,
            field_population_rate=population_rate,
            captured_at=now(),
            missing_fields=missing_fields,
            sampled_rows=len(sample),
        )

    def verify(self, baseline: Baseline, deadline: Deadline | None = None) -> VerificationResult:
        result = VerificationResult()
        try:
            after = self.capture_baseline(deadline)
            result.after = after
            result.issues.extend(self._count_issues(baseline, after))
            result.issues.extend(self._field_issues(baseline, after))
            (deadline or Deadline.never()).check()
            result.issues.extend(self._integrity_issues())
        except Exception as exc:
            logger.exception("Verification for connection %s failed", self.connection_id)
            result.issues.append(
                VerificationIssue("verification_error", WARNING, f"Verification could not finish: {exc}")
            )

        logger.info(
            "Verification for connection %s scored %s with %s issues",
            self.connection_id,
            result.score,
            len(result.issues),
        )
        return result

    @staticmethod
    def _count_issues(before: Baseline, after: Baseline) -> list[VerificationIssue]:
        issues: list[VerificationIssue] = []
        for label, before_count, after_count in (
            ("webinars", before.webinar_count, after.webinar_count),
            ("participants", before.participant_count, after.participant_count),
            ("registrants", before.registrant_count, after.registrant_count),
        ):
            if after_count < before_count:
                issues.append(
                    VerificationIssue(
                        "data_loss",
                        CRITICAL,
                        f"{label} dropped from {before_count} to {after_count}",
                        {"entity": label, "before": before_count, "after": after_count},
                    )
                )
        return issues

    def _field_issues(self, before: Baseline, after: Baseline) -> list[VerificationIssue]:
        issues: list[VerificationIssue] = []
        if after.sampled_rows:
            for name in self.required_fields:
                missing = after.missing_fields.get(name, 0)
                if missing * 2 > after.sampled_rows:
                    issues.append(
                        VerificationIssue(
                            "field_mapping_error",
                            WARNING,
                            f"{name} is missing on {missing} of {after.sampled_rows} sampled webinars",
                            {"field": name, "missing": missing, "sampled": after.sampled_rows},
                        )
                    )

        if before.sampled_rows and after.sampled_rows:
            drop = before.field_population_rate - after.field_population_rate
            if drop > POPULATION_DROP_THRESHOLD:
                issues.append(
                    VerificationIssue(
                        "field_population_drop",
                        WARNING,
                        f"field population fell from {before.field_population_rate:.1%} "
                        f"to {after.field_population_rate:.1%}",
                        {"before": before.field_population_rate, "after": after.field_population_rate},
                    )
                )
        return issues

    def _integrity_issues(self) -> list[VerificationIssue]:
        orphaned = list(
            Webinar.objects.filter(
                connection_id=self.connection_id,
                status=WebinarStatus.ENDED,
                total_attendees__gt=0,
                participants__isnull=True,
            )
            .values_list("external_id", flat=True)
            .distinct()[:20]
        )
        if not orphaned:
            return []
        return [
            VerificationIssue(
                "missing_participants",
                WARNING,
                f"{len(orphaned)} ended webinars report attendees but have no participant rows",
                {"webinar_external_ids": orphaned},
            )
        ]
