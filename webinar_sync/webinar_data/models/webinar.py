from django.db import models

from .connection import Connection


class WebinarStatus(models.TextChoices):
    SCHEDULED = "scheduled"
    LIVE = "live"
    ENDED = "ended"
    ABORTED = "aborted"
    DELETED = "deleted"
    UNKNOWN = "unknown"


class ParticipantSyncStatus(models.TextChoices):
    PENDING = "pending"
    SYNCED = "synced"
    NO_PARTICIPANTS = "no_participants"
    NOT_ELIGIBLE = "not_eligible"
    FAILED = "failed"


class Webinar(models.Model):
    connection = models.ForeignKey(Connection, on_delete=models.CASCADE, related_name="webinars")
    external_id = models.CharField(max_length=64)
    uuid = models.CharField(max_length=255, null=True)
    topic = models.CharField(max_length=500, null=True)
    agenda = models.TextField(null=True)
    host_id = models.CharField(max_length=64, null=True)
    host_email = models.CharField(max_length=255, null=True)
    webinar_type = models.IntegerField(null=True)
    status = models.CharField(max_length=20, choices=WebinarStatus.choices, default=WebinarStatus.UNKNOWN)
    raw_status = models.CharField(max_length=64, null=True)
    start_time = models.DateTimeField(null=True)
    duration_minutes = models.IntegerField(null=True)
    timezone = models.CharField(max_length=64, null=True)
    join_url = models.TextField(null=True)
    registration_url = models.TextField(null=True)
    settings = models.JSONField(null=True)
    webinar_created_at = models.DateTimeField(null=True)

    # Written only by the aggregate recompute.
    total_registrants = models.IntegerField(default=0)
    total_attendees = models.IntegerField(default=0)
    total_minutes = models.IntegerField(default=0)
    avg_attendance_duration = models.IntegerField(null=True)

    participant_sync_status = models.CharField(
        max_length=20,
        choices=ParticipantSyncStatus.choices,
        default=ParticipantSyncStatus.PENDING,
    )
    participant_sync_error = models.TextField(null=True)
    participant_sync_attempted_at = models.DateTimeField(null=True)

    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["connection", "external_id"], name="unique_webinar_per_connection"
            ),
        ]

    def __str__(self) -> str:
        return f"{self.external_id} {self.topic or ''}".strip()
