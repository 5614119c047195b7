from django.db import models

from .connection import Connection


class SyncRunStatus(models.TextChoices):
    STARTED = "started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    COMPLETED_WITH_ERRORS = "completed_with_errors"
    PARTIAL = "partial"
    FAILED = "failed"


ACTIVE_SYNC_STATUSES = (SyncRunStatus.STARTED, SyncRunStatus.IN_PROGRESS)


class SyncRun(models.Model):
    connection = models.ForeignKey(Connection, on_delete=models.CASCADE, related_name="sync_runs")
    sync_type = models.CharField(max_length=32)
    sync_status = models.CharField(
        max_length=32, choices=SyncRunStatus.choices, default=SyncRunStatus.STARTED
    )
    stage = models.CharField(max_length=64, null=True)
    current_webinar_external_id = models.CharField(max_length=64, null=True)
    progress_percentage = models.IntegerField(default=0)
    processed_items = models.IntegerField(default=0)
    total_items = models.IntegerField(default=0)
    started_at = models.DateTimeField(auto_now_add=True)
    completed_at = models.DateTimeField(null=True)
    updated_at = models.DateTimeField(auto_now=True)
    error_message = models.TextField(null=True)
    error_details = models.JSONField(default=list)
    fetch_summary = models.JSONField(null=True)
    baseline = models.JSONField(null=True)
    verification = models.JSONField(null=True)

    class Meta:
        verbose_name = "Sync Run"
        verbose_name_plural = "Sync Runs"
        ordering = ["-started_at", "-id"]

    @property
    def is_active(self) -> bool:
        return self.sync_status in ACTIVE_SYNC_STATUSES
