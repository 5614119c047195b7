from django.db import models

from .connection import Connection
from .webinar import Webinar


class RetryScheduleEntry(models.Model):
    connection = models.ForeignKey(Connection, on_delete=models.CASCADE, related_name="retry_entries")
    webinar = models.ForeignKey(Webinar, on_delete=models.CASCADE, null=True, related_name="retry_entries")
    entity_id = models.CharField(max_length=64)
    attempt_number = models.IntegerField(default=1)
    error_class = models.CharField(max_length=32)
    scheduled_for = models.DateTimeField()
    original_error = models.TextField(null=True)
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["connection", "entity_id"], name="unique_retry_per_entity"),
        ]
        ordering = ["scheduled_for", "id"]
