from django.db import models

from .connection import Connection


class SyncExclusion(models.Model):
    connection = models.ForeignKey(
        Connection, on_delete=models.CASCADE, null=True, blank=True, related_name="exclusions"
    )
    webinar_external_id = models.CharField(max_length=64)
    reason = models.CharField(max_length=255, null=True)
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["connection", "webinar_external_id"], name="unique_exclusion_per_connection"
            ),
        ]
