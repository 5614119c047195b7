from django.db import models

from .webinar import Webinar


class Poll(models.Model):
    webinar = models.ForeignKey(Webinar, on_delete=models.CASCADE, related_name="polls")
    poll_external_id = models.CharField(max_length=64)
    title = models.CharField(max_length=500, null=True)
    poll_type = models.CharField(max_length=64, null=True)
    status = models.CharField(max_length=64, null=True)
    anonymous = models.BooleanField(default=False)
    respondent_name = models.CharField(max_length=255, null=True)
    respondent_email = models.CharField(max_length=255, null=True)
    questions = models.JSONField(default=list)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(fields=["webinar", "poll_external_id"], name="unique_poll_per_webinar"),
        ]
