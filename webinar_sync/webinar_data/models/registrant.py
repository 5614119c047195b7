from django.db import models

from .webinar import Webinar


class Registrant(models.Model):
    webinar = models.ForeignKey(Webinar, on_delete=models.CASCADE, related_name="registrants")
    registrant_external_id = models.CharField(max_length=64)
    email = models.CharField(max_length=255, null=True)
    first_name = models.CharField(max_length=255, null=True)
    last_name = models.CharField(max_length=255, null=True)
    status = models.CharField(max_length=64, null=True)
    join_url = models.TextField(null=True)
    registered_at = models.DateTimeField(null=True)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["webinar", "registrant_external_id"], name="unique_registrant_per_webinar"
            ),
        ]
