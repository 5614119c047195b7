from django.db import models

from .webinar import Webinar


class Participant(models.Model):
    webinar = models.ForeignKey(Webinar, on_delete=models.CASCADE, related_name="participants")
    participant_external_id = models.CharField(max_length=64)
    name = models.CharField(max_length=255, null=True)
    email = models.CharField(max_length=255, null=True)
    user_id = models.CharField(max_length=64, null=True)
    registrant_id = models.CharField(max_length=64, null=True)
    join_time = models.DateTimeField(null=True)
    leave_time = models.DateTimeField(null=True)
    duration = models.IntegerField(default=0)
    device = models.CharField(max_length=255, null=True)
    location = models.CharField(max_length=255, null=True)
    status = models.CharField(max_length=64, null=True)
    attentiveness_score = models.IntegerField(null=True)
    posted_chat = models.BooleanField(default=False)
    raised_hand = models.BooleanField(default=False)
    answered_polling = models.BooleanField(default=False)
    asked_question = models.BooleanField(default=False)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["webinar", "participant_external_id", "join_time"],
                name="unique_participant_session",
            ),
        ]
