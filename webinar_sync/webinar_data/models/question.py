from django.db import models

from .webinar import Webinar


class WebinarQuestion(models.Model):
    webinar = models.ForeignKey(Webinar, on_delete=models.CASCADE, related_name="questions")
    question_external_id = models.CharField(max_length=64)
    question = models.TextField(null=True)
    answer = models.TextField(null=True)
    asker_name = models.CharField(max_length=255, null=True)
    asker_email = models.CharField(max_length=255, null=True)
    answered_by = models.CharField(max_length=255, null=True)
    asked_at = models.DateTimeField(null=True)
    answered_at = models.DateTimeField(null=True)
    upvote_count = models.IntegerField(default=0)
    status = models.CharField(max_length=32, default="open")
    anonymous = models.BooleanField(default=False)
    updated_at = models.DateTimeField(auto_now=True)

    class Meta:
        constraints = [
            models.UniqueConstraint(
                fields=["webinar", "question_external_id"], name="unique_question_per_webinar"
            ),
        ]
