from django.db import models


class Connection(models.Model):
    external_account_id = models.CharField(max_length=255)
    credential_reference = models.CharField(max_length=255, null=True, blank=True)
    display_name = models.CharField(max_length=255, null=True, blank=True)
    created_at = models.DateTimeField(auto_now_add=True)

    def __str__(self) -> str:
        return self.display_name or self.external_account_id
