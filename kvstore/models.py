from django.db import models
from django.utils import timezone


class ValueEntry(models.Model):
    """Represents the current version of a binary value stored under a token and key."""

    token = models.UUIDField()
    key = models.TextField()
    version = models.PositiveIntegerField(default=1)
    created_at = models.DateTimeField(default=timezone.now)
    payload = models.BinaryField()

    class Meta:
        db_table = "kv_data"
        constraints = [
            models.UniqueConstraint(fields=["token", "key"], name="kv_data_token_key_uniq"),
        ]

    def __str__(self) -> str:
        return f"{self.token}/{self.key} (v{self.version})"
