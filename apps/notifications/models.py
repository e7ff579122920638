from __future__ import annotations

from django.conf import settings
from django.db import models

from apps.common.models import BaseModel

User = settings.AUTH_USER_MODEL


class Notification(BaseModel):
    user = models.ForeignKey(User, on_delete=models.CASCADE, related_name="notifications")
    subject = models.CharField(max_length=255)
    body = models.TextField()
    is_read = models.BooleanField(default=False)
    read_at = models.DateTimeField(null=True, blank=True)
    metadata = models.JSONField(default=dict, blank=True)

    class Meta:
        ordering = ("-created_at",)
        indexes = [models.Index(fields=["user", "is_read"], name="notif_user_read_idx")]

    def __str__(self) -> str:
        return f"{self.subject} -> {self.user}"
