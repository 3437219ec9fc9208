"""
Notification model.
"""
from django.db import models

from apps.core.models import BaseModel


class NotificationManager(models.Manager):
    """Manager for Notification queries."""

    def for_user(self, user_id):
        return self.filter(user_id=user_id)

    def unread(self):
        return self.filter(is_read=False)


class Notification(BaseModel):
    """
    A message addressed to one user.

    kind is a stable machine-readable tag such as INVITE_REJECTED.
    """

    user = models.ForeignKey(
        'rbac.User',
        on_delete=models.CASCADE,
        related_name='notifications',
    )
    title = models.CharField(max_length=255)
    body = models.TextField(blank=True)
    kind = models.CharField(max_length=50, db_index=True)
    is_read = models.BooleanField(default=False, db_index=True)

    objects = NotificationManager()

    class Meta:
        db_table = 'notifications'
        ordering = ['-created_at']
        indexes = [
            models.Index(fields=['user', 'is_read']),
        ]

    def __str__(self):
        return f"{self.kind} -> {self.user_id}"
