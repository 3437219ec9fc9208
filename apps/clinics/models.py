"""
Clinic model: the tenant boundary of the platform.
"""
from django.conf import settings
from django.db import models
from django.db.models import Q

from apps.core.models import BaseModel


class ClinicManager(models.Manager):
    """Manager for Clinic queries."""

    def active(self):
        """Return only active clinics."""
        return self.filter(is_active=True)

    def for_user(self, user):
        """Clinics the user owns or is a member of, ordered by name."""
        return self.filter(
            Q(owner=user) | Q(members__user=user)
        ).distinct().order_by('name')


class Clinic(BaseModel):
    """
    A clinic (tenant).

    The owner is always the highest-authority actor in the clinic and
    outranks any role priority. A membership row (created with the clinic)
    still carries the owner's permissions.
    """

    name = models.CharField(
        max_length=255,
        help_text="Clinic display name"
    )
    owner = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name='owned_clinics',
        help_text="User who owns the clinic"
    )
    address = models.CharField(max_length=255, blank=True)
    city = models.CharField(max_length=100, blank=True)
    is_active = models.BooleanField(
        default=True,
        db_index=True,
        help_text="Inactive clinics keep their data but resolve no context"
    )

    objects = ClinicManager()

    class Meta:
        db_table = 'clinics'
        ordering = ['name']
        indexes = [
            models.Index(fields=['owner']),
        ]

    def __str__(self):
        return self.name

    def is_owner(self, user_id) -> bool:
        """Check whether the given user id owns this clinic."""
        return user_id is not None and str(self.owner_id) == str(user_id)
