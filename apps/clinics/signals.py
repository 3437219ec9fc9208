"""
Clinic signals for default role seeding and owner membership.

When a clinic is created its default roles are seeded, the owner gets an
ADMIN membership, and the clinic becomes the owner's default if they had
none.
"""
import logging

from django.db import transaction
from django.db.models.signals import post_save
from django.dispatch import receiver

from apps.clinics.models import Clinic

logger = logging.getLogger(__name__)


@receiver(post_save, sender=Clinic)
def setup_new_clinic(sender, instance, created, raw=False, **kwargs):
    """
    Seed roles and the owner's membership for a new clinic.

    Skipped for fixture loading (raw=True).
    """
    if not created or raw:
        return

    # Import here to avoid circular imports
    from apps.core.cache import ClinicCacheInvalidator
    from apps.rbac.management.commands.seed_clinic_roles import OWNER_ROLE_NAME, seed_roles_for_clinic
    from apps.rbac.models import AuditLog, ClinicMember, User

    with transaction.atomic():
        roles = seed_roles_for_clinic(instance)
        owner_role, _ = roles[OWNER_ROLE_NAME]

        membership, membership_created = ClinicMember.objects.get_or_create(
            user_id=instance.owner_id,
            clinic=instance,
            defaults={'role': owner_role},
        )

        User.objects.filter(id=instance.owner_id, default_clinic__isnull=True).update(
            default_clinic=instance,
        )

        AuditLog.log_action(
            action='clinic.roles_seeded',
            user_id=None,  # System action
            clinic_id=instance.id,
            target_type='Clinic',
            target_id=instance.id,
            metadata={
                'roles_created': [name for name, (_, was_created) in roles.items() if was_created],
                'owner_membership_created': membership_created,
                'trigger': 'post_save_signal',
            },
        )

    ClinicCacheInvalidator.invalidate_user_clinics(instance.owner_id)
    logger.info(
        f"Clinic {instance.name} set up",
        extra={'clinic_id': str(instance.id), 'owner_id': str(instance.owner_id)},
    )
