"""
RBAC signals for permission cache invalidation.

Cached effective permissions are keyed by (user, clinic); they are dropped
whenever a membership changes or a role's permission set changes.
"""
import logging

from django.db.models.signals import post_delete, post_save, pre_delete, pre_save
from django.dispatch import receiver

from apps.core.cache import ClinicCacheInvalidator
from apps.rbac.models import ClinicMember, Role, RolePermission
from apps.rbac.services.permission_resolver import PermissionResolver

logger = logging.getLogger(__name__)


@receiver(pre_save, sender=ClinicMember)
def remember_previous_role(sender, instance, **kwargs):
    """Stash the stored role so post_save can tell a role change apart."""
    if instance.pk is None or instance._state.adding:
        instance._previous_role_id = None
        return
    instance._previous_role_id = (
        ClinicMember.objects.filter(pk=instance.pk).values_list('role_id', flat=True).first()
    )


@receiver(post_save, sender=ClinicMember)
def invalidate_on_membership_save(sender, instance, created, **kwargs):
    previous_role_id = getattr(instance, '_previous_role_id', None)
    if created or previous_role_id != instance.role_id:
        PermissionResolver.invalidate(instance.user_id, instance.clinic_id)
    if created:
        ClinicCacheInvalidator.invalidate_user_clinics(instance.user_id)
        logger.debug(
            "Membership created, permission cache cleared",
            extra={'user_id': str(instance.user_id), 'clinic_id': str(instance.clinic_id)},
        )


@receiver(post_delete, sender=ClinicMember)
def invalidate_on_membership_delete(sender, instance, **kwargs):
    PermissionResolver.invalidate(instance.user_id, instance.clinic_id)
    ClinicCacheInvalidator.invalidate_user_clinics(instance.user_id)


@receiver(post_save, sender=RolePermission)
@receiver(post_delete, sender=RolePermission)
def invalidate_on_role_permission_change(sender, instance, **kwargs):
    """Grant or revoke: every holder of the role is affected."""
    PermissionResolver.invalidate_role(instance.role_id)


@receiver(pre_delete, sender=Role)
def invalidate_on_role_delete(sender, instance, **kwargs):
    # Memberships PROTECT their role, so this only matters for roles
    # whose holders were removed in the same transaction.
    PermissionResolver.invalidate_role(instance.id)
