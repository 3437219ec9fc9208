"""
Permission resolution for (user, clinic) pairs.

Permissions come only from the role of the user's membership in the
clinic being checked. Role names are never consulted.
"""
import logging
from typing import Iterable, Optional, Set

from django.conf import settings
from django.db import DatabaseError

from apps.core.cache import CacheKeys, CacheService, CacheTTL, ClinicCacheInvalidator
from apps.core.exceptions import ValidationError
from apps.core.validators import as_uuid
from apps.rbac.models import ClinicMember, Role, RolePermission, User

logger = logging.getLogger(__name__)


def _normalize_required(required) -> Set[str]:
    if isinstance(required, str):
        return {required}
    return {str(code) for code in (required or [])}


class PermissionResolver:
    """
    Service for resolving effective permissions and answering checks.

    Every check is fail-closed: missing membership, missing clinic context,
    malformed ids and storage errors all answer False.
    """

    @classmethod
    def resolve_effective_permissions(cls, role: Optional[Role]) -> Set[str]:
        """
        Return the role's directly-assigned permission codes.

        Flat model: no inheritance between roles.
        """
        if role is None:
            return set()
        return set(
            RolePermission.objects.filter(role_id=role.id).values_list('permission__code', flat=True)
        )

    @classmethod
    def resolve_member_permissions(cls, user_id, clinic_id) -> Set[str]:
        """
        Effective permissions of user_id in clinic_id (empty if not a member).

        Served from the event-invalidated cache when enabled.
        """
        user_uuid, clinic_uuid = as_uuid(user_id), as_uuid(clinic_id)
        if user_uuid is None or clinic_uuid is None:
            return set()

        if not getattr(settings, 'RBAC_PERMISSION_CACHE_ENABLED', True):
            return cls._load_member_permissions(user_uuid, clinic_uuid)

        cache_key = CacheKeys.format(CacheKeys.MEMBER_PERMISSIONS, clinic_id=clinic_uuid, user_id=user_uuid)
        cached = CacheService.get(cache_key)
        if cached is not None:
            return set(cached)

        permissions = cls._load_member_permissions(user_uuid, clinic_uuid)
        CacheService.set(cache_key, sorted(permissions), CacheTTL.permissions())
        return permissions

    @classmethod
    def _load_member_permissions(cls, user_id, clinic_id) -> Set[str]:
        role_id = ClinicMember.objects.filter(
            user_id=user_id, clinic_id=clinic_id
        ).values_list('role_id', flat=True).first()
        if role_id is None:
            return set()
        return set(
            RolePermission.objects.filter(role_id=role_id).values_list('permission__code', flat=True)
        )

    @classmethod
    def get_active_clinic_id(cls, user_id):
        """The user's stored default clinic, or None."""
        user_uuid = as_uuid(user_id)
        if user_uuid is None:
            return None
        return User.objects.filter(id=user_uuid).values_list('default_clinic_id', flat=True).first()

    @classmethod
    def has_permission(cls, user_id, required_permissions: Iterable[str], clinic_id=None) -> bool:
        """
        Check required permissions in clinic_id, or in the user's active
        (default) clinic when clinic_id is not given.

        All required permissions must be present (logical AND).
        """
        try:
            if clinic_id is None:
                clinic_id = cls.get_active_clinic_id(user_id)
                if clinic_id is None:
                    logger.debug(
                        "Permission check without clinic context denied",
                        extra={'user_id': str(user_id)},
                    )
                    return False
            return cls._check(user_id, clinic_id, required_permissions)
        except DatabaseError:
            logger.error(
                "Permission check failed on storage error, denying",
                extra={'user_id': str(user_id), 'clinic_id': str(clinic_id)},
                exc_info=True,
            )
            return False

    @classmethod
    def has_permission_for_clinic(cls, user_id, clinic_id, required_permissions: Iterable[str]) -> bool:
        """
        Same as has_permission but never falls back to the active clinic.

        Raises:
            ValidationError: clinic_id is missing
        """
        if clinic_id is None or clinic_id == '':
            raise ValidationError('clinic_id is required', details={'clinic_id': 'This field is required'})
        try:
            return cls._check(user_id, clinic_id, required_permissions)
        except DatabaseError:
            logger.error(
                "Permission check failed on storage error, denying",
                extra={'user_id': str(user_id), 'clinic_id': str(clinic_id)},
                exc_info=True,
            )
            return False

    @classmethod
    def _check(cls, user_id, clinic_id, required_permissions) -> bool:
        required = _normalize_required(required_permissions)
        if not required:
            # Nothing to check is not a grant
            return False
        granted = cls.resolve_member_permissions(user_id, clinic_id)
        if not granted:
            return False
        return required.issubset(granted)

    @classmethod
    def invalidate(cls, user_id, clinic_id):
        """Drop the cached permissions of one membership."""
        ClinicCacheInvalidator.invalidate_member_permissions(as_uuid(clinic_id), as_uuid(user_id))

    @classmethod
    def invalidate_role(cls, role_id):
        """Drop cached permissions of every member holding the role."""
        for user_id, clinic_id in ClinicMember.objects.filter(role_id=role_id).values_list('user_id', 'clinic_id'):
            cls.invalidate(user_id, clinic_id)
