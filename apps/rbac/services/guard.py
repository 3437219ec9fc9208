"""
Authorization guard: the policy facade external callers use.
"""
import logging

from apps.clinics.models import Clinic
from apps.core.exceptions import Forbidden, Unauthorized
from apps.core.validators import as_uuid
from apps.rbac.models import ClinicMember, MANAGE_PERMISSION
from apps.rbac.services.permission_resolver import PermissionResolver

logger = logging.getLogger(__name__)


class AuthorizationGuard:
    """
    Answers "who can manage whom" and enforces permission requirements.
    """

    @classmethod
    def can_manage(cls, actor, target, clinic, actor_permissions=None) -> bool:
        """
        Decide whether the actor's membership may manage the target's.

        Rules are evaluated strictly in this order:
        1. actor lacks the management permission -> False
        2. actor owns the clinic and target is someone else -> True
        3. target owns the clinic -> False
        4. target is the actor -> False
        5. actor's role priority strictly greater than target's

        actor_permissions may carry the actor role's already resolved codes.
        """
        if actor is None or target is None or clinic is None:
            return False
        if str(actor.clinic_id) != str(clinic.id) or str(target.clinic_id) != str(clinic.id):
            return False

        if actor_permissions is None:
            actor_permissions = PermissionResolver.resolve_effective_permissions(actor.role)
        if MANAGE_PERMISSION not in actor_permissions:
            return False

        target_is_actor = str(actor.user_id) == str(target.user_id)

        if clinic.is_owner(actor.user_id) and not target_is_actor:
            return True

        if clinic.is_owner(target.user_id):
            return False

        if target_is_actor:
            return False

        return actor.role.priority > target.role.priority

    @classmethod
    def manageable_user_ids(cls, actor, members, clinic):
        """User ids among members that the actor may manage."""
        if actor is None:
            return set()
        actor_permissions = PermissionResolver.resolve_effective_permissions(actor.role)
        return {
            member.user_id for member in members
            if cls.can_manage(actor, member, clinic, actor_permissions=actor_permissions)
        }

    @classmethod
    def can_manage_users(cls, acting_user_id, target_user_id, clinic_id) -> bool:
        """
        can_manage by ids. Missing clinic or memberships answer False.
        """
        clinic_uuid = as_uuid(clinic_id)
        if clinic_uuid is None:
            return False
        clinic = Clinic.objects.filter(id=clinic_uuid).first()
        if clinic is None:
            return False

        actor = ClinicMember.objects.get_membership(as_uuid(acting_user_id), clinic_uuid)
        target = ClinicMember.objects.get_membership(as_uuid(target_user_id), clinic_uuid)
        return cls.can_manage(actor, target, clinic)

    @classmethod
    def require_permission(cls, user_id, clinic_id, *codes):
        """
        Raise unless user_id holds every code in clinic_id.

        Raises:
            Unauthorized: no identity
            Forbidden: check failed
        """
        if user_id is None:
            raise Unauthorized()
        if not PermissionResolver.has_permission_for_clinic(user_id, clinic_id, list(codes)):
            logger.info(
                "Permission requirement not met",
                extra={
                    'user_id': str(user_id),
                    'clinic_id': str(clinic_id),
                    'required_permissions': sorted(codes),
                },
            )
            raise Forbidden(details={'required_permissions': sorted(codes)})

    @classmethod
    def require_manage(cls, actor, target, clinic):
        """Raise Forbidden unless can_manage(actor, target, clinic)."""
        if not cls.can_manage(actor, target, clinic):
            raise Forbidden('You cannot manage this member')
