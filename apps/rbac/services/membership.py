"""
Clinic membership store.

Tenant-scoping rules are enforced here rather than left to callers: a
role must belong to the membership's clinic (or be global), a user holds
at most one membership per clinic, the owner can never be removed, and
self-removal only happens through leave_clinic.
"""
import logging
from typing import Optional

from django.db import IntegrityError, transaction

from apps.clinics.models import Clinic
from apps.core.exceptions import Conflict, Forbidden, NotFound, ValidationError
from apps.core.validators import require_uuid
from apps.rbac.models import AuditLog, ClinicMember, Role, User
from apps.rbac.services.guard import AuthorizationGuard

logger = logging.getLogger(__name__)


class MembershipService:
    """
    Service for creating, reading and removing ClinicMember rows.
    """

    @classmethod
    def _get_clinic(cls, clinic_id) -> Clinic:
        clinic = Clinic.objects.filter(id=require_uuid(clinic_id, 'clinic_id')).first()
        if clinic is None:
            raise NotFound('Clinic not found')
        return clinic

    @classmethod
    def _get_role_for_clinic(cls, role_id, clinic) -> Role:
        role = Role.objects.filter(id=require_uuid(role_id, 'role_id')).first()
        if role is None:
            raise NotFound('Role not found')
        if role.clinic_id is not None and role.clinic_id != clinic.id:
            raise ValidationError(
                'Role does not belong to this clinic',
                details={'role_id': str(role.id)},
            )
        return role

    @classmethod
    def create_membership(cls, user_id, clinic_id, role_id, invited_by_id=None,
                          request_id=None) -> ClinicMember:
        """
        Bind user to clinic with role.

        Raises:
            NotFound: user, clinic or role missing
            ValidationError: role belongs to another clinic
            Conflict: user is already a member of the clinic
        """
        clinic = cls._get_clinic(clinic_id)
        role = cls._get_role_for_clinic(role_id, clinic)
        user_uuid = require_uuid(user_id, 'user_id')
        if not User.objects.filter(id=user_uuid).exists():
            raise NotFound('User not found')

        if ClinicMember.objects.filter(user_id=user_uuid, clinic=clinic).exists():
            raise Conflict('User is already a member of this clinic')

        try:
            with transaction.atomic():
                membership = ClinicMember.objects.create(
                    user_id=user_uuid,
                    clinic=clinic,
                    role=role,
                    invited_by_id=invited_by_id,
                )
        except IntegrityError:
            # Lost a race with a concurrent create for the same pair
            raise Conflict('User is already a member of this clinic')

        AuditLog.log_action(
            action='member.added',
            user_id=invited_by_id,
            clinic_id=clinic.id,
            target_type='ClinicMember',
            target_id=membership.id,
            diff={'user_id': str(user_uuid), 'role_id': str(role.id)},
            request_id=request_id,
        )
        logger.info(
            "Membership created",
            extra={'clinic_id': str(clinic.id), 'user_id': str(user_uuid), 'role_id': str(role.id)},
        )
        return membership

    @classmethod
    def get_membership(cls, user_id, clinic_id) -> Optional[ClinicMember]:
        """Return the (user, clinic) membership or None."""
        return ClinicMember.objects.get_membership(user_id, clinic_id)

    @classmethod
    def list_members(cls, clinic_id):
        """Members of the clinic, highest role priority first."""
        return ClinicMember.objects.for_clinic(clinic_id).select_related('user', 'role').order_by(
            '-role__priority', 'joined_at'
        )

    @classmethod
    @transaction.atomic
    def remove_membership(cls, acting_user_id, target_user_id, clinic_id, request_id=None):
        """
        Admin-initiated removal of another member.

        Raises:
            Forbidden: target is the owner, target is the actor, or the actor
                cannot manage the target
            NotFound: clinic or target membership missing
        """
        clinic = cls._get_clinic(clinic_id)
        acting_uuid = require_uuid(acting_user_id, 'acting_user_id')
        target_uuid = require_uuid(target_user_id, 'user_id')

        if clinic.is_owner(target_uuid):
            raise Forbidden('The clinic owner cannot be removed')
        if acting_uuid == target_uuid:
            raise Forbidden('Use leave clinic to remove your own membership')

        target = ClinicMember.objects.get_membership(target_uuid, clinic.id)
        if target is None:
            raise NotFound('Membership not found')
        actor = ClinicMember.objects.get_membership(acting_uuid, clinic.id)
        AuthorizationGuard.require_manage(actor, target, clinic)

        membership_id, role_id = target.id, target.role_id
        target.delete()
        cls._reset_default_clinic(target_uuid, clinic.id)

        AuditLog.log_action(
            action='member.removed',
            user_id=acting_uuid,
            clinic_id=clinic.id,
            target_type='ClinicMember',
            target_id=membership_id,
            diff={'user_id': str(target_uuid), 'role_id': str(role_id)},
            request_id=request_id,
        )
        logger.info(
            "Membership removed",
            extra={'clinic_id': str(clinic.id), 'user_id': str(target_uuid), 'removed_by': str(acting_uuid)},
        )

    @classmethod
    @transaction.atomic
    def leave_clinic(cls, user_id, clinic_id, request_id=None):
        """
        Self-service removal of the caller's own membership.

        Raises:
            Forbidden: the owner cannot leave their clinic
            NotFound: clinic or membership missing
        """
        clinic = cls._get_clinic(clinic_id)
        user_uuid = require_uuid(user_id, 'user_id')

        if clinic.is_owner(user_uuid):
            raise Forbidden('The clinic owner cannot leave the clinic')

        membership = ClinicMember.objects.get_membership(user_uuid, clinic.id)
        if membership is None:
            raise NotFound('Membership not found')

        membership_id = membership.id
        membership.delete()
        cls._reset_default_clinic(user_uuid, clinic.id)

        AuditLog.log_action(
            action='member.left',
            user_id=user_uuid,
            clinic_id=clinic.id,
            target_type='ClinicMember',
            target_id=membership_id,
            request_id=request_id,
        )
        logger.info("Member left clinic", extra={'clinic_id': str(clinic.id), 'user_id': str(user_uuid)})

    @classmethod
    @transaction.atomic
    def change_role(cls, acting_user_id, target_user_id, clinic_id, role_id, request_id=None) -> ClinicMember:
        """
        Assign a different role to a member.

        Non-owners may only hand out roles ranked strictly below their own.

        Raises:
            Forbidden: actor cannot manage the target or grant the role
            NotFound: clinic, role or membership missing
            ValidationError: role belongs to another clinic
        """
        clinic = cls._get_clinic(clinic_id)
        acting_uuid = require_uuid(acting_user_id, 'acting_user_id')
        target_uuid = require_uuid(target_user_id, 'user_id')
        role = cls._get_role_for_clinic(role_id, clinic)

        target = ClinicMember.objects.select_for_update().filter(user_id=target_uuid, clinic=clinic).first()
        if target is None:
            raise NotFound('Membership not found')
        actor = ClinicMember.objects.get_membership(acting_uuid, clinic.id)
        AuthorizationGuard.require_manage(actor, target, clinic)

        if not clinic.is_owner(acting_uuid) and role.priority >= actor.role.priority:
            raise Forbidden('You can only assign roles ranked below your own')

        previous_role_id = target.role_id
        target.role = role
        target.save(update_fields=['role', 'updated_at'])

        AuditLog.log_action(
            action='member.role_changed',
            user_id=acting_uuid,
            clinic_id=clinic.id,
            target_type='ClinicMember',
            target_id=target.id,
            diff={'role_id': {'before': str(previous_role_id), 'after': str(role.id)}},
            request_id=request_id,
        )
        return target

    @classmethod
    def _reset_default_clinic(cls, user_id, clinic_id):
        """Point the user's default clinic elsewhere if it was clinic_id."""
        user = User.objects.select_for_update().filter(id=user_id, default_clinic_id=clinic_id).first()
        if user is None:
            return
        fallback = (
            ClinicMember.objects.for_user(user_id)
            .exclude(clinic_id=clinic_id)
            .order_by('joined_at')
            .values_list('clinic_id', flat=True)
            .first()
        )
        user.default_clinic_id = fallback
        user.save(update_fields=['default_clinic', 'updated_at'])
