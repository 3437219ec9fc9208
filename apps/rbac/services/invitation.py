"""
Invitation state machine.

PENDING -> ACCEPTED | REJECTED. Both terminal states are final; a second
accept or decline answers InvalidState and has no further effect.
"""
import logging

from django.db import transaction
from django.utils import timezone

from apps.core.exceptions import Forbidden, InvalidState, NotFound, Unauthorized
from apps.core.retry import RetryStrategy
from apps.core.validators import clean_email, require_uuid
from apps.notifications.services import notify
from apps.rbac.models import (
    AuditLog,
    Invitation,
    InvitationStatus,
    MANAGE_PERMISSION,
    User,
)
from apps.rbac.services.membership import MembershipService
from apps.rbac.services.permission_resolver import PermissionResolver

logger = logging.getLogger(__name__)


class InvitationService:
    """
    Service for creating and answering clinic invitations.
    """

    DECLINED_TITLE = 'Invitation Declined'
    DECLINED_KIND = 'INVITE_REJECTED'

    @classmethod
    def create_invitation(cls, inviter_id, clinic_id, role_id, email, request_id=None) -> Invitation:
        """
        Invite an email address to join the clinic under role_id.

        Duplicate PENDING invitations for the same address are allowed;
        the membership store rejects the second acceptance.

        Raises:
            Unauthorized: no inviter identity
            ValidationError: malformed ids or email, or role from another clinic
            NotFound: clinic or role missing
            Forbidden: inviter lacks the management permission in the clinic
        """
        if inviter_id is None:
            raise Unauthorized()
        email = clean_email(email)
        clinic = MembershipService._get_clinic(clinic_id)

        if not (clinic.is_owner(inviter_id)
                or PermissionResolver.has_permission_for_clinic(inviter_id, clinic.id, [MANAGE_PERMISSION])):
            raise Forbidden(details={'required_permissions': [MANAGE_PERMISSION]})

        role = MembershipService._get_role_for_clinic(role_id, clinic)

        invitation = Invitation.objects.create(
            email=email,
            clinic=clinic,
            role=role,
            inviter_id=require_uuid(inviter_id, 'inviter_id'),
        )
        AuditLog.log_action(
            action='invitation.created',
            user_id=invitation.inviter_id,
            clinic_id=clinic.id,
            target_type='Invitation',
            target_id=invitation.id,
            diff={'role_id': str(role.id)},
            request_id=request_id,
        )
        logger.info(
            "Invitation created",
            extra={'clinic_id': str(clinic.id), 'invitation_id': str(invitation.id), 'role_id': str(role.id)},
        )
        return invitation

    @classmethod
    def _load_for_response(cls, invitation_id, acting_user_id):
        """
        Shared identity and state checks for accept and decline.

        Order matters: NotFound, then Forbidden, then InvalidState.
        """
        if acting_user_id is None:
            raise Unauthorized()
        invitation = Invitation.objects.select_related('clinic', 'role').filter(
            id=require_uuid(invitation_id, 'invitation_id')
        ).first()
        if invitation is None:
            raise NotFound('Invitation not found')

        user = User.objects.filter(id=require_uuid(acting_user_id, 'acting_user_id'), is_active=True).first()
        if user is None:
            raise Unauthorized()
        if not user.email_verified or not invitation.is_addressed_to(user):
            raise Forbidden('This invitation was sent to a different email address')

        if not invitation.is_pending:
            raise InvalidState(
                'Invitation has already been answered',
                details={'status': invitation.status},
            )
        return invitation, user

    @classmethod
    def _lock_pending(cls, invitation_id) -> Invitation:
        invitation = Invitation.objects.select_for_update().get(id=invitation_id)
        if not invitation.is_pending:
            raise InvalidState(
                'Invitation has already been answered',
                details={'status': invitation.status},
            )
        return invitation

    @classmethod
    def accept_invitation(cls, invitation_id, acting_user_id, request_id=None):
        """
        Accept the invitation, returning the joined clinic's id.

        Membership creation, the ACCEPTED transition and the default-clinic
        update commit together or not at all.

        Raises:
            NotFound: invitation missing
            Forbidden: acting user's verified email does not match
            InvalidState: invitation already answered
            Conflict: user is already a member (invitation stays PENDING)
        """
        invitation, user = cls._load_for_response(invitation_id, acting_user_id)
        return RetryStrategy().run(cls._accept, invitation.id, user.id, request_id)

    @classmethod
    def _accept(cls, invitation_id, user_id, request_id):
        with transaction.atomic():
            invitation = cls._lock_pending(invitation_id)

            MembershipService.create_membership(
                user_id=user_id,
                clinic_id=invitation.clinic_id,
                role_id=invitation.role_id,
                invited_by_id=invitation.inviter_id,
                request_id=request_id,
            )

            invitation.status = InvitationStatus.ACCEPTED
            invitation.responded_at = timezone.now()
            invitation.save(update_fields=['status', 'responded_at', 'updated_at'])

            User.objects.filter(id=user_id, default_clinic__isnull=True).update(
                default_clinic_id=invitation.clinic_id,
                updated_at=timezone.now(),
            )

            AuditLog.log_action(
                action='invitation.accepted',
                user_id=user_id,
                clinic_id=invitation.clinic_id,
                target_type='Invitation',
                target_id=invitation.id,
                diff={'status': {'before': InvitationStatus.PENDING, 'after': InvitationStatus.ACCEPTED}},
                request_id=request_id,
            )

        logger.info(
            "Invitation accepted",
            extra={'invitation_id': str(invitation.id), 'clinic_id': str(invitation.clinic_id)},
        )
        return invitation.clinic_id

    @classmethod
    def decline_invitation(cls, invitation_id, acting_user_id, request_id=None):
        """
        Decline the invitation and tell the inviter.

        The notification is sent after commit and never rolls back the
        REJECTED transition.

        Raises:
            NotFound: invitation missing
            Forbidden: acting user's verified email does not match
            InvalidState: invitation already answered
        """
        invitation, user = cls._load_for_response(invitation_id, acting_user_id)
        invitation = RetryStrategy().run(cls._decline, invitation.id, user.id, request_id)

        if invitation.inviter_id is None:
            logger.info(
                "Declined invitation has no inviter to notify",
                extra={'invitation_id': str(invitation.id)},
            )
            return

        body = f"{user.get_full_name()} has declined your invitation."
        inviter_id = invitation.inviter_id
        transaction.on_commit(
            lambda: notify(inviter_id, cls.DECLINED_TITLE, body, cls.DECLINED_KIND)
        )

    @classmethod
    def _decline(cls, invitation_id, user_id, request_id):
        with transaction.atomic():
            invitation = cls._lock_pending(invitation_id)
            invitation.status = InvitationStatus.REJECTED
            invitation.responded_at = timezone.now()
            invitation.save(update_fields=['status', 'responded_at', 'updated_at'])

            AuditLog.log_action(
                action='invitation.declined',
                user_id=user_id,
                clinic_id=invitation.clinic_id,
                target_type='Invitation',
                target_id=invitation.id,
                diff={'status': {'before': InvitationStatus.PENDING, 'after': InvitationStatus.REJECTED}},
                request_id=request_id,
            )

        logger.info(
            "Invitation declined",
            extra={'invitation_id': str(invitation.id), 'clinic_id': str(invitation.clinic_id)},
        )
        return invitation

    @classmethod
    def list_pending_for_user(cls, user):
        """PENDING invitations addressed to the user's email."""
        return Invitation.objects.for_email(user.email).filter(
            status=InvitationStatus.PENDING
        ).select_related('clinic', 'role', 'inviter')

    @classmethod
    def list_for_clinic(cls, clinic_id, status=None):
        qs = Invitation.objects.for_clinic(clinic_id).select_related('role', 'inviter')
        if status:
            qs = qs.filter(status=status)
        return qs
