"""
Per-request clinic context.

Every permission check is evaluated against the request's active clinic:
the X-Clinic-ID header when present, otherwise the user's stored default
clinic. Nothing here is read from token claims.
"""
import logging
from dataclasses import dataclass
from typing import Optional
from uuid import UUID

from apps.core.validators import as_uuid

logger = logging.getLogger(__name__)

CLINIC_HEADER = 'X-Clinic-ID'


@dataclass(frozen=True)
class ClinicContext:
    """Who is acting, and in which clinic."""

    user_id: Optional[UUID] = None
    active_clinic_id: Optional[UUID] = None
    membership: Optional[object] = None
    is_owner: bool = False

    @property
    def is_member(self) -> bool:
        return self.membership is not None


def resolve_clinic_context(user, requested_clinic_id=None) -> ClinicContext:
    """
    Build the context for user.

    An explicitly requested clinic wins over the stored default, even when
    the user has no membership there; checks against it then fail closed.
    """
    from apps.clinics.models import Clinic
    from apps.core.logging import SecurityLogger
    from apps.rbac.models import ClinicMember

    if user is None or not getattr(user, 'is_authenticated', False):
        return ClinicContext()

    if requested_clinic_id:
        clinic_id = as_uuid(requested_clinic_id)
        if clinic_id is None:
            logger.warning(
                "Malformed clinic header ignored",
                extra={'user_id': str(user.id)},
            )
            return ClinicContext(user_id=user.id)
    else:
        clinic_id = getattr(user, 'default_clinic_id', None)

    if clinic_id is None:
        return ClinicContext(user_id=user.id)

    membership = ClinicMember.objects.get_membership(user.id, clinic_id)
    is_owner = Clinic.objects.filter(id=clinic_id, owner_id=user.id).exists()

    if membership is None and not is_owner and requested_clinic_id:
        SecurityLogger.log_cross_clinic_access(user.id, clinic_id, path=None)

    return ClinicContext(
        user_id=user.id,
        active_clinic_id=clinic_id,
        membership=membership,
        is_owner=is_owner,
    )


def clinic_context_for(request) -> ClinicContext:
    """
    Return the request's clinic context, resolving it on first use.

    The middleware resolves it up front for bearer-authenticated requests;
    views also work when DRF authenticated the user some other way.
    """
    user = getattr(request, 'user', None)
    user_id = getattr(user, 'id', None) if user is not None and user.is_authenticated else None

    context = getattr(request, 'clinic_context', None)
    if context is not None and context.user_id == user_id:
        return context

    context = resolve_clinic_context(user, request.headers.get(CLINIC_HEADER))
    request.clinic_context = context
    return context
