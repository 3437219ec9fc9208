"""
Role priority ordering.

Roles of one scope (one clinic's custom roles, or the global roles) form
a total order by priority, highest authority first. Moving a role swaps
its priority value with its neighbour's; nothing else is renumbered.
"""
import logging
from typing import Iterable, Optional, Tuple

from django.db import IntegrityError, transaction
from django.db.models import Min

from apps.core.exceptions import (
    ConcurrentUpdate,
    Conflict,
    InvalidMove,
    NotFound,
    ValidationError,
)
from apps.core.retry import RetryStrategy
from apps.core.validators import require_uuid
from apps.rbac.models import AuditLog, Permission, Role, RolePermission

logger = logging.getLogger(__name__)


class RolePriorityService:
    """
    Service for reordering roles.
    """

    UP = 'up'
    DOWN = 'down'
    DIRECTIONS = (UP, DOWN)

    # Gap left below the lowest role when a new one is appended
    PRIORITY_STEP = 10

    @classmethod
    def reorder(cls, role_id, direction, acting_user_id=None, request_id=None,
                clinic_id=None) -> Tuple[Role, Role]:
        """
        Move a role one position up or down.

        Returns the moved role and the neighbour it swapped with. When
        clinic_id is given, roles outside that clinic are reported as absent.

        Raises:
            ValidationError: unknown direction or malformed id
            NotFound: role does not exist
            InvalidMove: already first (up) or last (down)
            TransientStorageError: lock/serialization failures outlasted the retries
        """
        if direction not in cls.DIRECTIONS:
            raise ValidationError(
                'Invalid direction',
                details={'direction': f"Must be one of {', '.join(cls.DIRECTIONS)}"},
            )
        role_uuid = require_uuid(role_id, 'role_id')

        return RetryStrategy().run(
            cls._swap_with_neighbour, role_uuid, direction, acting_user_id, request_id, clinic_id
        )

    @classmethod
    def _swap_with_neighbour(cls, role_id, direction, acting_user_id, request_id, clinic_id=None):
        with transaction.atomic():
            role = Role.objects.filter(id=role_id).first()
            if role is None or (clinic_id is not None and str(role.clinic_id) != str(clinic_id)):
                raise NotFound('Role not found')

            ordering = list(Role.objects.in_scope_of(role).by_authority().values_list('id', 'priority'))
            index = next(i for i, (rid, _) in enumerate(ordering) if rid == role.id)
            target = index - 1 if direction == cls.UP else index + 1

            if target < 0 or target >= len(ordering):
                raise InvalidMove()

            neighbour_id, neighbour_priority = ordering[target]
            role_priority = ordering[index][1]

            # Lock both rows in ascending id order so overlapping reorders
            # serialize without deadlocking.
            locked = {
                r.id: r
                for r in Role.objects.select_for_update().filter(id__in=[role.id, neighbour_id]).order_by('id')
            }
            if len(locked) != 2:
                raise ConcurrentUpdate(details={'role_id': str(role.id)})

            current, neighbour = locked[role.id], locked[neighbour_id]
            if current.priority != role_priority or neighbour.priority != neighbour_priority:
                raise ConcurrentUpdate(details={'role_id': str(role.id)})

            low, high = sorted((current.priority, neighbour.priority))
            if Role.objects.in_scope_of(current).filter(priority__gt=low, priority__lt=high).exists():
                raise ConcurrentUpdate(details={'role_id': str(role.id)})

            current.priority, neighbour.priority = neighbour.priority, current.priority
            current.save(update_fields=['priority', 'updated_at'])
            neighbour.save(update_fields=['priority', 'updated_at'])

            AuditLog.log_action(
                action='role.reordered',
                user_id=acting_user_id,
                clinic_id=current.clinic_id,
                target_type='Role',
                target_id=current.id,
                diff={
                    'direction': direction,
                    'role': {'before': neighbour.priority, 'after': current.priority},
                    'neighbour': {
                        'id': str(neighbour.id),
                        'before': current.priority,
                        'after': neighbour.priority,
                    },
                },
                request_id=request_id,
            )

        logger.info(
            f"Role {current.name} moved {direction}",
            extra={
                'role_id': str(current.id),
                'neighbour_id': str(neighbour.id),
                'clinic_id': str(current.clinic_id) if current.clinic_id else None,
            },
        )
        return current, neighbour

    @classmethod
    def next_priority(cls, clinic) -> int:
        """Priority for a new lowest-ranked role in the clinic's scope."""
        qs = Role.objects.global_roles() if clinic is None else Role.objects.for_clinic(clinic)
        lowest = qs.aggregate(lowest=Min('priority'))['lowest']
        if lowest is None:
            return cls.PRIORITY_STEP * 10
        return lowest - cls.PRIORITY_STEP


class RoleService:
    """
    Service for creating custom clinic roles.

    Editing a role's permission set after creation is handled elsewhere.
    """

    @classmethod
    def create_custom_role(cls, clinic, name: str, permission_codes: Iterable[str] = (),
                           description: str = '', priority: Optional[int] = None) -> Role:
        """
        Create a role for the clinic, ranked below every existing role
        unless priority is given.

        Raises:
            ValidationError: blank name, unknown permission code, or a
                priority already taken in the clinic
            Conflict: name already used in the clinic
        """
        name = (name or '').strip()
        if not name:
            raise ValidationError('Role name is required', details={'name': 'This field is required'})

        codes = set(permission_codes or [])
        permissions = list(Permission.objects.filter(code__in=codes))
        unknown = codes - {p.code for p in permissions}
        if unknown:
            raise ValidationError('Unknown permission codes', details={'permissions': sorted(unknown)})

        with transaction.atomic():
            # Serialize role creation per clinic so priorities stay distinct
            list(Role.objects.select_for_update().filter(clinic=clinic).values_list('id', flat=True))

            if priority is None:
                priority = RolePriorityService.next_priority(clinic)
            elif Role.objects.for_clinic(clinic).filter(priority=priority).exists():
                raise ValidationError(
                    'Priority already in use',
                    details={'priority': f'Another role in this clinic has priority {priority}'},
                )

            try:
                with transaction.atomic():
                    role = Role.objects.create(
                        clinic=clinic,
                        name=name,
                        description=description,
                        priority=priority,
                    )
            except IntegrityError:
                raise Conflict(f"A role named '{name}' already exists")

            for permission in permissions:
                RolePermission.objects.grant_permission(role, permission)

        logger.info(
            f"Created role {name}",
            extra={'clinic_id': str(clinic.id), 'role_id': str(role.id), 'priority': priority},
        )
        return role
