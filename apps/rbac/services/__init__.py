"""
RBAC services: permission resolution, role ordering, memberships,
invitations and the authorization guard.
"""
from apps.rbac.services.guard import AuthorizationGuard
from apps.rbac.services.invitation import InvitationService
from apps.rbac.services.membership import MembershipService
from apps.rbac.services.permission_resolver import PermissionResolver
from apps.rbac.services.role_priority import RolePriorityService, RoleService

__all__ = [
    'AuthorizationGuard',
    'InvitationService',
    'MembershipService',
    'PermissionResolver',
    'RolePriorityService',
    'RoleService',
]
