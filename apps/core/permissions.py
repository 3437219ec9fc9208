"""
DRF permission classes and decorators for clinic permission enforcement.

This module provides:
- HasClinicPermission: DRF permission class that checks permission codes
  against the active clinic
- @requires_permissions: Decorator to declare required permission codes on views
"""
import logging
from functools import wraps
from rest_framework.permissions import BasePermission

logger = logging.getLogger(__name__)


def _as_set(codes):
    if not codes:
        return set()
    if isinstance(codes, str):
        return {codes}
    return set(codes)


class HasClinicPermission(BasePermission):
    """
    DRF permission class that enforces permission codes on API endpoints.

    Permissions are resolved from storage for the request's active clinic
    on every check. All listed codes are required (logical AND). A request
    without an active clinic is denied.

    Usage in views:
        class RoleListView(APIView):
            permission_classes = [HasClinicPermission]
            required_permissions = ['ROLE_READ']
    """

    message = 'You do not have permission to perform this action'

    def has_permission(self, request, view):
        from apps.clinics.context import clinic_context_for
        from apps.core.logging import SecurityLogger
        from apps.rbac.services import PermissionResolver

        required = _as_set(getattr(view, 'required_permissions', None))

        user = getattr(request, 'user', None)
        if not user or not user.is_authenticated:
            return False

        if not required:
            return True

        context = clinic_context_for(request)
        if context.active_clinic_id is None:
            logger.warning(
                "Permission denied: no active clinic",
                extra={
                    'user_id': str(user.id),
                    'required_permissions': sorted(required),
                    'view': view.__class__.__name__,
                },
            )
            return False

        allowed = PermissionResolver.has_permission_for_clinic(
            user.id, context.active_clinic_id, sorted(required)
        )

        if not allowed:
            SecurityLogger.log_permission_denied(
                user.id, context.active_clinic_id, required, path=request.path
            )
            logger.warning(
                f"Permission denied: missing one of {sorted(required)}",
                extra={
                    'user_id': str(user.id),
                    'clinic_id': str(context.active_clinic_id),
                    'required_permissions': sorted(required),
                    'view': view.__class__.__name__,
                    'method': request.method,
                    'path': request.path,
                    'request_id': getattr(request, 'request_id', None),
                },
            )

        return allowed

    def has_object_permission(self, request, view, obj):
        """Verify that a clinic-scoped object belongs to the active clinic."""
        from apps.clinics.context import clinic_context_for

        object_clinic_id = getattr(obj, 'clinic_id', None)
        if object_clinic_id is None:
            return True

        context = clinic_context_for(request)
        if object_clinic_id != context.active_clinic_id:
            logger.warning(
                "Object permission denied: object belongs to a different clinic",
                extra={
                    'object_type': obj.__class__.__name__,
                    'object_id': str(getattr(obj, 'id', '')),
                    'object_clinic_id': str(object_clinic_id),
                    'clinic_id': str(context.active_clinic_id),
                },
            )
            return False
        return True


def requires_permissions(*codes):
    """
    Decorator to declare required permission codes on view classes or methods.

    Usage:
        @requires_permissions('ROLE_UPDATE')
        class RoleReorderView(APIView):
            permission_classes = [HasClinicPermission]

    Or per method:
        class InvitationListView(APIView):
            permission_classes = [HasClinicPermission]

            @requires_permissions('USER_MANAGE')
            def post(self, request):
                ...
    """
    def decorator(view_or_method):
        if isinstance(view_or_method, type):
            view_or_method.required_permissions = set(codes)
            return view_or_method

        @wraps(view_or_method)
        def wrapped(self, request, *args, **kwargs):
            self.required_permissions = set(codes)
            # Method-level requirements are checked here since DRF has
            # already run permission classes before dispatching.
            for permission in self.get_permissions():
                if not permission.has_permission(request, self):
                    self.permission_denied(
                        request,
                        message=getattr(permission, 'message', None),
                        code=getattr(permission, 'code', None),
                    )
            return view_or_method(self, request, *args, **kwargs)

        wrapped.required_permissions = set(codes)
        return wrapped

    return decorator
