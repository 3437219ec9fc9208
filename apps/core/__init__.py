# Export permission classes and decorators for easy importing
from apps.core.permissions import HasClinicPermission, requires_permissions

__all__ = ['HasClinicPermission', 'requires_permissions']
