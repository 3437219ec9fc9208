"""
RBAC (Role-Based Access Control) application.

Provides multi-clinic access control with:
- Global user identity, one membership (and role) per clinic
- A fixed permission catalog, flat role permission sets
- Priority-ordered roles deciding who may manage whom
- Clinic invitations with a PENDING/ACCEPTED/REJECTED lifecycle
- Audit logging of membership and role changes
"""
