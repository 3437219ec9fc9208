"""
RBAC API URLs.

Provides endpoints for:
- Effective permissions and the permission catalog
- Role listing, creation and reordering
- Team member management
- Invitations
"""
from django.urls import path

from apps.rbac.views import (
    InvitationAcceptView,
    InvitationDeclineView,
    InvitationListView,
    MemberDetailView,
    MemberLeaveView,
    MemberListView,
    MyInvitationsView,
    MyPermissionsView,
    PermissionListView,
    RoleListView,
    RoleReorderView,
)

app_name = 'rbac'

urlpatterns = [
    # Permission endpoints
    path('me/permissions', MyPermissionsView.as_view(), name='my-permissions'),
    path('permissions', PermissionListView.as_view(), name='permission-list'),

    # Role endpoints
    path('roles', RoleListView.as_view(), name='role-list'),
    path('roles/reorder', RoleReorderView.as_view(), name='role-reorder'),

    # Member endpoints
    path('members', MemberListView.as_view(), name='member-list'),
    path('members/leave', MemberLeaveView.as_view(), name='member-leave'),
    path('members/<uuid:user_id>', MemberDetailView.as_view(), name='member-detail'),

    # Invitation endpoints
    path('invitations', InvitationListView.as_view(), name='invitation-list'),
    path('invitations/mine', MyInvitationsView.as_view(), name='invitation-mine'),
    path('invitations/<uuid:invitation_id>/accept', InvitationAcceptView.as_view(), name='invitation-accept'),
    path('invitations/<uuid:invitation_id>/decline', InvitationDeclineView.as_view(), name='invitation-decline'),
]
