"""
RBAC REST API views.

Implements endpoints for:
- Effective permissions of the requesting user
- Permission catalog and roles (list, create, reorder)
- Team members (list, change role, remove, leave)
- Invitations (create, list, accept, decline)

Every endpoint works against the request's active clinic (X-Clinic-ID
header or the user's default clinic).
"""
from drf_spectacular.types import OpenApiTypes
from drf_spectacular.utils import OpenApiExample, OpenApiParameter, extend_schema, extend_schema_view
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.clinics.context import clinic_context_for
from apps.clinics.models import Clinic
from apps.core.exceptions import ValidationError
from apps.core.permissions import HasClinicPermission, requires_permissions
from apps.rbac.models import Permission, PermissionCode, Role
from apps.rbac.serializers import (
    ChangeRoleSerializer,
    ClinicMemberSerializer,
    InvitationCreateSerializer,
    InvitationSerializer,
    PermissionSerializer,
    RoleCreateSerializer,
    RoleReorderSerializer,
    RoleSerializer,
)
from apps.rbac.services import (
    AuthorizationGuard,
    InvitationService,
    MembershipService,
    PermissionResolver,
    RolePriorityService,
    RoleService,
)


def _request_id(request):
    return getattr(request, 'request_id', None)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='Get my effective permissions',
        description='''
Return the permission codes the authenticated user holds in the active clinic.

**No permission required** - users can always see their own permissions.

The active clinic is taken from the `X-Clinic-ID` header, falling back to
the user's default clinic. Without an active clinic the list is empty.
        ''',
        responses={200: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Success Response',
                value={
                    'clinic_id': '123e4567-e89b-12d3-a456-426614174001',
                    'permissions': ['APPOINTMENT_READ', 'PATIENT_READ'],
                },
                response_only=True,
            )
        ],
    )
)
class MyPermissionsView(APIView):
    """
    GET /v1/rbac/me/permissions
    """

    def get(self, request):
        context = clinic_context_for(request)
        permissions = set()
        if context.active_clinic_id is not None:
            permissions = PermissionResolver.resolve_member_permissions(
                request.user.id, context.active_clinic_id
            )
        return Response({
            'clinic_id': str(context.active_clinic_id) if context.active_clinic_id else None,
            'permissions': sorted(permissions),
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Permissions'],
        summary='List permission catalog',
        parameters=[
            OpenApiParameter(
                name='category',
                type=OpenApiTypes.STR,
                location=OpenApiParameter.QUERY,
                description='Only permissions in this category (e.g. patient, appointment, user)',
            ),
        ],
        responses={200: PermissionSerializer(many=True)},
    )
)
class PermissionListView(APIView):
    """
    GET /v1/rbac/permissions

    The fixed permission catalog.
    """

    def get(self, request):
        category = request.query_params.get('category')
        if category:
            permissions = Permission.objects.by_category(category.lower())
        else:
            permissions = Permission.objects.all()
        permissions = permissions.order_by('category', 'code')
        serializer = PermissionSerializer(permissions, many=True)
        return Response({'count': len(serializer.data), 'permissions': serializer.data})


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Roles'],
        summary='List roles',
        description='''
List the roles a member of the active clinic may hold: the clinic's own
roles and the global system roles, highest priority first.

**Required permission:** `ROLE_READ`
        ''',
        responses={200: RoleSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Create custom role',
        description='''
Create a role in the active clinic. Without an explicit `priority` the
role is ranked below every existing role.

**Required permission:** `ROLE_CREATE`
        ''',
        request=RoleCreateSerializer,
        responses={201: RoleSerializer, 400: OpenApiTypes.OBJECT, 409: OpenApiTypes.OBJECT},
    ),
)
class RoleListView(APIView):
    """
    GET/POST /v1/rbac/roles
    """

    permission_classes = [HasClinicPermission]

    @requires_permissions(PermissionCode.ROLE_READ.value)
    def get(self, request):
        context = clinic_context_for(request)
        roles = Role.objects.visible_to(context.active_clinic_id).by_authority()
        serializer = RoleSerializer(roles, many=True)
        return Response({'count': len(serializer.data), 'roles': serializer.data})

    @requires_permissions(PermissionCode.ROLE_CREATE.value)
    def post(self, request):
        serializer = RoleCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        clinic = Clinic.objects.get(id=clinic_context_for(request).active_clinic_id)
        role = RoleService.create_custom_role(
            clinic,
            name=data['name'],
            permission_codes=data.get('permissions', []),
            description=data.get('description', ''),
            priority=data.get('priority'),
        )
        return Response(RoleSerializer(role).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Roles'],
        summary='Move role up or down',
        description='''
Swap a role's priority with its immediate neighbour in the active clinic.

**Required permission:** `ROLE_UPDATE`

Moving the top role up or the bottom role down answers 400 `INVALID_MOVE`.
        ''',
        request=RoleReorderSerializer,
        responses={200: OpenApiTypes.OBJECT, 400: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Move up',
                value={'roleId': '123e4567-e89b-12d3-a456-426614174003', 'direction': 'up'},
                request_only=True,
            )
        ],
    )
)
@requires_permissions(PermissionCode.ROLE_UPDATE.value)
class RoleReorderView(APIView):
    """
    POST /v1/rbac/roles/reorder
    """

    permission_classes = [HasClinicPermission]

    def post(self, request):
        serializer = RoleReorderSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        context = clinic_context_for(request)
        role, neighbour = RolePriorityService.reorder(
            serializer.validated_data['roleId'],
            serializer.validated_data['direction'],
            acting_user_id=request.user.id,
            request_id=_request_id(request),
            clinic_id=context.active_clinic_id,
        )
        return Response({
            'role': RoleSerializer(role).data,
            'swapped_with': RoleSerializer(neighbour).data,
        })


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Members'],
        summary='List team members',
        description='''
List the members of the active clinic, highest role first. Each row
carries `can_manage`: whether the requesting member may change or remove it.

**Required permission:** `TEAM_READ`
        ''',
        responses={200: ClinicMemberSerializer(many=True)},
    )
)
@requires_permissions(PermissionCode.TEAM_READ.value)
class MemberListView(APIView):
    """
    GET /v1/rbac/members
    """

    permission_classes = [HasClinicPermission]

    def get(self, request):
        context = clinic_context_for(request)
        clinic = Clinic.objects.get(id=context.active_clinic_id)
        members = list(MembershipService.list_members(clinic.id).select_related('clinic'))

        manageable = AuthorizationGuard.manageable_user_ids(context.membership, members, clinic)

        serializer = ClinicMemberSerializer(
            members, many=True, context={'manageable_user_ids': manageable}
        )
        return Response({'count': len(members), 'members': serializer.data})


@extend_schema_view(
    patch=extend_schema(
        tags=['RBAC - Members'],
        summary="Change a member's role",
        description='''
**Required permission:** `USER_MANAGE`

The requesting member must outrank the target, and (unless they own the
clinic) may only assign roles ranked below their own.
        ''',
        request=ChangeRoleSerializer,
        responses={200: ClinicMemberSerializer, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
    delete=extend_schema(
        tags=['RBAC - Members'],
        summary='Remove a member',
        description='''
**Required permission:** `USER_MANAGE`

The clinic owner cannot be removed, and members leave through
`POST /v1/rbac/members/leave` rather than removing themselves.
        ''',
        responses={204: None, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    ),
)
@requires_permissions(PermissionCode.USER_MANAGE.value)
class MemberDetailView(APIView):
    """
    PATCH/DELETE /v1/rbac/members/{user_id}
    """

    permission_classes = [HasClinicPermission]

    def patch(self, request, user_id):
        serializer = ChangeRoleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        context = clinic_context_for(request)
        membership = MembershipService.change_role(
            request.user.id,
            user_id,
            context.active_clinic_id,
            serializer.validated_data['role_id'],
            request_id=_request_id(request),
        )
        return Response(ClinicMemberSerializer(membership).data)

    def delete(self, request, user_id):
        context = clinic_context_for(request)
        MembershipService.remove_membership(
            request.user.id,
            user_id,
            context.active_clinic_id,
            request_id=_request_id(request),
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Members'],
        summary='Leave the active clinic',
        description='''
Remove the requesting user's own membership. The clinic owner cannot leave.

**No permission required.**
        ''',
        request=None,
        responses={204: None, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
class MemberLeaveView(APIView):
    """
    POST /v1/rbac/members/leave
    """

    def post(self, request):
        context = clinic_context_for(request)
        if context.active_clinic_id is None:
            raise ValidationError(
                'No active clinic',
                details={'clinic_id': 'Send X-Clinic-ID or set a default clinic'},
            )
        MembershipService.leave_clinic(
            request.user.id, context.active_clinic_id, request_id=_request_id(request)
        )
        return Response(status=status.HTTP_204_NO_CONTENT)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Invitations'],
        summary='List clinic invitations',
        description='**Required permission:** `USER_MANAGE`',
        responses={200: InvitationSerializer(many=True)},
    ),
    post=extend_schema(
        tags=['RBAC - Invitations'],
        summary='Invite someone to the clinic',
        description='''
Create a PENDING invitation for an email address under a role of the
active clinic (or a global role).

**Required permission:** `USER_MANAGE`
        ''',
        request=InvitationCreateSerializer,
        responses={201: InvitationSerializer, 400: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Invite a receptionist',
                value={'email': 'front.desk@example.com', 'role_id': '123e4567-e89b-12d3-a456-426614174004'},
                request_only=True,
            )
        ],
    ),
)
@requires_permissions(PermissionCode.USER_MANAGE.value)
class InvitationListView(APIView):
    """
    GET/POST /v1/rbac/invitations
    """

    permission_classes = [HasClinicPermission]

    def get(self, request):
        context = clinic_context_for(request)
        invitations = InvitationService.list_for_clinic(
            context.active_clinic_id, status=request.query_params.get('status')
        ).select_related('clinic')
        serializer = InvitationSerializer(invitations, many=True)
        return Response({'count': len(serializer.data), 'invitations': serializer.data})

    def post(self, request):
        serializer = InvitationCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        context = clinic_context_for(request)
        invitation = InvitationService.create_invitation(
            request.user.id,
            context.active_clinic_id,
            serializer.validated_data['role_id'],
            serializer.validated_data['email'],
            request_id=_request_id(request),
        )
        return Response(InvitationSerializer(invitation).data, status=status.HTTP_201_CREATED)


@extend_schema_view(
    get=extend_schema(
        tags=['RBAC - Invitations'],
        summary='List my pending invitations',
        description='PENDING invitations addressed to the authenticated user\'s email, across all clinics.',
        responses={200: InvitationSerializer(many=True)},
    )
)
class MyInvitationsView(APIView):
    """
    GET /v1/rbac/invitations/mine
    """

    def get(self, request):
        invitations = InvitationService.list_pending_for_user(request.user)
        serializer = InvitationSerializer(invitations, many=True)
        return Response({'count': len(serializer.data), 'invitations': serializer.data})


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Invitations'],
        summary='Accept an invitation',
        description='''
Join the inviting clinic. Requires the authenticated user's verified email
to match the invitation. Answering an invitation twice returns 400
`INVALID_STATE`; already being a member returns 409 `CONFLICT`.
        ''',
        request=None,
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT,
                   409: OpenApiTypes.OBJECT},
        examples=[
            OpenApiExample(
                'Success Response',
                value={'clinicId': '123e4567-e89b-12d3-a456-426614174001'},
                response_only=True,
            )
        ],
    )
)
class InvitationAcceptView(APIView):
    """
    POST /v1/rbac/invitations/{invitation_id}/accept
    """

    def post(self, request, invitation_id):
        clinic_id = InvitationService.accept_invitation(
            invitation_id, request.user.id, request_id=_request_id(request)
        )
        return Response({'clinicId': str(clinic_id)})


@extend_schema_view(
    post=extend_schema(
        tags=['RBAC - Invitations'],
        summary='Decline an invitation',
        description='Decline the invitation; the inviter is notified.',
        request=None,
        responses={200: OpenApiTypes.OBJECT, 403: OpenApiTypes.OBJECT, 404: OpenApiTypes.OBJECT},
    )
)
class InvitationDeclineView(APIView):
    """
    POST /v1/rbac/invitations/{invitation_id}/decline
    """

    def post(self, request, invitation_id):
        InvitationService.decline_invitation(
            invitation_id, request.user.id, request_id=_request_id(request)
        )
        return Response({'status': 'REJECTED'})
