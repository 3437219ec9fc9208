"""
RBAC serializers for REST API endpoints.

Provides serialization for:
- Permissions and roles
- Clinic members
- Invitations
- Request payloads (reorder, role change, invite)
"""
from rest_framework import serializers

from apps.rbac.models import ClinicMember, Invitation, Permission, PermissionCode, Role, User


class PermissionSerializer(serializers.ModelSerializer):
    """Serializer for Permission model."""

    class Meta:
        model = Permission
        fields = ['id', 'code', 'label', 'description', 'category']
        read_only_fields = fields


class RoleSerializer(serializers.ModelSerializer):
    """Serializer for Role with its permission codes."""

    permissions = serializers.SerializerMethodField()
    is_global = serializers.BooleanField(read_only=True)

    class Meta:
        model = Role
        fields = [
            'id', 'clinic', 'name', 'description', 'priority',
            'is_system', 'is_global', 'permissions', 'created_at',
        ]
        read_only_fields = fields

    def get_permissions(self, obj):
        return sorted(obj.permission_codes())


class RoleCreateSerializer(serializers.Serializer):
    """Payload for creating a custom clinic role."""

    name = serializers.CharField(max_length=100)
    description = serializers.CharField(required=False, allow_blank=True, default='')
    priority = serializers.IntegerField(required=False)
    permissions = serializers.ListField(
        child=serializers.ChoiceField(choices=PermissionCode.choices),
        required=False,
        default=list,
    )


class RoleReorderSerializer(serializers.Serializer):
    """Payload for moving a role one position."""

    roleId = serializers.UUIDField()
    direction = serializers.ChoiceField(choices=['up', 'down'])


class UserSummarySerializer(serializers.ModelSerializer):
    """Minimal user representation for team lists."""

    full_name = serializers.CharField(source='get_full_name', read_only=True)

    class Meta:
        model = User
        fields = ['id', 'email', 'first_name', 'last_name', 'full_name']
        read_only_fields = fields


class RoleSummarySerializer(serializers.ModelSerializer):

    class Meta:
        model = Role
        fields = ['id', 'name', 'priority']
        read_only_fields = fields


class ClinicMemberSerializer(serializers.ModelSerializer):
    """
    Serializer for a clinic member.

    can_manage is computed by the view for the requesting member and passed
    in through context['manageable_user_ids'].
    """

    user = UserSummarySerializer(read_only=True)
    role = RoleSummarySerializer(read_only=True)
    is_owner = serializers.SerializerMethodField()
    can_manage = serializers.SerializerMethodField()

    class Meta:
        model = ClinicMember
        fields = ['id', 'user', 'role', 'is_owner', 'can_manage', 'joined_at']
        read_only_fields = fields

    def get_is_owner(self, obj):
        return obj.clinic.is_owner(obj.user_id)

    def get_can_manage(self, obj):
        return obj.user_id in self.context.get('manageable_user_ids', set())


class ChangeRoleSerializer(serializers.Serializer):
    """Payload for changing a member's role."""

    role_id = serializers.UUIDField()


class InvitationSerializer(serializers.ModelSerializer):
    """Serializer for Invitation model."""

    clinic_name = serializers.CharField(source='clinic.name', read_only=True)
    role = RoleSummarySerializer(read_only=True)
    inviter = UserSummarySerializer(read_only=True)

    class Meta:
        model = Invitation
        fields = [
            'id', 'email', 'clinic', 'clinic_name', 'role', 'inviter',
            'status', 'responded_at', 'created_at',
        ]
        read_only_fields = fields


class InvitationCreateSerializer(serializers.Serializer):
    """Payload for inviting an email address to the active clinic."""

    email = serializers.EmailField()
    role_id = serializers.UUIDField()

    def validate_email(self, value):
        return value.strip().lower()
