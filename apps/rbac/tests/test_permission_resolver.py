"""
Tests for PermissionResolver.

Tests:
- Effective permissions come only from the membership's role
- Logical AND over required permissions
- Active (default) clinic fallback and explicit-clinic checks
- Fail-closed answers for missing context and malformed ids
- Cache invalidation on role changes and grants
"""
import uuid
from unittest.mock import patch

import pytest
from django.db import DatabaseError

from apps.core.exceptions import ValidationError
from apps.rbac.models import ClinicMember, Permission, PermissionCode, RolePermission
from apps.rbac.services import PermissionResolver


@pytest.mark.django_db
class TestResolveEffectivePermissions:
    """Test role permission resolution."""

    def test_none_role_has_no_permissions(self):
        assert PermissionResolver.resolve_effective_permissions(None) == set()

    def test_role_permissions_are_direct_assignments(self, roles):
        receptionist = PermissionResolver.resolve_effective_permissions(roles['RECEPTIONIST'])

        assert PermissionCode.PATIENT_READ in receptionist
        assert PermissionCode.APPOINTMENT_CREATE in receptionist
        assert PermissionCode.USER_MANAGE not in receptionist
        assert PermissionCode.TEAM_READ not in receptionist

    def test_admin_role_lacks_ownership_transfer(self, roles):
        admin = PermissionResolver.resolve_effective_permissions(roles['ADMIN'])

        assert PermissionCode.USER_MANAGE in admin
        assert PermissionCode.CLINIC_OWNER_MANAGE not in admin


@pytest.mark.django_db
class TestHasPermission:
    """Test permission checks against a clinic."""

    def test_member_with_permission(self, clinic, add_member):
        doctor = add_member('DOCTOR')

        assert PermissionResolver.has_permission_for_clinic(
            doctor.user_id, clinic.id, [PermissionCode.PATIENT_READ]
        ) is True

    def test_requires_every_permission(self, clinic, add_member):
        """A doctor has PATIENT_READ but not USER_MANAGE; AND fails."""
        doctor = add_member('DOCTOR')

        assert PermissionResolver.has_permission_for_clinic(
            doctor.user_id, clinic.id, [PermissionCode.PATIENT_READ, PermissionCode.USER_MANAGE]
        ) is False

    def test_single_code_string_is_accepted(self, clinic, add_member):
        doctor = add_member('DOCTOR')

        assert PermissionResolver.has_permission_for_clinic(
            doctor.user_id, clinic.id, 'PATIENT_READ'
        ) is True

    def test_empty_requirement_is_not_a_grant(self, clinic, owner_membership):
        assert PermissionResolver.has_permission_for_clinic(owner_membership.user_id, clinic.id, []) is False

    def test_non_member_is_denied(self, clinic, make_user):
        outsider = make_user()

        assert PermissionResolver.has_permission_for_clinic(
            outsider.id, clinic.id, [PermissionCode.PATIENT_READ]
        ) is False

    def test_membership_does_not_leak_across_clinics(self, clinic, other_clinic, add_member):
        manager = add_member('CLINIC_MANAGER')

        assert PermissionResolver.has_permission_for_clinic(
            manager.user_id, other_clinic.id, [PermissionCode.PATIENT_READ]
        ) is False

    def test_owner_without_membership_is_denied(self, clinic, owner, owner_membership):
        owner_membership.delete()

        assert PermissionResolver.has_permission_for_clinic(
            owner.id, clinic.id, [PermissionCode.PATIENT_READ]
        ) is False

    def test_missing_clinic_raises_validation_error(self, owner):
        with pytest.raises(ValidationError):
            PermissionResolver.has_permission_for_clinic(owner.id, None, [PermissionCode.PATIENT_READ])

    def test_malformed_ids_are_denied(self, clinic):
        assert PermissionResolver.has_permission_for_clinic(
            'not-a-uuid', clinic.id, [PermissionCode.PATIENT_READ]
        ) is False
        assert PermissionResolver.has_permission('not-a-uuid', [PermissionCode.PATIENT_READ]) is False

    def test_falls_back_to_default_clinic(self, clinic, owner):
        owner.refresh_from_db()
        assert owner.default_clinic_id == clinic.id

        assert PermissionResolver.has_permission(owner.id, [PermissionCode.USER_MANAGE]) is True

    def test_no_active_clinic_is_denied(self, make_user):
        user = make_user()

        assert PermissionResolver.get_active_clinic_id(user.id) is None
        assert PermissionResolver.has_permission(user.id, [PermissionCode.PATIENT_READ]) is False

    def test_explicit_clinic_overrides_default(self, clinic, other_clinic, owner):
        assert PermissionResolver.has_permission(
            owner.id, [PermissionCode.PATIENT_READ], clinic_id=other_clinic.id
        ) is False

    def test_storage_error_denies(self, clinic, owner_membership):
        with patch.object(PermissionResolver, '_load_member_permissions', side_effect=DatabaseError('down')):
            assert PermissionResolver.has_permission_for_clinic(
                owner_membership.user_id, clinic.id, [PermissionCode.PATIENT_READ]
            ) is False


@pytest.mark.django_db
class TestPermissionCache:
    """Test cached permissions follow membership and role changes."""

    def test_role_change_is_visible_immediately(self, clinic, roles, add_member):
        member = add_member('RECEPTIONIST')
        assert PermissionResolver.has_permission_for_clinic(
            member.user_id, clinic.id, [PermissionCode.TEAM_READ]
        ) is False

        member.role = roles['DOCTOR']
        member.save()

        assert PermissionResolver.has_permission_for_clinic(
            member.user_id, clinic.id, [PermissionCode.TEAM_READ]
        ) is True

    def test_granting_to_role_is_visible_immediately(self, clinic, roles, add_member):
        member = add_member('RECEPTIONIST')
        assert PermissionResolver.has_permission_for_clinic(
            member.user_id, clinic.id, [PermissionCode.TEAM_READ]
        ) is False

        RolePermission.objects.grant_permission(
            roles['RECEPTIONIST'], Permission.objects.by_code(PermissionCode.TEAM_READ)
        )

        assert PermissionResolver.has_permission_for_clinic(
            member.user_id, clinic.id, [PermissionCode.TEAM_READ]
        ) is True

    def test_removed_member_loses_permissions(self, clinic, add_member):
        member = add_member('DOCTOR')
        assert PermissionResolver.has_permission_for_clinic(
            member.user_id, clinic.id, [PermissionCode.PATIENT_READ]
        ) is True

        ClinicMember.objects.filter(pk=member.pk).delete()

        assert PermissionResolver.has_permission_for_clinic(
            member.user_id, clinic.id, [PermissionCode.PATIENT_READ]
        ) is False

    def test_cache_can_be_disabled(self, settings, clinic, add_member):
        settings.RBAC_PERMISSION_CACHE_ENABLED = False
        member = add_member('DOCTOR')

        with patch.object(
            PermissionResolver, '_load_member_permissions', wraps=PermissionResolver._load_member_permissions
        ) as loader:
            PermissionResolver.resolve_member_permissions(member.user_id, clinic.id)
            PermissionResolver.resolve_member_permissions(member.user_id, clinic.id)

        assert loader.call_count == 2

    def test_unknown_ids_resolve_to_nothing(self):
        assert PermissionResolver.resolve_member_permissions(uuid.uuid4(), uuid.uuid4()) == set()
