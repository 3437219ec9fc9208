"""
Tests for RBAC management commands.
"""
from io import StringIO

import pytest
from django.core.management import call_command
from django.core.management.base import CommandError

from apps.rbac.management.commands.seed_clinic_roles import seed_roles_for_clinic
from apps.rbac.management.commands.seed_permissions import sync_permission_catalog
from apps.rbac.models import Permission, PermissionCode, Role
from apps.rbac.services import RolePriorityService


@pytest.mark.django_db
class TestSeedPermissions:

    def test_seeds_catalog(self):
        out = StringIO()

        call_command('seed_permissions', stdout=out)

        assert Permission.objects.count() == len(PermissionCode.choices)
        assert 'Seeding complete' in out.getvalue()

    def test_idempotent(self):
        sync_permission_catalog()

        assert sync_permission_catalog() == 0


@pytest.mark.django_db
class TestSeedClinicRoles:

    def test_seeds_global_roles(self, clinic):
        call_command('seed_clinic_roles', stdout=StringIO())

        super_admin = Role.objects.global_roles().get(name='SUPER_ADMIN')
        assert super_admin.priority == 1000
        assert PermissionCode.CLINIC_OWNER_MANAGE in super_admin.permission_codes()

    def test_single_clinic(self, clinic):
        out = StringIO()

        call_command('seed_clinic_roles', '--clinic', str(clinic.id), stdout=out)

        assert 'Exists: DOCTOR' in out.getvalue()
        assert Role.objects.for_clinic(clinic).count() == 4

    def test_unknown_clinic(self, db):
        with pytest.raises(CommandError):
            call_command('seed_clinic_roles', '--clinic', 'missing', stdout=StringIO())

    def test_reseeding_keeps_reordered_priorities(self, clinic, roles):
        RolePriorityService.reorder(roles['DOCTOR'].id, 'up')
        before = dict(Role.objects.for_clinic(clinic).values_list('name', 'priority'))

        results = seed_roles_for_clinic(clinic)

        assert not any(created for _, created in results.values())
        assert dict(Role.objects.for_clinic(clinic).values_list('name', 'priority')) == before

    def test_reseeding_restores_permissions(self, clinic, roles):
        roles['DOCTOR'].role_permissions.all().delete()

        seed_roles_for_clinic(clinic)

        assert PermissionCode.PATIENT_READ in roles['DOCTOR'].permission_codes()
