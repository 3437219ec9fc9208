"""
Management command to seed default roles for clinics.

Creates the four default clinic roles (ADMIN, CLINIC_MANAGER, DOCTOR,
RECEPTIONIST) with their permission mappings for one or all clinics, plus
the global SUPER_ADMIN role. This command is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand, CommandError
from django.db import transaction

from apps.clinics.models import Clinic
from apps.core.validators import as_uuid
from apps.rbac.management.commands.seed_permissions import sync_permission_catalog
from apps.rbac.models import Permission, PermissionCode, Role, RolePermission

P = PermissionCode

# Default role definitions with their permission mappings
DEFAULT_CLINIC_ROLES = {
    'ADMIN': {
        'description': 'Full access to the clinic, including team management',
        'priority': 90,
        'permissions': 'ALL',  # every catalog permission except ownership transfer
    },
    'CLINIC_MANAGER': {
        'description': 'Runs the clinic day to day and manages staff',
        'priority': 50,
        'permissions': [
            P.PATIENT_READ, P.PATIENT_CREATE, P.PATIENT_UPDATE, P.PATIENT_VIEW_ALL,
            P.APPOINTMENT_READ, P.APPOINTMENT_CREATE, P.APPOINTMENT_UPDATE, P.APPOINTMENT_DELETE,
            P.USER_READ, P.USER_MANAGE, P.TEAM_READ,
            P.ROLE_READ,
            P.DASHBOARD_READ,
            P.SETTINGS_EDIT,
            P.DOCTOR_RATE_MANAGE, P.VISIT_TYPE_MANAGE,
        ],
    },
    'DOCTOR': {
        'description': 'Treats patients and manages own appointments',
        'priority': 30,
        'permissions': [
            P.PATIENT_READ, P.PATIENT_CREATE, P.PATIENT_UPDATE,
            P.APPOINTMENT_READ, P.APPOINTMENT_CREATE, P.APPOINTMENT_UPDATE,
            P.DASHBOARD_READ,
            P.TEAM_READ,
        ],
    },
    'RECEPTIONIST': {
        'description': 'Front desk: patient intake and scheduling',
        'priority': 20,
        'permissions': [
            P.PATIENT_READ, P.PATIENT_CREATE,
            P.APPOINTMENT_READ, P.APPOINTMENT_CREATE, P.APPOINTMENT_UPDATE,
            P.DASHBOARD_READ,
        ],
    },
}

GLOBAL_ROLES = {
    'SUPER_ADMIN': {
        'description': 'Platform operator with every permission',
        'priority': 1000,
        'permissions': 'ALL',
    },
}

OWNER_ROLE_NAME = 'ADMIN'


def _permissions_for(config, include_owner_manage):
    if config['permissions'] == 'ALL':
        qs = Permission.objects.all()
        if not include_owner_manage:
            qs = qs.exclude(code=P.CLINIC_OWNER_MANAGE)
        return list(qs)
    return list(Permission.objects.filter(code__in=[str(code) for code in config['permissions']]))


def sync_role_permissions(role, permissions):
    """
    Sync permissions for a role (idempotent).

    Ensures the role has exactly the specified permissions.

    Returns:
        tuple: (added, removed) counts
    """
    current_perm_ids = set(
        RolePermission.objects.filter(role=role).values_list('permission_id', flat=True)
    )
    target = {p.id: p for p in permissions}

    to_add = set(target) - current_perm_ids
    for perm_id in to_add:
        RolePermission.objects.grant_permission(role, target[perm_id])

    to_remove = current_perm_ids - set(target)
    if to_remove:
        # Queryset delete still sends post_delete per row for cache invalidation
        RolePermission.objects.filter(role=role, permission_id__in=to_remove).delete()

    return len(to_add), len(to_remove)


def _seed_role(clinic, name, config, include_owner_manage):
    role, created = Role.objects.get_or_create(
        clinic=clinic,
        name=name,
        defaults={
            'description': config['description'],
            'priority': config['priority'],
            'is_system': True,
        },
    )
    sync_role_permissions(role, _permissions_for(config, include_owner_manage))
    return role, created


@transaction.atomic
def seed_roles_for_clinic(clinic):
    """
    Seed the default roles of one clinic.

    Existing roles keep their current priority so that reorders survive
    re-seeding.

    Returns:
        dict: role name -> (Role, created)
    """
    sync_permission_catalog()
    return {
        name: _seed_role(clinic, name, config, include_owner_manage=False)
        for name, config in DEFAULT_CLINIC_ROLES.items()
    }


@transaction.atomic
def seed_global_roles():
    """Seed the system-wide roles. Returns role name -> (Role, created)."""
    sync_permission_catalog()
    return {
        name: _seed_role(None, name, config, include_owner_manage=True)
        for name, config in GLOBAL_ROLES.items()
    }


class Command(BaseCommand):
    help = 'Seed default roles for clinic(s) and the global roles (idempotent)'

    def add_arguments(self, parser):
        """Add command arguments."""
        parser.add_argument(
            '--clinic',
            type=str,
            help='Clinic ID to seed roles for (default: all clinics)',
        )

    def handle(self, *args, **options):
        """Seed roles for the requested clinic(s)."""
        clinic_id = options.get('clinic')

        if clinic_id:
            clinic_uuid = as_uuid(clinic_id)
            clinic = Clinic.objects.filter(id=clinic_uuid).first() if clinic_uuid else None
            if clinic is None:
                raise CommandError(f'Clinic not found: {clinic_id}')
            clinics = [clinic]
        else:
            clinics = list(Clinic.objects.all())
            self.stdout.write(f'Seeding roles for all {len(clinics)} clinics...\n')

        total_created = 0
        for name, (role, created) in seed_global_roles().items():
            total_created += int(created)
            self._report(name, created)

        for clinic in clinics:
            self.stdout.write(f'\n{clinic.name} ({clinic.id}):')
            for name, (role, created) in seed_roles_for_clinic(clinic).items():
                total_created += int(created)
                self._report(name, created)

        self.stdout.write(
            self.style.SUCCESS(
                f'\n✓ Seeding complete: {total_created} roles created '
                f'across {len(clinics)} clinic(s)'
            )
        )

    def _report(self, name, created):
        if created:
            self.stdout.write(self.style.SUCCESS(f'  ✓ Created role: {name}'))
        else:
            self.stdout.write(self.style.HTTP_INFO(f'    Exists: {name}'))
