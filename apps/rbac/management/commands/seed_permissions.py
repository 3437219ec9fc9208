"""
Management command to seed the permission catalog.

Creates a Permission row for every code in PermissionCode. This command
is idempotent and safe to re-run.
"""
from django.core.management.base import BaseCommand

from apps.rbac.models import Permission, PermissionCode


def sync_permission_catalog():
    """
    Ensure every catalog code has a Permission row.

    Returns:
        int: number of permissions created
    """
    existing = set(Permission.objects.values_list('code', flat=True))
    created_count = 0
    for code, label in PermissionCode.choices:
        if code in existing:
            continue
        _, created = Permission.objects.get_or_create_permission(
            code=code,
            label=label,
            category=PermissionCode.category_of(code),
        )
        if created:
            created_count += 1
    return created_count


class Command(BaseCommand):
    help = 'Seed the permission catalog (idempotent)'

    def handle(self, *args, **options):
        """Seed all catalog permissions."""
        created_count = sync_permission_catalog()
        total = len(PermissionCode.choices)

        self.stdout.write(
            self.style.SUCCESS(
                f'✓ Seeding complete: {created_count} created, '
                f'{total - created_count} already present ({total} total)'
            )
        )
