"""
Management command to validate the role catalog and print its tables.

Exits non-zero when the catalog is inconsistent, so it can gate deploys.
"""
from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import AuthorizationConfigurationError
from apps.rbac.catalog import default_catalog


class Command(BaseCommand):
    help = 'Validate the RBAC role catalog and print roles, permission counts and managed levels'

    def add_arguments(self, parser):
        parser.add_argument(
            '--role',
            help='Also list every permission of this role',
        )

    def handle(self, *args, **options):
        catalog = default_catalog()

        try:
            catalog.validate()
        except (AuthorizationConfigurationError, ValueError) as e:
            raise CommandError(f'Role catalog is inconsistent: {e}')

        self.stdout.write(self.style.SUCCESS('✓ Role catalog is consistent\n'))
        self.stdout.write('=' * 70)
        self.stdout.write(f"{'Role':<22}{'Perms':>6}  {'Global':<8}{'Managed levels'}")
        self.stdout.write('=' * 70)

        for name in catalog.roles():
            levels = ', '.join(level.value for level in catalog.managed_levels_of(name)) or '-'
            self.stdout.write(
                f"{name:<22}{len(catalog.permissions_of(name)):>6}  "
                f"{'yes' if catalog.is_global(name) else 'no':<8}{levels}"
            )

        self.stdout.write(f'\nDefined permissions: {len(catalog.permission_definitions())}')

        role = options.get('role')
        if role:
            if not catalog.is_known_role(role):
                raise CommandError(f'Unknown role: {role}')
            self.stdout.write(f'\nPermissions of {role}:')
            for permission in sorted(catalog.permissions_of(role)):
                self.stdout.write(f'  {permission}')
