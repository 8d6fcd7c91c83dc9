"""
Management command to run the role assignment expiry sweep once.
"""
from django.core.management.base import BaseCommand

from apps.rbac.services import RoleAssignmentService


class Command(BaseCommand):
    help = 'Deactivate role assignments whose validity window has ended'

    def handle(self, *args, **options):
        expired = RoleAssignmentService.expire_lapsed_assignments()
        self.stdout.write(
            self.style.SUCCESS(f'✓ Expired {expired} role assignment(s)')
        )
