"""
Management command to revoke role assignments.

Revoke individual principals:
    python manage.py revoke_role --principal user-42 --principal user-43

De-provision every principal bound to a tenant:
    python manage.py revoke_role --tenant acme-north
"""
from django.core.management.base import BaseCommand, CommandError

from apps.rbac.services import build_access_control
from ._helpers import resolve_tenant_id


class Command(BaseCommand):
    help = 'Revoke the role assignment of principals, or of every principal in a tenant'
    
    def add_arguments(self, parser):
        """Add command arguments."""
        parser.add_argument(
            '--principal',
            type=str,
            action='append',
            default=[],
            help='Principal id (repeatable)',
        )
        parser.add_argument(
            '--tenant',
            type=str,
            help='Tenant ID or slug: revoke everyone bound to it',
        )
        parser.add_argument(
            '--revoked-by',
            type=str,
            default='',
            help='Principal id recorded as the actor in the audit log',
        )
    
    def handle(self, *args, **options):
        """Revoke assignments."""
        principals = list(options['principal'])
        if options['tenant']:
            if principals:
                raise CommandError('Use either --principal or --tenant, not both')
            tenant_id = resolve_tenant_id(options['tenant'])
            access = build_access_control()
            principals = [a.principal_id for a in access.assignments.list_for_tenant(tenant_id)]
            self.stdout.write(f'Tenant {options["tenant"]}: {len(principals)} assignment(s)')
        elif not principals:
            raise CommandError('--principal or --tenant is required')
        else:
            access = build_access_control()
        
        revoked = 0
        for principal_id in principals:
            if access.assignments.revoke_role(principal_id, revoked_by=options['revoked_by']):
                revoked += 1
                self.stdout.write(self.style.SUCCESS(f'  ✓ Revoked {principal_id}'))
            else:
                self.stdout.write(f'  - {principal_id} had no assignment')
        
        self.stdout.write(f'\nRevoked: {revoked}')
