"""
Management command to assign a role to one or many principals.

Single assignment:
    python manage.py assign_role --principal user-42 --role tenant_agent \
        --company acme --tenant acme-north

Bulk assignment from a JSON file (a list of objects with principal_id,
role_id and optional company / tenant as slug or id):
    python manage.py assign_role --file assignments.json
"""
import json

from django.core.management.base import BaseCommand, CommandError

from apps.core.exceptions import AccessControlError
from apps.rbac.services import build_access_control
from ._helpers import resolve_company_id, resolve_tenant_id


class Command(BaseCommand):
    help = 'Assign (or switch) the role of one or many principals'
    
    def add_arguments(self, parser):
        """Add command arguments."""
        parser.add_argument(
            '--principal',
            type=str,
            help='Principal id from the identity provider',
        )
        parser.add_argument(
            '--role',
            type=str,
            help='Role id (see list_roles)',
        )
        parser.add_argument(
            '--company',
            type=str,
            help='Company ID or slug (company and tenant roles)',
        )
        parser.add_argument(
            '--tenant',
            type=str,
            help='Tenant ID or slug (tenant roles)',
        )
        parser.add_argument(
            '--file',
            type=str,
            help='JSON file with a list of assignments for bulk assignment',
        )
        parser.add_argument(
            '--assigned-by',
            type=str,
            default='',
            help='Principal id recorded as the actor in the audit log',
        )
    
    def handle(self, *args, **options):
        """Assign roles."""
        if options['file']:
            if options['principal'] or options['role']:
                raise CommandError('--file cannot be combined with --principal/--role')
            entries = self._load_file(options['file'])
        else:
            if not options['principal'] or not options['role']:
                raise CommandError('--principal and --role are required (or use --file)')
            entries = [{
                'principal_id': options['principal'],
                'role_id': options['role'],
                'company': options['company'],
                'tenant': options['tenant'],
            }]
        
        access = build_access_control()
        assigned = skipped = 0
        failures = []
        
        for entry in entries:
            principal_id = entry.get('principal_id')
            try:
                company_id = resolve_company_id(entry.get('company') or entry.get('company_id'))
                tenant_id = resolve_tenant_id(entry.get('tenant') or entry.get('tenant_id'))
                
                existing = access.assignments.get_role_assignment(principal_id)
                if existing and existing.as_audit_state() == {
                    'role_id': entry.get('role_id'),
                    'company_id': company_id,
                    'tenant_id': tenant_id,
                }:
                    skipped += 1
                    self.stdout.write(f'  = {principal_id}: already {existing.role_id}')
                    continue
                
                access.assignments.assign_role(
                    principal_id,
                    entry.get('role_id'),
                    company_id=company_id,
                    tenant_id=tenant_id,
                    assigned_by=options['assigned_by'],
                )
                assigned += 1
                self.stdout.write(
                    self.style.SUCCESS(f'  ✓ {principal_id} -> {entry.get("role_id")}')
                )
            except (AccessControlError, CommandError) as e:
                message = getattr(e, 'message', str(e))
                failures.append((principal_id, message))
                self.stderr.write(self.style.ERROR(f'  ✗ {principal_id}: {message}'))
        
        self.stdout.write(
            f'\nAssigned: {assigned}, unchanged: {skipped}, failed: {len(failures)}'
        )
        if failures:
            raise CommandError(f'{len(failures)} assignment(s) failed')
    
    def _load_file(self, path):
        """Read and sanity-check the bulk assignment file."""
        try:
            with open(path) as f:
                entries = json.load(f)
        except OSError as e:
            raise CommandError(f'Cannot read {path}: {e}')
        except json.JSONDecodeError as e:
            raise CommandError(f'Invalid JSON in {path}: {e}')
        
        if not isinstance(entries, list) or not all(isinstance(entry, dict) for entry in entries):
            raise CommandError(f'{path} must contain a list of assignment objects')
        return entries
