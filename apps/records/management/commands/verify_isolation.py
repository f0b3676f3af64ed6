"""
Management command to verify tenant isolation end to end.

Runs the isolation checks through the real gateway and document store,
using one principal per tenant:

    python manage.py verify_isolation \
        --tenant acme-north --tenant acme-south \
        --principal acme-north=user-1 --principal acme-south=user-2

Exits non-zero when any check fails, so it can gate deployments.
"""
import json

from django.core.management.base import BaseCommand, CommandError

from apps.rbac.catalog import Resource
from apps.rbac.management.commands._helpers import resolve_tenant_id
from apps.records.gateway import build_gateway
from apps.records.isolation import IsolationHarness


class Command(BaseCommand):
    help = 'Verify that tenants cannot read or modify each other\'s records'
    
    def add_arguments(self, parser):
        """Add command arguments."""
        parser.add_argument(
            '--tenant',
            type=str,
            action='append',
            default=[],
            help='Tenant ID or slug (repeat for each tenant, at least two)',
        )
        parser.add_argument(
            '--principal',
            type=str,
            action='append',
            default=[],
            help='TENANT=PRINCIPAL: principal bound to the tenant (repeatable)',
        )
        parser.add_argument(
            '--resource',
            type=str,
            action='append',
            choices=Resource.values,
            help='Resource to exercise (repeatable, default: leads and customers)',
        )
        parser.add_argument(
            '--skip-mutation',
            action='store_true',
            help='Only run the read isolation checks (no write probes)',
        )
        parser.add_argument(
            '--json',
            action='store_true',
            help='Print results as JSON',
        )
    
    def handle(self, *args, **options):
        """Run the checks."""
        tenant_ids = [resolve_tenant_id(tenant) for tenant in options['tenant']]
        if len(tenant_ids) < 2:
            raise CommandError('At least two --tenant values are required')
        
        principal_for_tenant = {}
        for mapping in options['principal']:
            tenant, sep, principal_id = mapping.partition('=')
            if not sep or not principal_id:
                raise CommandError(f'Invalid --principal value (expected TENANT=PRINCIPAL): {mapping}')
            principal_for_tenant[resolve_tenant_id(tenant)] = principal_id
        
        missing = [tenant_id for tenant_id in tenant_ids if tenant_id not in principal_for_tenant]
        if missing:
            raise CommandError(f'No --principal given for tenant(s): {", ".join(missing)}')
        
        resources = [Resource(r) for r in options['resource']] if options['resource'] else None
        harness = IsolationHarness(
            build_gateway(),
            principal_for_tenant,
            **({'resources': resources} if resources else {})
        )
        
        results = {'segregation': harness.check_segregation(tenant_ids)}
        pairs = [] if options['skip_mutation'] else zip(tenant_ids, tenant_ids[1:] + tenant_ids[:1])
        for tenant_a, tenant_b in pairs:
            results[f'mutation:{tenant_a}->{tenant_b}'] = harness.check_mutation_prevention(tenant_a, tenant_b)
        
        if options['json']:
            self.stdout.write(json.dumps(
                {name: result.as_dict() for name, result in results.items()},
                indent=2,
                default=str,
            ))
        else:
            for name, result in results.items():
                style = self.style.SUCCESS if result.success else self.style.ERROR
                mark = '✓' if result.success else '✗'
                self.stdout.write(style(f'{mark} {name}: {result.message}'))
        
        failed = [name for name, result in results.items() if not result.success]
        if failed:
            raise CommandError(f'Isolation verification failed: {", ".join(failed)}')
        
        if not options['json']:
            self.stdout.write(self.style.SUCCESS('\nAll isolation checks passed'))
