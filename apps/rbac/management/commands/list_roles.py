"""
Management command to print the role table.
"""
from django.core.management.base import BaseCommand

from apps.rbac.roles import Scope, default_registry


class Command(BaseCommand):
    help = 'List the defined roles and their permissions'
    
    def add_arguments(self, parser):
        """Add command arguments."""
        parser.add_argument(
            '--scope',
            type=str,
            choices=Scope.values,
            help='Only list roles of this scope',
        )
        parser.add_argument(
            '--verbose-permissions',
            action='store_true',
            help='Print each role\'s permission codes',
        )
    
    def handle(self, *args, **options):
        """Print roles."""
        roles = default_registry().list_roles(scope=options['scope'])
        
        for role in roles:
            self.stdout.write(
                f'{role.id:<18} {role.scope.value:<8} {role.name}'
            )
            if options['verbose_permissions']:
                for code in sorted(p.code for p in role.permissions):
                    self.stdout.write(f'    {code}')
                for wildcard in sorted(w.value for w in role.wildcards):
                    self.stdout.write(f'    {wildcard} (wildcard)')
        
        self.stdout.write(self.style.SUCCESS(f'\n{len(roles)} role(s)'))
