"""
Role definitions.

Roles are configuration data: a named, scoped bundle of permissions. The
table is built once per process (see RoleRegistry.from_settings) and is
read-only afterwards; changing it is a deployment-time operation.
"""
import logging
from dataclasses import dataclass, field
from functools import lru_cache
from typing import Dict, FrozenSet, Iterable, List, Optional

from django.conf import settings
from django.core.exceptions import ImproperlyConfigured
from django.db import models

from apps.core.exceptions import RoleNotFound
from apps.rbac.catalog import (
    Action, Resource, Permission, Wildcard, WRITE_ACTIONS,
    ALL_PERMISSIONS, permissions_for, parse_permissions,
)

logger = logging.getLogger(__name__)


class Scope(models.TextChoices):
    SYSTEM = 'system', 'System'
    COMPANY = 'company', 'Company'
    TENANT = 'tenant', 'Tenant'


SCOPE_ORDER = {Scope.SYSTEM: 0, Scope.COMPANY: 1, Scope.TENANT: 2}


@dataclass(frozen=True)
class Role:
    """A named, scoped bundle of permissions."""

    id: str
    name: str
    description: str
    scope: Scope
    permissions: FrozenSet[Permission] = field(default_factory=frozenset)
    wildcards: FrozenSet[Wildcard] = field(default_factory=frozenset)

    @property
    def requires_company(self) -> bool:
        return self.scope in (Scope.COMPANY, Scope.TENANT)

    @property
    def requires_tenant(self) -> bool:
        return self.scope == Scope.TENANT

    def grants(self, action, resource) -> bool:
        """
        Check permission-set membership, honouring wildcards.

        READ_ALL covers any read and WRITE_ALL covers create/update/delete;
        manage must always be granted explicitly.
        """
        try:
            permission = Permission(action, resource)
        except ValueError:
            return False
        if permission in self.permissions:
            return True
        if permission.action == Action.READ and Wildcard.READ_ALL in self.wildcards:
            return True
        if permission.action in WRITE_ACTIONS and Wildcard.WRITE_ALL in self.wildcards:
            return True
        return False

    def expanded_permissions(self) -> FrozenSet[Permission]:
        """Explicit permissions plus everything the wildcards cover."""
        expanded = set(self.permissions)
        if Wildcard.READ_ALL in self.wildcards:
            expanded |= permissions_for(*Resource, actions=[Action.READ])
        if Wildcard.WRITE_ALL in self.wildcards:
            expanded |= permissions_for(*Resource, actions=WRITE_ACTIONS)
        return frozenset(expanded)


_CRUD = (Action.CREATE, Action.READ, Action.UPDATE)
_P = Permission

DEFAULT_ROLES: List[Role] = [
    # System level
    Role(
        id='system_admin',
        name='System Administrator',
        description='Full system access with all permissions',
        scope=Scope.SYSTEM,
        permissions=ALL_PERMISSIONS,
    ),
    Role(
        id='platform_admin',
        name='Platform Administrator',
        description='Reads and writes everything; manages users, companies, tenants, settings, plans and subscriptions',
        scope=Scope.SYSTEM,
        permissions=permissions_for(
            Resource.USERS, Resource.COMPANIES, Resource.TENANTS,
            Resource.SETTINGS, Resource.PLANS, Resource.SUBSCRIPTIONS,
            actions=[Action.MANAGE],
        ),
        wildcards=frozenset({Wildcard.READ_ALL, Wildcard.WRITE_ALL}),
    ),

    # Company level
    Role(
        id='company_admin',
        name='Company Administrator',
        description='Full access to company resources and tenant management',
        scope=Scope.COMPANY,
        permissions=(
            permissions_for(Resource.USERS, Resource.TENANTS)
            | permissions_for(Resource.COMPANIES, Resource.SETTINGS, Resource.BILLING,
                              actions=[Action.READ, Action.UPDATE])
            | permissions_for(Resource.LEADS, Resource.CUSTOMERS, Resource.ACTIVITIES)
            | {_P(Action.READ, Resource.SUPPORT), _P(Action.CREATE, Resource.SUPPORT)}
        ),
    ),
    Role(
        id='company_manager',
        name='Company Manager',
        description='Manages company operations and tenant oversight',
        scope=Scope.COMPANY,
        permissions=(
            permissions_for(Resource.USERS, actions=_CRUD)
            | permissions_for(Resource.TENANTS, actions=[Action.READ, Action.UPDATE, Action.MANAGE])
            | permissions_for(Resource.LEADS, Resource.CUSTOMERS, Resource.ACTIVITIES,
                              actions=[Action.READ, Action.MANAGE])
            | permissions_for(Resource.COMPANIES, Resource.SETTINGS, Resource.BILLING,
                              actions=[Action.READ])
            | {_P(Action.READ, Resource.SUPPORT), _P(Action.CREATE, Resource.SUPPORT)}
        ),
    ),
    Role(
        id='company_user',
        name='Company User',
        description='Basic company user with limited access',
        scope=Scope.COMPANY,
        permissions=(
            permissions_for(
                Resource.USERS, Resource.COMPANIES, Resource.TENANTS, Resource.LEADS,
                Resource.CUSTOMERS, Resource.ACTIVITIES, Resource.SETTINGS,
                actions=[Action.READ],
            )
            | {_P(Action.CREATE, Resource.SUPPORT)}
        ),
    ),
    Role(
        id='company_support',
        name='Company Support',
        description='Handles support tickets and customer service',
        scope=Scope.COMPANY,
        permissions=(
            permissions_for(
                Resource.USERS, Resource.TENANTS, Resource.LEADS, Resource.CUSTOMERS,
                Resource.ACTIVITIES, Resource.SETTINGS,
                actions=[Action.READ],
            )
            | permissions_for(Resource.SUPPORT, actions=[Action.READ, Action.UPDATE, Action.MANAGE])
        ),
    ),
    Role(
        id='company_billing',
        name='Company Billing',
        description='Manages company billing and financial operations',
        scope=Scope.COMPANY,
        permissions=(
            permissions_for(
                Resource.USERS, Resource.COMPANIES, Resource.TENANTS, Resource.SETTINGS,
                actions=[Action.READ],
            )
            | permissions_for(Resource.BILLING, actions=[Action.READ, Action.UPDATE, Action.MANAGE])
        ),
    ),

    # Tenant level
    Role(
        id='tenant_admin',
        name='Tenant Administrator',
        description='Full access to tenant resources and agent management',
        scope=Scope.TENANT,
        permissions=(
            permissions_for(Resource.USERS, actions=[*_CRUD, Action.MANAGE])
            | permissions_for(Resource.TENANTS, Resource.SETTINGS, actions=[Action.READ, Action.UPDATE])
            # Deleting tenant records is reserved for company and system roles
            | permissions_for(Resource.LEADS, Resource.CUSTOMERS, Resource.ACTIVITIES,
                              actions=[*_CRUD, Action.MANAGE])
            | {_P(Action.CREATE, Resource.SUPPORT), _P(Action.READ, Resource.SUPPORT)}
        ),
    ),
    Role(
        id='tenant_manager',
        name='Tenant Manager',
        description='Manages tenant operations and agent oversight',
        scope=Scope.TENANT,
        permissions=(
            permissions_for(Resource.USERS, actions=[Action.READ, Action.CREATE])
            | permissions_for(Resource.TENANTS, Resource.SETTINGS, actions=[Action.READ])
            | permissions_for(Resource.LEADS, Resource.CUSTOMERS, Resource.ACTIVITIES,
                              actions=[*_CRUD, Action.MANAGE])
            | {_P(Action.CREATE, Resource.SUPPORT), _P(Action.READ, Resource.SUPPORT)}
        ),
    ),
    Role(
        id='tenant_agent',
        name='Tenant Agent',
        description='Handles leads and customer interactions',
        scope=Scope.TENANT,
        permissions=(
            permissions_for(Resource.USERS, Resource.SETTINGS, actions=[Action.READ])
            | permissions_for(Resource.LEADS, Resource.CUSTOMERS, Resource.ACTIVITIES, actions=_CRUD)
            | {_P(Action.CREATE, Resource.SUPPORT)}
        ),
    ),
    Role(
        id='tenant_guest',
        name='Tenant Guest',
        description='Read-only access to the tenant profile',
        scope=Scope.TENANT,
        permissions=frozenset({_P(Action.READ, Resource.TENANTS)}),
    ),
]


def role_from_config(config: dict) -> Role:
    """
    Build a Role from a settings dictionary.

    Example:
        {
            'id': 'tenant_auditor',
            'name': 'Tenant Auditor',
            'scope': 'tenant',
            'permissions': ['read:leads', 'read:customers'],
            'wildcards': [],
        }
    """
    try:
        return Role(
            id=config['id'],
            name=config.get('name', config['id']),
            description=config.get('description', ''),
            scope=Scope(config['scope']),
            permissions=parse_permissions(config.get('permissions', [])),
            wildcards=frozenset(Wildcard(code) for code in config.get('wildcards', [])),
        )
    except (KeyError, ValueError) as e:
        raise ImproperlyConfigured(f"Invalid role definition {config!r}: {e}")


class RoleRegistry:
    """
    In-memory role table.

    Built once from DEFAULT_ROLES (plus RBAC_EXTRA_ROLES) and never
    mutated. Lookups are pure.
    """

    def __init__(self, roles: Iterable[Role] = DEFAULT_ROLES):
        table: Dict[str, Role] = {}
        for role in roles:
            if role.id in table:
                raise ImproperlyConfigured(f"Duplicate role id: {role.id}")
            table[role.id] = role
        self._roles = table

    @classmethod
    def from_settings(cls) -> 'RoleRegistry':
        """Build the registry from DEFAULT_ROLES and settings.RBAC_EXTRA_ROLES."""
        extra = [role_from_config(config) for config in getattr(settings, 'RBAC_EXTRA_ROLES', [])]
        return cls([*DEFAULT_ROLES, *extra])

    def __contains__(self, role_id) -> bool:
        return role_id in self._roles

    def __len__(self):
        return len(self._roles)

    def get_role(self, role_id: str) -> Role:
        """
        Look up a role by id.

        Raises:
            RoleNotFound: If the id is not defined (a configuration error)
        """
        role = self._roles.get(role_id)
        if role is None:
            logger.error(
                f"Unknown role id requested: {role_id}",
                extra={'role_id': role_id}
            )
            raise RoleNotFound(f"Role '{role_id}' does not exist", details={'role_id': role_id})
        return role

    def find_role(self, role_id: str) -> Optional[Role]:
        """Look up a role by id without raising."""
        return self._roles.get(role_id)

    def list_roles(self, scope: Optional[Scope] = None) -> List[Role]:
        """List roles, optionally restricted to one scope."""
        roles = self._roles.values()
        if scope is not None:
            scope = Scope(scope)
            roles = [role for role in roles if role.scope == scope]
        return sorted(roles, key=lambda role: (SCOPE_ORDER[role.scope], role.id))


@lru_cache(maxsize=None)
def default_registry() -> RoleRegistry:
    """The process-wide role table, built on first use."""
    return RoleRegistry.from_settings()
