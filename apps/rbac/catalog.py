"""
Permission catalog.

A permission is the pair (action, resource), both drawn from closed
enumerations. The "action:resource" code is a rendering for logs, admin
screens and JSON payloads; authorization compares enum members, never
strings.
"""
from dataclasses import dataclass
from typing import FrozenSet, Iterable, Set

from django.db import models


class Action(models.TextChoices):
    CREATE = 'create', 'Create'
    READ = 'read', 'Read'
    UPDATE = 'update', 'Update'
    DELETE = 'delete', 'Delete'
    MANAGE = 'manage', 'Manage'


class Resource(models.TextChoices):
    USERS = 'users', 'Users'
    COMPANIES = 'companies', 'Companies'
    TENANTS = 'tenants', 'Tenants'
    LEADS = 'leads', 'Leads'
    CUSTOMERS = 'customers', 'Customers'
    ACTIVITIES = 'activities', 'Activities'
    SETTINGS = 'settings', 'Settings'
    BILLING = 'billing', 'Billing'
    SUPPORT = 'support', 'Support'
    PLANS = 'plans', 'Plans'
    SUBSCRIPTIONS = 'subscriptions', 'Subscriptions'


class Wildcard(models.TextChoices):
    """
    Blanket grants.

    READ_ALL satisfies every read; WRITE_ALL satisfies every create, update
    and delete. Neither implies manage.
    """
    READ_ALL = 'read:all', 'Read everything'
    WRITE_ALL = 'write:all', 'Write everything'


WRITE_ACTIONS = frozenset({Action.CREATE, Action.UPDATE, Action.DELETE})


@dataclass(frozen=True)
class Permission:
    """An atomic (action, resource) capability."""

    action: Action
    resource: Resource

    def __post_init__(self):
        # Coerce plain strings so that Permission('read', 'leads') is usable
        # at boundaries; unknown values raise ValueError here.
        object.__setattr__(self, 'action', Action(self.action))
        object.__setattr__(self, 'resource', Resource(self.resource))

    @property
    def code(self) -> str:
        return f"{self.action.value}:{self.resource.value}"

    def __str__(self):
        return self.code

    @classmethod
    def parse(cls, code: str) -> 'Permission':
        """
        Parse an "action:resource" code.

        Raises:
            ValueError: If the code is malformed or names an unknown action
                or resource
        """
        action, sep, resource = str(code).partition(':')
        if not sep:
            raise ValueError(f"Malformed permission code: {code!r}")
        return cls(Action(action), Resource(resource))


ALL_PERMISSIONS: FrozenSet[Permission] = frozenset(
    Permission(action, resource) for action in Action for resource in Resource
)


def list_actions() -> Set[Action]:
    """Return every action known to the catalog."""
    return set(Action)


def list_resources() -> Set[Resource]:
    """Return every resource known to the catalog."""
    return set(Resource)


def permissions_for(*resources: Resource, actions: Iterable[Action] = tuple(Action)) -> FrozenSet[Permission]:
    """Build the cartesian product of actions and resources."""
    return frozenset(Permission(action, resource) for resource in resources for action in actions)


def parse_permissions(codes: Iterable[str]) -> FrozenSet[Permission]:
    """Parse a list of permission codes, raising ValueError on the first bad one."""
    return frozenset(Permission.parse(code) for code in codes)
