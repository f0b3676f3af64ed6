"""
RBAC (Role-Based Access Control) application.

Provides multi-tenant access control with:
- A closed catalog of (action, resource) permissions
- Static system, company and tenant scoped roles
- One durable role assignment per principal
- Fail-closed permission resolution
- Audit logging of assignment changes
"""
