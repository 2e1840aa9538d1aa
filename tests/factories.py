"""Helpers for building RBAC fixtures through the public provider API.

Usage::

    from tests.factories import create_permissions, create_chain

    def test_something(provider):
        create_permissions(provider, "files:read", "files:write")
        admin, editor = create_chain(provider, "admin", "editor")
        provider.grant_permission_to_role(admin.id, "files:write")
"""

from typing import List

from warden.core.rbac.provider import RBACProvider
from warden.db.models import Role


def create_permissions(provider: RBACProvider, *perm_ids: str) -> None:
    """Register permissions given as ``resource:action`` strings."""
    for perm_id in perm_ids:
        resource, action = perm_id.split(":")
        provider.create_permission(resource, action)


def create_chain(provider: RBACProvider, *names: str) -> List[Role]:
    """Create roles where each one is the child of the previous one."""
    roles: List[Role] = []
    parent_id = None
    for name in names:
        role = provider.create_role(name, parent_id)
        roles.append(role)
        parent_id = role.id
    return roles
