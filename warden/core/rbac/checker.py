"""Permission checking utilities for warden.

Answers membership questions over an already resolved permission set.
"""

from typing import Iterable, List, Union

from .permissions import WILDCARD, Permission, permission_id


class PermissionChecker:
    """Checks whether a resolved permission set covers given permissions."""

    def __init__(self, user_permissions: Iterable[str], *, wildcards: bool = False):
        """
        Initialize with the user's effective permissions.

        Args:
            user_permissions: Permission identifiers the user holds
            wildcards: Honour ``resource:*`` and ``*:*`` grants
        """
        self.permissions = frozenset(user_permissions)
        self.wildcards = wildcards

    def has_permission(self, permission: Union[str, Permission]) -> bool:
        """Check if user has a specific permission."""
        perm_str = permission_id(permission)

        if perm_str in self.permissions:
            return True

        if not self.wildcards or ":" not in perm_str:
            return False

        resource = perm_str.split(":")[0]
        if f"{resource}:{WILDCARD}" in self.permissions:
            return True
        # Global wildcard
        return f"{WILDCARD}:{WILDCARD}" in self.permissions

    def has_any_permission(self, permissions: List[Union[str, Permission]]) -> bool:
        """Check if user has any of the given permissions."""
        return any(self.has_permission(p) for p in permissions)

    def has_all_permissions(self, permissions: List[Union[str, Permission]]) -> bool:
        """Check if user has all of the given permissions."""
        return all(self.has_permission(p) for p in permissions)

    def can_access_resource(self, resource: str, action: str) -> bool:
        """Check if user can perform action on resource."""
        return self.has_permission(Permission(resource, action))
