"""Permission model for warden.

A permission is a combination of a resource and an action, identified by
the string ``"resource:action"``. Examples:
  - files:read
  - reports:export
  - roles:assign

``"*"`` in either position is a wildcard grant, honoured only when
wildcard matching is enabled.
"""

import re
import time
from dataclasses import dataclass, field
from typing import Any, Dict, FrozenSet, Iterator, NamedTuple, Optional

WILDCARD = "*"

_PART_RE = re.compile(r"^(\*|[A-Za-z0-9_.\-]+)$")


class Permission(NamedTuple):
    """A permission is a combination of resource and action."""
    resource: str
    action: str

    def __str__(self) -> str:
        return f"{self.resource}:{self.action}"

    @property
    def id(self) -> str:
        return str(self)

    @classmethod
    def from_string(cls, perm_str: str) -> "Permission":
        """Parse a permission string like 'files:read'."""
        parts = perm_str.split(":")
        if len(parts) != 2 or not all(_PART_RE.match(p) for p in parts):
            raise ValueError(f"Invalid permission format: {perm_str}")
        return cls(parts[0], parts[1])


def permission_id(permission) -> str:
    """Normalize a Permission or permission string to its identifier."""
    return str(permission) if isinstance(permission, Permission) else permission


def is_valid_permission(perm_str: str) -> bool:
    """Check if a permission string is well formed."""
    try:
        Permission.from_string(perm_str)
    except ValueError:
        return False
    return True


@dataclass(frozen=True)
class ResolvedPermissionSet:
    """
    Effective permissions of one user at a point in time.

    A derived value: safe to discard at any moment, recomputable from
    storage. ``resolved_at`` is epoch seconds, ``ttl`` is seconds.
    """
    user_id: str
    permissions: FrozenSet[str] = field(default_factory=frozenset)
    resolved_at: float = field(default_factory=time.time)
    ttl: int = 0

    @property
    def expires_at(self) -> float:
        return self.resolved_at + self.ttl

    def is_expired(self, now: Optional[float] = None) -> bool:
        return (now if now is not None else time.time()) >= self.expires_at

    def __contains__(self, permission) -> bool:
        return permission_id(permission) in self.permissions

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.permissions))

    def __len__(self) -> int:
        return len(self.permissions)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-serializable dictionary for cache storage."""
        return {
            "user_id": self.user_id,
            "permissions": sorted(self.permissions),
            "resolved_at": self.resolved_at,
            "ttl": self.ttl,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolvedPermissionSet":
        return cls(
            user_id=data["user_id"],
            permissions=frozenset(data.get("permissions", [])),
            resolved_at=float(data["resolved_at"]),
            ttl=int(data.get("ttl", 0)),
        )
