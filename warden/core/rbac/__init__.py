"""RBAC (Role-Based Access Control) engine for warden.

Hierarchical roles, permission assignment, cached resolution and an
append-only audit trail.
"""

from .permissions import Permission, ResolvedPermissionSet, is_valid_permission
from .checker import PermissionChecker
from .cache import ResolutionCache, MemoryCacheBackend, RedisCacheBackend
from .audit import AuditAction, AuditEntry, AuditFilter, AuditTrail, TargetType
from .hierarchy import RoleHierarchyManager
from .assignments import PermissionAssignmentManager
from .resolver import PermissionResolver
from .provider import AuthorizationProvider, RBACProvider

__all__ = [
    "Permission",
    "ResolvedPermissionSet",
    "is_valid_permission",
    "PermissionChecker",
    "ResolutionCache",
    "MemoryCacheBackend",
    "RedisCacheBackend",
    "AuditAction",
    "AuditEntry",
    "AuditFilter",
    "AuditTrail",
    "TargetType",
    "RoleHierarchyManager",
    "PermissionAssignmentManager",
    "PermissionResolver",
    "AuthorizationProvider",
    "RBACProvider",
]
