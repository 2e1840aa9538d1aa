"""Database models for warden."""

from warden.db.models.role import Role
from warden.db.models.permission import Permission
from warden.db.models.assignment import RolePermission, UserRole, UserPermission
from warden.db.models.audit import AuditLog, AuditLogImmutableError

__all__ = [
    "Role",
    "Permission",
    "RolePermission",
    "UserRole",
    "UserPermission",
    "AuditLog",
    "AuditLogImmutableError",
]
