"""FastAPI integration for hosts guarding their routes with warden."""

from .deps import PermissionDependency, get_provider, require_permission

__all__ = ["PermissionDependency", "get_provider", "require_permission"]
