"""RBAC authorization provider.

Bundles the resolver, the hierarchy and assignment managers, the cache and
the audit trail behind one object the host calls through the fixed
``AuthorizationProvider`` contract, without knowing the internals.
"""

from abc import ABC, abstractmethod
from typing import Iterable, List, Optional

from sqlalchemy.orm import sessionmaker

from warden.core.config import RBACSettings, get_settings
from warden.db import models
from warden.db.session import create_session_factory

from .assignments import PermissionAssignmentManager, PermissionLike
from .audit import AuditFilter, AuditQuery, AuditSink, AuditTrail, SQLAlchemyAuditSink
from .cache import ResolutionCache
from .hierarchy import RoleHierarchyManager
from .locks import KeyedLock
from .permissions import ResolvedPermissionSet
from .resolver import PermissionResolver


class AuthorizationProvider(ABC):
    """Contract a host uses to ask authorization questions."""

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Name the host looks this provider up by."""
        pass

    @abstractmethod
    def resolve(self, user_id: str) -> ResolvedPermissionSet:
        """Effective permissions of a user."""
        pass

    @abstractmethod
    def authorize(self, user_id: str, permission: PermissionLike) -> bool:
        """Whether a user effectively holds a permission."""
        pass

    @abstractmethod
    def check(self, user_id: str, permissions: Iterable[PermissionLike], require_all: bool = False) -> bool:
        """Whether a user holds any (or all) of ``permissions``, from one resolution."""
        pass


class RBACProvider(AuthorizationProvider):
    """Hierarchical RBAC provider."""

    def __init__(
        self,
        session_factory: Optional[sessionmaker] = None,
        *,
        settings: Optional[RBACSettings] = None,
        cache: Optional[ResolutionCache] = None,
        audit_sink: Optional[AuditSink] = None,
    ):
        self.settings = settings or get_settings()
        self.session_factory = session_factory or create_session_factory(self.settings)
        self.cache = cache or ResolutionCache.from_settings(self.settings)
        self.audit = AuditTrail(audit_sink or SQLAlchemyAuditSink(self.session_factory))

        locks = KeyedLock(timeout=self.settings.storage_timeout * 2)
        self.hierarchy = RoleHierarchyManager(
            self.session_factory, self.cache, self.audit, self.settings, locks
        )
        self.assignments = PermissionAssignmentManager(
            self.session_factory, self.cache, self.audit, self.settings, locks
        )
        self.resolver = PermissionResolver(
            self.session_factory, self.cache, self.settings, self.audit
        )

    @property
    def provider_name(self) -> str:
        return "rbac"

    # Resolution

    def resolve(self, user_id: str) -> ResolvedPermissionSet:
        return self.resolver.resolve(user_id)

    def authorize(self, user_id: str, permission: PermissionLike) -> bool:
        return self.resolver.authorize(user_id, permission)

    def check(self, user_id: str, permissions: Iterable[PermissionLike], require_all: bool = False) -> bool:
        return self.resolver.check(user_id, permissions, require_all)

    # Role management

    def create_role(self, name: str, parent_id: Optional[str] = None, *, actor: Optional[str] = None) -> models.Role:
        return self.hierarchy.create_role(name, parent_id, actor=actor)

    def reparent_role(self, role_id: str, new_parent_id: Optional[str] = None, *, actor: Optional[str] = None) -> None:
        self.hierarchy.reparent_role(role_id, new_parent_id, actor=actor)

    def delete_role(self, role_id: str, cascade: bool = False, *, actor: Optional[str] = None) -> List[str]:
        return self.hierarchy.delete_role(role_id, cascade, actor=actor)

    def ancestors_of(self, role_id: str) -> List[models.Role]:
        return self.hierarchy.ancestors_of(role_id)

    # Permission catalogue

    def create_permission(
        self, resource: str, action: str, description: Optional[str] = None, *, actor: Optional[str] = None
    ) -> models.Permission:
        return self.assignments.create_permission(resource, action, description, actor=actor)

    def delete_permission(self, permission: PermissionLike, *, actor: Optional[str] = None) -> bool:
        return self.assignments.delete_permission(permission, actor=actor)

    # Assignment management

    def grant_role_to_user(self, user_id: str, role_id: str, *, actor: Optional[str] = None) -> bool:
        return self.assignments.grant_role_to_user(user_id, role_id, actor=actor)

    def revoke_role_from_user(self, user_id: str, role_id: str, *, actor: Optional[str] = None) -> bool:
        return self.assignments.revoke_role_from_user(user_id, role_id, actor=actor)

    def grant_permission_to_role(self, role_id: str, permission: PermissionLike, *, actor: Optional[str] = None) -> bool:
        return self.assignments.grant_permission_to_role(role_id, permission, actor=actor)

    def revoke_permission_from_role(self, role_id: str, permission: PermissionLike, *, actor: Optional[str] = None) -> bool:
        return self.assignments.revoke_permission_from_role(role_id, permission, actor=actor)

    def grant_permission_to_user(self, user_id: str, permission: PermissionLike, *, actor: Optional[str] = None) -> bool:
        return self.assignments.grant_permission_to_user(user_id, permission, actor=actor)

    def revoke_permission_from_user(self, user_id: str, permission: PermissionLike, *, actor: Optional[str] = None) -> bool:
        return self.assignments.revoke_permission_from_user(user_id, permission, actor=actor)

    # Audit

    def query_audit(self, audit_filter: Optional[AuditFilter] = None) -> AuditQuery:
        return self.audit.query(audit_filter)
