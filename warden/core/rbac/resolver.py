"""Permission resolution engine.

Computes a user's effective permission set:

    1. cached, non-expired set if available
    2. direct user grants
    3. + grants of every assigned role
    4. + grants of every ancestor of those roles (hierarchy and
       inheritance both enabled), at most ``max_hierarchy_depth`` hops up
    5. union, cache, return

Permissions are purely additive: absence of a grant is absence of access.
An explicit deny relation, if ever added, takes precedence over any grant
(deny-overrides-grant); it is not part of this model.

Failures never produce a partial answer. A storage error raises
``ResolutionFailed`` (``StorageTimeout`` for deadlines), a corrupted
hierarchy raises ``CycleDetected``; in both cases nothing is cached.
"""

import time
from typing import Iterable, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from warden.common.logger import get_logger
from warden.core.config import RBACSettings
from warden.core.errors import CycleDetected, RBACError, ResolutionFailed, storage_failure
from warden.db.stores import Stores

from .audit import AuditAction, AuditEntry, AuditTrail, TargetType
from .cache import ResolutionCache
from .checker import PermissionChecker
from .hierarchy import ancestor_ids
from .permissions import Permission, ResolvedPermissionSet, permission_id

logger = get_logger("resolver")


class PermissionResolver:
    """Resolves effective permissions and answers authorization checks."""

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: ResolutionCache,
        settings: RBACSettings,
        audit: Optional[AuditTrail] = None,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.settings = settings
        self.audit = audit

    def resolve(self, user_id: str) -> ResolvedPermissionSet:
        """
        Compute the effective permission set of a user.

        Raises:
            ResolutionFailed: storage failed; the caller cannot tell
                whether the user has permissions and must not assume none
            StorageTimeout: a storage call exceeded its deadline
            CycleDetected: the persisted hierarchy contains a cycle
        """
        cached = self.cache.get(user_id)
        if cached is not None:
            return cached

        # Snapshot before reading storage so a concurrent invalidation fences this result out
        generation = self.cache.generation(user_id)

        started = time.monotonic()
        permissions = self._compute(user_id)
        resolved = ResolvedPermissionSet(
            user_id=user_id,
            permissions=frozenset(permissions),
            ttl=self.cache.ttl,
        )
        self.cache.put(resolved, generation)

        logger.debug(
            f"Resolved {len(permissions)} permission(s) for {user_id} "
            f"in {(time.monotonic() - started) * 1000:.1f}ms"
        )
        return resolved

    def authorize(self, user_id: str, permission) -> bool:
        """
        Check whether the user effectively holds ``permission``.

        Args:
            user_id: User to check
            permission: Permission id string or ``Permission``

        Raises:
            ResolutionFailed: as for ``resolve``; never answered with False
        """
        return self.check(user_id, [permission])

    def check(self, user_id: str, permissions: Iterable, require_all: bool = False) -> bool:
        """
        Check several permissions against one resolution of the user.

        Args:
            user_id: User to check
            permissions: Permission id strings or ``Permission`` objects
            require_all: Every permission is needed instead of any one

        Raises:
            ResolutionFailed: as for ``resolve``; never answered with False
        """
        perm_ids = [permission_id(p) for p in permissions]
        resolved = self.resolve(user_id)
        checker = PermissionChecker(resolved.permissions, wildcards=self.settings.wildcard_permissions)
        if require_all:
            allowed = checker.has_all_permissions(perm_ids)
        else:
            allowed = checker.has_any_permission(perm_ids)

        if self.settings.audit_decisions and self.audit is not None:
            details = {"allowed": allowed}
            if len(perm_ids) != 1:
                details.update(permissions=perm_ids, require_all=require_all)
            self.audit.record(AuditEntry(
                action=AuditAction.AUTHORIZE,
                target_type=TargetType.USER,
                target_id=user_id,
                related_id=perm_ids[0] if len(perm_ids) == 1 else None,
                actor=user_id,
                details=details,
            ))
        return allowed

    def authorize_action(self, user_id: str, resource: str, action: str) -> bool:
        """Check ``resource:action`` for a user."""
        return self.authorize(user_id, Permission(resource, action))

    def _compute(self, user_id: str) -> Set[str]:
        db = self.session_factory()
        try:
            stores = Stores(db)
            permissions = stores.user_permissions.permission_ids_of_user(user_id)

            role_ids = set(stores.user_roles.role_ids_of_user(user_id))
            if self.settings.inheritance_active:
                for role_id in list(role_ids):
                    role_ids.update(
                        ancestor_ids(stores.roles, role_id, self.settings.max_hierarchy_depth)
                    )

            permissions |= stores.role_permissions.permission_ids_of_roles(role_ids)
            return permissions
        except CycleDetected as e:
            logger.error(f"Resolution for {user_id} aborted: {e}")
            raise
        except RBACError:
            raise
        except SQLAlchemyError as e:
            logger.error(f"Resolution for {user_id} failed: {e}")
            raise storage_failure(
                e, ResolutionFailed, f"Could not resolve permissions for {user_id}", user_id=user_id
            ) from e
        finally:
            db.close()
