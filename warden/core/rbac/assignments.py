"""Permission assignment management.

Owns grants between users, roles and permissions. Every operation is
idempotent: granting a held grant or revoking an absent one succeeds
without invalidating or auditing anything.

Invalidation scope:
    - user grants: that user only
    - role grants: every user holding the role, and with inheritance on,
      every user holding any descendant of the role
"""

from typing import List, Optional, Set, Union

from warden.common.logger import get_logger
from warden.core.errors import UnknownEntity
from warden.db import models
from warden.db.stores import Stores

from .audit import AuditAction, AuditEntry, TargetType
from .base import Mutation, RBACComponent
from .hierarchy import HIERARCHY_LOCK, subtree_ids
from .locks import role_key, user_key
from .permissions import Permission, permission_id

logger = get_logger("assignments")

PermissionLike = Union[str, Permission]


def _permission_key(perm_id: str) -> str:
    return f"permission:{perm_id}"


class PermissionAssignmentManager(RBACComponent):
    """Grants and revokes across users, roles and permissions."""

    def _users_reaching_roles(self, stores: Stores, role_ids: Set[str]) -> Set[str]:
        """Users whose resolution includes grants made to any of ``role_ids``."""
        if self.settings.inheritance_active:
            reached = set()
            for rid in role_ids:
                reached.update(subtree_ids(stores.roles, rid))
        else:
            reached = set(role_ids)
        return stores.user_roles.user_ids_with_roles(reached)

    def _structure_keys(self) -> tuple:
        # With inheritance on, the set of users reached through a role depends on
        # the hierarchy shape, which must not change while that set is computed
        return (HIERARCHY_LOCK,) if self.settings.inheritance_active else ()

    def _role_grant_keys(self, role_id: str) -> tuple:
        return (role_key(role_id),) + self._structure_keys()

    def _require_role(self, stores: Stores, role_id: str) -> None:
        if not stores.roles.parent_of(role_id)[0]:
            raise UnknownEntity("Role", role_id)

    def _require_permission(self, stores: Stores, perm_id: str) -> None:
        if not stores.permissions.exists(perm_id):
            raise UnknownEntity("Permission", perm_id)

    # ------------------------------------------------------------------
    # Permission catalogue
    # ------------------------------------------------------------------

    def create_permission(
        self,
        resource: str,
        action: str,
        description: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> models.Permission:
        """Register a permission; returns the existing one if already present."""
        perm = Permission.from_string(f"{resource}:{action}")

        def work(stores: Stores) -> Mutation:
            existing = stores.permissions.get(perm.id)
            if existing is not None:
                return Mutation(result=existing)
            record = stores.permissions.add(models.Permission(
                id=perm.id, resource=perm.resource, action=perm.action, description=description,
            ))
            return Mutation(
                result=record,
                entries=[AuditEntry(
                    action=AuditAction.PERMISSION_CREATE,
                    target_type=TargetType.PERMISSION,
                    target_id=perm.id,
                    actor=actor,
                )],
            )

        with self.locks.hold(_permission_key(perm.id)):
            mutation = self._apply(f"Failed to create permission {perm.id}", work)
        if mutation.changed:
            logger.info(f"Created permission {perm.id}")
        return mutation.result

    def delete_permission(self, permission: PermissionLike, *, actor: Optional[str] = None) -> bool:
        """Remove a permission and every grant of it; False if it did not exist."""
        perm_id = permission_id(permission)

        def work(stores: Stores) -> Mutation:
            if not stores.permissions.exists(perm_id):
                return Mutation(result=False)
            affected = stores.user_permissions.user_ids_with_permission(perm_id)
            affected |= self._users_reaching_roles(
                stores, stores.role_permissions.role_ids_with_permission(perm_id)
            )
            stores.user_permissions.delete_for_permission(perm_id)
            stores.role_permissions.delete_for_permission(perm_id)
            stores.permissions.delete(perm_id)
            return Mutation(
                result=True,
                affected_users=affected,
                entries=[AuditEntry(
                    action=AuditAction.PERMISSION_DELETE,
                    target_type=TargetType.PERMISSION,
                    target_id=perm_id,
                    actor=actor,
                )],
            )

        with self.locks.hold(_permission_key(perm_id), *self._structure_keys()):
            mutation = self._apply(f"Failed to delete permission {perm_id}", work)
        if mutation.changed:
            logger.info(
                f"Deleted permission {perm_id}, invalidated {len(mutation.affected_users)} user(s)"
            )
        return mutation.result

    def get_permission(self, permission: PermissionLike) -> Optional[models.Permission]:
        perm_id = permission_id(permission)
        return self._read(f"Failed to load permission {perm_id}", lambda s: s.permissions.get(perm_id))

    def list_permissions(self, resource: Optional[str] = None) -> List[models.Permission]:
        return self._read("Failed to list permissions", lambda s: s.permissions.list(resource))

    # ------------------------------------------------------------------
    # User <-> role
    # ------------------------------------------------------------------

    def grant_role_to_user(self, user_id: str, role_id: str, *, actor: Optional[str] = None) -> bool:
        """Assign a role to a user. Returns True if the assignment was new."""
        def work(stores: Stores) -> Mutation:
            self._require_role(stores, role_id)
            if stores.user_roles.exists(user_id, role_id):
                return Mutation(result=False)
            stores.user_roles.add(user_id, role_id)
            return Mutation(
                result=True,
                affected_users={user_id},
                entries=[self._entry(AuditAction.GRANT, TargetType.USER, user_id, role_id, "role", actor)],
            )

        return self._run_grant(
            f"Failed to grant role {role_id} to {user_id}", work, user_key(user_id), role_key(role_id)
        )

    def revoke_role_from_user(self, user_id: str, role_id: str, *, actor: Optional[str] = None) -> bool:
        """Remove a role from a user. Returns True if the user held it."""
        def work(stores: Stores) -> Mutation:
            if not stores.user_roles.remove(user_id, role_id):
                return Mutation(result=False)
            return Mutation(
                result=True,
                affected_users={user_id},
                entries=[self._entry(AuditAction.REVOKE, TargetType.USER, user_id, role_id, "role", actor)],
            )

        return self._run_grant(
            f"Failed to revoke role {role_id} from {user_id}", work, user_key(user_id), role_key(role_id)
        )

    # ------------------------------------------------------------------
    # Role <-> permission
    # ------------------------------------------------------------------

    def grant_permission_to_role(
        self, role_id: str, permission: PermissionLike, *, actor: Optional[str] = None
    ) -> bool:
        """Grant a permission to a role (and through inheritance its descendants)."""
        perm_id = permission_id(permission)

        def work(stores: Stores) -> Mutation:
            self._require_role(stores, role_id)
            self._require_permission(stores, perm_id)
            if stores.role_permissions.exists(role_id, perm_id):
                return Mutation(result=False)
            stores.role_permissions.add(role_id, perm_id)
            return Mutation(
                result=True,
                affected_users=self._users_reaching_roles(stores, {role_id}),
                entries=[self._entry(AuditAction.GRANT, TargetType.ROLE, role_id, perm_id, "permission", actor)],
            )

        return self._run_grant(f"Failed to grant {perm_id} to role {role_id}", work, *self._role_grant_keys(role_id))

    def revoke_permission_from_role(
        self, role_id: str, permission: PermissionLike, *, actor: Optional[str] = None
    ) -> bool:
        """Revoke a permission from a role."""
        perm_id = permission_id(permission)

        def work(stores: Stores) -> Mutation:
            if not stores.role_permissions.remove(role_id, perm_id):
                return Mutation(result=False)
            return Mutation(
                result=True,
                affected_users=self._users_reaching_roles(stores, {role_id}),
                entries=[self._entry(AuditAction.REVOKE, TargetType.ROLE, role_id, perm_id, "permission", actor)],
            )

        return self._run_grant(f"Failed to revoke {perm_id} from role {role_id}", work, *self._role_grant_keys(role_id))

    # ------------------------------------------------------------------
    # User <-> permission
    # ------------------------------------------------------------------

    def grant_permission_to_user(
        self, user_id: str, permission: PermissionLike, *, actor: Optional[str] = None
    ) -> bool:
        """Grant a permission directly to a user."""
        perm_id = permission_id(permission)

        def work(stores: Stores) -> Mutation:
            self._require_permission(stores, perm_id)
            if stores.user_permissions.exists(user_id, perm_id):
                return Mutation(result=False)
            stores.user_permissions.add(user_id, perm_id)
            return Mutation(
                result=True,
                affected_users={user_id},
                entries=[self._entry(AuditAction.GRANT, TargetType.USER, user_id, perm_id, "permission", actor)],
            )

        return self._run_grant(f"Failed to grant {perm_id} to {user_id}", work, user_key(user_id))

    def revoke_permission_from_user(
        self, user_id: str, permission: PermissionLike, *, actor: Optional[str] = None
    ) -> bool:
        """Revoke a direct permission from a user."""
        perm_id = permission_id(permission)

        def work(stores: Stores) -> Mutation:
            if not stores.user_permissions.remove(user_id, perm_id):
                return Mutation(result=False)
            return Mutation(
                result=True,
                affected_users={user_id},
                entries=[self._entry(AuditAction.REVOKE, TargetType.USER, user_id, perm_id, "permission", actor)],
            )

        return self._run_grant(f"Failed to revoke {perm_id} from {user_id}", work, user_key(user_id))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def roles_of_user(self, user_id: str) -> List[str]:
        return self._read(
            f"Failed to load roles of {user_id}", lambda s: s.user_roles.role_ids_of_user(user_id)
        )

    def users_with_role(self, role_id: str) -> Set[str]:
        return self._read(
            f"Failed to load holders of {role_id}", lambda s: s.user_roles.user_ids_with_roles([role_id])
        )

    def permissions_of_role(self, role_id: str) -> Set[str]:
        """Permissions granted to the role itself, without inheritance."""
        return self._read(
            f"Failed to load permissions of {role_id}",
            lambda s: s.role_permissions.permission_ids_of_roles([role_id]),
        )

    def direct_permissions_of_user(self, user_id: str) -> Set[str]:
        return self._read(
            f"Failed to load permissions of {user_id}",
            lambda s: s.user_permissions.permission_ids_of_user(user_id),
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _run_grant(self, message: str, work, *lock_keys: str) -> bool:
        with self.locks.hold(*lock_keys):
            mutation = self._apply(message, work)
        if mutation.changed:
            entry = mutation.entries[0]
            logger.info(
                f"{entry.action.value} {entry.related_id} on {entry.target_type.value} "
                f"{entry.target_id}, invalidated {len(mutation.affected_users)} user(s)"
            )
        return mutation.result

    @staticmethod
    def _entry(
        action: AuditAction,
        target_type: TargetType,
        target_id: str,
        related_id: str,
        grant: str,
        actor: Optional[str],
    ) -> AuditEntry:
        return AuditEntry(
            action=action,
            target_type=target_type,
            target_id=target_id,
            related_id=related_id,
            actor=actor,
            details={"grant": grant},
        )
