"""Role hierarchy management.

Owns role creation, reparenting and deletion, and keeps the parent
relation a forest no deeper than ``max_hierarchy_depth`` hops. Depth is
counted in hops from a role to the root of its tree: a top-level role has
depth 0, its child depth 1.

Structural changes are serialized by one hierarchy lock: two concurrent
reparents of different roles can still jointly form a cycle, so per-role
locking is not enough here.
"""

from typing import List, Optional

from warden.common.logger import get_logger
from warden.core.errors import CycleDetected, InvalidHierarchy, RoleInUse, UnknownEntity
from warden.db.models import Role
from warden.db.models.role import new_role_id
from warden.db.stores import RoleStore, Stores

from .audit import AuditAction, AuditEntry, TargetType
from .base import Mutation, RBACComponent
from .locks import role_key

logger = get_logger("hierarchy")

HIERARCHY_LOCK = "hierarchy"


def ancestor_ids(store: RoleStore, role_id: str, max_depth: Optional[int] = None) -> List[str]:
    """
    Walk parent pointers from ``role_id`` towards the root.

    Args:
        store: Role store bound to the caller's session
        role_id: Starting role (not included in the result)
        max_depth: Stop after this many hops, None walks to the root

    Returns:
        Ancestor ids, immediate parent first. Empty for a top-level or
        unknown role. A dangling parent pointer ends the walk.

    Raises:
        CycleDetected: the walk revisited a role
    """
    exists, parent = store.parent_of(role_id)
    if not exists:
        return []

    visited = {role_id}
    path = [role_id]
    ancestors: List[str] = []
    while parent is not None:
        if max_depth is not None and len(ancestors) >= max_depth:
            logger.debug(f"Ancestor walk from {role_id} capped at {max_depth} hops")
            break
        if parent in visited:
            raise CycleDetected(parent, path + [parent])
        visited.add(parent)
        path.append(parent)

        exists, next_parent = store.parent_of(parent)
        if not exists:
            logger.warning(f"Role {path[-2]} points to missing parent {parent}")
            break
        ancestors.append(parent)
        parent = next_parent
    return ancestors


def descendant_levels(store: RoleStore, role_id: str) -> List[List[str]]:
    """
    Breadth-first levels below ``role_id``: children, grandchildren, ...

    Raises:
        CycleDetected: a role was reached twice
    """
    visited = {role_id}
    levels: List[List[str]] = []
    frontier = [role_id]
    while frontier:
        children = store.child_ids(frontier)
        for child in children:
            if child in visited:
                raise CycleDetected(child, [role_id, child])
            visited.add(child)
        if children:
            levels.append(children)
        frontier = children
    return levels


def subtree_ids(store: RoleStore, role_id: str) -> List[str]:
    """``role_id`` followed by all of its descendants."""
    ids = [role_id]
    for level in descendant_levels(store, role_id):
        ids.extend(level)
    return ids


class RoleHierarchyManager(RBACComponent):
    """Role CRUD and parent/child graph maintenance."""

    @property
    def max_depth(self) -> int:
        return self.settings.max_hierarchy_depth

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_role(self, role_id: str) -> Optional[Role]:
        return self._read(f"Failed to load role {role_id}", lambda s: s.roles.get(role_id))

    def get_role_by_name(self, name: str) -> Optional[Role]:
        return self._read(f"Failed to load role {name}", lambda s: s.roles.get_by_name(name))

    def list_roles(self) -> List[Role]:
        return self._read("Failed to list roles", lambda s: s.roles.list())

    def children_of(self, role_id: str) -> List[str]:
        return self._read(
            f"Failed to load children of {role_id}",
            lambda s: s.roles.child_ids([role_id]),
        )

    def descendants_of(self, role_id: str) -> List[str]:
        """All descendant ids, nearest generation first."""
        return self._read(
            f"Failed to load descendants of {role_id}",
            lambda s: subtree_ids(s.roles, role_id)[1:],
        )

    def depth_of(self, role_id: str) -> int:
        """Hops from ``role_id`` to the root of its tree."""
        return self._read(
            f"Failed to compute depth of {role_id}",
            lambda s: len(self._require_ancestors(s, role_id)),
        )

    def ancestors_of(self, role_id: str, max_depth: Optional[int] = None) -> List[Role]:
        """
        Ancestors of a role, immediate parent first, root last.

        Terminates on corrupted data: a revisited role raises
        ``CycleDetected`` instead of looping.
        """
        def work(stores: Stores) -> List[Role]:
            ids = self._require_ancestors(stores, role_id, max_depth)
            return [stores.roles.get(rid) for rid in ids]

        return self._read(f"Failed to load ancestors of {role_id}", work)

    def _require_ancestors(self, stores: Stores, role_id: str, max_depth: Optional[int] = None) -> List[str]:
        if not stores.roles.parent_of(role_id)[0]:
            raise UnknownEntity("Role", role_id)
        return ancestor_ids(stores.roles, role_id, max_depth)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def _validate_parent(
        self,
        stores: Stores,
        role_id: Optional[str],
        parent_id: str,
        subtree_height: int = 0,
    ) -> None:
        """Check that ``parent_id`` can hold ``role_id`` and its subtree."""
        if not stores.roles.parent_of(parent_id)[0]:
            raise InvalidHierarchy(f"Parent role {parent_id} does not exist", role_id, parent_id)
        if role_id is not None and parent_id == role_id:
            raise InvalidHierarchy(f"Role {role_id} cannot be its own parent", role_id, parent_id)

        try:
            chain = ancestor_ids(stores.roles, parent_id)
        except CycleDetected as e:
            raise InvalidHierarchy(
                f"Parent role {parent_id} sits on a corrupted chain: {e}", role_id, parent_id
            ) from e

        if role_id is not None and role_id in chain:
            raise InvalidHierarchy(
                f"Role {parent_id} is a descendant of {role_id}; attaching would create a cycle",
                role_id,
                parent_id,
            )

        depth = len(chain) + 1 + subtree_height
        if depth > self.max_depth:
            raise InvalidHierarchy(
                f"Hierarchy depth {depth} would exceed the maximum of {self.max_depth}",
                role_id,
                parent_id,
            )

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    def create_role(
        self,
        name: str,
        parent_id: Optional[str] = None,
        *,
        actor: Optional[str] = None,
        role_id: Optional[str] = None,
    ) -> Role:
        """
        Create a role, optionally under ``parent_id``.

        Raises:
            InvalidHierarchy: unknown parent, duplicate name or id, or the
                new role would sit deeper than ``max_hierarchy_depth``
        """
        if not name or not name.strip():
            raise InvalidHierarchy("Role name must not be empty")

        def work(stores: Stores) -> Mutation:
            if stores.roles.get_by_name(name) is not None:
                raise InvalidHierarchy(f"Role with name {name} already exists", role_id, parent_id)
            if role_id is not None and stores.roles.get(role_id) is not None:
                raise InvalidHierarchy(f"Role {role_id} already exists", role_id, parent_id)
            if parent_id is not None:
                self._validate_parent(stores, role_id, parent_id)

            role = stores.roles.add(Role(id=role_id or new_role_id(), name=name, parent_id=parent_id))
            return Mutation(
                result=role,
                entries=[AuditEntry(
                    action=AuditAction.ROLE_CREATE,
                    target_type=TargetType.ROLE,
                    target_id=role.id,
                    related_id=parent_id,
                    actor=actor,
                    details={"name": name, "parent_id": parent_id},
                )],
            )

        with self.locks.hold(HIERARCHY_LOCK):
            mutation = self._apply(f"Failed to create role {name}", work)
        logger.info(f"Created role {name} ({mutation.result.id}) under {parent_id}")
        return mutation.result

    def reparent_role(
        self,
        role_id: str,
        new_parent_id: Optional[str] = None,
        *,
        actor: Optional[str] = None,
    ) -> None:
        """
        Move a role (with its subtree) under ``new_parent_id``, or to the top level.

        Invalidates cached resolutions of every user holding the role or
        any of its descendants.

        Raises:
            InvalidHierarchy: unknown role or parent, cycle, or depth violation
        """
        def work(stores: Stores) -> Mutation:
            role = stores.roles.get(role_id, for_update=True)
            if role is None:
                raise InvalidHierarchy(f"Role {role_id} does not exist", role_id, new_parent_id)

            old_parent_id = role.parent_id
            if old_parent_id == new_parent_id:
                return Mutation(result=None)

            levels = descendant_levels(stores.roles, role_id)
            if new_parent_id is not None:
                for level in levels:
                    if new_parent_id in level:
                        raise InvalidHierarchy(
                            f"Role {new_parent_id} is a descendant of {role_id}; "
                            f"attaching would create a cycle",
                            role_id,
                            new_parent_id,
                        )
                self._validate_parent(stores, role_id, new_parent_id, subtree_height=len(levels))

            affected_roles = [role_id] + [rid for level in levels for rid in level]
            stores.roles.set_parent(role, new_parent_id)
            return Mutation(
                affected_users=stores.user_roles.user_ids_with_roles(affected_roles),
                entries=[AuditEntry(
                    action=AuditAction.REPARENT,
                    target_type=TargetType.ROLE,
                    target_id=role_id,
                    related_id=new_parent_id,
                    actor=actor,
                    details={"old_parent_id": old_parent_id, "new_parent_id": new_parent_id},
                )],
            )

        with self.locks.hold(HIERARCHY_LOCK, role_key(role_id)):
            mutation = self._apply(f"Failed to reparent role {role_id}", work)
        if mutation.changed:
            logger.info(
                f"Reparented role {role_id} under {new_parent_id}, "
                f"invalidated {len(mutation.affected_users)} user(s)"
            )

    def delete_role(
        self,
        role_id: str,
        cascade: bool = False,
        *,
        actor: Optional[str] = None,
    ) -> List[str]:
        """
        Delete a role.

        Without ``cascade`` a role with children, user assignments or
        permission grants is refused. With ``cascade`` the whole subtree
        and every relation referencing it are removed in one transaction.

        Returns:
            Ids of removed roles, deepest first

        Raises:
            InvalidHierarchy: unknown role
            RoleInUse: dependents exist and ``cascade`` is False
        """
        def work(stores: Stores) -> Mutation:
            role = stores.roles.get(role_id, for_update=True)
            if role is None:
                raise InvalidHierarchy(f"Role {role_id} does not exist", role_id)

            if not cascade:
                children = stores.roles.count_children(role_id)
                users = stores.user_roles.count_for_role(role_id)
                grants = stores.role_permissions.count_for_role(role_id)
                if children or users or grants:
                    raise RoleInUse(role_id, children=children, users=users, permissions=grants)
                removed = [role_id]
            else:
                levels = descendant_levels(stores.roles, role_id)
                removed = [rid for level in reversed(levels) for rid in level] + [role_id]

            affected_users = stores.user_roles.user_ids_with_roles(removed)
            stores.user_roles.delete_for_roles(removed)
            stores.role_permissions.delete_for_roles(removed)
            # Deepest first keeps parent_id references valid at every step
            for rid in removed:
                stores.roles.delete(rid)

            return Mutation(
                result=removed,
                affected_users=affected_users,
                entries=[
                    AuditEntry(
                        action=AuditAction.ROLE_DELETE,
                        target_type=TargetType.ROLE,
                        target_id=rid,
                        related_id=role_id if rid != role_id else None,
                        actor=actor,
                        details={"cascade": cascade},
                    )
                    for rid in removed
                ],
            )

        with self.locks.hold(HIERARCHY_LOCK, role_key(role_id)):
            mutation = self._apply(f"Failed to delete role {role_id}", work)
        logger.info(
            f"Deleted {len(mutation.result)} role(s) rooted at {role_id} "
            f"(cascade={cascade}), invalidated {len(mutation.affected_users)} user(s)"
        )
        return mutation.result
