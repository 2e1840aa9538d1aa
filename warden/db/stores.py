"""Storage adapters for the RBAC relations.

Pure data access over a caller-supplied SQLAlchemy session: no validation,
no cache handling and no auditing. The caller owns the transaction, so
several stores bound to one session change state atomically.
"""

from typing import Iterable, List, Optional, Set

from sqlalchemy import func
from sqlalchemy.orm import Session

from warden.db.models import Permission, Role, RolePermission, UserPermission, UserRole


class RoleStore:
    """Rows of ``roles``."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, role_id: str, *, for_update: bool = False) -> Optional[Role]:
        query = self.db.query(Role).filter(Role.id == role_id)
        if for_update:
            query = query.with_for_update()
        return query.first()

    def get_by_name(self, name: str) -> Optional[Role]:
        return self.db.query(Role).filter(Role.name == name).first()

    def list(self) -> List[Role]:
        return self.db.query(Role).order_by(Role.name).all()

    def parent_of(self, role_id: str) -> tuple[bool, Optional[str]]:
        """Return ``(exists, parent_id)`` without loading the full row."""
        row = self.db.query(Role.parent_id).filter(Role.id == role_id).first()
        if row is None:
            return False, None
        return True, row[0]

    def child_ids(self, role_ids: Iterable[str]) -> List[str]:
        ids = list(role_ids)
        if not ids:
            return []
        rows = self.db.query(Role.id).filter(Role.parent_id.in_(ids)).all()
        return [r[0] for r in rows]

    def count_children(self, role_id: str) -> int:
        return self.db.query(func.count(Role.id)).filter(Role.parent_id == role_id).scalar()

    def add(self, role: Role) -> Role:
        self.db.add(role)
        self.db.flush()
        return role

    def set_parent(self, role: Role, parent_id: Optional[str]) -> None:
        role.parent_id = parent_id
        self.db.flush()

    def delete(self, role_id: str) -> int:
        return self.db.query(Role).filter(Role.id == role_id).delete(synchronize_session=False)


class PermissionStore:
    """Rows of ``permissions``."""

    def __init__(self, db: Session):
        self.db = db

    def get(self, permission_id: str) -> Optional[Permission]:
        return self.db.get(Permission, permission_id)

    def exists(self, permission_id: str) -> bool:
        return self.get(permission_id) is not None

    def list(self, resource: Optional[str] = None) -> List[Permission]:
        query = self.db.query(Permission)
        if resource:
            query = query.filter(Permission.resource == resource)
        return query.order_by(Permission.id).all()

    def add(self, permission: Permission) -> Permission:
        self.db.add(permission)
        self.db.flush()
        return permission

    def delete(self, permission_id: str) -> int:
        return self.db.query(Permission).filter(Permission.id == permission_id).delete(
            synchronize_session=False
        )


class UserRoleStore:
    """Rows of ``user_roles``."""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, user_id: str, role_id: str) -> bool:
        return self.db.get(UserRole, (user_id, role_id)) is not None

    def add(self, user_id: str, role_id: str) -> None:
        self.db.add(UserRole(user_id=user_id, role_id=role_id))
        self.db.flush()

    def remove(self, user_id: str, role_id: str) -> int:
        return self.db.query(UserRole).filter(
            UserRole.user_id == user_id, UserRole.role_id == role_id
        ).delete(synchronize_session=False)

    def role_ids_of_user(self, user_id: str) -> List[str]:
        rows = self.db.query(UserRole.role_id).filter(UserRole.user_id == user_id).all()
        return [r[0] for r in rows]

    def user_ids_with_roles(self, role_ids: Iterable[str]) -> Set[str]:
        ids = list(role_ids)
        if not ids:
            return set()
        rows = self.db.query(UserRole.user_id).filter(UserRole.role_id.in_(ids)).distinct().all()
        return {r[0] for r in rows}

    def count_for_role(self, role_id: str) -> int:
        return self.db.query(func.count(UserRole.user_id)).filter(UserRole.role_id == role_id).scalar()

    def delete_for_roles(self, role_ids: Iterable[str]) -> int:
        ids = list(role_ids)
        if not ids:
            return 0
        return self.db.query(UserRole).filter(UserRole.role_id.in_(ids)).delete(
            synchronize_session=False
        )


class UserPermissionStore:
    """Rows of ``user_permissions``."""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, user_id: str, permission_id: str) -> bool:
        return self.db.get(UserPermission, (user_id, permission_id)) is not None

    def add(self, user_id: str, permission_id: str) -> None:
        self.db.add(UserPermission(user_id=user_id, permission_id=permission_id))
        self.db.flush()

    def remove(self, user_id: str, permission_id: str) -> int:
        return self.db.query(UserPermission).filter(
            UserPermission.user_id == user_id,
            UserPermission.permission_id == permission_id,
        ).delete(synchronize_session=False)

    def permission_ids_of_user(self, user_id: str) -> Set[str]:
        rows = self.db.query(UserPermission.permission_id).filter(
            UserPermission.user_id == user_id
        ).all()
        return {r[0] for r in rows}

    def user_ids_with_permission(self, permission_id: str) -> Set[str]:
        rows = self.db.query(UserPermission.user_id).filter(
            UserPermission.permission_id == permission_id
        ).all()
        return {r[0] for r in rows}

    def delete_for_permission(self, permission_id: str) -> int:
        return self.db.query(UserPermission).filter(
            UserPermission.permission_id == permission_id
        ).delete(synchronize_session=False)


class RolePermissionStore:
    """Rows of ``role_permissions``."""

    def __init__(self, db: Session):
        self.db = db

    def exists(self, role_id: str, permission_id: str) -> bool:
        return self.db.get(RolePermission, (role_id, permission_id)) is not None

    def add(self, role_id: str, permission_id: str) -> None:
        self.db.add(RolePermission(role_id=role_id, permission_id=permission_id))
        self.db.flush()

    def remove(self, role_id: str, permission_id: str) -> int:
        return self.db.query(RolePermission).filter(
            RolePermission.role_id == role_id,
            RolePermission.permission_id == permission_id,
        ).delete(synchronize_session=False)

    def permission_ids_of_roles(self, role_ids: Iterable[str]) -> Set[str]:
        ids = list(role_ids)
        if not ids:
            return set()
        rows = self.db.query(RolePermission.permission_id).filter(
            RolePermission.role_id.in_(ids)
        ).distinct().all()
        return {r[0] for r in rows}

    def role_ids_with_permission(self, permission_id: str) -> Set[str]:
        rows = self.db.query(RolePermission.role_id).filter(
            RolePermission.permission_id == permission_id
        ).all()
        return {r[0] for r in rows}

    def count_for_role(self, role_id: str) -> int:
        return self.db.query(func.count(RolePermission.permission_id)).filter(
            RolePermission.role_id == role_id
        ).scalar()

    def delete_for_roles(self, role_ids: Iterable[str]) -> int:
        ids = list(role_ids)
        if not ids:
            return 0
        return self.db.query(RolePermission).filter(RolePermission.role_id.in_(ids)).delete(
            synchronize_session=False
        )

    def delete_for_permission(self, permission_id: str) -> int:
        return self.db.query(RolePermission).filter(
            RolePermission.permission_id == permission_id
        ).delete(synchronize_session=False)


class Stores:
    """All adapters bound to one session, i.e. one transaction."""

    def __init__(self, db: Session):
        self.db = db
        self.roles = RoleStore(db)
        self.permissions = PermissionStore(db)
        self.user_roles = UserRoleStore(db)
        self.user_permissions = UserPermissionStore(db)
        self.role_permissions = RolePermissionStore(db)
