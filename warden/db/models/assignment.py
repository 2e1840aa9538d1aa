"""Grant relations between users, roles and permissions.

Each row is one grant. Rows are created and removed whole, never updated.
User identifiers are owned by the host application and are not foreign keys.
"""

from sqlalchemy import Column, String, DateTime, ForeignKey

from warden.db.base import Base, utcnow


class RolePermission(Base):
    """Permission granted to a role (and, through inheritance, its descendants)."""
    __tablename__ = "role_permissions"

    role_id = Column(String(64), ForeignKey("roles.id"), primary_key=True)
    permission_id = Column(String(255), ForeignKey("permissions.id"), primary_key=True, index=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<RolePermission {self.role_id} -> {self.permission_id}>"


class UserRole(Base):
    """Role assigned to a user."""
    __tablename__ = "user_roles"

    user_id = Column(String(255), primary_key=True)
    role_id = Column(String(64), ForeignKey("roles.id"), primary_key=True, index=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<UserRole {self.user_id} -> {self.role_id}>"


class UserPermission(Base):
    """Permission granted directly to a user, bypassing roles."""
    __tablename__ = "user_permissions"

    user_id = Column(String(255), primary_key=True)
    permission_id = Column(String(255), ForeignKey("permissions.id"), primary_key=True, index=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<UserPermission {self.user_id} -> {self.permission_id}>"
