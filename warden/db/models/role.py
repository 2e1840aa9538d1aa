"""Role database model.

Roles form a forest through ``parent_id``: a role inherits the permissions
granted to every ancestor when hierarchy inheritance is enabled.
"""

import uuid

from sqlalchemy import Column, String, DateTime, ForeignKey

from warden.db.base import Base, utcnow


def new_role_id() -> str:
    return str(uuid.uuid4())


class Role(Base):
    __tablename__ = "roles"

    id = Column(String(64), primary_key=True, default=new_role_id)
    name = Column(String(100), nullable=False, unique=True)
    parent_id = Column(String(64), ForeignKey("roles.id"), nullable=True, index=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Role {self.name} ({self.id}) parent={self.parent_id}>"
