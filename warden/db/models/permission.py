"""Permission database model.

A permission is the atomic grantable unit. Its identifier is the
conventional ``resource:action`` string.
"""

from sqlalchemy import Column, String, DateTime, Text, UniqueConstraint

from warden.db.base import Base, utcnow


class Permission(Base):
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("resource", "action", name="uq_permissions_resource_action"),
    )

    id = Column(String(255), primary_key=True)
    resource = Column(String(100), nullable=False, index=True)
    action = Column(String(100), nullable=False)
    description = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow)

    def __repr__(self) -> str:
        return f"<Permission {self.id}>"
