"""Audit log model for warden.

This table is IMMUTABLE - ORM events refuse UPDATE and DELETE of loaded
rows, and production databases should add triggers doing the same.
All audit entries are permanent for compliance review.
"""

from typing import Optional, Dict, Any

from sqlalchemy import Column, Integer, String, DateTime, JSON, event

from warden.db.base import Base, utcnow


class AuditLogImmutableError(Exception):
    """Raised when code attempts to modify or delete an audit log row."""


class AuditLog(Base):
    """
    Immutable audit log entry.

    Records every grant, revoke and hierarchy change made through the
    RBAC engine, and optionally authorization decisions.
    """
    __tablename__ = "audit_logs"

    # Monotonic sequence, tie-breaker for entries sharing a timestamp
    id = Column(Integer, primary_key=True, autoincrement=True)

    # Actor information (None for system actions)
    actor = Column(String(255), nullable=True, index=True)

    # Action details
    action = Column(String(50), nullable=False, index=True)
    target_type = Column(String(50), nullable=False, index=True)
    target_id = Column(String(255), nullable=True, index=True)
    related_id = Column(String(255), nullable=True)  # e.g. the role in a user->role grant

    # Additional context (old/new parent, cascade info, decision outcome)
    details = Column(JSON, nullable=True)

    created_at = Column(DateTime, default=utcnow, nullable=False, index=True)

    def __repr__(self) -> str:
        return f"<AuditLog {self.action} on {self.target_type}:{self.target_id} by {self.actor}>"

    @classmethod
    def create_entry(
        cls,
        action: str,
        target_type: str,
        *,
        actor: Optional[str] = None,
        target_id: Optional[str] = None,
        related_id: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
        created_at=None,
    ) -> "AuditLog":
        """
        Factory method to create a new audit log entry.

        Args:
            action: Action performed (e.g., 'grant', 'revoke', 'reparent')
            target_type: Type of target (e.g., 'role', 'user', 'permission')
            actor: Who performed the action
            target_id: ID of the affected entity
            related_id: ID of the other side of a relation
            details: Additional context
            created_at: Event timestamp, defaults to now
        """
        return cls(
            action=action,
            target_type=target_type,
            actor=actor,
            target_id=target_id,
            related_id=related_id,
            details=details,
            created_at=created_at or utcnow(),
        )


@event.listens_for(AuditLog, "before_update")
def _prevent_update(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log entries are immutable: {target!r}")


@event.listens_for(AuditLog, "before_delete")
def _prevent_delete(mapper, connection, target):
    raise AuditLogImmutableError(f"Audit log entries cannot be deleted: {target!r}")
