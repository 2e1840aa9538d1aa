"""Audit trail for RBAC mutations.

Appends immutable records of grants, revokes and hierarchy changes (and,
optionally, authorization decisions). Writes happen after the mutation
has committed: a failed audit write never rolls the mutation back, it is
logged and handed to failure listeners instead.
"""

import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Iterator, List, Optional

from sqlalchemy.orm import sessionmaker

from warden.common.logger import get_logger
from warden.db.base import utcnow
from warden.db.models import AuditLog
from warden.db.session import session_scope

logger = get_logger("audit")


class AuditAction(str, Enum):
    """Kinds of recorded events."""

    GRANT = "grant"
    REVOKE = "revoke"
    ROLE_CREATE = "role_create"
    ROLE_DELETE = "role_delete"
    REPARENT = "reparent"
    PERMISSION_CREATE = "permission_create"
    PERMISSION_DELETE = "permission_delete"
    AUTHORIZE = "authorize"


class TargetType(str, Enum):
    """What an audit entry is about."""

    USER = "user"
    ROLE = "role"
    PERMISSION = "permission"


@dataclass(frozen=True)
class AuditEntry:
    """One immutable audit record."""
    action: AuditAction
    target_type: TargetType
    target_id: Optional[str] = None
    related_id: Optional[str] = None
    actor: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=utcnow)
    id: Optional[int] = None


@dataclass
class AuditFilter:
    """Criteria for ``AuditTrail.query``; unset fields match everything."""
    actor: Optional[str] = None
    action: Optional[AuditAction] = None
    target_type: Optional[TargetType] = None
    target_id: Optional[str] = None
    since: Optional[datetime] = None
    until: Optional[datetime] = None
    limit: Optional[int] = None

    def matches(self, entry: AuditEntry) -> bool:
        if self.actor is not None and entry.actor != self.actor:
            return False
        if self.action is not None and entry.action != self.action:
            return False
        if self.target_type is not None and entry.target_type != self.target_type:
            return False
        if self.target_id is not None and entry.target_id != self.target_id:
            return False
        if self.since is not None and entry.timestamp < self.since:
            return False
        if self.until is not None and entry.timestamp > self.until:
            return False
        return True


class AuditSink(ABC):
    """Append-only store for audit entries."""

    @abstractmethod
    def append(self, entry: AuditEntry) -> AuditEntry:
        """Persist an entry and return it with its sequence id."""
        pass

    @abstractmethod
    def iter_entries(self, audit_filter: AuditFilter) -> Iterator[AuditEntry]:
        """Yield matching entries ordered by timestamp, then sequence id."""
        pass


class MemoryAuditSink(AuditSink):
    """List-backed sink for tests and embedded use."""

    def __init__(self):
        self._entries: List[AuditEntry] = []
        self._lock = threading.Lock()

    def append(self, entry: AuditEntry) -> AuditEntry:
        with self._lock:
            stored = replace(entry, id=len(self._entries) + 1)
            self._entries.append(stored)
        return stored

    def iter_entries(self, audit_filter: AuditFilter) -> Iterator[AuditEntry]:
        with self._lock:
            snapshot = list(self._entries)
        ordered = sorted(snapshot, key=lambda e: (e.timestamp, e.id))
        count = 0
        for entry in ordered:
            if audit_filter.limit is not None and count >= audit_filter.limit:
                return
            if audit_filter.matches(entry):
                count += 1
                yield entry


class SQLAlchemyAuditSink(AuditSink):
    """Writes to the ``audit_logs`` table in its own transaction."""

    def __init__(self, session_factory: sessionmaker, batch_size: int = 500):
        self.session_factory = session_factory
        self.batch_size = batch_size

    def append(self, entry: AuditEntry) -> AuditEntry:
        with session_scope(self.session_factory) as db:
            row = AuditLog.create_entry(
                entry.action.value,
                entry.target_type.value,
                actor=entry.actor,
                target_id=entry.target_id,
                related_id=entry.related_id,
                details=entry.details or None,
                created_at=entry.timestamp,
            )
            db.add(row)
            db.flush()
            return replace(entry, id=row.id)

    def iter_entries(self, audit_filter: AuditFilter) -> Iterator[AuditEntry]:
        db = self.session_factory()
        try:
            query = db.query(AuditLog)
            if audit_filter.actor is not None:
                query = query.filter(AuditLog.actor == audit_filter.actor)
            if audit_filter.action is not None:
                query = query.filter(AuditLog.action == audit_filter.action.value)
            if audit_filter.target_type is not None:
                query = query.filter(AuditLog.target_type == audit_filter.target_type.value)
            if audit_filter.target_id is not None:
                query = query.filter(AuditLog.target_id == audit_filter.target_id)
            if audit_filter.since is not None:
                query = query.filter(AuditLog.created_at >= audit_filter.since)
            if audit_filter.until is not None:
                query = query.filter(AuditLog.created_at <= audit_filter.until)

            query = query.order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
            if audit_filter.limit is not None:
                query = query.limit(audit_filter.limit)

            for row in query.yield_per(self.batch_size):
                yield _row_to_entry(row)
        finally:
            db.close()


def _row_to_entry(row: AuditLog) -> AuditEntry:
    return AuditEntry(
        action=AuditAction(row.action),
        target_type=TargetType(row.target_type),
        target_id=row.target_id,
        related_id=row.related_id,
        actor=row.actor,
        details=row.details or {},
        timestamp=row.created_at,
        id=row.id,
    )


class AuditQuery:
    """
    Lazy, finite, restartable view over matching audit entries.

    Nothing is read until iteration starts; every new iteration runs the
    query again from the first entry.
    """

    def __init__(self, sink: AuditSink, audit_filter: AuditFilter):
        self.sink = sink
        self.filter = audit_filter

    def __iter__(self) -> Iterator[AuditEntry]:
        return self.sink.iter_entries(self.filter)

    def all(self) -> List[AuditEntry]:
        return list(self)

    def count(self) -> int:
        return sum(1 for _ in self)


FailureListener = Callable[[AuditEntry, Exception], None]


class AuditTrail:
    """Records RBAC events and serves read-only queries over them."""

    def __init__(self, sink: AuditSink):
        self.sink = sink
        self.failed_writes = 0
        self._listeners: List[FailureListener] = []

    def add_failure_listener(self, listener: FailureListener) -> None:
        """Register a callback invoked with (entry, error) when a write fails."""
        self._listeners.append(listener)

    def record(self, entry: AuditEntry) -> Optional[AuditEntry]:
        """
        Append an entry.

        Returns:
            The stored entry, or None if the write failed. Failures are
            reported to the log and to failure listeners, never raised.
        """
        try:
            return self.sink.append(entry)
        except Exception as e:
            self.failed_writes += 1
            logger.error(
                f"Audit write failed for {entry.action.value} on "
                f"{entry.target_type.value}:{entry.target_id}: {e}"
            )
            for listener in self._listeners:
                try:
                    listener(entry, e)
                except Exception:
                    logger.exception("Audit failure listener raised")
            return None

    def query(self, audit_filter: Optional[AuditFilter] = None) -> AuditQuery:
        """Return a lazy, restartable sequence of matching entries."""
        return AuditQuery(self.sink, audit_filter or AuditFilter())
