"""Error kinds raised by the RBAC engine.

Every error carries a ``kind`` so callers can branch on the category
without matching class names, and a ``retryable`` flag separating
validation failures (fix the request) from infrastructure failures
(retry with backoff). The engine itself never retries.
"""

from enum import Enum
from typing import Optional

from sqlalchemy import exc as sa_exc


class ErrorKind(str, Enum):
    """Categories of RBAC failures."""

    INVALID_HIERARCHY = "invalid_hierarchy"
    CYCLE_DETECTED = "cycle_detected"
    ROLE_IN_USE = "role_in_use"
    NOT_FOUND = "not_found"
    RESOLUTION_FAILED = "resolution_failed"
    MUTATION_FAILED = "mutation_failed"
    TIMEOUT = "timeout"


class RBACError(Exception):
    """Base class for all RBAC engine errors."""

    kind: ErrorKind = ErrorKind.MUTATION_FAILED
    retryable: bool = False


class InvalidHierarchy(RBACError):
    """Raised when a create/reparent would break the role forest."""

    kind = ErrorKind.INVALID_HIERARCHY

    def __init__(self, message: str, role_id: Optional[str] = None, parent_id: Optional[str] = None):
        super().__init__(message)
        self.role_id = role_id
        self.parent_id = parent_id


class CycleDetected(RBACError):
    """Raised when traversal of persisted data revisits a role."""

    kind = ErrorKind.CYCLE_DETECTED

    def __init__(self, role_id: str, path: list[str]):
        super().__init__(
            f"Cycle detected in role hierarchy at {role_id}: {' -> '.join(path)}"
        )
        self.role_id = role_id
        self.path = path


class RoleInUse(RBACError):
    """Raised when deleting a role that still has dependents without cascade."""

    kind = ErrorKind.ROLE_IN_USE

    def __init__(self, role_id: str, *, children: int = 0, users: int = 0, permissions: int = 0):
        parts = []
        if children:
            parts.append(f"{children} child role(s)")
        if users:
            parts.append(f"{users} user assignment(s)")
        if permissions:
            parts.append(f"{permissions} permission grant(s)")
        super().__init__(f"Role {role_id} is in use: {', '.join(parts)}")
        self.role_id = role_id
        self.children = children
        self.users = users
        self.permissions = permissions


class UnknownEntity(RBACError):
    """Raised when a grant references a role or permission that does not exist."""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, entity_type: str, entity_id: str):
        super().__init__(f"{entity_type} {entity_id} not found")
        self.entity_type = entity_type
        self.entity_id = entity_id


class ResolutionFailed(RBACError):
    """Raised when storage fails while resolving a user's permissions."""

    kind = ErrorKind.RESOLUTION_FAILED
    retryable = True

    def __init__(self, message: str, user_id: Optional[str] = None):
        super().__init__(message)
        self.user_id = user_id


class MutationFailed(RBACError):
    """Raised when storage fails during a grant, revoke or hierarchy change."""

    kind = ErrorKind.MUTATION_FAILED
    retryable = True


class StorageTimeout(ResolutionFailed, MutationFailed):
    """Raised when a storage call exceeds its deadline."""

    kind = ErrorKind.TIMEOUT
    retryable = True

    def __init__(self, message: str, user_id: Optional[str] = None):
        ResolutionFailed.__init__(self, message, user_id=user_id)


_TIMEOUT_MARKERS = ("timeout", "timed out", "database is locked", "canceling statement")


def is_timeout(exc: BaseException) -> bool:
    """Check whether a storage exception means a deadline was exceeded."""
    if isinstance(exc, (sa_exc.TimeoutError, TimeoutError)):
        return True
    if isinstance(exc, sa_exc.OperationalError):
        message = str(exc).lower()
        return any(marker in message for marker in _TIMEOUT_MARKERS)
    return False


def storage_failure(exc: BaseException, failure_cls: type, message: str, **kwargs) -> RBACError:
    """Map a storage exception to ``StorageTimeout`` or ``failure_cls``."""
    if is_timeout(exc):
        return StorageTimeout(f"{message}: storage call timed out ({exc})", **kwargs)
    return failure_cls(f"{message}: {exc}", **kwargs)
