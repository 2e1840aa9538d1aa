"""Shared mutation protocol for the RBAC managers.

Every mutation runs in one transaction. Once the commit has been issued,
affected cache entries are invalidated before control returns to the
caller, even if the caller is interrupted; only then is the audit trail
written. Audit durability never outranks mutation durability.
"""

from dataclasses import dataclass, field
from typing import Any, Callable, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import sessionmaker

from warden.common.logger import get_logger
from warden.core.config import RBACSettings
from warden.core.errors import MutationFailed, RBACError, ResolutionFailed, storage_failure
from warden.db.stores import Stores

from .audit import AuditEntry, AuditTrail
from .cache import ResolutionCache
from .locks import KeyedLock

logger = get_logger("mutations")


@dataclass
class Mutation:
    """What a unit of work changed."""
    result: Any = None
    affected_users: Set[str] = field(default_factory=set)
    entries: List[AuditEntry] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.entries)


class RBACComponent:
    """Base for managers that mutate relations, invalidate and audit."""

    def __init__(
        self,
        session_factory: sessionmaker,
        cache: ResolutionCache,
        audit: AuditTrail,
        settings: RBACSettings,
        locks: KeyedLock,
    ):
        self.session_factory = session_factory
        self.cache = cache
        self.audit = audit
        self.settings = settings
        self.locks = locks

    def _read(self, message: str, work: Callable[[Stores], Any]) -> Any:
        """Run a read-only unit of work; storage errors raise ``ResolutionFailed``."""
        db = self.session_factory()
        try:
            return work(Stores(db))
        except RBACError:
            raise
        except SQLAlchemyError as e:
            raise storage_failure(e, ResolutionFailed, message) from e
        finally:
            db.close()

    def _apply(self, message: str, work: Callable[[Stores], Mutation]) -> Mutation:
        """
        Run a mutating unit of work.

        Args:
            message: Failure description used in raised errors
            work: Callable receiving stores bound to one transaction

        Returns:
            The mutation produced by ``work``

        Raises:
            RBACError: validation errors raised by ``work`` (nothing committed)
            MutationFailed: storage error (rolled back)
            StorageTimeout: storage deadline exceeded (rolled back)
        """
        db = self.session_factory()
        mutation: Optional[Mutation] = None
        try:
            mutation = work(Stores(db))
            db.commit()
        except RBACError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            raise storage_failure(e, MutationFailed, message) from e
        except BaseException:
            db.rollback()
            raise
        finally:
            db.close()
            # The commit may have landed even if it raised; invalidating too much is harmless
            if mutation is not None and mutation.affected_users:
                self.cache.invalidate_many(mutation.affected_users)

        for entry in mutation.entries:
            self.audit.record(entry)
        return mutation
