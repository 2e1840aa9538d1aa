"""Short-held in-process locks keyed by entity identifier.

Mutations to the same role or user are serialized; mutations to disjoint
keys never contend. Entries are reference counted and dropped when the
last holder releases, so the table does not grow with the user base.
"""

import threading
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, List

from warden.core.errors import StorageTimeout


class KeyedLock:
    """A family of locks, one per key."""

    def __init__(self, timeout: float = 10.0):
        self.timeout = timeout
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._refs: Dict[str, int] = {}

    def _checkout(self, key: str) -> threading.Lock:
        with self._guard:
            lock = self._locks.get(key)
            if lock is None:
                lock = self._locks[key] = threading.Lock()
            self._refs[key] = self._refs.get(key, 0) + 1
            return lock

    def _checkin(self, key: str) -> None:
        with self._guard:
            self._refs[key] -= 1
            if self._refs[key] == 0:
                del self._refs[key]
                del self._locks[key]

    @contextmanager
    def hold(self, *keys: str) -> Iterator[None]:
        """Acquire the locks for ``keys`` in sorted order, release on exit."""
        ordered: List[str] = sorted(set(keys))
        acquired: List[str] = []
        try:
            for key in ordered:
                lock = self._checkout(key)
                if not lock.acquire(timeout=self.timeout):
                    self._checkin(key)
                    raise StorageTimeout(f"Timed out waiting for lock on {key}")
                acquired.append(key)
            yield
        finally:
            for key in reversed(acquired):
                self._locks[key].release()
                self._checkin(key)

    def held_keys(self) -> Iterable[str]:
        with self._guard:
            return list(self._locks)


def role_key(role_id: str) -> str:
    return f"role:{role_id}"


def user_key(user_id: str) -> str:
    return f"user:{user_id}"
