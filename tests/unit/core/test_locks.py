"""Tests for keyed mutation locks."""

import threading

import pytest

from warden.core.errors import ErrorKind, StorageTimeout
from warden.core.rbac.locks import KeyedLock, role_key, user_key


class TestKeyedLock:
    """Test KeyedLock acquisition and release."""

    def test_keys_released_after_hold(self):
        """Test that lock entries are dropped once released."""
        locks = KeyedLock(timeout=1)
        with locks.hold("role:a", "user:b"):
            assert sorted(locks.held_keys()) == ["role:a", "user:b"]
        assert list(locks.held_keys()) == []

    def test_keys_released_on_error(self):
        """Test that an exception inside the block releases every lock."""
        locks = KeyedLock(timeout=1)
        with pytest.raises(RuntimeError):
            with locks.hold("role:a"):
                raise RuntimeError("boom")
        assert list(locks.held_keys()) == []

    def test_duplicate_keys_acquired_once(self):
        """Test that repeating a key does not deadlock."""
        locks = KeyedLock(timeout=1)
        with locks.hold("role:a", "role:a"):
            pass

    def test_contended_key_times_out(self):
        """Test that waiting past the timeout raises StorageTimeout."""
        locks = KeyedLock(timeout=0.05)
        entered = threading.Event()
        release = threading.Event()

        def holder():
            with locks.hold("role:a"):
                entered.set()
                release.wait(2)

        thread = threading.Thread(target=holder)
        thread.start()
        try:
            assert entered.wait(2)
            with pytest.raises(StorageTimeout) as exc_info:
                with locks.hold("role:a"):
                    pass
            assert exc_info.value.kind == ErrorKind.TIMEOUT
            assert exc_info.value.retryable
        finally:
            release.set()
            thread.join()

    def test_disjoint_keys_do_not_contend(self):
        """Test that different keys can be held concurrently."""
        locks = KeyedLock(timeout=0.05)
        with locks.hold("role:a"):
            result = []
            thread = threading.Thread(target=lambda: result.append(_try_hold(locks, "role:b")))
            thread.start()
            thread.join()
        assert result == [True]

    def test_key_helpers(self):
        """Test key namespacing."""
        assert role_key("admin") == "role:admin"
        assert user_key("u1") == "user:u1"


def _try_hold(locks: KeyedLock, key: str) -> bool:
    with locks.hold(key):
        return True
