"""Resolution cache for effective permission sets.

Memoizes ``ResolvedPermissionSet`` values per user with a TTL and supports
explicit invalidation. The cache is never the source of truth: any backend
failure degrades to a miss and resolution recomputes from storage.

Stale re-population is prevented with per-user generation counters. A
resolver snapshots the generation before reading storage and hands it back
to ``put``; invalidation bumps the generation, so a resolution that read
pre-mutation state can no longer store it.

A generation only has to outlive the resolutions that may have snapshotted
it, so every bump refreshes a TTL on the counter (``generation_ttl``) and
idle counters expire instead of accumulating per user.

Backends:
    - MemoryCacheBackend: thread-safe dict, single process
    - RedisCacheBackend: redis-py, shared across processes
"""

import json
import math
import threading
import time
from abc import ABC, abstractmethod
from typing import Any, Dict, Iterable, Optional, Tuple

import redis
from redis.exceptions import WatchError

from warden.common.logger import get_logger
from warden.core.config import RBACSettings

from .permissions import ResolvedPermissionSet

logger = get_logger("cache")

# Seconds a generation counter outlives the cache TTL
GENERATION_GRACE = 300


class CacheBackend(ABC):
    """Key-value operations the resolution cache needs from a store."""

    @property
    @abstractmethod
    def backend_name(self) -> str:
        """Name of this backend for logging."""
        pass

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        """Return the stored value or None if absent or expired."""
        pass

    @abstractmethod
    def get_generation(self, gen_key: str) -> int:
        """Return the generation counter, 0 when never bumped."""
        pass

    @abstractmethod
    def set_if_generation(
        self, key: str, value: str, ttl: int, gen_key: str, expected: int
    ) -> bool:
        """Store ``value`` only if the generation still equals ``expected``."""
        pass

    @abstractmethod
    def bump_and_delete(self, gen_key: str, key: str, gen_ttl: float) -> None:
        """Atomically increment the generation, keep it for ``gen_ttl`` seconds and drop the value."""
        pass

    @abstractmethod
    def clear(self, prefix: str) -> int:
        """Drop all values under ``prefix``; generations are kept."""
        pass
class MemoryCacheBackend(CacheBackend):
    """In-process backend. Data is lost on restart, which is always safe."""

    # Expired generations are swept after this many bumps
    SWEEP_INTERVAL = 1024

    def __init__(self):
        self._values: Dict[str, Tuple[str, float]] = {}
        self._generations: Dict[str, Tuple[int, float]] = {}
        self._bumps = 0
        self._lock = threading.Lock()

    @property
    def backend_name(self) -> str:
        return "memory"

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            item = self._values.get(key)
            if item is None:
                return None
            value, expires_at = item
            if time.time() >= expires_at:
                del self._values[key]
                return None
            return value

    def _generation(self, gen_key: str, now: float) -> int:
        # Caller holds the lock
        item = self._generations.get(gen_key)
        if item is None:
            return 0
        generation, expires_at = item
        if now >= expires_at:
            del self._generations[gen_key]
            return 0
        return generation

    def _sweep_generations(self, now: float) -> None:
        expired = [k for k, (_, expires_at) in self._generations.items() if now >= expires_at]
        for k in expired:
            del self._generations[k]

    def get_generation(self, gen_key: str) -> int:
        with self._lock:
            return self._generation(gen_key, time.time())

    def set_if_generation(
        self, key: str, value: str, ttl: int, gen_key: str, expected: int
    ) -> bool:
        with self._lock:
            now = time.time()
            if self._generation(gen_key, now) != expected:
                return False
            self._values[key] = (value, now + ttl)
            return True

    def bump_and_delete(self, gen_key: str, key: str, gen_ttl: float) -> None:
        with self._lock:
            now = time.time()
            self._generations[gen_key] = (self._generation(gen_key, now) + 1, now + gen_ttl)
            self._values.pop(key, None)
            self._bumps += 1
            if self._bumps % self.SWEEP_INTERVAL == 0:
                self._sweep_generations(now)

    def clear(self, prefix: str) -> int:
        with self._lock:
            keys = [k for k in self._values if k.startswith(prefix)]
            for k in keys:
                del self._values[k]
            self._sweep_generations(time.time())
            return len(keys)

    def generation_count(self) -> int:
        """Number of generation counters currently held."""
        with self._lock:
            return len(self._generations)

class RedisCacheBackend(CacheBackend):
    """Redis backend using WATCH/MULTI for generation-checked writes."""

    def __init__(self, client: Optional[redis.Redis] = None, *, url: Optional[str] = None, timeout: float = 2.0):
        if client is None:
            if not url:
                raise ValueError("RedisCacheBackend needs a client or a url")
            client = redis.from_url(
                url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=timeout,
                socket_timeout=timeout,
            )
        self.client = client

    @property
    def backend_name(self) -> str:
        return "redis"

    def get(self, key: str) -> Optional[str]:
        value = self.client.get(key)
        if isinstance(value, bytes):
            value = value.decode("utf-8")
        return value

    def get_generation(self, gen_key: str) -> int:
        return int(self.client.get(gen_key) or 0)

    def set_if_generation(
        self, key: str, value: str, ttl: int, gen_key: str, expected: int
    ) -> bool:
        with self.client.pipeline(transaction=True) as pipe:
            try:
                pipe.watch(gen_key)
                current = int(pipe.get(gen_key) or 0)
                if current != expected:
                    pipe.unwatch()
                    return False
                pipe.multi()
                pipe.setex(key, ttl, value)
                pipe.execute()
                return True
            except WatchError:
                # Invalidated between the check and the write
                return False

    def bump_and_delete(self, gen_key: str, key: str, gen_ttl: float) -> None:
        with self.client.pipeline(transaction=True) as pipe:
            pipe.incr(gen_key)
            pipe.expire(gen_key, max(1, math.ceil(gen_ttl)))
            pipe.delete(key)
            pipe.execute()

    def clear(self, prefix: str) -> int:
        removed = 0
        for key in self.client.scan_iter(match=f"{prefix}perms:*"):
            removed += self.client.delete(key)
        return removed


class ResolutionCache:
    """
    Per-user cache of resolved permission sets.

    When disabled every operation is a no-op and every lookup misses.
    """

    def __init__(
        self,
        backend: Optional[CacheBackend] = None,
        *,
        enabled: bool = True,
        ttl: int = 3600,
        prefix: str = "rbac:",
        generation_ttl: Optional[float] = None,
    ):
        """
        Args:
            backend: Key-value store, in-process memory by default
            enabled: False turns every operation into a no-op
            ttl: Lifetime of a cached set in seconds
            prefix: Namespace for every key
            generation_ttl: Lifetime of a generation counter after its last
                bump; must exceed the longest resolution. Defaults to
                ``ttl + GENERATION_GRACE``.
        """
        self.backend = backend or MemoryCacheBackend()
        self.enabled = enabled
        self.ttl = ttl
        self.prefix = prefix
        self.generation_ttl = generation_ttl if generation_ttl is not None else ttl + GENERATION_GRACE
        self.hits = 0
        self.misses = 0
        self.errors = 0

    @classmethod
    def from_settings(cls, settings: RBACSettings) -> "ResolutionCache":
        """Build a cache from settings, using Redis when ``redis_url`` is set."""
        backend: CacheBackend
        if settings.redis_url:
            backend = RedisCacheBackend(url=settings.redis_url, timeout=settings.cache_timeout)
        else:
            backend = MemoryCacheBackend()
        return cls(
            backend,
            enabled=settings.cache_enabled,
            ttl=settings.cache_ttl,
            prefix=settings.cache_prefix,
            # Must outlive any in-flight resolution, whose ancestor walk scales with depth
            generation_ttl=settings.cache_ttl + max(
                GENERATION_GRACE, settings.storage_timeout * (settings.max_hierarchy_depth + 3)
            ),
        )

    def key(self, user_id: str) -> str:
        return f"{self.prefix}perms:{user_id}"

    def gen_key(self, user_id: str) -> str:
        return f"{self.prefix}gen:{user_id}"

    def get(self, user_id: str) -> Optional[ResolvedPermissionSet]:
        """Return a non-expired cached set, or None."""
        if not self.enabled:
            return None
        try:
            raw = self.backend.get(self.key(user_id))
        except Exception as e:
            self.errors += 1
            logger.warning(f"Cache get failed for {user_id} ({self.backend.backend_name}): {e}")
            return None

        if raw is None:
            self.misses += 1
            return None

        try:
            resolved = ResolvedPermissionSet.from_dict(json.loads(raw))
        except (ValueError, KeyError, TypeError) as e:
            logger.warning(f"Discarding unreadable cache entry for {user_id}: {e}")
            self.misses += 1
            return None

        if resolved.is_expired():
            self.misses += 1
            return None

        self.hits += 1
        logger.debug(f"Cache hit for {user_id}")
        return resolved

    def generation(self, user_id: str) -> Optional[int]:
        """Snapshot the user's generation; None means a later put will be skipped."""
        if not self.enabled:
            return None
        try:
            return self.backend.get_generation(self.gen_key(user_id))
        except Exception as e:
            self.errors += 1
            logger.warning(f"Cache generation read failed for {user_id}: {e}")
            return None

    def put(self, resolved: ResolvedPermissionSet, generation: Optional[int] = None) -> bool:
        """
        Store a resolved set.

        Args:
            resolved: The set to cache
            generation: Snapshot from ``generation()`` taken before storage
                was read. The write is dropped if the user was invalidated
                since. None means "no snapshot" and skips the write.

        Returns:
            True if the value was stored
        """
        if not self.enabled or generation is None or self.ttl <= 0:
            return False
        try:
            stored = self.backend.set_if_generation(
                self.key(resolved.user_id),
                json.dumps(resolved.to_dict()),
                self.ttl,
                self.gen_key(resolved.user_id),
                generation,
            )
        except Exception as e:
            self.errors += 1
            logger.warning(f"Cache put failed for {resolved.user_id}: {e}")
            return False

        if not stored:
            logger.debug(f"Dropped stale cache write for {resolved.user_id}")
        return stored

    def invalidate(self, user_id: str) -> None:
        """Discard the user's cached set and fence out in-flight resolutions."""
        if not self.enabled:
            return
        gen_key, key = self.gen_key(user_id), self.key(user_id)
        for attempt in (1, 2):
            try:
                self.backend.bump_and_delete(gen_key, key, self.generation_ttl)
                return
            except Exception as e:
                self.errors += 1
                if attempt == 2:
                    logger.error(
                        f"Cache invalidation failed for {user_id}, "
                        f"entry may be served until its TTL expires: {e}"
                    )
                else:
                    logger.warning(f"Cache invalidation failed for {user_id}, retrying: {e}")

    def invalidate_many(self, user_ids: Iterable[str]) -> int:
        count = 0
        for user_id in set(user_ids):
            self.invalidate(user_id)
            count += 1
        if count:
            logger.debug(f"Invalidated {count} cached resolution(s)")
        return count

    def clear(self) -> int:
        """Drop every cached set under this prefix."""
        if not self.enabled:
            return 0
        try:
            return self.backend.clear(self.prefix)
        except Exception as e:
            self.errors += 1
            logger.warning(f"Cache clear failed: {e}")
            return 0

    @property
    def stats(self) -> Dict[str, Any]:
        total = self.hits + self.misses
        return {
            "backend": self.backend.backend_name,
            "enabled": self.enabled,
            "ttl_seconds": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
            "errors": self.errors,
            "hit_rate": self.hits / total if total else 0.0,
        }
