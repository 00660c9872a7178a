"""
Time-boxed memoisation of resolved permission sets.

Features:
- One entry per user id → (EffectivePermissions, computed-at).
- Fixed TTL (5 minutes by default) measured on an injected clock, so
  tests can drive time with a fake.
- Explicit invalidation only: `invalidate(user_id)` / `clear()`.  Any
  code that mutates roles, role permissions, user roles or overrides
  is responsible for calling one of them after it commits.
- A load that overlaps an invalidation is returned to its caller but
  never written back, so a stale result cannot outlive the
  invalidation that should have removed it.

The in-memory reads and writes never await; the only suspension point
is the loader itself.  A plain `threading.Lock` keeps the structure
consistent under both event-loop and thread-per-request servers.

One instance per process, owned by the app (`app.state.permission_cache`).
"""

import logging
import threading
import time
import uuid
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass

from crm_backend.rbac.resolver import EffectivePermissions

logger = logging.getLogger("rbac")

DEFAULT_TTL_SECONDS = 300.0

Clock = Callable[[], float]
Loader = Callable[[], Awaitable[EffectivePermissions]]


@dataclass(frozen=True)
class CacheEntry:
    permissions: EffectivePermissions
    computed_at: float


@dataclass
class CacheStats:
    hits: int = 0
    misses: int = 0
    invalidations: int = 0

    @property
    def hit_rate(self) -> float:
        total = self.hits + self.misses
        if total == 0:
            return 0.0
        return (self.hits / total) * 100


class PermissionCache:
    def __init__(self, ttl_seconds: float = DEFAULT_TTL_SECONDS, clock: Clock = time.monotonic):
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")
        self._ttl = ttl_seconds
        self._clock = clock
        self._entries: dict[uuid.UUID, CacheEntry] = {}
        self._epoch = 0
        self._lock = threading.Lock()
        self.stats = CacheStats()

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, user_id: uuid.UUID) -> EffectivePermissions | None:
        """Fresh cached set, or None if absent / expired."""
        with self._lock:
            entry = self._entries.get(user_id)
            if entry is None:
                self.stats.misses += 1
                return None
            if self._clock() - entry.computed_at >= self._ttl:
                del self._entries[user_id]
                self.stats.misses += 1
                return None
            self.stats.hits += 1
            return entry.permissions

    def set(self, user_id: uuid.UUID, permissions: EffectivePermissions) -> None:
        with self._lock:
            self._entries[user_id] = CacheEntry(permissions, self._clock())

    async def get_or_load(self, user_id: uuid.UUID, loader: Loader) -> EffectivePermissions:
        """Return the cached set, or await `loader()` and remember its result.

        Loader exceptions propagate and leave the cache untouched.
        """
        cached = self.get(user_id)
        if cached is not None:
            return cached

        with self._lock:
            epoch = self._epoch

        permissions = await loader()

        with self._lock:
            if self._epoch == epoch:
                self._entries[user_id] = CacheEntry(permissions, self._clock())
            else:
                logger.debug("Discarding permission load for user %s (invalidated mid-flight)", user_id)
        return permissions

    def invalidate(self, user_id: uuid.UUID) -> None:
        with self._lock:
            self._entries.pop(user_id, None)
            self._epoch += 1
            self.stats.invalidations += 1
        logger.debug("Permission cache invalidated for user %s", user_id)

    def invalidate_many(self, user_ids: Iterable[uuid.UUID]) -> None:
        for user_id in set(user_ids):
            self.invalidate(user_id)

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()
            self._epoch += 1
            self.stats.invalidations += 1
        logger.debug("Permission cache cleared")
