"""TTL cache for rendered relationship context."""

from __future__ import annotations

import time
from collections import OrderedDict
from threading import Lock
from typing import Any, Callable

from .models import Scope


class ContextCache:
    """
    TTL + LRU cache of context strings keyed by (user, character).

    Features:
    - TTL: entries expire after ``ttl_seconds``
    - LRU: the least recently used entry is evicted past ``maxsize``
    - Explicit invalidation per scope (write-through on every interaction)
    - Per-scope generation so a rebuild that raced an invalidation is dropped
    - Hit/miss statistics
    """

    def __init__(
        self,
        maxsize: int = 1000,
        ttl_seconds: float = 300,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Args:
            maxsize: Maximum number of entries
            ttl_seconds: Entry lifetime in seconds
            clock: Time source, injectable for tests
        """
        self._maxsize = maxsize
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._cache: OrderedDict[tuple[str, str], tuple[str, float]] = OrderedDict()
        self._generations: dict[tuple[str, str], int] = {}
        self._lock = Lock()
        self._stats = {
            "hits": 0,
            "misses": 0,
            "evictions": 0,
            "expirations": 0,
            "invalidations": 0,
            "stale_writes": 0,
        }

    def _is_expired(self, timestamp: float) -> bool:
        return self._clock() - timestamp > self._ttl_seconds

    def _evict_expired(self) -> None:
        """Drop expired entries (caller holds the lock)."""
        expired_keys = [
            key for key, (_, timestamp) in self._cache.items() if self._is_expired(timestamp)
        ]
        for key in expired_keys:
            del self._cache[key]
            self._stats["expirations"] += 1

    def _evict_lru(self) -> None:
        """Make room for one entry (caller holds the lock)."""
        while len(self._cache) >= self._maxsize:
            self._cache.popitem(last=False)
            self._stats["evictions"] += 1

    def get(self, scope: Scope) -> str | None:
        key = scope.pair

        with self._lock:
            if key not in self._cache:
                self._stats["misses"] += 1
                return None

            value, timestamp = self._cache[key]
            if self._is_expired(timestamp):
                del self._cache[key]
                self._stats["expirations"] += 1
                self._stats["misses"] += 1
                return None

            self._cache.move_to_end(key)
            self._stats["hits"] += 1
            return value

    def generation(self, scope: Scope) -> int:
        """Invalidation count for ``scope``; read it before building a value."""
        with self._lock:
            return self._generations.get(scope.pair, 0)

    def set(self, scope: Scope, value: str, generation: int | None = None) -> bool:
        """Store ``value`` for ``scope``.

        With ``generation`` given, the value is dropped if ``scope`` was
        invalidated since that generation was read. Returns whether it was
        stored.
        """
        key = scope.pair

        with self._lock:
            if generation is not None and self._generations.get(key, 0) != generation:
                self._stats["stale_writes"] += 1
                return False
            self._evict_expired()
            if key not in self._cache:
                self._evict_lru()
            self._cache[key] = (value, self._clock())
            self._cache.move_to_end(key)
            return True

    def invalidate(self, scope: Scope) -> bool:
        """Drop the entry for ``scope``. Returns whether one existed.

        Always advances the generation, so an in-flight rebuild started
        before this call is not cached.
        """
        key = scope.pair
        with self._lock:
            self._generations[key] = self._generations.get(key, 0) + 1
            if key in self._cache:
                del self._cache[key]
                self._stats["invalidations"] += 1
                return True
            return False

    def clear(self) -> int:
        with self._lock:
            count = len(self._cache)
            self._cache.clear()
            return count

    def get_stats(self) -> dict[str, Any]:
        with self._lock:
            total = self._stats["hits"] + self._stats["misses"]
            hit_rate = self._stats["hits"] / total if total > 0 else 0

            return {
                **self._stats,
                "hit_rate": f"{hit_rate:.1%}",
                "size": len(self._cache),
                "maxsize": self._maxsize,
                "ttl_seconds": self._ttl_seconds,
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._cache)

    def __contains__(self, scope: Scope) -> bool:
        return self.get(scope) is not None
