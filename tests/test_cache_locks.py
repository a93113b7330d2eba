"""Tests for ContextCache and KeyedLocks."""

from __future__ import annotations

import asyncio

import pytest

from companion_core.cache import ContextCache
from companion_core.locks import KeyedLocks
from companion_core.models import Scope

A = Scope.of("u1", "c1")
B = Scope.of("u2", "c1")


class TestContextCache:
    def test_set_get_and_stats(self):
        cache = ContextCache()
        assert cache.get(A) is None
        cache.set(A, "ctx")
        assert cache.get(A) == "ctx"

        stats = cache.get_stats()
        assert stats["hits"] == 1
        assert stats["misses"] == 1
        assert stats["size"] == 1

    def test_ttl_expiry(self):
        now = [0.0]
        cache = ContextCache(ttl_seconds=10, clock=lambda: now[0])
        cache.set(A, "ctx")
        now[0] = 10.5
        assert cache.get(A) is None
        assert cache.get_stats()["expirations"] == 1

    def test_lru_eviction(self):
        cache = ContextCache(maxsize=2)
        cache.set(A, "a")
        cache.set(B, "b")
        cache.get(A)  # A becomes most recent
        cache.set(Scope.of("u3", "c1"), "c")

        assert A in cache
        assert B not in cache
        assert cache.get_stats()["evictions"] == 1

    def test_invalidate_and_clear(self):
        cache = ContextCache()
        cache.set(A, "a")
        cache.set(B, "b")
        assert cache.invalidate(A) is True
        assert cache.invalidate(A) is False
        assert cache.clear() == 1
        assert len(cache) == 0


class TestKeyedLocks:
    @pytest.mark.asyncio
    async def test_same_key_is_serialized(self):
        locks = KeyedLocks()
        active = 0
        peak = 0

        async def worker():
            nonlocal active, peak
            async with locks.acquire(A):
                active += 1
                peak = max(peak, active)
                await asyncio.sleep(0.01)
                active -= 1

        await asyncio.gather(*(worker() for _ in range(5)))
        assert peak == 1

    @pytest.mark.asyncio
    async def test_different_keys_run_concurrently(self):
        locks = KeyedLocks()
        both_inside = asyncio.Event()
        inside = 0

        async def worker(scope):
            nonlocal inside
            async with locks.acquire(scope):
                inside += 1
                if inside == 2:
                    both_inside.set()
                await asyncio.wait_for(both_inside.wait(), timeout=1.0)

        await asyncio.gather(worker(A), worker(B))
        assert both_inside.is_set()

    @pytest.mark.asyncio
    async def test_locks_are_released_after_use(self):
        locks = KeyedLocks()
        async with locks.acquire(A):
            assert locks.locked(A)
            assert len(locks) == 1
        assert not locks.locked(A)
        assert len(locks) == 0

    @pytest.mark.asyncio
    async def test_lock_released_on_error(self):
        locks = KeyedLocks()
        with pytest.raises(RuntimeError):
            async with locks.acquire(A):
                raise RuntimeError("fail")
        assert len(locks) == 0
        async with locks.acquire(A):
            pass


class TestScopeIdentity:
    """Ids containing ':' must not share cache entries or locks."""

    LEFT = Scope.of("a:b", "c")
    RIGHT = Scope.of("a", "b:c")

    def test_cache_keeps_colliding_display_keys_apart(self):
        assert self.LEFT.key == self.RIGHT.key
        cache = ContextCache()
        cache.set(self.LEFT, "left")

        assert cache.get(self.RIGHT) is None
        cache.set(self.RIGHT, "right")
        assert cache.get(self.LEFT) == "left"
        assert len(cache) == 2

    @pytest.mark.asyncio
    async def test_locks_keep_colliding_display_keys_apart(self):
        locks = KeyedLocks()
        async with locks.acquire(self.LEFT):
            assert locks.locked(self.LEFT)
            assert not locks.locked(self.RIGHT)
            async with locks.acquire(self.RIGHT):
                assert len(locks) == 2


class TestCacheGeneration:
    def test_set_after_invalidate_is_dropped(self):
        cache = ContextCache()
        generation = cache.generation(A)
        cache.invalidate(A)

        assert cache.set(A, "stale", generation=generation) is False
        assert cache.get(A) is None
        assert cache.get_stats()["stale_writes"] == 1

    def test_set_with_current_generation(self):
        cache = ContextCache()
        cache.invalidate(A)
        assert cache.set(A, "fresh", generation=cache.generation(A)) is True
        assert cache.get(A) == "fresh"

    def test_generation_is_per_scope(self):
        cache = ContextCache()
        generation = cache.generation(A)
        cache.invalidate(B)
        assert cache.set(A, "a", generation=generation) is True
