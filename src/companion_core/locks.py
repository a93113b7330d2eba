"""Per-scope asyncio locks."""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator

from .models import Scope


class KeyedLocks:
    """
    Registry of asyncio locks keyed by (user, character) scope.

    Features:
    - Single writer per key: tasks for the same scope run one at a time
    - Independent keys never wait on each other
    - Locks are dropped once no task holds or awaits them
    """

    def __init__(self, name: str = "scope"):
        self.name = name
        self._locks: dict[tuple[str, str], asyncio.Lock] = {}
        self._users: dict[tuple[str, str], int] = {}

    @asynccontextmanager
    async def acquire(self, scope: Scope) -> AsyncIterator[None]:
        """Hold the lock for ``scope`` for the duration of the block."""
        key = scope.pair
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def locked(self, scope: Scope) -> bool:
        lock = self._locks.get(scope.pair)
        return lock is not None and lock.locked()

    def clear(self) -> int:
        """Forget idle locks. Returns how many were dropped."""
        idle = [key for key in self._locks if self._users.get(key, 0) == 0]
        for key in idle:
            del self._locks[key]
        return len(idle)

    def __len__(self) -> int:
        return len(self._locks)
