"""Per-entity advisory locks.

Hey future me - "check snapshot → reconvert → write snapshot" is a
read-modify-write on the cache. Two sync tasks for the same playlist running
at once would both see CHANGED, both reconvert and both insert notifications.
hold(key) serializes them inside this process. Different keys never block
each other.

Locks are created on first use and dropped when nobody holds or waits on
them, so the dict doesn't grow with every playlist ever converted.
"""

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class EntityLockRegistry:
    """asyncio.Lock per entity key with reference counting."""

    def __init__(self) -> None:
        self._locks: dict[str, asyncio.Lock] = {}
        self._users: dict[str, int] = {}

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.setdefault(key, asyncio.Lock())
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if self._users[key] == 0:
                del self._users[key]
                del self._locks[key]

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    def __len__(self) -> int:
        return len(self._locks)
