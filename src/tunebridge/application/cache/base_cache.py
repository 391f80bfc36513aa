"""Key/value cache contract and the in-process backend.

Hey future me - ConversionCache only ever talks to BaseCache[str, str], so a
shared backend (Redis, memcached) is one subclass away. Entries either carry
a deadline or live until overwritten:

    ttl_seconds=86400  → gone after a day (matched tracks)
    ttl_seconds=None   → kept until set()/delete() (snapshot marker, playlist result)

Deadlines use time.monotonic(), so wall-clock jumps never expire or
resurrect entries.
"""

import asyncio
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, TypeVar

K = TypeVar("K")
V = TypeVar("V")


@dataclass
class CacheEntry[V]:
    """Stored value plus its monotonic deadline (None = no deadline)."""

    value: V
    expires_at: float | None = None

    @classmethod
    def create(cls, value: V, ttl_seconds: int | None) -> "CacheEntry[V]":
        deadline = None if ttl_seconds is None else time.monotonic() + ttl_seconds
        return cls(value=value, expires_at=deadline)

    @property
    def persistent(self) -> bool:
        return self.expires_at is None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return (now if now is not None else time.monotonic()) >= self.expires_at


class BaseCache[K, V](ABC):
    """Async cache interface."""

    @abstractmethod
    async def get(self, key: K) -> V | None:
        """Value for key, or None if missing or expired."""

    @abstractmethod
    async def set(self, key: K, value: V, ttl_seconds: int | None = None) -> None:
        """Store value, replacing any previous entry and its deadline."""

    @abstractmethod
    async def delete(self, key: K) -> bool:
        """Remove key. True if something was removed."""

    @abstractmethod
    async def clear(self) -> None:
        """Drop every entry."""

    async def exists(self, key: K) -> bool:
        return await self.get(key) is not None


class InMemoryCache(BaseCache[K, V]):
    """Dict-backed cache for a single process.

    Nothing survives a restart. For follows that means the next sync pass
    sees every playlist as never converted and sends no notifications.
    """

    def __init__(self) -> None:
        self._entries: dict[K, CacheEntry[V]] = {}
        # get() evicts on read, so reads mutate too.
        self._lock = asyncio.Lock()

    async def get(self, key: K) -> V | None:
        async with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return None
            if entry.is_expired():
                del self._entries[key]
                return None
            return entry.value

    async def set(self, key: K, value: V, ttl_seconds: int | None = None) -> None:
        async with self._lock:
            self._entries[key] = CacheEntry.create(value, ttl_seconds)

    async def delete(self, key: K) -> bool:
        async with self._lock:
            return self._entries.pop(key, None) is not None

    async def clear(self) -> None:
        async with self._lock:
            self._entries.clear()

    async def cleanup_expired(self) -> int:
        """Evict every expired entry; returns how many were dropped."""
        async with self._lock:
            now = time.monotonic()
            stale = [key for key, entry in self._entries.items() if entry.is_expired(now)]
            for key in stale:
                del self._entries[key]
            return len(stale)

    def get_stats(self) -> dict[str, Any]:
        # Lock-free snapshot, counts can be off by a concurrent write.
        now = time.monotonic()
        entries = list(self._entries.values())
        expired = sum(1 for entry in entries if entry.is_expired(now))
        return {
            "total_entries": len(entries),
            "active_entries": len(entries) - expired,
            "expired_entries": expired,
            "persistent_entries": sum(1 for entry in entries if entry.persistent),
        }
