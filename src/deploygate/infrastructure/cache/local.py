"""Process-local cache and lock for single-instance deployments and tests."""

from __future__ import annotations

import time
from typing import Any

from deploygate.domain.ports.services import CacheService, DistributedLock


class LocalDistributedLock(DistributedLock):
    """Lock table shared by every caller holding this instance.

    Entries expire after their TTL like their Redis counterparts.
    """

    def __init__(self) -> None:
        self._held: dict[str, float] = {}

    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        now = time.monotonic()
        expires_at = self._held.get(resource_id)
        if expires_at is not None and expires_at > now:
            return False
        self._held[resource_id] = now + ttl_seconds
        return True

    async def release(self, resource_id: str) -> bool:
        return self._held.pop(resource_id, None) is not None

    def is_locked(self, resource_id: str) -> bool:
        expires_at = self._held.get(resource_id)
        return expires_at is not None and expires_at > time.monotonic()


class LocalCacheService(CacheService):
    def __init__(self) -> None:
        self._entries: dict[str, tuple[float, Any]] = {}

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if expires_at <= time.monotonic():
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        self._entries[key] = (time.monotonic() + ttl_seconds, value)

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)
