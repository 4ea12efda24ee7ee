"""Redis cache and distributed lock implementations."""

from __future__ import annotations

import json
import uuid
from typing import Any

import redis.asyncio
import structlog
from redis.exceptions import RedisError

from deploygate.config import RedisSettings
from deploygate.domain.errors import UpstreamUnavailable
from deploygate.domain.ports.services import CacheService, DistributedLock


logger = structlog.get_logger(__name__)

# Atomic check-and-delete so a lock is only released by its holder
_RELEASE_SCRIPT = """
if redis.call("get", KEYS[1]) == ARGV[1] then
    return redis.call("del", KEYS[1])
else
    return 0
end
"""


class RedisCacheService(CacheService):
    """Redis implementation of CacheService."""

    def __init__(self, client: redis.asyncio.Redis, namespace: str = "deploygate") -> None:
        self._client = client
        self._namespace = namespace

    def _key(self, key: str) -> str:
        return f"{self._namespace}:cache:{key}"

    async def get(self, key: str) -> Any | None:
        try:
            value = await self._client.get(self._key(key))
        except RedisError as exc:
            raise UpstreamUnavailable(f"Cache read failed: {exc}") from exc
        if value is None:
            return None
        try:
            return json.loads(value)
        except (json.JSONDecodeError, TypeError):
            return value.decode("utf-8") if isinstance(value, bytes) else value

    async def set(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        serialized = json.dumps(value) if not isinstance(value, str) else value
        try:
            await self._client.setex(self._key(key), ttl_seconds, serialized)
        except RedisError as exc:
            raise UpstreamUnavailable(f"Cache write failed: {exc}") from exc

    async def delete(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as exc:
            raise UpstreamUnavailable(f"Cache delete failed: {exc}") from exc


class RedisDistributedLock(DistributedLock):
    """Redis implementation of distributed locking using SETNX."""

    def __init__(self, client: redis.asyncio.Redis, namespace: str = "deploygate") -> None:
        self._client = client
        self._namespace = namespace
        self._lock_values: dict[str, str] = {}

    def _key(self, resource_id: str) -> str:
        return f"{self._namespace}:lock:{resource_id}"

    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        lock_value = str(uuid.uuid4())
        try:
            acquired = await self._client.set(
                self._key(resource_id), lock_value, nx=True, ex=ttl_seconds
            )
        except RedisError as exc:
            raise UpstreamUnavailable(f"Lock service unavailable: {exc}") from exc
        if acquired:
            self._lock_values[resource_id] = lock_value
            logger.debug("lock_acquired", resource_id=resource_id, ttl=ttl_seconds)
            return True

        logger.debug("lock_not_acquired", resource_id=resource_id)
        return False

    async def release(self, resource_id: str) -> bool:
        lock_value = self._lock_values.pop(resource_id, None)
        if lock_value is None:
            return False
        try:
            result = await self._client.eval(
                _RELEASE_SCRIPT, 1, self._key(resource_id), lock_value
            )
        except RedisError as exc:
            # The key expires on its own after the TTL.
            logger.warning("lock_release_failed", resource_id=resource_id, error=str(exc))
            return False
        if result:
            logger.debug("lock_released", resource_id=resource_id)
            return True
        return False


def create_redis_client(settings: RedisSettings) -> redis.asyncio.Redis:
    """Factory function to create a Redis client."""
    return redis.asyncio.Redis.from_url(
        settings.url,
        decode_responses=False,
        socket_timeout=5.0,
        socket_connect_timeout=5.0,
        retry_on_timeout=True,
    )
