"""Unit tests for cache and lock implementations."""

from __future__ import annotations

from typing import Any

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from deploygate.config import RedisSettings
from deploygate.domain.errors import UpstreamUnavailable
from deploygate.infrastructure.cache.local import LocalCacheService, LocalDistributedLock
from deploygate.infrastructure.cache.redis_cache import (
    create_redis_client,
    RedisCacheService,
    RedisDistributedLock,
)


class FakeRedis:
    """Just enough of the asyncio Redis client for the cache and lock."""

    def __init__(self, down: bool = False) -> None:
        self.data: dict[str, Any] = {}
        self.ttls: dict[str, int] = {}
        self.down = down

    def _check(self) -> None:
        if self.down:
            raise RedisConnectionError("connection refused")

    async def get(self, key: str) -> Any:
        self._check()
        return self.data.get(key)

    async def setex(self, key: str, ttl: int, value: Any) -> None:
        self._check()
        self.data[key] = value.encode() if isinstance(value, str) else value
        self.ttls[key] = ttl

    async def set(self, key: str, value: Any, nx: bool = False, ex: int | None = None) -> bool:
        self._check()
        if nx and key in self.data:
            return False
        self.data[key] = value.encode()
        if ex is not None:
            self.ttls[key] = ex
        return True

    async def delete(self, key: str) -> int:
        self._check()
        return 1 if self.data.pop(key, None) is not None else 0

    async def eval(self, script: str, numkeys: int, key: str, value: str) -> int:
        self._check()
        if self.data.get(key) == value.encode():
            del self.data[key]
            return 1
        return 0


class TestLocalDistributedLock:
    @pytest.mark.asyncio
    async def test_exclusive_until_released(self) -> None:
        lock = LocalDistributedLock()
        assert await lock.acquire("deployment:1")
        assert not await lock.acquire("deployment:1")
        assert lock.is_locked("deployment:1")

        assert await lock.release("deployment:1")
        assert not lock.is_locked("deployment:1")
        assert await lock.acquire("deployment:1")

    @pytest.mark.asyncio
    async def test_expired_lock_can_be_taken(self) -> None:
        lock = LocalDistributedLock()
        assert await lock.acquire("deployment:1", ttl_seconds=0)
        assert await lock.acquire("deployment:1")

    @pytest.mark.asyncio
    async def test_release_unknown(self) -> None:
        assert not await LocalDistributedLock().release("nothing")


class TestLocalCacheService:
    @pytest.mark.asyncio
    async def test_set_get_delete(self) -> None:
        cache = LocalCacheService()
        await cache.set("project:1:owner", "bob")
        assert await cache.get("project:1:owner") == "bob"
        await cache.delete("project:1:owner")
        assert await cache.get("project:1:owner") is None

    @pytest.mark.asyncio
    async def test_expiry(self) -> None:
        cache = LocalCacheService()
        await cache.set("key", "value", ttl_seconds=0)
        assert await cache.get("key") is None


class TestRedisCacheService:
    @pytest.mark.asyncio
    async def test_namespaced_json_values(self) -> None:
        client = FakeRedis()
        cache = RedisCacheService(client)  # type: ignore[arg-type]

        await cache.set("ids", ["a", "b"], ttl_seconds=60)
        await cache.set("owner", "bob")

        assert client.ttls["deploygate:cache:ids"] == 60
        assert await cache.get("ids") == ["a", "b"]
        assert await cache.get("owner") == "bob"
        assert await cache.get("missing") is None

    @pytest.mark.asyncio
    async def test_unavailable(self) -> None:
        cache = RedisCacheService(FakeRedis(down=True))  # type: ignore[arg-type]
        with pytest.raises(UpstreamUnavailable):
            await cache.get("owner")
        with pytest.raises(UpstreamUnavailable):
            await cache.set("owner", "bob")


class TestRedisDistributedLock:
    @pytest.mark.asyncio
    async def test_acquire_and_release(self) -> None:
        client = FakeRedis()
        lock = RedisDistributedLock(client)  # type: ignore[arg-type]

        assert await lock.acquire("deployment:1:approvals", ttl_seconds=10)
        assert client.ttls["deploygate:lock:deployment:1:approvals"] == 10
        assert not await RedisDistributedLock(client).acquire(  # type: ignore[arg-type]
            "deployment:1:approvals"
        )

        assert await lock.release("deployment:1:approvals")
        assert "deploygate:lock:deployment:1:approvals" not in client.data

    @pytest.mark.asyncio
    async def test_release_of_foreign_lock(self) -> None:
        client = FakeRedis()
        holder = RedisDistributedLock(client)  # type: ignore[arg-type]
        other = RedisDistributedLock(client)  # type: ignore[arg-type]
        await holder.acquire("r")

        assert not await other.release("r")
        assert "deploygate:lock:r" in client.data

    @pytest.mark.asyncio
    async def test_lock_takeover_after_expiry_is_not_released(self) -> None:
        client = FakeRedis()
        lock = RedisDistributedLock(client)  # type: ignore[arg-type]
        await lock.acquire("r")
        client.data["deploygate:lock:r"] = b"someone-else"

        assert not await lock.release("r")
        assert client.data["deploygate:lock:r"] == b"someone-else"

    @pytest.mark.asyncio
    async def test_acquire_when_unavailable(self) -> None:
        lock = RedisDistributedLock(FakeRedis(down=True))  # type: ignore[arg-type]
        with pytest.raises(UpstreamUnavailable):
            await lock.acquire("r")


def test_client_factory_uses_settings() -> None:
    client = create_redis_client(RedisSettings(host="cache.internal", port=6380, db=2))
    kwargs = client.connection_pool.connection_kwargs
    assert kwargs["host"] == "cache.internal"
    assert kwargs["port"] == 6380
    assert kwargs["db"] == 2
