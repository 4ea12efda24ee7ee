"""In-app notification feeds."""

from __future__ import annotations

import redis.asyncio
import structlog
from redis.exceptions import RedisError

from deploygate.domain.errors import UpstreamUnavailable
from deploygate.domain.models.base import utc_now
from deploygate.domain.models.notification import DeliveryChannel, InAppMessage
from deploygate.domain.ports.services import NotificationFeed
from deploygate.infrastructure.observability.metrics import NOTIFICATION_DELIVERIES_TOTAL


logger = structlog.get_logger(__name__)


def _unexpired(messages: list[InAppMessage]) -> list[InAppMessage]:
    now = utc_now()
    return [m for m in messages if m.expires_at is None or m.expires_at > now]


class InMemoryNotificationFeed(NotificationFeed):
    def __init__(self) -> None:
        self._feeds: dict[str, list[InAppMessage]] = {}

    async def push(self, message: InAppMessage) -> str:
        self._feeds.setdefault(message.user_id, []).append(message)
        NOTIFICATION_DELIVERIES_TOTAL.labels(
            channel=DeliveryChannel.IN_APP.value, result="sent"
        ).inc()
        return message.id

    async def list_for_user(self, user_id: str, limit: int = 20) -> list[InAppMessage]:
        messages = _unexpired(self._feeds.get(user_id, []))
        return list(reversed(messages))[:limit]


class RedisNotificationFeed(NotificationFeed):
    """Per-user feed stored as a capped Redis list, newest first.

    The list's TTL is extended to the furthest message expiry, so an idle
    feed disappears on its own.
    """

    def __init__(
        self,
        client: redis.asyncio.Redis,
        max_entries: int = 200,
        namespace: str = "deploygate",
    ) -> None:
        self._client = client
        self._max_entries = max_entries
        self._namespace = namespace

    def _key(self, user_id: str) -> str:
        return f"{self._namespace}:notifications:{user_id}"

    async def push(self, message: InAppMessage) -> str:
        key = self._key(message.user_id)
        try:
            async with self._client.pipeline(transaction=True) as pipe:
                pipe.lpush(key, message.model_dump_json())
                pipe.ltrim(key, 0, self._max_entries - 1)
                if message.expires_at is not None:
                    ttl = max(1, int((message.expires_at - utc_now()).total_seconds()))
                    pipe.expire(key, ttl, nx=True)
                    pipe.expire(key, ttl, gt=True)
                await pipe.execute()
        except RedisError as exc:
            NOTIFICATION_DELIVERIES_TOTAL.labels(
                channel=DeliveryChannel.IN_APP.value, result="failed"
            ).inc()
            raise UpstreamUnavailable(f"Notification feed unavailable: {exc}") from exc

        NOTIFICATION_DELIVERIES_TOTAL.labels(
            channel=DeliveryChannel.IN_APP.value, result="sent"
        ).inc()
        logger.debug("feed_message_pushed", user_id=message.user_id, kind=message.kind)
        return message.id

    async def list_for_user(self, user_id: str, limit: int = 20) -> list[InAppMessage]:
        try:
            raw = await self._client.lrange(self._key(user_id), 0, self._max_entries - 1)
        except RedisError as exc:
            raise UpstreamUnavailable(f"Notification feed unavailable: {exc}") from exc
        messages = [InAppMessage.model_validate_json(item) for item in raw]
        return _unexpired(messages)[:limit]
