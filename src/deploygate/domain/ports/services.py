"""Service port interfaces (hexagonal architecture)."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from deploygate.domain.models.job import RunnerJobStatus
from deploygate.domain.models.notification import EmailMessage, InAppMessage


class JobRunner(ABC):
    """Port for the external build server.

    Implementations raise
    :class:`~deploygate.domain.errors.UpstreamUnavailable` when the server
    cannot be reached.
    """

    @abstractmethod
    async def enqueue(self, job_name: str, parameters: dict[str, Any]) -> str:
        """Queue a build and return its queue identifier."""

    @abstractmethod
    async def status(
        self, job_name: str, queue_id: str, build_number: int | None = None
    ) -> RunnerJobStatus:
        """Report queue/build state and the full console log so far."""

    @abstractmethod
    async def cancel(
        self, job_name: str, queue_id: str, build_number: int | None = None
    ) -> None:
        """Cancel a queued item or stop a running build.

        A job that already finished is not an error.
        """


class EmailTransport(ABC):
    """Port for outbound mail."""

    @property
    @abstractmethod
    def is_configured(self) -> bool:
        """Whether the transport has enough configuration to send."""

    @abstractmethod
    async def send(self, message: EmailMessage) -> str:
        """Send a message and return a transport message id."""


class NotificationFeed(ABC):
    """Port for the in-app notification feed."""

    @abstractmethod
    async def push(self, message: InAppMessage) -> str:
        """Store a feed entry for its user and return its id."""

    @abstractmethod
    async def list_for_user(self, user_id: str, limit: int = 20) -> list[InAppMessage]:
        """Most recent unexpired entries for a user."""


class DistributedLock(ABC):
    """Port for distributed locking."""

    @abstractmethod
    async def acquire(self, resource_id: str, ttl_seconds: int = 30) -> bool:
        """Acquire a distributed lock."""

    @abstractmethod
    async def release(self, resource_id: str) -> bool:
        """Release a distributed lock."""


class CacheService(ABC):
    """Port for caching."""

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Get a value from cache."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int = 300) -> None:
        """Set a value in cache."""

    @abstractmethod
    async def delete(self, key: str) -> None:
        """Delete a value from cache."""
