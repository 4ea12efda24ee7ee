"""Base domain model classes."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Any, TypeVar

from pydantic import BaseModel, Field, PrivateAttr


def generate_id() -> str:
    """Generate a unique identifier."""
    return str(uuid.uuid4())


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(timezone.utc)


_EntityT = TypeVar("_EntityT", bound="DomainEntity")


class DomainEntity(BaseModel):
    """Base class for all domain entities.

    ``revision`` is bumped on every mutation and is what repositories
    compare against when applying a compare-and-swap update.
    """

    id: str = Field(default_factory=generate_id)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)
    revision: int = Field(default=1)

    def touch(self) -> None:
        """Update the timestamp and increment the revision."""
        self.updated_at = utc_now()
        self.revision += 1

    def clone(self: _EntityT) -> _EntityT:
        """Return a detached deep copy (what a repository hands out)."""
        return self.model_copy(deep=True)

    model_config = {"frozen": False, "validate_assignment": True}


class ValueObject(BaseModel):
    """Base class for value objects (immutable)."""

    model_config = {"frozen": True}


class AggregateRoot(DomainEntity):
    """Base class for aggregate roots that emit domain events."""

    _domain_events: list[Any] = PrivateAttr(default_factory=list)

    def add_event(self, event: Any) -> None:
        """Register a domain event."""
        self._domain_events.append(event)

    def collect_events(self) -> list[Any]:
        """Collect and clear all pending domain events."""
        events = list(self._domain_events)
        self._domain_events.clear()
        return events

    @property
    def pending_events(self) -> list[Any]:
        """Get pending domain events without clearing."""
        return list(self._domain_events)

    def clone(self: _EntityT) -> _EntityT:
        copy = self.model_copy(deep=True)
        copy._domain_events = []  # type: ignore[attr-defined]
        return copy
