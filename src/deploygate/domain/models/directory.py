"""Read-only directory records consulted when addressing notifications."""

from __future__ import annotations

from deploygate.domain.models.base import DomainEntity


class User(DomainEntity):
    """A person who can author, approve or be notified about deployments."""

    username: str
    display_name: str = ""
    email: str | None = None
    is_active: bool = True

    @property
    def label(self) -> str:
        return self.display_name or self.username

    @property
    def has_usable_email(self) -> bool:
        return self.is_active and bool(self.email) and "@" in (self.email or "")


class Project(DomainEntity):
    """A project groups deployments; its owner hears about all of them."""

    name: str
    owner_id: str
    description: str = ""
