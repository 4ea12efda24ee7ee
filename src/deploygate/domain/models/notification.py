"""Notification delivery models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import Field

from deploygate.domain.models.base import generate_id, utc_now, ValueObject


class DeliveryChannel(str, Enum):
    IN_APP = "in_app"
    EMAIL = "email"


class MessageSeverity(str, Enum):
    INFO = "info"
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class DeliveryRecord(ValueObject):
    """Outcome of one (recipient, channel) delivery attempt."""

    recipient_id: str
    channel: DeliveryChannel
    success: bool
    error: str | None = None
    message_id: str | None = None
    sent_at: datetime = Field(default_factory=utc_now)


class InAppMessage(ValueObject):
    """An entry in a user's in-app notification feed."""

    id: str = Field(default_factory=generate_id)
    user_id: str
    kind: str
    severity: MessageSeverity = MessageSeverity.INFO
    title: str
    body: str
    action_url: str | None = None
    resource_id: str = ""
    created_at: datetime = Field(default_factory=utc_now)
    expires_at: datetime | None = None


class EmailMessage(ValueObject):
    to: str
    subject: str
    body: str
