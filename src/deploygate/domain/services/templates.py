"""Notification templates keyed by event kind."""

from __future__ import annotations

import string
from datetime import timedelta

from pydantic import Field

from deploygate.domain.errors import ConfigurationError
from deploygate.domain.events.notification_events import EVENT_TYPES, EventKind
from deploygate.domain.models.base import ValueObject
from deploygate.domain.models.notification import DeliveryChannel, MessageSeverity


_formatter = string.Formatter()


class NotificationTemplate(ValueObject):
    """Title/body pair rendered with ``str.format`` against an event's fields."""

    kind: EventKind
    title: str
    body: str
    severity: MessageSeverity = MessageSeverity.INFO
    channels: tuple[DeliveryChannel, ...] = (DeliveryChannel.IN_APP, DeliveryChannel.EMAIL)
    expires_after: timedelta = Field(default=timedelta(days=7))
    action_path: str = ""

    def placeholders(self) -> set[str]:
        names: set[str] = set()
        for text in (self.title, self.body, self.action_path):
            for _, field_name, _, _ in _formatter.parse(text):
                if field_name:
                    names.add(field_name.split(".")[0].split("[")[0])
        return names

    def render(self, fields: dict[str, object]) -> tuple[str, str]:
        return self.title.format(**fields), self.body.format(**fields)

    def action_url(self, fields: dict[str, object], base_url: str = "") -> str | None:
        if not self.action_path:
            return None
        return f"{base_url.rstrip('/')}{self.action_path.format(**fields)}"


_BOTH = (DeliveryChannel.IN_APP, DeliveryChannel.EMAIL)
_IN_APP = (DeliveryChannel.IN_APP,)

DEFAULT_TEMPLATES: tuple[NotificationTemplate, ...] = (
    NotificationTemplate(
        kind=EventKind.DEPLOYMENT_STARTED,
        title="Deployment started: {resource_name}",
        body=(
            "{acting_user_name} started deployment {resource_name} to {environment} "
            "(attempt {attempt}, {job_count} job(s)) at {occurred_at}."
        ),
        severity=MessageSeverity.INFO,
        channels=_BOTH,
        expires_after=timedelta(hours=24),
        action_path="/cicd/deployments/{deployment_id}",
    ),
    NotificationTemplate(
        kind=EventKind.DEPLOYMENT_COMPLETED,
        title="Deployment completed: {resource_name}",
        body=(
            "Deployment {resource_name} to {environment} finished successfully "
            "(attempt {attempt}) at {occurred_at}."
        ),
        severity=MessageSeverity.SUCCESS,
        channels=_BOTH,
        expires_after=timedelta(days=7),
        action_path="/cicd/deployments/{deployment_id}",
    ),
    NotificationTemplate(
        kind=EventKind.DEPLOYMENT_FAILED,
        title="Deployment failed: {resource_name}",
        body=(
            "Deployment {resource_name} to {environment} failed "
            "(attempt {attempt}) at {occurred_at}: {error}"
        ),
        severity=MessageSeverity.ERROR,
        channels=_BOTH,
        expires_after=timedelta(days=7),
        action_path="/cicd/deployments/{deployment_id}",
    ),
    NotificationTemplate(
        kind=EventKind.APPROVAL_REQUESTED,
        title="Approval requested: {resource_name}",
        body=(
            "{acting_user_name} requested your level {level} approval for "
            "deployment {resource_name} to {environment}."
        ),
        severity=MessageSeverity.WARNING,
        channels=_BOTH,
        expires_after=timedelta(days=3),
        action_path="/cicd/approvals/{resource_id}",
    ),
    NotificationTemplate(
        kind=EventKind.APPROVAL_APPROVED,
        title="Deployment approved: {resource_name}",
        body=(
            "Deployment {resource_name} to {environment} was approved by "
            "{acting_user_name}. {comment}"
        ),
        severity=MessageSeverity.SUCCESS,
        channels=_BOTH,
        expires_after=timedelta(days=7),
        action_path="/cicd/deployments/{deployment_id}",
    ),
    NotificationTemplate(
        kind=EventKind.APPROVAL_REJECTED,
        title="Deployment rejected: {resource_name}",
        body=(
            "Deployment {resource_name} to {environment} was rejected by "
            "{acting_user_name}. {comment}"
        ),
        severity=MessageSeverity.ERROR,
        channels=_BOTH,
        expires_after=timedelta(days=7),
        action_path="/cicd/deployments/{deployment_id}",
    ),
    NotificationTemplate(
        kind=EventKind.TASK_SCHEDULED,
        title="Deployment scheduled: {resource_name}",
        body="Deployment {resource_name} is scheduled to start at {scheduled_at}.",
        severity=MessageSeverity.INFO,
        channels=_IN_APP,
        expires_after=timedelta(hours=24),
        action_path="/cicd/tasks/{deployment_id}",
    ),
    NotificationTemplate(
        kind=EventKind.TASK_EXECUTED,
        title="Scheduled deployment started: {resource_name}",
        body="The scheduled start of deployment {resource_name} ran at {occurred_at}.",
        severity=MessageSeverity.INFO,
        channels=_IN_APP,
        expires_after=timedelta(hours=24),
        action_path="/cicd/tasks/{deployment_id}",
    ),
    NotificationTemplate(
        kind=EventKind.TASK_FAILED,
        title="Scheduled deployment failed: {resource_name}",
        body="The scheduled start of deployment {resource_name} failed: {error}",
        severity=MessageSeverity.ERROR,
        channels=_BOTH,
        expires_after=timedelta(days=7),
        action_path="/cicd/tasks/{deployment_id}",
    ),
)


def check_templates(templates: dict[EventKind, NotificationTemplate]) -> None:
    """Fail fast if a template references a field its event does not carry."""
    for kind, template in templates.items():
        event_type = EVENT_TYPES.get(kind)
        if event_type is None:
            raise ConfigurationError(f"No event model for template kind {kind.value}")
        missing = template.placeholders() - set(event_type.model_fields)
        if missing:
            raise ConfigurationError(
                f"Template {kind.value} references unknown fields: {sorted(missing)}"
            )


def default_templates() -> dict[EventKind, NotificationTemplate]:
    return {template.kind: template for template in DEFAULT_TEMPLATES}
