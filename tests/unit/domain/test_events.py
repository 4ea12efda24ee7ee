"""Unit tests for notification events and templates."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from pydantic import TypeAdapter
from pydantic import ValidationError as SchemaValidationError

from deploygate.domain.errors import ConfigurationError
from deploygate.domain.events.notification_events import (
    DeploymentFailed,
    EVENT_TYPES,
    EventKind,
    NotificationEvent,
    ResourceType,
    TaskScheduled,
)
from deploygate.domain.models.notification import DeliveryChannel, MessageSeverity
from deploygate.domain.services.templates import (
    check_templates,
    default_templates,
    NotificationTemplate,
)


def _failed() -> DeploymentFailed:
    return DeploymentFailed(
        resource_id="d-1",
        resource_name="payments-api",
        deployment_id="d-1",
        acting_user_id="alice",
        acting_user_name="Alice",
        environment="prod",
        attempt=2,
        error="Job(s) did not succeed: deploy-api#7",
        occurred_at=datetime(2026, 3, 1, 12, 30, tzinfo=timezone.utc),
    )


class TestEvents:
    def test_every_kind_has_a_model(self) -> None:
        assert set(EVENT_TYPES) == set(EventKind)
        for kind, event_type in EVENT_TYPES.items():
            assert event_type.model_fields["kind"].default == kind.value

    def test_resource_type_defaults(self) -> None:
        event = _failed()
        assert event.kind == "deployment_failed"
        assert event.resource_type == ResourceType.DEPLOYMENT

    def test_discriminated_union(self) -> None:
        adapter = TypeAdapter(NotificationEvent)
        payload = _failed().model_dump(mode="json")
        parsed = adapter.validate_python(payload)
        assert isinstance(parsed, DeploymentFailed)
        assert parsed.error == _failed().error

    def test_template_fields(self) -> None:
        fields = _failed().template_fields()
        assert fields["occurred_at"] == "2026-03-01 12:30:00 UTC"
        assert fields["resource_type"] == "deployment"
        assert "addressees" not in fields

    def test_events_are_immutable(self) -> None:
        event = _failed()
        with pytest.raises(SchemaValidationError):
            event.error = "other"  # type: ignore[misc]


class TestTemplates:
    def test_default_matrix_covers_every_kind(self) -> None:
        templates = default_templates()
        assert set(templates) == set(EventKind)
        check_templates(templates)

    def test_task_scheduled_is_in_app_only(self) -> None:
        template = default_templates()[EventKind.TASK_SCHEDULED]
        assert template.channels == (DeliveryChannel.IN_APP,)
        assert template.expires_after == timedelta(hours=24)

    def test_approval_requested_expiry(self) -> None:
        template = default_templates()[EventKind.APPROVAL_REQUESTED]
        assert template.expires_after == timedelta(days=3)
        assert DeliveryChannel.EMAIL in template.channels

    def test_render(self) -> None:
        template = default_templates()[EventKind.DEPLOYMENT_FAILED]
        title, body = template.render(_failed().template_fields())
        assert title == "Deployment failed: payments-api"
        assert "deploy-api#7" in body
        assert "attempt 2" in body
        assert template.severity == MessageSeverity.ERROR

    def test_action_url(self) -> None:
        template = default_templates()[EventKind.DEPLOYMENT_FAILED]
        url = template.action_url(_failed().template_fields(), "https://console.example.com/")
        assert url == "https://console.example.com/cicd/deployments/d-1"

    def test_action_url_without_path(self) -> None:
        template = NotificationTemplate(kind=EventKind.TASK_EXECUTED, title="t", body="b")
        assert template.action_url({}) is None

    def test_placeholders(self) -> None:
        template = default_templates()[EventKind.TASK_SCHEDULED]
        assert template.placeholders() == {"resource_name", "scheduled_at", "deployment_id"}

    def test_unknown_field_is_a_configuration_error(self) -> None:
        broken = NotificationTemplate(
            kind=EventKind.TASK_SCHEDULED, title="{resource_name}", body="{error}"
        )
        with pytest.raises(ConfigurationError):
            check_templates({EventKind.TASK_SCHEDULED: broken})

    def test_scheduled_fields_render(self) -> None:
        event = TaskScheduled(
            resource_id="d-1",
            resource_name="payments-api",
            deployment_id="d-1",
            acting_user_id="alice",
            scheduled_at=datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc),
        )
        _, body = default_templates()[EventKind.TASK_SCHEDULED].render(event.template_fields())
        assert "payments-api" in body
        assert "2026-03-02" in body
