"""Lifecycle notification events.

Every event kind is its own frozen model carrying exactly the fields its
templates reference; ``NotificationEvent`` is the discriminated union of
all of them.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import Field

from deploygate.domain.models.base import generate_id, utc_now, ValueObject


class EventKind(str, Enum):
    """Fixed taxonomy of notification events."""

    DEPLOYMENT_STARTED = "deployment_started"
    DEPLOYMENT_COMPLETED = "deployment_completed"
    DEPLOYMENT_FAILED = "deployment_failed"
    APPROVAL_REQUESTED = "approval_requested"
    APPROVAL_APPROVED = "approval_approved"
    APPROVAL_REJECTED = "approval_rejected"
    TASK_SCHEDULED = "task_scheduled"
    TASK_EXECUTED = "task_executed"
    TASK_FAILED = "task_failed"


class ResourceType(str, Enum):
    DEPLOYMENT = "deployment"
    APPROVAL = "approval"
    TASK = "task"


class LifecycleEvent(ValueObject):
    """Fields shared by every notification event."""

    event_id: str = Field(default_factory=generate_id)
    kind: str
    resource_type: ResourceType
    resource_id: str
    resource_name: str
    deployment_id: str
    acting_user_id: str
    acting_user_name: str = ""
    occurred_at: datetime = Field(default_factory=utc_now)
    # Users that must hear about the event regardless of resource ownership.
    addressees: tuple[str, ...] = ()

    def template_fields(self) -> dict[str, Any]:
        """Values available to title/body templates."""
        fields = self.model_dump(exclude={"addressees"})
        fields["resource_type"] = self.resource_type.value
        fields["occurred_at"] = self.occurred_at.strftime("%Y-%m-%d %H:%M:%S UTC")
        return fields


class DeploymentStarted(LifecycleEvent):
    kind: Literal["deployment_started"] = "deployment_started"
    resource_type: ResourceType = ResourceType.DEPLOYMENT
    environment: str
    attempt: int
    job_count: int
    is_rollback: bool = False


class DeploymentCompleted(LifecycleEvent):
    kind: Literal["deployment_completed"] = "deployment_completed"
    resource_type: ResourceType = ResourceType.DEPLOYMENT
    environment: str
    attempt: int
    is_rollback: bool = False


class DeploymentFailed(LifecycleEvent):
    kind: Literal["deployment_failed"] = "deployment_failed"
    resource_type: ResourceType = ResourceType.DEPLOYMENT
    environment: str
    attempt: int
    error: str
    is_rollback: bool = False


class ApprovalRequested(LifecycleEvent):
    kind: Literal["approval_requested"] = "approval_requested"
    resource_type: ResourceType = ResourceType.APPROVAL
    environment: str
    approver_id: str
    level: int


class ApprovalApproved(LifecycleEvent):
    kind: Literal["approval_approved"] = "approval_approved"
    resource_type: ResourceType = ResourceType.APPROVAL
    environment: str
    comment: str = ""


class ApprovalRejected(LifecycleEvent):
    kind: Literal["approval_rejected"] = "approval_rejected"
    resource_type: ResourceType = ResourceType.APPROVAL
    environment: str
    comment: str = ""


class TaskScheduled(LifecycleEvent):
    kind: Literal["task_scheduled"] = "task_scheduled"
    resource_type: ResourceType = ResourceType.TASK
    scheduled_at: datetime


class TaskExecuted(LifecycleEvent):
    kind: Literal["task_executed"] = "task_executed"
    resource_type: ResourceType = ResourceType.TASK


class TaskFailed(LifecycleEvent):
    kind: Literal["task_failed"] = "task_failed"
    resource_type: ResourceType = ResourceType.TASK
    error: str


NotificationEvent = Annotated[
    Union[
        DeploymentStarted,
        DeploymentCompleted,
        DeploymentFailed,
        ApprovalRequested,
        ApprovalApproved,
        ApprovalRejected,
        TaskScheduled,
        TaskExecuted,
        TaskFailed,
    ],
    Field(discriminator="kind"),
]


EVENT_TYPES: dict[EventKind, type[LifecycleEvent]] = {
    EventKind.DEPLOYMENT_STARTED: DeploymentStarted,
    EventKind.DEPLOYMENT_COMPLETED: DeploymentCompleted,
    EventKind.DEPLOYMENT_FAILED: DeploymentFailed,
    EventKind.APPROVAL_REQUESTED: ApprovalRequested,
    EventKind.APPROVAL_APPROVED: ApprovalApproved,
    EventKind.APPROVAL_REJECTED: ApprovalRejected,
    EventKind.TASK_SCHEDULED: TaskScheduled,
    EventKind.TASK_EXECUTED: TaskExecuted,
    EventKind.TASK_FAILED: TaskFailed,
}
