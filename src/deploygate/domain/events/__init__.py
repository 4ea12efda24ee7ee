"""Domain events package."""

from deploygate.domain.events.notification_events import (
    ApprovalApproved,
    ApprovalRejected,
    ApprovalRequested,
    DeploymentCompleted,
    DeploymentFailed,
    DeploymentStarted,
    EVENT_TYPES,
    EventKind,
    LifecycleEvent,
    NotificationEvent,
    ResourceType,
    TaskExecuted,
    TaskFailed,
    TaskScheduled,
)


__all__ = [
    "ApprovalApproved",
    "ApprovalRejected",
    "ApprovalRequested",
    "DeploymentCompleted",
    "DeploymentFailed",
    "DeploymentStarted",
    "EVENT_TYPES",
    "EventKind",
    "LifecycleEvent",
    "NotificationEvent",
    "ResourceType",
    "TaskExecuted",
    "TaskFailed",
    "TaskScheduled",
]
