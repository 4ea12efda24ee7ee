"""Deployment aggregate root with full state machine."""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum
from typing import Any

from pydantic import Field

from deploygate.domain.errors import StateConflict, ValidationError
from deploygate.domain.events.notification_events import (
    ApprovalApproved,
    ApprovalRejected,
    DeploymentCompleted,
    DeploymentFailed,
    DeploymentStarted,
)
from deploygate.domain.models.approval import ApproverSpec, validate_approvers
from deploygate.domain.models.base import AggregateRoot, utc_now, ValueObject
from deploygate.domain.models.job import JobRef, JobState


class DeploymentStatus(str, Enum):
    """Deployment lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    SCHEDULED = "scheduled"
    DEPLOYING = "deploying"
    SUCCESS = "success"
    FAILED = "failed"
    ROLLED_BACK = "rolled_back"


class DeploymentEnvironment(str, Enum):
    DEV = "dev"
    TEST = "test"
    STAGING = "staging"
    PROD = "prod"


# State machine transitions
VALID_TRANSITIONS: dict[DeploymentStatus, set[DeploymentStatus]] = {
    DeploymentStatus.PENDING: {
        DeploymentStatus.APPROVED, DeploymentStatus.REJECTED,
        DeploymentStatus.DEPLOYING,
    },
    DeploymentStatus.APPROVED: {DeploymentStatus.DEPLOYING},
    DeploymentStatus.SCHEDULED: {DeploymentStatus.DEPLOYING},
    DeploymentStatus.DEPLOYING: {
        DeploymentStatus.SUCCESS, DeploymentStatus.FAILED,
        DeploymentStatus.ROLLED_BACK,
    },
    DeploymentStatus.SUCCESS: {DeploymentStatus.DEPLOYING},
    DeploymentStatus.FAILED: {DeploymentStatus.DEPLOYING},
    DeploymentStatus.REJECTED: set(),
    DeploymentStatus.ROLLED_BACK: set(),
}

TERMINAL_STATUSES: frozenset[DeploymentStatus] = frozenset({
    DeploymentStatus.SUCCESS,
    DeploymentStatus.FAILED,
    DeploymentStatus.ROLLED_BACK,
    DeploymentStatus.REJECTED,
})


class Actor(ValueObject):
    """The user on whose behalf an operation runs."""

    user_id: str
    user_name: str = ""


class RollbackRequest(ValueObject):
    target_version: str
    reason: str
    requested_by: Actor
    requested_at: datetime = Field(default_factory=utc_now)


class DeploymentSpec(ValueObject):
    """What a caller supplies to create a deployment."""

    project_id: str
    name: str
    environment: DeploymentEnvironment = DeploymentEnvironment.DEV
    version: str | None = None
    job_names: list[str] = Field(default_factory=list)
    rollback_job_names: list[str] = Field(default_factory=list)
    require_approval: bool = False
    approvers: list[ApproverSpec] = Field(default_factory=list)
    scheduled_at: datetime | None = None
    build_parameters: dict[str, Any] = Field(default_factory=dict)
    author_id: str
    author_name: str = ""

    def validate_for_creation(self) -> None:
        if not self.name.strip():
            raise ValidationError("Deployment name must not be empty")
        if not self.project_id:
            raise ValidationError("Deployment must belong to a project")
        if not self.author_id:
            raise ValidationError("Deployment must have an author")
        if not self.job_names or any(not name.strip() for name in self.job_names):
            raise ValidationError("At least one non-empty job name is required")
        if self.require_approval:
            validate_approvers(self.approvers)
        elif self.approvers:
            raise ValidationError("Approvers given but approval is not required")


class Deployment(AggregateRoot):
    """Deployment aggregate root - the central domain entity."""

    project_id: str
    name: str
    environment: DeploymentEnvironment
    version: str | None = None
    status: DeploymentStatus = DeploymentStatus.PENDING
    job_names: list[str] = Field(default_factory=list)
    rollback_job_names: list[str] = Field(default_factory=list)
    build_parameters: dict[str, Any] = Field(default_factory=dict)
    job_refs: list[JobRef] = Field(default_factory=list)
    scheduled_at: datetime | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    require_approval: bool = False
    author_id: str
    author_name: str = ""
    attempt: int = 0
    executed_by: Actor | None = None
    rollback: RollbackRequest | None = None
    details: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_spec(cls, spec: DeploymentSpec, now: datetime | None = None) -> Deployment:
        now = now or utc_now()
        status = DeploymentStatus.PENDING
        if (
            spec.scheduled_at is not None
            and spec.scheduled_at > now
            and not spec.require_approval
        ):
            status = DeploymentStatus.SCHEDULED
        return cls(
            project_id=spec.project_id,
            name=spec.name.strip(),
            environment=spec.environment,
            version=spec.version,
            status=status,
            job_names=list(spec.job_names),
            rollback_job_names=list(spec.rollback_job_names),
            build_parameters=dict(spec.build_parameters),
            scheduled_at=spec.scheduled_at,
            require_approval=spec.require_approval,
            author_id=spec.author_id,
            author_name=spec.author_name,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _transition_to(self, new_status: DeploymentStatus) -> None:
        """Validate and execute state transition."""
        valid = VALID_TRANSITIONS.get(self.status, set())
        if new_status not in valid:
            raise InvalidStateTransitionError(
                f"Cannot transition from {self.status.value} to {new_status.value}. "
                f"Valid transitions: {sorted(s.value for s in valid)}"
            )
        self.status = new_status
        self.touch()

    def _event_fields(self, actor: Actor | None) -> dict[str, Any]:
        actor = actor or self.author
        return {
            "resource_id": self.id,
            "resource_name": self.name,
            "deployment_id": self.id,
            "acting_user_id": actor.user_id,
            "acting_user_name": actor.user_name,
            "environment": self.environment.value,
        }

    @property
    def author(self) -> Actor:
        return Actor(user_id=self.author_id, user_name=self.author_name)

    # ------------------------------------------------------------------
    # Approval outcomes
    # ------------------------------------------------------------------

    def mark_approved(self, approval_id: str, actor: Actor, comment: str | None = None) -> None:
        """All approvals are in; the deployment may now execute."""
        self._transition_to(DeploymentStatus.APPROVED)
        fields = self._event_fields(actor)
        fields["resource_id"] = approval_id
        self.add_event(ApprovalApproved(comment=comment or "", **fields))

    def mark_rejected(self, approval_id: str, actor: Actor, comment: str | None = None) -> None:
        self._transition_to(DeploymentStatus.REJECTED)
        self.details["rejected_by"] = actor.user_id
        fields = self._event_fields(actor)
        fields["resource_id"] = approval_id
        self.add_event(ApprovalRejected(comment=comment or "", **fields))

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    @property
    def can_execute(self) -> bool:
        if self.status in {DeploymentStatus.APPROVED, DeploymentStatus.SCHEDULED}:
            return True
        return self.status == DeploymentStatus.PENDING and not self.require_approval

    def begin_execution(
        self,
        actor: Actor,
        build_parameters: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> None:
        """Claim the deployment for a new execution attempt."""
        if self.status == DeploymentStatus.DEPLOYING:
            raise StateConflict(f"Deployment {self.id} is already deploying")
        if not self.can_execute:
            raise StateConflict(
                f"Deployment {self.id} cannot be executed while {self.status.value}"
            )
        self._transition_to(DeploymentStatus.DEPLOYING)
        self._start_attempt(actor, now)
        if build_parameters is not None:
            self.build_parameters = dict(build_parameters)
        self.rollback = None

    def begin_rollback(self, request: RollbackRequest, now: datetime | None = None) -> None:
        if self.status not in {DeploymentStatus.SUCCESS, DeploymentStatus.FAILED}:
            raise StateConflict(
                f"Deployment {self.id} cannot be rolled back while {self.status.value}"
            )
        self._transition_to(DeploymentStatus.DEPLOYING)
        self._start_attempt(request.requested_by, now)
        self.rollback = request

    def _start_attempt(self, actor: Actor, now: datetime | None) -> None:
        self.attempt += 1
        self.started_at = now or utc_now()
        self.completed_at = None
        self.executed_by = actor
        self.details.pop("error", None)

    def record_submission(self, refs: list[JobRef]) -> None:
        """Remember the jobs enqueued for the current attempt.

        Refs are kept even if the attempt was stopped meanwhile so they can
        be cancelled; ``deployment_started`` is only announced while
        deploying.
        """
        self.job_refs = [*self.job_refs, *refs]
        self.touch()
        if self.status != DeploymentStatus.DEPLOYING:
            return
        self.add_event(DeploymentStarted(
            attempt=self.attempt,
            job_count=len(refs),
            is_rollback=self.rollback is not None,
            **self._event_fields(self.executed_by),
        ))

    def apply_job_updates(self, refs: list[JobRef]) -> bool:
        """Replace stored refs with fresher copies; returns True if any changed."""
        updates = {ref.key: ref for ref in refs}
        changed = False
        merged: list[JobRef] = []
        for ref in self.job_refs:
            fresh = updates.get(ref.key)
            if fresh is not None and fresh != ref:
                merged.append(fresh)
                changed = True
            else:
                merged.append(ref)
        if changed:
            self.job_refs = merged
            self.touch()
        return changed

    @property
    def current_job_refs(self) -> list[JobRef]:
        return [ref for ref in self.job_refs if ref.attempt == self.attempt]

    @property
    def execution_outcome(self) -> JobState | None:
        """SUCCESS if every current job succeeded, FAILED if all finished otherwise."""
        refs = self.current_job_refs
        if not refs or any(not ref.is_terminal for ref in refs):
            return None
        if all(ref.state == JobState.SUCCESS for ref in refs):
            return JobState.SUCCESS
        return JobState.FAILED

    def complete(self, now: datetime | None = None) -> None:
        """Every job of the current attempt succeeded."""
        rolling_back = self.rollback is not None
        target = DeploymentStatus.ROLLED_BACK if rolling_back else DeploymentStatus.SUCCESS
        self._transition_to(target)
        self.completed_at = now or utc_now()
        if self.rollback is not None:
            self.version = self.rollback.target_version
        self.add_event(DeploymentCompleted(
            attempt=self.attempt,
            is_rollback=rolling_back,
            **self._event_fields(self.executed_by),
        ))

    def fail(
        self,
        error: str,
        actor: Actor | None = None,
        now: datetime | None = None,
        **details: Any,
    ) -> None:
        """Mark the current attempt as failed."""
        self._transition_to(DeploymentStatus.FAILED)
        self.completed_at = now or utc_now()
        self.details = {**self.details, **details, "error": error}
        self.add_event(DeploymentFailed(
            attempt=self.attempt,
            error=error,
            is_rollback=self.rollback is not None,
            **self._event_fields(actor or self.executed_by),
        ))

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @property
    def is_terminal(self) -> bool:
        """Check if deployment is in a terminal state."""
        return self.status in TERMINAL_STATUSES

    @property
    def duration(self) -> timedelta | None:
        if self.started_at is None or self.completed_at is None:
            return None
        return self.completed_at - self.started_at

    def is_due(self, now: datetime) -> bool:
        """Whether a scheduler tick should start this deployment now."""
        if self.scheduled_at is None or self.scheduled_at > now:
            return False
        if self.status == DeploymentStatus.SCHEDULED:
            return True
        return self.status == DeploymentStatus.APPROVED


class InvalidStateTransitionError(StateConflict):
    """Raised when an invalid state transition is attempted."""
