"""Unit tests for the Deployment aggregate."""

from __future__ import annotations

from datetime import timedelta

import pytest

from deploygate.domain.errors import StateConflict, ValidationError
from deploygate.domain.events.notification_events import (
    ApprovalApproved,
    ApprovalRejected,
    DeploymentCompleted,
    DeploymentFailed,
    DeploymentStarted,
)
from deploygate.domain.models.approval import ApproverSpec
from deploygate.domain.models.base import utc_now
from deploygate.domain.models.deployment import (
    Actor,
    Deployment,
    DeploymentSpec,
    DeploymentStatus,
    InvalidStateTransitionError,
    RollbackRequest,
)
from deploygate.domain.models.job import JobRef, JobState


def _deploying(spec: DeploymentSpec) -> Deployment:
    deployment = Deployment.from_spec(spec)
    deployment.begin_execution(deployment.author)
    deployment.record_submission([
        JobRef(job_name=name, queue_id=str(i), attempt=deployment.attempt)
        for i, name in enumerate(deployment.job_names)
    ])
    deployment.collect_events()
    return deployment


class TestDeploymentSpec:
    def test_valid_spec(self, sample_spec: DeploymentSpec) -> None:
        sample_spec.validate_for_creation()

    def test_blank_name_rejected(self, sample_spec: DeploymentSpec) -> None:
        spec = sample_spec.model_copy(update={"name": "   "})
        with pytest.raises(ValidationError):
            spec.validate_for_creation()

    def test_no_jobs_rejected(self, sample_spec: DeploymentSpec) -> None:
        spec = sample_spec.model_copy(update={"job_names": []})
        with pytest.raises(ValidationError):
            spec.validate_for_creation()

    def test_blank_job_name_rejected(self, sample_spec: DeploymentSpec) -> None:
        spec = sample_spec.model_copy(update={"job_names": ["build", ""]})
        with pytest.raises(ValidationError):
            spec.validate_for_creation()

    def test_approval_requires_approvers(self, sample_spec: DeploymentSpec) -> None:
        spec = sample_spec.model_copy(update={"require_approval": True})
        with pytest.raises(ValidationError):
            spec.validate_for_creation()

    def test_approvers_without_approval_rejected(self, sample_spec: DeploymentSpec) -> None:
        spec = sample_spec.model_copy(
            update={"approvers": [ApproverSpec(approver_id="carol")]}
        )
        with pytest.raises(ValidationError):
            spec.validate_for_creation()


class TestDeploymentCreation:
    def test_starts_pending(self, sample_spec: DeploymentSpec) -> None:
        deployment = Deployment.from_spec(sample_spec)
        assert deployment.status == DeploymentStatus.PENDING
        assert deployment.attempt == 0
        assert deployment.revision == 1
        assert deployment.can_execute

    def test_future_schedule_without_approval_is_scheduled(
        self, sample_spec: DeploymentSpec
    ) -> None:
        spec = sample_spec.model_copy(update={"scheduled_at": utc_now() + timedelta(hours=1)})
        deployment = Deployment.from_spec(spec)
        assert deployment.status == DeploymentStatus.SCHEDULED

    def test_future_schedule_with_approval_waits_for_approval(
        self, approval_spec: DeploymentSpec
    ) -> None:
        spec = approval_spec.model_copy(update={"scheduled_at": utc_now() + timedelta(hours=1)})
        deployment = Deployment.from_spec(spec)
        assert deployment.status == DeploymentStatus.PENDING
        assert not deployment.can_execute


class TestDeploymentStateMachine:
    def test_begin_execution(self, sample_spec: DeploymentSpec) -> None:
        deployment = Deployment.from_spec(sample_spec)
        deployment.begin_execution(Actor(user_id="bob"), {"REGION": "eu"})
        assert deployment.status == DeploymentStatus.DEPLOYING
        assert deployment.attempt == 1
        assert deployment.executed_by == Actor(user_id="bob")
        assert deployment.build_parameters == {"REGION": "eu"}
        assert deployment.started_at is not None

    def test_execute_twice_conflicts(self, sample_spec: DeploymentSpec) -> None:
        deployment = Deployment.from_spec(sample_spec)
        deployment.begin_execution(deployment.author)
        with pytest.raises(StateConflict):
            deployment.begin_execution(deployment.author)

    def test_execute_requires_approval(self, approval_spec: DeploymentSpec) -> None:
        deployment = Deployment.from_spec(approval_spec)
        with pytest.raises(StateConflict):
            deployment.begin_execution(deployment.author)
        assert deployment.status == DeploymentStatus.PENDING

    def test_mark_approved_emits_event(self, approval_spec: DeploymentSpec) -> None:
        deployment = Deployment.from_spec(approval_spec)
        deployment.mark_approved("approval-1", Actor(user_id="dave"), "ship it")
        assert deployment.status == DeploymentStatus.APPROVED
        assert deployment.can_execute
        (event,) = deployment.collect_events()
        assert isinstance(event, ApprovalApproved)
        assert event.resource_id == "approval-1"
        assert event.comment == "ship it"

    def test_rejected_is_final(self, approval_spec: DeploymentSpec) -> None:
        deployment = Deployment.from_spec(approval_spec)
        deployment.mark_rejected("approval-1", Actor(user_id="carol"))
        assert isinstance(deployment.collect_events()[0], ApprovalRejected)
        assert deployment.is_terminal
        with pytest.raises(StateConflict):
            deployment.begin_execution(deployment.author)

    def test_invalid_transition(self, sample_spec: DeploymentSpec) -> None:
        deployment = Deployment.from_spec(sample_spec)
        with pytest.raises(InvalidStateTransitionError):
            deployment.complete()

    def test_record_submission_emits_started(self, sample_spec: DeploymentSpec) -> None:
        deployment = Deployment.from_spec(sample_spec)
        deployment.begin_execution(deployment.author)
        deployment.record_submission([JobRef(job_name="build-api", queue_id="1")])
        (event,) = deployment.collect_events()
        assert isinstance(event, DeploymentStarted)
        assert event.job_count == 1
        assert event.attempt == 1
        assert not event.is_rollback

    def test_record_submission_after_stop_keeps_refs_silently(
        self, sample_spec: DeploymentSpec
    ) -> None:
        deployment = _deploying(sample_spec)
        deployment.fail("stopped")
        deployment.collect_events()
        deployment.record_submission([JobRef(job_name="late", queue_id="9", attempt=1)])
        assert any(ref.job_name == "late" for ref in deployment.job_refs)
        assert deployment.collect_events() == []

    def test_apply_job_updates_detects_changes(self, sample_spec: DeploymentSpec) -> None:
        deployment = _deploying(sample_spec)
        revision = deployment.revision
        first = deployment.job_refs[0]
        assert not deployment.apply_job_updates([first])
        assert deployment.revision == revision

        running = first.model_copy(update={"state": JobState.RUNNING, "build_number": 3})
        assert deployment.apply_job_updates([running])
        assert deployment.job_refs[0].state == JobState.RUNNING
        assert deployment.revision == revision + 1

    def test_execution_outcome(self, sample_spec: DeploymentSpec) -> None:
        deployment = _deploying(sample_spec)
        assert deployment.execution_outcome is None

        first, second = deployment.job_refs
        deployment.apply_job_updates([first.model_copy(update={"state": JobState.SUCCESS})])
        assert deployment.execution_outcome is None

        deployment.apply_job_updates([second.model_copy(update={"state": JobState.ABORTED})])
        assert deployment.execution_outcome == JobState.FAILED

    def test_complete(self, sample_spec: DeploymentSpec) -> None:
        deployment = _deploying(sample_spec)
        deployment.complete()
        assert deployment.status == DeploymentStatus.SUCCESS
        assert deployment.duration is not None
        assert isinstance(deployment.collect_events()[0], DeploymentCompleted)

    def test_fail_records_details(self, sample_spec: DeploymentSpec) -> None:
        deployment = _deploying(sample_spec)
        deployment.fail("boom", failed_jobs=["build-api#1"])
        assert deployment.status == DeploymentStatus.FAILED
        assert deployment.details["error"] == "boom"
        assert deployment.details["failed_jobs"] == ["build-api#1"]
        event = deployment.collect_events()[0]
        assert isinstance(event, DeploymentFailed)
        assert event.error == "boom"

    def test_failed_deployment_cannot_be_executed_again(
        self, sample_spec: DeploymentSpec
    ) -> None:
        deployment = _deploying(sample_spec)
        deployment.fail("boom")
        with pytest.raises(StateConflict):
            deployment.begin_execution(deployment.author)
        assert deployment.status == DeploymentStatus.FAILED


class TestDeploymentRollback:
    def _request(self) -> RollbackRequest:
        return RollbackRequest(
            target_version="1.3.0", reason="regression", requested_by=Actor(user_id="bob")
        )

    def test_rollback_from_success(self, sample_spec: DeploymentSpec) -> None:
        deployment = _deploying(sample_spec)
        deployment.complete()
        deployment.begin_rollback(self._request())
        assert deployment.status == DeploymentStatus.DEPLOYING
        assert deployment.attempt == 2
        assert deployment.rollback is not None

    def test_completed_rollback_is_rolled_back(self, sample_spec: DeploymentSpec) -> None:
        deployment = _deploying(sample_spec)
        deployment.fail("boom")
        deployment.begin_rollback(self._request())
        deployment.collect_events()
        deployment.complete()
        assert deployment.status == DeploymentStatus.ROLLED_BACK
        assert deployment.version == "1.3.0"
        event = deployment.collect_events()[0]
        assert isinstance(event, DeploymentCompleted)
        assert event.is_rollback

    def test_rollback_requires_finished_deployment(self, sample_spec: DeploymentSpec) -> None:
        deployment = Deployment.from_spec(sample_spec)
        with pytest.raises(StateConflict):
            deployment.begin_rollback(self._request())


class TestDeploymentSchedule:
    def test_is_due(self, sample_spec: DeploymentSpec) -> None:
        now = utc_now()
        spec = sample_spec.model_copy(update={"scheduled_at": now + timedelta(minutes=5)})
        deployment = Deployment.from_spec(spec, now=now)
        assert not deployment.is_due(now)
        assert deployment.is_due(now + timedelta(minutes=5))

    def test_unscheduled_never_due(self, sample_spec: DeploymentSpec) -> None:
        deployment = Deployment.from_spec(sample_spec)
        assert not deployment.is_due(utc_now() + timedelta(days=365))

    def test_clone_is_detached(self, sample_spec: DeploymentSpec) -> None:
        deployment = Deployment.from_spec(sample_spec)
        deployment.add_event(object())
        copy = deployment.clone()
        copy.job_names.append("extra")
        assert "extra" not in deployment.job_names
        assert copy.pending_events == []
