"""Domain service driving deployments through their lifecycle."""

from __future__ import annotations

from collections.abc import Callable
from datetime import datetime
from typing import Any

import structlog
from pydantic import Field

from deploygate.domain.errors import (
    AlreadyDecidedError,
    DeployGateError,
    NotFoundError,
    StateConflict,
    UpstreamUnavailable,
    ValidationError,
)
from deploygate.domain.events.notification_events import (
    LifecycleEvent,
    TaskExecuted,
    TaskFailed,
    TaskScheduled,
)
from deploygate.domain.models.approval import (
    Approval,
    ApprovalDecision,
    ApprovalReadiness,
    decision_status,
)
from deploygate.domain.models.base import utc_now, ValueObject
from deploygate.domain.models.deployment import (
    Actor,
    Deployment,
    DeploymentSpec,
    DeploymentStatus,
    RollbackRequest,
)
from deploygate.domain.models.job import JobExecution, JobState, LogLine
from deploygate.domain.ports.repositories import DeploymentRepository, ProjectRepository
from deploygate.domain.services.approval_gate import ApprovalGate
from deploygate.domain.services.job_runner_adapter import JobRunnerAdapter
from deploygate.domain.services.notification_dispatcher import NotificationDispatcher


logger = structlog.get_logger(__name__)

# A mutation returns False when its guard no longer holds on the fresh copy.
Mutation = Callable[[Deployment], "bool | None"]


class DeploymentStatusView(ValueObject):
    """Everything known about a deployment without calling the build server."""

    deployment: Deployment
    executions: list[JobExecution] = Field(default_factory=list)
    log: list[LogLine] = Field(default_factory=list)
    approvals: list[Approval] = Field(default_factory=list)

    @property
    def merged_log(self) -> list[str]:
        return [line.render() for line in self.log]


class DeploymentOrchestrator:
    """Sole writer of deployment status.

    Every write follows the same discipline: read a snapshot, make any
    external call without holding a lock, then apply the change to a fresh
    copy with a compare-and-swap on ``revision``. Notifications are sent
    only after the write is committed and never fail the operation.
    """

    def __init__(
        self,
        deployment_repo: DeploymentRepository,
        project_repo: ProjectRepository,
        approval_gate: ApprovalGate,
        job_adapter: JobRunnerAdapter,
        dispatcher: NotificationDispatcher | None = None,
        max_cas_retries: int = 5,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._deployment_repo = deployment_repo
        self._project_repo = project_repo
        self._approval_gate = approval_gate
        self._job_adapter = job_adapter
        self._dispatcher = dispatcher
        self._max_cas_retries = max(1, max_cas_retries)
        self._clock = clock

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _get(self, deployment_id: str) -> Deployment:
        deployment = await self._deployment_repo.get_by_id(deployment_id)
        if deployment is None:
            raise NotFoundError(f"Deployment {deployment_id} not found")
        return deployment

    async def _mutate(self, deployment_id: str, mutation: Mutation) -> Deployment:
        """Apply ``mutation`` to a fresh copy and store it with compare-and-swap."""
        for attempt in range(1, self._max_cas_retries + 1):
            current = await self._get(deployment_id)
            expected_revision = current.revision
            candidate = current.clone()
            if mutation(candidate) is False:
                return current
            if await self._deployment_repo.compare_and_swap(candidate, expected_revision):
                await self._publish(candidate.collect_events())
                return candidate
            logger.debug(
                "deployment_cas_conflict",
                deployment_id=deployment_id,
                attempt=attempt,
            )
        raise StateConflict(
            f"Deployment {deployment_id} kept changing concurrently, retry later"
        )

    async def _publish(self, events: list[LifecycleEvent]) -> None:
        if self._dispatcher is None:
            return
        for event in events:
            try:
                await self._dispatcher.dispatch(event)
            except Exception:
                logger.exception(
                    "notification_dispatch_failed",
                    kind=event.kind,
                    deployment_id=event.deployment_id,
                )

    def _task_event(
        self, event_type: type[LifecycleEvent], deployment: Deployment, **fields: Any
    ) -> LifecycleEvent:
        return event_type(
            resource_id=deployment.id,
            resource_name=deployment.name,
            deployment_id=deployment.id,
            acting_user_id=deployment.author_id,
            acting_user_name=deployment.author_name,
            **fields,
        )

    # ------------------------------------------------------------------
    # Creation & approval
    # ------------------------------------------------------------------

    async def create_deployment(self, spec: DeploymentSpec) -> Deployment:
        """Validate and persist a new deployment, then open its approvals."""
        spec.validate_for_creation()
        project = await self._project_repo.get_by_id(spec.project_id)
        if project is None:
            raise ValidationError(f"Project {spec.project_id} does not exist")

        deployment = await self._deployment_repo.save(
            Deployment.from_spec(spec, now=self._clock())
        )
        logger.info(
            "deployment_created",
            deployment_id=deployment.id,
            project_id=deployment.project_id,
            environment=deployment.environment.value,
            status=deployment.status.value,
            jobs=deployment.job_names,
        )

        if spec.require_approval:
            await self._approval_gate.request_approval(
                deployment, spec.approvers, deployment.author
            )
        if deployment.scheduled_at is not None:
            await self._publish([
                self._task_event(TaskScheduled, deployment, scheduled_at=deployment.scheduled_at)
            ])
        return deployment

    async def decide_approval(
        self,
        approval_id: str,
        approver_id: str,
        decision: ApprovalDecision,
        comment: str | None = None,
        approver_name: str = "",
    ) -> Approval:
        """Record a decision and move the deployment if its approvals are settled.

        Retrying a decision whose approval was stored but whose deployment
        was never settled (the settle write failed) completes the
        settlement instead of failing with ``AlreadyDecidedError``.
        """
        actor = Actor(user_id=approver_id, user_name=approver_name)
        try:
            approval, readiness = await self._approval_gate.decide(
                approval_id, approver_id, decision, comment
            )
        except AlreadyDecidedError:
            approval = await self._approval_gate.get_approval(approval_id)
            readiness = await self._approval_gate.readiness(approval.deployment_id)
            if readiness == ApprovalReadiness.PENDING:
                raise
            settled = await self._settle(approval, readiness, actor, approval.comment)
            if not settled or approval.status != decision_status(decision):
                raise
            logger.info(
                "deployment_approval_settlement_recovered",
                deployment_id=approval.deployment_id,
                approval_id=approval_id,
            )
            return approval

        if readiness != ApprovalReadiness.PENDING:
            await self._settle(approval, readiness, actor, comment)
        return approval

    async def _settle(
        self,
        approval: Approval,
        readiness: ApprovalReadiness,
        actor: Actor,
        comment: str | None,
    ) -> bool:
        """Move a pending deployment to approved or rejected; False if already moved."""
        if not actor.user_name:
            actor = Actor(user_id=actor.user_id, user_name=approval.approver_name)
        changed = False

        def settle(deployment: Deployment) -> bool:
            nonlocal changed
            if deployment.status != DeploymentStatus.PENDING:
                return False
            if readiness == ApprovalReadiness.APPROVED:
                deployment.mark_approved(approval.id, actor, comment)
            else:
                deployment.mark_rejected(approval.id, actor, comment)
            changed = True
            return True

        deployment = await self._mutate(approval.deployment_id, settle)
        logger.info(
            "deployment_approval_settled",
            deployment_id=deployment.id,
            readiness=readiness.value,
            status=deployment.status.value,
        )
        return changed

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute_deployment(
        self,
        deployment_id: str,
        build_parameters: dict[str, Any] | None = None,
        actor: Actor | None = None,
    ) -> Deployment:
        """Claim the deployment and submit its jobs.

        Returns as soon as the jobs are queued; completion is picked up by
        :meth:`poll_deployment`.
        """

        def claim(deployment: Deployment) -> None:
            deployment.begin_execution(
                actor or deployment.author, build_parameters, now=self._clock()
            )

        claimed = await self._mutate(deployment_id, claim)
        logger.info(
            "deployment_execution_started",
            deployment_id=deployment_id,
            attempt=claimed.attempt,
        )
        return await self._launch(claimed, claimed.job_names, claimed.build_parameters)

    async def rollback_deployment(
        self,
        deployment_id: str,
        target_version: str,
        reason: str,
        actor: Actor | None = None,
    ) -> Deployment:
        """Redeploy ``target_version`` with the rollback job set, bypassing approval."""
        if not target_version or not target_version.strip():
            raise ValidationError("Rollback target version must not be empty")
        if not reason or not reason.strip():
            raise ValidationError("Rollback reason must not be empty")

        def claim(deployment: Deployment) -> None:
            deployment.begin_rollback(RollbackRequest(
                target_version=target_version.strip(),
                reason=reason.strip(),
                requested_by=actor or deployment.author,
            ), now=self._clock())

        claimed = await self._mutate(deployment_id, claim)
        parameters = {
            **claimed.build_parameters,
            "VERSION": target_version.strip(),
            "ROLLBACK": "true",
            "ROLLBACK_REASON": reason.strip(),
        }
        logger.info(
            "deployment_rollback_started",
            deployment_id=deployment_id,
            attempt=claimed.attempt,
            target_version=target_version,
        )
        return await self._launch(
            claimed, claimed.rollback_job_names or claimed.job_names, parameters
        )

    async def _launch(
        self, claimed: Deployment, job_names: list[str], parameters: dict[str, Any]
    ) -> Deployment:
        attempt = claimed.attempt
        try:
            refs = await self._job_adapter.submit(claimed, job_names, parameters)
        except UpstreamUnavailable as exc:
            error = str(exc)

            def fail(deployment: Deployment) -> bool:
                if deployment.status != DeploymentStatus.DEPLOYING or deployment.attempt != attempt:
                    return False
                deployment.fail(error, now=self._clock(), submission_failed=True)
                return True

            failed = await self._mutate(claimed.id, fail)
            logger.warning(
                "deployment_submission_failed",
                deployment_id=claimed.id,
                attempt=attempt,
                error=error,
            )
            return failed

        def record(deployment: Deployment) -> bool:
            if deployment.attempt != attempt:
                return False
            deployment.record_submission(refs)
            return True

        recorded = await self._mutate(claimed.id, record)
        if recorded.status != DeploymentStatus.DEPLOYING or recorded.attempt != attempt:
            # Stopped while the jobs were being queued.
            logger.info("deployment_stopped_during_submission", deployment_id=claimed.id)
            await self._job_adapter.cancel_all(refs)
        return recorded

    async def stop_deployment(self, deployment_id: str, actor: Actor | None = None) -> Deployment:
        """Fail a running deployment and cancel its unfinished jobs."""

        def stop(deployment: Deployment) -> None:
            if deployment.status != DeploymentStatus.DEPLOYING:
                raise StateConflict(
                    f"Deployment {deployment.id} is {deployment.status.value}, only a "
                    "deploying deployment can be stopped"
                )
            who = actor or deployment.executed_by or deployment.author
            deployment.fail(
                f"stopped by {who.user_name or who.user_id}",
                actor=who,
                now=self._clock(),
                stopped_by=who.user_id,
            )

        stopped = await self._mutate(deployment_id, stop)
        pending = [ref for ref in stopped.current_job_refs if not ref.is_terminal]
        results = await self._job_adapter.cancel_all(pending)
        logger.info(
            "deployment_stopped",
            deployment_id=deployment_id,
            cancelled=sum(results),
            cancel_failures=len(results) - sum(results),
        )
        return stopped

    # ------------------------------------------------------------------
    # Polling & scheduling
    # ------------------------------------------------------------------

    async def poll_deployment(self, deployment_id: str) -> Deployment:
        """Run one poll cycle; finishes the attempt once every job is done."""
        snapshot = await self._get(deployment_id)
        if snapshot.status != DeploymentStatus.DEPLOYING:
            return snapshot

        attempt = snapshot.attempt
        result = await self._job_adapter.poll(snapshot)

        def apply(deployment: Deployment) -> bool:
            if deployment.status != DeploymentStatus.DEPLOYING or deployment.attempt != attempt:
                return False
            changed = deployment.apply_job_updates(result.refs)
            outcome = deployment.execution_outcome
            if outcome == JobState.SUCCESS:
                deployment.complete(now=self._clock())
                return True
            if outcome == JobState.FAILED:
                unsuccessful = [
                    ref.label for ref in deployment.current_job_refs
                    if ref.state != JobState.SUCCESS
                ]
                deployment.fail(
                    f"Job(s) did not succeed: {', '.join(unsuccessful)}",
                    now=self._clock(),
                    failed_jobs=unsuccessful,
                )
                return True
            return changed

        polled = await self._mutate(deployment_id, apply)
        if polled.is_terminal and snapshot.status == DeploymentStatus.DEPLOYING:
            logger.info(
                "deployment_finished",
                deployment_id=deployment_id,
                status=polled.status.value,
                attempt=attempt,
            )
        return polled

    async def run_due_schedules(self, now: datetime | None = None) -> list[Deployment]:
        """Start every scheduled deployment whose time has come."""
        now = now or self._clock()
        candidates = [
            *await self._all_with_status(DeploymentStatus.SCHEDULED),
            *await self._all_with_status(DeploymentStatus.APPROVED),
        ]
        started: list[Deployment] = []
        for deployment in candidates:
            if not deployment.is_due(now):
                continue
            try:
                result = await self.execute_deployment(deployment.id, actor=deployment.author)
            except StateConflict as exc:
                logger.info(
                    "scheduled_start_skipped", deployment_id=deployment.id, reason=str(exc)
                )
                continue
            except DeployGateError as exc:
                logger.warning(
                    "scheduled_start_failed", deployment_id=deployment.id, error=str(exc)
                )
                await self._publish([self._task_event(TaskFailed, deployment, error=str(exc))])
                continue

            if result.status == DeploymentStatus.DEPLOYING:
                await self._publish([self._task_event(TaskExecuted, result)])
                started.append(result)
            else:
                error = str(result.details.get("error", "scheduled start failed"))
                await self._publish([self._task_event(TaskFailed, result, error=error)])
        return started

    async def _all_with_status(self, status: DeploymentStatus, page_size: int = 100) -> list[Deployment]:
        deployments: list[Deployment] = []
        offset = 0
        while True:
            page = await self._deployment_repo.list_by_status(status, limit=page_size, offset=offset)
            deployments.extend(page)
            if len(page) < page_size:
                return deployments
            offset += page_size

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_deployment(self, deployment_id: str) -> Deployment:
        return await self._get(deployment_id)

    async def list_deployments(
        self, status: DeploymentStatus, limit: int = 100, offset: int = 0
    ) -> list[Deployment]:
        return await self._deployment_repo.list_by_status(status, limit=limit, offset=offset)

    async def get_deployment_status(self, deployment_id: str) -> DeploymentStatusView:
        deployment = await self._get(deployment_id)
        return DeploymentStatusView(
            deployment=deployment,
            executions=await self._job_adapter.executions(deployment),
            log=await self._job_adapter.merged_log(deployment),
            approvals=await self._approval_gate.list_approvals(deployment_id),
        )
