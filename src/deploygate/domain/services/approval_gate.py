"""Multi-level approval gate in front of deployment execution."""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import structlog

from deploygate.domain.errors import (
    AuthorizationError,
    NotFoundError,
    OutOfOrderError,
    StateConflict,
)
from deploygate.domain.events.notification_events import ApprovalRequested
from deploygate.domain.models.approval import (
    Approval,
    ApprovalDecision,
    ApprovalReadiness,
    ApproverSpec,
    derive_readiness,
    lowest_pending_level,
)
from deploygate.domain.models.deployment import Actor, Deployment, DeploymentStatus
from deploygate.domain.ports.repositories import ApprovalRepository, DeploymentRepository
from deploygate.domain.ports.services import DistributedLock
from deploygate.domain.services.notification_dispatcher import NotificationDispatcher


logger = structlog.get_logger(__name__)


class ApprovalGate:
    """Sole writer of approval records.

    Decisions on one deployment are serialized through the distributed
    lock so the level-ordering check and the write happen atomically.
    """

    def __init__(
        self,
        approval_repo: ApprovalRepository,
        deployment_repo: DeploymentRepository,
        lock_service: DistributedLock,
        dispatcher: NotificationDispatcher | None = None,
        lock_ttl_seconds: int = 30,
        lock_wait_seconds: float = 5.0,
    ) -> None:
        self._approval_repo = approval_repo
        self._deployment_repo = deployment_repo
        self._lock_service = lock_service
        self._dispatcher = dispatcher
        self._lock_ttl = lock_ttl_seconds
        self._lock_wait = lock_wait_seconds

    @asynccontextmanager
    async def _decision_lock(self, deployment_id: str) -> AsyncIterator[None]:
        lock_key = f"deployment:{deployment_id}:approvals"
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._lock_wait
        while not await self._lock_service.acquire(lock_key, ttl_seconds=self._lock_ttl):
            if loop.time() >= deadline:
                raise StateConflict(
                    f"Approvals of deployment {deployment_id} are being decided, retry later"
                )
            await asyncio.sleep(0.05)
        try:
            yield
        finally:
            await self._lock_service.release(lock_key)

    # ------------------------------------------------------------------
    # Requests
    # ------------------------------------------------------------------

    async def request_approval(
        self,
        deployment: Deployment,
        approvers: list[ApproverSpec],
        requested_by: Actor | None = None,
    ) -> list[Approval]:
        """Create one approval per (approver, level) and notify pending approvers.

        Calling this again for the same deployment creates only what is
        missing.
        """
        requested_by = requested_by or deployment.author
        async with self._decision_lock(deployment.id):
            existing = await self._approval_repo.list_by_deployment(deployment.id)
            known = {(a.approver_id, a.level) for a in existing}
            created = [
                Approval(
                    deployment_id=deployment.id,
                    approver_id=spec.approver_id,
                    approver_name=spec.approver_name,
                    level=spec.level,
                )
                for spec in approvers
                if (spec.approver_id, spec.level) not in known
            ]
            if created:
                await self._approval_repo.save_all(created)
            approvals = sorted([*existing, *created], key=lambda a: a.level)

        logger.info(
            "approvals_requested",
            deployment_id=deployment.id,
            created=len(created),
            total=len(approvals),
        )

        for approval in approvals:
            if not approval.is_pending:
                continue
            await self._notify(ApprovalRequested(
                resource_id=approval.id,
                resource_name=deployment.name,
                deployment_id=deployment.id,
                acting_user_id=requested_by.user_id,
                acting_user_name=requested_by.user_name,
                environment=deployment.environment.value,
                approver_id=approval.approver_id,
                level=approval.level,
                addressees=(approval.approver_id,),
            ))
        return approvals

    # ------------------------------------------------------------------
    # Decisions
    # ------------------------------------------------------------------

    async def decide(
        self,
        approval_id: str,
        approver_id: str,
        decision: ApprovalDecision,
        comment: str | None = None,
    ) -> tuple[Approval, ApprovalReadiness]:
        """Record one approver's decision.

        Returns the stored approval and what the full set of approvals now
        means for the deployment. Other approvals are never touched.
        """
        approval = await self._approval_repo.get_by_id(approval_id)
        if approval is None:
            raise NotFoundError(f"Approval {approval_id} not found")
        if approval.approver_id != approver_id:
            raise AuthorizationError(
                f"User {approver_id} is not the approver of approval {approval_id}"
            )

        async with self._decision_lock(approval.deployment_id):
            approvals = await self._approval_repo.list_by_deployment(approval.deployment_id)
            current = next((a for a in approvals if a.id == approval_id), None)
            if current is None:
                raise NotFoundError(f"Approval {approval_id} not found")

            expected_revision = current.revision
            updated = current.clone()
            updated.decide(decision, comment)

            deployment = await self._deployment_repo.get_by_id(approval.deployment_id)
            if deployment is None:
                raise NotFoundError(f"Deployment {approval.deployment_id} not found")
            if deployment.status != DeploymentStatus.PENDING:
                raise StateConflict(
                    f"Deployment {deployment.id} is {deployment.status.value}, "
                    "approvals can no longer be decided"
                )

            lowest = lowest_pending_level(approvals)
            if lowest is not None and current.level > lowest:
                raise OutOfOrderError(
                    f"Level {lowest} approvals must be decided before level {current.level}"
                )

            if not await self._approval_repo.compare_and_swap(updated, expected_revision):
                raise StateConflict(f"Approval {approval_id} was modified concurrently")

            readiness = derive_readiness(
                [updated if a.id == approval_id else a for a in approvals]
            )

        logger.info(
            "approval_decided",
            approval_id=approval_id,
            deployment_id=approval.deployment_id,
            decision=decision.value,
            level=updated.level,
            readiness=readiness.value,
        )
        return updated, readiness

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    async def get_approval(self, approval_id: str) -> Approval:
        approval = await self._approval_repo.get_by_id(approval_id)
        if approval is None:
            raise NotFoundError(f"Approval {approval_id} not found")
        return approval

    async def readiness(self, deployment_id: str) -> ApprovalReadiness:
        return derive_readiness(await self._approval_repo.list_by_deployment(deployment_id))

    async def list_approvals(self, deployment_id: str) -> list[Approval]:
        return await self._approval_repo.list_by_deployment(deployment_id)

    async def _notify(self, event: ApprovalRequested) -> None:
        if self._dispatcher is None:
            return
        try:
            await self._dispatcher.dispatch(event)
        except Exception:
            logger.exception(
                "notification_dispatch_failed",
                kind=event.kind,
                deployment_id=event.deployment_id,
            )
