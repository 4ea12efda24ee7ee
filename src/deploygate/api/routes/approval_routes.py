"""Approval API routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends

from deploygate.api.dependencies.actor import get_actor
from deploygate.api.dependencies.services import get_approval_gate, get_orchestrator
from deploygate.api.schemas.deployment_schemas import ApprovalResponse, DecideApprovalRequest
from deploygate.domain.models.deployment import Actor
from deploygate.domain.services.approval_gate import ApprovalGate
from deploygate.domain.services.deployment_orchestrator import DeploymentOrchestrator
from deploygate.infrastructure.observability.metrics import APPROVAL_DECISIONS_TOTAL


router = APIRouter(tags=["approvals"])


@router.get("/deployments/{deployment_id}/approvals", response_model=list[ApprovalResponse])
async def list_approvals(
    deployment_id: str,
    gate: Annotated[ApprovalGate, Depends(get_approval_gate)],
) -> list[ApprovalResponse]:
    return [ApprovalResponse.from_domain(a) for a in await gate.list_approvals(deployment_id)]


@router.post("/approvals/{approval_id}/decision", response_model=ApprovalResponse)
async def decide_approval(
    approval_id: str,
    request: DecideApprovalRequest,
    actor: Annotated[Actor, Depends(get_actor)],
    orchestrator: Annotated[DeploymentOrchestrator, Depends(get_orchestrator)],
) -> ApprovalResponse:
    """Approve or reject as the calling user; levels are decided in ascending order."""
    approval = await orchestrator.decide_approval(
        approval_id,
        actor.user_id,
        request.decision,
        comment=request.comment,
        approver_name=actor.user_name,
    )
    APPROVAL_DECISIONS_TOTAL.labels(decision=request.decision.value).inc()
    return ApprovalResponse.from_domain(approval)
