"""Deployment API routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query, status

from deploygate.api.dependencies.actor import get_actor
from deploygate.api.dependencies.services import get_orchestrator
from deploygate.api.schemas.deployment_schemas import (
    ApprovalResponse,
    CreateDeploymentRequest,
    DeploymentResponse,
    DeploymentStatusResponse,
    ExecuteDeploymentRequest,
    JobExecutionResponse,
    LogLineResponse,
    RollbackDeploymentRequest,
)
from deploygate.domain.models.approval import ApproverSpec
from deploygate.domain.models.deployment import Actor, DeploymentSpec, DeploymentStatus
from deploygate.domain.services.deployment_orchestrator import DeploymentOrchestrator


router = APIRouter(prefix="/deployments", tags=["deployments"])

Orchestrator = Annotated[DeploymentOrchestrator, Depends(get_orchestrator)]
CurrentActor = Annotated[Actor, Depends(get_actor)]


@router.post(
    "",
    response_model=DeploymentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_deployment(
    request: CreateDeploymentRequest,
    actor: CurrentActor,
    orchestrator: Orchestrator,
) -> DeploymentResponse:
    """Create a deployment; approvals are requested immediately if required."""
    spec = DeploymentSpec(
        project_id=request.project_id,
        name=request.name,
        environment=request.environment,
        version=request.version,
        job_names=request.job_names,
        rollback_job_names=request.rollback_job_names,
        require_approval=request.require_approval,
        approvers=[ApproverSpec(**a.model_dump()) for a in request.approvers],
        scheduled_at=request.scheduled_at,
        build_parameters=request.build_parameters,
        author_id=actor.user_id,
        author_name=actor.user_name,
    )
    deployment = await orchestrator.create_deployment(spec)
    return DeploymentResponse.from_domain(deployment)


@router.get("", response_model=list[DeploymentResponse])
async def list_deployments(
    orchestrator: Orchestrator,
    deployment_status: Annotated[DeploymentStatus, Query(alias="status")],
    limit: Annotated[int, Query(ge=1, le=500)] = 50,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> list[DeploymentResponse]:
    deployments = await orchestrator.list_deployments(deployment_status, limit=limit, offset=offset)
    return [DeploymentResponse.from_domain(d) for d in deployments]


@router.get("/{deployment_id}", response_model=DeploymentResponse)
async def get_deployment(deployment_id: str, orchestrator: Orchestrator) -> DeploymentResponse:
    return DeploymentResponse.from_domain(await orchestrator.get_deployment(deployment_id))


@router.get("/{deployment_id}/status", response_model=DeploymentStatusResponse)
async def get_deployment_status(
    deployment_id: str, orchestrator: Orchestrator
) -> DeploymentStatusResponse:
    """Deployment, per-job executions of the current attempt and the merged log."""
    view = await orchestrator.get_deployment_status(deployment_id)
    return DeploymentStatusResponse(
        deployment=DeploymentResponse.from_domain(view.deployment),
        executions=[JobExecutionResponse.from_domain(e) for e in view.executions],
        log=[LogLineResponse.from_domain(line) for line in view.log],
        approvals=[ApprovalResponse.from_domain(a) for a in view.approvals],
    )


@router.post(
    "/{deployment_id}/execute",
    response_model=DeploymentResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def execute_deployment(
    deployment_id: str,
    actor: CurrentActor,
    orchestrator: Orchestrator,
    request: ExecuteDeploymentRequest | None = None,
) -> DeploymentResponse:
    deployment = await orchestrator.execute_deployment(
        deployment_id,
        build_parameters=request.build_parameters if request else None,
        actor=actor,
    )
    return DeploymentResponse.from_domain(deployment)


@router.post("/{deployment_id}/stop", response_model=DeploymentResponse)
async def stop_deployment(
    deployment_id: str, actor: CurrentActor, orchestrator: Orchestrator
) -> DeploymentResponse:
    deployment = await orchestrator.stop_deployment(deployment_id, actor=actor)
    return DeploymentResponse.from_domain(deployment)


@router.post(
    "/{deployment_id}/rollback",
    response_model=DeploymentResponse,
    status_code=status.HTTP_202_ACCEPTED,
)
async def rollback_deployment(
    deployment_id: str,
    request: RollbackDeploymentRequest,
    actor: CurrentActor,
    orchestrator: Orchestrator,
) -> DeploymentResponse:
    deployment = await orchestrator.rollback_deployment(
        deployment_id, request.target_version, request.reason, actor=actor
    )
    return DeploymentResponse.from_domain(deployment)
