"""Deployment repository implementation."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select, update

from deploygate.domain.models.deployment import (
    Actor,
    Deployment,
    DeploymentEnvironment,
    DeploymentStatus,
    RollbackRequest,
)
from deploygate.domain.models.job import JobRef
from deploygate.domain.ports.repositories import DeploymentRepository
from deploygate.infrastructure.persistence.database import DatabaseManager
from deploygate.infrastructure.persistence.models import DeploymentORM


class PostgresDeploymentRepository(DeploymentRepository):
    """PostgreSQL implementation of DeploymentRepository."""

    def __init__(self, database: DatabaseManager) -> None:
        self._database = database

    async def save(self, deployment: Deployment) -> Deployment:
        async with self._database.session() as session:
            session.add(DeploymentORM(id=deployment.id, **self._values(deployment)))
            await session.flush()
        return deployment

    async def get_by_id(self, deployment_id: str) -> Deployment | None:
        async with self._database.session() as session:
            result = await session.execute(
                select(DeploymentORM).where(DeploymentORM.id == deployment_id)
            )
            orm = result.scalar_one_or_none()
            return self._to_domain(orm) if orm else None

    async def list_by_status(
        self, status: DeploymentStatus, limit: int = 100, offset: int = 0
    ) -> list[Deployment]:
        async with self._database.session() as session:
            result = await session.execute(
                select(DeploymentORM)
                .where(DeploymentORM.status == status.value)
                .order_by(DeploymentORM.created_at.asc())
                .limit(limit)
                .offset(offset)
            )
            return [self._to_domain(orm) for orm in result.scalars().all()]

    async def compare_and_swap(self, deployment: Deployment, expected_revision: int) -> bool:
        async with self._database.session() as session:
            result = await session.execute(
                update(DeploymentORM)
                .where(
                    DeploymentORM.id == deployment.id,
                    DeploymentORM.revision == expected_revision,
                )
                .values(**self._values(deployment))
            )
            return result.rowcount == 1

    def _values(self, deployment: Deployment) -> dict[str, Any]:
        return {
            "project_id": deployment.project_id,
            "name": deployment.name,
            "environment": deployment.environment.value,
            "version": deployment.version,
            "status": deployment.status.value,
            "job_names": list(deployment.job_names),
            "rollback_job_names": list(deployment.rollback_job_names),
            "build_parameters": dict(deployment.build_parameters),
            "job_refs_data": [ref.model_dump(mode="json") for ref in deployment.job_refs],
            "scheduled_at": deployment.scheduled_at,
            "started_at": deployment.started_at,
            "completed_at": deployment.completed_at,
            "require_approval": deployment.require_approval,
            "author_id": deployment.author_id,
            "author_name": deployment.author_name,
            "attempt": deployment.attempt,
            "executed_by_data": (
                deployment.executed_by.model_dump(mode="json") if deployment.executed_by else None
            ),
            "rollback_data": (
                deployment.rollback.model_dump(mode="json") if deployment.rollback else None
            ),
            "details": dict(deployment.details),
            "revision": deployment.revision,
            "created_at": deployment.created_at,
            "updated_at": deployment.updated_at,
        }

    def _to_domain(self, orm: DeploymentORM) -> Deployment:
        return Deployment(
            id=orm.id,
            project_id=orm.project_id,
            name=orm.name,
            environment=DeploymentEnvironment(orm.environment),
            version=orm.version,
            status=DeploymentStatus(orm.status),
            job_names=list(orm.job_names or []),
            rollback_job_names=list(orm.rollback_job_names or []),
            build_parameters=dict(orm.build_parameters or {}),
            job_refs=[JobRef.model_validate(r) for r in orm.job_refs_data or []],
            scheduled_at=orm.scheduled_at,
            started_at=orm.started_at,
            completed_at=orm.completed_at,
            require_approval=orm.require_approval,
            author_id=orm.author_id,
            author_name=orm.author_name or "",
            attempt=orm.attempt,
            executed_by=Actor.model_validate(orm.executed_by_data) if orm.executed_by_data else None,
            rollback=RollbackRequest.model_validate(orm.rollback_data) if orm.rollback_data else None,
            details=dict(orm.details or {}),
            revision=orm.revision,
            created_at=orm.created_at,
            updated_at=orm.updated_at,
        )
