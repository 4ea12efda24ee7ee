"""Approval repository implementation."""

from __future__ import annotations

from sqlalchemy import delete, select, update

from deploygate.domain.models.approval import Approval, ApprovalStatus
from deploygate.domain.ports.repositories import ApprovalRepository
from deploygate.infrastructure.persistence.database import DatabaseManager
from deploygate.infrastructure.persistence.models import ApprovalORM


class PostgresApprovalRepository(ApprovalRepository):
    """PostgreSQL implementation of ApprovalRepository."""

    def __init__(self, database: DatabaseManager) -> None:
        self._database = database

    async def save_all(self, approvals: list[Approval]) -> list[Approval]:
        async with self._database.session() as session:
            session.add_all([self._to_orm(a) for a in approvals])
            await session.flush()
        return approvals

    async def get_by_id(self, approval_id: str) -> Approval | None:
        async with self._database.session() as session:
            result = await session.execute(
                select(ApprovalORM).where(ApprovalORM.id == approval_id)
            )
            orm = result.scalar_one_or_none()
            return self._to_domain(orm) if orm else None

    async def list_by_deployment(self, deployment_id: str) -> list[Approval]:
        async with self._database.session() as session:
            result = await session.execute(
                select(ApprovalORM)
                .where(ApprovalORM.deployment_id == deployment_id)
                .order_by(ApprovalORM.level.asc(), ApprovalORM.created_at.asc())
            )
            return [self._to_domain(orm) for orm in result.scalars().all()]

    async def compare_and_swap(self, approval: Approval, expected_revision: int) -> bool:
        async with self._database.session() as session:
            result = await session.execute(
                update(ApprovalORM)
                .where(
                    ApprovalORM.id == approval.id,
                    ApprovalORM.revision == expected_revision,
                )
                .values(
                    status=approval.status.value,
                    comment=approval.comment,
                    decided_at=approval.decided_at,
                    revision=approval.revision,
                    updated_at=approval.updated_at,
                )
            )
            return result.rowcount == 1

    async def delete_by_deployment(self, deployment_id: str) -> int:
        async with self._database.session() as session:
            result = await session.execute(
                delete(ApprovalORM).where(ApprovalORM.deployment_id == deployment_id)
            )
            return result.rowcount

    def _to_orm(self, approval: Approval) -> ApprovalORM:
        return ApprovalORM(
            id=approval.id,
            deployment_id=approval.deployment_id,
            approver_id=approval.approver_id,
            approver_name=approval.approver_name,
            level=approval.level,
            status=approval.status.value,
            comment=approval.comment,
            decided_at=approval.decided_at,
            revision=approval.revision,
            created_at=approval.created_at,
            updated_at=approval.updated_at,
        )

    def _to_domain(self, orm: ApprovalORM) -> Approval:
        return Approval(
            id=orm.id,
            deployment_id=orm.deployment_id,
            approver_id=orm.approver_id,
            approver_name=orm.approver_name or "",
            level=orm.level,
            status=ApprovalStatus(orm.status),
            comment=orm.comment,
            decided_at=orm.decided_at,
            revision=orm.revision,
            created_at=orm.created_at,
            updated_at=orm.updated_at,
        )
