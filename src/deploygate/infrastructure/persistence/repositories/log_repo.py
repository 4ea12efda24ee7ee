"""Deployment log repository implementation."""

from __future__ import annotations

from sqlalchemy import func, select

from deploygate.domain.models.job import LogLine, LogSeverity
from deploygate.domain.ports.repositories import DeploymentLogRepository
from deploygate.infrastructure.persistence.database import DatabaseManager
from deploygate.infrastructure.persistence.models import DeploymentLogORM


class PostgresDeploymentLogRepository(DeploymentLogRepository):
    """PostgreSQL implementation of the append-only deployment log.

    Appends for one deployment must not run concurrently; the poll worker
    never polls the same deployment twice at once.
    """

    def __init__(self, database: DatabaseManager) -> None:
        self._database = database

    async def append(self, deployment_id: str, lines: list[LogLine]) -> list[LogLine]:
        async with self._database.session() as session:
            existing = await session.execute(
                select(DeploymentLogORM.job_ref, DeploymentLogORM.line_offset)
                .where(DeploymentLogORM.deployment_id == deployment_id)
            )
            seen = {(row.job_ref, row.line_offset) for row in existing}
            last = await session.execute(
                select(func.coalesce(func.max(DeploymentLogORM.sequence), 0))
                .where(DeploymentLogORM.deployment_id == deployment_id)
            )
            sequence = last.scalar_one()

            appended: list[LogLine] = []
            for line in lines:
                if (line.job_ref, line.offset) in seen:
                    continue
                seen.add((line.job_ref, line.offset))
                sequence += 1
                stored = line.model_copy(
                    update={"deployment_id": deployment_id, "sequence": sequence}
                )
                session.add(self._to_orm(stored))
                appended.append(stored)
            await session.flush()
        return appended

    async def list_by_deployment(
        self, deployment_id: str, after_sequence: int = 0
    ) -> list[LogLine]:
        async with self._database.session() as session:
            result = await session.execute(
                select(DeploymentLogORM)
                .where(
                    DeploymentLogORM.deployment_id == deployment_id,
                    DeploymentLogORM.sequence > after_sequence,
                )
                .order_by(DeploymentLogORM.sequence.asc())
            )
            return [self._to_domain(orm) for orm in result.scalars().all()]

    async def offsets(self, deployment_id: str) -> dict[str, int]:
        async with self._database.session() as session:
            result = await session.execute(
                select(
                    DeploymentLogORM.job_ref,
                    func.max(DeploymentLogORM.line_offset).label("last_offset"),
                )
                .where(DeploymentLogORM.deployment_id == deployment_id)
                .group_by(DeploymentLogORM.job_ref)
            )
            return {row.job_ref: row.last_offset + 1 for row in result}

    def _to_orm(self, line: LogLine) -> DeploymentLogORM:
        return DeploymentLogORM(
            deployment_id=line.deployment_id,
            sequence=line.sequence,
            job_ref=line.job_ref,
            job_label=line.job_label,
            line_offset=line.offset,
            severity=line.severity.value,
            message=line.message,
            timestamp=line.timestamp,
        )

    def _to_domain(self, orm: DeploymentLogORM) -> LogLine:
        return LogLine(
            deployment_id=orm.deployment_id,
            sequence=orm.sequence,
            job_ref=orm.job_ref,
            job_label=orm.job_label,
            offset=orm.line_offset,
            severity=LogSeverity(orm.severity),
            message=orm.message,
            timestamp=orm.timestamp,
        )
