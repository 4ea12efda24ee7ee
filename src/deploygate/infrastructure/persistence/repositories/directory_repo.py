"""Project and user directory repositories."""

from __future__ import annotations

from sqlalchemy import select

from deploygate.domain.models.directory import Project, User
from deploygate.domain.ports.repositories import ProjectRepository, UserRepository
from deploygate.infrastructure.persistence.database import DatabaseManager
from deploygate.infrastructure.persistence.models import ProjectORM, UserORM


class PostgresProjectRepository(ProjectRepository):
    def __init__(self, database: DatabaseManager) -> None:
        self._database = database

    async def get_by_id(self, project_id: str) -> Project | None:
        async with self._database.session() as session:
            result = await session.execute(
                select(ProjectORM).where(ProjectORM.id == project_id)
            )
            orm = result.scalar_one_or_none()
            if orm is None:
                return None
            return Project(
                id=orm.id,
                name=orm.name,
                owner_id=orm.owner_id,
                description=orm.description or "",
                revision=orm.revision,
                created_at=orm.created_at,
                updated_at=orm.updated_at,
            )


class PostgresUserRepository(UserRepository):
    def __init__(self, database: DatabaseManager) -> None:
        self._database = database

    async def get_by_id(self, user_id: str) -> User | None:
        async with self._database.session() as session:
            result = await session.execute(
                select(UserORM).where(UserORM.id == user_id)
            )
            orm = result.scalar_one_or_none()
            if orm is None:
                return None
            return User(
                id=orm.id,
                username=orm.username,
                display_name=orm.display_name or "",
                email=orm.email,
                is_active=orm.is_active,
                revision=orm.revision,
                created_at=orm.created_at,
                updated_at=orm.updated_at,
            )
