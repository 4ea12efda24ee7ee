"""Database engine and session management."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    async_sessionmaker,
    AsyncEngine,
    AsyncSession,
    create_async_engine,
)

from deploygate.config import DatabaseSettings
from deploygate.domain.errors import ConfigurationError, RepositoryError
from deploygate.infrastructure.persistence.models import Base


logger = structlog.get_logger(__name__)


def to_repository_error(exc: SQLAlchemyError) -> RepositoryError:
    """Classify a database failure as transient (retryable) or permanent."""
    if isinstance(exc, IntegrityError):
        return RepositoryError(f"Integrity violation: {exc.orig}", transient=False)
    if isinstance(exc, OperationalError):
        return RepositoryError(f"Database unavailable: {exc.orig}", transient=True)
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return RepositoryError("Database connection lost", transient=True)
    return RepositoryError(f"Database error: {exc}", transient=False)


class DatabaseManager:
    """Manages async database connections with connection pooling."""

    def __init__(self, settings: DatabaseSettings) -> None:
        self._settings = settings
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None

    async def initialize(self, create_schema: bool = False) -> None:
        self._engine = create_async_engine(
            self._settings.async_url,
            pool_size=self._settings.pool_size,
            max_overflow=self._settings.max_overflow,
            pool_timeout=self._settings.pool_timeout,
            pool_pre_ping=True,
            echo=False,
        )
        self._session_factory = async_sessionmaker(
            bind=self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )
        if create_schema:
            async with self._engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            logger.info("database_schema_ready", database=self._settings.name)

    async def close(self) -> None:
        if self._engine:
            await self._engine.dispose()

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """One unit of work; database failures surface as RepositoryError."""
        if self._session_factory is None:
            raise ConfigurationError("Database not initialized. Call initialize() first.")
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except SQLAlchemyError as exc:
                await session.rollback()
                error = to_repository_error(exc)
                logger.warning("database_error", error=error.message, transient=error.transient)
                raise error from exc
            except Exception:
                await session.rollback()
                raise

    @property
    def is_initialized(self) -> bool:
        return self._engine is not None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            raise ConfigurationError("Database not initialized.")
        return self._engine
