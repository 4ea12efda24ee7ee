"""Unit tests for the SQLAlchemy persistence layer that need no database."""

from __future__ import annotations

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError, SQLAlchemyError

from deploygate.config import DatabaseSettings
from deploygate.domain.errors import ConfigurationError
from deploygate.domain.models.deployment import Actor, Deployment, DeploymentSpec
from deploygate.domain.models.job import JobRef, JobState
from deploygate.infrastructure.persistence.database import DatabaseManager, to_repository_error
from deploygate.infrastructure.persistence.models import DeploymentORM
from deploygate.infrastructure.persistence.repositories.deployment_repo import (
    PostgresDeploymentRepository,
)


class TestErrorClassification:
    def test_integrity_error_is_permanent(self) -> None:
        error = to_repository_error(IntegrityError("INSERT", {}, Exception("duplicate key")))
        assert not error.transient
        assert "duplicate key" in error.message

    def test_operational_error_is_transient(self) -> None:
        error = to_repository_error(OperationalError("SELECT", {}, Exception("timeout")))
        assert error.transient

    def test_other_errors_are_permanent(self) -> None:
        assert not to_repository_error(SQLAlchemyError("weird")).transient


class TestDatabaseManager:
    @pytest.mark.asyncio
    async def test_session_before_initialize(self) -> None:
        manager = DatabaseManager(DatabaseSettings())
        assert not manager.is_initialized
        with pytest.raises(ConfigurationError):
            async with manager.session():
                pass

    def test_engine_before_initialize(self) -> None:
        with pytest.raises(ConfigurationError):
            _ = DatabaseManager(DatabaseSettings()).engine


class TestDeploymentMapping:
    def test_row_round_trip(self, sample_spec: DeploymentSpec) -> None:
        repo = PostgresDeploymentRepository(DatabaseManager(DatabaseSettings()))
        deployment = Deployment.from_spec(sample_spec)
        deployment.begin_execution(Actor(user_id="bob", user_name="Bob"), {"REGION": "eu"})
        deployment.record_submission([
            JobRef(job_name="build-api", queue_id="12", attempt=1, build_number=3,
                   state=JobState.RUNNING),
        ])

        row = DeploymentORM(id=deployment.id, **repo._values(deployment))
        restored = repo._to_domain(row)

        assert restored.status == deployment.status
        assert restored.job_refs == deployment.job_refs
        assert restored.executed_by == deployment.executed_by
        assert restored.build_parameters == {"REGION": "eu"}
        assert restored.revision == deployment.revision
