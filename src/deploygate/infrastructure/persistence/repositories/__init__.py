"""Repository implementations."""

from deploygate.infrastructure.persistence.repositories.approval_repo import (
    PostgresApprovalRepository,
)
from deploygate.infrastructure.persistence.repositories.deployment_repo import (
    PostgresDeploymentRepository,
)
from deploygate.infrastructure.persistence.repositories.directory_repo import (
    PostgresProjectRepository,
    PostgresUserRepository,
)
from deploygate.infrastructure.persistence.repositories.in_memory import (
    InMemoryApprovalRepository,
    InMemoryDeploymentLogRepository,
    InMemoryDeploymentRepository,
    InMemoryProjectRepository,
    InMemoryUserRepository,
)
from deploygate.infrastructure.persistence.repositories.log_repo import (
    PostgresDeploymentLogRepository,
)


__all__ = [
    "InMemoryApprovalRepository",
    "InMemoryDeploymentLogRepository",
    "InMemoryDeploymentRepository",
    "InMemoryProjectRepository",
    "InMemoryUserRepository",
    "PostgresApprovalRepository",
    "PostgresDeploymentLogRepository",
    "PostgresDeploymentRepository",
    "PostgresProjectRepository",
    "PostgresUserRepository",
]
