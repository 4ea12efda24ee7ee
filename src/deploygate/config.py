"""Application configuration using pydantic-settings."""

from __future__ import annotations

from enum import Enum
from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings


class Environment(str, Enum):
    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"
    TESTING = "testing"


class StorageBackend(str, Enum):
    MEMORY = "memory"
    POSTGRES = "postgres"


class RunnerBackend(str, Enum):
    JENKINS = "jenkins"
    SIMULATED = "simulated"


class CoordinationBackend(str, Enum):
    MEMORY = "memory"
    REDIS = "redis"


class DatabaseSettings(BaseSettings):
    """Database configuration."""

    host: str = Field(default="localhost", alias="DB_HOST")
    port: int = Field(default=5432, alias="DB_PORT")
    name: str = Field(default="deploygate", alias="DB_NAME")
    user: str = Field(default="deploygate", alias="DB_USER")
    password: str = Field(default="", alias="DB_PASSWORD")
    pool_size: int = Field(default=10, alias="DB_POOL_SIZE")
    max_overflow: int = Field(default=5, alias="DB_MAX_OVERFLOW")
    pool_timeout: int = Field(default=30, alias="DB_POOL_TIMEOUT")

    @property
    def async_url(self) -> str:
        return (
            f"postgresql+asyncpg://{self.user}:{self.password}"
            f"@{self.host}:{self.port}/{self.name}"
        )

    model_config = {"env_prefix": "DB_", "extra": "ignore", "populate_by_name": True}


class RedisSettings(BaseSettings):
    """Redis configuration."""

    host: str = Field(default="localhost", alias="REDIS_HOST")
    port: int = Field(default=6379, alias="REDIS_PORT")
    password: str = Field(default="", alias="REDIS_PASSWORD")
    db: int = Field(default=0, alias="REDIS_DB")
    lock_timeout: int = Field(default=30, alias="REDIS_LOCK_TIMEOUT")
    feed_max_entries: int = Field(default=200, alias="REDIS_FEED_MAX_ENTRIES")

    @property
    def url(self) -> str:
        auth = f":{self.password}@" if self.password else ""
        return f"redis://{auth}{self.host}:{self.port}/{self.db}"

    model_config = {"env_prefix": "REDIS_", "extra": "ignore", "populate_by_name": True}


class JenkinsSettings(BaseSettings):
    """Build server configuration."""

    base_url: str = Field(default="http://localhost:8080", alias="JENKINS_BASE_URL")
    username: str = Field(default="", alias="JENKINS_USERNAME")
    token: str = Field(default="", alias="JENKINS_TOKEN")
    timeout_seconds: float = Field(default=30.0, alias="JENKINS_TIMEOUT_SECONDS")
    verify_tls: bool = Field(default=True, alias="JENKINS_VERIFY_TLS")

    model_config = {"env_prefix": "JENKINS_", "extra": "ignore", "populate_by_name": True}


class SmtpSettings(BaseSettings):
    """Outbound mail configuration."""

    host: str = Field(default="", alias="SMTP_HOST")
    port: int = Field(default=587, alias="SMTP_PORT")
    username: str = Field(default="", alias="SMTP_USERNAME")
    password: str = Field(default="", alias="SMTP_PASSWORD")
    from_address: str = Field(default="deploygate@localhost", alias="SMTP_FROM_ADDRESS")
    use_tls: bool = Field(default=True, alias="SMTP_USE_TLS")
    timeout_seconds: float = Field(default=15.0, alias="SMTP_TIMEOUT_SECONDS")

    @property
    def is_configured(self) -> bool:
        return bool(self.host and self.username and self.password)

    model_config = {"env_prefix": "SMTP_", "extra": "ignore", "populate_by_name": True}


class PollerSettings(BaseSettings):
    """Background polling of in-flight and scheduled deployments."""

    poll_interval_seconds: float = Field(default=5.0, alias="POLLER_POLL_INTERVAL_SECONDS")
    schedule_interval_seconds: float = Field(
        default=30.0, alias="POLLER_SCHEDULE_INTERVAL_SECONDS"
    )
    not_found_grace_seconds: float = Field(
        default=300.0, alias="POLLER_NOT_FOUND_GRACE_SECONDS"
    )
    max_concurrent_job_calls: int = Field(default=4, alias="POLLER_MAX_CONCURRENT_JOB_CALLS")
    max_concurrent_deployments: int = Field(
        default=8, alias="POLLER_MAX_CONCURRENT_DEPLOYMENTS"
    )

    model_config = {"env_prefix": "POLLER_", "extra": "ignore", "populate_by_name": True}


class NotificationSettings(BaseSettings):
    """Notification fan-out configuration."""

    max_concurrency: int = Field(default=8, alias="NOTIFY_MAX_CONCURRENCY")
    delivery_timeout_seconds: float = Field(default=10.0, alias="NOTIFY_DELIVERY_TIMEOUT_SECONDS")
    audience_cache_ttl_seconds: int = Field(default=300, alias="NOTIFY_AUDIENCE_CACHE_TTL_SECONDS")
    console_base_url: str = Field(default="", alias="NOTIFY_CONSOLE_BASE_URL")

    model_config = {"env_prefix": "NOTIFY_", "extra": "ignore", "populate_by_name": True}


class ObservabilitySettings(BaseSettings):
    """Observability configuration."""

    service_name: str = Field(default="deploygate", alias="SERVICE_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    metrics_enabled: bool = Field(default=True, alias="METRICS_ENABLED")
    tracing_enabled: bool = Field(default=False, alias="TRACING_ENABLED")

    model_config = {"env_prefix": "OBS_", "extra": "ignore", "populate_by_name": True}


class Settings(BaseSettings):
    """Main application settings."""

    environment: Environment = Field(default=Environment.DEVELOPMENT, alias="ENVIRONMENT")
    debug: bool = Field(default=False, alias="DEBUG")
    api_prefix: str = Field(default="/api/v1", alias="API_PREFIX")
    host: str = Field(default="0.0.0.0", alias="HOST")  # noqa: S104
    port: int = Field(default=8000, alias="PORT")
    workers_enabled: bool = Field(default=True, alias="WORKERS_ENABLED")

    storage_backend: StorageBackend = Field(default=StorageBackend.MEMORY, alias="STORAGE_BACKEND")
    runner_backend: RunnerBackend = Field(default=RunnerBackend.SIMULATED, alias="RUNNER_BACKEND")
    coordination_backend: CoordinationBackend = Field(
        default=CoordinationBackend.MEMORY, alias="COORDINATION_BACKEND"
    )

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    redis: RedisSettings = Field(default_factory=RedisSettings)
    jenkins: JenkinsSettings = Field(default_factory=JenkinsSettings)
    smtp: SmtpSettings = Field(default_factory=SmtpSettings)
    poller: PollerSettings = Field(default_factory=PollerSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    observability: ObservabilitySettings = Field(default_factory=ObservabilitySettings)

    model_config = {"env_prefix": "", "extra": "ignore", "populate_by_name": True}


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings."""
    return Settings()
