"""FastAPI application factory."""

from __future__ import annotations

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from deploygate.api.dependencies.services import ServiceContainer
from deploygate.api.middleware.correlation import CorrelationIdMiddleware
from deploygate.api.routes import (
    approval_routes,
    deployment_routes,
    health_routes,
    notification_routes,
)
from deploygate.config import get_settings, Settings
from deploygate.domain.errors import (
    AuthorizationError,
    ConfigurationError,
    DeployGateError,
    NotFoundError,
    RepositoryError,
    StateConflict,
    UpstreamUnavailable,
    ValidationError,
)


logger = structlog.get_logger(__name__)

# Checked in order; subclasses before their bases.
_ERROR_STATUS: tuple[tuple[type[DeployGateError], int], ...] = (
    (ValidationError, status.HTTP_422_UNPROCESSABLE_ENTITY),
    (AuthorizationError, status.HTTP_403_FORBIDDEN),
    (NotFoundError, status.HTTP_404_NOT_FOUND),
    (StateConflict, status.HTTP_409_CONFLICT),
    (UpstreamUnavailable, status.HTTP_502_BAD_GATEWAY),
    (ConfigurationError, status.HTTP_500_INTERNAL_SERVER_ERROR),
)


def error_status(exc: DeployGateError) -> int:
    if isinstance(exc, RepositoryError):
        return (
            status.HTTP_503_SERVICE_UNAVAILABLE
            if exc.transient
            else status.HTTP_500_INTERNAL_SERVER_ERROR
        )
    for error_type, code in _ERROR_STATUS:
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def _handle_domain_error(_request: Request, exc: DeployGateError) -> JSONResponse:
    code = error_status(exc)
    log = logger.warning if code < 500 else logger.error
    log("request_failed", kind=exc.kind, status_code=code, error=exc.message)
    return JSONResponse(status_code=code, content=exc.to_dict())


def create_app(settings: Settings | None = None, container: ServiceContainer | None = None) -> FastAPI:
    """Create and configure the FastAPI application.

    The container is built here unless one is passed in, and its lifecycle
    follows the application's.
    """
    if settings is None:
        settings = container.settings if container is not None else get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        """Application lifespan handler for startup/shutdown."""
        logger.info(
            "application_starting",
            environment=settings.environment.value,
            debug=settings.debug,
        )
        services = container or ServiceContainer(settings)
        app.state.container = services
        await services.start()

        yield

        logger.info("application_shutting_down")
        await services.shutdown()
        logger.info("application_shutdown_complete")

    app = FastAPI(
        title="DeployGate",
        description="Deployment orchestration with multi-level approval and notifications",
        version="1.0.0",
        docs_url=f"{settings.api_prefix}/docs",
        redoc_url=f"{settings.api_prefix}/redoc",
        openapi_url=f"{settings.api_prefix}/openapi.json",
        lifespan=lifespan,
    )

    # Middleware (order matters - first added = outermost)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"] if settings.debug else [],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)
    app.add_exception_handler(DeployGateError, _handle_domain_error)

    # Routes
    app.include_router(health_routes.router)
    app.include_router(deployment_routes.router, prefix=settings.api_prefix)
    app.include_router(approval_routes.router, prefix=settings.api_prefix)
    app.include_router(notification_routes.router, prefix=settings.api_prefix)

    return app
