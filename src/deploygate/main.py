"""Application entrypoint."""

from __future__ import annotations

import uvicorn

from deploygate.api.app import create_app
from deploygate.config import Environment, get_settings
from deploygate.infrastructure.observability.logging import setup_logging
from deploygate.infrastructure.observability.tracing import setup_tracing


def main() -> None:
    """Run the application."""
    settings = get_settings()
    setup_logging(
        settings.observability.log_level,
        json_output=settings.environment != Environment.DEVELOPMENT,
    )
    setup_tracing(settings.observability)

    # One process: the background workers must not run twice.
    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.observability.log_level.lower(),
    )


if __name__ == "__main__":
    main()
