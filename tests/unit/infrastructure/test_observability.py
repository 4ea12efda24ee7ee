"""Unit tests for logging, tracing and correlation IDs."""

from __future__ import annotations

import json
from collections.abc import Iterator

import pytest
import structlog
from fastapi import FastAPI
from fastapi.testclient import TestClient

from deploygate.api.middleware.correlation import (
    CORRELATION_HEADER,
    CorrelationIdMiddleware,
    get_correlation_id,
)
from deploygate.config import ObservabilitySettings
from deploygate.infrastructure.observability.logging import bind_deployment, setup_logging
from deploygate.infrastructure.observability.tracing import get_tracer, setup_tracing


@pytest.fixture(autouse=True)
def _reset_structlog() -> Iterator[None]:
    yield
    structlog.contextvars.clear_contextvars()
    structlog.reset_defaults()


class TestLogging:
    def test_json_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("INFO", json_output=True)
        bind_deployment("d-1")

        structlog.get_logger("test").info("deployment_started", attempt=1)

        record = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
        assert record["event"] == "deployment_started"
        assert record["deployment_id"] == "d-1"
        assert record["attempt"] == 1
        assert record["level"] == "info"
        assert "timestamp" in record

    def test_level_filtering(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("WARNING", json_output=True)
        structlog.get_logger("test").info("quiet")
        assert "quiet" not in capsys.readouterr().out

    def test_console_output(self, capsys: pytest.CaptureFixture[str]) -> None:
        setup_logging("DEBUG", json_output=False)
        structlog.get_logger("test").debug("poll_tick", in_flight=2)
        out = capsys.readouterr().out
        assert "poll_tick" in out
        assert "in_flight" in out


class TestTracing:
    def test_disabled_tracing_still_yields_spans(self) -> None:
        setup_tracing(ObservabilitySettings(tracing_enabled=False))
        with get_tracer("test").start_as_current_span("noop") as span:
            assert span is not None


class TestCorrelationId:
    @pytest.fixture
    def client(self) -> TestClient:
        app = FastAPI()
        app.add_middleware(CorrelationIdMiddleware)

        @app.get("/echo")
        async def echo() -> dict[str, str]:
            return {"correlation_id": get_correlation_id()}

        return TestClient(app)

    def test_propagates_incoming_header(self, client: TestClient) -> None:
        response = client.get("/echo", headers={CORRELATION_HEADER: "abc-123"})
        assert response.headers[CORRELATION_HEADER] == "abc-123"
        assert response.json() == {"correlation_id": "abc-123"}

    def test_generates_one_when_missing(self, client: TestClient) -> None:
        response = client.get("/echo")
        generated = response.headers[CORRELATION_HEADER]
        assert generated
        assert response.json() == {"correlation_id": generated}

    def test_empty_outside_a_request(self) -> None:
        assert get_correlation_id() == ""
