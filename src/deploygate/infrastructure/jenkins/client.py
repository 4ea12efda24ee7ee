"""Jenkins implementation of the JobRunner port."""

from __future__ import annotations

import re
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import httpx
import structlog

from deploygate.config import JenkinsSettings
from deploygate.domain.errors import UpstreamUnavailable
from deploygate.domain.models.job import RunnerJobStatus
from deploygate.domain.ports.services import JobRunner
from deploygate.infrastructure.observability.metrics import (
    RUNNER_CALL_DURATION,
    RUNNER_CALLS_TOTAL,
)
from deploygate.infrastructure.observability.tracing import get_tracer


logger = structlog.get_logger(__name__)

_QUEUE_ID_RE = re.compile(r"/queue/item/(\d+)/?")


def job_path(job_name: str) -> str:
    """``folder/app`` becomes ``/job/folder/job/app``."""
    segments = [segment for segment in job_name.split("/") if segment]
    return "".join(f"/job/{quote(segment, safe='')}" for segment in segments)


def _from_millis(value: Any) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


class JenkinsJobRunner(JobRunner):
    """Talks to the Jenkins remote access API over HTTP.

    Authenticates with a user API token, which Jenkins exempts from CSRF
    crumbs.
    """

    def __init__(self, settings: JenkinsSettings, client: httpx.AsyncClient | None = None) -> None:
        self._settings = settings
        auth = (settings.username, settings.token) if settings.username else None
        self._client = client or httpx.AsyncClient(
            base_url=settings.base_url.rstrip("/"),
            auth=auth,
            timeout=settings.timeout_seconds,
            verify=settings.verify_tls,
            headers={"Accept": "application/json"},
        )
        self._tracer = get_tracer(__name__)

    async def aclose(self) -> None:
        await self._client.aclose()

    @asynccontextmanager
    async def _observe(self, operation: str, job_name: str) -> AsyncIterator[None]:
        started = time.perf_counter()
        with self._tracer.start_as_current_span(
            f"jenkins.{operation}", attributes={"jenkins.job": job_name}
        ):
            try:
                yield
            except UpstreamUnavailable:
                RUNNER_CALLS_TOTAL.labels(operation=operation, result="error").inc()
                raise
            finally:
                RUNNER_CALL_DURATION.labels(operation=operation).observe(
                    time.perf_counter() - started
                )

    async def _request(
        self, method: str, url: str, not_found_ok: bool = False, **kwargs: Any
    ) -> httpx.Response:
        """Issue a request; with ``not_found_ok`` a 404 response is returned as is."""
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.HTTPError as exc:
            raise UpstreamUnavailable(f"Jenkins {method} {url} failed: {exc}") from exc

        if response.status_code == 404 and not_found_ok:
            return response
        if response.status_code >= 400:
            raise UpstreamUnavailable(
                f"Jenkins {method} {url} returned HTTP {response.status_code}: "
                f"{response.text[:200]}"
            )
        return response

    @staticmethod
    def _json(response: httpx.Response) -> dict[str, Any]:
        try:
            body = response.json()
        except ValueError as exc:
            raise UpstreamUnavailable(
                f"Jenkins {response.request.url.path} did not return JSON: "
                f"{response.text[:200]}"
            ) from exc
        if not isinstance(body, dict):
            raise UpstreamUnavailable(
                f"Jenkins {response.request.url.path} returned unexpected JSON"
            )
        return body

    # ------------------------------------------------------------------
    # JobRunner
    # ------------------------------------------------------------------

    async def enqueue(self, job_name: str, parameters: dict[str, Any]) -> str:
        endpoint = "buildWithParameters" if parameters else "build"
        url = f"{job_path(job_name)}/{endpoint}"
        form = {key: str(value) for key, value in parameters.items()}

        async with self._observe("enqueue", job_name):
            response = await self._request("POST", url, data=form or None)
            location = response.headers.get("Location", "")
            match = _QUEUE_ID_RE.search(location)
            if match is None:
                raise UpstreamUnavailable(
                    f"Jenkins did not return a queue location for {job_name}"
                )

        RUNNER_CALLS_TOTAL.labels(operation="enqueue", result="ok").inc()
        logger.info("jenkins_job_queued", job_name=job_name, queue_id=match.group(1))
        return match.group(1)

    async def status(
        self, job_name: str, queue_id: str, build_number: int | None = None
    ) -> RunnerJobStatus:
        async with self._observe("status", job_name):
            if build_number is None:
                queue_item = await self._queue_item(queue_id)
                if queue_item is None:
                    RUNNER_CALLS_TOTAL.labels(operation="status", result="not_found").inc()
                    return RunnerJobStatus(phase="not_found")
                if queue_item.get("cancelled"):
                    return RunnerJobStatus(phase="cancelled")
                executable = queue_item.get("executable") or {}
                if not executable.get("number"):
                    return RunnerJobStatus(phase="queued")
                build_number = int(executable["number"])

            build_url = f"{job_path(job_name)}/{build_number}"
            response = await self._request("GET", f"{build_url}/api/json", not_found_ok=True)
            if response.status_code == 404:
                RUNNER_CALLS_TOTAL.labels(operation="status", result="not_found").inc()
                return RunnerJobStatus(phase="not_found", build_number=build_number)
            build = self._json(response)

            console = await self._request("GET", f"{build_url}/consoleText", not_found_ok=True)

        RUNNER_CALLS_TOTAL.labels(operation="status", result="ok").inc()
        building = bool(build.get("building"))
        return RunnerJobStatus(
            phase="building" if building else "completed",
            result=None if building else build.get("result"),
            build_number=build_number,
            console_log=console.text if console.status_code != 404 else "",
            started_at=_from_millis(build.get("timestamp")),
            duration_ms=None if building else int(build.get("duration") or 0),
        )

    async def cancel(
        self, job_name: str, queue_id: str, build_number: int | None = None
    ) -> None:
        async with self._observe("cancel", job_name):
            if build_number is None:
                queue_item = await self._queue_item(queue_id)
                executable = (queue_item or {}).get("executable") or {}
                if executable.get("number"):
                    build_number = int(executable["number"])

            if build_number is None:
                await self._request(
                    "POST", "/queue/cancelItem", not_found_ok=True, params={"id": queue_id}
                )
            else:
                # Stopping a finished build is a no-op on the Jenkins side.
                await self._request(
                    "POST", f"{job_path(job_name)}/{build_number}/stop", not_found_ok=True
                )

        RUNNER_CALLS_TOTAL.labels(operation="cancel", result="ok").inc()
        logger.info(
            "jenkins_job_cancel_requested",
            job_name=job_name,
            queue_id=queue_id,
            build_number=build_number,
        )

    async def _queue_item(self, queue_id: str) -> dict[str, Any] | None:
        response = await self._request(
            "GET", f"/queue/item/{queue_id}/api/json", not_found_ok=True
        )
        return None if response.status_code == 404 else self._json(response)
