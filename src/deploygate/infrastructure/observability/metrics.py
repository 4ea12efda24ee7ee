"""Prometheus metrics."""

from __future__ import annotations

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    Info,
)


APP_INFO = Info("deploygate", "Deployment orchestration engine info")
APP_INFO.info({
    "version": "1.0.0",
    "service": "deploygate",
})

# Deployment metrics
DEPLOYMENTS_FINISHED_TOTAL = Counter(
    "deploygate_deployments_finished_total",
    "Deployments observed reaching a terminal status by the poll worker",
    ["status", "environment"],
)

DEPLOYMENT_DURATION = Histogram(
    "deploygate_deployment_duration_seconds",
    "Wall time from start of execution to a terminal status",
    ["environment", "status"],
    buckets=[10, 30, 60, 120, 300, 600, 1800, 3600],
)

SCHEDULED_STARTS_TOTAL = Counter(
    "deploygate_scheduled_starts_total",
    "Deployments started by the schedule worker",
)

IN_FLIGHT_POLLS = Gauge(
    "deploygate_in_flight_polls",
    "Deployments currently being polled",
)

# Build server metrics
RUNNER_CALLS_TOTAL = Counter(
    "deploygate_runner_calls_total",
    "Calls issued to the build server",
    ["operation", "result"],  # result: "ok", "not_found", "error"
)

RUNNER_CALL_DURATION = Histogram(
    "deploygate_runner_call_duration_seconds",
    "Latency of build server calls",
    ["operation"],
    buckets=[0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0],
)

# Approval metrics
APPROVAL_DECISIONS_TOTAL = Counter(
    "deploygate_approval_decisions_total",
    "Approval decisions recorded",
    ["decision"],
)

# Notification metrics
NOTIFICATION_DELIVERIES_TOTAL = Counter(
    "deploygate_notification_deliveries_total",
    "Notification deliveries per channel and outcome",
    ["channel", "result"],  # result: "sent", "failed"
)
