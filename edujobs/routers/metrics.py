"""Prometheus metrics endpoint for the job engine."""

from fastapi import APIRouter, Response
from prometheus_client import (
    CONTENT_TYPE_LATEST,
    Counter,
    Gauge,
    Histogram,
    generate_latest,
)

router = APIRouter()

# Request metrics
REQUEST_COUNT = Counter(
    "edujobs_requests_total",
    "Total number of requests",
    ["method", "endpoint", "status_code"],
)

REQUEST_LATENCY = Histogram(
    "edujobs_request_latency_seconds",
    "Request latency in seconds",
    ["method", "endpoint"],
    buckets=[0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0],
)

# Engine metrics
EVENTS_INGESTED = Counter(
    "edujobs_events_ingested_total",
    "Events received by the engine",
    ["status"],  # accepted, rejected
)

RUNS_TOTAL = Counter(
    "edujobs_runs_total",
    "Run transitions by outcome",
    ["function", "outcome"],  # created, completed, failed, cancelled
)

STEPS_TOTAL = Counter(
    "edujobs_steps_total",
    "Executed steps by outcome",
    ["function", "outcome"],  # succeeded, failed, sleeping
)

STEP_LATENCY = Histogram(
    "edujobs_step_latency_seconds",
    "Step execution latency in seconds",
    ["function"],
    buckets=[0.01, 0.05, 0.1, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0, 120.0],
)

ADVANCE_RESULTS = Counter(
    "edujobs_advance_results_total",
    "Step callback results",
    ["status"],  # accepted, retryable-error, fatal-error
)

# Service health metrics
SERVICE_UP = Gauge(
    "edujobs_service_up",
    "Service availability (1=up, 0=down)",
    ["component"],
)

# Connection pool metrics
DB_POOL_SIZE = Gauge(
    "edujobs_db_pool_size",
    "Current database connection pool size",
)

DB_POOL_AVAILABLE = Gauge(
    "edujobs_db_pool_available",
    "Available connections in database pool",
)


def record_request(method: str, endpoint: str, status_code: int, duration: float):
    """Record request metrics."""
    REQUEST_COUNT.labels(
        method=method, endpoint=endpoint, status_code=status_code
    ).inc()
    REQUEST_LATENCY.labels(method=method, endpoint=endpoint).observe(duration)


def record_events(accepted: int, rejected: int):
    if accepted:
        EVENTS_INGESTED.labels(status="accepted").inc(accepted)
    if rejected:
        EVENTS_INGESTED.labels(status="rejected").inc(rejected)


def record_run(function_id: str, outcome: str):
    RUNS_TOTAL.labels(function=function_id, outcome=outcome).inc()


def record_step(function_id: str, outcome: str, duration: float | None = None):
    """Record a step outcome and, for executed work, its latency."""
    STEPS_TOTAL.labels(function=function_id, outcome=outcome).inc()
    if duration is not None:
        STEP_LATENCY.labels(function=function_id).observe(duration)


def record_advance(status: str):
    ADVANCE_RESULTS.labels(status=status).inc()


def set_service_health(component: str, is_up: bool):
    """Set service component health status."""
    SERVICE_UP.labels(component=component).set(1 if is_up else 0)


def set_db_pool_metrics(pool_size: int, available: int):
    """Set database pool metrics."""
    DB_POOL_SIZE.set(pool_size)
    DB_POOL_AVAILABLE.set(available)


@router.get("/metrics", include_in_schema=False)
async def metrics():
    """Prometheus metrics endpoint.

    Returns metrics in Prometheus text format for scraping.
    This endpoint is excluded from OpenAPI docs.
    """
    return Response(
        content=generate_latest(),
        media_type=CONTENT_TYPE_LATEST,
    )
