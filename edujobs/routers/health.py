"""Health check endpoint."""

import time

import structlog
from fastapi import APIRouter, Depends, Request

from edujobs import __version__
from edujobs.config import Settings, get_settings
from edujobs.engine import RunStore
from edujobs.routers import metrics
from edujobs.schemas import DependencyHealth, HealthResponse
from edujobs.services.llm_factory import get_llm_status

router = APIRouter()
logger = structlog.get_logger(__name__)


async def check_store_health(store: RunStore) -> DependencyHealth:
    """Check the run store answers a trivial query."""
    start = time.perf_counter()
    try:
        ok = await store.ping()
    except Exception as e:
        latency = (time.perf_counter() - start) * 1000
        return DependencyHealth(status="error", latency_ms=latency, error=str(e))
    latency = (time.perf_counter() - start) * 1000
    if ok:
        return DependencyHealth(status="ok", latency_ms=latency)
    return DependencyHealth(status="error", latency_ms=latency, error="Run store unreachable")


def check_llm_health() -> DependencyHealth:
    """Report provider resolution. No request is sent to the provider."""
    try:
        llm_status = get_llm_status()
    except Exception as e:
        return DependencyHealth(status="error", error=str(e))
    if not llm_status.enabled:
        return DependencyHealth(status="unconfigured")
    return DependencyHealth(status="ok")


def check_email_health(settings: Settings) -> DependencyHealth:
    if not settings.resend_api_key:
        return DependencyHealth(status="unconfigured")
    return DependencyHealth(status="ok")


@router.get("/health", response_model=HealthResponse)
async def health_check(
    request: Request, settings: Settings = Depends(get_settings)
) -> HealthResponse:
    """
    Check health of the service and its dependencies.

    The run store is required. An unconfigured LLM or email provider only
    means the jobs that need them take their skipped paths.
    """
    engine = request.app.state.engine

    store_health = await check_store_health(engine.store)
    llm_health = check_llm_health()
    email_health = check_email_health(settings)

    metrics.set_service_health("store", store_health.status == "ok")

    if store_health.status != "ok":
        overall_status = "error"
    elif "error" in (llm_health.status, email_health.status):
        overall_status = "degraded"
    else:
        overall_status = "ok"

    response = HealthResponse(
        status=overall_status,
        version=__version__,
        engine_mode=settings.engine_mode,
        functions=len(engine.registry),
        store=store_health,
        llm=llm_health,
        email=email_health,
    )

    logger.info(
        "health_check_completed",
        status=overall_status,
        store=store_health.status,
        llm=llm_health.status,
        email=email_health.status,
    )

    return response
