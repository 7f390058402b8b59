"""Webhook endpoint: discovery (GET), event ingest (POST) and step callbacks (PUT).

Mounted at ``settings.webhook_path``. Every response body carries a
machine-parseable ``status`` of ``accepted``, ``retryable-error`` or
``fatal-error``.
"""

import json
import math
from typing import Any

import structlog
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError as PydanticValidationError

from edujobs import __version__
from edujobs.config import Settings, get_settings
from edujobs.deps.security import verify_signature
from edujobs.engine import JobEngine, ResponseStatus, StoreUnavailable
from edujobs.schemas import StepCallback

router = APIRouter(tags=["Jobs"])
logger = structlog.get_logger(__name__)

FRAMEWORK = "edujobs"


def get_engine(request: Request) -> JobEngine:
    return request.app.state.engine


def _reply(
    status_code: int,
    status: ResponseStatus,
    body: dict[str, Any] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content={**(body or {}), "status": status.value},
        headers=headers,
    )


def _fatal(status_code: int, error: str) -> JSONResponse:
    return _reply(
        status_code, ResponseStatus.FATAL_ERROR, {"error": error}, {"X-No-Retry": "true"}
    )


def _retry_after(seconds: float | None) -> dict[str, str]:
    return {"Retry-After": str(max(1, math.ceil(seconds or 1)))}


@router.get("")
async def discover(request: Request, settings: Settings = Depends(get_settings)):
    """Describe the registered functions. Reads only the registry."""
    registry = request.app.state.registry
    return {
        "app_id": settings.app_id,
        "framework": FRAMEWORK,
        "sdk_version": __version__,
        "mode": settings.engine_mode,
        "functions": [d.to_discovery() for d in registry.list_all()],
    }


@router.post("")
async def ingest_events(
    body: bytes = Depends(verify_signature),
    engine: JobEngine = Depends(get_engine),
):
    """Accept one event or a list of events and create runs for them."""
    try:
        payload = json.loads(body or b"null")
    except ValueError:
        return _fatal(400, "Body is not valid JSON")

    events = payload if isinstance(payload, list) else [payload]

    try:
        result = await engine.ingest(events)
    except StoreUnavailable as e:
        logger.warning("ingest_store_unavailable", error=str(e))
        return _reply(503, ResponseStatus.RETRYABLE_ERROR, {"error": str(e)}, _retry_after(None))

    if events and not result.accepted:
        return _reply(
            400,
            ResponseStatus.FATAL_ERROR,
            {"error": "No valid events in request", **result.to_dict()},
            {"X-No-Retry": "true"},
        )

    logger.info(
        "events_ingested",
        accepted=len(result.accepted),
        rejected=len(result.rejected),
        runs=len(result.runs),
        cancelled=len(result.cancelled),
    )
    return _reply(200, ResponseStatus.ACCEPTED, result.to_dict())


@router.put("")
async def step_callback(
    body: bytes = Depends(verify_signature),
    engine: JobEngine = Depends(get_engine),
):
    """Advance one run by exactly one step."""
    try:
        callback = StepCallback.model_validate_json(body or b"{}")
    except PydanticValidationError as e:
        return _fatal(400, f"Invalid step callback: {e.errors()[0]['msg']}")

    try:
        result = await engine.advance(callback.run_id, callback.function_id)
    except StoreUnavailable as e:
        logger.warning("advance_store_unavailable", run_id=callback.run_id, error=str(e))
        return _reply(
            503,
            ResponseStatus.RETRYABLE_ERROR,
            {"run_id": callback.run_id, "error": str(e)},
            _retry_after(None),
        )

    executed = result.step["name"] if result.step else None
    if callback.step and executed and callback.step != executed:
        # Informational only; the store decides which step runs next
        logger.info(
            "step_hint_mismatch",
            run_id=callback.run_id,
            requested=callback.step,
            executed=executed,
        )

    body_out = result.to_dict()
    if result.not_found:
        return _reply(404, ResponseStatus.FATAL_ERROR, body_out)
    if result.status == ResponseStatus.FATAL_ERROR:
        return _reply(400, ResponseStatus.FATAL_ERROR, body_out, {"X-No-Retry": "true"})
    if result.status == ResponseStatus.RETRYABLE_ERROR:
        return _reply(
            503, ResponseStatus.RETRYABLE_ERROR, body_out, _retry_after(result.retry_after)
        )
    return _reply(200, ResponseStatus.ACCEPTED, body_out)
