"""Admin runs API: inspect and cancel runs out of band."""

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, Request, status

from edujobs.deps.security import require_admin_token
from edujobs.engine import JobEngine, Run, RunNotFound, RunStatus, StepRecord
from edujobs.schemas import CancelRunRequest, RunListResponse, RunView, StepView

router = APIRouter(prefix="/admin/runs", tags=["Admin"])
logger = structlog.get_logger(__name__)


def get_engine(request: Request) -> JobEngine:
    return request.app.state.engine


def _step_view(record: StepRecord) -> StepView:
    return StepView(
        name=record.step_name,
        status=record.status.value,
        attempts=record.attempts,
        position=record.position,
        result=record.result,
        error=record.error,
        wake_at=record.wake_at,
    )


def _run_view(run: Run, steps: Optional[list[StepRecord]] = None) -> RunView:
    return RunView(
        id=run.id,
        function_id=run.function_id,
        event_id=run.event_id,
        status=run.status.value,
        attempt=run.attempt,
        event=run.event,
        concurrency_key=run.concurrency_key,
        run_after=run.run_after,
        created_at=run.created_at,
        started_at=run.started_at,
        completed_at=run.completed_at,
        output=run.output,
        error=run.error,
        steps=[_step_view(s) for s in steps] if steps is not None else None,
    )


@router.get("", response_model=RunListResponse)
async def list_runs(
    function_id: Optional[str] = None,
    run_status: Optional[RunStatus] = Query(default=None, alias="status"),
    limit: int = Query(default=50, ge=1, le=200),
    offset: int = Query(default=0, ge=0),
    engine: JobEngine = Depends(get_engine),
    _: bool = Depends(require_admin_token),
) -> RunListResponse:
    """List runs, newest first."""
    runs, total = await engine.store.list_runs(
        function_id=function_id, status=run_status, limit=limit, offset=offset
    )
    return RunListResponse(
        runs=[_run_view(r) for r in runs], total=total, limit=limit, offset=offset
    )


@router.get("/{run_id}", response_model=RunView)
async def get_run(
    run_id: str,
    engine: JobEngine = Depends(get_engine),
    _: bool = Depends(require_admin_token),
) -> RunView:
    """One run with its step records in execution order."""
    run = await engine.store.get_run(run_id)
    if run is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"Run {run_id} not found")
    steps = sorted((await engine.store.get_steps(run_id)).values(), key=lambda s: s.position)
    return _run_view(run, steps)


@router.post("/{run_id}/cancel", response_model=RunView)
async def cancel_run(
    run_id: str,
    body: CancelRunRequest = CancelRunRequest(),
    engine: JobEngine = Depends(get_engine),
    _: bool = Depends(require_admin_token),
) -> RunView:
    """Cancel a run. Terminal runs are returned unchanged."""
    try:
        run = await engine.cancel(run_id, body.reason)
    except RunNotFound as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    logger.info("admin_run_cancel", run_id=run_id, status=run.status.value)
    return _run_view(run)
