"""Job engine: turns events into runs and advances runs one step at a time."""

import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional

import structlog
from pydantic import ValidationError as PydanticValidationError
from pydantic_core import to_jsonable_python

from edujobs.core.sentry import capture_run_failure
from edujobs.engine.client import EventBus, EventInput, LocalEventBus
from edujobs.engine.errors import (
    FatalJobError,
    RunNotFound,
    StepError,
    ValidationError,
    is_retryable,
)
from edujobs.engine.models import Event, FunctionDefinition, Run, resolve_path
from edujobs.engine.registry import FunctionRegistry
from edujobs.engine.steps import (
    NextStep,
    RunCancelled,
    RunContext,
    SleepUntil,
    StepRunner,
    StepTools,
)
from edujobs.engine.store import RunStore
from edujobs.engine.types import ClaimResult, ResponseStatus, RunStatus
from edujobs.engine.worker import generate_worker_id
from edujobs.routers import metrics

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class IngestResult:
    accepted: list[str] = field(default_factory=list)
    runs: list[dict[str, Any]] = field(default_factory=list)
    rejected: list[dict[str, Any]] = field(default_factory=list)
    cancelled: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class AdvanceResult:
    """Outcome of one step callback."""

    status: ResponseStatus
    run_id: str
    run_status: Optional[RunStatus] = None
    step: Optional[dict[str, Any]] = None
    next_step: Optional[str] = None
    resume_at: Optional[datetime] = None
    retry_after: Optional[float] = None
    output: Any = None
    error: Optional[str] = None
    not_found: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "run_id": self.run_id,
            "run_status": self.run_status.value if self.run_status else None,
            "step": self.step,
            "next_step": self.next_step,
            "resume_at": self.resume_at.isoformat() if self.resume_at else None,
            "retry_after": self.retry_after,
            "output": self.output,
            "error": self.error,
        }


class JobEngine:
    """Dispatches events to registered functions and drives their runs.

    All durable state lives in the RunStore; the engine itself is stateless
    and any number of instances may serve callbacks concurrently.
    """

    def __init__(
        self,
        store: RunStore,
        registry: FunctionRegistry,
        services: Any = None,
        bus: Optional[EventBus] = None,
        *,
        worker_id: Optional[str] = None,
        lock_timeout_s: int = 900,
        throttle_retry_s: float = 5.0,
    ):
        self.store = store
        self.registry = registry
        self.services = services
        self.bus = bus or LocalEventBus(self)
        self.worker_id = worker_id or generate_worker_id()
        self.lock_timeout_s = lock_timeout_s
        self.throttle_retry_s = throttle_retry_s

    # ------------------------------------------------------------------
    # Ingest
    # ------------------------------------------------------------------

    def _coerce(self, raw: Any) -> Event:
        if isinstance(raw, Event):
            return raw.with_identity()
        if not isinstance(raw, dict):
            raise ValidationError("Event must be a JSON object")
        try:
            return Event.model_validate(raw).with_identity()
        except PydanticValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(p) for p in first.get("loc", ()))
            raise ValidationError(f"Invalid event {loc}: {first['msg']}") from e

    async def ingest(self, events: Iterable[EventInput]) -> IngestResult:
        """Validate events, apply cancellation rules and create runs.

        Duplicate deliveries of the same event id return the existing runs.
        """
        result = IngestResult()
        for index, raw in enumerate(events):
            try:
                event = self._coerce(raw)
            except ValidationError as e:
                result.rejected.append({"index": index, "error": str(e)})
                continue

            result.accepted.append(event.id)
            wire = event.to_wire()

            for definition, rule in self.registry.cancellers(event):
                value = resolve_path(wire, rule.match)
                if value is None:
                    continue
                if await self.store.get_run_for_event(definition.id, event.id) is not None:
                    # Redelivery: the rule already ran on first delivery
                    logger.debug(
                        "cancel_rule_skipped_redelivery",
                        function_id=definition.id,
                        event_id=event.id,
                    )
                    continue
                cancelled = await self.store.cancel_matching(
                    definition.id,
                    rule.match,
                    value,
                    exclude_event_id=event.id,
                    reason=f"Cancelled by {event.name}",
                    event_ts=event.ts,
                )
                for run_id in cancelled:
                    metrics.record_run(definition.id, "cancelled")
                    logger.info(
                        "run_cancelled_by_event",
                        run_id=run_id,
                        function_id=definition.id,
                        event_name=event.name,
                        event_id=event.id,
                    )
                result.cancelled.extend(cancelled)

            for definition in self.registry.match(event):
                if definition.payload_model is not None:
                    try:
                        definition.payload_model.model_validate(event.data)
                    except PydanticValidationError as e:
                        result.rejected.append(
                            {
                                "index": index,
                                "event_id": event.id,
                                "function_id": definition.id,
                                "error": f"Invalid payload: {e.errors()[0]['msg']}",
                            }
                        )
                        logger.warning(
                            "event_payload_rejected",
                            function_id=definition.id,
                            event_id=event.id,
                            errors=e.error_count(),
                        )
                        continue

                concurrency_key = (
                    definition.concurrency.scope_for(definition.id, wire)
                    if definition.concurrency
                    else None
                )
                run, created = await self.store.create_run(
                    definition.id, wire, concurrency_key
                )
                result.runs.append(
                    {
                        "run_id": run.id,
                        "function_id": definition.id,
                        "event_id": event.id,
                        "created": created,
                    }
                )
                if created:
                    metrics.record_run(definition.id, "created")
                    logger.info(
                        "run_created",
                        run_id=run.id,
                        function_id=definition.id,
                        event_name=event.name,
                        event_id=event.id,
                    )
                else:
                    logger.info(
                        "run_duplicate_event",
                        run_id=run.id,
                        function_id=definition.id,
                        event_id=event.id,
                    )

        metrics.record_events(len(result.accepted), len(result.rejected))
        return result

    # ------------------------------------------------------------------
    # Advance
    # ------------------------------------------------------------------

    async def advance(
        self,
        run_id: str,
        function_id: Optional[str] = None,
        *,
        skip_delays: bool = False,
    ) -> AdvanceResult:
        """Execute at most one new step of a run.

        ``skip_delays`` treats pending sleeps as elapsed.
        """
        result = await self._advance(run_id, function_id, skip_delays)
        metrics.record_advance(result.status.value)
        return result

    async def _advance(
        self, run_id: str, function_id: Optional[str], skip_delays: bool
    ) -> AdvanceResult:
        run = await self.store.get_run(run_id)
        if run is None:
            return AdvanceResult(
                ResponseStatus.FATAL_ERROR, run_id, error="Run not found", not_found=True
            )
        if function_id is not None and function_id != run.function_id:
            logger.warning(
                "advance_function_mismatch",
                run_id=run_id,
                expected=run.function_id,
                received=function_id,
            )
            return AdvanceResult(
                ResponseStatus.FATAL_ERROR,
                run_id,
                run_status=run.status,
                error=f"Run belongs to {run.function_id}, not {function_id}",
            )
        if run.status.is_terminal:
            return self._terminal_result(run)

        try:
            definition = self.registry.get(run.function_id)
        except KeyError:
            error = f"Function no longer registered: {run.function_id}"
            await self.store.finish_run(run_id, RunStatus.FAILED, error=error)
            logger.error("run_function_missing", run_id=run_id, function_id=run.function_id)
            return AdvanceResult(
                ResponseStatus.FATAL_ERROR, run_id, run_status=RunStatus.FAILED, error=error
            )

        lock_token = f"{self.worker_id}:{uuid.uuid4().hex[:8]}"
        limit = definition.concurrency.limit if definition.concurrency else None
        claim, acquired = await self.store.acquire_run(
            run_id, lock_token, limit, self.lock_timeout_s
        )

        if claim == ClaimResult.NOT_FOUND:
            return AdvanceResult(
                ResponseStatus.FATAL_ERROR, run_id, error="Run not found", not_found=True
            )
        if claim == ClaimResult.TERMINAL:
            assert acquired is not None
            return self._terminal_result(acquired)
        if claim == ClaimResult.BUSY:
            logger.debug("run_busy", run_id=run_id)
            return AdvanceResult(
                ResponseStatus.RETRYABLE_ERROR,
                run_id,
                run_status=run.status,
                retry_after=self.throttle_retry_s,
                error="Run is being advanced by another callback",
            )
        if claim == ClaimResult.THROTTLED:
            await self.store.defer_run(
                run_id, _now() + timedelta(seconds=self.throttle_retry_s)
            )
            logger.info(
                "run_throttled",
                run_id=run_id,
                function_id=definition.id,
                concurrency_key=run.concurrency_key,
            )
            return AdvanceResult(
                ResponseStatus.RETRYABLE_ERROR,
                run_id,
                run_status=run.status,
                retry_after=self.throttle_retry_s,
                error="Concurrency limit reached",
            )

        assert acquired is not None
        return await self._execute(definition, acquired, lock_token, skip_delays)

    def _terminal_result(self, run: Run) -> AdvanceResult:
        status = (
            ResponseStatus.FATAL_ERROR
            if run.status == RunStatus.FAILED
            else ResponseStatus.ACCEPTED
        )
        return AdvanceResult(
            status, run.id, run_status=run.status, output=run.output, error=run.error
        )

    async def _execute(
        self,
        definition: FunctionDefinition,
        run: Run,
        lock_token: str,
        skip_delays: bool,
    ) -> AdvanceResult:
        records = await self.store.get_steps(run.id)
        runner = StepRunner(self.store, definition.id)
        tools = StepTools(
            runner, self.store, run.id, records, bus=self.bus, fast_forward=skip_delays
        )
        event = Event.model_validate(run.event)
        log = logger.bind(run_id=run.id, function_id=definition.id)
        ctx = RunContext(
            run_id=run.id,
            function_id=definition.id,
            event=event,
            attempt=run.attempt,
            step=tools,
            services=self.services,
            log=log,
        )

        def executed() -> Optional[dict[str, Any]]:
            return tools.executed.as_dict() if tools.executed else None

        if definition.payload_model is not None:
            try:
                ctx.data = definition.payload_model.model_validate(event.data)
            except PydanticValidationError as e:
                return await self._fail(
                    definition, ctx, FatalJobError(f"Invalid payload: {e}"), None
                )

        try:
            output = await definition.handler(ctx)

        except NextStep as interrupt:
            await self.store.release_run(run.id, lock_token, _now())
            log.info("run_suspended", next_step=interrupt.step_name)
            return AdvanceResult(
                ResponseStatus.ACCEPTED,
                run.id,
                run_status=RunStatus.RUNNING,
                step=executed(),
                next_step=interrupt.step_name,
            )

        except SleepUntil as interrupt:
            await self.store.release_run(run.id, lock_token, interrupt.wake_at)
            log.info("run_sleeping", step=interrupt.step_name, wake_at=interrupt.wake_at.isoformat())
            return AdvanceResult(
                ResponseStatus.ACCEPTED,
                run.id,
                run_status=RunStatus.RUNNING,
                step=executed(),
                next_step=interrupt.step_name,
                resume_at=interrupt.wake_at,
            )

        except RunCancelled:
            await self.store.release_run(run.id, lock_token, _now())
            log.info("run_stopped_cancelled")
            current = await self.store.get_run(run.id)
            return AdvanceResult(
                ResponseStatus.ACCEPTED,
                run.id,
                run_status=RunStatus.CANCELLED,
                error=current.error if current else None,
            )

        except StepError as exc:
            if exc.retryable and exc.attempts < definition.retry.max_attempts:
                return await self._schedule_retry(
                    definition, run, lock_token, exc.attempts, str(exc), step=exc.step_name
                )
            return await self._fail(definition, ctx, exc, executed())

        except FatalJobError as exc:
            return await self._fail(definition, ctx, exc, executed())

        except Exception as exc:
            attempt = await self.store.increment_attempt(run.id)
            log.warning(
                "run_body_error",
                attempt=attempt,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            if is_retryable(exc) and attempt < definition.retry.max_attempts:
                return await self._schedule_retry(
                    definition, run, lock_token, attempt, str(exc)
                )
            return await self._fail(definition, ctx, exc, executed())

        finished = await self.store.finish_run(
            run.id, RunStatus.COMPLETED, output=to_jsonable_python(output)
        )
        if finished is not None and finished.status != RunStatus.COMPLETED:
            # Cancelled while the final step was executing
            return self._terminal_result(finished)
        metrics.record_run(definition.id, "completed")
        log.info("run_completed")
        return AdvanceResult(
            ResponseStatus.ACCEPTED,
            run.id,
            run_status=RunStatus.COMPLETED,
            step=executed(),
            output=finished.output if finished else None,
        )

    async def _schedule_retry(
        self,
        definition: FunctionDefinition,
        run: Run,
        lock_token: str,
        attempt: int,
        error: str,
        step: Optional[str] = None,
    ) -> AdvanceResult:
        delay = definition.retry.backoff_seconds(attempt)
        await self.store.release_run(run.id, lock_token, _now() + timedelta(seconds=delay))
        logger.info(
            "run_retry_scheduled",
            run_id=run.id,
            function_id=definition.id,
            step=step,
            attempt=attempt,
            max_attempts=definition.retry.max_attempts,
            delay_s=round(delay, 2),
        )
        return AdvanceResult(
            ResponseStatus.RETRYABLE_ERROR,
            run.id,
            run_status=RunStatus.RUNNING,
            next_step=step,
            retry_after=delay,
            error=error,
        )

    async def _fail(
        self,
        definition: FunctionDefinition,
        ctx: RunContext,
        exc: BaseException,
        step: Optional[dict[str, Any]],
    ) -> AdvanceResult:
        error = str(exc) or type(exc).__name__
        finished = await self.store.finish_run(ctx.run_id, RunStatus.FAILED, error=error)
        if finished is not None and finished.status != RunStatus.FAILED:
            return self._terminal_result(finished)

        metrics.record_run(definition.id, "failed")
        ctx.log.error("run_failed", error=error, error_type=type(exc).__name__)
        capture_run_failure(
            exc,
            function_id=definition.id,
            run_id=ctx.run_id,
            event_name=ctx.event.name,
            attempt=ctx.attempt,
        )

        if definition.on_failure is not None:
            try:
                await definition.on_failure(ctx, exc)
            except Exception as hook_exc:
                ctx.log.error("on_failure_hook_failed", error=str(hook_exc))

        return AdvanceResult(
            ResponseStatus.FATAL_ERROR,
            ctx.run_id,
            run_status=RunStatus.FAILED,
            step=step,
            error=error,
        )

    # ------------------------------------------------------------------
    # Control
    # ------------------------------------------------------------------

    async def cancel(self, run_id: str, reason: str = "Cancelled") -> Run:
        """Cancel a run. Terminal runs are returned unchanged."""
        run = await self.store.get_run(run_id)
        if run is None:
            raise RunNotFound(f"Run not found: {run_id}")
        if run.status.is_terminal:
            return run
        finished = await self.store.cancel_run(run_id, reason)
        assert finished is not None
        if finished.status == RunStatus.CANCELLED:
            metrics.record_run(run.function_id, "cancelled")
            logger.info("run_cancelled", run_id=run_id, function_id=run.function_id, reason=reason)
        return finished

    async def drain(
        self, run_ids: Iterable[str], max_rounds: int = 200
    ) -> dict[str, AdvanceResult]:
        """Advance runs until they are terminal, ignoring sleep and retry delays."""
        pending = list(dict.fromkeys(run_ids))
        results: dict[str, AdvanceResult] = {}
        for _ in range(max_rounds):
            if not pending:
                break
            remaining = []
            for run_id in pending:
                result = await self.advance(run_id, skip_delays=True)
                results[run_id] = result
                if result.not_found or (
                    result.run_status is not None and result.run_status.is_terminal
                ):
                    continue
                remaining.append(run_id)
            pending = remaining
        if pending:
            logger.warning("drain_incomplete", run_ids=pending, max_rounds=max_rounds)
        return results
