"""Durable steps: memoized execution, timers and event emission.

A job body is replayed from the top on every callback. Each ``ctx.step``
call either returns the stored result of a step that already succeeded or,
for the first unmemoized step, executes its work and persists the outcome.
Reaching a second unmemoized step in the same callback suspends the run.
"""

import inspect
import re
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any, Callable, Optional, Union

import structlog
from pydantic_core import to_jsonable_python

from edujobs.engine.errors import StepError, is_retryable
from edujobs.engine.models import Event, StepRecord
from edujobs.engine.types import RunStatus, StepStatus
from edujobs.routers import metrics

if TYPE_CHECKING:
    from edujobs.engine.client import EventBus
    from edujobs.engine.store import RunStore

logger = structlog.get_logger(__name__)

Duration = Union[str, int, float, timedelta]

_DURATION_RE = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h|d)\s*$")
_UNIT_SECONDS = {"ms": 0.001, "s": 1, "m": 60, "h": 3600, "d": 86400}


def parse_duration(value: Duration) -> timedelta:
    """Parse ``"1s"``, ``"2m"``, ``"7d"``, a timedelta, or a number of seconds."""
    if isinstance(value, timedelta):
        return value
    if isinstance(value, (int, float)):
        return timedelta(seconds=value)
    match = _DURATION_RE.match(value)
    if not match:
        raise ValueError(f"Invalid duration: {value!r}")
    amount, unit = match.groups()
    return timedelta(seconds=float(amount) * _UNIT_SECONDS[unit])


class StepInterrupt(BaseException):
    """Control flow signal that unwinds a job body.

    Derives from BaseException so ``except Exception`` in job code
    does not intercept it.
    """


class NextStep(StepInterrupt):
    """The callback already executed a step; the named one runs next."""

    def __init__(self, step_name: str):
        self.step_name = step_name
        super().__init__(step_name)


class SleepUntil(StepInterrupt):
    """A durable timer is pending."""

    def __init__(self, step_name: str, wake_at: datetime):
        self.step_name = step_name
        self.wake_at = wake_at
        super().__init__(f"{step_name} until {wake_at.isoformat()}")


class RunCancelled(StepInterrupt):
    """The run was cancelled while suspended."""


@dataclass
class ExecutedStep:
    name: str
    result: Any = None

    def as_dict(self) -> dict[str, Any]:
        return {"name": self.name, "result": self.result}


class StepRunner:
    """Executes the work of one named step with memoization.

    Never retries on its own; a failure is persisted and raised as
    StepError for the engine to decide on.
    """

    def __init__(self, store: "RunStore", function_id: str = ""):
        self._store = store
        self._function_id = function_id

    @property
    def function_id(self) -> str:
        return self._function_id

    async def run_step(
        self,
        run_id: str,
        step_name: str,
        work: Callable[[], Any],
        previous: Optional[StepRecord] = None,
    ) -> Any:
        if previous is None:
            previous = (await self._store.get_steps(run_id)).get(step_name)
        if previous is not None and previous.status == StepStatus.SUCCEEDED:
            return previous.result

        attempts = (previous.attempts if previous else 0) + 1
        log = logger.bind(run_id=run_id, function_id=self._function_id, step=step_name)
        started = time.perf_counter()
        try:
            result = work()
            if inspect.isawaitable(result):
                result = await result
        except Exception as exc:
            elapsed = time.perf_counter() - started
            retryable = is_retryable(exc)
            await self._store.save_step(
                StepRecord(
                    run_id=run_id,
                    step_name=step_name,
                    status=StepStatus.FAILED,
                    attempts=attempts,
                    error=f"{type(exc).__name__}: {exc}",
                )
            )
            metrics.record_step(self._function_id, "failed", elapsed)
            log.warning(
                "step_failed",
                attempts=attempts,
                retryable=retryable,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            raise StepError(
                str(exc) or type(exc).__name__,
                step_name=step_name,
                retryable=retryable,
                attempts=attempts,
            ) from exc

        elapsed = time.perf_counter() - started
        saved = await self._store.save_step(
            StepRecord(
                run_id=run_id,
                step_name=step_name,
                status=StepStatus.SUCCEEDED,
                attempts=attempts,
                result=to_jsonable_python(result),
            )
        )
        metrics.record_step(self._function_id, "succeeded", elapsed)
        log.info("step_succeeded", attempts=attempts, duration_ms=round(elapsed * 1000))
        return saved.result


class StepTools:
    """The ``ctx.step`` object handed to job bodies."""

    def __init__(
        self,
        runner: StepRunner,
        store: "RunStore",
        run_id: str,
        records: Optional[dict[str, StepRecord]] = None,
        bus: Optional["EventBus"] = None,
        fast_forward: bool = False,
    ):
        self._runner = runner
        self._store = store
        self._run_id = run_id
        self._records = records if records is not None else {}
        self._bus = bus
        self._fast_forward = fast_forward
        self._seen: dict[str, int] = {}
        self.executed: Optional[ExecutedStep] = None

    def _unique(self, name: str) -> str:
        count = self._seen.get(name, 0)
        self._seen[name] = count + 1
        return name if count == 0 else f"{name}:{count}"

    async def _boundary(self, step_name: str) -> None:
        if self.executed is not None:
            raise NextStep(step_name)
        if await self._store.get_status(self._run_id) == RunStatus.CANCELLED:
            raise RunCancelled(self._run_id)

    async def run(self, name: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:
        """Run ``fn(*args, **kwargs)`` as a durable step and return its result."""
        step_name = self._unique(name)
        record = self._records.get(step_name)
        if record is not None and record.status == StepStatus.SUCCEEDED:
            return record.result

        await self._boundary(step_name)
        result = await self._runner.run_step(
            self._run_id, step_name, lambda: fn(*args, **kwargs), previous=record
        )
        self.executed = ExecutedStep(step_name, result)
        return result

    async def sleep(self, name: str, duration: Duration) -> None:
        """Durable timer. Suspends the run until the duration has elapsed."""
        step_name = self._unique(name)
        record = self._records.get(step_name)
        if record is not None and record.status == StepStatus.SUCCEEDED:
            return None

        now = datetime.now(timezone.utc)
        if record is not None and record.wake_at is not None:
            if record.wake_at > now and not self._fast_forward:
                raise SleepUntil(step_name, record.wake_at)
            if await self._store.get_status(self._run_id) == RunStatus.CANCELLED:
                raise RunCancelled(self._run_id)
            await self._complete_sleep(record)
            return None

        await self._boundary(step_name)
        wake_at = now + parse_duration(duration)
        record = await self._store.save_step(
            StepRecord(
                run_id=self._run_id,
                step_name=step_name,
                status=StepStatus.PENDING,
                wake_at=wake_at,
            )
        )
        if wake_at <= now or self._fast_forward:
            await self._complete_sleep(record)
            self.executed = ExecutedStep(step_name)
            return None
        metrics.record_step(self._runner.function_id, "sleeping")
        raise SleepUntil(step_name, wake_at)

    async def _complete_sleep(self, record: StepRecord) -> None:
        record.status = StepStatus.SUCCEEDED
        record.attempts = max(record.attempts, 1)
        await self._store.save_step(record)

    async def send_event(
        self, name: str, events: Union[Event, dict[str, Any], list[Any]]
    ) -> dict[str, Any]:
        """Emit events through the bus as a durable step."""
        if self._bus is None:
            raise RuntimeError("No event bus configured for this run")
        bus = self._bus

        async def _send():
            receipt = await bus.send(events)
            return {"ids": receipt.ids}

        return await self.run(name, _send)


@dataclass
class RunContext:
    """Everything a job body sees for one callback."""

    run_id: str
    function_id: str
    event: Event
    attempt: int
    step: StepTools
    data: Any = None
    services: Any = None
    log: Any = field(default=None)

    def __post_init__(self):
        if self.data is None:
            self.data = self.event.data
        if self.log is None:
            self.log = logger.bind(run_id=self.run_id, function_id=self.function_id)

