"""Run/step persistence interface and the in-memory implementation.

The PostgreSQL implementation lives in edujobs.repositories.runs.
"""

import asyncio
import copy
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from typing import Any, Optional

import structlog

from edujobs.engine.models import Run, StepRecord, resolve_path
from edujobs.engine.types import ClaimResult, RunStatus, StepStatus

logger = structlog.get_logger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class RunStore(ABC):
    """Durable state of runs and their step records.

    Every method is a single atomic operation; callers never hold
    transactions across calls.
    """

    @abstractmethod
    async def create_run(
        self,
        function_id: str,
        event: dict[str, Any],
        concurrency_key: Optional[str] = None,
    ) -> tuple[Run, bool]:
        """Create a run for (function_id, event id). Returns (run, created).

        A second call for the same pair returns the existing run.
        """

    @abstractmethod
    async def get_run(self, run_id: str) -> Optional[Run]:
        ...

    @abstractmethod
    async def get_status(self, run_id: str) -> Optional[RunStatus]:
        ...

    @abstractmethod
    async def get_run_for_event(self, function_id: str, event_id: str) -> Optional[Run]:
        """The run created for (function_id, event id), if any."""

    @abstractmethod
    async def list_runs(
        self,
        function_id: Optional[str] = None,
        status: Optional[RunStatus] = None,
        limit: int = 50,
        offset: int = 0,
    ) -> tuple[list[Run], int]:
        ...

    @abstractmethod
    async def acquire_run(
        self,
        run_id: str,
        worker_id: str,
        concurrency_limit: Optional[int],
        lock_timeout_s: int,
    ) -> tuple[ClaimResult, Optional[Run]]:
        """Lock a run for one advance.

        With a ``concurrency_limit``, the run is acquired only if fewer than
        that many other runs with its concurrency key hold a slot. A running
        run holds a slot while it is locked or due; one that is sleeping or
        backing off does not.
        """

    @abstractmethod
    async def release_run(self, run_id: str, worker_id: str, run_after: datetime) -> None:
        """Drop the lock and set when the run is next due."""

    @abstractmethod
    async def defer_run(self, run_id: str, run_after: datetime) -> None:
        """Push back a run that could not be acquired."""

    @abstractmethod
    async def finish_run(
        self,
        run_id: str,
        status: RunStatus,
        output: Any = None,
        error: Optional[str] = None,
    ) -> Optional[Run]:
        """Move a run to a terminal status. No-op if it is already terminal."""

    @abstractmethod
    async def cancel_matching(
        self,
        function_id: str,
        match_path: str,
        value: Any,
        exclude_event_id: str,
        reason: str,
        event_ts: Optional[int] = None,
    ) -> list[str]:
        """Cancel live runs of a function whose event has ``value`` at ``match_path``.

        With ``event_ts``, runs triggered by an event newer than it are kept.
        """

    @abstractmethod
    async def increment_attempt(self, run_id: str) -> int:
        """Count a body-level failure; returns the new attempt count."""

    @abstractmethod
    async def get_steps(self, run_id: str) -> dict[str, StepRecord]:
        ...

    @abstractmethod
    async def save_step(self, record: StepRecord) -> StepRecord:
        """Upsert a step record. A succeeded record is never overwritten."""

    @abstractmethod
    async def due_runs(self, limit: int, lock_timeout_s: int) -> list[str]:
        """Ids of live, unlocked runs whose run_after has passed."""

    @abstractmethod
    async def reap_stale_locks(self, lock_timeout_s: int) -> int:
        ...

    async def cancel_run(self, run_id: str, reason: str = "cancelled") -> Optional[Run]:
        return await self.finish_run(run_id, RunStatus.CANCELLED, error=reason)

    async def ping(self) -> bool:
        return True


class InMemoryRunStore(RunStore):
    """Process-local store for tests and single-process deployments."""

    def __init__(self):
        self._runs: dict[str, Run] = {}
        self._by_event: dict[tuple[str, str], str] = {}
        self._steps: dict[str, dict[str, StepRecord]] = {}
        self._lock = asyncio.Lock()

    def _is_locked(self, run: Run, lock_timeout_s: int) -> bool:
        if not run.locked_by or not run.locked_at:
            return False
        return run.locked_at > _now() - timedelta(seconds=lock_timeout_s)

    def _holds_slot(self, run: Run, lock_timeout_s: int) -> bool:
        if run.status != RunStatus.RUNNING:
            return False
        return self._is_locked(run, lock_timeout_s) or run.run_after <= _now()

    async def create_run(self, function_id, event, concurrency_key=None):
        async with self._lock:
            key = (function_id, event["id"])
            existing = self._by_event.get(key)
            if existing:
                return copy.deepcopy(self._runs[existing]), False
            run = Run(
                id=uuid.uuid4().hex,
                function_id=function_id,
                event_id=event["id"],
                event=copy.deepcopy(event),
                concurrency_key=concurrency_key,
            )
            self._runs[run.id] = run
            self._by_event[key] = run.id
            self._steps[run.id] = {}
            return copy.deepcopy(run), True

    async def get_run(self, run_id):
        run = self._runs.get(run_id)
        return copy.deepcopy(run) if run else None

    async def get_status(self, run_id):
        run = self._runs.get(run_id)
        return run.status if run else None

    async def get_run_for_event(self, function_id, event_id):
        run_id = self._by_event.get((function_id, event_id))
        return copy.deepcopy(self._runs[run_id]) if run_id else None

    async def list_runs(self, function_id=None, status=None, limit=50, offset=0):
        runs = [
            r
            for r in self._runs.values()
            if (function_id is None or r.function_id == function_id)
            and (status is None or r.status == status)
        ]
        runs.sort(key=lambda r: r.created_at, reverse=True)
        return [copy.deepcopy(r) for r in runs[offset : offset + limit]], len(runs)

    async def acquire_run(self, run_id, worker_id, concurrency_limit, lock_timeout_s):
        async with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                return ClaimResult.NOT_FOUND, None
            if run.status.is_terminal:
                return ClaimResult.TERMINAL, copy.deepcopy(run)
            if self._is_locked(run, lock_timeout_s):
                return ClaimResult.BUSY, None

            if concurrency_limit is not None:
                holding = sum(
                    1
                    for r in self._runs.values()
                    if r.id != run.id
                    and r.function_id == run.function_id
                    and r.concurrency_key == run.concurrency_key
                    and self._holds_slot(r, lock_timeout_s)
                )
                if holding >= concurrency_limit:
                    return ClaimResult.THROTTLED, None

            if run.status == RunStatus.SCHEDULED:
                run.status = RunStatus.RUNNING
                run.started_at = _now()

            run.locked_by = worker_id
            run.locked_at = _now()
            return ClaimResult.ACQUIRED, copy.deepcopy(run)

    async def release_run(self, run_id, worker_id, run_after):
        async with self._lock:
            run = self._runs.get(run_id)
            if run is None or run.locked_by != worker_id:
                return
            run.locked_by = None
            run.locked_at = None
            run.run_after = run_after

    async def defer_run(self, run_id, run_after):
        async with self._lock:
            run = self._runs.get(run_id)
            if run is not None and not run.status.is_terminal:
                run.run_after = run_after

    async def finish_run(self, run_id, status, output=None, error=None):
        async with self._lock:
            run = self._runs.get(run_id)
            if run is None:
                return None
            if run.status.is_terminal:
                return copy.deepcopy(run)
            run.status = status
            run.output = copy.deepcopy(output)
            run.error = error
            run.completed_at = _now()
            run.locked_by = None
            run.locked_at = None
            return copy.deepcopy(run)

    async def cancel_matching(
        self, function_id, match_path, value, exclude_event_id, reason, event_ts=None
    ):
        async with self._lock:
            cancelled = []
            for run in self._runs.values():
                if (
                    run.function_id != function_id
                    or run.status.is_terminal
                    or run.event_id == exclude_event_id
                ):
                    continue
                if event_ts is not None and run.event.get("ts", 0) > event_ts:
                    continue
                current = resolve_path(run.event, match_path)
                if current is not None and str(current) == str(value):
                    run.status = RunStatus.CANCELLED
                    run.error = reason
                    run.completed_at = _now()
                    cancelled.append(run.id)
            return cancelled

    async def increment_attempt(self, run_id):
        async with self._lock:
            run = self._runs[run_id]
            run.attempt += 1
            return run.attempt

    async def get_steps(self, run_id):
        return copy.deepcopy(self._steps.get(run_id, {}))

    async def save_step(self, record):
        async with self._lock:
            steps = self._steps.setdefault(record.run_id, {})
            existing = steps.get(record.step_name)
            if existing is not None and existing.status == StepStatus.SUCCEEDED:
                return copy.deepcopy(existing)
            stored = copy.deepcopy(record)
            stored.position = existing.position if existing else len(steps)
            stored.updated_at = _now()
            steps[record.step_name] = stored
            return copy.deepcopy(stored)

    async def due_runs(self, limit, lock_timeout_s):
        now = _now()
        due = [
            r
            for r in self._runs.values()
            if not r.status.is_terminal
            and r.run_after <= now
            and not self._is_locked(r, lock_timeout_s)
        ]
        due.sort(key=lambda r: r.run_after)
        return [r.id for r in due[:limit]]

    async def reap_stale_locks(self, lock_timeout_s):
        async with self._lock:
            count = 0
            for run in self._runs.values():
                if run.locked_by and not self._is_locked(run, lock_timeout_s):
                    run.locked_by = None
                    run.locked_at = None
                    count += 1
        if count > 0:
            logger.warning("stale_run_locks_reaped", count=count)
        return count
