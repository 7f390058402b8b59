"""Engine data models."""

import fnmatch
import random
import time
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from edujobs.engine.types import RunStatus, StepStatus

if TYPE_CHECKING:
    from edujobs.engine.steps import RunContext


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_event_id() -> str:
    return uuid.uuid4().hex


class Event(BaseModel):
    """An immutable fact that may trigger runs.

    Wire shape: ``{"name": str, "data": object, "id"?: str, "ts"?: int}``.
    ``ts`` is milliseconds since the epoch.
    """

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str = Field(..., min_length=1, max_length=200)
    data: dict[str, Any] = Field(default_factory=dict)
    id: Optional[str] = Field(default=None, max_length=200)
    ts: Optional[int] = None

    @field_validator("name")
    @classmethod
    def _strip_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("event name must not be blank")
        return v

    def with_identity(self) -> "Event":
        """Return a copy with id and ts filled in."""
        if self.id and self.ts is not None:
            return self
        return self.model_copy(
            update={
                "id": self.id or new_event_id(),
                "ts": self.ts if self.ts is not None else int(time.time() * 1000),
            }
        )

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(exclude_none=True)


def resolve_path(source: dict[str, Any], path: str) -> Any:
    """Resolve a dotted path such as ``data.user_id`` against a mapping."""
    current: Any = source
    for part in path.split("."):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget shared by every step of a function."""

    max_attempts: int = 4
    base_delay_s: float = 5.0
    max_delay_s: float = 300.0
    jitter: bool = True

    def backoff_seconds(self, attempt: int) -> float:
        """Delay before retry number ``attempt`` (1-based): min(max, base * 2^(n-1)) + jitter."""
        base = min(self.max_delay_s, self.base_delay_s * (2 ** max(0, attempt - 1)))
        if not self.jitter:
            return base
        return base + random.uniform(0, min(10.0, base / 2))


@dataclass(frozen=True)
class ConcurrencyLimit:
    """At most ``limit`` running runs per function, or per key value when ``key`` is set.

    ``key`` is a dotted path into the triggering event, e.g. ``event.data.user_id``.
    """

    limit: int = 1
    key: Optional[str] = None

    def scope_for(self, function_id: str, event: dict[str, Any]) -> str:
        if not self.key:
            return function_id
        path = self.key.removeprefix("event.")
        return f"{function_id}:{resolve_path(event, path)}"


@dataclass(frozen=True)
class CancelOn:
    """Cancel running instances when ``event`` arrives with the same value at ``match``."""

    event: str
    match: str  # dotted path compared on both events, e.g. "data.session_id"


FunctionHandler = Callable[["RunContext"], Awaitable[Any]]
FailureHandler = Callable[["RunContext", BaseException], Awaitable[None]]


@dataclass(frozen=True)
class FunctionDefinition:
    """A job: trigger pattern, body and execution policy."""

    id: str
    trigger: str
    handler: FunctionHandler
    name: Optional[str] = None
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    concurrency: Optional[ConcurrencyLimit] = None
    cancel_on: tuple[CancelOn, ...] = ()
    on_failure: Optional[FailureHandler] = None
    payload_model: Optional[type[BaseModel]] = None

    def matches(self, event_name: str) -> bool:
        return fnmatch.fnmatchcase(event_name, self.trigger)

    def to_discovery(self) -> dict[str, Any]:
        """Serializable description used by the GET endpoint."""
        doc: dict[str, Any] = {
            "id": self.id,
            "name": self.name or self.id,
            "triggers": [{"event": self.trigger}],
            "retries": {
                "max_attempts": self.retry.max_attempts,
                "base_delay_s": self.retry.base_delay_s,
                "max_delay_s": self.retry.max_delay_s,
            },
        }
        if self.concurrency:
            doc["concurrency"] = {
                "limit": self.concurrency.limit,
                "key": self.concurrency.key,
            }
        if self.cancel_on:
            doc["cancel_on"] = [{"event": c.event, "match": c.match} for c in self.cancel_on]
        return doc


@dataclass
class Run:
    """One execution of a function against one triggering event."""

    id: str
    function_id: str
    event_id: str
    event: dict[str, Any]
    status: RunStatus = RunStatus.SCHEDULED

    # Body-level (non-step) failures
    attempt: int = 0

    concurrency_key: Optional[str] = None
    run_after: datetime = field(default_factory=_now)

    # Lock info
    locked_by: Optional[str] = None
    locked_at: Optional[datetime] = None

    # Lifecycle timestamps
    created_at: datetime = field(default_factory=_now)
    started_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    output: Any = None
    error: Optional[str] = None


@dataclass
class StepRecord:
    """Durable record of one named step within a run."""

    run_id: str
    step_name: str
    status: StepStatus = StepStatus.PENDING
    attempts: int = 0
    result: Any = None
    error: Optional[str] = None
    wake_at: Optional[datetime] = None
    position: int = 0
    updated_at: datetime = field(default_factory=_now)
