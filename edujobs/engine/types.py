"""Engine type definitions."""

from enum import Enum


class RunStatus(str, Enum):
    """Run lifecycle statuses. Transitions only move forward."""

    SCHEDULED = "scheduled"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        """Check if this status is terminal (run won't change)."""
        return self in (RunStatus.COMPLETED, RunStatus.FAILED, RunStatus.CANCELLED)


class StepStatus(str, Enum):
    """Step record statuses."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ClaimResult(str, Enum):
    """Outcome of trying to acquire a run for advancement."""

    ACQUIRED = "acquired"
    BUSY = "busy"  # another callback holds the run lock
    THROTTLED = "throttled"  # concurrency limit reached, run stays scheduled
    TERMINAL = "terminal"
    NOT_FOUND = "not_found"


class ResponseStatus(str, Enum):
    """Machine-parseable status returned by the webhook."""

    ACCEPTED = "accepted"
    RETRYABLE_ERROR = "retryable-error"
    FATAL_ERROR = "fatal-error"
