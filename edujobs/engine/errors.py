"""Engine error taxonomy."""

from typing import Optional


class EngineError(Exception):
    """Base class for engine errors."""

    retryable: bool = False


class ValidationError(EngineError):
    """Event payload is malformed. Never retried; no run is created."""

    def __init__(self, message: str, function_id: Optional[str] = None):
        self.function_id = function_id
        super().__init__(message)


class StepError(EngineError):
    """A step's work raised. Retry is decided at the run boundary."""

    def __init__(
        self,
        message: str,
        step_name: str,
        retryable: bool = True,
        attempts: int = 1,
    ):
        self.step_name = step_name
        self.retryable = retryable
        self.attempts = attempts
        super().__init__(message)


class FatalJobError(EngineError):
    """Raised by job code to give up. The run fails without further retries."""


class DuplicateFunctionId(EngineError):
    """A function id was registered twice."""


class RegistryFrozen(EngineError):
    """Registration attempted after startup."""


class DeliveryError(EngineError):
    """Events could not be handed to the broker."""

    retryable = True

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.status_code = status_code
        super().__init__(message)


class RunNotFound(EngineError):
    """No run with the given id."""


class StoreUnavailable(EngineError):
    """The run store could not be reached."""

    retryable = True


def is_retryable(exc: BaseException) -> bool:
    """Classify an exception raised by step work.

    Anything not explicitly marked otherwise is treated as transient.
    """
    if isinstance(exc, FatalJobError):
        return False
    return bool(getattr(exc, "retryable", True))
