"""Durable event-driven job engine."""

from edujobs.engine.client import EventBus, HttpEventBus, LocalEventBus, SendReceipt
from edujobs.engine.engine import AdvanceResult, IngestResult, JobEngine
from edujobs.engine.errors import (
    DeliveryError,
    DuplicateFunctionId,
    FatalJobError,
    RegistryFrozen,
    RunNotFound,
    StepError,
    StoreUnavailable,
    ValidationError,
)
from edujobs.engine.models import (
    CancelOn,
    ConcurrencyLimit,
    Event,
    FunctionDefinition,
    RetryPolicy,
    Run,
    StepRecord,
)
from edujobs.engine.registry import FunctionRegistry
from edujobs.engine.steps import RunContext, StepRunner, StepTools
from edujobs.engine.store import InMemoryRunStore, RunStore
from edujobs.engine.types import ClaimResult, ResponseStatus, RunStatus, StepStatus

__all__ = [
    "AdvanceResult",
    "CancelOn",
    "ClaimResult",
    "ConcurrencyLimit",
    "DeliveryError",
    "DuplicateFunctionId",
    "Event",
    "EventBus",
    "FatalJobError",
    "FunctionDefinition",
    "FunctionRegistry",
    "HttpEventBus",
    "InMemoryRunStore",
    "IngestResult",
    "JobEngine",
    "LocalEventBus",
    "RegistryFrozen",
    "ResponseStatus",
    "RetryPolicy",
    "Run",
    "RunContext",
    "RunNotFound",
    "RunStatus",
    "RunStore",
    "SendReceipt",
    "StepError",
    "StepRecord",
    "StepRunner",
    "StepStatus",
    "StepTools",
    "StoreUnavailable",
    "ValidationError",
]
