"""Function registry: binds event-name patterns to job definitions."""

from typing import Any, Callable, Optional

from edujobs.engine.errors import DuplicateFunctionId, RegistryFrozen
from edujobs.engine.models import (
    CancelOn,
    ConcurrencyLimit,
    Event,
    FailureHandler,
    FunctionDefinition,
    FunctionHandler,
    RetryPolicy,
)


class FunctionRegistry:
    """Registry mapping function ids to their definitions.

    Built once at process start and frozen before serving traffic.
    """

    def __init__(self):
        self._functions: dict[str, FunctionDefinition] = {}
        self._frozen = False

    def register(self, definition: FunctionDefinition) -> FunctionDefinition:
        """Register a definition. Fails on a duplicate id or after freeze()."""
        if self._frozen:
            raise RegistryFrozen(f"Registry is frozen, cannot register: {definition.id}")
        if definition.id in self._functions:
            raise DuplicateFunctionId(f"Function already registered: {definition.id}")
        self._functions[definition.id] = definition
        return definition

    def function(
        self,
        id: str,
        trigger: str,
        *,
        name: Optional[str] = None,
        retry: Optional[RetryPolicy] = None,
        concurrency: Optional[ConcurrencyLimit] = None,
        cancel_on: tuple[CancelOn, ...] = (),
        on_failure: Optional[FailureHandler] = None,
        payload_model: Any = None,
    ) -> Callable[[FunctionHandler], FunctionHandler]:
        """Decorator to register a handler."""

        def decorator(fn: FunctionHandler) -> FunctionHandler:
            self.register(
                FunctionDefinition(
                    id=id,
                    trigger=trigger,
                    handler=fn,
                    name=name,
                    retry=retry or RetryPolicy(),
                    concurrency=concurrency,
                    cancel_on=cancel_on,
                    on_failure=on_failure,
                    payload_model=payload_model,
                )
            )
            return fn

        return decorator

    def freeze(self) -> "FunctionRegistry":
        self._frozen = True
        return self

    @property
    def frozen(self) -> bool:
        return self._frozen

    def match(self, event: Event) -> list[FunctionDefinition]:
        """Every definition whose trigger matches the event name."""
        return [d for d in self._functions.values() if d.matches(event.name)]

    def get(self, function_id: str) -> FunctionDefinition:
        """Get a definition by id. Raises KeyError if not found."""
        if function_id not in self._functions:
            raise KeyError(f"No function registered with id: {function_id}")
        return self._functions[function_id]

    def list_all(self) -> list[FunctionDefinition]:
        return list(self._functions.values())

    def cancellers(self, event: Event) -> list[tuple[FunctionDefinition, CancelOn]]:
        """Definitions with a cancel_on rule triggered by this event."""
        return [
            (d, rule)
            for d in self._functions.values()
            for rule in d.cancel_on
            if rule.event == event.name
        ]

    def __len__(self) -> int:
        return len(self._functions)

    def __contains__(self, function_id: object) -> bool:
        return function_id in self._functions
