"""Concrete jobs and the registry that serves them."""

from edujobs.engine import FunctionRegistry
from edujobs.functions import (
    csv_import,
    intervention_email,
    question_generation,
    session_email,
    submission_grading,
    user_deletion,
)
from edujobs.functions.services import JobServices

MODULES = (
    csv_import,
    user_deletion,
    session_email,
    intervention_email,
    question_generation,
    submission_grading,
)


def build_registry() -> FunctionRegistry:
    """Register every job and freeze the registry."""
    registry = FunctionRegistry()
    for module in MODULES:
        module.register(registry)
    return registry.freeze()


__all__ = ["JobServices", "MODULES", "build_registry"]
