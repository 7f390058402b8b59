"""Sentry initialization and configuration."""

import os
from typing import Any, Optional

import sentry_sdk
import structlog
from sentry_sdk.integrations.fastapi import FastApiIntegration
from sentry_sdk.integrations.logging import LoggingIntegration
from sentry_sdk.integrations.starlette import StarletteIntegration

from edujobs import __version__
from edujobs.config import Settings

logger = structlog.get_logger(__name__)


def _before_send(event: dict, hint: dict) -> Optional[dict]:
    """
    Filter out 4xx client errors from Sentry events.

    Bad signatures, unknown runs and invalid events are the caller's problem.
    Only 5xx server errors should be captured.
    """
    if "exc_info" in hint:
        exc_type, exc_value, tb = hint["exc_info"]
        if hasattr(exc_value, "status_code"):
            status_code = exc_value.status_code
            if isinstance(status_code, int) and 400 <= status_code < 500:
                return None

    if "contexts" in event:
        response = event.get("contexts", {}).get("response", {})
        status_code = response.get("status_code", 0)
        if 400 <= status_code < 500:
            return None

    return event


def _create_traces_sampler(settings: Settings) -> Any:
    """Create a route-aware sampling function for Sentry traces."""

    def traces_sampler(sampling_context: dict) -> float:
        """
        Route-aware sampling.

        - Never trace /metrics or /health scrapes
        - Inherits parent sampling decision if available
        - Default rate for everything else
        """
        tx_context = sampling_context.get("transaction_context", {})
        tx_name = tx_context.get("name", "")

        if tx_name.endswith("metrics") or tx_name.endswith("health_check"):
            return 0.0

        parent = sampling_context.get("parent_sampled")
        if parent is not None:
            return float(parent)

        return settings.sentry_traces_sample_rate

    return traces_sampler


def init_sentry(settings: Settings) -> bool:
    """
    Initialize Sentry if DSN is configured.

    Returns True if Sentry was initialized, False otherwise.
    """
    if not settings.sentry_dsn:
        return False

    # Only send ERROR-level logs as Sentry events
    sentry_logging = LoggingIntegration(
        level=None,
        event_level="ERROR",
    )

    sentry_sdk.init(
        dsn=settings.sentry_dsn,
        environment=settings.sentry_environment,
        release=os.environ.get("GIT_SHA", f"edujobs@{__version__}"),
        integrations=[
            sentry_logging,
            StarletteIntegration(transaction_style="endpoint"),
            FastApiIntegration(transaction_style="endpoint"),
        ],
        traces_sampler=_create_traces_sampler(settings),
        profiles_sample_rate=settings.sentry_profiles_sample_rate,
        send_default_pii=False,
        attach_stacktrace=True,
        before_send=_before_send,
    )

    sentry_sdk.set_tag("service", "edujobs")
    sentry_sdk.set_tag("engine_mode", settings.engine_mode)

    logger.info(
        "sentry_initialized",
        environment=settings.sentry_environment,
        traces_sample_rate=settings.sentry_traces_sample_rate,
    )

    return True


def capture_run_failure(
    exc: BaseException, *, function_id: str, run_id: str, event_name: str, attempt: int
) -> None:
    """Report a run that ended in FAILED. No-op when Sentry is not initialized."""
    if not sentry_sdk.is_initialized():
        return
    with sentry_sdk.new_scope() as scope:
        scope.set_tag("function_id", function_id)
        scope.set_tag("event_name", event_name)
        scope.set_context("run", {"run_id": run_id, "attempt": attempt})
        sentry_sdk.capture_exception(exc)
