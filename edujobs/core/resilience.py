"""Database resilience: transient error classification and retry with backoff.

Usage:
    from edujobs.core.resilience import with_db_retry

    row = await with_db_retry(pool, lambda conn: conn.fetchrow(query, run_id))

Transient failures that survive the retries surface as StoreUnavailable,
which the webhook maps to a retryable response.
"""

import asyncio
import random
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Callable, Optional

import asyncpg
import structlog

from edujobs.engine.errors import StoreUnavailable

logger = structlog.get_logger(__name__)

TRANSIENT_SQLSTATES = frozenset(
    {
        "08000",  # connection_exception
        "08003",  # connection_does_not_exist
        "08006",  # connection_failure
        "08001",  # sqlclient_unable_to_establish_sqlconnection
        "08004",  # sqlserver_rejected_establishment_of_sqlconnection
        "57P01",  # admin_shutdown
        "57P02",  # crash_shutdown
        "57P03",  # cannot_connect_now
        "40001",  # serialization_failure
        "40P01",  # deadlock_detected
    }
)


@dataclass
class RetryConfig:
    """Configuration for retry behavior."""

    max_attempts: int = 3
    base_delay_seconds: float = 0.5
    max_delay_seconds: float = 10.0
    exponential_base: float = 2.0
    jitter_factor: float = 0.25


@dataclass
class CircuitState:
    """Consecutive-failure circuit breaker for the database."""

    failures: int = 0
    is_open: bool = False
    open_until: Optional[datetime] = None
    failure_threshold: int = 5
    reset_timeout_seconds: float = 30.0


_db_circuit = CircuitState()


def _calculate_backoff(attempt: int, config: RetryConfig) -> float:
    """Delay before the next attempt (0-indexed) with jitter."""
    delay = min(
        config.base_delay_seconds * (config.exponential_base**attempt),
        config.max_delay_seconds,
    )
    return delay + delay * config.jitter_factor * random.random()


def is_transient_db_error(error: BaseException) -> bool:
    """True for connection loss, timeouts, pool exhaustion and retryable sqlstates.

    Constraint violations and query errors are not transient.
    """
    if isinstance(error, StoreUnavailable):
        return True
    if isinstance(error, asyncpg.TooManyConnectionsError):
        return True
    if isinstance(
        error,
        (
            asyncpg.InterfaceError,
            asyncpg.InternalClientError,
            ConnectionRefusedError,
            ConnectionResetError,
            TimeoutError,
            asyncio.TimeoutError,
            OSError,
        ),
    ):
        return True
    if isinstance(error, asyncpg.PostgresError):
        return getattr(error, "sqlstate", None) in TRANSIENT_SQLSTATES
    return False


def _circuit_allows(circuit: CircuitState) -> bool:
    if not circuit.is_open:
        return True
    if circuit.open_until and datetime.now(timezone.utc) >= circuit.open_until:
        logger.info("circuit_half_open", service="database", failures=circuit.failures)
        return True
    return False


def _record_success(circuit: CircuitState) -> None:
    if circuit.failures > 0 or circuit.is_open:
        logger.info("circuit_closed", service="database", previous_failures=circuit.failures)
    circuit.failures = 0
    circuit.is_open = False
    circuit.open_until = None


def _record_failure(circuit: CircuitState) -> None:
    circuit.failures += 1
    if circuit.failures >= circuit.failure_threshold:
        now = datetime.now(timezone.utc)
        circuit.is_open = True
        circuit.open_until = datetime.fromtimestamp(
            now.timestamp() + circuit.reset_timeout_seconds, tz=timezone.utc
        )
        logger.warning(
            "circuit_opened",
            service="database",
            failures=circuit.failures,
            reset_at=circuit.open_until.isoformat(),
        )


def reset_circuit() -> None:
    """Close the database circuit (used by tests)."""
    _record_success(_db_circuit)


async def with_db_retry(
    pool: asyncpg.Pool,
    operation: Callable[[asyncpg.Connection], Any],
    config: Optional[RetryConfig] = None,
) -> Any:
    """Execute a database operation, retrying transient failures.

    Raises:
        StoreUnavailable: circuit open or transient failures exhausted the retries
        Exception: any non-transient error, unchanged
    """
    if config is None:
        config = RetryConfig()

    if not _circuit_allows(_db_circuit):
        raise StoreUnavailable("Database circuit breaker is open")

    last_error: Optional[BaseException] = None
    for attempt in range(config.max_attempts):
        try:
            async with pool.acquire() as conn:
                result = await operation(conn)
            _record_success(_db_circuit)
            return result
        except Exception as e:
            if not is_transient_db_error(e):
                raise
            last_error = e
            delay = _calculate_backoff(attempt, config)
            logger.warning(
                "db_retry_attempt",
                attempt=attempt + 1,
                max_attempts=config.max_attempts,
                delay_seconds=round(delay, 2),
                error=str(e),
                error_type=type(e).__name__,
            )
            if attempt < config.max_attempts - 1:
                await asyncio.sleep(delay)

    _record_failure(_db_circuit)
    logger.error("db_retries_exhausted", attempts=config.max_attempts, error=str(last_error))
    raise StoreUnavailable(f"Database unavailable: {last_error}") from last_error
