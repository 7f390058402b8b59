"""Shared fixtures for unit tests: in-memory engines and mocked job services."""

from typing import Optional
from unittest.mock import AsyncMock

import pytest

from edujobs.config import Settings
from edujobs.engine import FunctionRegistry, InMemoryRunStore, JobEngine
from edujobs.functions.services import JobServices
from edujobs.services.email.transport import EmailTransport


class RecordingTransport(EmailTransport):
    """Email transport that records sends instead of delivering them."""

    def __init__(self, fail_for: Optional[set[str]] = None):
        self.sent: list[dict] = []
        self.fail_for = fail_for or set()

    async def send(self, to, subject, html, idempotency_key=None):
        if to in self.fail_for:
            raise RuntimeError(f"mailbox unavailable: {to}")
        self.sent.append(
            {"to": to, "subject": subject, "html": html, "idempotency_key": idempotency_key}
        )
        return f"msg-{len(self.sent)}"


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        webapp_url="https://app.example.com",
        display_timezone="Asia/Ho_Chi_Minh",
        import_batch_size=2,
        deletion_grace_period_days=7,
        admin_token="test-admin-token",
    )


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def services(settings, transport):
    return JobServices(
        accounts=AsyncMock(),
        imports=AsyncMock(),
        logistics=AsyncMock(),
        notifications=AsyncMock(),
        exercises=AsyncMock(),
        grading=AsyncMock(),
        email=transport,
        identity=AsyncMock(),
        documents=AsyncMock(),
        llm=None,
        settings=settings,
    )


@pytest.fixture
def make_engine():
    """Build an engine over a fresh in-memory store.

    ``register`` is a module-level ``register(registry)`` function or a list of them.
    """

    def factory(register, services=None, **kwargs) -> JobEngine:
        registry = FunctionRegistry()
        for fn in register if isinstance(register, (list, tuple)) else [register]:
            fn(registry)
        registry.freeze()
        return JobEngine(InMemoryRunStore(), registry, services, **kwargs)

    return factory


@pytest.fixture
def run_event():
    """Ingest one event and drain every run it created."""

    async def runner(engine: JobEngine, event: dict):
        result = await engine.ingest([event])
        run_ids = [r["run_id"] for r in result.runs]
        outcomes = await engine.drain(run_ids)
        return result, outcomes

    return runner
