"""Tests for the health endpoint and its dependency checks."""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from edujobs.main import create_app
from edujobs.routers.health import check_email_health, check_store_health


@pytest.fixture
def client(settings, services):
    app = create_app(settings.model_copy(update={"engine_mode": "broker"}), services)
    with TestClient(app) as test_client:
        yield test_client


def test_health_reports_store_and_registry(client):
    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["store"]["status"] == "ok"
    assert body["engine_mode"] == "broker"
    assert body["functions"] == 7
    assert body["email"]["status"] == "unconfigured"


def test_health_is_public_with_api_key(settings, services):
    app = create_app(
        settings.model_copy(update={"engine_mode": "broker", "api_key": "secret"}), services
    )
    with TestClient(app) as client:
        assert client.get("/health").status_code == 200
        assert client.get("/admin/runs").status_code == 401


def test_root(client):
    body = client.get("/").json()
    assert body["service"] == "EduJobs"
    assert body["webhook"] == "/api/jobs"


@pytest.mark.asyncio
async def test_store_error_is_reported():
    store = AsyncMock()
    store.ping.side_effect = ConnectionRefusedError("connection refused")

    health = await check_store_health(store)

    assert health.status == "error"
    assert "connection refused" in health.error
    assert health.latency_ms is not None


@pytest.mark.asyncio
async def test_unreachable_store():
    store = AsyncMock()
    store.ping.return_value = False

    health = await check_store_health(store)

    assert health.status == "error"
    assert health.error == "Run store unreachable"


def test_email_health(settings):
    assert check_email_health(settings).status == "unconfigured"
    configured = settings.model_copy(update={"resend_api_key": "re_123"})
    assert check_email_health(configured).status == "ok"
