"""Shared fixtures for integration tests.

Builds the real application over an in-memory run store. Repositories and
external clients are mocked at the JobServices seam.
"""

from unittest.mock import AsyncMock

import pytest
from fastapi.testclient import TestClient

from edujobs.config import Settings
from edujobs.functions import JobServices
from edujobs.main import create_app

TEST_ADMIN_TOKEN = "test-admin-token"
TEST_SIGNING_KEY = "whsec-test"


@pytest.fixture
def admin_headers():
    """Headers with admin token for protected endpoints."""
    return {"X-Admin-Token": TEST_ADMIN_TOKEN}


def make_settings(**overrides) -> Settings:
    values = {
        "engine_mode": "broker",
        "admin_token": TEST_ADMIN_TOKEN,
        "webapp_url": "https://app.example.com",
        "rate_limit_enabled": False,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def job_services():
    settings = make_settings()
    return JobServices(
        accounts=AsyncMock(),
        imports=AsyncMock(),
        logistics=AsyncMock(),
        notifications=AsyncMock(),
        exercises=AsyncMock(),
        grading=AsyncMock(),
        email=None,
        identity=AsyncMock(),
        documents=AsyncMock(),
        llm=None,
        settings=settings,
    )


@pytest.fixture
def client(job_services):
    """Unsigned client: no signing key configured."""
    app = create_app(make_settings(), job_services)
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def signed_client(job_services):
    """Client for an app that requires X-Signature on the webhook."""
    app = create_app(make_settings(signing_key=TEST_SIGNING_KEY), job_services)
    with TestClient(app) as test_client:
        yield test_client
