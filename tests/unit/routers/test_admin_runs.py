"""Tests for the admin runs API."""

import pytest
from fastapi.testclient import TestClient

from edujobs.main import create_app

ADMIN = {"X-Admin-Token": "test-admin-token"}

INTERVENTION = {
    "name": "student-health/intervention.send",
    "id": "int-1",
    "data": {
        "intervention_log_id": "ilog-1",
        "center_id": "center-1",
        "recipient_email": "parent@example.com",
        "subject": "Attendance",
        "body": "<p>Hello</p>",
    },
}


@pytest.fixture
def client(settings, services):
    # Broker mode keeps the resume worker from advancing runs behind the test
    app = create_app(settings.model_copy(update={"engine_mode": "broker"}), services)
    with TestClient(app) as test_client:
        yield test_client


def ingest(client, event):
    response = client.post("/api/jobs", json=event)
    assert response.status_code == 200
    return response.json()["runs"][0]["run_id"]


class TestAuth:
    def test_missing_token(self, client):
        response = client.get("/admin/runs")
        assert response.status_code == 401

    def test_wrong_token(self, client):
        response = client.get("/admin/runs", headers={"X-Admin-Token": "nope"})
        assert response.status_code == 403

    def test_closed_without_configured_token(self, settings, services):
        app = create_app(
            settings.model_copy(update={"engine_mode": "broker", "admin_token": None}), services
        )
        with TestClient(app) as client:
            response = client.get("/admin/runs", headers=ADMIN)
        assert response.status_code == 403
        assert "not configured" in response.json()["detail"]


class TestListAndGet:
    def test_list_runs(self, client):
        run_id = ingest(client, INTERVENTION)

        response = client.get("/admin/runs", headers=ADMIN)

        assert response.status_code == 200
        body = response.json()
        assert body["total"] == 1
        assert body["runs"][0]["id"] == run_id
        assert body["runs"][0]["status"] == "scheduled"
        assert body["runs"][0]["steps"] is None

    def test_list_filters(self, client):
        ingest(client, INTERVENTION)

        by_function = client.get(
            "/admin/runs", params={"function_id": "csv-import-batch"}, headers=ADMIN
        )
        by_status = client.get("/admin/runs", params={"status": "completed"}, headers=ADMIN)

        assert by_function.json()["total"] == 0
        assert by_status.json()["total"] == 0

    def test_invalid_status_filter(self, client):
        response = client.get("/admin/runs", params={"status": "DONE"}, headers=ADMIN)
        assert response.status_code == 422

    def test_get_run_with_steps(self, client):
        run_id = ingest(client, INTERVENTION)
        client.put("/api/jobs", json={"run_id": run_id})

        response = client.get(f"/admin/runs/{run_id}", headers=ADMIN)

        assert response.status_code == 200
        body = response.json()
        assert body["function_id"] == "intervention-email"
        assert body["status"] == "running"
        assert [s["name"] for s in body["steps"]] == ["send-email"]
        assert body["steps"][0]["status"] == "succeeded"

    def test_get_unknown_run(self, client):
        response = client.get("/admin/runs/missing", headers=ADMIN)
        assert response.status_code == 404


class TestCancel:
    def test_cancel_scheduled_run(self, client):
        run_id = ingest(client, INTERVENTION)

        response = client.post(
            f"/admin/runs/{run_id}/cancel", json={"reason": "duplicate"}, headers=ADMIN
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"
        assert response.json()["error"] == "duplicate"

        callback = client.put("/api/jobs", json={"run_id": run_id})
        assert callback.status_code == 200
        assert callback.json()["run_status"] == "cancelled"

    def test_cancel_without_body(self, client):
        run_id = ingest(client, INTERVENTION)

        response = client.post(f"/admin/runs/{run_id}/cancel", headers=ADMIN)

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"

    def test_cancel_unknown_run(self, client):
        response = client.post("/admin/runs/missing/cancel", headers=ADMIN)
        assert response.status_code == 404
