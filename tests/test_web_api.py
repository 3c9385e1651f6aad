"""Tests for the HTTP surface: run/stop/reset/status and health."""

from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from core import __version__
from core.errors import LockConflict
from web.main import app


IDLE_STATUS = {"state": "idle", "is_running": False, "message": "No passes run yet"}


@pytest.fixture
def runner():
    runner = MagicMock()
    runner.get_status_dict.return_value = IDLE_STATUS
    runner.read_run_status.return_value = {
        "status": "idle",
        "startedAt": "2024-06-01T11:00:00Z",
        "finishedAt": "2024-06-01T11:05:00Z",
        "nextRun": "2024-06-01T12:00:00Z",
    }
    return runner


@pytest.fixture
def client(runner):
    # No context manager: lifespan (scheduler startup) is not run
    with patch("web.routers.operations.get_operation_runner", return_value=runner), \
         patch("web.routers.api.get_operation_runner", return_value=runner):
        yield TestClient(app)


# ============================================================================
# Operations
# ============================================================================

class TestRunEndpoint:
    def test_run_accepted(self, client, runner):
        runner.start_operation.return_value = True

        response = client.post("/operations/run", json={"dry_run": True})

        assert response.status_code == 202
        body = response.json()
        assert body["success"] is True
        assert body["message"] == "Dry run started"
        runner.start_operation.assert_called_once_with(dry_run=True, verbose=False)

    def test_run_without_body(self, client, runner):
        runner.start_operation.return_value = True
        response = client.post("/operations/run")
        assert response.status_code == 202
        runner.start_operation.assert_called_once_with(dry_run=False, verbose=False)

    def test_run_conflict(self, client, runner):
        runner.start_operation.return_value = False

        response = client.post("/operations/run")

        assert response.status_code == 409
        assert response.json()["success"] is False
        assert "already in progress" in response.json()["message"]


class TestStopAndReset:
    def test_stop_running(self, client, runner):
        runner.stop_operation.return_value = True
        response = client.post("/operations/stop")
        assert response.status_code == 200
        assert response.json()["success"] is True

    def test_stop_when_idle(self, client, runner):
        runner.stop_operation.return_value = False
        assert client.post("/operations/stop").status_code == 409

    def test_reset(self, client, runner):
        runner.force_reset.return_value = {"status": "idle", "startedAt": None,
                                           "finishedAt": None, "nextRun": None}
        response = client.post("/operations/reset")
        assert response.status_code == 200
        assert response.json()["status"]["status"] == "idle"

    def test_reset_while_running(self, client, runner):
        runner.force_reset.side_effect = LockConflict("Cannot reset while a run is in progress")
        response = client.post("/operations/reset")
        assert response.status_code == 409
        assert response.json()["message"] == "Cannot reset while a run is in progress"

    def test_operation_status(self, client):
        response = client.get("/operations/status")
        assert response.status_code == 200
        assert response.json() == IDLE_STATUS


# ============================================================================
# API
# ============================================================================

class TestApiEndpoints:
    def test_health(self, client):
        response = client.get("/api/health")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "ok"
        assert body["version"] == __version__

    def test_run_status_uses_camel_case(self, client):
        response = client.get("/api/status")
        assert response.status_code == 200
        assert response.json() == {
            "status": "idle",
            "startedAt": "2024-06-01T11:00:00Z",
            "finishedAt": "2024-06-01T11:05:00Z",
            "nextRun": "2024-06-01T12:00:00Z",
        }
