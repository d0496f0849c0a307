"""Tests for the REST API (``migration_spine.api``)."""

from __future__ import annotations

import threading

import pytest
from fastapi.testclient import TestClient

from conftest import plan_definition
from migration_spine.api import create_app
from migration_spine.core.settings import MigrationSettings

PREFIX = "/api/v1"


@pytest.fixture
def client(service):
    settings = MigrationSettings(_env_file=None, debug=False)
    return TestClient(create_app(settings=settings, service=service))


@pytest.fixture
def plan_id(client):
    response = client.post(f"{PREFIX}/plans", json=plan_definition())
    assert response.status_code == 201
    return response.json()["data"]["id"]


def wait_until_finished(service, plan_id):
    return service.wait_for_plan(plan_id, timeout=5)


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok", "version": "0.1.0"}

    def test_request_id_is_echoed(self, client):
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    def test_unsafe_request_id_is_replaced(self, client):
        response = client.get("/health", headers={"X-Request-ID": "bad id\twith spaces"})
        echoed = response.headers["X-Request-ID"]
        assert echoed != "bad id\twith spaces"
        assert len(echoed) == 36


class TestCreate:
    def test_create_returns_plan(self, client):
        response = client.post(f"{PREFIX}/plans", json=plan_definition())
        assert response.status_code == 201
        body = response.json()
        assert body["data"]["status"] == "planned"
        assert [s["name"] for s in body["data"]["steps"]] == [
            "create-users-v2",
            "copy-users",
            "check-copied",
        ]

    def test_invalid_definition_is_problem_detail(self, client):
        response = client.post(
            f"{PREFIX}/plans", json={"name": "broken", "strategy": "sideways", "steps": []}
        )
        assert response.status_code == 400
        body = response.json()
        assert body["title"] == "Bad Request"
        assert body["instance"] == f"{PREFIX}/plans"
        messages = [e["message"] for e in body["errors"]]
        assert "unknown strategy 'sideways'" in messages
        assert "plan must contain at least one step" in messages
        assert {e["code"] for e in body["errors"]} == {"VALIDATION_FAILED"}

    def test_second_open_plan_conflicts(self, client, plan_id):
        response = client.post(f"{PREFIX}/plans", json=plan_definition(name="another"))
        assert response.status_code == 409
        assert response.json()["title"] == "Conflict"


class TestExecute:
    def test_execute_is_accepted(self, client, service, plan_id):
        response = client.post(f"{PREFIX}/plans/{plan_id}/execute")
        assert response.status_code == 202
        data = response.json()["data"]
        assert data["plan_id"] == plan_id
        assert data["dry_run"] is False

        wait_until_finished(service, plan_id)
        plan = client.get(f"{PREFIX}/plans/{plan_id}").json()["data"]
        assert plan["status"] == "completed"
        assert plan["progress_percentage"] == 100.0

    def test_query_overrides_body(self, client, service, recording_target, plan_id):
        response = client.post(
            f"{PREFIX}/plans/{plan_id}/execute?dry_run=true",
            json={"dry_run": False, "continue_on_errors": True},
        )
        assert response.status_code == 202
        data = response.json()["data"]
        assert data["dry_run"] is True
        assert data["continue_on_errors"] is True

        wait_until_finished(service, plan_id)
        assert recording_target.mutating_calls() == []

    def test_execute_twice_is_illegal_state(self, client, service, plan_id):
        client.post(f"{PREFIX}/plans/{plan_id}/execute")
        wait_until_finished(service, plan_id)
        response = client.post(f"{PREFIX}/plans/{plan_id}/execute")
        assert response.status_code == 409

    def test_execute_unknown_plan(self, client):
        response = client.post(f"{PREFIX}/plans/01UNKNOWN/execute")
        assert response.status_code == 404
        assert response.json()["title"] == "Not Found"

    def test_failed_pre_validation(self, client, recording_target, plan_id):
        recording_target.tables.discard("users")
        response = client.post(f"{PREFIX}/plans/{plan_id}/execute")
        assert response.status_code == 400
        assert any("table 'users' does not exist" in e["message"] for e in response.json()["errors"])
        assert client.get(f"{PREFIX}/plans/{plan_id}").json()["data"]["status"] == "failed"


class TestCancelAndDelete:
    def test_cancel_running_plan(self, client, service, recording_target, plan_id):
        recording_target.block = threading.Event()
        client.post(f"{PREFIX}/plans/{plan_id}/execute")
        assert recording_target.entered.wait(timeout=5)

        active = client.get(f"{PREFIX}/plans/active").json()
        assert [p["id"] for p in active["data"]] == [plan_id]
        assert client.delete(f"{PREFIX}/plans/{plan_id}").status_code == 409

        response = client.post(f"{PREFIX}/plans/{plan_id}/cancel")
        assert response.status_code == 202
        assert response.json()["data"]["cancel_requested"] is True
        recording_target.block.set()

        final = wait_until_finished(service, plan_id)
        assert final.status.value == "failed"

    def test_cancel_planned_plan(self, client, plan_id):
        assert client.post(f"{PREFIX}/plans/{plan_id}/cancel").status_code == 409

    def test_delete(self, client, plan_id):
        response = client.delete(f"{PREFIX}/plans/{plan_id}")
        assert response.status_code == 204
        assert response.content == b""
        assert client.get(f"{PREFIX}/plans/{plan_id}").status_code == 404


class TestQueries:
    @pytest.fixture
    def completed_id(self, client, service, plan_id):
        client.post(f"{PREFIX}/plans/{plan_id}/execute")
        wait_until_finished(service, plan_id)
        return plan_id

    def test_list_with_filters(self, client, completed_id):
        body = client.get(f"{PREFIX}/plans", params={"status": "completed", "name": "USERS"}).json()
        assert body["total"] == 1
        assert body["data"][0]["id"] == completed_id
        assert client.get(f"{PREFIX}/plans", params={"strategy": "incremental"}).json()["total"] == 0

    def test_unknown_status_filter(self, client):
        response = client.get(f"{PREFIX}/plans/status/paused")
        assert response.status_code == 400
        assert "unknown PlanStatus 'paused'" in response.json()["detail"]

    def test_ready(self, client, plan_id):
        body = client.get(f"{PREFIX}/plans/ready").json()
        assert [p["id"] for p in body["data"]] == [plan_id]

    def test_summary_and_metrics(self, client, completed_id):
        summary = client.get(f"{PREFIX}/plans/{completed_id}/summary").json()["data"]
        assert summary["succeeded_steps"] == 3
        assert summary["failed_steps"] == 0
        assert summary["completion_percentage"] == 100.0
        assert summary["success_rate"] == 100.0
        assert summary["has_critical_issues"] is False
        assert summary["estimated_seconds_remaining"] == 0.0

        metrics = client.get(f"{PREFIX}/plans/{completed_id}/metrics").json()
        assert metrics["total"] == 3
        assert [m["order"] for m in metrics["data"]] == [1, 2, 3]

    def test_summary_of_unknown_plan(self, client):
        assert client.get(f"{PREFIX}/plans/01UNKNOWN/summary").status_code == 404

    def test_events(self, client, completed_id):
        body = client.get(f"{PREFIX}/plans/{completed_id}/events").json()
        assert body["total"] == 2
        assert [e["event_type"] for e in body["data"]] == ["started", "completed"]
        assert body["data"][0]["plan_id"] == completed_id
        assert body["data"][0]["data"] == {"dry_run": False, "continue_on_errors": False}

    def test_events_of_unknown_plan(self, client):
        assert client.get(f"{PREFIX}/plans/01UNKNOWN/events").status_code == 404

    def test_stats(self, client, completed_id):
        data = client.get(f"{PREFIX}/stats").json()["data"]
        assert data["total_plans"] == 1
        assert data["status_breakdown"]["completed"] == 1
        assert data["last_completed_plan_id"] == completed_id
