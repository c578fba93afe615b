"""Tests for the FastAPI API endpoints."""

import pytest
from fastapi.testclient import TestClient

from focus_engine.alignment.delegate import AlignmentDelegate
from focus_engine.api.app import create_app
from focus_engine.models.task import PrioritySet, Task, TaskStatus
from focus_engine.planner.engine import Planner
from focus_engine.scheduler.orchestrator import IntervalTrigger, JobOrchestrator
from focus_engine.storage.store import FocusStore


class _CountingReprioritizer:
    def __init__(self):
        self.submitted = 0

    def submit(self):
        self.submitted += 1


@pytest.fixture
def store():
    return FocusStore(":memory:")


@pytest.fixture
def planner(store):
    planner = Planner(store, AlignmentDelegate(None, store, PrioritySet(okrs=["Default OKR"])))
    store.save_task(Task(id="task_1", title="Send proposal", impact=4, score=55))
    store.save_task(Task(id="task_2", title="Expense report", impact=1, score=20))
    return planner


@pytest.fixture
def client(planner):
    return TestClient(create_app(planner))


class TestTaskEndpoints:
    def test_list_pending(self, client):
        response = client.get("/tasks")
        assert response.status_code == 200
        assert [t["id"] for t in response.json()] == ["task_1", "task_2"]

    def test_list_with_limit_and_status(self, client):
        assert len(client.get("/tasks", params={"limit": 1}).json()) == 1
        assert client.get("/tasks", params={"status": "completed"}).json() == []

    def test_complete_and_uncomplete(self, client, store):
        response = client.post("/tasks/task_1/complete")
        assert response.status_code == 200
        assert response.json()["status"] == "completed"
        assert store.get_task("task_1").status == TaskStatus.COMPLETED

        response = client.post("/tasks/task_1/uncomplete")
        assert response.json()["status"] == "pending"
        assert store.get_task("task_1").status == TaskStatus.PENDING

    def test_unknown_task_is_404(self, client):
        assert client.post("/tasks/nope/complete").status_code == 404
        assert client.post("/tasks/nope/uncomplete").status_code == 404
        assert client.post("/tasks/nope/snooze", json={"until": "2030-01-01T09:00:00"}).status_code == 404
        assert client.post("/tasks/nope/feedback", json={"vote": 1}).status_code == 404

    def test_snooze(self, client, store):
        response = client.post("/tasks/task_2/snooze", json={"until": "2030-01-01T09:00:00"})
        assert response.status_code == 200
        assert store.get_task("task_2").due_ts.year == 2030


class TestFeedbackEndpoint:
    def test_record(self, client, store):
        response = client.post(
            "/tasks/task_1/feedback",
            json={"vote": -1, "reason": "not urgent", "original_score": 5.5, "adjusted_score": 4.0},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["vote"] == -1
        assert data["task_id"] == "task_1"
        assert store.count_feedback() == 1

    def test_invalid_vote(self, client, store):
        response = client.post("/tasks/task_1/feedback", json={"vote": 3})
        assert response.status_code == 400
        assert store.count_feedback() == 0


class TestPrioritizationEndpoints:
    def test_inline_pass(self, client, store):
        response = client.post("/prioritize")
        assert response.json() == {"status": "completed"}
        # impact 4, urgency 3, M, none, no alignment: 0.25*4 + 0.2*3 - 0.1 = 1.5 -> 38
        assert store.get_task("task_1").score == 38

    def test_queued_pass(self, planner):
        reprioritizer = _CountingReprioritizer()
        client = TestClient(create_app(planner, prioritizer=reprioritizer))
        assert client.post("/prioritize").json() == {"status": "queued"}
        assert reprioritizer.submitted == 1

    def test_phase(self, client):
        data = client.get("/phase").json()
        assert data["phase"]["kind"] == "bootstrap"
        assert data["feedback_count"] == 0
        assert data["description"].startswith("Bootstrap")

    def test_priorities_round_trip(self, client):
        assert client.get("/priorities").json()["okrs"] == ["Default OKR"]

        response = client.put(
            "/priorities",
            json={
                "priorities": [
                    {"kind": "okr", "text": "Ship v2"},
                    {"kind": "stakeholder", "text": "ceo@example.com"},
                ]
            },
        )
        assert response.status_code == 200
        assert response.json()["saved"] == 2

        data = client.get("/priorities").json()
        assert data["okrs"] == ["Ship v2"]
        assert data["key_stakeholders"] == ["ceo@example.com"]


class TestObservabilityEndpoints:
    def test_stats(self, client):
        client.post("/tasks/task_2/complete")
        stats = client.get("/stats").json()
        assert stats["pending"] == 1
        assert stats["completed"] == 1
        assert stats["completed_today"] == 1

    def test_jobs_without_orchestrator(self, client):
        assert client.get("/jobs").json() == {}

    def test_jobs(self, planner):
        orchestrator = JobOrchestrator()
        orchestrator.add_job("prioritize", lambda cancel: None, IntervalTrigger(600))
        client = TestClient(create_app(planner, orchestrator=orchestrator))

        data = client.get("/jobs").json()
        assert data["prioritize"]["status"] == "idle"
        assert data["prioritize"]["runs"] == 0
        assert data["prioritize"]["last_outcome"] is None
        assert data["prioritize"]["next_run"] is not None


class TestPlanEndpoint:
    def test_plan(self, client):
        data = client.get("/plan").json()
        assert [t["id"] for t in data["morning"]] == ["task_1", "task_2"]
        assert data["afternoon"] == []
        assert data["quick_wins"] == []
        assert data["text"].startswith("Daily Plan - ")
        assert "- Send proposal" in data["text"]

    def test_plan_limit(self, client):
        data = client.get("/plan", params={"limit": 1}).json()
        assert [t["id"] for t in data["morning"]] == ["task_1"]
