import os
import uuid
from datetime import datetime, timedelta

from fastapi.testclient import TestClient

os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

from flowly.main import app  # noqa: E402

client = TestClient(app)


def new_user():
    return {"X-User-Id": f"user-{uuid.uuid4()}"}


class TestDashboard:
    def test_empty_dashboard(self):
        res = client.get("/api/v1/dashboard", headers=new_user())
        assert res.status_code == 200
        data = res.json()
        assert data["full_name"] is None
        assert data["tasks"]["total"] == 0
        assert data["tasks"]["by_priority"] == {"low": 0, "medium": 0, "high": 0}
        assert data["total_habits"] == 0
        assert data["goals"]["total_goals"] == 0
        assert data["goals"]["upcoming_milestones"] == []

    def test_aggregates_user_data(self):
        user = new_user()
        yesterday = (datetime.now() - timedelta(days=1)).isoformat()
        client.patch("/api/v1/profile", json={"full_name": "Ada"}, headers=user)
        client.post("/api/v1/tasks/", json={"title": "Late", "priority": "high", "due_date": yesterday}, headers=user)
        client.post("/api/v1/tasks/", json={"title": "Done", "completed": True}, headers=user)
        for i in range(60):
            client.post("/api/v1/tasks/", json={"title": f"Bulk {i}", "priority": "low"}, headers=user)
        client.post("/api/v1/habits/", json={"name": "Read"}, headers=user)
        goal = client.post("/api/v1/goals/", json={"title": "Ship"}, headers=user).json()
        soon = (datetime.now() + timedelta(days=2)).isoformat()
        client.post(f"/api/v1/goals/{goal['id']}/milestones", json={"title": "Beta", "due_date": soon}, headers=user)

        data = client.get("/api/v1/dashboard", headers=user).json()
        assert data["full_name"] == "Ada"
        assert data["tasks"]["total"] == 62
        assert data["tasks"]["completed"] == 1
        assert data["tasks"]["pending"] == 61
        assert data["tasks"]["overdue"] == 1
        assert data["tasks"]["by_priority"] == {"low": 60, "medium": 1, "high": 1}
        assert data["total_habits"] == 1
        assert data["goals"]["active_goals"] == 1
        assert [m["title"] for m in data["goals"]["upcoming_milestones"]] == ["Beta"]


class TestProfile:
    def test_profile_created_on_first_use(self):
        user = new_user()
        res = client.get("/api/v1/profile", headers=user)
        assert res.status_code == 200
        profile = res.json()
        assert profile["id"] == user["X-User-Id"]
        assert profile["role"] == "free_user"
        assert profile["subscription"] is None

    def test_update_full_name(self):
        user = new_user()
        res = client.patch("/api/v1/profile", json={"full_name": "  Grace Hopper "}, headers=user)
        assert res.status_code == 200
        assert res.json()["full_name"] == "Grace Hopper"
        assert client.get("/api/v1/profile", headers=user).json()["full_name"] == "Grace Hopper"

    def test_requires_identity(self):
        assert client.get("/api/v1/profile").status_code == 401
