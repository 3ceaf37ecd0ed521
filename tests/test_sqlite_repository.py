from datetime import datetime

import pytest

from flowly.db import SQLiteRepository
from flowly.repositories import InMemoryRepository, TaskQuery
from flowly.schemas import (
    GoalCreate,
    GoalUpdate,
    HabitCreate,
    MilestoneCreate,
    MilestoneUpdate,
    TaskCreate,
    TaskUpdate,
)


@pytest.fixture(params=["memory", "sqlite"])
def repo(request, tmp_path):
    if request.param == "sqlite":
        return SQLiteRepository(str(tmp_path / "data" / "flowly.db"))
    return InMemoryRepository()


class TestProfiles:
    def test_ensure_profile_is_idempotent(self, repo):
        first = repo.ensure_profile("u1", email="Someone@Example.com")
        assert first["role"] == "free_user"
        assert first["email"] == "someone@example.com"
        repo.set_role("u1", "pro_user")
        assert repo.ensure_profile("u1")["role"] == "pro_user"

    def test_update_unknown_profile(self, repo):
        assert repo.update_profile("ghost", "Name") is None
        assert repo.set_role("ghost", "pro_user") is None


class TestTasks:
    def test_crud_round(self, repo):
        created = repo.create_task("u1", TaskCreate(title="Plan", priority="high", due_date="2099-01-01"))
        assert created["due_date"] == datetime(2099, 1, 1)
        assert created["completed"] is False

        updated = repo.update_task("u1", created["id"], TaskUpdate(completed=True))
        assert updated["completed"] is True
        assert updated["title"] == "Plan"
        assert repo.update_task("u2", created["id"], TaskUpdate(completed=False)) is None

        assert repo.delete_task("u2", created["id"]) is False
        assert repo.delete_task("u1", created["id"]) is True
        assert repo.get_task("u1", created["id"]) is None

    def test_list_filters_and_sorting(self, repo):
        repo.create_task("u1", TaskCreate(title="Alpha", priority="low", due_date="2099-01-03"))
        repo.create_task("u1", TaskCreate(title="Beta", priority="high"))
        repo.create_task("u1", TaskCreate(title="Gamma", priority="medium", due_date="2099-01-01"))
        repo.create_task("u2", TaskCreate(title="Other"))

        items, total = repo.list_tasks("u1", TaskQuery(sort="due_date"))
        assert total == 3
        assert [t["title"] for t in items] == ["Gamma", "Alpha", "Beta"]

        items, _ = repo.list_tasks("u1", TaskQuery(sort="-priority"))
        assert [t["title"] for t in items] == ["Beta", "Gamma", "Alpha"]

        items, total = repo.list_tasks("u1", TaskQuery(search="alp"))
        assert total == 1
        assert items[0]["title"] == "Alpha"

        items, total = repo.list_tasks("u1", TaskQuery(limit=0))
        assert items == []
        assert total == 3

    def test_tasks_between_uses_start_time(self, repo):
        repo.create_task("u1", TaskCreate(title="In", start_at="2024-01-02T09:00:00"))
        repo.create_task("u1", TaskCreate(title="Edge", start_at="2024-01-08T00:00:00"))
        repo.create_task("u1", TaskCreate(title="None"))
        found = repo.list_tasks_between("u1", datetime(2024, 1, 1), datetime(2024, 1, 8))
        assert [t["title"] for t in found] == ["In"]

    def test_list_all_tasks_ignores_paging(self, repo):
        for i in range(60):
            repo.create_task("u1", TaskCreate(title=f"Task {i}"))
        repo.create_task("u2", TaskCreate(title="Other"))
        everything = repo.list_all_tasks("u1")
        assert len(everything) == 60
        assert {t["user_id"] for t in everything} == {"u1"}
        assert repo.list_all_tasks("nobody") == []


class TestHabits:
    def test_logs_and_cascade(self, repo):
        habit = repo.create_habit("u1", HabitCreate(name="Read"))
        assert repo.add_habit_log("u2", habit["id"], datetime(2024, 1, 1)) is None
        repo.add_habit_log("u1", habit["id"], datetime(2024, 1, 1))
        repo.add_habit_log("u1", habit["id"], datetime(2024, 1, 3), "note")

        logs = repo.list_habit_logs("u1", datetime(2024, 1, 1), datetime(2024, 1, 4))
        assert [log["completed_at"] for log in logs] == [datetime(2024, 1, 3), datetime(2024, 1, 1)]
        assert logs[0]["notes"] == "note"

        assert repo.delete_habit("u1", habit["id"]) is True
        assert repo.list_habit_logs("u1") == []


class TestGoals:
    def test_goal_milestones_and_cascade(self, repo):
        goal = repo.create_goal("u1", GoalCreate(title="Ship"))
        assert goal["progress"] == 0
        assert goal["status"] == "in_progress"
        assert repo.create_milestone("u2", goal["id"], MilestoneCreate(title="x")) is None

        late = repo.create_milestone("u1", goal["id"], MilestoneCreate(title="Late", due_date="2099-02-01"))
        repo.create_milestone("u1", goal["id"], MilestoneCreate(title="Open"))
        repo.create_milestone("u1", goal["id"], MilestoneCreate(title="Soon", due_date="2099-01-01"))
        assert [m["title"] for m in repo.list_milestones("u1", goal["id"])] == ["Soon", "Late", "Open"]

        done = repo.set_milestone_completed("u1", late["id"], True)
        assert done["completed"] is True
        assert repo.set_milestone_completed("u2", late["id"], False) is None

        cleared = repo.update_milestone("u1", late["id"], MilestoneUpdate(due_date=None))
        assert cleared["due_date"] is None

        updated = repo.update_goal("u1", goal["id"], GoalUpdate(progress=33, status="completed"))
        assert updated["progress"] == 33
        assert updated["status"] == "completed"

        assert repo.delete_goal("u1", goal["id"]) is True
        assert repo.list_milestones("u1") == []
        assert repo.get_milestone("u1", late["id"]) is None


class TestSubscriptions:
    def test_upsert_and_find(self, repo):
        repo.ensure_profile("u1")
        sub = {
            "user_id": "u1",
            "stripe_customer_id": "cus_1",
            "stripe_subscription_id": "sub_1",
            "status": "active",
            "plan_type": "month",
            "current_period_end": datetime(2025, 1, 1),
        }
        repo.upsert_subscription(sub)
        repo.upsert_subscription(dict(sub, status="canceled"))

        stored = repo.get_subscription("u1")
        assert stored["status"] == "canceled"
        assert stored["current_period_end"] == datetime(2025, 1, 1)
        assert repo.find_subscription("sub_1")["user_id"] == "u1"
        assert repo.find_subscription("sub_missing") is None
