import os
import uuid

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

from flowly.main import app  # noqa: E402
from flowly.repositories import get_repository  # noqa: E402

client = TestClient(app)


def new_user():
    return {"X-User-Id": f"user-{uuid.uuid4()}"}


def create_habit(headers, name="Read", frequency="daily"):
    res = client.post("/api/v1/habits/", json={"name": name, "frequency": frequency}, headers=headers)
    assert res.status_code == 201
    return res.json()


def toggle(headers, habit_id, day):
    res = client.post(f"/api/v1/habits/{habit_id}/toggle", json={"date": day}, headers=headers)
    assert res.status_code == 200
    return res.json()


class TestHabitsCRUD:
    def test_create_and_get(self):
        user = new_user()
        habit = create_habit(user, name="  Meditate  ")
        assert habit["name"] == "Meditate"
        assert habit["frequency"] == "daily"
        assert habit["streak"] == 0

        res = client.get(f"/api/v1/habits/{habit['id']}", headers=user)
        assert res.status_code == 200
        assert res.json()["name"] == "Meditate"

    def test_patch_and_delete(self):
        user = new_user()
        habit = create_habit(user)
        res = client.patch(f"/api/v1/habits/{habit['id']}", json={"frequency": "weekly"}, headers=user)
        assert res.status_code == 200
        assert res.json()["frequency"] == "weekly"
        assert res.json()["name"] == "Read"

        assert client.delete(f"/api/v1/habits/{habit['id']}", headers=user).status_code == 204
        res_nf = client.get(f"/api/v1/habits/{habit['id']}", headers=user)
        assert res_nf.status_code == 404
        assert res_nf.json()["detail"] == "Habit not found"

    def test_delete_removes_logs(self):
        user = new_user()
        habit = create_habit(user)
        toggle(user, habit["id"], "2024-01-01")
        client.delete(f"/api/v1/habits/{habit['id']}", headers=user)

        res = client.get("/api/v1/habits/logs?start=2024-01-01&end=2024-01-07", headers=user)
        assert res.json() == []

    def test_invalid_frequency_is_rejected(self):
        res = client.post("/api/v1/habits/", json={"name": "Run", "frequency": "hourly"}, headers=new_user())
        assert res.status_code == 422
        assert res.json()["error"] == "ValidationError"

    def test_free_user_habit_limit(self):
        user = new_user()
        for i in range(3):
            create_habit(user, name=f"Habit {i}")
        res = client.post("/api/v1/habits/", json={"name": "One too many"}, headers=user)
        assert res.status_code == 403
        assert "Upgrade to Pro" in res.json()["detail"]

    def test_pro_user_has_no_habit_limit(self):
        user = new_user()
        repo = get_repository()
        repo.ensure_profile(user["X-User-Id"])
        repo.set_role(user["X-User-Id"], "pro_user")
        for i in range(5):
            create_habit(user, name=f"Habit {i}")
        assert len(client.get("/api/v1/habits/", headers=user).json()) == 5


class TestToggleAndStreaks:
    def test_toggle_marks_and_unmarks_a_day(self):
        user = new_user()
        habit = create_habit(user)

        first = toggle(user, habit["id"], "2024-01-01")
        assert first["completed"] is True
        assert first["streak"] == 1
        assert first["log"]["habit_id"] == habit["id"]

        second = toggle(user, habit["id"], "2024-01-01")
        assert second["completed"] is False
        assert second["streak"] == 0
        assert second["log"] is None

    def test_streak_counts_back_from_reference_day(self):
        user = new_user()
        habit = create_habit(user)
        toggle(user, habit["id"], "2024-01-01")
        assert toggle(user, habit["id"], "2024-01-02")["streak"] == 2

        listed = client.get("/api/v1/habits/?as_of=2024-01-02", headers=user).json()
        assert listed[0]["streak"] == 2
        # No log on the reference day means no streak
        listed_next = client.get("/api/v1/habits/?as_of=2024-01-03", headers=user).json()
        assert listed_next[0]["streak"] == 0

    def test_toggle_unknown_habit(self):
        res = client.post("/api/v1/habits/999999/toggle", json={"date": "2024-01-01"}, headers=new_user())
        assert res.status_code == 404

    def test_toggle_with_notes(self):
        user = new_user()
        habit = create_habit(user)
        res = client.post(
            f"/api/v1/habits/{habit['id']}/toggle",
            json={"date": "2024-01-05", "notes": "felt great"},
            headers=user,
        )
        assert res.json()["log"]["notes"] == "felt great"


class TestListing:
    def test_filter_and_sort(self):
        user = new_user()
        repo = get_repository()
        repo.ensure_profile(user["X-User-Id"])
        repo.set_role(user["X-User-Id"], "pro_user")
        walk = create_habit(user, name="walk")
        create_habit(user, name="Journal", frequency="weekly")
        stretch = create_habit(user, name="Stretch")
        toggle(user, stretch["id"], "2024-02-01")
        toggle(user, stretch["id"], "2024-02-02")
        toggle(user, walk["id"], "2024-02-02")

        by_streak = client.get("/api/v1/habits/?as_of=2024-02-02", headers=user).json()
        assert [h["name"] for h in by_streak][:2] == ["Stretch", "walk"]

        by_name = client.get("/api/v1/habits/?sort=name", headers=user).json()
        assert [h["name"] for h in by_name] == ["Journal", "Stretch", "walk"]

        weekly = client.get("/api/v1/habits/?frequency=weekly", headers=user).json()
        assert [h["name"] for h in weekly] == ["Journal"]

    def test_logs_between_days(self):
        user = new_user()
        habit = create_habit(user)
        for day in ("2024-01-01", "2024-01-03", "2024-01-09"):
            toggle(user, habit["id"], day)

        res = client.get("/api/v1/habits/logs?start=2024-01-01&end=2024-01-07", headers=user)
        assert res.status_code == 200
        days = [log["completed_at"][:10] for log in res.json()]
        assert days == ["2024-01-03", "2024-01-01"]

    def test_logs_rejects_inverted_range(self):
        res = client.get("/api/v1/habits/logs?start=2024-01-07&end=2024-01-01", headers=new_user())
        assert res.status_code == 400


class TestHabitStats:
    def test_weekly_stats(self):
        user = new_user()
        h1 = create_habit(user, name="One")
        h2 = create_habit(user, name="Two")
        toggle(user, h1["id"], "2024-01-01")
        toggle(user, h1["id"], "2024-01-02")
        toggle(user, h2["id"], "2024-01-02")

        res = client.get("/api/v1/habits/stats?week_of=2024-01-03&today=2024-01-02", headers=user)
        assert res.status_code == 200
        stats = res.json()
        assert stats["week_start"] == "2024-01-01"
        assert stats["total_habits"] == 2
        assert stats["completed_today"] == 2
        assert stats["best_streak"] == 2
        assert stats["streaks"][str(h1["id"])] == 2
        assert stats["streaks"][str(h2["id"])] == 1
        assert stats["weekly_progress"]["2024-01-01"] == 50.0
        assert stats["weekly_progress"]["2024-01-02"] == 100.0
        assert stats["weekly_progress"]["2024-01-07"] == 0.0
        assert stats["completion_rate"] == pytest.approx(300 / 14)

    def test_stats_without_habits(self):
        stats = client.get("/api/v1/habits/stats?week_of=2024-01-01", headers=new_user()).json()
        assert stats["total_habits"] == 0
        assert stats["completion_rate"] == 0.0
        assert len(stats["weekly_progress"]) == 7
        assert all(value == 0.0 for value in stats["weekly_progress"].values())
