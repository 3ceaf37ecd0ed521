from datetime import date, datetime, timedelta

import pytest

from flowly.stats import (
    StatsInputError,
    compute_goal_stats,
    compute_streak,
    compute_task_stats,
    compute_weekly_stats,
    group_tasks_by_day,
    recompute_goal_progress,
    week_start_for,
)


def log(habit_id, day, log_id=None):
    return {"id": log_id, "habit_id": habit_id, "completed_at": day}


def milestone(mid, completed=False, due_date=None, goal_id=1):
    return {"id": mid, "goal_id": goal_id, "completed": completed, "due_date": due_date}


class TestStreaks:
    def test_no_logs_means_no_streak(self):
        assert compute_streak("h1", date(2024, 1, 2), []) == 0

    def test_full_run_is_counted_inclusively(self):
        logs = [log("h1", date(2024, 1, 10) - timedelta(days=i)) for i in range(5)]
        assert compute_streak("h1", date(2024, 1, 10), logs) == 5

    def test_consecutive_days_ending_on_reference_day(self):
        logs = [log("h1", "2024-01-01"), log("h1", "2024-01-02")]
        assert compute_streak("h1", date(2024, 1, 2), logs) == 2

    def test_no_log_on_reference_day_breaks_streak(self):
        logs = [log("h1", "2024-01-01"), log("h1", "2024-01-02")]
        assert compute_streak("h1", date(2024, 1, 3), logs) == 0

    def test_gap_stops_the_walk(self):
        logs = [log("h1", "2024-01-01"), log("h1", "2024-01-03"), log("h1", "2024-01-04")]
        assert compute_streak("h1", "2024-01-04", logs) == 2

    def test_time_of_day_and_duplicates_are_ignored(self):
        logs = [
            log("h1", datetime(2024, 1, 1, 23, 59)),
            log("h1", datetime(2024, 1, 2, 0, 1)),
            log("h1", datetime(2024, 1, 2, 18, 0)),
        ]
        assert compute_streak("h1", datetime(2024, 1, 2, 6, 0), logs) == 2

    def test_other_habits_do_not_count(self):
        logs = [log("h2", "2024-01-01"), log("h1", "2024-01-02")]
        assert compute_streak("h1", "2024-01-02", logs) == 1

    def test_unparseable_date_raises(self):
        with pytest.raises(StatsInputError):
            compute_streak("h1", "2024-01-02", [log("h1", "yesterday")])


class TestWeekStart:
    def test_monday_start(self):
        assert week_start_for(date(2024, 1, 3)) == date(2024, 1, 1)
        assert week_start_for(date(2024, 1, 1)) == date(2024, 1, 1)

    def test_sunday_start(self):
        assert week_start_for(date(2024, 1, 3), week_starts_on=6) == date(2023, 12, 31)


class TestWeeklyStats:
    def test_progress_rate_and_streaks(self):
        habits = [{"id": "h1"}, {"id": "h2"}]
        logs = [
            log("h1", "2023-12-31"),
            log("h1", "2024-01-01"),
            log("h1", "2024-01-02"),
            log("h2", "2024-01-02"),
            log("ghost", "2024-01-02"),
        ]
        stats = compute_weekly_stats(habits, logs, date(2024, 1, 1), today=date(2024, 1, 2))

        assert stats.total_habits == 2
        assert list(stats.weekly_progress) == [date(2024, 1, 1) + timedelta(days=i) for i in range(7)]
        assert stats.weekly_progress[date(2024, 1, 1)] == 50.0
        assert stats.weekly_progress[date(2024, 1, 2)] == 100.0
        assert stats.weekly_progress[date(2024, 1, 3)] == 0.0
        assert stats.completed_today == 2
        assert stats.streaks == {"h1": 3, "h2": 1}
        assert stats.best_streak == 3
        # The log before the week only feeds the streak
        assert stats.completion_rate == pytest.approx(300 / 14)

    def test_no_habits_gives_zero_everywhere(self):
        stats = compute_weekly_stats([], [log("h1", "2024-01-01")], date(2024, 1, 1), today=date(2024, 1, 1))
        assert stats.total_habits == 0
        assert stats.completion_rate == 0.0
        assert stats.best_streak == 0
        assert set(stats.weekly_progress.values()) == {0.0}

    def test_percentages_stay_within_bounds(self):
        habits = [{"id": 1}]
        logs = [log(1, "2024-01-01"), log(1, "2024-01-01"), log(1, "2024-01-01T20:00:00")]
        stats = compute_weekly_stats(habits, logs, "2024-01-01", today="2024-01-01")
        assert all(0.0 <= v <= 100.0 for v in stats.weekly_progress.values())
        assert stats.completion_rate == pytest.approx(100 / 7)


class TestGoalProgress:
    def test_half_of_four(self):
        ms = [milestone(1, True), milestone(2), milestone(3), milestone(4)]
        progress = recompute_goal_progress({"progress": 25}, ms, milestone(2, True))
        assert progress == 50

    def test_rounds_half_up(self):
        ms = [milestone(1, True), milestone(2), milestone(3)]
        assert recompute_goal_progress({"progress": 33}, ms, milestone(2, True)) == 67
        assert recompute_goal_progress({"progress": 0}, [milestone(1), milestone(2)], milestone(1, True)) == 50
        eight = [milestone(i) for i in range(8)]
        # 1/8 = 12.5 rounds up to 13
        assert recompute_goal_progress({"progress": 0}, eight, milestone(0, True)) == 13

    def test_toggled_milestone_missing_from_snapshot_is_added(self):
        assert recompute_goal_progress({"progress": 0}, [milestone(1)], milestone(2, True)) == 50

    def test_without_milestones_keeps_progress(self):
        assert recompute_goal_progress({"progress": 40}, []) == 40

    def test_progress_is_bounded(self):
        all_done = [milestone(i, True) for i in range(3)]
        assert recompute_goal_progress({"progress": 0}, all_done) == 100


class TestGoalStats:
    def test_counts_average_and_upcoming(self):
        now = datetime(2024, 1, 1, 12, 0)
        goals = [
            {"id": 1, "status": "in_progress", "progress": 50},
            {"id": 2, "status": "completed", "progress": 100},
            {"id": 3, "status": "archived", "progress": 0},
        ]
        ms = [milestone(i, due_date=now + timedelta(days=i)) for i in range(1, 7)]
        ms += [
            milestone(10, due_date=now - timedelta(hours=1)),
            milestone(11, completed=True, due_date=now + timedelta(hours=1)),
            milestone(12, due_date=now + timedelta(days=7)),
            milestone(13),
        ]
        stats = compute_goal_stats(goals, ms, now=now)

        assert stats.total_goals == 3
        assert stats.active_goals == 1
        assert stats.completed_goals == 1
        assert stats.archived_goals == 1
        assert stats.average_progress == pytest.approx(50.0)
        assert [m["id"] for m in stats.upcoming_milestones] == [1, 2, 3, 4, 5]
        for m in stats.upcoming_milestones:
            assert not m["completed"]
            assert m["due_date"] > now

    def test_empty(self):
        stats = compute_goal_stats([], [], now=datetime(2024, 1, 1))
        assert stats.total_goals == 0
        assert stats.average_progress == 0.0
        assert stats.upcoming_milestones == []


class TestTaskStats:
    def test_counters(self):
        now = datetime(2024, 1, 10)
        tasks = [
            {"priority": "high", "completed": False, "due_date": datetime(2024, 1, 9)},
            {"priority": "high", "completed": True, "due_date": datetime(2024, 1, 1)},
            {"priority": "low", "completed": False, "due_date": None},
            {"priority": "medium", "completed": False, "due_date": datetime(2024, 1, 11)},
        ]
        stats = compute_task_stats(tasks, now=now)
        assert stats.total == 4
        assert stats.completed == 1
        assert stats.pending == 3
        assert stats.overdue == 1
        assert stats.by_priority == {"low": 1, "medium": 1, "high": 2}


class TestPlannerGrouping:
    def test_groups_by_start_day(self):
        tasks = [
            {"id": 1, "start_at": datetime(2024, 1, 2, 15)},
            {"id": 2, "start_at": datetime(2024, 1, 2, 9)},
            {"id": 3, "start_at": datetime(2024, 1, 9, 9)},
            {"id": 4, "start_at": None},
        ]
        grid = group_tasks_by_day(tasks, date(2024, 1, 1))
        assert len(grid) == 7
        assert [t["id"] for t in grid[date(2024, 1, 2)]] == [2, 1]
        assert sum(len(v) for v in grid.values()) == 2
