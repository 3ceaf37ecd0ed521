"""
Productivity statistics over a snapshot of a user's records.

Every function here is pure: it reads the records it is given, performs no
I/O and returns a fresh value. "Today" and "now" are explicit arguments so
the same snapshot and reference point always give the same answer; only the
HTTP layer fills them from the wall clock.

Records may be repository entities or plain mappings. Date fields accept
``date``, ``datetime`` or ISO8601 strings; anything else raises
``StatsInputError``. Aware datetimes are converted to local time before their
calendar day is taken.
"""
from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Dict, Hashable, Iterable, List, Mapping, Optional, Sequence, Set

from .models import PRIORITY_ORDER

DAYS_PER_WEEK = 7
UPCOMING_MILESTONE_LIMIT = 5


class StatsInputError(ValueError):
    """Raised when a record handed to the engine carries an unusable date."""


@dataclass(frozen=True)
class HabitStats:
    total_habits: int
    completed_today: int
    best_streak: int
    completion_rate: float
    weekly_progress: Dict[date, float]
    streaks: Dict[Hashable, int] = field(default_factory=dict)


@dataclass(frozen=True)
class GoalStats:
    total_goals: int
    active_goals: int
    completed_goals: int
    archived_goals: int
    average_progress: float
    upcoming_milestones: List[Mapping[str, Any]]


@dataclass(frozen=True)
class TaskStats:
    total: int
    completed: int
    pending: int
    overdue: int
    by_priority: Dict[str, int]


def _to_datetime(value: Any) -> datetime:
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return _to_datetime(datetime.fromisoformat(s))
        except ValueError as e:
            raise StatsInputError(f"Unparseable date value: {value!r}") from e
    raise StatsInputError(f"Expected a date, datetime or ISO8601 string, got {type(value).__name__}")


def _to_date(value: Any) -> date:
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    return _to_datetime(value).date()


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _completed_days(logs: Iterable[Mapping[str, Any]]) -> Dict[Hashable, Set[date]]:
    days: Dict[Hashable, Set[date]] = {}
    for log in logs:
        days.setdefault(log["habit_id"], set()).add(_to_date(log["completed_at"]))
    return days


def _streak_ending(days: Set[date], as_of: date) -> int:
    streak = 0
    day = as_of
    while day in days:
        streak += 1
        day -= timedelta(days=1)
    return streak


# PUBLIC_INTERFACE
def week_start_for(day: Any, week_starts_on: int = 0) -> date:
    """Return the first day of the week containing ``day`` (0 = Monday ... 6 = Sunday)."""
    d = _to_date(day)
    return d - timedelta(days=(d.weekday() - week_starts_on) % DAYS_PER_WEEK)


# PUBLIC_INTERFACE
def compute_streak(habit_id: Hashable, as_of: Any, logs: Iterable[Mapping[str, Any]]) -> int:
    """
    Count consecutive completed days for ``habit_id`` ending at ``as_of``.

    The walk starts at ``as_of`` itself and moves back one calendar day at a
    time until a day without a log. A habit not completed on ``as_of`` has a
    streak of 0 whatever its earlier history; time of day is ignored.
    """
    days = _completed_days(log for log in logs if log["habit_id"] == habit_id)
    return _streak_ending(days.get(habit_id, set()), _to_date(as_of))


# PUBLIC_INTERFACE
def compute_weekly_stats(
    habits: Sequence[Mapping[str, Any]],
    logs: Iterable[Mapping[str, Any]],
    week_start: Any,
    today: Any = None,
) -> HabitStats:
    """
    Aggregate habit completion for the seven days starting at ``week_start``.

    - weekly_progress: for each day, distinct habits logged that day over the
      habit count, as a percentage (0 when there are no habits)
    - completed_today: habits with a log on ``today``
    - streaks / best_streak: per-habit streaks as of ``today``
    - completion_rate: logs inside the week over habit count x 7, as a percentage

    ``logs`` may reach further back than the week; older entries only feed the
    streaks. Logs of habits not in ``habits`` are ignored. Percentages are
    returned unrounded.
    """
    start = _to_date(week_start)
    ref_day = _to_date(today) if today is not None else date.today()
    week = [start + timedelta(days=i) for i in range(DAYS_PER_WEEK)]

    habit_ids = [h["id"] for h in habits]
    known = set(habit_ids)
    total = len(habit_ids)

    per_habit = _completed_days(log for log in logs if log["habit_id"] in known)

    weekly_progress: Dict[date, float] = {}
    for day in week:
        done = sum(1 for hid in known if day in per_habit.get(hid, ()))
        weekly_progress[day] = (done / total) * 100 if total else 0.0

    # Days are deduplicated per habit, so each counts as one log.
    week_end = start + timedelta(days=DAYS_PER_WEEK)
    logs_this_week = sum(1 for hid in known for day in per_habit.get(hid, ()) if start <= day < week_end)
    completion_rate = (logs_this_week / (total * DAYS_PER_WEEK)) * 100 if total else 0.0

    completed_today = sum(1 for hid in known if ref_day in per_habit.get(hid, ()))
    streaks = {hid: _streak_ending(per_habit.get(hid, set()), ref_day) for hid in habit_ids}

    return HabitStats(
        total_habits=total,
        completed_today=completed_today,
        best_streak=max(streaks.values(), default=0),
        completion_rate=completion_rate,
        weekly_progress=weekly_progress,
        streaks=streaks,
    )


# PUBLIC_INTERFACE
def compute_goal_stats(
    goals: Sequence[Mapping[str, Any]],
    milestones: Iterable[Mapping[str, Any]],
    now: Any = None,
    window_days: int = 7,
) -> GoalStats:
    """
    Summarise goals and pick the milestones coming up next.

    Upcoming milestones are incomplete ones due strictly after ``now`` and
    strictly before ``now + window_days``, earliest first, at most five.
    A date-only due date counts as midnight of that day.
    """
    ref = _to_datetime(now) if now is not None else datetime.now()
    horizon = ref + timedelta(days=window_days)

    by_status: Dict[str, int] = {}
    for goal in goals:
        by_status[goal["status"]] = by_status.get(goal["status"], 0) + 1

    average = sum(int(g["progress"]) for g in goals) / len(goals) if goals else 0.0

    candidates = []
    for m in milestones:
        if m["completed"] or m.get("due_date") is None:
            continue
        due = _to_datetime(m["due_date"])
        if ref < due < horizon:
            candidates.append((due, m))
    candidates.sort(key=lambda pair: pair[0])

    return GoalStats(
        total_goals=len(goals),
        active_goals=by_status.get("in_progress", 0),
        completed_goals=by_status.get("completed", 0),
        archived_goals=by_status.get("archived", 0),
        average_progress=average,
        upcoming_milestones=[m for _, m in candidates[:UPCOMING_MILESTONE_LIMIT]],
    )


# PUBLIC_INTERFACE
def recompute_goal_progress(
    goal: Mapping[str, Any],
    milestones: Sequence[Mapping[str, Any]],
    toggled: Optional[Mapping[str, Any]] = None,
) -> int:
    """
    Derive a goal's progress from its milestones after a completion toggle.

    ``milestones`` are the goal's milestones. When ``toggled`` is given it is
    the toggled milestone in its new state and replaces the entry with the
    same id (or is added if the snapshot predates it). The result is
    completed / total as a percentage, rounded half up. A goal without
    milestones keeps its current progress.
    """
    current = list(milestones)
    if toggled is not None:
        current = [m for m in current if m["id"] != toggled["id"]]
        current.append(toggled)
    if not current:
        return int(goal["progress"])
    completed = sum(1 for m in current if m["completed"])
    return _round_half_up(100 * completed / len(current))


# PUBLIC_INTERFACE
def compute_task_stats(tasks: Iterable[Mapping[str, Any]], now: Any = None) -> TaskStats:
    """Counters for the dashboard: completion, overdue (open and past due) and per-priority totals."""
    ref = _to_datetime(now) if now is not None else datetime.now()
    by_priority = {name: 0 for name in PRIORITY_ORDER}
    total = completed = overdue = 0
    for task in tasks:
        total += 1
        by_priority[task["priority"]] = by_priority.get(task["priority"], 0) + 1
        if task["completed"]:
            completed += 1
        elif task.get("due_date") is not None and _to_datetime(task["due_date"]) < ref:
            overdue += 1
    return TaskStats(
        total=total,
        completed=completed,
        pending=total - completed,
        overdue=overdue,
        by_priority=by_priority,
    )


# PUBLIC_INTERFACE
def group_tasks_by_day(tasks: Iterable[Mapping[str, Any]], week_start: Any) -> Dict[date, List[Mapping[str, Any]]]:
    """Planner grid: the seven days from ``week_start``, each with the tasks starting that day in start order."""
    start = _to_date(week_start)
    grid: Dict[date, List[Mapping[str, Any]]] = {start + timedelta(days=i): [] for i in range(DAYS_PER_WEEK)}
    for task in tasks:
        if task.get("start_at") is None:
            continue
        day = _to_date(task["start_at"])
        if day in grid:
            grid[day].append(task)
    for day_tasks in grid.values():
        day_tasks.sort(key=lambda t: _to_datetime(t["start_at"]))
    return grid
