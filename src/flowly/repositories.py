from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from functools import lru_cache
from threading import RLock
from typing import Any, Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel

from .models import (
    PRIORITY_ORDER,
    GoalEntity,
    HabitEntity,
    HabitLogEntity,
    MilestoneEntity,
    ProfileEntity,
    Role,
    SubscriptionEntity,
    TaskEntity,
)
from .schemas import (
    GoalCreate,
    GoalUpdate,
    HabitCreate,
    HabitUpdate,
    MilestoneCreate,
    MilestoneUpdate,
    TaskCreate,
    TaskUpdate,
)
from .settings import get_settings

logger = logging.getLogger(__name__)

TASK_SORT_FIELDS = {"created_at", "updated_at", "due_date", "priority"}

# Optional fields that an explicit null in a partial update clears.
TASK_NULLABLE = {"description", "due_date", "start_at", "end_at"}
HABIT_NULLABLE = {"description"}
GOAL_NULLABLE = {"description", "target_date"}
MILESTONE_NULLABLE = {"description", "due_date"}


@dataclass(frozen=True)
class TaskQuery:
    """
    Query parameters for listing tasks.
    """
    limit: int = 50
    offset: int = 0
    completed: Optional[bool] = None
    priority: Optional[str] = None
    search: Optional[str] = None
    sort: str = "-created_at"  # created_at, updated_at, due_date, priority; '-' prefix for descending


def normalize_sort(sort: Optional[str]) -> Tuple[str, bool]:
    """Split a sort key into (field, descending), falling back to -created_at for unknown fields."""
    key = (sort or "-created_at").strip().lower()
    descending = key.startswith("-")
    field = key.lstrip("-")
    if field not in TASK_SORT_FIELDS:
        return "created_at", True
    return field, descending


def apply_update(current: Dict[str, Any], data: BaseModel, nullable: Iterable[str]) -> Dict[str, Any]:
    """
    Merge the fields explicitly present in a partial update into ``current``.
    A null clears a field only when it is listed in ``nullable``.
    """
    allowed_nulls = set(nullable)
    updated = dict(current)
    for name in data.model_fields_set:
        value = getattr(data, name)
        if value is None and name not in allowed_nulls:
            continue
        updated[name] = value
    return updated


def sort_tasks(items: Iterable[TaskEntity], sort: Optional[str]) -> List[TaskEntity]:
    """Order tasks by a sort key. Tasks without a due date go last in either direction."""
    field, descending = normalize_sort(sort)
    items = list(items)
    if field == "priority":
        return sorted(items, key=lambda t: (PRIORITY_ORDER[t["priority"]], t["created_at"]), reverse=descending)
    if field == "due_date":
        dated = [t for t in items if t["due_date"] is not None]
        undated = [t for t in items if t["due_date"] is None]
        return sorted(dated, key=lambda t: t["due_date"], reverse=descending) + undated
    return sorted(items, key=lambda t: t[field], reverse=descending)


# PUBLIC_INTERFACE
class Repository(ABC):
    """
    Abstract storage contract. Every read and write is scoped to a user id;
    records belonging to another user behave as if they did not exist.
    """

    # Profiles

    @abstractmethod
    def get_profile(self, user_id: str) -> Optional[ProfileEntity]:
        """Return the profile of a user, or None."""

    @abstractmethod
    def ensure_profile(
        self, user_id: str, email: Optional[str] = None, full_name: Optional[str] = None
    ) -> ProfileEntity:
        """Return the user's profile, creating a free one on first use."""

    @abstractmethod
    def update_profile(self, user_id: str, full_name: Optional[str]) -> Optional[ProfileEntity]:
        """Change the display name of a profile."""

    @abstractmethod
    def set_role(self, user_id: str, role: Role) -> Optional[ProfileEntity]:
        """Change the plan role of a profile. Returns None when the profile does not exist."""

    # Tasks

    @abstractmethod
    def create_task(self, user_id: str, data: TaskCreate) -> TaskEntity:
        """Create and return a new task."""

    @abstractmethod
    def get_task(self, user_id: str, task_id: int) -> Optional[TaskEntity]:
        """Return a task by id, or None if not found."""

    @abstractmethod
    def update_task(self, user_id: str, task_id: int, data: TaskUpdate) -> Optional[TaskEntity]:
        """Apply a partial update. Return the updated task or None if not found."""

    @abstractmethod
    def delete_task(self, user_id: str, task_id: int) -> bool:
        """Delete a task. Return True if deleted, False if not found."""

    @abstractmethod
    def list_tasks(self, user_id: str, query: Optional[TaskQuery] = None) -> Tuple[List[TaskEntity], int]:
        """
        Return a page of tasks and the total count matching filters.
        - Supports limit/offset
        - Filter by completed and priority
        - Substring search across title and description (case-insensitive)
        - Sorting by created_at/updated_at/due_date/priority (asc/desc)
        """

    @abstractmethod
    def list_all_tasks(self, user_id: str) -> List[TaskEntity]:
        """Return every task of the user, newest first."""

    @abstractmethod
    def list_tasks_between(self, user_id: str, start: datetime, end: datetime) -> List[TaskEntity]:
        """Return tasks whose planner slot starts in [start, end)."""

    # Habits and logs

    @abstractmethod
    def create_habit(self, user_id: str, data: HabitCreate) -> HabitEntity:
        """Create and return a new habit."""

    @abstractmethod
    def get_habit(self, user_id: str, habit_id: int) -> Optional[HabitEntity]:
        """Return a habit by id, or None."""

    @abstractmethod
    def update_habit(self, user_id: str, habit_id: int, data: HabitUpdate) -> Optional[HabitEntity]:
        """Apply a partial update to a habit."""

    @abstractmethod
    def delete_habit(self, user_id: str, habit_id: int) -> bool:
        """Delete a habit together with its logs."""

    @abstractmethod
    def list_habits(self, user_id: str) -> List[HabitEntity]:
        """Return the user's habits, oldest first."""

    @abstractmethod
    def list_habit_logs(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        habit_id: Optional[int] = None,
    ) -> List[HabitLogEntity]:
        """Return logs with completed_at in [start, end), most recent first."""

    @abstractmethod
    def add_habit_log(
        self, user_id: str, habit_id: int, completed_at: datetime, notes: Optional[str] = None
    ) -> Optional[HabitLogEntity]:
        """Record a completion. Returns None when the habit does not exist."""

    @abstractmethod
    def delete_habit_log(self, user_id: str, log_id: int) -> bool:
        """Delete a single log."""

    # Goals and milestones

    @abstractmethod
    def create_goal(self, user_id: str, data: GoalCreate) -> GoalEntity:
        """Create a goal in progress at 0%."""

    @abstractmethod
    def get_goal(self, user_id: str, goal_id: int) -> Optional[GoalEntity]:
        """Return a goal by id, or None."""

    @abstractmethod
    def update_goal(self, user_id: str, goal_id: int, data: GoalUpdate) -> Optional[GoalEntity]:
        """Apply a partial update to a goal (including progress and status)."""

    @abstractmethod
    def delete_goal(self, user_id: str, goal_id: int) -> bool:
        """Delete a goal together with its milestones."""

    @abstractmethod
    def list_goals(self, user_id: str) -> List[GoalEntity]:
        """Return the user's goals, newest first."""

    @abstractmethod
    def create_milestone(self, user_id: str, goal_id: int, data: MilestoneCreate) -> Optional[MilestoneEntity]:
        """Add an incomplete milestone to a goal. Returns None when the goal does not exist."""

    @abstractmethod
    def get_milestone(self, user_id: str, milestone_id: int) -> Optional[MilestoneEntity]:
        """Return a milestone of one of the user's goals, or None."""

    @abstractmethod
    def update_milestone(
        self, user_id: str, milestone_id: int, data: MilestoneUpdate
    ) -> Optional[MilestoneEntity]:
        """Apply a partial update to a milestone."""

    @abstractmethod
    def set_milestone_completed(self, user_id: str, milestone_id: int, completed: bool) -> Optional[MilestoneEntity]:
        """Set the completion flag of a milestone."""

    @abstractmethod
    def delete_milestone(self, user_id: str, milestone_id: int) -> bool:
        """Delete a milestone."""

    @abstractmethod
    def list_milestones(self, user_id: str, goal_id: Optional[int] = None) -> List[MilestoneEntity]:
        """Return milestones ordered by due date ascending, undated last."""

    # Subscriptions

    @abstractmethod
    def upsert_subscription(self, subscription: SubscriptionEntity) -> SubscriptionEntity:
        """Insert or replace the subscription of a user (one per user)."""

    @abstractmethod
    def get_subscription(self, user_id: str) -> Optional[SubscriptionEntity]:
        """Return the user's subscription, or None."""

    @abstractmethod
    def find_subscription(self, stripe_subscription_id: str) -> Optional[SubscriptionEntity]:
        """Look a subscription up by its Stripe id."""


def _milestone_order(m: MilestoneEntity) -> Tuple[int, datetime, int]:
    return (m["due_date"] is None, m["due_date"] or datetime.min, m["id"])


class InMemoryRepository(Repository):
    """
    Thread-safe in-memory repository suitable for testing and default runtime.
    """

    def __init__(self) -> None:
        self._lock = RLock()
        self._profiles: Dict[str, ProfileEntity] = {}
        self._tasks: Dict[int, TaskEntity] = {}
        self._habits: Dict[int, HabitEntity] = {}
        self._logs: Dict[int, HabitLogEntity] = {}
        self._goals: Dict[int, GoalEntity] = {}
        self._milestones: Dict[int, MilestoneEntity] = {}
        self._subscriptions: Dict[str, SubscriptionEntity] = {}
        self._next_id = 1

    def _now(self) -> datetime:
        return datetime.now()

    def _allocate_id(self) -> int:
        with self._lock:
            i = self._next_id
            self._next_id += 1
            return i

    # Profiles

    def get_profile(self, user_id: str) -> Optional[ProfileEntity]:
        with self._lock:
            profile = self._profiles.get(user_id)
            return None if profile is None else profile.copy()

    def ensure_profile(
        self, user_id: str, email: Optional[str] = None, full_name: Optional[str] = None
    ) -> ProfileEntity:
        with self._lock:
            if user_id not in self._profiles:
                self._profiles[user_id] = {
                    "id": user_id,
                    "email": email.lower() if email else None,
                    "full_name": full_name,
                    "role": "free_user",
                    "created_at": self._now(),
                }
                logger.info("Created profile for user %s", user_id)
            return self._profiles[user_id].copy()

    def update_profile(self, user_id: str, full_name: Optional[str]) -> Optional[ProfileEntity]:
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                return None
            profile["full_name"] = full_name
            return profile.copy()

    def set_role(self, user_id: str, role: Role) -> Optional[ProfileEntity]:
        with self._lock:
            profile = self._profiles.get(user_id)
            if profile is None:
                return None
            profile["role"] = role
            return profile.copy()

    # Tasks

    def create_task(self, user_id: str, data: TaskCreate) -> TaskEntity:
        now = self._now()
        entity: TaskEntity = {
            "id": self._allocate_id(),
            "user_id": user_id,
            "title": data.title,
            "description": data.description,
            "completed": data.completed,
            "priority": data.priority,
            "due_date": data.due_date,
            "start_at": data.start_at,
            "end_at": data.end_at,
            "color": data.color,
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self._tasks[entity["id"]] = entity
        return entity.copy()

    def _owned_task(self, user_id: str, task_id: int) -> Optional[TaskEntity]:
        task = self._tasks.get(task_id)
        return task if task is not None and task["user_id"] == user_id else None

    def get_task(self, user_id: str, task_id: int) -> Optional[TaskEntity]:
        with self._lock:
            task = self._owned_task(user_id, task_id)
            return None if task is None else task.copy()

    def update_task(self, user_id: str, task_id: int, data: TaskUpdate) -> Optional[TaskEntity]:
        with self._lock:
            existing = self._owned_task(user_id, task_id)
            if existing is None:
                return None
            updated = apply_update(existing, data, TASK_NULLABLE)
            updated["updated_at"] = self._now()
            self._tasks[task_id] = updated  # type: ignore[assignment]
            return updated.copy()  # type: ignore[return-value]

    def delete_task(self, user_id: str, task_id: int) -> bool:
        with self._lock:
            if self._owned_task(user_id, task_id) is None:
                return False
            del self._tasks[task_id]
            return True

    def list_tasks(self, user_id: str, query: Optional[TaskQuery] = None) -> Tuple[List[TaskEntity], int]:
        q = query or TaskQuery()
        with self._lock:
            items = [t for t in self._tasks.values() if t["user_id"] == user_id]

            if q.completed is not None:
                items = [t for t in items if t["completed"] == q.completed]
            if q.priority is not None:
                items = [t for t in items if t["priority"] == q.priority]
            if q.search:
                s = q.search.lower()
                items = [
                    t for t in items
                    if s in t["title"].lower() or s in (t["description"] or "").lower()
                ]

            total = len(items)
            ordered = sort_tasks(items, q.sort)

            start = max(q.offset, 0)
            end = start + max(q.limit, 0)
            return [t.copy() for t in ordered[start:end]], total

    def list_all_tasks(self, user_id: str) -> List[TaskEntity]:
        with self._lock:
            items = [t.copy() for t in self._tasks.values() if t["user_id"] == user_id]
        return sort_tasks(items, "-created_at")

    def list_tasks_between(self, user_id: str, start: datetime, end: datetime) -> List[TaskEntity]:
        with self._lock:
            items = [
                t.copy() for t in self._tasks.values()
                if t["user_id"] == user_id and t["start_at"] is not None and start <= t["start_at"] < end
            ]
        return sorted(items, key=lambda t: t["start_at"])

    # Habits and logs

    def create_habit(self, user_id: str, data: HabitCreate) -> HabitEntity:
        now = self._now()
        entity: HabitEntity = {
            "id": self._allocate_id(),
            "user_id": user_id,
            "name": data.name,
            "frequency": data.frequency,
            "description": data.description,
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self._habits[entity["id"]] = entity
        return entity.copy()

    def _owned_habit(self, user_id: str, habit_id: int) -> Optional[HabitEntity]:
        habit = self._habits.get(habit_id)
        return habit if habit is not None and habit["user_id"] == user_id else None

    def get_habit(self, user_id: str, habit_id: int) -> Optional[HabitEntity]:
        with self._lock:
            habit = self._owned_habit(user_id, habit_id)
            return None if habit is None else habit.copy()

    def update_habit(self, user_id: str, habit_id: int, data: HabitUpdate) -> Optional[HabitEntity]:
        with self._lock:
            existing = self._owned_habit(user_id, habit_id)
            if existing is None:
                return None
            updated = apply_update(existing, data, HABIT_NULLABLE)
            updated["updated_at"] = self._now()
            self._habits[habit_id] = updated  # type: ignore[assignment]
            return updated.copy()  # type: ignore[return-value]

    def delete_habit(self, user_id: str, habit_id: int) -> bool:
        with self._lock:
            if self._owned_habit(user_id, habit_id) is None:
                return False
            for log_id in [i for i, log in self._logs.items() if log["habit_id"] == habit_id]:
                del self._logs[log_id]
            del self._habits[habit_id]
            return True

    def list_habits(self, user_id: str) -> List[HabitEntity]:
        with self._lock:
            items = [h.copy() for h in self._habits.values() if h["user_id"] == user_id]
        return sorted(items, key=lambda h: (h["created_at"], h["id"]))

    def list_habit_logs(
        self,
        user_id: str,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
        habit_id: Optional[int] = None,
    ) -> List[HabitLogEntity]:
        with self._lock:
            items = [
                log.copy() for log in self._logs.values()
                if log["user_id"] == user_id
                and (habit_id is None or log["habit_id"] == habit_id)
                and (start is None or log["completed_at"] >= start)
                and (end is None or log["completed_at"] < end)
            ]
        return sorted(items, key=lambda log: (log["completed_at"], log["id"]), reverse=True)

    def add_habit_log(
        self, user_id: str, habit_id: int, completed_at: datetime, notes: Optional[str] = None
    ) -> Optional[HabitLogEntity]:
        with self._lock:
            if self._owned_habit(user_id, habit_id) is None:
                return None
            entity: HabitLogEntity = {
                "id": self._allocate_id(),
                "habit_id": habit_id,
                "user_id": user_id,
                "completed_at": completed_at,
                "notes": notes,
            }
            self._logs[entity["id"]] = entity
            return entity.copy()

    def delete_habit_log(self, user_id: str, log_id: int) -> bool:
        with self._lock:
            log = self._logs.get(log_id)
            if log is None or log["user_id"] != user_id:
                return False
            del self._logs[log_id]
            return True

    # Goals and milestones

    def create_goal(self, user_id: str, data: GoalCreate) -> GoalEntity:
        now = self._now()
        entity: GoalEntity = {
            "id": self._allocate_id(),
            "user_id": user_id,
            "title": data.title,
            "description": data.description,
            "target_date": data.target_date,
            "progress": 0,
            "status": "in_progress",
            "created_at": now,
            "updated_at": now,
        }
        with self._lock:
            self._goals[entity["id"]] = entity
        return entity.copy()

    def _owned_goal(self, user_id: str, goal_id: int) -> Optional[GoalEntity]:
        goal = self._goals.get(goal_id)
        return goal if goal is not None and goal["user_id"] == user_id else None

    def get_goal(self, user_id: str, goal_id: int) -> Optional[GoalEntity]:
        with self._lock:
            goal = self._owned_goal(user_id, goal_id)
            return None if goal is None else goal.copy()

    def update_goal(self, user_id: str, goal_id: int, data: GoalUpdate) -> Optional[GoalEntity]:
        with self._lock:
            existing = self._owned_goal(user_id, goal_id)
            if existing is None:
                return None
            updated = apply_update(existing, data, GOAL_NULLABLE)
            updated["updated_at"] = self._now()
            self._goals[goal_id] = updated  # type: ignore[assignment]
            return updated.copy()  # type: ignore[return-value]

    def delete_goal(self, user_id: str, goal_id: int) -> bool:
        with self._lock:
            if self._owned_goal(user_id, goal_id) is None:
                return False
            for mid in [i for i, m in self._milestones.items() if m["goal_id"] == goal_id]:
                del self._milestones[mid]
            del self._goals[goal_id]
            return True

    def list_goals(self, user_id: str) -> List[GoalEntity]:
        with self._lock:
            items = [g.copy() for g in self._goals.values() if g["user_id"] == user_id]
        return sorted(items, key=lambda g: (g["created_at"], g["id"]), reverse=True)

    def create_milestone(self, user_id: str, goal_id: int, data: MilestoneCreate) -> Optional[MilestoneEntity]:
        now = self._now()
        with self._lock:
            if self._owned_goal(user_id, goal_id) is None:
                return None
            entity: MilestoneEntity = {
                "id": self._allocate_id(),
                "goal_id": goal_id,
                "title": data.title,
                "description": data.description,
                "completed": False,
                "due_date": data.due_date,
                "created_at": now,
                "updated_at": now,
            }
            self._milestones[entity["id"]] = entity
            return entity.copy()

    def _owned_milestone(self, user_id: str, milestone_id: int) -> Optional[MilestoneEntity]:
        milestone = self._milestones.get(milestone_id)
        if milestone is None or self._owned_goal(user_id, milestone["goal_id"]) is None:
            return None
        return milestone

    def get_milestone(self, user_id: str, milestone_id: int) -> Optional[MilestoneEntity]:
        with self._lock:
            milestone = self._owned_milestone(user_id, milestone_id)
            return None if milestone is None else milestone.copy()

    def update_milestone(
        self, user_id: str, milestone_id: int, data: MilestoneUpdate
    ) -> Optional[MilestoneEntity]:
        with self._lock:
            existing = self._owned_milestone(user_id, milestone_id)
            if existing is None:
                return None
            updated = apply_update(existing, data, MILESTONE_NULLABLE)
            updated["updated_at"] = self._now()
            self._milestones[milestone_id] = updated  # type: ignore[assignment]
            return updated.copy()  # type: ignore[return-value]

    def set_milestone_completed(self, user_id: str, milestone_id: int, completed: bool) -> Optional[MilestoneEntity]:
        with self._lock:
            milestone = self._owned_milestone(user_id, milestone_id)
            if milestone is None:
                return None
            milestone["completed"] = completed
            milestone["updated_at"] = self._now()
            return milestone.copy()

    def delete_milestone(self, user_id: str, milestone_id: int) -> bool:
        with self._lock:
            if self._owned_milestone(user_id, milestone_id) is None:
                return False
            del self._milestones[milestone_id]
            return True

    def list_milestones(self, user_id: str, goal_id: Optional[int] = None) -> List[MilestoneEntity]:
        with self._lock:
            owned = {g["id"] for g in self._goals.values() if g["user_id"] == user_id}
            items = [
                m.copy() for m in self._milestones.values()
                if m["goal_id"] in owned and (goal_id is None or m["goal_id"] == goal_id)
            ]
        return sorted(items, key=_milestone_order)

    # Subscriptions

    def upsert_subscription(self, subscription: SubscriptionEntity) -> SubscriptionEntity:
        with self._lock:
            self._subscriptions[subscription["user_id"]] = subscription.copy()  # type: ignore[assignment]
            return subscription.copy()  # type: ignore[return-value]

    def get_subscription(self, user_id: str) -> Optional[SubscriptionEntity]:
        with self._lock:
            sub = self._subscriptions.get(user_id)
            return None if sub is None else sub.copy()  # type: ignore[return-value]

    def find_subscription(self, stripe_subscription_id: str) -> Optional[SubscriptionEntity]:
        with self._lock:
            for sub in self._subscriptions.values():
                if sub["stripe_subscription_id"] == stripe_subscription_id:
                    return sub.copy()  # type: ignore[return-value]
            return None


# PUBLIC_INTERFACE
@lru_cache(maxsize=1)
def get_repository() -> Repository:
    """
    Return the configured repository, built once per process.
    - memory: InMemoryRepository
    - sqlite: SQLiteRepository
    """
    settings = get_settings()
    if settings.persistence_backend == "sqlite":
        from .db import SQLiteRepository

        logger.info("Using SQLite persistence at %s", settings.sqlite_db_path)
        return SQLiteRepository(settings.sqlite_db_path)
    logger.info("Using in-memory persistence")
    return InMemoryRepository()
