from __future__ import annotations

from datetime import datetime
from typing import Dict, Literal, Optional, TypedDict

Priority = Literal["low", "medium", "high"]
Frequency = Literal["daily", "weekly"]
GoalStatus = Literal["in_progress", "completed", "archived"]
Role = Literal["free_user", "pro_user"]

# Rank used when ordering by priority; higher is more urgent.
PRIORITY_ORDER: Dict[str, int] = {"low": 0, "medium": 1, "high": 2}


# PUBLIC_INTERFACE
class ProfileEntity(TypedDict):
    """
    A user profile. The id is the identifier issued by the external auth
    platform; the role decides which plan limits apply.
    """

    id: str
    email: Optional[str]
    full_name: Optional[str]
    role: Role
    created_at: datetime


# PUBLIC_INTERFACE
class TaskEntity(TypedDict):
    """
    A task owned by a user.

    Fields:
    - id: Unique integer identifier
    - user_id: Owner
    - title: Short title (1..200 chars, trimmed on input via schemas)
    - description: Optional detailed description
    - completed: Boolean completion flag
    - priority: low / medium / high
    - due_date: Optional due datetime
    - start_at / end_at: Optional planner slot
    - color: Planner colour
    - created_at / updated_at: timestamps
    """

    id: int
    user_id: str
    title: str
    description: Optional[str]
    completed: bool
    priority: Priority
    due_date: Optional[datetime]
    start_at: Optional[datetime]
    end_at: Optional[datetime]
    color: str
    created_at: datetime
    updated_at: datetime


class HabitEntity(TypedDict):
    id: int
    user_id: str
    name: str
    frequency: Frequency
    description: Optional[str]
    created_at: datetime
    updated_at: datetime


class HabitLogEntity(TypedDict):
    """One completion of a habit. At most one per habit per calendar day."""

    id: int
    habit_id: int
    user_id: str
    completed_at: datetime
    notes: Optional[str]


class GoalEntity(TypedDict):
    id: int
    user_id: str
    title: str
    description: Optional[str]
    target_date: Optional[datetime]
    progress: int
    status: GoalStatus
    created_at: datetime
    updated_at: datetime


class MilestoneEntity(TypedDict):
    id: int
    goal_id: int
    title: str
    description: Optional[str]
    completed: bool
    due_date: Optional[datetime]
    created_at: datetime
    updated_at: datetime


class SubscriptionEntity(TypedDict):
    user_id: str
    stripe_customer_id: str
    stripe_subscription_id: str
    status: str
    plan_type: Optional[str]
    current_period_end: Optional[datetime]
