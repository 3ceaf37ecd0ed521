from __future__ import annotations

from datetime import date, datetime
from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .models import Frequency, GoalStatus, Priority, Role

# Shared type for incoming date fields which can be a date, datetime, or ISO8601 string
DateInput = Union[date, datetime, str]

DEFAULT_TASK_COLOR = "#22c55e"


def _parse_datetime(value: Optional[DateInput], field: str = "date") -> Optional[datetime]:
    """
    Internal helper to normalize date input into a datetime (naive allowed).
    - If value is a string, attempt to parse via datetime.fromisoformat; if time is missing, set to 00:00.
    - If value is a date (not datetime), convert to datetime at 00:00.
    - If value is a datetime, return it; aware values are converted to naive local time.
    """
    if value is None:
        return None

    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone().replace(tzinfo=None)
        return value

    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, 0, 0, 0)

    if isinstance(value, str):
        s = value.strip()
        if s.endswith("Z"):
            s = s[:-1] + "+00:00"
        try:
            return _parse_datetime(datetime.fromisoformat(s), field)
        except ValueError:
            try:
                d = date.fromisoformat(s)
                return datetime(d.year, d.month, d.day, 0, 0, 0)
            except ValueError as e:
                raise ValueError(
                    f"Invalid {field} format. Use ISO8601 date or datetime string "
                    "(e.g., '2025-01-31' or '2025-01-31T13:45:00')."
                ) from e

    raise ValueError(f"Invalid type for {field}; expected date, datetime, or ISO8601 string.")


def _clean_title(v: Optional[str], required: bool = True) -> Optional[str]:
    if v is None:
        if required:
            raise ValueError("title is required")
        return v
    s = v.strip()
    if not (1 <= len(s) <= 200):
        raise ValueError("length must be between 1 and 200 characters")
    return s


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class TaskCreate(BaseModel):
    """
    Schema for creating a new task.
    """

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "title": "Draft quarterly plan",
                "description": "Outline the three key results",
                "priority": "high",
                "due_date": "2025-02-01",
                "start_at": "2025-01-30T09:00:00",
                "end_at": "2025-01-30T10:30:00",
            }
        }
    )

    title: str = Field(..., description="Short title for the task", min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    completed: bool = Field(default=False, description="Completion status flag")
    priority: Priority = Field(default="medium", description="Task priority: low, medium or high")
    due_date: Optional[datetime] = Field(
        default=None,
        description="Due date/time. Accepts ISO8601 date or datetime; dates are set to 00:00",
    )
    start_at: Optional[datetime] = Field(default=None, description="Planner slot start")
    end_at: Optional[datetime] = Field(default=None, description="Planner slot end")
    color: str = Field(default=DEFAULT_TASK_COLOR, description="Planner colour as a hex string", max_length=32)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        """
        Strip whitespace and enforce 1..200 length.
        """
        return _clean_title(v)  # type: ignore[return-value]

    @field_validator("due_date", "start_at", "end_at", mode="before")
    @classmethod
    def parse_dates(cls, v: Optional[DateInput]) -> Optional[datetime]:
        """
        Normalize date fields from str/date/datetime to datetime.
        """
        return _parse_datetime(v)

    @model_validator(mode="after")
    def check_slot(self) -> "TaskCreate":
        if self.start_at and self.end_at and self.end_at < self.start_at:
            raise ValueError("end_at must not be before start_at")
        return self


# PUBLIC_INTERFACE
class TaskUpdate(BaseModel):
    """
    Schema for updating an existing task.
    All fields are optional; only provided fields will be updated.
    """

    title: Optional[str] = Field(default=None, description="Short title for the task", min_length=1, max_length=200)
    description: Optional[str] = Field(default=None, description="Optional detailed description")
    completed: Optional[bool] = Field(default=None, description="Completion status flag")
    priority: Optional[Priority] = Field(default=None, description="Task priority")
    due_date: Optional[datetime] = Field(default=None, description="Due date/time")
    start_at: Optional[datetime] = Field(default=None, description="Planner slot start")
    end_at: Optional[datetime] = Field(default=None, description="Planner slot end")
    color: Optional[str] = Field(default=None, description="Planner colour", max_length=32)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v, required=False)

    @field_validator("due_date", "start_at", "end_at", mode="before")
    @classmethod
    def parse_dates(cls, v: Optional[DateInput]) -> Optional[datetime]:
        return _parse_datetime(v)


# PUBLIC_INTERFACE
class TaskOut(BaseModel):
    """
    Schema returned by the API for a task.
    """

    id: int = Field(..., description="Unique identifier of the task")
    title: str
    description: Optional[str] = None
    completed: bool
    priority: Priority
    due_date: Optional[datetime] = None
    start_at: Optional[datetime] = None
    end_at: Optional[datetime] = None
    color: str
    created_at: datetime
    updated_at: datetime


class TaskPage(BaseModel):
    """
    Envelope for paginated task list responses.
    """

    items: List[TaskOut] = Field(..., description="List of tasks")
    total: int = Field(..., description="Total number of items matching the query")
    limit: int = Field(..., description="Limit applied to the query")
    offset: int = Field(..., description="Offset applied to the query")


class PlannerDay(BaseModel):
    day: date
    tasks: List[TaskOut]


class PlannerWeek(BaseModel):
    week_start: date
    days: List[PlannerDay]


# ---------------------------------------------------------------------------
# Habits
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class HabitCreate(BaseModel):
    """
    Schema for creating a habit.
    """

    model_config = ConfigDict(
        json_schema_extra={"example": {"name": "Read 20 pages", "frequency": "daily", "description": None}}
    )

    name: str = Field(..., description="Habit name", min_length=1, max_length=200)
    frequency: Frequency = Field(default="daily", description="daily or weekly")
    description: Optional[str] = Field(default=None, description="Optional description")

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _clean_title(v)  # type: ignore[return-value]


class HabitUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=200)
    frequency: Optional[Frequency] = None
    description: Optional[str] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v, required=False)


class HabitOut(BaseModel):
    id: int
    name: str
    frequency: Frequency
    description: Optional[str] = None
    created_at: datetime
    updated_at: datetime
    streak: int = Field(default=0, description="Consecutive completed days ending today")


class HabitLogOut(BaseModel):
    id: int
    habit_id: int
    completed_at: datetime
    notes: Optional[str] = None


# PUBLIC_INTERFACE
class HabitToggle(BaseModel):
    """
    Body for toggling a habit's completion on a calendar day.
    """

    model_config = ConfigDict(populate_by_name=True)

    day: date = Field(..., alias="date", description="Calendar day to toggle")
    notes: Optional[str] = Field(default=None, description="Optional note stored with a new log")


class HabitToggleOut(BaseModel):
    habit_id: int
    day: date
    completed: bool = Field(..., description="Whether the habit is completed on that day after the toggle")
    streak: int = Field(..., description="Streak ending on the toggled day")
    log: Optional[HabitLogOut] = None


class HabitStatsOut(BaseModel):
    total_habits: int
    completed_today: int
    best_streak: int
    completion_rate: float = Field(..., description="Logs this week over habits x 7, as a percentage")
    weekly_progress: Dict[date, float] = Field(..., description="Per-day share of habits completed, as a percentage")
    streaks: Dict[int, int]
    week_start: date


# ---------------------------------------------------------------------------
# Goals and milestones
# ---------------------------------------------------------------------------


# PUBLIC_INTERFACE
class GoalCreate(BaseModel):
    """
    Schema for creating a goal. New goals start in progress at 0%.
    """

    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    target_date: Optional[datetime] = Field(default=None, description="Optional target date")

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v)  # type: ignore[return-value]

    @field_validator("target_date", mode="before")
    @classmethod
    def parse_target_date(cls, v: Optional[DateInput]) -> Optional[datetime]:
        return _parse_datetime(v, "target_date")


class GoalUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    target_date: Optional[datetime] = None
    status: Optional[GoalStatus] = None
    progress: Optional[int] = Field(default=None, ge=0, le=100)

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v, required=False)

    @field_validator("target_date", mode="before")
    @classmethod
    def parse_target_date(cls, v: Optional[DateInput]) -> Optional[datetime]:
        return _parse_datetime(v, "target_date")


class GoalOut(BaseModel):
    id: int
    title: str
    description: Optional[str] = None
    target_date: Optional[datetime] = None
    progress: int
    status: GoalStatus
    created_at: datetime
    updated_at: datetime


class MilestoneCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: str) -> str:
        return _clean_title(v)  # type: ignore[return-value]

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DateInput]) -> Optional[datetime]:
        return _parse_datetime(v, "due_date")


class MilestoneUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    description: Optional[str] = None
    due_date: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def validate_title(cls, v: Optional[str]) -> Optional[str]:
        return _clean_title(v, required=False)

    @field_validator("due_date", mode="before")
    @classmethod
    def parse_due_date(cls, v: Optional[DateInput]) -> Optional[datetime]:
        return _parse_datetime(v, "due_date")


class MilestoneOut(BaseModel):
    id: int
    goal_id: int
    title: str
    description: Optional[str] = None
    completed: bool
    due_date: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class MilestoneToggleOut(BaseModel):
    milestone: MilestoneOut
    goal: GoalOut


class GoalStatsOut(BaseModel):
    total_goals: int
    active_goals: int
    completed_goals: int
    archived_goals: int
    average_progress: float
    upcoming_milestones: List[MilestoneOut]


# ---------------------------------------------------------------------------
# Dashboard, profile, assistant, billing
# ---------------------------------------------------------------------------


class TaskStatsOut(BaseModel):
    total: int
    completed: int
    pending: int
    overdue: int
    by_priority: Dict[str, int]


class DashboardOut(BaseModel):
    full_name: Optional[str] = None
    tasks: TaskStatsOut
    total_habits: int
    goals: GoalStatsOut


class SubscriptionOut(BaseModel):
    stripe_customer_id: str
    status: str
    plan_type: Optional[str] = None
    current_period_end: Optional[datetime] = None


class ProfileOut(BaseModel):
    id: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    role: Role
    created_at: datetime
    subscription: Optional[SubscriptionOut] = None


class ProfileUpdate(BaseModel):
    full_name: Optional[str] = Field(default=None, max_length=200)


# PUBLIC_INTERFACE
class ChatRequest(BaseModel):
    """
    A question for the productivity assistant.
    """

    message: str = Field(..., description="The user's question", min_length=1, max_length=4000)

    @field_validator("message")
    @classmethod
    def strip_message(cls, v: str) -> str:
        s = v.strip()
        if not s:
            raise ValueError("message must not be blank")
        return s


class ChatResponse(BaseModel):
    response: str


class CheckoutRequest(BaseModel):
    plan: str = Field(
        ...,
        description="Plan alias ('price_pro_monthly', 'price_basic_monthly') or a raw Stripe price id",
        min_length=1,
    )


class SessionUrl(BaseModel):
    url: str
