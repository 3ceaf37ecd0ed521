from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..auth import get_current_profile, get_current_user_id
from ..models import Frequency, ProfileEntity
from ..repositories import Repository, get_repository
from ..schemas import (
    HabitCreate,
    HabitLogOut,
    HabitOut,
    HabitStatsOut,
    HabitToggle,
    HabitToggleOut,
    HabitUpdate,
)
from ..settings import get_settings
from ..stats import compute_streak, compute_weekly_stats, week_start_for
from ..utils import day_range

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/habits",
    tags=["habits"],
)


def _get_repo(repo: Repository = Depends(get_repository)) -> Repository:
    return repo


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Habit not found")


def _lookback_start(day: date) -> date:
    return day - timedelta(days=get_settings().streak_lookback_days)


def _streak_for(repo: Repository, user_id: str, habit_id: int, ref: date) -> int:
    begin, _ = day_range(_lookback_start(ref))
    _, end = day_range(ref)
    return compute_streak(habit_id, ref, repo.list_habit_logs(user_id, begin, end, habit_id))


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=HabitOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Habit",
    responses={403: {"description": "Free plan habit limit reached"}},
)
def create_habit(
    payload: HabitCreate,
    profile: ProfileEntity = Depends(get_current_profile),
    repo: Repository = Depends(_get_repo),
) -> HabitOut:
    """
    Create a habit. Free users may own a limited number of habits.
    """
    limit = get_settings().free_habit_limit
    if profile["role"] != "pro_user" and len(repo.list_habits(profile["id"])) >= limit:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Free users can only track up to {limit} habits. Upgrade to Pro for unlimited habits!",
        )
    created = repo.create_habit(profile["id"], payload)
    return HabitOut(**created, streak=0)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=List[HabitOut],
    summary="List Habits",
    description="List habits with their current streak, optionally filtered by frequency.",
)
def list_habits(
    frequency: Optional[Frequency] = Query(None, description="Only habits of this frequency"),
    sort: Literal["streak", "name", "created"] = Query("streak", description="streak, name or created"),
    as_of: Optional[date] = Query(None, description="Reference day for streaks; defaults to today"),
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> List[HabitOut]:
    """
    Streak sort is longest first, name sort is alphabetical, created sort is newest first.
    """
    ref = as_of or date.today()
    habits = [h for h in repo.list_habits(user_id) if frequency is None or h["frequency"] == frequency]
    begin, _ = day_range(_lookback_start(ref))
    _, end = day_range(ref)
    logs = repo.list_habit_logs(user_id, begin, end)

    items = [HabitOut(**h, streak=compute_streak(h["id"], ref, logs)) for h in habits]  # type: ignore[arg-type]
    if sort == "streak":
        items.sort(key=lambda h: h.streak, reverse=True)
    elif sort == "name":
        items.sort(key=lambda h: h.name.lower())
    else:
        items.sort(key=lambda h: h.created_at, reverse=True)
    return items


# PUBLIC_INTERFACE
@router.get(
    "/stats",
    response_model=HabitStatsOut,
    summary="Habit Statistics",
    description="Weekly completion, today's completions and streaks.",
)
def habit_stats(
    week_of: Optional[date] = Query(None, description="Any day of the wanted week; defaults to today"),
    today: Optional[date] = Query(None, description="Reference day for streaks and 'completed today'"),
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> HabitStatsOut:
    ref = today or date.today()
    start = week_start_for(week_of or ref, get_settings().week_starts_on)
    begin, _ = day_range(min(start, _lookback_start(ref)))
    _, end = day_range(max(start + timedelta(days=6), ref))

    habits = repo.list_habits(user_id)
    logs = repo.list_habit_logs(user_id, begin, end)
    result = compute_weekly_stats(habits, logs, start, ref)
    return HabitStatsOut(
        total_habits=result.total_habits,
        completed_today=result.completed_today,
        best_streak=result.best_streak,
        completion_rate=result.completion_rate,
        weekly_progress=result.weekly_progress,
        streaks=result.streaks,  # type: ignore[arg-type]
        week_start=start,
    )


# PUBLIC_INTERFACE
@router.get(
    "/logs",
    response_model=List[HabitLogOut],
    summary="List Habit Logs",
    description="Completion logs between two days (inclusive), most recent first.",
)
def list_logs(
    start: Optional[date] = Query(None, description="First day; defaults to the start of this week"),
    end: Optional[date] = Query(None, description="Last day (inclusive); defaults to six days after start"),
    habit_id: Optional[int] = Query(None, description="Only logs of this habit"),
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> List[HabitLogOut]:
    first = start or week_start_for(date.today(), get_settings().week_starts_on)
    last = end or first + timedelta(days=6)
    if last < first:
        raise HTTPException(status_code=400, detail="end must not be before start")
    begin, _ = day_range(first)
    _, stop = day_range(last)
    return [HabitLogOut(**log) for log in repo.list_habit_logs(user_id, begin, stop, habit_id)]  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get("/{habit_id}", response_model=HabitOut, summary="Get Habit")
def get_habit(
    habit_id: int,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> HabitOut:
    habit = repo.get_habit(user_id, habit_id)
    if not habit:
        raise _not_found()
    return HabitOut(**habit, streak=_streak_for(repo, user_id, habit_id, date.today()))  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.patch("/{habit_id}", response_model=HabitOut, summary="Update Habit")
def patch_habit(
    habit_id: int,
    payload: HabitUpdate,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> HabitOut:
    updated = repo.update_habit(user_id, habit_id, payload)
    if not updated:
        raise _not_found()
    return HabitOut(**updated, streak=_streak_for(repo, user_id, habit_id, date.today()))  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete("/{habit_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete Habit")
def delete_habit(
    habit_id: int,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> None:
    """
    Delete a habit and all of its logs.
    """
    if not repo.delete_habit(user_id, habit_id):
        raise _not_found()
    return None


# PUBLIC_INTERFACE
@router.post(
    "/{habit_id}/toggle",
    response_model=HabitToggleOut,
    summary="Toggle Habit Day",
    description=(
        "Mark a habit done on a day, or undo it when it already is. "
        "Returns the resulting state and the streak ending on that day."
    ),
)
def toggle_habit(
    habit_id: int,
    payload: HabitToggle,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> HabitToggleOut:
    if not repo.get_habit(user_id, habit_id):
        raise _not_found()

    day_begin, day_end = day_range(payload.day)
    existing = repo.list_habit_logs(user_id, day_begin, day_end, habit_id)
    log = None
    if existing:
        for entry in existing:
            repo.delete_habit_log(user_id, entry["id"])
        completed = False
    else:
        log = repo.add_habit_log(user_id, habit_id, day_begin, payload.notes)
        if log is None:
            raise _not_found()
        completed = True
    logger.debug("Habit %s on %s toggled to %s", habit_id, payload.day, completed)

    begin, _ = day_range(_lookback_start(payload.day))
    logs = repo.list_habit_logs(user_id, begin, day_end, habit_id)
    return HabitToggleOut(
        habit_id=habit_id,
        day=payload.day,
        completed=completed,
        streak=compute_streak(habit_id, payload.day, logs),
        log=HabitLogOut(**log) if log else None,  # type: ignore[arg-type]
    )
