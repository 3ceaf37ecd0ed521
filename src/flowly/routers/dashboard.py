from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends

from ..auth import get_current_profile
from ..models import ProfileEntity
from ..repositories import Repository, get_repository
from ..schemas import DashboardOut, TaskStatsOut
from ..stats import compute_task_stats
from .goals import goal_stats_out

router = APIRouter(
    prefix="/api/v1/dashboard",
    tags=["dashboard"],
)


# PUBLIC_INTERFACE
@router.get(
    "",
    response_model=DashboardOut,
    summary="Dashboard",
    description="Task counters, habit count and goal statistics for the calling user.",
)
def dashboard(
    profile: ProfileEntity = Depends(get_current_profile),
    repo: Repository = Depends(get_repository),
) -> DashboardOut:
    user_id = profile["id"]
    tasks = repo.list_all_tasks(user_id)
    now = datetime.now()
    task_stats = compute_task_stats(tasks, now)
    return DashboardOut(
        full_name=profile["full_name"],
        tasks=TaskStatsOut(
            total=task_stats.total,
            completed=task_stats.completed,
            pending=task_stats.pending,
            overdue=task_stats.overdue,
            by_priority=task_stats.by_priority,
        ),
        total_habits=len(repo.list_habits(user_id)),
        goals=goal_stats_out(repo, user_id, now),
    )
