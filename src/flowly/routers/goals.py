from __future__ import annotations

import logging
from datetime import datetime
from typing import List, Literal, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..auth import get_current_profile, get_current_user_id
from ..models import GoalStatus, ProfileEntity
from ..repositories import Repository, get_repository
from ..schemas import (
    GoalCreate,
    GoalOut,
    GoalStatsOut,
    GoalUpdate,
    MilestoneCreate,
    MilestoneOut,
    MilestoneToggleOut,
    MilestoneUpdate,
)
from ..settings import get_settings
from ..stats import compute_goal_stats, recompute_goal_progress

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/api/v1/goals",
    tags=["goals"],
)


def _get_repo(repo: Repository = Depends(get_repository)) -> Repository:
    return repo


def _goal_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Goal not found")


def _milestone_not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Milestone not found")


def goal_stats_out(repo: Repository, user_id: str, now: datetime, window_days: int = 7) -> GoalStatsOut:
    """Load the user's goals and milestones and summarise them."""
    result = compute_goal_stats(repo.list_goals(user_id), repo.list_milestones(user_id), now, window_days)
    return GoalStatsOut(
        total_goals=result.total_goals,
        active_goals=result.active_goals,
        completed_goals=result.completed_goals,
        archived_goals=result.archived_goals,
        average_progress=result.average_progress,
        upcoming_milestones=[MilestoneOut(**m) for m in result.upcoming_milestones],
    )


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=GoalOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Goal",
    responses={403: {"description": "Free plan goal limit reached"}},
)
def create_goal(
    payload: GoalCreate,
    profile: ProfileEntity = Depends(get_current_profile),
    repo: Repository = Depends(_get_repo),
) -> GoalOut:
    """
    Create a goal in progress at 0%. Free users may own a limited number of goals.
    """
    limit = get_settings().free_goal_limit
    if profile["role"] != "pro_user" and len(repo.list_goals(profile["id"])) >= limit:
        noun = "goal" if limit == 1 else "goals"
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Free users can only track up to {limit} {noun}. Upgrade to Pro for unlimited goals!",
        )
    return GoalOut(**repo.create_goal(profile["id"], payload))  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get("/", response_model=List[GoalOut], summary="List Goals")
def list_goals(
    status_filter: Optional[GoalStatus] = Query(None, alias="status", description="Only goals with this status"),
    sort: Literal["progress", "title", "target_date"] = Query("progress", description="progress, title or target_date"),
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> List[GoalOut]:
    """
    Progress sort is highest first; target_date sort is soonest first with undated goals last.
    """
    goals = [g for g in repo.list_goals(user_id) if status_filter is None or g["status"] == status_filter]
    if sort == "progress":
        goals.sort(key=lambda g: g["progress"], reverse=True)
    elif sort == "title":
        goals.sort(key=lambda g: g["title"].lower())
    else:
        goals.sort(key=lambda g: (g["target_date"] is None, g["target_date"] or datetime.min))
    return [GoalOut(**g) for g in goals]  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/stats",
    response_model=GoalStatsOut,
    summary="Goal Statistics",
    description="Goal counts by status, mean progress and the next milestones due.",
)
def goal_stats(
    window_days: int = Query(7, ge=1, le=365, description="How far ahead to look for upcoming milestones"),
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> GoalStatsOut:
    return goal_stats_out(repo, user_id, datetime.now(), window_days)


# PUBLIC_INTERFACE
@router.get("/{goal_id}", response_model=GoalOut, summary="Get Goal")
def get_goal(
    goal_id: int,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> GoalOut:
    goal = repo.get_goal(user_id, goal_id)
    if not goal:
        raise _goal_not_found()
    return GoalOut(**goal)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.patch("/{goal_id}", response_model=GoalOut, summary="Update Goal")
def patch_goal(
    goal_id: int,
    payload: GoalUpdate,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> GoalOut:
    """
    Partially update a goal. Progress set here is overwritten the next time a
    milestone of the goal is toggled.
    """
    updated = repo.update_goal(user_id, goal_id, payload)
    if not updated:
        raise _goal_not_found()
    return GoalOut(**updated)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete("/{goal_id}", status_code=status.HTTP_204_NO_CONTENT, summary="Delete Goal")
def delete_goal(
    goal_id: int,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> None:
    """
    Delete a goal and its milestones.
    """
    if not repo.delete_goal(user_id, goal_id):
        raise _goal_not_found()
    return None


# PUBLIC_INTERFACE
@router.post(
    "/{goal_id}/milestones",
    response_model=MilestoneOut,
    status_code=status.HTTP_201_CREATED,
    summary="Add Milestone",
)
def create_milestone(
    goal_id: int,
    payload: MilestoneCreate,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> MilestoneOut:
    created = repo.create_milestone(user_id, goal_id, payload)
    if not created:
        raise _goal_not_found()
    return MilestoneOut(**created)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get("/{goal_id}/milestones", response_model=List[MilestoneOut], summary="List Milestones")
def list_milestones(
    goal_id: int,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> List[MilestoneOut]:
    if not repo.get_goal(user_id, goal_id):
        raise _goal_not_found()
    return [MilestoneOut(**m) for m in repo.list_milestones(user_id, goal_id)]  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.patch("/milestones/{milestone_id}", response_model=MilestoneOut, summary="Update Milestone")
def patch_milestone(
    milestone_id: int,
    payload: MilestoneUpdate,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> MilestoneOut:
    updated = repo.update_milestone(user_id, milestone_id, payload)
    if not updated:
        raise _milestone_not_found()
    return MilestoneOut(**updated)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete(
    "/milestones/{milestone_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Milestone",
)
def delete_milestone(
    milestone_id: int,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> None:
    if not repo.delete_milestone(user_id, milestone_id):
        raise _milestone_not_found()
    return None


# PUBLIC_INTERFACE
@router.post(
    "/milestones/{milestone_id}/toggle",
    response_model=MilestoneToggleOut,
    summary="Toggle Milestone",
    description="Flip a milestone's completion and recompute its goal's progress from all of the goal's milestones.",
)
def toggle_milestone(
    milestone_id: int,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> MilestoneToggleOut:
    milestone = repo.get_milestone(user_id, milestone_id)
    if not milestone:
        raise _milestone_not_found()
    goal = repo.get_goal(user_id, milestone["goal_id"])
    if not goal:
        raise _goal_not_found()

    siblings = repo.list_milestones(user_id, goal["id"])
    toggled = repo.set_milestone_completed(user_id, milestone_id, not milestone["completed"])
    if not toggled:
        raise _milestone_not_found()

    progress = recompute_goal_progress(goal, siblings, toggled)
    updated_goal = repo.update_goal(user_id, goal["id"], GoalUpdate(progress=progress))
    if not updated_goal:
        raise _goal_not_found()
    logger.info("Goal %s progress recomputed to %s%%", goal["id"], progress)

    return MilestoneToggleOut(
        milestone=MilestoneOut(**toggled),  # type: ignore[arg-type]
        goal=GoalOut(**updated_goal),  # type: ignore[arg-type]
    )
