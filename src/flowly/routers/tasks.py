from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ..auth import get_current_user_id
from ..models import Priority
from ..repositories import Repository, TaskQuery, get_repository, normalize_sort
from ..schemas import PlannerDay, PlannerWeek, TaskCreate, TaskOut, TaskPage, TaskUpdate
from ..settings import get_settings
from ..stats import group_tasks_by_day, week_start_for
from ..utils import day_range, pagination_envelope

router = APIRouter(
    prefix="/api/v1/tasks",
    tags=["tasks"],
)


def _get_repo(repo: Repository = Depends(get_repository)) -> Repository:
    """
    Dependency wrapper for repository to keep signatures clean.
    """
    return repo


def _not_found() -> HTTPException:
    return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Task not found")


# PUBLIC_INTERFACE
@router.post(
    "/",
    response_model=TaskOut,
    status_code=status.HTTP_201_CREATED,
    summary="Create Task",
    description="Create a new task and return the created resource.",
    responses={
        201: {"description": "Task created successfully"},
        422: {"description": "Validation error"},
    },
)
def create_task(
    payload: TaskCreate,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> TaskOut:
    """
    Create a new task.
    """
    created = repo.create_task(user_id, payload)
    return TaskOut(**created)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.get(
    "/",
    response_model=TaskPage,
    summary="List Tasks",
    description=(
        "List tasks with optional filters and pagination.\n\n"
        "Query parameters:\n"
        "- limit: max number of items to return (0..1000)\n"
        "- offset: number of items to skip (>=0)\n"
        "- completed: filter by completion status\n"
        "- priority: filter by priority (low, medium, high)\n"
        "- q: search query for title/description (substring match)\n"
        "- sort: created_at, updated_at, due_date or priority, '-' prefix for descending\n"
        "- order: asc or desc (if provided, it overrides the direction in sort)"
    ),
    responses={
        200: {"description": "List retrieved successfully"},
        400: {"description": "Invalid query parameters"},
    },
)
def list_tasks(
    limit: int = Query(50, ge=0, le=1000, description="Maximum number of items to return"),
    offset: int = Query(0, ge=0, description="Number of items to skip"),
    completed: Optional[bool] = Query(None, description="Filter by completion status"),
    priority: Optional[Priority] = Query(None, description="Filter by priority"),
    q: Optional[str] = Query(None, description="Search text for title/description"),
    sort: Optional[str] = Query("-created_at", description="Sort field, '-' prefix for descending"),
    order: Optional[str] = Query(None, description="Override sort direction: 'asc' or 'desc'"),
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> TaskPage:
    """
    List the caller's tasks with pagination and filters.
    """
    field, descending = normalize_sort(sort)
    if order:
        ord_norm = order.strip().lower()
        if ord_norm not in {"asc", "desc"}:
            raise HTTPException(status_code=400, detail="order must be 'asc' or 'desc'")
        descending = ord_norm == "desc"

    query = TaskQuery(
        limit=limit,
        offset=offset,
        completed=completed,
        priority=priority,
        search=q.strip() if q else None,
        sort=f"-{field}" if descending else field,
    )
    items, total = repo.list_tasks(user_id, query)
    envelope = pagination_envelope(
        items=[TaskOut(**it) for it in items],  # type: ignore[arg-type]
        total=total,
        limit=limit,
        offset=offset,
    )
    return TaskPage(**envelope)


# PUBLIC_INTERFACE
@router.get(
    "/week",
    response_model=PlannerWeek,
    summary="Weekly Planner",
    description="Seven-day planner grid with the tasks scheduled to start on each day.",
)
def planner_week(
    week_of: Optional[date] = Query(None, description="Any day of the wanted week; defaults to today"),
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> PlannerWeek:
    """
    Return the planner week containing ``week_of``.
    """
    start = week_start_for(week_of or date.today(), get_settings().week_starts_on)
    begin, end = day_range(start, 7)
    grid = group_tasks_by_day(repo.list_tasks_between(user_id, begin, end), start)
    return PlannerWeek(
        week_start=start,
        days=[PlannerDay(day=day, tasks=[TaskOut(**t) for t in tasks]) for day, tasks in grid.items()],
    )


# PUBLIC_INTERFACE
@router.get(
    "/{task_id}",
    response_model=TaskOut,
    summary="Get Task",
    responses={
        200: {"description": "Task found"},
        404: {"description": "Task not found"},
    },
)
def get_task(
    task_id: int,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> TaskOut:
    """
    Retrieve a single task by its ID.
    """
    item = repo.get_task(user_id, task_id)
    if not item:
        raise _not_found()
    return TaskOut(**item)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.put(
    "/{task_id}",
    response_model=TaskOut,
    summary="Replace Task",
    description=(
        "Replace an existing task. Any fields omitted will be set to their default/null "
        "equivalent as per the schema."
    ),
    responses={
        200: {"description": "Task updated"},
        404: {"description": "Task not found"},
    },
)
def put_task(
    task_id: int,
    payload: TaskCreate,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> TaskOut:
    """
    Full update (replace) semantics implemented via the partial-update capable repository by
    mapping TaskCreate into TaskUpdate fields.
    """
    update = TaskUpdate(**payload.model_dump())
    updated = repo.update_task(user_id, task_id, update)
    if not updated:
        raise _not_found()
    return TaskOut(**updated)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.patch(
    "/{task_id}",
    response_model=TaskOut,
    summary="Update Task",
    description="Partially update fields of a task.",
    responses={
        200: {"description": "Task updated"},
        404: {"description": "Task not found"},
    },
)
def patch_task(
    task_id: int,
    payload: TaskUpdate,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> TaskOut:
    """
    Partial update of a task.
    """
    updated = repo.update_task(user_id, task_id, payload)
    if not updated:
        raise _not_found()
    return TaskOut(**updated)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.post(
    "/{task_id}/toggle",
    response_model=TaskOut,
    summary="Toggle Task",
    description="Flip the completion flag of a task.",
)
def toggle_task(
    task_id: int,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> TaskOut:
    item = repo.get_task(user_id, task_id)
    if not item:
        raise _not_found()
    updated = repo.update_task(user_id, task_id, TaskUpdate(completed=not item["completed"]))
    if not updated:
        raise _not_found()
    return TaskOut(**updated)  # type: ignore[arg-type]


# PUBLIC_INTERFACE
@router.delete(
    "/{task_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Delete Task",
    responses={
        204: {"description": "Task deleted"},
        404: {"description": "Task not found"},
    },
)
def delete_task(
    task_id: int,
    user_id: str = Depends(get_current_user_id),
    repo: Repository = Depends(_get_repo),
) -> None:
    """
    Delete a task. Returns 204 on success, 404 if not found.
    """
    if not repo.delete_task(user_id, task_id):
        raise _not_found()
    return None
