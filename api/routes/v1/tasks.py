"""
api/routes/v1/tasks.py -- Task CRUD for the authenticated user.

Routes (in registration order to avoid FastAPI path capture conflicts):
  GET    /tasks              -- list own tasks (filters + sort)
  GET    /tasks/stats        -- totals for own tasks
  GET    /tasks/{task_id}    -- one own task
  POST   /tasks              -- create                 (audited: create_task)
  PUT    /tasks/{task_id}    -- full update            (audited: update_task)
  DELETE /tasks/{task_id}    -- delete                 (audited: delete_task)
  PATCH  /tasks/{task_id}/status -- toggle completion  (audited: update_task_status)

GET /tasks/stats must be registered before GET /tasks/{task_id} or FastAPI
captures "stats" as a task_id and answers 422.

Every store call carries current_user.id. Another user's task is a 404, never
a 403, so task ids cannot be probed for existence.
"""

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request

from api.models import (
    MessageResponse,
    SortDirection,
    TaskCreate,
    TaskResponse,
    TaskSortField,
    TaskStatsResponse,
    TaskStatusFilter,
    TaskStatusUpdate,
    TaskUpdate,
)
from audit.interceptor import AuditedRoute, audited
from auth.dependencies import get_current_user
from auth.models import User
from core.db import to_utc_iso
from tasks.models import Task
from tasks.store import TaskStore

# Auth policy:
# - every route requires auth (router-level get_current_user)
router = APIRouter(route_class=AuditedRoute, dependencies=[Depends(get_current_user)])


def _not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "Task not found."})


def _fetch_owned(store: TaskStore, task_id: int, user: User) -> TaskResponse:
    task = store.get_task(task_id, user.id)
    if task is None:
        raise _not_found()
    return TaskResponse.from_task(task)


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


@router.get("/tasks", response_model=list[TaskResponse])
def list_tasks(
    request: Request,
    category: Optional[str] = Query(default=None, max_length=100),
    status: Optional[TaskStatusFilter] = None,
    search: Optional[str] = Query(default=None, max_length=100),
    sort_by: Optional[TaskSortField] = None,
    sort_dir: SortDirection = SortDirection.asc,
    current_user: User = Depends(get_current_user),
) -> list[TaskResponse]:
    """List the caller's tasks. Default order is due_date ascending."""
    store: TaskStore = request.app.state.task_store
    tasks = store.list_tasks(
        current_user.id,
        category=category,
        status=status.value if status else None,
        search=search,
        sort_by=sort_by.value if sort_by else None,
        sort_dir=sort_dir.value,
    )
    return [TaskResponse.from_task(t) for t in tasks]


@router.get("/tasks/stats", response_model=TaskStatsResponse)
def task_stats(request: Request, current_user: User = Depends(get_current_user)) -> TaskStatsResponse:
    """Return total, completed, pending and overdue counts for the caller."""
    store: TaskStore = request.app.state.task_store
    return TaskStatsResponse(**store.get_stats(current_user.id))


@router.get("/tasks/{task_id}", response_model=TaskResponse)
def get_task(request: Request, task_id: int, current_user: User = Depends(get_current_user)) -> TaskResponse:
    return _fetch_owned(request.app.state.task_store, task_id, current_user)


# ---------------------------------------------------------------------------
# Writes (audited)
# ---------------------------------------------------------------------------


@router.post("/tasks", response_model=TaskResponse, status_code=201)
@audited("create_task")
def create_task(
    request: Request,
    body: TaskCreate,
    current_user: User = Depends(get_current_user),
) -> TaskResponse:
    store: TaskStore = request.app.state.task_store
    task_id = store.create_task(
        Task(
            user_id=current_user.id,
            title=body.title,
            description=body.description,
            category=body.category,
            due_date=to_utc_iso(body.due_date),
        )
    )
    return _fetch_owned(store, task_id, current_user)


@router.put("/tasks/{task_id}", response_model=TaskResponse)
@audited("update_task")
def update_task(
    request: Request,
    task_id: int,
    body: TaskUpdate,
    current_user: User = Depends(get_current_user),
) -> TaskResponse:
    """Replace title, description, category and due_date; completed only if supplied."""
    store: TaskStore = request.app.state.task_store
    fields: dict = {
        "title": body.title,
        "description": body.description,
        "category": body.category,
        "due_date": to_utc_iso(body.due_date),
    }
    if body.completed is not None:
        fields["completed"] = body.completed
    if not store.update_task(task_id, current_user.id, **fields):
        raise _not_found()
    return _fetch_owned(store, task_id, current_user)


@router.delete("/tasks/{task_id}", response_model=MessageResponse)
@audited("delete_task")
def delete_task(request: Request, task_id: int, current_user: User = Depends(get_current_user)) -> MessageResponse:
    store: TaskStore = request.app.state.task_store
    if not store.delete_task(task_id, current_user.id):
        raise _not_found()
    return MessageResponse(message="Task deleted successfully.")


@router.patch("/tasks/{task_id}/status", response_model=TaskResponse)
@audited("update_task_status")
def update_task_status(
    request: Request,
    task_id: int,
    body: TaskStatusUpdate,
    current_user: User = Depends(get_current_user),
) -> TaskResponse:
    """Mark a task completed or pending. completed_at follows the flag."""
    store: TaskStore = request.app.state.task_store
    if not store.update_task(task_id, current_user.id, completed=body.completed):
        raise _not_found()
    return _fetch_owned(store, task_id, current_user)
