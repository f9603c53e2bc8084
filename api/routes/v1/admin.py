"""
api/routes/v1/admin.py -- Admin-only user management and statistics.

Routes:
  GET   /admin/users                  -- all users, newest first
  GET   /admin/users/{user_id}        -- one user
  POST  /admin/users                  -- create a user with any role   (audited: admin_create_user)
  PATCH /admin/users/{user_id}/status -- activate / deactivate         (audited: admin_update_user_status)
  GET   /admin/stats                  -- dashboard aggregates

The router-level require_admin dependency verifies the token and then gates
on role == "admin" before any handler runs. A non-admin gets 403 and the
handler -- with its audit wrap -- never executes.

Self-deactivation is blocked in update_user_status() itself, next to the
mutation it protects, rather than in the generic role gate.
"""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import AdminStatsResponse, AdminUserCreate, UserResponse, UserStatusUpdate
from audit.interceptor import AuditedRoute, audited
from auth.dependencies import require_admin
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password
from tasks.store import TaskStore

# Auth policy:
# - every route requires admin (router-level require_admin)
router = APIRouter(route_class=AuditedRoute, dependencies=[Depends(require_admin)])

# Registration chart window: the current month plus the five before it.
_REGISTRATION_MONTHS = 6


def _user_not_found() -> HTTPException:
    return HTTPException(status_code=404, detail={"code": "not_found", "message": "User not found."})


def _window_start(now: datetime, months: int) -> str:
    """ISO timestamp of the first instant of the month `months - 1` before now's month."""
    index = now.year * 12 + (now.month - 1) - (months - 1)
    start = datetime(index // 12, index % 12 + 1, 1, tzinfo=timezone.utc)
    return start.isoformat()


@router.get("/admin/users", response_model=list[UserResponse])
def list_users(request: Request) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [UserResponse.from_user(u) for u in user_store.list_users()]


@router.get("/admin/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    user = user_store.get_by_id(user_id)
    if user is None:
        raise _user_not_found()
    return UserResponse.from_user(user)


@router.post("/admin/users", response_model=UserResponse, status_code=201)
@audited("admin_create_user")
def create_user(request: Request, body: AdminUserCreate) -> UserResponse:
    """Create an account on someone's behalf. Role defaults to "user"."""
    user_store: UserStore = request.app.state.user_store

    if user_store.find_by_username_or_email(body.username, body.email) is not None:
        raise HTTPException(
            status_code=400,
            detail={"code": "user_exists", "message": "User already exists."},
        )
    try:
        user_id = user_store.create_user(
            User(
                username=body.username,
                email=body.email,
                hashed_password=hash_password(body.password),
                role=body.role.value,
            )
        )
    except IntegrityError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "user_exists", "message": "User already exists."},
        ) from exc

    return UserResponse.from_user(user_store.get_by_id(user_id))


@router.patch("/admin/users/{user_id}/status", response_model=UserResponse)
@audited("admin_update_user_status")
def update_user_status(
    request: Request,
    user_id: int,
    body: UserStatusUpdate,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    """Activate or deactivate an account.

    A deactivated user's existing tokens stop working on their next request
    (the verifier checks is_active on every call), even though the tokens
    themselves are not revoked.
    """
    user_store: UserStore = request.app.state.user_store

    target = user_store.get_by_id(user_id)
    if target is None:
        raise _user_not_found()

    if target.id == current_user.id and not body.active:
        raise HTTPException(
            status_code=400,
            detail={"code": "self_deactivation", "message": "You cannot deactivate your own account."},
        )

    user_store.update_user(user_id, is_active=body.active)
    return UserResponse.from_user(user_store.get_by_id(user_id))


@router.get("/admin/stats", response_model=AdminStatsResponse)
def admin_stats(request: Request) -> AdminStatsResponse:
    """Return user and task totals, monthly registrations, and the top 5 categories."""
    user_store: UserStore = request.app.state.user_store
    task_store: TaskStore = request.app.state.task_store

    since = _window_start(datetime.now(timezone.utc), _REGISTRATION_MONTHS)
    return AdminStatsResponse(
        total_users=user_store.count_users(),
        active_users=user_store.count_users(active_only=True),
        total_tasks=task_store.count_tasks(),
        completed_tasks=task_store.count_tasks(completed=True),
        user_registrations=user_store.registrations_by_month(since),
        task_categories=task_store.top_categories(limit=5),
    )
