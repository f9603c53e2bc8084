"""
API request and response models for TaskDesk REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py,
tasks/models.py and audit/models.py, which own the internal domain
representation. Route handlers map between the two, using the from_* factory
classmethods colocated with each response model.

Separation of concerns: domain dataclasses = domain truth; api/ models = API contract.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from audit.models import AuditEntry
from auth.models import User
from tasks.models import Task

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Deliberately loose: one @, no whitespace, a dot in the domain. Deliverability
# is not our concern; uniqueness is enforced by the store.
EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
USERNAME_PATTERN = r"^[A-Za-z0-9_.-]+$"


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class RoleEnum(str, Enum):
    user = "user"
    admin = "admin"


class TaskStatusFilter(str, Enum):
    completed = "completed"
    pending = "pending"


class TaskSortField(str, Enum):
    due_date = "due_date"
    title = "title"
    category = "category"
    completed = "completed"
    created_at = "created_at"
    updated_at = "updated_at"


class SortDirection(str, Enum):
    asc = "asc"
    desc = "desc"


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorResponse(BaseModel):
    """Envelope for every non-2xx response.

    message is always human-readable and safe to show to an end user. code
    is a stable machine-readable identifier. detail carries validation
    specifics and is None otherwise; stack traces never appear here.
    """

    message: str
    code: str
    detail: Optional[str] = None


class MessageResponse(BaseModel):
    message: str


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)


# ---------------------------------------------------------------------------
# Auth and profile
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: str = Field(min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)
    password: str = Field(min_length=6, max_length=128)


class LoginRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    email: str = Field(max_length=255)
    password: str = Field(min_length=1, max_length=128)


class ProfileUpdate(BaseModel):
    """Request body for PUT /api/v1/users/me. Omitted fields stay unchanged.

    Changing the password requires current_password.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, min_length=3, max_length=50, pattern=USERNAME_PATTERN)
    email: Optional[str] = Field(default=None, max_length=255, pattern=EMAIL_PATTERN)
    password: Optional[str] = Field(default=None, min_length=6, max_length=128)
    current_password: Optional[str] = Field(default=None, max_length=128)


class UserResponse(BaseModel):
    """Public view of a user. hashed_password never leaves the server."""

    model_config = ConfigDict(frozen=True)

    id: int
    username: str
    email: str
    role: str
    is_active: bool
    last_login: Optional[str] = None
    created_at: str
    updated_at: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "UserResponse":
        return cls(
            id=user.id,
            username=user.username,
            email=user.email,
            role=user.role,
            is_active=user.is_active,
            last_login=user.last_login,
            created_at=user.created_at or "",
            updated_at=user.updated_at,
        )


class AuthResponse(BaseModel):
    """Response for register and login. The client stores `token` and sends
    it back as `Authorization: Bearer <token>`."""

    token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserResponse


# ---------------------------------------------------------------------------
# Tasks
# ---------------------------------------------------------------------------


class TaskCreate(BaseModel):
    """Request body for POST /api/v1/tasks."""

    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(min_length=1, max_length=100)
    description: Optional[str] = Field(default=None, max_length=5000)
    category: Optional[str] = Field(default=None, max_length=100)
    due_date: datetime


class TaskUpdate(TaskCreate):
    """Request body for PUT /api/v1/tasks/{id}.

    Full replacement of title, description, category and due_date.
    completed is only changed when supplied.
    """

    completed: Optional[bool] = None


class TaskStatusUpdate(BaseModel):
    completed: bool


class TaskResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    title: str
    description: Optional[str]
    category: Optional[str]
    due_date: str
    completed: bool
    completed_at: Optional[str]
    created_at: str
    updated_at: str

    @classmethod
    def from_task(cls, task: Task) -> "TaskResponse":
        return cls(
            id=task.id,
            title=task.title,
            description=task.description,
            category=task.category,
            due_date=task.due_date,
            completed=task.completed,
            completed_at=task.completed_at,
            created_at=task.created_at,
            updated_at=task.updated_at,
        )


class TaskStatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total: int
    completed: int
    pending: int
    overdue: int


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


class AdminUserCreate(RegisterRequest):
    """Request body for POST /api/v1/admin/users."""

    role: RoleEnum = RoleEnum.user


class UserStatusUpdate(BaseModel):
    """Request body for PATCH /api/v1/admin/users/{id}/status."""

    active: bool


class MonthCount(BaseModel):
    month: str
    count: int


class CategoryCount(BaseModel):
    category: str
    count: int


class AdminStatsResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    total_users: int
    active_users: int
    total_tasks: int
    completed_tasks: int
    user_registrations: list[MonthCount]
    task_categories: list[CategoryCount]


# ---------------------------------------------------------------------------
# Audit
# ---------------------------------------------------------------------------


class AuditEntryResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: int
    action: str
    user_id: Optional[int]
    ip_address: Optional[str]
    method: str
    path: str
    request_body: Any = None
    status_code: int
    created_at: str

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditEntryResponse":
        return cls(
            id=entry.id,
            action=entry.action,
            user_id=entry.user_id,
            ip_address=entry.ip_address,
            method=entry.method,
            path=entry.path,
            request_body=entry.request_body,
            status_code=entry.status_code,
            created_at=entry.created_at,
        )
