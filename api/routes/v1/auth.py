"""
api/routes/v1/auth.py -- Registration and login endpoints.

Routes:
  POST /api/v1/auth/register  -- create a "user" account; returns token + user
  POST /api/v1/auth/login     -- email/password login; returns token + user
  POST /api/v1/auth/logout    -- acknowledgement only; the client discards its token

Security:
  register and login are rate-limited per IP (LOGIN_RATE_LIMIT, default 10/minute).
  authenticate_user() provides timing equalization -- use it, never inline
  get_by_email() + verify_password().
  Wrong email and wrong password return the same 401 so the response does not
  reveal which emails are registered. A deactivated account is only reported
  (403) after the password has been proven.
  Cache-Control: no-store on every response carrying a token.

Tokens are stateless. Logout cannot invalidate a token server-side; it stays
valid until it expires.
"""

from __future__ import annotations

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.limiter import limiter, login_rate_limit
from api.models import AuthResponse, ErrorResponse, LoginRequest, MessageResponse, RegisterRequest, UserResponse
from auth.errors import AccountDeactivated
from auth.models import ROLE_USER, User
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token, hash_password
from core.config import get_settings

# Auth policy:
# - POST /api/v1/auth/register: public -- account creation
# - POST /api/v1/auth/login:    public -- login endpoint must be unauthenticated
# - POST /api/v1/auth/logout:   public -- nothing server-side to clear
router = APIRouter()


def _token_response(user: User, status_code: int) -> JSONResponse:
    token = create_access_token(user.id)
    resp = JSONResponse(
        status_code=status_code,
        content=AuthResponse(
            token=token,
            expires_in=get_settings().token_expire_seconds,
            user=UserResponse.from_user(user),
        ).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"
    return resp


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/register", response_model=AuthResponse, status_code=201)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create a regular user account and log it in.

    The pre-check gives the common duplicate case a clean 400; the
    IntegrityError branch covers a concurrent registration that slipped in
    between the check and the INSERT.
    """
    user_store: UserStore = request.app.state.user_store

    if user_store.find_by_username_or_email(body.username, body.email) is not None:
        raise HTTPException(
            status_code=400,
            detail={"code": "user_exists", "message": "User already exists."},
        )

    new_user = User(
        username=body.username,
        email=body.email,
        hashed_password=hash_password(body.password),
        role=ROLE_USER,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "user_exists", "message": "User already exists."},
        ) from exc

    created = user_store.get_by_id(user_id)
    return _token_response(created, status_code=201)


@limiter.limit(login_rate_limit)
@router.post("/auth/login", response_model=AuthResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with email and password; stamp last_login; return a token."""
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.email, body.password)
    if user is None:
        resp = JSONResponse(
            status_code=401,
            content=ErrorResponse(message="Invalid credentials.", code="bad_credentials").model_dump(),
        )
        resp.headers["Cache-Control"] = "no-store"
        return resp
    if not user.is_active:
        raise AccountDeactivated()

    user.last_login = user_store.update_last_login(user.id)
    return _token_response(user, status_code=200)


@router.post("/auth/logout", response_model=MessageResponse)
async def logout() -> MessageResponse:
    """Acknowledge logout. The token itself remains valid until it expires."""
    return MessageResponse(message="Logged out.")
