"""
api/routes/v1/users.py -- The authenticated user's own profile.

Routes:
  GET /api/v1/users/me  -- current profile
  PUT /api/v1/users/me  -- change username, email and/or password (audited: update_profile)

A password change requires the current password even though the caller
already holds a valid token: a token lifted from a shared machine must not be
enough to lock the owner out.
"""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.exc import IntegrityError

from api.models import ProfileUpdate, UserResponse
from audit.interceptor import AuditedRoute, audited
from auth.dependencies import get_current_user
from auth.models import User
from auth.store import UserStore
from auth.tokens import hash_password, verify_password

# Auth policy:
# - every route requires auth (router-level get_current_user)
router = APIRouter(route_class=AuditedRoute, dependencies=[Depends(get_current_user)])


@router.get("/users/me", response_model=UserResponse)
def get_profile(current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.from_user(current_user)


@router.put("/users/me", response_model=UserResponse)
@audited("update_profile")
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    """Update the caller's own profile. Omitted fields stay unchanged."""
    user_store: UserStore = request.app.state.user_store
    updates: dict = {}

    if body.username is not None and body.username != current_user.username:
        if user_store.get_by_username(body.username) is not None:
            raise HTTPException(
                status_code=400,
                detail={"code": "username_taken", "message": "Username is already taken."},
            )
        updates["username"] = body.username

    if body.email is not None and body.email != current_user.email:
        if user_store.get_by_email(body.email) is not None:
            raise HTTPException(
                status_code=400,
                detail={"code": "email_taken", "message": "Email is already registered."},
            )
        updates["email"] = body.email

    if body.password is not None:
        if not body.current_password or not verify_password(body.current_password, current_user.hashed_password):
            raise HTTPException(
                status_code=400,
                detail={"code": "bad_current_password", "message": "Current password is incorrect."},
            )
        updates["hashed_password"] = hash_password(body.password)

    if not updates:
        raise HTTPException(
            status_code=400,
            detail={"code": "no_changes", "message": "No fields to update."},
        )

    try:
        user_store.update_user(current_user.id, **updates)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=400,
            detail={"code": "user_exists", "message": "Username or email is already taken."},
        ) from exc

    return UserResponse.from_user(user_store.get_by_id(current_user.id))
