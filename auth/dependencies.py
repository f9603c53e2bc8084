"""
auth/dependencies.py -- Credential verifier and access gate as FastAPI dependencies.

Request chain:
  1. verify_credentials() -- Authorization: Bearer <token> -> User, or an AuthError.
  2. authorize()          -- exact role comparison on the verified User.

Both steps fail fast by raising an AuthError subclass (auth/errors.py). The
exception handler in api/main.py renders it as {"message", "code"} with the
status the subclass carries, so no failure here ever becomes a 500.

Ordering guarantees:
  - The token signature and expiry are checked before the user store is
    touched. A forged or expired token never costs a DB lookup.
  - require_role() depends on get_current_user(), so FastAPI always resolves
    the identity before the gate runs. FastAPI caches a dependency per
    request, so a router-level Depends(get_current_user) plus require_admin
    on the same route still verifies once.

Role policy lives here; business preconditions (e.g. an admin may not
deactivate their own account) live in the route that performs the mutation.

Layer rule: no imports from api/, audit/, or tasks/.
  auth/dependencies.py may import from fastapi (for Depends/Request) because
  this module is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import TYPE_CHECKING

from fastapi import Depends, Request

from auth.errors import AccountDeactivated, Forbidden, InvalidToken, MissingToken, UserNotFound
from auth.models import ROLE_ADMIN, User
from auth.tokens import decode_access_token

if TYPE_CHECKING:
    from auth.store import UserStore

logger = logging.getLogger("taskdesk.auth")

_BEARER_PREFIX = "Bearer "


# ---------------------------------------------------------------------------
# Credential verifier
# ---------------------------------------------------------------------------


def _extract_bearer_token(authorization: str | None) -> str:
    """Return the token from a `Bearer <token>` header value or raise MissingToken."""
    if not authorization or not authorization.startswith(_BEARER_PREFIX):
        raise MissingToken()
    token = authorization[len(_BEARER_PREFIX) :].strip()
    if not token or " " in token:
        raise MissingToken()
    return token


def verify_credentials(authorization: str | None, store: UserStore) -> User:
    """Resolve a raw Authorization header value to an active User.

    Raises:
        MissingToken:       header absent or not `Bearer <token>`           (401)
        InvalidToken:       bad signature, expired, malformed, no id claim  (401)
        UserNotFound:       token is valid but its subject no longer exists (404)
        AccountDeactivated: subject exists but is_active is False           (403)

    Pure with respect to session state: calling it twice with the same valid
    token returns the same identity and writes nothing.
    """
    token = _extract_bearer_token(authorization)

    payload = decode_access_token(token)
    if payload is None:
        raise InvalidToken()

    user = store.get_by_id(payload["id"])
    if user is None:
        logger.warning("Token subject %s not found", payload["id"])
        raise UserNotFound()
    if not user.is_active:
        logger.info("Rejected token for deactivated user %s", user.id)
        raise AccountDeactivated()
    return user


def get_current_user(request: Request) -> User:
    """Require a valid bearer token. Attaches the identity to request.state.user.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...

    request.state.user is what the audit interceptor reads to attribute an
    entry to its subject.
    """
    user_store: UserStore = request.app.state.user_store
    user = verify_credentials(request.headers.get("Authorization"), user_store)
    request.state.user = user
    return user


# ---------------------------------------------------------------------------
# Access gate
# ---------------------------------------------------------------------------


def authorize(user: User | None, required_role: str) -> None:
    """Raise Forbidden unless user.role == required_role.

    No role hierarchy: the comparison is exact. A missing identity means the
    gate was wired without the verifier in front of it -- that is denied
    rather than waved through.
    """
    if user is None:
        logger.error("Access gate reached without a verified identity (required role %r)", required_role)
        raise Forbidden("Access denied.")
    if user.role != required_role:
        raise Forbidden(f"Access denied, {required_role} privileges required.")


def require_role(role: str) -> Callable[..., User]:
    """Build a dependency that verifies the caller and then requires `role`.

    Use as a FastAPI dependency:
        @router.post("/admin-only")
        async def route(user: User = Depends(require_role("admin"))): ...
    """

    def role_dependency(request: Request, user: User = Depends(get_current_user)) -> User:
        authorize(getattr(request.state, "user", None), role)
        return user

    role_dependency.__name__ = f"require_{role}"
    return role_dependency


require_admin = require_role(ROLE_ADMIN)
