"""
auth/errors.py -- Failure taxonomy for the credential verifier and access gate.

Every AuthError is terminal for the current request: it is never retried and
carries the HTTP status, machine-readable code, and human-readable message the
client receives. api/main.py registers one exception handler that renders
these into the standard error envelope, so neither the verifier nor the gate
lets a failure reach the generic 500 handler.

Layer rule: no imports from api/, audit/, or tasks/.
"""

from __future__ import annotations


class AuthError(Exception):
    """Base class for authentication and authorization failures."""

    status_code: int = 401
    code: str = "unauthorized"
    message: str = "Authentication required."

    def __init__(self, message: str | None = None) -> None:
        if message is not None:
            self.message = message
        super().__init__(self.message)


class MissingToken(AuthError):
    """Authorization header absent or not of the form `Bearer <token>`."""

    status_code = 401
    code = "missing_token"
    message = "No token provided, authorization denied."


class InvalidToken(AuthError):
    """Bad signature, expired, malformed, or missing the subject claim."""

    status_code = 401
    code = "invalid_token"
    message = "Token is not valid."


class UserNotFound(AuthError):
    """Token verified but its subject no longer exists."""

    status_code = 404
    code = "user_not_found"
    message = "User not found."


class AccountDeactivated(AuthError):
    status_code = 403
    code = "account_deactivated"
    message = "Account is deactivated, please contact an administrator."


class Forbidden(AuthError):
    """Identity resolved but its role does not match the route's required role."""

    status_code = 403
    code = "forbidden"
    message = "Access denied, admin privileges required."
