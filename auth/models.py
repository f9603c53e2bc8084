"""
auth/models.py -- Domain dataclass for the authenticated identity.

Pattern: Data class (pure data container, zero logic). Mirrors the approach
in tasks/models.py and audit/models.py -- dataclasses own domain shape; stores
and routes do the work.

Layer rule: no imports from api/, audit/, or tasks/.
"""

from __future__ import annotations

from dataclasses import dataclass

ROLE_USER = "user"
ROLE_ADMIN = "admin"


@dataclass
class User:
    """A registered account with a role and an active flag.

    username and email are each unique across all users; the store enforces
    both with UNIQUE constraints. last_login is only stamped by an explicit
    login -- verifying a token on a later request never touches it.

    id is None before the record is written to the database.
    """

    username: str
    email: str
    hashed_password: str
    role: str = ROLE_USER  # "user" | "admin"
    id: int | None = None
    is_active: bool = True
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
