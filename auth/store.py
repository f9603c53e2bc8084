"""
auth/store.py -- SQLAlchemy Core persistence layer for user identities.

Pattern: Repository + Data Mapper (same as tasks/store.py and audit/store.py).
UserStore is the repository; _row_to_user is the mapper. Route and dependency
code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  username and email each carry a UNIQUE constraint. create_user() and
  update_user() surface a conflict as sqlalchemy.exc.IntegrityError; routes
  translate that into a 400.

Users are never hard-deleted -- deactivation flips is_active instead, so
audit entries and tasks always point at an existing row.

Timestamps are ISO 8601 UTC strings (core.db.now_iso). The month grouping
in registrations_by_month() slices the first seven characters.

Layer rule: no imports from api/, audit/, or tasks/.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, or_, select
from sqlalchemy.engine import Engine

from auth.models import User
from core.config import get_settings
from core.db import make_engine, now_iso

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(50), nullable=False, unique=True),
    Column("email", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("role", String(20), nullable=False, server_default="user"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

# Columns update_user() accepts. Anything else is a programming error.
_MUTABLE_FIELDS = frozenset({"username", "email", "hashed_password", "role", "is_active"})


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User identities.

    Usage:
        store = UserStore()
        store.create_user(User(username="admin", email="a@x.io", hashed_password=hash_password("secret")))
        user = store.get_by_email("a@x.io")
        store.close()
    """

    def __init__(self, db_url: str | None = None) -> None:
        self.engine: Engine = make_engine(db_url or get_settings().database_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_by_id(self, user_id: int) -> User | None:
        """Look up a user by primary key. Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_email(self, email: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.email == email)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_username(self, username: str) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def find_by_username_or_email(self, username: str, email: str) -> User | None:
        """Return any user holding either the username or the email.

        Registration and admin creation call this first so the common
        conflict case gets a friendly 400 before the INSERT is attempted.
        """
        with self.engine.connect() as conn:
            row = conn.execute(
                _users.select().where(or_(_users.c.username == username, _users.c.email == email)).limit(1)
            ).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users, newest first. Admin-only operation."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.created_at.desc(), _users.c.id.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def has_users(self) -> bool:
        return self.count_users() > 0

    def count_users(self, active_only: bool = False) -> int:
        stmt = select(func.count()).select_from(_users)
        if active_only:
            stmt = stmt.where(_users.c.is_active == 1)
        with self.engine.connect() as conn:
            return conn.execute(stmt).scalar() or 0

    def registrations_by_month(self, since: str) -> list[dict]:
        """Return [{"month": "YYYY-MM", "count": N}] for users created at or after `since`.

        `since` is an ISO 8601 timestamp. Months with no registrations are
        absent rather than zero-filled.
        """
        month = func.substr(_users.c.created_at, 1, 7).label("month")
        stmt = (
            select(month, func.count(_users.c.id).label("count"))
            .where(_users.c.created_at >= since)
            .group_by(month)
            .order_by(month)
        )
        with self.engine.connect() as conn:
            rows = conn.execute(stmt).fetchall()
        return [{"month": r.month, "count": int(r.count)} for r in rows]

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username or email is
        already taken (including a concurrent insert that won the race).
        """
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    email=user.email,
                    hashed_password=user.hashed_password,
                    role=user.role,
                    is_active=1 if user.is_active else 0,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user and bump updated_at.

        Accepted fields: username, email, hashed_password, role, is_active.
        is_active must be passed as bool; this method converts to int for SQLite.

        Returns True if a row was updated, False if user_id was not found.
        Raises IntegrityError when a new username/email collides.
        """
        unknown = set(fields) - _MUTABLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {sorted(unknown)!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> str:
        """Stamp the current UTC time as last_login and return it.

        Called by the login route only. Token verification on later requests
        never writes here.
        """
        stamp = now_iso()
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.id == user_id).values(last_login=stamp))
            conn.commit()
        return stamp

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        email=row.email,
        hashed_password=row.hashed_password,
        role=row.role,
        is_active=bool(row.is_active),
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
