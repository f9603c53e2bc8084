"""
tests/conftest.py -- Shared test fixtures for TaskDesk integration tests.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for users, tasks, audit
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_env: TestClient plus an admin and a regular user with ready-made JWTs
  - auth_header(): Authorization header helper

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker thread.
The named URI format (file:name?mode=memory&cache=shared&uri=true) shares
one in-memory instance across all connections in the same process.

The environment must be set before any api/auth/core import:
  DEBUG             -- get_settings() auto-generates SECRET_KEY instead of raising
  ALLOWED_HOSTS     -- TestClient sends Host: testserver
  LOGIN_RATE_LIMIT  -- every module logs in repeatedly from the same client IP
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass

# CRITICAL: Set these before any auth/core import so get_settings() sees them.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from audit.store import AuditStore
from auth.models import ROLE_ADMIN, ROLE_USER, User
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from tasks.store import TaskStore

ADMIN_PASSWORD = "adminpass123"
USER_PASSWORD = "alicepass123"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _memory_url(name: str) -> str:
    return f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true"


def _make_test_stores(db_suffix: str) -> tuple[UserStore, TaskStore, AuditStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB names so test modules
                   don't share state (usually the test module name).
    """
    user_store = UserStore(db_url=_memory_url(f"test_users_{db_suffix}"))
    task_store = TaskStore(db_url=_memory_url(f"test_tasks_{db_suffix}"))
    audit_store = AuditStore(db_url=_memory_url(f"test_audit_{db_suffix}"))
    return user_store, task_store, audit_store


def _patch_lifespan(user_store: UserStore, task_store: TaskStore, audit_store: AuditStore):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the configured DATABASE_URL.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.task_store = task_store
        app.state.audit_store = audit_store
        yield

    return test_lifespan


def auth_header(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Module-scoped fixture -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@dataclass
class ApiEnv:
    client: TestClient
    user_store: UserStore
    task_store: TaskStore
    audit_store: AuditStore
    admin_id: int
    admin_token: str
    user_id: int
    user_token: str


@pytest.fixture(scope="module")
def api_env(request) -> Generator[ApiEnv, None, None]:
    """Yield an ApiEnv for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    One admin ("admin") and one regular user ("alice") exist before the
    client starts; tests that need more accounts create their own.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    user_store, task_store, audit_store = _make_test_stores(suffix)

    admin_id = user_store.create_user(
        User(
            username="admin",
            email="admin@example.com",
            hashed_password=hash_password(ADMIN_PASSWORD),
            role=ROLE_ADMIN,
        )
    )
    user_id = user_store.create_user(
        User(
            username="alice",
            email="alice@example.com",
            hashed_password=hash_password(USER_PASSWORD),
            role=ROLE_USER,
        )
    )

    app.router.lifespan_context = _patch_lifespan(user_store, task_store, audit_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield ApiEnv(
            client=client,
            user_store=user_store,
            task_store=task_store,
            audit_store=audit_store,
            admin_id=admin_id,
            admin_token=create_access_token(admin_id, expire_seconds=3600),
            user_id=user_id,
            user_token=create_access_token(user_id, expire_seconds=3600),
        )

    audit_store.close()
    task_store.close()
    user_store.close()


def make_user(store: UserStore, username: str, *, role: str = ROLE_USER, active: bool = True) -> tuple[int, str]:
    """Create an extra account and return (user_id, token)."""
    uid = store.create_user(
        User(
            username=username,
            email=f"{username}@example.com",
            hashed_password=hash_password("extrapass123"),
            role=role,
            is_active=active,
        )
    )
    return uid, create_access_token(uid, expire_seconds=3600)
