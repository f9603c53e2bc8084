"""
tests/test_config.py -- Settings validation and first-admin bootstrap.

Settings is constructed directly (never via get_settings()) so the cached
singleton the app was built with is left alone.
"""

from __future__ import annotations

import itertools

import pytest
from pydantic import ValidationError

from api.main import bootstrap_admin
from auth.models import ROLE_ADMIN
from auth.store import UserStore
from auth.tokens import verify_password
from conftest import _memory_url, make_user
from core.config import Settings

_counter = itertools.count()


@pytest.fixture
def empty_store():
    store = UserStore(_memory_url(f"bootstrap_{next(_counter)}"))
    yield store
    store.close()


class TestSecretKey:
    def test_debug_generates_key(self) -> None:
        settings = Settings(debug=True, secret_key="")
        assert len(settings.secret_key) >= 32

    def test_production_requires_key(self) -> None:
        with pytest.raises(ValidationError, match="SECRET_KEY is required"):
            Settings(debug=False, secret_key="")

    def test_short_key_rejected(self) -> None:
        with pytest.raises(ValidationError, match="at least 32 characters"):
            Settings(debug=True, secret_key="too-short")

    def test_explicit_key_kept(self) -> None:
        key = "k" * 48
        assert Settings(debug=False, secret_key=key).secret_key == key

    def test_defaults(self) -> None:
        settings = Settings(debug=True, secret_key="k" * 32, login_rate_limit="10/minute")
        assert settings.token_expire_seconds == 7 * 24 * 3600
        assert settings.login_rate_limit == "10/minute"


class TestBootstrapAdmin:
    def _settings(self, **overrides) -> Settings:
        values = {
            "debug": True,
            "secret_key": "k" * 32,
            "bootstrap_admin_username": "root",
            "bootstrap_admin_email": "root@example.com",
            "bootstrap_admin_password": "rootpass123",
        }
        values.update(overrides)
        return Settings(**values)

    def test_creates_admin_on_empty_store(self, empty_store: UserStore) -> None:
        uid = bootstrap_admin(empty_store, self._settings())
        admin = empty_store.get_by_id(uid)
        assert admin.role == ROLE_ADMIN
        assert admin.email == "root@example.com"
        assert verify_password("rootpass123", admin.hashed_password)

    def test_skipped_when_users_exist(self, empty_store: UserStore) -> None:
        make_user(empty_store, "existing")
        assert bootstrap_admin(empty_store, self._settings()) is None
        assert empty_store.get_by_username("root") is None

    def test_skipped_without_password(self, empty_store: UserStore) -> None:
        assert bootstrap_admin(empty_store, self._settings(bootstrap_admin_password="")) is None
        assert not empty_store.has_users()

    def test_skipped_without_email(self, empty_store: UserStore) -> None:
        assert bootstrap_admin(empty_store, self._settings(bootstrap_admin_email="")) is None
        assert not empty_store.has_users()
