"""
tests/test_auth_dependencies.py -- Unit tests for the credential verifier and access gate.

The verifier is exercised directly through verify_credentials() with a
MagicMock user store, so each test can assert whether the store was ever
consulted. Token-level failures (missing, malformed, wrong secret, expired)
must be rejected before any lookup.

Covers:
  - MissingToken for absent / non-Bearer / empty headers (401)
  - InvalidToken for garbage, wrong signature, expired, and id-less tokens (401)
  - UserNotFound (404) and AccountDeactivated (403) after a successful decode
  - Repeated verification of one token returns the same identity
  - authorize(): exact role match, mismatch, and missing identity
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from jose import jwt

from auth.dependencies import authorize, verify_credentials
from auth.errors import AccountDeactivated, Forbidden, InvalidToken, MissingToken, UserNotFound
from auth.models import ROLE_ADMIN, ROLE_USER, User
from auth.tokens import ALGORITHM, create_access_token, decode_access_token, hash_password, verify_password
from core.config import get_settings


def _user(user_id: int = 7, role: str = ROLE_USER, active: bool = True) -> User:
    return User(
        id=user_id,
        username=f"user{user_id}",
        email=f"user{user_id}@example.com",
        hashed_password="x",
        role=role,
        is_active=active,
    )


def _store_returning(user: User | None) -> MagicMock:
    store = MagicMock()
    store.get_by_id.return_value = user
    return store


def _signed(payload: dict, secret: str | None = None) -> str:
    return jwt.encode(payload, secret or get_settings().secret_key, algorithm=ALGORITHM)


class TestMissingToken:
    """Headers that do not carry a bearer token at all."""

    @pytest.mark.parametrize("header", [None, "", "Bearer", "Bearer ", "Basic abc123", "bearer abc", "Token abc"])
    def test_rejected_without_lookup(self, header) -> None:
        store = _store_returning(_user())
        with pytest.raises(MissingToken) as exc_info:
            verify_credentials(header, store)
        assert exc_info.value.status_code == 401
        store.get_by_id.assert_not_called()


class TestInvalidToken:
    """Tokens that fail signature, expiry, or shape checks -- never a lookup."""

    def test_garbage_token(self) -> None:
        store = _store_returning(_user())
        with pytest.raises(InvalidToken):
            verify_credentials("Bearer not.a.jwt", store)
        store.get_by_id.assert_not_called()

    def test_wrong_secret(self) -> None:
        store = _store_returning(_user())
        now = datetime.now(timezone.utc)
        token = _signed({"id": 7, "iat": now, "exp": now + timedelta(hours=1)}, secret="x" * 40)
        with pytest.raises(InvalidToken) as exc_info:
            verify_credentials(f"Bearer {token}", store)
        assert exc_info.value.status_code == 401
        store.get_by_id.assert_not_called()

    def test_expired(self) -> None:
        store = _store_returning(_user())
        past = datetime.now(timezone.utc) - timedelta(days=8)
        token = _signed({"id": 7, "iat": past, "exp": past + timedelta(days=7)})
        with pytest.raises(InvalidToken):
            verify_credentials(f"Bearer {token}", store)
        store.get_by_id.assert_not_called()

    @pytest.mark.parametrize("claim", [None, "7", True, 7.5])
    def test_unusable_id_claim(self, claim) -> None:
        store = _store_returning(_user())
        now = datetime.now(timezone.utc)
        payload = {"iat": now, "exp": now + timedelta(hours=1)}
        if claim is not None:
            payload["id"] = claim
        with pytest.raises(InvalidToken):
            verify_credentials(f"Bearer {_signed(payload)}", store)
        store.get_by_id.assert_not_called()

    @pytest.mark.parametrize("missing", ["exp", "iat"])
    def test_token_without_time_claims_rejected(self, missing: str) -> None:
        store = _store_returning(_user())
        now = datetime.now(timezone.utc)
        payload = {"id": 7, "iat": now, "exp": now + timedelta(hours=1)}
        del payload[missing]
        with pytest.raises(InvalidToken):
            verify_credentials(f"Bearer {_signed(payload)}", store)
        store.get_by_id.assert_not_called()

    def test_algorithm_none_rejected(self) -> None:
        # Header {"alg":"none"} with the signature stripped.
        token = _signed({"id": 7}).split(".")
        unsigned = "eyJhbGciOiJub25lIiwidHlwIjoiSldUIn0." + token[1] + "."
        assert decode_access_token(unsigned) is None


class TestIdentityResolution:
    """Token is genuine; the outcome depends on the stored identity."""

    def test_valid_token_returns_user(self) -> None:
        user = _user(user_id=7)
        store = _store_returning(user)
        result = verify_credentials(f"Bearer {create_access_token(7)}", store)
        assert result is user
        store.get_by_id.assert_called_once_with(7)

    def test_subject_missing(self) -> None:
        store = _store_returning(None)
        with pytest.raises(UserNotFound) as exc_info:
            verify_credentials(f"Bearer {create_access_token(99)}", store)
        assert exc_info.value.status_code == 404

    def test_subject_deactivated(self) -> None:
        store = _store_returning(_user(active=False))
        with pytest.raises(AccountDeactivated) as exc_info:
            verify_credentials(f"Bearer {create_access_token(7)}", store)
        assert exc_info.value.status_code == 403

    def test_verification_is_repeatable(self) -> None:
        """Same token twice -> same identity; the verifier writes nothing."""
        store = _store_returning(_user(user_id=7))
        header = f"Bearer {create_access_token(7)}"
        first = verify_credentials(header, store)
        second = verify_credentials(header, store)
        assert first.id == second.id == 7
        store.update_last_login.assert_not_called()
        store.update_user.assert_not_called()

    def test_token_carries_expiry_window(self) -> None:
        payload = decode_access_token(create_access_token(7))
        assert payload is not None
        assert payload["exp"] - payload["iat"] == get_settings().token_expire_seconds


class TestAccessGate:
    """authorize() compares roles exactly and fails closed."""

    def test_matching_role_passes(self) -> None:
        authorize(_user(role=ROLE_ADMIN), ROLE_ADMIN)
        authorize(_user(role=ROLE_USER), ROLE_USER)

    def test_mismatched_role_forbidden(self) -> None:
        with pytest.raises(Forbidden) as exc_info:
            authorize(_user(role=ROLE_USER), ROLE_ADMIN)
        assert exc_info.value.status_code == 403
        assert "admin" in exc_info.value.message

    def test_admin_is_not_a_superset_of_user(self) -> None:
        with pytest.raises(Forbidden):
            authorize(_user(role=ROLE_ADMIN), ROLE_USER)

    def test_missing_identity_denied(self) -> None:
        with pytest.raises(Forbidden):
            authorize(None, ROLE_ADMIN)


class TestPasswords:
    def test_hash_and_verify(self) -> None:
        hashed = hash_password("correct horse")
        assert hashed != "correct horse"
        assert verify_password("correct horse", hashed)
        assert not verify_password("wrong horse", hashed)

    def test_malformed_hash_is_a_mismatch(self) -> None:
        assert verify_password("anything", "not-a-bcrypt-hash") is False
