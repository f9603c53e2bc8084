"""
auth/tokens.py -- JWT session tokens and password hashing.

Security design decisions:
  JWT: python-jose with HS256 only. Tokens are signed with SECRET_KEY and
       carry the user id plus issued-at and expiry. The algorithm list passed
       to decode() is pinned so a token claiming "none" or RS256 is rejected.
       Verification returns None on any failure -- the credential verifier
       turns that into InvalidToken (401).

       Tokens are stateless. Nothing is stored server-side, so a token stays
       valid until it expires (7 days by default) even after logout.

  Passwords: bcrypt directly (no passlib wrapper). The _DUMMY_HASH constant
       enables timing equalization in authenticate_user() so response time
       does not reveal whether an email is registered.

  SECRET_KEY: sourced from core.config.get_settings(), which validates it at
       startup (see core/config.py).

Layer rule: no imports from api/, audit/, or tasks/. Import from core/ is
allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import ExpiredSignatureError, JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("taskdesk.auth")

# ---------------------------------------------------------------------------
# Config -- read once at module load via the lru_cache singleton
# ---------------------------------------------------------------------------

_settings = get_settings()

ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


_BCRYPT_MAX_BYTES = 72


def _password_bytes(plain: str) -> bytes:
    # bcrypt only reads the first 72 bytes; recent releases raise instead of
    # truncating, so truncate explicitly on both the hash and verify paths.
    return plain.encode("utf-8")[:_BCRYPT_MAX_BYTES]


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password."""
    return bcrypt.hashpw(_password_bytes(plain), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(_password_bytes(plain), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB; treat as a mismatch.
        return False


# Computed once at module load so the first login attempt is not measurably
# slower than subsequent ones.
_DUMMY_HASH: str = hash_password("taskdesk_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, expire_seconds: int = 0) -> str:
    """Encode a signed JWT for the given user.

    Args:
        user_id:        Numeric user ID stored in the DB. Carried as the "id" claim.
        expire_seconds: Validity window in seconds. If 0 (default), uses
                        Settings.token_expire_seconds (7 days).
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    now = datetime.now(timezone.utc)
    payload = {
        "id": user_id,
        "iat": now,
        "exp": now + timedelta(seconds=duration),
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure.

    Signature and expiry are both checked by jose, and a token without an
    exp or iat claim is rejected outright. A payload without an
    integer "id" claim is rejected too, so callers can index payload["id"]
    without further checks.
    """
    try:
        payload = jwt.decode(
            token,
            _settings.secret_key,
            algorithms=[ALGORITHM],
            options={"require_exp": True, "require_iat": True},
        )
    except ExpiredSignatureError:
        logger.info("Rejected expired token")
        return None
    except JWTError as exc:
        logger.warning("Rejected invalid token: %s", exc)
        return None
    user_id = payload.get("id")
    if not isinstance(user_id, int) or isinstance(user_id, bool):
        logger.warning("Rejected token without a usable id claim")
        return None
    return payload


# ---------------------------------------------------------------------------
# Login (constant-time)
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, email: str, password: str) -> User | None:
    """Check an email/password pair with timing equalization.

    Always runs bcrypt whether or not the email exists:
    - Unknown email: bcrypt runs against _DUMMY_HASH (same cost as real check)
    - Wrong password: bcrypt runs against the real hash (same cost)

    Returns the User when the credentials match, None otherwise. The active
    flag is NOT checked here: the login route reports a deactivated account
    with its own 403, and only to a caller who proved the password.
    """
    user = store.get_by_email(email)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    return user
