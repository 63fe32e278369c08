"""
auth/tokens.py -- JWT, password hashing, and API key utilities.

Security design decisions:
  JWT: python-jose with HS256. Tokens are signed with SESSION_SECRET and carry
       user_id, username, and expiry. Verification returns None on any
       failure -- route layer turns that into a 401. Bearer tokens exist for
       non-browser clients; the SPA uses the pcvisor.sid session cookie.

  Passwords: bcrypt directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether a username exists [C1].

  API keys: secrets.token_hex(32) gives 256 bits of entropy. We store
       HMAC-SHA256(SESSION_SECRET, raw_key) so lookup is O(1); bcrypt's
       intentional slowness is unnecessary for high-entropy secrets.

Layer rule: no imports from api/. Import from core/ is allowed.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("pcvisor.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

API_KEY_PREFIX = "pcv_"

# ---------------------------------------------------------------------------
# Password hashing (bcrypt -- direct usage, no passlib wrapper)
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    Passwords longer than 72 bytes are truncated by bcrypt. The API layer
    caps password fields at 255 characters.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        # Malformed hash in the DB -- treat as a failed match.
        return False


# Timing equalization dummy hash [C1]. Computed once at module load so the
# first login attempt is not measurably slower than subsequent ones.
_DUMMY_HASH: str = hash_password("pcvisor_timing_dummy")


# ---------------------------------------------------------------------------
# JWT encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, username: str, expire_seconds: int = 0) -> str:
    """Encode a signed JWT with user identity and configurable expiry.

    Args:
        user_id:        Numeric user ID stored in the DB.
        username:       Username stored as the JWT subject claim.
        expire_seconds: Token lifetime. 0 (default) uses Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": username,
        "user_id": user_id,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.session_secret, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a JWT. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.session_secret, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# User authentication (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, username: str, password: str) -> tuple[User | None, bool]:
    """Look up username and check password with timing equalization.

    Always runs bcrypt whether or not the user exists, so an attacker cannot
    enumerate usernames by measuring response time.

    Returns (user, password_ok). user is None when the username is unknown.
    The caller needs the user even on a bad password to count the failure
    toward account lockout. Active / locked checks are the caller's job.
    """
    user = store.get_by_username(username)
    if user is None or not user.hashed_password:
        # Equalize timing -- do NOT return early before running bcrypt [C1]
        verify_password(password, _DUMMY_HASH)
        return user, False
    return user, verify_password(password, user.hashed_password)


# ---------------------------------------------------------------------------
# API key generation and hashing
# ---------------------------------------------------------------------------


def generate_api_key() -> str:
    """Generate a new API key in the format: pcv_<64 hex chars>."""
    return f"{API_KEY_PREFIX}{secrets.token_hex(32)}"


def hash_api_key(raw_key: str) -> str:
    """Return HMAC-SHA256(SESSION_SECRET, raw_key) as a hex string.

    An attacker who obtains the DB cannot reverse keys without also knowing
    SESSION_SECRET. The hash is deterministic, enabling O(1) lookup.
    """
    return hmac.new(
        _settings.session_secret.encode(),
        raw_key.encode(),
        hashlib.sha256,
    ).hexdigest()
