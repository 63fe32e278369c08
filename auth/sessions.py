"""
auth/sessions.py -- Server-side session stores for the pcvisor.sid cookie.

The browser only ever holds an opaque random session id. Session data
(the authenticated user id) lives server-side, either in Redis when
REDIS_URL is configured or in a process-local dict otherwise.

Both stores implement the same small interface:
    create(data) -> sid
    get(sid) -> dict | None
    delete(sid)
    close()

Security:
  Session ids are secrets.token_urlsafe(32) -- 256 bits, unguessable.
  Cookies are httpOnly, SameSite=Lax, and Secure when SECURE_COOKIES=true.
  Logout deletes the server-side record, so a stolen cookie stops working
  immediately.
"""

from __future__ import annotations

import json
import logging
import secrets
import threading
import time

import redis

logger = logging.getLogger("pcvisor.sessions")

_KEY_PREFIX = "pcvisor:sess:"


def new_session_id() -> str:
    return secrets.token_urlsafe(32)


class MemorySessionStore:
    """Process-local session store. Sessions are lost on restart.

    Expired entries are dropped lazily on read and swept on every create so
    the dict cannot grow without bound.
    """

    def __init__(self, ttl_seconds: int) -> None:
        self.ttl_seconds = ttl_seconds
        self._data: dict[str, tuple[float, dict]] = {}
        self._lock = threading.Lock()

    def create(self, data: dict) -> str:
        sid = new_session_id()
        now = time.monotonic()
        with self._lock:
            self._sweep(now)
            self._data[sid] = (now + self.ttl_seconds, dict(data))
        return sid

    def get(self, sid: str) -> dict | None:
        with self._lock:
            entry = self._data.get(sid)
            if entry is None:
                return None
            expires_at, data = entry
            if expires_at <= time.monotonic():
                del self._data[sid]
                return None
            return dict(data)

    def delete(self, sid: str) -> None:
        with self._lock:
            self._data.pop(sid, None)

    def _sweep(self, now: float) -> None:
        expired = [sid for sid, (expires_at, _) in self._data.items() if expires_at <= now]
        for sid in expired:
            del self._data[sid]

    def close(self) -> None:
        with self._lock:
            self._data.clear()


class RedisSessionStore:
    """Redis-backed session store. Sessions survive restarts and are shared
    across worker processes. Redis enforces expiry via SETEX.
    """

    def __init__(self, redis_url: str, ttl_seconds: int) -> None:
        self.ttl_seconds = ttl_seconds
        self.redis = redis.from_url(redis_url, decode_responses=True)

    def create(self, data: dict) -> str:
        sid = new_session_id()
        self.redis.setex(_KEY_PREFIX + sid, self.ttl_seconds, json.dumps(data))
        return sid

    def get(self, sid: str) -> dict | None:
        raw = self.redis.get(_KEY_PREFIX + sid)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("Discarding corrupt session record")
            self.delete(sid)
            return None

    def delete(self, sid: str) -> None:
        self.redis.delete(_KEY_PREFIX + sid)

    def close(self) -> None:
        self.redis.close()


def build_session_store(redis_url: str, ttl_seconds: int) -> MemorySessionStore | RedisSessionStore:
    """Return a RedisSessionStore when redis_url is set, else a MemorySessionStore."""
    if redis_url:
        logger.info("Using Redis session store")
        return RedisSessionStore(redis_url, ttl_seconds)
    logger.info("Using in-memory session store (sessions will not survive restart)")
    return MemorySessionStore(ttl_seconds)


def set_session_cookie(response, sid: str, cookie_name: str, max_age: int, secure: bool) -> None:
    """Write the session id as an httpOnly cookie on the response.

    samesite="lax": cookie sent on same-site navigations but not on
        cross-site POST -- CSRF mitigation for most cases.
    """
    response.set_cookie(
        cookie_name,
        value=sid,
        httponly=True,
        samesite="lax",
        secure=secure,
        max_age=max_age,
    )
