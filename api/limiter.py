"""
api/limiter.py -- Shared slowapi rate limiter instance.

Imported by api/main.py (mounted as middleware via app.state.limiter) and
api/routes/auth.py (per-route limits on /auth/login and /auth/mfa/verify).

A single shared instance keeps one counter store for every route. Counters
are per client IP; behind a proxy set TRUST_PROXY so the IP is the caller's,
not the proxy's.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")
