"""
tests/conftest.py -- Shared test fixtures for pcvisor integration tests.

This module provides:
  - _make_test_stores(): builds every store on one isolated in-memory DB
  - _patch_lifespan(): wires test stores and services into app.state, bypassing real startup
  - api_client: TestClient with a master-admin JWT for API integration tests
  - auth_headers(): Authorization header helper

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format (file:name?mode=memory&cache=shared&uri=true)
shares one in-memory instance across all connections in the same process.

Environment variables must be set before any pcvisor import: get_settings()
is cached on first call and several modules read it at import time.
"""

from __future__ import annotations

import os
import tempfile
from collections.abc import Generator
from contextlib import asynccontextmanager
from types import SimpleNamespace

# CRITICAL: Set these before any auth/core import so get_settings() sees them.
_TMP = tempfile.mkdtemp(prefix="pcvisor-tests-")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("LICENSE_SECRET", "test-license-secret")
os.environ.setdefault("LICENSE_INSTANCE_FILE", os.path.join(_TMP, "license-instance-id"))
os.environ.setdefault("BACKUP_DIR", os.path.join(_TMP, "backups"))
os.environ.setdefault("UPLOAD_DIR", os.path.join(_TMP, "uploads"))
os.environ.setdefault("DATABASE_URL", f"sqlite:///{os.path.join(_TMP, 'pcvisor.db')}")

import pytest
from fastapi.testclient import TestClient

from admin.store import SettingsStore
from api.main import app
from audit.store import AuditStore
from auth.models import User
from auth.sessions import MemorySessionStore
from auth.store import UserStore
from auth.tokens import create_access_token, hash_password
from backups.query import QueryConsole
from backups.scheduler import BackupScheduler
from backups.service import BackupService
from backups.store import BackupStore
from epm.store import EpmStore
from licensing.store import LicenseStore
from notifications.push import PushService
from notifications.store import NotificationStore

ADMIN_PASSWORD = "Testpass123!"
TEST_VAPID_SUBJECT = "mailto:test@example.com"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def memory_db_url(name: str) -> str:
    return f"sqlite:///file:test_{name}?mode=memory&cache=shared&uri=true"


def _make_test_stores(db_suffix: str) -> SimpleNamespace:
    """Create every store against one named shared-memory SQLite DB.

    All stores share the DB so the query console can see the other tables,
    exactly like a single DATABASE_URL in production.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'auth').
    """
    url = memory_db_url(db_suffix)
    stores = SimpleNamespace(
        url=url,
        user_store=UserStore(url),
        audit_store=AuditStore(url),
        settings_store=SettingsStore(url),
        license_store=LicenseStore(url),
        backup_store=BackupStore(url),
        notification_store=NotificationStore(url),
        epm_store=EpmStore(url),
    )
    stores.backup_dir = tempfile.mkdtemp(prefix=f"backups-{db_suffix}-", dir=_TMP)
    return stores


def _close_stores(stores: SimpleNamespace) -> None:
    for name in (
        "epm_store",
        "notification_store",
        "backup_store",
        "license_store",
        "settings_store",
        "audit_store",
        "user_store",
    ):
        getattr(stores, name).close()


def _patch_lifespan(stores: SimpleNamespace, push_configured: bool = True):
    """Return an async context manager that replaces the real lifespan.

    Wires pre-created test stores into app.state so TestClient routes see
    isolated test DBs rather than the production database. Push uses dummy
    VAPID keys; tests that send pushes patch notifications.push.webpush.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = stores.user_store
        app.state.audit_store = stores.audit_store
        app.state.settings_store = stores.settings_store
        app.state.license_store = stores.license_store
        app.state.backup_store = stores.backup_store
        app.state.notification_store = stores.notification_store
        app.state.epm_store = stores.epm_store
        app.state.session_store = MemorySessionStore(3600)
        app.state.push_service = PushService(
            stores.notification_store,
            "test-public-key" if push_configured else "",
            "test-private-key" if push_configured else "",
            TEST_VAPID_SUBJECT,
        )
        app.state.backup_service = BackupService(
            stores.backup_store,
            stores.audit_store,
            stores.url,
            stores.backup_dir,
        )
        app.state.query_console = QueryConsole(stores.backup_store, stores.audit_store)
        app.state.backup_scheduler = BackupScheduler(app.state.backup_service, stores.backup_store)
        yield
        await app.state.backup_scheduler.shutdown()
        app.state.session_store.close()

    return test_lifespan


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def create_user(user_store: UserStore, username: str, password: str = ADMIN_PASSWORD, **fields) -> int:
    return user_store.create_user(User(username=username, hashed_password=hash_password(password), **fields))


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def stores(request) -> Generator[SimpleNamespace, None, None]:
    """Fresh stores for store-level unit tests, one DB per test function."""
    s = _make_test_stores(f"unit_{request.node.name}")
    yield s
    _close_stores(s)


@pytest.fixture(scope="module")
def api_client(request) -> Generator[tuple[TestClient, str, int], None, None]:
    """Yield (client, token, user_id) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use isolated in-memory stores.
    The user is the master admin ("admin", is_system), so license gating
    never blocks it. The JWT is generated for use in Authorization headers.
    """
    suffix = request.module.__name__.rsplit(".", 1)[-1]
    s = _make_test_stores(f"api_{suffix}")

    uid = create_user(s.user_store, "admin", full_name="System Administrator", is_system=True)
    token = create_access_token(user_id=uid, username="admin", expire_seconds=3600)

    app.router.lifespan_context = _patch_lifespan(s)

    with TestClient(app, raise_server_exceptions=True) as client:
        client.stores = s
        yield client, token, uid

    _close_stores(s)
