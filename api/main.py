"""
api/main.py -- FastAPI application entry point for pcvisor.

Run with:  uvicorn asgi:app --reload
           python main.py serve

Middleware stack (outermost to innermost):
  1. ProxyHeadersMiddleware -- only when TRUST_PROXY; real client IP from X-Forwarded-For
  2. TrustedHostMiddleware  -- rejects requests with unexpected Host headers
  3. CORSMiddleware         -- adds CORS headers for allowed browser origins
  4. SlowAPIMiddleware      -- enforces per-route rate limits from api.limiter

Lifespan opens every store and service on startup and closes them in reverse
order on shutdown. The backup scheduler is armed last because it reads
schedules from the backup store and runs backups through the backup service.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from sqlalchemy import text
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from uvicorn.middleware.proxy_headers import ProxyHeadersMiddleware

from admin.store import SettingsStore
from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.audit_logs import router as audit_logs_router
from api.routes.auth import router as auth_router
from api.routes.database import router as database_router
from api.routes.epm import router as epm_router
from api.routes.license import router as license_router
from api.routes.notifications import router as notifications_router
from api.routes.push import router as push_router
from api.routes.settings import router as settings_router
from api.routes.system import router as system_router
from api.routes.users import router as users_router
from audit.store import AuditStore
from auth.sessions import build_session_store
from auth.store import UserStore
from backups.query import QueryConsole
from backups.scheduler import BackupScheduler
from backups.service import BackupService
from backups.store import BackupStore
from core.config import get_settings
from core.database import now_iso
from epm.store import EpmStore
from licensing.store import LicenseStore
from notifications.push import PushService
from notifications.store import NotificationStore

APP_VERSION = "1.0.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("pcvisor.api")

_settings = get_settings()
_started = time.monotonic()


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Open stores and services on startup; close them symmetrically on shutdown."""
    logger.info("pcvisor API starting up")
    db_url = _settings.database_url

    app.state.user_store = UserStore(db_url)
    app.state.audit_store = AuditStore(db_url)
    app.state.settings_store = SettingsStore(db_url)
    app.state.license_store = LicenseStore(db_url)
    app.state.backup_store = BackupStore(db_url)
    app.state.notification_store = NotificationStore(db_url)
    app.state.epm_store = EpmStore(db_url)
    app.state.session_store = build_session_store(_settings.redis_url, _settings.session_max_age)
    logger.info("Stores initialized")

    app.state.push_service = PushService(
        app.state.notification_store,
        _settings.vapid_public_key,
        _settings.vapid_private_key,
        _settings.vapid_subject,
    )
    if not app.state.push_service.configured:
        logger.warning("VAPID keys not configured -- push notifications will not work")

    app.state.backup_service = BackupService(
        app.state.backup_store,
        app.state.audit_store,
        db_url,
        _settings.backup_dir,
        _settings.pg_dump_path,
    )
    app.state.query_console = QueryConsole(app.state.backup_store, app.state.audit_store)
    app.state.backup_scheduler = BackupScheduler(app.state.backup_service, app.state.backup_store)
    app.state.backup_scheduler.initialize()

    yield

    # Shutdown
    await app.state.backup_scheduler.shutdown()
    app.state.session_store.close()
    app.state.epm_store.close()
    app.state.notification_store.close()
    app.state.backup_store.close()
    app.state.license_store.close()
    app.state.settings_store.close()
    app.state.audit_store.close()
    app.state.user_store.close()
    logger.info("pcvisor API shutdown complete")


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="pcvisor API",
    description="Enterprise management backend: users, roles, settings, audit, backups, licensing, EPM.",
    version=APP_VERSION,
    lifespan=lifespan,
    docs_url="/api/docs" if _settings.debug else None,
    redoc_url=None,
    openapi_url="/api/openapi.json" if _settings.debug else None,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# add_middleware() wraps the existing stack, so the LAST one added is the
# outermost. Added innermost-first: SlowAPI -> CORS -> TrustedHost -> proxy.
# ---------------------------------------------------------------------------

app.add_middleware(SlowAPIMiddleware)

app.add_middleware(
    CORSMiddleware,
    allow_origins=_settings.cors_origins,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE"],
    allow_headers=["Content-Type", "Authorization", "X-API-Key"],
    max_age=3600,
)

app.add_middleware(TrustedHostMiddleware, allowed_hosts=_settings.allowed_hosts)

if _settings.trust_proxy:
    app.add_middleware(ProxyHeadersMiddleware, trusted_hosts="*")

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


# ---------------------------------------------------------------------------
# Request logging middleware
# ---------------------------------------------------------------------------


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    if request.url.path.startswith("/api"):
        ms = (time.perf_counter() - start) * 1000
        logger.info(
            "%s %s %d %.1fms %s",
            request.method,
            request.url.path,
            response.status_code,
            ms,
            request.client.host if request.client else "unknown",
        )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, prefix="/api", tags=["Auth"])
app.include_router(users_router, prefix="/api", tags=["Users & Roles"])
app.include_router(settings_router, prefix="/api", tags=["Settings"])
app.include_router(notifications_router, prefix="/api", tags=["Notifications"])
app.include_router(push_router, prefix="/api", tags=["Push"])
app.include_router(audit_logs_router, prefix="/api", tags=["Audit Logs"])
app.include_router(database_router, prefix="/api", tags=["Database"])
app.include_router(license_router, prefix="/api", tags=["License"])
app.include_router(epm_router, prefix="/api", tags=["EPM"])
app.include_router(system_router, prefix="/api", tags=["System"])

# Uploaded logos and favicons. The directory is created on first upload.
app.mount("/uploads", StaticFiles(directory=_settings.upload_dir, check_dir=False), name="uploads")


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(),
    )


def format_validation_errors(errors) -> str:
    """Render pydantic errors as one readable line.

    e.g. 'Validation error: String should have at least 3 characters at "username"'
    """
    parts = []
    for err in errors:
        loc = [str(p) for p in err.get("loc", ()) if p not in ("body", "query", "path", "header")]
        message = err.get("msg", "Invalid value")
        parts.append(f'{message} at "{".".join(loc)}"' if loc else message)
    return "Validation error: " + "; ".join(parts)


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", str(exc))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 with a readable message when the request body or query fails validation."""
    return _error_response(400, "validation_error", format_validation_errors(exc.errors()))


@app.exception_handler(ValidationError)
async def model_validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    """A partial settings update produced an invalid document."""
    return _error_response(400, "validation_error", format_validation_errors(exc.errors()))


@app.exception_handler(IntegrityError)
async def integrity_error_handler(request: Request, exc: IntegrityError) -> JSONResponse:
    """Unique constraint lost a race with a concurrent request."""
    logger.warning("Integrity error on %s %s: %s", request.method, request.url.path, exc.orig)
    return _error_response(409, "conflict", "A record with the same unique value already exists.")


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    """Return a structured error for all FastAPI/Starlette HTTP exceptions.

    Route handlers raise HTTPException with detail={"code", "message"}. When
    detail is already a structured dict, use it directly as the error field
    rather than stringifying it.
    """
    if isinstance(exc.detail, dict):
        error = {"detail": None, **exc.detail}
        return JSONResponse(status_code=exc.status_code, content={"error": error}, headers=exc.headers)
    code = {404: "not_found", 405: "method_not_allowed"}.get(exc.status_code, f"http_{exc.status_code}")
    return JSONResponse(
        status_code=exc.status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=str(exc.detail))).model_dump(),
        headers=exc.headers,
    )


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The stack trace is logged, never returned; the client gets a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py (not in a router) so it is always reachable.
# No rate limit -- load balancer health checks must not be throttled.
# ---------------------------------------------------------------------------


def _database_status() -> str:
    try:
        with app.state.user_store.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
    except SQLAlchemyError as e:
        logger.error("Health check database query failed: %s", e)
        return "unavailable"
    return "ok"


@app.get("/api/health", tags=["Health"], response_model=HealthResponse)
def health() -> HealthResponse:
    """Return liveness, uptime, version and database reachability."""
    return HealthResponse(
        timestamp=now_iso(),
        uptime=round(time.monotonic() - _started, 3),
        version=APP_VERSION,
        components={"app": "ok", "database": _database_status()},
    )
