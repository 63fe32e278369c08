"""
api/routes/audit_logs.py -- Audit trail browsing, statistics and cleanup.

Routes:
  GET  /api/audit-logs             -- admin; filtered, newest first, with total
  GET  /api/audit-logs/categories  -- admin; fixed category list
  GET  /api/audit-logs/stats       -- admin
  POST /api/audit-logs/cleanup     -- admin; delete entries before a date (audited)

Query parameters use the SPA's camelCase names (userId, startDate, ...).
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request

from api.models import (
    AuditCleanupRequest,
    AuditCleanupResponse,
    AuditLogListResponse,
    AuditLogResponse,
    AuditStatsResponse,
)
from api.request_context import api_error, record_audit
from audit.store import AuditLogFilter, AuditStore
from auth.dependencies import require_admin
from auth.models import User

# Auth policy: every route requires admin (require_admin).
router = APIRouter(prefix="/audit-logs")

CATEGORY_NAMES = {
    "auth": "Authentication",
    "user": "User Management",
    "role": "Role Management",
    "settings": "Settings",
    "security": "Security",
    "system": "System",
    "data": "Data Operations",
}


def _store(request: Request) -> AuditStore:
    return request.app.state.audit_store


@router.get("", response_model=AuditLogListResponse)
def list_audit_logs(
    request: Request,
    category: Optional[str] = Query(None, max_length=50),
    action: Optional[str] = Query(None, max_length=255),
    user_id: Optional[int] = Query(None, alias="userId"),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    search: Optional[str] = Query(None, max_length=255),
    limit: int = Query(50, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(require_admin),
) -> AuditLogListResponse:
    filters = AuditLogFilter(
        category=category or None,
        action=action or None,
        user_id=user_id,
        start_date=start_date,
        end_date=end_date,
        search=search or None,
        limit=limit,
        offset=offset,
    )
    logs, total = _store(request).list_logs(filters)
    return AuditLogListResponse(logs=[AuditLogResponse.model_validate(log) for log in logs], total=total)


@router.get("/categories")
def list_categories(current_user: User = Depends(require_admin)) -> dict:
    return {"categories": [{"id": key, "name": name} for key, name in CATEGORY_NAMES.items()]}


@router.get("/stats", response_model=AuditStatsResponse)
def audit_stats(request: Request, current_user: User = Depends(require_admin)) -> AuditStatsResponse:
    return AuditStatsResponse.model_validate(_store(request).stats())


@router.post("/cleanup", response_model=AuditCleanupResponse)
def cleanup_audit_logs(
    request: Request,
    body: AuditCleanupRequest,
    current_user: User = Depends(require_admin),
) -> AuditCleanupResponse:
    if body.before_date is None:
        raise api_error(400, "beforeDate is required")

    deleted = _store(request).delete_before(body.before_date)
    record_audit(
        request,
        current_user,
        "cleanup_audit_logs",
        "security",
        resource_type="audit_logs",
        details=f"Deleted {deleted} audit log entries before {body.before_date.isoformat()}",
    )
    return AuditCleanupResponse(message=f"Deleted {deleted} audit log entries", deleted_count=deleted)
