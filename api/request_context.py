"""
api/request_context.py -- Small helpers shared by route modules.

Audit entries carry the caller's IP and User-Agent; when TRUST_PROXY is set
the ProxyHeadersMiddleware has already rewritten request.client from
X-Forwarded-For, so request.client.host is the real client either way.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from audit.models import STATUS_SUCCESS, AuditLog
from auth.models import User


def client_ip(request: Request) -> str | None:
    return request.client.host if request.client else None


def user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def record_audit(
    request: Request,
    user: User | None,
    action: str,
    category: str,
    *,
    resource_type: str | None = None,
    resource_id: int | str | None = None,
    resource_name: str | None = None,
    details: str | None = None,
    status: str = STATUS_SUCCESS,
) -> None:
    request.app.state.audit_store.record(
        AuditLog(
            action=action,
            category=category,
            user_id=user.id if user else None,
            username=user.username if user else None,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id is not None else None,
            resource_name=resource_name,
            details=details,
            ip_address=client_ip(request),
            user_agent=user_agent(request),
            status=status,
        )
    )


def api_error(status_code: int, message: str, code: str | None = None, detail: str | None = None) -> HTTPException:
    """Build an HTTPException carrying the standard error envelope.

    detail is optional machine-oriented context, e.g. the query type of a
    refused SQL console statement.
    """
    if code is None:
        code = {400: "bad_request", 401: "unauthorized", 403: "forbidden", 404: "not_found", 409: "conflict"}.get(
            status_code, f"http_{status_code}"
        )
    return HTTPException(status_code=status_code, detail={"code": code, "message": message, "detail": detail})
