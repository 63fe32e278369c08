"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two auth methods are checked in priority order:
  1. Session cookie ("pcvisor.sid") -- set by the SPA login flow; the session
     record lives server-side in app.state.session_store.
  2. Authorization: Bearer <token> header -- API clients using JWTs.

Both converge on a User object. Inactive users are treated as anonymous.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() raises HTTP 401 if unauthenticated.
require_admin() additionally requires admin-console rights (HTTP 403).
require_master_admin() requires a system user (HTTP 403).
require_permission(perm) requires one RBAC permission (HTTP 403).

Layer rule: no imports from api/. This module may import fastapi because it
is part of the dependency injection surface.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.rbac import PermissionSet, can_access_admin, has_permission, resolve_permissions
from auth.tokens import decode_access_token
from core.config import get_settings


def _session_user_id(request: Request) -> int | None:
    sid = request.cookies.get(get_settings().session_cookie_name)
    if not sid:
        return None
    data = request.app.state.session_store.get(sid)
    if not data:
        return None
    return data.get("user_id")


def try_get_current_user(request: Request) -> User | None:
    """Authenticate the request via session cookie or Bearer token.

    Returns the authenticated User on success, None on any failure.
    Never raises -- callers that need a hard 401 should use get_current_user().
    """
    user_store = request.app.state.user_store

    user_id = _session_user_id(request)
    if user_id is None:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            payload = decode_access_token(auth_header[7:])
            if payload:
                user_id = payload["user_id"]

    if user_id is None:
        return None
    user = user_store.get_by_id(user_id)
    if user is None or not user.is_active:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated."""
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Not authenticated"},
        )
    return user


def get_user_permissions(request: Request, user: User) -> PermissionSet:
    role = request.app.state.user_store.get_role(user.role_id) if user.role_id else None
    return resolve_permissions(user, role)


def require_admin(request: Request) -> User:
    """Require admin-console access: admin user, admin role, or user/role master permission."""
    user = get_current_user(request)
    if not can_access_admin(get_user_permissions(request, user)):
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Access denied. Admin privileges required."},
        )
    return user


def require_master_admin(request: Request) -> User:
    """Require a system (master admin) user -- license management only."""
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(status_code=401, detail={"code": "unauthorized", "message": "Unauthorized"})
    if not user.is_system:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Access denied. Master admin required."},
        )
    return user


def require_permission(permission: str):
    """Return a dependency that requires one RBAC permission string (admin and "*" always pass)."""

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if not has_permission(get_user_permissions(request, user), permission):
            raise HTTPException(
                status_code=403,
                detail={"code": "forbidden", "message": "Access denied. Insufficient permissions."},
            )
        return user

    return dependency
