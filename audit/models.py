"""
audit/models.py -- Audit log entry dataclass and the fixed category list.

Layer rule: no imports from api/ or other feature packages.
"""

from __future__ import annotations

from dataclasses import dataclass

AUDIT_CATEGORIES = ["auth", "user", "role", "settings", "security", "system", "data"]

STATUS_SUCCESS = "success"
STATUS_FAILURE = "failure"


@dataclass
class AuditLog:
    """One recorded action. Entries are append-only apart from retention cleanup.

    user_id / username are None for actions taken by the scheduler or by
    unauthenticated callers (failed logins against unknown usernames).
    """

    action: str
    category: str
    id: int | None = None
    user_id: int | None = None
    username: str | None = None
    resource_type: str | None = None
    resource_id: str | None = None
    resource_name: str | None = None
    details: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    status: str = STATUS_SUCCESS
    created_at: str | None = None
