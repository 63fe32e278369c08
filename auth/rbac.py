"""
auth/rbac.py -- Role-based access checks and the password policy.

Permission model:
  Each role carries a list of permission strings ("admin.user-master",
  "apps.service-desk", ...). "*" grants everything. The built-in "admin"
  username and any role named "admin" (case-insensitive) are administrators.

  The SPA mirrors these rules from GET /api/auth/permissions, so any change
  here changes what the sidebar shows.

Password policy:
  Reads its thresholds from the security settings section. All violations
  are collected and reported together so the user can fix them in one go.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Protocol

from auth.models import Role, User

ADMIN_USERNAME = "admin"
WILDCARD = "*"
# Holding either of these grants access to the admin consoles.
ADMIN_CONSOLE_PERMISSIONS = ("admin.user-master", "admin.role-master")

_SPECIAL_RE = re.compile(r"[!@#$%^&*()_+\-=\[\]{};':\"\\|,.<>/?]")


@dataclass
class PermissionSet:
    permissions: list[str] = field(default_factory=list)
    is_admin: bool = False
    role_name: str | None = None


def is_admin_role(role: Role | None) -> bool:
    return role is not None and role.name.lower() == "admin"


def resolve_permissions(user: User, role: Role | None) -> PermissionSet:
    """Return the effective permissions for user with the given role."""
    if user.username == ADMIN_USERNAME:
        return PermissionSet(permissions=[WILDCARD], is_admin=True, role_name="Admin")
    if role is not None:
        return PermissionSet(
            permissions=list(role.permissions),
            is_admin=is_admin_role(role),
            role_name=role.name,
        )
    return PermissionSet()


def has_permission(perms: PermissionSet, permission: str) -> bool:
    if perms.is_admin or WILDCARD in perms.permissions:
        return True
    return permission in perms.permissions


def can_access_admin(perms: PermissionSet) -> bool:
    """True for administrators and holders of the user/role master permissions."""
    if perms.is_admin or WILDCARD in perms.permissions:
        return True
    return any(p in perms.permissions for p in ADMIN_CONSOLE_PERMISSIONS)


# ---------------------------------------------------------------------------
# Password policy
# ---------------------------------------------------------------------------


class PasswordPolicy(Protocol):
    min_password_length: str
    require_uppercase: bool
    require_lowercase: bool
    require_numbers: bool
    require_special_chars: bool


def validate_password(password: str, policy: PasswordPolicy) -> list[str]:
    """Return every policy violation for password. Empty list means valid."""
    errors: list[str] = []
    try:
        min_length = int(policy.min_password_length)
    except (TypeError, ValueError):
        min_length = 8
    if len(password) < min_length:
        errors.append(f"Password must be at least {min_length} characters long")
    if policy.require_uppercase and not re.search(r"[A-Z]", password):
        errors.append("Password must contain at least one uppercase letter")
    if policy.require_lowercase and not re.search(r"[a-z]", password):
        errors.append("Password must contain at least one lowercase letter")
    if policy.require_numbers and not re.search(r"[0-9]", password):
        errors.append("Password must contain at least one number")
    if policy.require_special_chars and not _SPECIAL_RE.search(password):
        errors.append("Password must contain at least one special character")
    return errors
