"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores and routes do
the work; these classes only own the domain shape.

Layer rule: no imports from api/ or other feature packages.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass
class Role:
    """A named bundle of permission strings.

    permissions holds dotted strings such as "admin.user-master" or
    "apps.service-desk". The special string "*" grants everything.
    """

    name: str
    id: int | None = None
    description: str | None = None
    permissions: list[str] = field(default_factory=list)
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class User:
    """Represents a local account in pcvisor.

    is_system marks the master admin. Master admins bypass license gating and
    cannot be deleted.

    mfa_secret is the base32 TOTP secret. mfa_enabled is set when setup starts;
    mfa_verified only after the first code is confirmed. Login requires a code
    only when both are true.

    failed_login_attempts / locked_until implement account lockout. The
    counter resets on every successful login.
    """

    username: str
    id: int | None = None
    hashed_password: str | None = None
    email: str | None = None
    full_name: str | None = None
    phone: str | None = None
    department: str | None = None
    role_id: int | None = None
    is_active: bool = True
    is_system: bool = False
    profile_photo: str | None = None
    mfa_enabled: bool = False
    mfa_secret: str | None = None
    mfa_verified: bool = False
    failed_login_attempts: int = 0
    locked_until: str | None = None
    last_login: str | None = None
    created_at: str | None = None
    updated_at: str | None = None
