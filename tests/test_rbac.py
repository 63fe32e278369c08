"""
tests/test_rbac.py -- Unit tests for permission resolution and the password policy.

Coverage:
  - resolve_permissions: built-in admin username, admin role, ordinary role, no role
  - has_permission / can_access_admin: wildcard, admin flag, console permissions
  - validate_password: every rule reported together, thresholds from settings
"""

from __future__ import annotations

from admin.models import SecuritySettings
from auth.models import Role, User
from auth.rbac import PermissionSet, can_access_admin, has_permission, resolve_permissions, validate_password


class TestResolvePermissions:
    def test_builtin_admin_username_gets_wildcard(self) -> None:
        """The user named 'admin' is an administrator whatever its role."""
        perms = resolve_permissions(User(username="admin"), None)
        assert perms.is_admin is True
        assert perms.permissions == ["*"]
        assert perms.role_name == "Admin"

    def test_admin_role_is_case_insensitive(self) -> None:
        role = Role(name="ADMIN", permissions=["apps.service-desk"])
        perms = resolve_permissions(User(username="jdoe"), role)
        assert perms.is_admin is True
        assert perms.role_name == "ADMIN"

    def test_ordinary_role_copies_permissions(self) -> None:
        role = Role(name="Agent", permissions=["apps.service-desk"])
        perms = resolve_permissions(User(username="jdoe"), role)
        assert perms.is_admin is False
        assert perms.permissions == ["apps.service-desk"]

    def test_no_role_means_no_permissions(self) -> None:
        perms = resolve_permissions(User(username="jdoe"), None)
        assert perms.permissions == []
        assert perms.is_admin is False
        assert perms.role_name is None


class TestPermissionChecks:
    def test_wildcard_grants_everything(self) -> None:
        perms = PermissionSet(permissions=["*"])
        assert has_permission(perms, "anything.at-all")
        assert can_access_admin(perms)

    def test_specific_permission(self) -> None:
        perms = PermissionSet(permissions=["apps.service-desk"])
        assert has_permission(perms, "apps.service-desk")
        assert not has_permission(perms, "apps.epm")
        assert not can_access_admin(perms)

    def test_console_permissions_open_admin(self) -> None:
        """Either user-master or role-master opens the admin consoles."""
        assert can_access_admin(PermissionSet(permissions=["admin.user-master"]))
        assert can_access_admin(PermissionSet(permissions=["admin.role-master"]))


class TestPasswordPolicy:
    def test_strong_password_passes(self) -> None:
        assert validate_password("Str0ng!pass", SecuritySettings()) == []

    def test_all_violations_reported(self) -> None:
        """A weak password reports every broken rule, not just the first."""
        errors = validate_password("abc", SecuritySettings())
        assert "Password must be at least 8 characters long" in errors
        assert "Password must contain at least one uppercase letter" in errors
        assert "Password must contain at least one number" in errors
        assert "Password must contain at least one special character" in errors
        assert len(errors) == 4, f"Unexpected errors: {errors}"

    def test_relaxed_policy(self) -> None:
        policy = SecuritySettings(
            min_password_length="4",
            require_uppercase=False,
            require_numbers=False,
            require_special_chars=False,
        )
        assert validate_password("abcd", policy) == []
        assert validate_password("abc", policy) == ["Password must be at least 4 characters long"]
