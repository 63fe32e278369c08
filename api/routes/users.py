"""
api/routes/users.py -- Self-service profile, user master and role master endpoints.

Routes:
  GET    /api/profile                 -- own profile
  PATCH  /api/profile                 -- edit own contact fields (not username/role/active)
  PATCH  /api/profile/password        -- change own password (current password required)
  POST   /api/profile/photo           -- set own profile photo (data URL)
  GET    /api/users                   -- admin
  GET    /api/users/{id}              -- admin
  POST   /api/users                   -- admin
  PATCH  /api/users/{id}              -- admin
  DELETE /api/users/{id}              -- admin; not self, not a system user
  PATCH  /api/users/{id}/password     -- admin password reset
  GET    /api/roles                   -- admin
  GET    /api/roles/{id}              -- admin
  POST   /api/roles                   -- admin
  PATCH  /api/roles/{id}              -- admin
  DELETE /api/roles/{id}              -- admin; members lose the role

Every password written here is checked against the security settings'
password policy; all violations are reported in one message.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from admin.models import SecuritySettings
from api.models import (
    ChangePasswordRequest,
    MessageResponse,
    PasswordResetRequest,
    ProfilePhotoRequest,
    ProfileUpdate,
    RoleCreate,
    RoleResponse,
    RoleUpdate,
    UserCreate,
    UserResponse,
    UserUpdate,
)
from api.request_context import api_error, record_audit
from auth.dependencies import get_current_user, require_admin
from auth.models import Role, User
from auth.rbac import validate_password
from auth.store import UserStore
from auth.tokens import hash_password, verify_password

# Auth policy:
# - /profile*: requires auth (get_current_user); always acts on the caller
# - /users*, /roles*: requires admin (require_admin)
router = APIRouter()


def _check_policy(request: Request, password: str) -> None:
    security = request.app.state.settings_store.get(SecuritySettings)
    errors = validate_password(password, security)
    if errors:
        raise api_error(400, ". ".join(errors), code="password_policy")


def _get_user_or_404(user_store: UserStore, user_id: int) -> User:
    user = user_store.get_by_id(user_id)
    if user is None:
        raise api_error(404, "User not found")
    return user


def _check_role_exists(user_store: UserStore, role_id: int | None) -> None:
    if role_id is not None and user_store.get_role(role_id) is None:
        raise api_error(400, "Role not found")


# ---------------------------------------------------------------------------
# Profile (self-service)
# ---------------------------------------------------------------------------


@router.get("/profile", response_model=UserResponse)
def get_profile(request: Request, current_user: User = Depends(get_current_user)) -> UserResponse:
    return UserResponse.model_validate(_get_user_or_404(request.app.state.user_store, current_user.id))


@router.patch("/profile", response_model=UserResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    changes = body.model_dump(exclude_unset=True)
    if changes:
        user_store.update_user(current_user.id, **changes)
    return UserResponse.model_validate(_get_user_or_404(user_store, current_user.id))


@router.patch("/profile/password", response_model=MessageResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    user = _get_user_or_404(user_store, current_user.id)
    if not verify_password(body.current_password, user.hashed_password or ""):
        raise api_error(400, "Current password is incorrect")
    _check_policy(request, body.new_password)

    user_store.update_user(user.id, hashed_password=hash_password(body.new_password))
    record_audit(
        request,
        user,
        "Password Changed",
        "security",
        resource_type="user",
        resource_id=user.id,
        resource_name=user.username,
        details="User changed their own password",
    )
    return MessageResponse(message="Password changed successfully")


@router.post("/profile/photo", response_model=UserResponse)
def update_profile_photo(
    request: Request,
    body: ProfilePhotoRequest,
    current_user: User = Depends(get_current_user),
) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    user_store.update_user(current_user.id, profile_photo=body.profile_photo)
    return UserResponse.model_validate(_get_user_or_404(user_store, current_user.id))


# ---------------------------------------------------------------------------
# User master (admin)
# ---------------------------------------------------------------------------


@router.get("/users", response_model=list[UserResponse])
def list_users(request: Request, current_user: User = Depends(require_admin)) -> list[UserResponse]:
    return [UserResponse.model_validate(u) for u in request.app.state.user_store.list_users()]


@router.get("/users/{user_id}", response_model=UserResponse)
def get_user(request: Request, user_id: int, current_user: User = Depends(require_admin)) -> UserResponse:
    return UserResponse.model_validate(_get_user_or_404(request.app.state.user_store, user_id))


@router.post("/users", response_model=UserResponse, status_code=201)
def create_user(request: Request, body: UserCreate, current_user: User = Depends(require_admin)) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    if user_store.get_by_username(body.username) is not None:
        raise api_error(400, "Username already exists", code="username_taken")
    _check_role_exists(user_store, body.role_id)
    _check_policy(request, body.password)

    user_id = user_store.create_user(
        User(
            username=body.username,
            hashed_password=hash_password(body.password),
            email=body.email,
            full_name=body.full_name,
            phone=body.phone,
            department=body.department,
            role_id=body.role_id,
            is_active=True if body.is_active is None else body.is_active,
            is_system=False,
        )
    )
    created = _get_user_or_404(user_store, user_id)
    record_audit(
        request,
        current_user,
        "User Created",
        "user",
        resource_type="user",
        resource_id=user_id,
        resource_name=created.username,
        details=f"Created user {created.username}",
    )
    return UserResponse.model_validate(created)


@router.patch("/users/{user_id}", response_model=UserResponse)
def update_user(
    request: Request,
    user_id: int,
    body: UserUpdate,
    current_user: User = Depends(require_admin),
) -> UserResponse:
    user_store: UserStore = request.app.state.user_store
    target = _get_user_or_404(user_store, user_id)
    changes = body.model_dump(exclude_unset=True)

    if changes.get("username"):
        existing = user_store.get_by_username(changes["username"])
        if existing is not None and existing.id != user_id:
            raise api_error(400, "Username already exists", code="username_taken")
    elif "username" in changes:
        del changes["username"]
    if "role_id" in changes:
        _check_role_exists(user_store, changes["role_id"])
    if changes.get("is_active") is False and target.id == current_user.id:
        raise api_error(400, "You cannot deactivate your own account.", code="self_deactivation")

    if changes:
        user_store.update_user(user_id, **changes)
        record_audit(
            request,
            current_user,
            "User Updated",
            "user",
            resource_type="user",
            resource_id=user_id,
            resource_name=target.username,
            details=f"Updated fields: {', '.join(sorted(changes))}",
        )
    return UserResponse.model_validate(_get_user_or_404(user_store, user_id))


@router.delete("/users/{user_id}", response_model=MessageResponse)
def delete_user(request: Request, user_id: int, current_user: User = Depends(require_admin)) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    if user_id == current_user.id:
        raise api_error(400, "Cannot delete your own account")
    target = _get_user_or_404(user_store, user_id)
    if target.is_system:
        raise api_error(403, "Cannot delete system user")
    if not user_store.delete_user(user_id):
        raise api_error(404, "User not found")

    record_audit(
        request,
        current_user,
        "User Deleted",
        "user",
        resource_type="user",
        resource_id=user_id,
        resource_name=target.username,
        details=f"Deleted user {target.username}",
    )
    return MessageResponse(message="User deleted successfully")


@router.patch("/users/{user_id}/password", response_model=MessageResponse)
def reset_password(
    request: Request,
    user_id: int,
    body: PasswordResetRequest,
    current_user: User = Depends(require_admin),
) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    _check_policy(request, body.password)
    target = _get_user_or_404(user_store, user_id)

    user_store.update_user(user_id, hashed_password=hash_password(body.password))
    record_audit(
        request,
        current_user,
        "Password Reset",
        "security",
        resource_type="user",
        resource_id=user_id,
        resource_name=target.username,
        details=f"Administrator reset the password of {target.username}",
    )
    return MessageResponse(message="Password updated successfully")


# ---------------------------------------------------------------------------
# Role master (admin)
# ---------------------------------------------------------------------------


def _get_role_or_404(user_store: UserStore, role_id: int) -> Role:
    role = user_store.get_role(role_id)
    if role is None:
        raise api_error(404, "Role not found")
    return role


@router.get("/roles", response_model=list[RoleResponse])
def list_roles(request: Request, current_user: User = Depends(require_admin)) -> list[RoleResponse]:
    return [RoleResponse.model_validate(r) for r in request.app.state.user_store.list_roles()]


@router.get("/roles/{role_id}", response_model=RoleResponse)
def get_role(request: Request, role_id: int, current_user: User = Depends(require_admin)) -> RoleResponse:
    return RoleResponse.model_validate(_get_role_or_404(request.app.state.user_store, role_id))


@router.post("/roles", response_model=RoleResponse, status_code=201)
def create_role(request: Request, body: RoleCreate, current_user: User = Depends(require_admin)) -> RoleResponse:
    user_store: UserStore = request.app.state.user_store
    if user_store.get_role_by_name(body.name) is not None:
        raise api_error(400, "Role name already exists", code="role_name_taken")

    role_id = user_store.create_role(
        Role(name=body.name, description=body.description, permissions=list(dict.fromkeys(body.permissions)))
    )
    record_audit(
        request,
        current_user,
        "Role Created",
        "role",
        resource_type="role",
        resource_id=role_id,
        resource_name=body.name,
        details=f"Created role {body.name}",
    )
    return RoleResponse.model_validate(_get_role_or_404(user_store, role_id))


@router.patch("/roles/{role_id}", response_model=RoleResponse)
def update_role(
    request: Request,
    role_id: int,
    body: RoleUpdate,
    current_user: User = Depends(require_admin),
) -> RoleResponse:
    user_store: UserStore = request.app.state.user_store
    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None or k == "description"}
    if changes.get("name"):
        existing = user_store.get_role_by_name(changes["name"])
        if existing is not None and existing.id != role_id:
            raise api_error(400, "Role name already exists", code="role_name_taken")
    role = _get_role_or_404(user_store, role_id)

    if changes:
        if "permissions" in changes:
            changes["permissions"] = list(dict.fromkeys(changes["permissions"]))
        user_store.update_role(role_id, **changes)
        record_audit(
            request,
            current_user,
            "Role Updated",
            "role",
            resource_type="role",
            resource_id=role_id,
            resource_name=changes.get("name", role.name),
            details=f"Updated fields: {', '.join(sorted(changes))}",
        )
    return RoleResponse.model_validate(_get_role_or_404(user_store, role_id))


@router.delete("/roles/{role_id}", response_model=MessageResponse)
def delete_role(request: Request, role_id: int, current_user: User = Depends(require_admin)) -> MessageResponse:
    user_store: UserStore = request.app.state.user_store
    role = _get_role_or_404(user_store, role_id)
    user_store.delete_role(role_id)
    record_audit(
        request,
        current_user,
        "Role Deleted",
        "role",
        resource_type="role",
        resource_id=role_id,
        resource_name=role.name,
        details=f"Deleted role {role.name}",
    )
    return MessageResponse(message="Role deleted successfully")
