"""
api/routes/auth.py -- Login, session, permission and MFA endpoints.

Routes:
  POST /api/auth/register          -- self-registration (when enabled); logs the user in
  POST /api/auth/login             -- password login; session cookie + bearer token
  POST /api/auth/logout            -- destroys the server-side session
  GET  /api/auth/user              -- current user
  GET  /api/auth/permissions       -- effective RBAC permissions for the client to mirror
  POST /api/auth/mfa/setup         -- password-confirmed; returns secret + QR code
  POST /api/auth/mfa/verify-setup  -- confirm the first TOTP code; enables MFA
  POST /api/auth/mfa/disable       -- password-confirmed
  POST /api/auth/mfa/verify        -- second login step for MFA users
  GET  /api/auth/mfa/status

Security:
  [H2] /login and /mfa/verify are rate-limited per IP.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  Failed passwords and failed MFA codes share one counter; reaching
  maxLoginAttempts locks the account for lockoutDurationMinutes.
  /mfa/verify only accepts a user that passed the password step: /login
  stores a short-lived server-side marker and returns its id as mfaToken.
  Non-master users are refused when the local license check fails.
  [M5] Cache-Control: no-store on every response that carries a token.
"""

from __future__ import annotations

import time

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from admin.models import SecuritySettings
from api.limiter import limiter
from api.models import (
    CurrentUserResponse,
    ErrorDetail,
    ErrorResponse,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    MfaCodeRequest,
    MfaLoginRequest,
    MfaRequiredResponse,
    MfaSetupResponse,
    MfaStatusResponse,
    PasswordConfirmRequest,
    PermissionsResponse,
    RegisterRequest,
    RegisterResponse,
    UserResponse,
)
from api.request_context import api_error, record_audit
from audit.models import STATUS_FAILURE
from auth import mfa
from auth.dependencies import get_current_user, get_user_permissions
from auth.models import User
from auth.rbac import validate_password
from auth.sessions import set_session_cookie
from auth.store import UserStore
from auth.tokens import authenticate_user, create_access_token, hash_password, verify_password
from core.config import get_settings
from licensing.service import check_license_for_login

_settings = get_settings()

# Auth policy:
# - register, login, logout, mfa/verify: public
# - everything else: requires auth (get_current_user)
router = APIRouter()

INVALID_CREDENTIALS = "Invalid username or password"

# Lifetime of the marker issued by /login that /mfa/verify must present.
MFA_PENDING_SECONDS = 300


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _error_response(status_code: int, code: str, message: str) -> JSONResponse:
    resp = JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message)).model_dump(),
    )
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _locked_message(minutes: int) -> str:
    return f"Account locked due to too many failed attempts. Try again in {minutes} minutes."


def _register_failure(request: Request, user: User, security: SecuritySettings, reason: str) -> JSONResponse:
    """Count one failed attempt for user and build the 401 response."""
    user_store: UserStore = request.app.state.user_store
    _, locked_until = user_store.register_failed_login(user.id, security.max_attempts, security.lockout_minutes)
    record_audit(
        request,
        user,
        "Login Failed",
        "auth",
        resource_type="user",
        resource_id=user.id,
        resource_name=user.username,
        details=reason,
        status=STATUS_FAILURE,
    )
    if locked_until is not None:
        return _error_response(401, "account_locked", _locked_message(security.lockout_minutes))
    return _error_response(401, "bad_credentials", reason)


def _preflight(request: Request, user: User) -> JSONResponse | None:
    """Checks shared by both login steps: lock, active flag, license."""
    remaining = UserStore.lock_remaining_minutes(user)
    if remaining:
        return _error_response(
            401, "account_locked", f"Account is temporarily locked. Try again in {remaining} minutes."
        )
    if not user.is_active:
        return _error_response(403, "account_disabled", "Account is disabled. Contact administrator.")
    allowed, message = check_license_for_login(request.app.state.license_store, user)
    if not allowed:
        return _error_response(403, "license_required", message or "License required")
    return None


def _start_session(request: Request, user: User) -> JSONResponse:
    """Reset lockout, create the server-side session and return the login payload."""
    user_store: UserStore = request.app.state.user_store
    user_store.update_last_login(user.id)
    sid = request.app.state.session_store.create({"user_id": user.id})
    token = create_access_token(user.id, user.username)
    fresh = user_store.get_by_id(user.id)

    record_audit(
        request,
        user,
        "Login",
        "auth",
        resource_type="user",
        resource_id=user.id,
        resource_name=user.username,
        details="User logged in",
    )
    resp = JSONResponse(
        content=LoginResponse(user=UserResponse.model_validate(fresh), token=token).to_json_dict()
    )
    set_session_cookie(resp, sid, _settings.session_cookie_name, _settings.session_max_age, _settings.secure_cookies)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


def _issue_mfa_marker(request: Request, user: User) -> str:
    """Record that user passed the password step; /mfa/verify must present the returned token."""
    return request.app.state.session_store.create(
        {"mfa_pending_user_id": user.id, "expires_at": time.time() + MFA_PENDING_SECONDS}
    )


def _has_mfa_marker(request: Request, token: str | None, user_id: int) -> bool:
    if not token:
        return False
    data = request.app.state.session_store.get(token)
    if not data or data.get("mfa_pending_user_id") != user_id:
        return False
    if data.get("expires_at", 0) <= time.time():
        request.app.state.session_store.delete(token)
        return False
    return True


def _load_self(request: Request, current_user: User) -> User:
    user = request.app.state.user_store.get_by_id(current_user.id)
    if user is None:
        raise api_error(404, "User not found")
    return user


# ---------------------------------------------------------------------------
# Public endpoints
# ---------------------------------------------------------------------------


@router.post("/auth/register", response_model=RegisterResponse)
def register(request: Request, body: RegisterRequest) -> JSONResponse:
    """Create an account with no role and log it in."""
    if not _settings.self_registration_enabled:
        raise api_error(403, "Registration is disabled")
    user_store: UserStore = request.app.state.user_store
    security = request.app.state.settings_store.get(SecuritySettings)

    errors = validate_password(body.password, security)
    if errors:
        raise api_error(400, ". ".join(errors), code="password_policy")
    if user_store.get_by_username(body.username) is not None:
        raise api_error(400, "Username already exists", code="username_taken")

    user_id = user_store.create_user(
        User(
            username=body.username,
            hashed_password=hash_password(body.password),
            email=body.email,
            full_name=body.full_name,
        )
    )
    user = user_store.get_by_id(user_id)
    record_audit(
        request,
        user,
        "User Registered",
        "user",
        resource_type="user",
        resource_id=user_id,
        resource_name=user.username,
        details="Self-registration",
    )
    sid = request.app.state.session_store.create({"user_id": user_id})
    resp = JSONResponse(content=RegisterResponse(user=UserResponse.model_validate(user)).to_json_dict())
    set_session_cookie(resp, sid, _settings.session_cookie_name, _settings.session_max_age, _settings.secure_cookies)
    return resp


@limiter.limit(_settings.login_rate_limit)  # [H2] must be ABOVE @router to preserve FastAPI introspection
@router.post("/auth/login", response_model=LoginResponse)
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username and password.

    Uses authenticate_user() which includes timing equalization [C1]. Unknown
    usernames and wrong passwords get the same message. Users with verified
    MFA receive {requiresMfa, userId, mfaToken} and must call /auth/mfa/verify
    with that token within MFA_PENDING_SECONDS.
    """
    security = request.app.state.settings_store.get(SecuritySettings)
    user, password_ok = authenticate_user(request.app.state.user_store, body.username, body.password)

    if user is None:
        return _error_response(401, "bad_credentials", INVALID_CREDENTIALS)
    remaining = UserStore.lock_remaining_minutes(user)
    if remaining:
        return _error_response(
            401, "account_locked", f"Account is temporarily locked. Try again in {remaining} minutes."
        )
    if not password_ok:
        return _register_failure(request, user, security, INVALID_CREDENTIALS)

    refused = _preflight(request, user)
    if refused is not None:
        return refused

    if user.mfa_enabled and user.mfa_verified:
        pending = MfaRequiredResponse(user_id=user.id, mfa_token=_issue_mfa_marker(request, user))
        resp = JSONResponse(content=pending.to_json_dict())
        resp.headers["Cache-Control"] = "no-store"
        return resp

    return _start_session(request, user)


@limiter.limit(_settings.login_rate_limit)  # [H2]
@router.post("/auth/mfa/verify", response_model=LoginResponse)
def mfa_login_verify(request: Request, body: MfaLoginRequest) -> JSONResponse:
    """Second login step: check the TOTP code and start the session."""
    security = request.app.state.settings_store.get(SecuritySettings)
    if not _has_mfa_marker(request, body.mfa_token, body.user_id):
        return _error_response(401, "mfa_session_expired", "Password step missing or expired. Log in again.")
    user = request.app.state.user_store.get_by_id(body.user_id)
    if user is None:
        raise api_error(404, "User not found")
    if not user.mfa_secret or not user.mfa_enabled:
        raise api_error(400, "MFA is not enabled for this user")

    refused = _preflight(request, user)
    if refused is not None:
        return refused
    if not mfa.verify_code(user.mfa_secret, body.code):
        return _register_failure(request, user, security, "Invalid verification code")

    request.app.state.session_store.delete(body.mfa_token)
    return _start_session(request, user)


@router.post("/auth/logout", response_model=MessageResponse)
def logout(request: Request) -> JSONResponse:
    """Destroy the server-side session and clear the cookie."""
    sid = request.cookies.get(_settings.session_cookie_name)
    if sid:
        request.app.state.session_store.delete(sid)
    resp = JSONResponse(content={"message": "Logout successful"})
    resp.delete_cookie(_settings.session_cookie_name)
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.get("/auth/user", response_model=CurrentUserResponse)
async def current_user(current_user: User = Depends(get_current_user)) -> CurrentUserResponse:
    return CurrentUserResponse(user=UserResponse.model_validate(current_user))


@router.get("/auth/permissions", response_model=PermissionsResponse)
def permissions(request: Request, current_user: User = Depends(get_current_user)) -> PermissionsResponse:
    """Permissions the client uses to mirror server-side RBAC in its menus."""
    perms = get_user_permissions(request, current_user)
    return PermissionsResponse(
        permissions=perms.permissions,
        is_admin=perms.is_admin,
        role_name=perms.role_name,
    )


@router.post("/auth/mfa/setup", response_model=MfaSetupResponse)
def mfa_setup(
    request: Request,
    body: PasswordConfirmRequest,
    current_user: User = Depends(get_current_user),
) -> MfaSetupResponse:
    """Generate a new TOTP secret. MFA stays unverified until verify-setup succeeds."""
    user = _load_self(request, current_user)
    if not verify_password(body.password, user.hashed_password or ""):
        raise api_error(400, "Invalid password")

    secret = mfa.generate_secret()
    uri = mfa.provisioning_uri(secret, user.username)
    request.app.state.user_store.update_user(user.id, mfa_secret=secret, mfa_verified=False)
    return MfaSetupResponse(secret=secret, qr_code=mfa.qr_code_data_url(uri), otpauth_url=uri)


@router.post("/auth/mfa/verify-setup", response_model=MessageResponse)
def mfa_verify_setup(
    request: Request,
    body: MfaCodeRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    user = _load_self(request, current_user)
    if not user.mfa_secret:
        raise api_error(400, "MFA setup not initiated. Please start MFA setup first.")
    if not mfa.verify_code(user.mfa_secret, body.code):
        raise api_error(400, "Invalid verification code")

    request.app.state.user_store.update_user(user.id, mfa_enabled=True, mfa_verified=True)
    record_audit(
        request,
        user,
        "MFA Enabled",
        "security",
        resource_type="user",
        resource_id=user.id,
        resource_name=user.username,
        details="Two-factor authentication enabled",
    )
    return MessageResponse(message="MFA enabled successfully")


@router.post("/auth/mfa/disable", response_model=MessageResponse)
def mfa_disable(
    request: Request,
    body: PasswordConfirmRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    user = _load_self(request, current_user)
    if not verify_password(body.password, user.hashed_password or ""):
        raise api_error(400, "Invalid password")

    request.app.state.user_store.update_user(user.id, mfa_enabled=False, mfa_secret=None, mfa_verified=False)
    record_audit(
        request,
        user,
        "MFA Disabled",
        "security",
        resource_type="user",
        resource_id=user.id,
        resource_name=user.username,
        details="Two-factor authentication disabled",
    )
    return MessageResponse(message="MFA disabled successfully")


@router.get("/auth/mfa/status", response_model=MfaStatusResponse)
def mfa_status(request: Request, current_user: User = Depends(get_current_user)) -> MfaStatusResponse:
    user = _load_self(request, current_user)
    return MfaStatusResponse(enabled=user.mfa_enabled, verified=user.mfa_verified)
