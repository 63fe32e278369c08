"""
API request and response models for pcvisor REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/, audit/,
backups/, notifications/ and epm/, which own the internal domain
representation. Response models read those dataclasses directly
(from_attributes) and serialize in camelCase for the browser client.

Separation of concerns: domain dataclasses = stored truth; api/ models = API contract.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import ConfigDict, Field, field_validator

from core.models import CamelModel
from notifications.models import NOTIFICATION_TYPES

_USERNAME = Field(min_length=3, max_length=50)


class ResponseModel(CamelModel):
    """Response base: built from domain dataclasses via model_validate(obj)."""

    model_config = ConfigDict(from_attributes=True)


# ---------------------------------------------------------------------------
# Errors and health
# ---------------------------------------------------------------------------


class ErrorDetail(CamelModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(CamelModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(CamelModel):
    """Response for GET /api/health."""

    status: str = "healthy"
    timestamp: str
    uptime: float
    version: str
    components: dict[str, str] = Field(default_factory=dict)


class MessageResponse(CamelModel):
    message: str


# ---------------------------------------------------------------------------
# Users, roles, auth
# ---------------------------------------------------------------------------


class UserResponse(ResponseModel):
    """A user without password hash or MFA secret."""

    id: int
    username: str
    email: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    role_id: Optional[int] = None
    is_active: bool
    is_system: bool
    profile_photo: Optional[str] = None
    mfa_enabled: bool
    mfa_verified: bool
    last_login: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class RoleResponse(ResponseModel):
    id: int
    name: str
    description: Optional[str] = None
    permissions: list[str]
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class LoginRequest(CamelModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=1024)


class LoginResponse(CamelModel):
    message: str = "Login successful"
    user: UserResponse
    token: str


class MfaRequiredResponse(CamelModel):
    requires_mfa: bool = True
    user_id: int
    mfa_token: str


class RegisterRequest(CamelModel):
    username: str = _USERNAME
    password: str = Field(min_length=6, max_length=1024)
    email: Optional[str] = None
    full_name: Optional[str] = None


class RegisterResponse(CamelModel):
    message: str = "Registration successful"
    user: UserResponse


class CurrentUserResponse(CamelModel):
    user: UserResponse


class PermissionsResponse(CamelModel):
    permissions: list[str]
    is_admin: bool
    role_name: Optional[str] = None


class PasswordConfirmRequest(CamelModel):
    password: str = Field(min_length=1)


class MfaCodeRequest(CamelModel):
    code: str = Field(pattern=r"^\d{6}$")


class MfaLoginRequest(CamelModel):
    user_id: int
    code: str = Field(pattern=r"^\d{6}$")
    mfa_token: str | None = None


class MfaSetupResponse(CamelModel):
    secret: str
    qr_code: str
    otpauth_url: str


class MfaStatusResponse(CamelModel):
    enabled: bool
    verified: bool


class ProfileUpdate(CamelModel):
    """Self-service profile edit. Username, role and active flag are not editable here."""

    email: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    profile_photo: Optional[str] = None


class ProfilePhotoRequest(CamelModel):
    profile_photo: str


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=1)


class UserCreate(CamelModel):
    username: str = _USERNAME
    password: str = Field(min_length=6, max_length=1024)
    email: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    role_id: Optional[int] = None
    is_active: Optional[bool] = None


class UserUpdate(CamelModel):
    username: Optional[str] = Field(None, min_length=3, max_length=50)
    email: Optional[str] = None
    full_name: Optional[str] = None
    phone: Optional[str] = None
    department: Optional[str] = None
    role_id: Optional[int] = None
    is_active: Optional[bool] = None
    profile_photo: Optional[str] = None

    @field_validator("is_active")
    @classmethod
    def check_is_active(cls, value: Optional[bool]) -> bool:
        # Omit the field to leave it unchanged; the column is NOT NULL.
        if value is None:
            raise ValueError("must be true or false")
        return value


class PasswordResetRequest(CamelModel):
    password: str = Field(min_length=1)


class RoleCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    permissions: list[str] = Field(default_factory=list)


class RoleUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None
    permissions: Optional[list[str]] = None


# ---------------------------------------------------------------------------
# Organization uploads
# ---------------------------------------------------------------------------


class UploadDeleteRequest(CamelModel):
    type: Optional[str] = None


# ---------------------------------------------------------------------------
# Notifications and push
# ---------------------------------------------------------------------------


class NotificationResponse(ResponseModel):
    id: int
    user_id: int
    title: str
    message: str
    type: str
    link: Optional[str] = None
    is_read: bool
    created_at: Optional[str] = None


class NotificationCreate(CamelModel):
    user_id: int
    title: str = Field(min_length=1, max_length=255)
    message: str = Field(min_length=1)
    type: str = "info"
    link: Optional[str] = None

    @field_validator("type")
    @classmethod
    def check_type(cls, value: str) -> str:
        if value not in NOTIFICATION_TYPES:
            raise ValueError(f"must be one of {', '.join(NOTIFICATION_TYPES)}")
        return value


class UnreadCountResponse(CamelModel):
    count: int


class MarkAllReadResponse(CamelModel):
    message: str
    count: int


class PushKeys(CamelModel):
    p256dh: Optional[str] = None
    auth: Optional[str] = None


class PushSubscriptionBody(CamelModel):
    endpoint: Optional[str] = None
    keys: Optional[PushKeys] = None


class PushSubscribeRequest(CamelModel):
    subscription: Optional[PushSubscriptionBody] = None


class PushUnsubscribeRequest(CamelModel):
    endpoint: Optional[str] = None


class PushSubscriptionResponse(ResponseModel):
    id: int
    endpoint: str
    created_at: Optional[str] = None
    user_agent: Optional[str] = None


class PushBroadcastRequest(CamelModel):
    title: Optional[str] = None
    body: Optional[str] = None
    url: Optional[str] = None


class PushSendResponse(CamelModel):
    message: str
    successful: int
    failed: int
    total: Optional[int] = None


class VapidStatusResponse(CamelModel):
    configured: bool
    public_key: Optional[str] = None
    subject: str
    has_private_key: bool


class VapidKeysResponse(CamelModel):
    public_key: str
    private_key: str
    instructions: str


# ---------------------------------------------------------------------------
# Audit logs
# ---------------------------------------------------------------------------


class AuditLogResponse(ResponseModel):
    id: int
    user_id: Optional[int] = None
    username: Optional[str] = None
    action: str
    category: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    resource_name: Optional[str] = None
    details: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    status: str
    created_at: Optional[str] = None


class AuditLogListResponse(CamelModel):
    logs: list[AuditLogResponse]
    total: int


class AuditCleanupRequest(CamelModel):
    before_date: Optional[datetime] = None


class AuditCleanupResponse(CamelModel):
    message: str
    deleted_count: int


class AuditStatsResponse(ResponseModel):
    total: int
    today: int
    this_week: int
    this_month: int
    by_category: list[dict[str, Any]]
    by_status: list[dict[str, Any]]
    recent_activity: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Database management
# ---------------------------------------------------------------------------


class BackupResponse(ResponseModel):
    id: int
    name: str
    type: str
    status: str
    file_path: Optional[str] = None
    file_size: Optional[str] = None
    checksum: Optional[str] = None
    error_message: Optional[str] = None
    created_by_user_id: Optional[int] = None
    schedule_id: Optional[int] = None
    requested_at: Optional[str] = None
    completed_at: Optional[str] = None


class BackupCreatedResponse(CamelModel):
    message: str = "Backup created successfully"
    success: bool = True
    backup_id: Optional[int] = None
    file_path: Optional[str] = None
    file_size: Optional[str] = None
    checksum: Optional[str] = None


class ScheduleResponse(ResponseModel):
    id: int
    name: str
    cron_expression: str
    is_active: bool
    retention_days: int
    created_by_user_id: Optional[int] = None
    last_run_at: Optional[str] = None
    next_run_at: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ScheduleCreate(CamelModel):
    name: str = Field(min_length=1, max_length=255)
    cron_expression: str = Field(min_length=1, max_length=100)
    is_active: bool = True
    retention_days: int = Field(30, ge=1, le=3650)


class ScheduleUpdate(CamelModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    cron_expression: Optional[str] = Field(None, min_length=1, max_length=100)
    is_active: Optional[bool] = None
    retention_days: Optional[int] = Field(None, ge=1, le=3650)


class QueryRequest(CamelModel):
    query: Optional[str] = None
    confirm_delete: Optional[str] = None


class QueryResponse(CamelModel):
    success: bool = True
    result: list[dict[str, Any]]
    rows_affected: str
    execution_time: str
    query_type: str


class QueryLogResponse(ResponseModel):
    id: int
    query: str
    query_type: str
    status: str
    rows_affected: Optional[str] = None
    execution_time: Optional[str] = None
    error_message: Optional[str] = None
    executed_by_user_id: Optional[int] = None
    executed_by_username: Optional[str] = None
    executed_at: Optional[str] = None


# ---------------------------------------------------------------------------
# License
# ---------------------------------------------------------------------------


class LicenseKeyRequest(CamelModel):
    license_key: str = Field(min_length=1, max_length=2048)


class LicenseInfoResponse(ResponseModel):
    license_key: Optional[str] = None
    tenant_id: Optional[str] = None
    hardware_id: Optional[str] = None
    modules: list[str] = Field(default_factory=list)
    expiry: Optional[str] = None
    last_validated_at: Optional[str] = None
    last_validation_status: str = "NONE"
    validation_message: Optional[str] = None


class LicenseActionResponse(CamelModel):
    success: bool
    message: str
    license: Optional[LicenseInfoResponse] = None


class LicenseModulesResponse(CamelModel):
    modules: list[str]
    is_master_admin: bool


class LicenseServerUrlResponse(CamelModel):
    url: Optional[str] = None
    configured: bool


class FingerprintResponse(CamelModel):
    fingerprint: str
    platform: str
    arch: str
    hostname: str
    instance_id: str


# ---------------------------------------------------------------------------
# EPM
# ---------------------------------------------------------------------------


class ApiKeyCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    expires_at: Optional[datetime] = None


class ApiKeyResponse(ResponseModel):
    """Safe view of a key. Never includes the raw key or its hash."""

    id: int
    name: str
    last_four: str
    created_by_user_id: Optional[int] = None
    is_active: bool
    last_used_at: Optional[str] = None
    expires_at: Optional[str] = None
    created_at: Optional[str] = None


class ApiKeyCreatedResponse(CamelModel):
    """Returned once at creation. key is never retrievable again."""

    id: int
    name: str
    key: str
    last_four: str
    created_at: Optional[str] = None
    expires_at: Optional[str] = None
    message: str = "Save this key securely. It will not be shown again."


class ProcessDetailsResponse(ResponseModel):
    id: int
    task_guid: str
    agent_guid: Optional[str] = None
    process_id: Optional[str] = None
    process_name: Optional[str] = None
    main_window_title: Optional[str] = None
    start_time: Optional[str] = None
    event_dt: Optional[str] = None
    idle_status: bool
    url_name: Optional[str] = None
    url_domain: Optional[str] = None
    lapsed_time: Optional[str] = None
    tag1: Optional[str] = None
    tag2: Optional[str] = None


class IngestResponse(CamelModel):
    message: str = "Process details ingested successfully"
    task_guid: str
