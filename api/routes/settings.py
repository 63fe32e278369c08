"""
api/routes/settings.py -- Organization, security, notification and system settings.

Routes:
  GET    /api/organization/public     -- public branding subset (login page)
  GET    /api/organization            -- requires auth
  PATCH  /api/organization            -- admin
  POST   /api/organization/upload     -- admin; multipart logo / favicon upload
  DELETE /api/organization/upload     -- admin; remove logo / favicon
  GET    /api/notifications           -- admin; SMTP password masked
  PATCH  /api/notifications           -- admin
  POST   /api/notifications/test-email -- admin; configuration check only
  GET    /api/security                -- admin
  PATCH  /api/security                -- admin; audited
  GET    /api/system-config           -- admin
  PATCH  /api/system-config           -- admin; audited

PATCH bodies are partial: only keys the client sent are merged into the
stored section, then the whole section is re-validated.

Security:
  Uploads are limited to 2 MB and an image MIME allow-list. The stored file
  name is generated server-side and the client's file name is ignored.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import time
from pathlib import Path

from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from admin.models import (
    SECRET_MASK,
    NotificationSettings,
    NotificationSettingsPatch,
    OrganizationSettings,
    OrganizationSettingsPatch,
    PublicOrganization,
    SecuritySettings,
    SecuritySettingsPatch,
    SystemConfig,
    SystemConfigPatch,
)
from admin.store import SettingsStore
from api.models import MessageResponse, UploadDeleteRequest
from api.request_context import api_error, record_audit
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from core.config import get_settings

logger = logging.getLogger("pcvisor.api.settings")

_settings = get_settings()

# Auth policy:
# - GET /organization/public: public -- rendered on the login screen
# - GET /organization: requires auth
# - everything else: requires admin
router = APIRouter()

MAX_UPLOAD_BYTES = 2 * 1024 * 1024
UPLOAD_URL_PREFIX = "/uploads/"
# MIME type -> stored file extension
ALLOWED_UPLOAD_TYPES = {
    "image/png": ".png",
    "image/jpeg": ".jpg",
    "image/gif": ".gif",
    "image/svg+xml": ".svg",
    "image/x-icon": ".ico",
    "image/vnd.microsoft.icon": ".ico",
}
_BRANDING_FIELDS = {"logo": "logo_url", "favicon": "favicon_url"}


def _store(request: Request) -> SettingsStore:
    return request.app.state.settings_store


# ---------------------------------------------------------------------------
# Organization
# ---------------------------------------------------------------------------


@router.get("/organization/public", response_model=PublicOrganization)
def public_organization(request: Request) -> PublicOrganization:
    return PublicOrganization.from_settings(_store(request).get(OrganizationSettings))


@router.get("/organization", response_model=OrganizationSettings)
def get_organization(request: Request, current_user: User = Depends(get_current_user)) -> OrganizationSettings:
    return _store(request).get(OrganizationSettings)


@router.patch("/organization", response_model=OrganizationSettings)
def update_organization(
    request: Request,
    body: OrganizationSettingsPatch,
    current_user: User = Depends(require_admin),
) -> OrganizationSettings:
    changes = body.model_dump(exclude_unset=True)
    updated = _store(request).update(OrganizationSettings, changes, current_user.id)
    record_audit(
        request,
        current_user,
        "update_organization_settings",
        "settings",
        resource_type="organization_settings",
        details="Organization settings were updated",
    )
    return updated


def _remove_upload(url: str | None) -> None:
    """Delete a previously uploaded branding file. Only files under UPLOAD_DIR are touched."""
    if not url or not url.startswith(UPLOAD_URL_PREFIX):
        return
    path = Path(_settings.upload_dir) / Path(url).name
    try:
        path.unlink(missing_ok=True)
    except OSError as e:
        logger.warning("Could not delete uploaded file %s: %s", path, e)


def _save_branding_file(store: SettingsStore, kind: str, extension: str, content: bytes, user: User) -> dict:
    """Write the upload and point the organization settings at it. Blocking."""
    upload_dir = Path(_settings.upload_dir)
    upload_dir.mkdir(parents=True, exist_ok=True)
    filename = f"{kind}-{int(time.time() * 1000)}-{secrets.token_hex(4)}{extension}"
    (upload_dir / filename).write_bytes(content)
    file_url = UPLOAD_URL_PREFIX + filename

    previous = getattr(store.get(OrganizationSettings), _BRANDING_FIELDS[kind])
    updated = store.update(OrganizationSettings, {_BRANDING_FIELDS[kind]: file_url}, user.id)
    if previous != file_url:
        _remove_upload(previous)

    logger.info("%s uploaded new %s %s (%d bytes)", user.username, kind, filename, len(content))
    return {"message": "File uploaded successfully", "url": file_url, "settings": updated.to_json_dict()}


@router.post("/organization/upload")
async def upload_branding_file(
    request: Request,
    file: UploadFile | None = File(None),
    type: str | None = Form(None),
    current_user: User = Depends(require_admin),
) -> dict:
    """Store a logo or favicon and point the organization settings at it."""
    if file is None:
        raise api_error(400, "No file uploaded")
    extension = ALLOWED_UPLOAD_TYPES.get(file.content_type or "")
    if extension is None:
        raise api_error(400, "Invalid file type. Only PNG, JPEG, GIF, SVG, and ICO are allowed.")
    if type not in _BRANDING_FIELDS:
        raise api_error(400, "Invalid file type. Must be 'logo' or 'favicon'")

    content = await file.read(MAX_UPLOAD_BYTES + 1)
    if len(content) > MAX_UPLOAD_BYTES:
        raise api_error(413, "File too large. Maximum size is 2MB.", code="file_too_large")

    return await asyncio.to_thread(_save_branding_file, _store(request), type, extension, content, current_user)


@router.delete("/organization/upload")
def delete_branding_file(
    request: Request,
    body: UploadDeleteRequest,
    current_user: User = Depends(require_admin),
) -> dict:
    if body.type not in _BRANDING_FIELDS:
        raise api_error(400, "Invalid type. Must be 'logo' or 'favicon'")
    field = _BRANDING_FIELDS[body.type]

    store = _store(request)
    _remove_upload(getattr(store.get(OrganizationSettings), field))
    updated = store.update(OrganizationSettings, {field: None}, current_user.id)
    return {"message": "File deleted successfully", "settings": updated.to_json_dict()}


# ---------------------------------------------------------------------------
# Notification settings
# ---------------------------------------------------------------------------


@router.get("/notifications", response_model=NotificationSettings)
def get_notification_settings(
    request: Request,
    current_user: User = Depends(require_admin),
) -> NotificationSettings:
    return _store(request).get(NotificationSettings).masked()


@router.patch("/notifications", response_model=NotificationSettings)
def update_notification_settings(
    request: Request,
    body: NotificationSettingsPatch,
    current_user: User = Depends(require_admin),
) -> NotificationSettings:
    changes = body.model_dump(exclude_unset=True)
    # The console echoes the mask back when the password was not edited.
    if changes.get("smtp_password") == SECRET_MASK:
        del changes["smtp_password"]
    updated = _store(request).update(NotificationSettings, changes, current_user.id)
    record_audit(
        request,
        current_user,
        "update_notification_settings",
        "settings",
        resource_type="notification_settings",
        details="Notification settings were updated",
    )
    return updated.masked()


@router.post("/notifications/test-email", response_model=MessageResponse)
def test_email(request: Request, current_user: User = Depends(require_admin)) -> MessageResponse:
    settings = _store(request).get(NotificationSettings)
    if not settings.email_notifications_enabled:
        raise api_error(400, "Email notifications are not enabled")
    if not settings.smtp_host or not settings.smtp_from_email:
        raise api_error(400, "SMTP configuration is incomplete")
    return MessageResponse(message="Test email functionality will be implemented with email service integration")


# ---------------------------------------------------------------------------
# Security settings
# ---------------------------------------------------------------------------


@router.get("/security", response_model=SecuritySettings)
def get_security_settings(request: Request, current_user: User = Depends(require_admin)) -> SecuritySettings:
    return _store(request).get(SecuritySettings)


@router.patch("/security", response_model=SecuritySettings)
def update_security_settings(
    request: Request,
    body: SecuritySettingsPatch,
    current_user: User = Depends(require_admin),
) -> SecuritySettings:
    updated = _store(request).update(SecuritySettings, body.model_dump(exclude_unset=True), current_user.id)
    record_audit(
        request,
        current_user,
        "update_security_settings",
        "security",
        resource_type="security_settings",
        details="Security settings were updated",
    )
    return updated


# ---------------------------------------------------------------------------
# System configuration
# ---------------------------------------------------------------------------


@router.get("/system-config", response_model=SystemConfig)
def get_system_config(request: Request, current_user: User = Depends(require_admin)) -> SystemConfig:
    return _store(request).get(SystemConfig)


@router.patch("/system-config", response_model=SystemConfig)
def update_system_config(
    request: Request,
    body: SystemConfigPatch,
    current_user: User = Depends(require_admin),
) -> SystemConfig:
    updated = _store(request).update(SystemConfig, body.model_dump(exclude_unset=True), current_user.id)
    record_audit(
        request,
        current_user,
        "update_system_config",
        "system",
        resource_type="system_config",
        details="System configuration was updated",
    )
    return updated
