"""
api/routes/license.py -- License status, activation and machine fingerprint.

Routes:
  GET  /api/license-status               -- requires auth; stored license (no token)
  GET  /api/license/modules              -- requires auth; modules usable by the caller
  GET  /api/admin/license                -- master admin
  POST /api/admin/license                -- master admin; activate a key with the license server
  POST /api/admin/license/validate       -- master admin; re-check the stored key
  GET  /api/admin/license-server-url     -- master admin
  GET  /api/admin/license/fingerprint    -- master admin; what the license is bound to

Security:
  The signed license token is never returned. Only master admins (is_system)
  can change the license, and they are never locked out by license gating.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.models import (
    FingerprintResponse,
    LicenseActionResponse,
    LicenseInfoResponse,
    LicenseKeyRequest,
    LicenseModulesResponse,
    LicenseServerUrlResponse,
)
from api.request_context import record_audit
from audit.models import STATUS_FAILURE, STATUS_SUCCESS
from auth.dependencies import get_current_user, require_master_admin
from auth.models import User
from core.config import get_settings
from licensing.fingerprint import get_machine_fingerprint_details
from licensing.service import LicenseActionResult, activate_license, get_available_modules, is_master_admin, revalidate_license
from licensing.store import LicenseStore

logger = logging.getLogger("pcvisor.api.license")

# Auth policy:
# - /license-status, /license/modules: requires auth
# - /admin/license*: requires master admin (require_master_admin)
router = APIRouter()


def _store(request: Request) -> LicenseStore:
    return request.app.state.license_store


def _info_response(request: Request) -> LicenseInfoResponse:
    info = _store(request).get()
    if info is None:
        return LicenseInfoResponse()
    return LicenseInfoResponse.model_validate(info)


def _action_response(result: LicenseActionResult) -> JSONResponse:
    body = LicenseActionResponse(
        success=result.success,
        message=result.message,
        license=LicenseInfoResponse.model_validate(result.license) if result.license else None,
    )
    return JSONResponse(status_code=200 if result.success else 400, content=body.to_json_dict())


@router.get("/license-status", response_model=LicenseInfoResponse)
def license_status(request: Request, current_user: User = Depends(get_current_user)) -> LicenseInfoResponse:
    return _info_response(request)


@router.get("/license/modules", response_model=LicenseModulesResponse)
def license_modules(request: Request, current_user: User = Depends(get_current_user)) -> LicenseModulesResponse:
    return LicenseModulesResponse(
        modules=get_available_modules(current_user, _store(request).get()),
        is_master_admin=is_master_admin(current_user),
    )


@router.get("/admin/license", response_model=LicenseInfoResponse)
def get_license(request: Request, current_user: User = Depends(require_master_admin)) -> LicenseInfoResponse:
    return _info_response(request)


@router.post("/admin/license", response_model=LicenseActionResponse)
def activate(request: Request, body: LicenseKeyRequest, current_user: User = Depends(require_master_admin)):
    """Activate a license key for this machine. 400 carries the server's reason."""
    result = activate_license(_store(request), body.license_key.strip())
    record_audit(
        request,
        current_user,
        "activate_license",
        "system",
        resource_type="license",
        details=result.message,
        status=STATUS_SUCCESS if result.success else STATUS_FAILURE,
    )
    return _action_response(result)


@router.post("/admin/license/validate", response_model=LicenseActionResponse)
def revalidate(request: Request, current_user: User = Depends(require_master_admin)):
    result = revalidate_license(_store(request))
    record_audit(
        request,
        current_user,
        "validate_license",
        "system",
        resource_type="license",
        details=result.message,
        status=STATUS_SUCCESS if result.success else STATUS_FAILURE,
    )
    return _action_response(result)


@router.get("/admin/license-server-url", response_model=LicenseServerUrlResponse)
def license_server_url(current_user: User = Depends(require_master_admin)) -> LicenseServerUrlResponse:
    url = get_settings().license_server_url
    return LicenseServerUrlResponse(url=url or None, configured=bool(url))


@router.get("/admin/license/fingerprint", response_model=FingerprintResponse)
def fingerprint(current_user: User = Depends(require_master_admin)) -> FingerprintResponse:
    details = get_machine_fingerprint_details()
    return FingerprintResponse.model_validate(details)
