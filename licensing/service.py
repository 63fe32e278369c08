"""
licensing/service.py -- License lifecycle: activation, re-validation, gating.

Flow:
  1. A master admin submits a license key (POST /api/admin/license).
  2. activate_license() sends it with this machine's fingerprint to the
     license server and persists the outcome via save_license_from_activation().
  3. Every gated request runs local_license_status(), which checks the stored
     row against the current fingerprint without touching the network.

Invariant: a failed activation or re-validation never downgrades a license
that is currently OK. Only a successful server answer replaces it.

Master admins (users with is_system) are never gated, so they can always
reach the license page to fix a broken license.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from auth.models import User
from core.database import now_iso
from licensing.client import ActivationResponse, ValidationResponse, activate_with_server, validate_with_server
from licensing.fingerprint import get_machine_fingerprint
from licensing.models import LICENSE_MODULES, LicenseInfo, LocalLicenseStatus, ValidationStatus
from licensing.store import LicenseStore
from licensing.validator import get_local_license_status_message, is_expired, validate_local_license

logger = logging.getLogger("pcvisor.license")

_VALIDATION_REASON_STATUS = {
    "EXPIRED": ValidationStatus.EXPIRED.value,
    "INVALID_SIGNATURE": ValidationStatus.INVALID.value,
    "MALFORMED": ValidationStatus.INVALID.value,
    "NOT_FOUND": ValidationStatus.INVALID.value,
}


@dataclass
class LicenseActionResult:
    success: bool
    message: str
    license: LicenseInfo | None = None


def _known_modules(modules: list[str]) -> list[str]:
    return [m for m in modules if m in LICENSE_MODULES]


# ---------------------------------------------------------------------------
# Persisting server answers
# ---------------------------------------------------------------------------


def save_license_from_activation(store: LicenseStore, license_key: str, response: ActivationResponse) -> LicenseInfo:
    if response.activated and response.payload is not None:
        payload = response.payload
        return store.save(
            LicenseInfo(
                license_key=license_key,
                license_token=response.token or license_key,
                tenant_id=payload.tenant_id,
                hardware_id=payload.hardware_id or get_machine_fingerprint(),
                modules=_known_modules(payload.modules),
                expiry=payload.expiry,
                last_validated_at=now_iso(),
                last_validation_status=ValidationStatus.OK.value,
                validation_message="License activated and bound to this machine",
            )
        )

    return _record_failure(
        store, ValidationStatus.INVALID.value, f"License activation failed: {response.reason or 'Unknown error'}"
    )


def save_license_from_validation(store: LicenseStore, license_key: str, response: ValidationResponse) -> LicenseInfo:
    if response.valid and response.reason == "OK" and response.payload is not None:
        payload = response.payload
        base = store.get() or LicenseInfo()
        return store.save(
            LicenseInfo(
                license_key=license_key,
                license_token=base.license_token or license_key,
                tenant_id=payload.tenant_id,
                hardware_id=base.hardware_id,
                modules=_known_modules(payload.modules),
                expiry=payload.expiry,
                last_validated_at=now_iso(),
                last_validation_status=ValidationStatus.OK.value,
                validation_message="License validated successfully",
            )
        )

    return _record_failure(
        store,
        _VALIDATION_REASON_STATUS.get(response.reason, ValidationStatus.INVALID.value),
        f"License validation failed: {response.reason}",
    )


def _record_failure(store: LicenseStore, status: str, message: str) -> LicenseInfo:
    """Persist a refused activation or validation.

    An OK license is never downgraded. Any other stored row keeps its key,
    token, hardware binding and modules; only the status fields change.
    """
    existing = store.get()
    if existing is None:
        return store.save(
            LicenseInfo(last_validated_at=now_iso(), last_validation_status=status, validation_message=message)
        )
    if existing.last_validation_status == ValidationStatus.OK.value:
        return existing
    return store.update_status(status, message)


# ---------------------------------------------------------------------------
# Orchestration (called from the admin routes)
# ---------------------------------------------------------------------------


def activate_license(store: LicenseStore, license_key: str) -> LicenseActionResult:
    """Activate license_key against the license server for this machine."""
    result = activate_with_server(license_key, get_machine_fingerprint())
    if not result.success:
        return LicenseActionResult(success=False, message=result.error or "License activation failed")
    info = save_license_from_activation(store, license_key, result.data)
    if not result.data.activated:
        return LicenseActionResult(
            success=False,
            message=f"License activation failed: {result.data.reason or 'Unknown error'}",
            license=info,
        )
    logger.info("License activated for tenant %s", info.tenant_id)
    return LicenseActionResult(success=True, message=info.validation_message or "License activated", license=info)


def revalidate_license(store: LicenseStore) -> LicenseActionResult:
    """Ask the license server whether the stored key is still valid."""
    existing = store.get()
    if existing is None or not existing.license_key:
        return LicenseActionResult(success=False, message=get_local_license_status_message("NO_LICENSE"))
    result = validate_with_server(existing.license_key)
    if not result.success:
        return LicenseActionResult(success=False, message=result.error or "License validation failed", license=existing)
    info = save_license_from_validation(store, existing.license_key, result.data)
    ok = result.data.valid and result.data.reason == "OK"
    message = info.validation_message if ok else f"License validation failed: {result.data.reason}"
    return LicenseActionResult(success=ok, message=message or "", license=info)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------


def local_license_status(store: LicenseStore) -> LocalLicenseStatus:
    return validate_local_license(store.get(), get_machine_fingerprint())


def is_license_present(info: LicenseInfo | None) -> bool:
    return (
        info is not None
        and bool(info.license_token)
        and info.last_validation_status == ValidationStatus.OK.value
    )


def is_license_expired(info: LicenseInfo | None) -> bool:
    return info is None or is_expired(info.expiry)


def has_module(info: LicenseInfo | None, module: str) -> bool:
    if not is_license_present(info) or is_license_expired(info):
        return False
    return module in info.modules


def is_master_admin(user: User | None) -> bool:
    return user is not None and user.is_system


def get_available_modules(user: User | None, info: LicenseInfo | None) -> list[str]:
    if is_master_admin(user):
        return list(LICENSE_MODULES)
    if not is_license_present(info) or is_license_expired(info):
        return []
    return _known_modules(info.modules)


def check_license_for_login(store: LicenseStore, user: User) -> tuple[bool, str | None]:
    """Return (allowed, message). Master admins are always allowed."""
    if is_master_admin(user):
        return True, None
    status = local_license_status(store)
    if not status.ok:
        return False, get_local_license_status_message(status.reason)
    return True, None
