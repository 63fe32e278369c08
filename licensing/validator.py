"""
licensing/validator.py -- Signed license tokens and the local license check.

Token format:
    <payload_b64url>.<signature_b64url>

  payload_b64url    base64url (no padding) of the JSON payload
                    {"tenantId", "modules", "expiry", "hardwareId"}
  signature_b64url  base64url (no padding) of HMAC-SHA256(LICENSE_SECRET,
                    payload_b64url as ASCII)

The signature covers the encoded payload segment exactly as transmitted, so
verification never depends on JSON re-serialization.

Security:
  Signatures are compared with hmac.compare_digest (constant time).
  Anyone holding LICENSE_SECRET can mint tokens. The built-in default secret
  is public; core.config warns when it is in use outside DEBUG.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import json
import logging
from datetime import datetime

from core.config import get_settings
from core.database import parse_iso, utcnow
from licensing.models import LicenseFailure, LicenseInfo, LicensePayload, LocalLicenseStatus, ValidationStatus

logger = logging.getLogger("pcvisor.license")

STATUS_MESSAGES: dict[LicenseFailure, str] = {
    LicenseFailure.NO_LICENSE: "License missing or invalid. Contact administrator.",
    LicenseFailure.INVALID: "License is invalid. Contact administrator.",
    LicenseFailure.EXPIRED: "License has expired. Contact administrator.",
    LicenseFailure.HARDWARE_MISMATCH: "License is bound to a different machine.",
}
_DEFAULT_MESSAGE = "License error. Contact administrator."


def get_local_license_status_message(reason: LicenseFailure | str | None) -> str:
    try:
        return STATUS_MESSAGES[LicenseFailure(reason)]
    except ValueError:
        return _DEFAULT_MESSAGE


# ---------------------------------------------------------------------------
# base64url helpers
# ---------------------------------------------------------------------------


def _b64url_encode(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def _b64url_decode(segment: str) -> bytes:
    padded = segment + "=" * (-len(segment) % 4)
    return base64.urlsafe_b64decode(padded.encode("ascii"))


def _sign(payload_segment: str, secret: str) -> str:
    digest = hmac.new(secret.encode("utf-8"), payload_segment.encode("ascii"), hashlib.sha256).digest()
    return _b64url_encode(digest)


# ---------------------------------------------------------------------------
# Token encode / verify
# ---------------------------------------------------------------------------


def sign_license_token(payload: LicensePayload, secret: str | None = None) -> str:
    """Mint a token for payload. Used by the CLI and the test suite."""
    secret = secret if secret is not None else get_settings().license_secret
    body = json.dumps(payload.to_dict(), separators=(",", ":")).encode("utf-8")
    segment = _b64url_encode(body)
    return f"{segment}.{_sign(segment, secret)}"


def verify_license_token(token: str, secret: str | None = None) -> LicensePayload | None:
    """Return the payload of a correctly signed token, or None.

    None covers every failure: wrong number of segments, bad signature,
    undecodable base64, non-JSON payload, or missing payload fields.
    """
    secret = secret if secret is not None else get_settings().license_secret
    parts = token.split(".") if token else []
    if len(parts) != 2:
        return None
    segment, signature = parts
    try:
        expected = _sign(segment, secret)
    except UnicodeEncodeError:
        return None
    if not hmac.compare_digest(expected, signature):
        return None
    try:
        data = json.loads(_b64url_decode(segment))
    except (binascii.Error, UnicodeDecodeError, ValueError):
        return None
    return _payload_from_dict(data)


def _payload_from_dict(data) -> LicensePayload | None:
    if not isinstance(data, dict):
        return None
    tenant_id = data.get("tenantId")
    modules = data.get("modules")
    expiry = data.get("expiry")
    hardware_id = data.get("hardwareId")
    if not isinstance(tenant_id, str) or not isinstance(expiry, str) or not isinstance(hardware_id, str):
        return None
    if not isinstance(modules, list) or not all(isinstance(m, str) for m in modules):
        return None
    return LicensePayload(tenant_id=tenant_id, modules=modules, expiry=expiry, hardware_id=hardware_id)


# ---------------------------------------------------------------------------
# Local check
# ---------------------------------------------------------------------------


def is_expired(expiry: str | None, now: datetime | None = None) -> bool:
    """True when expiry is missing, unparseable, or in the past."""
    parsed = parse_iso(expiry)
    if parsed is None:
        return True
    return parsed < (now or utcnow())


def validate_local_license(
    info: LicenseInfo | None,
    fingerprint: str,
    now: datetime | None = None,
    secret: str | None = None,
) -> LocalLicenseStatus:
    """Check the stored license against this machine without any network call.

    Licenses activated through the license server (status OK) are trusted
    from the stored row: only expiry and hardware binding are re-checked.
    Anything else must carry a token that verifies with LICENSE_SECRET.
    """
    if info is None or not info.license_token:
        return LocalLicenseStatus(ok=False, reason=LicenseFailure.NO_LICENSE)

    try:
        if info.last_validation_status == ValidationStatus.OK.value:
            if is_expired(info.expiry, now):
                return LocalLicenseStatus(ok=False, reason=LicenseFailure.EXPIRED)
            if info.hardware_id and info.hardware_id != fingerprint:
                return LocalLicenseStatus(ok=False, reason=LicenseFailure.HARDWARE_MISMATCH)
            payload = LicensePayload(
                tenant_id=info.tenant_id or "",
                modules=list(info.modules),
                expiry=info.expiry or "",
                hardware_id=info.hardware_id or fingerprint,
            )
            return LocalLicenseStatus(ok=True, payload=payload)

        payload = verify_license_token(info.license_token, secret)
        if payload is None:
            return LocalLicenseStatus(ok=False, reason=LicenseFailure.INVALID)
        if is_expired(payload.expiry, now):
            return LocalLicenseStatus(ok=False, reason=LicenseFailure.EXPIRED)
        if payload.hardware_id != fingerprint:
            return LocalLicenseStatus(ok=False, reason=LicenseFailure.HARDWARE_MISMATCH)
        return LocalLicenseStatus(ok=True, payload=payload)
    except (TypeError, ValueError) as e:
        logger.error("Local license validation failed: %s", e)
        return LocalLicenseStatus(ok=False, reason=LicenseFailure.INVALID)
