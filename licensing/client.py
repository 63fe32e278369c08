"""
licensing/client.py -- HTTP client for the remote license server.

Endpoints (relative to LICENSE_SERVER_URL):
  POST /api/licenses/activate   {"licenseKey", "hardwareId"}
  POST /api/licenses/validate   {"licenseKey"}

Failure contract: nothing in this module raises. Every call returns a
ServerResult whose success flag and error string describe what went wrong
(not configured, network error, non-2xx status, or a body that does not match
the expected schema). The route layer decides what to persist.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Generic, Optional, TypeVar

import requests
from pydantic import ValidationError

from core.config import get_settings
from core.models import CamelModel

logger = logging.getLogger("pcvisor.license")

# Module-level session shared across calls for connection pooling.
# The license server is a single known host; 3 redirects is generous.
_session = requests.Session()
_session.max_redirects = 3

T = TypeVar("T")


class ServerPayload(CamelModel):
    tenant_id: str
    modules: list[str]
    expiry: str
    hardware_id: Optional[str] = None


class ActivationResponse(CamelModel):
    activated: bool
    token: Optional[str] = None
    payload: Optional[ServerPayload] = None
    reason: Optional[str] = None


class ValidationResponse(CamelModel):
    valid: bool
    reason: str
    payload: Optional[ServerPayload] = None


@dataclass
class ServerResult(Generic[T]):
    success: bool
    data: T | None = None
    error: str | None = None


def _post(path: str, body: dict, model: type[T]) -> ServerResult[T]:
    settings = get_settings()
    base = settings.license_server_url.rstrip("/")
    if not base:
        return ServerResult(success=False, error="License server URL not configured")
    url = f"{base}{path}"
    try:
        resp = _session.post(url, json=body, timeout=settings.license_server_timeout)
    except requests.RequestException as e:
        logger.warning("License server request to %s failed: %s", url, e)
        return ServerResult(success=False, error=f"Could not reach license server: {e}")
    if not resp.ok:
        logger.warning("License server %s returned status %d", url, resp.status_code)
        return ServerResult(success=False, error=f"License server returned status {resp.status_code}")
    try:
        data = model.model_validate(resp.json())
    except (ValueError, ValidationError) as e:
        logger.warning("Invalid response from license server %s: %s", url, e)
        return ServerResult(success=False, error="Invalid response from license server")
    return ServerResult(success=True, data=data)


def activate_with_server(license_key: str, hardware_id: str) -> ServerResult[ActivationResponse]:
    return _post("/api/licenses/activate", {"licenseKey": license_key, "hardwareId": hardware_id}, ActivationResponse)


def validate_with_server(license_key: str) -> ServerResult[ValidationResponse]:
    return _post("/api/licenses/validate", {"licenseKey": license_key}, ValidationResponse)
