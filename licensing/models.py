"""
licensing/models.py -- Domain types for the license subsystem.

LicenseInfo is the single persisted license row. LicensePayload is what a
valid license grants: tenant, modules, expiry, and the machine it is bound
to. LocalLicenseStatus is the outcome of checking the stored license against
this machine.

Layer rule: no imports from api/ or other feature packages.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class LicenseModule(str, Enum):
    CUSTOM_PORTAL = "CUSTOM_PORTAL"
    ASSET_MANAGEMENT = "ASSET_MANAGEMENT"
    SERVICE_DESK = "SERVICE_DESK"
    EPM = "EPM"


LICENSE_MODULES: list[str] = [m.value for m in LicenseModule]


class ValidationStatus(str, Enum):
    """Value of LicenseInfo.last_validation_status."""

    NONE = "NONE"
    OK = "OK"
    INVALID = "INVALID"
    EXPIRED = "EXPIRED"


class LicenseFailure(str, Enum):
    """Why the local license check failed."""

    NO_LICENSE = "NO_LICENSE"
    INVALID = "INVALID"
    EXPIRED = "EXPIRED"
    HARDWARE_MISMATCH = "HARDWARE_MISMATCH"


@dataclass
class LicensePayload:
    tenant_id: str
    modules: list[str]
    expiry: str  # ISO 8601
    hardware_id: str

    def to_dict(self) -> dict:
        return {
            "tenantId": self.tenant_id,
            "modules": list(self.modules),
            "expiry": self.expiry,
            "hardwareId": self.hardware_id,
        }


@dataclass
class LocalLicenseStatus:
    ok: bool
    payload: LicensePayload | None = None
    reason: LicenseFailure | None = None


@dataclass
class LicenseInfo:
    """The stored license. license_token is either a signed offline token or,
    for server-activated licenses without one, the license key itself.
    """

    id: int | None = None
    license_key: str | None = None
    license_token: str | None = None
    tenant_id: str | None = None
    hardware_id: str | None = None
    modules: list[str] = field(default_factory=list)
    expiry: str | None = None
    last_validated_at: str | None = None
    last_validation_status: str = ValidationStatus.NONE.value
    validation_message: str | None = None
    updated_at: str | None = None
