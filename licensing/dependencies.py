"""
licensing/dependencies.py -- FastAPI dependency that gates routes on a licensed module.

Usage:
    @router.get("/epm/process-details")
    def route(user: User = Depends(require_module(LicenseModule.EPM))): ...
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.dependencies import get_current_user
from auth.models import User
from licensing.models import LicenseModule
from licensing.service import is_master_admin, local_license_status
from licensing.validator import get_local_license_status_message


def require_module(module: LicenseModule):
    """Return a dependency that admits master admins and users of a licensed module."""

    def dependency(request: Request) -> User:
        user = get_current_user(request)
        if is_master_admin(user):
            return user
        status = local_license_status(request.app.state.license_store)
        if not status.ok:
            raise HTTPException(
                status_code=403,
                detail={"code": "license_required", "message": get_local_license_status_message(status.reason)},
            )
        if module.value not in status.payload.modules:
            raise HTTPException(
                status_code=403,
                detail={
                    "code": "module_not_licensed",
                    "message": f'Module "{module.value}" is not licensed. Contact administrator.',
                },
            )
        return user

    return dependency
