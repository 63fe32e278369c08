"""
api/routes/system.py -- Host monitoring for the admin console.

Routes:
  GET /api/admin/system/metrics  -- admin; CPU, memory, disk, uptime, process
  GET /api/admin/system/health   -- admin; healthy / warning / critical verdict

Both sample psutil on every call (core/monitoring.py). CPU sampling blocks
for a fraction of a second, so these are sync routes run in the thread pool.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends

from auth.dependencies import require_admin
from auth.models import User
from core.monitoring import check_health, collect_metrics

# Auth policy: every route requires admin (require_admin).
router = APIRouter(prefix="/admin/system")


@router.get("/metrics")
def system_metrics(current_user: User = Depends(require_admin)) -> dict:
    return collect_metrics()


@router.get("/health")
def system_health(current_user: User = Depends(require_admin)) -> dict:
    return check_health().to_dict()
