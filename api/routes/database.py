"""
api/routes/database.py -- Database management console: backups, schedules, SQL console.

Routes:
  GET    /api/db/backups                -- admin
  POST   /api/db/backups                -- admin; runs pg_dump now
  GET    /api/db/backups/{id}/download  -- admin; application/sql attachment
  DELETE /api/db/backups/{id}           -- admin; removes row and file
  GET    /api/db/schedules              -- admin
  POST   /api/db/schedules              -- admin; arms the timer
  PATCH  /api/db/schedules/{id}         -- admin; re-arms or cancels the timer
  DELETE /api/db/schedules/{id}         -- admin
  GET    /api/db/query-logs             -- admin; latest 100
  POST   /api/db/query                  -- admin; see backups/query.py for the rules
  GET    /api/db/settings               -- admin
  PATCH  /api/db/settings               -- admin; audited
  GET    /api/db/timezones              -- admin; fixed list for the settings form

Schedule routes are async: the scheduler arms asyncio tasks and must be
called on the event loop. Blocking work (store access, pg_dump, console
queries) is pushed to a worker thread with asyncio.to_thread.

Errors use the standard envelope. A refused or failed console statement
carries its query type in error.detail; a DELETE awaiting confirmation has
code "confirmation_required".
"""

from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import Response

from admin.models import DatabaseSettings, DatabaseSettingsPatch
from api.models import (
    BackupCreatedResponse,
    BackupResponse,
    MessageResponse,
    QueryLogResponse,
    QueryRequest,
    QueryResponse,
    ScheduleCreate,
    ScheduleResponse,
    ScheduleUpdate,
)
from api.request_context import api_error, client_ip, record_audit, user_agent
from auth.dependencies import require_admin
from auth.models import User
from backups.cron import calculate_next_run, validate_cron_expression
from backups.models import BackupSchedule
from backups.query import ConfirmationRequired, QueryForbidden
from backups.store import BackupStore

logger = logging.getLogger("pcvisor.api.database")

# Auth policy: every route requires admin (require_admin).
router = APIRouter(prefix="/db")

TIMEZONES = [
    "UTC",
    "America/New_York",
    "America/Chicago",
    "America/Denver",
    "America/Los_Angeles",
    "America/Toronto",
    "America/Vancouver",
    "America/Sao_Paulo",
    "Europe/London",
    "Europe/Paris",
    "Europe/Berlin",
    "Europe/Moscow",
    "Asia/Dubai",
    "Asia/Kolkata",
    "Asia/Singapore",
    "Asia/Tokyo",
    "Asia/Shanghai",
    "Asia/Hong_Kong",
    "Australia/Sydney",
    "Australia/Melbourne",
    "Pacific/Auckland",
]
QUERY_LOG_LIMIT = 100


def _store(request: Request) -> BackupStore:
    return request.app.state.backup_store


# ---------------------------------------------------------------------------
# Backups
# ---------------------------------------------------------------------------


@router.get("/backups", response_model=list[BackupResponse])
def list_backups(request: Request, current_user: User = Depends(require_admin)) -> list[BackupResponse]:
    return [BackupResponse.model_validate(b) for b in _store(request).list_backups()]


@router.post("/backups", response_model=BackupCreatedResponse)
async def create_backup(request: Request, current_user: User = Depends(require_admin)) -> BackupCreatedResponse:
    result = await asyncio.to_thread(
        request.app.state.backup_service.create_backup,
        user_id=current_user.id,
        username=current_user.username,
    )
    if not result.success:
        raise api_error(500, "Backup failed", code="backup_failed", detail=result.error)
    return BackupCreatedResponse(
        backup_id=result.backup_id,
        file_path=result.file_path,
        file_size=result.file_size,
        checksum=result.checksum,
    )


@router.get("/backups/{backup_id}/download")
def download_backup(request: Request, backup_id: int, current_user: User = Depends(require_admin)) -> Response:
    backup = _store(request).get_backup(backup_id)
    if backup is None:
        raise api_error(404, "Backup not found")
    if not backup.file_path:
        raise api_error(404, "Backup file not available")
    content = request.app.state.backup_service.get_backup_file_content(backup.file_path)
    if content is None:
        raise api_error(404, "Backup file not found on disk")

    filename = Path(backup.file_path).name or "backup.sql"
    return Response(
        content=content,
        media_type="application/sql",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete("/backups/{backup_id}", response_model=MessageResponse)
def delete_backup(request: Request, backup_id: int, current_user: User = Depends(require_admin)) -> MessageResponse:
    store = _store(request)
    backup = store.get_backup(backup_id)
    if backup is None:
        raise api_error(404, "Backup not found")
    if backup.file_path:
        request.app.state.backup_service.delete_backup_file(backup.file_path)
    store.delete_backup(backup_id)

    record_audit(
        request,
        current_user,
        "delete_backup",
        "system",
        resource_type="backup",
        resource_id=backup_id,
        resource_name=backup.name,
        details=f"Deleted backup: {backup.name}",
    )
    return MessageResponse(message="Backup deleted successfully")


# ---------------------------------------------------------------------------
# Schedules
# ---------------------------------------------------------------------------


def _check_cron(expression: str) -> None:
    error = validate_cron_expression(expression)
    if error:
        raise api_error(400, error, code="invalid_cron_expression")


def _get_schedule_or_404(store: BackupStore, schedule_id: int) -> BackupSchedule:
    schedule = store.get_schedule(schedule_id)
    if schedule is None:
        raise api_error(404, "Schedule not found")
    return schedule


@router.get("/schedules", response_model=list[ScheduleResponse])
def list_schedules(request: Request, current_user: User = Depends(require_admin)) -> list[ScheduleResponse]:
    return [ScheduleResponse.model_validate(s) for s in _store(request).list_schedules()]


@router.post("/schedules", response_model=ScheduleResponse)
async def create_schedule(
    request: Request,
    body: ScheduleCreate,
    current_user: User = Depends(require_admin),
) -> ScheduleResponse:
    _check_cron(body.cron_expression)
    store = _store(request)
    schedule_id = await asyncio.to_thread(
        store.create_schedule,
        BackupSchedule(
            name=body.name,
            cron_expression=body.cron_expression,
            is_active=body.is_active,
            retention_days=body.retention_days,
            created_by_user_id=current_user.id,
            next_run_at=calculate_next_run(body.cron_expression).isoformat(),
        ),
    )
    schedule = await asyncio.to_thread(_get_schedule_or_404, store, schedule_id)
    request.app.state.backup_scheduler.schedule_backup_job(schedule)

    await asyncio.to_thread(
        record_audit,
        request,
        current_user,
        "create_backup_schedule",
        "system",
        resource_type="backup_schedule",
        resource_id=schedule_id,
        resource_name=schedule.name,
        details=f"Created backup schedule: {schedule.name}",
    )
    return ScheduleResponse.model_validate(await asyncio.to_thread(_get_schedule_or_404, store, schedule_id))


@router.patch("/schedules/{schedule_id}", response_model=ScheduleResponse)
async def update_schedule(
    request: Request,
    schedule_id: int,
    body: ScheduleUpdate,
    current_user: User = Depends(require_admin),
) -> ScheduleResponse:
    store = _store(request)
    scheduler = request.app.state.backup_scheduler
    await asyncio.to_thread(_get_schedule_or_404, store, schedule_id)

    changes = {k: v for k, v in body.model_dump(exclude_unset=True).items() if v is not None}
    if "cron_expression" in changes:
        _check_cron(changes["cron_expression"])
        changes["next_run_at"] = calculate_next_run(changes["cron_expression"]).isoformat()

    scheduler.cancel_scheduled_job(schedule_id)
    if changes:
        await asyncio.to_thread(store.update_schedule, schedule_id, **changes)
    schedule = await asyncio.to_thread(_get_schedule_or_404, store, schedule_id)
    next_run = scheduler.schedule_backup_job(schedule)
    if next_run is not None:
        await asyncio.to_thread(store.update_schedule, schedule_id, next_run_at=next_run.isoformat())

    await asyncio.to_thread(
        record_audit,
        request,
        current_user,
        "update_backup_schedule",
        "system",
        resource_type="backup_schedule",
        resource_id=schedule_id,
        resource_name=schedule.name,
        details=f"Updated backup schedule: {schedule.name}",
    )
    return ScheduleResponse.model_validate(await asyncio.to_thread(_get_schedule_or_404, store, schedule_id))


@router.delete("/schedules/{schedule_id}", response_model=MessageResponse)
async def delete_schedule(
    request: Request,
    schedule_id: int,
    current_user: User = Depends(require_admin),
) -> MessageResponse:
    store = _store(request)
    schedule = await asyncio.to_thread(_get_schedule_or_404, store, schedule_id)
    request.app.state.backup_scheduler.cancel_scheduled_job(schedule_id)
    await asyncio.to_thread(store.delete_schedule, schedule_id)

    await asyncio.to_thread(
        record_audit,
        request,
        current_user,
        "delete_backup_schedule",
        "system",
        resource_type="backup_schedule",
        resource_id=schedule_id,
        resource_name=schedule.name,
        details=f"Deleted backup schedule: {schedule.name}",
    )
    return MessageResponse(message="Schedule deleted successfully")


# ---------------------------------------------------------------------------
# SQL console
# ---------------------------------------------------------------------------


@router.get("/query-logs", response_model=list[QueryLogResponse])
def list_query_logs(request: Request, current_user: User = Depends(require_admin)) -> list[QueryLogResponse]:
    return [QueryLogResponse.model_validate(q) for q in _store(request).list_query_logs(QUERY_LOG_LIMIT)]


@router.post("/query", response_model=QueryResponse)
async def execute_query(request: Request, body: QueryRequest, current_user: User = Depends(require_admin)):
    if not body.query or not body.query.strip():
        raise api_error(400, "Query is required")

    db_settings = await asyncio.to_thread(request.app.state.settings_store.get, DatabaseSettings)
    try:
        outcome = await asyncio.to_thread(
            request.app.state.query_console.execute,
            body.query,
            current_user,
            confirm_delete=body.confirm_delete,
            timeout_seconds=int(db_settings.max_query_execution_time),
            ip_address=client_ip(request),
            user_agent=user_agent(request),
        )
    except QueryForbidden as e:
        raise api_error(403, str(e), code="query_forbidden")
    except ConfirmationRequired as e:
        raise api_error(400, str(e), code="confirmation_required", detail="DELETE")

    if not outcome.success:
        raise api_error(400, outcome.error or "Query failed", code="query_failed", detail=outcome.query_type)
    return QueryResponse(
        result=jsonable_encoder(outcome.rows),
        rows_affected=outcome.rows_affected,
        execution_time=outcome.execution_time,
        query_type=outcome.query_type,
    )


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@router.get("/settings", response_model=DatabaseSettings)
def get_database_settings(request: Request, current_user: User = Depends(require_admin)) -> DatabaseSettings:
    return request.app.state.settings_store.get(DatabaseSettings)


@router.patch("/settings", response_model=DatabaseSettings)
def update_database_settings(
    request: Request,
    body: DatabaseSettingsPatch,
    current_user: User = Depends(require_admin),
) -> DatabaseSettings:
    updated = request.app.state.settings_store.update(
        DatabaseSettings, body.model_dump(exclude_unset=True), current_user.id
    )
    record_audit(
        request,
        current_user,
        "update_database_settings",
        "system",
        resource_type="database_settings",
        details="Database settings were updated",
    )
    return updated


@router.get("/timezones")
def list_timezones(current_user: User = Depends(require_admin)) -> list[str]:
    return TIMEZONES
