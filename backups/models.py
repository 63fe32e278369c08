"""
backups/models.py -- Domain dataclasses for backups, schedules and the query console.

Layer rule: no imports from api/ or other feature packages.
"""

from __future__ import annotations

from dataclasses import dataclass

BACKUP_MANUAL = "manual"
BACKUP_SCHEDULED = "scheduled"

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"


@dataclass
class DatabaseBackup:
    name: str
    type: str  # "manual" | "scheduled"
    id: int | None = None
    status: str = STATUS_IN_PROGRESS
    file_path: str | None = None
    file_size: str | None = None  # human readable, e.g. "12.50 KB"
    checksum: str | None = None  # SHA-256 hex of the dump file
    error_message: str | None = None
    created_by_user_id: int | None = None
    schedule_id: int | None = None
    requested_at: str | None = None
    completed_at: str | None = None


@dataclass
class BackupSchedule:
    """A recurring backup. next_run_at is recomputed after every run."""

    name: str
    cron_expression: str
    id: int | None = None
    is_active: bool = True
    retention_days: int = 30
    created_by_user_id: int | None = None
    last_run_at: str | None = None
    next_run_at: str | None = None
    created_at: str | None = None
    updated_at: str | None = None


@dataclass
class BackupResult:
    success: bool
    backup_id: int | None = None
    file_path: str | None = None
    file_size: str | None = None
    checksum: str | None = None
    error: str | None = None


@dataclass
class QueryExecutionLog:
    query: str
    query_type: str
    status: str  # "success" | "failed"
    id: int | None = None
    rows_affected: str | None = None
    execution_time: str | None = None  # e.g. "12ms"
    error_message: str | None = None
    executed_by_user_id: int | None = None
    executed_by_username: str | None = None
    executed_at: str | None = None
