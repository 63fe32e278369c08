"""
backups/store.py -- SQLAlchemy Core persistence for backups, schedules and query logs.

Pattern: Repository + Data Mapper. One store owns the three tables behind
the Database Management console.

The engine is exposed so the query console can run admin SQL against the
same database the application uses.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from backups.models import STATUS_IN_PROGRESS, BackupSchedule, DatabaseBackup, QueryExecutionLog
from core.database import create_db_engine, now_iso

_metadata = MetaData()

_backups = Table(
    "database_backups",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("type", String(20), nullable=False),
    Column("status", String(20), nullable=False),
    Column("file_path", Text),
    Column("file_size", String(50)),
    Column("checksum", String(64)),
    Column("error_message", Text),
    Column("created_by_user_id", Integer),
    Column("schedule_id", Integer),
    Column("requested_at", String(32), nullable=False, index=True),
    Column("completed_at", String(32)),
)

_schedules = Table(
    "backup_schedules",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(255), nullable=False),
    Column("cron_expression", String(100), nullable=False),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("retention_days", Integer, nullable=False, server_default="30"),
    Column("created_by_user_id", Integer),
    Column("last_run_at", String(40)),
    Column("next_run_at", String(40)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_query_logs = Table(
    "query_execution_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("query", Text, nullable=False),
    Column("query_type", String(20), nullable=False),
    Column("status", String(20), nullable=False),
    Column("rows_affected", String(20)),
    Column("execution_time", String(20)),
    Column("error_message", Text),
    Column("executed_by_user_id", Integer),
    Column("executed_by_username", String(255)),
    Column("executed_at", String(32), nullable=False),
)

_BACKUP_FIELDS = {"status", "file_path", "file_size", "checksum", "error_message", "completed_at"}
_SCHEDULE_FIELDS = {"name", "cron_expression", "is_active", "retention_days", "last_run_at", "next_run_at"}


class BackupStore:
    """Repository for DatabaseBackup, BackupSchedule and QueryExecutionLog."""

    def __init__(self, db_url: str) -> None:
        self.db_url = db_url
        self.engine: Engine = create_db_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Backups
    # ------------------------------------------------------------------

    def create_backup(self, backup: DatabaseBackup) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _backups.insert().values(
                    name=backup.name,
                    type=backup.type,
                    status=backup.status or STATUS_IN_PROGRESS,
                    file_path=backup.file_path,
                    created_by_user_id=backup.created_by_user_id,
                    schedule_id=backup.schedule_id,
                    requested_at=backup.requested_at or now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_backup(self, backup_id: int) -> DatabaseBackup | None:
        with self.engine.connect() as conn:
            row = conn.execute(_backups.select().where(_backups.c.id == backup_id)).fetchone()
        return _row_to_backup(row) if row is not None else None

    def list_backups(self, limit: int | None = None) -> list[DatabaseBackup]:
        """Return backups newest first."""
        q = _backups.select().order_by(_backups.c.requested_at.desc(), _backups.c.id.desc())
        if limit is not None:
            q = q.limit(limit)
        with self.engine.connect() as conn:
            rows = conn.execute(q).fetchall()
        return [_row_to_backup(r) for r in rows]

    def update_backup(self, backup_id: int, **fields) -> bool:
        unknown = set(fields) - _BACKUP_FIELDS
        if unknown:
            raise ValueError(f"Unknown backup fields: {unknown!r}")
        with self.engine.connect() as conn:
            result = conn.execute(_backups.update().where(_backups.c.id == backup_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_backup(self, backup_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_backups.delete().where(_backups.c.id == backup_id))
            conn.commit()
        return result.rowcount > 0

    def backups_requested_before(self, cutoff: datetime, limit: int = 1000) -> list[DatabaseBackup]:
        cutoff_iso = cutoff.astimezone(timezone.utc).isoformat()
        with self.engine.connect() as conn:
            rows = conn.execute(
                _backups.select()
                .where(_backups.c.requested_at < cutoff_iso)
                .order_by(_backups.c.requested_at)
                .limit(limit)
            ).fetchall()
        return [_row_to_backup(r) for r in rows]

    # ------------------------------------------------------------------
    # Schedules
    # ------------------------------------------------------------------

    def create_schedule(self, schedule: BackupSchedule) -> int:
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _schedules.insert().values(
                    name=schedule.name,
                    cron_expression=schedule.cron_expression,
                    is_active=1 if schedule.is_active else 0,
                    retention_days=schedule.retention_days,
                    created_by_user_id=schedule.created_by_user_id,
                    next_run_at=schedule.next_run_at,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_schedule(self, schedule_id: int) -> BackupSchedule | None:
        with self.engine.connect() as conn:
            row = conn.execute(_schedules.select().where(_schedules.c.id == schedule_id)).fetchone()
        return _row_to_schedule(row) if row is not None else None

    def list_schedules(self, active_only: bool = False) -> list[BackupSchedule]:
        q = _schedules.select().order_by(_schedules.c.id)
        if active_only:
            q = q.where(_schedules.c.is_active == 1)
        with self.engine.connect() as conn:
            rows = conn.execute(q).fetchall()
        return [_row_to_schedule(r) for r in rows]

    def update_schedule(self, schedule_id: int, **fields) -> bool:
        unknown = set(fields) - _SCHEDULE_FIELDS
        if unknown:
            raise ValueError(f"Unknown schedule fields: {unknown!r}")
        if "is_active" in fields:
            fields["is_active"] = 1 if fields["is_active"] else 0
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_schedules.update().where(_schedules.c.id == schedule_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_schedule(self, schedule_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_schedules.delete().where(_schedules.c.id == schedule_id))
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Query execution logs
    # ------------------------------------------------------------------

    def create_query_log(self, log: QueryExecutionLog) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _query_logs.insert().values(
                    query=log.query,
                    query_type=log.query_type,
                    status=log.status,
                    rows_affected=log.rows_affected,
                    execution_time=log.execution_time,
                    error_message=log.error_message,
                    executed_by_user_id=log.executed_by_user_id,
                    executed_by_username=log.executed_by_username,
                    executed_at=log.executed_at or now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_query_logs(self, limit: int = 100) -> list[QueryExecutionLog]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _query_logs.select().order_by(_query_logs.c.executed_at.desc(), _query_logs.c.id.desc()).limit(limit)
            ).fetchall()
        return [_row_to_query_log(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers
# ---------------------------------------------------------------------------


def _row_to_backup(row) -> DatabaseBackup:
    return DatabaseBackup(
        id=row.id,
        name=row.name,
        type=row.type,
        status=row.status,
        file_path=row.file_path,
        file_size=row.file_size,
        checksum=row.checksum,
        error_message=row.error_message,
        created_by_user_id=row.created_by_user_id,
        schedule_id=row.schedule_id,
        requested_at=row.requested_at,
        completed_at=row.completed_at,
    )


def _row_to_schedule(row) -> BackupSchedule:
    return BackupSchedule(
        id=row.id,
        name=row.name,
        cron_expression=row.cron_expression,
        is_active=bool(row.is_active),
        retention_days=row.retention_days,
        created_by_user_id=row.created_by_user_id,
        last_run_at=row.last_run_at,
        next_run_at=row.next_run_at,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_query_log(row) -> QueryExecutionLog:
    return QueryExecutionLog(
        id=row.id,
        query=row.query,
        query_type=row.query_type,
        status=row.status,
        rows_affected=row.rows_affected,
        execution_time=row.execution_time,
        error_message=row.error_message,
        executed_by_user_id=row.executed_by_user_id,
        executed_by_username=row.executed_by_username,
        executed_at=row.executed_at,
    )
