"""
backups/service.py -- Database backups via pg_dump.

create_backup() lifecycle:
  1. Insert a backup row with status in_progress (manual or scheduled).
  2. Run pg_dump against DATABASE_URL into BACKUP_DIR/backup_<timestamp>.sql.
  3. On success record file path, size and SHA-256 checksum, mark completed,
     and write a "Database Backup Created" audit entry.
  4. On any failure mark the row failed with the error and write a
     "Database Backup Failed" audit entry with status failure.
Failures are returned in BackupResult, never raised, and never retried.

Security:
  pg_dump is invoked with an argument list (no shell). The database password
  is passed through the PGPASSWORD environment variable rather than argv so
  it does not appear in the process table.
  File reads and deletes are confined to BACKUP_DIR.
"""

from __future__ import annotations

import hashlib
import logging
import os
import subprocess
from datetime import timedelta
from pathlib import Path

from sqlalchemy.engine import URL, make_url
from sqlalchemy.exc import ArgumentError

from audit.models import STATUS_FAILURE, STATUS_SUCCESS, AuditLog
from audit.store import AuditStore
from backups.models import (
    BACKUP_MANUAL,
    BACKUP_SCHEDULED,
    STATUS_COMPLETED,
    STATUS_FAILED,
    BackupResult,
    DatabaseBackup,
)
from backups.store import BackupStore
from core.database import now_iso, utcnow

logger = logging.getLogger("pcvisor.backups")

# pg_dump on a large database can legitimately take a while.
_PG_DUMP_TIMEOUT = 60 * 60
_CLEANUP_BATCH = 1000


class BackupError(Exception):
    """Raised internally when a backup step fails; converted to BackupResult."""


class BackupService:
    """Creates, serves and prunes pg_dump backups."""

    def __init__(
        self,
        backup_store: BackupStore,
        audit_store: AuditStore,
        database_url: str,
        backup_dir: str,
        pg_dump_path: str = "pg_dump",
    ) -> None:
        self.backup_store = backup_store
        self.audit_store = audit_store
        self.database_url = database_url
        self.backup_dir = Path(backup_dir).resolve()
        self.pg_dump_path = pg_dump_path

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def create_backup(
        self,
        user_id: int | None = None,
        schedule_id: int | None = None,
        username: str | None = None,
    ) -> BackupResult:
        now = utcnow()
        stamp = now.strftime("%Y-%m-%dT%H-%M-%S-") + f"{now.microsecond // 1000:03d}Z"
        file_path = self.backup_dir / f"backup_{stamp}.sql"
        backup_id = self.backup_store.create_backup(
            DatabaseBackup(
                name=f"Backup {now.strftime('%Y-%m-%d %H:%M:%S')} UTC",
                type=BACKUP_SCHEDULED if schedule_id is not None else BACKUP_MANUAL,
                created_by_user_id=user_id,
                schedule_id=schedule_id,
                requested_at=now.isoformat(),
            )
        )

        try:
            self._run_pg_dump(file_path)
            data = file_path.read_bytes()
        except (BackupError, OSError) as e:
            error = str(e)
            logger.error("Backup %d failed: %s", backup_id, error)
            self.backup_store.update_backup(
                backup_id, status=STATUS_FAILED, error_message=error, completed_at=now_iso()
            )
            self._audit("Database Backup Failed", backup_id, file_path.name, error, user_id, username, STATUS_FAILURE)
            return BackupResult(success=False, backup_id=backup_id, error=error)

        file_size = f"{len(data) / 1024:.2f} KB"
        checksum = hashlib.sha256(data).hexdigest()
        self.backup_store.update_backup(
            backup_id,
            status=STATUS_COMPLETED,
            file_path=str(file_path),
            file_size=file_size,
            checksum=checksum,
            completed_at=now_iso(),
        )
        logger.info("Backup %d completed: %s (%s)", backup_id, file_path.name, file_size)
        self._audit(
            "Database Backup Created",
            backup_id,
            file_path.name,
            f"Backup created: {file_path.name} ({file_size})",
            user_id,
            username,
            STATUS_SUCCESS,
        )
        return BackupResult(
            success=True,
            backup_id=backup_id,
            file_path=str(file_path),
            file_size=file_size,
            checksum=checksum,
        )

    def _run_pg_dump(self, file_path: Path) -> None:
        if not self.database_url:
            raise BackupError("DATABASE_URL not configured")
        try:
            url = make_url(self.database_url)
        except ArgumentError as e:
            raise BackupError(f"Invalid DATABASE_URL: {e}") from e
        if url.get_backend_name() != "postgresql":
            raise BackupError("Database backups require a PostgreSQL DATABASE_URL")

        env = dict(os.environ)
        if url.password:
            env["PGPASSWORD"] = str(url.password)
        dsn = URL.create(
            drivername="postgresql",
            username=url.username,
            host=url.host,
            port=url.port,
            database=url.database,
            query=url.query,
        ).render_as_string(hide_password=False)

        self.backup_dir.mkdir(parents=True, exist_ok=True)
        try:
            proc = subprocess.run(
                [self.pg_dump_path, "--dbname", dsn, "--file", str(file_path)],
                capture_output=True,
                text=True,
                env=env,
                timeout=_PG_DUMP_TIMEOUT,
                check=False,
            )
        except FileNotFoundError as e:
            raise BackupError(f"pg_dump not found: {self.pg_dump_path}") from e
        except subprocess.TimeoutExpired as e:
            raise BackupError("pg_dump timed out") from e

        stderr = (proc.stderr or "").strip()
        if proc.returncode != 0:
            raise BackupError(stderr or f"pg_dump exited with status {proc.returncode}")
        if stderr and "warning" not in stderr.lower():
            raise BackupError(stderr)

    def _audit(
        self,
        action: str,
        backup_id: int,
        resource_name: str,
        details: str,
        user_id: int | None,
        username: str | None,
        status: str,
    ) -> None:
        self.audit_store.record(
            AuditLog(
                action=action,
                category="system",
                user_id=user_id,
                username=username or ("system" if user_id is None else None),
                resource_type="backup",
                resource_id=str(backup_id),
                resource_name=resource_name,
                details=details,
                status=status,
            )
        )

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def _confined(self, file_path: str) -> Path | None:
        """Resolve file_path and return it only if it lies inside backup_dir."""
        path = Path(file_path).resolve()
        if self.backup_dir not in path.parents:
            logger.warning("Refusing backup file access outside %s: %s", self.backup_dir, file_path)
            return None
        return path

    def delete_backup_file(self, file_path: str | None) -> bool:
        if not file_path:
            return False
        path = self._confined(file_path)
        if path is None or not path.exists():
            return False
        try:
            path.unlink()
        except OSError as e:
            logger.error("Failed to delete backup file %s: %s", path, e)
            return False
        return True

    def get_backup_file_content(self, file_path: str | None) -> bytes | None:
        if not file_path:
            return None
        path = self._confined(file_path)
        if path is None or not path.is_file():
            return None
        try:
            return path.read_bytes()
        except OSError as e:
            logger.error("Failed to read backup file %s: %s", path, e)
            return None

    # ------------------------------------------------------------------
    # Retention
    # ------------------------------------------------------------------

    def cleanup_old_backups(self, retention_days: int) -> int:
        """Delete backups (rows and files) requested more than retention_days ago."""
        cutoff = utcnow() - timedelta(days=retention_days)
        deleted = 0
        for backup in self.backup_store.backups_requested_before(cutoff, limit=_CLEANUP_BATCH):
            self.delete_backup_file(backup.file_path)
            if self.backup_store.delete_backup(backup.id):
                deleted += 1
        if deleted:
            logger.info("Removed %d backups older than %d days", deleted, retention_days)
        return deleted
