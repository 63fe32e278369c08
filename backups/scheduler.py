"""
backups/scheduler.py -- In-process timer scheduler for backup schedules.

Each active schedule owns exactly one asyncio task that sleeps until the
schedule's next run. It runs the backup in a worker thread, stamps
last_run_at / next_run_at and applies the schedule's retention, then
re-arms itself if the schedule is still active.

schedule_backup_job() only arms the timer and returns the next run time;
callers persist next_run_at themselves (initialize() at startup, the
schedule routes in a worker thread).

Handles live only in memory (self._jobs). initialize() rebuilds them from
the database at startup, so a restart loses nothing except a run that was
in flight at the time.

All public methods must be called from the event loop thread (lifespan or
async route handlers). Store access inside the timers goes through
asyncio.to_thread so a slow database never stalls the loop.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy.exc import SQLAlchemyError

from backups.cron import calculate_next_run
from backups.models import BackupResult, BackupSchedule
from backups.service import BackupService
from backups.store import BackupStore
from core.database import now_iso

logger = logging.getLogger("pcvisor.scheduler")


class BackupScheduler:
    def __init__(self, service: BackupService, store: BackupStore) -> None:
        self.service = service
        self.store = store
        self._jobs: dict[int, asyncio.Task] = {}

    @property
    def scheduled_ids(self) -> set[int]:
        return set(self._jobs)

    def initialize(self) -> int:
        """Arm a timer for every active schedule. Returns the number armed."""
        schedules = self.store.list_schedules(active_only=True)
        for schedule in schedules:
            next_run = self.schedule_backup_job(schedule)
            if next_run is not None:
                self.store.update_schedule(schedule.id, next_run_at=next_run.isoformat())
        logger.info("Backup scheduler initialized with %d active schedules", len(self._jobs))
        return len(self._jobs)

    def schedule_backup_job(self, schedule: BackupSchedule) -> datetime | None:
        """(Re)arm the timer for schedule and return its next run.

        Inactive schedules are only cancelled and return None.
        """
        self.cancel_scheduled_job(schedule.id)
        if not schedule.is_active:
            return None
        try:
            next_run = calculate_next_run(schedule.cron_expression)
        except ValueError as e:
            logger.error("Schedule %d has an unusable cron expression %r: %s", schedule.id, schedule.cron_expression, e)
            return None
        delay = (next_run - datetime.now(timezone.utc)).total_seconds()
        if delay <= 0:
            return None
        self._jobs[schedule.id] = asyncio.get_running_loop().create_task(self._run_after(schedule.id, delay))
        logger.info("Backup schedule %d (%s) next run at %s", schedule.id, schedule.name, next_run.isoformat())
        return next_run

    def cancel_scheduled_job(self, schedule_id: int) -> bool:
        task = self._jobs.pop(schedule_id, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def shutdown(self) -> None:
        tasks = list(self._jobs.values())
        self._jobs.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    async def _run_after(self, schedule_id: int, delay: float) -> None:
        await asyncio.sleep(delay)
        # The timer has fired; from here on a cancel must not interrupt the backup.
        self._jobs.pop(schedule_id, None)
        try:
            await asyncio.to_thread(self.run_scheduled_backup, schedule_id)
        except Exception:
            logger.exception("Scheduled backup for schedule %d crashed", schedule_id)

        try:
            schedule = await asyncio.to_thread(self.store.get_schedule, schedule_id)
        except SQLAlchemyError:
            logger.exception("Could not reload schedule %d; it stays unarmed until restart", schedule_id)
            return
        # run_scheduled_backup already stored next_run_at for this schedule.
        if schedule is not None and schedule.is_active and schedule_id not in self._jobs:
            self.schedule_backup_job(schedule)

    def run_scheduled_backup(self, schedule_id: int) -> BackupResult | None:
        """Run one backup for schedule_id and update its bookkeeping. Blocking."""
        schedule = self.store.get_schedule(schedule_id)
        if schedule is None:
            return None
        result = self.service.create_backup(schedule_id=schedule_id)
        self.store.update_schedule(
            schedule_id,
            last_run_at=now_iso(),
            next_run_at=calculate_next_run(schedule.cron_expression).isoformat(),
        )
        if result.success and schedule.retention_days > 0:
            self.service.cleanup_old_backups(schedule.retention_days)
        return result
