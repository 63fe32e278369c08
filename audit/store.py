"""
audit/store.py -- SQLAlchemy Core persistence for the audit trail.

Pattern: Repository + Data Mapper, same shape as auth/store.py.

Timestamps are ISO 8601 UTC strings with a fixed offset suffix, so string
comparison orders them chronologically and range filters work identically on
SQLite and PostgreSQL.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, and_, func, or_, select
from sqlalchemy.engine import Engine

from audit.models import AuditLog
from core.database import create_db_engine, now_iso, utcnow

logger = logging.getLogger("pcvisor.audit")

_metadata = MetaData()

_audit_logs = Table(
    "audit_logs",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer),
    Column("username", String(255)),
    Column("action", String(255), nullable=False),
    Column("category", String(50), nullable=False),
    Column("resource_type", String(100)),
    Column("resource_id", String(100)),
    Column("resource_name", String(255)),
    Column("details", Text),
    Column("ip_address", String(64)),
    Column("user_agent", Text),
    Column("status", String(20), nullable=False, server_default="success"),
    Column("created_at", String(32), nullable=False, index=True),
)


@dataclass
class AuditLogFilter:
    category: str | None = None
    action: str | None = None
    user_id: int | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    search: str | None = None
    limit: int = 50
    offset: int = 0


@dataclass
class AuditStats:
    total: int = 0
    today: int = 0
    this_week: int = 0
    this_month: int = 0
    by_category: list[dict] = field(default_factory=list)
    by_status: list[dict] = field(default_factory=list)
    recent_activity: list[dict] = field(default_factory=list)


def _iso(dt: datetime) -> str:
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat()


class AuditStore:
    """Repository for AuditLog entries."""

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_db_engine(db_url)
        _metadata.create_all(self.engine)

    def record(self, entry: AuditLog) -> int:
        """Append entry and return its id."""
        with self.engine.connect() as conn:
            result = conn.execute(
                _audit_logs.insert().values(
                    user_id=entry.user_id,
                    username=entry.username,
                    action=entry.action,
                    category=entry.category,
                    resource_type=entry.resource_type,
                    resource_id=entry.resource_id,
                    resource_name=entry.resource_name,
                    details=entry.details,
                    ip_address=entry.ip_address,
                    user_agent=entry.user_agent,
                    status=entry.status,
                    created_at=entry.created_at or now_iso(),
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def list_logs(self, filters: AuditLogFilter) -> tuple[list[AuditLog], int]:
        """Return (page of entries newest first, total matching count)."""
        conditions = []
        if filters.category:
            conditions.append(_audit_logs.c.category == filters.category)
        if filters.action:
            conditions.append(_audit_logs.c.action.ilike(f"%{filters.action}%"))
        if filters.user_id is not None:
            conditions.append(_audit_logs.c.user_id == filters.user_id)
        if filters.start_date is not None:
            conditions.append(_audit_logs.c.created_at >= _iso(filters.start_date))
        if filters.end_date is not None:
            conditions.append(_audit_logs.c.created_at <= _iso(filters.end_date))
        if filters.search:
            pattern = f"%{filters.search}%"
            conditions.append(
                or_(
                    _audit_logs.c.action.ilike(pattern),
                    _audit_logs.c.username.ilike(pattern),
                    _audit_logs.c.resource_name.ilike(pattern),
                    _audit_logs.c.details.ilike(pattern),
                )
            )
        where = and_(*conditions) if conditions else None

        count_q = select(func.count()).select_from(_audit_logs)
        page_q = _audit_logs.select().order_by(_audit_logs.c.created_at.desc(), _audit_logs.c.id.desc())
        if where is not None:
            count_q = count_q.where(where)
            page_q = page_q.where(where)
        page_q = page_q.limit(filters.limit).offset(filters.offset)

        with self.engine.connect() as conn:
            total = conn.execute(count_q).scalar() or 0
            rows = conn.execute(page_q).fetchall()
        return [_row_to_audit_log(r) for r in rows], total

    def delete_before(self, before: datetime) -> int:
        """Delete entries created before the given instant. Returns the number removed."""
        with self.engine.connect() as conn:
            result = conn.execute(_audit_logs.delete().where(_audit_logs.c.created_at < _iso(before)))
            conn.commit()
        return result.rowcount

    def stats(self, now: datetime | None = None) -> AuditStats:
        """Counts for the audit dashboard. Weeks start on Sunday; all boundaries are UTC."""
        now = now or utcnow()
        start_of_today = now.replace(hour=0, minute=0, second=0, microsecond=0)
        # isoweekday(): Monday=1 .. Sunday=7
        start_of_week = start_of_today - timedelta(days=now.isoweekday() % 7)
        start_of_month = start_of_today.replace(day=1)
        seven_days_ago = start_of_today - timedelta(days=6)

        def count_since(conn, since: datetime) -> int:
            q = select(func.count()).select_from(_audit_logs).where(_audit_logs.c.created_at >= _iso(since))
            return conn.execute(q).scalar() or 0

        day = func.substr(_audit_logs.c.created_at, 1, 10)
        with self.engine.connect() as conn:
            total = conn.execute(select(func.count()).select_from(_audit_logs)).scalar() or 0
            stats = AuditStats(
                total=total,
                today=count_since(conn, start_of_today),
                this_week=count_since(conn, start_of_week),
                this_month=count_since(conn, start_of_month),
            )
            for category, n in conn.execute(
                select(_audit_logs.c.category, func.count()).group_by(_audit_logs.c.category)
            ):
                stats.by_category.append({"category": category, "count": n})
            for status, n in conn.execute(select(_audit_logs.c.status, func.count()).group_by(_audit_logs.c.status)):
                stats.by_status.append({"status": status, "count": n})
            daily = dict(
                conn.execute(
                    select(day, func.count()).where(_audit_logs.c.created_at >= _iso(seven_days_ago)).group_by(day)
                ).fetchall()
            )
        for offset in range(7):
            date = (seven_days_ago + timedelta(days=offset)).date().isoformat()
            stats.recent_activity.append({"date": date, "count": daily.get(date, 0)})
        return stats

    def close(self) -> None:
        self.engine.dispose()


def _row_to_audit_log(row) -> AuditLog:
    return AuditLog(
        id=row.id,
        user_id=row.user_id,
        username=row.username,
        action=row.action,
        category=row.category,
        resource_type=row.resource_type,
        resource_id=row.resource_id,
        resource_name=row.resource_name,
        details=row.details,
        ip_address=row.ip_address,
        user_agent=row.user_agent,
        status=row.status,
        created_at=row.created_at,
    )
