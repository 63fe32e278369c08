"""
core/database.py -- Shared SQLAlchemy engine factory and timestamp helpers.

Every store (auth, audit, licensing, backups, ...) builds its engine through
create_db_engine() so SQLite and PostgreSQL connections are configured the
same way everywhere.

SQLite:   check_same_thread=False because FastAPI runs sync routes in a
          thread pool, plus WAL journal mode per connection.
Postgres: pool_pre_ping=True so connections dropped by the server are
          recycled transparently.

Layer rule: core/ is the kernel. No imports from feature packages.
"""

from __future__ import annotations

from datetime import datetime, timezone

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode for concurrent read safety.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


def is_sqlite(db_url: str) -> bool:
    return db_url.startswith("sqlite")


def create_db_engine(db_url: str) -> Engine:
    """Return an Engine for db_url with dialect-appropriate connection options."""
    if is_sqlite(db_url):
        engine = create_engine(db_url, connect_args={"check_same_thread": False})
        event.listen(engine, "connect", _set_wal_mode)
        return engine
    return create_engine(db_url, pool_pre_ping=True)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def now_iso() -> str:
    """Current UTC time as an ISO 8601 string -- the storage format for all timestamps."""
    return utcnow().isoformat()


def parse_iso(value: str | None) -> datetime | None:
    """Parse a stored ISO timestamp. Naive values are treated as UTC.

    Accepts the trailing 'Z' form emitted by JavaScript clients and license
    servers. Returns None for empty or unparseable input.
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed
