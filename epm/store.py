"""
epm/store.py -- Persistence for EPM API keys and ingested process details.

API keys are stored as HMAC-SHA256 hashes (see auth.tokens.hash_api_key);
the raw key is shown once at creation and never persisted. Lookup by hash is
a single indexed query.
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from core.database import create_db_engine, now_iso
from epm.models import EpmApiKey, ProcessDetails

_metadata = MetaData()

_api_keys = Table(
    "epm_api_keys",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False),
    Column("key_hash", String(64), nullable=False, unique=True, index=True),
    Column("last_four", String(4), nullable=False),
    Column("created_by_user_id", Integer),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("last_used_at", String(32)),
    Column("expires_at", String(40)),
    Column("created_at", String(32), nullable=False),
)

_process_details = Table(
    "epm_process_details",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("task_guid", String(100), nullable=False, unique=True),
    Column("agent_guid", String(100), index=True),
    Column("process_id", String(50)),
    Column("process_name", String(255)),
    Column("main_window_title", Text),
    Column("start_time", String(40)),
    Column("event_dt", String(40), index=True),
    Column("idle_status", Integer, nullable=False, server_default="0"),
    Column("url_name", Text),
    Column("url_domain", String(255)),
    Column("lapsed_time", String(50)),
    Column("tag1", String(255)),
    Column("tag2", String(255)),
)


class EpmStore:
    """Repository for EpmApiKey and ProcessDetails."""

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_db_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # API keys
    # ------------------------------------------------------------------

    def create_api_key(self, key: EpmApiKey) -> EpmApiKey:
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.insert().values(
                    name=key.name,
                    key_hash=key.key_hash,
                    last_four=key.last_four,
                    created_by_user_id=key.created_by_user_id,
                    is_active=1,
                    expires_at=key.expires_at,
                    created_at=now_iso(),
                )
            )
            conn.commit()
            key_id = result.inserted_primary_key[0]
        return self.get_api_key(key_id)

    def get_api_key(self, key_id: int) -> EpmApiKey | None:
        with self.engine.connect() as conn:
            row = conn.execute(_api_keys.select().where(_api_keys.c.id == key_id)).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def get_active_api_key_by_hash(self, key_hash: str) -> EpmApiKey | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _api_keys.select().where((_api_keys.c.key_hash == key_hash) & (_api_keys.c.is_active == 1))
            ).fetchone()
        return _row_to_api_key(row) if row is not None else None

    def list_active_api_keys(self) -> list[EpmApiKey]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _api_keys.select().where(_api_keys.c.is_active == 1).order_by(_api_keys.c.id.desc())
            ).fetchall()
        return [_row_to_api_key(r) for r in rows]

    def revoke_api_key(self, key_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _api_keys.update()
                .where((_api_keys.c.id == key_id) & (_api_keys.c.is_active == 1))
                .values(is_active=0)
            )
            conn.commit()
        return result.rowcount > 0

    def touch_api_key(self, key_id: int) -> None:
        with self.engine.connect() as conn:
            conn.execute(_api_keys.update().where(_api_keys.c.id == key_id).values(last_used_at=now_iso()))
            conn.commit()

    # ------------------------------------------------------------------
    # Process details
    # ------------------------------------------------------------------

    def upsert_process_details(self, details: ProcessDetails) -> ProcessDetails:
        """Insert, or overwrite every column of the row with the same task_guid."""
        values = dict(
            agent_guid=details.agent_guid,
            process_id=details.process_id,
            process_name=details.process_name,
            main_window_title=details.main_window_title,
            start_time=details.start_time,
            event_dt=details.event_dt,
            idle_status=1 if details.idle_status else 0,
            url_name=details.url_name,
            url_domain=details.url_domain,
            lapsed_time=details.lapsed_time,
            tag1=details.tag1,
            tag2=details.tag2,
        )
        with self.engine.connect() as conn:
            result = conn.execute(
                _process_details.update().where(_process_details.c.task_guid == details.task_guid).values(**values)
            )
            if result.rowcount == 0:
                conn.execute(_process_details.insert().values(task_guid=details.task_guid, **values))
            conn.commit()
        return self.get_process_details(details.task_guid)

    def get_process_details(self, task_guid: str) -> ProcessDetails | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _process_details.select().where(_process_details.c.task_guid == task_guid)
            ).fetchone()
        return _row_to_process_details(row) if row is not None else None

    def list_process_details(self, limit: int = 100) -> list[ProcessDetails]:
        """Newest event first."""
        with self.engine.connect() as conn:
            rows = conn.execute(
                _process_details.select()
                .order_by(_process_details.c.event_dt.desc(), _process_details.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_process_details(r) for r in rows]

    def close(self) -> None:
        self.engine.dispose()


def _row_to_api_key(row) -> EpmApiKey:
    return EpmApiKey(
        id=row.id,
        name=row.name,
        key_hash=row.key_hash,
        last_four=row.last_four,
        created_by_user_id=row.created_by_user_id,
        is_active=bool(row.is_active),
        last_used_at=row.last_used_at,
        expires_at=row.expires_at,
        created_at=row.created_at,
    )


def _row_to_process_details(row) -> ProcessDetails:
    return ProcessDetails(
        id=row.id,
        task_guid=row.task_guid,
        agent_guid=row.agent_guid,
        process_id=row.process_id,
        process_name=row.process_name,
        main_window_title=row.main_window_title,
        start_time=row.start_time,
        event_dt=row.event_dt,
        idle_status=bool(row.idle_status),
        url_name=row.url_name,
        url_domain=row.url_domain,
        lapsed_time=row.lapsed_time,
        tag1=row.tag1,
        tag2=row.tag2,
    )
