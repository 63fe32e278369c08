"""
admin/store.py -- Persistence for admin-console settings sections.

One row per section in the app_settings table, the section document stored
as JSON text. A missing row reads as the section's defaults, so nothing needs
seeding on first start.

update() merges the supplied keys into the current document and re-validates
the whole result through the section model before writing. A patch that
would produce an invalid document raises pydantic.ValidationError and leaves
the stored row untouched.
"""

from __future__ import annotations

import json
import logging
from typing import TypeVar

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from admin.models import SettingsSection
from core.database import create_db_engine, now_iso

logger = logging.getLogger("pcvisor.settings")

S = TypeVar("S", bound=SettingsSection)

_metadata = MetaData()

_app_settings = Table(
    "app_settings",
    _metadata,
    Column("section", String(50), primary_key=True),
    Column("data", Text, nullable=False),
    Column("updated_by_user_id", Integer),
    Column("updated_at", String(32), nullable=False),
)


class SettingsStore:
    """Repository for settings sections keyed by SettingsSection.section."""

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_db_engine(db_url)
        _metadata.create_all(self.engine)

    def _load(self, section: str) -> dict | None:
        with self.engine.connect() as conn:
            row = conn.execute(_app_settings.select().where(_app_settings.c.section == section)).fetchone()
        if row is None:
            return None
        try:
            return json.loads(row.data)
        except ValueError:
            logger.error("Settings section %r holds invalid JSON; using defaults", section)
            return None

    def get(self, model_cls: type[S]) -> S:
        """Return the stored section, or a default instance when none is saved."""
        data = self._load(model_cls.section)
        if data is None:
            return model_cls()
        return model_cls.model_validate(data)

    def exists(self, model_cls: type[SettingsSection]) -> bool:
        return self._load(model_cls.section) is not None

    def update(self, model_cls: type[S], changes: dict, updated_by: int | None = None) -> S:
        """Merge changes (snake_case keys) into the section and persist it."""
        current = self.get(model_cls).model_dump()
        current.update(changes)
        merged = model_cls.model_validate(current)
        payload = json.dumps(merged.model_dump(mode="json"))
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _app_settings.update()
                .where(_app_settings.c.section == model_cls.section)
                .values(data=payload, updated_by_user_id=updated_by, updated_at=now)
            )
            if result.rowcount == 0:
                conn.execute(
                    _app_settings.insert().values(
                        section=model_cls.section,
                        data=payload,
                        updated_by_user_id=updated_by,
                        updated_at=now,
                    )
                )
            conn.commit()
        return merged

    def close(self) -> None:
        self.engine.dispose()
