"""
licensing/store.py -- Persistence for the single stored license.

The license_info table holds at most one row (id = 1). get() returns None
until a license has been activated or an activation has failed; save()
upserts the row and update_status() records a failed check on it.
"""

from __future__ import annotations

import json

from sqlalchemy import Column, Integer, MetaData, String, Table, Text
from sqlalchemy.engine import Engine

from core.database import create_db_engine, now_iso
from licensing.models import LicenseInfo

_ROW_ID = 1

_metadata = MetaData()

_license_info = Table(
    "license_info",
    _metadata,
    Column("id", Integer, primary_key=True),
    Column("license_key", Text),
    Column("license_token", Text),
    Column("tenant_id", String(255)),
    Column("hardware_id", String(128)),
    Column("modules", Text, nullable=False, server_default="[]"),  # JSON array
    Column("expiry", String(40)),
    Column("last_validated_at", String(32)),
    Column("last_validation_status", String(20), nullable=False, server_default="NONE"),
    Column("validation_message", Text),
    Column("updated_at", String(32), nullable=False),
)


class LicenseStore:
    """Repository for the LicenseInfo singleton."""

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_db_engine(db_url)
        _metadata.create_all(self.engine)

    def get(self) -> LicenseInfo | None:
        with self.engine.connect() as conn:
            row = conn.execute(_license_info.select().where(_license_info.c.id == _ROW_ID)).fetchone()
        return _row_to_license(row) if row is not None else None

    def save(self, info: LicenseInfo) -> LicenseInfo:
        """Replace the stored license with info and return the persisted copy."""
        values = dict(
            license_key=info.license_key,
            license_token=info.license_token,
            tenant_id=info.tenant_id,
            hardware_id=info.hardware_id,
            modules=json.dumps(list(info.modules)),
            expiry=info.expiry,
            last_validated_at=info.last_validated_at,
            last_validation_status=info.last_validation_status,
            validation_message=info.validation_message,
            updated_at=now_iso(),
        )
        with self.engine.connect() as conn:
            result = conn.execute(_license_info.update().where(_license_info.c.id == _ROW_ID).values(**values))
            if result.rowcount == 0:
                conn.execute(_license_info.insert().values(id=_ROW_ID, **values))
            conn.commit()
        return self.get()

    def update_status(self, status: str, message: str | None) -> LicenseInfo | None:
        """Stamp a validation outcome on the stored row, leaving key, token, binding and modules alone."""
        with self.engine.connect() as conn:
            conn.execute(
                _license_info.update()
                .where(_license_info.c.id == _ROW_ID)
                .values(
                    last_validated_at=now_iso(),
                    last_validation_status=status,
                    validation_message=message,
                    updated_at=now_iso(),
                )
            )
            conn.commit()
        return self.get()

    def clear(self) -> None:
        with self.engine.connect() as conn:
            conn.execute(_license_info.delete())
            conn.commit()

    def close(self) -> None:
        self.engine.dispose()


def _row_to_license(row) -> LicenseInfo:
    try:
        modules = json.loads(row.modules or "[]")
    except ValueError:
        modules = []
    return LicenseInfo(
        id=row.id,
        license_key=row.license_key,
        license_token=row.license_token,
        tenant_id=row.tenant_id,
        hardware_id=row.hardware_id,
        modules=[m for m in modules if isinstance(m, str)],
        expiry=row.expiry,
        last_validated_at=row.last_validated_at,
        last_validation_status=row.last_validation_status,
        validation_message=row.validation_message,
        updated_at=row.updated_at,
    )
