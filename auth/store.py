"""
auth/store.py -- SQLAlchemy Core persistence layer for users and roles.

Pattern: Repository + Data Mapper.
UserStore is the repository; _row_to_user / _row_to_role are the mappers.
Route and dependency code never touches SQL directly.

Security:
  All queries use bound parameters. No f-strings in SQL.
  Column names accepted by update_user() / update_role() come from a fixed
  whitelist, never from request bodies.

Layer rule: no imports from api/. core/ is allowed (engine factory only).
"""

from __future__ import annotations

import json
from datetime import timedelta

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from auth.models import Role, User
from core.database import create_db_engine, now_iso, parse_iso, utcnow

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

_metadata = MetaData()

_roles = Table(
    "roles",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("name", String(100), nullable=False, unique=True),
    Column("description", Text),
    Column("permissions", Text, nullable=False, server_default="[]"),  # JSON array
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_users = Table(
    "users",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("username", String(255), nullable=False, unique=True),
    Column("hashed_password", Text, nullable=False),
    Column("email", String(255)),
    Column("full_name", String(255)),
    Column("phone", String(50)),
    Column("department", String(100)),
    Column("role_id", Integer),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("is_system", Integer, nullable=False, server_default="0"),
    Column("profile_photo", Text),  # data URL
    Column("mfa_enabled", Integer, nullable=False, server_default="0"),
    Column("mfa_secret", String(64)),
    Column("mfa_verified", Integer, nullable=False, server_default="0"),
    Column("failed_login_attempts", Integer, nullable=False, server_default="0"),
    Column("locked_until", String(32)),
    Column("last_login", String(32)),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

_USER_FIELDS = {
    "username",
    "hashed_password",
    "email",
    "full_name",
    "phone",
    "department",
    "role_id",
    "is_active",
    "is_system",
    "profile_photo",
    "mfa_enabled",
    "mfa_secret",
    "mfa_verified",
    "failed_login_attempts",
    "locked_until",
}
_BOOL_FIELDS = {"is_active", "is_system", "mfa_enabled", "mfa_verified"}
_ROLE_FIELDS = {"name", "description", "permissions"}


# ---------------------------------------------------------------------------
# Repository
# ---------------------------------------------------------------------------


class UserStore:
    """Repository for User and Role entities.

    Usage:
        store = UserStore(db_url)
        uid = store.create_user(User(username="admin", hashed_password=hash_password("secret")))
        user = store.get_by_username("admin")
        store.close()
    """

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_db_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # Users
    # ------------------------------------------------------------------

    def has_users(self) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(select(func.count()).select_from(_users)).scalar()
        return (result or 0) > 0

    def create_user(self, user: User) -> int:
        """Insert a new user and return its assigned database ID.

        Raises sqlalchemy.exc.IntegrityError if the username already exists.
        """
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _users.insert().values(
                    username=user.username,
                    hashed_password=user.hashed_password,
                    email=user.email,
                    full_name=user.full_name,
                    phone=user.phone,
                    department=user.department,
                    role_id=user.role_id,
                    is_active=1 if user.is_active else 0,
                    is_system=1 if user.is_system else 0,
                    profile_photo=user.profile_photo,
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_by_username(self, username: str) -> User | None:
        """Look up a user by exact username (case-sensitive). Returns None if not found."""
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.username == username)).fetchone()
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: int) -> User | None:
        with self.engine.connect() as conn:
            row = conn.execute(_users.select().where(_users.c.id == user_id)).fetchone()
        return _row_to_user(row) if row is not None else None

    def list_users(self) -> list[User]:
        """Return all users, newest first."""
        with self.engine.connect() as conn:
            rows = conn.execute(_users.select().order_by(_users.c.id.desc())).fetchall()
        return [_row_to_user(r) for r in rows]

    def update_user(self, user_id: int, **fields) -> bool:
        """Update mutable fields on an existing user.

        Unknown field names raise ValueError. Boolean flags are stored as 0/1.
        Returns True if a row was updated, False if user_id was not found.
        """
        unknown = set(fields) - _USER_FIELDS
        if unknown:
            raise ValueError(f"Unknown user fields: {unknown!r}")
        values = {k: (1 if v else 0) if k in _BOOL_FIELDS else v for k, v in fields.items()}
        values["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_users.update().where(_users.c.id == user_id).values(**values))
            conn.commit()
        return result.rowcount > 0

    def delete_user(self, user_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(_users.delete().where(_users.c.id == user_id))
            conn.commit()
        return result.rowcount > 0

    def update_last_login(self, user_id: int) -> None:
        """Stamp last_login and clear the lockout counters after a successful login."""
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(last_login=now_iso(), failed_login_attempts=0, locked_until=None)
            )
            conn.commit()

    def register_failed_login(self, user_id: int, max_attempts: int, lockout_minutes: int) -> tuple[int, str | None]:
        """Increment the failed-attempt counter and lock the account at the threshold.

        Returns (attempts, locked_until). locked_until is None unless this
        failure crossed max_attempts.
        """
        user = self.get_by_id(user_id)
        if user is None:
            return 0, None
        attempts = user.failed_login_attempts + 1
        locked_until = None
        if attempts >= max_attempts:
            locked_until = (utcnow() + timedelta(minutes=lockout_minutes)).isoformat()
        with self.engine.connect() as conn:
            conn.execute(
                _users.update()
                .where(_users.c.id == user_id)
                .values(failed_login_attempts=attempts, locked_until=locked_until)
            )
            conn.commit()
        return attempts, locked_until

    @staticmethod
    def lock_remaining_minutes(user: User) -> int:
        """Minutes until the lock on user expires; 0 when the account is not locked."""
        locked_until = parse_iso(user.locked_until)
        if locked_until is None:
            return 0
        remaining = (locked_until - utcnow()).total_seconds()
        if remaining <= 0:
            return 0
        return int(-(-remaining // 60))

    # ------------------------------------------------------------------
    # Roles
    # ------------------------------------------------------------------

    def create_role(self, role: Role) -> int:
        """Insert a role. Raises IntegrityError on duplicate name."""
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _roles.insert().values(
                    name=role.name,
                    description=role.description,
                    permissions=json.dumps(role.permissions),
                    created_at=now,
                    updated_at=now,
                )
            )
            conn.commit()
            return result.inserted_primary_key[0]

    def get_role(self, role_id: int) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.id == role_id)).fetchone()
        return _row_to_role(row) if row is not None else None

    def get_role_by_name(self, name: str) -> Role | None:
        with self.engine.connect() as conn:
            row = conn.execute(_roles.select().where(_roles.c.name == name)).fetchone()
        return _row_to_role(row) if row is not None else None

    def list_roles(self) -> list[Role]:
        with self.engine.connect() as conn:
            rows = conn.execute(_roles.select().order_by(_roles.c.id.desc())).fetchall()
        return [_row_to_role(r) for r in rows]

    def update_role(self, role_id: int, **fields) -> bool:
        unknown = set(fields) - _ROLE_FIELDS
        if unknown:
            raise ValueError(f"Unknown role fields: {unknown!r}")
        if "permissions" in fields:
            fields["permissions"] = json.dumps(fields["permissions"])
        fields["updated_at"] = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(_roles.update().where(_roles.c.id == role_id).values(**fields))
            conn.commit()
        return result.rowcount > 0

    def delete_role(self, role_id: int) -> bool:
        """Delete a role and detach it from any users still referencing it."""
        with self.engine.connect() as conn:
            conn.execute(_users.update().where(_users.c.role_id == role_id).values(role_id=None))
            result = conn.execute(_roles.delete().where(_roles.c.id == role_id))
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Row mappers (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        username=row.username,
        hashed_password=row.hashed_password,
        email=row.email,
        full_name=row.full_name,
        phone=row.phone,
        department=row.department,
        role_id=row.role_id,
        is_active=bool(row.is_active),
        is_system=bool(row.is_system),
        profile_photo=row.profile_photo,
        mfa_enabled=bool(row.mfa_enabled),
        mfa_secret=row.mfa_secret,
        mfa_verified=bool(row.mfa_verified),
        failed_login_attempts=row.failed_login_attempts or 0,
        locked_until=row.locked_until,
        last_login=row.last_login,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )


def _row_to_role(row) -> Role:
    try:
        permissions = json.loads(row.permissions or "[]")
    except ValueError:
        permissions = []
    return Role(
        id=row.id,
        name=row.name,
        description=row.description,
        permissions=[p for p in permissions if isinstance(p, str)],
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
