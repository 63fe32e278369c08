"""
notifications/store.py -- Persistence for in-app notifications and push subscriptions.

Every notification query is scoped by user_id so one user can never read,
mark or delete another user's notifications (IDOR guard).
"""

from __future__ import annotations

from sqlalchemy import Column, Integer, MetaData, String, Table, Text, func, select
from sqlalchemy.engine import Engine

from core.database import create_db_engine, now_iso
from notifications.models import Notification, PushSubscription

_metadata = MetaData()

_notifications = Table(
    "notifications",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("title", String(255), nullable=False),
    Column("message", Text, nullable=False),
    Column("type", String(20), nullable=False, server_default="info"),
    Column("link", Text),
    Column("is_read", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
)

_push_subscriptions = Table(
    "push_subscriptions",
    _metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("user_id", Integer, nullable=False, index=True),
    Column("endpoint", Text, nullable=False, unique=True),
    Column("p256dh", Text, nullable=False),
    Column("auth", Text, nullable=False),
    Column("user_agent", Text),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)


class NotificationStore:
    """Repository for Notification and PushSubscription."""

    def __init__(self, db_url: str) -> None:
        self.engine: Engine = create_db_engine(db_url)
        _metadata.create_all(self.engine)

    # ------------------------------------------------------------------
    # In-app notifications
    # ------------------------------------------------------------------

    def create_notification(self, notification: Notification) -> Notification:
        now = now_iso()
        with self.engine.connect() as conn:
            result = conn.execute(
                _notifications.insert().values(
                    user_id=notification.user_id,
                    title=notification.title,
                    message=notification.message,
                    type=notification.type,
                    link=notification.link,
                    is_read=0,
                    created_at=now,
                )
            )
            conn.commit()
            notification_id = result.inserted_primary_key[0]
        return self.get_notification(notification_id, notification.user_id)

    def get_notification(self, notification_id: int, user_id: int) -> Notification | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _notifications.select().where(
                    (_notifications.c.id == notification_id) & (_notifications.c.user_id == user_id)
                )
            ).fetchone()
        return _row_to_notification(row) if row is not None else None

    def list_for_user(self, user_id: int, limit: int = 50) -> list[Notification]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _notifications.select()
                .where(_notifications.c.user_id == user_id)
                .order_by(_notifications.c.created_at.desc(), _notifications.c.id.desc())
                .limit(limit)
            ).fetchall()
        return [_row_to_notification(r) for r in rows]

    def unread_count(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                select(func.count())
                .select_from(_notifications)
                .where((_notifications.c.user_id == user_id) & (_notifications.c.is_read == 0))
            ).scalar()
        return result or 0

    def mark_read(self, notification_id: int, user_id: int) -> Notification | None:
        with self.engine.connect() as conn:
            conn.execute(
                _notifications.update()
                .where((_notifications.c.id == notification_id) & (_notifications.c.user_id == user_id))
                .values(is_read=1)
            )
            conn.commit()
        return self.get_notification(notification_id, user_id)

    def mark_all_read(self, user_id: int) -> int:
        with self.engine.connect() as conn:
            result = conn.execute(
                _notifications.update()
                .where((_notifications.c.user_id == user_id) & (_notifications.c.is_read == 0))
                .values(is_read=1)
            )
            conn.commit()
        return result.rowcount

    def delete_notification(self, notification_id: int, user_id: int) -> bool:
        with self.engine.connect() as conn:
            result = conn.execute(
                _notifications.delete().where(
                    (_notifications.c.id == notification_id) & (_notifications.c.user_id == user_id)
                )
            )
            conn.commit()
        return result.rowcount > 0

    # ------------------------------------------------------------------
    # Push subscriptions
    # ------------------------------------------------------------------

    def upsert_subscription(self, sub: PushSubscription) -> PushSubscription:
        """Insert or refresh the subscription for sub.endpoint and mark it active.

        A browser endpoint is unique; if it is re-registered (possibly by a
        different user on a shared machine) the row is re-pointed.
        """
        now = now_iso()
        values = dict(
            user_id=sub.user_id,
            p256dh=sub.p256dh,
            auth=sub.auth,
            user_agent=sub.user_agent,
            is_active=1,
            updated_at=now,
        )
        with self.engine.connect() as conn:
            result = conn.execute(
                _push_subscriptions.update().where(_push_subscriptions.c.endpoint == sub.endpoint).values(**values)
            )
            if result.rowcount == 0:
                conn.execute(_push_subscriptions.insert().values(endpoint=sub.endpoint, created_at=now, **values))
            conn.commit()
        return self.get_subscription(sub.endpoint)

    def get_subscription(self, endpoint: str) -> PushSubscription | None:
        with self.engine.connect() as conn:
            row = conn.execute(
                _push_subscriptions.select().where(_push_subscriptions.c.endpoint == endpoint)
            ).fetchone()
        return _row_to_subscription(row) if row is not None else None

    def list_user_subscriptions(self, user_id: int) -> list[PushSubscription]:
        with self.engine.connect() as conn:
            rows = conn.execute(
                _push_subscriptions.select().where(
                    (_push_subscriptions.c.user_id == user_id) & (_push_subscriptions.c.is_active == 1)
                )
            ).fetchall()
        return [_row_to_subscription(r) for r in rows]

    def list_active_subscriptions(self) -> list[PushSubscription]:
        with self.engine.connect() as conn:
            rows = conn.execute(_push_subscriptions.select().where(_push_subscriptions.c.is_active == 1)).fetchall()
        return [_row_to_subscription(r) for r in rows]

    def deactivate_subscription(self, endpoint: str, user_id: int | None = None) -> bool:
        """Soft-delete a subscription. user_id, when given, must own it."""
        condition = _push_subscriptions.c.endpoint == endpoint
        if user_id is not None:
            condition = condition & (_push_subscriptions.c.user_id == user_id)
        with self.engine.connect() as conn:
            result = conn.execute(
                _push_subscriptions.update().where(condition).values(is_active=0, updated_at=now_iso())
            )
            conn.commit()
        return result.rowcount > 0

    def close(self) -> None:
        self.engine.dispose()


def _row_to_notification(row) -> Notification:
    return Notification(
        id=row.id,
        user_id=row.user_id,
        title=row.title,
        message=row.message,
        type=row.type,
        link=row.link,
        is_read=bool(row.is_read),
        created_at=row.created_at,
    )


def _row_to_subscription(row) -> PushSubscription:
    return PushSubscription(
        id=row.id,
        user_id=row.user_id,
        endpoint=row.endpoint,
        p256dh=row.p256dh,
        auth=row.auth,
        user_agent=row.user_agent,
        is_active=bool(row.is_active),
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
