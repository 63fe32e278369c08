"""
notifications/models.py -- In-app notification and Web Push subscription dataclasses.
"""

from __future__ import annotations

from dataclasses import dataclass

NOTIFICATION_TYPES = ("info", "success", "warning", "error")


@dataclass
class Notification:
    user_id: int
    title: str
    message: str
    id: int | None = None
    type: str = "info"
    link: str | None = None
    is_read: bool = False
    created_at: str | None = None


@dataclass
class PushSubscription:
    """A browser push endpoint. p256dh / auth are the client's encryption keys.

    Unsubscribing or a 404/410 from the push service deactivates the row
    rather than deleting it.
    """

    user_id: int
    endpoint: str
    p256dh: str
    auth: str
    id: int | None = None
    user_agent: str | None = None
    is_active: bool = True
    created_at: str | None = None
    updated_at: str | None = None
