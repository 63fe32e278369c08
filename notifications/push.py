"""
notifications/push.py -- Web Push delivery via VAPID.

Delivery uses pywebpush; VAPID key generation uses py_vapid and exports the
keys in the URL-safe base64 form browsers and pywebpush expect:
  public  -- 65-byte uncompressed EC point
  private -- 32-byte raw scalar

Subscriptions the push service reports as gone (HTTP 404 / 410) are
deactivated so they are not retried. Any other failure is logged and counted.
"""

from __future__ import annotations

import base64
import json
import logging
from dataclasses import dataclass

from cryptography.hazmat.primitives import serialization
from py_vapid import Vapid
from pywebpush import WebPushException, webpush

from notifications.models import PushSubscription
from notifications.store import NotificationStore

logger = logging.getLogger("pcvisor.push")

PUSH_ICON = "/icon-192.png"
PUSH_BADGE = "/badge-72.png"
DEFAULT_PUSH_URL = "/portal"
_GONE_STATUSES = (404, 410)


@dataclass
class PushPayload:
    title: str
    body: str
    url: str = DEFAULT_PUSH_URL
    tag: str | None = None

    def to_json(self) -> str:
        data = {
            "title": self.title,
            "body": self.body,
            "icon": PUSH_ICON,
            "badge": PUSH_BADGE,
            "data": {"url": self.url},
        }
        if self.tag:
            data["tag"] = self.tag
        return json.dumps(data)


@dataclass
class PushSendSummary:
    successful: int = 0
    failed: int = 0

    @property
    def message(self) -> str:
        return f"Sent {self.successful} notification(s), {self.failed} failed"


@dataclass
class VapidKeys:
    public_key: str
    private_key: str


def _b64url(raw: bytes) -> str:
    return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")


def generate_vapid_keys() -> VapidKeys:
    """Create a fresh P-256 VAPID key pair."""
    vapid = Vapid()
    vapid.generate_keys()
    public_raw = vapid.public_key.public_bytes(
        encoding=serialization.Encoding.X962,
        format=serialization.PublicFormat.UncompressedPoint,
    )
    private_raw = vapid.private_key.private_numbers().private_value.to_bytes(32, "big")
    return VapidKeys(public_key=_b64url(public_raw), private_key=_b64url(private_raw))


class PushService:
    """Sends Web Push messages to stored subscriptions."""

    def __init__(
        self,
        store: NotificationStore,
        public_key: str = "",
        private_key: str = "",
        subject: str = "",
    ) -> None:
        self.store = store
        self.public_key = public_key
        self.private_key = private_key
        self.subject = subject

    @property
    def configured(self) -> bool:
        return bool(self.public_key and self.private_key)

    def send_to_subscription(self, sub: PushSubscription, payload: PushPayload) -> bool:
        """Deliver one message. Returns False on failure; never raises for delivery errors."""
        try:
            webpush(
                subscription_info={"endpoint": sub.endpoint, "keys": {"p256dh": sub.p256dh, "auth": sub.auth}},
                data=payload.to_json(),
                vapid_private_key=self.private_key,
                vapid_claims={"sub": self.subject},
                timeout=10,
            )
        except WebPushException as e:
            status = getattr(e.response, "status_code", None)
            if status in _GONE_STATUSES:
                logger.info("Push endpoint gone (HTTP %s); deactivating subscription %s", status, sub.id)
                self.store.deactivate_subscription(sub.endpoint)
            else:
                logger.warning("Push delivery to subscription %s failed: %s", sub.id, e)
            return False
        return True

    def send_to_user(self, user_id: int, payload: PushPayload) -> PushSendSummary:
        summary = PushSendSummary()
        for sub in self.store.list_user_subscriptions(user_id):
            if self.send_to_subscription(sub, payload):
                summary.successful += 1
            else:
                summary.failed += 1
        return summary

    def broadcast(self, payload: PushPayload) -> PushSendSummary:
        summary = PushSendSummary()
        for sub in self.store.list_active_subscriptions():
            if self.send_to_subscription(sub, payload):
                summary.successful += 1
            else:
                summary.failed += 1
        logger.info("Broadcast push: %s", summary.message)
        return summary
