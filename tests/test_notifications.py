"""
tests/test_notifications.py -- In-app notifications and Web Push.

pywebpush is never allowed to reach the network: notifications.push.webpush
is patched in every test that could deliver a message.

Coverage:
  - NotificationStore: per-user scoping, unread count, mark read, delete
  - PushService: delivery arguments, 404/410 deactivation, other failures kept active
  - generate_vapid_keys: key lengths in URL-safe base64
  - Routes: inbox flow, admin send, subscribe/unsubscribe, test push, broadcast
"""

from __future__ import annotations

import json
from unittest.mock import MagicMock, patch

from fastapi.testclient import TestClient
from pywebpush import WebPushException

from auth.tokens import create_access_token
from conftest import auth_headers, create_user
from notifications.models import Notification, PushSubscription
from notifications.push import PushPayload, PushService, generate_vapid_keys

ENDPOINT = "https://push.example.com/send/abc123"
KEYS = {"p256dh": "BNcRdreALRFXTkOOUHK1EtK2wtaz5Ry4YfYCA_0QTpQtUbVlUls0VJXg7A8u-Ts1XbjhazAkj7I99e8QcYP7DkM", "auth": "tBHItJI5svbpez7KI4CCXg"}


def _subscription(store, user_id: int = 1, endpoint: str = ENDPOINT) -> PushSubscription:
    return store.upsert_subscription(
        PushSubscription(user_id=user_id, endpoint=endpoint, p256dh=KEYS["p256dh"], auth=KEYS["auth"])
    )


def _gone(status: int) -> WebPushException:
    return WebPushException("Push failed", response=MagicMock(status_code=status))


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------


class TestNotificationStore:
    def test_scoped_to_owner(self, stores) -> None:
        """Another user's id behaves exactly like a missing notification."""
        store = stores.notification_store
        mine = store.create_notification(Notification(user_id=1, title="Hi", message="Hello"))
        store.create_notification(Notification(user_id=2, title="Other", message="Not yours"))

        assert [n.title for n in store.list_for_user(1)] == ["Hi"]
        assert store.get_notification(mine.id, 2) is None
        assert store.mark_read(mine.id, 2) is None
        assert store.delete_notification(mine.id, 2) is False
        assert store.get_notification(mine.id, 1) is not None

    def test_unread_and_mark_all(self, stores) -> None:
        store = stores.notification_store
        for i in range(3):
            store.create_notification(Notification(user_id=7, title=f"n{i}", message="m"))
        assert store.unread_count(7) == 3

        first = store.list_for_user(7)[0]
        assert store.mark_read(first.id, 7).is_read is True
        assert store.unread_count(7) == 2
        assert store.mark_all_read(7) == 2
        assert store.unread_count(7) == 0

    def test_subscription_upsert_reactivates(self, stores) -> None:
        store = stores.notification_store
        first = _subscription(store)
        assert store.deactivate_subscription(ENDPOINT, user_id=1) is True
        assert store.list_user_subscriptions(1) == []

        again = _subscription(store, user_id=3)
        assert again.id == first.id, "Endpoints are unique; re-registration updates the row"
        assert again.is_active is True
        assert again.user_id == 3

    def test_deactivate_requires_owner(self, stores) -> None:
        store = stores.notification_store
        _subscription(store, user_id=1)
        assert store.deactivate_subscription(ENDPOINT, user_id=99) is False
        assert store.get_subscription(ENDPOINT).is_active is True


# ---------------------------------------------------------------------------
# PushService
# ---------------------------------------------------------------------------


class TestPushService:
    def _service(self, stores) -> PushService:
        return PushService(stores.notification_store, "pub", "priv", "mailto:ops@example.com")

    def test_delivery_arguments(self, stores) -> None:
        sub = _subscription(stores.notification_store)
        with patch("notifications.push.webpush") as webpush:
            ok = self._service(stores).send_to_subscription(sub, PushPayload(title="T", body="B", tag="t1"))
        assert ok is True
        kwargs = webpush.call_args.kwargs
        assert kwargs["subscription_info"] == {"endpoint": ENDPOINT, "keys": KEYS}
        assert kwargs["vapid_private_key"] == "priv"
        assert kwargs["vapid_claims"] == {"sub": "mailto:ops@example.com"}
        data = json.loads(kwargs["data"])
        assert data["title"] == "T"
        assert data["tag"] == "t1"
        assert data["data"] == {"url": "/portal"}

    def test_gone_endpoint_deactivated(self, stores) -> None:
        sub = _subscription(stores.notification_store)
        with patch("notifications.push.webpush", side_effect=_gone(410)):
            assert self._service(stores).send_to_subscription(sub, PushPayload(title="T", body="B")) is False
        assert stores.notification_store.get_subscription(ENDPOINT).is_active is False

    def test_other_failures_keep_subscription(self, stores) -> None:
        sub = _subscription(stores.notification_store)
        with patch("notifications.push.webpush", side_effect=_gone(500)):
            assert self._service(stores).send_to_subscription(sub, PushPayload(title="T", body="B")) is False
        assert stores.notification_store.get_subscription(ENDPOINT).is_active is True

    def test_broadcast_counts(self, stores) -> None:
        store = stores.notification_store
        _subscription(store, user_id=1, endpoint=ENDPOINT)
        _subscription(store, user_id=2, endpoint=ENDPOINT + "-gone")

        def deliver(subscription_info, **kwargs):
            if subscription_info["endpoint"].endswith("-gone"):
                raise _gone(404)

        with patch("notifications.push.webpush", side_effect=deliver):
            summary = self._service(stores).broadcast(PushPayload(title="T", body="B"))
        assert (summary.successful, summary.failed) == (1, 1)
        assert summary.message == "Sent 1 notification(s), 1 failed"
        assert len(store.list_active_subscriptions()) == 1

    def test_not_configured(self, stores) -> None:
        assert PushService(stores.notification_store).configured is False


def test_generate_vapid_keys() -> None:
    keys = generate_vapid_keys()
    assert len(keys.public_key) == 87, "65-byte uncompressed point"
    assert len(keys.private_key) == 43, "32-byte scalar"
    assert "=" not in keys.public_key + keys.private_key


# ---------------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------------


class TestNotificationRoutes:
    def test_admin_send_and_inbox(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, uid = api_client
        headers = auth_headers(token)
        resp = client.post(
            "/api/admin/notifications",
            json={"userId": uid, "title": "Maintenance", "message": "Tonight at 22:00", "type": "warning"},
            headers=headers,
        )
        assert resp.status_code == 201, resp.text
        created = resp.json()
        assert created["isRead"] is False

        assert client.get("/api/user/notifications/unread-count", headers=headers).json() == {"count": 1}
        inbox = client.get("/api/user/notifications", headers=headers).json()
        assert inbox[0]["title"] == "Maintenance"

        resp = client.patch(f"/api/user/notifications/{created['id']}/read", headers=headers)
        assert resp.json()["isRead"] is True
        resp = client.patch("/api/user/notifications/mark-all-read", headers=headers)
        assert resp.json() == {"message": "Marked 0 notifications as read", "count": 0}

        assert client.delete(f"/api/user/notifications/{created['id']}", headers=headers).status_code == 200
        assert client.delete(f"/api/user/notifications/{created['id']}", headers=headers).status_code == 404

    def test_admin_send_validation(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        headers = auth_headers(token)
        resp = client.post(
            "/api/admin/notifications", json={"userId": 424242, "title": "x", "message": "y"}, headers=headers
        )
        assert resp.status_code == 404
        resp = client.post(
            "/api/admin/notifications", json={"userId": 1, "title": "x", "message": "y", "type": "loud"}, headers=headers
        )
        assert resp.status_code == 400

    def test_cannot_touch_other_users_notifications(self, api_client: tuple[TestClient, str, int]) -> None:
        client, _token, uid = api_client
        note = client.stores.notification_store.create_notification(
            Notification(user_id=uid, title="Private", message="admin only")
        )
        other = create_user(client.stores.user_store, "snoop")
        other_token = create_access_token(other, "snoop", expire_seconds=600)
        resp = client.patch(f"/api/user/notifications/{note.id}/read", headers=auth_headers(other_token))
        assert resp.status_code == 404
        assert client.get("/api/user/notifications", headers=auth_headers(other_token)).json() == []


class TestPushRoutes:
    def test_public_key(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.get("/api/push/vapid-public-key", headers=auth_headers(token))
        assert resp.json() == {"publicKey": "test-public-key"}
        status = client.get("/api/push/vapid-status", headers=auth_headers(token)).json()
        assert status["configured"] is True
        assert status["hasPrivateKey"] is True

    def test_subscribe_sends_welcome(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, uid = api_client
        headers = auth_headers(token)
        body = {"subscription": {"endpoint": ENDPOINT, "keys": KEYS}}
        with patch("notifications.push.webpush") as webpush:
            resp = client.post("/api/push/subscribe", json=body, headers=headers)
        assert resp.status_code == 201, resp.text
        assert json.loads(webpush.call_args.kwargs["data"])["title"] == "Notifications Enabled"

        subs = client.get("/api/push/subscriptions", headers=headers).json()
        assert [s["endpoint"] for s in subs] == [ENDPOINT]

        with patch("notifications.push.webpush") as webpush:
            resp = client.post("/api/push/test", headers=headers)
        assert resp.status_code == 200
        assert resp.json()["successful"] == 1

        resp = client.post("/api/push/unsubscribe", json={"endpoint": ENDPOINT}, headers=headers)
        assert resp.status_code == 200
        assert client.get("/api/push/subscriptions", headers=headers).json() == []
        assert client.stores.notification_store.get_subscription(ENDPOINT) is not None, "Unsubscribe is a soft delete"

    def test_invalid_subscription(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        body = {"subscription": {"endpoint": ENDPOINT, "keys": {"p256dh": "x"}}}
        resp = client.post("/api/push/subscribe", json=body, headers=auth_headers(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["message"] == "Invalid subscription data"

    def test_test_push_without_subscriptions(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        resp = client.post("/api/push/test", headers=auth_headers(token))
        assert resp.status_code == 400

    def test_broadcast(self, api_client: tuple[TestClient, str, int]) -> None:
        client, token, _uid = api_client
        headers = auth_headers(token)
        assert client.post("/api/push/broadcast", json={"title": "x"}, headers=headers).status_code == 400

        _subscription(client.stores.notification_store, endpoint=ENDPOINT + "-broadcast")
        with patch("notifications.push.webpush"):
            resp = client.post("/api/push/broadcast", json={"title": "Hello", "body": "All"}, headers=headers)
        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == data["successful"] + data["failed"]
        assert data["message"].startswith("Broadcast sent to")
