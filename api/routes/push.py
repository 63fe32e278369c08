"""
api/routes/push.py -- Web Push subscription management and delivery.

Routes:
  GET  /api/push/vapid-public-key     -- requires auth; key the browser subscribes with
  GET  /api/push/vapid-status         -- admin
  POST /api/push/generate-vapid-keys  -- admin; keys are returned, not stored
  POST /api/push/subscribe            -- requires auth; upsert by endpoint
  POST /api/push/unsubscribe          -- requires auth; deactivates the subscription
  GET  /api/push/subscriptions        -- requires auth; caller's active subscriptions
  POST /api/push/test                 -- admin; push to the caller's own devices
  POST /api/push/broadcast            -- admin; push to every active subscription

VAPID keys come from VAPID_PUBLIC_KEY / VAPID_PRIVATE_KEY. Generated keys
only take effect after they are added to the environment and the server is
restarted.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request

from api.models import (
    MessageResponse,
    PushBroadcastRequest,
    PushSendResponse,
    PushSubscribeRequest,
    PushSubscriptionResponse,
    PushUnsubscribeRequest,
    VapidKeysResponse,
    VapidStatusResponse,
)
from api.request_context import api_error, user_agent
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from notifications.models import PushSubscription
from notifications.push import DEFAULT_PUSH_URL, PushPayload, PushService, generate_vapid_keys

logger = logging.getLogger("pcvisor.api.push")

# Auth policy:
# - vapid-public-key, subscribe, unsubscribe, subscriptions: requires auth
# - vapid-status, generate-vapid-keys, test, broadcast: requires admin
router = APIRouter(prefix="/push")

_KEY_INSTRUCTIONS = (
    "Add these keys as environment variables: VAPID_PUBLIC_KEY and VAPID_PRIVATE_KEY. "
    "The server will need to be restarted after adding the keys."
)


def _push(request: Request) -> PushService:
    return request.app.state.push_service


def _require_configured(push: PushService) -> None:
    if not push.configured:
        raise api_error(500, "Push notifications not configured", code="push_not_configured")


@router.get("/vapid-public-key")
def vapid_public_key(request: Request, current_user: User = Depends(get_current_user)) -> dict:
    push = _push(request)
    if not push.public_key:
        raise api_error(500, "Push notifications not configured", code="push_not_configured")
    return {"publicKey": push.public_key}


@router.get("/vapid-status", response_model=VapidStatusResponse)
def vapid_status(request: Request, current_user: User = Depends(require_admin)) -> VapidStatusResponse:
    push = _push(request)
    return VapidStatusResponse(
        configured=push.configured,
        public_key=push.public_key or None,
        subject=push.subject,
        has_private_key=bool(push.private_key),
    )


@router.post("/generate-vapid-keys", response_model=VapidKeysResponse)
def generate_keys(current_user: User = Depends(require_admin)) -> VapidKeysResponse:
    try:
        keys = generate_vapid_keys()
    except (ValueError, TypeError) as e:
        logger.error("VAPID key generation failed: %s", e)
        raise api_error(500, "Failed to generate VAPID keys", code="vapid_generation_failed")
    logger.info("VAPID key pair generated by %s", current_user.username)
    return VapidKeysResponse(public_key=keys.public_key, private_key=keys.private_key, instructions=_KEY_INSTRUCTIONS)


@router.post("/subscribe", status_code=201)
def subscribe(
    request: Request,
    body: PushSubscribeRequest,
    current_user: User = Depends(get_current_user),
) -> dict:
    sub = body.subscription
    if sub is None or not sub.endpoint or sub.keys is None or not sub.keys.p256dh or not sub.keys.auth:
        raise api_error(400, "Invalid subscription data")

    saved = request.app.state.notification_store.upsert_subscription(
        PushSubscription(
            user_id=current_user.id,
            endpoint=sub.endpoint,
            p256dh=sub.keys.p256dh,
            auth=sub.keys.auth,
            user_agent=user_agent(request),
        )
    )

    push = _push(request)
    if push.configured:
        welcome = PushPayload(
            title="Notifications Enabled",
            body="You will now receive push notifications from pcvisor.",
        )
        if not push.send_to_subscription(saved, welcome):
            logger.warning("Welcome push to subscription %s was not delivered", saved.id)

    return {"message": "Subscription saved", "id": saved.id}


@router.post("/unsubscribe", response_model=MessageResponse)
def unsubscribe(
    request: Request,
    body: PushUnsubscribeRequest,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    if not body.endpoint:
        raise api_error(400, "Endpoint is required")
    request.app.state.notification_store.deactivate_subscription(body.endpoint, user_id=current_user.id)
    return MessageResponse(message="Unsubscribed successfully")


@router.get("/subscriptions", response_model=list[PushSubscriptionResponse])
def list_subscriptions(
    request: Request,
    current_user: User = Depends(get_current_user),
) -> list[PushSubscriptionResponse]:
    subs = request.app.state.notification_store.list_user_subscriptions(current_user.id)
    return [PushSubscriptionResponse.model_validate(s) for s in subs]


@router.post("/test", response_model=PushSendResponse)
def send_test(request: Request, current_user: User = Depends(require_admin)) -> PushSendResponse:
    push = _push(request)
    if not request.app.state.notification_store.list_user_subscriptions(current_user.id):
        raise api_error(400, "No push subscriptions found for your account")
    _require_configured(push)

    summary = push.send_to_user(
        current_user.id,
        PushPayload(title="Test Notification", body="This is a test push notification from pcvisor."),
    )
    return PushSendResponse(message=summary.message, successful=summary.successful, failed=summary.failed)


@router.post("/broadcast", response_model=PushSendResponse)
def broadcast(
    request: Request,
    body: PushBroadcastRequest,
    current_user: User = Depends(require_admin),
) -> PushSendResponse:
    if not body.title or not body.body:
        raise api_error(400, "Title and body are required")
    push = _push(request)
    if not request.app.state.notification_store.list_active_subscriptions():
        raise api_error(400, "No active push subscriptions")
    _require_configured(push)

    summary = push.broadcast(PushPayload(title=body.title, body=body.body, url=body.url or DEFAULT_PUSH_URL))
    total = summary.successful + summary.failed
    logger.info("%s broadcast push %r to %d subscription(s)", current_user.username, body.title, total)
    return PushSendResponse(
        message=f"Broadcast sent to {summary.successful} subscriber(s), {summary.failed} failed",
        successful=summary.successful,
        failed=summary.failed,
        total=total,
    )
