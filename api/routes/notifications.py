"""
api/routes/notifications.py -- In-app notification inbox.

Routes:
  GET    /api/user/notifications                 -- latest 50 for the caller
  GET    /api/user/notifications/unread-count
  PATCH  /api/user/notifications/{id}/read
  PATCH  /api/user/notifications/mark-all-read
  DELETE /api/user/notifications/{id}
  POST   /api/admin/notifications                -- admin; send to a user

Every /user/notifications query is scoped to the caller: another user's
notification id behaves exactly like a missing one (404).
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from api.models import (
    MarkAllReadResponse,
    MessageResponse,
    NotificationCreate,
    NotificationResponse,
    UnreadCountResponse,
)
from api.request_context import api_error
from auth.dependencies import get_current_user, require_admin
from auth.models import User
from notifications.models import Notification
from notifications.store import NotificationStore

# Auth policy:
# - /user/notifications*: requires auth, caller's own rows only
# - /admin/notifications: requires admin
router = APIRouter()

INBOX_LIMIT = 50


def _store(request: Request) -> NotificationStore:
    return request.app.state.notification_store


@router.get("/user/notifications", response_model=list[NotificationResponse])
def list_notifications(request: Request, current_user: User = Depends(get_current_user)) -> list[NotificationResponse]:
    return [
        NotificationResponse.model_validate(n) for n in _store(request).list_for_user(current_user.id, INBOX_LIMIT)
    ]


@router.get("/user/notifications/unread-count", response_model=UnreadCountResponse)
def unread_count(request: Request, current_user: User = Depends(get_current_user)) -> UnreadCountResponse:
    return UnreadCountResponse(count=_store(request).unread_count(current_user.id))


# Registered before /{notification_id}/read so "mark-all-read" is not parsed as an id.
@router.patch("/user/notifications/mark-all-read", response_model=MarkAllReadResponse)
def mark_all_read(request: Request, current_user: User = Depends(get_current_user)) -> MarkAllReadResponse:
    count = _store(request).mark_all_read(current_user.id)
    return MarkAllReadResponse(message=f"Marked {count} notifications as read", count=count)


@router.patch("/user/notifications/{notification_id}/read", response_model=NotificationResponse)
def mark_read(
    request: Request,
    notification_id: int,
    current_user: User = Depends(get_current_user),
) -> NotificationResponse:
    notification = _store(request).mark_read(notification_id, current_user.id)
    if notification is None:
        raise api_error(404, "Notification not found")
    return NotificationResponse.model_validate(notification)


@router.delete("/user/notifications/{notification_id}", response_model=MessageResponse)
def delete_notification(
    request: Request,
    notification_id: int,
    current_user: User = Depends(get_current_user),
) -> MessageResponse:
    if not _store(request).delete_notification(notification_id, current_user.id):
        raise api_error(404, "Notification not found")
    return MessageResponse(message="Notification deleted")


@router.post("/admin/notifications", response_model=NotificationResponse, status_code=201)
def create_notification(
    request: Request,
    body: NotificationCreate,
    current_user: User = Depends(require_admin),
) -> NotificationResponse:
    if request.app.state.user_store.get_by_id(body.user_id) is None:
        raise api_error(404, "User not found")
    notification = _store(request).create_notification(
        Notification(
            user_id=body.user_id,
            title=body.title,
            message=body.message,
            type=body.type,
            link=body.link,
        )
    )
    return NotificationResponse.model_validate(notification)
