"""Notification inbox and preference routes for the signed-in user."""

from uuid import UUID

from fastapi import APIRouter, Query, Response, status

from ..core import CurrentUser, CurrentUserDep
from ..core.permissions import ticket_path
from ..schemas import (
    MarkAllResponse,
    NotificationListResponse,
    NotificationResponse,
    PreferencesResponse,
    PreferencesUpdate,
    UnreadCountResponse,
)
from ..services.errors import PortalError
from .deps import NotifierDep, http_error

router = APIRouter(prefix="/notifications", tags=["notifications"])


def _response(notification, current_user: CurrentUser) -> NotificationResponse:
    return NotificationResponse(
        id=notification.id,
        type=notification.type,
        title=notification.title,
        body=notification.body,
        ticket_id=notification.ticket_id,
        is_read=notification.is_read,
        created_at=notification.created_at,
        link=ticket_path(current_user.roles, notification.ticket_id),
    )


@router.get("", response_model=NotificationListResponse)
async def list_notifications(
    current_user: CurrentUserDep,
    notifier: NotifierDep,
    limit: int = Query(default=50, ge=1, le=200),
):
    """Newest first, with the unread badge count."""
    notifications = await notifier.list_for_user(current_user.id, limit)
    return NotificationListResponse(
        items=[_response(n, current_user) for n in notifications],
        unread_count=await notifier.unread_count(current_user.id),
    )


@router.get("/unread-count", response_model=UnreadCountResponse)
async def unread_count(current_user: CurrentUserDep, notifier: NotifierDep):
    return UnreadCountResponse(unread_count=await notifier.unread_count(current_user.id))


@router.post("/read-all", response_model=MarkAllResponse)
async def mark_all_read(current_user: CurrentUserDep, notifier: NotifierDep):
    return MarkAllResponse(updated=await notifier.mark_all_as_read(current_user.id))


@router.get("/preferences", response_model=PreferencesResponse)
async def get_preferences(current_user: CurrentUserDep, notifier: NotifierDep):
    prefs = await notifier.get_preferences(current_user.id)
    return PreferencesResponse.model_validate(prefs)


@router.put("/preferences", response_model=PreferencesResponse)
async def update_preferences(
    request: PreferencesUpdate,
    current_user: CurrentUserDep,
    notifier: NotifierDep,
):
    """Only the flags present in the body change."""
    changes = request.model_dump(exclude_none=True)
    prefs = await notifier.update_preferences(current_user.id, **changes)
    return PreferencesResponse.model_validate(prefs)


@router.post("/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: UUID,
    current_user: CurrentUserDep,
    notifier: NotifierDep,
):
    try:
        notification = await notifier.mark_as_read(current_user.id, notification_id)
    except PortalError as e:
        raise http_error(e)
    return _response(notification, current_user)


@router.delete("/{notification_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_notification(
    notification_id: UUID,
    current_user: CurrentUserDep,
    notifier: NotifierDep,
):
    try:
        await notifier.delete(current_user.id, notification_id)
    except PortalError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
