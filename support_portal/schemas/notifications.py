"""Pydantic schemas for the notification inbox and preferences."""

from datetime import datetime
from uuid import UUID

from .base import PortalBaseModel


class NotificationResponse(PortalBaseModel):
    id: UUID
    type: str
    title: str
    body: str
    ticket_id: UUID | None = None
    is_read: bool
    created_at: datetime
    link: str | None = None


class NotificationListResponse(PortalBaseModel):
    items: list[NotificationResponse]
    unread_count: int


class UnreadCountResponse(PortalBaseModel):
    unread_count: int


class MarkAllResponse(PortalBaseModel):
    updated: int


class PreferencesResponse(PortalBaseModel):
    ticket_assigned_inapp: bool = True
    ticket_assigned_email: bool = True
    ticket_status_changed_inapp: bool = True
    ticket_status_changed_email: bool = True
    ticket_reply_inapp: bool = True
    ticket_reply_email: bool = True


class PreferencesUpdate(PortalBaseModel):
    ticket_assigned_inapp: bool | None = None
    ticket_assigned_email: bool | None = None
    ticket_status_changed_inapp: bool | None = None
    ticket_status_changed_email: bool | None = None
    ticket_reply_inapp: bool | None = None
    ticket_reply_email: bool | None = None
