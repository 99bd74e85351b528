"""SQLAlchemy ORM Models for the Client Support Portal."""

from .base import Base, CreatedAtMixin, TimestampMixin, UUIDMixin, as_utc, utcnow
from .models import (
    # Enums
    AccountStatus,
    AppRole,
    NotificationType,
    TicketPriority,
    TicketStatus,
    UploadState,
    # Role and status groups
    ASSIGNABLE_ROLES,
    STAFF_ROLES,
    TERMINAL_STATUSES,
    # Organization & User
    Organization,
    OrganizationMember,
    User,
    UserRole,
    # Tickets
    ClientDocument,
    SatisfactionSurvey,
    Ticket,
    TicketAttachment,
    TicketMessage,
    # Hours
    HourAllocation,
    TicketTimeLog,
    # Notifications
    Notification,
    NotificationPreference,
    # Knowledge base
    KBArticle,
    KBCategory,
    # Auth
    MagicLinkThrottle,
)

__all__ = [
    # Base
    "Base",
    "UUIDMixin",
    "TimestampMixin",
    "CreatedAtMixin",
    "utcnow",
    "as_utc",
    # Enums
    "AccountStatus",
    "AppRole",
    "NotificationType",
    "TicketPriority",
    "TicketStatus",
    "UploadState",
    "ASSIGNABLE_ROLES",
    "STAFF_ROLES",
    "TERMINAL_STATUSES",
    # Organization & User
    "Organization",
    "OrganizationMember",
    "User",
    "UserRole",
    # Tickets
    "Ticket",
    "TicketMessage",
    "TicketAttachment",
    "ClientDocument",
    "SatisfactionSurvey",
    # Hours
    "HourAllocation",
    "TicketTimeLog",
    # Notifications
    "Notification",
    "NotificationPreference",
    # Knowledge base
    "KBArticle",
    "KBCategory",
    # Auth
    "MagicLinkThrottle",
]
