"""SQLAlchemy ORM Models for the Client Support Portal.

Tables mirror the hosted backend schema the portal was built against:
organizations and their members, user roles, tickets with their threads,
attachments and time logs, hour allocations, notifications and the
knowledge base.
"""

from datetime import date, datetime
from enum import Enum as PyEnum
from uuid import UUID

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    Enum,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, CreatedAtMixin, TimestampMixin, UUIDMixin


def _enum(enum_cls: type[PyEnum], name: str) -> Enum:
    return Enum(enum_cls, name=name, values_callable=lambda x: [e.value for e in x])


# =============================================================================
# ENUMS
# =============================================================================


class AccountStatus(str, PyEnum):
    ACTIVE = "active"
    PAUSED = "paused"
    SUSPENDED = "suspended"
    OVERDUE = "overdue"


class AppRole(str, PyEnum):
    CLIENT = "client"
    SUPPORT = "support"
    ADMIN = "admin"
    OPS = "ops"


class TicketPriority(str, PyEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    URGENT = "urgent"


class TicketStatus(str, PyEnum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    WAITING_ON_CLIENT = "waiting_on_client"
    RESOLVED = "resolved"
    CLOSED = "closed"


class NotificationType(str, PyEnum):
    TICKET_ASSIGNED = "ticket_assigned"
    TICKET_STATUS_CHANGED = "ticket_status_changed"
    TICKET_REPLY = "ticket_reply"


class UploadState(str, PyEnum):
    """Metadata rows are written before the object exists in storage."""
    PENDING = "pending"
    STORED = "stored"


STAFF_ROLES = frozenset({AppRole.SUPPORT, AppRole.ADMIN, AppRole.OPS})
ASSIGNABLE_ROLES = frozenset({AppRole.SUPPORT, AppRole.ADMIN})
TERMINAL_STATUSES = frozenset({TicketStatus.RESOLVED, TicketStatus.CLOSED})

# Shared by attachments and documents so the database type is created once
upload_state_enum = _enum(UploadState, "upload_state")


# =============================================================================
# ORGANIZATION & USER MODELS
# =============================================================================


class Organization(Base, UUIDMixin, TimestampMixin):
    """A client tenant."""

    __tablename__ = "organizations"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str | None] = mapped_column(String(255), unique=True)
    website: Mapped[str | None] = mapped_column(String(500))
    logo_url: Mapped[str | None] = mapped_column(String(500))
    billing_email: Mapped[str | None] = mapped_column(String(255))
    billing_address: Mapped[str | None] = mapped_column(Text)
    primary_contact_name: Mapped[str | None] = mapped_column(String(255))
    primary_contact_email: Mapped[str | None] = mapped_column(String(255))
    primary_contact_phone: Mapped[str | None] = mapped_column(String(50))
    notes: Mapped[str | None] = mapped_column(Text)

    account_status: Mapped[AccountStatus] = mapped_column(
        _enum(AccountStatus, "account_status"),
        default=AccountStatus.ACTIVE,
        nullable=False,
    )
    payment_overdue_since: Mapped[datetime | None] = mapped_column(nullable=True)
    stripe_customer_id: Mapped[str | None] = mapped_column(
        String(255),
        nullable=True,
        comment="Stripe customer ID for billing",
    )


class User(Base, UUIDMixin, TimestampMixin):
    """User profile. The id matches the auth service's user id."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    full_name: Mapped[str | None] = mapped_column(String(255))
    avatar_url: Mapped[str | None] = mapped_column(String(500))
    phone: Mapped[str | None] = mapped_column(String(50))


class OrganizationMember(Base, UUIDMixin, CreatedAtMixin):
    """Membership linking a client user to an organization."""

    __tablename__ = "organization_members"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    is_primary_contact: Mapped[bool] = mapped_column(Boolean, default=False)

    __table_args__ = (
        UniqueConstraint("organization_id", "user_id", name="uq_org_member"),
        Index("idx_org_members_user", "user_id"),
    )


class UserRole(Base, UUIDMixin, CreatedAtMixin):
    """A (user, role) pair. Staff users may hold several."""

    __tablename__ = "user_roles"

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    role: Mapped[AppRole] = mapped_column(_enum(AppRole, "app_role"), nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "role", name="uq_user_role"),
    )


# =============================================================================
# TICKETS
# =============================================================================


class Ticket(Base, UUIDMixin, TimestampMixin):
    """A support ticket raised by (or on behalf of) a client organization."""

    __tablename__ = "tickets"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    created_by_user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id"), nullable=False
    )
    assigned_to_user_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    status: Mapped[TicketStatus] = mapped_column(
        _enum(TicketStatus, "ticket_status"),
        default=TicketStatus.OPEN,
        nullable=False,
    )
    priority: Mapped[TicketPriority] = mapped_column(
        _enum(TicketPriority, "ticket_priority"),
        default=TicketPriority.MEDIUM,
        nullable=False,
    )
    category: Mapped[str | None] = mapped_column(String(100))
    sla_due_at: Mapped[datetime | None] = mapped_column(nullable=True)
    resolved_at: Mapped[datetime | None] = mapped_column(nullable=True)

    organization: Mapped["Organization"] = relationship()

    __table_args__ = (
        Index("idx_tickets_org_status", "organization_id", "status"),
        Index("idx_tickets_assignee", "assigned_to_user_id"),
    )


class TicketMessage(Base, UUIDMixin, CreatedAtMixin):
    """Append-only reply thread entry."""

    __tablename__ = "ticket_messages"

    ticket_id: Mapped[UUID] = mapped_column(ForeignKey("tickets.id"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    is_internal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("idx_ticket_messages_ticket", "ticket_id", "created_at"),
    )


class TicketAttachment(Base, UUIDMixin, CreatedAtMixin):
    """Metadata row for an object stored under the attachments bucket."""

    __tablename__ = "ticket_attachments"

    ticket_id: Mapped[UUID] = mapped_column(ForeignKey("tickets.id"), nullable=False)
    uploaded_by_user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id"), nullable=False
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[int | None] = mapped_column(Integer)
    content_type: Mapped[str | None] = mapped_column(String(255))
    upload_state: Mapped[UploadState] = mapped_column(
        upload_state_enum,
        default=UploadState.PENDING,
        nullable=False,
    )


class ClientDocument(Base, UUIDMixin, CreatedAtMixin):
    """Organization-level document shared between the client and staff."""

    __tablename__ = "client_documents"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    uploaded_by_user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id"), nullable=False
    )
    file_name: Mapped[str] = mapped_column(String(255), nullable=False)
    file_path: Mapped[str] = mapped_column(String(1024), nullable=False)
    file_size: Mapped[int | None] = mapped_column(Integer)
    content_type: Mapped[str | None] = mapped_column(String(255))
    description: Mapped[str | None] = mapped_column(Text)
    upload_state: Mapped[UploadState] = mapped_column(
        upload_state_enum,
        default=UploadState.PENDING,
        nullable=False,
    )


class SatisfactionSurvey(Base, UUIDMixin, CreatedAtMixin):
    """Client rating of a finished ticket."""

    __tablename__ = "satisfaction_surveys"

    ticket_id: Mapped[UUID] = mapped_column(ForeignKey("tickets.id"), nullable=False)
    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    rating: Mapped[int | None] = mapped_column(Integer)
    feedback: Mapped[str | None] = mapped_column(Text)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)

    __table_args__ = (
        UniqueConstraint("ticket_id", "user_id", name="uq_survey_ticket_user"),
        CheckConstraint("rating IS NULL OR (rating BETWEEN 1 AND 5)", name="rating_range"),
    )


# =============================================================================
# HOURS
# =============================================================================


class HourAllocation(Base, UUIDMixin, TimestampMixin):
    """A billing-period bucket of purchased hours.

    When ``title`` is set the allocation doubles as a project.
    """

    __tablename__ = "hour_allocations"

    organization_id: Mapped[UUID] = mapped_column(
        ForeignKey("organizations.id"), nullable=False
    )
    period_start: Mapped[date] = mapped_column(Date, nullable=False)
    period_end: Mapped[date] = mapped_column(Date, nullable=False)
    total_hours: Mapped[float] = mapped_column(Float, nullable=False)
    used_hours: Mapped[float] = mapped_column(Float, default=0.0, nullable=False)
    agreed_hourly_rate: Mapped[float | None] = mapped_column(Float)
    title: Mapped[str | None] = mapped_column(String(255))
    notes: Mapped[str | None] = mapped_column(Text)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(255))

    __table_args__ = (
        CheckConstraint("period_end >= period_start", name="period_order"),
        Index("idx_allocations_org_period", "organization_id", "period_start", "period_end"),
    )


class TicketTimeLog(Base, UUIDMixin, CreatedAtMixin):
    """Hours of work performed by a staff user against a ticket."""

    __tablename__ = "ticket_time_logs"

    ticket_id: Mapped[UUID] = mapped_column(ForeignKey("tickets.id"), nullable=False)
    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    hours: Mapped[float] = mapped_column(Float, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    logged_at: Mapped[datetime] = mapped_column(nullable=False)

    __table_args__ = (
        CheckConstraint("hours > 0", name="hours_positive"),
        Index("idx_time_logs_ticket", "ticket_id"),
    )


# =============================================================================
# NOTIFICATIONS
# =============================================================================


class Notification(Base, UUIDMixin, CreatedAtMixin):
    """In-app notification for a single recipient."""

    __tablename__ = "notifications"

    user_id: Mapped[UUID] = mapped_column(ForeignKey("users.id"), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    ticket_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("tickets.id"), nullable=True
    )
    is_read: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    __table_args__ = (
        Index("idx_notifications_user", "user_id", "is_read"),
    )


class NotificationPreference(Base, UUIDMixin, TimestampMixin):
    """One row per user; a missing row means everything is enabled."""

    __tablename__ = "notification_preferences"

    user_id: Mapped[UUID] = mapped_column(
        ForeignKey("users.id"), unique=True, nullable=False
    )
    ticket_assigned_inapp: Mapped[bool] = mapped_column(Boolean, default=True)
    ticket_assigned_email: Mapped[bool] = mapped_column(Boolean, default=True)
    ticket_status_changed_inapp: Mapped[bool] = mapped_column(Boolean, default=True)
    ticket_status_changed_email: Mapped[bool] = mapped_column(Boolean, default=True)
    ticket_reply_inapp: Mapped[bool] = mapped_column(Boolean, default=True)
    ticket_reply_email: Mapped[bool] = mapped_column(Boolean, default=True)


# =============================================================================
# KNOWLEDGE BASE
# =============================================================================


class KBCategory(Base, UUIDMixin, CreatedAtMixin):
    __tablename__ = "kb_categories"

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    icon: Mapped[str | None] = mapped_column(String(100))
    sort_order: Mapped[int | None] = mapped_column(Integer, default=0)


class KBArticle(Base, UUIDMixin, TimestampMixin):
    __tablename__ = "kb_articles"

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    slug: Mapped[str] = mapped_column(String(500), nullable=False)
    excerpt: Mapped[str | None] = mapped_column(Text)
    content: Mapped[str | None] = mapped_column(Text)
    # Weak reference: deleting a category leaves articles uncategorized
    category_id: Mapped[UUID | None] = mapped_column(nullable=True)
    author_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("users.id"), nullable=True
    )
    is_published: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    published_at: Mapped[datetime | None] = mapped_column(nullable=True)
    view_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    __table_args__ = (
        Index("idx_kb_articles_slug", "slug"),
    )


# =============================================================================
# AUTH
# =============================================================================


class MagicLinkThrottle(Base, UUIDMixin, TimestampMixin):
    """Persisted sign-in link backoff state, keyed by email."""

    __tablename__ = "magic_link_throttles"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    backoff_seconds: Mapped[int | None] = mapped_column(Integer, nullable=True)
    cooldown_until: Mapped[datetime | None] = mapped_column(nullable=True)
