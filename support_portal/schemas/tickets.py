"""Pydantic schemas for tickets, reply threads and satisfaction surveys."""

from datetime import datetime
from uuid import UUID

from pydantic import Field

from ..models import Ticket
from ..services.hours import Usage
from ..services.sla import classify_sla
from ..services.tickets import SortOrder, client_status_label
from .base import PortalBaseModel, TicketPriority, TicketStatus, UserRef


# =============================================================================
# REQUESTS
# =============================================================================


class TicketCreate(PortalBaseModel):
    """Open a new ticket. Staff must name the organization."""

    title: str = Field(..., min_length=1, max_length=500)
    description: str | None = None
    priority: TicketPriority = TicketPriority.MEDIUM
    category: str | None = Field(default=None, max_length=100)
    sla_due_at: datetime | None = None
    organization_id: UUID | None = None
    assigned_to_user_id: UUID | None = None


class TicketUpdate(PortalBaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=500)
    description: str | None = None
    priority: TicketPriority | None = None
    category: str | None = None
    sla_due_at: datetime | None = None
    clear_sla_due_at: bool = False


class StatusChange(PortalBaseModel):
    status: TicketStatus


class AssignRequest(PortalBaseModel):
    """``assigned_to_user_id`` null unassigns."""

    assigned_to_user_id: UUID | None = None


class BulkUpdateRequest(PortalBaseModel):
    ticket_ids: list[UUID] = Field(..., min_length=1, max_length=500)
    status: TicketStatus | None = None
    assigned_to_user_id: UUID | None = None
    unassign: bool = False


class MessageCreate(PortalBaseModel):
    message: str = Field(..., min_length=1)
    is_internal: bool = False


class SurveyCreate(PortalBaseModel):
    rating: int = Field(..., ge=1, le=5)
    feedback: str | None = None


# =============================================================================
# RESPONSES
# =============================================================================


class SLABadgeResponse(PortalBaseModel):
    level: str
    label: str
    hours_remaining: float


class TicketResponse(PortalBaseModel):
    id: UUID
    organization_id: UUID
    created_by_user_id: UUID
    assigned_to_user_id: UUID | None = None
    title: str
    description: str | None = None
    status: TicketStatus
    status_label: str
    priority: TicketPriority
    category: str | None = None
    sla_due_at: datetime | None = None
    resolved_at: datetime | None = None
    created_at: datetime
    updated_at: datetime | None = None
    sla: SLABadgeResponse | None = None

    @classmethod
    def from_ticket(
        cls, ticket: Ticket, client_view: bool = False, now: datetime | None = None
    ) -> "TicketResponse":
        badge = classify_sla(ticket.sla_due_at, ticket.status, now)
        return cls(
            id=ticket.id,
            organization_id=ticket.organization_id,
            created_by_user_id=ticket.created_by_user_id,
            assigned_to_user_id=ticket.assigned_to_user_id,
            title=ticket.title,
            description=ticket.description,
            status=ticket.status,
            status_label=(
                client_status_label(ticket.status)
                if client_view
                else TicketStatus(ticket.status).value.replace("_", " ").title()
            ),
            priority=ticket.priority,
            category=ticket.category,
            sla_due_at=ticket.sla_due_at,
            resolved_at=ticket.resolved_at,
            created_at=ticket.created_at,
            updated_at=ticket.updated_at,
            sla=(
                SLABadgeResponse(
                    level=badge.level.value,
                    label=badge.label,
                    hours_remaining=round(badge.hours_remaining, 2),
                )
                if badge
                else None
            ),
        )


class SLASummaryResponse(PortalBaseModel):
    total: int
    breached: int
    at_risk: int
    unassigned: int


class TicketListResponse(PortalBaseModel):
    items: list[TicketResponse]
    summary: SLASummaryResponse
    sort: SortOrder


class BulkUpdateResponse(PortalBaseModel):
    updated: int
    ticket_ids: list[UUID]


class TransitionsResponse(PortalBaseModel):
    current: TicketStatus
    allowed: list[TicketStatus]


class TicketMessageResponse(PortalBaseModel):
    id: UUID
    ticket_id: UUID
    user_id: UUID
    message: str
    is_internal: bool
    created_at: datetime


class SurveyResponse(PortalBaseModel):
    id: UUID
    ticket_id: UUID
    rating: int | None
    feedback: str | None = None
    submitted_at: datetime | None = None


class AllocationUsage(PortalBaseModel):
    total: float
    used: float
    remaining: float
    display_remaining: float
    percent: float
    display_percent: int
    level: str

    @classmethod
    def from_usage(cls, usage: Usage) -> "AllocationUsage":
        return cls(
            total=usage.total,
            used=usage.used,
            remaining=usage.remaining,
            display_remaining=usage.display_remaining,
            percent=usage.percent,
            display_percent=usage.display_percent,
            level=usage.level.value,
        )


class TicketContextResponse(PortalBaseModel):
    """Client context panel shown next to a ticket for staff."""

    organization_id: UUID
    organization_name: str
    account_status: str
    usage: AllocationUsage | None = None
    open_tickets: int
    logged_hours: float


class AssigneeResponse(UserRef):
    pass
