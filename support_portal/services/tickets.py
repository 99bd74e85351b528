"""
Ticket Engine: ticket lifecycle, triage and reply threads.

- Status writes are checked against the per-role transition allow-list
- Entering resolved/closed stamps ``resolved_at``; reopening clears it
- Bulk updates touch exactly the selected tickets, all or nothing
- Reply threads are append-only; internal notes never reach clients
"""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import case, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.permissions import allowed_transitions, can_transition, is_staff
from ..models import (
    ASSIGNABLE_ROLES,
    AppRole,
    SatisfactionSurvey,
    TERMINAL_STATUSES,
    Ticket,
    TicketMessage,
    TicketPriority,
    TicketStatus,
    User,
    UserRole,
    as_utc,
    utcnow,
)
from .errors import ConflictError, NotFoundError, PermissionDeniedError, ValidationError
from .notifications import NotificationService

logger = logging.getLogger(__name__)


# =============================================================================
# EXCEPTIONS
# =============================================================================


class TicketNotFoundError(NotFoundError):
    """Ticket does not exist or is outside the caller's organization."""
    pass


class InvalidTransitionError(ConflictError):
    """Status change not allowed for the caller's roles."""

    def __init__(self, current: TicketStatus, target: TicketStatus, ticket_id: UUID | None = None):
        self.current = TicketStatus(current)
        self.target = TicketStatus(target)
        self.ticket_id = ticket_id
        super().__init__(
            f"Cannot move ticket from {self.current.value} to {self.target.value}"
        )


class InvalidAssigneeError(ValidationError):
    """Assignee does not hold the support or admin role."""
    pass


class SurveyError(ConflictError):
    pass


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


class SortOrder(str, Enum):
    NEWEST = "newest"
    OLDEST = "oldest"
    DUE_SOONEST = "due_soonest"
    DUE_LATEST = "due_latest"


UNASSIGNED = "unassigned"


@dataclass
class CreateTicketInput:
    """Input for opening a ticket."""
    title: str
    description: str | None = None
    priority: TicketPriority = TicketPriority.MEDIUM
    category: str | None = None
    sla_due_at: datetime | None = None
    assigned_to_user_id: UUID | None = None


@dataclass
class UpdateTicketInput:
    """Partial update. ``clear_sla_due_at`` removes the deadline."""
    title: str | None = None
    description: str | None = None
    priority: TicketPriority | None = None
    category: str | None = None
    sla_due_at: datetime | None = None
    clear_sla_due_at: bool = False


@dataclass
class TicketFilters:
    organization_id: UUID | None = None
    statuses: list[TicketStatus] = field(default_factory=list)
    priority: TicketPriority | None = None
    # A user id, or UNASSIGNED
    assignee: UUID | str | None = None
    search: str | None = None
    sort: SortOrder = SortOrder.NEWEST
    limit: int | None = None


@dataclass
class BulkUpdateResult:
    updated: int
    ticket_ids: list[UUID]


# Clients see a coarser lifecycle than staff
CLIENT_STATUS_LABELS = {
    TicketStatus.OPEN: "Open",
    TicketStatus.IN_PROGRESS: "Open",
    TicketStatus.WAITING_ON_CLIENT: "Waiting on Client",
    TicketStatus.RESOLVED: "Closed",
    TicketStatus.CLOSED: "Closed",
}


def client_status_label(status: TicketStatus) -> str:
    return CLIENT_STATUS_LABELS[TicketStatus(status)]


# =============================================================================
# IN-MEMORY TRIAGE HELPERS
# =============================================================================


def search_tickets(tickets: Iterable[Ticket], query: str | None) -> list[Ticket]:
    """Case-insensitive substring match on the title."""
    tickets = list(tickets)
    if not query or not query.strip():
        return tickets
    needle = query.strip().lower()
    return [t for t in tickets if needle in (t.title or "").lower()]


def sort_tickets(
    tickets: Iterable[Ticket],
    order: SortOrder = SortOrder.NEWEST,
    now: datetime | None = None,
) -> list[Ticket]:
    """Order tickets for the triage table.

    Due-date orders put tickets without a deadline first, then overdue
    tickets, then the rest by deadline.
    """
    order = SortOrder(order)
    tickets = list(tickets)

    if order == SortOrder.NEWEST:
        return sorted(tickets, key=lambda t: as_utc(t.created_at), reverse=True)
    if order == SortOrder.OLDEST:
        return sorted(tickets, key=lambda t: as_utc(t.created_at))

    now = as_utc(now or utcnow())
    no_due = [t for t in tickets if t.sla_due_at is None]
    due = [t for t in tickets if t.sla_due_at is not None]
    overdue = [t for t in due if as_utc(t.sla_due_at) < now]
    upcoming = [t for t in due if as_utc(t.sla_due_at) >= now]
    reverse = order == SortOrder.DUE_LATEST

    def by_due(group: list[Ticket]) -> list[Ticket]:
        return sorted(group, key=lambda t: as_utc(t.sla_due_at), reverse=reverse)

    return no_due + by_due(overdue) + by_due(upcoming)


# =============================================================================
# TICKET ENGINE
# =============================================================================


class TicketEngine:
    """
    Core engine for ticket operations.

    Usage:
        engine = TicketEngine(session, notifier=NotificationService(session))
        ticket = await engine.create_ticket(input, organization_id, user_id)
    """

    def __init__(self, session: AsyncSession, notifier: NotificationService | None = None):
        self.session = session
        self.notifier = notifier

    # =========================================================================
    # CREATE
    # =========================================================================

    async def create_ticket(
        self,
        input: CreateTicketInput,
        organization_id: UUID,
        created_by: UUID,
    ) -> Ticket:
        if not input.title or not input.title.strip():
            raise ValidationError("Ticket title is required")

        if input.assigned_to_user_id is not None:
            await self._check_assignee(input.assigned_to_user_id)

        ticket = Ticket(
            organization_id=organization_id,
            created_by_user_id=created_by,
            assigned_to_user_id=input.assigned_to_user_id,
            title=input.title.strip(),
            description=input.description,
            priority=input.priority,
            category=input.category,
            sla_due_at=input.sla_due_at,
            status=TicketStatus.OPEN,
        )
        self.session.add(ticket)
        await self.session.flush()
        logger.info(f"Created ticket {ticket.id} for organization {organization_id}")

        if self.notifier and ticket.assigned_to_user_id:
            await self.notifier.ticket_assigned(ticket, ticket.assigned_to_user_id, created_by)
        return ticket

    # =========================================================================
    # READ
    # =========================================================================

    async def get_ticket(self, ticket_id: UUID) -> Ticket:
        ticket = await self.session.get(Ticket, ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def get_visible_ticket(
        self,
        ticket_id: UUID,
        roles: Iterable[AppRole],
        organization_id: UUID | None,
    ) -> Ticket:
        """Fetch a ticket, hiding other tenants' tickets from clients."""
        ticket = await self.get_ticket(ticket_id)
        if not is_staff(roles) and ticket.organization_id != organization_id:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def list_tickets(
        self, filters: TicketFilters, now: datetime | None = None
    ) -> list[Ticket]:
        query = select(Ticket)

        if filters.organization_id is not None:
            query = query.where(Ticket.organization_id == filters.organization_id)
        if filters.statuses:
            query = query.where(Ticket.status.in_([TicketStatus(s) for s in filters.statuses]))
        if filters.priority is not None:
            query = query.where(Ticket.priority == TicketPriority(filters.priority))
        if filters.assignee == UNASSIGNED:
            query = query.where(Ticket.assigned_to_user_id.is_(None))
        elif filters.assignee is not None:
            query = query.where(Ticket.assigned_to_user_id == filters.assignee)
        if filters.search and filters.search.strip():
            query = query.where(
                func.lower(Ticket.title).contains(filters.search.strip().lower(), autoescape=True)
            )

        result = await self.session.execute(query)
        tickets = sort_tickets(result.scalars().all(), filters.sort, now)
        if filters.limit is not None:
            tickets = tickets[: filters.limit]
        return tickets

    async def count_open(self, organization_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Ticket)
            .where(
                Ticket.organization_id == organization_id,
                Ticket.status.not_in(list(TERMINAL_STATUSES)),
            )
        )
        return result.scalar_one()

    # =========================================================================
    # UPDATE
    # =========================================================================

    async def update_ticket(self, ticket_id: UUID, input: UpdateTicketInput) -> Ticket:
        ticket = await self.get_ticket(ticket_id)

        if input.title is not None:
            if not input.title.strip():
                raise ValidationError("Ticket title is required")
            ticket.title = input.title.strip()
        if input.description is not None:
            ticket.description = input.description
        if input.priority is not None:
            ticket.priority = TicketPriority(input.priority)
        if input.category is not None:
            ticket.category = input.category or None
        if input.clear_sla_due_at:
            ticket.sla_due_at = None
        elif input.sla_due_at is not None:
            ticket.sla_due_at = input.sla_due_at

        await self.session.flush()
        return ticket

    async def change_status(
        self,
        ticket_id: UUID,
        new_status: TicketStatus,
        actor_id: UUID,
        actor_roles: Iterable[AppRole],
    ) -> Ticket:
        ticket = await self.get_ticket(ticket_id)
        new_status = TicketStatus(new_status)
        old_status = TicketStatus(ticket.status)

        if old_status == new_status:
            return ticket
        if not can_transition(actor_roles, old_status, new_status):
            raise InvalidTransitionError(old_status, new_status, ticket_id)

        ticket.status = new_status
        _stamp_resolution(ticket, old_status, new_status)
        await self.session.flush()
        logger.info(f"Ticket {ticket_id} moved {old_status.value} -> {new_status.value}")

        if self.notifier:
            await self.notifier.ticket_status_changed(ticket, old_status, new_status, actor_id)
        return ticket

    def available_transitions(
        self, ticket: Ticket, roles: Iterable[AppRole]
    ) -> list[TicketStatus]:
        allowed = allowed_transitions(roles, ticket.status)
        return [s for s in TicketStatus if s in allowed]

    # =========================================================================
    # ASSIGNMENT
    # =========================================================================

    async def assignable_users(self) -> list[User]:
        result = await self.session.execute(
            select(User)
            .join(UserRole, UserRole.user_id == User.id)
            .where(UserRole.role.in_(list(ASSIGNABLE_ROLES)))
            .distinct()
            .order_by(User.email)
        )
        return list(result.scalars().all())

    async def _check_assignee(self, user_id: UUID) -> None:
        result = await self.session.execute(
            select(UserRole.role).where(
                UserRole.user_id == user_id,
                UserRole.role.in_(list(ASSIGNABLE_ROLES)),
            )
        )
        if result.first() is None:
            raise InvalidAssigneeError(f"User {user_id} cannot be assigned tickets")

    async def assign(
        self,
        ticket_id: UUID,
        assignee_id: UUID | None,
        actor_id: UUID,
    ) -> Ticket:
        """Assign a ticket, or unassign it when ``assignee_id`` is None."""
        ticket = await self.get_ticket(ticket_id)
        if assignee_id is not None:
            await self._check_assignee(assignee_id)

        previous = ticket.assigned_to_user_id
        ticket.assigned_to_user_id = assignee_id
        await self.session.flush()

        if self.notifier and assignee_id is not None and assignee_id != previous:
            await self.notifier.ticket_assigned(ticket, assignee_id, actor_id)
        return ticket

    # =========================================================================
    # BULK
    # =========================================================================

    async def bulk_update(
        self,
        ticket_ids: Sequence[UUID],
        actor_id: UUID,
        actor_roles: Iterable[AppRole],
        status: TicketStatus | None = None,
        assigned_to_user_id: UUID | None = None,
        unassign: bool = False,
    ) -> BulkUpdateResult:
        """Apply one status and/or assignee change to exactly ``ticket_ids``.

        Every transition is validated before anything is written; one
        illegal transition fails the whole batch.
        """
        ids = list(dict.fromkeys(ticket_ids))
        if not ids:
            return BulkUpdateResult(updated=0, ticket_ids=[])
        if status is None and assigned_to_user_id is None and not unassign:
            raise ValidationError("Nothing to update")

        result = await self.session.execute(select(Ticket).where(Ticket.id.in_(ids)))
        tickets = {t.id: t for t in result.scalars().all()}
        missing = [i for i in ids if i not in tickets]
        if missing:
            raise TicketNotFoundError(f"Tickets not found: {', '.join(str(i) for i in missing)}")

        roles = list(actor_roles)
        previous_status = {t.id: TicketStatus(t.status) for t in tickets.values()}
        if status is not None:
            status = TicketStatus(status)
            for ticket in tickets.values():
                if not can_transition(roles, ticket.status, status):
                    raise InvalidTransitionError(ticket.status, status, ticket.id)
        if assigned_to_user_id is not None:
            await self._check_assignee(assigned_to_user_id)

        values: dict = {"updated_at": utcnow()}
        if status is not None:
            values["status"] = status
            if status in TERMINAL_STATUSES:
                values["resolved_at"] = case(
                    (Ticket.resolved_at.is_(None), utcnow()),
                    else_=Ticket.resolved_at,
                )
            else:
                values["resolved_at"] = None
        if unassign:
            values["assigned_to_user_id"] = None
        elif assigned_to_user_id is not None:
            values["assigned_to_user_id"] = assigned_to_user_id

        await self.session.execute(
            update(Ticket)
            .where(Ticket.id.in_(ids))
            .values(**values)
            .execution_options(synchronize_session="fetch")
        )
        logger.info(f"Bulk updated {len(ids)} tickets by {actor_id}")

        if self.notifier:
            for ticket_id in ids:
                ticket = tickets[ticket_id]
                await self.session.refresh(ticket)
                if status is not None and previous_status[ticket_id] != status:
                    await self.notifier.ticket_status_changed(
                        ticket, previous_status[ticket_id], status, actor_id
                    )
                if assigned_to_user_id is not None:
                    await self.notifier.ticket_assigned(ticket, assigned_to_user_id, actor_id)

        return BulkUpdateResult(updated=len(ids), ticket_ids=ids)

    # =========================================================================
    # MESSAGES
    # =========================================================================

    async def add_message(
        self,
        ticket_id: UUID,
        user_id: UUID,
        message: str,
        actor_roles: Iterable[AppRole],
        is_internal: bool = False,
    ) -> TicketMessage:
        """Append a reply. Status is left unchanged."""
        roles = set(actor_roles)
        if not message or not message.strip():
            raise ValidationError("Message cannot be empty")
        if is_internal and not is_staff(roles):
            raise PermissionDeniedError("Only staff can post internal notes")

        ticket = await self.get_ticket(ticket_id)
        entry = TicketMessage(
            ticket_id=ticket.id,
            user_id=user_id,
            message=message.strip(),
            is_internal=is_internal,
        )
        self.session.add(entry)
        await self.session.flush()

        if self.notifier:
            await self.notifier.ticket_reply(
                ticket, user_id, is_internal=is_internal, author_is_staff=is_staff(roles)
            )
        return entry

    async def list_messages(
        self, ticket_id: UUID, include_internal: bool = False
    ) -> list[TicketMessage]:
        query = select(TicketMessage).where(TicketMessage.ticket_id == ticket_id)
        if not include_internal:
            query = query.where(TicketMessage.is_internal.is_(False))
        result = await self.session.execute(
            query.order_by(TicketMessage.created_at.asc(), TicketMessage.id)
        )
        return list(result.scalars().all())

    # =========================================================================
    # SATISFACTION SURVEYS
    # =========================================================================

    async def submit_survey(
        self,
        ticket_id: UUID,
        user_id: UUID,
        organization_id: UUID | None,
        rating: int,
        feedback: str | None = None,
    ) -> SatisfactionSurvey:
        """Rate a finished ticket once."""
        if not 1 <= rating <= 5:
            raise ValidationError("Rating must be between 1 and 5")

        ticket = await self.get_visible_ticket(ticket_id, {AppRole.CLIENT}, organization_id)
        if TicketStatus(ticket.status) not in TERMINAL_STATUSES:
            raise SurveyError("Only resolved or closed tickets can be rated")

        existing = await self.session.execute(
            select(SatisfactionSurvey).where(
                SatisfactionSurvey.ticket_id == ticket_id,
                SatisfactionSurvey.user_id == user_id,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise SurveyError("This ticket has already been rated")

        survey = SatisfactionSurvey(
            ticket_id=ticket_id,
            organization_id=ticket.organization_id,
            user_id=user_id,
            rating=rating,
            feedback=feedback,
            submitted_at=utcnow(),
        )
        self.session.add(survey)
        await self.session.flush()
        return survey

    async def pending_surveys(self, user_id: UUID, organization_id: UUID) -> list[Ticket]:
        """Finished tickets of the user's organization not yet rated by them."""
        rated = select(SatisfactionSurvey.ticket_id).where(
            SatisfactionSurvey.user_id == user_id
        )
        result = await self.session.execute(
            select(Ticket)
            .where(
                Ticket.organization_id == organization_id,
                Ticket.created_by_user_id == user_id,
                Ticket.status.in_(list(TERMINAL_STATUSES)),
                Ticket.id.not_in(rated),
            )
            .order_by(Ticket.resolved_at.desc())
        )
        return list(result.scalars().all())


def _stamp_resolution(ticket: Ticket, old: TicketStatus, new: TicketStatus) -> None:
    if new in TERMINAL_STATUSES:
        if old not in TERMINAL_STATUSES or ticket.resolved_at is None:
            ticket.resolved_at = utcnow()
    else:
        ticket.resolved_at = None
