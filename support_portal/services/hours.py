"""
Hour ledger: purchased hour allocations and the time logged against them.

``used_hours`` is a derived counter. Every time-log insert, edit and delete
recomputes it for the allocation(s) whose period contains the log date, in
the same transaction as the log write.
"""

import logging
import math
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import HourAllocation, Ticket, TicketTimeLog, as_utc, utcnow
from .errors import NotFoundError, PermissionDeniedError, ValidationError
from .tickets import TicketNotFoundError

logger = logging.getLogger(__name__)

WARNING_PERCENT = 85


# =============================================================================
# EXCEPTIONS
# =============================================================================


class AllocationNotFoundError(NotFoundError):
    pass


class NoActiveAllocationError(NotFoundError):
    """No allocation covers today; adjustments never create one."""

    def __init__(self, organization_id: UUID | None = None):
        self.organization_id = organization_id
        super().__init__("No active allocation found")


class TimeLogNotFoundError(NotFoundError):
    pass


class NotLogAuthorError(PermissionDeniedError):
    """Only the author of a time log may change it."""
    pass


# =============================================================================
# USAGE
# =============================================================================


class UsageLevel(str, Enum):
    NORMAL = "normal"
    WARNING = "warning"


@dataclass(frozen=True)
class Usage:
    """Derived consumption figures for one allocation.

    ``percent`` is unclamped and may exceed 100 when an allocation is
    over-consumed; ``display_percent`` is clamped to 0..100 and truncated
    to a whole percent (40h with 35.5h used shows 88). ``remaining`` goes
    negative on over-consumption; ``display_remaining`` stops at zero.
    """
    total: float
    used: float
    remaining: float
    display_remaining: float
    percent: float
    display_percent: int
    level: UsageLevel


def compute_usage(total_hours: float, used_hours: float) -> Usage:
    total = float(total_hours or 0)
    used = float(used_hours or 0)
    percent = (used / total) * 100 if total > 0 else 0.0
    return Usage(
        total=total,
        used=used,
        remaining=total - used,
        display_remaining=max(total - used, 0.0),
        percent=percent,
        display_percent=int(min(max(percent, 0.0), 100.0)),
        level=UsageLevel.WARNING if percent > WARNING_PERCENT else UsageLevel.NORMAL,
    )


def usage_for(allocation: HourAllocation | None) -> Usage:
    if allocation is None:
        return compute_usage(0, 0)
    return compute_usage(allocation.total_hours, allocation.used_hours)


def billable_value(allocation: HourAllocation) -> float | None:
    """Used hours at the agreed rate, or None without a rate."""
    if allocation.agreed_hourly_rate is None:
        return None
    return round(float(allocation.used_hours or 0) * float(allocation.agreed_hourly_rate), 2)


def total_logged(logs: Iterable[TicketTimeLog]) -> float:
    return sum(float(log.hours) for log in logs)


def _log_date(value: datetime | date) -> date:
    if isinstance(value, datetime):
        return as_utc(value).date()
    return value


# =============================================================================
# DATA TRANSFER OBJECTS
# =============================================================================


@dataclass
class AllocationInput:
    period_start: date
    period_end: date
    total_hours: float
    agreed_hourly_rate: float | None = None
    title: str | None = None
    notes: str | None = None


@dataclass
class AllocationUpdate:
    period_start: date | None = None
    period_end: date | None = None
    total_hours: float | None = None
    agreed_hourly_rate: float | None = None
    title: str | None = None
    notes: str | None = None


def _validate_period(start: date, end: date) -> None:
    if end < start:
        raise ValidationError("Period end must not be before period start")


def _validate_total(total: float) -> None:
    if total is None or not math.isfinite(float(total)) or float(total) <= 0:
        raise ValidationError("Total hours must be greater than zero")


# =============================================================================
# HOUR LEDGER
# =============================================================================


class HourLedger:
    """Allocation bookkeeping for an organization."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_allocation(
        self, organization_id: UUID, input: AllocationInput
    ) -> HourAllocation:
        _validate_period(input.period_start, input.period_end)
        _validate_total(input.total_hours)

        allocation = HourAllocation(
            organization_id=organization_id,
            period_start=input.period_start,
            period_end=input.period_end,
            total_hours=float(input.total_hours),
            used_hours=0.0,
            agreed_hourly_rate=input.agreed_hourly_rate,
            title=input.title,
            notes=input.notes,
        )
        self.session.add(allocation)
        await self.session.flush()

        # Logs already recorded inside the new period count immediately
        await self.recompute_used_hours(allocation)
        logger.info(
            f"Created allocation {allocation.id} for {organization_id}: "
            f"{allocation.total_hours}h {input.period_start}..{input.period_end}"
        )
        return allocation

    async def get_allocation(self, allocation_id: UUID) -> HourAllocation:
        allocation = await self.session.get(HourAllocation, allocation_id)
        if allocation is None:
            raise AllocationNotFoundError(f"Allocation {allocation_id} not found")
        return allocation

    async def update_allocation(
        self, allocation_id: UUID, input: AllocationUpdate
    ) -> HourAllocation:
        allocation = await self.get_allocation(allocation_id)

        start = input.period_start or allocation.period_start
        end = input.period_end or allocation.period_end
        _validate_period(start, end)
        if input.total_hours is not None:
            _validate_total(input.total_hours)
            allocation.total_hours = float(input.total_hours)

        period_changed = (start, end) != (allocation.period_start, allocation.period_end)
        allocation.period_start = start
        allocation.period_end = end
        if input.agreed_hourly_rate is not None:
            allocation.agreed_hourly_rate = input.agreed_hourly_rate
        if input.title is not None:
            allocation.title = input.title or None
        if input.notes is not None:
            allocation.notes = input.notes

        await self.session.flush()
        if period_changed:
            await self.recompute_used_hours(allocation)
        return allocation

    async def list_allocations(self, organization_id: UUID | None = None) -> list[HourAllocation]:
        query = select(HourAllocation).order_by(HourAllocation.period_start.desc())
        if organization_id is not None:
            query = query.where(HourAllocation.organization_id == organization_id)
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def current_allocation(
        self, organization_id: UUID, today: date | None = None
    ) -> HourAllocation | None:
        """The allocation whose inclusive period contains ``today``."""
        today = today or utcnow().date()
        result = await self.session.execute(
            select(HourAllocation)
            .where(
                HourAllocation.organization_id == organization_id,
                HourAllocation.period_start <= today,
                HourAllocation.period_end >= today,
            )
            .order_by(HourAllocation.period_start.desc(), HourAllocation.created_at.desc())
            .limit(1)
        )
        return result.scalar_one_or_none()

    async def current_allocations(self, today: date | None = None) -> list[HourAllocation]:
        """Current allocation of every organization that has one."""
        today = today or utcnow().date()
        result = await self.session.execute(
            select(HourAllocation)
            .where(HourAllocation.period_start <= today, HourAllocation.period_end >= today)
            .order_by(HourAllocation.period_start.desc())
        )
        by_org: dict[UUID, HourAllocation] = {}
        for allocation in result.scalars().all():
            by_org.setdefault(allocation.organization_id, allocation)
        return list(by_org.values())

    async def adjust_hours(
        self,
        organization_id: UUID,
        delta_hours: float,
        today: date | None = None,
    ) -> HourAllocation:
        """Add (or remove) purchased hours on the current allocation."""
        if not math.isfinite(float(delta_hours)):
            raise ValidationError("Adjustment must be a finite number")
        if not delta_hours:
            raise ValidationError("Adjustment must be non-zero")

        allocation = await self.current_allocation(organization_id, today)
        if allocation is None:
            raise NoActiveAllocationError(organization_id)

        new_total = float(allocation.total_hours) + float(delta_hours)
        if new_total < 0:
            raise ValidationError("Adjustment would make total hours negative")

        allocation.total_hours = new_total
        await self.session.flush()
        logger.info(
            f"Adjusted allocation {allocation.id} by {delta_hours:+}h to {new_total}h"
        )
        return allocation

    # =========================================================================
    # DERIVED COUNTER
    # =========================================================================

    async def period_total(self, organization_id: UUID, start: date, end: date) -> float:
        """Hours logged on the organization's tickets between two dates, inclusive."""
        result = await self.session.execute(
            select(TicketTimeLog.logged_at, TicketTimeLog.hours)
            .join(Ticket, Ticket.id == TicketTimeLog.ticket_id)
            .where(Ticket.organization_id == organization_id)
        )
        return sum(
            float(hours)
            for logged_at, hours in result.all()
            if start <= _log_date(logged_at) <= end
        )

    async def recompute_used_hours(self, allocation: HourAllocation) -> float:
        used = await self.period_total(
            allocation.organization_id, allocation.period_start, allocation.period_end
        )
        allocation.used_hours = used
        await self.session.flush()
        return used

    async def recompute_for_date(self, organization_id: UUID, day: date) -> list[HourAllocation]:
        """Recompute every allocation of the organization covering ``day``."""
        result = await self.session.execute(
            select(HourAllocation).where(
                HourAllocation.organization_id == organization_id,
                HourAllocation.period_start <= day,
                HourAllocation.period_end >= day,
            )
        )
        allocations = list(result.scalars().all())
        for allocation in allocations:
            await self.recompute_used_hours(allocation)
        return allocations


# =============================================================================
# TIME LOG RECORDER
# =============================================================================


class TimeLogRecorder:
    """Records staff time against tickets and keeps allocations in sync."""

    def __init__(self, session: AsyncSession, ledger: HourLedger | None = None):
        self.session = session
        self.ledger = ledger or HourLedger(session)

    async def _ticket(self, ticket_id: UUID) -> Ticket:
        ticket = await self.session.get(Ticket, ticket_id)
        if ticket is None:
            raise TicketNotFoundError(f"Ticket {ticket_id} not found")
        return ticket

    async def _get_log(self, log_id: UUID) -> TicketTimeLog:
        log = await self.session.get(TicketTimeLog, log_id)
        if log is None:
            raise TimeLogNotFoundError(f"Time log {log_id} not found")
        return log

    def _check_hours(self, hours: float) -> float:
        try:
            value = float(hours)
        except (TypeError, ValueError):
            raise ValidationError("Hours must be a number")
        if not math.isfinite(value):
            raise ValidationError("Hours must be a finite number")
        if value <= 0:
            raise ValidationError("Hours must be greater than zero")
        return value

    async def log_time(
        self,
        ticket_id: UUID,
        user_id: UUID,
        hours: float,
        description: str | None = None,
        logged_at: datetime | None = None,
    ) -> TicketTimeLog:
        value = self._check_hours(hours)
        ticket = await self._ticket(ticket_id)

        log = TicketTimeLog(
            ticket_id=ticket.id,
            user_id=user_id,
            hours=value,
            description=description,
            logged_at=logged_at or utcnow(),
        )
        self.session.add(log)
        await self.session.flush()
        await self.ledger.recompute_for_date(ticket.organization_id, _log_date(log.logged_at))
        logger.info(f"Logged {value}h on ticket {ticket_id} by {user_id}")
        return log

    async def edit_time_log(
        self,
        log_id: UUID,
        actor_id: UUID,
        hours: float | None = None,
        description: str | None = None,
        logged_at: datetime | None = None,
    ) -> TicketTimeLog:
        log = await self._get_log(log_id)
        if log.user_id != actor_id:
            raise NotLogAuthorError("Only the author can edit this time log")

        old_day = _log_date(log.logged_at)
        if hours is not None:
            log.hours = self._check_hours(hours)
        if description is not None:
            log.description = description
        if logged_at is not None:
            log.logged_at = logged_at
        await self.session.flush()

        ticket = await self._ticket(log.ticket_id)
        await self.ledger.recompute_for_date(ticket.organization_id, old_day)
        new_day = _log_date(log.logged_at)
        if new_day != old_day:
            await self.ledger.recompute_for_date(ticket.organization_id, new_day)
        return log

    async def delete_time_log(self, log_id: UUID, actor_id: UUID) -> None:
        log = await self._get_log(log_id)
        if log.user_id != actor_id:
            raise NotLogAuthorError("Only the author can delete this time log")

        day = _log_date(log.logged_at)
        ticket = await self._ticket(log.ticket_id)
        await self.session.delete(log)
        await self.session.flush()
        await self.ledger.recompute_for_date(ticket.organization_id, day)
        logger.info(f"Deleted time log {log_id}")

    async def list_for_ticket(self, ticket_id: UUID) -> list[TicketTimeLog]:
        result = await self.session.execute(
            select(TicketTimeLog)
            .where(TicketTimeLog.ticket_id == ticket_id)
            .order_by(TicketTimeLog.logged_at.desc())
        )
        return list(result.scalars().all())

    async def ticket_total(self, ticket_id: UUID) -> float:
        result = await self.session.execute(
            select(func.coalesce(func.sum(TicketTimeLog.hours), 0.0)).where(
                TicketTimeLog.ticket_id == ticket_id
            )
        )
        return float(result.scalar_one())
