"""SLA badge classification.

Computed on every read from ``sla_due_at`` and the current time; nothing is
stored and nothing alerts.
"""

from collections.abc import Iterable
from dataclasses import dataclass
import math
from datetime import datetime
from enum import Enum

from ..models import TERMINAL_STATUSES, Ticket, TicketStatus, as_utc, utcnow

URGENT_HOURS = 2
WARNING_HOURS = 8


class SLALevel(str, Enum):
    BREACHED = "breached"
    URGENT = "urgent"
    WARNING = "warning"
    INFO = "info"


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


@dataclass(frozen=True)
class SLABadge:
    level: SLALevel
    label: str
    hours_remaining: float


def classify_sla(
    sla_due_at: datetime | None,
    status: TicketStatus,
    now: datetime | None = None,
) -> SLABadge | None:
    """Classify time left before the SLA deadline.

    Returns None when there is no deadline or the ticket is resolved/closed.
    """
    if sla_due_at is None or TicketStatus(status) in TERMINAL_STATUSES:
        return None

    now = as_utc(now or utcnow())
    seconds = (as_utc(sla_due_at) - now).total_seconds()
    hours = seconds / 3600

    if hours < 0:
        return SLABadge(SLALevel.BREACHED, "Breached", hours)
    if hours < URGENT_HOURS:
        return SLABadge(SLALevel.URGENT, f"{_round_half_up(seconds / 60)}m left", hours)
    if hours < WARNING_HOURS:
        return SLABadge(SLALevel.WARNING, f"{_round_half_up(hours)}h left", hours)
    return SLABadge(SLALevel.INFO, f"{_round_half_up(hours)}h", hours)


def is_overdue(sla_due_at: datetime | None, now: datetime | None = None) -> bool:
    if sla_due_at is None:
        return False
    return as_utc(sla_due_at) < as_utc(now or utcnow())


@dataclass(frozen=True)
class SLASummary:
    total: int
    breached: int
    at_risk: int
    unassigned: int


def sla_summary(tickets: Iterable[Ticket], now: datetime | None = None) -> SLASummary:
    """Counters shown above the triage table."""
    now = now or utcnow()
    total = breached = at_risk = unassigned = 0
    for ticket in tickets:
        total += 1
        if ticket.assigned_to_user_id is None:
            unassigned += 1
        badge = classify_sla(ticket.sla_due_at, ticket.status, now)
        if badge is None:
            continue
        if badge.level == SLALevel.BREACHED:
            breached += 1
        elif 0 < badge.hours_remaining < URGENT_HOURS:
            at_risk += 1
    return SLASummary(total=total, breached=breached, at_risk=at_risk, unassigned=unassigned)
