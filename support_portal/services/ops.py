"""
Ops dashboard aggregations.

Pure functions compute the rollups; ``OpsService`` loads the rows they
need. All figures are recomputed on every request.
"""

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from enum import Enum
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..models import (
    AccountStatus,
    HourAllocation,
    Organization,
    SatisfactionSurvey,
    Ticket,
    as_utc,
    utcnow,
)
from .hours import compute_usage

logger = logging.getLogger(__name__)

LOW_USAGE_PERCENT = 25
APPROACHING_LIMIT_PERCENT = 85
TOP_N = 5


# =============================================================================
# UTILIZATION
# =============================================================================


@dataclass(frozen=True)
class Utilization:
    total_hours: float
    used_hours: float
    percent: float


def utilization(allocations: Iterable[HourAllocation]) -> Utilization:
    total = used = 0.0
    for allocation in allocations:
        total += float(allocation.total_hours or 0)
        used += float(allocation.used_hours or 0)
    return Utilization(
        total_hours=total,
        used_hours=used,
        percent=(used / total) * 100 if total > 0 else 0.0,
    )


@dataclass(frozen=True)
class OrgUsage:
    organization_id: UUID
    name: str
    total_hours: float
    used_hours: float
    usage_percent: float


@dataclass
class UsageRollup:
    top_usage: list[OrgUsage] = field(default_factory=list)
    low_usage: list[OrgUsage] = field(default_factory=list)
    approaching_limit: list[OrgUsage] = field(default_factory=list)


def usage_rollup(metrics: Iterable[OrgUsage]) -> UsageRollup:
    """Rank organizations by usage, highest first, five per bucket."""
    ranked = sorted(metrics, key=lambda m: m.usage_percent, reverse=True)
    return UsageRollup(
        top_usage=ranked[:TOP_N],
        low_usage=[m for m in ranked if m.usage_percent < LOW_USAGE_PERCENT][:TOP_N],
        approaching_limit=[
            m for m in ranked if m.usage_percent >= APPROACHING_LIMIT_PERCENT
        ][:TOP_N],
    )


def average_rating(ratings: Iterable[int | None]) -> float | None:
    values = [r for r in ratings if r is not None]
    if not values:
        return None
    return sum(values) / len(values)


# =============================================================================
# CHURN RISK
# =============================================================================


class RiskLevel(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


@dataclass(frozen=True)
class ChurnRisk:
    organization_id: UUID
    name: str
    score: int
    level: RiskLevel
    factors: list[str]


# (factor label, weight)
LOW_USAGE_WEIGHT = ("Low usage", 30)
INACTIVE_WEIGHT = ("No tickets in 30 days", 25)
OVERDUE_WEIGHT = ("Late payment", 30)
LOW_SATISFACTION_WEIGHT = ("Low satisfaction", 15)

HIGH_RISK_SCORE = 60
MEDIUM_RISK_SCORE = 35
LOW_SATISFACTION_RATING = 3.0
INACTIVITY_DAYS = 30


def churn_risk(
    organization_id: UUID,
    name: str,
    usage_percent: float | None,
    last_ticket_at: datetime | None,
    payment_overdue: bool,
    avg_satisfaction: float | None,
    now: datetime | None = None,
) -> ChurnRisk:
    """Score 0..100 from four signals; each contributes a fixed weight."""
    now = as_utc(now or utcnow())
    factors: list[str] = []
    score = 0

    def add(weight: tuple[str, int]) -> None:
        nonlocal score
        factors.append(weight[0])
        score += weight[1]

    if usage_percent is not None and usage_percent < LOW_USAGE_PERCENT:
        add(LOW_USAGE_WEIGHT)
    if last_ticket_at is None or as_utc(last_ticket_at) < now - timedelta(days=INACTIVITY_DAYS):
        add(INACTIVE_WEIGHT)
    if payment_overdue:
        add(OVERDUE_WEIGHT)
    if avg_satisfaction is not None and avg_satisfaction < LOW_SATISFACTION_RATING:
        add(LOW_SATISFACTION_WEIGHT)

    score = min(score, 100)
    if score >= HIGH_RISK_SCORE:
        level = RiskLevel.HIGH
    elif score >= MEDIUM_RISK_SCORE:
        level = RiskLevel.MEDIUM
    else:
        level = RiskLevel.LOW
    return ChurnRisk(organization_id, name, score, level, factors)


# =============================================================================
# REVENUE PROJECTION
# =============================================================================


@dataclass(frozen=True)
class ProjectionPoint:
    month: date
    mrr: int
    cumulative: int
    is_projection: bool


def _add_months(start: date, months: int) -> date:
    index = start.month - 1 + months
    return date(start.year + index // 12, index % 12 + 1, 1)


def revenue_projection(
    current_mrr: float,
    annual_growth_percent: float,
    total_revenue: float,
    months: int = 6,
    start: date | None = None,
) -> list[ProjectionPoint]:
    """Compound monthly growth of MRR and the cumulative revenue it implies.

    mrr_i = mrr * (1 + g)^i and cumulative_i = base + mrr * ((1 + g)^i - 1) / g,
    with g the monthly rate. A zero rate degrades to linear accumulation.
    """
    if months < 0:
        raise ValueError("months must be non-negative")
    rate = annual_growth_percent / 100 / 12
    start = (start or utcnow().date()).replace(day=1)

    points = []
    for i in range(months + 1):
        growth = (1 + rate) ** i
        if i == 0:
            cumulative = total_revenue
        elif rate == 0:
            cumulative = total_revenue + current_mrr * i
        else:
            cumulative = total_revenue + current_mrr * ((growth - 1) / rate)
        points.append(
            ProjectionPoint(
                month=_add_months(start, i),
                mrr=round(current_mrr * growth),
                cumulative=round(cumulative),
                is_projection=i > 0,
            )
        )
    return points


# =============================================================================
# PAYMENT LOCKOUT
# =============================================================================


@dataclass(frozen=True)
class LockoutState:
    overdue: bool
    days_overdue: int
    hard_lockout: bool
    days_until_lockout: int


def payment_lockout(
    account_status: AccountStatus,
    payment_overdue_since: datetime | None,
    now: datetime | None = None,
    hard_after_days: int | None = None,
) -> LockoutState:
    """Soft warning while overdue; hard lockout once the grace period ends."""
    hard_after = hard_after_days or get_settings().hard_lockout_days
    if AccountStatus(account_status) != AccountStatus.OVERDUE or payment_overdue_since is None:
        return LockoutState(False, 0, False, hard_after)

    elapsed = as_utc(now or utcnow()) - as_utc(payment_overdue_since)
    days = max(elapsed.days, 0)
    return LockoutState(
        overdue=True,
        days_overdue=days,
        hard_lockout=days >= hard_after,
        days_until_lockout=max(hard_after - days, 0),
    )


# =============================================================================
# SERVICE
# =============================================================================


@dataclass
class OpsOverview:
    utilization: Utilization
    rollup: UsageRollup
    avg_satisfaction: float | None
    organization_count: int
    churn: list[ChurnRisk]


class OpsService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def current_usage(self, today: date | None = None) -> list[tuple[HourAllocation, OrgUsage]]:
        today = today or utcnow().date()
        result = await self.session.execute(
            select(HourAllocation, Organization.name)
            .join(Organization, Organization.id == HourAllocation.organization_id)
            .where(HourAllocation.period_start <= today, HourAllocation.period_end >= today)
        )
        rows = []
        for allocation, name in result.all():
            usage = compute_usage(allocation.total_hours, allocation.used_hours)
            rows.append(
                (
                    allocation,
                    OrgUsage(
                        organization_id=allocation.organization_id,
                        name=name,
                        total_hours=usage.total,
                        used_hours=usage.used,
                        usage_percent=usage.percent,
                    ),
                )
            )
        return rows

    async def avg_satisfaction(self, organization_id: UUID | None = None) -> float | None:
        query = select(SatisfactionSurvey.rating).where(SatisfactionSurvey.rating.is_not(None))
        if organization_id is not None:
            query = query.where(SatisfactionSurvey.organization_id == organization_id)
        result = await self.session.execute(query)
        return average_rating(result.scalars().all())

    async def churn_report(
        self,
        usage: dict[UUID, float] | None = None,
        now: datetime | None = None,
    ) -> list[ChurnRisk]:
        """Risk for every organization, highest score first."""
        if usage is None:
            usage = {m.organization_id: m.usage_percent for _, m in await self.current_usage()}

        last_tickets = dict(
            (
                await self.session.execute(
                    select(Ticket.organization_id, func.max(Ticket.created_at)).group_by(
                        Ticket.organization_id
                    )
                )
            ).all()
        )
        ratings: dict[UUID, list[int]] = {}
        survey_rows = await self.session.execute(
            select(SatisfactionSurvey.organization_id, SatisfactionSurvey.rating).where(
                SatisfactionSurvey.rating.is_not(None)
            )
        )
        for org_id, rating in survey_rows.all():
            ratings.setdefault(org_id, []).append(rating)

        organizations = (await self.session.execute(select(Organization))).scalars().all()
        report = [
            churn_risk(
                organization_id=org.id,
                name=org.name,
                usage_percent=usage.get(org.id),
                last_ticket_at=last_tickets.get(org.id),
                payment_overdue=AccountStatus(org.account_status) == AccountStatus.OVERDUE,
                avg_satisfaction=average_rating(ratings.get(org.id, [])),
                now=now,
            )
            for org in organizations
        ]
        return sorted(report, key=lambda r: r.score, reverse=True)

    async def overview(self, today: date | None = None, now: datetime | None = None) -> OpsOverview:
        rows = await self.current_usage(today)
        allocations = [allocation for allocation, _ in rows]
        metrics = [metric for _, metric in rows]
        count = (
            await self.session.execute(select(func.count()).select_from(Organization))
        ).scalar_one()
        churn = await self.churn_report(
            usage={m.organization_id: m.usage_percent for m in metrics}, now=now
        )
        logger.debug(f"Ops overview over {len(allocations)} current allocations")
        return OpsOverview(
            utilization=utilization(allocations),
            rollup=usage_rollup(metrics),
            avg_satisfaction=await self.avg_satisfaction(),
            organization_count=count,
            churn=churn,
        )
