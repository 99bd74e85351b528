"""Ops dashboard routes: portfolio utilization, churn risk and revenue projection."""

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ..core import CurrentUser, SessionDep, require_capability
from ..schemas import (
    ChurnRiskResponse,
    OpsOverviewResponse,
    OrgUsageResponse,
    ProjectionPointResponse,
    UtilizationResponse,
)
from ..services.ops import OpsService, revenue_projection

router = APIRouter(prefix="/ops", tags=["ops"])

OpsReaderDep = Annotated[CurrentUser, Depends(require_capability("read", "ops"))]


def _usage(metrics) -> list[OrgUsageResponse]:
    return [
        OrgUsageResponse(
            organization_id=m.organization_id,
            name=m.name,
            total_hours=m.total_hours,
            used_hours=m.used_hours,
            usage_percent=round(m.usage_percent, 2),
        )
        for m in metrics
    ]


@router.get("/overview", response_model=OpsOverviewResponse)
async def get_overview(current_user: OpsReaderDep, session: SessionDep):
    """Aggregate hours across current allocations plus per-client rankings."""
    overview = await OpsService(session).overview()
    return OpsOverviewResponse(
        utilization=UtilizationResponse(
            total_hours=overview.utilization.total_hours,
            used_hours=overview.utilization.used_hours,
            percent=round(overview.utilization.percent, 2),
        ),
        top_usage=_usage(overview.rollup.top_usage),
        low_usage=_usage(overview.rollup.low_usage),
        approaching_limit=_usage(overview.rollup.approaching_limit),
        avg_satisfaction=(
            round(overview.avg_satisfaction, 2)
            if overview.avg_satisfaction is not None
            else None
        ),
        organization_count=overview.organization_count,
        churn=[
            ChurnRiskResponse(
                organization_id=c.organization_id,
                name=c.name,
                score=c.score,
                level=c.level.value,
                factors=c.factors,
            )
            for c in overview.churn
        ],
    )


@router.get("/projection", response_model=list[ProjectionPointResponse])
async def get_projection(
    current_user: OpsReaderDep,
    current_mrr: float = Query(..., ge=0),
    annual_growth_percent: float = Query(default=0.0),
    total_revenue: float = Query(default=0.0, ge=0),
    months: int = Query(default=6, ge=0, le=36),
):
    """Compound MRR growth for the next ``months`` months."""
    points = revenue_projection(current_mrr, annual_growth_percent, total_revenue, months)
    return [
        ProjectionPointResponse(
            month=p.month,
            mrr=p.mrr,
            cumulative=p.cumulative,
            is_projection=p.is_projection,
        )
        for p in points
    ]
