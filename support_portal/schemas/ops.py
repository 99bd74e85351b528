"""Pydantic schemas for files, billing and the ops dashboard."""

from datetime import date, datetime
from typing import Any
from uuid import UUID

from .base import PortalBaseModel


# =============================================================================
# FILES
# =============================================================================


class AttachmentResponse(PortalBaseModel):
    id: UUID
    ticket_id: UUID
    uploaded_by_user_id: UUID
    file_name: str
    file_size: int | None = None
    content_type: str | None = None
    created_at: datetime


class DocumentResponse(PortalBaseModel):
    id: UUID
    organization_id: UUID
    uploaded_by_user_id: UUID
    file_name: str
    file_size: int | None = None
    content_type: str | None = None
    description: str | None = None
    created_at: datetime


class SignedUrlResponse(PortalBaseModel):
    url: str
    expires_in: int


# =============================================================================
# BILLING
# =============================================================================


class BillingResponse(PortalBaseModel):
    subscriptions: list[dict[str, Any]]
    invoices: list[dict[str, Any]]
    has_stripe: bool


# =============================================================================
# OPS
# =============================================================================


class UtilizationResponse(PortalBaseModel):
    total_hours: float
    used_hours: float
    percent: float


class OrgUsageResponse(PortalBaseModel):
    organization_id: UUID
    name: str
    total_hours: float
    used_hours: float
    usage_percent: float


class ChurnRiskResponse(PortalBaseModel):
    organization_id: UUID
    name: str
    score: int
    level: str
    factors: list[str]


class OpsOverviewResponse(PortalBaseModel):
    utilization: UtilizationResponse
    top_usage: list[OrgUsageResponse]
    low_usage: list[OrgUsageResponse]
    approaching_limit: list[OrgUsageResponse]
    avg_satisfaction: float | None = None
    organization_count: int
    churn: list[ChurnRiskResponse]


class ProjectionPointResponse(PortalBaseModel):
    month: date
    mrr: int
    cumulative: int
    is_projection: bool
