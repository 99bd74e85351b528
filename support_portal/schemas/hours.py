"""Pydantic schemas for hour allocations and time logs."""

from datetime import date, datetime
from uuid import UUID

from pydantic import Field, model_validator

from ..models import HourAllocation
from ..services.hours import billable_value, usage_for
from .base import PortalBaseModel
from .tickets import AllocationUsage


class AllocationCreate(PortalBaseModel):
    period_start: date
    period_end: date
    total_hours: float = Field(..., gt=0, allow_inf_nan=False)
    agreed_hourly_rate: float | None = Field(default=None, ge=0)
    title: str | None = Field(default=None, max_length=255)
    notes: str | None = None

    @model_validator(mode="after")
    def check_period(self) -> "AllocationCreate":
        if self.period_end < self.period_start:
            raise ValueError("period_end must not be before period_start")
        return self


class AllocationUpdate(PortalBaseModel):
    period_start: date | None = None
    period_end: date | None = None
    total_hours: float | None = Field(default=None, gt=0, allow_inf_nan=False)
    agreed_hourly_rate: float | None = Field(default=None, ge=0)
    title: str | None = None
    notes: str | None = None


class HoursAdjustment(PortalBaseModel):
    """Positive adds purchased hours, negative removes them."""

    delta_hours: float = Field(..., allow_inf_nan=False)


class AllocationResponse(PortalBaseModel):
    id: UUID
    organization_id: UUID
    period_start: date
    period_end: date
    total_hours: float
    used_hours: float
    agreed_hourly_rate: float | None = None
    title: str | None = None
    notes: str | None = None
    usage: AllocationUsage
    billable_value: float | None = None

    @classmethod
    def from_allocation(cls, allocation: HourAllocation) -> "AllocationResponse":
        usage = usage_for(allocation)
        return cls(
            id=allocation.id,
            organization_id=allocation.organization_id,
            period_start=allocation.period_start,
            period_end=allocation.period_end,
            total_hours=allocation.total_hours,
            used_hours=allocation.used_hours,
            agreed_hourly_rate=allocation.agreed_hourly_rate,
            title=allocation.title,
            notes=allocation.notes,
            usage=AllocationUsage.from_usage(usage),
            billable_value=billable_value(allocation),
        )


class CurrentHoursResponse(PortalBaseModel):
    allocation: AllocationResponse | None = None


class TimeLogCreate(PortalBaseModel):
    hours: float = Field(..., gt=0, allow_inf_nan=False)
    description: str | None = None
    logged_at: datetime | None = None


class TimeLogUpdate(PortalBaseModel):
    hours: float | None = Field(default=None, gt=0, allow_inf_nan=False)
    description: str | None = None
    logged_at: datetime | None = None


class TimeLogResponse(PortalBaseModel):
    id: UUID
    ticket_id: UUID
    user_id: UUID
    hours: float
    description: str | None = None
    logged_at: datetime
    created_at: datetime


class TimeLogListResponse(PortalBaseModel):
    items: list[TimeLogResponse]
    total_hours: float
