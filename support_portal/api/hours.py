"""Hour allocation and time log routes.

Staff manage allocations per organization; clients read their own current
usage. ``used_hours`` is never written from here: it is recomputed from the
time logs whenever they change.
"""

from datetime import date
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from ..core import CurrentUser, require_capability
from ..schemas import (
    AllocationCreate,
    AllocationResponse,
    AllocationUpdate,
    CurrentHoursResponse,
    HoursAdjustment,
    TimeLogResponse,
    TimeLogUpdate,
)
from ..services.errors import PortalError
from ..services.hours import AllocationInput
from ..services.hours import AllocationUpdate as AllocationChanges
from .deps import HourLedgerDep, TimeLogRecorderDep, client_organization, http_error

router = APIRouter(tags=["hours"])

HoursReaderDep = Annotated[CurrentUser, Depends(require_capability("read", "hours"))]
OwnHoursDep = Annotated[CurrentUser, Depends(require_capability("read_own", "hours"))]
AllocationManagerDep = Annotated[CurrentUser, Depends(require_capability("manage", "allocation"))]
AdjusterDep = Annotated[CurrentUser, Depends(require_capability("adjust", "hours"))]
TimeLoggerDep = Annotated[CurrentUser, Depends(require_capability("create", "time_log"))]


# =============================================================================
# ALLOCATIONS
# =============================================================================


@router.get(
    "/organizations/{organization_id}/allocations",
    response_model=list[AllocationResponse],
)
async def list_allocations(
    organization_id: UUID,
    current_user: HoursReaderDep,
    ledger: HourLedgerDep,
):
    allocations = await ledger.list_allocations(organization_id)
    return [AllocationResponse.from_allocation(a) for a in allocations]


@router.post(
    "/organizations/{organization_id}/allocations",
    response_model=AllocationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_allocation(
    organization_id: UUID,
    request: AllocationCreate,
    current_user: AllocationManagerDep,
    ledger: HourLedgerDep,
):
    """Create a billing period. Logs already inside the period count at once."""
    try:
        allocation = await ledger.create_allocation(
            organization_id,
            AllocationInput(
                period_start=request.period_start,
                period_end=request.period_end,
                total_hours=request.total_hours,
                agreed_hourly_rate=request.agreed_hourly_rate,
                title=request.title,
                notes=request.notes,
            ),
        )
    except PortalError as e:
        raise http_error(e)
    return AllocationResponse.from_allocation(allocation)


@router.get(
    "/organizations/{organization_id}/allocations/current",
    response_model=CurrentHoursResponse,
)
async def current_allocation(
    organization_id: UUID,
    current_user: HoursReaderDep,
    ledger: HourLedgerDep,
    on: date | None = Query(default=None, description="Defaults to today"),
):
    allocation = await ledger.current_allocation(organization_id, on)
    return CurrentHoursResponse(
        allocation=AllocationResponse.from_allocation(allocation) if allocation else None
    )


@router.post(
    "/organizations/{organization_id}/allocations/adjust",
    response_model=AllocationResponse,
)
async def adjust_hours(
    organization_id: UUID,
    request: HoursAdjustment,
    current_user: AdjusterDep,
    ledger: HourLedgerDep,
):
    """Add or remove purchased hours on the current allocation."""
    try:
        allocation = await ledger.adjust_hours(organization_id, request.delta_hours)
    except PortalError as e:
        raise http_error(e)
    return AllocationResponse.from_allocation(allocation)


@router.patch("/allocations/{allocation_id}", response_model=AllocationResponse)
async def update_allocation(
    allocation_id: UUID,
    request: AllocationUpdate,
    current_user: AllocationManagerDep,
    ledger: HourLedgerDep,
):
    try:
        allocation = await ledger.update_allocation(
            allocation_id,
            AllocationChanges(
                period_start=request.period_start,
                period_end=request.period_end,
                total_hours=request.total_hours,
                agreed_hourly_rate=request.agreed_hourly_rate,
                title=request.title,
                notes=request.notes,
            ),
        )
    except PortalError as e:
        raise http_error(e)
    return AllocationResponse.from_allocation(allocation)


@router.get("/me/hours", response_model=CurrentHoursResponse)
async def my_hours(current_user: OwnHoursDep, ledger: HourLedgerDep):
    """The caller's organization's current allocation and usage."""
    organization_id = client_organization(current_user)
    allocation = await ledger.current_allocation(organization_id)
    return CurrentHoursResponse(
        allocation=AllocationResponse.from_allocation(allocation) if allocation else None
    )


# =============================================================================
# TIME LOGS
# =============================================================================


@router.patch("/time-logs/{log_id}", response_model=TimeLogResponse)
async def edit_time_log(
    log_id: UUID,
    request: TimeLogUpdate,
    current_user: TimeLoggerDep,
    recorder: TimeLogRecorderDep,
):
    """Only the author may edit a log."""
    try:
        log = await recorder.edit_time_log(
            log_id,
            current_user.id,
            hours=request.hours,
            description=request.description,
            logged_at=request.logged_at,
        )
    except PortalError as e:
        raise http_error(e)
    return TimeLogResponse.model_validate(log)


@router.delete("/time-logs/{log_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_time_log(
    log_id: UUID,
    current_user: TimeLoggerDep,
    recorder: TimeLogRecorderDep,
):
    try:
        await recorder.delete_time_log(log_id, current_user.id)
    except PortalError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
