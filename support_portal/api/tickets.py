"""
Ticket API Routes.

Clients see and act on their own organization's tickets only; staff see
every tenant. Status changes go through the per-role transition allow-list.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile, status

from ..core import CurrentUser, CurrentUserDep, SessionDep, StaffDep, require_capability
from ..models import TicketPriority, TicketStatus, utcnow
from ..schemas import (
    AllocationUsage,
    AssigneeResponse,
    AssignRequest,
    AttachmentResponse,
    BulkUpdateRequest,
    BulkUpdateResponse,
    MessageCreate,
    ReplySuggestionResponse,
    ReplySuggestionsResponse,
    SignedUrlResponse,
    SLASummaryResponse,
    StatusChange,
    SurveyCreate,
    SurveyResponse,
    TicketContextResponse,
    TicketCreate,
    TicketListResponse,
    TicketMessageResponse,
    TicketResponse,
    TicketUpdate,
    TimeLogCreate,
    TimeLogListResponse,
    TimeLogResponse,
    TransitionsResponse,
)
from ..services.ai_drafting import DraftingAssistant
from ..services.errors import PortalError
from ..services.hours import total_logged, usage_for
from ..services.organizations import OrganizationService
from ..services.sla import sla_summary
from ..services.storage import SIGNED_URL_TTL_SECONDS
from ..services.tickets import (
    UNASSIGNED,
    CreateTicketInput,
    SortOrder,
    TicketFilters,
    UpdateTicketInput,
)
from .deps import (
    HourLedgerDep,
    TicketEngineDep,
    TimeLogRecorderDep,
    UploadManagerDep,
    build_conversation,
    client_organization,
    http_error,
)

router = APIRouter(prefix="/tickets", tags=["tickets"])

CreatorDep = Annotated[CurrentUser, Depends(require_capability("create", "ticket"))]
AssignerDep = Annotated[CurrentUser, Depends(require_capability("assign", "ticket"))]
BulkDep = Annotated[CurrentUser, Depends(require_capability("bulk_update", "ticket"))]
EditorDep = Annotated[CurrentUser, Depends(require_capability("update", "ticket"))]
ReplierDep = Annotated[CurrentUser, Depends(require_capability("reply", "ticket"))]
SurveyorDep = Annotated[CurrentUser, Depends(require_capability("submit", "survey"))]
TimeLoggerDep = Annotated[CurrentUser, Depends(require_capability("create", "time_log"))]
TimeReaderDep = Annotated[CurrentUser, Depends(require_capability("read", "time_log"))]
UploaderDep = Annotated[CurrentUser, Depends(require_capability("upload", "attachment"))]


def require_ticket_reader(current_user: CurrentUserDep) -> CurrentUser:
    if current_user.can("read", "ticket") or current_user.can("read_own", "ticket"):
        return current_user
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "message": "Not allowed to read tickets",
            "redirect_to": current_user.identity.landing_path,
        },
    )


ReaderDep = Annotated[CurrentUser, Depends(require_ticket_reader)]


async def _visible_ticket(engine, ticket_id: UUID, current_user: CurrentUser):
    try:
        return await engine.get_visible_ticket(
            ticket_id, current_user.roles, current_user.organization_id
        )
    except PortalError as e:
        raise http_error(e)


def _response(ticket, current_user: CurrentUser) -> TicketResponse:
    return TicketResponse.from_ticket(ticket, client_view=not current_user.is_staff)


# =============================================================================
# TICKETS
# =============================================================================


@router.get("", response_model=TicketListResponse, summary="List tickets")
async def list_tickets(
    current_user: ReaderDep,
    engine: TicketEngineDep,
    organization_id: UUID | None = Query(default=None),
    status_filter: list[TicketStatus] = Query(default=[], alias="status"),
    priority: TicketPriority | None = Query(default=None),
    assignee: str | None = Query(
        default=None, description="A user id, 'me' or 'unassigned'"
    ),
    search: str | None = Query(default=None, max_length=200),
    sort: SortOrder = Query(default=SortOrder.NEWEST),
    limit: int | None = Query(default=None, ge=1, le=500),
):
    """Triage listing with filters, title search and SLA counters."""
    if not current_user.is_staff:
        organization_id = client_organization(current_user)

    assignee_filter: UUID | str | None = None
    if assignee == UNASSIGNED:
        assignee_filter = UNASSIGNED
    elif assignee == "me":
        assignee_filter = current_user.id
    elif assignee:
        try:
            assignee_filter = UUID(assignee)
        except ValueError:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="assignee must be a user id, 'me' or 'unassigned'",
            )

    now = utcnow()
    tickets = await engine.list_tickets(
        TicketFilters(
            organization_id=organization_id,
            statuses=status_filter,
            priority=priority,
            assignee=assignee_filter,
            search=search,
            sort=sort,
            limit=limit,
        ),
        now=now,
    )
    summary = sla_summary(tickets, now)
    return TicketListResponse(
        items=[TicketResponse.from_ticket(t, not current_user.is_staff, now) for t in tickets],
        summary=SLASummaryResponse(
            total=summary.total,
            breached=summary.breached,
            at_risk=summary.at_risk,
            unassigned=summary.unassigned,
        ),
        sort=sort,
    )


@router.post(
    "",
    response_model=TicketResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Open a ticket",
)
async def create_ticket(
    request: TicketCreate,
    current_user: CreatorDep,
    engine: TicketEngineDep,
):
    if current_user.is_staff:
        if request.organization_id is None:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="organization_id is required",
            )
        organization_id = request.organization_id
        assignee = request.assigned_to_user_id
    else:
        organization_id = client_organization(current_user)
        assignee = None

    try:
        ticket = await engine.create_ticket(
            CreateTicketInput(
                title=request.title,
                description=request.description,
                priority=TicketPriority(request.priority),
                category=request.category,
                sla_due_at=request.sla_due_at,
                assigned_to_user_id=assignee,
            ),
            organization_id=organization_id,
            created_by=current_user.id,
        )
    except PortalError as e:
        raise http_error(e)
    return _response(ticket, current_user)


@router.get("/assignees", response_model=list[AssigneeResponse])
async def list_assignees(current_user: AssignerDep, engine: TicketEngineDep):
    """Users who can take tickets (support and admin)."""
    users = await engine.assignable_users()
    return [AssigneeResponse.model_validate(u) for u in users]


@router.post("/bulk", response_model=BulkUpdateResponse, summary="Bulk status/assignee update")
async def bulk_update(
    request: BulkUpdateRequest,
    current_user: BulkDep,
    engine: TicketEngineDep,
):
    """Apply one change to exactly the selected tickets; all or nothing."""
    try:
        result = await engine.bulk_update(
            ticket_ids=request.ticket_ids,
            actor_id=current_user.id,
            actor_roles=current_user.roles,
            status=TicketStatus(request.status) if request.status else None,
            assigned_to_user_id=request.assigned_to_user_id,
            unassign=request.unassign,
        )
    except PortalError as e:
        raise http_error(e)
    return BulkUpdateResponse(updated=result.updated, ticket_ids=result.ticket_ids)


@router.get("/surveys/pending", response_model=list[TicketResponse])
async def pending_surveys(current_user: SurveyorDep, engine: TicketEngineDep):
    """Finished tickets the caller has not rated yet."""
    organization_id = client_organization(current_user)
    tickets = await engine.pending_surveys(current_user.id, organization_id)
    return [_response(t, current_user) for t in tickets]


@router.get("/{ticket_id}", response_model=TicketResponse)
async def get_ticket(ticket_id: UUID, current_user: ReaderDep, engine: TicketEngineDep):
    ticket = await _visible_ticket(engine, ticket_id, current_user)
    return _response(ticket, current_user)


@router.patch("/{ticket_id}", response_model=TicketResponse)
async def update_ticket(
    ticket_id: UUID,
    request: TicketUpdate,
    current_user: EditorDep,
    engine: TicketEngineDep,
):
    try:
        ticket = await engine.update_ticket(
            ticket_id,
            UpdateTicketInput(
                title=request.title,
                description=request.description,
                priority=TicketPriority(request.priority) if request.priority else None,
                category=request.category,
                sla_due_at=request.sla_due_at,
                clear_sla_due_at=request.clear_sla_due_at,
            ),
        )
    except PortalError as e:
        raise http_error(e)
    return _response(ticket, current_user)


@router.get("/{ticket_id}/transitions", response_model=TransitionsResponse)
async def get_transitions(ticket_id: UUID, current_user: ReaderDep, engine: TicketEngineDep):
    ticket = await _visible_ticket(engine, ticket_id, current_user)
    return TransitionsResponse(
        current=ticket.status,
        allowed=engine.available_transitions(ticket, current_user.roles),
    )


@router.post("/{ticket_id}/status", response_model=TicketResponse)
async def change_status(
    ticket_id: UUID,
    request: StatusChange,
    current_user: ReaderDep,
    engine: TicketEngineDep,
):
    """Move a ticket to another status. Illegal transitions return 409."""
    if not (current_user.can("update", "ticket") or current_user.can("update_own", "ticket")):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not allowed")
    await _visible_ticket(engine, ticket_id, current_user)
    try:
        ticket = await engine.change_status(
            ticket_id,
            TicketStatus(request.status),
            actor_id=current_user.id,
            actor_roles=current_user.roles,
        )
    except PortalError as e:
        raise http_error(e)
    return _response(ticket, current_user)


@router.post("/{ticket_id}/assign", response_model=TicketResponse)
async def assign_ticket(
    ticket_id: UUID,
    request: AssignRequest,
    current_user: AssignerDep,
    engine: TicketEngineDep,
):
    try:
        ticket = await engine.assign(ticket_id, request.assigned_to_user_id, current_user.id)
    except PortalError as e:
        raise http_error(e)
    return _response(ticket, current_user)


# =============================================================================
# MESSAGES
# =============================================================================


@router.get("/{ticket_id}/messages", response_model=list[TicketMessageResponse])
async def list_messages(ticket_id: UUID, current_user: ReaderDep, engine: TicketEngineDep):
    """Reply thread, oldest first. Internal notes are staff-only."""
    await _visible_ticket(engine, ticket_id, current_user)
    messages = await engine.list_messages(ticket_id, include_internal=current_user.is_staff)
    return [TicketMessageResponse.model_validate(m) for m in messages]


@router.post(
    "/{ticket_id}/messages",
    response_model=TicketMessageResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_message(
    ticket_id: UUID,
    request: MessageCreate,
    current_user: ReplierDep,
    engine: TicketEngineDep,
):
    await _visible_ticket(engine, ticket_id, current_user)
    try:
        message = await engine.add_message(
            ticket_id,
            current_user.id,
            request.message,
            actor_roles=current_user.roles,
            is_internal=request.is_internal,
        )
    except PortalError as e:
        raise http_error(e)
    return TicketMessageResponse.model_validate(message)


@router.get("/{ticket_id}/suggested-replies", response_model=ReplySuggestionsResponse)
async def suggested_replies(
    ticket_id: UUID,
    current_user: StaffDep,
    engine: TicketEngineDep,
    session: SessionDep,
):
    ticket = await _visible_ticket(engine, ticket_id, current_user)
    messages = await engine.list_messages(ticket_id, include_internal=True)
    conversation = await build_conversation(session, messages)
    try:
        suggestions = await DraftingAssistant().suggest_replies(
            ticket.title, ticket.description, conversation, ticket.category
        )
    except PortalError as e:
        raise http_error(e)
    return ReplySuggestionsResponse(
        suggestions=[ReplySuggestionResponse(label=s.label, text=s.text) for s in suggestions]
    )


# =============================================================================
# SURVEYS
# =============================================================================


@router.post(
    "/{ticket_id}/survey",
    response_model=SurveyResponse,
    status_code=status.HTTP_201_CREATED,
)
async def submit_survey(
    ticket_id: UUID,
    request: SurveyCreate,
    current_user: SurveyorDep,
    engine: TicketEngineDep,
):
    try:
        survey = await engine.submit_survey(
            ticket_id,
            current_user.id,
            current_user.organization_id,
            request.rating,
            request.feedback,
        )
    except PortalError as e:
        raise http_error(e)
    return SurveyResponse.model_validate(survey)


# =============================================================================
# STAFF CONTEXT
# =============================================================================


@router.get("/{ticket_id}/context", response_model=TicketContextResponse)
async def ticket_context(
    ticket_id: UUID,
    current_user: StaffDep,
    engine: TicketEngineDep,
    ledger: HourLedgerDep,
    recorder: TimeLogRecorderDep,
    session: SessionDep,
):
    """Client context panel: organization, hours usage, open tickets."""
    ticket = await _visible_ticket(engine, ticket_id, current_user)
    try:
        org = await OrganizationService(session).get(ticket.organization_id)
    except PortalError as e:
        raise http_error(e)
    allocation = await ledger.current_allocation(org.id)
    usage = usage_for(allocation) if allocation else None
    return TicketContextResponse(
        organization_id=org.id,
        organization_name=org.name,
        account_status=org.account_status,
        usage=AllocationUsage.from_usage(usage) if usage else None,
        open_tickets=await engine.count_open(org.id),
        logged_hours=await recorder.ticket_total(ticket.id),
    )


# =============================================================================
# TIME LOGS
# =============================================================================


@router.get("/{ticket_id}/time-logs", response_model=TimeLogListResponse)
async def list_time_logs(
    ticket_id: UUID,
    current_user: TimeReaderDep,
    engine: TicketEngineDep,
    recorder: TimeLogRecorderDep,
):
    await _visible_ticket(engine, ticket_id, current_user)
    logs = await recorder.list_for_ticket(ticket_id)
    return TimeLogListResponse(
        items=[TimeLogResponse.model_validate(log) for log in logs],
        total_hours=total_logged(logs),
    )


@router.post(
    "/{ticket_id}/time-logs",
    response_model=TimeLogResponse,
    status_code=status.HTTP_201_CREATED,
)
async def log_time(
    ticket_id: UUID,
    request: TimeLogCreate,
    current_user: TimeLoggerDep,
    recorder: TimeLogRecorderDep,
):
    """Record hours; the containing allocation's usage updates in the same transaction."""
    try:
        log = await recorder.log_time(
            ticket_id,
            current_user.id,
            request.hours,
            request.description,
            request.logged_at,
        )
    except PortalError as e:
        raise http_error(e)
    return TimeLogResponse.model_validate(log)


# =============================================================================
# ATTACHMENTS
# =============================================================================


@router.get("/{ticket_id}/attachments", response_model=list[AttachmentResponse])
async def list_attachments(
    ticket_id: UUID,
    current_user: ReaderDep,
    engine: TicketEngineDep,
    uploads: UploadManagerDep,
):
    await _visible_ticket(engine, ticket_id, current_user)
    attachments = await uploads.list_attachments(ticket_id)
    return [AttachmentResponse.model_validate(a) for a in attachments]


@router.post(
    "/{ticket_id}/attachments",
    response_model=AttachmentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_attachment(
    ticket_id: UUID,
    current_user: UploaderDep,
    engine: TicketEngineDep,
    uploads: UploadManagerDep,
    file: UploadFile = File(...),
):
    await _visible_ticket(engine, ticket_id, current_user)
    data = await file.read()
    try:
        attachment = await uploads.upload_attachment(
            ticket_id,
            current_user.id,
            file.filename or "upload",
            data,
            file.content_type,
        )
    except PortalError as e:
        raise http_error(e)
    return AttachmentResponse.model_validate(attachment)


@router.get("/{ticket_id}/attachments/{attachment_id}/url", response_model=SignedUrlResponse)
async def attachment_url(
    ticket_id: UUID,
    attachment_id: UUID,
    current_user: ReaderDep,
    engine: TicketEngineDep,
    uploads: UploadManagerDep,
):
    """Short-lived download link (60 seconds)."""
    await _visible_ticket(engine, ticket_id, current_user)
    try:
        attachment = await uploads.get_attachment(attachment_id)
        if attachment.ticket_id != ticket_id:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Attachment not found")
        url = await uploads.attachment_url(attachment)
    except PortalError as e:
        raise http_error(e)
    return SignedUrlResponse(url=url, expires_in=SIGNED_URL_TTL_SECONDS)
