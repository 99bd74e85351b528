"""Shared router dependencies and service-error translation."""

from typing import Annotated
from uuid import UUID

from fastapi import Depends, HTTPException, status

from ..core import CurrentUser, SessionDep
from ..core.permissions import is_staff
from ..services.ai_drafting import ConversationMessage
from ..services.attachments import UploadManager
from ..services.errors import (
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    PortalError,
    UpstreamError,
    ValidationError,
)
from ..services.hours import HourLedger, TimeLogRecorder
from ..services.identity import IdentityService
from ..services.magic_link import CooldownActiveError, MagicLinkService
from ..services.notifications import NotificationService
from ..services.tickets import TicketEngine


def http_error(exc: PortalError) -> HTTPException:
    """Map a service exception onto the HTTP status routers return."""
    if isinstance(exc, CooldownActiveError):
        return HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail=str(exc),
            headers={"Retry-After": str(exc.remaining_seconds)},
        )
    if isinstance(exc, NotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, ValidationError):
        return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    if isinstance(exc, PermissionDeniedError):
        return HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=str(exc))
    if isinstance(exc, ConflictError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, UpstreamError) and exc.status_code in (402, 429, 503):
        return HTTPException(status_code=exc.status_code, detail=str(exc))
    return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))


def ensure_org_access(current_user: CurrentUser, organization_id: UUID) -> None:
    """Staff see every tenant; clients only their own."""
    if current_user.is_staff:
        return
    if current_user.organization_id != organization_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Organization {organization_id} not found",
        )


def client_organization(current_user: CurrentUser) -> UUID:
    if current_user.organization_id is None:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail={
                "message": "No organization linked to this account",
                "redirect_to": current_user.identity.landing_path,
            },
        )
    return current_user.organization_id


def get_notifier(session: SessionDep) -> NotificationService:
    return NotificationService(session)


NotifierDep = Annotated[NotificationService, Depends(get_notifier)]


def get_ticket_engine(session: SessionDep, notifier: NotifierDep) -> TicketEngine:
    return TicketEngine(session, notifier=notifier)


def get_hour_ledger(session: SessionDep) -> HourLedger:
    return HourLedger(session)


def get_time_log_recorder(session: SessionDep) -> TimeLogRecorder:
    return TimeLogRecorder(session)


def get_upload_manager(session: SessionDep) -> UploadManager:
    return UploadManager(session)


def get_magic_link_service(session: SessionDep) -> MagicLinkService:
    return MagicLinkService(session)


TicketEngineDep = Annotated[TicketEngine, Depends(get_ticket_engine)]
HourLedgerDep = Annotated[HourLedger, Depends(get_hour_ledger)]
TimeLogRecorderDep = Annotated[TimeLogRecorder, Depends(get_time_log_recorder)]
UploadManagerDep = Annotated[UploadManager, Depends(get_upload_manager)]
MagicLinkServiceDep = Annotated[MagicLinkService, Depends(get_magic_link_service)]


async def build_conversation(session, messages) -> list[ConversationMessage]:
    """Label each reply as coming from Support or the Client."""
    identity = IdentityService(session)
    authors: dict[UUID, str] = {}
    conversation = []
    for m in messages:
        if m.user_id not in authors:
            roles = await identity.get_roles(m.user_id)
            authors[m.user_id] = "Support" if is_staff(roles) else "Client"
        conversation.append(
            ConversationMessage(
                author=authors[m.user_id], content=m.message, is_internal=m.is_internal
            )
        )
    return conversation
