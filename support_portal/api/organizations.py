"""Organization (client account) routes.

Staff manage every tenant. A client reaches only their own organization's
documents, billing and lockout state; anything else is reported as 404.
"""

from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, File, Form, HTTPException, Response, UploadFile, status

from ..core import CurrentUser, CurrentUserDep, SessionDep, require_capability
from ..core.billing import client_billing
from ..schemas import (
    AccountStatusUpdate,
    AllocationUsage,
    BillingResponse,
    DocumentResponse,
    LockoutResponse,
    MemberAdd,
    MemberResponse,
    OrganizationCreate,
    OrganizationResponse,
    OrganizationSummaryResponse,
    OrganizationUpdate,
    SignedUrlResponse,
    UserRef,
)
from ..services.errors import PortalError
from ..services.identity import IdentityService
from ..services.ops import payment_lockout
from ..services.organizations import OrganizationInput, OrganizationService
from ..services.storage import SIGNED_URL_TTL_SECONDS
from .deps import UploadManagerDep, ensure_org_access, http_error

router = APIRouter(prefix="/organizations", tags=["organizations"])

OrgReaderDep = Annotated[CurrentUser, Depends(require_capability("read", "organization"))]
OrgCreatorDep = Annotated[CurrentUser, Depends(require_capability("create", "organization"))]
OrgEditorDep = Annotated[CurrentUser, Depends(require_capability("update", "organization"))]
UploaderDep = Annotated[CurrentUser, Depends(require_capability("upload", "document"))]


def get_organization_service(session: SessionDep) -> OrganizationService:
    return OrganizationService(session)


OrganizationServiceDep = Annotated[OrganizationService, Depends(get_organization_service)]


def _check_own(current_user: CurrentUser, organization_id: UUID, action: str, resource: str):
    """Staff need ``action:resource``; clients need the ``*_own`` variant for their org."""
    if current_user.can(action, resource):
        return
    if current_user.can(f"{action}_own", resource):
        ensure_org_access(current_user, organization_id)
        return
    raise HTTPException(
        status_code=status.HTTP_403_FORBIDDEN,
        detail={
            "message": f"Not allowed to {action} {resource}",
            "redirect_to": current_user.identity.landing_path,
        },
    )


# =============================================================================
# ORGANIZATIONS
# =============================================================================


@router.get("", response_model=list[OrganizationSummaryResponse])
async def list_organizations(current_user: OrgReaderDep, service: OrganizationServiceDep):
    """Client list with current hours usage, open tickets and member count."""
    summaries = await service.summaries()
    return [
        OrganizationSummaryResponse(
            organization=OrganizationResponse.model_validate(s.organization),
            usage=AllocationUsage.from_usage(s.usage),
            open_tickets=s.open_tickets,
            member_count=s.member_count,
        )
        for s in summaries
    ]


@router.post("", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    request: OrganizationCreate,
    current_user: OrgCreatorDep,
    service: OrganizationServiceDep,
):
    try:
        org = await service.create(OrganizationInput(**request.model_dump()))
    except PortalError as e:
        raise http_error(e)
    return OrganizationResponse.model_validate(org)


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization_id: UUID,
    current_user: CurrentUserDep,
    service: OrganizationServiceDep,
):
    if not current_user.can("read", "organization"):
        ensure_org_access(current_user, organization_id)
    try:
        org = await service.get(organization_id)
    except PortalError as e:
        raise http_error(e)
    return OrganizationResponse.model_validate(org)


@router.patch("/{organization_id}", response_model=OrganizationResponse)
async def update_organization(
    organization_id: UUID,
    request: OrganizationUpdate,
    current_user: OrgEditorDep,
    service: OrganizationServiceDep,
):
    try:
        org = await service.update(organization_id, **request.model_dump(exclude_none=True))
    except PortalError as e:
        raise http_error(e)
    return OrganizationResponse.model_validate(org)


@router.post("/{organization_id}/status", response_model=OrganizationResponse)
async def set_account_status(
    organization_id: UUID,
    request: AccountStatusUpdate,
    current_user: OrgEditorDep,
    service: OrganizationServiceDep,
):
    """Change the account status. Overdue stamps the date it started."""
    try:
        org = await service.set_status(organization_id, request.account_status)
    except PortalError as e:
        raise http_error(e)
    return OrganizationResponse.model_validate(org)


@router.get("/{organization_id}/lockout", response_model=LockoutResponse)
async def get_lockout(
    organization_id: UUID,
    current_user: CurrentUserDep,
    service: OrganizationServiceDep,
):
    if not current_user.can("read", "organization"):
        ensure_org_access(current_user, organization_id)
    try:
        org = await service.get(organization_id)
    except PortalError as e:
        raise http_error(e)
    state = payment_lockout(org.account_status, org.payment_overdue_since)
    return LockoutResponse(
        overdue=state.overdue,
        days_overdue=state.days_overdue,
        hard_lockout=state.hard_lockout,
        days_until_lockout=state.days_until_lockout,
    )


# =============================================================================
# MEMBERS
# =============================================================================


@router.get("/{organization_id}/members", response_model=list[MemberResponse])
async def list_members(organization_id: UUID, current_user: OrgReaderDep, session: SessionDep):
    members = await IdentityService(session).list_members(organization_id)
    return [
        MemberResponse(
            id=member.id,
            user=UserRef.model_validate(user),
            is_primary_contact=member.is_primary_contact,
        )
        for member, user in members
    ]


@router.post(
    "/{organization_id}/members",
    response_model=MemberResponse,
    status_code=status.HTTP_201_CREATED,
)
async def add_member(
    organization_id: UUID,
    request: MemberAdd,
    current_user: OrgEditorDep,
    service: OrganizationServiceDep,
    session: SessionDep,
):
    """Attach an existing user to the organization and grant the client role."""
    identity = IdentityService(session)
    try:
        await service.get(organization_id)
        user = await identity.find_user_by_email(request.email)
        member = await identity.add_member(
            organization_id, user.id, is_primary_contact=request.is_primary_contact
        )
    except PortalError as e:
        raise http_error(e)
    return MemberResponse(
        id=member.id,
        user=UserRef.model_validate(user),
        is_primary_contact=member.is_primary_contact,
    )


@router.delete(
    "/{organization_id}/members/{member_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_member(
    organization_id: UUID,
    member_id: UUID,
    current_user: OrgEditorDep,
    session: SessionDep,
):
    try:
        await IdentityService(session).remove_member(organization_id, member_id)
    except PortalError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# =============================================================================
# BILLING
# =============================================================================


@router.get("/{organization_id}/billing", response_model=BillingResponse)
async def get_billing(organization_id: UUID, current_user: CurrentUserDep, session: SessionDep):
    """Stripe subscriptions and recent invoices, read-only."""
    _check_own(current_user, organization_id, "read", "billing")
    try:
        billing = await client_billing(session, organization_id)
    except PortalError as e:
        raise http_error(e)
    return BillingResponse(**billing)


# =============================================================================
# DOCUMENTS
# =============================================================================


@router.get("/{organization_id}/documents", response_model=list[DocumentResponse])
async def list_documents(
    organization_id: UUID,
    current_user: CurrentUserDep,
    uploads: UploadManagerDep,
):
    _check_own(current_user, organization_id, "read", "document")
    documents = await uploads.list_documents(organization_id)
    return [DocumentResponse.model_validate(d) for d in documents]


@router.post(
    "/{organization_id}/documents",
    response_model=DocumentResponse,
    status_code=status.HTTP_201_CREATED,
)
async def upload_document(
    organization_id: UUID,
    current_user: UploaderDep,
    uploads: UploadManagerDep,
    file: UploadFile = File(...),
    description: str | None = Form(default=None),
):
    ensure_org_access(current_user, organization_id)
    data = await file.read()
    try:
        document = await uploads.upload_document(
            organization_id,
            current_user.id,
            file.filename or "document",
            data,
            file.content_type,
            description,
        )
    except PortalError as e:
        raise http_error(e)
    return DocumentResponse.model_validate(document)


async def _owned_document(uploads, organization_id: UUID, document_id: UUID):
    try:
        document = await uploads.get_document(document_id)
    except PortalError as e:
        raise http_error(e)
    if document.organization_id != organization_id:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Document not found")
    return document


@router.get(
    "/{organization_id}/documents/{document_id}/url",
    response_model=SignedUrlResponse,
)
async def document_url(
    organization_id: UUID,
    document_id: UUID,
    current_user: CurrentUserDep,
    uploads: UploadManagerDep,
):
    """Short-lived download link (60 seconds)."""
    _check_own(current_user, organization_id, "read", "document")
    document = await _owned_document(uploads, organization_id, document_id)
    try:
        url = await uploads.document_url(document)
    except PortalError as e:
        raise http_error(e)
    return SignedUrlResponse(url=url, expires_in=SIGNED_URL_TTL_SECONDS)


@router.delete(
    "/{organization_id}/documents/{document_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def delete_document(
    organization_id: UUID,
    document_id: UUID,
    current_user: UploaderDep,
    uploads: UploadManagerDep,
):
    ensure_org_access(current_user, organization_id)
    document = await _owned_document(uploads, organization_id, document_id)
    try:
        await uploads.delete_document(document)
    except PortalError as e:
        raise http_error(e)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
