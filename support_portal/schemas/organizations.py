"""Pydantic schemas for organizations, members, staff roles and the current user."""

from datetime import datetime
from uuid import UUID

from pydantic import EmailStr, Field

from .base import AccountStatus, AppRole, PortalBaseModel, UserRef
from .tickets import AllocationUsage


# =============================================================================
# ORGANIZATIONS
# =============================================================================


class OrganizationCreate(PortalBaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    website: str | None = None
    logo_url: str | None = None
    billing_email: EmailStr | None = None
    billing_address: str | None = None
    primary_contact_name: str | None = None
    primary_contact_email: EmailStr | None = None
    primary_contact_phone: str | None = None
    notes: str | None = None
    stripe_customer_id: str | None = None


class OrganizationUpdate(PortalBaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=255)
    website: str | None = None
    logo_url: str | None = None
    billing_email: EmailStr | None = None
    billing_address: str | None = None
    primary_contact_name: str | None = None
    primary_contact_email: EmailStr | None = None
    primary_contact_phone: str | None = None
    notes: str | None = None
    stripe_customer_id: str | None = None


class AccountStatusUpdate(PortalBaseModel):
    account_status: AccountStatus


class OrganizationResponse(PortalBaseModel):
    id: UUID
    name: str
    slug: str | None = None
    website: str | None = None
    logo_url: str | None = None
    billing_email: str | None = None
    billing_address: str | None = None
    primary_contact_name: str | None = None
    primary_contact_email: str | None = None
    primary_contact_phone: str | None = None
    notes: str | None = None
    account_status: AccountStatus
    payment_overdue_since: datetime | None = None
    stripe_customer_id: str | None = None
    created_at: datetime


class OrganizationSummaryResponse(PortalBaseModel):
    organization: OrganizationResponse
    usage: AllocationUsage
    open_tickets: int
    member_count: int


class MemberAdd(PortalBaseModel):
    email: EmailStr
    is_primary_contact: bool = False


class MemberResponse(PortalBaseModel):
    id: UUID
    user: UserRef
    is_primary_contact: bool


class LockoutResponse(PortalBaseModel):
    overdue: bool
    days_overdue: int
    hard_lockout: bool
    days_until_lockout: int


# =============================================================================
# STAFF & ROLES
# =============================================================================


class RoleGrant(PortalBaseModel):
    email: EmailStr
    role: AppRole


class StaffResponse(PortalBaseModel):
    user: UserRef
    roles: list[AppRole]


# =============================================================================
# CURRENT USER
# =============================================================================


class MeResponse(PortalBaseModel):
    user: UserRef
    roles: list[AppRole]
    primary_role: AppRole | None = None
    organization_id: UUID | None = None
    landing_path: str
    is_pending: bool
    capabilities: list[str]
    lockout: LockoutResponse | None = None


class RouteCheckResponse(PortalBaseModel):
    allowed: bool
    redirect_to: str | None = None


# =============================================================================
# AUTH
# =============================================================================


class MagicLinkRequest(PortalBaseModel):
    email: EmailStr
    redirect_to: str | None = None


class MagicLinkResponse(PortalBaseModel):
    sent: bool
    rate_limited: bool = False
    retry_after_seconds: int | None = None
    message: str
