"""Client organizations (tenants) and their account status."""

import logging
from dataclasses import dataclass, fields
from datetime import date
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import AccountStatus, Organization, OrganizationMember, utcnow
from .errors import ConflictError, NotFoundError, ValidationError
from .hours import HourLedger, Usage, usage_for
from .knowledge_base import slugify
from .tickets import TicketEngine

logger = logging.getLogger(__name__)


class OrganizationNotFoundError(NotFoundError):
    pass


class OrganizationConflictError(ConflictError):
    pass


@dataclass
class OrganizationInput:
    name: str
    website: str | None = None
    logo_url: str | None = None
    billing_email: str | None = None
    billing_address: str | None = None
    primary_contact_name: str | None = None
    primary_contact_email: str | None = None
    primary_contact_phone: str | None = None
    notes: str | None = None
    stripe_customer_id: str | None = None


@dataclass
class OrganizationSummary:
    """Row of the staff client list."""
    organization: Organization
    usage: Usage
    open_tickets: int
    member_count: int


def apply_status(org: Organization, status: AccountStatus) -> None:
    """Set the account status keeping ``payment_overdue_since`` consistent.

    Entering overdue stamps the date when missing; leaving overdue clears it.
    """
    status = AccountStatus(status)
    if status == AccountStatus.OVERDUE:
        if org.payment_overdue_since is None:
            org.payment_overdue_since = utcnow()
    else:
        org.payment_overdue_since = None
    org.account_status = status


class OrganizationService:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(self, input: OrganizationInput) -> Organization:
        if not input.name or not input.name.strip():
            raise ValidationError("Organization name is required")

        slug = slugify(input.name)
        existing = await self.session.execute(
            select(Organization.id).where(Organization.slug == slug)
        )
        if existing.first() is not None:
            raise OrganizationConflictError(f"An organization named '{input.name}' already exists")

        values = {f.name: getattr(input, f.name) for f in fields(input)}
        values["name"] = input.name.strip()
        org = Organization(slug=slug, account_status=AccountStatus.ACTIVE, **values)
        self.session.add(org)
        await self.session.flush()
        logger.info(f"Created organization {org.id} ({org.name})")
        return org

    async def get(self, organization_id: UUID) -> Organization:
        org = await self.session.get(Organization, organization_id)
        if org is None:
            raise OrganizationNotFoundError(f"Organization {organization_id} not found")
        return org

    async def list_organizations(self) -> list[Organization]:
        result = await self.session.execute(select(Organization).order_by(Organization.name))
        return list(result.scalars().all())

    async def update(self, organization_id: UUID, **changes) -> Organization:
        """Patch profile fields. ``None`` values are ignored."""
        org = await self.get(organization_id)
        allowed = {f.name for f in fields(OrganizationInput)}
        unknown = set(changes) - allowed
        if unknown:
            raise ValidationError(f"Unknown organization fields: {sorted(unknown)}")

        for name, value in changes.items():
            if value is None:
                continue
            if name == "name":
                if not value.strip():
                    raise ValidationError("Organization name is required")
                value = value.strip()
            setattr(org, name, value)
        await self.session.flush()
        return org

    async def set_status(self, organization_id: UUID, status: AccountStatus) -> Organization:
        org = await self.get(organization_id)
        previous = org.account_status
        apply_status(org, status)
        await self.session.flush()
        logger.info(
            f"Organization {organization_id} status {AccountStatus(previous).value} "
            f"-> {AccountStatus(status).value}"
        )
        return org

    async def summaries(self, today: date | None = None) -> list[OrganizationSummary]:
        ledger = HourLedger(self.session)
        tickets = TicketEngine(self.session)

        member_counts = dict(
            (
                await self.session.execute(
                    select(OrganizationMember.organization_id, func.count()).group_by(
                        OrganizationMember.organization_id
                    )
                )
            ).all()
        )

        summaries = []
        for org in await self.list_organizations():
            allocation = await ledger.current_allocation(org.id, today)
            summaries.append(
                OrganizationSummary(
                    organization=org,
                    usage=usage_for(allocation),
                    open_tickets=await tickets.count_open(org.id),
                    member_count=member_counts.get(org.id, 0),
                )
            )
        return summaries
