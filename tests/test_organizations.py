"""Tests for organizations, account status and the billing mapping."""

from datetime import date
from uuid import uuid4

import pytest

from support_portal.core import billing
from support_portal.models import AccountStatus, HourAllocation
from support_portal.services.errors import ValidationError
from support_portal.services.organizations import (
    OrganizationConflictError,
    OrganizationInput,
    OrganizationNotFoundError,
    OrganizationService,
)


@pytest.fixture
def service(session):
    return OrganizationService(session)


class TestProfile:
    async def test_create_derives_slug(self, service):
        org = await service.create(OrganizationInput(name="  Initech Ltd  ", website="https://initech.test"))
        assert org.name == "Initech Ltd"
        assert org.slug == "initech-ltd"
        assert org.account_status == AccountStatus.ACTIVE

    async def test_duplicate_name(self, service, org):
        with pytest.raises(OrganizationConflictError):
            await service.create(OrganizationInput(name="ACME corp"))

    async def test_name_required(self, service):
        with pytest.raises(ValidationError):
            await service.create(OrganizationInput(name=""))

    async def test_update_ignores_none(self, service, org):
        updated = await service.update(org.id, billing_email="ap@acme.test", website=None)
        assert updated.billing_email == "ap@acme.test"
        assert updated.name == "Acme Corp"

    async def test_update_rejects_unknown_fields(self, service, org):
        with pytest.raises(ValidationError):
            await service.update(org.id, account_status="overdue")

    async def test_missing(self, service):
        with pytest.raises(OrganizationNotFoundError):
            await service.get(uuid4())


class TestAccountStatus:
    async def test_overdue_stamps_once(self, service, org):
        first = (await service.set_status(org.id, AccountStatus.OVERDUE)).payment_overdue_since
        assert first is not None

        again = await service.set_status(org.id, AccountStatus.OVERDUE)
        assert again.payment_overdue_since == first

    async def test_leaving_overdue_clears_date(self, service, org):
        await service.set_status(org.id, AccountStatus.OVERDUE)
        org = await service.set_status(org.id, AccountStatus.ACTIVE)
        assert org.payment_overdue_since is None


class TestSummaries:
    async def test_counts_members_and_usage(self, service, session, org, other_org, client_user):
        session.add(
            HourAllocation(
                organization_id=org.id,
                period_start=date(2025, 3, 1),
                period_end=date(2025, 3, 31),
                total_hours=40,
                used_hours=35.5,
            )
        )
        await session.flush()

        rows = {s.organization.name: s for s in await service.summaries(today=date(2025, 3, 15))}
        assert rows["Acme Corp"].member_count == 1
        assert rows["Acme Corp"].usage.remaining == 4.5
        assert rows["Globex"].member_count == 0
        assert rows["Globex"].usage.total == 0


class TestBilling:
    async def test_without_stripe_customer(self, session, org):
        result = await billing.client_billing(session, org.id)
        assert result == {"subscriptions": [], "invoices": [], "has_stripe": False}

    def test_map_subscription(self):
        sub = {
            "id": "sub_1",
            "status": "active",
            "current_period_start": 1740787200,
            "current_period_end": None,
            "cancel_at_period_end": False,
            "created": 1740787200,
            "items": {
                "data": [
                    {
                        "id": "si_1",
                        "price": {
                            "unit_amount": 480000,
                            "currency": "usd",
                            "recurring": {"interval": "month"},
                            "product": {"name": "Care Plan"},
                        },
                    }
                ]
            },
        }
        mapped = billing.map_subscription(sub)
        assert mapped["current_period_start"] == "2025-03-01T00:00:00+00:00"
        assert mapped["current_period_end"] is None
        assert mapped["items"] == [
            {
                "id": "si_1",
                "price_amount": 480000,
                "price_currency": "usd",
                "price_interval": "month",
                "product_name": "Care Plan",
            }
        ]

    def test_map_invoice(self):
        mapped = billing.map_invoice({"id": "in_1", "status": "open", "amount_due": 1200})
        assert mapped["status"] == "open"
        assert mapped["created"] is None
        assert mapped["hosted_invoice_url"] is None
