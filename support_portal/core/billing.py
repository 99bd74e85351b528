"""Read-only billing data from Stripe.

Staff see an organization's subscriptions and recent invoices on the client
profile. Nothing here writes to Stripe.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

import stripe
from sqlalchemy.ext.asyncio import AsyncSession

from ..models import Organization
from ..services.errors import UpstreamError
from .config import get_settings

logger = logging.getLogger(__name__)
settings = get_settings()

# Initialize Stripe
if settings.stripe_enabled:
    stripe.api_key = settings.stripe_secret_key

LIST_LIMIT = 10


def _iso(timestamp: int | None) -> str | None:
    if not timestamp:
        return None
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def map_subscription(sub: Any) -> dict:
    items = []
    for item in sub["items"]["data"]:
        price = item["price"]
        product = price.get("product")
        recurring = price.get("recurring")
        items.append(
            {
                "id": item["id"],
                "price_amount": price.get("unit_amount"),
                "price_currency": price.get("currency"),
                "price_interval": recurring.get("interval") if recurring else None,
                "product_name": product.get("name") if hasattr(product, "get") else None,
            }
        )
    return {
        "id": sub["id"],
        "status": sub["status"],
        "current_period_start": _iso(sub.get("current_period_start")),
        "current_period_end": _iso(sub.get("current_period_end")),
        "cancel_at_period_end": bool(sub.get("cancel_at_period_end")),
        "created": _iso(sub.get("created")),
        "items": items,
    }


def map_invoice(inv: Any) -> dict:
    return {
        "id": inv["id"],
        "number": inv.get("number"),
        "status": inv.get("status"),
        "amount_due": inv.get("amount_due"),
        "amount_paid": inv.get("amount_paid"),
        "currency": inv.get("currency"),
        "created": _iso(inv.get("created")),
        "due_date": _iso(inv.get("due_date")),
        "hosted_invoice_url": inv.get("hosted_invoice_url"),
    }


def _fetch(customer_id: str) -> tuple[list, list]:
    subs = stripe.Subscription.list(
        customer=customer_id,
        status="all",
        limit=LIST_LIMIT,
        expand=["data.items.data.price.product"],
    )
    invoices = stripe.Invoice.list(customer=customer_id, limit=LIST_LIMIT)
    return list(subs["data"]), list(invoices["data"])


async def client_billing(session: AsyncSession, organization_id: UUID) -> dict:
    """Subscriptions and invoices for an organization.

    Without a Stripe customer (or without Stripe configured) the lists are
    empty and ``has_stripe`` is false.
    """
    org = await session.get(Organization, organization_id)
    if org is None or not org.stripe_customer_id or not settings.stripe_enabled:
        return {"subscriptions": [], "invoices": [], "has_stripe": False}

    try:
        subs, invoices = await asyncio.to_thread(_fetch, org.stripe_customer_id)
    except stripe.StripeError as e:
        logger.error(f"Stripe billing lookup failed for {organization_id}: {e}")
        raise UpstreamError("Could not load billing data from Stripe") from e

    return {
        "subscriptions": [map_subscription(s) for s in subs],
        "invoices": [map_invoice(i) for i in invoices],
        "has_stripe": True,
    }
