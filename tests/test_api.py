"""
End-to-end tests through the HTTP layer.

These tests verify:
1. AUTH: Token validation, identity and landing paths
2. TENANCY: Clients never see another organization's tickets
3. GUARDS: Capability checks answer 403 with a redirect target
4. WIRE: Service errors map onto the expected status codes
"""

from datetime import timedelta

import httpx
import pytest

from support_portal.api.deps import get_magic_link_service
from support_portal.models import NotificationType, Ticket, utcnow
from support_portal.services.magic_link import MagicLinkService
from support_portal.services.notifications import NotificationService

PREFIX = "/api/v1"


@pytest.fixture
async def client_ticket(session, org, client_user):
    ticket = Ticket(
        organization_id=org.id,
        created_by_user_id=client_user.id,
        title="Mobile menu broken",
        sla_due_at=utcnow() - timedelta(hours=1),
    )
    session.add(ticket)
    await session.flush()
    return ticket


# =============================================================================
# TEST: AUTH
# =============================================================================


class TestAuth:
    async def test_health(self, api):
        response = await api.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    async def test_me_requires_token(self, api):
        response = await api.get(f"{PREFIX}/auth/me")
        assert response.status_code == 401

    async def test_garbage_token(self, api):
        response = await api.get(
            f"{PREFIX}/auth/me", headers={"Authorization": "Bearer not-a-token"}
        )
        assert response.status_code == 401

    async def test_me_for_client(self, api, headers, client_user, org):
        response = await api.get(f"{PREFIX}/auth/me", headers=headers(client_user))
        assert response.status_code == 200
        body = response.json()
        assert body["roles"] == ["client"]
        assert body["landing_path"] == "/client"
        assert body["organization_id"] == str(org.id)
        assert "ticket:create" in body["capabilities"]
        assert body["lockout"]["overdue"] is False

    async def test_me_for_pending_user(self, api, headers, pending_user):
        body = (await api.get(f"{PREFIX}/auth/me", headers=headers(pending_user))).json()
        assert body["is_pending"] is True
        assert body["landing_path"] == "/pending"
        assert body["capabilities"] == []

    async def test_route_access(self, api, headers, client_user):
        response = await api.get(
            f"{PREFIX}/auth/route-access",
            params={"path": "/ops/revenue"},
            headers=headers(client_user),
        )
        assert response.json() == {"allowed": False, "redirect_to": "/client"}

    async def test_dev_login_hidden_without_debug(self, api):
        response = await api.post(f"{PREFIX}/auth/dev-login", json={"email": "jane@acme.com"})
        assert response.status_code == 404


class TestMagicLink:
    async def test_rate_limit_answers_429_with_retry_after(self, api, session):
        from support_portal.main import app

        transport = httpx.MockTransport(
            lambda request: httpx.Response(429, json={"msg": "Email rate limit exceeded"})
        )
        service = MagicLinkService(session, httpx.AsyncClient(transport=transport))
        app.dependency_overrides[get_magic_link_service] = lambda: service

        first = await api.post(f"{PREFIX}/auth/magic-link", json={"email": "jane@acme.com"})
        assert first.status_code == 429
        assert first.headers["retry-after"] == "300"
        assert first.json()["rate_limited"] is True

        # Still cooling down: refused before the provider is asked again
        second = await api.post(f"{PREFIX}/auth/magic-link", json={"email": "jane@acme.com"})
        assert second.status_code == 429
        assert 0 < int(second.headers["retry-after"]) <= 300


# =============================================================================
# TEST: TICKETS
# =============================================================================


class TestTickets:
    async def test_client_opens_ticket_in_own_org(self, api, headers, client_user, org):
        response = await api.post(
            f"{PREFIX}/tickets",
            json={"title": "Checkout fails", "priority": "high"},
            headers=headers(client_user),
        )
        assert response.status_code == 201
        body = response.json()
        assert body["organization_id"] == str(org.id)
        assert body["status"] == "open"

    async def test_staff_must_name_organization(self, api, headers, support_user):
        response = await api.post(
            f"{PREFIX}/tickets", json={"title": "Checkout fails"}, headers=headers(support_user)
        )
        assert response.status_code == 400

    async def test_other_tenant_gets_404(self, api, headers, client_ticket, other_client):
        response = await api.get(
            f"{PREFIX}/tickets/{client_ticket.id}", headers=headers(other_client)
        )
        assert response.status_code == 404

    async def test_client_list_is_scoped(self, api, headers, client_ticket, other_client):
        response = await api.get(f"{PREFIX}/tickets", headers=headers(other_client))
        assert response.json()["items"] == []

    async def test_staff_list_carries_sla_summary(self, api, headers, client_ticket, support_user):
        response = await api.get(f"{PREFIX}/tickets", headers=headers(support_user))
        body = response.json()
        assert body["summary"] == {"total": 1, "breached": 1, "at_risk": 0, "unassigned": 1}
        assert body["items"][0]["sla"]["level"] == "breached"

    async def test_search_query(self, api, headers, client_ticket, support_user):
        found = await api.get(
            f"{PREFIX}/tickets", params={"search": "MOBILE"}, headers=headers(support_user)
        )
        missing = await api.get(
            f"{PREFIX}/tickets", params={"search": "invoice"}, headers=headers(support_user)
        )
        assert len(found.json()["items"]) == 1
        assert missing.json()["items"] == []

    async def test_client_cannot_bulk_update(self, api, headers, client_ticket, client_user):
        response = await api.post(
            f"{PREFIX}/tickets/bulk",
            json={"ticket_ids": [str(client_ticket.id)], "status": "closed"},
            headers=headers(client_user),
        )
        assert response.status_code == 403
        assert response.json()["detail"]["redirect_to"] == "/client"

    async def test_illegal_transition_is_409(self, api, headers, client_ticket, client_user):
        response = await api.post(
            f"{PREFIX}/tickets/{client_ticket.id}/status",
            json={"status": "resolved"},
            headers=headers(client_user),
        )
        assert response.status_code == 409

    async def test_internal_notes_hidden_from_client(
        self, api, headers, client_ticket, client_user, support_user
    ):
        posted = await api.post(
            f"{PREFIX}/tickets/{client_ticket.id}/messages",
            json={"message": "Legacy theme, check CSS", "is_internal": True},
            headers=headers(support_user),
        )
        assert posted.status_code == 201

        client_view = await api.get(
            f"{PREFIX}/tickets/{client_ticket.id}/messages", headers=headers(client_user)
        )
        staff_view = await api.get(
            f"{PREFIX}/tickets/{client_ticket.id}/messages", headers=headers(support_user)
        )
        assert client_view.json() == []
        assert len(staff_view.json()) == 1

    async def test_ops_posts_internal_note(self, api, headers, client_ticket, ops_user):
        response = await api.post(
            f"{PREFIX}/tickets/{client_ticket.id}/messages",
            json={"message": "Renewal is due, flag to account manager", "is_internal": True},
            headers=headers(ops_user),
        )
        assert response.status_code == 201

    async def test_client_cannot_post_internal_note(
        self, api, headers, client_ticket, client_user
    ):
        response = await api.post(
            f"{PREFIX}/tickets/{client_ticket.id}/messages",
            json={"message": "psst", "is_internal": True},
            headers=headers(client_user),
        )
        assert response.status_code == 403


class TestHours:
    async def test_nan_adjustment_is_rejected(self, api, headers, admin_user, org):
        response = await api.post(
            f"{PREFIX}/organizations/{org.id}/allocations/adjust",
            content=b'{"delta_hours": NaN}',
            headers={**headers(admin_user), "Content-Type": "application/json"},
        )
        assert response.status_code == 422


# =============================================================================
# TEST: NOTIFICATIONS
# =============================================================================


class TestNotifications:
    async def test_inbox_round_trip(self, api, headers, session, client_ticket, client_user):
        await NotificationService(session).notify(
            client_user.id,
            NotificationType.TICKET_STATUS_CHANGED,
            "Ticket status updated",
            "moved",
            ticket_id=client_ticket.id,
        )

        inbox = (await api.get(f"{PREFIX}/notifications", headers=headers(client_user))).json()
        assert inbox["unread_count"] == 1
        assert inbox["items"][0]["link"] == f"/client/tickets/{client_ticket.id}"

        marked = await api.post(f"{PREFIX}/notifications/read-all", headers=headers(client_user))
        assert marked.json() == {"updated": 1}

        count = await api.get(f"{PREFIX}/notifications/unread-count", headers=headers(client_user))
        assert count.json() == {"unread_count": 0}


# =============================================================================
# TEST: OPS
# =============================================================================


class TestOps:
    async def test_clients_are_kept_out(self, api, headers, client_user):
        response = await api.get(f"{PREFIX}/ops/overview", headers=headers(client_user))
        assert response.status_code == 403

    async def test_ops_overview(self, api, headers, ops_user, org):
        response = await api.get(f"{PREFIX}/ops/overview", headers=headers(ops_user))
        assert response.status_code == 200
        assert response.json()["organization_count"] == 1

    async def test_projection(self, api, headers, ops_user):
        response = await api.get(
            f"{PREFIX}/ops/projection",
            params={"current_mrr": 1000, "annual_growth_percent": 0, "total_revenue": 0, "months": 2},
            headers=headers(ops_user),
        )
        assert [p["cumulative"] for p in response.json()] == [0, 1000, 2000]
