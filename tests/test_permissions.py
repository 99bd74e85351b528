"""
Tests for role resolution, capabilities, route guards and the status workflow.

These tests verify:
1. CAPABILITIES: Each role's table grants exactly what the desk needs
2. LANDING: Users land on their highest-priority dashboard (or /pending)
3. ROUTES: Route families, legacy redirects and anonymous visitors
4. TRANSITIONS: Staff and client allow-lists
"""

from uuid import uuid4

import pytest

from support_portal.core.permissions import (
    allowed_transitions,
    can,
    can_transition,
    capabilities_for,
    is_staff,
    landing_path,
    primary_role,
    route_access,
    ticket_path,
)
from support_portal.models import AppRole, TicketStatus
from support_portal.services.identity import IdentityService, MembershipConflictError


# =============================================================================
# TEST: CAPABILITIES
# =============================================================================


class TestCapabilities:
    def test_client_cannot_bulk_update_or_log_time(self):
        assert can({AppRole.CLIENT}, "create", "ticket")
        assert not can({AppRole.CLIENT}, "bulk_update", "ticket")
        assert not can({AppRole.CLIENT}, "create", "time_log")
        assert not can({AppRole.CLIENT}, "internal_note", "ticket")

    def test_support_works_tickets_but_cannot_publish(self):
        assert can({AppRole.SUPPORT}, "bulk_update", "ticket")
        assert can({AppRole.SUPPORT}, "draft", "kb")
        assert not can({AppRole.SUPPORT}, "publish", "kb")
        assert not can({AppRole.SUPPORT}, "manage", "role")

    def test_admin_extends_support(self):
        support = capabilities_for({AppRole.SUPPORT})
        admin = capabilities_for({AppRole.ADMIN})
        assert support <= admin
        assert "kb:publish" in admin
        assert "ops:read" in admin

    def test_ops_works_the_staff_ticket_page(self):
        for action in ("reply", "internal_note"):
            assert can({AppRole.OPS}, action, "ticket")
        assert can({AppRole.OPS}, "create", "time_log")

    def test_capabilities_union_across_roles(self):
        caps = capabilities_for({AppRole.CLIENT, AppRole.SUPPORT})
        assert "survey:submit" in caps
        assert "ticket:bulk_update" in caps

    def test_no_roles_no_capabilities(self):
        assert capabilities_for(set()) == frozenset()
        assert not is_staff(set())


# =============================================================================
# TEST: LANDING PATHS
# =============================================================================


class TestLanding:
    @pytest.mark.parametrize(
        "roles, expected",
        [
            ({AppRole.CLIENT}, "/client"),
            ({AppRole.SUPPORT}, "/support"),
            ({AppRole.SUPPORT, AppRole.ADMIN}, "/admin"),
            ({AppRole.CLIENT, AppRole.OPS}, "/ops"),
            (set(), "/pending"),
        ],
    )
    def test_landing_path(self, roles, expected):
        assert landing_path(roles) == expected

    def test_primary_role_priority(self):
        assert primary_role({AppRole.CLIENT, AppRole.ADMIN}) == AppRole.ADMIN
        assert primary_role(set()) is None


# =============================================================================
# TEST: ROUTE GUARDS
# =============================================================================


class TestRouteAccess:
    def test_client_blocked_from_support_routes(self):
        decision = route_access("/support/tickets", {AppRole.CLIENT})
        assert not decision.allowed
        assert decision.redirect_to == "/client"

    def test_staff_may_open_client_family(self):
        assert route_access("/client/tickets", {AppRole.SUPPORT}).allowed

    def test_legacy_admin_family_redirects(self):
        decision = route_access("/admin/tickets/123", {AppRole.ADMIN})
        assert not decision.allowed
        assert decision.redirect_to == "/support/tickets/123"

    def test_anonymous_goes_to_login(self):
        decision = route_access("/client", None)
        assert decision.redirect_to == "/login"

    def test_prefix_must_match_a_whole_segment(self):
        # "/clientele" is not part of the /client family
        assert route_access("/clientele", set()).allowed

    def test_unknown_route_renders(self):
        assert route_access("/nowhere", {AppRole.CLIENT}).allowed


class TestTicketPath:
    def test_admin_link_points_at_ticket_list(self):
        ticket_id = uuid4()
        assert ticket_path({AppRole.ADMIN}, ticket_id) == "/admin/tickets"
        assert ticket_path({AppRole.SUPPORT}, ticket_id) == f"/support/tickets/{ticket_id}"
        assert ticket_path({AppRole.CLIENT}, ticket_id) == f"/client/tickets/{ticket_id}"

    def test_ops_link_uses_staff_ticket_page(self):
        ticket_id = uuid4()
        assert ticket_path({AppRole.OPS}, ticket_id) == f"/support/tickets/{ticket_id}"
        assert ticket_path({AppRole.OPS, AppRole.ADMIN}, ticket_id) == "/admin/tickets"

    def test_no_ticket_no_link(self):
        assert ticket_path({AppRole.CLIENT}, None) is None


# =============================================================================
# TEST: STATUS WORKFLOW
# =============================================================================


class TestTransitions:
    def test_client_may_close_or_reopen_only(self):
        assert allowed_transitions({AppRole.CLIENT}, TicketStatus.OPEN) == {TicketStatus.CLOSED}
        assert can_transition({AppRole.CLIENT}, TicketStatus.RESOLVED, TicketStatus.OPEN)
        assert not can_transition({AppRole.CLIENT}, TicketStatus.OPEN, TicketStatus.RESOLVED)

    def test_staff_cannot_resolve_a_closed_ticket_directly(self):
        assert not can_transition({AppRole.SUPPORT}, TicketStatus.CLOSED, TicketStatus.RESOLVED)
        assert can_transition({AppRole.SUPPORT}, TicketStatus.CLOSED, TicketStatus.OPEN)

    def test_same_status_is_always_allowed(self):
        assert can_transition(set(), TicketStatus.OPEN, TicketStatus.OPEN)

    def test_pending_user_has_no_transitions(self):
        assert allowed_transitions(set(), TicketStatus.OPEN) == frozenset()


# =============================================================================
# TEST: IDENTITY
# =============================================================================


class TestIdentity:
    async def test_resolve_client(self, session, client_user, org):
        identity = await IdentityService(session).resolve(client_user.id)
        assert identity.roles == {AppRole.CLIENT}
        assert identity.organization_id == org.id
        assert identity.landing_path == "/client"

    async def test_user_without_roles_is_pending(self, session, pending_user):
        identity = await IdentityService(session).resolve(pending_user.id)
        assert identity.is_pending
        assert identity.landing_path == "/pending"

    async def test_grant_role_is_idempotent(self, session, pending_user):
        service = IdentityService(session)
        await service.grant_role(pending_user.id, AppRole.SUPPORT)
        roles = await service.grant_role(pending_user.id, AppRole.SUPPORT)
        assert roles == {AppRole.SUPPORT}

    async def test_client_belongs_to_one_organization(self, session, client_user, other_org):
        with pytest.raises(MembershipConflictError):
            await IdentityService(session).add_member(other_org.id, client_user.id)

    async def test_add_member_grants_client_role(self, session, org, new_user):
        user = await new_user("new.client@acme.test")
        service = IdentityService(session)
        await service.add_member(org.id, user.id)
        identity = await service.resolve(user.id)
        assert identity.roles == {AppRole.CLIENT}
        assert identity.organization_id == org.id

    async def test_find_user_by_email_is_case_insensitive(self, session, client_user):
        user = await IdentityService(session).find_user_by_email("JANE@Acme.test")
        assert user.id == client_user.id
