"""
Tests for the Ticket Engine.

These tests verify:
1. CREATE: Tickets open in the "open" state inside the caller's organization
2. WORKFLOW: Status changes follow the per-role allow-list
3. BULK: Exactly the selected tickets change, all or nothing
4. THREADS: Internal notes stay on the staff side
5. SURVEYS: One rating per finished ticket
"""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest
from sqlalchemy import select

from support_portal.models import (
    AppRole,
    Notification,
    Ticket,
    TicketPriority,
    TicketStatus,
)
from support_portal.services.errors import PermissionDeniedError, ValidationError
from support_portal.services.notifications import NotificationService
from support_portal.services.tickets import (
    UNASSIGNED,
    CreateTicketInput,
    InvalidAssigneeError,
    InvalidTransitionError,
    SortOrder,
    SurveyError,
    TicketEngine,
    TicketFilters,
    TicketNotFoundError,
    UpdateTicketInput,
    client_status_label,
    search_tickets,
    sort_tickets,
)

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


# =============================================================================
# FIXTURES
# =============================================================================


@pytest.fixture
def engine_svc(session):
    return TicketEngine(session, notifier=NotificationService(session))


@pytest.fixture
async def ticket(engine_svc, org, client_user):
    return await engine_svc.create_ticket(
        CreateTicketInput(title="Mobile menu broken", priority=TicketPriority.HIGH),
        organization_id=org.id,
        created_by=client_user.id,
    )


async def notifications_for(session, user):
    result = await session.execute(select(Notification).where(Notification.user_id == user.id))
    return list(result.scalars().all())


# =============================================================================
# TEST: CREATE
# =============================================================================


class TestCreateTicket:
    async def test_new_ticket_is_open(self, ticket, org, client_user):
        assert ticket.status == TicketStatus.OPEN
        assert ticket.organization_id == org.id
        assert ticket.created_by_user_id == client_user.id
        assert ticket.resolved_at is None

    async def test_read_after_write(self, engine_svc, org, client_user):
        created = await engine_svc.create_ticket(
            CreateTicketInput(title="Broken form", description="Submit does nothing"),
            org.id,
            client_user.id,
        )
        fetched = await engine_svc.get_ticket(created.id)
        assert (fetched.title, fetched.description) == ("Broken form", "Submit does nothing")

    async def test_title_is_required(self, engine_svc, org, client_user):
        with pytest.raises(ValidationError):
            await engine_svc.create_ticket(CreateTicketInput(title="   "), org.id, client_user.id)

    async def test_assignee_must_be_support_or_admin(self, engine_svc, org, client_user, ops_user):
        with pytest.raises(InvalidAssigneeError):
            await engine_svc.create_ticket(
                CreateTicketInput(title="Help", assigned_to_user_id=ops_user.id),
                org.id,
                client_user.id,
            )

    async def test_creating_assigned_ticket_notifies_assignee(
        self, session, engine_svc, org, client_user, support_user
    ):
        await engine_svc.create_ticket(
            CreateTicketInput(title="Help", assigned_to_user_id=support_user.id),
            org.id,
            client_user.id,
        )
        inbox = await notifications_for(session, support_user)
        assert [n.type for n in inbox] == ["ticket_assigned"]

    async def test_unknown_ticket(self, engine_svc):
        with pytest.raises(TicketNotFoundError):
            await engine_svc.get_ticket(uuid4())


# =============================================================================
# TEST: VISIBILITY
# =============================================================================


class TestVisibility:
    async def test_client_cannot_see_other_tenant(self, engine_svc, ticket, other_org):
        with pytest.raises(TicketNotFoundError):
            await engine_svc.get_visible_ticket(ticket.id, {AppRole.CLIENT}, other_org.id)

    async def test_staff_sees_every_tenant(self, engine_svc, ticket):
        found = await engine_svc.get_visible_ticket(ticket.id, {AppRole.SUPPORT}, None)
        assert found.id == ticket.id


# =============================================================================
# TEST: STATUS WORKFLOW
# =============================================================================


class TestChangeStatus:
    async def test_staff_resolves_and_stamps_resolved_at(self, engine_svc, ticket, support_user):
        updated = await engine_svc.change_status(
            ticket.id, TicketStatus.RESOLVED, support_user.id, {AppRole.SUPPORT}
        )
        assert updated.status == TicketStatus.RESOLVED
        assert updated.resolved_at is not None

    async def test_reopening_clears_resolved_at(self, engine_svc, ticket, support_user):
        await engine_svc.change_status(
            ticket.id, TicketStatus.CLOSED, support_user.id, {AppRole.SUPPORT}
        )
        reopened = await engine_svc.change_status(
            ticket.id, TicketStatus.OPEN, support_user.id, {AppRole.SUPPORT}
        )
        assert reopened.resolved_at is None

    async def test_client_cannot_resolve(self, engine_svc, ticket, client_user):
        with pytest.raises(InvalidTransitionError) as exc:
            await engine_svc.change_status(
                ticket.id, TicketStatus.RESOLVED, client_user.id, {AppRole.CLIENT}
            )
        assert exc.value.current == TicketStatus.OPEN
        assert exc.value.target == TicketStatus.RESOLVED

    async def test_client_can_close_own_ticket(self, engine_svc, ticket, client_user):
        closed = await engine_svc.change_status(
            ticket.id, TicketStatus.CLOSED, client_user.id, {AppRole.CLIENT}
        )
        assert closed.status == TicketStatus.CLOSED

    async def test_status_change_notifies_creator(
        self, session, engine_svc, ticket, client_user, support_user
    ):
        await engine_svc.change_status(
            ticket.id, TicketStatus.IN_PROGRESS, support_user.id, {AppRole.SUPPORT}
        )
        inbox = await notifications_for(session, client_user)
        assert len(inbox) == 1
        assert "In Progress" in inbox[0].body

    async def test_creator_is_not_notified_of_own_change(
        self, session, engine_svc, ticket, client_user
    ):
        await engine_svc.change_status(
            ticket.id, TicketStatus.CLOSED, client_user.id, {AppRole.CLIENT}
        )
        assert await notifications_for(session, client_user) == []

    async def test_available_transitions_are_ordered(self, engine_svc, ticket):
        assert engine_svc.available_transitions(ticket, {AppRole.CLIENT}) == [TicketStatus.CLOSED]

    def test_client_labels_collapse_statuses(self):
        assert client_status_label(TicketStatus.IN_PROGRESS) == "Open"
        assert client_status_label(TicketStatus.RESOLVED) == "Closed"


# =============================================================================
# TEST: ASSIGNMENT & BULK
# =============================================================================


class TestAssignment:
    async def test_assign_and_unassign(self, engine_svc, ticket, support_user, admin_user):
        assigned = await engine_svc.assign(ticket.id, support_user.id, admin_user.id)
        assert assigned.assigned_to_user_id == support_user.id
        unassigned = await engine_svc.assign(ticket.id, None, admin_user.id)
        assert unassigned.assigned_to_user_id is None

    async def test_self_assignment_is_silent(self, session, engine_svc, ticket, support_user):
        await engine_svc.assign(ticket.id, support_user.id, support_user.id)
        assert await notifications_for(session, support_user) == []

    async def test_assignable_users_are_support_and_admin(
        self, engine_svc, support_user, admin_user, ops_user, client_user
    ):
        users = await engine_svc.assignable_users()
        assert {u.id for u in users} == {support_user.id, admin_user.id}


class TestBulkUpdate:
    async def _three(self, engine_svc, org, client_user):
        return [
            await engine_svc.create_ticket(CreateTicketInput(title=f"T{i}"), org.id, client_user.id)
            for i in range(3)
        ]

    async def test_only_selected_tickets_change(
        self, session, engine_svc, org, client_user, support_user
    ):
        first, second, third = await self._three(engine_svc, org, client_user)

        result = await engine_svc.bulk_update(
            [first.id, second.id],
            support_user.id,
            {AppRole.SUPPORT},
            status=TicketStatus.IN_PROGRESS,
            assigned_to_user_id=support_user.id,
        )

        assert result.updated == 2
        for t in (first, second, third):
            await session.refresh(t)
        assert first.status == second.status == TicketStatus.IN_PROGRESS
        assert first.assigned_to_user_id == support_user.id
        assert third.status == TicketStatus.OPEN
        assert third.assigned_to_user_id is None

    async def test_one_illegal_transition_fails_the_batch(
        self, session, engine_svc, org, client_user, support_user
    ):
        first, second, _ = await self._three(engine_svc, org, client_user)
        await engine_svc.change_status(
            second.id, TicketStatus.CLOSED, support_user.id, {AppRole.SUPPORT}
        )

        with pytest.raises(InvalidTransitionError):
            await engine_svc.bulk_update(
                [first.id, second.id],
                support_user.id,
                {AppRole.SUPPORT},
                status=TicketStatus.RESOLVED,
            )
        await session.refresh(first)
        assert first.status == TicketStatus.OPEN

    async def test_empty_selection_is_a_no_op(self, engine_svc, support_user):
        result = await engine_svc.bulk_update(
            [], support_user.id, {AppRole.SUPPORT}, status=TicketStatus.CLOSED
        )
        assert result.updated == 0

    async def test_nothing_to_update(self, engine_svc, ticket, support_user):
        with pytest.raises(ValidationError):
            await engine_svc.bulk_update([ticket.id], support_user.id, {AppRole.SUPPORT})

    async def test_missing_ticket_fails(self, engine_svc, ticket, support_user):
        with pytest.raises(TicketNotFoundError):
            await engine_svc.bulk_update(
                [ticket.id, uuid4()], support_user.id, {AppRole.SUPPORT}, unassign=True
            )


# =============================================================================
# TEST: LISTING, SEARCH & SORT
# =============================================================================


class TestListing:
    async def test_search_matches_title_case_insensitively(
        self, engine_svc, org, client_user
    ):
        for title in ("Mobile menu broken", "Fix MOBILE layout", "Invoice question"):
            await engine_svc.create_ticket(CreateTicketInput(title=title), org.id, client_user.id)

        found = await engine_svc.list_tickets(TicketFilters(search="mobile"))
        assert sorted(t.title for t in found) == ["Fix MOBILE layout", "Mobile menu broken"]

    async def test_filters_by_org_and_unassigned(
        self, engine_svc, org, other_org, client_user, other_client, support_user
    ):
        await engine_svc.create_ticket(CreateTicketInput(title="Ours"), org.id, client_user.id)
        await engine_svc.create_ticket(
            CreateTicketInput(title="Assigned", assigned_to_user_id=support_user.id),
            org.id,
            client_user.id,
        )
        await engine_svc.create_ticket(
            CreateTicketInput(title="Theirs"), other_org.id, other_client.id
        )

        found = await engine_svc.list_tickets(
            TicketFilters(organization_id=org.id, assignee=UNASSIGNED)
        )
        assert [t.title for t in found] == ["Ours"]

    async def test_count_open_ignores_finished(self, engine_svc, ticket, org, support_user):
        assert await engine_svc.count_open(org.id) == 1
        await engine_svc.change_status(
            ticket.id, TicketStatus.RESOLVED, support_user.id, {AppRole.SUPPORT}
        )
        assert await engine_svc.count_open(org.id) == 0

    def test_search_helper_matches_substring(self):
        tickets = [
            Ticket(title="Homepage not loading on mobile Safari"),
            Ticket(title="Email campaign setup"),
        ]
        assert search_tickets(tickets, "mobile") == [tickets[0]]

    def test_search_helper_blank_query_returns_all(self):
        tickets = [Ticket(title="a"), Ticket(title="b")]
        assert search_tickets(tickets, "  ") == tickets

    def test_due_order_puts_undated_then_overdue_first(self):
        undated = Ticket(title="undated", created_at=NOW)
        overdue = Ticket(title="overdue", created_at=NOW, sla_due_at=NOW - timedelta(hours=1))
        soon = Ticket(title="soon", created_at=NOW, sla_due_at=NOW + timedelta(hours=1))
        later = Ticket(title="later", created_at=NOW, sla_due_at=NOW + timedelta(days=1))

        ordered = sort_tickets([later, soon, overdue, undated], SortOrder.DUE_SOONEST, NOW)
        assert [t.title for t in ordered] == ["undated", "overdue", "soon", "later"]

    def test_newest_first(self):
        old = Ticket(title="old", created_at=NOW - timedelta(days=2))
        new = Ticket(title="new", created_at=NOW)
        assert [t.title for t in sort_tickets([old, new])] == ["new", "old"]

    async def test_update_can_clear_deadline(self, engine_svc, ticket):
        await engine_svc.update_ticket(ticket.id, UpdateTicketInput(sla_due_at=NOW))
        updated = await engine_svc.update_ticket(ticket.id, UpdateTicketInput(clear_sla_due_at=True))
        assert updated.sla_due_at is None


# =============================================================================
# TEST: REPLY THREADS
# =============================================================================


class TestMessages:
    async def test_internal_notes_hidden_from_client_view(
        self, engine_svc, ticket, client_user, support_user
    ):
        await engine_svc.add_message(ticket.id, client_user.id, "It is broken", {AppRole.CLIENT})
        await engine_svc.add_message(
            ticket.id, support_user.id, "Probably CSS", {AppRole.SUPPORT}, is_internal=True
        )

        public = await engine_svc.list_messages(ticket.id)
        everything = await engine_svc.list_messages(ticket.id, include_internal=True)
        assert [m.message for m in public] == ["It is broken"]
        assert len(everything) == 2

    async def test_client_cannot_post_internal_note(self, engine_svc, ticket, client_user):
        with pytest.raises(PermissionDeniedError):
            await engine_svc.add_message(
                ticket.id, client_user.id, "secret", {AppRole.CLIENT}, is_internal=True
            )

    async def test_reply_leaves_status_unchanged(self, engine_svc, ticket, client_user, support_user):
        await engine_svc.change_status(
            ticket.id, TicketStatus.WAITING_ON_CLIENT, support_user.id, {AppRole.SUPPORT}
        )
        await engine_svc.add_message(ticket.id, client_user.id, "Here you go", {AppRole.CLIENT})
        assert ticket.status == TicketStatus.WAITING_ON_CLIENT

    async def test_empty_message_rejected(self, engine_svc, ticket, client_user):
        with pytest.raises(ValidationError):
            await engine_svc.add_message(ticket.id, client_user.id, "  ", {AppRole.CLIENT})


# =============================================================================
# TEST: SATISFACTION SURVEYS
# =============================================================================


class TestSurveys:
    async def test_only_finished_tickets_can_be_rated(self, engine_svc, ticket, client_user, org):
        with pytest.raises(SurveyError):
            await engine_svc.submit_survey(ticket.id, client_user.id, org.id, 5)

    async def test_rate_once(self, engine_svc, ticket, client_user, support_user, org):
        await engine_svc.change_status(
            ticket.id, TicketStatus.RESOLVED, support_user.id, {AppRole.SUPPORT}
        )
        assert [t.id for t in await engine_svc.pending_surveys(client_user.id, org.id)] == [
            ticket.id
        ]

        survey = await engine_svc.submit_survey(ticket.id, client_user.id, org.id, 4, "Quick fix")
        assert survey.rating == 4
        assert await engine_svc.pending_surveys(client_user.id, org.id) == []

        with pytest.raises(SurveyError):
            await engine_svc.submit_survey(ticket.id, client_user.id, org.id, 5)

    async def test_rating_range(self, engine_svc, ticket, client_user, org):
        with pytest.raises(ValidationError):
            await engine_svc.submit_survey(ticket.id, client_user.id, org.id, 6)
