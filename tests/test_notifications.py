"""
Tests for the notification inbox and fan-out.

These tests verify:
1. INBOX: Read state, unread counts and ownership
2. PREFERENCES: Upsert of the single row, unknown switches rejected
3. FAN-OUT: Replies reach the other side; the author is never notified
4. EMAIL: Delivery goes through the email function when configured
"""

from uuid import uuid4

import httpx
import pytest

from support_portal.models import NotificationType, Ticket
from support_portal.services.errors import UpstreamError
from support_portal.services.notifications import (
    EmailSender,
    NotificationNotFoundError,
    NotificationService,
    PreferenceFlags,
)


@pytest.fixture
def notifier(session):
    return NotificationService(session)


@pytest.fixture
async def ticket(session, org, client_user, support_user):
    ticket = Ticket(
        organization_id=org.id,
        created_by_user_id=client_user.id,
        assigned_to_user_id=support_user.id,
        title="Checkout fails",
    )
    session.add(ticket)
    await session.flush()
    return ticket


async def _notify(notifier, user, title="Hello"):
    return await notifier.notify(user.id, NotificationType.TICKET_ASSIGNED, title, "body")


# =============================================================================
# TEST: INBOX
# =============================================================================


class TestInbox:
    async def test_mark_as_read_is_idempotent(self, notifier, client_user):
        notification = await _notify(notifier, client_user)
        await notifier.mark_as_read(client_user.id, notification.id)
        again = await notifier.mark_as_read(client_user.id, notification.id)
        assert again.is_read
        assert await notifier.unread_count(client_user.id) == 0

    async def test_mark_all(self, notifier, client_user, support_user):
        await _notify(notifier, client_user, "one")
        await _notify(notifier, client_user, "two")
        await _notify(notifier, support_user, "other inbox")

        assert await notifier.mark_all_as_read(client_user.id) == 2
        assert await notifier.unread_count(client_user.id) == 0
        assert await notifier.unread_count(support_user.id) == 1

    async def test_cannot_touch_someone_elses_notification(
        self, notifier, client_user, support_user
    ):
        notification = await _notify(notifier, client_user)
        with pytest.raises(NotificationNotFoundError):
            await notifier.mark_as_read(support_user.id, notification.id)
        with pytest.raises(NotificationNotFoundError):
            await notifier.delete(support_user.id, uuid4())

    async def test_delete(self, notifier, client_user):
        notification = await _notify(notifier, client_user)
        await notifier.delete(client_user.id, notification.id)
        assert await notifier.list_for_user(client_user.id) == []


# =============================================================================
# TEST: PREFERENCES
# =============================================================================


class TestPreferences:
    async def test_defaults_are_all_on(self, notifier, client_user):
        assert await notifier.get_preferences(client_user.id) == PreferenceFlags()

    async def test_upsert_keeps_one_row(self, notifier, client_user):
        await notifier.update_preferences(client_user.id, ticket_reply_email=False)
        prefs = await notifier.update_preferences(client_user.id, ticket_assigned_inapp=False)
        assert not prefs.ticket_reply_email
        assert not prefs.ticket_assigned_inapp
        assert prefs.ticket_status_changed_inapp

    async def test_unknown_switch(self, notifier, client_user):
        with pytest.raises(ValueError):
            await notifier.update_preferences(client_user.id, sms=True)

    async def test_disabled_inapp_writes_no_row(self, notifier, client_user):
        await notifier.update_preferences(client_user.id, ticket_assigned_inapp=False)
        assert await _notify(notifier, client_user) is None
        assert await notifier.unread_count(client_user.id) == 0

    async def test_disabling_keeps_existing_rows(self, notifier, client_user):
        await _notify(notifier, client_user)
        await notifier.update_preferences(client_user.id, ticket_assigned_inapp=False)
        assert len(await notifier.list_for_user(client_user.id)) == 1


# =============================================================================
# TEST: FAN-OUT
# =============================================================================


class TestFanOut:
    async def test_staff_reply_reaches_creator(self, notifier, ticket, client_user, support_user):
        created = await notifier.ticket_reply(
            ticket, support_user.id, is_internal=False, author_is_staff=True
        )
        assert [n.user_id for n in created] == [client_user.id]

    async def test_client_reply_reaches_assignee(self, notifier, ticket, client_user, support_user):
        created = await notifier.ticket_reply(
            ticket, client_user.id, is_internal=False, author_is_staff=False
        )
        assert [n.user_id for n in created] == [support_user.id]

    async def test_internal_note_never_reaches_client(
        self, notifier, ticket, admin_user, support_user
    ):
        created = await notifier.ticket_reply(
            ticket, admin_user.id, is_internal=True, author_is_staff=True
        )
        assert [n.user_id for n in created] == [support_user.id]

    async def test_author_is_skipped(self, notifier, ticket, support_user):
        created = await notifier.ticket_reply(
            ticket, support_user.id, is_internal=True, author_is_staff=True
        )
        assert created == []

    async def test_status_change_by_creator_is_silent(self, notifier, ticket, client_user):
        assert (
            await notifier.ticket_status_changed(ticket, "open", "closed", client_user.id) is None
        )


# =============================================================================
# TEST: EMAIL
# =============================================================================


class TestEmailSender:
    async def test_unconfigured_sender_only_logs(self):
        sender = EmailSender(
            httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(500)))
        )
        assert await sender.send("jane@acme.test", "Hi", "Body") is False

    async def test_posts_to_email_function(self, monkeypatch):
        from support_portal.services import notifications

        monkeypatch.setattr(
            notifications.settings, "email_function_url", "https://mail.example.test/send"
        )
        seen = []

        def handler(request):
            seen.append(request)
            return httpx.Response(200, json={"ok": True})

        sender = EmailSender(httpx.AsyncClient(transport=httpx.MockTransport(handler)))
        assert await sender.send("jane@acme.test", "Hi", "Body", link="http://app/x")
        assert seen[0].url == "https://mail.example.test/send"

    async def test_error_status_raises(self, monkeypatch):
        from support_portal.services import notifications

        monkeypatch.setattr(
            notifications.settings, "email_function_url", "https://mail.example.test/send"
        )
        sender = EmailSender(
            httpx.AsyncClient(transport=httpx.MockTransport(lambda r: httpx.Response(502)))
        )
        with pytest.raises(UpstreamError):
            await sender.send("jane@acme.test", "Hi", "Body")
