"""Notification fan-out.

Ticket events (assignment, status change, reply) become rows in the
``notifications`` table for the bell/inbox and, independently, emails sent
through the transactional-email function. Each channel is gated per user and
per event type by ``notification_preferences``; a user without a preferences
row gets everything. Preferences only gate future notifications, existing
rows are never filtered retroactively.
"""

import logging
from dataclasses import asdict, dataclass
from uuid import UUID

import httpx
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.config import get_settings
from ..core.permissions import ticket_path
from ..models import (
    AppRole,
    Notification,
    NotificationPreference,
    NotificationType,
    Ticket,
    TicketStatus,
    User,
    UserRole,
)
from .errors import NotFoundError, UpstreamError

logger = logging.getLogger(__name__)
settings = get_settings()


class NotificationNotFoundError(NotFoundError):
    pass


STATUS_LABELS = {
    TicketStatus.OPEN: "Open",
    TicketStatus.IN_PROGRESS: "In Progress",
    TicketStatus.WAITING_ON_CLIENT: "Waiting on Client",
    TicketStatus.RESOLVED: "Resolved",
    TicketStatus.CLOSED: "Closed",
}


@dataclass
class PreferenceFlags:
    """The six per-user switches, all on by default."""

    ticket_assigned_inapp: bool = True
    ticket_assigned_email: bool = True
    ticket_status_changed_inapp: bool = True
    ticket_status_changed_email: bool = True
    ticket_reply_inapp: bool = True
    ticket_reply_email: bool = True

    def inapp_enabled(self, type: NotificationType | str) -> bool:
        return getattr(self, f"{NotificationType(type).value}_inapp", True)

    def email_enabled(self, type: NotificationType | str) -> bool:
        return getattr(self, f"{NotificationType(type).value}_email", True)

    @classmethod
    def from_row(cls, row: NotificationPreference | None) -> "PreferenceFlags":
        if row is None:
            return cls()
        return cls(**{name: bool(getattr(row, name)) for name in asdict(cls())})


PREFERENCE_FIELDS = tuple(asdict(PreferenceFlags()).keys())


# =============================================================================
# EMAIL
# =============================================================================


class EmailSender:
    """Client for the transactional-email function.

    When no endpoint is configured the email is only logged.
    """

    def __init__(self, http_client: httpx.AsyncClient | None = None):
        self.http_client = http_client

    async def send(
        self,
        to: str,
        subject: str,
        body: str,
        link: str | None = None,
    ) -> bool:
        if not settings.email_enabled:
            logger.info(f"Email (not configured) to={to} subject={subject!r} link={link}")
            return False

        payload = {"to": to, "subject": subject, "body": body, "link": link}
        headers = {"Content-Type": "application/json"}
        if settings.email_api_key:
            headers["Authorization"] = f"Bearer {settings.email_api_key}"

        client = self.http_client or httpx.AsyncClient(timeout=10.0)
        try:
            response = await client.post(
                settings.email_function_url, json=payload, headers=headers
            )
        except httpx.HTTPError as e:
            raise UpstreamError(f"Email function unreachable: {e}") from e
        finally:
            if self.http_client is None:
                await client.aclose()

        if response.status_code >= 400:
            raise UpstreamError(
                f"Email function error: {response.status_code}",
                status_code=response.status_code,
            )
        return True


# =============================================================================
# NOTIFICATION SERVICE
# =============================================================================


class NotificationService:
    """Inbox operations for recipients plus the ticket-event producer."""

    def __init__(self, session: AsyncSession, email_sender: EmailSender | None = None):
        self.session = session
        self.email_sender = email_sender or EmailSender()

    # =========================================================================
    # RECIPIENT OPERATIONS
    # =========================================================================

    async def list_for_user(self, user_id: UUID, limit: int = 50) -> list[Notification]:
        result = await self.session.execute(
            select(Notification)
            .where(Notification.user_id == user_id)
            .order_by(Notification.created_at.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def unread_count(self, user_id: UUID) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
        )
        return result.scalar_one()

    async def _get_owned(self, user_id: UUID, notification_id: UUID) -> Notification:
        notification = await self.session.get(Notification, notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotificationNotFoundError(f"Notification {notification_id} not found")
        return notification

    async def mark_as_read(self, user_id: UUID, notification_id: UUID) -> Notification:
        """Idempotent: marking an already-read notification is not an error."""
        notification = await self._get_owned(user_id, notification_id)
        notification.is_read = True
        await self.session.flush()
        return notification

    async def mark_all_as_read(self, user_id: UUID) -> int:
        result = await self.session.execute(
            update(Notification)
            .where(Notification.user_id == user_id, Notification.is_read.is_(False))
            .values(is_read=True)
            .execution_options(synchronize_session="fetch")
        )
        return result.rowcount or 0

    async def delete(self, user_id: UUID, notification_id: UUID) -> None:
        notification = await self._get_owned(user_id, notification_id)
        await self.session.delete(notification)
        await self.session.flush()

    # =========================================================================
    # PREFERENCES
    # =========================================================================

    async def _preference_row(self, user_id: UUID) -> NotificationPreference | None:
        result = await self.session.execute(
            select(NotificationPreference).where(NotificationPreference.user_id == user_id)
        )
        return result.scalar_one_or_none()

    async def get_preferences(self, user_id: UUID) -> PreferenceFlags:
        return PreferenceFlags.from_row(await self._preference_row(user_id))

    async def update_preferences(self, user_id: UUID, **flags: bool) -> PreferenceFlags:
        """Upsert the user's single preferences row."""
        unknown = set(flags) - set(PREFERENCE_FIELDS)
        if unknown:
            raise ValueError(f"Unknown preference fields: {sorted(unknown)}")

        row = await self._preference_row(user_id)
        if row is None:
            row = NotificationPreference(user_id=user_id, **asdict(PreferenceFlags()))
            self.session.add(row)
        for name, value in flags.items():
            setattr(row, name, bool(value))
        await self.session.flush()
        return PreferenceFlags.from_row(row)

    # =========================================================================
    # PRODUCER
    # =========================================================================

    async def notify(
        self,
        user_id: UUID,
        type: NotificationType,
        title: str,
        body: str,
        ticket_id: UUID | None = None,
    ) -> Notification | None:
        """Create the in-app row and send the email, each if enabled."""
        prefs = await self.get_preferences(user_id)
        notification = None

        if prefs.inapp_enabled(type):
            notification = Notification(
                user_id=user_id,
                type=NotificationType(type).value,
                title=title,
                body=body,
                ticket_id=ticket_id,
            )
            self.session.add(notification)
            await self.session.flush()

        if prefs.email_enabled(type):
            await self._send_email(user_id, title, body, ticket_id)

        return notification

    async def _send_email(
        self, user_id: UUID, title: str, body: str, ticket_id: UUID | None
    ) -> None:
        user = await self.session.get(User, user_id)
        if user is None or not user.email:
            logger.warning(f"No email address for user {user_id}, skipping email")
            return

        roles_result = await self.session.execute(
            select(UserRole.role).where(UserRole.user_id == user_id)
        )
        roles = {AppRole(r) for r in roles_result.scalars().all()}
        path = ticket_path(roles, ticket_id)
        link = f"{settings.app_url}{path}" if path else settings.app_url

        try:
            await self.email_sender.send(to=user.email, subject=title, body=body, link=link)
        except UpstreamError as e:
            # The in-app row is already written; a failed email does not undo it
            logger.error(f"Failed to email notification to {user.email}: {e}")

    async def ticket_assigned(
        self, ticket: Ticket, assignee_id: UUID, actor_id: UUID | None
    ) -> Notification | None:
        if assignee_id == actor_id:
            return None
        return await self.notify(
            user_id=assignee_id,
            type=NotificationType.TICKET_ASSIGNED,
            title="Ticket assigned to you",
            body=f'You have been assigned "{ticket.title}"',
            ticket_id=ticket.id,
        )

    async def ticket_status_changed(
        self,
        ticket: Ticket,
        old_status: TicketStatus,
        new_status: TicketStatus,
        actor_id: UUID | None,
    ) -> Notification | None:
        if ticket.created_by_user_id == actor_id:
            return None
        return await self.notify(
            user_id=ticket.created_by_user_id,
            type=NotificationType.TICKET_STATUS_CHANGED,
            title="Ticket status updated",
            body=(
                f'"{ticket.title}" moved from {STATUS_LABELS[TicketStatus(old_status)]} '
                f"to {STATUS_LABELS[TicketStatus(new_status)]}"
            ),
            ticket_id=ticket.id,
        )

    async def ticket_reply(
        self,
        ticket: Ticket,
        author_id: UUID,
        is_internal: bool,
        author_is_staff: bool,
    ) -> list[Notification]:
        """Fan a reply out to the other side of the conversation.

        Staff replies reach the ticket creator; client replies reach the
        assignee. Internal notes only reach the assignee.
        """
        recipients: list[UUID] = []
        if author_is_staff and not is_internal:
            recipients.append(ticket.created_by_user_id)
        if ticket.assigned_to_user_id and (not author_is_staff or is_internal):
            recipients.append(ticket.assigned_to_user_id)

        created = []
        for recipient in dict.fromkeys(recipients):
            if recipient == author_id:
                continue
            notification = await self.notify(
                user_id=recipient,
                type=NotificationType.TICKET_REPLY,
                title="New reply on your ticket" if author_is_staff and not is_internal
                else "New reply on an assigned ticket",
                body=f'A new message was posted on "{ticket.title}"',
                ticket_id=ticket.id,
            )
            if notification is not None:
                created.append(notification)
        return created
