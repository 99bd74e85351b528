"""Tests for SLA badges and the triage summary counters."""

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from support_portal.models import Ticket, TicketStatus
from support_portal.services.sla import SLALevel, classify_sla, is_overdue, sla_summary

NOW = datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


class TestClassify:
    @pytest.mark.parametrize(
        "offset, level, label",
        [
            (timedelta(hours=-1), SLALevel.BREACHED, "Breached"),
            (timedelta(minutes=90), SLALevel.URGENT, "90m left"),
            (timedelta(minutes=30, seconds=30), SLALevel.URGENT, "31m left"),
            (timedelta(hours=2, minutes=30), SLALevel.WARNING, "3h left"),
            (timedelta(hours=5), SLALevel.WARNING, "5h left"),
            (timedelta(hours=30), SLALevel.INFO, "30h"),
        ],
    )
    def test_levels(self, offset, level, label):
        badge = classify_sla(NOW + offset, TicketStatus.OPEN, NOW)
        assert badge.level == level
        assert badge.label == label

    def test_finished_tickets_have_no_badge(self):
        assert classify_sla(NOW - timedelta(days=1), TicketStatus.RESOLVED, NOW) is None
        assert classify_sla(NOW - timedelta(days=1), TicketStatus.CLOSED, NOW) is None

    def test_no_deadline_no_badge(self):
        assert classify_sla(None, TicketStatus.OPEN, NOW) is None

    def test_naive_timestamps_are_utc(self):
        naive = (NOW + timedelta(hours=1)).replace(tzinfo=None)
        assert classify_sla(naive, TicketStatus.OPEN, NOW).level == SLALevel.URGENT

    def test_is_overdue(self):
        assert is_overdue(NOW - timedelta(seconds=1), NOW)
        assert not is_overdue(None, NOW)


class TestSummary:
    def test_counts(self):
        tickets = [
            Ticket(status=TicketStatus.OPEN, sla_due_at=NOW - timedelta(hours=2)),
            Ticket(
                status=TicketStatus.IN_PROGRESS,
                sla_due_at=NOW + timedelta(hours=1),
                assigned_to_user_id=uuid4(),
            ),
            Ticket(status=TicketStatus.OPEN, sla_due_at=NOW + timedelta(hours=20)),
            # Finished tickets never count as breached
            Ticket(
                status=TicketStatus.CLOSED,
                sla_due_at=NOW - timedelta(days=3),
                assigned_to_user_id=uuid4(),
            ),
        ]
        summary = sla_summary(tickets, NOW)
        assert summary.total == 4
        assert summary.breached == 1
        assert summary.at_risk == 1
        assert summary.unassigned == 2

    def test_empty(self):
        assert sla_summary([], NOW).total == 0
