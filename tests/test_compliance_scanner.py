"""
Tests — Compliance scanner.

Covers:
    1. Week numbering
    2. Reminder creation and idempotence across repeated sweeps
    3. Escalation to the manager past the grace threshold
    4. Dispatch intents for newly created notifications only
    5. Failure isolation between allocations
"""

from datetime import date, datetime, timezone
from unittest.mock import MagicMock, patch

import pytest

from compliance_engine.models.notification import Notification
from compliance_engine.services.compliance_scanner import (
    ComplianceScanner,
    current_week_number,
    utc_today,
)
from compliance_engine.services.dispatch_queue import ALERT_MANAGER, REMINDER_FACILITATOR
from compliance_engine.services.notification import NotificationLedger

WEEK_1 = date(2025, 1, 1)
WEEK_2 = date(2025, 1, 8)
WEEK_3 = date(2025, 1, 15)
WEEK_5 = date(2025, 1, 29)


def _scanner(queue, today, **kwargs):
    return ComplianceScanner(queue=queue, today=lambda: today, **kwargs)


def _of_type(type):
    return Notification.query.filter_by(type=type).all()


def _drain(queue):
    intents = []
    while (intent := queue.pop()) is not None:
        intents.append(intent)
    return intents


# ═══════════════════════════════════════════════════════════════════════════
#  1. WEEK NUMBERING
# ═══════════════════════════════════════════════════════════════════════════

class TestWeekNumber:
    @pytest.mark.parametrize("today,expected", [
        (date(2025, 1, 1), 1),
        (date(2025, 1, 7), 1),
        (date(2025, 1, 8), 2),
        (date(2025, 1, 29), 5),
        (date(2024, 12, 31), 53),
    ])
    def test_current_week_number(self, today, expected):
        assert current_week_number(today) == expected

    def test_default_clock_reads_utc_date(self):
        # 00:30 UTC on Jan 8 is still Jan 7 west of Greenwich
        instant = datetime(2025, 1, 8, 0, 30, tzinfo=timezone.utc)
        with patch("compliance_engine.services.compliance_scanner.utcnow", return_value=instant):
            assert utc_today() == date(2025, 1, 8)
            assert ComplianceScanner().sweep()["week_number"] == 2


# ═══════════════════════════════════════════════════════════════════════════
#  2. REMINDERS
# ═══════════════════════════════════════════════════════════════════════════

class TestReminders:
    def test_missing_log_creates_reminder(self, queue, make_allocation):
        allocation = make_allocation()
        result = _scanner(queue, WEEK_1).sweep()

        assert result["week_number"] == 1
        assert result["allocations_scanned"] == 1
        assert result["reminders_created"] == 1
        assert result["alerts_created"] == 0

        reminder = _of_type("reminder")[0]
        assert reminder.recipient_id == allocation.facilitator_id
        assert reminder.recipient_type == "facilitator"
        assert reminder.related_entity_id == allocation.id
        assert reminder.related_entity_type == "allocation"
        assert reminder.metadata_["week_number"] == 1
        assert reminder.metadata_["module_name"] == allocation.module.name
        assert reminder.metadata_["facilitator_name"] == allocation.facilitator.name

    def test_submitted_log_is_compliant(self, queue, make_allocation, submit_log):
        allocation = make_allocation()
        submit_log(allocation, 3)
        result = _scanner(queue, WEEK_3).sweep()

        assert result["compliant"] == 1
        assert Notification.query.count() == 0
        assert queue.size() == 0

    def test_inactive_log_is_not_compliant(self, queue, make_allocation, submit_log):
        allocation = make_allocation()
        submit_log(allocation, 1, is_active=False)
        result = _scanner(queue, WEEK_1).sweep()
        assert result["reminders_created"] == 1

    def test_log_for_other_week_is_not_compliant(self, queue, make_allocation, submit_log):
        allocation = make_allocation()
        submit_log(allocation, 1)
        result = _scanner(queue, WEEK_2).sweep()
        assert result["reminders_created"] == 1

    def test_inactive_allocation_is_not_scanned(self, queue, make_allocation):
        make_allocation(is_active=False)
        result = _scanner(queue, WEEK_1).sweep()
        assert result["allocations_scanned"] == 0
        assert Notification.query.count() == 0

    def test_repeated_sweeps_are_idempotent(self, queue, make_allocation):
        make_allocation()
        scanner = _scanner(queue, WEEK_1)
        scanner.sweep()
        second = scanner.sweep()
        third = scanner.sweep()

        assert second["reminders_created"] == 0
        assert second["skipped_existing"] == 1
        assert third["skipped_existing"] == 1
        assert len(_of_type("reminder")) == 1
        assert queue.size() == 1

    def test_read_reminder_is_recreated_next_sweep(self, queue, make_allocation):
        allocation = make_allocation()
        scanner = _scanner(queue, WEEK_1)
        scanner.sweep()
        reminder = _of_type("reminder")[0]
        NotificationLedger.mark_read(reminder.id, allocation.facilitator_id)

        result = scanner.sweep()
        assert result["reminders_created"] == 1
        assert NotificationLedger.unread_count(allocation.facilitator_id, "facilitator") == 1

    def test_new_week_creates_new_reminder(self, queue, make_allocation):
        make_allocation()
        _scanner(queue, WEEK_1).sweep()
        _scanner(queue, WEEK_2).sweep()
        weeks = sorted(n.week_number for n in _of_type("reminder"))
        assert weeks == [1, 2]


# ═══════════════════════════════════════════════════════════════════════════
#  3. ESCALATION
# ═══════════════════════════════════════════════════════════════════════════

class TestEscalation:
    def test_no_alert_within_grace(self, queue, make_allocation):
        make_allocation()
        result = _scanner(queue, WEEK_2).sweep()
        assert result["alerts_created"] == 0
        assert _of_type("alert") == []

    def test_alert_past_grace(self, queue, make_allocation):
        allocation = make_allocation()
        result = _scanner(queue, WEEK_3).sweep()

        assert result["reminders_created"] == 1
        assert result["alerts_created"] == 1
        alert = _of_type("alert")[0]
        assert alert.recipient_type == "manager"
        assert alert.recipient_id == allocation.facilitator.manager_id
        assert alert.related_entity_id == allocation.id
        assert alert.week_number == 3

    def test_allocation_grace_overrides_default(self, queue, make_allocation):
        make_allocation(grace_weeks=5)
        strict = make_allocation(grace_weeks=0)
        result = _scanner(queue, WEEK_3).sweep()

        assert result["alerts_created"] == 1
        assert _of_type("alert")[0].related_entity_id == strict.id

    def test_configured_grace_weeks(self, queue, make_allocation):
        make_allocation()
        result = _scanner(queue, WEEK_3, grace_weeks=3).sweep()
        assert result["alerts_created"] == 0

    def test_week_five_scenario(self, queue, make_allocation, submit_log):
        compliant = make_allocation()
        missing = make_allocation()
        submit_log(compliant, 5)
        scanner = _scanner(queue, WEEK_5)

        first = scanner.sweep()
        assert first["compliant"] == 1
        assert first["reminders_created"] == 1
        assert first["alerts_created"] == 1

        second = scanner.sweep()
        assert second["reminders_created"] == 0
        assert second["alerts_created"] == 0
        assert second["skipped_existing"] == 2

        assert NotificationLedger.unread_count(missing.facilitator_id, "facilitator") == 1
        assert NotificationLedger.unread_count(missing.facilitator.manager_id, "manager") == 1
        assert NotificationLedger.unread_count(compliant.facilitator_id, "facilitator") == 0


# ═══════════════════════════════════════════════════════════════════════════
#  4. DISPATCH INTENTS
# ═══════════════════════════════════════════════════════════════════════════

class TestIntents:
    def test_intents_carry_notification_ids(self, queue, make_allocation):
        allocation = make_allocation()
        result = _scanner(queue, WEEK_3).sweep()
        assert result["intents_enqueued"] == 2

        intents = {i.kind: i for i in _drain(queue)}
        reminder = _of_type("reminder")[0]
        alert = _of_type("alert")[0]
        assert intents[REMINDER_FACILITATOR].notification_id == reminder.id
        assert intents[REMINDER_FACILITATOR].recipient_id == allocation.facilitator_id
        assert intents[ALERT_MANAGER].notification_id == alert.id
        assert intents[ALERT_MANAGER].week_number == 3
        assert intents[ALERT_MANAGER].allocation_id == allocation.id

    def test_no_intent_without_email(self, queue, make_allocation):
        make_allocation(facilitator_email=None, manager_email=None)
        result = _scanner(queue, WEEK_3).sweep()
        assert result["reminders_created"] == 1
        assert result["alerts_created"] == 1
        assert result["intents_enqueued"] == 0
        assert queue.size() == 0

    def test_sweep_without_queue_still_records(self, make_allocation):
        make_allocation()
        result = ComplianceScanner(today=lambda: WEEK_1).sweep()
        assert result["reminders_created"] == 1
        assert result["intents_enqueued"] == 0


# ═══════════════════════════════════════════════════════════════════════════
#  5. FAILURE ISOLATION
# ═══════════════════════════════════════════════════════════════════════════

class TestFailureIsolation:
    def test_missing_manager_skips_only_that_allocation(self, queue, make_allocation):
        orphan = make_allocation(with_manager=False)
        healthy = make_allocation()
        result = _scanner(queue, WEEK_3).sweep()

        assert result["allocations_scanned"] == 2
        assert result["errors"] == 1
        assert result["alerts_created"] == 1
        assert _of_type("alert")[0].related_entity_id == healthy.id
        # The orphan's reminder was written before escalation failed
        reminders = {n.related_entity_id for n in _of_type("reminder")}
        assert reminders == {orphan.id, healthy.id}

    def test_collaborator_exception_is_contained(self, queue, make_allocation):
        make_allocation()
        make_allocation()
        records = MagicMock()
        records.has_active_record.side_effect = [RuntimeError("db hiccup"), False]

        result = _scanner(queue, WEEK_1, records=records).sweep()
        assert result["errors"] == 1
        assert result["reminders_created"] == 1
