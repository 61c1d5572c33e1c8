"""
Course Allocation Platform
Compliance Scanner.

One sweep inspects every active allocation against the current reporting
week. For each allocation without an active activity tracker for that
week it makes sure exactly one unread reminder exists for the facilitator
and, past the grace threshold, exactly one unread alert exists for the
facilitator's manager. Newly created notifications addressed to someone
with an email address also get a dispatch intent.

Repeated sweeps in the same week create nothing new: the ledger is checked
for an outstanding (type, recipient, allocation, week) notification before
each create.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Callable

from compliance_engine.models import db
from compliance_engine.services.collaborators import AllocationDirectory, ComplianceRecords
from compliance_engine.services.dispatch_queue import (
    ALERT_MANAGER,
    REMINDER_FACILITATOR,
    DispatchIntent,
    DispatchQueue,
)
from compliance_engine.services.notification import NotificationLedger
from compliance_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)

DEFAULT_GRACE_WEEKS = 2


def utc_today() -> date:
    """Current date in UTC, the zone every stored timestamp uses."""
    return utcnow().date()


def current_week_number(today: date) -> int:
    """1-indexed reporting week of ``today`` counted from January 1st."""
    return (today - date(today.year, 1, 1)).days // 7 + 1


class ComplianceScanner:
    """Detects missing weekly compliance records and emits notifications."""

    def __init__(
        self,
        *,
        queue: DispatchQueue | None = None,
        allocations: AllocationDirectory | None = None,
        records: ComplianceRecords | None = None,
        grace_weeks: int = DEFAULT_GRACE_WEEKS,
        today: Callable[[], date] = utc_today,
    ):
        self.queue = queue
        self.allocations = allocations or AllocationDirectory()
        self.records = records or ComplianceRecords()
        self.grace_weeks = grace_weeks
        self._today = today

    def sweep(self) -> dict[str, Any]:
        """Run one sweep over all active allocations and return a summary."""
        week = current_week_number(self._today())
        results = {
            "week_number": week,
            "allocations_scanned": 0,
            "compliant": 0,
            "reminders_created": 0,
            "alerts_created": 0,
            "skipped_existing": 0,
            "intents_enqueued": 0,
            "errors": 0,
        }

        for allocation in self.allocations.active_allocations():
            results["allocations_scanned"] += 1
            try:
                self._scan_allocation(allocation, week, results)
            except Exception as e:
                db.session.rollback()
                results["errors"] += 1
                logger.warning("Compliance check failed for allocation %s (week %d): %s",
                               allocation.id, week, e)

        logger.info("Compliance sweep: %s", results)
        return results

    # ── Per-allocation ────────────────────────────────────────────────────

    def _scan_allocation(self, allocation, week: int, results: dict) -> None:
        if self.records.has_active_record(allocation.id, week):
            results["compliant"] += 1
            return

        facilitator = allocation.facilitator or self.allocations.get_facilitator(allocation.facilitator_id)
        module_name = allocation.module.name if allocation.module else ""
        metadata = {
            "allocation_id": allocation.id,
            "week_number": week,
            "facilitator_name": facilitator.name,
            "module_name": module_name,
        }

        self._ensure_notification(
            kind=REMINDER_FACILITATOR,
            type="reminder",
            recipient_id=facilitator.id,
            recipient_type="facilitator",
            email=facilitator.email,
            allocation=allocation,
            week=week,
            title="Activity Log Reminder",
            message=(
                f"Please submit your activity log for {module_name or 'your allocation'} "
                f"(week {week}). The deadline is approaching."
            ),
            metadata=metadata,
            counter="reminders_created",
            results=results,
        )

        if week <= self._grace_for(allocation):
            return

        manager = self.allocations.manager_for(allocation)
        self._ensure_notification(
            kind=ALERT_MANAGER,
            type="alert",
            recipient_id=manager.id,
            recipient_type="manager",
            email=manager.email,
            allocation=allocation,
            week=week,
            title="Activity Log Overdue",
            message=(
                f"Facilitator {facilitator.name} has not submitted the activity log "
                f"for {module_name or 'their allocation'} (week {week})."
            ),
            metadata=metadata,
            counter="alerts_created",
            results=results,
        )

    def _grace_for(self, allocation) -> int:
        if allocation.compliance_grace_weeks is not None:
            return allocation.compliance_grace_weeks
        return self.grace_weeks

    def _ensure_notification(self, *, kind, type, recipient_id, recipient_type, email,
                             allocation, week, title, message, metadata, counter, results):
        existing = NotificationLedger.find_outstanding(
            type=type,
            recipient_id=recipient_id,
            recipient_type=recipient_type,
            related_entity_id=allocation.id,
            week_number=week,
        )
        if existing is not None:
            results["skipped_existing"] += 1
            return existing

        notif = NotificationLedger.create(
            recipient_id=recipient_id,
            recipient_type=recipient_type,
            type=type,
            title=title,
            message=message,
            related_entity_id=allocation.id,
            related_entity_type="allocation",
            metadata=metadata,
        )
        results[counter] += 1

        if self.queue is not None and email:
            self.queue.enqueue(DispatchIntent(
                kind=kind,
                recipient_id=recipient_id,
                recipient_type=recipient_type,
                allocation_id=allocation.id,
                week_number=week,
                notification_id=notif.id,
            ))
            results["intents_enqueued"] += 1
        return notif
