"""
Course Allocation Platform
Dispatcher — drains the dispatch queue into the mail transport.

Per intent:
    1. resolve allocation, module, facilitator and the recipient's address
    2. render the fixed template for the intent kind
    3. send through the transport, write an EmailLog row
    4. mark the ledger notification delivered, on success only

Failed or unresolvable intents are dropped, never requeued: the in-app
notification already exists, so the recipient still sees it. Intents whose
notification is scheduled for later go back to the tail of the queue.
"""

from __future__ import annotations

import logging
from typing import Any

from compliance_engine.core.exceptions import NotFoundError
from compliance_engine.models import db
from compliance_engine.services.collaborators import AllocationDirectory
from compliance_engine.services.dispatch_queue import INTENT_KINDS, DispatchIntent, DispatchQueue
from compliance_engine.services.email_service import SMTPTransport, record_email, render_template
from compliance_engine.services.notification import NotificationLedger
from compliance_engine.utils.helpers import as_utc, utcnow

logger = logging.getLogger(__name__)

DEFAULT_BATCH_SIZE = 10


class Dispatcher:
    """Consumes dispatch intents and sends the corresponding emails."""

    def __init__(
        self,
        *,
        queue: DispatchQueue,
        transport: SMTPTransport,
        allocations: AllocationDirectory | None = None,
        batch_size: int = DEFAULT_BATCH_SIZE,
    ):
        self.queue = queue
        self.transport = transport
        self.allocations = allocations or AllocationDirectory()
        self.batch_size = batch_size

    def drain(self, batch_size: int | None = None) -> dict[str, Any]:
        """Pop and process up to ``batch_size`` intents."""
        limit = batch_size or self.batch_size
        results = {"processed": 0, "sent": 0, "failed": 0, "dropped": 0, "deferred": 0}
        deferred = set()

        for _ in range(limit):
            intent = self.queue.pop()
            if intent is None:
                break
            if intent.to_json() in deferred:
                # Wrapped around to an intent already deferred this tick
                self.queue.push(intent)
                break
            results["processed"] += 1
            try:
                outcome = self.dispatch(intent)
            except Exception as e:
                db.session.rollback()
                outcome = "dropped"
                logger.exception("Dispatch of %s intent for %s %s failed: %s",
                                 intent.kind, intent.recipient_type, intent.recipient_id, e)
            results[outcome] += 1
            if outcome == "deferred":
                deferred.add(intent.to_json())

        if results["processed"]:
            logger.info("Dispatch drain: %s", results)
        return results

    def dispatch(self, intent: DispatchIntent) -> str:
        """Handle one intent; returns sent / failed / dropped / deferred."""
        if intent.kind not in INTENT_KINDS:
            logger.warning("Unknown dispatch intent kind: %s", intent.kind)
            return "dropped"

        notif = NotificationLedger.get(intent.notification_id) if intent.notification_id else None
        if notif is not None and notif.scheduled_for and as_utc(notif.scheduled_for) > utcnow():
            self.queue.push(intent)
            return "deferred"

        try:
            context, to_email = self._resolve(intent)
        except NotFoundError as e:
            logger.warning("Dropping %s intent: %s", intent.kind, e)
            self._record_undeliverable(intent, str(e))
            return "dropped"

        if not to_email:
            logger.warning("Dropping %s intent: %s %s has no email address",
                           intent.kind, intent.recipient_type, intent.recipient_id)
            self._record_undeliverable(intent, "recipient has no email address")
            return "dropped"

        rendered = render_template(intent.kind, context)
        if rendered is None:
            return "dropped"
        subject, html_body = rendered

        ok = self.transport.send(to_email, subject, html_body)
        record_email(
            to_email=to_email,
            subject=subject,
            template_name=intent.kind,
            status="sent" if ok else "failed",
            notification_id=intent.notification_id,
            error=None if ok else (self.transport.last_error or "transport reported failure"),
        )
        if not ok:
            logger.warning("Email for %s intent to %s failed; intent dropped", intent.kind, to_email)
            return "failed"

        if intent.notification_id:
            NotificationLedger.mark_delivered(intent.notification_id)
        return "sent"

    def _resolve(self, intent: DispatchIntent) -> tuple[dict[str, Any], str | None]:
        """Build the template context and the recipient's email address."""
        allocation = self.allocations.get_allocation(intent.allocation_id)
        facilitator = allocation.facilitator or self.allocations.get_facilitator(allocation.facilitator_id)

        if intent.recipient_type == "manager":
            recipient = self.allocations.get_manager(intent.recipient_id)
        else:
            recipient = self.allocations.get_facilitator(intent.recipient_id)

        context = {
            "facilitator_name": facilitator.name,
            "module_name": allocation.module.name if allocation.module else "",
            "week_number": intent.week_number,
            "allocation_id": allocation.id,
        }
        return context, recipient.email

    @staticmethod
    def _record_undeliverable(intent: DispatchIntent, reason: str) -> None:
        record_email(
            to_email=None,
            subject="",
            template_name=intent.kind,
            status="failed",
            notification_id=intent.notification_id,
            error=reason,
        )
