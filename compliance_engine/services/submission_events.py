"""
Course Allocation Platform
Submission events — called by the CRUD layer after a facilitator creates
or updates a weekly activity tracker.

Creates a ``submission`` notification for the facilitator's manager and
queues an email intent. Never sends mail inline: the request path only
touches the ledger and the queue.
"""

import logging

from flask import current_app

from compliance_engine.services.collaborators import AllocationDirectory
from compliance_engine.services.dispatch_queue import (
    ACTIVITY_LOG_CREATED,
    ACTIVITY_LOG_UPDATED,
    DispatchIntent,
)
from compliance_engine.services.notification import NotificationLedger

logger = logging.getLogger(__name__)


def notify_activity_log(record, *, queue=None, updated=False, allocations=None):
    """
    Notify the manager that ``record`` (an ActivityTracker) was submitted.

    Without an explicit ``queue`` the intent goes to the application's
    shared dispatch queue (``app.extensions["dispatch_queue"]``).

    Raises:
        NotFoundError: allocation, facilitator or manager cannot be resolved.

    Returns:
        The created submission Notification.
    """
    allocations = allocations or AllocationDirectory()
    if queue is None:
        queue = current_app.extensions.get("dispatch_queue")
    allocation = allocations.get_allocation(record.allocation_id)
    facilitator = allocation.facilitator or allocations.get_facilitator(allocation.facilitator_id)
    manager = allocations.manager_for(allocation)
    module_name = allocation.module.name if allocation.module else ""

    verb = "updated" if updated else "submitted"
    notif = NotificationLedger.create(
        recipient_id=manager.id,
        recipient_type="manager",
        type="submission",
        title=f"Activity Log {verb.capitalize()}",
        message=f"{facilitator.name} has {verb} the activity log for {module_name} (week {record.week_number}).",
        related_entity_id=record.id,
        related_entity_type="activity_tracker",
        metadata={
            "allocation_id": allocation.id,
            "week_number": record.week_number,
            "facilitator_name": facilitator.name,
            "module_name": module_name,
        },
    )

    if queue is None:
        logger.warning("No dispatch queue configured; submission %s gets no email", notif.id)
    elif manager.email:
        queue.enqueue(DispatchIntent(
            kind=ACTIVITY_LOG_UPDATED if updated else ACTIVITY_LOG_CREATED,
            recipient_id=manager.id,
            recipient_type="manager",
            allocation_id=allocation.id,
            week_number=record.week_number,
            notification_id=notif.id,
        ))
    logger.info("Activity log %s: allocation %s week %s", verb, allocation.id, record.week_number)
    return notif
