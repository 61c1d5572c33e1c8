"""
Course Allocation Platform
Notification Ledger.

Single entry point for creating notifications and the only owner of their
read / delivered state transitions. Used by the compliance scanner, the
dispatcher, submission events and the notification blueprint.

State transitions are conditional UPDATEs (``WHERE is_read = false``), so
concurrent mark-read requests and racing sweeps never lose an update and
never move a flag backwards.
"""

import logging

from compliance_engine.core.exceptions import ValidationError
from compliance_engine.models import db
from compliance_engine.models.notification import (
    NOTIFICATION_TYPES,
    RECIPIENT_TYPES,
    RELATED_ENTITY_TYPES,
    Notification,
)
from compliance_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)

MAX_PAGE_SIZE = 100


def _check_recipient(recipient_id, recipient_type):
    errors = {}
    if not recipient_id:
        errors["recipient_id"] = "required"
    if recipient_type not in RECIPIENT_TYPES:
        errors["recipient_type"] = f"must be one of {sorted(RECIPIENT_TYPES)}"
    if errors:
        raise ValidationError("Invalid notification recipient", details=errors)


def _check_paging(limit, offset):
    errors = {}
    if not isinstance(limit, int) or isinstance(limit, bool) or not 1 <= limit <= MAX_PAGE_SIZE:
        errors["limit"] = f"must be an integer between 1 and {MAX_PAGE_SIZE}"
    if not isinstance(offset, int) or isinstance(offset, bool) or offset < 0:
        errors["offset"] = "must be a non-negative integer"
    if errors:
        raise ValidationError("Invalid pagination", details=errors)


class NotificationLedger:
    """Stateless service class for notification ledger operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, recipient_id, recipient_type, type, title, message,
               related_entity_id=None, related_entity_type=None,
               scheduled_for=None, metadata=None):
        """
        Validate and persist a single notification record.

        Raises:
            ValidationError: unknown enum value or missing required field.

        Returns:
            The created Notification instance (already committed).
        """
        _check_recipient(recipient_id, recipient_type)
        errors = {}
        if type not in NOTIFICATION_TYPES:
            errors["type"] = f"must be one of {sorted(NOTIFICATION_TYPES)}"
        if related_entity_type is not None and related_entity_type not in RELATED_ENTITY_TYPES:
            errors["related_entity_type"] = f"must be one of {sorted(RELATED_ENTITY_TYPES)}"
        if not (title or "").strip():
            errors["title"] = "required"
        if not (message or "").strip():
            errors["message"] = "required"
        if errors:
            raise ValidationError("Invalid notification", details=errors)

        notif = Notification(
            recipient_id=str(recipient_id),
            recipient_type=recipient_type,
            type=type,
            title=title.strip(),
            message=message.strip(),
            related_entity_id=str(related_entity_id) if related_entity_id is not None else None,
            related_entity_type=related_entity_type,
            scheduled_for=scheduled_for,
            metadata_=dict(metadata or {}),
        )
        db.session.add(notif)
        db.session.commit()
        logger.info("Notification created: %s '%s' for %s %s",
                    type, notif.title, recipient_type, recipient_id)
        return notif

    # ── Query ─────────────────────────────────────────────────────────────

    @staticmethod
    def find_for_recipient(recipient_id, recipient_type, *, limit=50, offset=0,
                           unread_only=False):
        """Retrieve notifications for a recipient, newest first."""
        _check_recipient(recipient_id, recipient_type)
        _check_paging(limit, offset)

        q = Notification.query.filter_by(recipient_id=str(recipient_id),
                                         recipient_type=recipient_type)
        if unread_only:
            q = q.filter(Notification.is_read.is_(False))
        return (
            q.order_by(Notification.created_at.desc(), Notification.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )

    @staticmethod
    def unread_count(recipient_id, recipient_type):
        """Return count of unread notifications."""
        _check_recipient(recipient_id, recipient_type)
        return Notification.query.filter_by(
            recipient_id=str(recipient_id),
            recipient_type=recipient_type,
            is_read=False,
        ).count()

    @staticmethod
    def list_notifications(recipient_id, recipient_type, *, limit=50, offset=0,
                           unread_only=False):
        """Page of notifications plus the recipient's total unread count.

        The unread count ignores ``limit``/``offset`` and ``unread_only``.
        """
        items = NotificationLedger.find_for_recipient(
            recipient_id, recipient_type,
            limit=limit, offset=offset, unread_only=unread_only,
        )
        return {
            "notifications": items,
            "unread_count": NotificationLedger.unread_count(recipient_id, recipient_type),
        }

    @staticmethod
    def find_outstanding(*, type, recipient_id, recipient_type, related_entity_id, week_number):
        """
        Return the unread notification of ``type`` for this recipient about
        ``related_entity_id`` in ``week_number``, or None.

        This is the idempotency key used before creating reminders and alerts.
        """
        return (
            Notification.query.filter(
                Notification.type == type,
                Notification.recipient_id == str(recipient_id),
                Notification.recipient_type == recipient_type,
                Notification.related_entity_id == str(related_entity_id),
                Notification.is_read.is_(False),
                Notification.metadata_["week_number"].as_integer() == int(week_number),
            )
            .order_by(Notification.created_at.asc())
            .first()
        )

    @staticmethod
    def get(notification_id):
        return db.session.get(Notification, notification_id)

    # ── Actions ───────────────────────────────────────────────────────────

    @staticmethod
    def mark_read(notification_id, recipient_id):
        """
        Mark a single notification as read.

        Returns False without raising when the notification is unknown,
        belongs to someone else, or is already read.
        """
        if not notification_id or not recipient_id:
            return False
        updated = Notification.query.filter(
            Notification.id == str(notification_id),
            Notification.recipient_id == str(recipient_id),
            Notification.is_read.is_(False),
        ).update({"is_read": True, "read_at": utcnow()}, synchronize_session=False)
        db.session.commit()
        if updated:
            db.session.expire_all()
        return updated == 1

    @staticmethod
    def mark_all_read(recipient_id, recipient_type):
        """Mark all unread notifications for a recipient as read."""
        _check_recipient(recipient_id, recipient_type)
        count = Notification.query.filter(
            Notification.recipient_id == str(recipient_id),
            Notification.recipient_type == recipient_type,
            Notification.is_read.is_(False),
        ).update({"is_read": True, "read_at": utcnow()}, synchronize_session=False)
        db.session.commit()
        if count:
            db.session.expire_all()
        logger.info("Marked %d notifications read for %s %s", count, recipient_type, recipient_id)
        return count

    @staticmethod
    def mark_delivered(notification_id):
        """Record successful external delivery. Calling twice is a no-op."""
        updated = Notification.query.filter(
            Notification.id == str(notification_id),
            Notification.is_delivered.is_(False),
        ).update({"is_delivered": True, "delivered_at": utcnow()}, synchronize_session=False)
        db.session.commit()
        if updated:
            db.session.expire_all()
