"""
Course Allocation Platform
Notification ledger model.

Models:
    - Notification: in-app notification record with read and delivery tracking

A notification is immutable once created, except for the two state pairs
(is_read/read_at, is_delivered/delivered_at), each of which moves from
false to true exactly once. The ``before_update`` listener below rejects
anything else at flush time.
"""

import uuid

from sqlalchemy import event, inspect

from compliance_engine.core.exceptions import ValidationError
from compliance_engine.models import db
from compliance_engine.utils.helpers import utcnow


# ── Constants ────────────────────────────────────────────────────────────────

RECIPIENT_TYPES = {"manager", "facilitator"}
NOTIFICATION_TYPES = {"reminder", "alert", "submission", "deadline"}
RELATED_ENTITY_TYPES = {"allocation", "activity_tracker"}

_IMMUTABLE_COLUMNS = (
    "recipient_id", "recipient_type", "type", "title", "message",
    "related_entity_id", "related_entity_type", "scheduled_for", "metadata_",
)
_STATE_PAIRS = (("is_read", "read_at"), ("is_delivered", "delivered_at"))


def _new_id() -> str:
    return str(uuid.uuid4())


class Notification(db.Model):
    """
    In-app notification entity.

    One record per recipient per event. ``related_entity_id`` is a weak
    reference (no FK): the allocation or activity tracker it points at may
    be deleted later.
    """

    __tablename__ = "notifications"
    __table_args__ = (
        db.Index("ix_notifications_recipient", "recipient_id", "recipient_type"),
        db.Index("ix_notifications_related", "related_entity_id", "type"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    recipient_id = db.Column(db.String(36), nullable=False)
    recipient_type = db.Column(db.String(20), nullable=False, comment="manager / facilitator")
    type = db.Column(db.String(20), nullable=False, index=True,
                     comment="reminder / alert / submission / deadline")
    title = db.Column(db.String(300), nullable=False)
    message = db.Column(db.Text, nullable=False)

    # Weak link to source entity
    related_entity_id = db.Column(db.String(36), nullable=True)
    related_entity_type = db.Column(db.String(30), nullable=True,
                                    comment="allocation / activity_tracker")

    # Read tracking
    is_read = db.Column(db.Boolean, default=False, nullable=False, index=True)
    read_at = db.Column(db.DateTime(timezone=True), nullable=True)

    # Delivery tracking (email channel)
    is_delivered = db.Column(db.Boolean, default=False, nullable=False)
    delivered_at = db.Column(db.DateTime(timezone=True), nullable=True)
    scheduled_for = db.Column(db.DateTime(timezone=True), nullable=True, index=True)

    metadata_ = db.Column("metadata", db.JSON, default=dict,
                          comment="Template payload: facilitator_name, module_name, week_number, ...")

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow, index=True)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    @property
    def week_number(self):
        return (self.metadata_ or {}).get("week_number")

    def mark_read(self):
        if not self.is_read:
            self.is_read = True
            self.read_at = utcnow()

    def mark_delivered(self):
        if not self.is_delivered:
            self.is_delivered = True
            self.delivered_at = utcnow()

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_id": self.recipient_id,
            "recipient_type": self.recipient_type,
            "type": self.type,
            "title": self.title,
            "message": self.message,
            "related_entity_id": self.related_entity_id,
            "related_entity_type": self.related_entity_type,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "is_delivered": self.is_delivered,
            "delivered_at": self.delivered_at.isoformat() if self.delivered_at else None,
            "scheduled_for": self.scheduled_for.isoformat() if self.scheduled_for else None,
            "metadata": self.metadata_ or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Notification {self.id}: {self.type} {self.title[:40]}>"


@event.listens_for(Notification, "before_update")
def _guard_immutable_fields(mapper, connection, target):
    """Reject edits to immutable columns and reverts of the state pairs."""
    state = inspect(target)
    for name in _IMMUTABLE_COLUMNS:
        if state.attrs[name].history.has_changes():
            raise ValidationError(
                f"Notification.{name} is immutable",
                details={name: "cannot change after creation"},
            )
    for flag, stamp in _STATE_PAIRS:
        added = state.attrs[flag].history.added
        if not added:
            continue
        if not added[0]:
            raise ValidationError(
                f"Notification.{flag} cannot revert to false",
                details={flag: "monotonic"},
            )
        if getattr(target, stamp) is None:
            raise ValidationError(
                f"Notification.{flag} requires {stamp}",
                details={stamp: "must be set together with " + flag},
            )
