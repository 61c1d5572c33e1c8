"""
Course Allocation Platform
Allocation domain models consumed read-only by the compliance engine.

Models:
    - Manager: academic manager who owns a group of facilitators
    - Facilitator: teaches allocated modules, reports to a manager
    - Module: course module being taught
    - CourseAllocation: facilitator ↔ module assignment for a trimester
    - ActivityTracker: weekly compliance record filed against an allocation

The CRUD layer owns these tables; only the columns the engine reads are
declared here.
"""

import uuid

from compliance_engine.models import db
from compliance_engine.utils.helpers import utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class Manager(db.Model):
    __tablename__ = "managers"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    is_active = db.Column(db.Boolean, default=True)

    facilitators = db.relationship("Facilitator", back_populates="manager", lazy="select")

    def __repr__(self):
        return f"<Manager {self.id}: {self.name}>"


class Facilitator(db.Model):
    __tablename__ = "facilitators"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    name = db.Column(db.String(150), nullable=False)
    email = db.Column(db.String(255), nullable=True, unique=True)
    manager_id = db.Column(db.String(36), db.ForeignKey("managers.id", ondelete="SET NULL"),
                           nullable=True, index=True)
    is_active = db.Column(db.Boolean, default=True)

    manager = db.relationship("Manager", back_populates="facilitators")

    def __repr__(self):
        return f"<Facilitator {self.id}: {self.name}>"


class Module(db.Model):
    __tablename__ = "modules"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    code = db.Column(db.String(30), nullable=False, unique=True)
    name = db.Column(db.String(200), nullable=False)

    def __repr__(self):
        return f"<Module {self.code}>"


class CourseAllocation(db.Model):
    """
    Assignment of a facilitator to teach a module in a trimester.

    ``compliance_grace_weeks`` overrides the process-wide
    COMPLIANCE_GRACE_WEEKS setting for escalation to the manager.
    """

    __tablename__ = "course_allocations"

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    module_id = db.Column(db.String(36), db.ForeignKey("modules.id"), nullable=False, index=True)
    facilitator_id = db.Column(db.String(36), db.ForeignKey("facilitators.id"),
                               nullable=False, index=True)
    trimester = db.Column(db.Integer, nullable=False, default=1)
    year = db.Column(db.Integer, nullable=False)
    is_active = db.Column(db.Boolean, default=True, index=True)
    compliance_grace_weeks = db.Column(db.Integer, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    module = db.relationship("Module")
    facilitator = db.relationship("Facilitator")

    def __repr__(self):
        return f"<CourseAllocation {self.id} T{self.trimester}/{self.year}>"


class ActivityTracker(db.Model):
    """Weekly compliance record: one per (allocation, week)."""

    __tablename__ = "activity_trackers"
    __table_args__ = (
        db.UniqueConstraint("allocation_id", "week_number", name="uq_activity_tracker_week"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_new_id)
    allocation_id = db.Column(db.String(36), db.ForeignKey("course_allocations.id", ondelete="CASCADE"),
                              nullable=False, index=True)
    week_number = db.Column(db.Integer, nullable=False)
    formative_one_grading = db.Column(db.String(20), default="Not Started")
    formative_two_grading = db.Column(db.String(20), default="Not Started")
    summative_grading = db.Column(db.String(20), default="Not Started")
    course_moderation = db.Column(db.String(20), default="Not Started")
    intranet_sync = db.Column(db.String(20), default="Not Started")
    grade_book_status = db.Column(db.String(20), default="Not Started")
    notes = db.Column(db.Text, nullable=True)
    submitted_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    is_active = db.Column(db.Boolean, default=True)

    allocation = db.relationship("CourseAllocation")

    def __repr__(self):
        return f"<ActivityTracker {self.allocation_id} week {self.week_number}>"
