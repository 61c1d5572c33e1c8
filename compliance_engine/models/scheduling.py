"""
Course Allocation Platform
Worker scheduling & delivery models.

Models:
    - ScheduledJob: persisted registry of worker jobs (interval + run history)
    - EmailLog: outbound email audit trail, one row per dispatch attempt
    - DispatchQueueEntry: rows backing the database dispatch queue
"""

from compliance_engine.models import db
from compliance_engine.utils.helpers import utcnow


class ScheduledJob(db.Model):
    """
    Registry of background worker jobs.

    Tracks interval configuration, last run time, and run history.
    """

    __tablename__ = "scheduled_jobs"

    id = db.Column(db.Integer, primary_key=True)
    job_name = db.Column(db.String(100), unique=True, nullable=False,
                         comment="compliance_sweep / dispatch_drain")
    description = db.Column(db.String(500), default="")
    interval_seconds = db.Column(db.Integer, nullable=False, default=300)

    # Execution tracking
    last_run_at = db.Column(db.DateTime(timezone=True), nullable=True)
    last_run_status = db.Column(db.String(20), nullable=True,
                                comment="success, failed, skipped")
    last_run_duration_ms = db.Column(db.Integer, nullable=True)
    last_run_result = db.Column(db.JSON, nullable=True,
                                comment="Summary of last execution")
    run_count = db.Column(db.Integer, default=0)
    error_count = db.Column(db.Integer, default=0)
    last_error = db.Column(db.Text, nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=utcnow, onupdate=utcnow)

    def record_run(self, *, status="success", duration_ms=0, result=None, error=None):
        """Record a job execution."""
        self.last_run_at = utcnow()
        self.last_run_status = status
        self.last_run_duration_ms = duration_ms
        self.last_run_result = result
        self.run_count = (self.run_count or 0) + 1
        if status == "failed":
            self.error_count = (self.error_count or 0) + 1
            self.last_error = str(error) if error else None

    def to_dict(self):
        return {
            "id": self.id,
            "job_name": self.job_name,
            "description": self.description,
            "interval_seconds": self.interval_seconds,
            "last_run_at": self.last_run_at.isoformat() if self.last_run_at else None,
            "last_run_status": self.last_run_status,
            "last_run_duration_ms": self.last_run_duration_ms,
            "last_run_result": self.last_run_result,
            "run_count": self.run_count,
            "error_count": self.error_count,
            "last_error": self.last_error,
        }

    def __repr__(self):
        return f"<ScheduledJob {self.job_name} every {self.interval_seconds}s>"


class EmailLog(db.Model):
    """
    Outbound email audit log.

    Every dispatch attempt is logged here, successful or not.
    """

    __tablename__ = "email_logs"

    id = db.Column(db.Integer, primary_key=True)
    recipient_email = db.Column(db.String(255), nullable=True, index=True)
    subject = db.Column(db.String(500), nullable=False, default="")
    template_name = db.Column(db.String(100), nullable=True, comment="Dispatch intent kind")
    status = db.Column(db.String(20), nullable=False, comment="sent, failed")
    error_message = db.Column(db.Text, nullable=True)
    notification_id = db.Column(db.String(36), nullable=True, index=True,
                                comment="Related notification ID if applicable")

    sent_at = db.Column(db.DateTime(timezone=True), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "recipient_email": self.recipient_email,
            "subject": self.subject,
            "template_name": self.template_name,
            "status": self.status,
            "error_message": self.error_message,
            "notification_id": self.notification_id,
            "sent_at": self.sent_at.isoformat() if self.sent_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<EmailLog {self.id}: {self.subject[:40]} → {self.recipient_email}>"


class DispatchQueueEntry(db.Model):
    """One pending dispatch intent, stored as its JSON envelope."""

    __tablename__ = "dispatch_queue"

    id = db.Column(db.Integer, primary_key=True)
    payload = db.Column(db.Text, nullable=False)
    enqueued_at = db.Column(db.DateTime(timezone=True), default=utcnow)

    def __repr__(self):
        return f"<DispatchQueueEntry {self.id}>"
