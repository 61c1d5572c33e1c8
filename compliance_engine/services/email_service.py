"""
Course Allocation Platform
Email Service — templates, SMTP transport and the email audit log.

When SMTP is not configured, emails are logged but not sent (dev/test mode)
and the send counts as a success.

Configuration (app config / env vars):
    MAIL_SERVER          SMTP host (default: None → log-only mode)
    MAIL_PORT            SMTP port (default: 587)
    MAIL_USE_TLS         Use STARTTLS (default: true)
    MAIL_USERNAME        SMTP username
    MAIL_PASSWORD        SMTP password
    MAIL_DEFAULT_SENDER  Default from address
    MAIL_TIMEOUT         Socket timeout in seconds (default: 30)
"""

from __future__ import annotations

import html
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Any

from compliance_engine.models import db
from compliance_engine.models.scheduling import EmailLog
from compliance_engine.utils.helpers import utcnow

logger = logging.getLogger(__name__)


# ═══════════════════════════════════════════════════════════════════════════
#  Email Templates (one per dispatch intent kind)
# ═══════════════════════════════════════════════════════════════════════════

_LAYOUT = """
<div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
    <div style="background: {banner_color}; color: white; padding: 16px 24px; border-radius: 8px 8px 0 0;">
        <h2 style="margin: 0; font-size: 18px;">{heading}</h2>
    </div>
    <div style="background: #f8fafc; padding: 24px; border: 1px solid #e2e8f0; border-top: none;">
        {body}
    </div>
    <div style="background: #f1f5f9; padding: 12px 24px; border-radius: 0 0 8px 8px;
                border: 1px solid #e2e8f0; border-top: none; text-align: center;">
        <p style="color: #94a3b8; font-size: 12px; margin: 0;">
            Course Allocation Platform — Automated notification
        </p>
    </div>
</div>
"""

_DETAILS = """
<p><strong>Facilitator:</strong> {facilitator_name}</p>
<p><strong>Module:</strong> {module_name}</p>
<p><strong>Week:</strong> {week_number}</p>
"""

_TEMPLATES: dict[str, dict[str, str]] = {
    "reminder_facilitator": {
        "subject": "Activity Log Reminder — {module_name}, week {week_number}",
        "heading": "Activity Log Reminder",
        "banner_color": "#1e293b",
        "body": (
            "<p>Dear {facilitator_name},</p>"
            "<p>This is a reminder to submit your activity log for:</p>"
            "<p><strong>Module:</strong> {module_name}</p>"
            "<p><strong>Week:</strong> {week_number}</p>"
            "<p>Please submit your activity log as soon as possible.</p>"
        ),
    },
    "alert_manager": {
        "subject": "Activity Log Overdue — {facilitator_name}, week {week_number}",
        "heading": "Activity Log Overdue Alert",
        "banner_color": "#dc2626",
        "body": _DETAILS + "<p>This activity log is overdue. Please follow up with the facilitator.</p>",
    },
    "activity_log_created": {
        "subject": "New Activity Log Submitted — {module_name}, week {week_number}",
        "heading": "New Activity Log Submitted",
        "banner_color": "#1e293b",
        "body": _DETAILS + "<p>Please review the activity log in the system.</p>",
    },
    "activity_log_updated": {
        "subject": "Activity Log Updated — {module_name}, week {week_number}",
        "heading": "Activity Log Updated",
        "banner_color": "#1e293b",
        "body": _DETAILS + "<p>The activity log has been updated. Please review the changes.</p>",
    },
}


class _SafeDict(dict):
    """Dict that returns {key} for missing keys instead of raising."""

    def __missing__(self, key):
        return f"{{{key}}}"


def get_template(template_name: str) -> dict[str, str] | None:
    """Get an email template by name."""
    return _TEMPLATES.get(template_name)


def render_template(template_name: str, context: dict[str, Any]) -> tuple[str, str] | None:
    """
    Render ``(subject, html_body)`` for a template.

    Context values are HTML-escaped in the body. Missing keys render as
    ``{key}`` rather than raising. Returns None for an unknown template.
    """
    template = get_template(template_name)
    if not template:
        logger.warning("Email template not found: %s", template_name)
        return None

    plain = _SafeDict({k: "" if v is None else v for k, v in context.items()})
    escaped = _SafeDict({k: html.escape(str(v)) for k, v in plain.items()})

    subject = template["subject"].format_map(plain)
    body = template["body"].format_map(escaped)
    html_body = _LAYOUT.format_map(_SafeDict(
        banner_color=template["banner_color"],
        heading=template["heading"],
        body=body,
    ))
    return subject, html_body


# ═══════════════════════════════════════════════════════════════════════════
#  Transport
# ═══════════════════════════════════════════════════════════════════════════

class SMTPTransport:
    """
    External mail relay.

    ``send`` returns True on success and False on any relay error; it never
    retries. With no MAIL_SERVER configured it only logs and returns True.
    """

    def __init__(self, *, server=None, port=587, use_tls=True, username=None,
                 password=None, sender=None, timeout=30):
        self.server = server
        self.port = port
        self.use_tls = use_tls
        self.username = username
        self.password = password
        self.sender = sender or (f"noreply@{server}" if server else "noreply@localhost")
        self.timeout = timeout
        self.last_error: str | None = None

    @classmethod
    def from_config(cls, config) -> SMTPTransport:
        return cls(
            server=config.get("MAIL_SERVER"),
            port=config.get("MAIL_PORT", 587),
            use_tls=config.get("MAIL_USE_TLS", True),
            username=config.get("MAIL_USERNAME"),
            password=config.get("MAIL_PASSWORD"),
            sender=config.get("MAIL_DEFAULT_SENDER"),
            timeout=config.get("MAIL_TIMEOUT", 30),
        )

    def is_configured(self) -> bool:
        """Check if SMTP is configured."""
        return bool(self.server)

    def send(self, to_address: str, subject: str, html_body: str) -> bool:
        self.last_error = None
        if not self.is_configured():
            # Dev/test mode: log only
            logger.info("Email (dev mode): to=%s subject='%s'", to_address, subject)
            return True

        msg = MIMEMultipart("alternative")
        msg["Subject"] = subject
        msg["From"] = self.sender
        msg["To"] = to_address
        msg.attach(MIMEText(html_body, "html"))

        try:
            with smtplib.SMTP(self.server, self.port, timeout=self.timeout) as smtp:
                if self.use_tls:
                    smtp.starttls()
                if self.username and self.password:
                    smtp.login(self.username, self.password)
                smtp.send_message(msg)
        except (smtplib.SMTPException, OSError) as exc:
            self.last_error = str(exc)[:1000]
            logger.error("Email failed: to=%s error=%s", to_address, exc)
            return False

        logger.info("Email sent: to=%s subject='%s'", to_address, subject)
        return True


# ═══════════════════════════════════════════════════════════════════════════
#  Audit log
# ═══════════════════════════════════════════════════════════════════════════

def record_email(*, to_email, subject, template_name, status,
                 notification_id=None, error=None) -> EmailLog:
    """Persist one EmailLog row for a dispatch attempt."""
    log = EmailLog(
        recipient_email=to_email,
        subject=(subject or "")[:500],
        template_name=template_name,
        status=status,
        error_message=error,
        notification_id=notification_id,
        sent_at=utcnow() if status == "sent" else None,
    )
    db.session.add(log)
    db.session.commit()
    return log
