"""
Course Allocation Platform
Notification & Scheduler Blueprint.

Provides:
    - Notification ledger reads for the calling recipient (list, unread count)
    - Read-state mutations (single notification, all notifications)
    - Manager-only compliance sweep trigger and job registry view

The caller identity comes from the JWT middleware (g.recipient_id /
g.recipient_type); every ledger query is scoped to it.
"""

from __future__ import annotations

import logging

from flask import Blueprint, current_app, g, jsonify, request

from compliance_engine.core.exceptions import ValidationError
from compliance_engine.middleware.jwt_auth import require_identity, require_manager
from compliance_engine.services.notification import NotificationLedger
from compliance_engine.utils.errors import E, api_error, validation_error_response

logger = logging.getLogger(__name__)

notification_bp = Blueprint("notification_bp", __name__, url_prefix="/api/v1")

_TRUE_VALUES = {"1", "true", "yes", "on"}


@notification_bp.errorhandler(ValidationError)
def _handle_validation_error(exc):
    return validation_error_response(exc)


def _int_arg(name, default):
    raw = request.args.get(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValidationError(f"{name} must be an integer", details={name: raw})


def _get_worker():
    return current_app.extensions.get("compliance_worker")


# ═══════════════════════════════════════════════════════════════════════════
#  NOTIFICATIONS
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/notifications", methods=["GET"])
@require_identity
def list_notifications():
    """List the caller's notifications, newest first, with the unread count."""
    limit = _int_arg("limit", 50)
    offset = _int_arg("offset", 0)
    unread_only = request.args.get("unread_only", "").lower() in _TRUE_VALUES

    page = NotificationLedger.list_notifications(
        g.recipient_id, g.recipient_type,
        limit=limit, offset=offset, unread_only=unread_only,
    )
    return jsonify({
        "notifications": [n.to_dict() for n in page["notifications"]],
        "unread_count": page["unread_count"],
        "limit": limit,
        "offset": offset,
    })


@notification_bp.route("/notifications/unread-count", methods=["GET"])
@require_identity
def unread_count():
    """Get the caller's unread notification count."""
    count = NotificationLedger.unread_count(g.recipient_id, g.recipient_type)
    return jsonify({"unread_count": count})


@notification_bp.route("/notifications/<notification_id>/read", methods=["PUT"])
@require_identity
def mark_read(notification_id):
    """Mark one of the caller's notifications as read."""
    if not NotificationLedger.mark_read(notification_id, g.recipient_id):
        return api_error(E.NOT_FOUND, "Notification not found or already read")
    return jsonify({"success": True})


@notification_bp.route("/notifications/read-all", methods=["PUT"])
@require_identity
def mark_all_read():
    """Mark all of the caller's notifications as read."""
    count = NotificationLedger.mark_all_read(g.recipient_id, g.recipient_type)
    return jsonify({"updated": count})


# ═══════════════════════════════════════════════════════════════════════════
#  SCHEDULER
# ═══════════════════════════════════════════════════════════════════════════

@notification_bp.route("/scheduler/compliance-sweep", methods=["POST"])
@require_manager
def trigger_compliance_sweep():
    """Run one compliance sweep synchronously and return its summary."""
    worker = _get_worker()
    if worker is None:
        return api_error(E.WORKER_UNAVAILABLE, "Compliance worker is not initialized")

    logger.info("Manual compliance sweep requested by manager %s", g.recipient_id)
    result = worker.trigger_now()
    if result["status"] != "success":
        return api_error(E.INTERNAL, result.get("error") or "Compliance sweep failed")
    return jsonify(result)


@notification_bp.route("/scheduler/jobs", methods=["GET"])
@require_manager
def list_jobs():
    """List worker jobs with run history and the worker state."""
    worker = _get_worker()
    if worker is None:
        return api_error(E.WORKER_UNAVAILABLE, "Compliance worker is not initialized")
    return jsonify({"state": worker.state, "items": worker.list_jobs()})
