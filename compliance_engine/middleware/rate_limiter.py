"""
Rate limiting configuration.

Applies per-blueprint rate limits using Flask-Limiter.
The Limiter instance is created in compliance_engine/__init__.py with no
default limits; this module applies limits per route category.

Usage:
    from compliance_engine.middleware.rate_limiter import init_rate_limits
    init_rate_limits(app, limiter)
"""

import logging

from flask import g, request as flask_request

logger = logging.getLogger(__name__)

NOTIFICATION_LIMIT = "120/minute"   # clients poll the unread count
HEALTH_EXEMPT = ("health_bp",)


def rate_limit_key():
    """Rate limit key: caller's recipient id if authenticated, else remote IP."""
    recipient_id = getattr(g, "recipient_id", None)
    if recipient_id:
        return f"recipient:{recipient_id}"
    return flask_request.remote_addr or "unknown"


def init_rate_limits(app, limiter):
    """
    Apply rate limits to API blueprints.

    Limits (per recipient, falling back to remote IP):
        - Notification / scheduler endpoints: 120/minute
        - Health check:                       exempt

    Rate limiting is disabled in testing mode.
    """
    if app.config.get("TESTING"):
        app.logger.info("Rate limiter disabled (TESTING=True)")
        return

    bp = app.blueprints.get("notification_bp")
    if bp:
        limiter.limit(NOTIFICATION_LIMIT, key_func=rate_limit_key)(bp)

    for bp_name in HEALTH_EXEMPT:
        bp = app.blueprints.get(bp_name)
        if bp:
            limiter.exempt(bp)

    app.logger.info("Rate limiter configured — notifications: %s, health: exempt",
                    NOTIFICATION_LIMIT)
