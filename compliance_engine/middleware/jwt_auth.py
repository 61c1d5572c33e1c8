"""
JWT Auth Middleware — parses the bearer token and sets the caller identity.

    g.recipient_id    ← "sub" claim
    g.recipient_type  ← "role" claim (manager / facilitator)

Missing, expired or invalid tokens leave both as None; the notification
blueprint answers 401 for routes that need an identity. Authorization
beyond "who is calling" belongs to the auth layer, except the ownership
check the ledger performs on mark-read.
"""

import logging
from functools import wraps

import jwt as pyjwt
from flask import g, request

from compliance_engine.models.notification import RECIPIENT_TYPES
from compliance_engine.services.jwt_service import decode_access_token
from compliance_engine.utils.errors import E, api_error

logger = logging.getLogger(__name__)

# Paths that skip JWT auth entirely
JWT_SKIP_PREFIXES = (
    "/api/v1/health",
)


def init_jwt_middleware(app):
    """Register JWT middleware as a before_request hook."""

    @app.before_request
    def _jwt_auth():
        g.recipient_id = None
        g.recipient_type = None

        path = request.path
        if not path.startswith("/api/v1/"):
            return
        for prefix in JWT_SKIP_PREFIXES:
            if path.startswith(prefix):
                return

        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            return

        token = auth_header[7:]  # Strip "Bearer "
        try:
            payload = decode_access_token(token)
        except pyjwt.ExpiredSignatureError:
            logger.debug("Expired access token on %s", path)
            return
        except pyjwt.InvalidTokenError as exc:
            logger.debug("Invalid access token on %s: %s", path, exc)
            return

        role = payload.get("role")
        if payload.get("sub") and role in RECIPIENT_TYPES:
            g.recipient_id = str(payload["sub"])
            g.recipient_type = role


def require_identity(fn):
    """Reject the request with 401 unless a valid caller identity is present."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not getattr(g, "recipient_id", None):
            return api_error(E.UNAUTHORIZED, "Authentication required")
        return fn(*args, **kwargs)
    return wrapper


def require_manager(fn):
    """Reject the request unless the caller is a manager."""
    @wraps(fn)
    def wrapper(*args, **kwargs):
        if not getattr(g, "recipient_id", None):
            return api_error(E.UNAUTHORIZED, "Authentication required")
        if g.recipient_type != "manager":
            return api_error(E.FORBIDDEN, "Manager role required")
        return fn(*args, **kwargs)
    return wrapper
