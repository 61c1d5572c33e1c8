"""JSON error bodies for the HTTP surface.

Every error response has the shape ``{"error": <message>, "code": <E.*>}``
plus ``details`` when field-level information exists.

    from compliance_engine.utils.errors import api_error, E

    return api_error(E.NOT_FOUND, "Notification not found or already read")
    return api_error(E.FORBIDDEN, "Manager role required")
"""

from __future__ import annotations

from flask import jsonify

from compliance_engine.core.exceptions import ValidationError


# ── Error codes ───────────────────────────────────────────────────────
class E:
    """Machine-readable error codes (``ERR_`` prefix)."""

    VALIDATION_REQUIRED = "ERR_VALIDATION_REQUIRED"
    VALIDATION_INVALID = "ERR_VALIDATION_INVALID"
    UNAUTHORIZED = "ERR_UNAUTHORIZED"
    FORBIDDEN = "ERR_FORBIDDEN"
    NOT_FOUND = "ERR_NOT_FOUND"
    INTERNAL = "ERR_INTERNAL"
    WORKER_UNAVAILABLE = "ERR_WORKER_UNAVAILABLE"


_STATUS_BY_CODE: dict[str, int] = {
    E.VALIDATION_REQUIRED: 400,
    E.VALIDATION_INVALID: 400,
    E.UNAUTHORIZED: 401,
    E.FORBIDDEN: 403,
    E.NOT_FOUND: 404,
    E.INTERNAL: 500,
    E.WORKER_UNAVAILABLE: 503,
}


def api_error(code: str, message: str, *, status: int | None = None,
              details: dict | None = None):
    """Build a ``(response, status)`` tuple for a Flask view.

    ``status`` defaults to the code's usual HTTP status (400 if unmapped).
    """
    body: dict = {"error": message, "code": code}
    if details:
        body["details"] = details
    return jsonify(body), status or _STATUS_BY_CODE.get(code, 400)


def validation_error_response(exc: ValidationError):
    """Map a ledger ValidationError to a 400 body; missing fields use the REQUIRED code."""
    required = exc.details and all(v == "required" for v in exc.details.values())
    code = E.VALIDATION_REQUIRED if required else E.VALIDATION_INVALID
    return api_error(code, str(exc), details=exc.details)
