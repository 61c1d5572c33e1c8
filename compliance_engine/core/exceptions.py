"""
Engine-wide exception hierarchy.

Services raise these types; the notification blueprint registers handlers
against them once and maps them to consistent HTTP status codes.

Usage:
    from compliance_engine.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Manager", resource_id=facilitator.manager_id)
    raise ValidationError("limit must be between 1 and 100", details={"limit": 500})
"""


class NotFoundError(Exception):
    """Raised when a collaborator lookup cannot resolve a record.

    ``mark_read`` never raises this: an unknown or foreign notification id is
    reported as a ``False`` no-op so the operation stays idempotent.

    Args:
        resource: Human-readable entity name (e.g. "Manager", "CourseAllocation").
        resource_id: The key that was looked up. Included in logs.
    """

    def __init__(self, resource: str, resource_id: int | str | None = None) -> None:
        self.resource = resource
        self.resource_id = resource_id
        msg = f"{resource}"
        if resource_id is not None:
            msg += f" id={resource_id}"
        msg += " not found"
        super().__init__(msg)


class ValidationError(Exception):
    """Raised when input to the ledger or a query API is malformed.

    Maps to HTTP 400 in blueprint error handlers.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown for structured API responses.
                 Keys are field names; values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)
