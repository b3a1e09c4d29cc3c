"""
Application exception hierarchy.

Collaborator services (shift creation, guard assignment, bulk request
parsing) raise these; the workflow services and blueprints translate them
into ``ServiceResult`` failures / JSON error responses with consistent
HTTP status codes.

Usage:
    from app.core.exceptions import NotFoundError, ValidationError

    raise NotFoundError(resource="Shift", resource_id=shift_id)
    raise ValidationError("shift_ids must not be empty", details={"shift_ids": "required"})
"""


class NotFoundError(Exception):
    """Raised when a requested resource does not exist.

    Args:
        resource: Human-readable model/entity name (e.g. "Shift", "UrgentShiftAlert").
        resource_id: The PK that was looked up. Included in logs and messages.
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
    """Raised when input is well-formed JSON but violates a field rule.

    Args:
        message: Human-readable explanation of what failed.
        details: Optional field-level breakdown.  Keys are field names;
                 values are error descriptions.
    """

    def __init__(self, message: str, details: dict | None = None) -> None:
        self.details = details or {}
        super().__init__(message)

