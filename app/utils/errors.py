"""Standardised API error responses.

Usage
-----
    from app.utils.errors import api_error, result_response, E

    return api_error(E.MANAGER_ID_REQUIRED, "X-Manager-Id header is required")
    return result_response(execute_transition(...), serialize=lambda t: t.to_dict())
"""

from __future__ import annotations

from flask import jsonify

from app.core.result import ServiceResult


# ── Error code constants ──────────────────────────────────────────────
class E:
    """Machine-readable error code constants."""

    # Request validation – HTTP 400
    VALIDATION_ERROR = "VALIDATION_ERROR"
    INVALID_STATUS = "INVALID_STATUS"

    # Caller identity – HTTP 401
    MANAGER_ID_REQUIRED = "MANAGER_ID_REQUIRED"

    # Not-found – HTTP 404
    NOT_FOUND = "NOT_FOUND"
    SHIFT_NOT_FOUND = "SHIFT_NOT_FOUND"
    ALERT_NOT_FOUND = "ALERT_NOT_FOUND"
    BULK_OPERATION_NOT_FOUND = "BULK_OPERATION_NOT_FOUND"

    # Workflow conflicts – HTTP 409
    INVALID_TRANSITION = "INVALID_TRANSITION"
    CONCURRENT_MODIFICATION = "CONCURRENT_MODIFICATION"
    INVALID_ALERT_STATE = "INVALID_ALERT_STATE"
    DUPLICATE_ALERT = "DUPLICATE_ALERT"

    # Business rules – HTTP 422
    GUARD_ASSIGNMENT_REQUIRED = "GUARD_ASSIGNMENT_REQUIRED"
    GUARD_CONFIRMATION_REQUIRED = "GUARD_CONFIRMATION_REQUIRED"
    SHIFT_NOT_STARTED = "SHIFT_NOT_STARTED"
    COMPLETION_CRITERIA_NOT_MET = "COMPLETION_CRITERIA_NOT_MET"

    # Server / persistence – HTTP 500
    TRANSITION_ERROR = "TRANSITION_ERROR"
    BULK_ACTION_ERROR = "BULK_ACTION_ERROR"
    MONITORING_ERROR = "MONITORING_ERROR"
    ALERT_CREATION_ERROR = "ALERT_CREATION_ERROR"
    ESCALATION_ERROR = "ESCALATION_ERROR"
    BOARD_DATA_ERROR = "BOARD_DATA_ERROR"
    HISTORY_ERROR = "HISTORY_ERROR"
    ALERT_UPDATE_ERROR = "ALERT_UPDATE_ERROR"
    ALERT_QUERY_ERROR = "ALERT_QUERY_ERROR"
    STATISTICS_ERROR = "STATISTICS_ERROR"
    ARCHIVE_ERROR = "ARCHIVE_ERROR"
    DATABASE = "DATABASE_ERROR"
    INTERNAL = "INTERNAL_ERROR"


# ── Default HTTP status mapping ───────────────────────────────────────
_DEFAULT_STATUS: dict[str, int] = {
    E.VALIDATION_ERROR: 400,
    E.INVALID_STATUS: 400,
    E.MANAGER_ID_REQUIRED: 401,
    E.NOT_FOUND: 404,
    E.SHIFT_NOT_FOUND: 404,
    E.ALERT_NOT_FOUND: 404,
    E.BULK_OPERATION_NOT_FOUND: 404,
    E.INVALID_TRANSITION: 409,
    E.CONCURRENT_MODIFICATION: 409,
    E.INVALID_ALERT_STATE: 409,
    E.DUPLICATE_ALERT: 409,
    E.GUARD_ASSIGNMENT_REQUIRED: 422,
    E.GUARD_CONFIRMATION_REQUIRED: 422,
    E.SHIFT_NOT_STARTED: 422,
    E.COMPLETION_CRITERIA_NOT_MET: 422,
    E.TRANSITION_ERROR: 500,
    E.BULK_ACTION_ERROR: 500,
    E.MONITORING_ERROR: 500,
    E.ALERT_CREATION_ERROR: 500,
    E.ESCALATION_ERROR: 500,
    E.BOARD_DATA_ERROR: 500,
    E.HISTORY_ERROR: 500,
    E.ALERT_UPDATE_ERROR: 500,
    E.ALERT_QUERY_ERROR: 500,
    E.STATISTICS_ERROR: 500,
    E.ARCHIVE_ERROR: 500,
    E.DATABASE: 500,
    E.INTERNAL: 500,
}


def status_for(code: str) -> int:
    """HTTP status for an error code (400 when unmapped)."""
    return _DEFAULT_STATUS.get(code, 400)


def api_error(
    code: str,
    message: str,
    *,
    status: int | None = None,
    details: dict | None = None,
):
    """Return a standard JSON error response.

    Parameters
    ----------
    code : str
        Machine-readable error code (use ``E.*`` constants).
    message : str
        Human-readable explanation for developers / UI.
    status : int, optional
        HTTP status override.  Falls back to ``_DEFAULT_STATUS[code]``,
        then to ``400``.
    details : dict, optional
        Extra structured payload (field errors, current version, ...).

    Returns
    -------
    tuple[Response, int]
        ``(jsonify(body), http_status)`` – drop-in for Flask views.
    """
    http_status = status or status_for(code)

    error: dict = {"code": code, "message": message}
    if details:
        error["details"] = details

    return jsonify({"success": False, "data": None, "error": error}), http_status


def result_response(result: ServiceResult, *, serialize=None, success_status: int = 200):
    """Turn a ``ServiceResult`` into a ``(Response, status)`` tuple."""
    if result.success:
        return jsonify(result.to_dict(serialize)), success_status
    return jsonify(result.to_dict()), status_for(result.error.code)
