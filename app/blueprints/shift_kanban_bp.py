"""
Guard Shift Kanban
Shift Kanban Blueprint.

Endpoints (all require the X-Manager-Id header):
    POST /api/v1/shifts                          — create shift
    GET  /api/v1/shifts/<id>                     — shift detail
    GET  /api/v1/shifts/<id>/history             — workflow history
    POST /api/v1/shifts/<id>/assign              — assign guard
    POST /api/v1/shifts/<id>/confirm             — guard confirmation
    GET  /api/v1/shifts/kanban                   — board read model
    POST /api/v1/shifts/kanban                   — move shift
    GET  /api/v1/shifts/kanban/workflow          — columns + statistics
    POST /api/v1/shifts/bulk-actions             — run bulk action
    GET  /api/v1/shifts/bulk-actions/<op_id>     — bulk operation record
"""

import logging

from flask import Blueprint, g, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from app.blueprints import bool_arg, list_arg, require_manager_id
from app.core.exceptions import NotFoundError, ValidationError
from app.core.result import ServiceResult
from app.models import db
from app.services import shift_kanban_service, shift_workflow_service
from app.services.assignment_service import assign_guard, confirm_assignment
from app.services.shift_kanban_service import KanbanFilters
from app.services.shift_service import create_shift, get_shift, parse_datetime
from app.utils.errors import E, api_error, result_response

logger = logging.getLogger(__name__)

shift_kanban_bp = Blueprint("shift_kanban_bp", __name__, url_prefix="/api/v1/shifts")
shift_kanban_bp.before_request(require_manager_id)


def _ok(data, status=200):
    return jsonify({"success": True, "data": data}), status


def _serialize_transition(t):
    return t.to_dict()


# ═════════════════════════════════════════════════════════════════════════════
# Shifts
# ═════════════════════════════════════════════════════════════════════════════

@shift_kanban_bp.route("", methods=["POST"])
def create():
    """Body: {title, start_time, end_time, priority?, required_certifications?, client_info?, location_data?}"""
    data = request.get_json(silent=True) or {}
    try:
        shift = create_shift(data, created_by=g.manager_id)
    except ValidationError as exc:
        return api_error(E.VALIDATION_ERROR, str(exc), details=exc.details)
    except SQLAlchemyError:
        logger.exception("Database error creating shift")
        db.session.rollback()
        return api_error(E.DATABASE, "Database error")
    return _ok(shift.to_dict(), 201)


@shift_kanban_bp.route("/<shift_id>", methods=["GET"])
def detail(shift_id):
    try:
        shift = get_shift(shift_id)
    except NotFoundError as exc:
        return api_error(E.SHIFT_NOT_FOUND, str(exc))
    data = shift.to_dict(include_assignments=True)
    data["alerts"] = [a.to_dict() for a in shift.alerts if a.is_open]
    return _ok(data)


@shift_kanban_bp.route("/<shift_id>/history", methods=["GET"])
def history(shift_id):
    limit = request.args.get("limit", 20, type=int)
    result = shift_workflow_service.get_workflow_history(shift_id, limit=max(1, min(limit, 200)))
    return result_response(result, serialize=lambda rows: [t.to_dict() for t in rows])


def _guard_id(data) -> str:
    value = data.get("guard_id") if isinstance(data, dict) else None
    if value is None:
        return ""
    if not isinstance(value, str):
        raise ValidationError("guard_id must be a string", details={"guard_id": "invalid"})
    return value.strip()


@shift_kanban_bp.route("/<shift_id>/assign", methods=["POST"])
def assign(shift_id):
    """Body: {guard_id}.  An unassigned shift then moves to ``assigned``."""
    data = request.get_json(silent=True) or {}
    try:
        assignment = assign_guard(shift_id, _guard_id(data), g.manager_id)
        db.session.commit()
    except NotFoundError as exc:
        db.session.rollback()
        return api_error(E.SHIFT_NOT_FOUND, str(exc))
    except ValidationError as exc:
        db.session.rollback()
        return api_error(E.VALIDATION_ERROR, str(exc), details=exc.details)
    except SQLAlchemyError:
        logger.exception("Database error assigning guard to shift %s", shift_id)
        db.session.rollback()
        return api_error(E.DATABASE, "Database error")

    body = {"assignment": assignment.to_dict(), "transition": None}
    warnings = []
    if get_shift(shift_id).status == "unassigned":
        moved = shift_kanban_service.move_shift(shift_id, "assigned", g.manager_id, reason="Guard assigned")
        if not moved.success:
            return result_response(moved)
        body["transition"] = moved.data.to_dict()
        warnings = moved.warnings
    return result_response(ServiceResult.ok(body, warnings))


@shift_kanban_bp.route("/<shift_id>/confirm", methods=["POST"])
def confirm(shift_id):
    """Body: {guard_id}.  An assigned shift then moves to ``confirmed``."""
    data = request.get_json(silent=True) or {}
    try:
        guard_id = _guard_id(data)
    except ValidationError as exc:
        return api_error(E.VALIDATION_ERROR, str(exc), details=exc.details)
    if not guard_id:
        return api_error(E.VALIDATION_ERROR, "guard_id is required", details={"guard_id": "required"})
    try:
        assignment = confirm_assignment(shift_id, guard_id)
        db.session.commit()
    except NotFoundError as exc:
        db.session.rollback()
        return api_error(E.NOT_FOUND, str(exc))
    except SQLAlchemyError:
        logger.exception("Database error confirming assignment on shift %s", shift_id)
        db.session.rollback()
        return api_error(E.DATABASE, "Database error")

    body = {"assignment": assignment.to_dict(), "transition": None}
    warnings = []
    if get_shift(shift_id).status == "assigned":
        moved = shift_kanban_service.move_shift(shift_id, "confirmed", g.manager_id, reason="Guard confirmed")
        if not moved.success:
            return result_response(moved)
        body["transition"] = moved.data.to_dict()
        warnings = moved.warnings
    return result_response(ServiceResult.ok(body, warnings))


# ═════════════════════════════════════════════════════════════════════════════
# Kanban board
# ═════════════════════════════════════════════════════════════════════════════

def _filters_from_args() -> KanbanFilters:
    priorities = []
    for raw in list_arg("priorities"):
        try:
            priorities.append(int(raw))
        except ValueError as exc:
            raise ValidationError("priorities must be integers", details={"priorities": raw}) from exc

    start = request.args.get("start_date")
    end = request.args.get("end_date")
    return KanbanFilters(
        date_from=parse_datetime(start, "start_date") if start else None,
        date_to=parse_datetime(end, "end_date") if end else None,
        clients=list_arg("clients"),
        sites=list_arg("sites"),
        guards=list_arg("guards"),
        statuses=list_arg("statuses"),
        priorities=priorities,
        assignment_status=request.args.get("assignment_status", "all"),
        urgent_only=bool_arg("urgent_only"),
    )


@shift_kanban_bp.route("/kanban", methods=["GET"])
def board():
    try:
        filters = _filters_from_args()
    except ValidationError as exc:
        return api_error(E.VALIDATION_ERROR, str(exc), details=exc.details)
    # ?mine=true narrows recent activity to the calling manager.
    manager_id = g.manager_id if bool_arg("mine") else None
    return result_response(shift_kanban_service.get_kanban_board_data(manager_id, filters))


@shift_kanban_bp.route("/kanban", methods=["POST"])
def move():
    """Body: {shift_id, new_status, reason?, expected_version?}"""
    data = request.get_json(silent=True) or {}
    shift_id = data.get("shift_id")
    new_status = data.get("new_status")
    if not shift_id or not new_status:
        return api_error(E.VALIDATION_ERROR, "shift_id and new_status are required",
                         details={"shift_id": shift_id, "new_status": new_status})

    expected_version = data.get("expected_version")
    if expected_version is not None and (isinstance(expected_version, bool)
                                         or not isinstance(expected_version, int)):
        return api_error(E.VALIDATION_ERROR, "expected_version must be an integer")

    result = shift_kanban_service.move_shift(
        shift_id, new_status, g.manager_id,
        reason=data.get("reason"),
        expected_version=expected_version,
    )
    return result_response(result, serialize=_serialize_transition)


@shift_kanban_bp.route("/kanban/workflow", methods=["GET"])
def workflow():
    config = shift_workflow_service.get_workflow_config()
    stats = shift_workflow_service.get_workflow_statistics()
    if not stats.success:
        return result_response(stats)
    return _ok({"columns": config.data.to_list(), "statistics": stats.data})


# ═════════════════════════════════════════════════════════════════════════════
# Bulk actions
# ═════════════════════════════════════════════════════════════════════════════

@shift_kanban_bp.route("/bulk-actions", methods=["POST"])
def bulk_actions():
    """Body: {action, shift_ids, parameters, reason?}"""
    payload = request.get_json(silent=True)
    result = shift_kanban_service.execute_bulk_action(payload, g.manager_id)
    return result_response(result, serialize=lambda op: op.to_dict(), success_status=201)


@shift_kanban_bp.route("/bulk-actions/<operation_id>", methods=["GET"])
def bulk_operation(operation_id):
    result = shift_kanban_service.get_bulk_operation(operation_id)
    return result_response(result, serialize=lambda op: op.to_dict())
