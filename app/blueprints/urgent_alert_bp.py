"""
Guard Shift Kanban
Urgent Alert Blueprint.

Endpoints (all require the X-Manager-Id header):
    GET  /api/v1/shifts/urgent-alerts                    — active alerts + metrics
    POST /api/v1/shifts/urgent-alerts                    — run the urgency monitor
    POST /api/v1/shifts/urgent-alerts/<id>/acknowledge   — acknowledge
    POST /api/v1/shifts/urgent-alerts/<id>/resolve       — resolve
    POST /api/v1/shifts/urgent-alerts/escalate           — run escalation
    POST /api/v1/shifts/urgent-alerts/expire             — resolve alerts of ended shifts
"""

import logging

from flask import Blueprint, g, jsonify, request

from app.blueprints import list_arg, require_manager_id
from app.models.alert import ALERT_PRIORITIES, ALERT_TYPES
from app.services import urgent_alert_service
from app.utils.errors import E, api_error, result_response

logger = logging.getLogger(__name__)

urgent_alert_bp = Blueprint("urgent_alert_bp", __name__, url_prefix="/api/v1/shifts/urgent-alerts")
urgent_alert_bp.before_request(require_manager_id)


def _serialize_alerts(alerts):
    return [a.to_dict() for a in alerts]


@urgent_alert_bp.route("", methods=["GET"])
def list_alerts():
    """Query: alert_types, priorities, shift_ids (comma separated), hours_until_max."""
    alert_types = list_arg("alert_types")
    unknown = sorted(set(alert_types) - ALERT_TYPES)
    if unknown:
        return api_error(E.VALIDATION_ERROR, f"Unknown alert types: {', '.join(unknown)}",
                         details={"alert_types": unknown})
    priorities = list_arg("priorities")
    unknown = sorted(set(priorities) - set(ALERT_PRIORITIES))
    if unknown:
        return api_error(E.VALIDATION_ERROR, f"Unknown priorities: {', '.join(unknown)}",
                         details={"priorities": unknown})

    hours_until_max = None
    raw_hours = request.args.get("hours_until_max")
    if raw_hours:
        try:
            hours_until_max = float(raw_hours)
        except ValueError:
            return api_error(E.VALIDATION_ERROR, "hours_until_max must be a number",
                             details={"hours_until_max": raw_hours})

    alerts = urgent_alert_service.get_active_alerts(
        alert_types=alert_types or None,
        priorities=priorities or None,
        shift_ids=list_arg("shift_ids") or None,
        hours_until_max=hours_until_max,
    )
    if not alerts.success:
        return result_response(alerts)
    metrics = urgent_alert_service.get_alert_metrics()
    if not metrics.success:
        return result_response(metrics)

    return jsonify({
        "success": True,
        "data": {"alerts": _serialize_alerts(alerts.data), "metrics": metrics.data},
    }), 200


@urgent_alert_bp.route("", methods=["POST"])
def run_monitor():
    result = urgent_alert_service.monitor_shifts_for_alerts()
    logger.info("Urgency monitor triggered by %s", g.manager_id, extra={"manager_id": g.manager_id})
    return result_response(result, serialize=_serialize_alerts, success_status=201)


@urgent_alert_bp.route("/<alert_id>/acknowledge", methods=["POST"])
def acknowledge(alert_id):
    """Body: {notes?}"""
    data = request.get_json(silent=True) or {}
    result = urgent_alert_service.acknowledge_alert(alert_id, g.manager_id, data.get("notes"))
    return result_response(result, serialize=lambda a: a.to_dict())


@urgent_alert_bp.route("/<alert_id>/resolve", methods=["POST"])
def resolve(alert_id):
    """Body: {resolution_notes?}"""
    data = request.get_json(silent=True) or {}
    result = urgent_alert_service.resolve_alert(alert_id, g.manager_id, data.get("resolution_notes"))
    return result_response(result, serialize=lambda a: a.to_dict())


@urgent_alert_bp.route("/escalate", methods=["POST"])
def escalate():
    return result_response(urgent_alert_service.escalate_alerts(), serialize=_serialize_alerts)


@urgent_alert_bp.route("/expire", methods=["POST"])
def expire():
    return result_response(urgent_alert_service.expire_stale_alerts(), serialize=_serialize_alerts)
