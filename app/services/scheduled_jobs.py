"""
Guard Shift Kanban
Scheduled Jobs — periodic urgency-alert and board maintenance.

Jobs:
    - urgency_monitor: raises alerts for shifts inside the monitoring window
    - alert_escalation: raises the level of alerts left unhandled too long
    - alert_expiry: resolves open alerts whose shift has ended
    - shift_auto_archive: archives shifts left in completed for a week

Each job returns a summary dict that ``SchedulerService.run_job`` stores on
the job record.  A failed ``ServiceResult`` is raised as ``RuntimeError``
so the run is recorded as failed.
"""

from __future__ import annotations

import logging
from typing import Any

from app.core.result import ServiceResult
from app.services import shift_kanban_service, urgent_alert_service
from app.services.scheduler_service import register_job

logger = logging.getLogger(__name__)


def _unwrap(result: ServiceResult, job_name: str) -> list:
    if not result.success:
        raise RuntimeError(f"{job_name}: {result.error.code}: {result.error.message}")
    for warning in result.warnings:
        logger.warning("%s: %s", job_name, warning)
    return result.data or []


# ═══════════════════════════════════════════════════════════════════════════
#  Job 1: Urgency Monitor
# ═══════════════════════════════════════════════════════════════════════════

@register_job("urgency_monitor")
def run_urgency_monitor(app) -> dict[str, Any]:
    """Scan upcoming shifts and raise urgency alerts."""
    result = urgent_alert_service.monitor_shifts_for_alerts()
    alerts = _unwrap(result, "urgency_monitor")
    summary = {
        "alerts_created": len(alerts),
        "shifts_alerted": len({a.shift_id for a in alerts}),
        "warnings": len(result.warnings),
    }
    logger.info("Urgency monitor: %s", summary)
    return summary


# ═══════════════════════════════════════════════════════════════════════════
#  Job 2: Alert Escalation
# ═══════════════════════════════════════════════════════════════════════════

@register_job("alert_escalation")
def run_alert_escalation(app) -> dict[str, Any]:
    """Escalate active alerts past their escalation thresholds."""
    result = urgent_alert_service.escalate_alerts()
    alerts = _unwrap(result, "alert_escalation")
    summary = {
        "alerts_escalated": len(alerts),
        "max_level": max((a.escalation_level for a in alerts), default=0),
        "warnings": len(result.warnings),
    }
    logger.info("Alert escalation: %s", summary)
    return summary


# ═══════════════════════════════════════════════════════════════════════════
#  Job 3: Stale Alert Expiry
# ═══════════════════════════════════════════════════════════════════════════

@register_job("alert_expiry")
def run_alert_expiry(app) -> dict[str, Any]:
    """Resolve open alerts for shifts that have already ended."""
    alerts = _unwrap(urgent_alert_service.expire_stale_alerts(), "alert_expiry")
    summary = {"alerts_expired": len(alerts)}
    logger.info("Alert expiry: %s", summary)
    return summary


# ═══════════════════════════════════════════════════════════════════════════
#  Job 4: Shift Auto-Archive
# ═══════════════════════════════════════════════════════════════════════════

@register_job("shift_auto_archive")
def run_shift_auto_archive(app) -> dict[str, Any]:
    """Archive completed shifts older than AUTO_ARCHIVE_AFTER_DAYS."""
    result = shift_kanban_service.auto_archive_completed_shifts()
    if not result.success:
        raise RuntimeError(f"shift_auto_archive: {result.error.code}: {result.error.message}")
    for problem in result.data["errors"] + result.warnings:
        logger.warning("shift_auto_archive: %s", problem)
    summary = {
        "shifts_archived": len(result.data["archived"]),
        "errors": len(result.data["errors"]),
    }
    logger.info("Shift auto-archive: %s", summary)
    return summary
