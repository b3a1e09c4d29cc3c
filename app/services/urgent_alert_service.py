"""
Guard Shift Kanban
Urgent Alert Service — time-threshold monitoring of upcoming shifts.

Raising (``monitor_shifts_for_alerts``):
    | condition                                              | type              | priority              |
    |--------------------------------------------------------|-------------------|-----------------------|
    | unassigned, ≤ 24h to start                             | unassigned_24h    | critical ≤ 6h, high   |
    | assigned, ≤ 12h, no confirmed assignment               | unconfirmed_12h   | high ≤ 4h, medium     |
    | assigned/confirmed, ≤ 2h, no-show risk > threshold     | no_show_risk      | critical              |
    | guard assigned, required certifications not held      | certification_gap | high                  |

Escalation (``escalate_alerts``): hours since the alert was raised, per
``ESCALATION_RULES``; capped at ``MAX_ESCALATION_LEVEL``.

Resolution: manual (``acknowledge_alert`` / ``resolve_alert``), automatic
when the shift reaches a status listed in ``AUTO_RESOLVE_STATUSES``
(``resolve_alerts_for_status``), or when the shift has ended
(``expire_stale_alerts``).  ``certification_gap`` is only ever resolved
by hand.

Notification dispatch is a side effect: its failures come back as
``warnings`` on an otherwise successful result.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context
from sqlalchemy import case, or_, select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from app.core.result import ServiceResult
from app.models import db
from app.models.alert import (
    ALERT_PRIORITIES,
    ALERT_TYPES,
    MAX_ESCALATION_LEVEL,
    OPEN_ALERT_STATUSES,
    PRIORITY_RANK,
    UrgentShiftAlert,
    validate_alert_transition,
)
from app.models.audit import write_audit
from app.models.shift import GuardCertification, Shift, ShiftAssignment
from app.services.notification import NotificationService
from app.utils.errors import E

logger = logging.getLogger(__name__)


MONITORED_STATUSES = ("unassigned", "assigned", "confirmed")

UNASSIGNED_WINDOW_HOURS = 24
UNASSIGNED_CRITICAL_HOURS = 6
UNCONFIRMED_WINDOW_HOURS = 12
UNCONFIRMED_HIGH_HOURS = 4
NO_SHOW_WINDOW_HOURS = 2

# No-show risk model
NO_SHOW_HISTORY_WINDOW = 20
NO_SHOW_HISTORY_WEIGHT = 0.8
UNCONFIRMED_RISK_WEIGHT = 0.3

# Alert type → shift statuses that satisfy (and so auto-resolve) it.
AUTO_RESOLVE_STATUSES: dict[str, frozenset[str]] = {
    "unassigned_24h": frozenset({"assigned", "confirmed", "in_progress", "completed"}),
    "understaffed": frozenset({"assigned", "confirmed", "in_progress", "completed"}),
    "unconfirmed_12h": frozenset({"confirmed", "in_progress", "completed"}),
    "no_show_risk": frozenset({"in_progress", "completed"}),
    "certification_gap": frozenset(),
}


@dataclass(frozen=True)
class EscalationRule:
    level: int
    after_hours: float
    priority: str | None = None


ESCALATION_RULES: dict[str, tuple[EscalationRule, ...]] = {
    "unassigned_24h": (
        EscalationRule(level=2, after_hours=2, priority="critical"),
        EscalationRule(level=3, after_hours=6),
    ),
    "unconfirmed_12h": (
        EscalationRule(level=2, after_hours=4, priority="high"),
    ),
    "no_show_risk": (
        EscalationRule(level=2, after_hours=0.5),
    ),
}


def _as_utc(dt: datetime) -> datetime:
    """Normalise a datetime to UTC-aware (SQLite hands back naive values)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _now(now: datetime | None) -> datetime:
    return _as_utc(now) if now else datetime.now(timezone.utc)


def _setting(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _hours_between(later: datetime, earlier: datetime) -> float:
    return (_as_utc(later) - _as_utc(earlier)).total_seconds() / 3600


# ═══════════════════════════════════════════════════════════════════════════
#  Risk / gap checks
# ═══════════════════════════════════════════════════════════════════════════

def calculate_no_show_risk(shift: Shift) -> float:
    """Risk score in [0, 1] that the assigned guard will not turn up.

    Weighted from the guard's last decided assignments on other shifts
    (``no_show`` vs ``confirmed``) plus a flat penalty while the current
    assignment is still unconfirmed.  No guard → 0.
    """
    if not shift.assigned_guard_id:
        return 0.0

    history = db.session.execute(
        select(ShiftAssignment.assignment_status)
        .where(
            ShiftAssignment.guard_id == shift.assigned_guard_id,
            ShiftAssignment.shift_id != shift.id,
            ShiftAssignment.assignment_status.in_(("confirmed", "no_show")),
        )
        .order_by(ShiftAssignment.assigned_at.desc())
        .limit(NO_SHOW_HISTORY_WINDOW)
    ).scalars().all()
    no_show_rate = (history.count("no_show") / len(history)) if history else 0.0

    confirmed = db.session.execute(
        select(ShiftAssignment.id).where(
            ShiftAssignment.shift_id == shift.id,
            ShiftAssignment.guard_id == shift.assigned_guard_id,
            ShiftAssignment.assignment_status == "confirmed",
        ).limit(1)
    ).first() is not None

    score = no_show_rate * NO_SHOW_HISTORY_WEIGHT
    if not confirmed:
        score += UNCONFIRMED_RISK_WEIGHT
    return round(min(score, 1.0), 4)


def check_certification_gaps(shift: Shift) -> list[str]:
    """Required certifications the assigned guard does not hold at shift start."""
    required = list(shift.required_certifications or [])
    if not required or not shift.assigned_guard_id:
        return []

    held = set(db.session.execute(
        select(GuardCertification.certification).where(
            GuardCertification.guard_id == shift.assigned_guard_id,
            or_(
                GuardCertification.expires_at.is_(None),
                GuardCertification.expires_at >= shift.start_time,
            ),
        )
    ).scalars().all())
    return [c for c in required if c not in held]


def _active_alert_types(shift_id: str) -> set[str]:
    rows = db.session.execute(
        select(UrgentShiftAlert.alert_type).where(
            UrgentShiftAlert.shift_id == shift_id,
            UrgentShiftAlert.status == "active",
        )
    ).scalars().all()
    return set(rows)


def _alerts_due(shift: Shift, hours: float, existing: set[str], risk_threshold: float) -> list[tuple[str, str, str]]:
    """(alert_type, priority, reason) for every rule the shift trips."""
    due: list[tuple[str, str, str]] = []
    remaining = round(hours)

    if (shift.status == "unassigned" and hours <= UNASSIGNED_WINDOW_HOURS
            and "unassigned_24h" not in existing):
        due.append((
            "unassigned_24h",
            "critical" if hours <= UNASSIGNED_CRITICAL_HOURS else "high",
            f"Shift unassigned with {remaining} hours remaining",
        ))

    if (shift.status == "assigned" and hours <= UNCONFIRMED_WINDOW_HOURS
            and "unconfirmed_12h" not in existing and not shift.has_confirmed_assignment()):
        due.append((
            "unconfirmed_12h",
            "high" if hours <= UNCONFIRMED_HIGH_HOURS else "medium",
            f"Guard assigned but not confirmed with {remaining} hours remaining",
        ))

    if (shift.status in ("assigned", "confirmed") and hours <= NO_SHOW_WINDOW_HOURS
            and "no_show_risk" not in existing):
        risk = calculate_no_show_risk(shift)
        if risk > risk_threshold:
            due.append((
                "no_show_risk",
                "critical",
                f"High no-show risk ({risk:.2f}) detected for guard with {remaining} hours remaining",
            ))

    if shift.assigned_guard_id and "certification_gap" not in existing:
        missing = check_certification_gaps(shift)
        if missing:
            due.append((
                "certification_gap",
                "high",
                f"Missing required certifications: {', '.join(missing)}",
            ))

    return due


# ═══════════════════════════════════════════════════════════════════════════
#  Create / monitor
# ═══════════════════════════════════════════════════════════════════════════

def _dispatch(notify, alert, warnings: list[str]) -> None:
    """Run a notification call; failures become warnings."""
    try:
        notify(alert)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Notification dispatch failed for alert %s: %s", alert.id, exc,
                       extra={"alert_id": alert.id})
        warnings.append(f"Notification dispatch failed for alert {alert.id}: {exc}")


def create_alert(
    shift_id: str,
    alert_type: str,
    priority: str,
    hours_until_shift: float | None = None,
    reason: str | None = None,
) -> ServiceResult[UrgentShiftAlert]:
    """Persist a new active alert (level 1) and notify managers.

    Refuses a second active alert of the same type for the shift; an
    acknowledged one does not block a fresh alert.
    """
    if alert_type not in ALERT_TYPES:
        return ServiceResult.fail(E.VALIDATION_ERROR, f"Unknown alert type: {alert_type}")
    if priority not in ALERT_PRIORITIES:
        return ServiceResult.fail(E.VALIDATION_ERROR, f"Unknown alert priority: {priority}")

    try:
        if db.session.get(Shift, shift_id) is None:
            return ServiceResult.fail(E.SHIFT_NOT_FOUND, "Shift not found", {"shift_id": shift_id})
        if alert_type in _active_alert_types(shift_id):
            return ServiceResult.fail(
                E.DUPLICATE_ALERT, f"An active {alert_type} alert already exists for this shift",
                {"shift_id": shift_id, "alert_type": alert_type},
            )
        alert = UrgentShiftAlert(
            shift_id=shift_id,
            alert_type=alert_type,
            priority=priority,
            hours_until_shift=hours_until_shift,
            status="active",
            escalation_level=1,
            reason=reason or "",
        )
        db.session.add(alert)
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        return ServiceResult.fail(
            E.DUPLICATE_ALERT, f"An active {alert_type} alert already exists for this shift",
            {"shift_id": shift_id, "alert_type": alert_type},
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Failed to create %s alert for shift %s: %s", alert_type, shift_id, exc,
                     extra={"shift_id": shift_id})
        return ServiceResult.fail(E.ALERT_CREATION_ERROR, "Failed to create urgent alert",
                                  {"error": str(exc)})

    logger.info("Alert raised: %s/%s for shift %s", alert_type, priority, shift_id,
                extra={"shift_id": shift_id, "alert_id": alert.id})

    warnings: list[str] = []
    _dispatch(lambda a: NotificationService.notify_urgent_alert(a, reason=reason), alert, warnings)
    return ServiceResult.ok(alert, warnings)


def monitor_shifts_for_alerts(*, now: datetime | None = None) -> ServiceResult[list[UrgentShiftAlert]]:
    """
    Scan shifts starting within the monitoring window and raise alerts.

    A failure creating one alert is reported in ``warnings`` and the
    scan carries on; a failure of the scan itself is ``MONITORING_ERROR``.
    """
    now = _now(now)
    window = timedelta(hours=_setting("URGENCY_SCAN_WINDOW_HOURS", 24))
    risk_threshold = _setting("NO_SHOW_RISK_THRESHOLD", 0.7)

    try:
        shifts = db.session.execute(
            select(Shift)
            .where(
                Shift.status.in_(MONITORED_STATUSES),
                Shift.start_time > now,
                Shift.start_time <= now + window,
            )
            .order_by(Shift.start_time)
        ).scalars().all()

        plan: list[tuple[Shift, float, list[tuple[str, str, str]]]] = []
        for shift in shifts:
            hours = _hours_between(shift.start_time, now)
            if hours <= 0:
                continue
            due = _alerts_due(shift, hours, _active_alert_types(shift.id), risk_threshold)
            if due:
                plan.append((shift, hours, due))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Error monitoring shifts for alerts: %s", exc)
        return ServiceResult.fail(E.MONITORING_ERROR, "Failed to monitor shifts for urgent alerts",
                                  {"error": str(exc)})

    created: list[UrgentShiftAlert] = []
    warnings: list[str] = []
    for shift, hours, due in plan:
        for alert_type, priority, reason in due:
            result = create_alert(shift.id, alert_type, priority, round(hours, 2), reason)
            if result.success:
                created.append(result.data)
                warnings.extend(result.warnings)
            else:
                warnings.append(f"{result.error.code}: {alert_type} for shift {shift.id}: {result.error.message}")

    logger.info("Urgency scan: %d shifts checked, %d alerts raised", len(shifts), len(created))
    return ServiceResult.ok(created, warnings)


# ═══════════════════════════════════════════════════════════════════════════
#  Manual lifecycle
# ═══════════════════════════════════════════════════════════════════════════

def _load_alert(alert_id: str) -> UrgentShiftAlert | None:
    return db.session.get(UrgentShiftAlert, alert_id)


def acknowledge_alert(alert_id: str, acknowledged_by: str, notes: str | None = None,
                      *, now: datetime | None = None) -> ServiceResult[UrgentShiftAlert]:
    try:
        alert = _load_alert(alert_id)
        if alert is None:
            return ServiceResult.fail(E.ALERT_NOT_FOUND, "Alert not found", {"alert_id": alert_id})
        if not validate_alert_transition(alert.status, "acknowledged"):
            return ServiceResult.fail(E.INVALID_ALERT_STATE,
                                      f"Cannot acknowledge an alert that is {alert.status}")
        alert.status = "acknowledged"
        alert.acknowledged_by = acknowledged_by
        alert.acknowledged_at = _now(now)
        alert.acknowledgment_notes = notes
        write_audit(entity_type="alert", entity_id=alert.id, action="alert.acknowledge",
                    actor=acknowledged_by, diff={"notes": notes})
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Failed to acknowledge alert %s: %s", alert_id, exc, extra={"alert_id": alert_id})
        return ServiceResult.fail(E.ALERT_UPDATE_ERROR, "Failed to acknowledge alert", {"error": str(exc)})
    return ServiceResult.ok(alert)


def resolve_alert(alert_id: str, resolved_by: str, resolution_notes: str | None = None,
                  *, now: datetime | None = None) -> ServiceResult[UrgentShiftAlert]:
    try:
        alert = _load_alert(alert_id)
        if alert is None:
            return ServiceResult.fail(E.ALERT_NOT_FOUND, "Alert not found", {"alert_id": alert_id})
        if not validate_alert_transition(alert.status, "resolved"):
            return ServiceResult.fail(E.INVALID_ALERT_STATE, "Alert is already resolved")
        alert.status = "resolved"
        alert.resolved_by = resolved_by
        alert.resolved_at = _now(now)
        alert.resolution_notes = resolution_notes
        write_audit(entity_type="alert", entity_id=alert.id, action="alert.resolve",
                    actor=resolved_by, diff={"resolution_notes": resolution_notes})
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Failed to resolve alert %s: %s", alert_id, exc, extra={"alert_id": alert_id})
        return ServiceResult.fail(E.ALERT_UPDATE_ERROR, "Failed to resolve alert", {"error": str(exc)})
    return ServiceResult.ok(alert)


def resolve_alerts_for_status(
    shift_id: str,
    new_status: str,
    resolved_by: str = "system",
    *,
    now: datetime | None = None,
) -> ServiceResult[list[UrgentShiftAlert]]:
    """Close the open alerts that ``new_status`` makes moot."""
    types = [t for t, statuses in AUTO_RESOLVE_STATUSES.items() if new_status in statuses]
    if not types:
        return ServiceResult.ok([])

    resolved_at = _now(now)
    try:
        alerts = db.session.execute(
            select(UrgentShiftAlert).where(
                UrgentShiftAlert.shift_id == shift_id,
                UrgentShiftAlert.alert_type.in_(types),
                UrgentShiftAlert.status.in_(OPEN_ALERT_STATUSES),
            )
        ).scalars().all()
        for alert in alerts:
            alert.status = "resolved"
            alert.resolved_by = resolved_by
            alert.resolved_at = resolved_at
            alert.resolution_notes = f"Auto-resolved: shift moved to {new_status}"
        if alerts:
            db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Alert auto-resolution failed for shift %s: %s", shift_id, exc,
                     extra={"shift_id": shift_id})
        return ServiceResult.fail(E.ALERT_UPDATE_ERROR, "Failed to auto-resolve alerts", {"error": str(exc)})

    if alerts:
        logger.info("Auto-resolved %d alert(s) on shift %s (now %s)", len(alerts), shift_id, new_status,
                    extra={"shift_id": shift_id})
    return ServiceResult.ok(list(alerts))


# ═══════════════════════════════════════════════════════════════════════════
#  Periodic maintenance
# ═══════════════════════════════════════════════════════════════════════════

def escalate_alerts(*, now: datetime | None = None) -> ServiceResult[list[UrgentShiftAlert]]:
    """Raise the level of active alerts that have waited past their thresholds."""
    now = _now(now)
    escalated: list[UrgentShiftAlert] = []
    try:
        alerts = db.session.execute(
            select(UrgentShiftAlert).where(
                UrgentShiftAlert.status == "active",
                UrgentShiftAlert.escalation_level < MAX_ESCALATION_LEVEL,
            )
        ).scalars().all()

        for alert in alerts:
            waited = _hours_between(now, alert.created_at)
            reached = [
                rule for rule in ESCALATION_RULES.get(alert.alert_type, ())
                if rule.level > alert.escalation_level and waited >= rule.after_hours
            ]
            if not reached:
                continue
            target = max(reached, key=lambda r: r.level)
            alert.escalation_level = min(target.level, MAX_ESCALATION_LEVEL)
            for rule in reached:
                if rule.priority:
                    alert.priority = rule.priority
            alert.last_escalated_at = now
            escalated.append(alert)

        if escalated:
            db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Alert escalation failed: %s", exc)
        return ServiceResult.fail(E.ESCALATION_ERROR, "Failed to escalate alerts", {"error": str(exc)})

    warnings: list[str] = []
    for alert in escalated:
        logger.warning("Alert %s escalated to level %d", alert.id, alert.escalation_level,
                       extra={"alert_id": alert.id, "shift_id": alert.shift_id})
        _dispatch(NotificationService.notify_alert_escalated, alert, warnings)
    return ServiceResult.ok(escalated, warnings)


def expire_stale_alerts(*, now: datetime | None = None) -> ServiceResult[list[UrgentShiftAlert]]:
    """Resolve open alerts whose shift has already ended."""
    now = _now(now)
    try:
        alerts = db.session.execute(
            select(UrgentShiftAlert)
            .join(Shift, Shift.id == UrgentShiftAlert.shift_id)
            .where(
                UrgentShiftAlert.status.in_(OPEN_ALERT_STATUSES),
                Shift.end_time <= now,
            )
        ).scalars().all()
        for alert in alerts:
            alert.status = "resolved"
            alert.resolved_by = "system"
            alert.resolved_at = now
            alert.resolution_notes = "Auto-resolved: shift has ended"
        if alerts:
            db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Stale alert expiry failed: %s", exc)
        return ServiceResult.fail(E.ALERT_UPDATE_ERROR, "Failed to expire stale alerts", {"error": str(exc)})
    return ServiceResult.ok(list(alerts))


# ═══════════════════════════════════════════════════════════════════════════
#  Queries
# ═══════════════════════════════════════════════════════════════════════════

def get_active_alerts(
    *,
    alert_types: list[str] | None = None,
    priorities: list[str] | None = None,
    shift_ids: list[str] | None = None,
    hours_until_max: float | None = None,
) -> ServiceResult[list[UrgentShiftAlert]]:
    """Active alerts, most severe first, then soonest shift."""
    stmt = select(UrgentShiftAlert).where(UrgentShiftAlert.status == "active")
    if alert_types:
        stmt = stmt.where(UrgentShiftAlert.alert_type.in_(alert_types))
    if priorities:
        stmt = stmt.where(UrgentShiftAlert.priority.in_(priorities))
    if shift_ids:
        stmt = stmt.where(UrgentShiftAlert.shift_id.in_(shift_ids))
    if hours_until_max is not None:
        stmt = stmt.where(UrgentShiftAlert.hours_until_shift <= hours_until_max)
    stmt = stmt.order_by(
        case(PRIORITY_RANK, value=UrgentShiftAlert.priority, else_=len(PRIORITY_RANK)),
        UrgentShiftAlert.hours_until_shift.asc(),
    )
    try:
        return ServiceResult.ok(list(db.session.execute(stmt).scalars().all()))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Failed to fetch active alerts: %s", exc)
        return ServiceResult.fail(E.ALERT_QUERY_ERROR, "Failed to retrieve active alerts", {"error": str(exc)})


def get_alert_metrics(
    period_start: datetime | None = None,
    period_end: datetime | None = None,
    *,
    now: datetime | None = None,
) -> ServiceResult[dict]:
    """Alert counts, resolution time and escalation rate over an optional creation window."""
    now = _now(now)
    stmt = select(UrgentShiftAlert)
    if period_start is not None:
        stmt = stmt.where(UrgentShiftAlert.created_at >= period_start)
    if period_end is not None:
        stmt = stmt.where(UrgentShiftAlert.created_at <= period_end)
    try:
        alerts = db.session.execute(stmt).scalars().all()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Failed to calculate alert metrics: %s", exc)
        return ServiceResult.fail(E.ALERT_QUERY_ERROR, "Failed to calculate alert metrics", {"error": str(exc)})

    by_type = {t: 0 for t in sorted(ALERT_TYPES)}
    by_priority = {p: 0 for p in ALERT_PRIORITIES}
    for a in alerts:
        by_type[a.alert_type] = by_type.get(a.alert_type, 0) + 1
        by_priority[a.priority] = by_priority.get(a.priority, 0) + 1

    active = [a for a in alerts if a.status == "active"]
    resolution_hours = [
        _hours_between(a.resolved_at, a.created_at)
        for a in alerts
        if a.status == "resolved" and a.resolved_at and a.created_at
    ]
    escalated = [a for a in alerts if (a.escalation_level or 1) > 1]
    cutoff = now - timedelta(hours=24)
    recent = [a for a in alerts if a.created_at and _as_utc(a.created_at) >= cutoff]

    return ServiceResult.ok({
        "total_alerts": len(alerts),
        "total_active_alerts": len(active),
        "alerts_by_type": by_type,
        "alerts_by_priority": by_priority,
        "avg_resolution_hours": round(sum(resolution_hours) / len(resolution_hours), 2) if resolution_hours else 0.0,
        "escalation_rate": round(len(escalated) / len(alerts) * 100, 1) if alerts else 0.0,
        "new_alerts_last_24h": sum(1 for a in recent if a.status == "active"),
        "resolved_alerts_last_24h": sum(1 for a in recent if a.status == "resolved"),
        "escalated_alerts_last_24h": sum(1 for a in recent if (a.escalation_level or 1) > 1),
        "critical_alerts_unresolved": sum(1 for a in active if a.priority == "critical"),
        "shifts_at_risk": len({a.shift_id for a in active}),
    })
