"""
Guard Shift Kanban
Shift Kanban Service — board read model, manual moves and bulk runs.

    get_kanban_board_data()   shifts + columns + alerts + metrics + recent activity (read only)
    move_shift()              manual transition, then audit + alert auto-resolution
    execute_bulk_action()     one action over many shifts, per-item isolation
    get_bulk_operation()      persisted bulk record

Side effects after a successful transition (audit row, alert
auto-resolution) never fail the move; their failures are returned as
``warnings``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone

from flask import current_app, has_app_context
from sqlalchemy import exists, select
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import ValidationError
from app.core.result import ServiceResult
from app.models import db
from app.models.alert import UrgentShiftAlert
from app.models.audit import write_audit
from app.models.bulk_operation import BulkOperation
from app.models.shift import Shift
from app.models.workflow import ShiftWorkflowTransition, WorkflowConfig
from app.services.bulk_actions import (
    BulkActionRequest,
    BulkContext,
    apply_to_shift,
    parse_bulk_request,
)
from app.services.shift_workflow_service import execute_transition, resolve_workflow
from app.services.urgent_alert_service import resolve_alerts_for_status
from app.utils.errors import E

logger = logging.getLogger(__name__)

ASSIGNMENT_FILTERS = ("assigned", "unassigned", "all")

# A status holding more than this share of the board is a bottleneck.
BOTTLENECK_SHARE = 0.2


@dataclass
class KanbanFilters:
    date_from: datetime | None = None
    date_to: datetime | None = None
    clients: list[str] = field(default_factory=list)
    sites: list[str] = field(default_factory=list)
    guards: list[str] = field(default_factory=list)
    statuses: list[str] = field(default_factory=list)
    priorities: list[int] = field(default_factory=list)
    assignment_status: str = "all"
    urgent_only: bool = False

    def to_dict(self) -> dict:
        return {
            "date_from": self.date_from.isoformat() if self.date_from else None,
            "date_to": self.date_to.isoformat() if self.date_to else None,
            "clients": list(self.clients),
            "sites": list(self.sites),
            "guards": list(self.guards),
            "statuses": list(self.statuses),
            "priorities": list(self.priorities),
            "assignment_status": self.assignment_status,
            "urgent_only": self.urgent_only,
        }


def _setting(key: str, default):
    if has_app_context():
        return current_app.config.get(key, default)
    return default


def _as_utc(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def _contains_any(value: str, needles: list[str]) -> bool:
    haystack = (value or "").lower()
    return any(n.lower() in haystack for n in needles if n)


# ═══════════════════════════════════════════════════════════════════════════
#  Board
# ═══════════════════════════════════════════════════════════════════════════

def _board_query(filters: KanbanFilters):
    stmt = select(Shift)
    if filters.date_from is not None:
        stmt = stmt.where(Shift.start_time >= filters.date_from)
    if filters.date_to is not None:
        stmt = stmt.where(Shift.start_time <= filters.date_to)
    if filters.statuses:
        stmt = stmt.where(Shift.status.in_(filters.statuses))
    else:
        stmt = stmt.where(Shift.status != "archived")
    if filters.guards:
        stmt = stmt.where(Shift.assigned_guard_id.in_(filters.guards))
    if filters.priorities:
        stmt = stmt.where(Shift.priority.in_(filters.priorities))
    if filters.assignment_status == "assigned":
        stmt = stmt.where(Shift.assigned_guard_id.isnot(None))
    elif filters.assignment_status == "unassigned":
        stmt = stmt.where(Shift.assigned_guard_id.is_(None))
    if filters.urgent_only:
        stmt = stmt.where(exists().where(
            UrgentShiftAlert.shift_id == Shift.id,
            UrgentShiftAlert.status == "active",
        ))
    return stmt.order_by(Shift.start_time.asc())


def _matches_text_filters(shift: Shift, filters: KanbanFilters) -> bool:
    # client_info / location_data are JSON; matched here to stay dialect-neutral.
    if filters.clients and not _contains_any(shift.client_name, filters.clients):
        return False
    if filters.sites:
        location = shift.location_data or {}
        if not (_contains_any(location.get("site_name", ""), filters.sites)
                or _contains_any(location.get("address", ""), filters.sites)):
            return False
    return True


def _hours_to_assignment(shifts: list[Shift]) -> float:
    """Mean hours from shift creation to its first move into ``assigned``."""
    if not shifts:
        return 0.0
    by_id = {s.id: s for s in shifts}
    rows = db.session.execute(
        select(ShiftWorkflowTransition.shift_id, ShiftWorkflowTransition.changed_at)
        .where(
            ShiftWorkflowTransition.shift_id.in_(by_id),
            ShiftWorkflowTransition.new_status == "assigned",
        )
        .order_by(ShiftWorkflowTransition.changed_at.asc())
    ).all()
    first: dict[str, datetime] = {}
    for shift_id, changed_at in rows:
        first.setdefault(shift_id, changed_at)

    durations = [
        (_as_utc(changed_at) - _as_utc(by_id[shift_id].created_at)).total_seconds() / 3600
        for shift_id, changed_at in first.items()
        if by_id[shift_id].created_at is not None
    ]
    return round(sum(durations) / len(durations), 2) if durations else 0.0


def _board_metrics(shifts: list[Shift], alerts_by_shift: dict[str, list], wf: WorkflowConfig) -> dict:
    total = len(shifts)
    by_status = {status: 0 for status in wf.statuses}
    for s in shifts:
        by_status[s.status] = by_status.get(s.status, 0) + 1

    completed = by_status.get("completed", 0)
    bottlenecks = [
        {"status": status, "shift_count": count}
        for status, count in by_status.items()
        if total and count > total * BOTTLENECK_SHARE
    ]
    return {
        "total_shifts": total,
        "shifts_by_status": by_status,
        "completion_rate": round(completed / total * 100, 1) if total else 0.0,
        "urgent_alerts_count": sum(1 for s in shifts if alerts_by_shift.get(s.id)),
        "avg_hours_to_assignment": _hours_to_assignment(shifts),
        "workflow_bottlenecks": bottlenecks,
    }


def _recent_activity(manager_id: str | None, limit: int) -> list[dict]:
    stmt = select(ShiftWorkflowTransition)
    if manager_id:
        stmt = stmt.where(ShiftWorkflowTransition.changed_by == manager_id)
    stmt = stmt.order_by(ShiftWorkflowTransition.changed_at.desc()).limit(limit)
    return [
        {
            "id": t.id,
            "activity_type": "bulk_operation" if t.bulk_operation_id else "shift_moved",
            "manager_id": t.changed_by,
            "timestamp": t.changed_at.isoformat() if t.changed_at else None,
            "shift_id": t.shift_id,
            "previous_status": t.previous_status,
            "new_status": t.new_status,
            "transition_method": t.transition_method,
            "bulk_operation_id": t.bulk_operation_id,
        }
        for t in db.session.execute(stmt).scalars().all()
    ]


def get_kanban_board_data(
    manager_id: str | None = None,
    filters: KanbanFilters | None = None,
    *,
    workflow: WorkflowConfig | None = None,
) -> ServiceResult[dict]:
    """Everything the board renders in one read model."""
    filters = filters or KanbanFilters()
    if filters.assignment_status not in ASSIGNMENT_FILTERS:
        return ServiceResult.fail(
            E.VALIDATION_ERROR, f"assignment_status must be one of: {', '.join(ASSIGNMENT_FILTERS)}",
            {"assignment_status": filters.assignment_status},
        )
    wf = resolve_workflow(workflow)

    try:
        shifts = [
            s for s in db.session.execute(_board_query(filters)).scalars().all()
            if _matches_text_filters(s, filters)
        ]

        alerts_by_shift: dict[str, list] = {}
        if shifts:
            alerts = db.session.execute(
                select(UrgentShiftAlert).where(
                    UrgentShiftAlert.shift_id.in_([s.id for s in shifts]),
                    UrgentShiftAlert.status == "active",
                )
            ).scalars().all()
            for alert in alerts:
                alerts_by_shift.setdefault(alert.shift_id, []).append(alert.to_dict())

        shift_rows = []
        for s in shifts:
            row = s.to_dict(include_assignments=True)
            row["alerts"] = alerts_by_shift.get(s.id, [])
            shift_rows.append(row)

        board = {
            "shifts": shift_rows,
            "columns": wf.to_list(),
            "filters": filters.to_dict(),
            "metrics": _board_metrics(shifts, alerts_by_shift, wf),
            "recent_activity": _recent_activity(manager_id, _setting("RECENT_ACTIVITY_LIMIT", 20)),
        }
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Error getting Kanban board data: %s", exc, extra={"manager_id": manager_id})
        return ServiceResult.fail(E.BOARD_DATA_ERROR, "Failed to retrieve Kanban board data",
                                  {"error": str(exc)})
    return ServiceResult.ok(board)


# ═══════════════════════════════════════════════════════════════════════════
#  Moves
# ═══════════════════════════════════════════════════════════════════════════

def _after_transition(shift_id: str, new_status: str, *, actor: str = "system",
                      audit_diff: dict | None = None) -> list[str]:
    """Audit + alert auto-resolution for a committed transition; returns warnings."""
    warnings: list[str] = []
    if audit_diff is not None:
        try:
            write_audit(entity_type="shift", entity_id=shift_id, action="shift.moved",
                        actor=actor, diff=audit_diff)
            db.session.commit()
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.warning("Audit write failed for shift %s: %s", shift_id, exc, extra={"shift_id": shift_id})
            warnings.append(f"Audit entry could not be recorded: {exc}")

    resolved = resolve_alerts_for_status(shift_id, new_status, resolved_by=actor)
    if not resolved.success:
        warnings.append(f"{resolved.error.code}: {resolved.error.message}")
    return warnings


def move_shift(
    shift_id: str,
    new_status: str,
    manager_id: str,
    reason: str | None = None,
    *,
    expected_version: int | None = None,
    workflow: WorkflowConfig | None = None,
    now: datetime | None = None,
) -> ServiceResult[ShiftWorkflowTransition]:
    """Drag-and-drop move on the board."""
    result = execute_transition(
        shift_id, new_status, manager_id,
        transition_reason=reason,
        transition_method="manual",
        expected_version=expected_version,
        workflow=workflow,
        now=now,
    )
    if not result.success:
        return result

    transition = result.data
    warnings = _after_transition(
        shift_id, new_status, actor=manager_id,
        audit_diff={"previous_status": transition.previous_status,
                    "new_status": transition.new_status,
                    "reason": reason},
    )
    return ServiceResult.ok(transition, warnings)


# ═══════════════════════════════════════════════════════════════════════════
#  Archiving
# ═══════════════════════════════════════════════════════════════════════════

def _completion_snapshot(shift: Shift) -> dict:
    scheduled = (_as_utc(shift.end_time) - _as_utc(shift.start_time)).total_seconds() / 3600
    return {
        "guard_id": shift.assigned_guard_id,
        "scheduled_hours": round(scheduled, 2),
        "guard_confirmed": shift.has_confirmed_assignment(),
        "client": shift.client_name,
        "site": shift.site_name,
    }


def auto_archive_completed_shifts(
    older_than_days: int | None = None,
    *,
    limit: int = 100,
    now: datetime | None = None,
) -> ServiceResult[dict]:
    """
    Move ``completed`` shifts untouched for ``older_than_days`` to ``archived``.

    Runs as the ``system`` user with transition method ``automatic``.  A
    shift that cannot be archived is listed in ``errors`` and the batch
    carries on.
    """
    if older_than_days is None:
        older_than_days = _setting("AUTO_ARCHIVE_AFTER_DAYS", 7)
    now = _as_utc(now) if now else datetime.now(timezone.utc)
    cutoff = now - timedelta(days=older_than_days)

    try:
        shifts = db.session.execute(
            select(Shift)
            .where(Shift.status == "completed", Shift.updated_at < cutoff)
            .order_by(Shift.updated_at)
            .limit(limit)
        ).scalars().all()
        candidates = [(s.id, _completion_snapshot(s)) for s in shifts]
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Auto-archive query failed: %s", exc)
        return ServiceResult.fail(E.ARCHIVE_ERROR, "Failed to load shifts for archiving", {"error": str(exc)})

    reason = f"Auto-archived {older_than_days} days after completion"
    archived: list[str] = []
    errors: list[str] = []
    warnings: list[str] = []
    for shift_id, snapshot in candidates:
        result = execute_transition(
            shift_id, "archived", "system",
            transition_reason=reason,
            transition_method="automatic",
            now=now,
        )
        if not result.success:
            errors.append(f"Failed to archive shift {shift_id}: {result.error.code}: {result.error.message}")
            continue
        archived.append(shift_id)
        warnings.extend(_after_transition(
            shift_id, "archived",
            audit_diff={"previous_status": "completed", "new_status": "archived",
                        "reason": reason, "completion_metrics": snapshot},
        ))

    logger.info("Auto-archive: %d archived, %d failed", len(archived), len(errors))
    return ServiceResult.ok({"archived": archived, "errors": errors}, warnings)


# ═══════════════════════════════════════════════════════════════════════════
#  Bulk
# ═══════════════════════════════════════════════════════════════════════════

def _close_failed_operation(operation_id: str, results: list[dict]) -> None:
    """Mark an interrupted run failed, keeping the items that did finish."""
    try:
        operation = db.session.get(BulkOperation, operation_id)
        if operation is None:
            return
        operation.results = list(results)
        operation.status = "failed"
        operation.completed_at = datetime.now(timezone.utc)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Could not close bulk operation %s: %s", operation_id, exc,
                     extra={"bulk_operation_id": operation_id})


def execute_bulk_action(request: BulkActionRequest | dict, executed_by: str) -> ServiceResult[BulkOperation]:
    """
    Apply one action to every shift in the request, in order.

    Each shift succeeds or fails on its own; the operation is
    ``completed`` only when every item succeeded, otherwise ``failed``.
    """
    if not isinstance(request, BulkActionRequest):
        try:
            request = parse_bulk_request(request, max_shifts=_setting("BULK_MAX_SHIFTS", 50))
        except ValidationError as exc:
            return ServiceResult.fail(E.VALIDATION_ERROR, str(exc), exc.details)

    operation_id = None
    results: list[dict] = []
    try:
        operation = BulkOperation(
            operation_type=request.operation_type,
            shift_ids=list(request.shift_ids),
            parameters=request.parameters,
            reason=request.reason,
            executed_by=executed_by,
            status="executing",
            results=[],
        )
        db.session.add(operation)
        db.session.commit()
        operation_id = operation.id

        ctx = BulkContext(
            operation_id=operation_id,
            executed_by=executed_by,
            reason=request.reason,
            after_transition=lambda sid, status: _after_transition(sid, status, actor=executed_by),
        )
        for shift_id in request.shift_ids:
            results.append(apply_to_shift(request.action, shift_id, ctx))

        operation = db.session.get(BulkOperation, operation_id)
        operation.results = results
        operation.status = "completed" if all(r["success"] for r in results) else "failed"
        operation.completed_at = datetime.now(timezone.utc)
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Error executing bulk action %s: %s", request.operation_type, exc)
        details = {"error": str(exc)}
        if operation_id is not None:
            _close_failed_operation(operation_id, results)
            details["bulk_operation_id"] = operation_id
        return ServiceResult.fail(E.BULK_ACTION_ERROR, "Failed to execute bulk action", details)

    warnings = list(ctx.warnings)
    try:
        write_audit(
            entity_type="bulk_operation", entity_id=operation.id, action="shift.bulk_operation",
            actor=executed_by,
            diff={"operation_type": operation.operation_type,
                  "success_count": operation.success_count,
                  "failure_count": operation.failure_count,
                  "shift_ids": list(request.shift_ids)},
        )
        db.session.commit()
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.warning("Audit write failed for bulk operation %s: %s", operation_id, exc,
                       extra={"bulk_operation_id": operation_id})
        warnings.append(f"Audit entry could not be recorded: {exc}")

    logger.info(
        "Bulk %s by %s: %d/%d succeeded", operation.operation_type, executed_by,
        operation.success_count, len(results), extra={"bulk_operation_id": operation_id},
    )
    return ServiceResult.ok(operation, warnings)


def get_bulk_operation(operation_id: str) -> ServiceResult[BulkOperation]:
    try:
        operation = db.session.get(BulkOperation, operation_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Failed to load bulk operation %s: %s", operation_id, exc)
        return ServiceResult.fail(E.BULK_ACTION_ERROR, "Failed to retrieve bulk operation", {"error": str(exc)})
    if operation is None:
        return ServiceResult.fail(E.BULK_OPERATION_NOT_FOUND, "Bulk operation not found",
                                  {"operation_id": operation_id})
    return ServiceResult.ok(operation)
