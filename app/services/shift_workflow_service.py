"""
Guard Shift Kanban
Shift Workflow Service — Kanban state machine.

    validate_transition()      structural edge check + destination business rules (read only)
    execute_transition()       status update + history row in one transaction, optimistic concurrency
    get_workflow_history()     newest-first transitions for one shift
    get_workflow_statistics()  shift counts per status
    get_workflow_config()      the column table in effect

The column table is injected: every call accepts ``workflow=``; when omitted
the app config key ``SHIFT_WORKFLOW`` is used, then ``DEFAULT_WORKFLOW``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable

from flask import current_app, has_app_context
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm.exc import StaleDataError

from app.core.result import ServiceResult
from app.models import db
from app.models.shift import Shift, ShiftAssignment
from app.models.workflow import (
    APPROVAL_REQUIRED_STATUSES,
    DEFAULT_WORKFLOW,
    TRANSITION_METHODS,
    ShiftWorkflowTransition,
    WorkflowConfig,
)
from app.utils.errors import E

logger = logging.getLogger(__name__)


def _as_utc(dt: datetime) -> datetime:
    """Normalise a datetime to UTC-aware (SQLite hands back naive values)."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def resolve_workflow(workflow: WorkflowConfig | None = None) -> WorkflowConfig:
    if workflow is not None:
        return workflow
    if has_app_context():
        configured = current_app.config.get("SHIFT_WORKFLOW")
        if configured is not None:
            return configured
    return DEFAULT_WORKFLOW


@dataclass(frozen=True)
class StatusTransition:
    """Outcome of a transition check."""

    from_status: str
    to_status: str
    is_valid: bool
    requires_approval: bool
    validation_rules: tuple[str, ...] = ()
    business_rules: tuple[str, ...] = field(default_factory=tuple)

    def to_dict(self) -> dict:
        return {
            "from_status": self.from_status,
            "to_status": self.to_status,
            "is_valid": self.is_valid,
            "requires_approval": self.requires_approval,
            "validation_rules": list(self.validation_rules),
            "business_rules": list(self.business_rules),
        }


# ═══════════════════════════════════════════════════════════════════════════
#  Business rules (keyed by destination status)
# ═══════════════════════════════════════════════════════════════════════════
#
# Each rule returns None when satisfied, or (code, message) when violated.

def _rule_guard_assigned(shift: Shift, now: datetime):
    if not shift.assigned_guard_id:
        return E.GUARD_ASSIGNMENT_REQUIRED, "Guard assignment required before changing status to assigned"
    return None


def _rule_guard_confirmed(shift: Shift, now: datetime):
    count = db.session.execute(
        select(func.count(ShiftAssignment.id)).where(ShiftAssignment.shift_id == shift.id)
    ).scalar_one()
    if count == 0:
        return E.GUARD_CONFIRMATION_REQUIRED, "Guard confirmation required before changing status to confirmed"
    return None


def _rule_shift_started(shift: Shift, now: datetime):
    if _as_utc(shift.start_time) > now:
        return E.SHIFT_NOT_STARTED, "Shift cannot be marked in progress before start time"
    return None


def _rule_completion_criteria(shift: Shift, now: datetime):
    if not shift.assigned_guard_id:
        return E.COMPLETION_CRITERIA_NOT_MET, "Cannot complete shift without guard assignment"
    return None


_BUSINESS_RULES: dict[str, tuple[str, Callable, str]] = {
    "assigned": (E.GUARD_ASSIGNMENT_REQUIRED, _rule_guard_assigned, "Guard assignment validated"),
    "confirmed": (E.GUARD_CONFIRMATION_REQUIRED, _rule_guard_confirmed, "Guard confirmation validated"),
    "in_progress": (E.SHIFT_NOT_STARTED, _rule_shift_started, "Shift timing validated"),
    "completed": (E.COMPLETION_CRITERIA_NOT_MET, _rule_completion_criteria, "Completion criteria validated"),
}


# ═══════════════════════════════════════════════════════════════════════════
#  Validation
# ═══════════════════════════════════════════════════════════════════════════

def validate_transition(
    from_status: str,
    to_status: str,
    shift_id: str,
    *,
    workflow: WorkflowConfig | None = None,
    now: datetime | None = None,
) -> ServiceResult[StatusTransition]:
    """Check ``from_status → to_status`` for a shift.  Never writes.

    An edge missing from the column table is reported as
    ``is_valid=False`` (success envelope); a violated business rule is a
    failure carrying the rule's code.
    """
    wf = resolve_workflow(workflow)
    from_col = wf.column(from_status)
    if from_col is None or wf.column(to_status) is None:
        return ServiceResult.fail(
            E.INVALID_STATUS, "Invalid status provided for transition",
            {"from_status": from_status, "to_status": to_status},
        )

    now = _as_utc(now) if now else datetime.now(timezone.utc)
    is_valid = wf.allows(from_status, to_status)
    rule = _BUSINESS_RULES.get(to_status)
    validation_rules = (rule[0],) if rule else ()
    passed: list[str] = []

    if is_valid and from_col.requires_validation and rule:
        try:
            shift = db.session.get(Shift, shift_id)
            if shift is None:
                return ServiceResult.fail(E.SHIFT_NOT_FOUND, "Shift not found for validation",
                                          {"shift_id": shift_id})
            violation = rule[1](shift, now)
        except SQLAlchemyError as exc:
            db.session.rollback()
            logger.error("Business rule validation failed for shift %s: %s", shift_id, exc)
            return ServiceResult.fail(E.VALIDATION_ERROR, "Failed to validate business rules",
                                      {"error": str(exc)})
        if violation:
            code, message = violation
            return ServiceResult.fail(code, message, {"shift_id": shift_id})
        passed.append(rule[2])

    return ServiceResult.ok(StatusTransition(
        from_status=from_status,
        to_status=to_status,
        is_valid=is_valid,
        requires_approval=to_status in APPROVAL_REQUIRED_STATUSES,
        validation_rules=validation_rules,
        business_rules=tuple(passed),
    ))


# ═══════════════════════════════════════════════════════════════════════════
#  Execution
# ═══════════════════════════════════════════════════════════════════════════

def execute_transition(
    shift_id: str,
    new_status: str,
    changed_by: str,
    *,
    transition_reason: str | None = None,
    transition_method: str = "manual",
    bulk_operation_id: str | None = None,
    bypass_validation: bool = False,
    expected_version: int | None = None,
    workflow: WorkflowConfig | None = None,
    now: datetime | None = None,
) -> ServiceResult[ShiftWorkflowTransition]:
    """
    Move a shift to ``new_status`` and append the history row.

    Both writes share one commit.  ``Shift.version`` is compared on
    UPDATE, so a writer that loaded the shift before a concurrent change
    gets ``CONCURRENT_MODIFICATION`` and nothing is persisted.
    ``expected_version`` lets HTTP callers pin the version they rendered.
    """
    if transition_method not in TRANSITION_METHODS:
        return ServiceResult.fail(E.VALIDATION_ERROR, f"Unknown transition method: {transition_method}")

    try:
        shift = db.session.get(Shift, shift_id)
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Failed to load shift %s: %s", shift_id, exc)
        return ServiceResult.fail(E.TRANSITION_ERROR, "Failed to execute workflow transition",
                                  {"error": str(exc)})
    if shift is None:
        return ServiceResult.fail(E.SHIFT_NOT_FOUND, "Shift not found", {"shift_id": shift_id})

    if expected_version is not None and shift.version != expected_version:
        return ServiceResult.fail(
            E.CONCURRENT_MODIFICATION,
            "Shift was modified by another user; reload and retry",
            {"shift_id": shift_id, "expected_version": expected_version, "current_version": shift.version},
        )

    current_status = shift.status

    if not bypass_validation:
        validation = validate_transition(current_status, new_status, shift_id, workflow=workflow, now=now)
        if not validation.success:
            return ServiceResult(success=False, error=validation.error)
        if not validation.data.is_valid:
            return ServiceResult.fail(
                E.INVALID_TRANSITION,
                f"Invalid transition from {current_status} to {new_status}",
                {"from_status": current_status, "to_status": new_status},
            )
    elif new_status not in resolve_workflow(workflow).statuses:
        return ServiceResult.fail(E.INVALID_STATUS, "Invalid status provided for transition",
                                  {"to_status": new_status})

    transition = ShiftWorkflowTransition(
        shift_id=shift.id,
        previous_status=current_status,
        new_status=new_status,
        changed_by=changed_by,
        transition_reason=transition_reason,
        transition_method=transition_method,
        bulk_operation_id=bulk_operation_id,
    )
    if now is not None:
        transition.changed_at = _as_utc(now)

    try:
        shift.status = new_status
        db.session.add(transition)
        db.session.commit()
    except StaleDataError:
        db.session.rollback()
        logger.warning(
            "Concurrent modification of shift %s (%s → %s)", shift_id, current_status, new_status,
            extra={"shift_id": shift_id},
        )
        return ServiceResult.fail(
            E.CONCURRENT_MODIFICATION,
            "Shift was modified by another user; reload and retry",
            {"shift_id": shift_id},
        )
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Error executing workflow transition for shift %s: %s", shift_id, exc,
                     extra={"shift_id": shift_id})
        return ServiceResult.fail(E.TRANSITION_ERROR, "Failed to execute workflow transition",
                                  {"error": str(exc)})

    logger.info(
        "Shift %s: %s → %s by %s (%s)", shift_id, current_status, new_status, changed_by,
        transition_method, extra={"shift_id": shift_id},
    )
    return ServiceResult.ok(transition)


# ═══════════════════════════════════════════════════════════════════════════
#  Read helpers
# ═══════════════════════════════════════════════════════════════════════════

def get_workflow_config(workflow: WorkflowConfig | None = None) -> ServiceResult[WorkflowConfig]:
    return ServiceResult.ok(resolve_workflow(workflow))


def get_workflow_history(shift_id: str, limit: int = 20) -> ServiceResult[list[ShiftWorkflowTransition]]:
    """Transitions for one shift, newest first."""
    try:
        stmt = (
            select(ShiftWorkflowTransition)
            .where(ShiftWorkflowTransition.shift_id == shift_id)
            .order_by(ShiftWorkflowTransition.changed_at.desc())
            .limit(limit)
        )
        return ServiceResult.ok(list(db.session.execute(stmt).scalars().all()))
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Error getting workflow history for %s: %s", shift_id, exc)
        return ServiceResult.fail(E.HISTORY_ERROR, "Failed to retrieve workflow history",
                                  {"error": str(exc)})


def get_workflow_statistics(
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    *,
    workflow: WorkflowConfig | None = None,
) -> ServiceResult[dict[str, int]]:
    """Shift count per status (every status present, zero-filled).

    The optional window filters on ``Shift.created_at``.
    """
    stats = {status: 0 for status in resolve_workflow(workflow).statuses}
    try:
        stmt = select(Shift.status, func.count(Shift.id)).group_by(Shift.status)
        if date_from is not None:
            stmt = stmt.where(Shift.created_at >= date_from)
        if date_to is not None:
            stmt = stmt.where(Shift.created_at <= date_to)
        for status, count in db.session.execute(stmt):
            if status in stats:
                stats[status] = count
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Error getting workflow statistics: %s", exc)
        return ServiceResult.fail(E.STATISTICS_ERROR, "Failed to retrieve workflow statistics",
                                  {"error": str(exc)})
    return ServiceResult.ok(stats)
