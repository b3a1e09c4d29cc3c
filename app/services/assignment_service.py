"""
Guard Shift Kanban
Assignment Service — guard-to-shift assignment and confirmation.

Both operations ``flush`` and leave the commit to the caller, like
``write_audit``.  Status moves on the board stay with the workflow
service; this module only touches assignment data.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone

from sqlalchemy import select

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.shift import Shift, ShiftAssignment

logger = logging.getLogger(__name__)

# A guard can only be (re)assigned while the shift has not started.
ASSIGNABLE_STATUSES = {"unassigned", "assigned", "confirmed", "issue_logged"}

_OPEN_ASSIGNMENT_STATUSES = ("pending", "confirmed")


def _open_assignments(shift_id: str) -> list[ShiftAssignment]:
    return list(db.session.execute(
        select(ShiftAssignment).where(
            ShiftAssignment.shift_id == shift_id,
            ShiftAssignment.assignment_status.in_(_OPEN_ASSIGNMENT_STATUSES),
        )
    ).scalars().all())


def assign_guard(shift_id: str, guard_id: str, assigned_by: str) -> ShiftAssignment:
    """Point the shift at *guard_id* and record a pending assignment.

    Open assignments held by another guard are cancelled.  Re-assigning
    the current guard returns the existing record.
    """
    if not guard_id:
        raise ValidationError("guard_id is required", details={"guard_id": "required"})
    shift = db.session.get(Shift, shift_id)
    if shift is None:
        raise NotFoundError(resource="Shift", resource_id=shift_id)
    if shift.status not in ASSIGNABLE_STATUSES:
        raise ValidationError(f"Cannot assign a guard to a shift that is {shift.status}",
                              details={"status": shift.status})

    current = None
    for existing in _open_assignments(shift_id):
        if existing.guard_id == guard_id:
            current = existing
        else:
            existing.assignment_status = "cancelled"

    if current is None:
        current = ShiftAssignment(
            shift_id=shift_id,
            guard_id=guard_id,
            assignment_status="pending",
            assigned_by=assigned_by,
        )
        db.session.add(current)

    shift.assigned_guard_id = guard_id
    db.session.flush()
    logger.info("Guard %s assigned to shift %s by %s", guard_id, shift_id, assigned_by,
                extra={"shift_id": shift_id})
    return current


def confirm_assignment(shift_id: str, guard_id: str, *, now: datetime | None = None) -> ShiftAssignment:
    """Mark the guard's open assignment on the shift as confirmed."""
    match = next((a for a in _open_assignments(shift_id) if a.guard_id == guard_id), None)
    if match is None:
        raise NotFoundError(resource="ShiftAssignment", resource_id=f"{shift_id}/{guard_id}")
    if match.confirmed_at is None:
        match.assignment_status = "confirmed"
        match.confirmed_at = now or datetime.now(timezone.utc)
        db.session.flush()
    return match
