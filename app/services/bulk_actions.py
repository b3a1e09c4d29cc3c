"""
Guard Shift Kanban
Bulk actions — request parsing + per-shift handlers.

Every bulk request carries exactly one action, modelled as a closed set
of frozen dataclasses:

    StatusChange(new_status)     → workflow transition, method "bulk"
    AssignGuard(guard_id)        → assignment service (+ unassigned → assigned)
    PriorityUpdate(priority)     → direct field update
    Notify(message)              → notification service
    CloneShift(offset_days)      → shift service clone

``HANDLERS`` maps each action class to the function that applies it to a
single shift; the module refuses to import if an action has no handler.
A handler returns the item's new value or raises ``BulkItemError``.
"""

from __future__ import annotations

import logging
from dataclasses import asdict, dataclass, field
from typing import Callable, ClassVar, Union

from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import NotFoundError, ValidationError
from app.models import db
from app.models.bulk_operation import BULK_ACTION_TYPES
from app.models.shift import MAX_PRIORITY, MIN_PRIORITY, SHIFT_STATUSES, Shift
from app.services.assignment_service import assign_guard
from app.services.notification import NotificationService
from app.services.shift_service import clone_shift
from app.services.shift_workflow_service import execute_transition
from app.utils.errors import E

logger = logging.getLogger(__name__)

MAX_NOTIFICATION_LENGTH = 500
MAX_CLONE_OFFSET_DAYS = 365
DEFAULT_CLONE_OFFSET_DAYS = 7


class BulkItemError(Exception):
    """Failure of one shift inside a bulk run."""

    def __init__(self, code: str, message: str) -> None:
        self.code = code
        super().__init__(message)


# ── Actions ─────────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class StatusChange:
    kind: ClassVar[str] = "status_change"
    new_status: str


@dataclass(frozen=True)
class AssignGuard:
    kind: ClassVar[str] = "assign"
    guard_id: str


@dataclass(frozen=True)
class PriorityUpdate:
    kind: ClassVar[str] = "priority_update"
    priority: int


@dataclass(frozen=True)
class Notify:
    kind: ClassVar[str] = "notification"
    message: str


@dataclass(frozen=True)
class CloneShift:
    kind: ClassVar[str] = "clone"
    offset_days: int = DEFAULT_CLONE_OFFSET_DAYS


BulkAction = Union[StatusChange, AssignGuard, PriorityUpdate, Notify, CloneShift]

ACTION_CLASSES: tuple[type, ...] = (StatusChange, AssignGuard, PriorityUpdate, Notify, CloneShift)
ACTIONS_BY_KIND = {cls.kind: cls for cls in ACTION_CLASSES}
if set(ACTIONS_BY_KIND) != set(BULK_ACTION_TYPES):
    raise RuntimeError(f"Bulk action kinds {sorted(ACTIONS_BY_KIND)} do not match {sorted(BULK_ACTION_TYPES)}")


@dataclass(frozen=True)
class BulkActionRequest:
    action: BulkAction
    shift_ids: tuple[str, ...]
    reason: str | None = None

    @property
    def operation_type(self) -> str:
        return self.action.kind

    @property
    def parameters(self) -> dict:
        return asdict(self.action)


@dataclass
class BulkContext:
    operation_id: str
    executed_by: str
    reason: str | None
    # Called after each successful transition; returns side-effect warnings.
    after_transition: Callable[[str, str], list[str]]
    warnings: list[str] = field(default_factory=list)


# ── Parsing ─────────────────────────────────────────────────────────────────


def _parse_action(kind: str, params: dict) -> BulkAction:
    if kind == "status_change":
        new_status = params.get("new_status")
        if new_status not in SHIFT_STATUSES:
            raise ValidationError("new_status must be a valid shift status",
                                  details={"new_status": new_status})
        return StatusChange(new_status=new_status)

    if kind == "assign":
        guard_id = params.get("guard_id")
        if not isinstance(guard_id, str) or not guard_id.strip():
            raise ValidationError("guard_id is required for assign", details={"guard_id": "required"})
        return AssignGuard(guard_id=guard_id.strip())

    if kind == "priority_update":
        priority = params.get("priority")
        if isinstance(priority, bool) or not isinstance(priority, int) \
                or not MIN_PRIORITY <= priority <= MAX_PRIORITY:
            raise ValidationError(
                f"priority must be an integer between {MIN_PRIORITY} and {MAX_PRIORITY}",
                details={"priority": priority},
            )
        return PriorityUpdate(priority=priority)

    if kind == "notification":
        message = params.get("message")
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("message is required for notification", details={"message": "required"})
        if len(message) > MAX_NOTIFICATION_LENGTH:
            raise ValidationError(f"message must be at most {MAX_NOTIFICATION_LENGTH} characters",
                                  details={"message": len(message)})
        return Notify(message=message.strip())

    # clone
    offset = params.get("offset_days", DEFAULT_CLONE_OFFSET_DAYS)
    if isinstance(offset, bool) or not isinstance(offset, int) or not 1 <= offset <= MAX_CLONE_OFFSET_DAYS:
        raise ValidationError(f"offset_days must be an integer between 1 and {MAX_CLONE_OFFSET_DAYS}",
                              details={"offset_days": offset})
    return CloneShift(offset_days=offset)


def parse_bulk_request(payload: dict, *, max_shifts: int = 50) -> BulkActionRequest:
    """Validate a raw ``{action, shift_ids, parameters, reason}`` body."""
    if not isinstance(payload, dict):
        raise ValidationError("Request body must be a JSON object")

    kind = payload.get("action")
    if kind not in ACTIONS_BY_KIND:
        raise ValidationError(f"action must be one of: {', '.join(ACTIONS_BY_KIND)}",
                              details={"action": kind})

    shift_ids = payload.get("shift_ids")
    if not isinstance(shift_ids, list) or not shift_ids:
        raise ValidationError("shift_ids must be a non-empty list", details={"shift_ids": "required"})
    if len(shift_ids) > max_shifts:
        raise ValidationError(f"At most {max_shifts} shifts per bulk operation",
                              details={"shift_ids": len(shift_ids)})
    if not all(isinstance(s, str) and s for s in shift_ids):
        raise ValidationError("shift_ids must contain shift id strings", details={"shift_ids": "invalid"})

    params = payload.get("parameters") or {}
    if not isinstance(params, dict):
        raise ValidationError("parameters must be an object", details={"parameters": "invalid"})

    reason = payload.get("reason")
    if reason is not None and not isinstance(reason, str):
        raise ValidationError("reason must be a string", details={"reason": "invalid"})

    return BulkActionRequest(
        action=_parse_action(kind, params),
        shift_ids=tuple(shift_ids),
        reason=reason,
    )


# ── Handlers ────────────────────────────────────────────────────────────────


def _transition(shift_id: str, new_status: str, ctx: BulkContext) -> None:
    result = execute_transition(
        shift_id, new_status, ctx.executed_by,
        transition_reason=ctx.reason,
        transition_method="bulk",
        bulk_operation_id=ctx.operation_id,
    )
    if not result.success:
        raise BulkItemError(result.error.code, result.error.message)
    ctx.warnings.extend(ctx.after_transition(shift_id, new_status))


def _load_shift(shift_id: str) -> Shift:
    shift = db.session.get(Shift, shift_id)
    if shift is None:
        raise BulkItemError(E.SHIFT_NOT_FOUND, "Shift not found")
    return shift


def _handle_status_change(action: StatusChange, shift_id: str, ctx: BulkContext):
    _transition(shift_id, action.new_status, ctx)
    return action.new_status


def _handle_assign(action: AssignGuard, shift_id: str, ctx: BulkContext):
    try:
        assign_guard(shift_id, action.guard_id, ctx.executed_by)
        db.session.commit()
    except NotFoundError as exc:
        db.session.rollback()
        raise BulkItemError(E.SHIFT_NOT_FOUND, str(exc)) from exc
    except ValidationError as exc:
        db.session.rollback()
        raise BulkItemError(E.VALIDATION_ERROR, str(exc)) from exc

    if _load_shift(shift_id).status == "unassigned":
        _transition(shift_id, "assigned", ctx)
    return action.guard_id


def _handle_priority_update(action: PriorityUpdate, shift_id: str, ctx: BulkContext):
    shift = _load_shift(shift_id)
    shift.priority = action.priority
    db.session.commit()
    return action.priority


def _handle_notify(action: Notify, shift_id: str, ctx: BulkContext):
    notif = NotificationService.notify_shift(_load_shift(shift_id), action.message)
    return notif.id


def _handle_clone(action: CloneShift, shift_id: str, ctx: BulkContext):
    try:
        clone = clone_shift(shift_id, action.offset_days, created_by=ctx.executed_by)
        db.session.commit()
    except NotFoundError as exc:
        db.session.rollback()
        raise BulkItemError(E.SHIFT_NOT_FOUND, str(exc)) from exc
    return clone.id


HANDLERS: dict[type, Callable] = {
    StatusChange: _handle_status_change,
    AssignGuard: _handle_assign,
    PriorityUpdate: _handle_priority_update,
    Notify: _handle_notify,
    CloneShift: _handle_clone,
}

_unhandled = set(ACTION_CLASSES) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"Bulk actions without a handler: {sorted(c.__name__ for c in _unhandled)}")


def apply_to_shift(action: BulkAction, shift_id: str, ctx: BulkContext) -> dict:
    """Run *action* on one shift; never raises for item-level failures."""
    handler = HANDLERS[type(action)]
    try:
        new_value = handler(action, shift_id, ctx)
    except BulkItemError as exc:
        return {"shift_id": shift_id, "success": False, "new_value": None,
                "error": {"code": exc.code, "message": str(exc)}}
    except SQLAlchemyError as exc:
        db.session.rollback()
        logger.error("Bulk %s failed on shift %s: %s", action.kind, shift_id, exc,
                     extra={"shift_id": shift_id, "bulk_operation_id": ctx.operation_id})
        return {"shift_id": shift_id, "success": False, "new_value": None,
                "error": {"code": E.DATABASE, "message": "Database error while applying action"}}
    return {"shift_id": shift_id, "success": True, "new_value": new_value, "error": None}
