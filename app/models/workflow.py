"""
Guard Shift Kanban
Workflow configuration + transition history.

    - WorkflowColumn / WorkflowConfig:  immutable Kanban column table (allowed edges per status)
    - DEFAULT_WORKFLOW:                 the seven-column board used unless another config is injected
    - ShiftWorkflowTransition:          append-only status change log

Board:
    unassigned   → assigned | issue_logged
    assigned     → confirmed | unassigned | issue_logged
    confirmed    → in_progress | assigned | issue_logged
    in_progress  → completed | issue_logged
    completed    → archived | issue_logged
    issue_logged → unassigned | assigned | confirmed | completed | archived
    archived     → (terminal)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone

from app.models import db


TRANSITION_METHODS = {"manual", "bulk", "automatic"}

# Destination statuses that need sign-off before the move is final.
APPROVAL_REQUIRED_STATUSES = frozenset({"archived"})


@dataclass(frozen=True)
class WorkflowColumn:
    status: str
    title: str
    description: str
    color: str
    allowed_transitions: tuple[str, ...]
    requires_validation: bool

    def to_dict(self) -> dict:
        return {
            "id": self.status,
            "title": self.title,
            "description": self.description,
            "color": self.color,
            "allowed_transitions": list(self.allowed_transitions),
            "requires_validation": self.requires_validation,
        }


@dataclass(frozen=True)
class WorkflowConfig:
    """Ordered, read-only column table. Passed into the workflow services."""

    columns: tuple[WorkflowColumn, ...]

    def __post_init__(self):
        known = {c.status for c in self.columns}
        for col in self.columns:
            unknown = set(col.allowed_transitions) - known
            if unknown:
                raise ValueError(f"Column {col.status!r} points at unknown statuses: {sorted(unknown)}")
            if col.status in col.allowed_transitions:
                raise ValueError(f"Column {col.status!r} declares a self-transition")

    @property
    def statuses(self) -> tuple[str, ...]:
        return tuple(c.status for c in self.columns)

    def column(self, status: str) -> WorkflowColumn | None:
        for col in self.columns:
            if col.status == status:
                return col
        return None

    def allows(self, from_status: str, to_status: str) -> bool:
        col = self.column(from_status)
        return col is not None and to_status in col.allowed_transitions

    def is_terminal(self, status: str) -> bool:
        col = self.column(status)
        return col is not None and not col.allowed_transitions

    def to_list(self) -> list[dict]:
        return [c.to_dict() for c in self.columns]


DEFAULT_WORKFLOW = WorkflowConfig(columns=(
    WorkflowColumn(
        status="unassigned",
        title="Unassigned",
        description="Shifts awaiting guard assignment",
        color="gray",
        allowed_transitions=("assigned", "issue_logged"),
        requires_validation=True,
    ),
    WorkflowColumn(
        status="assigned",
        title="Assigned",
        description="Shifts assigned to guards but not confirmed",
        color="blue",
        allowed_transitions=("confirmed", "unassigned", "issue_logged"),
        requires_validation=True,
    ),
    WorkflowColumn(
        status="confirmed",
        title="Confirmed",
        description="Guards have confirmed availability",
        color="green",
        allowed_transitions=("in_progress", "assigned", "issue_logged"),
        requires_validation=True,
    ),
    WorkflowColumn(
        status="in_progress",
        title="In Progress",
        description="Shifts currently active",
        color="yellow",
        allowed_transitions=("completed", "issue_logged"),
        requires_validation=True,
    ),
    WorkflowColumn(
        status="completed",
        title="Completed",
        description="Successfully completed shifts",
        color="emerald",
        allowed_transitions=("archived", "issue_logged"),
        requires_validation=False,
    ),
    WorkflowColumn(
        status="issue_logged",
        title="Issue Logged",
        description="Shifts with reported issues",
        color="red",
        allowed_transitions=("unassigned", "assigned", "confirmed", "completed", "archived"),
        requires_validation=True,
    ),
    WorkflowColumn(
        status="archived",
        title="Archived",
        description="Historical completed shifts",
        color="slate",
        allowed_transitions=(),
        requires_validation=False,
    ),
))


class ShiftWorkflowTransition(db.Model):
    """
    One row per status change.  Never updated after insert.
    """

    __tablename__ = "shift_workflow_history"
    __table_args__ = (
        db.Index("idx_workflow_shift_changed", "shift_id", "changed_at"),
        db.Index("idx_workflow_bulk_op", "bulk_operation_id"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shift_id = db.Column(
        db.String(36), db.ForeignKey("shifts.id", ondelete="CASCADE"), nullable=False,
    )
    previous_status = db.Column(db.String(20), nullable=True)
    new_status = db.Column(db.String(20), nullable=False)
    changed_by = db.Column(db.String(100), nullable=False, index=True)
    changed_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))
    transition_reason = db.Column(db.Text, nullable=True)
    transition_method = db.Column(db.String(20), nullable=False, default="manual",
                                  comment="manual, bulk, automatic")
    bulk_operation_id = db.Column(db.String(36), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "previous_status": self.previous_status,
            "new_status": self.new_status,
            "changed_by": self.changed_by,
            "changed_at": self.changed_at.isoformat() if self.changed_at else None,
            "transition_reason": self.transition_reason,
            "transition_method": self.transition_method,
            "bulk_operation_id": self.bulk_operation_id,
        }

    def __repr__(self):
        return f"<ShiftWorkflowTransition {self.shift_id[:8]}: {self.previous_status} → {self.new_status}>"
