"""
Guard Shift Kanban
Bulk operation record.

One row per bulk request.  ``results`` holds one entry per shift id, in
request order: ``{shift_id, success, new_value, error}``.

Lifecycle states:
    BulkOperation: executing → completed | failed
"""

import uuid
from datetime import datetime, timezone

from app.models import db


BULK_ACTION_TYPES = ("status_change", "assign", "priority_update", "notification", "clone")

BULK_OPERATION_STATUSES = ("executing", "completed", "failed")


def _one_of(column: str, values) -> str:
    return f"{column} IN (" + ",".join(f"'{v}'" for v in values) + ")"


class BulkOperation(db.Model):
    __tablename__ = "shift_bulk_operations"
    __table_args__ = (
        db.CheckConstraint(_one_of("operation_type", BULK_ACTION_TYPES), name="ck_bulk_operation_type"),
        db.CheckConstraint(_one_of("status", BULK_OPERATION_STATUSES), name="ck_bulk_operation_status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    operation_type = db.Column(db.String(30), nullable=False)
    shift_ids = db.Column(db.JSON, nullable=False, default=list)
    parameters = db.Column(db.JSON, nullable=False, default=dict)
    reason = db.Column(db.Text, nullable=True)
    executed_by = db.Column(db.String(100), nullable=False, index=True)
    executed_at = db.Column(db.DateTime(timezone=True), nullable=False,
                            default=lambda: datetime.now(timezone.utc))
    status = db.Column(db.String(20), nullable=False, default="executing")
    results = db.Column(db.JSON, nullable=False, default=list)
    completed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    @property
    def success_count(self) -> int:
        return sum(1 for r in (self.results or []) if r.get("success"))

    @property
    def failure_count(self) -> int:
        return len(self.results or []) - self.success_count

    def to_dict(self):
        return {
            "id": self.id,
            "operation_type": self.operation_type,
            "shift_ids": self.shift_ids or [],
            "parameters": self.parameters or {},
            "reason": self.reason,
            "executed_by": self.executed_by,
            "executed_at": self.executed_at.isoformat() if self.executed_at else None,
            "status": self.status,
            "results": self.results or [],
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

    def __repr__(self):
        return f"<BulkOperation {self.id[:8]} {self.operation_type} [{self.status}]>"
