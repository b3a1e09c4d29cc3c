"""
Guard Shift Kanban
Shift domain models.

Models:
    - Shift:               a schedulable unit of guard work, placed on the Kanban board by status
    - ShiftAssignment:     guard-to-shift assignment record with confirmation tracking
    - GuardCertification:  licences / certifications held by a guard (with optional expiry)

Architecture:
    Shift ──1:N──▶ ShiftAssignment
    Shift ──1:N──▶ ShiftWorkflowTransition   (app/models/workflow.py)
    Shift ──1:N──▶ UrgentShiftAlert          (app/models/alert.py)

Lifecycle states:
    Shift:            unassigned → assigned → confirmed → in_progress → completed → archived
                      (any active state) → issue_logged
    ShiftAssignment:  pending → confirmed | declined | no_show | cancelled
"""

import uuid
from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

SHIFT_STATUSES = (
    "unassigned",
    "assigned",
    "confirmed",
    "in_progress",
    "completed",
    "issue_logged",
    "archived",
)

ASSIGNMENT_STATUSES = {"pending", "confirmed", "declined", "no_show", "cancelled"}

MIN_PRIORITY = 1
MAX_PRIORITY = 5
DEFAULT_PRIORITY = 3


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Shift(db.Model):
    """
    A single guard shift.

    ``status`` is only changed through the workflow service; the
    ``version`` column guards the read-modify-write of a transition
    (SQLAlchemy adds ``WHERE version = :old`` to every UPDATE).
    """

    __tablename__ = "shifts"
    __table_args__ = (
        db.CheckConstraint(
            "status IN ('unassigned','assigned','confirmed','in_progress',"
            "'completed','issue_logged','archived')",
            name="ck_shift_status",
        ),
        db.CheckConstraint("priority BETWEEN 1 AND 5", name="ck_shift_priority"),
        db.Index("idx_shift_status_start", "status", "start_time"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    title = db.Column(db.String(200), nullable=False, default="")
    start_time = db.Column(db.DateTime(timezone=True), nullable=False, index=True)
    end_time = db.Column(db.DateTime(timezone=True), nullable=False)
    status = db.Column(db.String(20), nullable=False, default="unassigned")
    assigned_guard_id = db.Column(db.String(64), nullable=True, index=True)
    priority = db.Column(db.Integer, nullable=False, default=DEFAULT_PRIORITY)

    required_certifications = db.Column(db.JSON, default=list,
                                        comment="Certification codes the guard must hold")
    client_info = db.Column(db.JSON, default=dict, comment="{name, contact, ...}")
    location_data = db.Column(db.JSON, default=dict, comment="{site_name, address, ...}")

    version = db.Column(db.Integer, nullable=False, default=1)
    created_by = db.Column(db.String(100), nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    updated_at = db.Column(db.DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    assignments = db.relationship(
        "ShiftAssignment", backref="shift", lazy="dynamic",
        cascade="all, delete-orphan", order_by="ShiftAssignment.assigned_at",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def client_name(self) -> str:
        return (self.client_info or {}).get("name", "")

    @property
    def site_name(self) -> str:
        return (self.location_data or {}).get("site_name", "")

    def has_confirmed_assignment(self) -> bool:
        """True when the currently assigned guard has confirmed."""
        if not self.assigned_guard_id:
            return False
        return self.assignments.filter(
            ShiftAssignment.guard_id == self.assigned_guard_id,
            ShiftAssignment.assignment_status == "confirmed",
        ).count() > 0

    def to_dict(self, include_assignments=False):
        d = {
            "id": self.id,
            "title": self.title,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "status": self.status,
            "assigned_guard_id": self.assigned_guard_id,
            "priority": self.priority,
            "required_certifications": self.required_certifications or [],
            "client_info": self.client_info or {},
            "location_data": self.location_data or {},
            "version": self.version,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if include_assignments:
            d["assignments"] = [a.to_dict() for a in self.assignments]
        return d

    def __repr__(self):
        return f"<Shift {self.id[:8]}: {self.title[:30]} [{self.status}]>"


class ShiftAssignment(db.Model):
    """Guard assignment record; ``confirmed_at`` is set once the guard accepts."""

    __tablename__ = "shift_assignments"
    __table_args__ = (
        db.Index("idx_assignment_guard_status", "guard_id", "assignment_status"),
    )

    id = db.Column(db.String(36), primary_key=True, default=_uuid)
    shift_id = db.Column(
        db.String(36), db.ForeignKey("shifts.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    guard_id = db.Column(db.String(64), nullable=False)
    assignment_status = db.Column(db.String(20), nullable=False, default="pending",
                                  comment="pending, confirmed, declined, no_show, cancelled")
    assigned_by = db.Column(db.String(100), nullable=True)
    assigned_at = db.Column(db.DateTime(timezone=True), default=_utcnow)
    confirmed_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "shift_id": self.shift_id,
            "guard_id": self.guard_id,
            "assignment_status": self.assignment_status,
            "assigned_by": self.assigned_by,
            "assigned_at": self.assigned_at.isoformat() if self.assigned_at else None,
            "confirmed_at": self.confirmed_at.isoformat() if self.confirmed_at else None,
        }

    def __repr__(self):
        return f"<ShiftAssignment {self.guard_id} → {self.shift_id[:8]} [{self.assignment_status}]>"


class GuardCertification(db.Model):
    """A certification held by a guard; expired rows do not count."""

    __tablename__ = "guard_certifications"
    __table_args__ = (
        db.UniqueConstraint("guard_id", "certification", name="uq_guard_certification"),
    )

    id = db.Column(db.Integer, primary_key=True)
    guard_id = db.Column(db.String(64), nullable=False, index=True)
    certification = db.Column(db.String(100), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=True)

    def to_dict(self):
        return {
            "id": self.id,
            "guard_id": self.guard_id,
            "certification": self.certification,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
        }
