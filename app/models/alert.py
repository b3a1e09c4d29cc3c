"""
Guard Shift Kanban
Urgency alert model.

Models:
    - UrgentShiftAlert: time-threshold warning that a shift is at risk of going unstaffed

Lifecycle states:
    UrgentShiftAlert: active → acknowledged → resolved  |  active → resolved
"""

import uuid
from datetime import datetime, timezone

from app.models import db


# ── Constants ────────────────────────────────────────────────────────────────

ALERT_TYPES = {
    "unassigned_24h",
    "unconfirmed_12h",
    "no_show_risk",
    "understaffed",
    "certification_gap",
}

ALERT_PRIORITIES = ("low", "medium", "high", "critical")

# Lower rank sorts first.
PRIORITY_RANK = {"critical": 0, "high": 1, "medium": 2, "low": 3}

ALERT_STATUSES = {"active", "acknowledged", "resolved"}

# Alerts in these states block a new alert of the same type for the shift.
OPEN_ALERT_STATUSES = ("active", "acknowledged")

MAX_ESCALATION_LEVEL = 3

ALERT_TRANSITIONS = {
    "active":       ["acknowledged", "resolved"],
    "acknowledged": ["resolved"],
    "resolved":     [],
}


def validate_alert_transition(current: str, target: str) -> bool:
    return target in ALERT_TRANSITIONS.get(current, [])


class UrgentShiftAlert(db.Model):
    """
    Monitoring signal tied to one shift.

    At most one *active* row per (shift_id, alert_type); the partial
    unique index backs up the pre-insert check in the alert service.
    """

    __tablename__ = "shift_urgency_alerts"
    __table_args__ = (
        db.Index(
            "uq_alert_active_shift_type", "shift_id", "alert_type",
            unique=True,
            sqlite_where=db.text("status = 'active'"),
            postgresql_where=db.text("status = 'active'"),
        ),
        db.Index("idx_alert_status_priority", "status", "priority"),
    )

    id = db.Column(db.String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    shift_id = db.Column(
        db.String(36), db.ForeignKey("shifts.id", ondelete="CASCADE"),
        nullable=False, index=True,
    )
    alert_type = db.Column(db.String(30), nullable=False)
    priority = db.Column(db.String(10), nullable=False, default="medium")
    hours_until_shift = db.Column(db.Float, nullable=True)
    status = db.Column(db.String(20), nullable=False, default="active")
    escalation_level = db.Column(db.Integer, nullable=False, default=1)
    reason = db.Column(db.Text, default="")

    acknowledged_by = db.Column(db.String(100), nullable=True)
    acknowledged_at = db.Column(db.DateTime(timezone=True), nullable=True)
    acknowledgment_notes = db.Column(db.Text, nullable=True)
    resolved_by = db.Column(db.String(100), nullable=True)
    resolved_at = db.Column(db.DateTime(timezone=True), nullable=True)
    resolution_notes = db.Column(db.Text, nullable=True)
    last_escalated_at = db.Column(db.DateTime(timezone=True), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False,
                           default=lambda: datetime.now(timezone.utc))
    updated_at = db.Column(db.DateTime(timezone=True),
                           default=lambda: datetime.now(timezone.utc),
                           onupdate=lambda: datetime.now(timezone.utc))

    shift = db.relationship("Shift", backref=db.backref("alerts", lazy="dynamic"))

    @property
    def is_open(self) -> bool:
        return self.status in OPEN_ALERT_STATUSES

    def to_dict(self, include_shift=False):
        d = {
            "id": self.id,
            "shift_id": self.shift_id,
            "alert_type": self.alert_type,
            "priority": self.priority,
            "hours_until_shift": self.hours_until_shift,
            "status": self.status,
            "escalation_level": self.escalation_level,
            "reason": self.reason,
            "acknowledged_by": self.acknowledged_by,
            "acknowledged_at": self.acknowledged_at.isoformat() if self.acknowledged_at else None,
            "acknowledgment_notes": self.acknowledgment_notes,
            "resolved_by": self.resolved_by,
            "resolved_at": self.resolved_at.isoformat() if self.resolved_at else None,
            "resolution_notes": self.resolution_notes,
            "last_escalated_at": self.last_escalated_at.isoformat() if self.last_escalated_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
        if include_shift and self.shift is not None:
            d["shift"] = self.shift.to_dict()
        return d

    def __repr__(self):
        return f"<UrgentShiftAlert {self.alert_type} {self.shift_id[:8]} [{self.status}/{self.priority}]>"
