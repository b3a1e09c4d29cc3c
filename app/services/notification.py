"""
Guard Shift Kanban
Notification Service.

Central service for creating in-app notifications.  Delivery beyond
the dashboard (email / SMS) is not handled here; this service only
records *what* to tell *whom*.
"""

from app.core.exceptions import ValidationError
from app.models import db
from app.models.notification import NOTIFICATION_CATEGORIES, NOTIFICATION_SEVERITIES, Notification

# Alert priority → notification severity
_ALERT_SEVERITY = {
    "critical": "error",
    "high": "warning",
    "medium": "warning",
    "low": "info",
}

MANAGERS_RECIPIENT = "managers"


class NotificationService:
    """Stateless service class for notification operations."""

    # ── Create ────────────────────────────────────────────────────────────

    @staticmethod
    def create(*, title, message="", category="system", severity="info",
               recipient="all", entity_type="", entity_id=None):
        """
        Create a single notification record.

        Returns:
            The created Notification instance (already committed).
        """
        if category not in NOTIFICATION_CATEGORIES:
            raise ValidationError(f"Unknown notification category: {category}",
                                  details={"category": category})
        if severity not in NOTIFICATION_SEVERITIES:
            raise ValidationError(f"Unknown notification severity: {severity}",
                                  details={"severity": severity})
        notif = Notification(
            recipient=recipient,
            title=title,
            message=message,
            category=category,
            severity=severity,
            entity_type=entity_type,
            entity_id=str(entity_id) if entity_id is not None else None,
        )
        db.session.add(notif)
        db.session.commit()
        return notif

    # ── Shift / alert helpers ─────────────────────────────────────────────

    @staticmethod
    def notify_urgent_alert(alert, *, reason=None):
        """Tell shift managers that an urgency alert was raised."""
        return NotificationService.create(
            title=f"Urgent shift alert: {alert.alert_type} ({alert.priority})",
            message=reason or alert.reason or "",
            category="alert",
            severity=_ALERT_SEVERITY.get(alert.priority, "warning"),
            recipient=MANAGERS_RECIPIENT,
            entity_type="alert",
            entity_id=alert.id,
        )

    @staticmethod
    def notify_alert_escalated(alert):
        """Tell shift managers that an alert moved up an escalation level."""
        return NotificationService.create(
            title=f"Alert escalated to level {alert.escalation_level}: {alert.alert_type}",
            message=alert.reason or "",
            category="escalation",
            severity="error",
            recipient=MANAGERS_RECIPIENT,
            entity_type="alert",
            entity_id=alert.id,
        )

    @staticmethod
    def notify_shift(shift, message):
        """Manager message about a shift, sent to its guard (or everyone when unassigned)."""
        return NotificationService.create(
            title=f"Shift update: {shift.title}",
            message=message,
            category="shift",
            severity="info",
            recipient=shift.assigned_guard_id or "all",
            entity_type="shift",
            entity_id=shift.id,
        )
