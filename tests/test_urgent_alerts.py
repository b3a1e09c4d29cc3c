"""
Urgent Alert Tests — time-threshold monitoring of upcoming shifts:
  - Raising rules: unassigned_24h, unconfirmed_12h, no_show_risk, certification_gap
  - Duplicate suppression (service check + partial unique index)
  - No-show risk model and certification gaps
  - Manual lifecycle (acknowledge / resolve) and auto-resolution by status
  - Escalation thresholds, stale-alert expiry
  - Queries and metrics
"""

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError

from app.core.exceptions import ValidationError
from app.models import db
from app.models.alert import UrgentShiftAlert
from app.models.audit import AuditLog
from app.models.notification import Notification
from app.models.shift import GuardCertification, Shift, ShiftAssignment
from app.services import urgent_alert_service as svc
from app.services.assignment_service import assign_guard, confirm_assignment
from app.services.notification import NotificationService
from app.utils.errors import E

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


# ═══════════════════════════════════════════════════════════════════════════
# Helpers
# ═══════════════════════════════════════════════════════════════════════════


def _make_shift(*, hours_until=5, status="unassigned", guard_id=None, certs=None, duration=8):
    start = NOW + timedelta(hours=hours_until)
    shift = Shift(
        title="Lobby cover",
        start_time=start,
        end_time=start + timedelta(hours=duration),
        status=status,
        assigned_guard_id=guard_id,
        required_certifications=certs or [],
    )
    db.session.add(shift)
    db.session.commit()
    return shift


def _assign(shift, guard_id, *, status="pending", confirmed=False):
    a = ShiftAssignment(
        shift_id=shift.id,
        guard_id=guard_id,
        assignment_status=status,
        confirmed_at=NOW - timedelta(days=1) if confirmed else None,
    )
    db.session.add(a)
    db.session.commit()
    return a


def _guard_history(guard_id, outcomes):
    """Past decided assignments for the guard on other (old) shifts."""
    for i, outcome in enumerate(outcomes):
        past = _make_shift(hours_until=-24 * (i + 2), status="completed", guard_id=guard_id)
        _assign(past, guard_id, status=outcome, confirmed=outcome == "confirmed")


def _make_alert(shift, alert_type="unassigned_24h", *, priority="high", status="active",
                level=1, hours=5.0, created_at=NOW):
    alert = UrgentShiftAlert(
        shift_id=shift.id,
        alert_type=alert_type,
        priority=priority,
        status=status,
        escalation_level=level,
        hours_until_shift=hours,
        reason="test",
        created_at=created_at,
    )
    db.session.add(alert)
    db.session.commit()
    return alert


def _alerts(shift_id):
    return db.session.execute(
        select(UrgentShiftAlert).where(UrgentShiftAlert.shift_id == shift_id)
    ).scalars().all()


# ═══════════════════════════════════════════════════════════════════════════
# Monitoring
# ═══════════════════════════════════════════════════════════════════════════


class TestMonitor:

    def test_unassigned_within_six_hours_is_critical(self):
        shift = _make_shift(hours_until=5)
        result = svc.monitor_shifts_for_alerts(now=NOW)
        assert result.success
        assert len(result.data) == 1
        alert = result.data[0]
        assert alert.shift_id == shift.id
        assert alert.alert_type == "unassigned_24h"
        assert alert.priority == "critical"
        assert alert.hours_until_shift == pytest.approx(5.0)
        assert alert.escalation_level == 1
        assert alert.status == "active"
        assert alert.reason == "Shift unassigned with 5 hours remaining"

    def test_unassigned_within_day_is_high(self):
        _make_shift(hours_until=20)
        alert = svc.monitor_shifts_for_alerts(now=NOW).data[0]
        assert alert.priority == "high"

    def test_outside_window_and_started_ignored(self):
        _make_shift(hours_until=30)
        _make_shift(hours_until=-1)
        _make_shift(hours_until=3, status="in_progress", guard_id="g-1")
        result = svc.monitor_shifts_for_alerts(now=NOW)
        assert result.success
        assert result.data == []

    def test_rescan_does_not_duplicate(self):
        shift = _make_shift(hours_until=5)
        svc.monitor_shifts_for_alerts(now=NOW)
        again = svc.monitor_shifts_for_alerts(now=NOW + timedelta(minutes=15))
        assert again.data == []
        assert len(_alerts(shift.id)) == 1

    def test_acknowledged_alert_does_not_block_new_one(self):
        shift = _make_shift(hours_until=20)
        first = svc.monitor_shifts_for_alerts(now=NOW).data[0]
        assert first.priority == "high"
        assert svc.acknowledge_alert(first.id, "mgr-1", now=NOW).success

        later = NOW + timedelta(hours=15)
        created = svc.monitor_shifts_for_alerts(now=later).data
        assert [(a.alert_type, a.priority) for a in created] == [("unassigned_24h", "critical")]
        active = [a.alert_type for a in svc.get_active_alerts(shift_ids=[shift.id]).data]
        assert active == ["unassigned_24h"]

    def test_create_alert_allowed_beside_acknowledged(self):
        shift = _make_shift(hours_until=5)
        _make_alert(shift, status="acknowledged")
        assert svc.create_alert(shift.id, "unassigned_24h", "critical").success
        assert svc.create_alert(shift.id, "unassigned_24h", "critical").error.code == E.DUPLICATE_ALERT

    def test_resolved_alert_allows_new_one(self):
        shift = _make_shift(hours_until=5)
        _make_alert(shift, status="resolved")
        created = svc.monitor_shifts_for_alerts(now=NOW).data
        assert [a.alert_type for a in created] == ["unassigned_24h"]

    def test_unconfirmed_assignment(self):
        shift = _make_shift(hours_until=10, status="assigned", guard_id="g-1")
        _assign(shift, "g-1")
        alert = svc.monitor_shifts_for_alerts(now=NOW).data[0]
        assert alert.alert_type == "unconfirmed_12h"
        assert alert.priority == "medium"

    def test_unconfirmed_close_to_start_is_high(self):
        shift = _make_shift(hours_until=3, status="assigned", guard_id="g-1")
        _assign(shift, "g-1")
        alert = svc.monitor_shifts_for_alerts(now=NOW).data[0]
        assert (alert.alert_type, alert.priority) == ("unconfirmed_12h", "high")

    def test_confirmed_assignment_not_flagged(self):
        shift = _make_shift(hours_until=10, status="assigned", guard_id="g-1")
        _assign(shift, "g-1", status="confirmed", confirmed=True)
        assert svc.monitor_shifts_for_alerts(now=NOW).data == []

    def test_reassigned_guard_must_confirm_again(self):
        shift = _make_shift(hours_until=10, status="assigned", guard_id="g-a")
        _assign(shift, "g-a")
        confirm_assignment(shift.id, "g-a", now=NOW)
        assign_guard(shift.id, "g-b", "mgr-1")
        db.session.commit()

        assert shift.has_confirmed_assignment() is False
        created = [a.alert_type for a in svc.monitor_shifts_for_alerts(now=NOW).data]
        assert "unconfirmed_12h" in created

    def test_no_show_risk(self):
        _guard_history("g-9", ["no_show", "no_show", "no_show", "confirmed"])
        shift = _make_shift(hours_until=1.5, status="confirmed", guard_id="g-9")
        _assign(shift, "g-9")

        created = {a.alert_type: a for a in svc.monitor_shifts_for_alerts(now=NOW).data}
        assert "no_show_risk" in created
        assert created["no_show_risk"].priority == "critical"

    def test_reliable_guard_no_risk_alert(self):
        _guard_history("g-2", ["confirmed", "confirmed"])
        shift = _make_shift(hours_until=1.5, status="confirmed", guard_id="g-2")
        _assign(shift, "g-2", status="confirmed", confirmed=True)
        assert svc.monitor_shifts_for_alerts(now=NOW).data == []

    def test_certification_gap(self):
        shift = _make_shift(hours_until=20, status="assigned", guard_id="g-3",
                            certs=["first_aid", "firearms"])
        _assign(shift, "g-3", status="confirmed", confirmed=True)
        db.session.add_all([
            GuardCertification(guard_id="g-3", certification="first_aid"),
            GuardCertification(guard_id="g-3", certification="firearms",
                               expires_at=NOW + timedelta(hours=1)),
        ])
        db.session.commit()

        created = svc.monitor_shifts_for_alerts(now=NOW).data
        assert [a.alert_type for a in created] == ["certification_gap"]
        assert created[0].priority == "high"
        assert "firearms" in created[0].reason

    def test_manager_notified(self):
        _make_shift(hours_until=5)
        svc.monitor_shifts_for_alerts(now=NOW)
        note = Notification.query.filter_by(recipient="managers").one()
        assert note.category == "alert"
        assert note.severity == "error"

    @pytest.mark.parametrize("field", [{"category": "marketing"}, {"severity": "panic"}])
    def test_notification_fields_checked(self, field):
        with pytest.raises(ValidationError):
            NotificationService.create(title="Lobby cover", **field)
        assert Notification.query.count() == 0

    def test_notification_failure_is_warning(self, monkeypatch):
        def _boom(alert, reason=None):
            raise SQLAlchemyError("notification store down")

        monkeypatch.setattr(NotificationService, "notify_urgent_alert", staticmethod(_boom))
        shift = _make_shift(hours_until=5)
        result = svc.monitor_shifts_for_alerts(now=NOW)
        assert result.success
        assert len(result.data) == 1
        assert len(result.warnings) == 1
        assert "Notification dispatch failed" in result.warnings[0]
        assert len(_alerts(shift.id)) == 1


# ═══════════════════════════════════════════════════════════════════════════
# Risk model / certification gaps
# ═══════════════════════════════════════════════════════════════════════════


class TestRiskModel:

    def test_no_guard_no_risk(self):
        assert svc.calculate_no_show_risk(_make_shift()) == 0.0

    def test_clean_confirmed_guard(self):
        shift = _make_shift(status="confirmed", guard_id="g-1")
        _assign(shift, "g-1", status="confirmed", confirmed=True)
        assert svc.calculate_no_show_risk(shift) == 0.0

    def test_unconfirmed_penalty(self):
        shift = _make_shift(status="assigned", guard_id="g-1")
        _assign(shift, "g-1")
        assert svc.calculate_no_show_risk(shift) == pytest.approx(0.3)

    def test_history_weight(self):
        _guard_history("g-4", ["no_show", "confirmed"])
        shift = _make_shift(status="confirmed", guard_id="g-4")
        _assign(shift, "g-4", status="confirmed", confirmed=True)
        assert svc.calculate_no_show_risk(shift) == pytest.approx(0.4)

    def test_capped_at_one(self):
        _guard_history("g-5", ["no_show", "no_show"])
        shift = _make_shift(status="assigned", guard_id="g-5")
        assert svc.calculate_no_show_risk(shift) == 1.0

    def test_certification_gap_ignores_unassigned(self):
        shift = _make_shift(certs=["first_aid"])
        assert svc.check_certification_gaps(shift) == []


# ═══════════════════════════════════════════════════════════════════════════
# create_alert
# ═══════════════════════════════════════════════════════════════════════════


class TestCreateAlert:

    def test_create(self):
        shift = _make_shift()
        result = svc.create_alert(shift.id, "understaffed", "medium", 5.0, "Two guards short")
        assert result.success
        assert result.data.alert_type == "understaffed"
        assert result.data.reason == "Two guards short"

    def test_duplicate_rejected(self):
        shift = _make_shift()
        svc.create_alert(shift.id, "understaffed", "medium")
        result = svc.create_alert(shift.id, "understaffed", "high")
        assert result.error.code == E.DUPLICATE_ALERT

    def test_unknown_type_and_priority(self):
        shift = _make_shift()
        assert svc.create_alert(shift.id, "zombie", "high").error.code == E.VALIDATION_ERROR
        assert svc.create_alert(shift.id, "understaffed", "urgent").error.code == E.VALIDATION_ERROR

    def test_missing_shift(self):
        assert svc.create_alert("missing", "understaffed", "high").error.code == E.SHIFT_NOT_FOUND

    def test_partial_index_blocks_second_active_row(self):
        shift = _make_shift()
        _make_alert(shift, "understaffed")
        db.session.add(UrgentShiftAlert(shift_id=shift.id, alert_type="understaffed",
                                        priority="low", status="active"))
        with pytest.raises(SQLAlchemyError):
            db.session.commit()
        db.session.rollback()


# ═══════════════════════════════════════════════════════════════════════════
# Manual lifecycle + auto-resolution
# ═══════════════════════════════════════════════════════════════════════════


class TestLifecycle:

    def test_acknowledge_then_resolve(self):
        alert = _make_alert(_make_shift())
        ack = svc.acknowledge_alert(alert.id, "mgr-1", "On it", now=NOW)
        assert ack.success
        assert ack.data.status == "acknowledged"
        assert ack.data.acknowledged_by == "mgr-1"
        assert ack.data.acknowledgment_notes == "On it"

        res = svc.resolve_alert(alert.id, "mgr-1", "Covered by relief guard", now=NOW)
        assert res.data.status == "resolved"
        assert res.data.resolution_notes == "Covered by relief guard"

        actions = [a.action for a in AuditLog.query.order_by(AuditLog.id).all()]
        assert actions == ["alert.acknowledge", "alert.resolve"]

    def test_resolve_directly_from_active(self):
        alert = _make_alert(_make_shift())
        assert svc.resolve_alert(alert.id, "mgr-1").data.status == "resolved"

    def test_acknowledge_twice(self):
        alert = _make_alert(_make_shift())
        svc.acknowledge_alert(alert.id, "mgr-1")
        assert svc.acknowledge_alert(alert.id, "mgr-2").error.code == E.INVALID_ALERT_STATE

    def test_resolve_twice(self):
        alert = _make_alert(_make_shift())
        svc.resolve_alert(alert.id, "mgr-1")
        assert svc.resolve_alert(alert.id, "mgr-1").error.code == E.INVALID_ALERT_STATE

    def test_unknown_alert(self):
        assert svc.acknowledge_alert("nope", "mgr-1").error.code == E.ALERT_NOT_FOUND
        assert svc.resolve_alert("nope", "mgr-1").error.code == E.ALERT_NOT_FOUND

    @pytest.mark.parametrize("alert_type,new_status,resolved", [
        ("unassigned_24h", "assigned", True),
        ("understaffed", "confirmed", True),
        ("unassigned_24h", "issue_logged", False),
        ("unconfirmed_12h", "assigned", False),
        ("unconfirmed_12h", "confirmed", True),
        ("no_show_risk", "confirmed", False),
        ("no_show_risk", "in_progress", True),
        ("certification_gap", "completed", False),
    ])
    def test_auto_resolution_map(self, alert_type, new_status, resolved):
        alert = _make_alert(_make_shift(), alert_type)
        result = svc.resolve_alerts_for_status(alert.shift_id, new_status, now=NOW)
        assert result.success
        db.session.refresh(alert)
        assert (alert.status == "resolved") is resolved
        if resolved:
            assert alert.resolved_by == "system"
            assert alert.resolution_notes == f"Auto-resolved: shift moved to {new_status}"

    def test_auto_resolution_covers_acknowledged(self):
        alert = _make_alert(_make_shift(), status="acknowledged")
        svc.resolve_alerts_for_status(alert.shift_id, "assigned")
        db.session.refresh(alert)
        assert alert.status == "resolved"


# ═══════════════════════════════════════════════════════════════════════════
# Escalation / expiry
# ═══════════════════════════════════════════════════════════════════════════


class TestEscalation:

    def test_not_due_yet(self):
        _make_alert(_make_shift())
        assert svc.escalate_alerts(now=NOW + timedelta(hours=1)).data == []

    def test_unassigned_escalates_to_critical(self):
        alert = _make_alert(_make_shift(), priority="high")
        result = svc.escalate_alerts(now=NOW + timedelta(hours=3))
        assert [a.id for a in result.data] == [alert.id]
        db.session.refresh(alert)
        assert alert.escalation_level == 2
        assert alert.priority == "critical"
        assert alert.last_escalated_at is not None

    def test_jumps_to_highest_reached_level(self):
        alert = _make_alert(_make_shift())
        svc.escalate_alerts(now=NOW + timedelta(hours=7))
        db.session.refresh(alert)
        assert alert.escalation_level == 3
        assert alert.priority == "critical"

    def test_capped_at_level_three(self):
        alert = _make_alert(_make_shift(), level=3)
        assert svc.escalate_alerts(now=NOW + timedelta(hours=48)).data == []
        db.session.refresh(alert)
        assert alert.escalation_level == 3

    def test_unconfirmed_and_no_show_thresholds(self):
        shift = _make_shift(status="assigned", guard_id="g-1")
        unconfirmed = _make_alert(shift, "unconfirmed_12h", priority="medium")
        no_show = _make_alert(shift, "no_show_risk", priority="critical")

        escalated = svc.escalate_alerts(now=NOW + timedelta(hours=1)).data
        assert [a.id for a in escalated] == [no_show.id]

        svc.escalate_alerts(now=NOW + timedelta(hours=4))
        db.session.refresh(unconfirmed)
        assert unconfirmed.escalation_level == 2
        assert unconfirmed.priority == "high"

    def test_acknowledged_not_escalated(self):
        _make_alert(_make_shift(), status="acknowledged")
        assert svc.escalate_alerts(now=NOW + timedelta(hours=10)).data == []

    def test_certification_gap_has_no_rules(self):
        _make_alert(_make_shift(guard_id="g-1"), "certification_gap")
        assert svc.escalate_alerts(now=NOW + timedelta(hours=10)).data == []

    def test_escalation_notifies(self):
        _make_alert(_make_shift())
        svc.escalate_alerts(now=NOW + timedelta(hours=3))
        assert Notification.query.filter_by(category="escalation").count() == 1

    def test_expire_stale(self):
        ended = _make_shift(hours_until=-10, duration=8)
        upcoming = _make_shift(hours_until=5)
        stale = _make_alert(ended)
        live = _make_alert(upcoming)

        result = svc.expire_stale_alerts(now=NOW)
        assert [a.id for a in result.data] == [stale.id]
        db.session.refresh(stale)
        db.session.refresh(live)
        assert stale.status == "resolved"
        assert stale.resolution_notes == "Auto-resolved: shift has ended"
        assert live.status == "active"


# ═══════════════════════════════════════════════════════════════════════════
# Queries & metrics
# ═══════════════════════════════════════════════════════════════════════════


class TestQueries:

    def test_active_alerts_ordering(self):
        a = _make_alert(_make_shift(), "unassigned_24h", priority="high", hours=3)
        b = _make_alert(_make_shift(), "unassigned_24h", priority="critical", hours=10)
        c = _make_alert(_make_shift(), "unassigned_24h", priority="critical", hours=2)
        _make_alert(_make_shift(), "unassigned_24h", priority="critical", status="resolved")

        ids = [x.id for x in svc.get_active_alerts().data]
        assert ids == [c.id, b.id, a.id]

    def test_active_alert_filters(self):
        s1 = _make_shift()
        _make_alert(s1, "unassigned_24h", priority="high", hours=3)
        _make_alert(s1, "understaffed", priority="low", hours=3)
        _make_alert(_make_shift(), "unassigned_24h", priority="critical", hours=20)

        assert len(svc.get_active_alerts(alert_types=["understaffed"]).data) == 1
        assert len(svc.get_active_alerts(priorities=["high", "critical"]).data) == 2
        assert len(svc.get_active_alerts(shift_ids=[s1.id]).data) == 2
        assert len(svc.get_active_alerts(hours_until_max=4).data) == 2

    def test_metrics(self):
        s1 = _make_shift()
        s2 = _make_shift()
        _make_alert(s1, "unassigned_24h", priority="critical")
        _make_alert(s1, "understaffed", priority="medium", level=2)
        resolved = _make_alert(s2, "unassigned_24h", priority="high")
        svc.resolve_alert(resolved.id, "mgr-1", now=NOW + timedelta(hours=2))

        m = svc.get_alert_metrics(now=NOW + timedelta(hours=3)).data
        assert m["total_alerts"] == 3
        assert m["total_active_alerts"] == 2
        assert m["alerts_by_type"]["unassigned_24h"] == 2
        assert m["alerts_by_priority"]["critical"] == 1
        assert m["avg_resolution_hours"] == pytest.approx(2.0)
        assert m["escalation_rate"] == pytest.approx(33.3)
        assert m["critical_alerts_unresolved"] == 1
        assert m["shifts_at_risk"] == 1
        assert m["new_alerts_last_24h"] == 2
        assert m["resolved_alerts_last_24h"] == 1

    def test_metrics_empty(self):
        m = svc.get_alert_metrics().data
        assert m["total_alerts"] == 0
        assert m["escalation_rate"] == 0.0
