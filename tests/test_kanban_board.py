"""
Kanban Board Tests — board read model and manual moves:
  - Filters: dates, clients, sites, guards, statuses, priorities, assignment, urgent_only
  - Metrics: per-status counts, completion rate, bottlenecks, time to assignment
  - Recent activity feed
  - move_shift: transition + audit + alert auto-resolution
  - Auto-archiving of long-completed shifts
"""

from datetime import datetime, timedelta, timezone

import pytest

from app.core.result import ServiceResult
from app.models import db
from app.models.alert import UrgentShiftAlert
from app.models.audit import AuditLog
from app.models.shift import Shift, ShiftAssignment
from app.models.workflow import ShiftWorkflowTransition
from app.services import shift_kanban_service
from app.services.shift_kanban_service import (
    KanbanFilters,
    auto_archive_completed_shifts,
    get_kanban_board_data,
    move_shift,
)
from app.utils.errors import E

NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)


def _make_shift(*, status="unassigned", guard_id=None, days=1, priority=3,
                client="Acme Logistics", site="Dock 4", address="12 Harbour Rd", created_at=None):
    start = NOW + timedelta(days=days)
    shift = Shift(
        title=f"{client} / {site}",
        start_time=start,
        end_time=start + timedelta(hours=8),
        status=status,
        assigned_guard_id=guard_id,
        priority=priority,
        client_info={"name": client},
        location_data={"site_name": site, "address": address},
    )
    if created_at is not None:
        shift.created_at = created_at
    db.session.add(shift)
    db.session.commit()
    return shift


def _ids(board):
    return [s["id"] for s in board["shifts"]]


def _board(**filters):
    result = get_kanban_board_data(filters=KanbanFilters(**filters))
    assert result.success, result.error
    return result.data


# ═══════════════════════════════════════════════════════════════════════════
# Board contents
# ═══════════════════════════════════════════════════════════════════════════


class TestBoard:

    def test_empty_board(self):
        board = _board()
        assert board["shifts"] == []
        assert board["columns"][0]["id"] == "unassigned"
        assert len(board["columns"]) == 7
        assert board["metrics"]["total_shifts"] == 0
        assert board["metrics"]["completion_rate"] == 0.0
        assert board["recent_activity"] == []

    def test_ordered_by_start_and_archived_hidden(self):
        later = _make_shift(days=3)
        sooner = _make_shift(days=1)
        _make_shift(status="archived", guard_id="g-1", days=2)
        assert _ids(_board()) == [sooner.id, later.id]

    def test_archived_shown_when_requested(self):
        archived = _make_shift(status="archived", guard_id="g-1")
        assert _ids(_board(statuses=["archived"])) == [archived.id]

    def test_shift_rows_carry_assignments_and_alerts(self):
        shift = _make_shift(status="assigned", guard_id="g-1")
        db.session.add(ShiftAssignment(shift_id=shift.id, guard_id="g-1"))
        db.session.add(UrgentShiftAlert(shift_id=shift.id, alert_type="unconfirmed_12h", priority="medium"))
        db.session.add(UrgentShiftAlert(shift_id=shift.id, alert_type="understaffed", priority="low",
                                        status="resolved"))
        db.session.commit()

        row = _board()["shifts"][0]
        assert [a["guard_id"] for a in row["assignments"]] == ["g-1"]
        assert [a["alert_type"] for a in row["alerts"]] == ["unconfirmed_12h"]

    def test_filters_echoed(self):
        board = _board(guards=["g-1"], urgent_only=True)
        assert board["filters"]["guards"] == ["g-1"]
        assert board["filters"]["urgent_only"] is True
        assert board["filters"]["assignment_status"] == "all"


class TestFilters:

    def test_date_range(self):
        _make_shift(days=1)
        mid = _make_shift(days=3)
        _make_shift(days=6)
        board = _board(date_from=NOW + timedelta(days=2), date_to=NOW + timedelta(days=4))
        assert _ids(board) == [mid.id]

    def test_clients_case_insensitive_contains(self):
        acme = _make_shift(client="Acme Logistics")
        _make_shift(client="Northwind")
        assert _ids(_board(clients=["acme"])) == [acme.id]

    def test_sites_match_name_or_address(self):
        by_name = _make_shift(site="Dock 4", address="1 Quay St")
        by_address = _make_shift(site="Gatehouse", address="9 Dock Lane", days=2)
        _make_shift(site="Mall", address="Main St", days=3)
        assert _ids(_board(sites=["dock"])) == [by_name.id, by_address.id]

    def test_guards(self):
        mine = _make_shift(status="assigned", guard_id="g-1")
        _make_shift(status="assigned", guard_id="g-2")
        assert _ids(_board(guards=["g-1"])) == [mine.id]

    def test_statuses_and_priorities(self):
        hit = _make_shift(priority=1)
        _make_shift(priority=3)
        _make_shift(status="assigned", guard_id="g-1", priority=1)
        assert _ids(_board(statuses=["unassigned"], priorities=[1])) == [hit.id]

    @pytest.mark.parametrize("assignment_status,expected", [
        ("assigned", ["staffed"]),
        ("unassigned", ["open"]),
        ("all", ["open", "staffed"]),
    ])
    def test_assignment_status(self, assignment_status, expected):
        shifts = {
            "open": _make_shift(days=1),
            "staffed": _make_shift(status="assigned", guard_id="g-1", days=2),
        }
        assert _ids(_board(assignment_status=assignment_status)) == [shifts[k].id for k in expected]

    def test_invalid_assignment_status(self):
        result = get_kanban_board_data(filters=KanbanFilters(assignment_status="maybe"))
        assert result.error.code == E.VALIDATION_ERROR

    def test_urgent_only(self):
        urgent = _make_shift()
        calm = _make_shift(days=2)
        acknowledged = _make_shift(days=3)
        db.session.add_all([
            UrgentShiftAlert(shift_id=urgent.id, alert_type="unassigned_24h", priority="high"),
            UrgentShiftAlert(shift_id=acknowledged.id, alert_type="unassigned_24h", priority="high",
                             status="acknowledged"),
        ])
        db.session.commit()
        assert _ids(_board(urgent_only=True)) == [urgent.id]
        assert calm.id in _ids(_board())


# ═══════════════════════════════════════════════════════════════════════════
# Metrics / activity
# ═══════════════════════════════════════════════════════════════════════════


class TestMetrics:

    def test_counts_rate_and_bottlenecks(self):
        for _ in range(3):
            _make_shift()
        _make_shift(status="assigned", guard_id="g-1")
        _make_shift(status="confirmed", guard_id="g-2")
        _make_shift(status="completed", guard_id="g-3")
        urgent = _make_shift()
        db.session.add(UrgentShiftAlert(shift_id=urgent.id, alert_type="unassigned_24h", priority="high"))
        db.session.commit()

        m = _board()["metrics"]
        assert m["total_shifts"] == 7
        assert m["shifts_by_status"]["unassigned"] == 4
        assert m["shifts_by_status"]["archived"] == 0
        assert m["completion_rate"] == pytest.approx(14.3)
        assert m["urgent_alerts_count"] == 1
        assert m["workflow_bottlenecks"] == [{"status": "unassigned", "shift_count": 4}]

    def test_hours_to_assignment(self):
        shift = _make_shift(guard_id="g-1", created_at=NOW - timedelta(hours=4))
        assert move_shift(shift.id, "assigned", "mgr-1", now=NOW).success
        assert _board()["metrics"]["avg_hours_to_assignment"] == pytest.approx(4.0)

    def test_recent_activity_newest_first(self):
        a = _make_shift(guard_id="g-1")
        b = _make_shift(days=2)
        move_shift(a.id, "assigned", "mgr-1", now=NOW)
        move_shift(b.id, "issue_logged", "mgr-2", now=NOW + timedelta(minutes=5))

        feed = _board()["recent_activity"]
        assert [(f["shift_id"], f["manager_id"]) for f in feed] == [(b.id, "mgr-2"), (a.id, "mgr-1")]
        assert feed[0]["activity_type"] == "shift_moved"
        assert feed[0]["transition_method"] == "manual"

    def test_recent_activity_for_manager(self):
        a = _make_shift(guard_id="g-1")
        b = _make_shift(days=2)
        move_shift(a.id, "assigned", "mgr-1", now=NOW)
        move_shift(b.id, "issue_logged", "mgr-2", now=NOW)

        feed = get_kanban_board_data("mgr-1").data["recent_activity"]
        assert [f["shift_id"] for f in feed] == [a.id]


# ═══════════════════════════════════════════════════════════════════════════
# Moves
# ═══════════════════════════════════════════════════════════════════════════


class TestMoveShift:

    def test_move_writes_audit(self):
        shift = _make_shift(guard_id="g-1")
        result = move_shift(shift.id, "assigned", "mgr-1", reason="Covered", now=NOW)
        assert result.success
        assert result.warnings == []
        assert result.data.transition_method == "manual"

        entry = AuditLog.query.filter_by(action="shift.moved").one()
        assert entry.entity_id == shift.id
        assert entry.actor == "mgr-1"
        assert entry.diff == {"previous_status": "unassigned", "new_status": "assigned", "reason": "Covered"}

    def test_move_resolves_alerts(self):
        shift = _make_shift(guard_id="g-1")
        db.session.add_all([
            UrgentShiftAlert(shift_id=shift.id, alert_type="unassigned_24h", priority="critical"),
            UrgentShiftAlert(shift_id=shift.id, alert_type="certification_gap", priority="high"),
        ])
        db.session.commit()

        move_shift(shift.id, "assigned", "mgr-1", now=NOW)
        statuses = {a.alert_type: (a.status, a.resolved_by) for a in UrgentShiftAlert.query.all()}
        assert statuses["unassigned_24h"] == ("resolved", "mgr-1")
        assert statuses["certification_gap"] == ("active", None)

    def test_failed_move_has_no_side_effects(self):
        shift = _make_shift()
        db.session.add(UrgentShiftAlert(shift_id=shift.id, alert_type="unassigned_24h", priority="high"))
        db.session.commit()

        result = move_shift(shift.id, "assigned", "mgr-1", now=NOW)
        assert result.error.code == E.GUARD_ASSIGNMENT_REQUIRED
        assert AuditLog.query.count() == 0
        assert UrgentShiftAlert.query.one().status == "active"

    def test_expected_version_mismatch(self):
        shift = _make_shift(guard_id="g-1")
        result = move_shift(shift.id, "assigned", "mgr-1", expected_version=5, now=NOW)
        assert result.error.code == E.CONCURRENT_MODIFICATION
        assert result.error.details["current_version"] == 1
        assert db.session.get(Shift, shift.id).status == "unassigned"

    def test_invalid_edge(self):
        shift = _make_shift()
        assert move_shift(shift.id, "completed", "mgr-1").error.code == E.INVALID_TRANSITION


# ═══════════════════════════════════════════════════════════════════════════
# Archiving
# ═══════════════════════════════════════════════════════════════════════════


def _completed_shift(days_ago, guard_id="g-1"):
    finished = NOW - timedelta(days=days_ago)
    shift = Shift(
        title="Night patrol",
        start_time=finished - timedelta(hours=8),
        end_time=finished,
        status="completed",
        assigned_guard_id=guard_id,
        client_info={"name": "Acme Logistics"},
        location_data={"site_name": "Dock 4"},
        updated_at=finished,
    )
    db.session.add(shift)
    db.session.commit()
    return shift


class TestAutoArchive:

    def test_archives_only_old_completed_shifts(self):
        old = _completed_shift(10)
        recent = _completed_shift(2)
        open_shift = _make_shift()

        result = auto_archive_completed_shifts(now=NOW)
        assert result.success
        assert result.data == {"archived": [old.id], "errors": []}

        assert db.session.get(Shift, old.id).status == "archived"
        assert db.session.get(Shift, recent.id).status == "completed"
        assert db.session.get(Shift, open_shift.id).status == "unassigned"

    def test_history_and_audit(self):
        old = _completed_shift(10)
        auto_archive_completed_shifts(now=NOW)

        row = ShiftWorkflowTransition.query.filter_by(shift_id=old.id).one()
        assert (row.previous_status, row.new_status) == ("completed", "archived")
        assert row.transition_method == "automatic"
        assert row.changed_by == "system"

        entry = AuditLog.query.filter_by(entity_id=old.id, action="shift.moved").one()
        assert entry.actor == "system"
        metrics = entry.diff["completion_metrics"]
        assert metrics["scheduled_hours"] == pytest.approx(8.0)
        assert metrics["guard_id"] == "g-1"
        assert metrics["client"] == "Acme Logistics"

    def test_age_and_batch_size(self):
        oldest = _completed_shift(5)
        _completed_shift(3)
        result = auto_archive_completed_shifts(older_than_days=1, limit=1, now=NOW)
        assert result.data["archived"] == [oldest.id]

    def test_failed_shift_reported_and_batch_continues(self, monkeypatch):
        first = _completed_shift(12)
        second = _completed_shift(10)
        real_transition = shift_kanban_service.execute_transition

        def transition(shift_id, *args, **kwargs):
            if shift_id == first.id:
                return ServiceResult.fail(E.CONCURRENT_MODIFICATION, "Shift was modified by another user")
            return real_transition(shift_id, *args, **kwargs)

        monkeypatch.setattr(shift_kanban_service, "execute_transition", transition)
        result = auto_archive_completed_shifts(now=NOW)

        assert result.data["archived"] == [second.id]
        assert len(result.data["errors"]) == 1
        assert first.id in result.data["errors"][0]
        assert E.CONCURRENT_MODIFICATION in result.data["errors"][0]
        assert db.session.get(Shift, first.id).status == "completed"
