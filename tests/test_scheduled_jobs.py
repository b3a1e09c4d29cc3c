"""
Scheduled Job Tests — urgency monitor / escalation / expiry / auto-archive jobs:
  - Registry contents and job record creation
  - run_job: success, failure and unknown-job paths
  - Job summaries
"""

from datetime import datetime, timedelta, timezone

from app.core.result import ServiceResult
from app.models import db
from app.models.alert import UrgentShiftAlert
from app.models.scheduling import ScheduledJob
from app.models.shift import Shift
from app.services import scheduled_jobs, urgent_alert_service
from app.services.scheduler_service import SchedulerService, get_registered_jobs
from app.utils.errors import E


def _upcoming_shift(hours=5):
    start = datetime.now(timezone.utc) + timedelta(hours=hours)
    shift = Shift(title="Car park", start_time=start, end_time=start + timedelta(hours=8))
    db.session.add(shift)
    db.session.commit()
    return shift


def _job(name):
    db.session.expire_all()
    return ScheduledJob.query.filter_by(job_name=name).one()


class TestRegistry:

    def test_jobs_registered(self):
        assert set(get_registered_jobs()) == {
            "urgency_monitor", "alert_escalation", "alert_expiry", "shift_auto_archive",
        }

    def test_ensure_jobs_registered_is_idempotent(self):
        SchedulerService.ensure_jobs_registered()
        assert SchedulerService.ensure_jobs_registered() == []

        job = _job("urgency_monitor")
        assert job.schedule_type == "interval"
        assert job.schedule_config["minutes"] == 15
        assert job.description == "Scan upcoming shifts and raise urgency alerts."
        assert job.is_enabled is True

    def test_list_jobs(self):
        SchedulerService.ensure_jobs_registered()
        jobs = {j["job_name"]: j for j in SchedulerService.list_jobs()}
        assert jobs["alert_expiry"]["db_record"]["schedule_config"]["hours"] == 1
        assert jobs["shift_auto_archive"]["db_record"]["schedule_config"]["hours"] == 24


class TestRunJob:

    def test_urgency_monitor_run_recorded(self):
        SchedulerService.ensure_jobs_registered()
        shift = _upcoming_shift()

        outcome = SchedulerService.run_job("urgency_monitor")
        assert outcome["status"] == "success"
        assert outcome["error"] is None
        assert outcome["result"] == {"alerts_created": 1, "shifts_alerted": 1, "warnings": 0}

        job = _job("urgency_monitor")
        assert job.run_count == 1
        assert job.last_run_status == "success"
        assert job.last_run_result["alerts_created"] == 1
        assert UrgentShiftAlert.query.filter_by(shift_id=shift.id).count() == 1

    def test_failed_service_marks_run_failed(self, monkeypatch):
        SchedulerService.ensure_jobs_registered()
        monkeypatch.setattr(
            urgent_alert_service, "escalate_alerts",
            lambda: ServiceResult.fail(E.ESCALATION_ERROR, "Failed to escalate alerts"),
        )

        outcome = SchedulerService.run_job("alert_escalation")
        assert outcome["status"] == "failed"
        assert "ESCALATION_ERROR" in outcome["error"]

        job = _job("alert_escalation")
        assert job.error_count == 1
        assert job.last_run_status == "failed"
        assert "Failed to escalate alerts" in job.last_error

    def test_unknown_job(self):
        outcome = SchedulerService.run_job("nightly_payroll")
        assert outcome["status"] == "error"
        assert "Unknown job" in outcome["error"]


class TestJobSummaries:

    def test_escalation_summary(self, app):
        shift = _upcoming_shift()
        db.session.add(UrgentShiftAlert(
            shift_id=shift.id, alert_type="unassigned_24h", priority="high",
            created_at=datetime.now(timezone.utc) - timedelta(hours=3),
        ))
        db.session.commit()

        summary = scheduled_jobs.run_alert_escalation(app)
        assert summary == {"alerts_escalated": 1, "max_level": 2, "warnings": 0}

    def test_expiry_summary(self, app):
        shift = _upcoming_shift(hours=-20)
        db.session.add(UrgentShiftAlert(shift_id=shift.id, alert_type="unassigned_24h", priority="high"))
        db.session.commit()

        assert scheduled_jobs.run_alert_expiry(app) == {"alerts_expired": 1}
        assert UrgentShiftAlert.query.one().status == "resolved"

    def test_auto_archive_summary(self, app):
        finished = datetime.now(timezone.utc) - timedelta(days=9)
        shift = Shift(title="Car park", start_time=finished - timedelta(hours=8), end_time=finished,
                      status="completed", assigned_guard_id="g-1", updated_at=finished)
        db.session.add(shift)
        db.session.commit()

        assert scheduled_jobs.run_shift_auto_archive(app) == {"shifts_archived": 1, "errors": 0}
        db.session.expire_all()
        assert db.session.get(Shift, shift.id).status == "archived"

    def test_auto_archive_uses_configured_age(self, app, monkeypatch):
        monkeypatch.setitem(app.config, "AUTO_ARCHIVE_AFTER_DAYS", 30)
        finished = datetime.now(timezone.utc) - timedelta(days=9)
        db.session.add(Shift(title="Car park", start_time=finished - timedelta(hours=8), end_time=finished,
                             status="completed", assigned_guard_id="g-1", updated_at=finished))
        db.session.commit()

        assert scheduled_jobs.run_shift_auto_archive(app) == {"shifts_archived": 0, "errors": 0}
