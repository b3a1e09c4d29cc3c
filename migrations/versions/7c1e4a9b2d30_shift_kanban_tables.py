"""shift_kanban_tables

Create the shift Kanban schema: shifts, assignments, guard certifications,
workflow history, urgency alerts, bulk operations, audit log,
notifications and scheduled jobs.

Revision ID: 7c1e4a9b2d30
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy import inspect as sa_inspect


# revision identifiers, used by Alembic.
revision = "7c1e4a9b2d30"
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    bind = op.get_bind()
    existing_tables = set(sa_inspect(bind).get_table_names())

    if "shifts" not in existing_tables:
        op.create_table(
            "shifts",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("title", sa.String(length=200), nullable=False, server_default=""),
            sa.Column("start_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("end_time", sa.DateTime(timezone=True), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="unassigned"),
            sa.Column("assigned_guard_id", sa.String(length=64), nullable=True),
            sa.Column("priority", sa.Integer(), nullable=False, server_default="3"),
            sa.Column("required_certifications", sa.JSON(), nullable=True),
            sa.Column("client_info", sa.JSON(), nullable=True),
            sa.Column("location_data", sa.JSON(), nullable=True),
            sa.Column("version", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("created_by", sa.String(length=100), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "status IN ('unassigned','assigned','confirmed','in_progress',"
                "'completed','issue_logged','archived')",
                name="ck_shift_status",
            ),
            sa.CheckConstraint("priority BETWEEN 1 AND 5", name="ck_shift_priority"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_shifts_start_time", "shifts", ["start_time"])
        op.create_index("ix_shifts_assigned_guard_id", "shifts", ["assigned_guard_id"])
        op.create_index("idx_shift_status_start", "shifts", ["status", "start_time"])

    if "shift_assignments" not in existing_tables:
        op.create_table(
            "shift_assignments",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("shift_id", sa.String(length=36), nullable=False),
            sa.Column("guard_id", sa.String(length=64), nullable=False),
            sa.Column("assignment_status", sa.String(length=20), nullable=False, server_default="pending"),
            sa.Column("assigned_by", sa.String(length=100), nullable=True),
            sa.Column("assigned_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("confirmed_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_shift_assignments_shift_id", "shift_assignments", ["shift_id"])
        op.create_index("idx_assignment_guard_status", "shift_assignments", ["guard_id", "assignment_status"])

    if "guard_certifications" not in existing_tables:
        op.create_table(
            "guard_certifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("guard_id", sa.String(length=64), nullable=False),
            sa.Column("certification", sa.String(length=100), nullable=False),
            sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("guard_id", "certification", name="uq_guard_certification"),
        )
        op.create_index("ix_guard_certifications_guard_id", "guard_certifications", ["guard_id"])

    if "shift_workflow_history" not in existing_tables:
        op.create_table(
            "shift_workflow_history",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("shift_id", sa.String(length=36), nullable=False),
            sa.Column("previous_status", sa.String(length=20), nullable=True),
            sa.Column("new_status", sa.String(length=20), nullable=False),
            sa.Column("changed_by", sa.String(length=100), nullable=False),
            sa.Column("changed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("transition_reason", sa.Text(), nullable=True),
            sa.Column("transition_method", sa.String(length=20), nullable=False, server_default="manual"),
            sa.Column("bulk_operation_id", sa.String(length=36), nullable=True),
            sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_shift_workflow_history_changed_by", "shift_workflow_history", ["changed_by"])
        op.create_index("idx_workflow_shift_changed", "shift_workflow_history", ["shift_id", "changed_at"])
        op.create_index("idx_workflow_bulk_op", "shift_workflow_history", ["bulk_operation_id"])

    if "shift_urgency_alerts" not in existing_tables:
        op.create_table(
            "shift_urgency_alerts",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("shift_id", sa.String(length=36), nullable=False),
            sa.Column("alert_type", sa.String(length=30), nullable=False),
            sa.Column("priority", sa.String(length=10), nullable=False, server_default="medium"),
            sa.Column("hours_until_shift", sa.Float(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="active"),
            sa.Column("escalation_level", sa.Integer(), nullable=False, server_default="1"),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("acknowledged_by", sa.String(length=100), nullable=True),
            sa.Column("acknowledged_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("acknowledgment_notes", sa.Text(), nullable=True),
            sa.Column("resolved_by", sa.String(length=100), nullable=True),
            sa.Column("resolved_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("resolution_notes", sa.Text(), nullable=True),
            sa.Column("last_escalated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="CASCADE"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_shift_urgency_alerts_shift_id", "shift_urgency_alerts", ["shift_id"])
        op.create_index("idx_alert_status_priority", "shift_urgency_alerts", ["status", "priority"])
        op.create_index(
            "uq_alert_active_shift_type", "shift_urgency_alerts", ["shift_id", "alert_type"],
            unique=True,
            sqlite_where=sa.text("status = 'active'"),
            postgresql_where=sa.text("status = 'active'"),
        )

    if "shift_bulk_operations" not in existing_tables:
        op.create_table(
            "shift_bulk_operations",
            sa.Column("id", sa.String(length=36), nullable=False),
            sa.Column("operation_type", sa.String(length=30), nullable=False),
            sa.Column("shift_ids", sa.JSON(), nullable=False),
            sa.Column("parameters", sa.JSON(), nullable=False),
            sa.Column("reason", sa.Text(), nullable=True),
            sa.Column("executed_by", sa.String(length=100), nullable=False),
            sa.Column("executed_at", sa.DateTime(timezone=True), nullable=False),
            sa.Column("status", sa.String(length=20), nullable=False, server_default="executing"),
            sa.Column("results", sa.JSON(), nullable=False),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.CheckConstraint(
                "operation_type IN ('status_change','assign','priority_update','notification','clone')",
                name="ck_bulk_operation_type",
            ),
            sa.CheckConstraint("status IN ('executing','completed','failed')", name="ck_bulk_operation_status"),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_shift_bulk_operations_executed_by", "shift_bulk_operations", ["executed_by"])

    if "audit_logs" not in existing_tables:
        op.create_table(
            "audit_logs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("entity_type", sa.String(length=30), nullable=False),
            sa.Column("entity_id", sa.String(length=36), nullable=False),
            sa.Column("action", sa.String(length=60), nullable=False),
            sa.Column("actor", sa.String(length=150), nullable=False, server_default="system"),
            sa.Column("diff_json", sa.Text(), nullable=True),
            sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("idx_audit_entity", "audit_logs", ["entity_type", "entity_id"])
        op.create_index("idx_audit_actor", "audit_logs", ["actor"])
        op.create_index("idx_audit_action", "audit_logs", ["action"])
        op.create_index("idx_audit_ts", "audit_logs", ["timestamp"])

    if "notifications" not in existing_tables:
        op.create_table(
            "notifications",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("recipient", sa.String(length=150), nullable=True),
            sa.Column("title", sa.String(length=300), nullable=False),
            sa.Column("message", sa.Text(), nullable=True),
            sa.Column("category", sa.String(length=30), nullable=True),
            sa.Column("severity", sa.String(length=20), nullable=True),
            sa.Column("entity_type", sa.String(length=30), nullable=True),
            sa.Column("entity_id", sa.String(length=36), nullable=True),
            sa.Column("is_read", sa.Boolean(), nullable=True),
            sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
        )
        op.create_index("ix_notifications_recipient", "notifications", ["recipient"])

    if "scheduled_jobs" not in existing_tables:
        op.create_table(
            "scheduled_jobs",
            sa.Column("id", sa.Integer(), nullable=False),
            sa.Column("job_name", sa.String(length=100), nullable=False),
            sa.Column("description", sa.String(length=500), nullable=True),
            sa.Column("schedule_type", sa.String(length=30), nullable=True),
            sa.Column("schedule_config", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=20), nullable=True),
            sa.Column("is_enabled", sa.Boolean(), nullable=True),
            sa.Column("last_run_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("last_run_status", sa.String(length=20), nullable=True),
            sa.Column("last_run_duration_ms", sa.Integer(), nullable=True),
            sa.Column("last_run_result", sa.JSON(), nullable=True),
            sa.Column("run_count", sa.Integer(), nullable=True),
            sa.Column("error_count", sa.Integer(), nullable=True),
            sa.Column("last_error", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint("id"),
            sa.UniqueConstraint("job_name"),
        )


def downgrade():
    for table in (
        "scheduled_jobs",
        "notifications",
        "audit_logs",
        "shift_bulk_operations",
        "shift_urgency_alerts",
        "shift_workflow_history",
        "guard_certifications",
        "shift_assignments",
        "shifts",
    ):
        op.drop_table(table)
