"""Initial HR attendance schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

app_role = postgresql.ENUM(
    "super_admin",
    "company_admin",
    "hr_manager",
    "finance_manager",
    "employee",
    name="app_role",
    create_type=False,
)
attendance_status = postgresql.ENUM(
    "on_time",
    "late",
    "half_day",
    "absent",
    "leave",
    "holiday",
    name="attendance_status",
    create_type=False,
)
overtime_status = postgresql.ENUM(
    "active",
    "completed",
    "auto_closed",
    name="overtime_status",
    create_type=False,
)
correction_type = postgresql.ENUM(
    "clock_in",
    "clock_out",
    "both",
    "full_record",
    name="correction_type",
    create_type=False,
)
correction_status = postgresql.ENUM(
    "pending",
    "approved",
    "rejected",
    name="correction_status",
    create_type=False,
)
leave_status = postgresql.ENUM(
    "pending",
    "approved",
    "rejected",
    "cancelled",
    name="leave_status",
    create_type=False,
)
leave_type = postgresql.ENUM(
    "annual",
    "sick",
    "emergency",
    "unpaid",
    "maternity",
    "paternity",
    name="leave_type",
    create_type=False,
)
notification_type = postgresql.ENUM(
    "late_arrival",
    "missed_clockout",
    "ot_reminder",
    "correction_submitted",
    "correction_approved",
    "correction_rejected",
    "auto_clockout",
    "ot_auto_closed",
    name="notification_type",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "EMPLOYEE",
    "REVIEWER",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)

ALL_ENUMS = (
    app_role,
    attendance_status,
    overtime_status,
    correction_type,
    correction_status,
    leave_status,
    leave_type,
    notification_type,
    audit_actor_type,
)


def _created_at() -> sa.Column:
    return sa.Column(
        "created_at",
        sa.DateTime(timezone=True),
        nullable=False,
        server_default=sa.text("CURRENT_TIMESTAMP"),
    )


def upgrade() -> None:
    bind = op.get_bind()
    for enum_type in ALL_ENUMS:
        enum_type.create(bind, checkfirst=True)

    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        _created_at(),
    )

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("position", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_employees_user_id", "employees", ["user_id"], unique=True)
    op.create_index("ix_employees_company_id", "employees", ["company_id"], unique=False)

    op.create_table(
        "user_roles",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("user_id", sa.String(length=64), nullable=False),
        sa.Column("role", app_role, nullable=False),
        sa.UniqueConstraint("user_id", "role", name="uq_user_roles_user_role"),
    )
    op.create_index("ix_user_roles_user_id", "user_roles", ["user_id"], unique=False)

    op.create_table(
        "work_sites",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("site_name", sa.String(length=255), nullable=False),
        sa.Column("address", sa.String(length=500), nullable=True),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("radius_meters", sa.Integer(), nullable=False, server_default=sa.text("100")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_work_sites_company_id", "work_sites", ["company_id"], unique=False)

    op.create_table(
        "shifts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("shift_name", sa.String(length=100), nullable=False),
        sa.Column("start_time", sa.Time(), nullable=False),
        sa.Column("end_time", sa.Time(), nullable=False),
        sa.Column("grace_period_minutes", sa.Integer(), nullable=False, server_default=sa.text("10")),
        sa.Column("lunch_break_minutes", sa.Integer(), nullable=False, server_default=sa.text("60")),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_shifts_company_id", "shifts", ["company_id"], unique=False)

    op.create_table(
        "employee_shifts",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("shift_id", sa.Integer(), nullable=False),
        sa.Column("effective_from", sa.Date(), nullable=False),
        sa.Column("effective_until", sa.Date(), nullable=True),
        sa.Column(
            "work_days",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'[]'::jsonb"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_employee_shifts_employee_id", "employee_shifts", ["employee_id"], unique=False)

    op.create_table(
        "attendance_config",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("correction_window_hours", sa.Integer(), nullable=True),
        sa.Column("grace_period_minutes", sa.Integer(), nullable=True),
        sa.Column("geofence_radius_meters", sa.Integer(), nullable=True),
        sa.Column("auto_clockout_enabled", sa.Boolean(), nullable=True),
        sa.Column("ot_auto_close_hours", sa.Integer(), nullable=True),
        sa.Column("notification_settings", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("company_id", name="uq_attendance_config_company_id"),
    )

    op.create_table(
        "public_holidays",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("holiday_date", sa.Date(), nullable=False),
        sa.Column("holiday_name", sa.String(length=255), nullable=False),
        sa.Column("is_recurring", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_public_holidays_company_id", "public_holidays", ["company_id"], unique=False)

    op.create_table(
        "leave_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("leave_type", leave_type, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("status", leave_status, nullable=False, server_default=sa.text("'pending'")),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_leave_requests_employee_id", "leave_requests", ["employee_id"], unique=False)

    op.create_table(
        "attendance_records",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=True),
        sa.Column("shift_id", sa.Integer(), nullable=True),
        sa.Column("attendance_date", sa.Date(), nullable=False),
        sa.Column("clock_in_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clock_in_latitude", sa.Float(), nullable=True),
        sa.Column("clock_in_longitude", sa.Float(), nullable=True),
        sa.Column("clock_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("clock_out_latitude", sa.Float(), nullable=True),
        sa.Column("clock_out_longitude", sa.Float(), nullable=True),
        sa.Column("status", attendance_status, nullable=False, server_default=sa.text("'on_time'")),
        sa.Column("hours_worked", sa.Float(), nullable=True),
        sa.Column("overtime_hours", sa.Float(), nullable=True),
        sa.Column("locked_for_payroll", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_provisional", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("is_manually_adjusted", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("adjusted_by", sa.Integer(), nullable=True),
        sa.Column("correction_id", sa.Integer(), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        _created_at(),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["site_id"], ["work_sites.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["shift_id"], ["shifts.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["adjusted_by"], ["employees.id"], ondelete="SET NULL"),
        sa.UniqueConstraint("employee_id", "attendance_date", name="uq_attendance_records_employee_date"),
    )
    op.create_index("ix_attendance_records_employee_id", "attendance_records", ["employee_id"], unique=False)
    op.create_index(
        "ix_attendance_records_attendance_date",
        "attendance_records",
        ["attendance_date"],
        unique=False,
    )

    op.create_table(
        "overtime_sessions",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("attendance_record_id", sa.Integer(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("ot_in_time", sa.DateTime(timezone=True), nullable=False),
        sa.Column("ot_in_latitude", sa.Float(), nullable=False),
        sa.Column("ot_in_longitude", sa.Float(), nullable=False),
        sa.Column("ot_out_time", sa.DateTime(timezone=True), nullable=True),
        sa.Column("ot_out_latitude", sa.Float(), nullable=True),
        sa.Column("ot_out_longitude", sa.Float(), nullable=True),
        sa.Column("status", overtime_status, nullable=False, server_default=sa.text("'active'")),
        sa.Column("total_ot_hours", sa.Float(), nullable=True),
        sa.Column("is_approved", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column("approved_by", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("auto_closed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["attendance_record_id"], ["attendance_records.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["site_id"], ["work_sites.id"], ondelete="RESTRICT"),
        sa.ForeignKeyConstraint(["approved_by"], ["employees.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_overtime_sessions_employee_id", "overtime_sessions", ["employee_id"], unique=False)
    op.create_index(
        "uq_overtime_sessions_one_active_per_employee",
        "overtime_sessions",
        ["employee_id"],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )

    op.create_table(
        "attendance_corrections",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("attendance_record_id", sa.Integer(), nullable=False),
        sa.Column("correction_type", correction_type, nullable=False),
        sa.Column("requested_clock_in", sa.DateTime(timezone=True), nullable=True),
        sa.Column("requested_clock_out", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reason", sa.Text(), nullable=False),
        sa.Column("attachment_url", sa.String(length=1000), nullable=True),
        sa.Column("submission_deadline", sa.DateTime(timezone=True), nullable=False),
        sa.Column("is_within_deadline", sa.Boolean(), nullable=False),
        sa.Column("status", correction_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("reviewed_by", sa.Integer(), nullable=True),
        sa.Column("reviewer_notes", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        _created_at(),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["attendance_record_id"], ["attendance_records.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["reviewed_by"], ["employees.id"], ondelete="SET NULL"),
    )
    op.create_index(
        "ix_attendance_corrections_employee_id",
        "attendance_corrections",
        ["employee_id"],
        unique=False,
    )
    op.create_index(
        "ix_attendance_corrections_attendance_record_id",
        "attendance_corrections",
        ["attendance_record_id"],
        unique=False,
    )

    op.create_table(
        "notification_log",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("notification_type", notification_type, nullable=False),
        sa.Column("title", sa.String(length=255), nullable=False),
        sa.Column("message", sa.Text(), nullable=False),
        sa.Column(
            "data",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("read_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_notification_log_employee_id", "notification_log", ["employee_id"], unique=False)
    op.create_index("ix_notification_log_sent_at", "notification_log", ["sent_at"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("ts_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=100), nullable=True),
        sa.Column("entity_id", sa.String(length=100), nullable=True),
        sa.Column("ip", sa.String(length=100), nullable=True),
        sa.Column("user_agent", sa.String(length=1000), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")
    op.drop_index("ix_notification_log_sent_at", table_name="notification_log")
    op.drop_index("ix_notification_log_employee_id", table_name="notification_log")
    op.drop_table("notification_log")
    op.drop_index("ix_attendance_corrections_attendance_record_id", table_name="attendance_corrections")
    op.drop_index("ix_attendance_corrections_employee_id", table_name="attendance_corrections")
    op.drop_table("attendance_corrections")
    op.drop_index("uq_overtime_sessions_one_active_per_employee", table_name="overtime_sessions")
    op.drop_index("ix_overtime_sessions_employee_id", table_name="overtime_sessions")
    op.drop_table("overtime_sessions")
    op.drop_index("ix_attendance_records_attendance_date", table_name="attendance_records")
    op.drop_index("ix_attendance_records_employee_id", table_name="attendance_records")
    op.drop_table("attendance_records")
    op.drop_index("ix_leave_requests_employee_id", table_name="leave_requests")
    op.drop_table("leave_requests")
    op.drop_index("ix_public_holidays_company_id", table_name="public_holidays")
    op.drop_table("public_holidays")
    op.drop_table("attendance_config")
    op.drop_index("ix_employee_shifts_employee_id", table_name="employee_shifts")
    op.drop_table("employee_shifts")
    op.drop_index("ix_shifts_company_id", table_name="shifts")
    op.drop_table("shifts")
    op.drop_index("ix_work_sites_company_id", table_name="work_sites")
    op.drop_table("work_sites")
    op.drop_index("ix_user_roles_user_id", table_name="user_roles")
    op.drop_table("user_roles")
    op.drop_index("ix_employees_company_id", table_name="employees")
    op.drop_index("ix_employees_user_id", table_name="employees")
    op.drop_table("employees")
    op.drop_table("companies")

    bind = op.get_bind()
    for enum_type in reversed(ALL_ENUMS):
        enum_type.drop(bind, checkfirst=True)
