"""Add departments, employee site assignments and nullable site/shift fallbacks

Revision ID: 0002_sites_and_reports
Revises: 0001_initial
Create Date: 2026-10-19 12:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = "0002_sites_and_reports"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("company_id", "name", name="uq_departments_company_name"),
    )
    op.create_index("ix_departments_company_id", "departments", ["company_id"], unique=False)

    op.add_column("employees", sa.Column("department_id", sa.Integer(), nullable=True))
    op.create_foreign_key(
        "fk_employees_department_id",
        "employees",
        "departments",
        ["department_id"],
        ["id"],
        ondelete="SET NULL",
    )
    op.create_index("ix_employees_department_id", "employees", ["department_id"], unique=False)

    op.create_table(
        "employee_sites",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("site_id", sa.Integer(), nullable=False),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.text("false")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["site_id"], ["work_sites.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "site_id", name="uq_employee_sites_employee_site"),
    )
    op.create_index("ix_employee_sites_employee_id", "employee_sites", ["employee_id"], unique=False)
    op.create_index("ix_employee_sites_site_id", "employee_sites", ["site_id"], unique=False)

    # Existing rows keep their stored values; new rows may leave them NULL.
    op.alter_column(
        "work_sites",
        "radius_meters",
        existing_type=sa.Integer(),
        nullable=True,
        server_default=None,
    )
    op.alter_column(
        "shifts",
        "grace_period_minutes",
        existing_type=sa.Integer(),
        nullable=True,
        server_default=None,
    )


def downgrade() -> None:
    op.execute("UPDATE shifts SET grace_period_minutes = 10 WHERE grace_period_minutes IS NULL")
    op.alter_column(
        "shifts",
        "grace_period_minutes",
        existing_type=sa.Integer(),
        nullable=False,
        server_default=sa.text("10"),
    )
    op.execute("UPDATE work_sites SET radius_meters = 100 WHERE radius_meters IS NULL")
    op.alter_column(
        "work_sites",
        "radius_meters",
        existing_type=sa.Integer(),
        nullable=False,
        server_default=sa.text("100"),
    )

    op.drop_index("ix_employee_sites_site_id", table_name="employee_sites")
    op.drop_index("ix_employee_sites_employee_id", table_name="employee_sites")
    op.drop_table("employee_sites")

    op.drop_index("ix_employees_department_id", table_name="employees")
    op.drop_constraint("fk_employees_department_id", "employees", type_="foreignkey")
    op.drop_column("employees", "department_id")

    op.drop_index("ix_departments_company_id", table_name="departments")
    op.drop_table("departments")
