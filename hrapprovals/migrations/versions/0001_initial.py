"""Initial organization, delegation and vacation balance schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-12 00:00:00
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

delegation_type = postgresql.ENUM(
    "ALL",
    "VACATION",
    "PERMISSION",
    "INCIDENT",
    name="delegation_type",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "PRINCIPAL",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    delegation_type.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "companies",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.UniqueConstraint("name", name="uq_companies_name"),
    )

    op.create_table(
        "work_schedules",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("work_days", sa.String(length=7), nullable=False, server_default=sa.text("'1111100'")),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
    )
    op.create_index("ix_work_schedules_company_id", "work_schedules", ["company_id"], unique=False)

    op.create_table(
        "departments",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("manager_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("company_id", "name", name="uq_departments_company_name"),
    )
    op.create_index("ix_departments_company_id", "departments", ["company_id"], unique=False)
    op.create_index("ix_departments_manager_id", "departments", ["manager_id"], unique=False)

    op.create_table(
        "employees",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("company_id", sa.Integer(), nullable=False),
        sa.Column("full_name", sa.String(length=255), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("hire_date", sa.Date(), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("supervisor_id", sa.Integer(), nullable=True),
        sa.Column("department_id", sa.Integer(), nullable=True),
        sa.Column("work_schedule_id", sa.Integer(), nullable=True),
        sa.ForeignKeyConstraint(["company_id"], ["companies.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["supervisor_id"], ["employees.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["department_id"], ["departments.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["work_schedule_id"], ["work_schedules.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_employees_company_id", "employees", ["company_id"], unique=False)
    op.create_index("ix_employees_supervisor_id", "employees", ["supervisor_id"], unique=False)
    op.create_index("ix_employees_department_id", "employees", ["department_id"], unique=False)

    op.create_foreign_key(
        "fk_departments_manager_id",
        "departments",
        "employees",
        ["manager_id"],
        ["id"],
        ondelete="SET NULL",
    )

    op.create_table(
        "approval_delegations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("delegator_id", sa.Integer(), nullable=False),
        sa.Column("delegatee_id", sa.Integer(), nullable=False),
        sa.Column("delegation_type", delegation_type, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["delegator_id"], ["employees.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["delegatee_id"], ["employees.id"], ondelete="CASCADE"),
    )
    op.create_index(
        "ix_approval_delegations_delegator_active",
        "approval_delegations",
        ["delegator_id", "is_active"],
        unique=False,
    )
    op.create_index(
        "ix_approval_delegations_delegatee_id",
        "approval_delegations",
        ["delegatee_id"],
        unique=False,
    )

    op.create_table(
        "vacation_balances",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("year", sa.Integer(), nullable=False),
        sa.Column("earned_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("used_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("pending_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("expired_days", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("employee_id", "year", name="uq_vacation_balances_employee_year"),
        sa.CheckConstraint(
            "used_days + pending_days <= earned_days",
            name="ck_vacation_balances_within_earned",
        ),
    )
    op.create_index("ix_vacation_balances_employee_id", "vacation_balances", ["employee_id"], unique=False)

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("company_id", sa.Integer(), nullable=True),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)
    op.create_index("ix_audit_logs_company_id", "audit_logs", ["company_id"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_company_id", table_name="audit_logs")
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.drop_index("ix_vacation_balances_employee_id", table_name="vacation_balances")
    op.drop_table("vacation_balances")

    op.drop_index("ix_approval_delegations_delegatee_id", table_name="approval_delegations")
    op.drop_index("ix_approval_delegations_delegator_active", table_name="approval_delegations")
    op.drop_table("approval_delegations")

    op.drop_constraint("fk_departments_manager_id", "departments", type_="foreignkey")

    op.drop_index("ix_employees_department_id", table_name="employees")
    op.drop_index("ix_employees_supervisor_id", table_name="employees")
    op.drop_index("ix_employees_company_id", table_name="employees")
    op.drop_table("employees")

    op.drop_index("ix_departments_manager_id", table_name="departments")
    op.drop_index("ix_departments_company_id", table_name="departments")
    op.drop_table("departments")

    op.drop_index("ix_work_schedules_company_id", table_name="work_schedules")
    op.drop_table("work_schedules")

    op.drop_table("companies")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    delegation_type.drop(bind, checkfirst=True)
