"""Add two-stage leave requests and the notification job queue

Revision ID: 0002_leave_request_workflow
Revises: 0001_initial
Create Date: 2026-10-12 00:30:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = "0002_leave_request_workflow"
down_revision: Union[str, None] = "0001_initial"
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

leave_type = postgresql.ENUM(
    "VACATION",
    "SICK_LEAVE",
    "MATERNITY",
    "PATERNITY",
    "BEREAVEMENT",
    "PERSONAL",
    "UNPAID",
    "MEDICAL_APPOINTMENT",
    "GOVERNMENT_PROCEDURE",
    "ABSENCE",
    "TARDINESS",
    "EARLY_LEAVE",
    "OTHER",
    name="leave_type",
    create_type=False,
)
request_status = postgresql.ENUM(
    "PENDING",
    "SUPERVISOR_APPROVED",
    "APPROVED",
    "REJECTED",
    "CANCELLED",
    name="request_status",
    create_type=False,
)
rejection_stage = postgresql.ENUM(
    "SUPERVISOR",
    "RH",
    name="rejection_stage",
    create_type=False,
)


def upgrade() -> None:
    bind = op.get_bind()
    leave_type.create(bind, checkfirst=True)
    request_status.create(bind, checkfirst=True)
    rejection_stage.create(bind, checkfirst=True)

    op.create_table(
        "leave_requests",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=False),
        sa.Column("type", leave_type, nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("total_days", sa.Integer(), nullable=False),
        sa.Column("balance_year", sa.Integer(), nullable=False),
        sa.Column("status", request_status, nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("reason", sa.String(length=1000), nullable=True),
        sa.Column("supervisor_approved_by_id", sa.Integer(), nullable=True),
        sa.Column("supervisor_approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("supervisor_comments", sa.Text(), nullable=True),
        sa.Column("supervisor_approval_basis", sa.String(length=50), nullable=True),
        sa.Column("approved_by_id", sa.Integer(), nullable=True),
        sa.Column("approved_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rh_comments", sa.Text(), nullable=True),
        sa.Column("rejected_by_id", sa.Integer(), nullable=True),
        sa.Column("rejected_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("rejected_stage", rejection_stage, nullable=True),
        sa.Column("rejected_reason", sa.String(length=1000), nullable=True),
        sa.Column("cancelled_by_id", sa.Integer(), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("applied_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("applied_reference", sa.String(length=255), nullable=True),
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
        sa.ForeignKeyConstraint(["supervisor_approved_by_id"], ["employees.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["approved_by_id"], ["employees.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["rejected_by_id"], ["employees.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["cancelled_by_id"], ["employees.id"], ondelete="SET NULL"),
        sa.CheckConstraint("end_date >= start_date", name="ck_leave_requests_date_order"),
        sa.CheckConstraint("total_days > 0", name="ck_leave_requests_positive_days"),
    )
    op.create_index("ix_leave_requests_employee_id", "leave_requests", ["employee_id"], unique=False)
    op.create_index("ix_leave_requests_status", "leave_requests", ["status"], unique=False)

    op.create_table(
        "notification_jobs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("employee_id", sa.Integer(), nullable=True),
        sa.Column("leave_request_id", sa.Integer(), nullable=True),
        sa.Column("job_type", sa.String(length=100), nullable=False),
        sa.Column("recipient", sa.String(length=255), nullable=False),
        sa.Column(
            "payload",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("scheduled_at_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default=sa.text("'PENDING'")),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default=sa.text("0")),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("idempotency_key", sa.String(length=255), nullable=False),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.ForeignKeyConstraint(["employee_id"], ["employees.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["leave_request_id"], ["leave_requests.id"], ondelete="SET NULL"),
    )
    op.create_index("ix_notification_jobs_employee_id", "notification_jobs", ["employee_id"], unique=False)
    op.create_index(
        "ix_notification_jobs_leave_request_id",
        "notification_jobs",
        ["leave_request_id"],
        unique=False,
    )
    op.create_index(
        "ix_notification_jobs_scheduled_at_utc",
        "notification_jobs",
        ["scheduled_at_utc"],
        unique=False,
    )
    op.create_index("ix_notification_jobs_status", "notification_jobs", ["status"], unique=False)
    op.create_index(
        "ix_notification_jobs_idempotency_key",
        "notification_jobs",
        ["idempotency_key"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ix_notification_jobs_idempotency_key", table_name="notification_jobs")
    op.drop_index("ix_notification_jobs_status", table_name="notification_jobs")
    op.drop_index("ix_notification_jobs_scheduled_at_utc", table_name="notification_jobs")
    op.drop_index("ix_notification_jobs_leave_request_id", table_name="notification_jobs")
    op.drop_index("ix_notification_jobs_employee_id", table_name="notification_jobs")
    op.drop_table("notification_jobs")

    op.drop_index("ix_leave_requests_status", table_name="leave_requests")
    op.drop_index("ix_leave_requests_employee_id", table_name="leave_requests")
    op.drop_table("leave_requests")

    bind = op.get_bind()
    rejection_stage.drop(bind, checkfirst=True)
    request_status.drop(bind, checkfirst=True)
    leave_type.drop(bind, checkfirst=True)
