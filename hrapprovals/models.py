from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from hrapprovals.db import Base

JSONType = JSON().with_variant(JSONB(), "postgresql")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class LeaveType(str, enum.Enum):
    VACATION = "VACATION"
    SICK_LEAVE = "SICK_LEAVE"
    MATERNITY = "MATERNITY"
    PATERNITY = "PATERNITY"
    BEREAVEMENT = "BEREAVEMENT"
    PERSONAL = "PERSONAL"
    UNPAID = "UNPAID"
    MEDICAL_APPOINTMENT = "MEDICAL_APPOINTMENT"
    GOVERNMENT_PROCEDURE = "GOVERNMENT_PROCEDURE"
    ABSENCE = "ABSENCE"
    TARDINESS = "TARDINESS"
    EARLY_LEAVE = "EARLY_LEAVE"
    OTHER = "OTHER"


class RequestStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUPERVISOR_APPROVED = "SUPERVISOR_APPROVED"
    APPROVED = "APPROVED"
    REJECTED = "REJECTED"
    CANCELLED = "CANCELLED"


TERMINAL_REQUEST_STATUSES = frozenset(
    {RequestStatus.APPROVED, RequestStatus.REJECTED, RequestStatus.CANCELLED}
)


class RejectionStage(str, enum.Enum):
    SUPERVISOR = "SUPERVISOR"
    RH = "RH"


class DelegationType(str, enum.Enum):
    ALL = "ALL"
    VACATION = "VACATION"
    PERMISSION = "PERMISSION"
    INCIDENT = "INCIDENT"


INCIDENT_LEAVE_TYPES = frozenset({LeaveType.ABSENCE, LeaveType.TARDINESS, LeaveType.EARLY_LEAVE})


def delegation_type_for(leave_type: LeaveType) -> DelegationType:
    if leave_type == LeaveType.VACATION:
        return DelegationType.VACATION
    if leave_type in INCIDENT_LEAVE_TYPES:
        return DelegationType.INCIDENT
    return DelegationType.PERMISSION


class AuditActorType(str, enum.Enum):
    PRINCIPAL = "PRINCIPAL"
    SYSTEM = "SYSTEM"


class Company(Base):
    __tablename__ = "companies"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, unique=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    departments: Mapped[list[Department]] = relationship(back_populates="company")
    employees: Mapped[list[Employee]] = relationship(back_populates="company")


class WorkSchedule(Base):
    __tablename__ = "work_schedules"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    # Monday first, "1" marks a work day.
    work_days: Mapped[str] = mapped_column(
        String(7),
        nullable=False,
        default="1111100",
        server_default=text("'1111100'"),
    )

    employees: Mapped[list[Employee]] = relationship(back_populates="work_schedule")

    @property
    def work_day_flags(self) -> tuple[bool, ...]:
        return tuple(char == "1" for char in (self.work_days or ""))


class Department(Base):
    __tablename__ = "departments"
    __table_args__ = (UniqueConstraint("company_id", "name", name="uq_departments_company_name"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    manager_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL", use_alter=True, name="fk_departments_manager_id"),
        nullable=True,
        index=True,
    )

    company: Mapped[Company] = relationship(back_populates="departments")
    manager: Mapped[Employee | None] = relationship(foreign_keys=[manager_id])
    employees: Mapped[list[Employee]] = relationship(
        back_populates="department",
        foreign_keys="Employee.department_id",
    )


class Employee(Base):
    __tablename__ = "employees"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    company_id: Mapped[int] = mapped_column(
        ForeignKey("companies.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    full_name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    hire_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    supervisor_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    department_id: Mapped[int | None] = mapped_column(
        ForeignKey("departments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    work_schedule_id: Mapped[int | None] = mapped_column(
        ForeignKey("work_schedules.id", ondelete="SET NULL"),
        nullable=True,
    )

    company: Mapped[Company] = relationship(back_populates="employees")
    supervisor: Mapped[Employee | None] = relationship(remote_side=[id], back_populates="subordinates")
    subordinates: Mapped[list[Employee]] = relationship(back_populates="supervisor")
    department: Mapped[Department | None] = relationship(
        back_populates="employees",
        foreign_keys=[department_id],
    )
    work_schedule: Mapped[WorkSchedule | None] = relationship(back_populates="employees")
    vacation_balances: Mapped[list[VacationBalance]] = relationship(
        back_populates="employee",
        cascade="all, delete-orphan",
    )
    leave_requests: Mapped[list[LeaveRequest]] = relationship(
        back_populates="employee",
        foreign_keys="LeaveRequest.employee_id",
    )


class ApprovalDelegation(Base):
    __tablename__ = "approval_delegations"
    __table_args__ = (
        Index("ix_approval_delegations_delegator_active", "delegator_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    delegator_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
    )
    delegatee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    delegation_type: Mapped[DelegationType] = mapped_column(
        Enum(DelegationType, name="delegation_type"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    delegator: Mapped[Employee] = relationship(foreign_keys=[delegator_id])
    delegatee: Mapped[Employee] = relationship(foreign_keys=[delegatee_id])

    def covers(self, day: date) -> bool:
        if not self.is_active or day < self.start_date:
            return False
        return self.end_date is None or day < self.end_date


class VacationBalance(Base):
    __tablename__ = "vacation_balances"
    __table_args__ = (
        UniqueConstraint("employee_id", "year", name="uq_vacation_balances_employee_year"),
        CheckConstraint("used_days + pending_days <= earned_days", name="ck_vacation_balances_within_earned"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    earned_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    used_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    pending_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    expired_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    employee: Mapped[Employee] = relationship(back_populates="vacation_balances")

    @property
    def available_days(self) -> int:
        return self.earned_days - self.used_days - self.pending_days


class LeaveRequest(Base):
    __tablename__ = "leave_requests"
    __table_args__ = (
        CheckConstraint("end_date >= start_date", name="ck_leave_requests_date_order"),
        CheckConstraint("total_days > 0", name="ck_leave_requests_positive_days"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int] = mapped_column(
        ForeignKey("employees.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    type: Mapped[LeaveType] = mapped_column(Enum(LeaveType, name="leave_type"), nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_days: Mapped[int] = mapped_column(Integer, nullable=False)
    balance_year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[RequestStatus] = mapped_column(
        Enum(RequestStatus, name="request_status"),
        nullable=False,
        default=RequestStatus.PENDING,
        server_default=text("'PENDING'"),
        index=True,
    )
    reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    supervisor_approved_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
    )
    supervisor_approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    supervisor_comments: Mapped[str | None] = mapped_column(Text, nullable=True)
    supervisor_approval_basis: Mapped[str | None] = mapped_column(String(50), nullable=True)

    approved_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
    )
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rh_comments: Mapped[str | None] = mapped_column(Text, nullable=True)

    rejected_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
    )
    rejected_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejected_stage: Mapped[RejectionStage | None] = mapped_column(
        Enum(RejectionStage, name="rejection_stage"),
        nullable=True,
    )
    rejected_reason: Mapped[str | None] = mapped_column(String(1000), nullable=True)

    cancelled_by_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    applied_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    applied_reference: Mapped[str | None] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=_utcnow,
    )

    employee: Mapped[Employee] = relationship(back_populates="leave_requests", foreign_keys=[employee_id])

    @property
    def is_vacation(self) -> bool:
        return self.type == LeaveType.VACATION

    @property
    def is_applied(self) -> bool:
        return self.applied_at is not None


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    company_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)


class NotificationJob(Base):
    __tablename__ = "notification_jobs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    employee_id: Mapped[int | None] = mapped_column(
        ForeignKey("employees.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    leave_request_id: Mapped[int | None] = mapped_column(
        ForeignKey("leave_requests.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    job_type: Mapped[str] = mapped_column(String(100), nullable=False)
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    scheduled_at_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, index=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default="PENDING",
        server_default=text("'PENDING'"),
        index=True,
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default=text("0"))
    last_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    idempotency_key: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=_utcnow,
        server_default=text("CURRENT_TIMESTAMP"),
    )

    employee: Mapped[Employee | None] = relationship()
