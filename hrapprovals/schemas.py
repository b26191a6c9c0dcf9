from datetime import date, datetime
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from hrapprovals.models import (
    AuditActorType,
    DelegationType,
    LeaveType,
    RejectionStage,
    RequestStatus,
)


class EmployeeSummaryRead(BaseModel):
    id: int
    company_id: int
    full_name: str
    email: str | None = None
    supervisor_id: int | None = None
    department_id: int | None = None
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


class SupervisorAssignRequest(BaseModel):
    supervisor_id: int | None = Field(default=None, ge=1)


class LeaveRequestCreate(BaseModel):
    employee_id: int | None = Field(default=None, ge=1)
    type: LeaveType
    start_date: date
    end_date: date
    reason: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _validate_range(self) -> "LeaveRequestCreate":
        if self.end_date < self.start_date:
            raise ValueError("end_date must be greater than or equal to start_date")
        return self


class LeaveRequestRead(BaseModel):
    id: int
    employee_id: int
    type: LeaveType
    start_date: date
    end_date: date
    total_days: int
    balance_year: int
    status: RequestStatus
    reason: str | None = None
    supervisor_approved_by_id: int | None = None
    supervisor_approved_at: datetime | None = None
    supervisor_comments: str | None = None
    supervisor_approval_basis: str | None = None
    approved_by_id: int | None = None
    approved_at: datetime | None = None
    rh_comments: str | None = None
    rejected_by_id: int | None = None
    rejected_at: datetime | None = None
    rejected_stage: RejectionStage | None = None
    rejected_reason: str | None = None
    cancelled_by_id: int | None = None
    cancelled_at: datetime | None = None
    applied_at: datetime | None = None
    applied_reference: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class SupervisorApproveAction(BaseModel):
    action: Literal["supervisor_approve"]
    comments: str | None = Field(default=None, max_length=2000)


class RhApproveAction(BaseModel):
    action: Literal["rh_approve"]
    comments: str | None = Field(default=None, max_length=2000)


class ApproveAction(BaseModel):
    action: Literal["approve"]
    comments: str | None = Field(default=None, max_length=2000)


class RejectAction(BaseModel):
    action: Literal["reject"]
    reason: str = Field(min_length=1, max_length=1000)
    stage: RejectionStage | None = None

    @model_validator(mode="after")
    def _validate_reason(self) -> "RejectAction":
        normalized = self.reason.strip()
        if not normalized:
            raise ValueError("reason must not be blank")
        self.reason = normalized
        return self


class CancelAction(BaseModel):
    action: Literal["cancel"]


ApprovalAction = Annotated[
    Union[SupervisorApproveAction, RhApproveAction, ApproveAction, RejectAction, CancelAction],
    Field(discriminator="action"),
]


class LeaveRequestAppliedRequest(BaseModel):
    reference: str = Field(min_length=1, max_length=255)


class VacationBalanceRead(BaseModel):
    employee_id: int
    year: int
    earned_days: int
    used_days: int
    pending_days: int
    expired_days: int
    available_days: int

    model_config = ConfigDict(from_attributes=True)


class ApprovalDecisionRead(BaseModel):
    actor_id: int
    target_id: int
    delegation_type: DelegationType
    allowed: bool
    reason: str
    label: str
    level: int | None = None
    via_employee_id: int | None = None
    delegated_from: str | None = None


class OrgChartNodeRead(BaseModel):
    employee_id: int
    full_name: str
    email: str | None = None
    department_id: int | None = None
    supervisor_id: int | None = None
    level: int
    subordinates: list["OrgChartNodeRead"] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class ChainMemberRead(BaseModel):
    employee_id: int
    full_name: str
    email: str | None = None
    level: int | None = None
    basis: str
    is_delegated: bool = False
    delegated_from_id: int | None = None
    delegated_from: str | None = None

    model_config = ConfigDict(from_attributes=True)


class DelegationCreate(BaseModel):
    delegator_id: int = Field(ge=1)
    delegatee_id: int = Field(ge=1)
    delegation_type: DelegationType = DelegationType.ALL
    start_date: date
    end_date: date | None = None
    reason: str | None = Field(default=None, max_length=1000)

    @model_validator(mode="after")
    def _validate_delegation(self) -> "DelegationCreate":
        if self.delegator_id == self.delegatee_id:
            raise ValueError("delegator_id and delegatee_id must be different")
        if self.end_date is not None and self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self


class DelegationRead(BaseModel):
    id: int
    delegator_id: int
    delegatee_id: int
    delegation_type: DelegationType
    start_date: date
    end_date: date | None = None
    reason: str | None = None
    is_active: bool
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogRead(BaseModel):
    id: int
    ts_utc: datetime
    company_id: int | None = None
    actor_type: AuditActorType
    actor_id: str
    action: str
    entity_type: str | None = None
    entity_id: str | None = None
    ip: str | None = None
    user_agent: str | None = None
    success: bool
    details: dict[str, Any] = Field(default_factory=dict)

    model_config = ConfigDict(from_attributes=True)


class NotificationJobRead(BaseModel):
    id: int
    employee_id: int | None
    leave_request_id: int | None
    job_type: str
    recipient: str
    payload: dict[str, Any] = Field(default_factory=dict)
    scheduled_at_utc: datetime
    status: Literal["PENDING", "SENDING", "SENT", "CANCELED", "FAILED"]
    attempts: int
    last_error: str | None = None
    idempotency_key: str
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
