"""Two-stage approval workflow for leave and incident requests.

    PENDING --supervisor--> SUPERVISOR_APPROVED --RH--> APPROVED
    PENDING --reject--> REJECTED (stage SUPERVISOR)
    SUPERVISOR_APPROVED --reject--> REJECTED (stage RH)
    PENDING | SUPERVISOR_APPROVED --cancel--> CANCELLED

APPROVED, REJECTED and CANCELLED are terminal. Only VACATION requests touch the
balance ledger: ``create`` reserves, final approval commits, rejection and
cancellation release. Every transition locks the request row and commits the
new state together with the ledger change, or rolls both back.
"""

from __future__ import annotations

import logging
from collections.abc import Collection, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime, timezone
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from hrapprovals.errors import (
    ApiError,
    EmployeeNotFound,
    InsufficientBalance,
    InvalidStateTransition,
    NotAuthorizedToApprove,
    RequestNotFound,
)
from hrapprovals.models import (
    Employee,
    LeaveRequest,
    LeaveType,
    RejectionStage,
    RequestStatus,
    delegation_type_for,
)
from hrapprovals.roles import is_hr_tier
from hrapprovals.schemas import (
    ApprovalAction,
    ApproveAction,
    CancelAction,
    RejectAction,
    RhApproveAction,
    SupervisorApproveAction,
)
from hrapprovals.security import Principal
from hrapprovals.services.balances import BalanceLedger
from hrapprovals.services.directory import Directory, SqlDirectory
from hrapprovals.services.hierarchy import ApprovalChainResolver
from hrapprovals.services.work_schedules import ScheduleProvider, SqlScheduleProvider, count_work_days

logger = logging.getLogger("hrapprovals.leave_requests")

HR_OVERRIDE_BASIS = "HR_OVERRIDE"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_not_own_request(leave_request: LeaveRequest, actor: ApprovalActor) -> None:
    if actor.employee_id is not None and actor.employee_id == leave_request.employee_id:
        raise NotAuthorizedToApprove("Employees cannot approve their own requests.")


@dataclass(frozen=True, slots=True)
class ApprovalActor:
    employee_id: int | None
    raw_role: str
    label: str = "unknown"

    @property
    def is_hr_tier(self) -> bool:
        return is_hr_tier(self.raw_role)

    @classmethod
    def from_principal(cls, principal: Principal) -> ApprovalActor:
        return cls(
            employee_id=principal.employee_id,
            raw_role=principal.raw_role,
            label=principal.actor_label,
        )


class ApprovalWorkflow:
    def __init__(
        self,
        db: Session,
        *,
        directory: Directory | None = None,
        schedules: ScheduleProvider | None = None,
        ledger: BalanceLedger | None = None,
        resolver: ApprovalChainResolver | None = None,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.directory = directory or SqlDirectory(db)
        self.schedules = schedules or SqlScheduleProvider(db)
        self.ledger = ledger or BalanceLedger(db)
        self.resolver = resolver or ApprovalChainResolver(self.directory)
        self._now = now

    @contextmanager
    def _unit_of_work(self) -> Iterator[None]:
        try:
            yield
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

    def _load_for_update(self, request_id: int) -> LeaveRequest:
        stmt = select(LeaveRequest).where(LeaveRequest.id == request_id).with_for_update()
        leave_request = self.db.scalar(stmt)
        if leave_request is None:
            raise RequestNotFound(request_id)
        return leave_request

    def _log_transition(
        self,
        leave_request: LeaveRequest,
        *,
        from_status: RequestStatus | None,
        actor: ApprovalActor | None,
        **extra: object,
    ) -> None:
        logger.info(
            "leave_request_transition",
            extra={
                "leave_request_id": leave_request.id,
                "employee_id": leave_request.employee_id,
                "leave_type": leave_request.type.value,
                "from_status": from_status.value if from_status else None,
                "to_status": leave_request.status.value,
                "total_days": leave_request.total_days,
                "actor_employee_id": actor.employee_id if actor else None,
                "actor": actor.label if actor else None,
                **extra,
            },
        )

    def get(self, request_id: int) -> LeaveRequest:
        leave_request = self.db.get(LeaveRequest, request_id)
        if leave_request is None:
            raise RequestNotFound(request_id)
        return leave_request

    def create(
        self,
        *,
        employee_id: int,
        leave_type: LeaveType,
        start_date: date,
        end_date: date,
        reason: str | None = None,
    ) -> LeaveRequest:
        with self._unit_of_work():
            employee = self.directory.get_employee(employee_id)
            if employee is None:
                raise EmployeeNotFound(employee_id)
            if end_date < start_date:
                raise ApiError(
                    status_code=422,
                    code="INVALID_DATE_RANGE",
                    message="end_date must be greater than or equal to start_date",
                )

            total_days = count_work_days(start_date, end_date, self.schedules.work_day_flags(employee))
            if total_days <= 0:
                raise ApiError(
                    status_code=422,
                    code="NO_WORK_DAYS_IN_RANGE",
                    message="The requested range does not contain any work days.",
                )

            balance_year = start_date.year
            if leave_type == LeaveType.VACATION:
                reservation = self.ledger.reserve(employee_id, balance_year, total_days)
                if not reservation.ok:
                    raise InsufficientBalance(
                        requested_days=total_days,
                        available_days=reservation.available_days,
                    )

            leave_request = LeaveRequest(
                employee_id=employee_id,
                type=leave_type,
                start_date=start_date,
                end_date=end_date,
                total_days=total_days,
                balance_year=balance_year,
                status=RequestStatus.PENDING,
                reason=reason,
            )
            self.db.add(leave_request)
            self.db.flush()

        self._log_transition(leave_request, from_status=None, actor=None, balance_year=balance_year)
        return leave_request

    def _supervisor_step(
        self,
        leave_request: LeaveRequest,
        actor: ApprovalActor,
        *,
        skip_hierarchy_check: bool,
        comments: str | None,
    ) -> None:
        if leave_request.status != RequestStatus.PENDING:
            raise InvalidStateTransition("Only pending requests can be supervisor-approved.")
        _ensure_not_own_request(leave_request, actor)

        if skip_hierarchy_check:
            basis = HR_OVERRIDE_BASIS
        else:
            decision = self.resolver.can_approve(
                actor.employee_id,
                leave_request.employee_id,
                delegation_type_for(leave_request.type),
            )
            if not decision.allowed:
                raise NotAuthorizedToApprove(f"Not authorized to approve this request ({decision.label}).")
            basis = decision.reason.value

        leave_request.status = RequestStatus.SUPERVISOR_APPROVED
        leave_request.supervisor_approved_by_id = actor.employee_id
        leave_request.supervisor_approved_at = self._now()
        leave_request.supervisor_comments = comments
        leave_request.supervisor_approval_basis = basis

    def _final_step(self, leave_request: LeaveRequest, actor: ApprovalActor, *, comments: str | None) -> None:
        if leave_request.status != RequestStatus.SUPERVISOR_APPROVED:
            raise InvalidStateTransition("Only supervisor-approved requests can receive final approval.")
        _ensure_not_own_request(leave_request, actor)
        if not actor.is_hr_tier:
            raise NotAuthorizedToApprove("Only HR can give final approval.")

        if leave_request.is_vacation:
            self.ledger.commit(leave_request.employee_id, leave_request.balance_year, leave_request.total_days)

        leave_request.status = RequestStatus.APPROVED
        leave_request.approved_by_id = actor.employee_id
        leave_request.approved_at = self._now()
        leave_request.rh_comments = comments

    def supervisor_approve(
        self,
        request_id: int,
        actor: ApprovalActor,
        *,
        skip_hierarchy_check: bool = False,
        comments: str | None = None,
    ) -> LeaveRequest:
        with self._unit_of_work():
            leave_request = self._load_for_update(request_id)
            previous = leave_request.status
            self._supervisor_step(
                leave_request,
                actor,
                skip_hierarchy_check=skip_hierarchy_check,
                comments=comments,
            )
        self._log_transition(
            leave_request,
            from_status=previous,
            actor=actor,
            basis=leave_request.supervisor_approval_basis,
        )
        return leave_request

    def final_approve(
        self,
        request_id: int,
        actor: ApprovalActor,
        *,
        comments: str | None = None,
    ) -> LeaveRequest:
        with self._unit_of_work():
            leave_request = self._load_for_update(request_id)
            previous = leave_request.status
            self._final_step(leave_request, actor, comments=comments)
        self._log_transition(leave_request, from_status=previous, actor=actor)
        return leave_request

    def approve(
        self,
        request_id: int,
        actor: ApprovalActor,
        *,
        comments: str | None = None,
    ) -> LeaveRequest:
        """Compatibility entry point that advances a request by one role-appropriate step.

        HR acting on a still-pending request gets the supervisor step recorded
        under its own name (basis ``HR_OVERRIDE``) before the final step, so the
        audit trail always shows both stages.
        """
        with self._unit_of_work():
            leave_request = self._load_for_update(request_id)
            previous = leave_request.status
            if previous == RequestStatus.PENDING:
                if actor.is_hr_tier:
                    self._supervisor_step(leave_request, actor, skip_hierarchy_check=True, comments=comments)
                    self._final_step(leave_request, actor, comments=comments)
                else:
                    self._supervisor_step(leave_request, actor, skip_hierarchy_check=False, comments=comments)
            elif previous == RequestStatus.SUPERVISOR_APPROVED:
                self._final_step(leave_request, actor, comments=comments)
            else:
                raise InvalidStateTransition("Only pending or supervisor-approved requests can be approved.")
        self._log_transition(
            leave_request,
            from_status=previous,
            actor=actor,
            basis=leave_request.supervisor_approval_basis,
        )
        return leave_request

    def reject(
        self,
        request_id: int,
        reason: str,
        actor: ApprovalActor,
        *,
        stage: RejectionStage | None = None,
    ) -> LeaveRequest:
        if not (reason or "").strip():
            raise ApiError(status_code=422, code="VALIDATION_ERROR", message="A rejection reason is required.")

        with self._unit_of_work():
            leave_request = self._load_for_update(request_id)
            previous = leave_request.status
            if previous == RequestStatus.PENDING:
                current_stage = RejectionStage.SUPERVISOR
            elif previous == RequestStatus.SUPERVISOR_APPROVED:
                current_stage = RejectionStage.RH
            else:
                raise InvalidStateTransition("Only pending or supervisor-approved requests can be rejected.")

            if stage is not None and stage != current_stage:
                raise InvalidStateTransition(
                    f"Request is awaiting {current_stage.value} review and cannot be rejected "
                    f"at the {stage.value} stage."
                )

            if current_stage == RejectionStage.RH:
                if not actor.is_hr_tier:
                    raise NotAuthorizedToApprove("Only HR can reject a supervisor-approved request.")
            elif not actor.is_hr_tier:
                decision = self.resolver.can_approve(
                    actor.employee_id,
                    leave_request.employee_id,
                    delegation_type_for(leave_request.type),
                )
                if not decision.allowed:
                    raise NotAuthorizedToApprove(f"Not authorized to reject this request ({decision.label}).")

            if leave_request.is_vacation:
                self.ledger.release(leave_request.employee_id, leave_request.balance_year, leave_request.total_days)

            leave_request.status = RequestStatus.REJECTED
            leave_request.rejected_by_id = actor.employee_id
            leave_request.rejected_at = self._now()
            leave_request.rejected_stage = current_stage
            leave_request.rejected_reason = reason.strip()
        self._log_transition(leave_request, from_status=previous, actor=actor, stage=current_stage.value)
        return leave_request

    def cancel(self, request_id: int, actor: ApprovalActor) -> LeaveRequest:
        with self._unit_of_work():
            leave_request = self._load_for_update(request_id)
            previous = leave_request.status
            if leave_request.is_applied:
                raise InvalidStateTransition("Requests applied to a processed payroll cannot be cancelled.")
            if previous not in (RequestStatus.PENDING, RequestStatus.SUPERVISOR_APPROVED):
                raise InvalidStateTransition("Only pending or supervisor-approved requests can be cancelled.")
            if actor.employee_id != leave_request.employee_id and not actor.is_hr_tier:
                raise NotAuthorizedToApprove("Only the requester or HR can cancel this request.")

            if leave_request.is_vacation:
                self.ledger.release(leave_request.employee_id, leave_request.balance_year, leave_request.total_days)

            leave_request.status = RequestStatus.CANCELLED
            leave_request.cancelled_by_id = actor.employee_id
            leave_request.cancelled_at = self._now()
        self._log_transition(leave_request, from_status=previous, actor=actor)
        return leave_request

    def mark_applied(self, request_id: int, reference: str) -> LeaveRequest:
        with self._unit_of_work():
            leave_request = self._load_for_update(request_id)
            if leave_request.status != RequestStatus.APPROVED:
                raise InvalidStateTransition("Only approved requests can be applied to a payroll.")
            if leave_request.is_applied:
                raise InvalidStateTransition("Request was already applied to a payroll.")
            leave_request.applied_at = self._now()
            leave_request.applied_reference = reference
        logger.info(
            "leave_request_applied",
            extra={"leave_request_id": leave_request.id, "applied_reference": reference},
        )
        return leave_request

    def apply_action(self, request_id: int, action: ApprovalAction, actor: ApprovalActor) -> LeaveRequest:
        if isinstance(action, SupervisorApproveAction):
            return self.supervisor_approve(
                request_id,
                actor,
                skip_hierarchy_check=actor.is_hr_tier,
                comments=action.comments,
            )
        if isinstance(action, RhApproveAction):
            return self.final_approve(request_id, actor, comments=action.comments)
        if isinstance(action, ApproveAction):
            return self.approve(request_id, actor, comments=action.comments)
        if isinstance(action, RejectAction):
            return self.reject(request_id, action.reason, actor, stage=action.stage)
        if isinstance(action, CancelAction):
            return self.cancel(request_id, actor)
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message="Unsupported approval action.")


def list_requests(
    db: Session,
    *,
    company_id: int | None,
    employee_id: int | None = None,
    employee_ids: Collection[int] | None = None,
    status: RequestStatus | None = None,
    year: int | None = None,
) -> list[LeaveRequest]:
    stmt = (
        select(LeaveRequest)
        .join(Employee, Employee.id == LeaveRequest.employee_id)
        .order_by(LeaveRequest.created_at.asc(), LeaveRequest.id.asc())
    )
    if company_id is not None:
        stmt = stmt.where(Employee.company_id == company_id)
    if employee_id is not None:
        stmt = stmt.where(LeaveRequest.employee_id == employee_id)
    if employee_ids is not None:
        stmt = stmt.where(LeaveRequest.employee_id.in_(sorted(employee_ids)))
    if status is not None:
        stmt = stmt.where(LeaveRequest.status == status)
    if year is not None:
        stmt = stmt.where(
            LeaveRequest.start_date <= date(year, 12, 31),
            LeaveRequest.end_date >= date(year, 1, 1),
        )
    return list(db.scalars(stmt).all())
