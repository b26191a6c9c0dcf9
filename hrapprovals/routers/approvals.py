from fastapi import APIRouter, Body, Depends, Query, Request, status
from sqlalchemy import select
from sqlalchemy.orm import Session

from hrapprovals.access import (
    can_view_employee,
    company_filter,
    scoped_employee,
    scoped_leave_request,
    visible_employee_ids,
)
from hrapprovals.audit import log_principal_audit
from hrapprovals.db import get_db
from hrapprovals.errors import ApiError
from hrapprovals.models import (
    AuditLog,
    DelegationType,
    NotificationJob,
    RequestStatus,
)
from hrapprovals.roles import MANAGER_OR_ABOVE, Role, is_hr_tier, satisfies
from hrapprovals.schemas import (
    ApprovalAction,
    ApprovalDecisionRead,
    AuditLogRead,
    ChainMemberRead,
    EmployeeSummaryRead,
    LeaveRequestAppliedRequest,
    LeaveRequestCreate,
    LeaveRequestRead,
    NotificationJobRead,
    OrgChartNodeRead,
    SupervisorAssignRequest,
    VacationBalanceRead,
)
from hrapprovals.security import Principal, require_principal, require_roles
from hrapprovals.services.balances import BalanceLedger
from hrapprovals.services.directory import SqlDirectory
from hrapprovals.services.hierarchy import (
    ApprovalChainResolver,
    assign_supervisor,
    list_subordinates,
    organizational_chart,
)
from hrapprovals.services.leave_requests import ApprovalActor, ApprovalWorkflow, list_requests
from hrapprovals.services.notifications import enqueue_transition_notifications
from hrapprovals.settings import local_today

router = APIRouter(tags=["approvals"])

_FORBIDDEN_MESSAGE = "Insufficient permissions."


def _require_view(db: Session, principal: Principal, employee_id: int) -> None:
    if not can_view_employee(db, principal, employee_id):
        raise ApiError(status_code=403, code="FORBIDDEN", message=_FORBIDDEN_MESSAGE)


@router.post(
    "/api/leave-requests",
    response_model=LeaveRequestRead,
    status_code=status.HTTP_201_CREATED,
)
def create_leave_request_endpoint(
    payload: LeaveRequestCreate,
    request: Request,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    employee_id = payload.employee_id or principal.employee_id
    if employee_id is None:
        raise ApiError(
            status_code=422,
            code="VALIDATION_ERROR",
            message="employee_id is required when the caller is not linked to an employee.",
        )
    if employee_id != principal.employee_id and not is_hr_tier(principal.raw_role):
        raise ApiError(status_code=403, code="FORBIDDEN", message="Only HR can file requests for other employees.")

    employee = scoped_employee(db, principal, employee_id)
    request.state.employee_id = employee.id
    leave_request = ApprovalWorkflow(db).create(
        employee_id=employee.id,
        leave_type=payload.type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
    )
    log_principal_audit(
        db,
        request,
        principal,
        action="LEAVE_REQUEST_CREATED",
        company_id=employee.company_id,
        entity_type="leave_request",
        entity_id=str(leave_request.id),
        details={
            "employee_id": employee.id,
            "type": leave_request.type.value,
            "total_days": leave_request.total_days,
        },
    )
    enqueue_transition_notifications(db, leave_request)
    return leave_request


@router.get("/api/leave-requests", response_model=list[LeaveRequestRead])
def list_leave_requests_endpoint(
    employee_id: int | None = Query(default=None, ge=1),
    status_filter: RequestStatus | None = Query(default=None, alias="status"),
    year: int | None = Query(default=None, ge=1970),
    company_id: int | None = Query(default=None, ge=1),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> list[LeaveRequestRead]:
    resolved_company_id = company_filter(principal, company_id)
    visible = visible_employee_ids(db, principal)
    if visible is not None:
        if not visible or (employee_id is not None and employee_id not in visible):
            raise ApiError(status_code=403, code="FORBIDDEN", message=_FORBIDDEN_MESSAGE)
    return list_requests(
        db,
        company_id=resolved_company_id,
        employee_id=employee_id,
        employee_ids=visible if employee_id is None else None,
        status=status_filter,
        year=year,
    )


@router.get("/api/leave-requests/{request_id}", response_model=LeaveRequestRead)
def get_leave_request_endpoint(
    request_id: int,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave_request = scoped_leave_request(db, principal, request_id)
    _require_view(db, principal, leave_request.employee_id)
    return leave_request


@router.post("/api/leave-requests/{request_id}/actions", response_model=LeaveRequestRead)
def apply_leave_request_action_endpoint(
    request_id: int,
    request: Request,
    payload: ApprovalAction = Body(...),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave_request = scoped_leave_request(db, principal, request_id)
    company_id = leave_request.employee.company_id
    previous_status = leave_request.status
    request.state.employee_id = leave_request.employee_id

    leave_request = ApprovalWorkflow(db).apply_action(
        request_id,
        payload,
        ApprovalActor.from_principal(principal),
    )
    log_principal_audit(
        db,
        request,
        principal,
        action=f"LEAVE_REQUEST_{payload.action.upper()}",
        company_id=company_id,
        entity_type="leave_request",
        entity_id=str(leave_request.id),
        details={
            "from_status": previous_status.value,
            "to_status": leave_request.status.value,
            "basis": leave_request.supervisor_approval_basis,
        },
    )
    enqueue_transition_notifications(db, leave_request)
    return leave_request


@router.post(
    "/api/leave-requests/{request_id}/applied",
    response_model=LeaveRequestRead,
)
def mark_leave_request_applied_endpoint(
    request_id: int,
    payload: LeaveRequestAppliedRequest,
    request: Request,
    principal: Principal = Depends(require_roles(Role.HR_ADMIN, Role.PAYROLL_ADMIN)),
    db: Session = Depends(get_db),
) -> LeaveRequestRead:
    leave_request = scoped_leave_request(db, principal, request_id)
    company_id = leave_request.employee.company_id
    leave_request = ApprovalWorkflow(db).mark_applied(request_id, payload.reference)
    log_principal_audit(
        db,
        request,
        principal,
        action="LEAVE_REQUEST_APPLIED",
        company_id=company_id,
        entity_type="leave_request",
        entity_id=str(leave_request.id),
        details={"reference": payload.reference},
    )
    return leave_request


@router.get(
    "/api/leave-requests/{request_id}/notifications",
    response_model=list[NotificationJobRead],
)
def list_leave_request_notifications_endpoint(
    request_id: int,
    principal: Principal = Depends(require_roles(Role.HR_ADMIN)),
    db: Session = Depends(get_db),
) -> list[NotificationJobRead]:
    scoped_leave_request(db, principal, request_id)
    stmt = (
        select(NotificationJob)
        .where(NotificationJob.leave_request_id == request_id)
        .order_by(NotificationJob.id.asc())
    )
    return list(db.scalars(stmt).all())


@router.get("/api/employees/{employee_id}/vacation-balance", response_model=VacationBalanceRead)
def get_vacation_balance_endpoint(
    employee_id: int,
    year: int | None = Query(default=None, ge=1970),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> VacationBalanceRead:
    employee = scoped_employee(db, principal, employee_id)
    _require_view(db, principal, employee.id)
    balance = BalanceLedger(db).get_or_create(employee.id, year or local_today().year)
    db.commit()
    return VacationBalanceRead.model_validate(balance)


@router.get("/api/employees/{employee_id}/approvers", response_model=list[ChainMemberRead])
def list_approvers_endpoint(
    employee_id: int,
    delegation_type: DelegationType = Query(default=DelegationType.VACATION),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> list[ChainMemberRead]:
    employee = scoped_employee(db, principal, employee_id)
    _require_view(db, principal, employee.id)
    members = ApprovalChainResolver(SqlDirectory(db)).approvers_for_employee(employee.id, delegation_type)
    return [
        ChainMemberRead(
            employee_id=member.employee_id,
            full_name=member.full_name,
            email=member.email,
            level=member.level,
            basis=member.basis.value,
            is_delegated=member.is_delegated,
            delegated_from_id=member.delegated_from_id,
            delegated_from=member.delegated_from,
        )
        for member in members
    ]


@router.get("/api/employees/{employee_id}/can-approve", response_model=ApprovalDecisionRead)
def can_approve_endpoint(
    employee_id: int,
    actor_id: int | None = Query(default=None, ge=1),
    delegation_type: DelegationType = Query(default=DelegationType.ALL),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> ApprovalDecisionRead:
    employee = scoped_employee(db, principal, employee_id)
    resolved_actor_id = actor_id or principal.employee_id
    if resolved_actor_id is None:
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message="actor_id is required.")
    if resolved_actor_id != principal.employee_id and not satisfies(MANAGER_OR_ABOVE, principal.raw_role):
        raise ApiError(status_code=403, code="FORBIDDEN", message=_FORBIDDEN_MESSAGE)
    actor = scoped_employee(db, principal, resolved_actor_id)

    decision = ApprovalChainResolver(SqlDirectory(db)).can_approve(actor.id, employee.id, delegation_type)
    return ApprovalDecisionRead(
        actor_id=actor.id,
        target_id=employee.id,
        delegation_type=delegation_type,
        allowed=decision.allowed,
        reason=decision.reason.value,
        label=decision.label,
        level=decision.level,
        via_employee_id=decision.via_employee_id,
        delegated_from=decision.delegated_from,
    )


@router.put("/api/employees/{employee_id}/supervisor", response_model=EmployeeSummaryRead)
def assign_supervisor_endpoint(
    employee_id: int,
    payload: SupervisorAssignRequest,
    request: Request,
    principal: Principal = Depends(require_roles(Role.HR_ADMIN)),
    db: Session = Depends(get_db),
) -> EmployeeSummaryRead:
    employee = scoped_employee(db, principal, employee_id)
    previous_supervisor_id = employee.supervisor_id
    employee = assign_supervisor(db, employee.id, payload.supervisor_id)
    log_principal_audit(
        db,
        request,
        principal,
        action="EMPLOYEE_SUPERVISOR_ASSIGNED",
        company_id=employee.company_id,
        entity_type="employee",
        entity_id=str(employee.id),
        details={
            "previous_supervisor_id": previous_supervisor_id,
            "supervisor_id": employee.supervisor_id,
        },
    )
    return employee


@router.get("/api/employees/{employee_id}/subordinates", response_model=list[EmployeeSummaryRead])
def list_subordinates_endpoint(
    employee_id: int,
    recursive: bool = Query(default=False),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> list[EmployeeSummaryRead]:
    employee = scoped_employee(db, principal, employee_id)
    _require_view(db, principal, employee.id)
    return list_subordinates(db, employee.id, recursive=recursive)


@router.get("/api/org-chart", response_model=list[OrgChartNodeRead])
def organizational_chart_endpoint(
    company_id: int | None = Query(default=None, ge=1),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> list[OrgChartNodeRead]:
    resolved_company_id = company_filter(principal, company_id)
    if resolved_company_id is None:
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message="company_id is required.")
    return [OrgChartNodeRead.model_validate(node) for node in organizational_chart(db, resolved_company_id)]


@router.get("/api/audit-logs", response_model=list[AuditLogRead])
def list_audit_logs_endpoint(
    entity_type: str | None = Query(default=None, max_length=255),
    entity_id: str | None = Query(default=None, max_length=255),
    company_id: int | None = Query(default=None, ge=1),
    limit: int = Query(default=100, ge=1, le=500),
    principal: Principal = Depends(require_roles(Role.HR_ADMIN, Role.AUDITOR)),
    db: Session = Depends(get_db),
) -> list[AuditLogRead]:
    resolved_company_id = company_filter(principal, company_id)
    stmt = select(AuditLog).order_by(AuditLog.ts_utc.desc(), AuditLog.id.desc()).limit(limit)
    if resolved_company_id is not None:
        stmt = stmt.where(AuditLog.company_id == resolved_company_id)
    if entity_type:
        stmt = stmt.where(AuditLog.entity_type == entity_type)
    if entity_id:
        stmt = stmt.where(AuditLog.entity_id == entity_id)
    return list(db.scalars(stmt).all())
