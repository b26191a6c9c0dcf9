from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from hrapprovals.access import can_view_employee, scoped_employee
from hrapprovals.audit import log_principal_audit
from hrapprovals.db import get_db
from hrapprovals.errors import ApiError
from hrapprovals.roles import is_hr_tier
from hrapprovals.schemas import DelegationCreate, DelegationRead
from hrapprovals.security import Principal, require_principal
from hrapprovals.services.delegations import (
    create_delegation,
    get_delegation,
    list_delegations,
    revoke_delegation,
)

router = APIRouter(tags=["delegations"])


def _require_delegator_or_hr(principal: Principal, delegator_id: int) -> None:
    if principal.employee_id == delegator_id or is_hr_tier(principal.raw_role):
        return
    raise ApiError(
        status_code=403,
        code="FORBIDDEN",
        message="Only the delegating approver or HR can manage this delegation.",
    )


@router.post(
    "/api/delegations",
    response_model=DelegationRead,
    status_code=status.HTTP_201_CREATED,
)
def create_delegation_endpoint(
    payload: DelegationCreate,
    request: Request,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> DelegationRead:
    delegator = scoped_employee(db, principal, payload.delegator_id)
    _require_delegator_or_hr(principal, delegator.id)
    delegation = create_delegation(
        db,
        delegator_id=delegator.id,
        delegatee_id=payload.delegatee_id,
        delegation_type=payload.delegation_type,
        start_date=payload.start_date,
        end_date=payload.end_date,
        reason=payload.reason,
    )
    log_principal_audit(
        db,
        request,
        principal,
        action="APPROVAL_DELEGATION_CREATED",
        company_id=delegator.company_id,
        entity_type="approval_delegation",
        entity_id=str(delegation.id),
        details={
            "delegator_id": delegation.delegator_id,
            "delegatee_id": delegation.delegatee_id,
            "delegation_type": delegation.delegation_type.value,
        },
    )
    return delegation


@router.delete("/api/delegations/{delegation_id}", response_model=DelegationRead)
def revoke_delegation_endpoint(
    delegation_id: int,
    request: Request,
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> DelegationRead:
    delegation = get_delegation(db, delegation_id)
    delegator = scoped_employee(db, principal, delegation.delegator_id)
    _require_delegator_or_hr(principal, delegator.id)
    delegation = revoke_delegation(db, delegation.id)
    log_principal_audit(
        db,
        request,
        principal,
        action="APPROVAL_DELEGATION_REVOKED",
        company_id=delegator.company_id,
        entity_type="approval_delegation",
        entity_id=str(delegation.id),
    )
    return delegation


@router.get("/api/employees/{employee_id}/delegations", response_model=list[DelegationRead])
def list_delegations_endpoint(
    employee_id: int,
    include_inactive: bool = Query(default=False),
    principal: Principal = Depends(require_principal),
    db: Session = Depends(get_db),
) -> list[DelegationRead]:
    employee = scoped_employee(db, principal, employee_id)
    if not can_view_employee(db, principal, employee.id):
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
    return list_delegations(db, employee_id=employee.id, active_only=not include_inactive)
