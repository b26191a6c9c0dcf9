from __future__ import annotations

import logging
from datetime import date

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session

from hrapprovals.errors import ApiError, EmployeeNotFound
from hrapprovals.models import ApprovalDelegation, DelegationType, Employee
from hrapprovals.settings import local_today

logger = logging.getLogger("hrapprovals.delegations")


def create_delegation(
    db: Session,
    *,
    delegator_id: int,
    delegatee_id: int,
    delegation_type: DelegationType,
    start_date: date,
    end_date: date | None = None,
    reason: str | None = None,
) -> ApprovalDelegation:
    """Grant ``delegatee_id`` the delegator's approval authority for one category.

    A delegator holds at most one active delegation per category: creating a
    new one deactivates the previous ones of the same type.
    """
    if delegator_id == delegatee_id:
        raise ApiError(status_code=422, code="INVALID_DELEGATION", message="An employee cannot delegate to themselves.")
    if end_date is not None and end_date <= start_date:
        raise ApiError(status_code=422, code="INVALID_DELEGATION", message="end_date must be after start_date.")

    delegator = db.get(Employee, delegator_id)
    if delegator is None:
        raise EmployeeNotFound(delegator_id)
    delegatee = db.get(Employee, delegatee_id)
    if delegatee is None:
        raise EmployeeNotFound(delegatee_id)
    if delegator.company_id != delegatee.company_id:
        raise ApiError(
            status_code=422,
            code="INVALID_DELEGATION",
            message="Delegator and delegatee must belong to the same company.",
        )
    if not delegatee.is_active:
        raise ApiError(status_code=422, code="INVALID_DELEGATION", message="Delegatee is not active.")

    db.execute(
        update(ApprovalDelegation)
        .where(
            ApprovalDelegation.delegator_id == delegator_id,
            ApprovalDelegation.delegation_type == delegation_type,
            ApprovalDelegation.is_active.is_(True),
        )
        .values(is_active=False)
        .execution_options(synchronize_session="fetch")
    )

    delegation = ApprovalDelegation(
        delegator_id=delegator_id,
        delegatee_id=delegatee_id,
        delegation_type=delegation_type,
        start_date=start_date,
        end_date=end_date,
        reason=reason,
        is_active=True,
    )
    db.add(delegation)
    db.commit()
    db.refresh(delegation)

    logger.info(
        "approval_delegation_created",
        extra={
            "delegation_id": delegation.id,
            "delegator_id": delegator_id,
            "delegatee_id": delegatee_id,
            "delegation_type": delegation_type.value,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat() if end_date else None,
        },
    )
    return delegation


def get_delegation(db: Session, delegation_id: int) -> ApprovalDelegation:
    delegation = db.get(ApprovalDelegation, delegation_id)
    if delegation is None:
        raise ApiError(status_code=404, code="DELEGATION_NOT_FOUND", message="Delegation not found.")
    return delegation


def revoke_delegation(db: Session, delegation_id: int) -> ApprovalDelegation:
    delegation = get_delegation(db, delegation_id)
    if delegation.is_active:
        delegation.is_active = False
        db.add(delegation)
        db.commit()
        db.refresh(delegation)
        logger.info(
            "approval_delegation_revoked",
            extra={"delegation_id": delegation.id, "delegator_id": delegation.delegator_id},
        )
    return delegation


def list_delegations(
    db: Session,
    *,
    employee_id: int,
    active_only: bool = True,
    on: date | None = None,
) -> list[ApprovalDelegation]:
    """Delegations given or received by ``employee_id``."""
    stmt = (
        select(ApprovalDelegation)
        .where(
            or_(
                ApprovalDelegation.delegator_id == employee_id,
                ApprovalDelegation.delegatee_id == employee_id,
            )
        )
        .order_by(ApprovalDelegation.created_at.desc(), ApprovalDelegation.id.desc())
    )
    if not active_only:
        return list(db.scalars(stmt).all())

    day = on or local_today()
    stmt = stmt.where(ApprovalDelegation.is_active.is_(True))
    return [item for item in db.scalars(stmt).all() if item.end_date is None or day < item.end_date]
