from __future__ import annotations

from collections.abc import Sequence
from datetime import date
from typing import Protocol

from sqlalchemy import select
from sqlalchemy.orm import Session

from hrapprovals.models import ApprovalDelegation, Department, Employee


class Directory(Protocol):
    def get_employee(self, employee_id: int) -> Employee | None: ...

    def get_department(self, department_id: int) -> Department | None: ...

    def list_active_delegations(
        self,
        delegator_ids: Sequence[int],
        *,
        on: date,
    ) -> list[ApprovalDelegation]: ...


class SqlDirectory:
    """Read-only view over the employee directory tables."""

    def __init__(self, db: Session):
        self.db = db

    def get_employee(self, employee_id: int) -> Employee | None:
        return self.db.get(Employee, employee_id)

    def get_department(self, department_id: int) -> Department | None:
        return self.db.get(Department, department_id)

    def list_active_delegations(
        self,
        delegator_ids: Sequence[int],
        *,
        on: date,
    ) -> list[ApprovalDelegation]:
        if not delegator_ids:
            return []
        stmt = (
            select(ApprovalDelegation)
            .where(
                ApprovalDelegation.delegator_id.in_(list(delegator_ids)),
                ApprovalDelegation.is_active.is_(True),
                ApprovalDelegation.start_date <= on,
            )
            .order_by(ApprovalDelegation.created_at.desc(), ApprovalDelegation.id.desc())
        )
        return [item for item in self.db.scalars(stmt).all() if item.covers(on)]
