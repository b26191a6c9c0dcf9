"""Who may approve on behalf of whom.

Approval authority comes from the organization alone (the supervisor chain
and department headship, the "natural approvers") or from a delegation
granted by one of those natural approvers. ``can_approve`` is the point
check and ``approvers_for_employee`` enumerates the same set; both are built
on ``natural_approvers`` so they cannot drift apart.

The supervisor graph should be a forest, but it is walked with a visited set
and a depth bound so bad data ends the walk instead of looping.
"""

from __future__ import annotations

import enum
import logging
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import date
from typing import Callable

from sqlalchemy import select
from sqlalchemy.orm import Session

from hrapprovals.errors import ApiError, EmployeeNotFound
from hrapprovals.models import ApprovalDelegation, DelegationType, Employee
from hrapprovals.services.directory import Directory
from hrapprovals.settings import get_approval_chain_max_depth, local_today

logger = logging.getLogger("hrapprovals.hierarchy")


class ApprovalReason(str, enum.Enum):
    DIRECT_SUPERVISOR = "DIRECT_SUPERVISOR"
    TRANSITIVE_SUPERVISOR = "TRANSITIVE_SUPERVISOR"
    DEPARTMENT_MANAGER = "DEPARTMENT_MANAGER"
    DELEGATION = "DELEGATION"
    SELF_APPROVAL = "SELF_APPROVAL"
    NOT_AUTHORIZED = "NOT_AUTHORIZED"


_REASON_LABELS = {
    ApprovalReason.DIRECT_SUPERVISOR: "direct supervisor",
    ApprovalReason.TRANSITIVE_SUPERVISOR: "supervisor in reporting chain",
    ApprovalReason.DEPARTMENT_MANAGER: "department manager",
    ApprovalReason.DELEGATION: "delegated approver",
    ApprovalReason.SELF_APPROVAL: "cannot approve own request",
    ApprovalReason.NOT_AUTHORIZED: "not authorized",
}


@dataclass(frozen=True, slots=True)
class ApprovalDecision:
    allowed: bool
    reason: ApprovalReason
    level: int | None = None
    via_employee_id: int | None = None
    delegated_from: str | None = None
    delegation_id: int | None = None

    @property
    def label(self) -> str:
        if self.reason == ApprovalReason.DELEGATION and self.delegated_from:
            return f"delegated by {self.delegated_from}"
        return _REASON_LABELS[self.reason]


@dataclass(frozen=True, slots=True)
class NaturalApprover:
    employee: Employee
    reason: ApprovalReason
    level: int | None


@dataclass(frozen=True, slots=True)
class ChainMember:
    employee_id: int
    full_name: str
    email: str | None
    level: int | None
    basis: ApprovalReason
    is_delegated: bool = False
    delegated_from_id: int | None = None
    delegated_from: str | None = None


DENIED = ApprovalDecision(allowed=False, reason=ApprovalReason.NOT_AUTHORIZED)


def _delegation_matches(delegation: ApprovalDelegation, delegation_type: DelegationType) -> bool:
    return delegation.delegation_type in (DelegationType.ALL, delegation_type)


class ApprovalChainResolver:
    def __init__(
        self,
        directory: Directory,
        *,
        max_depth: int | None = None,
        today: Callable[[], date] = local_today,
    ):
        self.directory = directory
        self.max_depth = max_depth if max_depth is not None else get_approval_chain_max_depth()
        self._today = today

    def _require_employee(self, employee_id: int) -> Employee:
        employee = self.directory.get_employee(employee_id)
        if employee is None:
            raise EmployeeNotFound(employee_id)
        return employee

    def supervisor_chain(self, target: Employee) -> list[tuple[Employee, int]]:
        chain: list[tuple[Employee, int]] = []
        visited = {target.id}
        current = target
        level = 0
        while level < self.max_depth:
            supervisor_id = current.supervisor_id
            if supervisor_id is None:
                break
            if supervisor_id in visited:
                logger.warning(
                    "supervisor_cycle_detected",
                    extra={"employee_id": target.id, "revisited_employee_id": supervisor_id},
                )
                break
            visited.add(supervisor_id)
            supervisor = self.directory.get_employee(supervisor_id)
            if supervisor is None or supervisor.company_id != target.company_id:
                break
            level += 1
            chain.append((supervisor, level))
            current = supervisor
        return chain

    def department_heads(self, target: Employee) -> list[Employee]:
        if target.department_id is None:
            return []
        department = self.directory.get_department(target.department_id)
        if department is None or department.manager_id is None:
            return []
        if department.company_id != target.company_id or department.manager_id == target.id:
            return []
        manager = self.directory.get_employee(department.manager_id)
        if manager is None or manager.company_id != target.company_id:
            return []
        return [manager]

    def natural_approvers(self, target: Employee) -> list[NaturalApprover]:
        approvers: list[NaturalApprover] = []
        seen: set[int] = set()
        for supervisor, level in self.supervisor_chain(target):
            reason = ApprovalReason.DIRECT_SUPERVISOR if level == 1 else ApprovalReason.TRANSITIVE_SUPERVISOR
            approvers.append(NaturalApprover(employee=supervisor, reason=reason, level=level))
            seen.add(supervisor.id)
        for manager in self.department_heads(target):
            if manager.id in seen:
                continue
            approvers.append(
                NaturalApprover(employee=manager, reason=ApprovalReason.DEPARTMENT_MANAGER, level=None)
            )
            seen.add(manager.id)
        return approvers

    def _active_delegations(self, approvers: list[NaturalApprover], on: date) -> list[ApprovalDelegation]:
        delegator_ids = [item.employee.id for item in approvers]
        return self.directory.list_active_delegations(delegator_ids, on=on)

    def can_approve(
        self,
        actor_id: int | None,
        target_id: int,
        delegation_type: DelegationType = DelegationType.ALL,
        *,
        on: date | None = None,
    ) -> ApprovalDecision:
        target = self._require_employee(target_id)
        if actor_id is None:
            return DENIED
        if actor_id == target.id:
            return ApprovalDecision(allowed=False, reason=ApprovalReason.SELF_APPROVAL)
        actor = self.directory.get_employee(actor_id)
        if actor is None or actor.company_id != target.company_id:
            return DENIED

        approvers = self.natural_approvers(target)
        for approver in approvers:
            if approver.employee.id == actor_id:
                return ApprovalDecision(
                    allowed=True,
                    reason=approver.reason,
                    level=approver.level,
                    via_employee_id=approver.employee.id,
                )

        day = on or self._today()
        delegations = self._active_delegations(approvers, day)
        for approver in approvers:
            for delegation in delegations:
                if delegation.delegator_id != approver.employee.id or delegation.delegatee_id != actor_id:
                    continue
                if not delegation.covers(day) or not _delegation_matches(delegation, delegation_type):
                    continue
                return ApprovalDecision(
                    allowed=True,
                    reason=ApprovalReason.DELEGATION,
                    level=approver.level,
                    via_employee_id=approver.employee.id,
                    delegated_from=approver.employee.full_name,
                    delegation_id=delegation.id,
                )
        return DENIED

    def approvers_for_employee(
        self,
        target_id: int,
        delegation_type: DelegationType = DelegationType.ALL,
        *,
        on: date | None = None,
    ) -> list[ChainMember]:
        target = self._require_employee(target_id)
        approvers = self.natural_approvers(target)
        members = [
            ChainMember(
                employee_id=item.employee.id,
                full_name=item.employee.full_name,
                email=item.employee.email,
                level=item.level,
                basis=item.reason,
            )
            for item in approvers
        ]
        seen = {member.employee_id for member in members}
        seen.add(target.id)

        day = on or self._today()
        delegations = self._active_delegations(approvers, day)
        for approver in approvers:
            for delegation in delegations:
                if delegation.delegator_id != approver.employee.id or delegation.delegatee_id in seen:
                    continue
                if not delegation.covers(day) or not _delegation_matches(delegation, delegation_type):
                    continue
                delegatee = self.directory.get_employee(delegation.delegatee_id)
                if delegatee is None or delegatee.company_id != target.company_id:
                    continue
                members.append(
                    ChainMember(
                        employee_id=delegatee.id,
                        full_name=delegatee.full_name,
                        email=delegatee.email,
                        level=approver.level,
                        basis=ApprovalReason.DELEGATION,
                        is_delegated=True,
                        delegated_from_id=approver.employee.id,
                        delegated_from=approver.employee.full_name,
                    )
                )
                seen.add(delegatee.id)
        return members


def assign_supervisor(db: Session, employee_id: int, supervisor_id: int | None) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise EmployeeNotFound(employee_id)

    if supervisor_id is not None:
        if supervisor_id == employee_id:
            raise ApiError(status_code=422, code="INVALID_SUPERVISOR", message="An employee cannot supervise themselves.")
        supervisor = db.get(Employee, supervisor_id)
        if supervisor is None:
            raise EmployeeNotFound(supervisor_id)
        if supervisor.company_id != employee.company_id:
            raise ApiError(
                status_code=422,
                code="INVALID_SUPERVISOR",
                message="Supervisor must belong to the same company.",
            )
        if _creates_cycle(db, employee_id=employee_id, supervisor=supervisor):
            raise ApiError(
                status_code=422,
                code="SUPERVISOR_CYCLE",
                message="Assigning this supervisor would create a circular reporting line.",
            )

    employee.supervisor_id = supervisor_id
    db.add(employee)
    db.commit()
    db.refresh(employee)
    return employee


def _creates_cycle(db: Session, *, employee_id: int, supervisor: Employee) -> bool:
    visited: set[int] = set()
    current: Employee | None = supervisor
    while current is not None:
        if current.id == employee_id:
            return True
        if current.id in visited:
            # Pre-existing loop above the new supervisor; refuse to extend it.
            return True
        visited.add(current.id)
        if current.supervisor_id is None:
            return False
        current = db.get(Employee, current.supervisor_id)
    return False


def list_subordinates(db: Session, employee_id: int, *, recursive: bool = False) -> list[Employee]:
    root = db.get(Employee, employee_id)
    if root is None:
        raise EmployeeNotFound(employee_id)

    result: list[Employee] = []
    visited = {root.id}
    queue: deque[int] = deque([root.id])
    while queue:
        parent_id = queue.popleft()
        stmt = (
            select(Employee)
            .where(
                Employee.supervisor_id == parent_id,
                Employee.company_id == root.company_id,
                Employee.is_active.is_(True),
            )
            .order_by(Employee.full_name.asc(), Employee.id.asc())
        )
        for child in db.scalars(stmt).all():
            if child.id in visited:
                continue
            visited.add(child.id)
            result.append(child)
            if recursive:
                queue.append(child.id)
    return result


@dataclass(slots=True)
class OrgChartNode:
    employee_id: int
    full_name: str
    email: str | None
    department_id: int | None
    supervisor_id: int | None
    level: int
    subordinates: list[OrgChartNode] = field(default_factory=list)


def _chart_node(employee: Employee, level: int) -> OrgChartNode:
    return OrgChartNode(
        employee_id=employee.id,
        full_name=employee.full_name,
        email=employee.email,
        department_id=employee.department_id,
        supervisor_id=employee.supervisor_id,
        level=level,
    )


def organizational_chart(db: Session, company_id: int) -> list[OrgChartNode]:
    """Reporting tree of a company's active employees.

    Roots are the employees without a supervisor, at level 0. Anyone reachable
    only through an inactive or foreign supervisor, or through a cycle, is
    left out of the tree.
    """
    stmt = (
        select(Employee)
        .where(Employee.company_id == company_id, Employee.is_active.is_(True))
        .order_by(Employee.full_name.asc(), Employee.id.asc())
    )
    employees = db.scalars(stmt).all()

    children: dict[int, list[Employee]] = defaultdict(list)
    roots: list[OrgChartNode] = []
    for employee in employees:
        if employee.supervisor_id is None:
            roots.append(_chart_node(employee, level=0))
        else:
            children[employee.supervisor_id].append(employee)

    visited = {node.employee_id for node in roots}
    queue: deque[OrgChartNode] = deque(roots)
    while queue:
        parent = queue.popleft()
        for child in children.get(parent.employee_id, []):
            if child.id in visited:
                continue
            visited.add(child.id)
            node = _chart_node(child, level=parent.level + 1)
            parent.subordinates.append(node)
            queue.append(node)
    return roots
