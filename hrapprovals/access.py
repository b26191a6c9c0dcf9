"""Request-level guards shared by the routers.

``tenancy`` decides; these helpers load the resource, apply the decision and
raise the typed error.
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from hrapprovals.errors import CrossTenantAccess, EmployeeNotFound, RequestNotFound
from hrapprovals.models import Employee, LeaveRequest
from hrapprovals.roles import Role, is_hr_tier, satisfies
from hrapprovals.security import Principal
from hrapprovals.services.hierarchy import list_subordinates
from hrapprovals.tenancy import (
    Deny,
    Unrestricted,
    authorize_payload_tenant,
    authorize_resource_tenant,
    resolve_scope,
    tenant_for_write,
)


def ensure_tenant_access(principal: Principal, company_id: int | None) -> None:
    decision = authorize_resource_tenant(resolve_scope(principal), company_id)
    if isinstance(decision, Deny):
        raise CrossTenantAccess()


def ensure_payload_tenant(principal: Principal, company_id: int | None) -> None:
    decision = authorize_payload_tenant(resolve_scope(principal), company_id)
    if isinstance(decision, Deny):
        raise CrossTenantAccess()


def company_filter(principal: Principal, requested_company_id: int | None = None) -> int | None:
    """Company id to filter list queries by, ``None`` meaning every company."""
    ensure_payload_tenant(principal, requested_company_id)
    scope = resolve_scope(principal)
    if not isinstance(scope, Unrestricted) and scope.tenant_id is None:
        raise CrossTenantAccess()
    return tenant_for_write(scope, requested_company_id)


def scoped_employee(db: Session, principal: Principal, employee_id: int) -> Employee:
    employee = db.get(Employee, employee_id)
    if employee is None:
        raise EmployeeNotFound(employee_id)
    ensure_tenant_access(principal, employee.company_id)
    return employee


def scoped_leave_request(db: Session, principal: Principal, request_id: int) -> LeaveRequest:
    leave_request = db.get(LeaveRequest, request_id)
    if leave_request is None:
        raise RequestNotFound(request_id)
    employee = db.get(Employee, leave_request.employee_id)
    ensure_tenant_access(principal, employee.company_id if employee else None)
    return leave_request


def visible_employee_ids(db: Session, principal: Principal) -> set[int] | None:
    """Employees whose records the principal may read, ``None`` meaning the whole tenant.

    HR sees the company, a manager their reporting line (recursively) and
    anyone else only themselves.
    """
    if is_hr_tier(principal.raw_role):
        return None
    if principal.employee_id is None:
        return set()

    visible = {principal.employee_id}
    if satisfies({Role.MANAGER}, principal.raw_role) and db.get(Employee, principal.employee_id) is not None:
        visible.update(item.id for item in list_subordinates(db, principal.employee_id, recursive=True))
    return visible


def can_view_employee(db: Session, principal: Principal, employee_id: int) -> bool:
    if principal.employee_id is not None and principal.employee_id == employee_id:
        return True
    visible = visible_employee_ids(db, principal)
    return visible is None or employee_id in visible
