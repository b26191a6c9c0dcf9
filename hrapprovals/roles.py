"""Role catalog: canonical roles, legacy aliases and inheritance.

Roles reach the service as raw strings, either canonical (``"HR_ADMIN"``) or
one of the lowercase names used before the role migration (``"rh"``). Call
sites may also pass mixed legacy/canonical lists as required roles, so
``satisfies`` keeps matching the raw string as a compatibility rule.
"""

from __future__ import annotations

import enum
from collections.abc import Iterable
from functools import lru_cache
from typing import Any


class Role(str, enum.Enum):
    SYSTEM_ADMIN = "SYSTEM_ADMIN"
    COMPANY_ADMIN = "COMPANY_ADMIN"
    HR_ADMIN = "HR_ADMIN"
    PAYROLL_ADMIN = "PAYROLL_ADMIN"
    MANAGER = "MANAGER"
    EMPLOYEE = "EMPLOYEE"
    AUDITOR = "AUDITOR"


ROLE_INHERITANCE: dict[Role, tuple[Role, ...]] = {
    Role.SYSTEM_ADMIN: (
        Role.COMPANY_ADMIN,
        Role.HR_ADMIN,
        Role.PAYROLL_ADMIN,
        Role.MANAGER,
        Role.EMPLOYEE,
        Role.AUDITOR,
    ),
    Role.COMPANY_ADMIN: (Role.HR_ADMIN, Role.PAYROLL_ADMIN, Role.MANAGER, Role.EMPLOYEE),
    Role.HR_ADMIN: (Role.EMPLOYEE,),
    Role.PAYROLL_ADMIN: (Role.EMPLOYEE,),
    Role.MANAGER: (Role.EMPLOYEE,),
    Role.EMPLOYEE: (),
    Role.AUDITOR: (),
}

LEGACY_ROLE_ALIASES: dict[str, Role] = {
    "admin": Role.SYSTEM_ADMIN,
    "super_admin": Role.SYSTEM_ADMIN,
    "company_admin": Role.COMPANY_ADMIN,
    "rh": Role.HR_ADMIN,
    "hr": Role.HR_ADMIN,
    "payroll": Role.PAYROLL_ADMIN,
    "payroll_admin": Role.PAYROLL_ADMIN,
    "manager": Role.MANAGER,
    "employee": Role.EMPLOYEE,
    "auditor": Role.AUDITOR,
}

_CANONICAL_BY_VALUE: dict[str, Role] = {role.value: role for role in Role}

HR_TIER_ROLES: frozenset[Role] = frozenset({Role.SYSTEM_ADMIN, Role.COMPANY_ADMIN, Role.HR_ADMIN})
ADMIN_ROLES: frozenset[Role] = frozenset(
    {Role.SYSTEM_ADMIN, Role.COMPANY_ADMIN, Role.HR_ADMIN, Role.PAYROLL_ADMIN}
)
MANAGER_OR_ABOVE: frozenset[Role] = ADMIN_ROLES | {Role.MANAGER}


def normalize_role(role: Any) -> Role | Any:
    """Map a raw role onto its canonical ``Role``.

    Unrecognized values come back unchanged so legacy data keeps flowing.
    """
    if isinstance(role, Role):
        return role
    if not isinstance(role, str):
        return role
    candidate = role.strip()
    canonical = _CANONICAL_BY_VALUE.get(candidate)
    if canonical is not None:
        return canonical
    alias = LEGACY_ROLE_ALIASES.get(candidate.lower())
    if alias is not None:
        return alias
    return role


@lru_cache(maxsize=None)
def _closure(role: Role) -> frozenset[Role]:
    visited: set[Role] = set()
    stack = [role]
    while stack:
        current = stack.pop()
        if current in visited:
            continue
        visited.add(current)
        stack.extend(ROLE_INHERITANCE.get(current, ()))
    return frozenset(visited)


def effective_roles(role: Any) -> frozenset[Role]:
    normalized = normalize_role(role)
    if not isinstance(normalized, Role):
        return frozenset()
    return _closure(normalized)


def satisfies(required: Iterable[Any], actual: Any) -> bool:
    try:
        required_raw = set(required)
    except TypeError:
        return False
    if not required_raw:
        return False

    required_normalized = {normalize_role(item) for item in required_raw}
    if any(role in required_normalized for role in effective_roles(actual)):
        return True

    # Compatibility rule: the raw, non-normalized role string is accepted
    # when a call site lists it literally.
    try:
        return actual in required_raw
    except TypeError:
        return False


def is_hr_tier(role: Any) -> bool:
    return satisfies(HR_TIER_ROLES, role)
