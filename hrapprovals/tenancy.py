"""Company (tenant) scoping for authenticated principals.

Every function here is a pure decision: nothing raises. Callers turn a
``Deny`` into ``CrossTenantAccess`` when they want to surface it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

from hrapprovals.roles import Role, normalize_role
from hrapprovals.security import Principal

CROSS_TENANT_REASON = "cross_tenant_access"
UNBOUND_PRINCIPAL_REASON = "principal_not_bound_to_company"


@dataclass(frozen=True, slots=True)
class Unrestricted:
    pass


@dataclass(frozen=True, slots=True)
class BoundTo:
    tenant_id: int | None


ScopeDecision = Union[Unrestricted, BoundTo]


@dataclass(frozen=True, slots=True)
class Allow:
    allowed: bool = True


@dataclass(frozen=True, slots=True)
class Deny:
    reason: str
    allowed: bool = False


TenantDecision = Union[Allow, Deny]

UNRESTRICTED = Unrestricted()
ALLOW = Allow()


def is_super_principal(principal: Principal) -> bool:
    return normalize_role(principal.raw_role) == Role.SYSTEM_ADMIN and principal.tenant_id is None


def resolve_scope(principal: Principal) -> ScopeDecision:
    if is_super_principal(principal):
        return UNRESTRICTED
    return BoundTo(principal.tenant_id)


def authorize_resource_tenant(scope: ScopeDecision, resource_tenant_id: int | None) -> TenantDecision:
    if isinstance(scope, Unrestricted):
        return ALLOW
    if scope.tenant_id is None:
        return Deny(UNBOUND_PRINCIPAL_REASON)
    if resource_tenant_id == scope.tenant_id:
        return ALLOW
    return Deny(CROSS_TENANT_REASON)


def authorize_payload_tenant(scope: ScopeDecision, payload_tenant_id: int | None) -> TenantDecision:
    """Check an explicit company id carried by a mutation payload.

    Setting your own company is a no-op match and is allowed.
    """
    if payload_tenant_id is None or isinstance(scope, Unrestricted):
        return ALLOW
    if scope.tenant_id is None:
        return Deny(UNBOUND_PRINCIPAL_REASON)
    if payload_tenant_id == scope.tenant_id:
        return ALLOW
    return Deny(CROSS_TENANT_REASON)


def tenant_for_write(scope: ScopeDecision, payload_tenant_id: int | None) -> int | None:
    if isinstance(scope, Unrestricted):
        return payload_tenant_id
    return scope.tenant_id
