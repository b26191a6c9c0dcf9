from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from hrapprovals.errors import ApiError
from hrapprovals.roles import Role, normalize_role, satisfies
from hrapprovals.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True, slots=True)
class Principal:
    subject: str
    raw_role: str
    tenant_id: int | None = None
    employee_id: int | None = None

    @property
    def role(self) -> Role | str:
        return normalize_role(self.raw_role)

    @property
    def actor_label(self) -> str:
        if self.employee_id is not None:
            return f"{self.subject}:{self.employee_id}"
        return self.subject


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _optional_int(value: Any) -> int | None:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token claims are invalid.") from exc


def create_access_token(
    *,
    sub: str,
    role: str,
    company_id: int | None = None,
    employee_id: int | None = None,
    expires_minutes: int = 30,
) -> str:
    settings = get_settings()
    now = _utcnow()
    claims = {
        "sub": sub,
        "role": role,
        "company_id": company_id,
        "employee_id": employee_id,
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + timedelta(minutes=expires_minutes)).timestamp()),
        "jti": str(uuid4()),
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm="HS256")


def decode_principal(token: str) -> Principal:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")

    raw_role = payload.get("role")
    if not isinstance(raw_role, str) or not raw_role.strip():
        raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")

    return Principal(
        subject=subject,
        raw_role=raw_role,
        tenant_id=_optional_int(payload.get("company_id")),
        employee_id=_optional_int(payload.get("employee_id")),
    )


def require_principal(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> Principal:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    principal = decode_principal(credentials.credentials)
    request.state.actor = principal.raw_role
    request.state.actor_id = principal.actor_label
    return principal


def require_roles(*roles: Role | str) -> Callable[..., Principal]:
    required = frozenset(roles)
    if not required:
        raise ValueError("At least one role is required.")

    def _dependency(principal: Principal = Depends(require_principal)) -> Principal:
        if not satisfies(required, principal.raw_role):
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
        return principal

    return _dependency
