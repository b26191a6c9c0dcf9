from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.orm import Session

from hrapprovals.models import AuditActorType, AuditLog
from hrapprovals.security import Principal

logger = logging.getLogger("hrapprovals.audit")


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    company_id: int | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        company_id=company_id,
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=ip,
        user_agent=user_agent,
        success=success,
        details=details or {},
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
                "success": success,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "company_id": company_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "ip": ip,
            "user_agent": user_agent,
            "success": success,
            "details": details or {},
        },
    )


def log_principal_audit(
    db: Session,
    request: Request,
    principal: Principal,
    *,
    action: str,
    company_id: int | None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    success: bool = True,
    details: dict[str, Any] | None = None,
) -> None:
    log_audit(
        db,
        actor_type=AuditActorType.PRINCIPAL,
        actor_id=principal.actor_label,
        action=action,
        success=success,
        company_id=company_id,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        details=details,
        request_id=getattr(request.state, "request_id", None),
    )
