from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hrapprovals.models import Employee, LeaveRequest, NotificationJob, RequestStatus, delegation_type_for
from hrapprovals.services.directory import SqlDirectory
from hrapprovals.services.hierarchy import ApprovalChainResolver
from hrapprovals.settings import get_hr_notification_emails

logger = logging.getLogger("hrapprovals.notifications")

EMAIL_ADDRESS_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

JOB_TYPE_SUBMITTED = "LEAVE_REQUEST_SUBMITTED"
JOB_TYPE_SUPERVISOR_APPROVED = "LEAVE_REQUEST_SUPERVISOR_APPROVED"
JOB_TYPE_AWAITING_RH = "LEAVE_REQUEST_AWAITING_RH"
JOB_TYPE_APPROVED = "LEAVE_REQUEST_APPROVED"
JOB_TYPE_REJECTED = "LEAVE_REQUEST_REJECTED"
JOB_TYPE_CANCELLED = "LEAVE_REQUEST_CANCELLED"

_EMPLOYEE_JOB_BY_STATUS = {
    RequestStatus.SUPERVISOR_APPROVED: JOB_TYPE_SUPERVISOR_APPROVED,
    RequestStatus.APPROVED: JOB_TYPE_APPROVED,
    RequestStatus.REJECTED: JOB_TYPE_REJECTED,
    RequestStatus.CANCELLED: JOB_TYPE_CANCELLED,
}


def normalize_notification_email(value: str | None) -> str | None:
    normalized = " ".join((value or "").strip().lower().split())
    if not normalized:
        return None
    if not EMAIL_ADDRESS_PATTERN.match(normalized):
        return None
    return normalized


def _build_idempotency_key(*, job_type: str, leave_request_id: int, recipient: str) -> str:
    return f"{job_type}:{leave_request_id}:{recipient}"


def _has_job(session: Session, *, idempotency_key: str) -> bool:
    existing = session.scalar(
        select(NotificationJob.id).where(NotificationJob.idempotency_key == idempotency_key)
    )
    return existing is not None


def _build_notification_payload(leave_request: LeaveRequest, employee: Employee | None) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "leave_request_id": leave_request.id,
        "employee_id": leave_request.employee_id,
        "leave_type": leave_request.type.value,
        "status": leave_request.status.value,
        "start_date": leave_request.start_date.isoformat(),
        "end_date": leave_request.end_date.isoformat(),
        "total_days": leave_request.total_days,
    }
    if employee is not None:
        payload["employee_full_name"] = employee.full_name
    if leave_request.rejected_stage is not None:
        payload["rejected_stage"] = leave_request.rejected_stage.value
    if leave_request.rejected_reason:
        payload["rejected_reason"] = leave_request.rejected_reason
    return payload


def _create_notification_job_if_needed(
    session: Session,
    *,
    job_type: str,
    leave_request: LeaveRequest,
    recipient: str | None,
    recipient_employee_id: int | None,
    payload: dict[str, Any],
    scheduled_at_utc: datetime,
) -> NotificationJob | None:
    normalized_recipient = normalize_notification_email(recipient)
    if normalized_recipient is None:
        return None
    idempotency_key = _build_idempotency_key(
        job_type=job_type,
        leave_request_id=leave_request.id,
        recipient=normalized_recipient,
    )
    if _has_job(session, idempotency_key=idempotency_key):
        return None

    job = NotificationJob(
        employee_id=recipient_employee_id,
        leave_request_id=leave_request.id,
        job_type=job_type,
        recipient=normalized_recipient,
        payload=payload,
        scheduled_at_utc=scheduled_at_utc,
        status="PENDING",
        attempts=0,
        last_error=None,
        idempotency_key=idempotency_key,
    )
    session.add(job)
    # Autoflush is off; flush so the next recipient's lookup sees this row.
    session.flush()
    return job


def enqueue_transition_notifications(
    session: Session,
    leave_request: LeaveRequest,
    *,
    now_utc: datetime | None = None,
) -> list[NotificationJob]:
    """Queue outbound messages for the state the request has just entered.

    Submissions go to every current approver, a supervisor approval also goes
    to the HR distribution list, and every later state goes to the requester.
    Delivery happens elsewhere; this only writes ``notification_jobs`` rows.
    """
    scheduled_at_utc = now_utc or datetime.now(timezone.utc)
    leave_request_id = leave_request.id
    status = leave_request.status
    employee = session.get(Employee, leave_request.employee_id)
    payload = _build_notification_payload(leave_request, employee)
    created: list[NotificationJob] = []

    def _add(job_type: str, recipient: str | None, recipient_employee_id: int | None) -> None:
        job = _create_notification_job_if_needed(
            session,
            job_type=job_type,
            leave_request=leave_request,
            recipient=recipient,
            recipient_employee_id=recipient_employee_id,
            payload=payload,
            scheduled_at_utc=scheduled_at_utc,
        )
        if job is not None:
            created.append(job)

    try:
        if status == RequestStatus.PENDING:
            resolver = ApprovalChainResolver(SqlDirectory(session))
            for member in resolver.approvers_for_employee(
                leave_request.employee_id,
                delegation_type_for(leave_request.type),
            ):
                _add(JOB_TYPE_SUBMITTED, member.email, member.employee_id)
        else:
            job_type = _EMPLOYEE_JOB_BY_STATUS.get(status)
            if job_type is not None and employee is not None:
                _add(job_type, employee.email, employee.id)
            if status == RequestStatus.SUPERVISOR_APPROVED:
                for email in get_hr_notification_emails():
                    _add(JOB_TYPE_AWAITING_RH, email, None)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception(
            "notification_enqueue_failed",
            extra={"leave_request_id": leave_request_id, "status": status.value},
        )
        return []

    if created:
        logger.info(
            "notification_jobs_enqueued",
            extra={
                "leave_request_id": leave_request_id,
                "status": status.value,
                "job_count": len(created),
                "job_types": sorted({job.job_type for job in created}),
            },
        )
    return created
