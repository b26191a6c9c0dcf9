from __future__ import annotations

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(self, status_code: int, code: str, message: str):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message


class CrossTenantAccess(ApiError):
    def __init__(self, message: str = "Resource belongs to a different company."):
        super().__init__(status_code=403, code="CROSS_TENANT_ACCESS", message=message)


class NotAuthorizedToApprove(ApiError):
    def __init__(self, message: str = "Not authorized to approve this request."):
        super().__init__(status_code=403, code="NOT_AUTHORIZED_TO_APPROVE", message=message)


class InvalidStateTransition(ApiError):
    def __init__(self, message: str):
        super().__init__(status_code=409, code="INVALID_STATE_TRANSITION", message=message)


class InsufficientBalance(ApiError):
    def __init__(self, *, requested_days: int, available_days: int):
        super().__init__(
            status_code=409,
            code="INSUFFICIENT_BALANCE",
            message=(
                f"Not enough vacation days available. Requested: {requested_days}, "
                f"available: {available_days}."
            ),
        )
        self.requested_days = requested_days
        self.available_days = available_days


class RequestNotFound(ApiError):
    def __init__(self, request_id: int):
        super().__init__(status_code=404, code="REQUEST_NOT_FOUND", message="Leave request not found.")
        self.request_id = request_id


class EmployeeNotFound(ApiError):
    def __init__(self, employee_id: int | None):
        super().__init__(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")
        self.employee_id = employee_id


class LedgerInconsistency(ApiError):
    def __init__(self, message: str):
        super().__init__(status_code=500, code="LEDGER_INCONSISTENT", message=message)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(request: Request, *, status_code: int, code: str, message: str) -> JSONResponse:
    payload = {
        "error": {
            "code": code,
            "message": message,
            "request_id": get_request_id(request),
        }
    }
    return JSONResponse(status_code=status_code, content=payload)
