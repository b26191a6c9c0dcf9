"""Per-employee, per-year vacation day ledger.

``pending_days`` holds reservations of VACATION requests that have not reached
a terminal state; ``used_days`` holds approved ones. ``reserve`` is the only
way in and is checked against ``earned_days`` under a row lock. The ledger
flushes but never commits: the approval workflow commits the request state
and the ledger change in the same transaction.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date
from typing import Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hrapprovals.errors import EmployeeNotFound, LedgerInconsistency
from hrapprovals.models import Employee, VacationBalance
from hrapprovals.settings import local_today

logger = logging.getLogger("hrapprovals.balances")

# (full years of service, earned days); step function, clamped at the last band.
VACATION_ENTITLEMENT_TABLE: tuple[tuple[int, int], ...] = (
    (1, 12),
    (2, 14),
    (3, 16),
    (4, 18),
    (5, 20),
    (6, 22),
    (10, 24),
    (15, 26),
    (20, 28),
    (25, 30),
    (30, 32),
)


def earned_days_for_tenure(years_of_service: int) -> int:
    earned = 0
    for min_years, days in VACATION_ENTITLEMENT_TABLE:
        if years_of_service < min_years:
            break
        earned = days
    return earned


def full_years_of_service(hire_date: date | None, on: date) -> int:
    if hire_date is None or on < hire_date:
        return 0
    years = on.year - hire_date.year
    if (on.month, on.day) < (hire_date.month, hire_date.day):
        years -= 1
    return max(0, years)


@dataclass(frozen=True, slots=True)
class ReservationResult:
    ok: bool
    requested_days: int
    available_days: int


class BalanceLedger:
    def __init__(self, db: Session, *, today: Callable[[], date] = local_today):
        self.db = db
        self._today = today

    def _select(self, employee_id: int, year: int, *, lock: bool) -> VacationBalance | None:
        stmt = select(VacationBalance).where(
            VacationBalance.employee_id == employee_id,
            VacationBalance.year == year,
        )
        if lock:
            stmt = stmt.with_for_update()
        return self.db.scalar(stmt)

    def _require_locked(self, employee_id: int, year: int) -> VacationBalance:
        balance = self._select(employee_id, year, lock=True)
        if balance is None:
            raise LedgerInconsistency(
                f"No vacation balance for employee {employee_id} in {year} to settle a reservation."
            )
        return balance

    def get_or_create(self, employee_id: int, year: int, *, lock: bool = False) -> VacationBalance:
        balance = self._select(employee_id, year, lock=lock)
        if balance is not None:
            return balance

        employee = self.db.get(Employee, employee_id)
        if employee is None:
            raise EmployeeNotFound(employee_id)

        years_of_service = full_years_of_service(employee.hire_date, self._today())
        balance = VacationBalance(
            employee_id=employee_id,
            year=year,
            earned_days=earned_days_for_tenure(years_of_service),
            used_days=0,
            pending_days=0,
            expired_days=0,
        )
        try:
            with self.db.begin_nested():
                self.db.add(balance)
        except IntegrityError:
            # Another transaction created the row first.
            existing = self._select(employee_id, year, lock=lock)
            if existing is None:
                raise
            return existing

        logger.info(
            "vacation_balance_created",
            extra={
                "employee_id": employee_id,
                "year": year,
                "years_of_service": years_of_service,
                "earned_days": balance.earned_days,
            },
        )
        return balance

    def reserve(self, employee_id: int, year: int, days: int) -> ReservationResult:
        if days <= 0:
            raise ValueError("days must be positive")

        balance = self.get_or_create(employee_id, year, lock=True)
        available = balance.available_days
        if balance.used_days + balance.pending_days + days > balance.earned_days:
            logger.info(
                "vacation_reservation_rejected",
                extra={
                    "employee_id": employee_id,
                    "year": year,
                    "requested_days": days,
                    "available_days": available,
                },
            )
            return ReservationResult(ok=False, requested_days=days, available_days=available)

        balance.pending_days += days
        self.db.flush()
        return ReservationResult(ok=True, requested_days=days, available_days=available - days)

    def commit(self, employee_id: int, year: int, days: int) -> VacationBalance:
        balance = self._require_locked(employee_id, year)
        if days <= 0 or balance.pending_days < days:
            raise LedgerInconsistency(
                f"Cannot commit {days} days; only {balance.pending_days} are pending."
            )
        balance.pending_days -= days
        balance.used_days += days
        self.db.flush()
        return balance

    def release(self, employee_id: int, year: int, days: int) -> VacationBalance:
        balance = self._require_locked(employee_id, year)
        if days <= 0 or balance.pending_days < days:
            raise LedgerInconsistency(
                f"Cannot release {days} days; only {balance.pending_days} are pending."
            )
        balance.pending_days -= days
        self.db.flush()
        return balance
