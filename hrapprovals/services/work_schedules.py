from __future__ import annotations

from collections.abc import Sequence
from datetime import date, timedelta
from typing import Protocol

from sqlalchemy.orm import Session

from hrapprovals.models import Employee, WorkSchedule
from hrapprovals.settings import WEEKDAY_COUNT, get_default_work_days


class ScheduleProvider(Protocol):
    def work_day_flags(self, employee: Employee) -> tuple[bool, ...]: ...


class SqlScheduleProvider:
    def __init__(self, db: Session):
        self.db = db

    def work_day_flags(self, employee: Employee) -> tuple[bool, ...]:
        if employee.work_schedule_id is None:
            return get_default_work_days()
        schedule = self.db.get(WorkSchedule, employee.work_schedule_id)
        if schedule is None:
            return get_default_work_days()
        flags = schedule.work_day_flags
        if len(flags) != WEEKDAY_COUNT:
            return get_default_work_days()
        return flags


def count_work_days(start_date: date, end_date: date, work_day_flags: Sequence[bool]) -> int:
    """Whole work days in the inclusive range, ``work_day_flags[0]`` is Monday."""
    if end_date < start_date:
        return 0
    if len(work_day_flags) != WEEKDAY_COUNT:
        raise ValueError("work_day_flags must have one entry per weekday")

    total_days = (end_date - start_date).days + 1
    full_weeks, remainder = divmod(total_days, WEEKDAY_COUNT)
    count = full_weeks * sum(1 for flag in work_day_flags if flag)
    cursor = start_date + timedelta(days=full_weeks * WEEKDAY_COUNT)
    for _ in range(remainder):
        if work_day_flags[cursor.weekday()]:
            count += 1
        cursor += timedelta(days=1)
    return count
