from __future__ import annotations

from datetime import date

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hrapprovals.db import Base
from hrapprovals.models import (
    ApprovalDelegation,
    Company,
    DelegationType,
    Department,
    Employee,
    VacationBalance,
    WorkSchedule,
)


def create_test_engine() -> Engine:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite only honours SAVEPOINT when SQLAlchemy owns BEGIN.
    @event.listens_for(engine, "connect")
    def _disable_driver_transactions(dbapi_connection, _connection_record):  # type: ignore[no-untyped-def]
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(connection):  # type: ignore[no-untyped-def]
        connection.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    return engine


def create_test_session(engine: Engine) -> Session:
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return factory()


class OrgFactory:
    def __init__(self, session: Session):
        self.session = session

    def _save(self, obj):  # type: ignore[no-untyped-def]
        self.session.add(obj)
        self.session.flush()
        return obj

    def company(self, name: str = "Acme") -> Company:
        return self._save(Company(name=name, is_active=True))

    def schedule(self, company: Company, work_days: str, name: str = "Custom") -> WorkSchedule:
        return self._save(WorkSchedule(company_id=company.id, name=name, work_days=work_days))

    def department(self, company: Company, name: str, *, manager: Employee | None = None) -> Department:
        return self._save(
            Department(company_id=company.id, name=name, manager_id=manager.id if manager else None)
        )

    def employee(
        self,
        company: Company,
        full_name: str,
        *,
        supervisor: Employee | None = None,
        department: Department | None = None,
        schedule: WorkSchedule | None = None,
        hire_date: date | None = date(2015, 1, 1),
        email: str | None = None,
        is_active: bool = True,
    ) -> Employee:
        return self._save(
            Employee(
                company_id=company.id,
                full_name=full_name,
                email=email,
                hire_date=hire_date,
                is_active=is_active,
                supervisor_id=supervisor.id if supervisor else None,
                department_id=department.id if department else None,
                work_schedule_id=schedule.id if schedule else None,
            )
        )

    def delegation(
        self,
        delegator: Employee,
        delegatee: Employee,
        delegation_type: DelegationType,
        *,
        start_date: date,
        end_date: date | None = None,
        is_active: bool = True,
    ) -> ApprovalDelegation:
        return self._save(
            ApprovalDelegation(
                delegator_id=delegator.id,
                delegatee_id=delegatee.id,
                delegation_type=delegation_type,
                start_date=start_date,
                end_date=end_date,
                is_active=is_active,
            )
        )

    def balance(
        self,
        employee: Employee,
        year: int,
        *,
        earned_days: int,
        used_days: int = 0,
        pending_days: int = 0,
    ) -> VacationBalance:
        return self._save(
            VacationBalance(
                employee_id=employee.id,
                year=year,
                earned_days=earned_days,
                used_days=used_days,
                pending_days=pending_days,
                expired_days=0,
            )
        )
