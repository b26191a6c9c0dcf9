#!/usr/bin/env python
from __future__ import annotations

import json
import sys
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from hrapprovals.settings import get_settings

EXPECTED_HEAD = "0002_leave_request_workflow"


def run() -> dict:
    database_url = get_settings().database_url
    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append(
            {
                "name": name,
                "status": status,
                "details": details,
            }
        )

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add("alembic_version", "ok" if current_versions else "fail", {"current": current_versions})

        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        required_by_revision = {
            "0001+": ["companies", "employees", "departments", "approval_delegations", "vacation_balances"],
            "0002+": ["leave_requests", "notification_jobs"],
        }
        missing = {
            rev: [table for table in required if table not in tables]
            for rev, required in required_by_revision.items()
        }
        missing = {rev: tables_ for rev, tables_ in missing.items() if tables_}
        add("missing_tables_by_revision", "warn" if missing else "ok", missing)

        if {"vacation_balances", "leave_requests"} <= tables:
            # Ledger counters must equal the VACATION requests charged to that year.
            drift = conn.execute(
                text(
                    """
                    select b.employee_id, b.year, b.pending_days, b.used_days,
                           coalesce(sum(case when r.status in ('PENDING', 'SUPERVISOR_APPROVED')
                                             then r.total_days end), 0) as expected_pending,
                           coalesce(sum(case when r.status = 'APPROVED'
                                             then r.total_days end), 0) as expected_used
                    from vacation_balances b
                    left join leave_requests r
                      on r.employee_id = b.employee_id
                     and r.balance_year = b.year
                     and r.type = 'VACATION'
                    group by b.id, b.employee_id, b.year, b.pending_days, b.used_days
                    having b.pending_days <> coalesce(sum(case when r.status in ('PENDING', 'SUPERVISOR_APPROVED')
                                                              then r.total_days end), 0)
                        or b.used_days <> coalesce(sum(case when r.status = 'APPROVED'
                                                           then r.total_days end), 0)
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "vacation_ledger_drift",
                "fail" if drift else "ok",
                {"rows": [list(row) for row in drift]},
            )

        if "employees" in tables:
            cross_company_supervisors = conn.execute(
                text(
                    """
                    select e.id, e.company_id, s.id, s.company_id
                    from employees e
                    join employees s on s.id = e.supervisor_id
                    where s.company_id <> e.company_id
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "cross_company_supervisor",
                "fail" if cross_company_supervisors else "ok",
                {"rows": [list(row) for row in cross_company_supervisors]},
            )

            supervisor_cycles = conn.execute(
                text(
                    """
                    with recursive chain(start_id, current_id, depth, path) as (
                        select id, supervisor_id, 1, array[id]
                        from employees
                        where supervisor_id is not null
                        union all
                        select c.start_id, e.supervisor_id, c.depth + 1, c.path || e.id
                        from chain c
                        join employees e on e.id = c.current_id
                        where e.supervisor_id is not null
                          and not e.id = any(c.path)
                          and c.depth < 64
                    )
                    select distinct start_id
                    from chain
                    where current_id = start_id
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "supervisor_cycle",
                "fail" if supervisor_cycles else "ok",
                {"employee_ids": [row[0] for row in supervisor_cycles]},
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2, default=str))
