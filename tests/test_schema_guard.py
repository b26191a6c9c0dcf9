from __future__ import annotations

import unittest
from unittest.mock import patch

from hrapprovals.services.schema_guard import verify_runtime_schema


class _FakeResult:
    def __init__(self, value):
        self._value = value

    def scalar(self):  # type: ignore[no-untyped-def]
        return self._value


class _FakeConnection:
    def __init__(self, version_value):
        self._version_value = version_value

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def execute(self, _statement):  # type: ignore[no-untyped-def]
        return _FakeResult(self._version_value)


class _FakeEngine:
    def __init__(self, version_value):
        self._version_value = version_value

    def connect(self):  # type: ignore[no-untyped-def]
        return _FakeConnection(self._version_value)


class _FakeInspector:
    def __init__(self, *, columns_by_table: dict[str, set[str]], enums: list[dict[str, object]]):
        self._columns_by_table = columns_by_table
        self._enums = enums

    def get_columns(self, table_name: str):  # type: ignore[no-untyped-def]
        columns = self._columns_by_table[table_name]
        return [{"name": item} for item in columns]

    def get_enums(self):  # type: ignore[no-untyped-def]
        return self._enums


_HEALTHY_COLUMNS = {
    "employees": {"id", "company_id", "full_name", "supervisor_id", "department_id", "work_schedule_id"},
    "departments": {"id", "company_id", "name", "manager_id"},
    "approval_delegations": {
        "id",
        "delegator_id",
        "delegatee_id",
        "delegation_type",
        "start_date",
        "end_date",
        "is_active",
    },
    "vacation_balances": {"id", "employee_id", "year", "earned_days", "used_days", "pending_days"},
    "leave_requests": {
        "id",
        "employee_id",
        "status",
        "balance_year",
        "supervisor_approved_by_id",
        "supervisor_approval_basis",
        "rejected_stage",
        "applied_at",
    },
    "alembic_version": {"version_num"},
}

_HEALTHY_ENUMS = [
    {"name": "request_status", "labels": ["PENDING", "SUPERVISOR_APPROVED", "APPROVED", "REJECTED", "CANCELLED"]},
    {"name": "rejection_stage", "labels": ["SUPERVISOR", "RH"]},
    {"name": "delegation_type", "labels": ["ALL", "VACATION", "PERMISSION", "INCIDENT"]},
]


class SchemaGuardTests(unittest.TestCase):
    def test_verify_runtime_schema_ok_when_required_columns_exist(self) -> None:
        fake_inspector = _FakeInspector(columns_by_table=_HEALTHY_COLUMNS, enums=_HEALTHY_ENUMS)
        fake_engine = _FakeEngine("0002_leave_request_workflow")

        with patch("hrapprovals.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertTrue(result.ok)
        self.assertEqual(result.issues, [])
        self.assertEqual(result.warnings, [])
        self.assertEqual(result.to_dict()["issue_count"], 0)

    def test_verify_runtime_schema_reports_missing_columns(self) -> None:
        columns = dict(_HEALTHY_COLUMNS)
        columns["leave_requests"] = {"id", "employee_id", "status"}
        columns["employees"] = {"id", "full_name"}
        fake_inspector = _FakeInspector(
            columns_by_table=columns,
            enums=[
                {"name": "request_status", "labels": ["PENDING", "APPROVED", "REJECTED", "CANCELLED"]},
                {"name": "rejection_stage", "labels": ["SUPERVISOR", "RH"]},
            ],
        )
        fake_engine = _FakeEngine("")

        with patch("hrapprovals.services.schema_guard.inspect", return_value=fake_inspector):
            result = verify_runtime_schema(fake_engine)  # type: ignore[arg-type]

        self.assertFalse(result.ok)
        self.assertTrue(any(item.startswith("MISSING_COLUMNS:leave_requests:") for item in result.issues))
        self.assertTrue(any("balance_year" in item for item in result.issues))
        self.assertTrue(any(item.startswith("MISSING_COLUMNS:employees:company_id") for item in result.issues))
        self.assertIn("MISSING_ENUM_VALUES:request_status:SUPERVISOR_APPROVED", result.issues)
        self.assertIn("ENUM_NOT_FOUND:delegation_type", result.warnings)
        self.assertIn("ALEMBIC_VERSION_EMPTY", result.issues)


if __name__ == "__main__":
    unittest.main()
