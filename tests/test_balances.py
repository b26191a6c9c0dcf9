from __future__ import annotations

import unittest
from datetime import date
from unittest.mock import patch

from sqlalchemy.dialects import postgresql

from hrapprovals.errors import EmployeeNotFound, LedgerInconsistency
from hrapprovals.models import VacationBalance
from hrapprovals.services.balances import (
    BalanceLedger,
    earned_days_for_tenure,
    full_years_of_service,
)
from tests.db_support import OrgFactory, create_test_engine, create_test_session

TODAY = date(2025, 6, 1)


class EntitlementTableTests(unittest.TestCase):
    def test_step_function_over_years_of_service(self) -> None:
        expected = {
            0: 0,
            1: 12,
            2: 14,
            3: 16,
            4: 18,
            5: 20,
            6: 22,
            9: 22,
            10: 24,
            14: 24,
            15: 26,
            20: 28,
            25: 30,
            30: 32,
            45: 32,
        }
        for years, days in expected.items():
            self.assertEqual(earned_days_for_tenure(years), days, years)

    def test_full_years_counts_only_completed_anniversaries(self) -> None:
        self.assertEqual(full_years_of_service(date(2020, 6, 2), TODAY), 4)
        self.assertEqual(full_years_of_service(date(2020, 6, 1), TODAY), 5)
        self.assertEqual(full_years_of_service(date(2025, 7, 1), TODAY), 0)
        self.assertEqual(full_years_of_service(None, TODAY), 0)


class BalanceLedgerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_test_engine()
        self.session = create_test_session(self.engine)
        self.org = OrgFactory(self.session)
        company = self.org.company()
        self.employee = self.org.employee(company, "Eve Employee", hire_date=date(2022, 1, 15))
        self.session.commit()
        self.ledger = BalanceLedger(self.session, today=lambda: TODAY)

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def test_get_or_create_derives_earned_days_from_tenure(self) -> None:
        balance = self.ledger.get_or_create(self.employee.id, 2025)
        self.session.commit()

        self.assertEqual(balance.earned_days, 16)
        self.assertEqual((balance.used_days, balance.pending_days), (0, 0))
        self.assertEqual(balance.available_days, 16)

    def test_get_or_create_returns_existing_row(self) -> None:
        first = self.ledger.get_or_create(self.employee.id, 2025)
        self.session.commit()
        second = self.ledger.get_or_create(self.employee.id, 2025)

        self.assertEqual(first.id, second.id)
        self.assertEqual(self.session.query(VacationBalance).count(), 1)

    def test_get_or_create_for_unknown_employee(self) -> None:
        with self.assertRaises(EmployeeNotFound):
            self.ledger.get_or_create(9999, 2025)

    def test_reserve_rejects_when_balance_would_overflow(self) -> None:
        self.org.balance(self.employee, 2025, earned_days=12, used_days=10)
        self.session.commit()

        result = self.ledger.reserve(self.employee.id, 2025, 5)

        self.assertFalse(result.ok)
        self.assertEqual(result.available_days, 2)
        balance = self.ledger.get_or_create(self.employee.id, 2025)
        self.assertEqual(balance.pending_days, 0)

    def test_reserve_commit_release_keep_counters_within_earned(self) -> None:
        self.org.balance(self.employee, 2025, earned_days=12)
        self.session.commit()

        operations = [
            ("reserve", 5, True),
            ("reserve", 4, True),
            ("reserve", 4, False),
            ("commit", 5, None),
            ("reserve", 3, True),
            ("release", 4, None),
            ("reserve", 4, True),
            ("reserve", 1, False),
            ("commit", 7, None),
        ]
        for operation, days, expected_ok in operations:
            if operation == "reserve":
                self.assertEqual(self.ledger.reserve(self.employee.id, 2025, days).ok, expected_ok)
            elif operation == "commit":
                self.ledger.commit(self.employee.id, 2025, days)
            else:
                self.ledger.release(self.employee.id, 2025, days)
            balance = self.ledger.get_or_create(self.employee.id, 2025)
            self.assertLessEqual(balance.used_days + balance.pending_days, balance.earned_days)
            self.assertGreaterEqual(balance.pending_days, 0)

        balance = self.ledger.get_or_create(self.employee.id, 2025)
        self.assertEqual((balance.used_days, balance.pending_days), (12, 0))

    def test_commit_or_release_more_than_pending_is_inconsistent(self) -> None:
        self.org.balance(self.employee, 2025, earned_days=12, pending_days=2)
        self.session.commit()

        with self.assertRaises(LedgerInconsistency):
            self.ledger.commit(self.employee.id, 2025, 3)
        with self.assertRaises(LedgerInconsistency):
            self.ledger.release(self.employee.id, 2025, 3)

    def test_settling_without_a_balance_row_is_inconsistent(self) -> None:
        with self.assertRaises(LedgerInconsistency):
            self.ledger.release(self.employee.id, 2030, 1)

    def test_reserve_requires_positive_days(self) -> None:
        with self.assertRaises(ValueError):
            self.ledger.reserve(self.employee.id, 2025, 0)

    def test_balances_are_kept_per_year(self) -> None:
        self.ledger.reserve(self.employee.id, 2025, 3)
        self.ledger.reserve(self.employee.id, 2026, 2)
        self.session.commit()

        self.assertEqual(self.ledger.get_or_create(self.employee.id, 2025).pending_days, 3)
        self.assertEqual(self.ledger.get_or_create(self.employee.id, 2026).pending_days, 2)


class ConcurrentBalanceCreationTests(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_test_engine()
        self.session = create_test_session(self.engine)
        org = OrgFactory(self.session)
        self.employee = org.employee(org.company(), "Eve Employee", hire_date=date(2022, 1, 15))
        self.session.commit()
        self.ledger = BalanceLedger(self.session, today=lambda: TODAY)

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def _insert_from_other_session(self, earned_days: int) -> int:
        other = create_test_session(self.engine)
        try:
            row = OrgFactory(other).balance(self.employee, 2025, earned_days=earned_days)
            other.commit()
            return row.id
        finally:
            other.close()

    def _stale_first_read(self):  # type: ignore[no-untyped-def]
        real_select = self.ledger._select
        reads = []

        def _select(employee_id, year, *, lock):  # type: ignore[no-untyped-def]
            reads.append(lock)
            if len(reads) == 1:
                return None
            return real_select(employee_id, year, lock=lock)

        return patch.object(self.ledger, "_select", side_effect=_select), reads

    def test_row_inserted_concurrently_is_reused(self) -> None:
        existing_id = self._insert_from_other_session(earned_days=5)
        stale, reads = self._stale_first_read()

        with stale:
            balance = self.ledger.get_or_create(self.employee.id, 2025)
        self.session.commit()

        self.assertEqual(balance.id, existing_id)
        self.assertEqual(balance.earned_days, 5)
        self.assertEqual(len(reads), 2)
        self.assertEqual(self.session.query(VacationBalance).count(), 1)

    def test_reservation_after_lost_race_respects_existing_entitlement(self) -> None:
        self._insert_from_other_session(earned_days=5)
        stale, reads = self._stale_first_read()

        with stale:
            result = self.ledger.reserve(self.employee.id, 2025, 6)

        self.assertFalse(result.ok)
        self.assertEqual(result.available_days, 5)
        self.assertEqual(reads, [True, True])

        self.assertTrue(self.ledger.reserve(self.employee.id, 2025, 5).ok)
        self.assertFalse(self.ledger.reserve(self.employee.id, 2025, 1).ok)
        self.session.commit()
        balance = self.ledger.get_or_create(self.employee.id, 2025)
        self.assertEqual((balance.earned_days, balance.pending_days), (5, 5))
        self.assertEqual(self.session.query(VacationBalance).count(), 1)

    def test_ledger_mutations_read_the_row_for_update(self) -> None:
        self.ledger.get_or_create(self.employee.id, 2025)
        self.session.commit()

        with patch.object(self.ledger, "_select", wraps=self.ledger._select) as select_balance:
            self.ledger.reserve(self.employee.id, 2025, 3)
            self.ledger.commit(self.employee.id, 2025, 1)
            self.ledger.release(self.employee.id, 2025, 2)
            self.ledger.get_or_create(self.employee.id, 2025)

        self.assertEqual([call.kwargs["lock"] for call in select_balance.call_args_list], [True, True, True, False])

    def test_locked_read_renders_for_update(self) -> None:
        self.ledger.get_or_create(self.employee.id, 2025)
        self.session.commit()

        with patch.object(self.session, "scalar", wraps=self.session.scalar) as scalar:
            self.ledger.reserve(self.employee.id, 2025, 1)
            self.ledger.get_or_create(self.employee.id, 2025)

        locked, plain = (str(call.args[0].compile(dialect=postgresql.dialect())) for call in scalar.call_args_list)
        self.assertIn("FOR UPDATE", locked)
        self.assertNotIn("FOR UPDATE", plain)


if __name__ == "__main__":
    unittest.main()
