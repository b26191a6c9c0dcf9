from __future__ import annotations

import unittest
from datetime import date

from sqlalchemy import func, select

from hrapprovals.errors import (
    ApiError,
    EmployeeNotFound,
    InsufficientBalance,
    InvalidStateTransition,
    LedgerInconsistency,
    NotAuthorizedToApprove,
    RequestNotFound,
)
from hrapprovals.models import (
    DelegationType,
    LeaveRequest,
    LeaveType,
    RejectionStage,
    RequestStatus,
    VacationBalance,
)
from hrapprovals.schemas import CancelAction, RejectAction, SupervisorApproveAction
from hrapprovals.services.balances import BalanceLedger
from hrapprovals.services.directory import SqlDirectory
from hrapprovals.services.hierarchy import ApprovalChainResolver
from hrapprovals.services.leave_requests import (
    HR_OVERRIDE_BASIS,
    ApprovalActor,
    ApprovalWorkflow,
    list_requests,
)
from tests.db_support import OrgFactory, create_test_engine, create_test_session

TODAY = date(2025, 3, 1)
# Monday to Wednesday
START = date(2025, 3, 3)
END = date(2025, 3, 5)


class WorkflowTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.engine = create_test_engine()
        self.session = create_test_session(self.engine)
        self.org = OrgFactory(self.session)

        self.company = self.org.company("Acme")
        self.hr = self.org.employee(self.company, "Hana HR")
        self.lead = self.org.employee(self.company, "Leo Lead")
        self.worker = self.org.employee(self.company, "Wes Worker", supervisor=self.lead)
        self.peer = self.org.employee(self.company, "Pat Peer", supervisor=self.lead)
        self.session.commit()

        self.workflow = ApprovalWorkflow(
            self.session,
            ledger=BalanceLedger(self.session, today=lambda: TODAY),
            resolver=ApprovalChainResolver(SqlDirectory(self.session), today=lambda: TODAY),
        )
        self.hr_actor = ApprovalActor(employee_id=self.hr.id, raw_role="rh", label="hana")
        self.lead_actor = ApprovalActor(employee_id=self.lead.id, raw_role="manager", label="leo")
        self.worker_actor = ApprovalActor(employee_id=self.worker.id, raw_role="employee", label="wes")
        self.peer_actor = ApprovalActor(employee_id=self.peer.id, raw_role="MANAGER", label="pat")

    def tearDown(self) -> None:
        self.session.close()
        self.engine.dispose()

    def balance(self, year: int = 2025) -> VacationBalance:
        return self.session.scalar(
            select(VacationBalance).where(
                VacationBalance.employee_id == self.worker.id,
                VacationBalance.year == year,
            )
        )

    def create_vacation(self, start: date = START, end: date = END) -> LeaveRequest:
        return self.workflow.create(
            employee_id=self.worker.id,
            leave_type=LeaveType.VACATION,
            start_date=start,
            end_date=end,
            reason="Family trip",
        )


class CreateTests(WorkflowTestCase):
    def test_create_vacation_reserves_days(self) -> None:
        self.org.balance(self.worker, 2025, earned_days=12)
        self.session.commit()

        leave_request = self.create_vacation()

        self.assertEqual(leave_request.status, RequestStatus.PENDING)
        self.assertEqual(leave_request.total_days, 3)
        self.assertEqual(leave_request.balance_year, 2025)
        self.assertEqual(self.balance().pending_days, 3)

    def test_create_lazily_opens_balance_from_tenure(self) -> None:
        self.create_vacation()

        balance = self.balance()
        self.assertEqual(balance.earned_days, 24)
        self.assertEqual(balance.pending_days, 3)

    def test_insufficient_balance_persists_nothing(self) -> None:
        self.org.balance(self.worker, 2025, earned_days=12, used_days=10)
        self.session.commit()

        with self.assertRaises(InsufficientBalance) as ctx:
            self.create_vacation(start=date(2025, 3, 3), end=date(2025, 3, 7))

        self.assertEqual(ctx.exception.requested_days, 5)
        self.assertEqual(ctx.exception.available_days, 2)
        self.assertEqual(self.session.scalar(select(func.count()).select_from(LeaveRequest)), 0)
        self.assertEqual(self.balance().pending_days, 0)

    def test_non_vacation_request_does_not_touch_the_ledger(self) -> None:
        leave_request = self.workflow.create(
            employee_id=self.worker.id,
            leave_type=LeaveType.SICK_LEAVE,
            start_date=START,
            end_date=END,
        )

        self.assertEqual(leave_request.total_days, 3)
        self.assertIsNone(self.balance())

    def test_request_spanning_new_year_is_charged_to_start_year(self) -> None:
        leave_request = self.create_vacation(start=date(2025, 12, 29), end=date(2026, 1, 2))

        self.assertEqual(leave_request.balance_year, 2025)
        self.assertEqual(self.balance(2025).pending_days, 5)
        self.assertIsNone(self.balance(2026))

    def test_rejects_ranges_without_work_days(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            self.create_vacation(start=date(2025, 3, 8), end=date(2025, 3, 9))

        self.assertEqual(ctx.exception.code, "NO_WORK_DAYS_IN_RANGE")
        self.assertEqual(self.session.scalar(select(func.count()).select_from(LeaveRequest)), 0)

    def test_rejects_inverted_ranges_and_unknown_employees(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            self.create_vacation(start=END, end=START)
        self.assertEqual(ctx.exception.code, "INVALID_DATE_RANGE")

        with self.assertRaises(EmployeeNotFound):
            self.workflow.create(
                employee_id=9999,
                leave_type=LeaveType.VACATION,
                start_date=START,
                end_date=END,
            )

    def test_custom_schedule_changes_day_count(self) -> None:
        schedule = self.org.schedule(self.company, "1111111")
        self.worker.work_schedule_id = schedule.id
        self.session.commit()

        leave_request = self.create_vacation(start=date(2025, 3, 3), end=date(2025, 3, 9))

        self.assertEqual(leave_request.total_days, 7)


class TwoStageApprovalTests(WorkflowTestCase):
    def test_supervisor_then_hr_approval_commits_days(self) -> None:
        leave_request = self.create_vacation()

        leave_request = self.workflow.supervisor_approve(leave_request.id, self.lead_actor, comments="ok")
        self.assertEqual(leave_request.status, RequestStatus.SUPERVISOR_APPROVED)
        self.assertEqual(leave_request.supervisor_approved_by_id, self.lead.id)
        self.assertEqual(leave_request.supervisor_approval_basis, "DIRECT_SUPERVISOR")
        self.assertIsNotNone(leave_request.supervisor_approved_at)
        self.assertEqual(self.balance().pending_days, 3)

        leave_request = self.workflow.final_approve(leave_request.id, self.hr_actor, comments="enjoy")
        self.assertEqual(leave_request.status, RequestStatus.APPROVED)
        self.assertEqual(leave_request.approved_by_id, self.hr.id)
        self.assertEqual(leave_request.rh_comments, "enjoy")
        balance = self.balance()
        self.assertEqual((balance.pending_days, balance.used_days), (0, 3))

    def test_hr_rejection_after_supervisor_approval_releases_days(self) -> None:
        leave_request = self.create_vacation()
        self.workflow.supervisor_approve(leave_request.id, self.lead_actor)

        leave_request = self.workflow.reject(leave_request.id, "Peak season", self.hr_actor)

        self.assertEqual(leave_request.status, RequestStatus.REJECTED)
        self.assertEqual(leave_request.rejected_stage, RejectionStage.RH)
        self.assertEqual(leave_request.rejected_reason, "Peak season")
        balance = self.balance()
        self.assertEqual((balance.pending_days, balance.used_days), (0, 0))

    def test_supervisor_rejection_releases_days(self) -> None:
        leave_request = self.create_vacation()

        leave_request = self.workflow.reject(
            leave_request.id,
            "Team offsite",
            self.lead_actor,
            stage=RejectionStage.SUPERVISOR,
        )

        self.assertEqual(leave_request.rejected_stage, RejectionStage.SUPERVISOR)
        self.assertEqual(leave_request.rejected_by_id, self.lead.id)
        self.assertEqual(self.balance().pending_days, 0)

    def test_outsiders_cannot_approve_or_reject_at_supervisor_stage(self) -> None:
        leave_request = self.create_vacation()

        with self.assertRaises(NotAuthorizedToApprove):
            self.workflow.supervisor_approve(leave_request.id, self.peer_actor)
        with self.assertRaises(NotAuthorizedToApprove):
            self.workflow.reject(leave_request.id, "no", self.peer_actor)
        with self.assertRaises(NotAuthorizedToApprove):
            self.workflow.supervisor_approve(leave_request.id, self.worker_actor)

        self.assertEqual(self.workflow.get(leave_request.id).status, RequestStatus.PENDING)
        self.assertEqual(self.balance().pending_days, 3)

    def test_final_approval_requires_supervisor_step_and_hr(self) -> None:
        leave_request = self.create_vacation()

        with self.assertRaises(InvalidStateTransition):
            self.workflow.final_approve(leave_request.id, self.hr_actor)

        self.workflow.supervisor_approve(leave_request.id, self.lead_actor)
        with self.assertRaises(NotAuthorizedToApprove):
            self.workflow.final_approve(leave_request.id, self.lead_actor)
        with self.assertRaises(NotAuthorizedToApprove):
            self.workflow.reject(leave_request.id, "no", self.lead_actor)

    def test_rejection_stage_must_match_current_state(self) -> None:
        leave_request = self.create_vacation()

        with self.assertRaises(InvalidStateTransition):
            self.workflow.reject(leave_request.id, "no", self.hr_actor, stage=RejectionStage.RH)

        self.workflow.supervisor_approve(leave_request.id, self.lead_actor)
        with self.assertRaises(InvalidStateTransition):
            self.workflow.reject(leave_request.id, "no", self.hr_actor, stage=RejectionStage.SUPERVISOR)

    def test_rejection_requires_a_reason(self) -> None:
        leave_request = self.create_vacation()

        with self.assertRaises(ApiError) as ctx:
            self.workflow.reject(leave_request.id, "   ", self.lead_actor)

        self.assertEqual(ctx.exception.status_code, 422)

    def test_delegate_approves_only_matching_category(self) -> None:
        delegate = self.org.employee(self.company, "Dee Delegate")
        self.org.delegation(self.lead, delegate, DelegationType.VACATION, start_date=date(2025, 2, 1))
        self.session.commit()
        delegate_actor = ApprovalActor(employee_id=delegate.id, raw_role="employee")
        vacation = self.create_vacation()
        sick = self.workflow.create(
            employee_id=self.worker.id,
            leave_type=LeaveType.SICK_LEAVE,
            start_date=START,
            end_date=END,
        )

        approved = self.workflow.supervisor_approve(vacation.id, delegate_actor)
        self.assertEqual(approved.supervisor_approval_basis, "DELEGATION")
        with self.assertRaises(NotAuthorizedToApprove):
            self.workflow.supervisor_approve(sick.id, delegate_actor)

    def test_unknown_request(self) -> None:
        with self.assertRaises(RequestNotFound):
            self.workflow.supervisor_approve(9999, self.lead_actor)


class CompatibilityApproveTests(WorkflowTestCase):
    def test_hr_approving_pending_request_records_both_steps(self) -> None:
        leave_request = self.create_vacation()

        leave_request = self.workflow.approve(leave_request.id, self.hr_actor, comments="fine")

        self.assertEqual(leave_request.status, RequestStatus.APPROVED)
        self.assertEqual(leave_request.supervisor_approval_basis, HR_OVERRIDE_BASIS)
        self.assertEqual(leave_request.supervisor_approved_by_id, self.hr.id)
        self.assertEqual(leave_request.approved_by_id, self.hr.id)
        self.assertEqual(self.balance().used_days, 3)

    def test_manager_approving_pending_request_only_advances_one_step(self) -> None:
        leave_request = self.create_vacation()

        leave_request = self.workflow.approve(leave_request.id, self.lead_actor)

        self.assertEqual(leave_request.status, RequestStatus.SUPERVISOR_APPROVED)
        self.assertEqual(self.balance().pending_days, 3)

    def test_approving_supervisor_approved_request_is_the_final_step(self) -> None:
        leave_request = self.create_vacation()
        self.workflow.approve(leave_request.id, self.lead_actor)

        leave_request = self.workflow.approve(leave_request.id, self.hr_actor)

        self.assertEqual(leave_request.status, RequestStatus.APPROVED)
        self.assertEqual(leave_request.supervisor_approval_basis, "DIRECT_SUPERVISOR")

    def test_hr_supervisor_action_skips_hierarchy_check(self) -> None:
        leave_request = self.create_vacation()

        leave_request = self.workflow.apply_action(
            leave_request.id,
            SupervisorApproveAction(action="supervisor_approve"),
            self.hr_actor,
        )

        self.assertEqual(leave_request.status, RequestStatus.SUPERVISOR_APPROVED)
        self.assertEqual(leave_request.supervisor_approval_basis, HR_OVERRIDE_BASIS)

    def test_hr_cannot_approve_own_request(self) -> None:
        own = self.workflow.create(
            employee_id=self.hr.id,
            leave_type=LeaveType.VACATION,
            start_date=START,
            end_date=END,
        )

        with self.assertRaises(NotAuthorizedToApprove):
            self.workflow.approve(own.id, self.hr_actor)
        with self.assertRaises(NotAuthorizedToApprove):
            self.workflow.supervisor_approve(own.id, self.hr_actor, skip_hierarchy_check=True)
        with self.assertRaises(NotAuthorizedToApprove):
            self.workflow.apply_action(own.id, SupervisorApproveAction(action="supervisor_approve"), self.hr_actor)

        own = self.workflow.get(own.id)
        self.assertEqual(own.status, RequestStatus.PENDING)
        self.assertIsNone(own.supervisor_approved_by_id)

    def test_hr_cannot_give_final_approval_to_own_request(self) -> None:
        colleague = self.org.employee(self.company, "Cora Colleague")
        self.session.commit()
        colleague_actor = ApprovalActor(employee_id=colleague.id, raw_role="HR_ADMIN")
        own = self.workflow.create(
            employee_id=self.hr.id,
            leave_type=LeaveType.VACATION,
            start_date=START,
            end_date=END,
        )
        self.workflow.supervisor_approve(own.id, colleague_actor, skip_hierarchy_check=True)

        with self.assertRaises(NotAuthorizedToApprove):
            self.workflow.final_approve(own.id, self.hr_actor)
        with self.assertRaises(NotAuthorizedToApprove):
            self.workflow.approve(own.id, self.hr_actor)

        approved = self.workflow.final_approve(own.id, colleague_actor)
        self.assertEqual(approved.status, RequestStatus.APPROVED)
        self.assertEqual(approved.approved_by_id, colleague.id)


class CancelAndApplyTests(WorkflowTestCase):
    def test_owner_cancels_pending_request(self) -> None:
        leave_request = self.create_vacation()

        leave_request = self.workflow.apply_action(leave_request.id, CancelAction(action="cancel"), self.worker_actor)

        self.assertEqual(leave_request.status, RequestStatus.CANCELLED)
        self.assertEqual(leave_request.cancelled_by_id, self.worker.id)
        self.assertEqual(self.balance().pending_days, 0)

    def test_hr_cancels_supervisor_approved_request(self) -> None:
        leave_request = self.create_vacation()
        self.workflow.supervisor_approve(leave_request.id, self.lead_actor)

        leave_request = self.workflow.cancel(leave_request.id, self.hr_actor)

        self.assertEqual(leave_request.status, RequestStatus.CANCELLED)
        self.assertEqual(self.balance().pending_days, 0)

    def test_others_cannot_cancel(self) -> None:
        leave_request = self.create_vacation()

        with self.assertRaises(NotAuthorizedToApprove):
            self.workflow.cancel(leave_request.id, self.lead_actor)

    def test_applied_request_is_immutable(self) -> None:
        leave_request = self.create_vacation()
        self.workflow.approve(leave_request.id, self.hr_actor)

        leave_request = self.workflow.mark_applied(leave_request.id, "PAYROLL-2025-05")

        self.assertTrue(leave_request.is_applied)
        self.assertEqual(leave_request.applied_reference, "PAYROLL-2025-05")
        with self.assertRaises(InvalidStateTransition):
            self.workflow.cancel(leave_request.id, self.hr_actor)
        with self.assertRaises(InvalidStateTransition):
            self.workflow.mark_applied(leave_request.id, "PAYROLL-2025-06")

    def test_only_approved_requests_can_be_applied(self) -> None:
        leave_request = self.create_vacation()

        with self.assertRaises(InvalidStateTransition):
            self.workflow.mark_applied(leave_request.id, "PAYROLL-2025-05")


class TerminalStateTests(WorkflowTestCase):
    def _assert_no_transition(self, request_id: int) -> None:
        attempts = [
            lambda: self.workflow.supervisor_approve(request_id, self.lead_actor),
            lambda: self.workflow.supervisor_approve(request_id, self.hr_actor, skip_hierarchy_check=True),
            lambda: self.workflow.final_approve(request_id, self.hr_actor),
            lambda: self.workflow.approve(request_id, self.hr_actor),
            lambda: self.workflow.reject(request_id, "late", self.hr_actor),
            lambda: self.workflow.cancel(request_id, self.worker_actor),
            lambda: self.workflow.apply_action(request_id, RejectAction(action="reject", reason="x"), self.hr_actor),
        ]
        before = self.workflow.get(request_id).status
        balance = self.balance()
        counters = (balance.used_days, balance.pending_days)
        for attempt in attempts:
            with self.assertRaises(InvalidStateTransition):
                attempt()
        self.assertEqual(self.workflow.get(request_id).status, before)
        balance = self.balance()
        self.assertEqual((balance.used_days, balance.pending_days), counters)

    def test_approved_is_terminal(self) -> None:
        leave_request = self.create_vacation()
        self.workflow.approve(leave_request.id, self.hr_actor)
        self._assert_no_transition(leave_request.id)

    def test_rejected_is_terminal(self) -> None:
        leave_request = self.create_vacation()
        self.workflow.reject(leave_request.id, "no", self.lead_actor)
        self._assert_no_transition(leave_request.id)

    def test_cancelled_is_terminal(self) -> None:
        leave_request = self.create_vacation()
        self.workflow.cancel(leave_request.id, self.worker_actor)
        self._assert_no_transition(leave_request.id)


class AtomicityTests(WorkflowTestCase):
    def test_ledger_failure_rolls_back_the_transition(self) -> None:
        leave_request = self.create_vacation()
        self.workflow.supervisor_approve(leave_request.id, self.lead_actor)
        balance = self.balance()
        balance.pending_days = 0
        self.session.commit()

        with self.assertRaises(LedgerInconsistency):
            self.workflow.final_approve(leave_request.id, self.hr_actor)

        self.assertEqual(self.workflow.get(leave_request.id).status, RequestStatus.SUPERVISOR_APPROVED)
        self.assertEqual(self.balance().used_days, 0)


class ListRequestsTests(WorkflowTestCase):
    def test_filters_by_company_employee_status_and_year(self) -> None:
        other_company = self.org.company("Globex")
        outsider = self.org.employee(other_company, "Olga Outsider")
        self.session.commit()
        first = self.create_vacation()
        second = self.workflow.create(
            employee_id=self.peer.id,
            leave_type=LeaveType.PERSONAL,
            start_date=date(2026, 2, 2),
            end_date=date(2026, 2, 2),
        )
        self.workflow.create(
            employee_id=outsider.id,
            leave_type=LeaveType.PERSONAL,
            start_date=START,
            end_date=START,
        )
        self.workflow.cancel(first.id, self.worker_actor)

        company_rows = list_requests(self.session, company_id=self.company.id)
        self.assertEqual([item.id for item in company_rows], [first.id, second.id])
        self.assertEqual(len(list_requests(self.session, company_id=None)), 3)
        self.assertEqual(
            [item.id for item in list_requests(self.session, company_id=self.company.id, year=2026)],
            [second.id],
        )
        self.assertEqual(
            [
                item.id
                for item in list_requests(
                    self.session,
                    company_id=self.company.id,
                    status=RequestStatus.CANCELLED,
                )
            ],
            [first.id],
        )
        self.assertEqual(
            [item.id for item in list_requests(self.session, company_id=self.company.id, employee_id=self.peer.id)],
            [second.id],
        )


if __name__ == "__main__":
    unittest.main()
