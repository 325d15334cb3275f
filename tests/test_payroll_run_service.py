"""Tests for the payroll run lifecycle and per-employee processing."""

import asyncio
import dataclasses
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import select

from conftest import (
    FINANCIAL_YEAR,
    FULL_ATTENDANCE,
    PAYROLL_MONTH,
    PAYROLL_YEAR,
    STANDARD_TAX_RULES,
    FixedAttendanceSource,
    add_employee,
)
from payslip_engine.calculators.types import AdHocKind
from payslip_engine.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from payslip_engine.models import Payslip, PayrollRun, VariablePay
from payslip_engine.services.adhoc_service import AdHocService
from payslip_engine.services.payroll_run_service import PayrollRunService
from payslip_engine.services.payslip_service import PayslipService
from payslip_engine.services.tax_configuration_service import TaxConfigurationService


@pytest.fixture
def run_service(session_factory, settings):
    return PayrollRunService(
        session_factory,
        settings=settings,
        attendance_source=FixedAttendanceSource(FULL_ATTENDANCE),
    )


async def _payslips_for_run(session_factory, payroll_run_id):
    async with session_factory() as session:
        result = await session.execute(select(Payslip).where(Payslip.payroll_run_id == payroll_run_id))
        return list(result.scalars().all())


class SlowAttendanceSource:
    """Attendance source that never answers in time."""

    async def get_monthly_aggregate(self, employee_id, company_id, month, year):
        await asyncio.sleep(5)
        return FULL_ATTENDANCE


class TestCreateRun:
    """Draft run creation."""

    async def test_create_run(self, run_service, company_id):
        """A new run starts as an empty draft."""
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)

        assert run.status == "draft"
        assert run.total_employees == 0
        assert (await run_service.get_run(run.payroll_run_id)).payroll_month == PAYROLL_MONTH

    async def test_one_run_per_period(self, run_service, company_id):
        """A company has one run per period."""
        await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)

        with pytest.raises(ConflictError):
            await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)

    async def test_other_company_same_period(self, run_service, company_id):
        """Other companies may run the same period."""
        await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)
        run = await run_service.create_run(uuid4(), PAYROLL_MONTH, PAYROLL_YEAR)
        assert run.status == "draft"

    @pytest.mark.parametrize("month", [0, 13])
    async def test_invalid_month(self, run_service, company_id, month):
        """Months outside 1-12 are rejected."""
        with pytest.raises(ValidationError):
            await run_service.create_run(company_id, month, PAYROLL_YEAR)

    async def test_missing_run(self, run_service):
        """Unknown run ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await run_service.get_run(uuid4())

    async def test_list_runs(self, run_service, company_id):
        """Runs are listed newest period first."""
        await run_service.create_run(company_id, 4, 2024)
        await run_service.create_run(company_id, 5, 2024)

        runs, total = await run_service.list_runs(company_id)

        assert total == 2
        assert [r.payroll_month for r in runs] == [5, 4]


class TestProcessRun:
    """Processing every active employee."""

    async def test_processes_active_employees(
        self, run_service, session, session_factory, company_id, tax_configuration, salary_structure
    ):
        """Every active employee gets a payslip and the run holds the totals."""
        for number in ("E001", "E002"):
            await add_employee(session, company_id, number, salary_structure.salary_structure_id)
        await add_employee(session, company_id, "E003", salary_structure.salary_structure_id, status="terminated")
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)

        summary = await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")

        assert summary.status == "completed"
        assert summary.total_employees == 2
        assert summary.processed_employees == 2
        assert summary.failed_employees == 0
        assert summary.total_gross_salary == Decimal("200000")
        assert summary.total_deductions == Decimal("28750")
        assert summary.total_net_salary == Decimal("171250")

        run = await run_service.get_run(run.payroll_run_id)
        assert run.status == "completed"
        assert run.processed_by == "payroll-admin"
        assert run.processed_at is not None
        assert run.total_net_salary == Decimal("171250")
        assert len(await _payslips_for_run(session_factory, run.payroll_run_id)) == 2

    async def test_employee_failure_does_not_abort_run(
        self, run_service, session, company_id, tax_configuration, salary_structure
    ):
        """A failing employee is counted and the rest are processed."""
        await add_employee(session, company_id, "E001", salary_structure.salary_structure_id)
        unassigned = await add_employee(session, company_id, "E002")
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)

        summary = await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")

        assert summary.status == "completed"
        assert summary.processed_employees == 1
        assert summary.failed_employees == 1
        assert "NotFoundError" in summary.failures[unassigned.employee_id]
        assert (await run_service.get_run(run.payroll_run_id)).failed_employees == 1

    async def test_failed_employee_rolls_back_alone(
        self, run_service, session, session_factory, company_id, tax_configuration, salary_structure
    ):
        """A failed employee leaves no payslip and consumes no ad hoc items."""
        employee = await add_employee(session, company_id, "E001", salary_structure.salary_structure_id)
        ad_hoc = AdHocService(session)
        bonus = await ad_hoc.create_variable_pay(
            employee.employee_id, company_id, "bonus", Decimal("10000"), PAYROLL_MONTH, PAYROLL_YEAR
        )
        await ad_hoc.approve(AdHocKind.VARIABLE_PAY, bonus.variable_pay_id, "manager")
        await session.commit()
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)

        slow = PayrollRunService(
            session_factory,
            settings=dataclasses.replace(run_service.settings, employee_timeout_seconds=0.05),
            attendance_source=SlowAttendanceSource(),
        )
        summary = await slow.process_run(run.payroll_run_id, processed_by="payroll-admin")

        assert summary.failed_employees == 1
        assert "timed out" in summary.failures[employee.employee_id]
        assert await _payslips_for_run(session_factory, run.payroll_run_id) == []
        async with session_factory() as fresh:
            assert (await fresh.get(VariablePay, bonus.variable_pay_id)).status == "approved"

    async def test_missing_tax_configuration_fails_run(
        self, run_service, session, session_factory, company_id, salary_structure
    ):
        """Without tax rules the whole run fails and can be retried."""
        await add_employee(session, company_id, "E001", salary_structure.salary_structure_id)
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)

        with pytest.raises(NotFoundError):
            await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")

        failed = await run_service.get_run(run.payroll_run_id)
        assert failed.status == "failed"
        assert FINANCIAL_YEAR in failed.failure_reason
        assert await _payslips_for_run(session_factory, run.payroll_run_id) == []

        # Configure tax and retry
        await TaxConfigurationService(session).create(company_id, "IN", FINANCIAL_YEAR, **STANDARD_TAX_RULES)
        await session.commit()
        summary = await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")

        assert summary.status == "completed"
        assert summary.processed_employees == 1
        assert (await run_service.get_run(run.payroll_run_id)).failure_reason is None

    async def test_retry_reuses_committed_payslips(
        self, run_service, session, session_factory, company_id, tax_configuration, salary_structure
    ):
        """A retried run keeps payslips from the earlier attempt."""
        first = await add_employee(session, company_id, "E001", salary_structure.salary_structure_id)
        await add_employee(session, company_id, "E002", salary_structure.salary_structure_id)
        ad_hoc = AdHocService(session)
        bonus = await ad_hoc.create_variable_pay(
            first.employee_id, company_id, "bonus", Decimal("10000"), PAYROLL_MONTH, PAYROLL_YEAR
        )
        await ad_hoc.approve(AdHocKind.VARIABLE_PAY, bonus.variable_pay_id, "manager")
        await session.commit()

        # An earlier attempt generated E001's payslip before the run failed
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)
        stored = await session.get(PayrollRun, run.payroll_run_id)
        stored.status = "failed"
        await session.commit()
        earlier = await PayslipService(
            session, attendance_source=FixedAttendanceSource(FULL_ATTENDANCE)
        ).generate_payslip_for_employee(
            first.employee_id, run.payroll_run_id, company_id, PAYROLL_MONTH, PAYROLL_YEAR, tax_configuration
        )
        await session.commit()

        summary = await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")

        assert summary.processed_employees == 2
        assert summary.total_gross_salary == Decimal("210000")
        payslips = await _payslips_for_run(session_factory, run.payroll_run_id)
        assert len(payslips) == 2
        with_bonus = [p for p in payslips if p.variable_pay_total > 0]
        assert [p.payslip_id for p in with_bonus] == [earlier.payslip_id]

    async def test_no_active_employees(self, run_service, company_id, tax_configuration):
        """A company without active employees completes with zero totals."""
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)

        summary = await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")

        assert summary.status == "completed"
        assert summary.total_employees == 0
        assert summary.total_net_salary == Decimal("0")


class TestClaimRun:
    """Only one processor may hold a run at a time."""

    async def _claimed_by_other(self, session, run_service, company_id):
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)
        stored = await session.get(PayrollRun, run.payroll_run_id)
        stored.status = "processing"
        stored.processed_by = "processor-a"
        await session.commit()
        return run

    async def test_second_processor_rejected(
        self, run_service, session, session_factory, company_id, tax_configuration, salary_structure
    ):
        """A run another processor is working on cannot be claimed again."""
        await add_employee(session, company_id, "E001", salary_structure.salary_structure_id)
        run = await self._claimed_by_other(session, run_service, company_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await run_service.process_run(run.payroll_run_id, processed_by="processor-b")

        assert exc_info.value.from_status == "processing"
        current = await run_service.get_run(run.payroll_run_id)
        assert current.status == "processing"
        assert current.processed_by == "processor-a"
        assert await _payslips_for_run(session_factory, run.payroll_run_id) == []

    async def test_resume_takes_over_interrupted_run(
        self, run_service, session, company_id, tax_configuration, salary_structure
    ):
        """An explicit resume finishes a run whose processor died."""
        await add_employee(session, company_id, "E001", salary_structure.salary_structure_id)
        run = await self._claimed_by_other(session, run_service, company_id)

        summary = await run_service.process_run(run.payroll_run_id, processed_by="processor-b", resume=True)

        assert summary.status == "completed"
        assert summary.processed_employees == 1
        assert (await run_service.get_run(run.payroll_run_id)).processed_by == "processor-b"

    async def test_resume_does_not_reopen_completed_run(self, run_service, company_id, tax_configuration):
        """Resuming never reprocesses a completed run."""
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)
        await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")

        with pytest.raises(InvalidTransitionError):
            await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin", resume=True)


class TestLockRun:
    """Locking and the guards it enables."""

    async def test_lock_completed_run(self, run_service, company_id, tax_configuration):
        """Locking records who locked the run and when."""
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)
        await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")

        locked = await run_service.lock_run(run.payroll_run_id, locked_by="finance")

        assert locked.status == "locked"
        assert locked.locked_by == "finance"
        assert locked.locked_at is not None

    async def test_only_completed_runs_lock(self, run_service, company_id):
        """Draft runs cannot be locked."""
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)

        with pytest.raises(InvalidTransitionError):
            await run_service.lock_run(run.payroll_run_id, locked_by="finance")

    async def test_locked_run_cannot_be_processed(self, run_service, company_id, tax_configuration):
        """Locked runs are never processed again."""
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)
        await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")
        await run_service.lock_run(run.payroll_run_id, locked_by="finance")

        with pytest.raises(InvalidTransitionError) as exc_info:
            await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")

        assert exc_info.value.from_status == "locked"

    async def test_completed_run_cannot_be_reprocessed(self, run_service, company_id, tax_configuration):
        """Completed runs must be locked, not reprocessed."""
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)
        await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")

        with pytest.raises(InvalidTransitionError):
            await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")

    async def test_locked_run_row_is_frozen(self, run_service, session_factory, company_id, tax_configuration):
        """A locked run row rejects any change on flush."""
        run = await run_service.create_run(company_id, PAYROLL_MONTH, PAYROLL_YEAR)
        await run_service.process_run(run.payroll_run_id, processed_by="payroll-admin")
        await run_service.lock_run(run.payroll_run_id, locked_by="finance")

        async with session_factory() as session:
            locked = await session.get(PayrollRun, run.payroll_run_id)
            locked.total_net_salary = Decimal("1")
            with pytest.raises(ValidationError):
                await session.flush()
