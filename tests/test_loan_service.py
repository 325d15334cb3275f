"""Tests for loan creation and the deduction ledger."""

from datetime import date
from decimal import Decimal
from uuid import uuid4

import pytest

from payslip_engine.errors import NotFoundError, ValidationError
from payslip_engine.services.loan_service import LoanService


async def _create_loan(session, company_id, employee_id, **overrides):
    params = dict(
        employee_id=employee_id,
        company_id=company_id,
        loan_type="personal_loan",
        principal_amount=Decimal("120000"),
        interest_rate=Decimal("12"),
        tenure_months=12,
        start_date=date(2024, 3, 15),
    )
    params.update(overrides)
    loan = await LoanService(session).create_loan(**params)
    await session.commit()
    return loan


async def _deduct(session, loan, month, year):
    return await LoanService(session).record_loan_deduction(
        loan_id=loan.loan_id,
        employee_id=loan.employee_id,
        company_id=loan.company_id,
        payroll_run_id=uuid4(),
        payslip_id=uuid4(),
        month=month,
        year=year,
    )


def _periods(month, year, count):
    for _ in range(count):
        yield month, year
        month += 1
        if month > 12:
            month, year = 1, year + 1


class TestCreateLoan:
    """Loan creation."""

    async def test_schedule_and_defaults(self, session, company_id):
        """EMI, balances and deduction start default from the disbursement date."""
        loan = await _create_loan(session, company_id, uuid4())

        assert loan.emi_amount == Decimal("10662")
        assert loan.status == "active"
        assert loan.outstanding_principal == Decimal("120000")
        assert loan.deduction_start_month == 4
        assert loan.deduction_start_year == 2024
        assert loan.end_date == date(2025, 3, 15)
        assert len(loan.repayment_schedule) == 12
        assert loan.name == "Personal Loan"

    async def test_deferred_start_shifts_schedule(self, session, company_id):
        """A deferred loan's first installment is dated in its deduction start month."""
        loan = await _create_loan(
            session,
            company_id,
            uuid4(),
            start_date=date(2024, 1, 15),
            deduction_start_month=4,
            deduction_start_year=2024,
        )

        assert loan.repayment_schedule[0]["payment_date"] == "2024-04-15"
        assert loan.end_date == date(2025, 3, 15)

    @pytest.mark.parametrize(
        "overrides",
        [
            {"principal_amount": Decimal("0")},
            {"tenure_months": 0},
            {"interest_rate": Decimal("-1")},
            {"loan_type": "mortgage"},
            {"deduction_start_month": 13, "deduction_start_year": 2024},
            {"deduction_start_month": 2, "deduction_start_year": 2024},
        ],
    )
    async def test_invalid_inputs(self, session, company_id, overrides):
        """Invalid amounts, types and deduction starts are rejected."""
        with pytest.raises(ValidationError):
            await _create_loan(session, company_id, uuid4(), **overrides)

    async def test_emi_rounding_to_zero_rejected(self, session, company_id):
        """A principal too small to yield a whole-unit EMI cannot be repaid."""
        with pytest.raises(ValidationError):
            await _create_loan(
                session,
                company_id,
                uuid4(),
                principal_amount=Decimal("5"),
                interest_rate=Decimal("0"),
                tenure_months=12,
            )

    async def test_get_missing_loan(self, session):
        """Unknown loan ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await LoanService(session).get_loan(uuid4())


class TestScheduledDeductions:
    """EMIs due in a period."""

    async def test_nothing_due_in_disbursement_month(self, session, company_id):
        """No EMI falls due in the month the loan is disbursed."""
        employee_id = uuid4()
        await _create_loan(session, company_id, employee_id)

        assert await LoanService(session).scheduled_deductions(employee_id, 3, 2024) == []

    async def test_first_installment_due_next_month(self, session, company_id):
        """The first schedule entry is due the month after disbursement."""
        employee_id = uuid4()
        loan = await _create_loan(session, company_id, employee_id)

        due = await LoanService(session).scheduled_deductions(employee_id, 4, 2024)

        assert len(due) == 1
        assert due[0].loan_id == loan.loan_id
        assert due[0].entry.month == 1
        assert due[0].entry.emi_amount == Decimal("10662")

    async def test_deferred_deduction_start(self, session, company_id):
        """A deferred loan starts from the first schedule entry, not a later one."""
        employee_id = uuid4()
        await _create_loan(
            session, company_id, employee_id, deduction_start_month=6, deduction_start_year=2024
        )

        service = LoanService(session)
        assert await service.scheduled_deductions(employee_id, 5, 2024) == []
        due = await service.scheduled_deductions(employee_id, 6, 2024)
        assert due[0].entry.month == 1
        assert due[0].entry.interest_component == Decimal("1200")

    async def test_nothing_due_after_tenure(self, session, company_id):
        """Periods past the last installment have nothing due."""
        employee_id = uuid4()
        await _create_loan(session, company_id, employee_id)

        assert await LoanService(session).scheduled_deductions(employee_id, 4, 2025) == []


class TestRecordLoanDeduction:
    """Ledger writes and loan balance updates."""

    async def test_first_deduction(self, session, company_id):
        """The first EMI splits into interest on the full balance and principal."""
        loan = await _create_loan(session, company_id, uuid4())

        deduction = await _deduct(session, loan, 4, 2024)
        await session.commit()

        assert deduction.deduction_amount == Decimal("10662")
        assert deduction.principal_component == Decimal("9462")
        assert deduction.interest_component == Decimal("1200")
        assert deduction.outstanding_balance == Decimal("110538")

        loan = await LoanService(session).get_loan(loan.loan_id)
        assert loan.outstanding_principal == Decimal("110538")
        assert loan.total_interest_paid == Decimal("1200")
        assert loan.total_amount_paid == Decimal("10662")

    async def test_duplicate_period_rejected(self, session, company_id):
        """A second deduction for the same period is rejected."""
        loan = await _create_loan(session, company_id, uuid4())
        await _deduct(session, loan, 4, 2024)
        await session.commit()

        with pytest.raises(ValidationError):
            await _deduct(session, loan, 4, 2024)

    async def test_outside_tenure_rejected(self, session, company_id):
        """Periods before the first installment have no schedule entry."""
        loan = await _create_loan(session, company_id, uuid4())

        with pytest.raises(ValidationError):
            await _deduct(session, loan, 3, 2024)

    async def test_full_repayment_closes_loan(self, session, company_id):
        """Paying the last installment closes the loan at zero."""
        loan = await _create_loan(
            session, company_id, uuid4(), principal_amount=Decimal("3000"), interest_rate=Decimal("0"), tenure_months=3
        )

        for month in (4, 5, 6):
            await _deduct(session, loan, month, 2024)
        await session.commit()

        loan = await LoanService(session).get_loan(loan.loan_id)
        assert loan.status == "closed"
        assert loan.outstanding_principal == Decimal("0")
        assert loan.total_amount_paid == Decimal("3000")
        assert len(await LoanService(session).list_deductions(loan.loan_id)) == 3

    async def test_deferred_loan_repaid_in_full(self, session, company_id):
        """A deferred loan pays every installment and ends closed at zero."""
        loan = await _create_loan(
            session,
            company_id,
            uuid4(),
            start_date=date(2024, 1, 15),
            deduction_start_month=4,
            deduction_start_year=2024,
        )

        for month, year in _periods(4, 2024, 12):
            await _deduct(session, loan, month, year)
        await session.commit()

        service = LoanService(session)
        loan = await service.get_loan(loan.loan_id)
        assert loan.status == "closed"
        assert loan.outstanding_principal == Decimal("0")
        deductions = await service.list_deductions(loan.loan_id)
        assert len(deductions) == 12
        assert sum(d.principal_component for d in deductions) == Decimal("120000")

        with pytest.raises(ValidationError):
            await _deduct(session, loan, 4, 2025)

    async def test_closed_loan_rejected(self, session, company_id):
        """Closed loans take no further deductions."""
        loan = await _create_loan(session, company_id, uuid4())
        await LoanService(session).close_loan(loan.loan_id, remarks="Settled in cash")
        await session.commit()

        with pytest.raises(ValidationError):
            await _deduct(session, loan, 4, 2024)

    async def test_closing_twice(self, session, company_id):
        """A closed loan cannot be closed again."""
        loan = await _create_loan(session, company_id, uuid4())
        service = LoanService(session)
        await service.close_loan(loan.loan_id)

        with pytest.raises(ValidationError):
            await service.close_loan(loan.loan_id)
