"""Loan creation, scheduled deductions and the deduction ledger."""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from payslip_engine.calculators.loan_calculator import (
    LoanCalculator,
    add_months,
    elapsed_month_index,
)
from payslip_engine.calculators.money import ZERO, to_decimal
from payslip_engine.calculators.types import (
    LoanStatus,
    LoanType,
    ScheduledLoanDeduction,
    ScheduleEntry,
)
from payslip_engine.database import acquire_loan_lock
from payslip_engine.errors import NotFoundError, ValidationError
from payslip_engine.models import Loan, LoanDeduction

logger = logging.getLogger(__name__)


class LoanService:
    """Service for employee loans repaid through payroll.

    The repayment schedule is fixed when the loan is created. Each payroll
    period takes the schedule entry for the number of months elapsed since
    the deduction start and records it once in the deduction ledger. The
    first entry falls due in the deduction start period, so a deferred
    loan still runs its full tenure and ends at zero.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create_loan(
        self,
        employee_id: UUID,
        company_id: UUID,
        loan_type: str,
        principal_amount: Decimal,
        interest_rate: Decimal,
        tenure_months: int,
        start_date: date,
        deduction_start_month: int | None = None,
        deduction_start_year: int | None = None,
        name: str | None = None,
        remarks: str | None = None,
    ) -> Loan:
        principal_amount = to_decimal(principal_amount)
        interest_rate = to_decimal(interest_rate)
        if principal_amount <= 0:
            raise ValidationError("Loan principal must be positive")
        if tenure_months <= 0:
            raise ValidationError("Loan tenure must be at least one month")
        if interest_rate < 0:
            raise ValidationError("Loan interest rate cannot be negative")
        try:
            loan_type = LoanType(loan_type).value
        except ValueError as exc:
            raise ValidationError(f"Unknown loan type {loan_type!r}") from exc

        # Deductions start the month after disbursement unless told otherwise
        if deduction_start_month is None or deduction_start_year is None:
            first_deduction = add_months(start_date, 1)
            deduction_start_month = first_deduction.month
            deduction_start_year = first_deduction.year
        if not 1 <= deduction_start_month <= 12:
            raise ValidationError("deduction_start_month must be between 1 and 12")
        deferral = elapsed_month_index(deduction_start_month, deduction_start_year, start_date)
        if deferral < 0:
            raise ValidationError("Loan deductions cannot start before the disbursement month")

        emi_amount = LoanCalculator.calculate_emi(principal_amount, interest_rate, tenure_months)
        if emi_amount <= 0:
            raise ValidationError(f"Loan of {principal_amount} over {tenure_months} months has no repayable EMI")

        # First installment falls due in the deduction start period
        schedule_anchor = add_months(start_date, deferral - 1)
        schedule = LoanCalculator.generate_repayment_schedule(
            principal_amount, interest_rate, tenure_months, schedule_anchor
        )
        loan = Loan(
            employee_id=employee_id,
            company_id=company_id,
            loan_type=loan_type,
            name=name or loan_type.replace("_", " ").title(),
            principal_amount=principal_amount,
            interest_rate=interest_rate,
            tenure_months=tenure_months,
            emi_amount=emi_amount,
            start_date=start_date,
            end_date=schedule[-1].payment_date,
            deduction_start_month=deduction_start_month,
            deduction_start_year=deduction_start_year,
            status=LoanStatus.ACTIVE.value,
            outstanding_principal=principal_amount,
            total_interest_paid=ZERO,
            total_amount_paid=ZERO,
            repayment_schedule=[entry.to_json() for entry in schedule],
            remarks=remarks,
        )
        self.session.add(loan)
        await self.session.flush()
        return loan

    async def get_loan(self, loan_id: UUID) -> Loan:
        loan = await self.session.get(Loan, loan_id)
        if loan is None:
            raise NotFoundError("Loan", loan_id)
        return loan

    async def list_active_loans(self, employee_id: UUID) -> list[Loan]:
        result = await self.session.execute(
            select(Loan)
            .where(Loan.employee_id == employee_id, Loan.status == LoanStatus.ACTIVE.value)
            .order_by(Loan.start_date.desc())
        )
        return list(result.scalars().all())

    async def list_deductions(self, loan_id: UUID) -> list[LoanDeduction]:
        result = await self.session.execute(
            select(LoanDeduction)
            .where(LoanDeduction.loan_id == loan_id)
            .order_by(LoanDeduction.year, LoanDeduction.month)
        )
        return list(result.scalars().all())

    @staticmethod
    def schedule_entry_for(loan: Loan, month: int, year: int) -> ScheduleEntry | None:
        """The schedule entry due in a period, or None outside the schedule."""
        schedule = loan.repayment_schedule or []
        first_due = date(loan.deduction_start_year, loan.deduction_start_month, 1)
        index = elapsed_month_index(month, year, first_due) + 1
        if index < 1 or index > len(schedule):
            return None
        return ScheduleEntry.from_json(schedule[index - 1])

    async def scheduled_deductions(
        self,
        employee_id: UUID,
        month: int,
        year: int,
    ) -> list[ScheduledLoanDeduction]:
        """EMIs due this period on active loans whose deduction start has arrived."""
        due: list[ScheduledLoanDeduction] = []
        for loan in await self.list_active_loans(employee_id):
            entry = self.schedule_entry_for(loan, month, year)
            if entry is not None:
                due.append(ScheduledLoanDeduction(loan_id=loan.loan_id, loan_type=loan.loan_type, entry=entry))
        return due

    async def record_loan_deduction(
        self,
        loan_id: UUID,
        employee_id: UUID,
        company_id: UUID,
        payroll_run_id: UUID,
        payslip_id: UUID,
        month: int,
        year: int,
    ) -> LoanDeduction:
        """Take one scheduled EMI from a loan.

        Updates the loan and inserts the ledger row in the caller's
        transaction, so both land or neither does. The unique
        (loan, month, year) constraint backs up the duplicate check.
        """
        await acquire_loan_lock(self.session, loan_id)

        loan = await self.get_loan(loan_id)
        # Re-read so a concurrent deduction committed before the lock is visible
        await self.session.refresh(loan)
        if loan.status != LoanStatus.ACTIVE.value:
            raise ValidationError(f"Cannot record deduction for {loan.status} loan {loan_id}")

        existing = await self.session.execute(
            select(LoanDeduction.loan_deduction_id).where(
                LoanDeduction.loan_id == loan_id,
                LoanDeduction.month == month,
                LoanDeduction.year == year,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ValidationError(f"Deduction already recorded for loan {loan_id} in {year}-{month:02d}")

        entry = self.schedule_entry_for(loan, month, year)
        if entry is None:
            raise ValidationError(f"Period {year}-{month:02d} is outside the tenure of loan {loan_id}")

        outstanding = max(ZERO, loan.outstanding_principal - entry.principal_component)
        deduction = LoanDeduction(
            loan_id=loan_id,
            employee_id=employee_id,
            company_id=company_id,
            payroll_run_id=payroll_run_id,
            payslip_id=payslip_id,
            month=month,
            year=year,
            deduction_amount=entry.emi_amount,
            principal_component=entry.principal_component,
            interest_component=entry.interest_component,
            outstanding_balance=outstanding,
            deduction_date=date(year, month, 1),
        )

        loan.outstanding_principal = outstanding
        loan.total_amount_paid = loan.total_amount_paid + entry.emi_amount
        loan.total_interest_paid = loan.total_interest_paid + entry.interest_component
        if outstanding <= 0:
            loan.status = LoanStatus.CLOSED.value
        self.session.add(deduction)
        try:
            await self.session.flush()
        except IntegrityError as exc:
            raise ValidationError(
                f"Deduction already recorded for loan {loan_id} in {year}-{month:02d}"
            ) from exc

        if loan.status == LoanStatus.CLOSED.value:
            logger.info("Loan %s fully repaid and closed", loan_id)
        return deduction

    async def close_loan(self, loan_id: UUID, remarks: str | None = None) -> Loan:
        loan = await self.get_loan(loan_id)
        if loan.status == LoanStatus.CLOSED.value:
            raise ValidationError(f"Loan {loan_id} is already closed")
        loan.status = LoanStatus.CLOSED.value
        if remarks:
            loan.remarks = remarks
        await self.session.flush()
        logger.info("Loan %s closed manually", loan_id)
        return loan
