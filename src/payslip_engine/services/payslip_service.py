"""Payslip composition, status progression and read paths."""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Mapping
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from payslip_engine.calculators.money import ZERO, round_cents, round_ratio
from payslip_engine.calculators.tax_calculator import MONTHS_PER_YEAR, TaxCalculator
from payslip_engine.calculators.types import (
    AdHocCollection,
    AttendanceSummary,
    PayslipStatus,
    ResolvedSalary,
    ScheduledLoanDeduction,
    TaxResult,
)
from payslip_engine.config import get_settings
from payslip_engine.errors import NotFoundError
from payslip_engine.models import Payslip, TaxConfiguration
from payslip_engine.schemas import TaxPolicy
from payslip_engine.services.adhoc_service import AdHocService
from payslip_engine.services.loan_service import LoanService
from payslip_engine.services.salary_structure_service import SalaryStructureService
from payslip_engine.services.sources import AttendanceSource, SqlAttendanceSource
from payslip_engine.services.state_machine import PayslipStateMachine
from payslip_engine.services.tax_configuration_service import TaxConfigurationService
from payslip_engine.services.tax_declaration_service import TaxDeclarationService

logger = logging.getLogger(__name__)

# Deduction breakdown labels for amounts computed by the engine
INCOME_TAX_LABEL = "Income Tax"
LOCAL_TAX_LABEL = "Local Tax"
SOCIAL_SECURITY_LABEL = "Social Security (Employee)"
HEALTH_INSURANCE_LABEL = "Health Insurance (Employee)"
LOAN_DEDUCTIONS_LABEL = "Loan Deductions"

# Every status counts towards year-to-date figures
YTD_STATUSES = tuple(status.value for status in PayslipStatus)


def generate_payslip_number(
    company_id: UUID,
    employee_id: UUID,
    month: int,
    year: int,
    prefix: str | None = None,
) -> str:
    """Deterministic number, e.g. ``PSL-1A2B3C4D-5E6F7A8B-202404``."""
    if prefix is None:
        prefix = get_settings().payslip_number_prefix
    company_part = str(company_id)[:8].upper()
    employee_part = str(employee_id)[:8].upper()
    return f"{prefix}-{company_part}-{employee_part}-{year}{month:02d}"


def _to_json(amounts: Mapping[str, Decimal]) -> dict[str, str]:
    return {name: str(amount) for name, amount in amounts.items()}


@dataclass
class YearToDate:
    gross_salary: Decimal = ZERO
    deductions: Decimal = ZERO
    net_salary: Decimal = ZERO
    tax_deducted: Decimal = ZERO


@dataclass
class PayslipFigures:
    """Everything computed for one payslip before it is persisted."""

    salary: ResolvedSalary
    attendance: AttendanceSummary
    pro_rata_factor: Decimal
    loss_of_pay_days: int
    loss_of_pay_amount: Decimal
    ad_hoc: AdHocCollection
    final_gross_salary: Decimal
    taxes: TaxResult
    loans: list[ScheduledLoanDeduction]
    deductions_breakdown: dict[str, Decimal]

    @property
    def loan_deduction_total(self) -> Decimal:
        return sum((loan.entry.emi_amount for loan in self.loans), ZERO)

    @property
    def loan_deduction_breakdown(self) -> dict[str, Decimal]:
        breakdown: dict[str, Decimal] = {}
        for loan in self.loans:
            breakdown[loan.loan_type] = breakdown.get(loan.loan_type, ZERO) + loan.entry.emi_amount
        return breakdown

    @property
    def total_deductions(self) -> Decimal:
        return sum(self.deductions_breakdown.values(), ZERO)

    @property
    def net_salary(self) -> Decimal:
        return self.final_gross_salary - self.total_deductions


class PayslipService:
    """Composes one employee's payslip for a payroll period.

    Pipeline:
    1. Resolve the salary structure into base earnings and deductions
    2. Aggregate attendance into a pro-rata factor and loss of pay
    3. Collect approved ad hoc items
    4. Compute taxes on the final gross salary, with verified declarations
    5. Add EMIs due on active loans
    6. Persist the payslip with YTD figures, then consume the ad hoc
       items and record the loan deductions

    Nothing is committed here: the caller's transaction makes the payslip
    and its side effects land together.
    """

    def __init__(
        self,
        session: AsyncSession,
        attendance_source: AttendanceSource | None = None,
        payslip_number_prefix: str | None = None,
    ):
        self.session = session
        self.attendance_source = attendance_source or SqlAttendanceSource(session)
        self.payslip_number_prefix = payslip_number_prefix
        self.structures = SalaryStructureService(session)
        self.ad_hoc = AdHocService(session)
        self.loans = LoanService(session)
        self.declarations = TaxDeclarationService(session)

    async def compute(
        self,
        employee_id: UUID,
        company_id: UUID,
        month: int,
        year: int,
        policy: TaxPolicy,
    ) -> PayslipFigures:
        """Run the calculation pipeline without writing anything."""
        period_end = date(year, month, calendar.monthrange(year, month)[1])
        salary = await self.structures.resolve(employee_id, company_id, period_end)
        gross_salary = salary.gross_salary

        attendance = await self.attendance_source.get_monthly_aggregate(employee_id, company_id, month, year)
        factor = round_ratio(attendance.pro_rata_factor)
        loss_of_pay_days = attendance.loss_of_pay_days
        loss_of_pay_amount = ZERO
        if loss_of_pay_days > 0 and attendance.working_days > 0:
            loss_of_pay_amount = round_cents(gross_salary / attendance.working_days * loss_of_pay_days)

        ad_hoc = await self.ad_hoc.collect_approved(employee_id, month, year)
        final_gross = round_cents(gross_salary * factor - loss_of_pay_amount + ad_hoc.total)

        declared = await self.declarations.verified_exemptions(employee_id, month, year)
        taxes = TaxCalculator.calculate_all_taxes(
            gross_salary=final_gross,
            basic_salary=salary.basic * factor,
            housing_allowance_received=salary.housing_allowance * factor,
            travel_allowance_received=salary.travel_allowance * factor,
            policy=policy,
            annual_taxable_income=final_gross * MONTHS_PER_YEAR,
            rent_paid=declared.rent_paid,
            actual_travel_expense=declared.actual_travel_expense,
            other_exemptions=declared.other_exemptions,
        )

        loans = await self.loans.scheduled_deductions(employee_id, month, year)

        deductions = dict(salary.deductions_breakdown)
        deductions[INCOME_TAX_LABEL] = taxes.income_tax
        deductions[LOCAL_TAX_LABEL] = taxes.local_tax
        if taxes.social_security.employee > 0:
            deductions[SOCIAL_SECURITY_LABEL] = taxes.social_security.employee
        if taxes.health_insurance.employee > 0:
            deductions[HEALTH_INSURANCE_LABEL] = taxes.health_insurance.employee

        figures = PayslipFigures(
            salary=salary,
            attendance=attendance,
            pro_rata_factor=factor,
            loss_of_pay_days=loss_of_pay_days,
            loss_of_pay_amount=loss_of_pay_amount,
            ad_hoc=ad_hoc,
            final_gross_salary=final_gross,
            taxes=taxes,
            loans=loans,
            deductions_breakdown=deductions,
        )
        if figures.loan_deduction_total > 0:
            deductions[LOAN_DEDUCTIONS_LABEL] = figures.loan_deduction_total
        return figures

    async def generate_payslip_for_employee(
        self,
        employee_id: UUID,
        payroll_run_id: UUID,
        company_id: UUID,
        month: int,
        year: int,
        tax_config: TaxConfiguration | TaxPolicy | None = None,
    ) -> Payslip:
        """Compute, persist and apply side effects for one payslip."""
        if tax_config is None:
            tax_config = await TaxConfigurationService(self.session).get_for_period(company_id, month, year)
        policy = tax_config if isinstance(tax_config, TaxPolicy) else TaxConfigurationService.to_policy(tax_config)

        figures = await self.compute(employee_id, company_id, month, year, policy)
        ytd = await self.year_to_date(employee_id, month, year)

        taxes = figures.taxes
        total_deductions = figures.total_deductions
        net_salary = figures.net_salary

        payslip = Payslip(
            payslip_number=generate_payslip_number(
                company_id, employee_id, month, year, self.payslip_number_prefix
            ),
            employee_id=employee_id,
            company_id=company_id,
            payroll_run_id=payroll_run_id,
            month=month,
            year=year,
            status=PayslipStatus.GENERATED.value,
            ctc=figures.salary.ctc,
            gross_salary=figures.final_gross_salary,
            total_earnings=figures.final_gross_salary,
            total_deductions=total_deductions,
            net_salary=net_salary,
            earnings_breakdown=_to_json(figures.salary.earnings_breakdown),
            deductions_breakdown=_to_json(figures.deductions_breakdown),
            income_tax_amount=taxes.income_tax,
            local_tax_amount=taxes.local_tax,
            social_security_employee_amount=taxes.social_security.employee,
            social_security_employer_amount=taxes.social_security.employer,
            health_insurance_employee_amount=taxes.health_insurance.employee,
            health_insurance_employer_amount=taxes.health_insurance.employer,
            taxable_income=round_cents(taxes.taxable_income),
            tax_exemptions=taxes.exemptions.to_json(),
            working_days=figures.attendance.working_days,
            present_days=figures.attendance.present_days,
            absent_days=figures.attendance.absent_days,
            leave_days=figures.attendance.leave_days,
            pro_rata_factor=figures.pro_rata_factor,
            loss_of_pay_days=figures.loss_of_pay_days,
            loss_of_pay_amount=figures.loss_of_pay_amount,
            variable_pay_total=figures.ad_hoc.variable_pay_total,
            arrears_total=figures.ad_hoc.arrears_total,
            reimbursement_total=figures.ad_hoc.reimbursement_total,
            loan_deduction_total=figures.loan_deduction_total,
            variable_pay_breakdown=_to_json(figures.ad_hoc.variable_pay_breakdown),
            arrears_breakdown=_to_json(figures.ad_hoc.arrears_breakdown),
            reimbursement_breakdown=_to_json(figures.ad_hoc.reimbursement_breakdown),
            loan_deduction_breakdown=_to_json(figures.loan_deduction_breakdown),
            ytd_gross_salary=ytd.gross_salary + figures.final_gross_salary,
            ytd_deductions=ytd.deductions + total_deductions,
            ytd_net_salary=ytd.net_salary + net_salary,
            ytd_tax_deducted=ytd.tax_deducted + taxes.income_tax,
        )
        self.session.add(payslip)
        await self.session.flush()

        await self.ad_hoc.mark_processed(figures.ad_hoc, payroll_run_id, payslip.payslip_id)
        for loan in figures.loans:
            await self.loans.record_loan_deduction(
                loan_id=loan.loan_id,
                employee_id=employee_id,
                company_id=company_id,
                payroll_run_id=payroll_run_id,
                payslip_id=payslip.payslip_id,
                month=month,
                year=year,
            )

        logger.debug("Generated payslip %s for employee %s", payslip.payslip_number, employee_id)
        return payslip

    async def year_to_date(self, employee_id: UUID, month: int, year: int) -> YearToDate:
        """Totals of the employee's earlier payslips in the same calendar year."""
        result = await self.session.execute(
            select(
                func.coalesce(func.sum(Payslip.gross_salary), 0),
                func.coalesce(func.sum(Payslip.total_deductions), 0),
                func.coalesce(func.sum(Payslip.net_salary), 0),
                func.coalesce(func.sum(Payslip.income_tax_amount), 0),
            ).where(
                Payslip.employee_id == employee_id,
                Payslip.year == year,
                Payslip.month < month,
                Payslip.status.in_(YTD_STATUSES),
            )
        )
        gross, deductions, net, tax = result.one()
        return YearToDate(
            gross_salary=round_cents(gross),
            deductions=round_cents(deductions),
            net_salary=round_cents(net),
            tax_deducted=round_cents(tax),
        )

    # ------------------------------------------------------------------
    # Status and read paths
    # ------------------------------------------------------------------

    async def get_payslip(self, payslip_id: UUID) -> Payslip:
        payslip = await self.session.get(Payslip, payslip_id)
        if payslip is None:
            raise NotFoundError("Payslip", payslip_id)
        return payslip

    async def find_for_run(self, employee_id: UUID, payroll_run_id: UUID) -> Payslip | None:
        result = await self.session.execute(
            select(Payslip).where(
                Payslip.employee_id == employee_id,
                Payslip.payroll_run_id == payroll_run_id,
            )
        )
        return result.scalar_one_or_none()

    async def advance_status(self, payslip_id: UUID, to_status: PayslipStatus | str) -> Payslip:
        """Move a payslip one step along generated → approved → sent → downloaded."""
        payslip = await self.get_payslip(payslip_id)
        to_status = PayslipStatus(to_status)
        PayslipStateMachine.validate_transition(payslip.status, to_status)
        payslip.status = to_status.value
        await self.session.flush()
        return payslip

    async def list_by_employee(
        self,
        employee_id: UUID,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[Payslip], int]:
        where = Payslip.employee_id == employee_id
        stmt = select(Payslip).where(where).order_by(Payslip.year.desc(), Payslip.month.desc())
        return await self._paginate(stmt, where, page, limit)

    async def list_by_run(
        self,
        payroll_run_id: UUID,
        page: int = 1,
        limit: int = 100,
    ) -> tuple[list[Payslip], int]:
        where = Payslip.payroll_run_id == payroll_run_id
        stmt = select(Payslip).where(where).order_by(Payslip.payslip_number)
        return await self._paginate(stmt, where, page, limit)

    async def _paginate(self, stmt, where, page: int, limit: int) -> tuple[list[Payslip], int]:
        page = max(page, 1)
        rows = await self.session.execute(stmt.limit(limit).offset((page - 1) * limit))
        count = await self.session.execute(select(func.count()).select_from(Payslip).where(where))
        return list(rows.scalars().all()), count.scalar_one()
