"""Loan amortization: EMI and reducing-balance repayment schedules."""

from __future__ import annotations

import calendar
from datetime import date
from decimal import Decimal

from payslip_engine.calculators.money import ZERO, round_currency, to_decimal
from payslip_engine.calculators.types import ScheduleEntry

MONTHLY_RATE_DIVISOR = Decimal("1200")


def add_months(start: date, months: int) -> date:
    """Shift a date by whole months, clamping to the end of shorter months."""
    month_index = start.month - 1 + months
    year = start.year + month_index // 12
    month = month_index % 12 + 1
    day = min(start.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def elapsed_month_index(month: int, year: int, start_date: date) -> int:
    """Whole months from ``start_date``'s month to a period.

    Schedule entry ``k`` is paid ``k`` months after the date the schedule
    was generated from, so the following month is index 1 and the start
    month itself is 0.
    """
    return (year - start_date.year) * 12 + (month - start_date.month)


class LoanCalculator:
    """Reducing-balance annuity maths.

    ``EMI = P * r * (1 + r)^n / ((1 + r)^n - 1)`` with ``r = annual_rate / 1200``.
    A zero rate degenerates to ``P / n``. EMI and every schedule component
    are rounded to whole currency units; the last installment absorbs the
    residual so principal components sum to the principal exactly and the
    final outstanding balance is zero.
    """

    @staticmethod
    def calculate_emi(
        principal: Decimal,
        annual_rate_percent: Decimal,
        tenure_months: int,
    ) -> Decimal:
        principal = to_decimal(principal)
        annual_rate_percent = to_decimal(annual_rate_percent)
        if tenure_months <= 0 or annual_rate_percent < 0 or principal <= 0:
            return ZERO

        monthly_rate = annual_rate_percent / MONTHLY_RATE_DIVISOR
        if monthly_rate == 0:
            return round_currency(principal / tenure_months)

        growth = (1 + monthly_rate) ** tenure_months
        emi = principal * monthly_rate * growth / (growth - 1)
        return round_currency(emi)

    @classmethod
    def generate_repayment_schedule(
        cls,
        principal: Decimal,
        annual_rate_percent: Decimal,
        tenure_months: int,
        start_date: date,
    ) -> list[ScheduleEntry]:
        principal = to_decimal(principal)
        emi = cls.calculate_emi(principal, annual_rate_percent, tenure_months)
        if emi <= 0:
            return []

        monthly_rate = to_decimal(annual_rate_percent) / MONTHLY_RATE_DIVISOR
        outstanding = principal
        schedule: list[ScheduleEntry] = []

        for month in range(1, tenure_months + 1):
            interest = round_currency(outstanding * monthly_rate)
            principal_component = emi - interest

            if month == tenure_months or principal_component > outstanding:
                principal_component = outstanding
            installment = principal_component + interest

            outstanding = max(ZERO, outstanding - principal_component)
            schedule.append(
                ScheduleEntry(
                    month=month,
                    payment_date=add_months(start_date, month),
                    emi_amount=installment,
                    principal_component=principal_component,
                    interest_component=interest,
                    outstanding_balance=outstanding,
                )
            )

        return schedule
