"""Pure payroll calculations: money, attendance, tax and loan amortization."""

from payslip_engine.calculators.attendance import aggregate_attendance
from payslip_engine.calculators.loan_calculator import LoanCalculator
from payslip_engine.calculators.tax_calculator import TaxCalculator

__all__ = [
    "aggregate_attendance",
    "LoanCalculator",
    "TaxCalculator",
]
