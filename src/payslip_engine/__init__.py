"""Payslip engine: salary resolution, tax, loans and payroll runs."""

__version__ = "1.0.0"
