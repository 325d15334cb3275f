"""SQLAlchemy ORM models for the payslip engine."""

from payslip_engine.models.adhoc import Arrears, Reimbursement, VariablePay
from payslip_engine.models.base import Base, JSONType, TimestampMixin
from payslip_engine.models.directory import AttendanceRecord, Employee, LeaveRequest
from payslip_engine.models.loan import Loan, LoanDeduction
from payslip_engine.models.payroll import Payslip, PayrollRun
from payslip_engine.models.salary import EmployeeSalaryStructure, PayrollComponent, SalaryStructure
from payslip_engine.models.tax import EmployeeTaxDeclaration, TaxConfiguration

__all__ = [
    "Base",
    "JSONType",
    "TimestampMixin",
    "Employee",
    "AttendanceRecord",
    "LeaveRequest",
    "SalaryStructure",
    "PayrollComponent",
    "EmployeeSalaryStructure",
    "TaxConfiguration",
    "EmployeeTaxDeclaration",
    "PayrollRun",
    "Payslip",
    "Loan",
    "LoanDeduction",
    "VariablePay",
    "Arrears",
    "Reimbursement",
]
