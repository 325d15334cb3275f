"""Payslip engine services."""

from payslip_engine.services.adhoc_service import AdHocService
from payslip_engine.services.loan_service import LoanService
from payslip_engine.services.payroll_run_service import PayrollRunService
from payslip_engine.services.payslip_service import PayslipService
from payslip_engine.services.salary_structure_service import SalaryStructureService
from payslip_engine.services.sources import (
    AttendanceSource,
    EmployeeDirectory,
    SqlAttendanceSource,
    SqlEmployeeDirectory,
)
from payslip_engine.services.state_machine import (
    PayrollRunStateMachine,
    PayrollRunStatus,
    PayslipStateMachine,
)
from payslip_engine.services.tax_configuration_service import TaxConfigurationService

__all__ = [
    "AdHocService",
    "AttendanceSource",
    "EmployeeDirectory",
    "LoanService",
    "PayrollRunService",
    "PayrollRunStateMachine",
    "PayrollRunStatus",
    "PayslipService",
    "PayslipStateMachine",
    "SalaryStructureService",
    "SqlAttendanceSource",
    "SqlEmployeeDirectory",
    "TaxConfigurationService",
]
