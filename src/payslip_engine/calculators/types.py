"""Type definitions for the payslip calculation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

if TYPE_CHECKING:
    from payslip_engine.models import Payslip


# ===== Compensation =====


class ComponentType(str, Enum):
    """Whether a salary component adds to or subtracts from pay."""

    EARNING = "earning"
    DEDUCTION = "deduction"


class ComponentCategory(str, Enum):
    """Fixed set of salary component categories."""

    BASIC = "basic"
    HRA = "hra"
    LTA = "lta"
    SPECIAL_ALLOWANCE = "special_allowance"
    TRANSPORT_ALLOWANCE = "transport_allowance"
    MEDICAL_ALLOWANCE = "medical_allowance"
    BONUS = "bonus"
    OVERTIME = "overtime"
    INCENTIVE = "incentive"
    TDS = "tds"
    PROFESSIONAL_TAX = "professional_tax"
    EPF = "epf"
    ESI = "esi"
    LOAN = "loan"
    ADVANCE = "advance"
    OTHER = "other"


class PercentageBase(str, Enum):
    """What a percentage component is a percentage of."""

    CTC = "ctc"
    BASIC = "basic"


# ===== Lifecycles =====


class PayslipStatus(str, Enum):
    """Payslip status values."""

    GENERATED = "generated"
    APPROVED = "approved"
    SENT = "sent"
    DOWNLOADED = "downloaded"


class LoanStatus(str, Enum):
    """Loan status values."""

    ACTIVE = "active"
    CLOSED = "closed"
    CANCELLED = "cancelled"
    SUSPENDED = "suspended"


class LoanType(str, Enum):
    """Loan products."""

    PERSONAL_LOAN = "personal_loan"
    ADVANCE_SALARY = "advance_salary"
    HOME_LOAN = "home_loan"
    VEHICLE_LOAN = "vehicle_loan"
    EDUCATION_LOAN = "education_loan"
    MEDICAL_LOAN = "medical_loan"
    OTHER = "other"


class AdHocKind(str, Enum):
    """The three kinds of one-off payslip items."""

    VARIABLE_PAY = "variable_pay"
    ARREARS = "arrears"
    REIMBURSEMENT = "reimbursement"


class AdHocStatus(str, Enum):
    """Ad hoc item status values."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    APPROVED = "approved"
    PROCESSED = "processed"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


class VariablePayType(str, Enum):
    BONUS = "bonus"
    INCENTIVE = "incentive"
    COMMISSION = "commission"
    OVERTIME = "overtime"
    SHIFT_ALLOWANCE = "shift_allowance"
    PERFORMANCE_BONUS = "performance_bonus"
    RETENTION_BONUS = "retention_bonus"
    OTHER = "other"


class ArrearsType(str, Enum):
    SALARY_REVISION = "salary_revision"
    PROMOTION = "promotion"
    RETROACTIVE_ADJUSTMENT = "retroactive_adjustment"
    CORRECTION = "correction"
    BONUS_ARREARS = "bonus_arrears"
    ALLOWANCE_ADJUSTMENT = "allowance_adjustment"
    OTHER = "other"


class ReimbursementType(str, Enum):
    TRAVEL = "travel"
    MEDICAL = "medical"
    MEAL = "meal"
    TELEPHONE = "telephone"
    INTERNET = "internet"
    FUEL = "fuel"
    CONVEYANCE = "conveyance"
    OTHER = "other"


class DeclarationStatus(str, Enum):
    """Tax declaration verification status."""

    DRAFT = "draft"
    SUBMITTED = "submitted"
    VERIFIED = "verified"
    PARTIAL = "partial"
    REJECTED = "rejected"


# ===== Calculation results =====


@dataclass
class ResolvedSalary:
    """Base monthly pay derived from the employee's active structure."""

    employee_id: UUID
    structure_id: UUID
    ctc: Decimal
    monthly_base: Decimal
    earnings_breakdown: dict[str, Decimal] = field(default_factory=dict)
    deductions_breakdown: dict[str, Decimal] = field(default_factory=dict)
    basic: Decimal = Decimal("0")
    housing_allowance: Decimal = Decimal("0")
    travel_allowance: Decimal = Decimal("0")

    @property
    def gross_salary(self) -> Decimal:
        return sum(self.earnings_breakdown.values(), Decimal("0"))

    @property
    def total_deductions(self) -> Decimal:
        return sum(self.deductions_breakdown.values(), Decimal("0"))


@dataclass(frozen=True)
class ContributionSplit:
    """Employee and employer share of a statutory contribution."""

    employee: Decimal = Decimal("0")
    employer: Decimal = Decimal("0")


@dataclass
class TaxExemptions:
    """Annual exemptions subtracted from taxable income."""

    housing_allowance_exemption: Decimal = Decimal("0")
    travel_allowance_exemption: Decimal = Decimal("0")
    standard_deduction: Decimal = Decimal("0")
    other_exemptions: dict[str, Decimal] = field(default_factory=dict)

    @property
    def total(self) -> Decimal:
        return (
            self.housing_allowance_exemption
            + self.travel_allowance_exemption
            + self.standard_deduction
            + sum(self.other_exemptions.values(), Decimal("0"))
        )

    def to_json(self) -> dict[str, str | dict[str, str]]:
        return {
            "housing_allowance_exemption": str(self.housing_allowance_exemption),
            "travel_allowance_exemption": str(self.travel_allowance_exemption),
            "standard_deduction": str(self.standard_deduction),
            "other_exemptions": {k: str(v) for k, v in self.other_exemptions.items()},
            "total_exemptions": str(self.total),
        }


@dataclass
class DeclaredExemptions:
    """Verified employee declarations, in the units the tax engine takes.

    Rent and travel expense are monthly; other exemptions are annual.
    """

    rent_paid: Decimal = Decimal("0")
    actual_travel_expense: Decimal = Decimal("0")
    other_exemptions: dict[str, Decimal] = field(default_factory=dict)


@dataclass
class TaxResult:
    """All monthly tax and statutory figures for one payslip."""

    income_tax: Decimal
    local_tax: Decimal
    social_security: ContributionSplit
    health_insurance: ContributionSplit
    taxable_income: Decimal
    exemptions: TaxExemptions

    @property
    def employee_statutory_total(self) -> Decimal:
        """Everything withheld from the employee's pay."""
        return (
            self.income_tax
            + self.local_tax
            + self.social_security.employee
            + self.health_insurance.employee
        )


@dataclass(frozen=True)
class ScheduleEntry:
    """One month of a loan repayment schedule."""

    month: int
    payment_date: date
    emi_amount: Decimal
    principal_component: Decimal
    interest_component: Decimal
    outstanding_balance: Decimal

    def to_json(self) -> dict[str, str | int]:
        return {
            "month": self.month,
            "payment_date": self.payment_date.isoformat(),
            "emi_amount": str(self.emi_amount),
            "principal_component": str(self.principal_component),
            "interest_component": str(self.interest_component),
            "outstanding_balance": str(self.outstanding_balance),
        }

    @classmethod
    def from_json(cls, data: dict) -> ScheduleEntry:
        return cls(
            month=int(data["month"]),
            payment_date=date.fromisoformat(data["payment_date"]),
            emi_amount=Decimal(str(data["emi_amount"])),
            principal_component=Decimal(str(data["principal_component"])),
            interest_component=Decimal(str(data["interest_component"])),
            outstanding_balance=Decimal(str(data["outstanding_balance"])),
        )


@dataclass(frozen=True)
class AttendanceSummary:
    """Day counts for one employee and month."""

    working_days: int
    present_days: int
    absent_days: int
    leave_days: int

    @property
    def pro_rata_factor(self) -> Decimal:
        if self.working_days <= 0:
            return Decimal("1")
        return Decimal(self.present_days) / Decimal(self.working_days)

    @property
    def loss_of_pay_days(self) -> int:
        return self.absent_days - self.leave_days


@dataclass
class AdHocCollection:
    """Approved ad hoc items selected for one payslip."""

    variable_pay_ids: list[UUID] = field(default_factory=list)
    arrears_ids: list[UUID] = field(default_factory=list)
    reimbursement_ids: list[UUID] = field(default_factory=list)
    variable_pay_breakdown: dict[str, Decimal] = field(default_factory=dict)
    arrears_breakdown: dict[str, Decimal] = field(default_factory=dict)
    reimbursement_breakdown: dict[str, Decimal] = field(default_factory=dict)

    @property
    def variable_pay_total(self) -> Decimal:
        return sum(self.variable_pay_breakdown.values(), Decimal("0"))

    @property
    def arrears_total(self) -> Decimal:
        return sum(self.arrears_breakdown.values(), Decimal("0"))

    @property
    def reimbursement_total(self) -> Decimal:
        return sum(self.reimbursement_breakdown.values(), Decimal("0"))

    @property
    def total(self) -> Decimal:
        return self.variable_pay_total + self.arrears_total + self.reimbursement_total

    @property
    def item_count(self) -> int:
        return len(self.variable_pay_ids) + len(self.arrears_ids) + len(self.reimbursement_ids)


@dataclass(frozen=True)
class ScheduledLoanDeduction:
    """EMI due on one loan for the payslip period."""

    loan_id: UUID
    loan_type: str
    entry: ScheduleEntry


@dataclass
class EmployeeOutcome:
    """Per-employee result of a run: a payslip or a failure reason."""

    employee_id: UUID
    payslip: Payslip | None = None
    reason: str | None = None

    @property
    def success(self) -> bool:
        return self.payslip is not None


@dataclass
class RunSummary:
    """Aggregate result of processing a payroll run."""

    payroll_run_id: UUID
    status: str
    total_employees: int = 0
    processed_employees: int = 0
    failed_employees: int = 0
    total_gross_salary: Decimal = Decimal("0")
    total_deductions: Decimal = Decimal("0")
    total_net_salary: Decimal = Decimal("0")
    failures: dict[UUID, str] = field(default_factory=dict)
