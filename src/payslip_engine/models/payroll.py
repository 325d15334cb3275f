"""Payroll run and payslip models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
)
from sqlalchemy.orm import Mapped, mapped_column

from payslip_engine.errors import ValidationError
from payslip_engine.models.base import Base, TimestampMixin


class PayrollRun(Base, TimestampMixin):
    """Company-wide payroll batch for one month."""

    __tablename__ = "payroll_run"

    payroll_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    payroll_month: Mapped[int] = mapped_column(Integer, nullable=False)
    payroll_year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")

    total_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    processed_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    failed_employees: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    total_gross_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_net_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    processed_by: Mapped[str | None] = mapped_column(String, nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    locked_by: Mapped[str | None] = mapped_column(String, nullable=True)
    locked_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "company_id",
            "payroll_month",
            "payroll_year",
            name="payroll_run_company_period_unique",
        ),
        CheckConstraint(
            "status IN ('draft', 'processing', 'completed', 'failed', 'locked')",
            name="payroll_run_status_check",
        ),
        CheckConstraint("payroll_month BETWEEN 1 AND 12", name="payroll_run_month_check"),
    )


class Payslip(Base, TimestampMixin):
    """Immutable financial snapshot of one employee's pay for one run.

    Breakdown maps are stored as ``{name: "amount"}`` with string amounts so
    the JSON column round-trips Decimal values exactly.
    """

    __tablename__ = "payslip"

    payslip_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payslip_number: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id"),
        nullable=False,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="generated")

    # Totals
    ctc: Mapped[Decimal] = mapped_column(nullable=False)
    gross_salary: Mapped[Decimal] = mapped_column(nullable=False)
    total_earnings: Mapped[Decimal] = mapped_column(nullable=False)
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False)
    net_salary: Mapped[Decimal] = mapped_column(nullable=False)
    earnings_breakdown: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    deductions_breakdown: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    # Tax and statutory
    income_tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    local_tax_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    social_security_employee_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    social_security_employer_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    health_insurance_employee_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    health_insurance_employer_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    taxable_income: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_exemptions: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    # Attendance
    working_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    present_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    absent_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    leave_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    pro_rata_factor: Mapped[Decimal] = mapped_column(Numeric(9, 6), nullable=False, default=Decimal("1"))
    loss_of_pay_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    loss_of_pay_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Ad hoc items and loans
    variable_pay_total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    arrears_total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    reimbursement_total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    loan_deduction_total: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    variable_pay_breakdown: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    arrears_breakdown: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    reimbursement_breakdown: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    loan_deduction_breakdown: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    # Year to date, including this payslip
    ytd_gross_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    ytd_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    ytd_net_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    ytd_tax_deducted: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    __table_args__ = (
        UniqueConstraint("employee_id", "payroll_run_id", name="payslip_employee_run_unique"),
        CheckConstraint(
            "status IN ('generated', 'approved', 'sent', 'downloaded')",
            name="payslip_status_check",
        ),
        Index("payslip_employee_period_idx", "employee_id", "year", "month"),
    )

    def breakdown(self, name: str) -> dict[str, Decimal]:
        """Return a stored breakdown map with Decimal amounts."""
        raw: dict[str, Any] = getattr(self, f"{name}_breakdown") or {}
        return {key: Decimal(str(value)) for key, value in raw.items()}


# Columns that may change once a row is persisted
PAYSLIP_MUTABLE_COLUMNS = frozenset({"status", "updated_at"})


@event.listens_for(Payslip, "before_update")
def _guard_payslip_immutability(mapper: Any, connection: Any, target: Payslip) -> None:
    changed = {
        attr.key
        for attr in inspect(target).attrs
        if attr.history.has_changes()
    }
    illegal = changed - PAYSLIP_MUTABLE_COLUMNS
    if illegal:
        raise ValidationError(
            f"Payslip {target.payslip_id} is immutable; attempted to change {sorted(illegal)}"
        )


@event.listens_for(PayrollRun, "before_update")
def _guard_locked_run(mapper: Any, connection: Any, target: PayrollRun) -> None:
    history = inspect(target).attrs.status.history
    previous = history.deleted[0] if history.deleted else target.status
    if previous == "locked":
        raise ValidationError(f"Payroll run {target.payroll_run_id} is locked")
