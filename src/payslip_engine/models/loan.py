"""Employee loan and loan deduction ledger models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from payslip_engine.models.base import Base, JSONType, TimestampMixin


class Loan(Base, TimestampMixin):
    """Reducing-balance loan repaid through payroll deductions."""

    __tablename__ = "payroll_loan"

    loan_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    loan_type: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)

    principal_amount: Mapped[Decimal] = mapped_column(nullable=False)
    interest_rate: Mapped[Decimal] = mapped_column(Numeric(6, 3), nullable=False, default=Decimal("0"))
    tenure_months: Mapped[int] = mapped_column(Integer, nullable=False)
    emi_amount: Mapped[Decimal] = mapped_column(nullable=False)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    deduction_start_month: Mapped[int] = mapped_column(Integer, nullable=False)
    deduction_start_year: Mapped[int] = mapped_column(Integer, nullable=False)

    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    outstanding_principal: Mapped[Decimal] = mapped_column(nullable=False)
    total_interest_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    total_amount_paid: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    repayment_schedule: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    remarks: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        CheckConstraint(
            "status IN ('active', 'closed', 'cancelled', 'suspended')",
            name="payroll_loan_status_check",
        ),
        CheckConstraint("principal_amount > 0", name="payroll_loan_principal_check"),
        CheckConstraint("tenure_months > 0", name="payroll_loan_tenure_check"),
        CheckConstraint("outstanding_principal >= 0", name="payroll_loan_outstanding_check"),
        Index("payroll_loan_employee_status_idx", "employee_id", "status"),
    )


class LoanDeduction(Base):
    """Append-only ledger row: one EMI taken from one payslip."""

    __tablename__ = "payroll_loan_deduction"

    loan_deduction_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    loan_id: Mapped[UUID] = mapped_column(ForeignKey("payroll_loan.loan_id"), nullable=False)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    payroll_run_id: Mapped[UUID] = mapped_column(nullable=False)
    payslip_id: Mapped[UUID] = mapped_column(nullable=False)
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)

    deduction_amount: Mapped[Decimal] = mapped_column(nullable=False)
    principal_component: Mapped[Decimal] = mapped_column(nullable=False)
    interest_component: Mapped[Decimal] = mapped_column(nullable=False)
    outstanding_balance: Mapped[Decimal] = mapped_column(nullable=False)
    deduction_date: Mapped[date] = mapped_column(Date, nullable=False)

    __table_args__ = (
        UniqueConstraint("loan_id", "month", "year", name="payroll_loan_deduction_period_unique"),
    )
