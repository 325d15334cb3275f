"""Ad hoc payslip items: variable pay, arrears and reimbursements.

All three share one lifecycle (draft, submitted, approved, then processed
or rejected/cancelled). A processed item is linked to exactly one payslip.
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, DateTime, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, declared_attr, mapped_column

from payslip_engine.models.base import Base, TimestampMixin

AD_HOC_STATUS_CHECK = (
    "status IN ('draft', 'submitted', 'approved', 'processed', 'rejected', 'cancelled')"
)


class AdHocItemMixin(TimestampMixin):
    """Columns shared by every ad hoc item table."""

    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    applicable_month: Mapped[int] = mapped_column(Integer, nullable=False)
    applicable_year: Mapped[int] = mapped_column(Integer, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")

    approved_by: Mapped[str | None] = mapped_column(String, nullable=True)
    approved_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    payroll_run_id: Mapped[UUID | None] = mapped_column(nullable=True)
    payslip_id: Mapped[UUID | None] = mapped_column(nullable=True)
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    @declared_attr.directive
    def __table_args__(cls) -> tuple:
        table = cls.__tablename__
        return (
            CheckConstraint(AD_HOC_STATUS_CHECK, name=f"{table}_status_check"),
            CheckConstraint("applicable_month BETWEEN 1 AND 12", name=f"{table}_month_check"),
            Index(
                f"{table}_period_status_idx",
                "employee_id",
                "applicable_year",
                "applicable_month",
                "status",
            ),
        )


class VariablePay(AdHocItemMixin, Base):
    """Bonus, incentive, commission and similar one-off earnings."""

    __tablename__ = "variable_pay"

    variable_pay_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    variable_pay_type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    @property
    def item_id(self) -> UUID:
        return self.variable_pay_id

    @property
    def breakdown_key(self) -> str:
        return self.variable_pay_type

    @property
    def payable_amount(self) -> Decimal:
        return self.amount


class Arrears(AdHocItemMixin, Base):
    """Retroactive pay difference for an earlier period."""

    __tablename__ = "arrears"

    arrears_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    arrears_type: Mapped[str] = mapped_column(String, nullable=False)
    original_period_from: Mapped[date] = mapped_column(Date, nullable=False)
    original_period_to: Mapped[date] = mapped_column(Date, nullable=False)
    original_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    revised_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    arrears_amount: Mapped[Decimal] = mapped_column(nullable=False)

    @property
    def item_id(self) -> UUID:
        return self.arrears_id

    @property
    def breakdown_key(self) -> str:
        return self.arrears_type

    @property
    def payable_amount(self) -> Decimal:
        return self.arrears_amount


class Reimbursement(AdHocItemMixin, Base):
    """Expense claim paid back through payroll once approved."""

    __tablename__ = "reimbursement"

    reimbursement_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    reimbursement_type: Mapped[str] = mapped_column(String, nullable=False)
    claim_amount: Mapped[Decimal] = mapped_column(nullable=False)
    approved_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    expense_date: Mapped[date | None] = mapped_column(Date, nullable=True)

    @property
    def item_id(self) -> UUID:
        return self.reimbursement_id

    @property
    def breakdown_key(self) -> str:
        return self.reimbursement_type

    @property
    def payable_amount(self) -> Decimal:
        return self.approved_amount if self.approved_amount is not None else self.claim_amount
