"""Salary structure, component and employee assignment models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from payslip_engine.models.base import Base, TimestampMixin


class SalaryStructure(Base, TimestampMixin):
    """Named, company-scoped compensation template."""

    __tablename__ = "salary_structure"

    salary_structure_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    description: Mapped[str | None] = mapped_column(String, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="salary_structure_company_name_unique"),
    )

    # Components are owned by the structure; nothing points back the other way
    components: Mapped[list[PayrollComponent]] = relationship(
        cascade="all, delete-orphan",
        order_by="PayrollComponent.priority",
    )


class PayrollComponent(Base, TimestampMixin):
    """One earning or deduction line of a salary structure."""

    __tablename__ = "payroll_component"

    payroll_component_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    salary_structure_id: Mapped[UUID] = mapped_column(
        ForeignKey("salary_structure.salary_structure_id", ondelete="CASCADE"),
        nullable=False,
    )
    component_name: Mapped[str] = mapped_column(String, nullable=False)
    component_type: Mapped[str] = mapped_column(String, nullable=False)
    component_category: Mapped[str] = mapped_column(String, nullable=False)
    is_percentage: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    value: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    percentage_of: Mapped[str | None] = mapped_column(String, nullable=True)
    is_taxable: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    is_statutory: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint(
            "component_type IN ('earning', 'deduction')",
            name="payroll_component_type_check",
        ),
        CheckConstraint(
            "percentage_of IS NULL OR percentage_of IN ('ctc', 'basic')",
            name="payroll_component_percentage_of_check",
        ),
    )


class EmployeeSalaryStructure(Base, TimestampMixin):
    """Binds an employee to a structure with an annual CTC."""

    __tablename__ = "employee_salary_structure"

    employee_salary_structure_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    salary_structure_id: Mapped[UUID] = mapped_column(
        ForeignKey("salary_structure.salary_structure_id"),
        nullable=False,
    )
    ctc: Mapped[Decimal] = mapped_column(nullable=False)
    effective_from: Mapped[date] = mapped_column(Date, nullable=False)
    effective_to: Mapped[date | None] = mapped_column(Date, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "effective_to IS NULL OR effective_to >= effective_from",
            name="employee_salary_structure_dates_check",
        ),
        CheckConstraint("ctc >= 0", name="employee_salary_structure_ctc_check"),
        # At most one active assignment per employee
        Index(
            "employee_salary_structure_one_active",
            "employee_id",
            unique=True,
            postgresql_where=text("is_active"),
            sqlite_where=text("is_active = 1"),
        ),
    )
