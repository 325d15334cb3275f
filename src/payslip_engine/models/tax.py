"""Tax configuration and employee tax declaration models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import Boolean, CheckConstraint, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from payslip_engine.models.base import Base, JSONType, TimestampMixin


class TaxConfiguration(Base, TimestampMixin):
    """Company tax rules for one country and financial year.

    Slabs and exemption rules are stored as JSON and validated into a
    ``TaxPolicy`` before use.
    """

    __tablename__ = "tax_configuration"

    tax_configuration_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    country: Mapped[str] = mapped_column(String, nullable=False)
    financial_year: Mapped[str] = mapped_column(String, nullable=False)

    income_tax_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    income_tax_slabs: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)

    local_tax_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    local_tax_slabs: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)
    professional_tax_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    professional_tax_slabs: Mapped[list[dict[str, Any]]] = mapped_column(JSONType, nullable=False, default=list)

    social_security_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    social_security_employee_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    social_security_employer_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    social_security_max_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    health_insurance_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    health_insurance_employee_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    health_insurance_employer_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    health_insurance_max_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    housing_allowance_exemption_rules: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    travel_allowance_exemption_rules: Mapped[dict[str, Any] | None] = mapped_column(nullable=True)
    standard_deduction: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    tax_exemptions: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)

    __table_args__ = (
        UniqueConstraint(
            "company_id",
            "country",
            "financial_year",
            name="tax_configuration_company_country_year_unique",
        ),
    )


class EmployeeTaxDeclaration(Base, TimestampMixin):
    """Amounts an employee declares for exemption in one financial year.

    ``declarations`` maps a category (``rent_paid``, ``travel_expense`` or
    any other exemption head) to an annual amount stored as a string. Only
    verified declarations reach payslips, scaled by
    ``verified_amount / total_declared_amount``.
    """

    __tablename__ = "employee_tax_declaration"

    tax_declaration_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(nullable=False)
    company_id: Mapped[UUID] = mapped_column(nullable=False)
    financial_year: Mapped[str] = mapped_column(String, nullable=False)

    declarations: Mapped[dict[str, Any]] = mapped_column(nullable=False, default=dict)
    total_declared_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    verified_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    verification_status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    verified_by: Mapped[str | None] = mapped_column(String, nullable=True)
    verified_at: Mapped[datetime | None] = mapped_column(nullable=True)
    submitted_at: Mapped[datetime | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "employee_id",
            "financial_year",
            name="employee_tax_declaration_employee_year_unique",
        ),
        CheckConstraint(
            "verification_status IN ('draft', 'submitted', 'verified', 'partial', 'rejected')",
            name="employee_tax_declaration_status_check",
        ),
        CheckConstraint("total_declared_amount >= 0", name="employee_tax_declaration_total_check"),
        Index("employee_tax_declaration_company_year_idx", "company_id", "financial_year"),
    )
