"""Pydantic schemas for tax configuration payloads and read models."""

from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Annotated, Literal, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, model_validator


# ============================================================================
# Tax configuration payloads (stored as JSON on tax_configuration)
# ============================================================================


class SlabBase(BaseModel):
    """A half-open ``[from, to)`` income band; ``to=None`` is unbounded."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    from_: Decimal = Field(default=Decimal("0"), alias="from", ge=0)
    to: Decimal | None = None

    @model_validator(mode="after")
    def _check_bounds(self) -> SlabBase:
        if self.to is not None and self.to <= self.from_:
            raise ValueError(f"slab upper bound {self.to} must exceed lower bound {self.from_}")
        return self

    def contains(self, amount: Decimal) -> bool:
        return amount >= self.from_ and (self.to is None or amount < self.to)


class IncomeTaxSlab(SlabBase):
    """Progressive band taxed at ``rate`` percent."""

    rate: Decimal = Field(default=Decimal("0"), ge=0, le=100)


class FlatAmountSlab(SlabBase):
    """Band that maps a gross salary to a flat monthly amount."""

    amount: Decimal = Field(default=Decimal("0"), ge=0)


class PercentageOfBasicHousingRule(BaseModel):
    type: Literal["percentage_of_basic"]
    max_percentage: Decimal = Field(default=Decimal("50"), alias="maxPercentage")
    min_rent_percentage: Decimal = Field(default=Decimal("10"), alias="minRentPercentage")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class FixedAmountRule(BaseModel):
    type: Literal["fixed_amount"]
    amount: Decimal = Decimal("0")

    model_config = ConfigDict(frozen=True)


class ActualRentHousingRule(BaseModel):
    type: Literal["actual_rent"]

    model_config = ConfigDict(frozen=True)


class ActualExpenseTravelRule(BaseModel):
    type: Literal["actual_expense"]

    model_config = ConfigDict(frozen=True)


class PercentageOfExpenseTravelRule(BaseModel):
    """Cap at ``percentage`` of the actual travel expense.

    ``percentage_of_basic`` is the label older configurations use for the
    same rule.
    """

    type: Literal["percentage_of_expense", "percentage_of_basic"]
    percentage: Decimal = Decimal("0")

    model_config = ConfigDict(frozen=True)


HousingExemptionRule = Annotated[
    Union[PercentageOfBasicHousingRule, FixedAmountRule, ActualRentHousingRule],
    Field(discriminator="type"),
]

TravelExemptionRule = Annotated[
    Union[ActualExpenseTravelRule, FixedAmountRule, PercentageOfExpenseTravelRule],
    Field(discriminator="type"),
]


class TaxPolicy(BaseModel):
    """Validated view of a tax_configuration row used by the tax engine."""

    model_config = ConfigDict(frozen=True)

    income_tax_enabled: bool = True
    income_tax_slabs: list[IncomeTaxSlab] = Field(default_factory=list)

    local_tax_enabled: bool = False
    local_tax_slabs: list[FlatAmountSlab] = Field(default_factory=list)
    professional_tax_enabled: bool = False
    professional_tax_slabs: list[FlatAmountSlab] = Field(default_factory=list)

    social_security_enabled: bool = False
    social_security_employee_rate: Decimal = Decimal("0")
    social_security_employer_rate: Decimal = Decimal("0")
    social_security_max_salary: Decimal = Decimal("0")

    health_insurance_enabled: bool = False
    health_insurance_employee_rate: Decimal = Decimal("0")
    health_insurance_employer_rate: Decimal = Decimal("0")
    health_insurance_max_salary: Decimal = Decimal("0")

    housing_allowance_exemption_rule: HousingExemptionRule | None = None
    travel_allowance_exemption_rule: TravelExemptionRule | None = None
    standard_deduction: Decimal = Decimal("0")
    other_exemptions: dict[str, Decimal] = Field(default_factory=dict)


# ============================================================================
# Read models
# ============================================================================


class PayrollRunResponse(BaseModel):
    """Serializable view of a payroll run."""

    model_config = ConfigDict(from_attributes=True)

    payroll_run_id: UUID
    company_id: UUID
    payroll_month: int
    payroll_year: int
    status: str
    total_employees: int
    processed_employees: int
    failed_employees: int
    total_gross_salary: Decimal
    total_deductions: Decimal
    total_net_salary: Decimal
    processed_by: str | None = None
    processed_at: datetime | None = None
    locked_by: str | None = None
    locked_at: datetime | None = None


class PayslipResponse(BaseModel):
    """Serializable view of a payslip."""

    model_config = ConfigDict(from_attributes=True)

    payslip_id: UUID
    payslip_number: str
    employee_id: UUID
    company_id: UUID
    payroll_run_id: UUID
    month: int
    year: int
    status: str
    gross_salary: Decimal
    total_deductions: Decimal
    net_salary: Decimal
    earnings_breakdown: dict[str, Decimal]
    deductions_breakdown: dict[str, Decimal]
    income_tax_amount: Decimal
    local_tax_amount: Decimal
    ytd_gross_salary: Decimal
    ytd_net_salary: Decimal
