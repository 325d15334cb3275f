"""Tax calculation from a company's validated tax policy."""

from __future__ import annotations

from decimal import Decimal
from typing import Mapping, Sequence

from payslip_engine.calculators.money import ZERO, percent_of, round_currency, to_decimal
from payslip_engine.calculators.types import ContributionSplit, TaxExemptions, TaxResult
from payslip_engine.schemas import (
    ActualExpenseTravelRule,
    ActualRentHousingRule,
    FixedAmountRule,
    FlatAmountSlab,
    HousingExemptionRule,
    IncomeTaxSlab,
    PercentageOfBasicHousingRule,
    PercentageOfExpenseTravelRule,
    TaxPolicy,
    TravelExemptionRule,
)

MONTHS_PER_YEAR = Decimal("12")


class TaxCalculator:
    """Calculates monthly income tax, local tax and statutory contributions.

    Slab payloads use half-open ``[from, to)`` bands with ``to=None`` meaning
    unbounded. Income tax rates are percentages; local and professional tax
    slabs carry a flat monthly amount:

        income_tax_slabs:       [{"from": 0, "to": 250000, "rate": 0}, ...]
        professional_tax_slabs: [{"from": 0, "to": 15000, "amount": 0}, ...]

    Monthly figures (gross, basic, allowances) go in; income tax is computed
    on the annual taxable income and withheld in twelve equal parts.
    """

    @staticmethod
    def calculate_income_tax(
        annual_taxable_income: Decimal,
        slabs: Sequence[IncomeTaxSlab] | None,
    ) -> Decimal:
        """Monthly withholding for a progressive slab table."""
        if not slabs or annual_taxable_income <= 0:
            return ZERO

        annual_tax = ZERO
        for slab in sorted(slabs, key=lambda s: s.from_):
            if annual_taxable_income <= slab.from_:
                break
            upper = annual_taxable_income if slab.to is None else min(annual_taxable_income, slab.to)
            taxable_in_slab = upper - slab.from_
            if taxable_in_slab > 0:
                annual_tax += percent_of(taxable_in_slab, slab.rate)

        return round_currency(annual_tax / MONTHS_PER_YEAR)

    @staticmethod
    def _flat_amount_for(gross_salary: Decimal, slabs: Sequence[FlatAmountSlab] | None) -> Decimal:
        for slab in slabs or ():
            if slab.contains(gross_salary):
                return round_currency(slab.amount)
        return ZERO

    @classmethod
    def calculate_local_tax(
        cls,
        gross_salary: Decimal,
        local_slabs: Sequence[FlatAmountSlab] | None,
        professional_tax_enabled: bool,
        professional_slabs: Sequence[FlatAmountSlab] | None,
    ) -> Decimal:
        """Flat local or professional tax for the band containing gross."""
        if professional_tax_enabled:
            return cls._flat_amount_for(gross_salary, professional_slabs)
        return cls._flat_amount_for(gross_salary, local_slabs)

    @staticmethod
    def calculate_social_security(
        base_salary: Decimal,
        employee_rate: Decimal,
        employer_rate: Decimal,
        max_salary: Decimal = ZERO,
    ) -> ContributionSplit:
        """Contribution on the base salary, capped at ``max_salary`` when set."""
        if not employee_rate and not employer_rate:
            return ContributionSplit()

        base = to_decimal(base_salary)
        if max_salary and max_salary > 0:
            base = min(base, to_decimal(max_salary))

        return ContributionSplit(
            employee=round_currency(percent_of(base, employee_rate)),
            employer=round_currency(percent_of(base, employer_rate)),
        )

    @staticmethod
    def calculate_health_insurance(
        gross_salary: Decimal,
        employee_rate: Decimal,
        employer_rate: Decimal,
        max_salary: Decimal = ZERO,
    ) -> ContributionSplit:
        """Contribution on gross; earners above ``max_salary`` are not covered at all."""
        if not employee_rate and not employer_rate:
            return ContributionSplit()

        gross = to_decimal(gross_salary)
        if max_salary and max_salary > 0 and gross > max_salary:
            return ContributionSplit()

        return ContributionSplit(
            employee=round_currency(percent_of(gross, employee_rate)),
            employer=round_currency(percent_of(gross, employer_rate)),
        )

    @staticmethod
    def calculate_housing_allowance_exemption(
        allowance_received: Decimal,
        rent_paid: Decimal,
        basic_salary: Decimal,
        rule: HousingExemptionRule | None,
    ) -> Decimal:
        if rule is None:
            return ZERO

        if isinstance(rule, PercentageOfBasicHousingRule):
            exemption = min(
                rent_paid - percent_of(basic_salary, rule.min_rent_percentage),
                allowance_received,
                percent_of(basic_salary, rule.max_percentage),
            )
        elif isinstance(rule, FixedAmountRule):
            exemption = min(allowance_received, rule.amount)
        elif isinstance(rule, ActualRentHousingRule):
            exemption = min(allowance_received, rent_paid)
        else:
            raise TypeError(f"Unsupported housing exemption rule: {rule!r}")

        return max(ZERO, exemption)

    @staticmethod
    def calculate_travel_allowance_exemption(
        allowance_received: Decimal,
        actual_expense: Decimal,
        rule: TravelExemptionRule | None,
    ) -> Decimal:
        if rule is None:
            return ZERO

        if isinstance(rule, ActualExpenseTravelRule):
            exemption = min(allowance_received, actual_expense)
        elif isinstance(rule, FixedAmountRule):
            exemption = min(allowance_received, rule.amount)
        elif isinstance(rule, PercentageOfExpenseTravelRule):
            exemption = min(allowance_received, percent_of(actual_expense, rule.percentage))
        else:
            raise TypeError(f"Unsupported travel exemption rule: {rule!r}")

        return max(ZERO, exemption)

    @classmethod
    def calculate_exemptions(
        cls,
        basic_salary: Decimal,
        housing_allowance_received: Decimal,
        travel_allowance_received: Decimal,
        policy: TaxPolicy,
        rent_paid: Decimal = ZERO,
        actual_travel_expense: Decimal = ZERO,
        other_exemptions: Mapping[str, Decimal] | None = None,
    ) -> TaxExemptions:
        """Annual exemptions; allowance exemptions are computed monthly and annualized."""
        housing = cls.calculate_housing_allowance_exemption(
            housing_allowance_received,
            rent_paid,
            basic_salary,
            policy.housing_allowance_exemption_rule,
        )
        travel = cls.calculate_travel_allowance_exemption(
            travel_allowance_received,
            actual_travel_expense,
            policy.travel_allowance_exemption_rule,
        )

        others = {name: to_decimal(amount) for name, amount in policy.other_exemptions.items()}
        for name, amount in (other_exemptions or {}).items():
            others[name] = others.get(name, ZERO) + to_decimal(amount)

        return TaxExemptions(
            housing_allowance_exemption=round_currency(housing * MONTHS_PER_YEAR),
            travel_allowance_exemption=round_currency(travel * MONTHS_PER_YEAR),
            standard_deduction=to_decimal(policy.standard_deduction),
            other_exemptions=others,
        )

    @classmethod
    def calculate_all_taxes(
        cls,
        gross_salary: Decimal,
        basic_salary: Decimal,
        housing_allowance_received: Decimal,
        travel_allowance_received: Decimal,
        policy: TaxPolicy,
        annual_taxable_income: Decimal,
        rent_paid: Decimal = ZERO,
        actual_travel_expense: Decimal = ZERO,
        other_exemptions: Mapping[str, Decimal] | None = None,
    ) -> TaxResult:
        """Compute every tax figure for one month of pay."""
        exemptions = cls.calculate_exemptions(
            basic_salary,
            housing_allowance_received,
            travel_allowance_received,
            policy,
            rent_paid=rent_paid,
            actual_travel_expense=actual_travel_expense,
            other_exemptions=other_exemptions,
        )

        final_taxable_income = max(ZERO, annual_taxable_income - exemptions.total)

        income_tax = (
            cls.calculate_income_tax(final_taxable_income, policy.income_tax_slabs)
            if policy.income_tax_enabled
            else ZERO
        )

        local_tax = (
            cls.calculate_local_tax(
                gross_salary,
                policy.local_tax_slabs,
                policy.professional_tax_enabled,
                policy.professional_tax_slabs,
            )
            if policy.local_tax_enabled or policy.professional_tax_enabled
            else ZERO
        )

        social_security = (
            cls.calculate_social_security(
                basic_salary,
                policy.social_security_employee_rate,
                policy.social_security_employer_rate,
                policy.social_security_max_salary,
            )
            if policy.social_security_enabled
            else ContributionSplit()
        )

        health_insurance = (
            cls.calculate_health_insurance(
                gross_salary,
                policy.health_insurance_employee_rate,
                policy.health_insurance_employer_rate,
                policy.health_insurance_max_salary,
            )
            if policy.health_insurance_enabled
            else ContributionSplit()
        )

        return TaxResult(
            income_tax=income_tax,
            local_tax=local_tax,
            social_security=social_security,
            health_insurance=health_insurance,
            taxable_income=final_taxable_income,
            exemptions=exemptions,
        )
