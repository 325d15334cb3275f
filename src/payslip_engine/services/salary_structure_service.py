"""Salary structure resolution and assignment."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Iterable
from uuid import UUID

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from payslip_engine.calculators.money import ZERO, percent_of, round_currency, to_decimal
from payslip_engine.calculators.types import (
    ComponentCategory,
    ComponentType,
    PercentageBase,
    ResolvedSalary,
)
from payslip_engine.errors import ConflictError, NotFoundError, ValidationError
from payslip_engine.models import EmployeeSalaryStructure, PayrollComponent, SalaryStructure

MONTHS_PER_YEAR = Decimal("12")


class SalaryStructureService:
    """Resolves an employee's active structure into monthly base pay.

    Components are walked in ascending priority. Fixed components contribute
    their value; percentage components take ``value``% of the monthly CTC,
    or of basic when ``percentage_of="basic"``, so basic must carry a lower
    priority than anything that references it. Statutory deductions are
    left to the tax engine.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_structure(self, salary_structure_id: UUID) -> SalaryStructure:
        result = await self.session.execute(
            select(SalaryStructure)
            .where(SalaryStructure.salary_structure_id == salary_structure_id)
            .options(selectinload(SalaryStructure.components))
        )
        structure = result.scalar_one_or_none()
        if structure is None:
            raise NotFoundError("Salary structure", salary_structure_id)
        return structure

    async def create_structure(
        self,
        company_id: UUID,
        name: str,
        components: Iterable[dict[str, Any]],
        description: str | None = None,
    ) -> SalaryStructure:
        """Create a structure with its components; names are unique per company."""
        existing = await self.session.execute(
            select(SalaryStructure.salary_structure_id).where(
                SalaryStructure.company_id == company_id,
                SalaryStructure.name == name,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(f"Salary structure '{name}' already exists for this company")

        structure = SalaryStructure(company_id=company_id, name=name, description=description)
        for definition in components:
            structure.components.append(self._build_component(definition))

        self.session.add(structure)
        await self.session.flush()
        return structure

    @staticmethod
    def _build_component(definition: dict[str, Any]) -> PayrollComponent:
        try:
            component_type = ComponentType(definition["component_type"])
            category = ComponentCategory(definition.get("component_category", ComponentCategory.OTHER))
            percentage_of = definition.get("percentage_of")
            if percentage_of is not None:
                percentage_of = PercentageBase(percentage_of).value
        except (KeyError, ValueError) as exc:
            raise ValidationError(f"Invalid payroll component {definition.get('component_name')!r}: {exc}") from exc

        return PayrollComponent(
            component_name=definition["component_name"],
            component_type=component_type.value,
            component_category=category.value,
            is_percentage=bool(definition.get("is_percentage", False)),
            value=to_decimal(definition.get("value")),
            percentage_of=percentage_of,
            is_taxable=bool(definition.get("is_taxable", True)),
            is_statutory=bool(definition.get("is_statutory", False)),
            priority=int(definition.get("priority", 0)),
        )

    async def assign_structure(
        self,
        employee_id: UUID,
        company_id: UUID,
        salary_structure_id: UUID,
        ctc: Decimal,
        effective_from: date,
        effective_to: date | None = None,
    ) -> EmployeeSalaryStructure:
        """Bind an employee to a structure, deactivating any previous binding."""
        structure = await self.session.get(SalaryStructure, salary_structure_id)
        if structure is None:
            raise NotFoundError("Salary structure", salary_structure_id)
        if structure.company_id != company_id:
            raise ValidationError("Salary structure does not belong to this company")
        if effective_to is not None and effective_to < effective_from:
            raise ValidationError("effective_to cannot be before effective_from")
        if to_decimal(ctc) < 0:
            raise ValidationError("CTC cannot be negative")

        # Deactivate first so the one-active-per-employee index never sees two rows
        await self.session.execute(
            update(EmployeeSalaryStructure)
            .where(
                EmployeeSalaryStructure.employee_id == employee_id,
                EmployeeSalaryStructure.is_active.is_(True),
            )
            .values(is_active=False)
        )

        assignment = EmployeeSalaryStructure(
            employee_id=employee_id,
            company_id=company_id,
            salary_structure_id=salary_structure_id,
            ctc=to_decimal(ctc),
            effective_from=effective_from,
            effective_to=effective_to,
            is_active=True,
        )
        self.session.add(assignment)
        await self.session.flush()
        return assignment

    async def get_active_assignment(
        self,
        employee_id: UUID,
        company_id: UUID,
        as_of: date,
    ) -> EmployeeSalaryStructure:
        result = await self.session.execute(
            select(EmployeeSalaryStructure).where(
                EmployeeSalaryStructure.employee_id == employee_id,
                EmployeeSalaryStructure.company_id == company_id,
                EmployeeSalaryStructure.is_active.is_(True),
                EmployeeSalaryStructure.effective_from <= as_of,
                or_(
                    EmployeeSalaryStructure.effective_to.is_(None),
                    EmployeeSalaryStructure.effective_to >= as_of,
                ),
            )
        )
        assignment = result.scalar_one_or_none()
        if assignment is None:
            raise NotFoundError("Employee salary structure", employee_id)
        return assignment

    async def resolve(self, employee_id: UUID, company_id: UUID, as_of: date) -> ResolvedSalary:
        """Compute base monthly earnings and deductions for an employee."""
        assignment = await self.get_active_assignment(employee_id, company_id, as_of)
        structure = await self.get_structure(assignment.salary_structure_id)
        return self.compute(employee_id, assignment, structure.components)

    @staticmethod
    def compute(
        employee_id: UUID,
        assignment: EmployeeSalaryStructure,
        components: Iterable[PayrollComponent],
    ) -> ResolvedSalary:
        monthly_base = to_decimal(assignment.ctc) / MONTHS_PER_YEAR
        resolved = ResolvedSalary(
            employee_id=employee_id,
            structure_id=assignment.salary_structure_id,
            ctc=to_decimal(assignment.ctc),
            monthly_base=monthly_base,
        )

        active = sorted((c for c in components if c.is_active), key=lambda c: c.priority)
        for component in active:
            component_type = ComponentType(component.component_type)
            category = ComponentCategory(component.component_category)

            if component.is_percentage:
                if component.percentage_of == PercentageBase.BASIC.value:
                    base = resolved.basic
                else:
                    base = monthly_base
                amount = round_currency(percent_of(base, component.value))
            else:
                amount = round_currency(component.value)

            if component_type is ComponentType.EARNING:
                breakdown = resolved.earnings_breakdown
                breakdown[component.component_name] = breakdown.get(component.component_name, ZERO) + amount
                if category is ComponentCategory.BASIC:
                    resolved.basic = amount
                elif category is ComponentCategory.HRA:
                    resolved.housing_allowance = amount
                elif category is ComponentCategory.LTA:
                    resolved.travel_allowance = amount
            elif not component.is_statutory:
                breakdown = resolved.deductions_breakdown
                breakdown[component.component_name] = breakdown.get(component.component_name, ZERO) + amount

        return resolved
