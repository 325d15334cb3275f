"""Employee tax declarations: create, submit, verify and feed into payslips."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payslip_engine.calculators.money import ZERO, round_cents, to_decimal
from payslip_engine.calculators.tax_calculator import MONTHS_PER_YEAR
from payslip_engine.calculators.types import DeclarationStatus, DeclaredExemptions
from payslip_engine.errors import NotFoundError, ValidationError
from payslip_engine.models import EmployeeTaxDeclaration
from payslip_engine.services.state_machine import TaxDeclarationStateMachine
from payslip_engine.services.tax_configuration_service import financial_year_for

logger = logging.getLogger(__name__)

# Declaration categories with a dedicated exemption policy
RENT_PAID = "rent_paid"
TRAVEL_EXPENSE = "travel_expense"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_amounts(declarations: Mapping[str, Any]) -> dict[str, Decimal]:
    amounts: dict[str, Decimal] = {}
    for category, value in declarations.items():
        try:
            amount = to_decimal(value)
        except InvalidOperation as exc:
            raise ValidationError(f"Declared amount for {category!r} is not a number") from exc
        if amount < 0:
            raise ValidationError(f"Declared amount for {category!r} cannot be negative")
        amounts[category] = amount
    return amounts


class TaxDeclarationService:
    """Annual exemption declarations made by employees.

    A declaration is created (or edited) as a draft, submitted by the
    employee and verified by payroll staff. Verification records how much
    of the declared total is supported by evidence; payslips use each
    category scaled by that share.
    """

    def __init__(self, session: AsyncSession, financial_year_start_month: int | None = None):
        self.session = session
        self.financial_year_start_month = financial_year_start_month

    async def create_or_update(
        self,
        employee_id: UUID,
        company_id: UUID,
        financial_year: str,
        declarations: Mapping[str, Any],
    ) -> EmployeeTaxDeclaration:
        """One declaration per employee and year; edits start verification over."""
        amounts = _parse_amounts(declarations)
        total = sum(amounts.values(), ZERO)
        stored = {category: str(amount) for category, amount in amounts.items()}

        declaration = await self.get_for_employee(employee_id, financial_year)
        if declaration is None:
            declaration = EmployeeTaxDeclaration(
                employee_id=employee_id,
                company_id=company_id,
                financial_year=financial_year,
                declarations=stored,
                total_declared_amount=total,
                verification_status=DeclarationStatus.DRAFT.value,
            )
            self.session.add(declaration)
        else:
            declaration.declarations = stored
            declaration.total_declared_amount = total
            declaration.verification_status = DeclarationStatus.DRAFT.value
            declaration.verified_amount = None
            declaration.verified_by = None
            declaration.verified_at = None
            declaration.submitted_at = None

        await self.session.flush()
        return declaration

    async def submit(self, tax_declaration_id: UUID) -> EmployeeTaxDeclaration:
        declaration = await self.get(tax_declaration_id)
        TaxDeclarationStateMachine.validate_transition(
            declaration.verification_status, DeclarationStatus.SUBMITTED
        )
        declaration.verification_status = DeclarationStatus.SUBMITTED.value
        declaration.submitted_at = _now()
        await self.session.flush()
        return declaration

    async def verify(
        self,
        tax_declaration_id: UUID,
        verified_amount: Decimal,
        verified_by: str,
        notes: str | None = None,
    ) -> EmployeeTaxDeclaration:
        """Accept all, part or none of the declared total."""
        declaration = await self.get(tax_declaration_id)
        verified_amount = to_decimal(verified_amount)
        if verified_amount < 0:
            raise ValidationError("Verified amount cannot be negative")
        if verified_amount > declaration.total_declared_amount:
            raise ValidationError(
                f"Verified amount {verified_amount} exceeds declared amount {declaration.total_declared_amount}"
            )

        if verified_amount == declaration.total_declared_amount:
            status = DeclarationStatus.VERIFIED
        elif verified_amount > 0:
            status = DeclarationStatus.PARTIAL
        else:
            status = DeclarationStatus.REJECTED
        TaxDeclarationStateMachine.validate_transition(declaration.verification_status, status)

        declaration.verification_status = status.value
        declaration.verified_amount = verified_amount
        declaration.verified_by = verified_by
        declaration.verified_at = _now()
        declaration.notes = notes
        await self.session.flush()

        logger.info(
            "Tax declaration %s %s by %s: %s of %s",
            tax_declaration_id,
            status.value,
            verified_by,
            verified_amount,
            declaration.total_declared_amount,
        )
        return declaration

    async def get(self, tax_declaration_id: UUID) -> EmployeeTaxDeclaration:
        declaration = await self.session.get(EmployeeTaxDeclaration, tax_declaration_id)
        if declaration is None:
            raise NotFoundError("Tax declaration", tax_declaration_id)
        return declaration

    async def get_for_employee(self, employee_id: UUID, financial_year: str) -> EmployeeTaxDeclaration | None:
        result = await self.session.execute(
            select(EmployeeTaxDeclaration).where(
                EmployeeTaxDeclaration.employee_id == employee_id,
                EmployeeTaxDeclaration.financial_year == financial_year,
            )
        )
        return result.scalar_one_or_none()

    async def list_by_company(
        self,
        company_id: UUID,
        financial_year: str | None = None,
        verification_status: str | None = None,
    ) -> list[EmployeeTaxDeclaration]:
        query = select(EmployeeTaxDeclaration).where(EmployeeTaxDeclaration.company_id == company_id)
        if financial_year is not None:
            query = query.where(EmployeeTaxDeclaration.financial_year == financial_year)
        if verification_status is not None:
            query = query.where(EmployeeTaxDeclaration.verification_status == verification_status)
        query = query.order_by(EmployeeTaxDeclaration.financial_year.desc(), EmployeeTaxDeclaration.created_at.desc())
        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def verified_exemptions(self, employee_id: UUID, month: int, year: int) -> DeclaredExemptions:
        """Exemption inputs for a payroll period; empty unless verified."""
        financial_year = financial_year_for(month, year, self.financial_year_start_month)
        declaration = await self.get_for_employee(employee_id, financial_year)
        if declaration is None or declaration.verification_status not in TaxDeclarationStateMachine.EFFECTIVE:
            return DeclaredExemptions()
        return self.to_exemptions(declaration)

    @staticmethod
    def to_exemptions(declaration: EmployeeTaxDeclaration) -> DeclaredExemptions:
        total = to_decimal(declaration.total_declared_amount)
        if total <= 0:
            return DeclaredExemptions()
        share = to_decimal(declaration.verified_amount) / total

        exemptions = DeclaredExemptions()
        for category, value in declaration.declarations.items():
            amount = to_decimal(value) * share
            if category == RENT_PAID:
                exemptions.rent_paid = round_cents(amount / MONTHS_PER_YEAR)
            elif category == TRAVEL_EXPENSE:
                exemptions.actual_travel_expense = round_cents(amount / MONTHS_PER_YEAR)
            elif amount > 0:
                exemptions.other_exemptions[category] = round_cents(amount)
        return exemptions
