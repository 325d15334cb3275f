"""Tests for employee tax declarations."""

from decimal import Decimal
from uuid import uuid4

import pytest

from conftest import FINANCIAL_YEAR, PAYROLL_MONTH, PAYROLL_YEAR
from payslip_engine.errors import InvalidTransitionError, NotFoundError, ValidationError
from payslip_engine.services.tax_declaration_service import TaxDeclarationService

DECLARED = {"rent_paid": 180000, "travel_expense": 24000, "80C": 150000}


async def _submitted(session, company_id, employee_id=None, declarations=DECLARED):
    service = TaxDeclarationService(session)
    declaration = await service.create_or_update(employee_id or uuid4(), company_id, FINANCIAL_YEAR, declarations)
    await service.submit(declaration.tax_declaration_id)
    await session.commit()
    return declaration


class TestCreateOrUpdate:
    """Declaring amounts for a financial year."""

    async def test_create_totals_amounts(self, session, company_id):
        """A new declaration starts as a draft with the summed total."""
        declaration = await TaxDeclarationService(session).create_or_update(
            uuid4(), company_id, FINANCIAL_YEAR, DECLARED
        )

        assert declaration.verification_status == "draft"
        assert declaration.total_declared_amount == Decimal("354000")
        assert declaration.declarations["80C"] == "150000"

    async def test_update_resets_verification(self, session, company_id):
        """Editing a verified declaration sends it back to draft."""
        employee_id = uuid4()
        declaration = await _submitted(session, company_id, employee_id)
        service = TaxDeclarationService(session)
        await service.verify(declaration.tax_declaration_id, Decimal("354000"), "hr")

        updated = await service.create_or_update(employee_id, company_id, FINANCIAL_YEAR, {"80C": 100000})

        assert updated.tax_declaration_id == declaration.tax_declaration_id
        assert updated.verification_status == "draft"
        assert updated.verified_amount is None
        assert updated.submitted_at is None
        assert updated.total_declared_amount == Decimal("100000")

    @pytest.mark.parametrize("declarations", [{"80C": -1}, {"80C": "lots"}])
    async def test_invalid_amounts(self, session, company_id, declarations):
        """Negative or non-numeric amounts are rejected."""
        with pytest.raises(ValidationError):
            await TaxDeclarationService(session).create_or_update(
                uuid4(), company_id, FINANCIAL_YEAR, declarations
            )

    async def test_get_missing(self, session):
        """Unknown declaration ids raise NotFoundError."""
        with pytest.raises(NotFoundError):
            await TaxDeclarationService(session).get(uuid4())


class TestSubmitAndVerify:
    """Submission and verification."""

    async def test_submit(self, session, company_id):
        """Submitting records the submission time."""
        declaration = await _submitted(session, company_id)

        assert declaration.verification_status == "submitted"
        assert declaration.submitted_at is not None

    async def test_draft_cannot_be_verified(self, session, company_id):
        """Only submitted declarations are verified."""
        service = TaxDeclarationService(session)
        declaration = await service.create_or_update(uuid4(), company_id, FINANCIAL_YEAR, DECLARED)

        with pytest.raises(InvalidTransitionError):
            await service.verify(declaration.tax_declaration_id, Decimal("1000"), "hr")

    @pytest.mark.parametrize(
        ("amount", "status"),
        [(Decimal("354000"), "verified"), (Decimal("177000"), "partial"), (Decimal("0"), "rejected")],
    )
    async def test_verification_status_follows_amount(self, session, company_id, amount, status):
        """The verified share of the declared total sets the status."""
        declaration = await _submitted(session, company_id)

        verified = await TaxDeclarationService(session).verify(
            declaration.tax_declaration_id, amount, "hr", notes="receipts checked"
        )

        assert verified.verification_status == status
        assert verified.verified_amount == amount
        assert verified.verified_by == "hr"
        assert verified.notes == "receipts checked"

    async def test_verified_amount_capped_at_declared(self, session, company_id):
        """More than the declared total cannot be verified."""
        declaration = await _submitted(session, company_id)

        with pytest.raises(ValidationError):
            await TaxDeclarationService(session).verify(declaration.tax_declaration_id, Decimal("354001"), "hr")

    async def test_verified_once(self, session, company_id):
        """A decided declaration must be edited before it is verified again."""
        declaration = await _submitted(session, company_id)
        service = TaxDeclarationService(session)
        await service.verify(declaration.tax_declaration_id, Decimal("354000"), "hr")

        with pytest.raises(InvalidTransitionError):
            await service.verify(declaration.tax_declaration_id, Decimal("1000"), "hr")

    async def test_list_by_company(self, session, company_id):
        """Listing filters by company, year and status."""
        await _submitted(session, company_id)
        service = TaxDeclarationService(session)
        await service.create_or_update(uuid4(), company_id, FINANCIAL_YEAR, DECLARED)
        await service.create_or_update(uuid4(), uuid4(), FINANCIAL_YEAR, DECLARED)

        assert len(await service.list_by_company(company_id)) == 2
        assert len(await service.list_by_company(company_id, FINANCIAL_YEAR, "submitted")) == 1
        assert await service.list_by_company(company_id, "2023-2024") == []


class TestVerifiedExemptions:
    """Inputs handed to the tax engine."""

    async def test_fully_verified(self, session, company_id):
        """Rent and travel become monthly amounts; other heads stay annual."""
        employee_id = uuid4()
        declaration = await _submitted(session, company_id, employee_id)
        service = TaxDeclarationService(session)
        await service.verify(declaration.tax_declaration_id, Decimal("354000"), "hr")

        declared = await service.verified_exemptions(employee_id, PAYROLL_MONTH, PAYROLL_YEAR)

        assert declared.rent_paid == Decimal("15000")
        assert declared.actual_travel_expense == Decimal("2000")
        assert declared.other_exemptions == {"80C": Decimal("150000")}

    async def test_partial_scales_every_category(self, session, company_id):
        """A half-verified declaration contributes half of each category."""
        employee_id = uuid4()
        declaration = await _submitted(session, company_id, employee_id)
        service = TaxDeclarationService(session)
        await service.verify(declaration.tax_declaration_id, Decimal("177000"), "hr")

        declared = await service.verified_exemptions(employee_id, PAYROLL_MONTH, PAYROLL_YEAR)

        assert declared.rent_paid == Decimal("7500")
        assert declared.actual_travel_expense == Decimal("1000")
        assert declared.other_exemptions == {"80C": Decimal("75000")}

    async def test_unverified_declaration_ignored(self, session, company_id):
        """Submitted but unverified amounts do not count."""
        employee_id = uuid4()
        await _submitted(session, company_id, employee_id)

        declared = await TaxDeclarationService(session).verified_exemptions(employee_id, PAYROLL_MONTH, PAYROLL_YEAR)

        assert declared.rent_paid == Decimal("0")
        assert declared.other_exemptions == {}

    async def test_period_in_other_financial_year(self, session, company_id):
        """March 2024 belongs to 2023-2024 and sees no 2024-2025 declaration."""
        employee_id = uuid4()
        declaration = await _submitted(session, company_id, employee_id)
        service = TaxDeclarationService(session)
        await service.verify(declaration.tax_declaration_id, Decimal("354000"), "hr")

        declared = await service.verified_exemptions(employee_id, 3, 2024)

        assert declared.rent_paid == Decimal("0")
