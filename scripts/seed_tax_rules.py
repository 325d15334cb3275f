"""Seed script for a company's tax configuration and default salary structure.

Run with:
    python scripts/seed_tax_rules.py <company-id> [financial-year]

This creates the tax slabs, contribution rates and a standard salary
structure needed before a payroll run can be processed.
"""

from __future__ import annotations

import asyncio
import sys
from decimal import Decimal
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from payslip_engine.database import get_session
from payslip_engine.errors import ConflictError
from payslip_engine.services.salary_structure_service import SalaryStructureService
from payslip_engine.services.tax_configuration_service import TaxConfigurationService

DEFAULT_FINANCIAL_YEAR = "2024-2025"

TAX_RULES = {
    "income_tax_enabled": True,
    "income_tax_slabs": [
        {"from": 0, "to": 300000, "rate": 0},
        {"from": 300000, "to": 700000, "rate": 5},
        {"from": 700000, "to": 1000000, "rate": 10},
        {"from": 1000000, "to": 1200000, "rate": 15},
        {"from": 1200000, "to": 1500000, "rate": 20},
        {"from": 1500000, "to": None, "rate": 30},
    ],
    "professional_tax_enabled": True,
    "professional_tax_slabs": [
        {"from": 0, "to": 15000, "amount": 0},
        {"from": 15000, "to": 20000, "amount": 150},
        {"from": 20000, "to": None, "amount": 200},
    ],
    "social_security_enabled": True,
    "social_security_employee_rate": Decimal("12"),
    "social_security_employer_rate": Decimal("12"),
    "social_security_max_salary": Decimal("15000"),
    "health_insurance_enabled": True,
    "health_insurance_employee_rate": Decimal("0.75"),
    "health_insurance_employer_rate": Decimal("3.25"),
    "health_insurance_max_salary": Decimal("21000"),
    "housing_allowance_exemption_rule": {
        "type": "percentage_of_basic",
        "max_percentage": 50,
        "min_rent_percentage": 10,
    },
    "travel_allowance_exemption_rule": {"type": "actual_expense"},
    "standard_deduction": Decimal("50000"),
}

STANDARD_COMPONENTS = [
    {
        "component_name": "Basic",
        "component_type": "earning",
        "component_category": "basic",
        "is_percentage": True,
        "value": 50,
        "priority": 1,
    },
    {
        "component_name": "HRA",
        "component_type": "earning",
        "component_category": "hra",
        "is_percentage": True,
        "value": 40,
        "percentage_of": "basic",
        "priority": 2,
    },
    {
        "component_name": "LTA",
        "component_type": "earning",
        "component_category": "lta",
        "value": 2000,
        "priority": 3,
    },
    {
        "component_name": "Special Allowance",
        "component_type": "earning",
        "component_category": "special_allowance",
        "is_percentage": True,
        "value": 28,
        "priority": 4,
    },
]


async def seed_tax_configuration(session: AsyncSession, company_id: UUID, financial_year: str) -> None:
    """Create the tax configuration unless one exists."""
    try:
        await TaxConfigurationService(session).create(company_id, "IN", financial_year, **TAX_RULES)
        print(f"  Created tax configuration for {financial_year}")
    except ConflictError:
        print(f"  Tax configuration for {financial_year} already exists")


async def seed_salary_structure(session: AsyncSession, company_id: UUID) -> None:
    """Create the standard salary structure unless one exists."""
    try:
        structure = await SalaryStructureService(session).create_structure(
            company_id, "Standard", STANDARD_COMPONENTS, description="Default structure"
        )
        print(f"  Created salary structure {structure.salary_structure_id}")
    except ConflictError:
        print("  Standard salary structure already exists")


async def main(company_id: UUID, financial_year: str) -> None:
    """Run seed script."""
    print(f"Seeding company {company_id}...")

    async with get_session() as session:
        await seed_tax_configuration(session, company_id, financial_year)
        await seed_salary_structure(session, company_id)

    print("\nDone! Tax rules seeded successfully.")


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print(__doc__)
        sys.exit(1)
    asyncio.run(main(UUID(sys.argv[1]), sys.argv[2] if len(sys.argv) > 2 else DEFAULT_FINANCIAL_YEAR))
