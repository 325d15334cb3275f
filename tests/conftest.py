"""Pytest fixtures for payslip engine tests."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import AsyncGenerator
from uuid import UUID, uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from payslip_engine.calculators.types import AttendanceSummary
from payslip_engine.config import Settings
from payslip_engine.database import make_session_factory
from payslip_engine.models import Base, Employee
from payslip_engine.services.salary_structure_service import SalaryStructureService
from payslip_engine.services.tax_configuration_service import TaxConfigurationService

# April 2024 falls in financial year 2024-2025 and has 22 weekdays
PAYROLL_MONTH = 4
PAYROLL_YEAR = 2024
FINANCIAL_YEAR = "2024-2025"

STANDARD_COMPONENTS = [
    {
        "component_name": "Basic",
        "component_type": "earning",
        "component_category": "basic",
        "is_percentage": True,
        "value": 50,
        "percentage_of": "ctc",
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
        "component_name": "Special Allowance",
        "component_type": "earning",
        "component_category": "special_allowance",
        "is_percentage": True,
        "value": 30,
        "priority": 3,
    },
    {
        "component_name": "Canteen",
        "component_type": "deduction",
        "component_category": "other",
        "value": 500,
        "priority": 4,
    },
    {
        "component_name": "EPF",
        "component_type": "deduction",
        "component_category": "epf",
        "is_percentage": True,
        "value": 12,
        "percentage_of": "basic",
        "is_statutory": True,
        "priority": 5,
    },
]

STANDARD_TAX_RULES = {
    "income_tax_enabled": True,
    "income_tax_slabs": [
        {"from": 0, "to": 250000, "rate": 0},
        {"from": 250000, "to": 500000, "rate": 5},
        {"from": 500000, "to": None, "rate": 20},
    ],
    "professional_tax_enabled": True,
    "professional_tax_slabs": [
        {"from": 0, "to": 15000, "amount": 0},
        {"from": 15000, "to": None, "amount": 200},
    ],
    "social_security_enabled": True,
    "social_security_employee_rate": Decimal("12"),
    "social_security_employer_rate": Decimal("12"),
    "social_security_max_salary": Decimal("15000"),
    "health_insurance_enabled": True,
    "health_insurance_employee_rate": Decimal("0.75"),
    "health_insurance_employer_rate": Decimal("3.25"),
    "health_insurance_max_salary": Decimal("21000"),
    "standard_deduction": Decimal("50000"),
}

# 1,200,000 CTC with STANDARD_COMPONENTS: basic 50,000, HRA 20,000,
# special 30,000 (gross 100,000) and a 500 canteen deduction
STANDARD_CTC = Decimal("1200000")


@dataclass
class FixedAttendanceSource:
    """Attendance source returning the same summary for everyone."""

    summary: AttendanceSummary

    async def get_monthly_aggregate(self, employee_id, company_id, month, year) -> AttendanceSummary:
        return self.summary


FULL_ATTENDANCE = AttendanceSummary(working_days=22, present_days=22, absent_days=0, leave_days=0)


@pytest.fixture
def settings() -> Settings:
    """Settings for tests: one worker so SQLite sees a single writer."""
    return Settings(
        database_url="sqlite+aiosqlite://",
        db_pool_size=5,
        db_max_overflow=0,
        worker_pool_size=1,
        employee_timeout_seconds=30,
        payslip_number_prefix="PSL",
        financial_year_start_month=4,
        log_level="DEBUG",
    )


@pytest.fixture
async def engine(tmp_path):
    """File-backed SQLite so every session sees committed data."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'payslip.db'}", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return make_session_factory(engine)


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def company_id() -> UUID:
    return uuid4()


@pytest.fixture
async def tax_configuration(session: AsyncSession, company_id: UUID):
    """Committed tax configuration for financial year 2024-2025."""
    config = await TaxConfigurationService(session).create(
        company_id, "IN", FINANCIAL_YEAR, **STANDARD_TAX_RULES
    )
    await session.commit()
    return config


@pytest.fixture
async def salary_structure(session: AsyncSession, company_id: UUID):
    structure = await SalaryStructureService(session).create_structure(
        company_id, "Standard", STANDARD_COMPONENTS
    )
    await session.commit()
    return structure


async def add_employee(
    session: AsyncSession,
    company_id: UUID,
    employee_number: str,
    salary_structure_id: UUID | None = None,
    ctc: Decimal = STANDARD_CTC,
    status: str = "active",
) -> Employee:
    """Insert an employee and, when a structure is given, assign it."""
    employee = Employee(company_id=company_id, employee_number=employee_number, status=status)
    session.add(employee)
    await session.flush()
    if salary_structure_id is not None:
        await SalaryStructureService(session).assign_structure(
            employee.employee_id,
            company_id,
            salary_structure_id,
            ctc,
            effective_from=date(2024, 1, 1),
        )
    await session.commit()
    return employee
