"""Tax configuration lookup and creation."""

from __future__ import annotations

from typing import Any
from uuid import UUID

import pydantic
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payslip_engine.config import get_settings
from payslip_engine.errors import ConflictError, NotFoundError, ValidationError
from payslip_engine.models import TaxConfiguration
from payslip_engine.schemas import TaxPolicy

# TaxPolicy field -> TaxConfiguration column, where the names differ
_COLUMN_FOR_FIELD = {
    "housing_allowance_exemption_rule": "housing_allowance_exemption_rules",
    "travel_allowance_exemption_rule": "travel_allowance_exemption_rules",
    "other_exemptions": "tax_exemptions",
}

_JSON_FIELDS = (
    "income_tax_slabs",
    "local_tax_slabs",
    "professional_tax_slabs",
    "housing_allowance_exemption_rule",
    "travel_allowance_exemption_rule",
    "other_exemptions",
)


def financial_year_for(month: int, year: int, start_month: int | None = None) -> str:
    """Label of the financial year containing a period, e.g. ``"2024-2025"``."""
    if start_month is None:
        start_month = get_settings().financial_year_start_month
    if month >= start_month:
        return f"{year}-{year + 1}"
    return f"{year - 1}-{year}"


class TaxConfigurationService:
    """Loads company tax rules and validates them into a ``TaxPolicy``."""

    def __init__(self, session: AsyncSession, financial_year_start_month: int | None = None):
        self.session = session
        self.financial_year_start_month = financial_year_start_month

    async def get_for_period(self, company_id: UUID, month: int, year: int) -> TaxConfiguration:
        """Configuration for the period's financial year; the first country wins."""
        financial_year = financial_year_for(month, year, self.financial_year_start_month)
        result = await self.session.execute(
            select(TaxConfiguration)
            .where(
                TaxConfiguration.company_id == company_id,
                TaxConfiguration.financial_year == financial_year,
            )
            .order_by(TaxConfiguration.country)
            .limit(1)
        )
        config = result.scalar_one_or_none()
        if config is None:
            raise NotFoundError("Tax configuration for financial year", financial_year)
        return config

    async def create(
        self,
        company_id: UUID,
        country: str,
        financial_year: str,
        **rules: Any,
    ) -> TaxConfiguration:
        """Validate and store a configuration.

        ``rules`` takes ``TaxPolicy`` field names (``income_tax_slabs``,
        ``housing_allowance_exemption_rule``, ``other_exemptions`` ...).
        """
        existing = await self.session.execute(
            select(TaxConfiguration.tax_configuration_id).where(
                TaxConfiguration.company_id == company_id,
                TaxConfiguration.country == country,
                TaxConfiguration.financial_year == financial_year,
            )
        )
        if existing.scalar_one_or_none() is not None:
            raise ConflictError(
                f"Tax configuration already exists for {country} and financial year {financial_year}"
            )

        policy = self._validate(rules)
        payload = policy.model_dump(by_alias=True)
        # JSON columns get string amounts so Decimals survive serialization
        json_payload = policy.model_dump(mode="json", by_alias=True)
        for name in _JSON_FIELDS:
            payload[name] = json_payload[name]
        columns = {_COLUMN_FOR_FIELD.get(name, name): value for name, value in payload.items()}

        config = TaxConfiguration(
            company_id=company_id,
            country=country,
            financial_year=financial_year,
            **columns,
        )
        self.session.add(config)
        await self.session.flush()
        return config

    @classmethod
    def to_policy(cls, config: TaxConfiguration) -> TaxPolicy:
        """Validate a stored configuration into the tax engine's input."""
        data = {
            name: getattr(config, _COLUMN_FOR_FIELD.get(name, name))
            for name in TaxPolicy.model_fields
        }
        # JSON columns may hold nulls for optional collections
        data = {name: value for name, value in data.items() if value is not None}
        return cls._validate(data)

    @staticmethod
    def _validate(data: dict[str, Any]) -> TaxPolicy:
        try:
            return TaxPolicy.model_validate(data)
        except pydantic.ValidationError as exc:
            raise ValidationError(f"Invalid tax configuration: {exc}") from exc
