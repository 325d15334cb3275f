"""Ad hoc item lifecycle and exactly-once consumption by payslips."""

from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Union
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from payslip_engine.calculators.money import ZERO, to_decimal
from payslip_engine.calculators.types import (
    AdHocCollection,
    AdHocKind,
    AdHocStatus,
    ArrearsType,
    ReimbursementType,
    VariablePayType,
)
from payslip_engine.errors import NotFoundError, ValidationError
from payslip_engine.models import Arrears, Reimbursement, VariablePay
from payslip_engine.services.state_machine import AdHocStateMachine

logger = logging.getLogger(__name__)

AdHocItem = Union[VariablePay, Arrears, Reimbursement]

_MODELS: dict[AdHocKind, type] = {
    AdHocKind.VARIABLE_PAY: VariablePay,
    AdHocKind.ARREARS: Arrears,
    AdHocKind.REIMBURSEMENT: Reimbursement,
}

_PRIMARY_KEYS = {
    AdHocKind.VARIABLE_PAY: VariablePay.variable_pay_id,
    AdHocKind.ARREARS: Arrears.arrears_id,
    AdHocKind.REIMBURSEMENT: Reimbursement.reimbursement_id,
}

# Fields that may be edited before approval
_EDITABLE = {
    AdHocKind.VARIABLE_PAY: {"variable_pay_type", "amount", "description", "applicable_month", "applicable_year"},
    AdHocKind.ARREARS: {"arrears_type", "arrears_amount", "description", "applicable_month", "applicable_year"},
    AdHocKind.REIMBURSEMENT: {"reimbursement_type", "claim_amount", "description", "expense_date"},
}


def _validate_month(month: int) -> None:
    if not 1 <= month <= 12:
        raise ValidationError(f"Invalid applicable month {month}")


def _now() -> datetime:
    return datetime.now(timezone.utc)


class AdHocService:
    """Variable pay, arrears and reimbursements.

    Items are created as drafts, optionally submitted, then approved. Payslip
    generation selects only ``approved`` items and flips them to
    ``processed`` with a conditional update, so a retried generation can
    never pick the same item twice.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_variable_pay(
        self,
        employee_id: UUID,
        company_id: UUID,
        variable_pay_type: str,
        amount: Decimal,
        applicable_month: int,
        applicable_year: int,
        description: str | None = None,
    ) -> VariablePay:
        _validate_month(applicable_month)
        amount = to_decimal(amount)
        if amount <= 0:
            raise ValidationError("Variable pay amount must be positive")
        item = VariablePay(
            employee_id=employee_id,
            company_id=company_id,
            variable_pay_type=self._coerce(VariablePayType, variable_pay_type),
            amount=amount,
            applicable_month=applicable_month,
            applicable_year=applicable_year,
            description=description,
            status=AdHocStatus.DRAFT.value,
        )
        return await self._add(item)

    async def create_arrears(
        self,
        employee_id: UUID,
        company_id: UUID,
        arrears_type: str,
        original_period_from: date,
        original_period_to: date,
        arrears_amount: Decimal,
        applicable_month: int,
        applicable_year: int,
        original_amount: Decimal = ZERO,
        revised_amount: Decimal = ZERO,
        description: str | None = None,
    ) -> Arrears:
        _validate_month(applicable_month)
        if original_period_from > original_period_to:
            raise ValidationError("Original period start must not be after its end")
        item = Arrears(
            employee_id=employee_id,
            company_id=company_id,
            arrears_type=self._coerce(ArrearsType, arrears_type),
            original_period_from=original_period_from,
            original_period_to=original_period_to,
            original_amount=to_decimal(original_amount),
            revised_amount=to_decimal(revised_amount),
            arrears_amount=to_decimal(arrears_amount),
            applicable_month=applicable_month,
            applicable_year=applicable_year,
            description=description,
            status=AdHocStatus.DRAFT.value,
        )
        return await self._add(item)

    async def create_reimbursement(
        self,
        employee_id: UUID,
        company_id: UUID,
        reimbursement_type: str,
        claim_amount: Decimal,
        applicable_month: int,
        applicable_year: int,
        expense_date: date | None = None,
        description: str | None = None,
    ) -> Reimbursement:
        _validate_month(applicable_month)
        claim_amount = to_decimal(claim_amount)
        if claim_amount <= 0:
            raise ValidationError("Claim amount must be positive")
        item = Reimbursement(
            employee_id=employee_id,
            company_id=company_id,
            reimbursement_type=self._coerce(ReimbursementType, reimbursement_type),
            claim_amount=claim_amount,
            applicable_month=applicable_month,
            applicable_year=applicable_year,
            expense_date=expense_date,
            description=description,
            status=AdHocStatus.DRAFT.value,
        )
        return await self._add(item)

    @staticmethod
    def _coerce(enum_type: type, value: str) -> str:
        try:
            return enum_type(value).value
        except ValueError as exc:
            raise ValidationError(f"Unknown {enum_type.__name__} {value!r}") from exc

    async def _add(self, item: AdHocItem) -> AdHocItem:
        self.session.add(item)
        await self.session.flush()
        return item

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def get_item(self, kind: AdHocKind, item_id: UUID) -> AdHocItem:
        kind = AdHocKind(kind)
        item = await self.session.get(_MODELS[kind], item_id)
        if item is None:
            raise NotFoundError(kind.value.replace("_", " ").capitalize(), item_id)
        return item

    async def update_item(self, kind: AdHocKind, item_id: UUID, **changes: Any) -> AdHocItem:
        """Edit a draft or submitted item."""
        kind = AdHocKind(kind)
        item = await self.get_item(kind, item_id)
        if item.status not in (AdHocStatus.DRAFT.value, AdHocStatus.SUBMITTED.value):
            raise ValidationError(f"Cannot update {item.status} {kind.value} {item_id}")

        unknown = set(changes) - _EDITABLE[kind]
        if unknown:
            raise ValidationError(f"Fields {sorted(unknown)} cannot be updated")
        if "applicable_month" in changes:
            _validate_month(changes["applicable_month"])

        for name, value in changes.items():
            setattr(item, name, value)
        await self.session.flush()
        return item

    async def _transition(self, kind: AdHocKind, item_id: UUID, to_status: AdHocStatus) -> AdHocItem:
        item = await self.get_item(kind, item_id)
        AdHocStateMachine.validate_transition(item.status, to_status)
        item.status = to_status.value
        return item

    async def submit(self, kind: AdHocKind, item_id: UUID) -> AdHocItem:
        item = await self._transition(kind, item_id, AdHocStatus.SUBMITTED)
        await self.session.flush()
        return item

    async def approve(
        self,
        kind: AdHocKind,
        item_id: UUID,
        approved_by: str,
        approved_amount: Decimal | None = None,
    ) -> AdHocItem:
        """Approve an item; reimbursements may be approved for less than claimed."""
        kind = AdHocKind(kind)
        item = await self.get_item(kind, item_id)
        AdHocStateMachine.validate_transition(item.status, AdHocStatus.APPROVED)

        if kind is AdHocKind.REIMBURSEMENT:
            amount = item.claim_amount if approved_amount is None else to_decimal(approved_amount)
            if amount > item.claim_amount:
                raise ValidationError("Approved amount cannot exceed claim amount")
            if amount < 0:
                raise ValidationError("Approved amount cannot be negative")
            item.approved_amount = amount
        elif approved_amount is not None:
            raise ValidationError(f"approved_amount applies to reimbursements only, not {kind.value}")

        item.status = AdHocStatus.APPROVED.value
        item.approved_by = approved_by
        item.approved_at = _now()
        await self.session.flush()
        return item

    async def reject(self, kind: AdHocKind, item_id: UUID, reason: str | None = None) -> AdHocItem:
        item = await self._transition(kind, item_id, AdHocStatus.REJECTED)
        item.rejection_reason = reason
        await self.session.flush()
        return item

    async def cancel(self, kind: AdHocKind, item_id: UUID) -> AdHocItem:
        item = await self._transition(kind, item_id, AdHocStatus.CANCELLED)
        await self.session.flush()
        return item

    async def list_for_employee(
        self,
        kind: AdHocKind,
        employee_id: UUID,
        month: int | None = None,
        year: int | None = None,
        status: str | None = None,
    ) -> list[AdHocItem]:
        model = _MODELS[AdHocKind(kind)]
        stmt = select(model).where(model.employee_id == employee_id)
        if month is not None:
            stmt = stmt.where(model.applicable_month == month)
        if year is not None:
            stmt = stmt.where(model.applicable_year == year)
        if status is not None:
            stmt = stmt.where(model.status == status)
        stmt = stmt.order_by(model.applicable_year.desc(), model.applicable_month.desc(), model.created_at)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Payslip consumption
    # ------------------------------------------------------------------

    async def collect_approved(self, employee_id: UUID, month: int, year: int) -> AdHocCollection:
        """Approved items for a period with per-type breakdowns."""
        collection = AdHocCollection()
        targets = (
            (AdHocKind.VARIABLE_PAY, collection.variable_pay_ids, collection.variable_pay_breakdown),
            (AdHocKind.ARREARS, collection.arrears_ids, collection.arrears_breakdown),
            (AdHocKind.REIMBURSEMENT, collection.reimbursement_ids, collection.reimbursement_breakdown),
        )
        for kind, ids, breakdown in targets:
            for item in await self.list_for_employee(
                kind, employee_id, month, year, status=AdHocStatus.APPROVED.value
            ):
                ids.append(item.item_id)
                breakdown[item.breakdown_key] = breakdown.get(item.breakdown_key, ZERO) + item.payable_amount
        return collection

    async def mark_processed(
        self,
        collection: AdHocCollection,
        payroll_run_id: UUID,
        payslip_id: UUID,
    ) -> int:
        """Flip every collected item from approved to processed.

        Raises ValidationError if any item is no longer approved, which
        means another generation consumed it first.
        """
        consumed = 0
        batches = (
            (AdHocKind.VARIABLE_PAY, collection.variable_pay_ids),
            (AdHocKind.ARREARS, collection.arrears_ids),
            (AdHocKind.REIMBURSEMENT, collection.reimbursement_ids),
        )
        processed_at = _now()
        for kind, ids in batches:
            if not ids:
                continue
            model = _MODELS[kind]
            result = await self.session.execute(
                update(model)
                .where(
                    _PRIMARY_KEYS[kind].in_(ids),
                    model.status == AdHocStatus.APPROVED.value,
                )
                .values(
                    status=AdHocStatus.PROCESSED.value,
                    payroll_run_id=payroll_run_id,
                    payslip_id=payslip_id,
                    processed_at=processed_at,
                )
            )
            if result.rowcount != len(ids):
                raise ValidationError(
                    f"{len(ids) - result.rowcount} {kind.value} item(s) already processed"
                )
            consumed += result.rowcount

        if consumed:
            logger.info(
                "Consumed %d ad hoc item(s) into payslip %s (run %s)",
                consumed,
                payslip_id,
                payroll_run_id,
            )
        return consumed
