"""Payroll run service - orchestrates payslip generation for a company period."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from payslip_engine.calculators.money import ZERO
from payslip_engine.calculators.types import EmployeeOutcome, RunSummary
from payslip_engine.config import Settings, get_settings
from payslip_engine.errors import ConflictError, InvalidTransitionError, NotFoundError, ValidationError
from payslip_engine.models import Payslip, PayrollRun
from payslip_engine.schemas import TaxPolicy
from payslip_engine.services.payslip_service import PayslipService
from payslip_engine.services.sources import AttendanceSource, EmployeeDirectory, SqlEmployeeDirectory
from payslip_engine.services.state_machine import PayrollRunStateMachine, PayrollRunStatus
from payslip_engine.services.tax_configuration_service import TaxConfigurationService

logger = logging.getLogger(__name__)


def _now() -> datetime:
    return datetime.now(timezone.utc)


class PayrollRunService:
    """Service for managing the payroll run lifecycle.

    Operations:
    - create_run: open a draft run for (company, month, year)
    - process_run: generate every active employee's payslip
    - lock_run: freeze a completed run

    Each employee is generated in its own session and transaction, at most
    ``worker_pool_size`` at a time. A failing employee is recorded in the
    summary and never aborts the run; a missing tax configuration does.
    The run row is written only before the workers start and after all of
    them have settled.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        employee_directory: EmployeeDirectory | None = None,
        attendance_source: AttendanceSource | None = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.employee_directory = employee_directory
        self.attendance_source = attendance_source

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    @staticmethod
    async def _load_run(session: AsyncSession, payroll_run_id: UUID) -> PayrollRun:
        run = await session.get(PayrollRun, payroll_run_id)
        if run is None:
            raise NotFoundError("Payroll run", payroll_run_id)
        return run

    async def get_run(self, payroll_run_id: UUID) -> PayrollRun:
        async with self.session_factory() as session:
            return await self._load_run(session, payroll_run_id)

    async def list_runs(
        self,
        company_id: UUID,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[PayrollRun], int]:
        page = max(page, 1)
        async with self.session_factory() as session:
            rows = await session.execute(
                select(PayrollRun)
                .where(PayrollRun.company_id == company_id)
                .order_by(PayrollRun.payroll_year.desc(), PayrollRun.payroll_month.desc())
                .limit(limit)
                .offset((page - 1) * limit)
            )
            count = await session.execute(
                select(func.count()).select_from(PayrollRun).where(PayrollRun.company_id == company_id)
            )
            return list(rows.scalars().all()), count.scalar_one()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def create_run(self, company_id: UUID, month: int, year: int) -> PayrollRun:
        """Open a draft run; one per company and period."""
        if not 1 <= month <= 12:
            raise ValidationError(f"Invalid payroll month {month}")

        async with self.session_factory() as session:
            async with session.begin():
                existing = await session.execute(
                    select(PayrollRun.payroll_run_id).where(
                        PayrollRun.company_id == company_id,
                        PayrollRun.payroll_month == month,
                        PayrollRun.payroll_year == year,
                    )
                )
                if existing.scalar_one_or_none() is not None:
                    raise ConflictError(f"Payroll run already exists for {year}-{month:02d}")

                run = PayrollRun(
                    company_id=company_id,
                    payroll_month=month,
                    payroll_year=year,
                    status=PayrollRunStatus.DRAFT.value,
                    total_employees=0,
                    processed_employees=0,
                    failed_employees=0,
                    total_gross_salary=ZERO,
                    total_deductions=ZERO,
                    total_net_salary=ZERO,
                )
                session.add(run)
                try:
                    await session.flush()
                except IntegrityError as exc:
                    raise ConflictError(f"Payroll run already exists for {year}-{month:02d}") from exc

        logger.info("Created payroll run %s for company %s %d-%02d", run.payroll_run_id, company_id, year, month)
        return run

    async def process_run(
        self,
        payroll_run_id: UUID,
        processed_by: str,
        resume: bool = False,
    ) -> RunSummary:
        """Generate payslips for every active employee of the run's company.

        A run already in ``processing`` belongs to another processor and is
        rejected. Pass ``resume=True`` to take over a run whose processor
        died; payslips it committed are kept.
        """
        run = await self._start_processing(payroll_run_id, processed_by, resume)

        try:
            async with self.session_factory() as session:
                config = await TaxConfigurationService(
                    session, self.settings.financial_year_start_month
                ).get_for_period(run.company_id, run.payroll_month, run.payroll_year)
                policy = TaxConfigurationService.to_policy(config)

                directory = self.employee_directory or SqlEmployeeDirectory(session)
                employee_ids = await directory.list_active(run.company_id)

            logger.info(
                "Processing payroll run %s: %d active employee(s)",
                payroll_run_id,
                len(employee_ids),
            )
            outcomes = await self._process_employees(run, employee_ids, policy)
        except Exception as exc:
            await self._mark_failed(payroll_run_id, str(exc))
            logger.error("Payroll run %s failed: %s", payroll_run_id, exc)
            raise

        return await self._complete(payroll_run_id, outcomes)

    async def lock_run(self, payroll_run_id: UUID, locked_by: str) -> PayrollRun:
        """Freeze a completed run; locked runs can never change again."""
        async with self.session_factory() as session:
            async with session.begin():
                run = await self._load_run(session, payroll_run_id)
                if run.status != PayrollRunStatus.COMPLETED.value:
                    raise InvalidTransitionError(
                        run.status,
                        PayrollRunStatus.LOCKED,
                        "only completed payroll runs can be locked",
                    )
                run.status = PayrollRunStatus.LOCKED.value
                run.locked_by = locked_by
                run.locked_at = _now()

        logger.info("Payroll run %s locked by %s", payroll_run_id, locked_by)
        return run

    # ------------------------------------------------------------------
    # Processing steps
    # ------------------------------------------------------------------

    async def _start_processing(self, payroll_run_id: UUID, processed_by: str, resume: bool = False) -> PayrollRun:
        async with self.session_factory() as session:
            async with session.begin():
                run = await self._load_run(session, payroll_run_id)
                if run.status == PayrollRunStatus.LOCKED.value:
                    raise InvalidTransitionError(
                        run.status, PayrollRunStatus.PROCESSING, "payroll run is locked"
                    )
                if run.status == PayrollRunStatus.COMPLETED.value:
                    raise InvalidTransitionError(
                        run.status, PayrollRunStatus.PROCESSING, "payroll run is already completed"
                    )
                if run.status == PayrollRunStatus.PROCESSING.value and not resume:
                    raise InvalidTransitionError(
                        run.status, PayrollRunStatus.PROCESSING, "payroll run is already being processed"
                    )
                PayrollRunStateMachine.validate_transition(run.status, PayrollRunStatus.PROCESSING)

                claimable = PayrollRunStateMachine.RESUMABLE if resume else PayrollRunStateMachine.PROCESSABLE
                # Conditional update so two processors cannot both claim the run
                result = await session.execute(
                    update(PayrollRun)
                    .where(
                        PayrollRun.payroll_run_id == payroll_run_id,
                        PayrollRun.status.in_([s.value for s in claimable]),
                    )
                    .values(
                        status=PayrollRunStatus.PROCESSING.value,
                        processed_by=processed_by,
                        failure_reason=None,
                    )
                )
                if result.rowcount == 0:
                    await session.refresh(run)
                    raise InvalidTransitionError(
                        run.status, PayrollRunStatus.PROCESSING, "status changed concurrently"
                    )
                await session.refresh(run)
        return run

    async def _process_employees(
        self,
        run: PayrollRun,
        employee_ids: list[UUID],
        policy: TaxPolicy,
    ) -> list[EmployeeOutcome]:
        semaphore = asyncio.Semaphore(self.settings.worker_pool_size)

        async def worker(employee_id: UUID) -> EmployeeOutcome:
            async with semaphore:
                return await self._process_employee(run, employee_id, policy)

        # Barrier: every employee settles before the run row is touched again
        return list(await asyncio.gather(*(worker(employee_id) for employee_id in employee_ids)))

    async def _process_employee(
        self,
        run: PayrollRun,
        employee_id: UUID,
        policy: TaxPolicy,
    ) -> EmployeeOutcome:
        timeout = self.settings.employee_timeout
        try:
            payslip = await asyncio.wait_for(self._generate(run, employee_id, policy), timeout)
        except asyncio.TimeoutError:
            reason = f"timed out after {timeout}s"
            logger.error("Payslip generation for employee %s in run %s %s", employee_id, run.payroll_run_id, reason)
            return EmployeeOutcome(employee_id=employee_id, reason=reason)
        except Exception as exc:
            logger.exception(
                "Payslip generation failed for employee %s in run %s",
                employee_id,
                run.payroll_run_id,
            )
            return EmployeeOutcome(employee_id=employee_id, reason=f"{type(exc).__name__}: {exc}")
        return EmployeeOutcome(employee_id=employee_id, payslip=payslip)

    async def _generate(self, run: PayrollRun, employee_id: UUID, policy: TaxPolicy) -> Payslip:
        """One employee, one transaction: payslip and side effects commit together."""
        async with self.session_factory() as session:
            async with session.begin():
                composer = PayslipService(
                    session,
                    attendance_source=self.attendance_source,
                    payslip_number_prefix=self.settings.payslip_number_prefix,
                )
                # A retried run keeps payslips committed by the earlier attempt
                existing = await composer.find_for_run(employee_id, run.payroll_run_id)
                if existing is not None:
                    return existing
                return await composer.generate_payslip_for_employee(
                    employee_id=employee_id,
                    payroll_run_id=run.payroll_run_id,
                    company_id=run.company_id,
                    month=run.payroll_month,
                    year=run.payroll_year,
                    tax_config=policy,
                )

    async def _complete(self, payroll_run_id: UUID, outcomes: list[EmployeeOutcome]) -> RunSummary:
        succeeded = [o.payslip for o in outcomes if o.payslip is not None]
        summary = RunSummary(
            payroll_run_id=payroll_run_id,
            status=PayrollRunStatus.COMPLETED.value,
            total_employees=len(outcomes),
            processed_employees=len(succeeded),
            failed_employees=len(outcomes) - len(succeeded),
            total_gross_salary=sum((p.gross_salary for p in succeeded), Decimal("0")),
            total_deductions=sum((p.total_deductions for p in succeeded), Decimal("0")),
            total_net_salary=sum((p.net_salary for p in succeeded), Decimal("0")),
            failures={o.employee_id: o.reason or "unknown error" for o in outcomes if not o.success},
        )

        async with self.session_factory() as session:
            async with session.begin():
                run = await self._load_run(session, payroll_run_id)
                PayrollRunStateMachine.validate_transition(run.status, PayrollRunStatus.COMPLETED)
                run.status = PayrollRunStatus.COMPLETED.value
                run.total_employees = summary.total_employees
                run.processed_employees = summary.processed_employees
                run.failed_employees = summary.failed_employees
                run.total_gross_salary = summary.total_gross_salary
                run.total_deductions = summary.total_deductions
                run.total_net_salary = summary.total_net_salary
                run.processed_at = _now()

        logger.info(
            "Payroll run %s completed: %d processed, %d failed, gross=%s net=%s",
            payroll_run_id,
            summary.processed_employees,
            summary.failed_employees,
            summary.total_gross_salary,
            summary.total_net_salary,
        )
        return summary

    async def _mark_failed(self, payroll_run_id: UUID, reason: str) -> None:
        async with self.session_factory() as session:
            async with session.begin():
                run = await self._load_run(session, payroll_run_id)
                run.status = PayrollRunStatus.FAILED.value
                run.failure_reason = reason
