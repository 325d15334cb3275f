"""Collaborators that supply employees and attendance to the payroll engine.

The engine depends only on the ``EmployeeDirectory`` and ``AttendanceSource``
protocols. The SQL implementations read the mirror tables in
``payslip_engine.models.directory``.
"""

from __future__ import annotations

from typing import Protocol
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from payslip_engine.calculators.attendance import aggregate_attendance, month_bounds
from payslip_engine.calculators.types import AttendanceSummary
from payslip_engine.models import AttendanceRecord, Employee, LeaveRequest


class EmployeeDirectory(Protocol):
    async def list_active(self, company_id: UUID) -> list[UUID]:
        ...


class AttendanceSource(Protocol):
    async def get_monthly_aggregate(
        self,
        employee_id: UUID,
        company_id: UUID,
        month: int,
        year: int,
    ) -> AttendanceSummary:
        ...


class SqlEmployeeDirectory:
    """Active employees from the ``employee`` table."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active(self, company_id: UUID) -> list[UUID]:
        result = await self.session.execute(
            select(Employee.employee_id)
            .where(Employee.company_id == company_id, Employee.status == "active")
            .order_by(Employee.employee_number)
        )
        return list(result.scalars().all())


class SqlAttendanceSource:
    """Monthly aggregate built from daily attendance and approved leave."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_monthly_aggregate(
        self,
        employee_id: UUID,
        company_id: UUID,
        month: int,
        year: int,
    ) -> AttendanceSummary:
        first, last = month_bounds(month, year)

        records = await self.session.execute(
            select(AttendanceRecord.work_date, AttendanceRecord.status).where(
                AttendanceRecord.employee_id == employee_id,
                AttendanceRecord.company_id == company_id,
                AttendanceRecord.work_date >= first,
                AttendanceRecord.work_date <= last,
            )
        )
        leaves = await self.session.execute(
            select(LeaveRequest.start_date, LeaveRequest.end_date).where(
                LeaveRequest.employee_id == employee_id,
                LeaveRequest.company_id == company_id,
                LeaveRequest.status == "approved",
                LeaveRequest.start_date <= last,
                LeaveRequest.end_date >= first,
            )
        )

        return aggregate_attendance(
            month,
            year,
            {work_date: status for work_date, status in records.all()},
            [(start, end) for start, end in leaves.all()],
        )
