"""Monthly attendance aggregation from daily records and approved leave."""

from __future__ import annotations

import calendar
from datetime import date
from typing import Iterable, Mapping

from payslip_engine.calculators.types import AttendanceSummary

# Daily statuses that count as a day worked
PRESENT_STATUSES = frozenset({"present", "late", "half_day"})

SATURDAY = 5


def month_bounds(month: int, year: int) -> tuple[date, date]:
    """First and last calendar day of a month."""
    return date(year, month, 1), date(year, month, calendar.monthrange(year, month)[1])


def aggregate_attendance(
    month: int,
    year: int,
    attendance: Mapping[date, str],
    leave_ranges: Iterable[tuple[date, date]],
) -> AttendanceSummary:
    """Count working, present, absent and leave days for one month.

    Weekdays are working days. A day covered by approved leave counts as
    both leave and present; otherwise the attendance status decides, and a
    weekday with no record is an absence.
    """
    leave_ranges = list(leave_ranges)
    first, last = month_bounds(month, year)

    working = present = absent = leave = 0
    for day_number in range(first.day, last.day + 1):
        day = date(year, month, day_number)
        if day.weekday() >= SATURDAY:
            continue
        working += 1

        if any(start <= day <= end for start, end in leave_ranges):
            leave += 1
            present += 1
        elif attendance.get(day) in PRESENT_STATUSES:
            present += 1
        else:
            absent += 1

    return AttendanceSummary(
        working_days=working,
        present_days=present,
        absent_days=absent,
        leave_days=leave,
    )
