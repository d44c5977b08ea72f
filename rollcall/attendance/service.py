"""Attendance views over whichever store is active."""

import logging
from datetime import date, timedelta
from typing import Dict, List, Sequence, Tuple
from uuid import UUID

from rollcall.core.exceptions import ServiceError
from rollcall.core.schemas import AttendanceRecord
from rollcall.stores.facade import DataStore

from .schemas import AttendanceSummary, DailyAttendanceCount, RosterEntry, StudentAttendanceEntry

logger = logging.getLogger(__name__)


def _validate_range(start: date, end: date) -> None:
    if start > end:
        raise ServiceError(f"Start date {start} is after end date {end}")


def _days(start: date, end: date) -> List[date]:
    # Plain calendar dates, so no timezone shift can drop or repeat a day
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


async def get_attendance_by_date(
    store: DataStore,
    class_id: UUID,
    att_date: date,
) -> List[RosterEntry]:
    """One entry per roster member in roster order; unmarked students carry no record."""
    students = await store.get_students_by_class(class_id)
    if not students:
        return []
    records = await store.get_attendance_for_students([s.id for s in students], att_date, att_date)
    by_student: Dict[UUID, AttendanceRecord] = {r.student_id: r for r in records}
    return [RosterEntry(student=s, attendance=by_student.get(s.id)) for s in students]


async def get_attendance_by_date_range(
    store: DataStore,
    class_id: UUID,
    start: date,
    end: date,
) -> List[DailyAttendanceCount]:
    """
    One entry per calendar day in [start, end].

    Students without a record on a day count as absent, so present + absent always
    equals the current roster size.
    """
    _validate_range(start, end)
    students = await store.get_students_by_class(class_id)
    roster_size = len(students)
    records = await store.get_attendance_for_students([s.id for s in students], start, end)

    # Keyed by (student, day) so a stray duplicate can never count a student twice
    status_by_key: Dict[Tuple[UUID, date], bool] = {}
    for record in records:
        status_by_key[(record.student_id, record.date)] = record.status

    present_by_day: Dict[date, int] = {}
    for (_, day), status in status_by_key.items():
        if status:
            present_by_day[day] = present_by_day.get(day, 0) + 1

    counts = []
    for day in _days(start, end):
        present = present_by_day.get(day, 0)
        counts.append(DailyAttendanceCount(date=day, present=present, absent=roster_size - present))
    logger.debug("Range %s..%s for class %s: %d days, roster %d", start, end, class_id, len(counts), roster_size)
    return counts


async def get_student_attendance(
    store: DataStore,
    student_id: UUID,
    start: date,
    end: date,
) -> List[StudentAttendanceEntry]:
    """Existing records only, ordered by date; missing days are not padded."""
    _validate_range(start, end)
    records = await store.get_attendance_for_students([student_id], start, end)
    return [StudentAttendanceEntry(date=r.date, status=r.status) for r in sorted(records, key=lambda r: r.date)]


def summarize_attendance(daily: Sequence[DailyAttendanceCount]) -> AttendanceSummary:
    total_present = sum(d.present for d in daily)
    total_absent = sum(d.absent for d in daily)
    counted = total_present + total_absent
    rate = round(total_present * 100.0 / counted, 2) if counted else 0.0
    return AttendanceSummary(
        days=len(daily),
        total_present=total_present,
        total_absent=total_absent,
        attendance_rate=rate,
        daily=list(daily),
    )
