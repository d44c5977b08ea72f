from datetime import date
from typing import List, Optional

from pydantic import BaseModel

from rollcall.core.schemas import AttendanceRecord, Student


class RosterEntry(BaseModel):
    """One roster member on one day. attendance is None when the student is unmarked."""

    student: Student
    attendance: Optional[AttendanceRecord] = None

    @property
    def marked(self) -> bool:
        return self.attendance is not None

    @property
    def present(self) -> Optional[bool]:
        """True/False when marked, None when unmarked (never coerced to absent)."""
        return self.attendance.status if self.attendance is not None else None


class DailyAttendanceCount(BaseModel):
    """Counts for one calendar day; unmarked roster members are counted as absent."""

    date: date
    present: int
    absent: int

    @property
    def total(self) -> int:
        return self.present + self.absent


class StudentAttendanceEntry(BaseModel):
    date: date
    status: bool


class AttendanceSummary(BaseModel):
    """Totals over a range of daily counts (reports view)."""

    days: int
    total_present: int
    total_absent: int
    attendance_rate: float  # percentage 0-100, 0 when there is nothing to count
    daily: List[DailyAttendanceCount]
