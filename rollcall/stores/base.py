from abc import ABC, abstractmethod
from datetime import date
from typing import List, Optional, Sequence
from uuid import UUID

from rollcall.core.exceptions import DuplicateError
from rollcall.core.schemas import (
    AttendanceMark,
    AttendanceRecord,
    ClassCreate,
    SchoolClass,
    Student,
    StudentCreate,
    StudentUpdate,
    Teacher,
    TeacherCreate,
    TeacherUpdate,
)


class EntityStore(ABC):
    """
    Entity-CRUD contract shared by the local and remote stores.

    Lookups return the entity or None; update/delete of a missing id raise NotFoundError.
    """

    name: str = "store"

    # ----- Teachers -----
    @abstractmethod
    async def create_teacher(self, payload: TeacherCreate) -> Teacher: ...

    @abstractmethod
    async def get_teacher_by_email(self, email: str) -> Optional[Teacher]: ...

    @abstractmethod
    async def update_teacher(self, teacher_id: UUID, payload: TeacherUpdate) -> Teacher: ...

    # ----- Classes -----
    @abstractmethod
    async def create_class(self, payload: ClassCreate) -> SchoolClass: ...

    @abstractmethod
    async def get_classes_by_teacher(self, teacher_id: UUID) -> List[SchoolClass]: ...

    @abstractmethod
    async def get_class_by_id(self, class_id: UUID) -> Optional[SchoolClass]: ...

    # ----- Students -----
    @abstractmethod
    async def create_student(self, payload: StudentCreate) -> Student: ...

    @abstractmethod
    async def get_students_by_class(self, class_id: UUID) -> List[Student]: ...

    @abstractmethod
    async def update_student(self, student_id: UUID, payload: StudentUpdate) -> Student: ...

    @abstractmethod
    async def delete_student(self, student_id: UUID) -> None: ...

    # ----- Attendance primitives -----
    @abstractmethod
    async def get_attendance_record(self, student_id: UUID, att_date: date) -> Optional[AttendanceRecord]: ...

    @abstractmethod
    async def insert_attendance(self, mark: AttendanceMark) -> AttendanceRecord:
        """Insert a new record; raise DuplicateError if one already exists for the key."""

    @abstractmethod
    async def update_attendance_status(self, record_id: UUID, status: bool) -> AttendanceRecord: ...

    @abstractmethod
    async def get_attendance_for_students(
        self,
        student_ids: Sequence[UUID],
        start: date,
        end: date,
    ) -> List[AttendanceRecord]:
        """Existing records for the given students with start <= date <= end, ordered by date."""

    async def mark_attendance(self, mark: AttendanceMark) -> AttendanceRecord:
        """Upsert keyed by (student_id, date); id and created_at survive an update."""
        existing = await self.get_attendance_record(mark.student_id, mark.date)
        if existing is not None:
            if existing.status == mark.status:
                return existing
            return await self.update_attendance_status(existing.id, mark.status)
        try:
            return await self.insert_attendance(mark)
        except DuplicateError:
            # Another writer inserted the key between our lookup and insert
            existing = await self.get_attendance_record(mark.student_id, mark.date)
            if existing is None:
                raise
            return await self.update_attendance_status(existing.id, mark.status)
