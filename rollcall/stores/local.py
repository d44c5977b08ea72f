"""
Local-only store backed by the local key-value area.

Each entity type is one JSON collection under one key; every write reads the whole
collection, modifies it in memory and writes it back. Intended for a single process.
"""

import asyncio
import logging
from collections import defaultdict
from datetime import date
from typing import Any, Callable, Dict, List, Optional, Sequence, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from rollcall.core.exceptions import DuplicateError, NotFoundError, ServiceError
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
from rollcall.db.models import LocalCollection

from .base import EntityStore

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)

TEACHERS = "teachers"
CLASSES = "classes"
STUDENTS = "students"
ATTENDANCE = "attendance"


class LocalStore(EntityStore):
    name = "local"

    def __init__(self, session_factory: async_sessionmaker) -> None:
        self._session_factory = session_factory
        # Serializes read-modify-write cycles on one collection within this process
        self._write_locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    # ----- Key-value area -----
    async def load_collection(self, key: str) -> List[Dict[str, Any]]:
        try:
            async with self._session_factory() as db:
                row = await db.get(LocalCollection, key)
                if row is None or not row.value:
                    return []
                return [dict(item) for item in row.value]
        except SQLAlchemyError as e:
            raise ServiceError(f"Local store could not read {key}") from e

    async def save_collection(self, key: str, items: List[Dict[str, Any]]) -> None:
        try:
            async with self._session_factory() as db:
                row = await db.get(LocalCollection, key)
                if row is None:
                    db.add(LocalCollection(key=key, value=items))
                else:
                    row.value = items
                await db.commit()
        except SQLAlchemyError as e:
            raise ServiceError(f"Local store could not write {key}") from e

    async def _read(self, key: str, model: Type[M]) -> List[M]:
        return [model.model_validate(item) for item in await self.load_collection(key)]

    async def modify_collection(self, key: str, mutate: Callable[[List[Dict[str, Any]]], Any]) -> Any:
        """Whole-collection read-modify-write; mutate edits the list in place and returns the result."""
        async with self._write_locks[key]:
            items = await self.load_collection(key)
            result = mutate(items)
            await self.save_collection(key, items)
            return result

    # ----- Teachers -----
    async def create_teacher(self, payload: TeacherCreate) -> Teacher:
        teacher = Teacher(email=payload.email, name=payload.name)

        def mutate(items: List[Dict[str, Any]]) -> Teacher:
            if any(str(t["email"]).lower() == teacher.email.lower() for t in items):
                raise DuplicateError(f"An account with email {payload.email} already exists")
            items.append(teacher.model_dump(mode="json"))
            return teacher

        created = await self.modify_collection(TEACHERS, mutate)
        logger.debug("Local teacher created: %s", created.id)
        return created

    async def get_teacher_by_email(self, email: str) -> Optional[Teacher]:
        email = email.lower()
        for teacher in await self._read(TEACHERS, Teacher):
            if teacher.email.lower() == email:
                return teacher
        return None

    async def update_teacher(self, teacher_id: UUID, payload: TeacherUpdate) -> Teacher:
        def mutate(items: List[Dict[str, Any]]) -> Teacher:
            item = _find(items, teacher_id, "Teacher")
            item["name"] = payload.name
            return Teacher.model_validate(item)

        return await self.modify_collection(TEACHERS, mutate)

    # ----- Classes -----
    async def create_class(self, payload: ClassCreate) -> SchoolClass:
        # Parents are not checked: they may exist only in the remote store.
        obj = SchoolClass(**payload.model_dump())

        def mutate(items: List[Dict[str, Any]]) -> SchoolClass:
            items.append(obj.model_dump(mode="json"))
            return obj

        return await self.modify_collection(CLASSES, mutate)

    async def get_classes_by_teacher(self, teacher_id: UUID) -> List[SchoolClass]:
        return [c for c in await self._read(CLASSES, SchoolClass) if c.teacher_id == teacher_id]

    async def get_class_by_id(self, class_id: UUID) -> Optional[SchoolClass]:
        for c in await self._read(CLASSES, SchoolClass):
            if c.id == class_id:
                return c
        return None

    # ----- Students -----
    async def create_student(self, payload: StudentCreate) -> Student:
        student = Student(**payload.model_dump())

        def mutate(items: List[Dict[str, Any]]) -> Student:
            items.append(student.model_dump(mode="json"))
            return student

        return await self.modify_collection(STUDENTS, mutate)

    async def get_students_by_class(self, class_id: UUID) -> List[Student]:
        # Insertion order is the roster order
        return [s for s in await self._read(STUDENTS, Student) if s.class_id == class_id]

    async def update_student(self, student_id: UUID, payload: StudentUpdate) -> Student:
        def mutate(items: List[Dict[str, Any]]) -> Student:
            item = _find(items, student_id, "Student")
            item["name"] = payload.name
            return Student.model_validate(item)

        return await self.modify_collection(STUDENTS, mutate)

    async def delete_student(self, student_id: UUID) -> None:
        def drop_student(items: List[Dict[str, Any]]) -> None:
            _find(items, student_id, "Student")
            items[:] = [s for s in items if s["id"] != str(student_id)]

        def drop_attendance(items: List[Dict[str, Any]]) -> int:
            before = len(items)
            items[:] = [r for r in items if r["student_id"] != str(student_id)]
            return before - len(items)

        await self.modify_collection(STUDENTS, drop_student)
        removed = await self.modify_collection(ATTENDANCE, drop_attendance)
        logger.debug("Local student %s deleted with %d attendance records", student_id, removed)

    # ----- Attendance -----
    async def get_attendance_record(self, student_id: UUID, att_date: date) -> Optional[AttendanceRecord]:
        for record in await self._read(ATTENDANCE, AttendanceRecord):
            if record.student_id == student_id and record.date == att_date:
                return record
        return None

    async def insert_attendance(self, mark: AttendanceMark) -> AttendanceRecord:
        record = AttendanceRecord(student_id=mark.student_id, date=mark.date, status=mark.status)
        student_id, day = str(mark.student_id), mark.date.isoformat()

        def mutate(items: List[Dict[str, Any]]) -> AttendanceRecord:
            if any(r["student_id"] == student_id and r["date"] == day for r in items):
                raise DuplicateError(f"Attendance already recorded for student {student_id} on {day}")
            items.append(record.model_dump(mode="json"))
            return record

        return await self.modify_collection(ATTENDANCE, mutate)

    async def update_attendance_status(self, record_id: UUID, status: bool) -> AttendanceRecord:
        def mutate(items: List[Dict[str, Any]]) -> AttendanceRecord:
            item = _find(items, record_id, "Attendance record")
            item["status"] = status
            return AttendanceRecord.model_validate(item)

        return await self.modify_collection(ATTENDANCE, mutate)

    async def get_attendance_for_students(
        self,
        student_ids: Sequence[UUID],
        start: date,
        end: date,
    ) -> List[AttendanceRecord]:
        wanted = set(student_ids)
        records = [
            r
            for r in await self._read(ATTENDANCE, AttendanceRecord)
            if r.student_id in wanted and start <= r.date <= end
        ]
        return sorted(records, key=lambda r: r.date)


def _find(items: List[Dict[str, Any]], entity_id: UUID, label: str) -> Dict[str, Any]:
    key = str(entity_id)
    for item in items:
        if item["id"] == key:
            return item
    raise NotFoundError(f"{label} {entity_id} not found")
