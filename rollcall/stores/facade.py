"""
DataStore facade: routes every entity operation to the remote or local store.

Connectivity failures on the remote side are absorbed here: the same logical
operation is re-issued against the local store and the connection manager is
switched to LOCAL_FALLBACK. Business errors propagate unchanged.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from datetime import date
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple, Type, TypeVar
from uuid import UUID

from pydantic import BaseModel, ValidationError

from rollcall.connection.manager import ConnectionManager
from rollcall.core.enums import ConnectionMode
from rollcall.core.exceptions import ConnectivityError, ServiceError
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

from .base import EntityStore
from .local import LocalStore

logger = logging.getLogger(__name__)

T = TypeVar("T")
P = TypeVar("P", bound=BaseModel)

AttendanceKey = Tuple[UUID, date]


def _build(model: Type[P], **data) -> P:
    try:
        return model(**data)
    except ValidationError as e:
        errors = "; ".join(f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors())
        raise ServiceError(f"Invalid input: {errors}") from e


class DataStore:
    def __init__(
        self,
        connection: ConnectionManager,
        local: LocalStore,
        remote: Optional[EntityStore] = None,
    ) -> None:
        self._connection = connection
        self._local = local
        self._remote = remote
        self._key_locks: Dict[AttendanceKey, asyncio.Lock] = {}
        self._key_users: Dict[AttendanceKey, int] = {}

    @property
    def connection(self) -> ConnectionManager:
        return self._connection

    @property
    def local(self) -> LocalStore:
        return self._local

    def active_store(self) -> EntityStore:
        if self._remote is None or self._connection.get_mode() == ConnectionMode.LOCAL_FALLBACK:
            return self._local
        return self._remote

    async def _dispatch(self, operation: str, call: Callable[[EntityStore], Awaitable[T]]) -> T:
        store = self.active_store()
        if store is self._local:
            return await call(self._local)
        try:
            return await call(store)
        except ConnectivityError as e:
            logger.warning("%s failed on remote store (%s); using local store", operation, e.message)
            self._connection.mark_degraded(e.reason, e.message)
            return await call(self._local)

    # ----- Teachers -----
    async def create_teacher(self, email: str, name: str) -> Teacher:
        payload = _build(TeacherCreate, email=email, name=name)
        return await self._dispatch("create_teacher", lambda s: s.create_teacher(payload))

    async def get_teacher_by_email(self, email: str) -> Optional[Teacher]:
        return await self._dispatch("get_teacher_by_email", lambda s: s.get_teacher_by_email(email))

    async def update_teacher(self, teacher_id: UUID, name: str) -> Teacher:
        payload = _build(TeacherUpdate, name=name)
        return await self._dispatch("update_teacher", lambda s: s.update_teacher(teacher_id, payload))

    # ----- Classes -----
    async def create_class(self, teacher_id: UUID, school_name: str, class_name: str, session: str) -> SchoolClass:
        payload = _build(
            ClassCreate,
            teacher_id=teacher_id,
            school_name=school_name,
            class_name=class_name,
            session=session,
        )
        return await self._dispatch("create_class", lambda s: s.create_class(payload))

    async def get_classes_by_teacher(self, teacher_id: UUID) -> List[SchoolClass]:
        return await self._dispatch("get_classes_by_teacher", lambda s: s.get_classes_by_teacher(teacher_id))

    async def get_class_by_id(self, class_id: UUID) -> Optional[SchoolClass]:
        return await self._dispatch("get_class_by_id", lambda s: s.get_class_by_id(class_id))

    # ----- Students -----
    async def create_student(self, class_id: UUID, name: str) -> Student:
        payload = _build(StudentCreate, class_id=class_id, name=name)
        return await self._dispatch("create_student", lambda s: s.create_student(payload))

    async def get_students_by_class(self, class_id: UUID) -> List[Student]:
        return await self._dispatch("get_students_by_class", lambda s: s.get_students_by_class(class_id))

    async def update_student(self, student_id: UUID, name: str) -> Student:
        payload = _build(StudentUpdate, name=name)
        return await self._dispatch("update_student", lambda s: s.update_student(student_id, payload))

    async def delete_student(self, student_id: UUID) -> None:
        await self._dispatch("delete_student", lambda s: s.delete_student(student_id))

    # ----- Attendance -----
    @asynccontextmanager
    async def _key_guard(self, key: AttendanceKey) -> AsyncIterator[None]:
        """Serialize upserts on one (student_id, date); the lock is dropped once nobody holds or awaits it."""
        lock = self._key_locks.get(key)
        if lock is None:
            lock = self._key_locks[key] = asyncio.Lock()
        self._key_users[key] = self._key_users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._key_users[key] -= 1
            if self._key_users[key] == 0:
                del self._key_users[key]
                del self._key_locks[key]

    async def mark_attendance(self, student_id: UUID, att_date: date, status: bool) -> AttendanceRecord:
        """Insert-or-update keyed by (student_id, date)."""
        mark = _build(AttendanceMark, student_id=student_id, date=att_date, status=status)
        async with self._key_guard(mark.key):
            return await self._dispatch("mark_attendance", lambda s: s.mark_attendance(mark))

    async def get_attendance_record(self, student_id: UUID, att_date: date) -> Optional[AttendanceRecord]:
        return await self._dispatch(
            "get_attendance_record", lambda s: s.get_attendance_record(student_id, att_date)
        )

    async def get_attendance_for_students(
        self,
        student_ids: Sequence[UUID],
        start: date,
        end: date,
    ) -> List[AttendanceRecord]:
        return await self._dispatch(
            "get_attendance_for_students",
            lambda s: s.get_attendance_for_students(student_ids, start, end),
        )

    def pending_attendance_keys(self) -> int:
        """Number of attendance keys with an upsert in flight."""
        return len(self._key_locks)
