import asyncio
from datetime import date
from uuid import uuid4

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from rollcall.core.exceptions import DuplicateError, NotFoundError
from rollcall.core.schemas import AttendanceMark, ClassCreate, StudentCreate, StudentUpdate, TeacherCreate, TeacherUpdate
from rollcall.db.session import create_session_factory
from rollcall.stores.local import ATTENDANCE, LocalStore


@pytest.mark.asyncio
async def test_teacher_lookup_is_case_insensitive(local_store: LocalStore) -> None:
    created = await local_store.create_teacher(TeacherCreate(email="Ana@School.org", name="Ana"))

    found = await local_store.get_teacher_by_email("ana@school.org")

    assert found is not None
    assert found.id == created.id
    assert found.email == "ana@school.org"
    assert await local_store.get_teacher_by_email("nobody@school.org") is None


@pytest.mark.asyncio
async def test_duplicate_teacher_email_is_rejected(local_store: LocalStore) -> None:
    await local_store.create_teacher(TeacherCreate(email="ana@school.org", name="Ana"))

    with pytest.raises(DuplicateError):
        await local_store.create_teacher(TeacherCreate(email="ANA@school.org", name="Other"))


@pytest.mark.asyncio
async def test_update_missing_entities_raises_not_found(local_store: LocalStore) -> None:
    with pytest.raises(NotFoundError):
        await local_store.update_teacher(uuid4(), TeacherUpdate(name="X"))
    with pytest.raises(NotFoundError):
        await local_store.update_student(uuid4(), StudentUpdate(name="X"))
    with pytest.raises(NotFoundError):
        await local_store.delete_student(uuid4())


@pytest.mark.asyncio
async def test_classes_are_scoped_to_their_teacher(local_store: LocalStore) -> None:
    teacher_a, teacher_b = uuid4(), uuid4()
    first = await local_store.create_class(
        ClassCreate(teacher_id=teacher_a, school_name="North", class_name="5A", session="2024-25")
    )
    await local_store.create_class(
        ClassCreate(teacher_id=teacher_b, school_name="South", class_name="6B", session="2024-25")
    )

    classes = await local_store.get_classes_by_teacher(teacher_a)

    assert [c.id for c in classes] == [first.id]
    assert (await local_store.get_class_by_id(first.id)).class_name == "5A"
    assert await local_store.get_class_by_id(uuid4()) is None


@pytest.mark.asyncio
async def test_roster_keeps_insertion_order(local_store: LocalStore) -> None:
    class_id = uuid4()
    names = ["Zoe", "Adam", "Maya"]
    for name in names:
        await local_store.create_student(StudentCreate(class_id=class_id, name=name))
    await local_store.create_student(StudentCreate(class_id=uuid4(), name="Elsewhere"))

    roster = await local_store.get_students_by_class(class_id)

    assert [s.name for s in roster] == names


@pytest.mark.asyncio
async def test_delete_student_drops_owned_attendance(local_store: LocalStore) -> None:
    class_id = uuid4()
    kept = await local_store.create_student(StudentCreate(class_id=class_id, name="Kept"))
    gone = await local_store.create_student(StudentCreate(class_id=class_id, name="Gone"))
    day = date(2024, 3, 4)
    await local_store.mark_attendance(AttendanceMark(student_id=kept.id, date=day, status=True))
    await local_store.mark_attendance(AttendanceMark(student_id=gone.id, date=day, status=False))

    await local_store.delete_student(gone.id)

    assert [s.id for s in await local_store.get_students_by_class(class_id)] == [kept.id]
    remaining = await local_store.load_collection(ATTENDANCE)
    assert [r["student_id"] for r in remaining] == [str(kept.id)]


@pytest.mark.asyncio
async def test_mark_attendance_updates_in_place(local_store: LocalStore) -> None:
    student_id = uuid4()
    day = date(2024, 3, 4)

    first = await local_store.mark_attendance(AttendanceMark(student_id=student_id, date=day, status=True))
    second = await local_store.mark_attendance(AttendanceMark(student_id=student_id, date=day, status=False))

    assert second.id == first.id
    assert second.created_at == first.created_at
    assert second.status is False
    records = await local_store.get_attendance_for_students([student_id], day, day)
    assert len(records) == 1


@pytest.mark.asyncio
async def test_concurrent_marks_leave_one_record(local_store: LocalStore) -> None:
    student_id = uuid4()
    day = date(2024, 3, 4)

    await asyncio.gather(
        *(
            local_store.mark_attendance(AttendanceMark(student_id=student_id, date=day, status=i % 2 == 0))
            for i in range(5)
        )
    )

    records = await local_store.get_attendance_for_students([student_id], day, day)
    assert len(records) == 1


@pytest.mark.asyncio
async def test_attendance_range_is_inclusive_and_sorted(local_store: LocalStore) -> None:
    student_id = uuid4()
    for day in (date(2024, 3, 6), date(2024, 3, 4), date(2024, 3, 10), date(2024, 3, 2)):
        await local_store.mark_attendance(AttendanceMark(student_id=student_id, date=day, status=True))

    records = await local_store.get_attendance_for_students([student_id], date(2024, 3, 4), date(2024, 3, 6))

    assert [r.date for r in records] == [date(2024, 3, 4), date(2024, 3, 6)]


@pytest.mark.asyncio
async def test_data_survives_a_new_store_instance(engine: AsyncEngine, local_store: LocalStore) -> None:
    await local_store.create_teacher(TeacherCreate(email="ana@school.org", name="Ana"))

    reopened = LocalStore(create_session_factory(engine))

    assert (await reopened.get_teacher_by_email("ana@school.org")).name == "Ana"
