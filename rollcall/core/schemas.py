from datetime import date, datetime, timezone
from typing import Annotated, Tuple
from uuid import UUID, uuid4

from pydantic import BaseModel, EmailStr, Field, StringConstraints, field_validator


NonBlankStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=255)]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Teacher(BaseModel):
    """Teacher profile. Created on sign-up, looked up by email, never deleted."""

    id: UUID = Field(default_factory=uuid4)
    email: EmailStr
    name: str
    created_at: datetime = Field(default_factory=utcnow)


class SchoolClass(BaseModel):
    """A class owned by one teacher."""

    id: UUID = Field(default_factory=uuid4)
    teacher_id: UUID
    school_name: str
    class_name: str
    session: str  # label such as "2024-25"
    created_at: datetime = Field(default_factory=utcnow)


class Student(BaseModel):
    """Roster member of one class."""

    id: UUID = Field(default_factory=uuid4)
    class_id: UUID
    name: str
    created_at: datetime = Field(default_factory=utcnow)


class AttendanceRecord(BaseModel):
    """Attendance of one student on one day. At most one per (student_id, date)."""

    id: UUID = Field(default_factory=uuid4)
    student_id: UUID
    date: date
    status: bool  # True = present
    created_at: datetime = Field(default_factory=utcnow)


# ----- Payloads -----
class TeacherCreate(BaseModel):
    email: EmailStr
    name: NonBlankStr

    @field_validator("email")
    @classmethod
    def normalize_email(cls, value: str) -> str:
        # Emails are stored lowercased so equality lookups work in both stores
        return value.lower()


class TeacherUpdate(BaseModel):
    name: NonBlankStr


class ClassCreate(BaseModel):
    teacher_id: UUID
    school_name: NonBlankStr
    class_name: NonBlankStr
    session: NonBlankStr


class StudentCreate(BaseModel):
    class_id: UUID
    name: NonBlankStr


class StudentUpdate(BaseModel):
    name: NonBlankStr


class AttendanceMark(BaseModel):
    """Natural key plus status for an attendance upsert."""

    student_id: UUID
    date: date
    status: bool

    @property
    def key(self) -> Tuple[UUID, date]:
        return (self.student_id, self.date)
