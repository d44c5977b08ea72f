"""
Remote store: table CRUD against the backend-as-a-service REST API.

Filters use the PostgREST syntax (col=eq.value, col=in.(a,b), col=gte.value).
Transport failures are raised as ConnectivityError; rejections by the service as ServiceError.
"""

import logging
from datetime import date
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union
from uuid import UUID

import httpx

from rollcall.core.enums import ErrorReason
from rollcall.core.exceptions import ConnectivityError, DuplicateError, NotFoundError, ServiceError
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

logger = logging.getLogger(__name__)

Params = Union[Dict[str, str], List[Tuple[str, str]]]

# PostgREST / Postgres error codes
PGRST_NO_ROWS = "PGRST116"
PGRST_JWT_POLICY = "PGRST301"
PG_UNIQUE_VIOLATION = "23505"
PG_FOREIGN_KEY_VIOLATION = "23503"
PG_UNDEFINED_TABLE = "42P01"


def raise_for_remote_error(response: httpx.Response, operation: str) -> None:
    """Map a non-2xx response to the error taxonomy."""
    if response.is_success:
        return
    if response.status_code == httpx.codes.REQUEST_TIMEOUT or response.status_code == httpx.codes.GATEWAY_TIMEOUT:
        raise ConnectivityError(f"{operation}: remote service timed out", ErrorReason.TIMEOUT)
    if response.status_code >= 500:
        raise ConnectivityError(
            f"{operation}: remote service unavailable (HTTP {response.status_code})",
            ErrorReason.UNREACHABLE,
        )

    code, message = error_body(response)
    if code == PG_UNIQUE_VIOLATION:
        raise DuplicateError(f"{operation}: duplicate value ({message})")
    if code == PG_UNDEFINED_TABLE:
        raise ServiceError(f"{operation}: remote table does not exist")
    if code == PGRST_NO_ROWS or response.status_code == httpx.codes.NOT_FOUND:
        raise NotFoundError(f"{operation}: not found")
    if code == PGRST_JWT_POLICY:
        raise ServiceError(f"{operation}: row-level security policy violation")
    if code == PG_FOREIGN_KEY_VIOLATION:
        raise ServiceError(f"{operation}: referenced entity does not exist ({message})")
    raise ServiceError(f"{operation}: {message or f'HTTP {response.status_code}'}")


def error_body(response: httpx.Response) -> Tuple[Optional[str], str]:
    try:
        body = response.json()
    except ValueError:
        return None, response.text
    if not isinstance(body, dict):
        return None, str(body)
    message = body.get("message") or body.get("msg") or body.get("error_description") or body.get("error") or ""
    return body.get("code"), str(message)


async def transmit(client: httpx.AsyncClient, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
    """Issue one request, translating transport exceptions into ConnectivityError."""
    try:
        return await client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise ConnectivityError(f"{operation}: request timed out", ErrorReason.TIMEOUT) from e
    except httpx.TransportError as e:
        raise ConnectivityError(f"{operation}: could not reach remote service ({e})", ErrorReason.UNREACHABLE) from e


async def send(client: httpx.AsyncClient, operation: str, method: str, url: str, **kwargs: Any) -> httpx.Response:
    response = await transmit(client, operation, method, url, **kwargs)
    raise_for_remote_error(response, operation)
    return response


class RemoteStore(EntityStore):
    name = "remote"

    def __init__(self, client: httpx.AsyncClient, anon_key: str) -> None:
        self._client = client
        self._anon_key = anon_key
        self._access_token: Optional[str] = None

    def set_access_token(self, token: Optional[str]) -> None:
        """Use the signed-in user's token so the service applies per-teacher access policy."""
        self._access_token = token

    def _headers(self, prefer: Optional[str]) -> Dict[str, str]:
        headers = {
            "apikey": self._anon_key,
            "Authorization": f"Bearer {self._access_token or self._anon_key}",
        }
        if prefer:
            headers["Prefer"] = prefer
        return headers

    async def _rows(
        self,
        operation: str,
        method: str,
        table: str,
        *,
        params: Optional[Params] = None,
        json: Any = None,
        prefer: Optional[str] = "return=representation",
    ) -> List[Dict[str, Any]]:
        response = await send(
            self._client,
            operation,
            method,
            f"/rest/v1/{table}",
            params=params,
            json=json,
            headers=self._headers(prefer),
        )
        logger.debug("%s %s -> HTTP %d", method, table, response.status_code)
        if not response.content:
            return []
        data = response.json()
        return data if isinstance(data, list) else [data]

    async def _insert_one(self, operation: str, table: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        rows = await self._rows(operation, "POST", table, json=[payload])
        if not rows:
            raise ServiceError(f"{operation}: remote service returned no row")
        return rows[0]

    # ----- Teachers -----
    async def create_teacher(self, payload: TeacherCreate) -> Teacher:
        try:
            row = await self._insert_one("create teacher", "teachers", payload.model_dump(mode="json"))
        except DuplicateError as e:
            raise DuplicateError(f"An account with email {payload.email} already exists") from e
        return Teacher.model_validate(row)

    async def get_teacher_by_email(self, email: str) -> Optional[Teacher]:
        rows = await self._rows(
            "get teacher", "GET", "teachers", params={"select": "*", "email": f"eq.{email.lower()}"}, prefer=None
        )
        return Teacher.model_validate(rows[0]) if rows else None

    async def update_teacher(self, teacher_id: UUID, payload: TeacherUpdate) -> Teacher:
        rows = await self._rows(
            "update teacher", "PATCH", "teachers", params={"id": f"eq.{teacher_id}"}, json=payload.model_dump()
        )
        if not rows:
            raise NotFoundError(f"Teacher {teacher_id} not found")
        return Teacher.model_validate(rows[0])

    # ----- Classes -----
    async def create_class(self, payload: ClassCreate) -> SchoolClass:
        row = await self._insert_one("create class", "classes", payload.model_dump(mode="json"))
        return SchoolClass.model_validate(row)

    async def get_classes_by_teacher(self, teacher_id: UUID) -> List[SchoolClass]:
        rows = await self._rows(
            "list classes",
            "GET",
            "classes",
            params={"select": "*", "teacher_id": f"eq.{teacher_id}", "order": "created_at.asc"},
            prefer=None,
        )
        return [SchoolClass.model_validate(r) for r in rows]

    async def get_class_by_id(self, class_id: UUID) -> Optional[SchoolClass]:
        rows = await self._rows(
            "get class", "GET", "classes", params={"select": "*", "id": f"eq.{class_id}"}, prefer=None
        )
        return SchoolClass.model_validate(rows[0]) if rows else None

    # ----- Students -----
    async def create_student(self, payload: StudentCreate) -> Student:
        row = await self._insert_one("create student", "students", payload.model_dump(mode="json"))
        return Student.model_validate(row)

    async def get_students_by_class(self, class_id: UUID) -> List[Student]:
        rows = await self._rows(
            "list students",
            "GET",
            "students",
            params={"select": "*", "class_id": f"eq.{class_id}", "order": "created_at.asc"},
            prefer=None,
        )
        return [Student.model_validate(r) for r in rows]

    async def update_student(self, student_id: UUID, payload: StudentUpdate) -> Student:
        rows = await self._rows(
            "update student", "PATCH", "students", params={"id": f"eq.{student_id}"}, json=payload.model_dump()
        )
        if not rows:
            raise NotFoundError(f"Student {student_id} not found")
        return Student.model_validate(rows[0])

    async def delete_student(self, student_id: UUID) -> None:
        # Owned attendance goes first so no orphan records remain if the service does not cascade
        await self._rows(
            "delete student attendance", "DELETE", "attendance", params={"student_id": f"eq.{student_id}"}
        )
        rows = await self._rows("delete student", "DELETE", "students", params={"id": f"eq.{student_id}"})
        if not rows:
            raise NotFoundError(f"Student {student_id} not found")

    # ----- Attendance -----
    async def get_attendance_record(self, student_id: UUID, att_date: date) -> Optional[AttendanceRecord]:
        rows = await self._rows(
            "get attendance",
            "GET",
            "attendance",
            params={"select": "*", "student_id": f"eq.{student_id}", "date": f"eq.{att_date.isoformat()}"},
            prefer=None,
        )
        return AttendanceRecord.model_validate(rows[0]) if rows else None

    async def insert_attendance(self, mark: AttendanceMark) -> AttendanceRecord:
        row = await self._insert_one("mark attendance", "attendance", mark.model_dump(mode="json"))
        return AttendanceRecord.model_validate(row)

    async def update_attendance_status(self, record_id: UUID, status: bool) -> AttendanceRecord:
        rows = await self._rows(
            "update attendance", "PATCH", "attendance", params={"id": f"eq.{record_id}"}, json={"status": status}
        )
        if not rows:
            raise NotFoundError(f"Attendance record {record_id} not found")
        return AttendanceRecord.model_validate(rows[0])

    async def get_attendance_for_students(
        self,
        student_ids: Sequence[UUID],
        start: date,
        end: date,
    ) -> List[AttendanceRecord]:
        if not student_ids:
            return []
        params = [
            ("select", "*"),
            ("student_id", f"in.({','.join(str(s) for s in student_ids)})"),
            ("date", f"gte.{start.isoformat()}"),
            ("date", f"lte.{end.isoformat()}"),
            ("order", "date.asc"),
        ]
        rows = await self._rows("list attendance", "GET", "attendance", params=params, prefer=None)
        return [AttendanceRecord.model_validate(r) for r in rows]
