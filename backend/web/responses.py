"""
Shared response helpers and record serializers for the API routes.

All responses are user- and role-scoped, so every body goes out with
`Cache-Control: private, no-store`. Serializers drop joined ownership ids that
only exist for access checks and add the derived values clients need.
"""
from __future__ import annotations

from dataclasses import asdict
from fractions import Fraction
from typing import Any, Callable, Dict, Optional, Sequence

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse, Response

from backend.academics.errors import UnauthenticatedError
from backend.academics.paging import Page, PageRequest
from backend.academics.records import (
    Attendance,
    AttendanceSummary,
    Course,
    Department,
    Enrollment,
    Grade,
    ProvisionedProfile,
    Student,
    Teacher,
)
from backend.identity_access.domain import Principal, User

PRIVATE_HEADERS = {"Cache-Control": "private, no-store"}

_INTERNAL_FIELDS = ("teacher_user_id", "course_owner_id", "student_user_id", "present_or_late", "attendance_total")


def json_private(payload: Any, *, status_code: int = 200) -> JSONResponse:
    """Return a JSONResponse with cache disabled for shared caches and browsers."""
    return JSONResponse(content=jsonable_encoder(payload), status_code=status_code, headers=dict(PRIVATE_HEADERS))


def no_content() -> Response:
    return Response(status_code=204, headers=dict(PRIVATE_HEADERS))


def error_body(request: Request, status: int, error: str, message: str, field_errors: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    body: Dict[str, Any] = {"status": status, "error": error, "message": message, "path": request.url.path}
    if field_errors:
        body["fieldErrors"] = field_errors
    return body


def private_error(request: Request, status: int, error: str, message: str, field_errors: Optional[Dict[str, str]] = None) -> JSONResponse:
    """Uniform error envelope with private, no-store cache headers."""
    return JSONResponse(
        content=error_body(request, status, error, message, field_errors),
        status_code=status,
        headers=dict(PRIVATE_HEADERS),
    )


def current_principal(request: Request) -> Principal:
    principal = getattr(request.state, "principal", None)
    if principal is None:
        raise UnauthenticatedError()
    return principal


def page_request(page: int, size: int, sort: Optional[str], direction: Optional[str], allowed: Sequence[str]) -> PageRequest:
    return PageRequest.of(page, size, sort, direction, allowed_sorts=allowed)


def _strip(data: Dict[str, Any]) -> Dict[str, Any]:
    for key in _INTERNAL_FIELDS:
        data.pop(key, None)
    return data


def fraction_fields(value: Optional[Fraction], name: str = "gpa") -> Dict[str, Any]:
    """`{name: float, name_exact: "p/q"}`; both None when undefined."""
    if value is None:
        return {name: None, f"{name}_exact": None}
    return {name: round(float(value), 4), f"{name}_exact": str(value)}


def page_out(page: Page, serialize: Callable[[Any], Dict[str, Any]]) -> Dict[str, Any]:
    return {
        "content": [serialize(item) for item in page.items],
        "page": page.page,
        "size": page.size,
        "total_elements": page.total,
        "total_pages": page.total_pages,
    }


def user_out(user: User) -> Dict[str, Any]:
    return {
        "id": user.id,
        "username": user.username,
        "email": user.email,
        "role": user.role,
        "active": user.active,
    }


def department_out(d: Department) -> Dict[str, Any]:
    return asdict(d)


def student_out(s: Student) -> Dict[str, Any]:
    data = asdict(s)
    data["full_name"] = s.full_name
    return data


def teacher_out(t: Teacher) -> Dict[str, Any]:
    data = asdict(t)
    data["full_name"] = t.full_name
    return data


def provisioned_out(p: ProvisionedProfile, serialize: Callable[[Any], Dict[str, Any]]) -> Dict[str, Any]:
    data = serialize(p.profile)
    data["username"] = p.username
    if p.initial_password is not None:
        data["initial_password"] = p.initial_password
    return data


def course_out(c: Course) -> Dict[str, Any]:
    data = _strip(asdict(c))
    data["enrolled_count"] = c.enrolled_count
    data["available_seats"] = c.available_seats
    data["is_full"] = c.is_full
    return data


def enrollment_out(e: Enrollment) -> Dict[str, Any]:
    data = _strip(asdict(e))
    data["attendance_percentage"] = round(e.attendance_percentage, 2)
    return data


def grade_out(g: Grade) -> Dict[str, Any]:
    data = _strip(asdict(g))
    data["grade"] = data.pop("letter")
    data["grade_point"] = g.point
    return data


def attendance_out(a: Attendance) -> Dict[str, Any]:
    return _strip(asdict(a))


def summary_out(s: AttendanceSummary) -> Dict[str, Any]:
    return {
        "course_id": s.course_id,
        "date": s.date,
        "present": s.present,
        "absent": s.absent,
        "late": s.late,
        "total_active_enrollments": s.total_active,
        "attendance_rate": round(s.attendance_rate, 2),
        "records": [attendance_out(a) for a in s.records],
    }


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization") or ""
    scheme, _, token = header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        return None
    return token.strip()
