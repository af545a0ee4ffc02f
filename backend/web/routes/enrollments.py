"""
Enrollment API routes.

Behavior:
    - POST enrolls a student; 409 when already actively enrolled, 400 when the
      course is full or the student is not ACTIVE.
    - PUT /{id}/drop marks the enrollment DROPPED (the row is kept).
    - Per-student and per-course listings are paged with an optional status
      filter; `/active` variants return every ACTIVE enrollment unpaged.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from backend.academics.services.enrollments import ENROLLMENT_SORTS

from .. import wiring
from ..responses import current_principal, enrollment_out, json_private, page_out, page_request

enrollments_router = APIRouter(prefix="/api/v1/enrollments", tags=["Enrollments"])


class EnrollRequest(BaseModel):
    student_id: int
    course_id: int


@enrollments_router.post("")
async def enroll(request: Request, payload: EnrollRequest):
    enrollment = wiring.enrollments_service().enroll(current_principal(request), payload.student_id, payload.course_id)
    return json_private(enrollment_out(enrollment), status_code=201)


@enrollments_router.get("/student/{student_id}")
async def enrollments_by_student(
    request: Request,
    student_id: int,
    status: Optional[str] = None,
    page: int = 0,
    size: int = 20,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
):
    paging = page_request(page, size, sort, direction, ENROLLMENT_SORTS)
    result = wiring.enrollments_service().list_by_student(current_principal(request), student_id, paging, status=status)
    return json_private(page_out(result, enrollment_out))


@enrollments_router.get("/student/{student_id}/active")
async def active_enrollments_by_student(request: Request, student_id: int):
    result = wiring.enrollments_service().active_by_student(current_principal(request), student_id)
    return json_private([enrollment_out(e) for e in result.items])


@enrollments_router.get("/course/{course_id}")
async def enrollments_by_course(
    request: Request,
    course_id: int,
    status: Optional[str] = None,
    page: int = 0,
    size: int = 20,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
):
    paging = page_request(page, size, sort, direction, ENROLLMENT_SORTS)
    result = wiring.enrollments_service().list_by_course(current_principal(request), course_id, paging, status=status)
    return json_private(page_out(result, enrollment_out))


@enrollments_router.get("/course/{course_id}/active")
async def active_enrollments_by_course(request: Request, course_id: int):
    result = wiring.enrollments_service().active_by_course(current_principal(request), course_id)
    return json_private([enrollment_out(e) for e in result.items])


@enrollments_router.get("/{enrollment_id}")
async def get_enrollment(request: Request, enrollment_id: int):
    return json_private(enrollment_out(wiring.enrollments_service().get(current_principal(request), enrollment_id)))


@enrollments_router.put("/{enrollment_id}/drop")
async def drop_enrollment(request: Request, enrollment_id: int):
    return json_private(enrollment_out(wiring.enrollments_service().drop(current_principal(request), enrollment_id)))
