"""
Course API routes.

Why:
    Course responses always include the live `enrolled_count`,
    `available_seats` and `is_full`, computed from ACTIVE enrollments on read.

Permissions:
    Any authenticated caller reads; ADMIN creates, updates, assigns teachers
    and deletes.
"""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from backend.academics.services.courses import COURSE_SORTS

from .. import wiring
from ..responses import course_out, current_principal, json_private, no_content, page_out, page_request

courses_router = APIRouter(prefix="/api/v1/courses", tags=["Courses"])


class CoursePayload(BaseModel):
    code: Optional[str] = None
    name: Optional[str] = None
    description: Optional[str] = None
    credits: Optional[int] = None
    semester: Optional[str] = None
    max_capacity: Optional[int] = None
    department_id: Optional[int] = None
    teacher_id: Optional[int] = None


@courses_router.post("")
async def create_course(request: Request, payload: CoursePayload):
    course = wiring.courses_service().create(current_principal(request), payload.model_dump())
    return json_private(course_out(course), status_code=201)


@courses_router.get("")
async def list_courses(
    request: Request,
    search: Optional[str] = None,
    department_id: Optional[int] = None,
    semester: Optional[str] = None,
    teacher_id: Optional[int] = None,
    page: int = 0,
    size: int = 20,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
):
    paging = page_request(page, size, sort, direction, COURSE_SORTS)
    result = wiring.courses_service().list(
        current_principal(request),
        paging,
        search=search,
        department_id=department_id,
        semester=semester,
        teacher_id=teacher_id,
    )
    return json_private(page_out(result, course_out))


@courses_router.get("/available")
async def available_courses(
    request: Request,
    semester: Optional[str] = None,
    page: int = 0,
    size: int = 20,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
):
    paging = page_request(page, size, sort, direction, COURSE_SORTS)
    result = wiring.courses_service().available(current_principal(request), paging, semester=semester)
    return json_private(page_out(result, course_out))


@courses_router.get("/code/{code}")
async def get_course_by_code(request: Request, code: str):
    return json_private(course_out(wiring.courses_service().get_by_code(current_principal(request), code)))


@courses_router.get("/{course_id}")
async def get_course(request: Request, course_id: int):
    return json_private(course_out(wiring.courses_service().get(current_principal(request), course_id)))


@courses_router.put("/{course_id}")
async def update_course(request: Request, course_id: int, payload: CoursePayload):
    """Partial update. Lowering `max_capacity` below the ACTIVE enrollment count is refused."""
    course = wiring.courses_service().update(
        current_principal(request), course_id, payload.model_dump(exclude_unset=True)
    )
    return json_private(course_out(course))


@courses_router.put("/{course_id}/teacher/{teacher_id}")
async def assign_teacher(request: Request, course_id: int, teacher_id: int):
    course = wiring.courses_service().assign_teacher(current_principal(request), course_id, teacher_id)
    return json_private(course_out(course))


@courses_router.delete("/{course_id}")
async def delete_course(request: Request, course_id: int):
    wiring.courses_service().delete(current_principal(request), course_id)
    return no_content()
