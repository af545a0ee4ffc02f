"""
Student API routes.

Permissions:
    ADMIN creates, lists, updates, soft-deletes and restores students.
    TEACHER reads any student. STUDENT reads and updates only their own
    profile (phone and address).
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from backend.academics.services.students import STUDENT_SORTS

from .. import wiring
from ..responses import (
    current_principal,
    json_private,
    no_content,
    page_out,
    page_request,
    provisioned_out,
    student_out,
)

students_router = APIRouter(prefix="/api/v1/students", tags=["Students"])


class StudentCreate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Optional[str] = None
    department_id: Optional[int] = None
    enrollment_date: Optional[date] = None
    password: Optional[str] = Field(default=None, max_length=100)


class StudentUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Optional[str] = None
    department_id: Optional[int] = None
    enrollment_date: Optional[date] = None
    status: Optional[str] = None


@students_router.post("")
async def create_student(request: Request, payload: StudentCreate):
    """Create the login account and the profile (ADMIN).

    The generated username, and the temporary password when none was given,
    are returned once in the response.
    """
    created = wiring.students_service().create(current_principal(request), payload.model_dump())
    return json_private(provisioned_out(created, student_out), status_code=201)


@students_router.get("")
async def list_students(
    request: Request,
    search: Optional[str] = None,
    department_id: Optional[int] = None,
    status: Optional[str] = None,
    page: int = 0,
    size: int = 20,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
):
    paging = page_request(page, size, sort, direction, STUDENT_SORTS)
    result = wiring.students_service().list(
        current_principal(request), paging, search=search, department_id=department_id, status=status
    )
    return json_private(page_out(result, student_out))


@students_router.get("/me")
async def my_profile(request: Request):
    return json_private(student_out(wiring.students_service().me(current_principal(request))))


@students_router.get("/deleted")
async def list_deleted_students(
    request: Request,
    page: int = 0,
    size: int = 20,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
):
    paging = page_request(page, size, sort, direction, STUDENT_SORTS)
    result = wiring.students_service().list_deleted(current_principal(request), paging)
    return json_private(page_out(result, student_out))


@students_router.get("/user/{user_id}")
async def get_student_by_user(request: Request, user_id: int):
    return json_private(student_out(wiring.students_service().get_by_user(current_principal(request), user_id)))


@students_router.get("/{student_id}")
async def get_student(request: Request, student_id: int):
    return json_private(student_out(wiring.students_service().get(current_principal(request), student_id)))


@students_router.put("/{student_id}")
async def update_student(request: Request, student_id: int, payload: StudentUpdate):
    student = wiring.students_service().update(
        current_principal(request), student_id, payload.model_dump(exclude_unset=True)
    )
    return json_private(student_out(student))


@students_router.delete("/{student_id}")
async def delete_student(request: Request, student_id: int):
    """Soft delete; the linked login account is deactivated."""
    wiring.students_service().delete(current_principal(request), student_id)
    return no_content()


@students_router.post("/{student_id}/restore")
async def restore_student(request: Request, student_id: int):
    return json_private(student_out(wiring.students_service().restore(current_principal(request), student_id)))
