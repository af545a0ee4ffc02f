"""Teacher API routes. ADMIN manages teachers; a teacher may edit their own phone and specialization."""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel, Field

from backend.academics.services.teachers import TEACHER_SORTS

from .. import wiring
from ..responses import (
    current_principal,
    json_private,
    no_content,
    page_out,
    page_request,
    provisioned_out,
    teacher_out,
)

teachers_router = APIRouter(prefix="/api/v1/teachers", tags=["Teachers"])


class TeacherCreate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    specialization: Optional[str] = None
    department_id: Optional[int] = None
    hire_date: Optional[date] = None
    password: Optional[str] = Field(default=None, max_length=100)


class TeacherUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    specialization: Optional[str] = None
    department_id: Optional[int] = None
    hire_date: Optional[date] = None


@teachers_router.post("")
async def create_teacher(request: Request, payload: TeacherCreate):
    created = wiring.teachers_service().create(current_principal(request), payload.model_dump())
    return json_private(provisioned_out(created, teacher_out), status_code=201)


@teachers_router.get("")
async def list_teachers(
    request: Request,
    search: Optional[str] = None,
    department_id: Optional[int] = None,
    page: int = 0,
    size: int = 20,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
):
    paging = page_request(page, size, sort, direction, TEACHER_SORTS)
    result = wiring.teachers_service().list(current_principal(request), paging, search=search, department_id=department_id)
    return json_private(page_out(result, teacher_out))


@teachers_router.get("/deleted")
async def list_deleted_teachers(
    request: Request,
    page: int = 0,
    size: int = 20,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
):
    paging = page_request(page, size, sort, direction, TEACHER_SORTS)
    result = wiring.teachers_service().list_deleted(current_principal(request), paging)
    return json_private(page_out(result, teacher_out))


@teachers_router.get("/department/{department_id}")
async def list_teachers_by_department(
    request: Request,
    department_id: int,
    page: int = 0,
    size: int = 20,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
):
    paging = page_request(page, size, sort, direction, TEACHER_SORTS)
    result = wiring.teachers_service().list(current_principal(request), paging, department_id=department_id)
    return json_private(page_out(result, teacher_out))


@teachers_router.get("/user/{user_id}")
async def get_teacher_by_user(request: Request, user_id: int):
    return json_private(teacher_out(wiring.teachers_service().get_by_user(current_principal(request), user_id)))


@teachers_router.get("/{teacher_id}")
async def get_teacher(request: Request, teacher_id: int):
    return json_private(teacher_out(wiring.teachers_service().get(current_principal(request), teacher_id)))


@teachers_router.put("/{teacher_id}")
async def update_teacher(request: Request, teacher_id: int, payload: TeacherUpdate):
    teacher = wiring.teachers_service().update(
        current_principal(request), teacher_id, payload.model_dump(exclude_unset=True)
    )
    return json_private(teacher_out(teacher))


@teachers_router.delete("/{teacher_id}")
async def delete_teacher(request: Request, teacher_id: int):
    """Soft delete; refused while the teacher is assigned to any course."""
    wiring.teachers_service().delete(current_principal(request), teacher_id)
    return no_content()


@teachers_router.post("/{teacher_id}/restore")
async def restore_teacher(request: Request, teacher_id: int):
    return json_private(teacher_out(wiring.teachers_service().restore(current_principal(request), teacher_id)))
