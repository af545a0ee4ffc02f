"""Department API routes. Any authenticated caller reads; ADMIN writes."""
from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from backend.academics.services.departments import DEPARTMENT_SORTS

from .. import wiring
from ..responses import current_principal, department_out, json_private, no_content, page_out, page_request

departments_router = APIRouter(prefix="/api/v1/departments", tags=["Departments"])


class DepartmentPayload(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    description: Optional[str] = None


@departments_router.post("")
async def create_department(request: Request, payload: DepartmentPayload):
    dept = wiring.departments_service().create(
        current_principal(request), name=payload.name, code=payload.code, description=payload.description
    )
    return json_private(department_out(dept), status_code=201)


@departments_router.get("")
async def list_departments(
    request: Request,
    search: Optional[str] = None,
    page: int = 0,
    size: int = 20,
    sort: Optional[str] = None,
    direction: Optional[str] = None,
):
    paging = page_request(page, size, sort, direction, DEPARTMENT_SORTS)
    result = wiring.departments_service().list(current_principal(request), paging, search=search)
    return json_private(page_out(result, department_out))


@departments_router.get("/{department_id}")
async def get_department(request: Request, department_id: int):
    return json_private(department_out(wiring.departments_service().get(current_principal(request), department_id)))


@departments_router.put("/{department_id}")
async def update_department(request: Request, department_id: int, payload: DepartmentPayload):
    dept = wiring.departments_service().update(
        current_principal(request),
        department_id,
        name=payload.name,
        code=payload.code,
        description=payload.description,
    )
    return json_private(department_out(dept))


@departments_router.delete("/{department_id}")
async def delete_department(request: Request, department_id: int):
    """Hard delete; refused while students (not deleted) or courses reference it."""
    wiring.departments_service().delete(current_principal(request), department_id)
    return no_content()
