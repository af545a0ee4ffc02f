"""Department use cases. ADMIN mutates, every authenticated principal reads."""

from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Optional, Protocol, Tuple

from backend.identity_access.domain import Principal
from backend.identity_access.policy import Action, authorize

from .. import validation as v
from ..errors import BusinessRuleViolation, NotFoundError
from ..paging import Page, PageRequest
from ..records import Department

logger = logging.getLogger("studify.academics.departments")

DEPARTMENT_SORTS = ("id", "name", "code")
_CODE_RE = re.compile(r"^[A-Z0-9]{2,10}$")


class DepartmentsRepoProtocol(Protocol):
    def create_department(self, *, name: str, code: str, description: Optional[str], actor: Optional[str]) -> Department:
        ...

    def get_department(self, department_id: int) -> Optional[Department]:
        ...

    def list_departments(self, page: PageRequest, *, search: Optional[str] = None) -> Page:
        ...

    def update_department(self, department_id: int, *, name: str, code: str, description: Optional[str], actor: Optional[str]) -> Department:
        ...

    def count_department_dependents(self, department_id: int) -> Tuple[int, int]:
        ...

    def delete_department(self, department_id: int) -> None:
        ...


def _normalize(name: object, code: object, description: object) -> Tuple[str, str, Optional[str]]:
    errors = v.FieldErrors()
    name_v = v.text(errors, "name", name, min_len=2, max_len=100)
    code_v = v.text(errors, "code", code, min_len=2, max_len=10)
    if code_v is not None:
        code_v = code_v.upper()
        if not _CODE_RE.match(code_v):
            errors["code"] = "must be 2-10 uppercase letters or digits"
    desc_v = v.text(errors, "description", description, max_len=500, required=False)
    errors.raise_if_any()
    return name_v, code_v, desc_v


@dataclass
class DepartmentsService:
    repo: DepartmentsRepoProtocol

    def create(self, principal: Principal, *, name: object, code: object, description: object = None) -> Department:
        authorize(principal, Action.MANAGE_DEPARTMENT)
        name_v, code_v, desc_v = _normalize(name, code, description)
        dept = self.repo.create_department(name=name_v, code=code_v, description=desc_v, actor=principal.actor)
        logger.info("department.created id=%s code=%s", dept.id, dept.code)
        return dept

    def get(self, principal: Principal, department_id: int) -> Department:
        dept = self.repo.get_department(department_id)
        if dept is None:
            raise NotFoundError("Department", department_id)
        return dept

    def list(self, principal: Principal, page: PageRequest, *, search: Optional[str] = None) -> Page:
        return self.repo.list_departments(page, search=search)

    def update(self, principal: Principal, department_id: int, *, name: object, code: object, description: object = None) -> Department:
        authorize(principal, Action.MANAGE_DEPARTMENT)
        name_v, code_v, desc_v = _normalize(name, code, description)
        if self.repo.get_department(department_id) is None:
            raise NotFoundError("Department", department_id)
        return self.repo.update_department(department_id, name=name_v, code=code_v, description=desc_v, actor=principal.actor)

    def delete(self, principal: Principal, department_id: int) -> None:
        """Delete a department that no student or course references.

        Soft-deleted students do not block; teachers never block.
        """
        authorize(principal, Action.MANAGE_DEPARTMENT)
        if self.repo.get_department(department_id) is None:
            raise NotFoundError("Department", department_id)
        students, courses = self.repo.count_department_dependents(department_id)
        if students > 0:
            raise BusinessRuleViolation(
                f"Cannot delete department with {students} active student(s)",
                code="department_has_students",
            )
        if courses > 0:
            raise BusinessRuleViolation(
                f"Cannot delete department with {courses} course(s)",
                code="department_has_courses",
            )
        self.repo.delete_department(department_id)
        logger.info("department.deleted id=%s", department_id)
