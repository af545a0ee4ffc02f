"""
Course catalogue use cases.

Why:
    Course reads always carry live derived state (enrolled count, available
    seats, full flag) computed from ACTIVE enrollments by the store. Writes are
    ADMIN-only. Capacity reductions are re-validated by the store inside the
    same lock/transaction that applies them, so a concurrent enroll cannot slip
    between check and update.
"""
from __future__ import annotations

from dataclasses import dataclass
import logging
import re
from typing import Any, Dict, Optional, Protocol

from backend.identity_access.domain import Principal
from backend.identity_access.policy import Action, authorize

from .. import validation as v
from ..errors import BusinessRuleViolation, NotFoundError
from ..paging import Page, PageRequest
from ..records import Course, Department, Teacher

logger = logging.getLogger("studify.academics.courses")

COURSE_SORTS = ("id", "code", "name", "credits", "semester", "max_capacity")
_CODE_RE = re.compile(r"^[A-Za-z0-9-]{5,10}$")


class CoursesRepoProtocol(Protocol):
    def get_department(self, department_id: int) -> Optional[Department]:
        ...

    def get_teacher(self, teacher_id: int, *, include_deleted: bool = False) -> Optional[Teacher]:
        ...

    def create_course(self, *, profile: Dict[str, Any], actor: Optional[str]) -> Course:
        ...

    def get_course(self, course_id: int) -> Optional[Course]:
        ...

    def get_course_by_code(self, code: str) -> Optional[Course]:
        ...

    def list_courses(
        self,
        page: PageRequest,
        *,
        search: Optional[str] = None,
        department_id: Optional[int] = None,
        semester: Optional[str] = None,
        teacher_id: Optional[int] = None,
        available_only: bool = False,
    ) -> Page:
        ...

    def update_course(self, course_id: int, changes: Dict[str, Any], *, actor: Optional[str]) -> Course:
        ...

    def count_course_enrollments(self, course_id: int) -> int:
        ...

    def delete_course(self, course_id: int) -> None:
        ...


def _course_code(errors: v.FieldErrors, value: object) -> Optional[str]:
    code = v.text(errors, "code", value, min_len=5, max_len=10)
    if code is not None and not _CODE_RE.match(code):
        errors["code"] = "must be 5-10 letters, digits or '-'"
        return None
    return code.upper() if code else code


def _record_id(errors: v.FieldErrors, field: str, value: object, *, required: bool = True) -> Optional[int]:
    return v.integer(errors, field, value, low=1, high=2**31 - 1, required=required)


@dataclass
class CoursesService:
    repo: CoursesRepoProtocol

    def _resolve_teacher(self, errors: v.FieldErrors, teacher_id: Optional[int]) -> Optional[Teacher]:
        if teacher_id is None:
            return None
        teacher = self.repo.get_teacher(teacher_id)
        if teacher is None:
            errors["teacher_id"] = "teacher does not exist"
        return teacher

    def _warn_department_mismatch(self, teacher: Optional[Teacher], department_id: int) -> None:
        if teacher is not None and teacher.department_id is not None and teacher.department_id != department_id:
            logger.warning(
                "course.teacher_department_mismatch teacher_id=%s teacher_dept=%s course_dept=%s",
                teacher.id,
                teacher.department_id,
                department_id,
            )

    def create(self, principal: Principal, data: Dict[str, Any]) -> Course:
        authorize(principal, Action.MANAGE_COURSE)
        errors = v.FieldErrors()
        profile = {
            "code": _course_code(errors, data.get("code")),
            "name": v.text(errors, "name", data.get("name"), min_len=3, max_len=100),
            "description": v.text(errors, "description", data.get("description"), max_len=1000, required=False),
            "credits": v.integer(errors, "credits", data.get("credits"), low=1, high=6),
            "semester": v.text(errors, "semester", data.get("semester"), max_len=20),
            "max_capacity": v.integer(errors, "max_capacity", data.get("max_capacity"), low=10, high=200),
            "department_id": _record_id(errors, "department_id", data.get("department_id")),
            "teacher_id": _record_id(errors, "teacher_id", data.get("teacher_id"), required=False),
        }
        if profile["department_id"] is not None and self.repo.get_department(profile["department_id"]) is None:
            errors["department_id"] = "department does not exist"
        teacher = self._resolve_teacher(errors, profile["teacher_id"])
        errors.raise_if_any()
        self._warn_department_mismatch(teacher, profile["department_id"])
        course = self.repo.create_course(profile=profile, actor=principal.actor)
        logger.info("course.created id=%s code=%s", course.id, course.code)
        return course

    def get(self, principal: Principal, course_id: int) -> Course:
        course = self.repo.get_course(course_id)
        if course is None:
            raise NotFoundError("Course", course_id)
        return course

    def get_by_code(self, principal: Principal, code: str) -> Course:
        course = self.repo.get_course_by_code(code)
        if course is None:
            raise NotFoundError("Course", code, field="code")
        return course

    def list(
        self,
        principal: Principal,
        page: PageRequest,
        *,
        search: Optional[str] = None,
        department_id: Optional[int] = None,
        semester: Optional[str] = None,
        teacher_id: Optional[int] = None,
    ) -> Page:
        return self.repo.list_courses(
            page,
            search=search,
            department_id=department_id,
            semester=semester,
            teacher_id=teacher_id,
        )

    def available(self, principal: Principal, page: PageRequest, *, semester: Optional[str] = None) -> Page:
        """Courses that still have at least one free seat."""
        return self.repo.list_courses(page, semester=semester, available_only=True)

    def update(self, principal: Principal, course_id: int, data: Dict[str, Any]) -> Course:
        """Apply partial changes.

        Reducing `max_capacity` below the live ACTIVE enrollment count fails
        with a BusinessRuleViolation and leaves the course unchanged.
        """
        authorize(principal, Action.MANAGE_COURSE)
        current = self.repo.get_course(course_id)
        if current is None:
            raise NotFoundError("Course", course_id)
        errors = v.FieldErrors()
        changes: Dict[str, Any] = {}
        if data.get("code") is not None:
            changes["code"] = _course_code(errors, data["code"])
        if data.get("name") is not None:
            changes["name"] = v.text(errors, "name", data["name"], min_len=3, max_len=100)
        if "description" in data:
            changes["description"] = v.text(errors, "description", data["description"], max_len=1000, required=False)
        if data.get("credits") is not None:
            changes["credits"] = v.integer(errors, "credits", data["credits"], low=1, high=6)
        if data.get("semester") is not None:
            changes["semester"] = v.text(errors, "semester", data["semester"], max_len=20)
        if data.get("max_capacity") is not None:
            changes["max_capacity"] = v.integer(errors, "max_capacity", data["max_capacity"], low=10, high=200)
        if data.get("department_id") is not None:
            changes["department_id"] = _record_id(errors, "department_id", data["department_id"])
            if changes["department_id"] is not None and self.repo.get_department(changes["department_id"]) is None:
                errors["department_id"] = "department does not exist"
        teacher = None
        if "teacher_id" in data:
            # An explicit null unassigns the teacher.
            changes["teacher_id"] = _record_id(errors, "teacher_id", data["teacher_id"], required=False)
            teacher = self._resolve_teacher(errors, changes["teacher_id"])
        errors.raise_if_any()
        self._warn_department_mismatch(teacher, changes.get("department_id", current.department_id))
        course = self.repo.update_course(course_id, changes, actor=principal.actor)
        logger.info("course.updated id=%s fields=%s", course_id, ",".join(sorted(changes)))
        return course

    def assign_teacher(self, principal: Principal, course_id: int, teacher_id: int) -> Course:
        authorize(principal, Action.MANAGE_COURSE)
        course = self.repo.get_course(course_id)
        if course is None:
            raise NotFoundError("Course", course_id)
        teacher = self.repo.get_teacher(teacher_id)
        if teacher is None:
            raise NotFoundError("Teacher", teacher_id)
        self._warn_department_mismatch(teacher, course.department_id)
        updated = self.repo.update_course(course_id, {"teacher_id": teacher_id}, actor=principal.actor)
        logger.info("course.teacher_assigned id=%s teacher_id=%s", course_id, teacher_id)
        return updated

    def delete(self, principal: Principal, course_id: int) -> None:
        """Hard delete; refused while any enrollment (of any status) exists."""
        authorize(principal, Action.MANAGE_COURSE)
        if self.repo.get_course(course_id) is None:
            raise NotFoundError("Course", course_id)
        enrollments = self.repo.count_course_enrollments(course_id)
        if enrollments > 0:
            raise BusinessRuleViolation(
                f"Cannot delete course with enrollments. Current enrollment count: {enrollments}",
                code="course_has_enrollments",
            )
        self.repo.delete_course(course_id)
        logger.info("course.deleted id=%s", course_id)
