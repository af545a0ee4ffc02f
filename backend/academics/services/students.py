"""
Student profile use cases (Clean Architecture boundary).

Why:
    Keeps the visibility and field-level edit rules out of the web adapter:
    ADMIN edits every field (email changes are mirrored to the login account),
    a STUDENT edits only their own phone and address.

Soft delete:
    Deleting marks the profile deleted, sets status INACTIVE and deactivates
    the login account. Restore reverses all three and is refused when the
    student is not currently deleted.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import logging
from typing import Any, Callable, Dict, Optional, Protocol

from backend.identity_access.accounts import generate_username, validate_password
from backend.identity_access.domain import Principal
from backend.identity_access.passwords import generate_temporary_password, hash_password
from backend.identity_access.policy import Action, Ownership, authorize

from .. import validation as v
from ..errors import NotFoundError, ValidationFailure
from ..paging import Page, PageRequest
from ..records import STUDENT_ACTIVE, STUDENT_STATUSES, Department, ProvisionedProfile, Student
from .access import guarded_fetch

logger = logging.getLogger("studify.academics.students")

STUDENT_SORTS = ("id", "first_name", "last_name", "email", "enrollment_date", "status")


class StudentsRepoProtocol(Protocol):
    def username_exists(self, username: str) -> bool:
        ...

    def get_department(self, department_id: int) -> Optional[Department]:
        ...

    def create_student(self, *, username: str, password_hash: str, profile: Dict[str, Any], actor: Optional[str]) -> Student:
        ...

    def get_student(self, student_id: int, *, include_deleted: bool = False) -> Optional[Student]:
        ...

    def get_student_by_user(self, user_id: int, *, include_deleted: bool = False) -> Optional[Student]:
        ...

    def list_students(
        self,
        page: PageRequest,
        *,
        search: Optional[str] = None,
        department_id: Optional[int] = None,
        status: Optional[str] = None,
        include_deleted: bool = False,
        deleted_only: bool = False,
    ) -> Page:
        ...

    def update_student(self, student_id: int, changes: Dict[str, Any], *, actor: Optional[str], sync_user_email: bool = False) -> Student:
        ...

    def soft_delete_student(self, student_id: int, *, actor: Optional[str]) -> Student:
        ...

    def restore_student(self, student_id: int, *, actor: Optional[str]) -> Student:
        ...


def _ownership(student: Student) -> Ownership:
    return Ownership(user_id=student.user_id)


@dataclass
class StudentsService:
    repo: StudentsRepoProtocol
    today: Callable[[], date] = field(default=date.today)

    def _check_department(self, errors: v.FieldErrors, department_id: Optional[int]) -> None:
        if department_id is not None and self.repo.get_department(department_id) is None:
            errors["department_id"] = "department does not exist"

    def create(self, principal: Principal, data: Dict[str, Any]) -> ProvisionedProfile:
        """Create the login account and the student profile together.

        A password may be supplied; otherwise a temporary one is generated and
        returned once in `initial_password`.
        """
        authorize(principal, Action.CREATE_STUDENT)
        errors = v.FieldErrors()
        profile = {
            "first_name": v.text(errors, "first_name", data.get("first_name"), min_len=2, max_len=50),
            "last_name": v.text(errors, "last_name", data.get("last_name"), min_len=2, max_len=50),
            "email": v.email(errors, "email", data.get("email")),
            "phone": v.phone(errors, "phone", data.get("phone")),
            "date_of_birth": v.past_date(errors, "date_of_birth", data.get("date_of_birth"), today=self.today()),
            "address": v.text(errors, "address", data.get("address"), max_len=255, required=False),
            "department_id": data.get("department_id"),
            "enrollment_date": data.get("enrollment_date") or self.today(),
            "status": STUDENT_ACTIVE,
        }
        self._check_department(errors, profile["department_id"])
        password = data.get("password")
        if password is not None:
            try:
                validate_password(password)
            except ValidationFailure as exc:
                errors.update(exc.field_errors)
        errors.raise_if_any()

        initial_password = None
        if password is None:
            password = initial_password = generate_temporary_password()
        username = generate_username(self.repo, profile["first_name"], profile["last_name"])
        student = self.repo.create_student(
            username=username,
            password_hash=hash_password(password),
            profile=profile,
            actor=principal.actor,
        )
        logger.info("student.created id=%s user_id=%s", student.id, student.user_id)
        return ProvisionedProfile(profile=student, username=username, initial_password=initial_password)

    def get(self, principal: Principal, student_id: int) -> Student:
        return guarded_fetch(
            principal,
            Action.VIEW_STUDENT,
            lambda: self.repo.get_student(student_id),
            _ownership,
            entity="Student",
            key=student_id,
        )

    def get_by_user(self, principal: Principal, user_id: int) -> Student:
        return guarded_fetch(
            principal,
            Action.VIEW_STUDENT,
            lambda: self.repo.get_student_by_user(user_id),
            _ownership,
            entity="Student",
            key=user_id,
        )

    def me(self, principal: Principal) -> Student:
        """Own profile of a logged-in student."""
        student = self.repo.get_student_by_user(principal.user_id)
        if student is None:
            raise NotFoundError("Student", principal.user_id, field="user id")
        return student

    def list(
        self,
        principal: Principal,
        page: PageRequest,
        *,
        search: Optional[str] = None,
        department_id: Optional[int] = None,
        status: Optional[str] = None,
    ) -> Page:
        # Listing is a "view any student" action: SELF-only roles are refused.
        authorize(principal, Action.VIEW_STUDENT, Ownership())
        if status is not None:
            errors = v.FieldErrors()
            status = v.one_of(errors, "status", status, STUDENT_STATUSES)
            errors.raise_if_any()
        return self.repo.list_students(page, search=search, department_id=department_id, status=status)

    def list_deleted(self, principal: Principal, page: PageRequest) -> Page:
        authorize(principal, Action.VIEW_DELETED)
        return self.repo.list_students(page, deleted_only=True)

    def update(self, principal: Principal, student_id: int, data: Dict[str, Any]) -> Student:
        student = guarded_fetch(
            principal,
            Action.UPDATE_STUDENT,
            lambda: self.repo.get_student(student_id),
            _ownership,
            entity="Student",
            key=student_id,
        )
        errors = v.FieldErrors()
        changes: Dict[str, Any] = {}
        if "phone" in data:
            changes["phone"] = v.phone(errors, "phone", data["phone"])
        if "address" in data:
            changes["address"] = v.text(errors, "address", data["address"], max_len=255, required=False)
        if principal.is_admin:
            if data.get("first_name") is not None:
                changes["first_name"] = v.text(errors, "first_name", data["first_name"], min_len=2, max_len=50)
            if data.get("last_name") is not None:
                changes["last_name"] = v.text(errors, "last_name", data["last_name"], min_len=2, max_len=50)
            if data.get("email") is not None:
                changes["email"] = v.email(errors, "email", data["email"])
            if data.get("date_of_birth") is not None:
                changes["date_of_birth"] = v.past_date(errors, "date_of_birth", data["date_of_birth"], today=self.today())
            if data.get("department_id") is not None:
                changes["department_id"] = data["department_id"]
                self._check_department(errors, data["department_id"])
            if data.get("enrollment_date") is not None:
                changes["enrollment_date"] = data["enrollment_date"]
            if data.get("status") is not None:
                changes["status"] = v.one_of(errors, "status", data["status"], STUDENT_STATUSES)
        errors.raise_if_any()
        if not changes:
            return student
        return self.repo.update_student(student_id, changes, actor=principal.actor, sync_user_email=principal.is_admin)

    def delete(self, principal: Principal, student_id: int) -> None:
        authorize(principal, Action.DELETE_STUDENT)
        if self.repo.get_student(student_id) is None:
            raise NotFoundError("Student", student_id)
        self.repo.soft_delete_student(student_id, actor=principal.actor)
        logger.info("student.soft_deleted id=%s", student_id)

    def restore(self, principal: Principal, student_id: int) -> Student:
        authorize(principal, Action.DELETE_STUDENT)
        if self.repo.get_student(student_id, include_deleted=True) is None:
            raise NotFoundError("Student", student_id)
        student = self.repo.restore_student(student_id, actor=principal.actor)
        logger.info("student.restored id=%s", student_id)
        return student
