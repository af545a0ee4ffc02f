"""Teacher profile use cases.

ADMIN creates, edits, soft-deletes and restores teachers. A TEACHER may edit
their own phone and specialization only. Any authenticated principal can read
non-deleted teacher profiles.
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
from ..records import Department, ProvisionedProfile, Teacher
from .access import guarded_fetch

logger = logging.getLogger("studify.academics.teachers")

TEACHER_SORTS = ("id", "first_name", "last_name", "email", "hire_date", "deleted_at")


class TeachersRepoProtocol(Protocol):
    def username_exists(self, username: str) -> bool:
        ...

    def get_department(self, department_id: int) -> Optional[Department]:
        ...

    def create_teacher(self, *, username: str, password_hash: str, profile: Dict[str, Any], actor: Optional[str]) -> Teacher:
        ...

    def get_teacher(self, teacher_id: int, *, include_deleted: bool = False) -> Optional[Teacher]:
        ...

    def get_teacher_by_user(self, user_id: int, *, include_deleted: bool = False) -> Optional[Teacher]:
        ...

    def list_teachers(
        self,
        page: PageRequest,
        *,
        search: Optional[str] = None,
        department_id: Optional[int] = None,
        include_deleted: bool = False,
        deleted_only: bool = False,
    ) -> Page:
        ...

    def update_teacher(self, teacher_id: int, changes: Dict[str, Any], *, actor: Optional[str], sync_user_email: bool = False) -> Teacher:
        ...

    def soft_delete_teacher(self, teacher_id: int, *, actor: Optional[str]) -> Teacher:
        ...

    def restore_teacher(self, teacher_id: int, *, actor: Optional[str]) -> Teacher:
        ...


@dataclass
class TeachersService:
    repo: TeachersRepoProtocol
    today: Callable[[], date] = field(default=date.today)

    def _check_department(self, errors: v.FieldErrors, department_id: Optional[int]) -> None:
        if department_id is not None and self.repo.get_department(department_id) is None:
            errors["department_id"] = "department does not exist"

    def create(self, principal: Principal, data: Dict[str, Any]) -> ProvisionedProfile:
        authorize(principal, Action.MANAGE_TEACHER)
        errors = v.FieldErrors()
        profile = {
            "first_name": v.text(errors, "first_name", data.get("first_name"), min_len=2, max_len=50),
            "last_name": v.text(errors, "last_name", data.get("last_name"), min_len=2, max_len=50),
            "email": v.email(errors, "email", data.get("email")),
            "phone": v.phone(errors, "phone", data.get("phone")),
            "specialization": v.text(errors, "specialization", data.get("specialization"), max_len=100, required=False),
            "department_id": data.get("department_id"),
            "hire_date": data.get("hire_date") or self.today(),
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
        teacher = self.repo.create_teacher(
            username=username,
            password_hash=hash_password(password),
            profile=profile,
            actor=principal.actor,
        )
        logger.info("teacher.created id=%s user_id=%s", teacher.id, teacher.user_id)
        return ProvisionedProfile(profile=teacher, username=username, initial_password=initial_password)

    def get(self, principal: Principal, teacher_id: int) -> Teacher:
        teacher = self.repo.get_teacher(teacher_id)
        if teacher is None:
            raise NotFoundError("Teacher", teacher_id)
        return teacher

    def get_by_user(self, principal: Principal, user_id: int) -> Teacher:
        teacher = self.repo.get_teacher_by_user(user_id)
        if teacher is None:
            raise NotFoundError("Teacher", user_id, field="user id")
        return teacher

    def list(
        self,
        principal: Principal,
        page: PageRequest,
        *,
        search: Optional[str] = None,
        department_id: Optional[int] = None,
    ) -> Page:
        return self.repo.list_teachers(page, search=search, department_id=department_id)

    def list_deleted(self, principal: Principal, page: PageRequest) -> Page:
        authorize(principal, Action.VIEW_DELETED)
        return self.repo.list_teachers(page, deleted_only=True)

    def update(self, principal: Principal, teacher_id: int, data: Dict[str, Any]) -> Teacher:
        """Apply profile changes.

        Behavior:
            ADMIN may change every field; email changes are mirrored to the
            login account. A TEACHER editing their own profile may change phone
            and specialization; other fields in `data` are ignored.
        """
        teacher = guarded_fetch(
            principal,
            Action.UPDATE_TEACHER,
            lambda: self.repo.get_teacher(teacher_id),
            lambda t: Ownership(user_id=t.user_id),
            entity="Teacher",
            key=teacher_id,
        )

        errors = v.FieldErrors()
        changes: Dict[str, Any] = {}
        if "phone" in data:
            changes["phone"] = v.phone(errors, "phone", data["phone"])
        if "specialization" in data:
            changes["specialization"] = v.text(errors, "specialization", data["specialization"], max_len=100, required=False)
        if principal.is_admin:
            if data.get("first_name") is not None:
                changes["first_name"] = v.text(errors, "first_name", data["first_name"], min_len=2, max_len=50)
            if data.get("last_name") is not None:
                changes["last_name"] = v.text(errors, "last_name", data["last_name"], min_len=2, max_len=50)
            if data.get("email") is not None:
                changes["email"] = v.email(errors, "email", data["email"])
            if data.get("department_id") is not None:
                changes["department_id"] = data["department_id"]
                self._check_department(errors, data["department_id"])
            if data.get("hire_date") is not None:
                changes["hire_date"] = data["hire_date"]
        errors.raise_if_any()
        if not changes:
            return teacher
        return self.repo.update_teacher(teacher_id, changes, actor=principal.actor, sync_user_email=principal.is_admin)

    def delete(self, principal: Principal, teacher_id: int) -> None:
        """Soft-delete; refused while the teacher is assigned to any course."""
        authorize(principal, Action.MANAGE_TEACHER)
        if self.repo.get_teacher(teacher_id) is None:
            raise NotFoundError("Teacher", teacher_id)
        self.repo.soft_delete_teacher(teacher_id, actor=principal.actor)
        logger.info("teacher.soft_deleted id=%s", teacher_id)

    def restore(self, principal: Principal, teacher_id: int) -> Teacher:
        authorize(principal, Action.MANAGE_TEACHER)
        if self.repo.get_teacher(teacher_id, include_deleted=True) is None:
            raise NotFoundError("Teacher", teacher_id)
        teacher = self.repo.restore_teacher(teacher_id, actor=principal.actor)
        logger.info("teacher.restored id=%s", teacher_id)
        return teacher
