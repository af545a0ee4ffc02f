"""
Enrollment and capacity use cases.

Why:
    Enrolling is the one place where concurrent writers race on a bounded
    resource (the last seat of a course). The service performs the readable
    pre-checks, but the store re-validates both the duplicate-active rule and
    the capacity inside the same lock/transaction as the insert, so of two
    simultaneous requests for the last seat exactly one succeeds.

Permissions:
    ADMIN enrolls or drops anyone. A STUDENT enrolls and drops only themself.
    Teachers read enrollments of courses they own.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import logging
from typing import Callable, Optional, Protocol

from backend.identity_access.domain import Principal
from backend.identity_access.policy import Action, Ownership

from .. import validation as v
from ..errors import BusinessRuleViolation, DuplicateResourceError, NotFoundError
from ..paging import Page, PageRequest
from ..records import (
    ENROLLMENT_ACTIVE,
    ENROLLMENT_STATUSES,
    STUDENT_ACTIVE,
    Course,
    Enrollment,
    Student,
)
from .access import course_scope, guarded_fetch, student_scope

logger = logging.getLogger("studify.academics.enrollments")

ENROLLMENT_SORTS = ("id", "enrollment_date", "status", "course_id", "student_id")


class EnrollmentsRepoProtocol(Protocol):
    def get_student(self, student_id: int, *, include_deleted: bool = False) -> Optional[Student]:
        ...

    def get_course(self, course_id: int) -> Optional[Course]:
        ...

    def has_active_enrollment(self, student_id: int, course_id: int) -> bool:
        ...

    def enroll(self, student_id: int, course_id: int, *, enrollment_date: date, actor: Optional[str]) -> Enrollment:
        ...

    def get_enrollment(self, enrollment_id: int) -> Optional[Enrollment]:
        ...

    def list_enrollments(
        self,
        page: Optional[PageRequest] = None,
        *,
        student_id: Optional[int] = None,
        course_id: Optional[int] = None,
        status: Optional[str] = None,
        course_owner_id: Optional[int] = None,
    ) -> Page:
        ...

    def drop_enrollment(self, enrollment_id: int, *, actor: Optional[str]) -> Enrollment:
        ...


def _ownership(enrollment: Enrollment) -> Ownership:
    return Ownership(user_id=enrollment.student_user_id, course_owner_id=enrollment.course_owner_id)


def _status_filter(status: Optional[str]) -> Optional[str]:
    if status is None:
        return None
    errors = v.FieldErrors()
    status = v.one_of(errors, "status", status, ENROLLMENT_STATUSES)
    errors.raise_if_any()
    return status


@dataclass
class EnrollmentsService:
    repo: EnrollmentsRepoProtocol
    today: Callable[[], date] = field(default=date.today)

    def enroll(self, principal: Principal, student_id: int, course_id: int) -> Enrollment:
        student = guarded_fetch(
            principal,
            Action.ENROLL,
            lambda: self.repo.get_student(student_id),
            lambda s: Ownership(user_id=s.user_id),
            entity="Student",
            key=student_id,
        )
        if student.status != STUDENT_ACTIVE:
            raise BusinessRuleViolation(
                f"Student is not active (status: {student.status})",
                code="student_not_active",
            )
        course = self.repo.get_course(course_id)
        if course is None:
            raise NotFoundError("Course", course_id)
        if self.repo.has_active_enrollment(student_id, course_id):
            raise DuplicateResourceError("Student is already enrolled in this course", code="duplicate_enrollment")
        if course.is_full:
            raise BusinessRuleViolation("Course is full", code="course_full")
        enrollment = self.repo.enroll(student_id, course_id, enrollment_date=self.today(), actor=principal.actor)
        logger.info("enrollment.created id=%s student_id=%s course_id=%s", enrollment.id, student_id, course_id)
        return enrollment

    def drop(self, principal: Principal, enrollment_id: int) -> Enrollment:
        """Mark an enrollment DROPPED. The row is kept for history.

        The store refuses when the enrollment is already dropped or graded.
        """
        guarded_fetch(
            principal,
            Action.DROP,
            lambda: self.repo.get_enrollment(enrollment_id),
            _ownership,
            entity="Enrollment",
            key=enrollment_id,
        )
        dropped = self.repo.drop_enrollment(enrollment_id, actor=principal.actor)
        logger.info("enrollment.dropped id=%s", enrollment_id)
        return dropped

    def get(self, principal: Principal, enrollment_id: int) -> Enrollment:
        return guarded_fetch(
            principal,
            Action.VIEW_ENROLLMENT,
            lambda: self.repo.get_enrollment(enrollment_id),
            _ownership,
            entity="Enrollment",
            key=enrollment_id,
        )

    def list_by_student(
        self,
        principal: Principal,
        student_id: int,
        page: Optional[PageRequest] = None,
        *,
        status: Optional[str] = None,
    ) -> Page:
        owner = student_scope(principal, Action.VIEW_STUDENT_ENROLLMENTS, self.repo, student_id)
        return self.repo.list_enrollments(page, student_id=student_id, status=_status_filter(status), course_owner_id=owner)

    def list_by_course(
        self,
        principal: Principal,
        course_id: int,
        page: Optional[PageRequest] = None,
        *,
        status: Optional[str] = None,
    ) -> Page:
        course_scope(principal, Action.VIEW_COURSE_ENROLLMENTS, self.repo, course_id)
        return self.repo.list_enrollments(page, course_id=course_id, status=_status_filter(status))

    def active_by_student(self, principal: Principal, student_id: int) -> Page:
        return self.list_by_student(principal, student_id, status=ENROLLMENT_ACTIVE)

    def active_by_course(self, principal: Principal, course_id: int) -> Page:
        return self.list_by_course(principal, course_id, status=ENROLLMENT_ACTIVE)
