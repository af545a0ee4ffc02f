"""Fetch-then-authorize helper used by every service.

Roles that can never perform the action are rejected before the store is
touched. Roles with a conditional rule (SELF, OWNS_COURSE) get Forbidden for a
missing record as well as for someone else's, so probing ids reveals nothing.
Only unconditional roles see NotFound.
"""
from __future__ import annotations

from typing import Callable, Optional, TypeVar

from backend.identity_access.domain import Principal
from backend.identity_access.policy import ALLOW, OWNS_COURSE, SELF, Ownership, authorize, rule_for

from ..errors import ForbiddenError, NotFoundError

T = TypeVar("T")


def guarded_fetch(
    principal: Principal,
    action: str,
    loader: Callable[[], Optional[T]],
    ownership: Callable[[T], Ownership],
    *,
    entity: str,
    key: object,
) -> T:
    rule = rule_for(principal, action)
    record = loader()
    if record is None:
        if rule == ALLOW:
            raise NotFoundError(entity, key)
        raise ForbiddenError()
    authorize(principal, action, ownership(record))
    return record


def student_scope(principal: Principal, action: str, repo, student_id: int) -> Optional[int]:
    """Authorize a per-student listing before it runs.

    Returns the course-owner filter to apply (teachers only see rows of
    courses they own), or None for unrestricted access.
    """
    rule = rule_for(principal, action)
    if rule == SELF:
        student = repo.get_student(student_id)
        authorize(principal, action, Ownership(user_id=student.user_id) if student else None)
        return None
    if rule == OWNS_COURSE:
        return principal.user_id
    if repo.get_student(student_id, include_deleted=True) is None:
        raise NotFoundError("Student", student_id)
    return None


def course_scope(principal: Principal, action: str, repo, course_id: int):
    """Load a course and check the principal may act on it as a whole."""
    rule = rule_for(principal, action)
    course = repo.get_course(course_id)
    if course is None:
        if rule == ALLOW:
            raise NotFoundError("Course", course_id)
        raise ForbiddenError()
    authorize(principal, action, Ownership(course_owner_id=course.teacher_user_id))
    return course
