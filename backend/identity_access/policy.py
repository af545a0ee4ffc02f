"""
Access policy: one rule table keyed by (action, role).

Why:
    Role and ownership checks are decided here and nowhere else, so the access
    matrix can be audited in one place instead of being re-derived from
    scattered `if principal.is_admin` branches.

Rules:
    ALLOW        role may perform the action on any resource
    SELF         resource must belong to the principal's user
    OWNS_COURSE  principal must be the teacher assigned to the resource's course
    (absent)     denied

Ownership checks need the concrete resource, so services call `authorize`
after loading it. When the resource could not be loaded, services pass
`None` and conditional roles receive Forbidden as well, so a caller cannot tell
"exists but not yours" from "does not exist".
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional

from backend.academics.errors import ForbiddenError

from .domain import ADMIN, STUDENT, TEACHER, Principal

ALLOW = "allow"
SELF = "self"
OWNS_COURSE = "owns_course"


class Action:
    MANAGE_DEPARTMENT = "department.manage"
    MANAGE_COURSE = "course.manage"
    MANAGE_TEACHER = "teacher.manage"
    UPDATE_TEACHER = "teacher.update"
    VIEW_DELETED = "records.view_deleted"
    CREATE_STUDENT = "student.create"
    DELETE_STUDENT = "student.delete"
    VIEW_STUDENT = "student.view"
    UPDATE_STUDENT = "student.update"
    MARK_ATTENDANCE = "attendance.mark"
    VIEW_COURSE_ATTENDANCE = "attendance.view_course"
    VIEW_STUDENT_ATTENDANCE = "attendance.view_student"
    VIEW_STUDENT_GRADES = "grade.view_student"
    VIEW_COURSE_GRADES = "grade.view_course"
    GRADE_ENROLLMENT = "grade.write"
    DELETE_GRADE = "grade.delete"
    ENROLL = "enrollment.enroll"
    DROP = "enrollment.drop"
    VIEW_ENROLLMENT = "enrollment.view"
    VIEW_COURSE_ENROLLMENTS = "enrollment.view_course"
    VIEW_STUDENT_ENROLLMENTS = "enrollment.view_student"
    VIEW_DASHBOARD = "dashboard.view"
    REGISTER_PRIVILEGED = "account.register_privileged"


RULES: Dict[str, Dict[str, str]] = {
    Action.MANAGE_DEPARTMENT: {ADMIN: ALLOW},
    Action.MANAGE_COURSE: {ADMIN: ALLOW},
    Action.MANAGE_TEACHER: {ADMIN: ALLOW},
    # Teachers edit their own profile (limited fields, enforced by the service).
    Action.UPDATE_TEACHER: {ADMIN: ALLOW, TEACHER: SELF},
    Action.VIEW_DELETED: {ADMIN: ALLOW},
    Action.CREATE_STUDENT: {ADMIN: ALLOW},
    Action.DELETE_STUDENT: {ADMIN: ALLOW},
    Action.VIEW_STUDENT: {ADMIN: ALLOW, TEACHER: ALLOW, STUDENT: SELF},
    Action.UPDATE_STUDENT: {ADMIN: ALLOW, STUDENT: SELF},
    Action.MARK_ATTENDANCE: {ADMIN: ALLOW, TEACHER: OWNS_COURSE},
    Action.VIEW_COURSE_ATTENDANCE: {ADMIN: ALLOW, TEACHER: OWNS_COURSE},
    Action.VIEW_STUDENT_ATTENDANCE: {ADMIN: ALLOW, TEACHER: OWNS_COURSE, STUDENT: SELF},
    Action.VIEW_STUDENT_GRADES: {ADMIN: ALLOW, TEACHER: OWNS_COURSE, STUDENT: SELF},
    Action.VIEW_COURSE_GRADES: {ADMIN: ALLOW, TEACHER: OWNS_COURSE},
    Action.GRADE_ENROLLMENT: {ADMIN: ALLOW, TEACHER: OWNS_COURSE},
    Action.DELETE_GRADE: {ADMIN: ALLOW},
    Action.ENROLL: {ADMIN: ALLOW, STUDENT: SELF},
    Action.DROP: {ADMIN: ALLOW, STUDENT: SELF},
    Action.VIEW_ENROLLMENT: {ADMIN: ALLOW, TEACHER: OWNS_COURSE, STUDENT: SELF},
    Action.VIEW_COURSE_ENROLLMENTS: {ADMIN: ALLOW, TEACHER: OWNS_COURSE},
    Action.VIEW_STUDENT_ENROLLMENTS: {ADMIN: ALLOW, TEACHER: OWNS_COURSE, STUDENT: SELF},
    Action.VIEW_DASHBOARD: {ADMIN: ALLOW},
    Action.REGISTER_PRIVILEGED: {ADMIN: ALLOW},
}


@dataclass(frozen=True)
class Ownership:
    """Who a concrete resource belongs to.

    `user_id` is the owning user (student or teacher account); `course_owner_id`
    is the user id of the teacher assigned to the resource's course.
    """

    user_id: Optional[int] = None
    course_owner_id: Optional[int] = None


def rule_for(principal: Principal, action: str) -> str:
    """Return the rule for the principal's role, raising if denied outright.

    Call this before fetching anything so roles that can never perform the
    action are rejected without touching the store.
    """
    if principal is None or not principal.active:
        raise ForbiddenError()
    rule = RULES.get(action, {}).get(principal.role)
    if rule is None:
        raise ForbiddenError()
    return rule


def authorize(principal: Principal, action: str, resource: Optional[Ownership] = None) -> None:
    """Raise ForbiddenError unless the principal may perform `action` on `resource`."""
    rule = rule_for(principal, action)
    if rule == ALLOW:
        return
    if resource is None:
        raise ForbiddenError()
    if rule == SELF and resource.user_id is not None and resource.user_id == principal.user_id:
        return
    if (
        rule == OWNS_COURSE
        and resource.course_owner_id is not None
        and resource.course_owner_id == principal.user_id
    ):
        return
    raise ForbiddenError()


__all__ = ["Action", "RULES", "ALLOW", "SELF", "OWNS_COURSE", "Ownership", "rule_for", "authorize"]
