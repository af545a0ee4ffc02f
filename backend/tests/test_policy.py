"""
Access policy table: role rules and ownership checks.
"""
from __future__ import annotations

import pytest

from backend.academics.errors import ForbiddenError
from backend.identity_access.domain import ADMIN, STUDENT, TEACHER, Principal
from backend.identity_access.policy import (
    ALLOW,
    OWNS_COURSE,
    RULES,
    SELF,
    Action,
    Ownership,
    authorize,
    rule_for,
)


def _p(role: str, user_id: int = 10, active: bool = True) -> Principal:
    return Principal(user_id=user_id, email=f"{role.lower()}@studify.test", role=role, active=active)


def _allowed(principal: Principal, action: str, resource=None) -> bool:
    try:
        authorize(principal, action, resource)
    except ForbiddenError:
        return False
    return True


def test_admin_is_allowed_every_action():
    admin = _p(ADMIN)
    for action in RULES:
        assert rule_for(admin, action) == ALLOW


def test_student_may_not_manage_catalogue():
    student = _p(STUDENT)
    for action in (Action.MANAGE_COURSE, Action.MANAGE_DEPARTMENT, Action.MANAGE_TEACHER, Action.VIEW_DASHBOARD):
        with pytest.raises(ForbiddenError):
            authorize(student, action)


def test_self_rule_requires_matching_user():
    student = _p(STUDENT, user_id=7)
    assert rule_for(student, Action.VIEW_STUDENT_GRADES) == SELF
    authorize(student, Action.VIEW_STUDENT_GRADES, Ownership(user_id=7))
    with pytest.raises(ForbiddenError):
        authorize(student, Action.VIEW_STUDENT_GRADES, Ownership(user_id=8))


def test_owns_course_rule_requires_assigned_teacher():
    teacher = _p(TEACHER, user_id=3)
    assert rule_for(teacher, Action.MARK_ATTENDANCE) == OWNS_COURSE
    assert _allowed(teacher, Action.MARK_ATTENDANCE, Ownership(course_owner_id=3))
    assert not _allowed(teacher, Action.MARK_ATTENDANCE, Ownership(course_owner_id=4))
    # A course without a teacher is nobody's.
    assert not _allowed(teacher, Action.MARK_ATTENDANCE, Ownership(course_owner_id=None))


def test_conditional_rule_without_resource_is_denied():
    assert not _allowed(_p(STUDENT), Action.VIEW_ENROLLMENT, None)
    assert not _allowed(_p(TEACHER), Action.VIEW_ENROLLMENT, None)


def test_inactive_principal_is_denied_even_as_admin():
    with pytest.raises(ForbiddenError):
        authorize(_p(ADMIN, active=False), Action.VIEW_DASHBOARD)


def test_missing_principal_is_denied():
    with pytest.raises(ForbiddenError):
        rule_for(None, Action.REGISTER_PRIVILEGED)  # type: ignore[arg-type]


def test_teacher_cannot_delete_grades_or_enroll():
    teacher = _p(TEACHER)
    assert not _allowed(teacher, Action.DELETE_GRADE)
    assert not _allowed(teacher, Action.ENROLL, Ownership(user_id=teacher.user_id))
