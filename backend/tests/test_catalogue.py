"""
Departments and courses: uniqueness, dependent-record guards and capacity.
"""
from __future__ import annotations

import pytest

from backend.academics.errors import (
    BusinessRuleViolation,
    DuplicateResourceError,
    ForbiddenError,
    NotFoundError,
    ValidationFailure,
)
from backend.academics.paging import PageRequest
from backend.academics.services.courses import COURSE_SORTS, CoursesService
from backend.academics.services.departments import DepartmentsService
from backend.academics.services.enrollments import EnrollmentsService
from backend.academics.services.students import StudentsService


def test_department_code_is_uppercased_and_unique(repo, admin):
    service = DepartmentsService(repo)
    created = service.create(admin, name="Mathematics", code="math", description="Numbers")
    assert created.code == "MATH"
    with pytest.raises(DuplicateResourceError):
        service.create(admin, name="Applied Mathematics", code="MATH")
    with pytest.raises(DuplicateResourceError):
        service.create(admin, name="Mathematics", code="MA2")


def test_department_validation_reports_fields(repo, admin):
    with pytest.raises(ValidationFailure) as exc:
        DepartmentsService(repo).create(admin, name="", code="toolongcode99")
    assert set(exc.value.field_errors) == {"name", "code"}


def test_non_admin_cannot_create_department(campus):
    with pytest.raises(ForbiddenError):
        DepartmentsService(campus.repo).create(campus.teacher_principal, name="Physics", code="PHY")


def test_department_delete_blocked_by_students_reports_count(campus):
    campus.add_student()
    service = DepartmentsService(campus.repo)
    with pytest.raises(BusinessRuleViolation) as exc:
        service.delete(campus.admin, campus.department.id)
    assert "3" in str(exc.value)
    assert service.get(campus.admin, campus.department.id).id == campus.department.id


def test_department_delete_ignores_soft_deleted_students_but_not_courses(campus):
    students = StudentsService(campus.repo)
    for s in campus.students:
        students.delete(campus.admin, s.id)
    with pytest.raises(BusinessRuleViolation) as exc:
        DepartmentsService(campus.repo).delete(campus.admin, campus.department.id)
    assert "course" in str(exc.value)


def test_empty_department_can_be_deleted(repo, admin):
    service = DepartmentsService(repo)
    dept = service.create(admin, name="Philosophy", code="PHIL")
    service.delete(admin, dept.id)
    with pytest.raises(NotFoundError):
        service.get(admin, dept.id)


def test_department_search_is_case_insensitive(campus):
    DepartmentsService(campus.repo).create(campus.admin, name="Mechanical Engineering", code="ME")
    page = DepartmentsService(campus.repo).list(campus.admin, PageRequest(), search="engin")
    assert [d.code for d in page.items] == ["ME"]


def test_course_create_validates_ranges(campus):
    with pytest.raises(ValidationFailure) as exc:
        CoursesService(campus.repo).create(
            campus.admin,
            {"code": "C1", "name": "X", "credits": 9, "semester": "2024-FALL", "max_capacity": 5, "department_id": campus.department.id},
        )
    assert set(exc.value.field_errors) == {"code", "name", "credits", "max_capacity"}


def test_course_code_is_unique(campus):
    with pytest.raises(DuplicateResourceError):
        campus.add_course("cs101")


def test_course_read_carries_seat_counts(campus):
    enrollments = EnrollmentsService(campus.repo)
    for s in campus.students:
        enrollments.enroll(campus.admin, s.id, campus.course.id)
    course = CoursesService(campus.repo).get(campus.admin, campus.course.id)
    assert course.enrolled_count == 2
    assert course.available_seats == 28
    assert not course.is_full


def test_capacity_cannot_drop_below_active_enrollment(campus):
    course = campus.add_course("CS150", max_capacity=20)
    enrollments = EnrollmentsService(campus.repo)
    for _ in range(15):
        enrollments.enroll(campus.admin, campus.add_student().id, course.id)
    service = CoursesService(campus.repo)

    with pytest.raises(BusinessRuleViolation) as exc:
        service.update(campus.admin, course.id, {"max_capacity": 10})
    assert "15" in str(exc.value)
    assert service.get(campus.admin, course.id).max_capacity == 20

    assert service.update(campus.admin, course.id, {"max_capacity": 15}).max_capacity == 15


def test_course_with_any_enrollment_cannot_be_deleted(campus):
    enrollments = EnrollmentsService(campus.repo)
    enrollment = enrollments.enroll(campus.admin, campus.students[0].id, campus.course.id)
    enrollments.drop(campus.admin, enrollment.id)
    with pytest.raises(BusinessRuleViolation):
        CoursesService(campus.repo).delete(campus.admin, campus.course.id)


def test_assign_teacher_and_filter_by_teacher(campus):
    service = CoursesService(campus.repo)
    other = campus.add_course("CS200")
    updated = service.assign_teacher(campus.admin, other.id, campus.other_teacher.id)
    assert updated.teacher_id == campus.other_teacher.id
    page = service.list(campus.admin, PageRequest(), teacher_id=campus.other_teacher.id)
    assert [c.code for c in page.items] == ["CS200"]
    with pytest.raises(NotFoundError):
        service.assign_teacher(campus.admin, other.id, 9999)


def test_course_ids_are_validated_on_create_and_update(campus):
    service = CoursesService(campus.repo)
    with pytest.raises(ValidationFailure) as exc:
        service.create(
            campus.admin,
            {"code": "CS400", "name": "Compilers", "credits": 3, "semester": "2024-FALL", "max_capacity": 30,
             "department_id": "1", "teacher_id": 0},
        )
    assert set(exc.value.field_errors) == {"department_id", "teacher_id"}

    with pytest.raises(ValidationFailure) as exc:
        service.update(campus.admin, campus.course.id, {"department_id": -4, "teacher_id": "x"})
    assert set(exc.value.field_errors) == {"department_id", "teacher_id"}
    with pytest.raises(ValidationFailure) as exc:
        service.update(campus.admin, campus.course.id, {"teacher_id": 9999})
    assert exc.value.field_errors["teacher_id"] == "teacher does not exist"
    assert service.get(campus.admin, campus.course.id).teacher_id == campus.teacher.id


def test_explicit_null_unassigns_teacher(campus):
    service = CoursesService(campus.repo)
    kept = service.update(campus.admin, campus.course.id, {"name": "Intro to CS"})
    assert kept.teacher_id == campus.teacher.id
    cleared = service.update(campus.admin, campus.course.id, {"teacher_id": None})
    assert cleared.teacher_id is None
    assert cleared.teacher_user_id is None
    assert service.list(campus.admin, PageRequest(), teacher_id=campus.teacher.id).items == []


def test_available_courses_exclude_full_ones(campus):
    full = campus.add_course("CS300", max_capacity=10)
    enrollments = EnrollmentsService(campus.repo)
    for _ in range(10):
        enrollments.enroll(campus.admin, campus.add_student().id, full.id)
    page = CoursesService(campus.repo).available(campus.admin, PageRequest(size=50))
    codes = {c.code for c in page.items}
    assert "CS101" in codes
    assert "CS300" not in codes


def test_course_listing_sorts_and_pages(campus):
    for code in ("MA101", "BIO10", "PHY20"):
        campus.add_course(code)
    page = CoursesService(campus.repo).list(
        campus.admin, PageRequest.of(0, 2, "code", "desc", allowed_sorts=COURSE_SORTS)
    )
    assert [c.code for c in page.items] == ["PHY20", "MA101"]
    assert page.total == 4
    assert page.total_pages == 2


def test_page_request_rejects_unknown_sort():
    with pytest.raises(ValidationFailure) as exc:
        PageRequest.of(-1, 500, "password", "sideways", allowed_sorts=COURSE_SORTS)
    assert set(exc.value.field_errors) == {"page", "size", "sort", "direction"}
