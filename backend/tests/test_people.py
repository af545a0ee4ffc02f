"""
Student and teacher profiles: provisioning, visibility, field-level edits,
soft delete and restore.
"""
from __future__ import annotations

from datetime import date

import pytest

from backend.academics.errors import (
    BusinessRuleViolation,
    DuplicateResourceError,
    ForbiddenError,
    NotFoundError,
    ValidationFailure,
)
from backend.academics.paging import PageRequest
from backend.academics.records import STUDENT_ACTIVE, STUDENT_INACTIVE
from backend.academics.services.courses import CoursesService
from backend.academics.services.students import StudentsService
from backend.academics.services.teachers import TeachersService
from backend.identity_access.passwords import verify_password


def _student_data(campus, **overrides):
    data = {
        "first_name": "Grace",
        "last_name": "Murray",
        "email": "grace.murray@studify.test",
        "date_of_birth": date(2002, 1, 9),
        "department_id": campus.department.id,
    }
    data.update(overrides)
    return data


def test_create_student_generates_account_and_temporary_password(campus):
    created = StudentsService(campus.repo).create(campus.admin, _student_data(campus))
    assert created.username == "grace.murray"
    assert created.initial_password
    user = campus.repo.get_user(created.profile.user_id)
    assert user.role == "STUDENT"
    assert verify_password(created.initial_password, user.password_hash)
    assert created.profile.status == STUDENT_ACTIVE


def test_create_student_with_explicit_password_returns_none(campus):
    created = StudentsService(campus.repo).create(campus.admin, _student_data(campus, password="chosen-pass-1"))
    assert created.initial_password is None


def test_create_student_validation(campus):
    with pytest.raises(ValidationFailure) as exc:
        StudentsService(campus.repo).create(
            campus.admin,
            _student_data(campus, email="nope", date_of_birth=date(2999, 1, 1), department_id=404, phone="abc"),
        )
    assert set(exc.value.field_errors) == {"email", "date_of_birth", "department_id", "phone"}


def test_create_student_duplicate_email(campus):
    with pytest.raises(DuplicateResourceError):
        StudentsService(campus.repo).create(campus.admin, _student_data(campus, email=campus.students[0].email))


def test_teacher_cannot_create_student(campus):
    with pytest.raises(ForbiddenError):
        StudentsService(campus.repo).create(campus.teacher_principal, _student_data(campus))


def test_student_sees_only_own_profile(campus):
    service = StudentsService(campus.repo)
    ada, linus = campus.students
    assert service.get(campus.student_principal(0), ada.id).id == ada.id
    with pytest.raises(ForbiddenError):
        service.get(campus.student_principal(0), linus.id)
    # A missing id looks the same as someone else's.
    with pytest.raises(ForbiddenError):
        service.get(campus.student_principal(0), 9999)
    with pytest.raises(NotFoundError):
        service.get(campus.admin, 9999)
    with pytest.raises(ForbiddenError):
        service.list(campus.student_principal(0), PageRequest())


def test_student_self_update_is_limited_to_contact_fields(campus):
    service = StudentsService(campus.repo)
    ada = campus.students[0]
    updated = service.update(
        campus.student_principal(0),
        ada.id,
        {"phone": "+1 555 0100", "address": "12 Analytical St", "first_name": "Augusta", "status": "GRADUATED"},
    )
    assert updated.phone == "+1 555 0100"
    assert updated.address == "12 Analytical St"
    assert updated.first_name == "Ada"
    assert updated.status == STUDENT_ACTIVE


def test_admin_email_change_is_mirrored_to_login(campus):
    ada = campus.students[0]
    StudentsService(campus.repo).update(campus.admin, ada.id, {"email": "countess@studify.test"})
    assert campus.repo.get_user(ada.user_id).email == "countess@studify.test"


def test_soft_delete_and_restore_round_trip(campus):
    service = StudentsService(campus.repo)
    ada = campus.students[0]
    service.delete(campus.admin, ada.id)

    with pytest.raises(NotFoundError):
        service.get(campus.admin, ada.id)
    assert ada.id not in {s.id for s in service.list(campus.admin, PageRequest()).items}
    deleted = service.list_deleted(campus.admin, PageRequest())
    assert [s.id for s in deleted.items] == [ada.id]
    assert deleted.items[0].status == STUDENT_INACTIVE
    assert deleted.items[0].deleted_by == campus.admin.email
    assert not campus.repo.get_user(ada.user_id).active

    restored = service.restore(campus.admin, ada.id)
    assert restored.status == STUDENT_ACTIVE
    assert not restored.deleted
    assert campus.repo.get_user(ada.user_id).active
    assert service.get(campus.admin, ada.id).id == ada.id


def test_restore_requires_deleted_student(campus):
    with pytest.raises(BusinessRuleViolation):
        StudentsService(campus.repo).restore(campus.admin, campus.students[0].id)


def test_student_list_filters(campus):
    campus.add_student("Grace", "Brewster", status="GRADUATED")
    service = StudentsService(campus.repo)
    graduated = service.list(campus.admin, PageRequest(), status="graduated")
    assert [s.last_name for s in graduated.items] == ["Brewster"]
    found = service.list(campus.teacher_principal, PageRequest(), search="LOVE")
    assert [s.last_name for s in found.items] == ["Lovelace"]


def test_teacher_with_courses_cannot_be_deleted(campus):
    service = TeachersService(campus.repo)
    with pytest.raises(BusinessRuleViolation) as exc:
        service.delete(campus.admin, campus.teacher.id)
    assert "1" in str(exc.value)

    CoursesService(campus.repo).assign_teacher(campus.admin, campus.course.id, campus.other_teacher.id)
    service.delete(campus.admin, campus.teacher.id)
    with pytest.raises(NotFoundError):
        service.get(campus.admin, campus.teacher.id)
    assert [t.id for t in service.list_deleted(campus.admin, PageRequest()).items] == [campus.teacher.id]


def test_teacher_restore_guard(campus):
    service = TeachersService(campus.repo)
    with pytest.raises(BusinessRuleViolation):
        service.restore(campus.admin, campus.other_teacher.id)
    service.delete(campus.admin, campus.other_teacher.id)
    assert not service.restore(campus.admin, campus.other_teacher.id).deleted


def test_teacher_self_update_is_limited(campus):
    service = TeachersService(campus.repo)
    updated = service.update(
        campus.teacher_principal,
        campus.teacher.id,
        {"specialization": "Compilers", "last_name": "Renamed"},
    )
    assert updated.specialization == "Compilers"
    assert updated.last_name == "Hopper"
    with pytest.raises(ForbiddenError):
        service.update(campus.teacher_principal, campus.other_teacher.id, {"phone": "555 0100"})
    with pytest.raises(ForbiddenError):
        service.update(campus.student_principal(0), campus.teacher.id, {"phone": "555 0100"})


def test_create_teacher_is_admin_only(campus):
    service = TeachersService(campus.repo)
    data = {"first_name": "Barbara", "last_name": "Liskov", "email": "liskov@studify.test", "department_id": campus.department.id}
    with pytest.raises(ForbiddenError):
        service.create(campus.teacher_principal, data)
    created = service.create(campus.admin, data)
    assert created.username == "barbara.liskov"
    assert campus.repo.get_user(created.profile.user_id).role == "TEACHER"
