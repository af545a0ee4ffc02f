"""
Account use cases: login, registration, principal resolution, password change.
"""
from __future__ import annotations

import pytest

from backend.academics.errors import (
    BusinessRuleViolation,
    DuplicateResourceError,
    ForbiddenError,
    UnauthenticatedError,
    ValidationFailure,
)
from backend.academics.services.students import StudentsService
from backend.identity_access.accounts import INVALID_CREDENTIALS, AccountsService, generate_username
from backend.identity_access.domain import STUDENT, TEACHER
from backend.identity_access.tokens import TokenService

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, MEMBER_PASSWORD


@pytest.fixture
def accounts(repo):
    return AccountsService(repo, TokenService(secret="s" * 40, expires_minutes=60))


def test_login_returns_token_resolving_to_principal(accounts, admin):
    result = accounts.login(ADMIN_EMAIL, ADMIN_PASSWORD)
    assert result.token_type == "Bearer"
    assert result.expires_in == 3600
    principal = accounts.resolve_principal(result.token)
    assert principal.user_id == admin.user_id
    assert principal.is_admin


def test_login_email_is_case_insensitive(accounts, admin):
    assert accounts.login(ADMIN_EMAIL.upper(), ADMIN_PASSWORD).user.id == admin.user_id


@pytest.mark.parametrize(
    "email,password",
    [(ADMIN_EMAIL, "wrong-password"), ("nobody@studify.test", ADMIN_PASSWORD), ("", "")],
)
def test_login_failures_share_one_message(accounts, admin, email, password):
    with pytest.raises(UnauthenticatedError) as exc:
        accounts.login(email, password)
    assert str(exc.value) == INVALID_CREDENTIALS


def test_deleted_student_cannot_log_in_or_use_old_token(accounts, campus):
    ada = campus.students[0]
    token = accounts.login(ada.email, MEMBER_PASSWORD).token
    StudentsService(campus.repo).delete(campus.admin, ada.id)

    with pytest.raises(UnauthenticatedError) as exc:
        accounts.login(ada.email, MEMBER_PASSWORD)
    assert str(exc.value) == INVALID_CREDENTIALS
    with pytest.raises(UnauthenticatedError):
        accounts.resolve_principal(token)


def test_public_registration_creates_student_account(accounts, repo):
    result = accounts.register(username="new.student", email="new@studify.test", password="long-enough-1")
    assert result.user.role == STUDENT
    assert accounts.resolve_principal(result.token).user_id == result.user.id


def test_privileged_registration_requires_admin(accounts, campus):
    with pytest.raises(ForbiddenError):
        accounts.register(username="sneaky", email="sneaky@studify.test", password="long-enough-1", role=TEACHER)
    with pytest.raises(ForbiddenError):
        accounts.register(
            username="sneaky",
            email="sneaky@studify.test",
            password="long-enough-1",
            role="admin",
            actor=campus.teacher_principal,
        )
    created = accounts.register(
        username="new.teacher",
        email="new.teacher@studify.test",
        password="long-enough-1",
        role="teacher",
        actor=campus.admin,
    )
    assert created.user.role == TEACHER


def test_registration_validates_every_field(accounts, repo):
    with pytest.raises(ValidationFailure) as exc:
        accounts.register(username="x", email="not-an-email", password="short", role="JANITOR")
    assert set(exc.value.field_errors) == {"username", "email", "password", "role"}


def test_registration_rejects_duplicate_email(accounts, admin):
    with pytest.raises(DuplicateResourceError):
        accounts.register(username="second.admin", email=ADMIN_EMAIL, password="long-enough-1")


def test_change_password(accounts, admin):
    accounts.change_password(
        admin,
        current_password=ADMIN_PASSWORD,
        new_password="brand-new-pass",
        confirm_password="brand-new-pass",
    )
    assert accounts.login(ADMIN_EMAIL, "brand-new-pass").user.id == admin.user_id
    with pytest.raises(UnauthenticatedError):
        accounts.login(ADMIN_EMAIL, ADMIN_PASSWORD)


def test_change_password_rejects_mismatch_and_wrong_current(accounts, admin):
    with pytest.raises(BusinessRuleViolation):
        accounts.change_password(admin, current_password=ADMIN_PASSWORD, new_password="aaaaaaaa1", confirm_password="bbbbbbbb1")
    with pytest.raises(BusinessRuleViolation):
        accounts.change_password(admin, current_password="wrong-one", new_password="aaaaaaaa1", confirm_password="aaaaaaaa1")
    with pytest.raises(ValidationFailure):
        accounts.change_password(admin, current_password=ADMIN_PASSWORD, new_password="short", confirm_password="short")


def test_me_includes_linked_profile(accounts, campus):
    me = accounts.me(campus.student_principal(0))
    assert me["role"] == STUDENT
    assert me["student"]["full_name"] == "Ada Lovelace"
    assert "teacher" not in me


def test_generate_username_adds_suffix_on_collision(campus):
    assert generate_username(campus.repo, "Ada", "Lovelace") == "ada.lovelace1"
    assert generate_username(campus.repo, "Mary Ann", "Evans") == "maryann.evans"


def test_bootstrap_admin_seeds_first_admin_once(accounts, repo):
    assert repo.count_active_admins() == 0
    created = accounts.bootstrap_admin(email="root@studify.test", password="bootstrap-pass-1")
    assert created.role == "ADMIN"
    assert created.username == "root"
    assert accounts.login("root@studify.test", "bootstrap-pass-1").user.id == created.id
    assert accounts.bootstrap_admin(email="second@studify.test", password="bootstrap-pass-2") is None
    assert repo.count_active_admins() == 1


def test_bootstrap_admin_is_noop_when_admin_exists(accounts, admin, repo):
    assert accounts.bootstrap_admin(email="root@studify.test", password="bootstrap-pass-1") is None
    assert repo.find_user_by_email("root@studify.test") is None


def test_bootstrap_admin_never_promotes_existing_account(accounts, repo):
    student = accounts.register(username="eve", email="eve@studify.test", password=MEMBER_PASSWORD).user
    assert accounts.bootstrap_admin(email="eve@studify.test", password="bootstrap-pass-1") is None
    assert repo.get_user(student.id).role == STUDENT
    assert repo.count_active_admins() == 0


def test_bootstrap_admin_validates_settings(accounts, repo):
    with pytest.raises(ValidationFailure) as exc:
        accounts.bootstrap_admin(email="root", password="short")
    assert set(exc.value.field_errors) == {"ADMIN_EMAIL", "ADMIN_PASSWORD"}
    assert repo.count_active_admins() == 0
