"""
Pytest configuration for backend tests.

Why: Force AnyIO to use the asyncio backend, give every test a fresh
in-memory store wired into the web app, and provide a small seeded campus
(department, two teachers, one course, students) built through the services.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import os
from typing import Dict, List

import pytest

from backend.academics.records import Course, Department, Student, Teacher
from backend.academics.repo_memory import MemoryAcademicsRepo
from backend.academics.services.courses import CoursesService
from backend.academics.services.departments import DepartmentsService
from backend.identity_access.domain import ADMIN, Principal
from backend.identity_access.passwords import hash_password
from backend.web import wiring

ADMIN_EMAIL = "admin@studify.test"
ADMIN_PASSWORD = "admin-pass-123"
MEMBER_PASSWORD = "member-pass-123"

# pbkdf2 is slow on purpose; hash once for all seeded accounts.
MEMBER_HASH = hash_password(MEMBER_PASSWORD)


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture(autouse=True)
def _isolated_environment(monkeypatch: pytest.MonkeyPatch):
    """Keep env-driven settings deterministic and unrelated to the developer shell."""
    for var in ("APP_ENV", "JWT_SECRET", "JWT_EXPIRES_MINUTES", "ATTENDANCE_EDIT_WINDOW_DAYS", "ADMIN_EMAIL", "ADMIN_PASSWORD"):
        monkeypatch.delenv(var, raising=False)
    wiring.set_settings(None)
    yield
    wiring.set_settings(None)


@pytest.fixture
def repo():
    """Fresh in-memory store, also wired into the web app."""
    store = MemoryAcademicsRepo()
    wiring.set_repo(store)
    yield store
    wiring.set_repo(None)


def principal_of(repo: MemoryAcademicsRepo, user_id: int) -> Principal:
    return Principal.from_user(repo.get_user(user_id))


@pytest.fixture
def admin(repo) -> Principal:
    user = repo.create_user(
        username="admin",
        email=ADMIN_EMAIL,
        password_hash=hash_password(ADMIN_PASSWORD),
        role=ADMIN,
    )
    return Principal.from_user(user)


@dataclass
class Campus:
    repo: MemoryAcademicsRepo
    admin: Principal
    department: Department
    teacher: Teacher
    other_teacher: Teacher
    course: Course
    students: List[Student] = field(default_factory=list)
    _counter: Dict[str, int] = field(default_factory=lambda: {"n": 0})

    @property
    def teacher_principal(self) -> Principal:
        return principal_of(self.repo, self.teacher.user_id)

    @property
    def other_teacher_principal(self) -> Principal:
        return principal_of(self.repo, self.other_teacher.user_id)

    def student_principal(self, index: int = 0) -> Principal:
        return principal_of(self.repo, self.students[index].user_id)

    def add_student(self, first_name: str = "Student", last_name: str = "", **extra) -> Student:
        self._counter["n"] += 1
        n = self._counter["n"]
        last_name = last_name or f"Number{n}"
        profile = {
            "first_name": first_name,
            "last_name": last_name,
            "email": f"student{n}@studify.test",
            "phone": None,
            "date_of_birth": date(2001, 5, 17),
            "address": None,
            "department_id": self.department.id,
            "enrollment_date": date(2023, 9, 1),
            "status": "ACTIVE",
        }
        profile.update(extra)
        student = self.repo.create_student(
            username=f"{first_name}.{last_name}".lower(),
            password_hash=MEMBER_HASH,
            profile=profile,
            actor=self.admin.actor,
        )
        self.students.append(student)
        return student

    def add_teacher(self, first_name: str, last_name: str) -> Teacher:
        return self.repo.create_teacher(
            username=f"{first_name}.{last_name}".lower(),
            password_hash=MEMBER_HASH,
            profile={
                "first_name": first_name,
                "last_name": last_name,
                "email": f"{first_name}.{last_name}@studify.test".lower(),
                "department_id": self.department.id,
                "hire_date": date(2015, 8, 1),
            },
            actor=self.admin.actor,
        )

    def add_course(self, code: str, *, max_capacity: int = 30, teacher: Teacher | None = None, semester: str = "2024-FALL", credits: int = 3) -> Course:
        return CoursesService(self.repo).create(
            self.admin,
            {
                "code": code,
                "name": f"Course {code}",
                "credits": credits,
                "semester": semester,
                "max_capacity": max_capacity,
                "department_id": self.department.id,
                "teacher_id": teacher.id if teacher else None,
            },
        )


@pytest.fixture
def campus(repo, admin) -> Campus:
    department = DepartmentsService(repo).create(admin, name="Computer Science", code="cs")
    shell = Campus(repo=repo, admin=admin, department=department, teacher=None, other_teacher=None, course=None)  # type: ignore[arg-type]
    shell.teacher = shell.add_teacher("Grace", "Hopper")
    shell.other_teacher = shell.add_teacher("Alan", "Turing")
    shell.course = shell.add_course("CS101", teacher=shell.teacher)
    shell.add_student("Ada", "Lovelace")
    shell.add_student("Linus", "Torvalds")
    return shell


def require_db_or_skip() -> str:
    dsn = os.getenv("DATABASE_URL") or ""
    if not dsn:
        pytest.skip("DATABASE_URL not set; Postgres-backed tests skipped")
    try:
        import psycopg

        with psycopg.connect(dsn, connect_timeout=2):
            return dsn
    except psycopg.Error:
        pytest.skip("Database not reachable; ensure DATABASE_URL points to a running Postgres")
