"""
Store and service wiring for the web adapter.

Why:
    Routes need one shared store and services bound to it. The store is built
    lazily on first use so importing the app never touches the database; tests
    call `set_repo` to swap in a fresh in-memory store.

Behavior:
    - `DATABASE_URL` set and reachable: Postgres store (schema ensured).
    - Otherwise: in-memory store, with a warning when a DSN was configured but
      could not be used.
    - `ADMIN_EMAIL` and `ADMIN_PASSWORD` set: the first ADMIN is created on a
      store that has none.
"""
from __future__ import annotations

import logging
from typing import Optional

import psycopg

from backend.academics.errors import ValidationFailure
from backend.academics.repo_db import DBAcademicsRepo
from backend.academics.repo_memory import MemoryAcademicsRepo
from backend.academics.services.attendance import AttendanceService
from backend.academics.services.courses import CoursesService
from backend.academics.services.dashboard import DashboardService
from backend.academics.services.departments import DepartmentsService
from backend.academics.services.enrollments import EnrollmentsService
from backend.academics.services.grades import GradesService
from backend.academics.services.students import StudentsService
from backend.academics.services.teachers import TeachersService
from backend.academics.store import AcademicsRepoProtocol
from backend.identity_access.accounts import AccountsService
from backend.identity_access.tokens import TokenService

from .config import WebSettings, load_settings

logger = logging.getLogger("studify.web")

_REPO: Optional[AcademicsRepoProtocol] = None
_SETTINGS: Optional[WebSettings] = None


def _build_default_repo(settings: WebSettings) -> AcademicsRepoProtocol:
    """Prefer the Postgres store; fall back to memory if unavailable."""
    if not settings.database_url:
        return MemoryAcademicsRepo()
    try:
        repo = DBAcademicsRepo(settings.database_url)
        repo.ensure_schema()
        return repo
    except psycopg.Error as exc:
        logger.warning("Academics DB unavailable (%s); using in-memory fallback", exc.__class__.__name__)
        return MemoryAcademicsRepo()


def _bootstrap_admin(repo: AcademicsRepoProtocol, settings: WebSettings) -> None:
    """Seed the first ADMIN from ADMIN_EMAIL/ADMIN_PASSWORD when the store has none."""
    if not (settings.admin_email and settings.admin_password):
        return
    accounts = AccountsService(repo, TokenService(secret=settings.jwt_secret, expires_minutes=settings.jwt_expires_minutes))
    try:
        accounts.bootstrap_admin(email=settings.admin_email, password=settings.admin_password)
    except ValidationFailure as exc:
        logger.error("Admin bootstrap skipped; invalid settings: %s", ", ".join(sorted(exc.field_errors)))


def get_settings() -> WebSettings:
    global _SETTINGS
    if _SETTINGS is None:
        _SETTINGS = load_settings()
    return _SETTINGS


def set_settings(settings: Optional[WebSettings]) -> None:
    """Allow tests to override settings, or reset with None."""
    global _SETTINGS
    _SETTINGS = settings


def get_repo() -> AcademicsRepoProtocol:
    global _REPO
    if _REPO is None:
        settings = get_settings()
        repo = _build_default_repo(settings)
        _bootstrap_admin(repo, settings)
        _REPO = repo
    return _REPO


def set_repo(repo: Optional[AcademicsRepoProtocol]) -> None:
    """Allow tests to swap the store implementation."""
    global _REPO
    _REPO = repo


def token_service() -> TokenService:
    settings = get_settings()
    return TokenService(secret=settings.jwt_secret, expires_minutes=settings.jwt_expires_minutes)


def accounts_service() -> AccountsService:
    return AccountsService(get_repo(), token_service())


def departments_service() -> DepartmentsService:
    return DepartmentsService(get_repo())


def students_service() -> StudentsService:
    return StudentsService(get_repo())


def teachers_service() -> TeachersService:
    return TeachersService(get_repo())


def courses_service() -> CoursesService:
    return CoursesService(get_repo())


def enrollments_service() -> EnrollmentsService:
    return EnrollmentsService(get_repo())


def grades_service() -> GradesService:
    return GradesService(get_repo())


def attendance_service() -> AttendanceService:
    return AttendanceService(get_repo(), edit_window_days=get_settings().attendance_edit_window_days)


def dashboard_service() -> DashboardService:
    return DashboardService(get_repo())
