"""
Store surface shared by the in-memory and Postgres implementations.

Each service declares only the narrow protocol it needs; this protocol is the
union the web layer wires a single store against.
"""
from __future__ import annotations

from typing import Protocol

from backend.identity_access.accounts import AccountsRepoProtocol

from .services.attendance import AttendanceRepoProtocol
from .services.courses import CoursesRepoProtocol
from .services.dashboard import DashboardRepoProtocol
from .services.departments import DepartmentsRepoProtocol
from .services.enrollments import EnrollmentsRepoProtocol
from .services.grades import GradesRepoProtocol
from .services.students import StudentsRepoProtocol
from .services.teachers import TeachersRepoProtocol


class AcademicsRepoProtocol(
    AccountsRepoProtocol,
    DepartmentsRepoProtocol,
    StudentsRepoProtocol,
    TeachersRepoProtocol,
    CoursesRepoProtocol,
    EnrollmentsRepoProtocol,
    GradesRepoProtocol,
    AttendanceRepoProtocol,
    DashboardRepoProtocol,
    Protocol,
):
    ...
