"""Institution-wide counts for the admin dashboard."""

from __future__ import annotations

from dataclasses import dataclass
from fractions import Fraction
from typing import Dict, List, Optional, Protocol

from backend.identity_access.domain import Principal
from backend.identity_access.policy import Action, authorize

from ..records import ENROLLMENT_ACTIVE, LATE, PRESENT, STUDENT_STATUSES, Grade
from .grades import average_point


class DashboardRepoProtocol(Protocol):
    def count_students_by_status(self) -> Dict[str, int]:
        ...

    def count_teachers(self) -> int:
        ...

    def count_courses(self) -> int:
        ...

    def count_departments(self) -> int:
        ...

    def count_enrollments_by_status(self) -> Dict[str, int]:
        ...

    def list_grades(self, **filters) -> List[Grade]:
        ...

    def attendance_status_counts(self, *, course_id: Optional[int] = None) -> Dict[str, int]:
        ...


@dataclass
class Dashboard:
    students_by_status: Dict[str, int]
    total_teachers: int
    total_courses: int
    total_departments: int
    total_enrollments: int
    active_enrollments: int
    average_gpa: Optional[Fraction]
    average_attendance_rate: float

    @property
    def total_students(self) -> int:
        return sum(self.students_by_status.values())


@dataclass
class DashboardService:
    repo: DashboardRepoProtocol

    def overview(self, principal: Principal) -> Dashboard:
        authorize(principal, Action.VIEW_DASHBOARD)
        students = {status: 0 for status in sorted(STUDENT_STATUSES)}
        students.update(self.repo.count_students_by_status())
        enrollments = self.repo.count_enrollments_by_status()
        marks = self.repo.attendance_status_counts()
        total_marks = sum(marks.values())
        rate = 0.0
        if total_marks:
            rate = (marks.get(PRESENT, 0) + marks.get(LATE, 0)) * 100.0 / total_marks
        return Dashboard(
            students_by_status=students,
            total_teachers=self.repo.count_teachers(),
            total_courses=self.repo.count_courses(),
            total_departments=self.repo.count_departments(),
            total_enrollments=sum(enrollments.values()),
            active_enrollments=enrollments.get(ENROLLMENT_ACTIVE, 0),
            average_gpa=average_point(self.repo.list_grades()),
            average_attendance_rate=rate,
        )
