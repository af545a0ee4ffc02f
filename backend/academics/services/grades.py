"""
Grading use cases and grade aggregations.

Why:
    One grade per enrollment, upserted. The letter is validated against the
    fixed scale and the grade point is always derived from it, never accepted
    as input, so letter and point cannot disagree.

GPA:
    Averages are exact rationals (`fractions.Fraction`) built from the decimal
    text of each grade point, so A+, B and C average to exactly 37/12 rather
    than a rounded float. GPA is the unweighted mean of grade points.

Visibility:
    Per-student reads follow the grade-view rule: ADMIN sees everything, a
    STUDENT only their own grades, a TEACHER only grades of courses they own.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from fractions import Fraction
import logging
from typing import Callable, Dict, List, Optional, Protocol

from backend.identity_access.domain import Principal
from backend.identity_access.policy import Action, Ownership, authorize

from .. import validation as v
from ..errors import BusinessRuleViolation, NotFoundError
from ..records import (
    ENROLLMENT_ACTIVE,
    FAILING_GRADE,
    GRADE_POINTS,
    LETTER_GRADES,
    Course,
    Enrollment,
    Grade,
    Student,
)
from .access import course_scope, guarded_fetch, student_scope

logger = logging.getLogger("studify.academics.grades")

MAX_REMARKS = 500


class GradesRepoProtocol(Protocol):
    def get_student(self, student_id: int, *, include_deleted: bool = False) -> Optional[Student]:
        ...

    def get_course(self, course_id: int) -> Optional[Course]:
        ...

    def get_enrollment(self, enrollment_id: int) -> Optional[Enrollment]:
        ...

    def upsert_grade(
        self,
        enrollment_id: int,
        *,
        letter: str,
        remarks: Optional[str],
        graded_date: date,
        actor: Optional[str],
    ) -> Grade:
        ...

    def get_grade(self, grade_id: int) -> Optional[Grade]:
        ...

    def get_grade_by_enrollment(self, enrollment_id: int) -> Optional[Grade]:
        ...

    def delete_grade(self, grade_id: int) -> None:
        ...

    def list_grades(
        self,
        *,
        student_id: Optional[int] = None,
        course_id: Optional[int] = None,
        semester: Optional[str] = None,
        course_owner_id: Optional[int] = None,
    ) -> List[Grade]:
        ...


def exact_point(letter: str) -> Fraction:
    return Fraction(str(GRADE_POINTS.get(letter, 0.0)))


def average_point(grades: List[Grade]) -> Optional[Fraction]:
    """Unweighted mean grade point, or None when there are no grades."""
    if not grades:
        return None
    return sum((exact_point(g.letter) for g in grades), Fraction(0)) / len(grades)


@dataclass
class GpaResult:
    student_id: int
    gpa: Optional[Fraction]
    graded_courses: int
    semester: Optional[str] = None


@dataclass
class SemesterRecord:
    semester: str
    grades: List[Grade]
    gpa: Optional[Fraction]
    total_credits: int


@dataclass
class Transcript:
    student: Student
    semesters: List[SemesterRecord]
    cumulative_gpa: Optional[Fraction]
    total_credits_earned: int


def _grade_ownership(grade: Grade) -> Ownership:
    return Ownership(user_id=grade.student_user_id, course_owner_id=grade.course_owner_id)


@dataclass
class GradesService:
    repo: GradesRepoProtocol
    today: Callable[[], date] = field(default=date.today)

    def add_or_update(
        self,
        principal: Principal,
        enrollment_id: int,
        *,
        letter: object,
        remarks: object = None,
        graded_date: Optional[date] = None,
    ) -> Grade:
        """Record the grade for an enrollment, replacing any earlier one.

        Behavior:
            - Only ACTIVE enrollments can be graded.
            - `graded_date` defaults to today for a new grade and is kept
              unchanged on update when omitted.
        """
        enrollment = guarded_fetch(
            principal,
            Action.GRADE_ENROLLMENT,
            lambda: self.repo.get_enrollment(enrollment_id),
            lambda e: Ownership(user_id=e.student_user_id, course_owner_id=e.course_owner_id),
            entity="Enrollment",
            key=enrollment_id,
        )
        errors = v.FieldErrors()
        letter_v = v.one_of(errors, "grade", letter, frozenset(LETTER_GRADES))
        remarks_v = v.text(errors, "remarks", remarks, max_len=MAX_REMARKS, required=False)
        errors.raise_if_any()
        if enrollment.status != ENROLLMENT_ACTIVE:
            raise BusinessRuleViolation("Cannot grade dropped enrollment", code="enrollment_not_active")

        if graded_date is None:
            existing = self.repo.get_grade_by_enrollment(enrollment_id)
            graded_date = existing.graded_date if existing is not None else self.today()
        grade = self.repo.upsert_grade(
            enrollment_id,
            letter=letter_v,
            remarks=remarks_v,
            graded_date=graded_date,
            actor=principal.actor,
        )
        logger.info("grade.recorded id=%s enrollment_id=%s", grade.id, enrollment_id)
        return grade

    def get(self, principal: Principal, grade_id: int) -> Grade:
        return guarded_fetch(
            principal,
            Action.VIEW_STUDENT_GRADES,
            lambda: self.repo.get_grade(grade_id),
            _grade_ownership,
            entity="Grade",
            key=grade_id,
        )

    def get_by_enrollment(self, principal: Principal, enrollment_id: int) -> Grade:
        enrollment = guarded_fetch(
            principal,
            Action.VIEW_STUDENT_GRADES,
            lambda: self.repo.get_enrollment(enrollment_id),
            lambda e: Ownership(user_id=e.student_user_id, course_owner_id=e.course_owner_id),
            entity="Enrollment",
            key=enrollment_id,
        )
        found = self.repo.get_grade_by_enrollment(enrollment.id)
        if found is None:
            raise NotFoundError("Grade", enrollment_id, field="enrollment id")
        return found

    def delete(self, principal: Principal, grade_id: int) -> None:
        authorize(principal, Action.DELETE_GRADE)
        if self.repo.get_grade(grade_id) is None:
            raise NotFoundError("Grade", grade_id)
        self.repo.delete_grade(grade_id)
        logger.info("grade.deleted id=%s", grade_id)

    def by_student(self, principal: Principal, student_id: int, *, semester: Optional[str] = None) -> List[Grade]:
        owner = student_scope(principal, Action.VIEW_STUDENT_GRADES, self.repo, student_id)
        return self.repo.list_grades(student_id=student_id, semester=semester, course_owner_id=owner)

    def by_course(self, principal: Principal, course_id: int) -> List[Grade]:
        course_scope(principal, Action.VIEW_COURSE_GRADES, self.repo, course_id)
        return self.repo.list_grades(course_id=course_id)

    def gpa(self, principal: Principal, student_id: int, *, semester: Optional[str] = None) -> GpaResult:
        grades = self.by_student(principal, student_id, semester=semester)
        return GpaResult(student_id=student_id, gpa=average_point(grades), graded_courses=len(grades), semester=semester)

    def course_average(self, principal: Principal, course_id: int) -> Optional[Fraction]:
        return average_point(self.by_course(principal, course_id))

    def distribution(self, principal: Principal, course_id: int) -> Dict[str, int]:
        """Letter -> count for a course, every letter of the scale present."""
        counts = {letter: 0 for letter in LETTER_GRADES}
        for grade in self.by_course(principal, course_id):
            counts[grade.letter] = counts.get(grade.letter, 0) + 1
        return counts

    def top_performers(self, principal: Principal, course_id: int, *, limit: int = 5) -> List[Grade]:
        grades = self.by_course(principal, course_id)
        return sorted(grades, key=lambda g: (-exact_point(g.letter), g.id))[: max(limit, 0)]

    def transcript(self, principal: Principal, student_id: int) -> Transcript:
        """Per-semester grades with semester GPA, cumulative GPA and credits earned."""
        grades = self.by_student(principal, student_id)
        student = self.repo.get_student(student_id, include_deleted=True)
        if student is None:
            raise NotFoundError("Student", student_id)
        by_semester: Dict[str, List[Grade]] = {}
        for grade in grades:
            by_semester.setdefault(grade.semester or "", []).append(grade)
        semesters = [
            SemesterRecord(
                semester=name,
                grades=items,
                gpa=average_point(items),
                total_credits=sum(g.credits or 0 for g in items),
            )
            for name, items in sorted(by_semester.items())
        ]
        earned = sum(g.credits or 0 for g in grades if g.letter != FAILING_GRADE)
        return Transcript(
            student=student,
            semesters=semesters,
            cumulative_gpa=average_point(grades),
            total_credits_earned=earned,
        )
