"""
Academic records as normalized, id-keyed dataclasses.

Relations are plain foreign-key ids; queries that need related data join
explicitly in the store. Derived values (enrolled count, seats, attendance
percentage, grade point) are computed on read and never persisted.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Dict, Optional

STUDENT_ACTIVE = "ACTIVE"
STUDENT_INACTIVE = "INACTIVE"
STUDENT_GRADUATED = "GRADUATED"
STUDENT_STATUSES = frozenset({STUDENT_ACTIVE, STUDENT_INACTIVE, STUDENT_GRADUATED})

ENROLLMENT_ACTIVE = "ACTIVE"
ENROLLMENT_DROPPED = "DROPPED"
ENROLLMENT_COMPLETED = "COMPLETED"
ENROLLMENT_STATUSES = frozenset({ENROLLMENT_ACTIVE, ENROLLMENT_DROPPED, ENROLLMENT_COMPLETED})

PRESENT = "PRESENT"
ABSENT = "ABSENT"
LATE = "LATE"
ATTENDANCE_STATUSES = frozenset({PRESENT, ABSENT, LATE})

# Letter grade -> grade point. Order matters for distribution output.
GRADE_POINTS: Dict[str, float] = {
    "A+": 4.0,
    "A": 3.7,
    "A-": 3.5,
    "B+": 3.25,
    "B": 3.0,
    "B-": 2.75,
    "C+": 2.5,
    "C": 2.25,
    "D": 2.0,
    "F": 0.0,
}
LETTER_GRADES = tuple(GRADE_POINTS)
FAILING_GRADE = "F"


def grade_point(letter: str) -> float:
    """Grade point for a letter; unrecognized input maps to 0.0."""
    return GRADE_POINTS.get(letter, 0.0)


@dataclass
class Department:
    id: int
    name: str
    code: str
    description: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


@dataclass
class Student:
    id: int
    user_id: int
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    date_of_birth: Optional[date] = None
    address: Optional[str] = None
    department_id: Optional[int] = None
    enrollment_date: Optional[date] = None
    status: str = STUDENT_ACTIVE
    deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass
class Teacher:
    id: int
    user_id: int
    first_name: str
    last_name: str
    email: str
    phone: Optional[str] = None
    specialization: Optional[str] = None
    department_id: Optional[int] = None
    hire_date: Optional[date] = None
    deleted: bool = False
    deleted_at: Optional[datetime] = None
    deleted_by: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass
class Course:
    id: int
    code: str
    name: str
    credits: int
    semester: str
    max_capacity: int
    department_id: int
    description: Optional[str] = None
    teacher_id: Optional[int] = None
    # Joined on read: user id of the assigned teacher (ownership checks).
    teacher_user_id: Optional[int] = None
    # Derived on read from ACTIVE enrollments; never stored.
    enrolled_count: int = 0
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    @property
    def is_full(self) -> bool:
        return self.enrolled_count >= self.max_capacity

    @property
    def available_seats(self) -> int:
        return self.max_capacity - self.enrolled_count


@dataclass
class Enrollment:
    id: int
    student_id: int
    course_id: int
    enrollment_date: date
    status: str = ENROLLMENT_ACTIVE
    # Joined on read.
    student_user_id: Optional[int] = None
    course_owner_id: Optional[int] = None
    present_or_late: int = 0
    attendance_total: int = 0
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    @property
    def attendance_percentage(self) -> float:
        if self.attendance_total == 0:
            return 0.0
        return self.present_or_late * 100.0 / self.attendance_total


@dataclass
class Grade:
    id: int
    enrollment_id: int
    letter: str
    graded_date: date
    remarks: Optional[str] = None
    # Joined on read.
    student_id: Optional[int] = None
    student_user_id: Optional[int] = None
    course_id: Optional[int] = None
    course_owner_id: Optional[int] = None
    course_code: Optional[str] = None
    course_name: Optional[str] = None
    credits: Optional[int] = None
    semester: Optional[str] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None

    @property
    def point(self) -> float:
        return grade_point(self.letter)


@dataclass
class Attendance:
    id: int
    enrollment_id: int
    date: date
    status: str
    remarks: Optional[str] = None
    # Joined on read.
    student_id: Optional[int] = None
    student_user_id: Optional[int] = None
    course_id: Optional[int] = None
    course_owner_id: Optional[int] = None
    created_at: Optional[datetime] = None
    created_by: Optional[str] = None
    updated_at: Optional[datetime] = None
    updated_by: Optional[str] = None


@dataclass
class AttendanceSummary:
    course_id: int
    date: date
    present: int = 0
    absent: int = 0
    late: int = 0
    total_active: int = 0
    records: list = field(default_factory=list)

    @property
    def attendance_rate(self) -> float:
        if self.total_active == 0:
            return 0.0
        return (self.present + self.late) * 100.0 / self.total_active


@dataclass
class ProvisionedProfile:
    """A student/teacher profile created together with its login account."""

    profile: object
    username: str
    # Only set when the password was generated server-side.
    initial_password: Optional[str] = None
