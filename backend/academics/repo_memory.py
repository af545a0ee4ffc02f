"""
In-memory academic records store.

Why:
    Default store for development and tests when no Postgres DSN is configured.
    It mirrors the DB repo's contract, including the uniqueness rules and the
    atomic enroll/capacity checks, so service tests exercise real semantics.

Concurrency:
    One re-entrant lock guards all tables. Compound writes (capacity check plus
    insert, soft delete plus user deactivation, grade and attendance upserts)
    run entirely under the lock, which gives them the same serial behavior the
    DB repo gets from row locks and unique constraints.
"""
from __future__ import annotations

from dataclasses import replace
from datetime import date, datetime, timezone
from itertools import count
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

from backend.identity_access.domain import ADMIN, User

from .errors import BusinessRuleViolation, DuplicateResourceError, NotFoundError
from .paging import Page, PageRequest, matches_search, paginate
from .records import (
    ENROLLMENT_ACTIVE,
    ENROLLMENT_DROPPED,
    LATE,
    PRESENT,
    STUDENT_ACTIVE,
    STUDENT_INACTIVE,
    Attendance,
    Course,
    Department,
    Enrollment,
    Grade,
    Student,
    Teacher,
)


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _all(items: List[Any]) -> Page:
    return Page(items=items, page=0, size=len(items), total=len(items))


class MemoryAcademicsRepo:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._ids: Dict[str, count] = {}
        self.users: Dict[int, User] = {}
        self.departments: Dict[int, Department] = {}
        self.students: Dict[int, Student] = {}
        self.teachers: Dict[int, Teacher] = {}
        self.courses: Dict[int, Course] = {}
        self.enrollments: Dict[int, Enrollment] = {}
        self.grades: Dict[int, Grade] = {}
        self.attendance: Dict[int, Attendance] = {}

    def _next_id(self, table: str) -> int:
        return next(self._ids.setdefault(table, count(1)))

    # --- users -------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[User]:
        with self._lock:
            user = self.users.get(user_id)
            return replace(user) if user else None

    def find_user_by_email(self, email: str) -> Optional[User]:
        needle = (email or "").strip().lower()
        with self._lock:
            for user in self.users.values():
                if user.email.lower() == needle:
                    return replace(user)
        return None

    def username_exists(self, username: str) -> bool:
        needle = (username or "").lower()
        with self._lock:
            return any(u.username.lower() == needle for u in self.users.values())

    def email_exists(self, email: str) -> bool:
        return self.find_user_by_email(email) is not None

    def count_active_admins(self) -> int:
        with self._lock:
            return sum(1 for u in self.users.values() if u.role == ADMIN and u.active)

    def _insert_user(self, *, username: str, email: str, password_hash: str, role: str, actor: Optional[str]) -> User:
        if self.username_exists(username):
            raise DuplicateResourceError(f"Username already exists: {username}", code="duplicate_username")
        if self.email_exists(email):
            raise DuplicateResourceError(f"Email already exists: {email}", code="duplicate_email")
        user = User(
            id=self._next_id("users"),
            username=username,
            email=email,
            password_hash=password_hash,
            role=role,
            active=True,
            created_at=_now(),
            created_by=actor,
        )
        self.users[user.id] = user
        return user

    def create_user(self, *, username: str, email: str, password_hash: str, role: str, actor: Optional[str] = None) -> User:
        with self._lock:
            return replace(self._insert_user(username=username, email=email, password_hash=password_hash, role=role, actor=actor))

    def update_user_password(self, user_id: int, password_hash: str, *, actor: Optional[str] = None) -> None:
        with self._lock:
            user = self.users.get(user_id)
            if user is None:
                raise NotFoundError("User", user_id)
            user.password_hash = password_hash
            user.updated_at = _now()
            user.updated_by = actor

    def _set_user_active(self, user_id: int, active: bool, actor: Optional[str]) -> None:
        user = self.users.get(user_id)
        if user is not None:
            user.active = active
            user.updated_at = _now()
            user.updated_by = actor

    def _sync_user_email(self, user_id: int, email: str, actor: Optional[str]) -> None:
        user = self.users.get(user_id)
        if user is None or user.email.lower() == email.lower():
            return
        if self.email_exists(email):
            raise DuplicateResourceError(f"Email already exists: {email}", code="duplicate_email")
        user.email = email
        user.updated_at = _now()
        user.updated_by = actor

    # --- departments ---------------------------------------------------------

    def _check_department_unique(self, name: str, code: str, *, exclude_id: Optional[int] = None) -> None:
        for d in self.departments.values():
            if d.id == exclude_id:
                continue
            if d.name.lower() == name.lower():
                raise DuplicateResourceError(f"Department name already exists: {name}", code="duplicate_department_name")
            if d.code.lower() == code.lower():
                raise DuplicateResourceError(f"Department code already exists: {code}", code="duplicate_department_code")

    def create_department(self, *, name: str, code: str, description: Optional[str], actor: Optional[str]) -> Department:
        with self._lock:
            self._check_department_unique(name, code)
            dept = Department(
                id=self._next_id("departments"),
                name=name,
                code=code,
                description=description,
                created_at=_now(),
                created_by=actor,
            )
            self.departments[dept.id] = dept
            return replace(dept)

    def get_department(self, department_id: int) -> Optional[Department]:
        with self._lock:
            dept = self.departments.get(department_id)
            return replace(dept) if dept else None

    def list_departments(self, page: PageRequest, *, search: Optional[str] = None) -> Page:
        with self._lock:
            rows = [replace(d) for d in self.departments.values() if matches_search(search, d.name, d.code)]
        return paginate(rows, page)

    def update_department(self, department_id: int, *, name: str, code: str, description: Optional[str], actor: Optional[str]) -> Department:
        with self._lock:
            dept = self.departments.get(department_id)
            if dept is None:
                raise NotFoundError("Department", department_id)
            self._check_department_unique(name, code, exclude_id=department_id)
            dept.name, dept.code, dept.description = name, code, description
            dept.updated_at = _now()
            dept.updated_by = actor
            return replace(dept)

    def count_department_dependents(self, department_id: int) -> Tuple[int, int]:
        """Return (non-deleted students, courses) referencing the department."""
        with self._lock:
            students = sum(1 for s in self.students.values() if s.department_id == department_id and not s.deleted)
            courses = sum(1 for c in self.courses.values() if c.department_id == department_id)
            return students, courses

    def count_departments(self) -> int:
        with self._lock:
            return len(self.departments)

    def delete_department(self, department_id: int) -> None:
        with self._lock:
            if self.departments.pop(department_id, None) is None:
                raise NotFoundError("Department", department_id)

    # --- students ------------------------------------------------------------

    def _check_student_email(self, email: str, *, exclude_id: Optional[int] = None) -> None:
        for s in self.students.values():
            if s.id != exclude_id and s.email.lower() == email.lower():
                raise DuplicateResourceError(f"Student email already exists: {email}", code="duplicate_email")

    def create_student(self, *, username: str, password_hash: str, profile: Dict[str, Any], actor: Optional[str]) -> Student:
        with self._lock:
            self._check_student_email(profile["email"])
            user = self._insert_user(username=username, email=profile["email"], password_hash=password_hash, role="STUDENT", actor=actor)
            student = Student(id=self._next_id("students"), user_id=user.id, created_at=_now(), created_by=actor, **profile)
            self.students[student.id] = student
            return replace(student)

    def _visible_student(self, student: Optional[Student], include_deleted: bool) -> Optional[Student]:
        if student is None or (student.deleted and not include_deleted):
            return None
        return replace(student)

    def get_student(self, student_id: int, *, include_deleted: bool = False) -> Optional[Student]:
        with self._lock:
            return self._visible_student(self.students.get(student_id), include_deleted)

    def get_student_by_user(self, user_id: int, *, include_deleted: bool = False) -> Optional[Student]:
        with self._lock:
            for s in self.students.values():
                if s.user_id == user_id:
                    return self._visible_student(s, include_deleted)
        return None

    def list_students(
        self,
        page: PageRequest,
        *,
        search: Optional[str] = None,
        department_id: Optional[int] = None,
        status: Optional[str] = None,
        include_deleted: bool = False,
        deleted_only: bool = False,
    ) -> Page:
        with self._lock:
            rows = []
            for s in self.students.values():
                if deleted_only and not s.deleted:
                    continue
                if s.deleted and not (include_deleted or deleted_only):
                    continue
                if department_id is not None and s.department_id != department_id:
                    continue
                if status is not None and s.status != status:
                    continue
                if not matches_search(search, s.first_name, s.last_name, s.email):
                    continue
                rows.append(replace(s))
        return paginate(rows, page)

    def update_student(self, student_id: int, changes: Dict[str, Any], *, actor: Optional[str], sync_user_email: bool = False) -> Student:
        with self._lock:
            student = self.students.get(student_id)
            if student is None or student.deleted:
                raise NotFoundError("Student", student_id)
            new_email = changes.get("email")
            if new_email and new_email.lower() != student.email.lower():
                self._check_student_email(new_email, exclude_id=student_id)
                if sync_user_email:
                    self._sync_user_email(student.user_id, new_email, actor)
            for key, value in changes.items():
                setattr(student, key, value)
            student.updated_at = _now()
            student.updated_by = actor
            return replace(student)

    def soft_delete_student(self, student_id: int, *, actor: Optional[str]) -> Student:
        with self._lock:
            student = self.students.get(student_id)
            if student is None or student.deleted:
                raise NotFoundError("Student", student_id)
            student.deleted = True
            student.deleted_at = _now()
            student.deleted_by = actor
            student.status = STUDENT_INACTIVE
            self._set_user_active(student.user_id, False, actor)
            return replace(student)

    def restore_student(self, student_id: int, *, actor: Optional[str]) -> Student:
        with self._lock:
            student = self.students.get(student_id)
            if student is None:
                raise NotFoundError("Student", student_id)
            if not student.deleted:
                raise BusinessRuleViolation("Student is not deleted", code="not_deleted")
            student.deleted = False
            student.deleted_at = None
            student.deleted_by = None
            student.status = STUDENT_ACTIVE
            student.updated_at = _now()
            student.updated_by = actor
            self._set_user_active(student.user_id, True, actor)
            return replace(student)

    def count_students_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        with self._lock:
            for s in self.students.values():
                if not s.deleted:
                    counts[s.status] = counts.get(s.status, 0) + 1
        return counts

    # --- teachers ------------------------------------------------------------

    def _check_teacher_email(self, email: str, *, exclude_id: Optional[int] = None) -> None:
        for t in self.teachers.values():
            if t.id != exclude_id and t.email.lower() == email.lower():
                raise DuplicateResourceError(f"Teacher email already exists: {email}", code="duplicate_email")

    def create_teacher(self, *, username: str, password_hash: str, profile: Dict[str, Any], actor: Optional[str]) -> Teacher:
        with self._lock:
            self._check_teacher_email(profile["email"])
            user = self._insert_user(username=username, email=profile["email"], password_hash=password_hash, role="TEACHER", actor=actor)
            teacher = Teacher(id=self._next_id("teachers"), user_id=user.id, created_at=_now(), created_by=actor, **profile)
            self.teachers[teacher.id] = teacher
            return replace(teacher)

    def get_teacher(self, teacher_id: int, *, include_deleted: bool = False) -> Optional[Teacher]:
        with self._lock:
            teacher = self.teachers.get(teacher_id)
            if teacher is None or (teacher.deleted and not include_deleted):
                return None
            return replace(teacher)

    def get_teacher_by_user(self, user_id: int, *, include_deleted: bool = False) -> Optional[Teacher]:
        with self._lock:
            for t in self.teachers.values():
                if t.user_id == user_id:
                    return self.get_teacher(t.id, include_deleted=include_deleted)
        return None

    def list_teachers(
        self,
        page: PageRequest,
        *,
        search: Optional[str] = None,
        department_id: Optional[int] = None,
        include_deleted: bool = False,
        deleted_only: bool = False,
    ) -> Page:
        with self._lock:
            rows = []
            for t in self.teachers.values():
                if deleted_only and not t.deleted:
                    continue
                if t.deleted and not (include_deleted or deleted_only):
                    continue
                if department_id is not None and t.department_id != department_id:
                    continue
                if not matches_search(search, t.first_name, t.last_name, t.email, t.specialization):
                    continue
                rows.append(replace(t))
        return paginate(rows, page)

    def update_teacher(self, teacher_id: int, changes: Dict[str, Any], *, actor: Optional[str], sync_user_email: bool = False) -> Teacher:
        with self._lock:
            teacher = self.teachers.get(teacher_id)
            if teacher is None or teacher.deleted:
                raise NotFoundError("Teacher", teacher_id)
            new_email = changes.get("email")
            if new_email and new_email.lower() != teacher.email.lower():
                self._check_teacher_email(new_email, exclude_id=teacher_id)
                if sync_user_email:
                    self._sync_user_email(teacher.user_id, new_email, actor)
            for key, value in changes.items():
                setattr(teacher, key, value)
            teacher.updated_at = _now()
            teacher.updated_by = actor
            return replace(teacher)

    def count_teacher_courses(self, teacher_id: int) -> int:
        with self._lock:
            return sum(1 for c in self.courses.values() if c.teacher_id == teacher_id)

    def soft_delete_teacher(self, teacher_id: int, *, actor: Optional[str]) -> Teacher:
        with self._lock:
            teacher = self.teachers.get(teacher_id)
            if teacher is None or teacher.deleted:
                raise NotFoundError("Teacher", teacher_id)
            owned = self.count_teacher_courses(teacher_id)
            if owned:
                raise BusinessRuleViolation(
                    f"Cannot delete teacher with {owned} assigned course(s). Reassign the courses first.",
                    code="teacher_has_courses",
                )
            teacher.deleted = True
            teacher.deleted_at = _now()
            teacher.deleted_by = actor
            self._set_user_active(teacher.user_id, False, actor)
            return replace(teacher)

    def restore_teacher(self, teacher_id: int, *, actor: Optional[str]) -> Teacher:
        with self._lock:
            teacher = self.teachers.get(teacher_id)
            if teacher is None:
                raise NotFoundError("Teacher", teacher_id)
            if not teacher.deleted:
                raise BusinessRuleViolation("Teacher is not deleted", code="not_deleted")
            teacher.deleted = False
            teacher.deleted_at = None
            teacher.deleted_by = None
            teacher.updated_at = _now()
            teacher.updated_by = actor
            self._set_user_active(teacher.user_id, True, actor)
            return replace(teacher)

    def count_teachers(self) -> int:
        with self._lock:
            return sum(1 for t in self.teachers.values() if not t.deleted)

    # --- courses -------------------------------------------------------------

    def _active_count(self, course_id: int) -> int:
        return sum(1 for e in self.enrollments.values() if e.course_id == course_id and e.status == ENROLLMENT_ACTIVE)

    def _course_view(self, course: Course) -> Course:
        teacher = self.teachers.get(course.teacher_id) if course.teacher_id is not None else None
        return replace(
            course,
            enrolled_count=self._active_count(course.id),
            teacher_user_id=teacher.user_id if teacher else None,
        )

    def _check_course_code(self, code: str, *, exclude_id: Optional[int] = None) -> None:
        for c in self.courses.values():
            if c.id != exclude_id and c.code.lower() == code.lower():
                raise DuplicateResourceError(f"Course code already exists: {code}", code="duplicate_course_code")

    def create_course(self, *, profile: Dict[str, Any], actor: Optional[str]) -> Course:
        with self._lock:
            self._check_course_code(profile["code"])
            course = Course(id=self._next_id("courses"), created_at=_now(), created_by=actor, **profile)
            self.courses[course.id] = course
            return self._course_view(course)

    def get_course(self, course_id: int) -> Optional[Course]:
        with self._lock:
            course = self.courses.get(course_id)
            return self._course_view(course) if course else None

    def get_course_by_code(self, code: str) -> Optional[Course]:
        with self._lock:
            for c in self.courses.values():
                if c.code.lower() == (code or "").lower():
                    return self._course_view(c)
        return None

    def list_courses(
        self,
        page: PageRequest,
        *,
        search: Optional[str] = None,
        department_id: Optional[int] = None,
        semester: Optional[str] = None,
        teacher_id: Optional[int] = None,
        available_only: bool = False,
    ) -> Page:
        with self._lock:
            rows = []
            for c in self.courses.values():
                if department_id is not None and c.department_id != department_id:
                    continue
                if semester is not None and c.semester != semester:
                    continue
                if teacher_id is not None and c.teacher_id != teacher_id:
                    continue
                if not matches_search(search, c.code, c.name):
                    continue
                view = self._course_view(c)
                if available_only and view.is_full:
                    continue
                rows.append(view)
        return paginate(rows, page)

    def update_course(self, course_id: int, changes: Dict[str, Any], *, actor: Optional[str]) -> Course:
        """Apply changes; a capacity change is re-validated against live ACTIVE count."""
        with self._lock:
            course = self.courses.get(course_id)
            if course is None:
                raise NotFoundError("Course", course_id)
            if "code" in changes:
                self._check_course_code(changes["code"], exclude_id=course_id)
            if "max_capacity" in changes:
                active = self._active_count(course_id)
                if changes["max_capacity"] < active:
                    raise BusinessRuleViolation(
                        f"Cannot reduce max capacity to {changes['max_capacity']}. Current enrollment: {active}",
                        code="capacity_below_enrollment",
                    )
            for key, value in changes.items():
                setattr(course, key, value)
            course.updated_at = _now()
            course.updated_by = actor
            return self._course_view(course)

    def count_course_enrollments(self, course_id: int) -> int:
        """All enrollments of any status."""
        with self._lock:
            return sum(1 for e in self.enrollments.values() if e.course_id == course_id)

    def delete_course(self, course_id: int) -> None:
        with self._lock:
            if self.courses.pop(course_id, None) is None:
                raise NotFoundError("Course", course_id)

    def count_courses(self) -> int:
        with self._lock:
            return len(self.courses)

    # --- enrollments ---------------------------------------------------------

    def _enrollment_view(self, enrollment: Enrollment) -> Enrollment:
        student = self.students.get(enrollment.student_id)
        course = self.courses.get(enrollment.course_id)
        teacher = self.teachers.get(course.teacher_id) if course and course.teacher_id is not None else None
        marks = [a for a in self.attendance.values() if a.enrollment_id == enrollment.id]
        return replace(
            enrollment,
            student_user_id=student.user_id if student else None,
            course_owner_id=teacher.user_id if teacher else None,
            present_or_late=sum(1 for a in marks if a.status in (PRESENT, LATE)),
            attendance_total=len(marks),
        )

    def enroll(self, student_id: int, course_id: int, *, enrollment_date: date, actor: Optional[str]) -> Enrollment:
        """Insert an ACTIVE enrollment, re-checking duplicates and capacity atomically."""
        with self._lock:
            course = self.courses.get(course_id)
            if course is None:
                raise NotFoundError("Course", course_id)
            for e in self.enrollments.values():
                if e.student_id == student_id and e.course_id == course_id and e.status == ENROLLMENT_ACTIVE:
                    raise DuplicateResourceError("Student is already enrolled in this course", code="duplicate_enrollment")
            if self._active_count(course_id) >= course.max_capacity:
                raise BusinessRuleViolation("Course is full", code="course_full")
            enrollment = Enrollment(
                id=self._next_id("enrollments"),
                student_id=student_id,
                course_id=course_id,
                enrollment_date=enrollment_date,
                status=ENROLLMENT_ACTIVE,
                created_at=_now(),
                created_by=actor,
            )
            self.enrollments[enrollment.id] = enrollment
            return self._enrollment_view(enrollment)

    def get_enrollment(self, enrollment_id: int) -> Optional[Enrollment]:
        with self._lock:
            enrollment = self.enrollments.get(enrollment_id)
            return self._enrollment_view(enrollment) if enrollment else None

    def has_active_enrollment(self, student_id: int, course_id: int) -> bool:
        with self._lock:
            return any(
                e.student_id == student_id and e.course_id == course_id and e.status == ENROLLMENT_ACTIVE
                for e in self.enrollments.values()
            )

    def list_enrollments(
        self,
        page: Optional[PageRequest] = None,
        *,
        student_id: Optional[int] = None,
        course_id: Optional[int] = None,
        status: Optional[str] = None,
        course_owner_id: Optional[int] = None,
    ) -> Page:
        with self._lock:
            rows = []
            for e in self.enrollments.values():
                if student_id is not None and e.student_id != student_id:
                    continue
                if course_id is not None and e.course_id != course_id:
                    continue
                if status is not None and e.status != status:
                    continue
                view = self._enrollment_view(e)
                if course_owner_id is not None and view.course_owner_id != course_owner_id:
                    continue
                rows.append(view)
        if page is None:
            return _all(sorted(rows, key=lambda e: e.id))
        return paginate(rows, page)

    def drop_enrollment(self, enrollment_id: int, *, actor: Optional[str]) -> Enrollment:
        """Mark an enrollment DROPPED unless it is already dropped or graded."""
        with self._lock:
            enrollment = self.enrollments.get(enrollment_id)
            if enrollment is None:
                raise NotFoundError("Enrollment", enrollment_id)
            if enrollment.status == ENROLLMENT_DROPPED:
                raise BusinessRuleViolation("Enrollment is already dropped", code="already_dropped")
            if any(g.enrollment_id == enrollment_id for g in self.grades.values()):
                raise BusinessRuleViolation("Cannot drop a course after grading", code="already_graded")
            enrollment.status = ENROLLMENT_DROPPED
            enrollment.updated_at = _now()
            enrollment.updated_by = actor
            return self._enrollment_view(enrollment)

    def count_enrollments_by_status(self) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        with self._lock:
            for e in self.enrollments.values():
                counts[e.status] = counts.get(e.status, 0) + 1
        return counts

    # --- grades --------------------------------------------------------------

    def _grade_view(self, grade: Grade) -> Grade:
        enrollment = self._enrollment_view(self.enrollments[grade.enrollment_id])
        course = self.courses.get(enrollment.course_id)
        return replace(
            grade,
            student_id=enrollment.student_id,
            student_user_id=enrollment.student_user_id,
            course_id=enrollment.course_id,
            course_owner_id=enrollment.course_owner_id,
            course_code=course.code if course else None,
            course_name=course.name if course else None,
            credits=course.credits if course else None,
            semester=course.semester if course else None,
        )

    def upsert_grade(
        self,
        enrollment_id: int,
        *,
        letter: str,
        remarks: Optional[str],
        graded_date: date,
        actor: Optional[str],
    ) -> Grade:
        with self._lock:
            enrollment = self.enrollments.get(enrollment_id)
            if enrollment is None:
                raise NotFoundError("Enrollment", enrollment_id)
            if enrollment.status != ENROLLMENT_ACTIVE:
                raise BusinessRuleViolation("Cannot grade dropped enrollment", code="enrollment_not_active")
            for g in self.grades.values():
                if g.enrollment_id == enrollment_id:
                    g.letter, g.remarks, g.graded_date = letter, remarks, graded_date
                    g.updated_at = _now()
                    g.updated_by = actor
                    return self._grade_view(g)
            grade = Grade(
                id=self._next_id("grades"),
                enrollment_id=enrollment_id,
                letter=letter,
                remarks=remarks,
                graded_date=graded_date,
                created_at=_now(),
                created_by=actor,
            )
            self.grades[grade.id] = grade
            return self._grade_view(grade)

    def get_grade(self, grade_id: int) -> Optional[Grade]:
        with self._lock:
            grade = self.grades.get(grade_id)
            return self._grade_view(grade) if grade else None

    def get_grade_by_enrollment(self, enrollment_id: int) -> Optional[Grade]:
        with self._lock:
            for g in self.grades.values():
                if g.enrollment_id == enrollment_id:
                    return self._grade_view(g)
        return None

    def delete_grade(self, grade_id: int) -> None:
        with self._lock:
            if self.grades.pop(grade_id, None) is None:
                raise NotFoundError("Grade", grade_id)

    def list_grades(
        self,
        *,
        student_id: Optional[int] = None,
        course_id: Optional[int] = None,
        semester: Optional[str] = None,
        course_owner_id: Optional[int] = None,
    ) -> List[Grade]:
        with self._lock:
            rows = [self._grade_view(g) for g in self.grades.values()]
        return [
            g for g in sorted(rows, key=lambda g: g.id)
            if (student_id is None or g.student_id == student_id)
            and (course_id is None or g.course_id == course_id)
            and (semester is None or g.semester == semester)
            and (course_owner_id is None or g.course_owner_id == course_owner_id)
        ]

    # --- attendance ----------------------------------------------------------

    def _attendance_view(self, record: Attendance) -> Attendance:
        enrollment = self._enrollment_view(self.enrollments[record.enrollment_id])
        return replace(
            record,
            student_id=enrollment.student_id,
            student_user_id=enrollment.student_user_id,
            course_id=enrollment.course_id,
            course_owner_id=enrollment.course_owner_id,
        )

    def upsert_attendance(
        self,
        on_date: date,
        entries: Sequence[Tuple[int, str, Optional[str]]],
        *,
        actor: Optional[str],
    ) -> List[Attendance]:
        """Insert or update one record per (enrollment, date)."""
        with self._lock:
            by_key = {(a.enrollment_id, a.date): a for a in self.attendance.values()}
            saved: List[Attendance] = []
            for enrollment_id, status, remarks in entries:
                existing = by_key.get((enrollment_id, on_date))
                if existing is not None:
                    existing.status = status
                    existing.remarks = remarks
                    existing.updated_at = _now()
                    existing.updated_by = actor
                    saved.append(existing)
                    continue
                record = Attendance(
                    id=self._next_id("attendance"),
                    enrollment_id=enrollment_id,
                    date=on_date,
                    status=status,
                    remarks=remarks,
                    created_at=_now(),
                    created_by=actor,
                )
                self.attendance[record.id] = record
                by_key[(enrollment_id, on_date)] = record
                saved.append(record)
            return [self._attendance_view(a) for a in saved]

    def get_attendance(self, attendance_id: int) -> Optional[Attendance]:
        with self._lock:
            record = self.attendance.get(attendance_id)
            return self._attendance_view(record) if record else None

    def update_attendance(self, attendance_id: int, *, status: str, remarks: Optional[str], actor: Optional[str]) -> Attendance:
        with self._lock:
            record = self.attendance.get(attendance_id)
            if record is None:
                raise NotFoundError("Attendance", attendance_id)
            record.status = status
            if remarks is not None:
                record.remarks = remarks
            record.updated_at = _now()
            record.updated_by = actor
            return self._attendance_view(record)

    def list_attendance(
        self,
        *,
        course_id: Optional[int] = None,
        student_id: Optional[int] = None,
        enrollment_id: Optional[int] = None,
        on_date: Optional[date] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
        course_owner_id: Optional[int] = None,
    ) -> List[Attendance]:
        with self._lock:
            rows = [self._attendance_view(a) for a in self.attendance.values()]
        return [
            a for a in sorted(rows, key=lambda a: (a.date, a.id))
            if (course_id is None or a.course_id == course_id)
            and (student_id is None or a.student_id == student_id)
            and (enrollment_id is None or a.enrollment_id == enrollment_id)
            and (on_date is None or a.date == on_date)
            and (start is None or a.date >= start)
            and (end is None or a.date <= end)
            and (course_owner_id is None or a.course_owner_id == course_owner_id)
        ]

    def attendance_status_counts(self, *, course_id: Optional[int] = None) -> Dict[str, int]:
        counts: Dict[str, int] = {}
        for record in self.list_attendance(course_id=course_id):
            counts[record.status] = counts.get(record.status, 0) + 1
        return counts


__all__ = ["MemoryAcademicsRepo"]
