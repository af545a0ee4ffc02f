"""
Postgres-backed academic records store (psycopg 3).

Design:
- Each call opens a short-lived connection; the connection context commits on
  success and rolls back on error, so every public method is one transaction.
- Unique constraints are the source of truth for uniqueness. A violation is
  translated to DuplicateResourceError by constraint name.
- Enrolling locks the course row (`select ... for update`) and recounts ACTIVE
  enrollments inside the same transaction as the insert; capacity reductions
  take the same lock. Concurrent writers on one course are serialized.
- Soft-deleted students/teachers are filtered unless `include_deleted=True`.
"""
from __future__ import annotations

from dataclasses import fields
from datetime import date
import logging
import os
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Type, TypeVar

import psycopg
from psycopg import sql
from psycopg.errors import UniqueViolation
from psycopg.rows import dict_row

from backend.identity_access.domain import User

from .errors import BusinessRuleViolation, DuplicateResourceError, NotFoundError
from .paging import Page, PageRequest
from .records import Attendance, Course, Department, Enrollment, Grade, Student, Teacher

logger = logging.getLogger("studify.academics.repo_db")

T = TypeVar("T")

SCHEMA_SQL = """
create table if not exists users (
    id bigserial primary key,
    username varchar(50) not null,
    email varchar(100) not null,
    password_hash varchar(255) not null,
    role varchar(10) not null check (role in ('ADMIN', 'TEACHER', 'STUDENT')),
    active boolean not null default true,
    created_at timestamptz not null default now(),
    created_by varchar(100),
    updated_at timestamptz,
    updated_by varchar(100)
);
create unique index if not exists users_username_uq on users (lower(username));
create unique index if not exists users_email_uq on users (lower(email));

create table if not exists departments (
    id bigserial primary key,
    name varchar(100) not null,
    code varchar(10) not null,
    description varchar(500),
    created_at timestamptz not null default now(),
    created_by varchar(100),
    updated_at timestamptz,
    updated_by varchar(100)
);
create unique index if not exists departments_name_uq on departments (lower(name));
create unique index if not exists departments_code_uq on departments (lower(code));

create table if not exists students (
    id bigserial primary key,
    user_id bigint not null unique references users (id),
    first_name varchar(50) not null,
    last_name varchar(50) not null,
    email varchar(100) not null,
    phone varchar(20),
    date_of_birth date,
    address varchar(255),
    department_id bigint references departments (id) on delete set null,
    enrollment_date date,
    status varchar(10) not null default 'ACTIVE' check (status in ('ACTIVE', 'INACTIVE', 'GRADUATED')),
    deleted boolean not null default false,
    deleted_at timestamptz,
    deleted_by varchar(100),
    created_at timestamptz not null default now(),
    created_by varchar(100),
    updated_at timestamptz,
    updated_by varchar(100)
);
create unique index if not exists students_email_uq on students (lower(email));

create table if not exists teachers (
    id bigserial primary key,
    user_id bigint not null unique references users (id),
    first_name varchar(50) not null,
    last_name varchar(50) not null,
    email varchar(100) not null,
    phone varchar(20),
    specialization varchar(100),
    department_id bigint references departments (id) on delete set null,
    hire_date date,
    deleted boolean not null default false,
    deleted_at timestamptz,
    deleted_by varchar(100),
    created_at timestamptz not null default now(),
    created_by varchar(100),
    updated_at timestamptz,
    updated_by varchar(100)
);
create unique index if not exists teachers_email_uq on teachers (lower(email));

create table if not exists courses (
    id bigserial primary key,
    code varchar(10) not null,
    name varchar(100) not null,
    description varchar(1000),
    credits integer not null check (credits between 1 and 6),
    semester varchar(20) not null,
    max_capacity integer not null check (max_capacity between 10 and 200),
    department_id bigint not null references departments (id),
    teacher_id bigint references teachers (id),
    created_at timestamptz not null default now(),
    created_by varchar(100),
    updated_at timestamptz,
    updated_by varchar(100)
);
create unique index if not exists courses_code_uq on courses (lower(code));

create table if not exists enrollments (
    id bigserial primary key,
    student_id bigint not null references students (id),
    course_id bigint not null references courses (id),
    enrollment_date date not null,
    status varchar(10) not null default 'ACTIVE' check (status in ('ACTIVE', 'DROPPED', 'COMPLETED')),
    created_at timestamptz not null default now(),
    created_by varchar(100),
    updated_at timestamptz,
    updated_by varchar(100)
);
create unique index if not exists enrollments_active_uq
    on enrollments (student_id, course_id) where status = 'ACTIVE';

create table if not exists grades (
    id bigserial primary key,
    enrollment_id bigint not null references enrollments (id) on delete cascade,
    letter varchar(2) not null check (letter in ('A+', 'A', 'A-', 'B+', 'B', 'B-', 'C+', 'C', 'D', 'F')),
    remarks varchar(500),
    graded_date date not null,
    created_at timestamptz not null default now(),
    created_by varchar(100),
    updated_at timestamptz,
    updated_by varchar(100),
    constraint grades_enrollment_uq unique (enrollment_id)
);

create table if not exists attendance (
    id bigserial primary key,
    enrollment_id bigint not null references enrollments (id) on delete cascade,
    attendance_date date not null,
    status varchar(10) not null check (status in ('PRESENT', 'ABSENT', 'LATE')),
    remarks varchar(255),
    created_at timestamptz not null default now(),
    created_by varchar(100),
    updated_at timestamptz,
    updated_by varchar(100),
    constraint attendance_enrollment_date_uq unique (enrollment_id, attendance_date)
);
"""

_DUPLICATE_MESSAGES = {
    "users_username_uq": ("Username already exists", "duplicate_username"),
    "users_email_uq": ("Email already exists", "duplicate_email"),
    "departments_name_uq": ("Department name already exists", "duplicate_department_name"),
    "departments_code_uq": ("Department code already exists", "duplicate_department_code"),
    "students_email_uq": ("Student email already exists", "duplicate_email"),
    "teachers_email_uq": ("Teacher email already exists", "duplicate_email"),
    "courses_code_uq": ("Course code already exists", "duplicate_course_code"),
    "enrollments_active_uq": ("Student is already enrolled in this course", "duplicate_enrollment"),
    "grades_enrollment_uq": ("Grade already exists for this enrollment", "duplicate_grade"),
    "attendance_enrollment_date_uq": ("Attendance already recorded for this date", "duplicate_attendance"),
}

_COURSE_SELECT = """
    select c.*,
           t.user_id as teacher_user_id,
           (select count(*) from enrollments x where x.course_id = c.id and x.status = 'ACTIVE') as enrolled_count
      from courses c
      left join teachers t on t.id = c.teacher_id
"""

_ENROLLMENT_SELECT = """
    select e.*,
           s.user_id as student_user_id,
           t.user_id as course_owner_id,
           coalesce(a.present_or_late, 0) as present_or_late,
           coalesce(a.total, 0) as attendance_total
      from enrollments e
      join students s on s.id = e.student_id
      join courses c on c.id = e.course_id
      left join teachers t on t.id = c.teacher_id
      left join (
            select enrollment_id,
                   count(*) filter (where status in ('PRESENT', 'LATE')) as present_or_late,
                   count(*) as total
              from attendance
             group by enrollment_id
      ) a on a.enrollment_id = e.id
"""

_GRADE_SELECT = """
    select g.*,
           e.student_id,
           s.user_id as student_user_id,
           e.course_id,
           t.user_id as course_owner_id,
           c.code as course_code,
           c.name as course_name,
           c.credits,
           c.semester
      from grades g
      join enrollments e on e.id = g.enrollment_id
      join students s on s.id = e.student_id
      join courses c on c.id = e.course_id
      left join teachers t on t.id = c.teacher_id
"""

_ATTENDANCE_SELECT = """
    select a.id,
           a.enrollment_id,
           a.attendance_date as "date",
           a.status,
           a.remarks,
           a.created_at,
           a.created_by,
           a.updated_at,
           a.updated_by,
           e.student_id,
           s.user_id as student_user_id,
           e.course_id,
           t.user_id as course_owner_id
      from attendance a
      join enrollments e on e.id = a.enrollment_id
      join students s on s.id = e.student_id
      join courses c on c.id = e.course_id
      left join teachers t on t.id = c.teacher_id
"""

# Columns a caller may change through the generic update helpers.
_STUDENT_COLUMNS = frozenset({
    "first_name", "last_name", "email", "phone", "date_of_birth", "address",
    "department_id", "enrollment_date", "status",
})
_TEACHER_COLUMNS = frozenset({
    "first_name", "last_name", "email", "phone", "specialization", "department_id", "hire_date",
})
_COURSE_COLUMNS = frozenset({
    "code", "name", "description", "credits", "semester", "max_capacity", "department_id", "teacher_id",
})


def _dsn() -> str:
    dsn = os.getenv("DATABASE_URL") or ""
    if not dsn:
        raise RuntimeError("Database DSN unavailable for DBAcademicsRepo (set DATABASE_URL)")
    return dsn


def _build(cls: Type[T], row: Optional[Dict[str, Any]]) -> Optional[T]:
    if row is None:
        return None
    names = {f.name for f in fields(cls)}
    return cls(**{k: v for k, v in row.items() if k in names})


def _like(search: str) -> str:
    escaped = search.strip().lower().replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{escaped}%"


def _duplicate(exc: UniqueViolation) -> DuplicateResourceError:
    constraint = getattr(getattr(exc, "diag", None), "constraint_name", None) or ""
    message, code = _DUPLICATE_MESSAGES.get(constraint, ("Resource already exists", "duplicate_resource"))
    return DuplicateResourceError(message, code=code)


def _where(clauses: List[sql.Composable]) -> sql.Composable:
    if not clauses:
        return sql.SQL("")
    return sql.SQL(" where ") + sql.SQL(" and ").join(clauses)


class DBAcademicsRepo:
    """Postgres implementation of the academic records store.

    Parameters
    ----------
    dsn:
        Psycopg connection string; defaults to `DATABASE_URL`.
    """

    def __init__(self, dsn: Optional[str] = None) -> None:
        self._dsn = dsn or _dsn()

    def _connect(self) -> psycopg.Connection:
        return psycopg.connect(self._dsn, row_factory=dict_row)

    def ping(self) -> None:
        with self._connect() as conn:
            conn.execute("select 1")

    def ensure_schema(self) -> None:
        """Create tables and indexes when missing (idempotent)."""
        with self._connect() as conn:
            conn.execute(SCHEMA_SQL)

    def _one(self, query, params: Sequence[Any] = ()) -> Optional[Dict[str, Any]]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchone()

    def _all(self, query, params: Sequence[Any] = ()) -> List[Dict[str, Any]]:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(query, params)
                return cur.fetchall()

    def _page(
        self,
        cls: Type[T],
        select: str,
        clauses: List[sql.Composable],
        params: List[Any],
        page: PageRequest,
        *,
        alias: str,
    ) -> Page:
        where = _where(clauses)
        count_query = sql.SQL("select count(*) as n from ({}) q").format(sql.SQL(select) + where)
        data_query = (
            sql.SQL(select)
            + where
            + sql.SQL(" order by {} {} nulls first limit %s offset %s").format(
                sql.Identifier(alias, page.sort),
                sql.SQL("desc" if page.descending else "asc"),
            )
        )
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(count_query, params)
                total = int(cur.fetchone()["n"])
                cur.execute(data_query, [*params, page.size, page.offset])
                rows = cur.fetchall()
        return Page(items=[_build(cls, r) for r in rows], page=page.page, size=page.size, total=total)

    def _set_clause(self, changes: Dict[str, Any], allowed: Iterable[str], actor: Optional[str]) -> Tuple[sql.Composable, List[Any]]:
        allowed = frozenset(allowed)
        parts: List[sql.Composable] = []
        params: List[Any] = []
        for key, value in changes.items():
            if key not in allowed:
                raise ValueError(f"unsupported_column:{key}")
            parts.append(sql.SQL("{} = %s").format(sql.Identifier(key)))
            params.append(value)
        parts.append(sql.SQL("updated_at = now()"))
        parts.append(sql.SQL("updated_by = %s"))
        params.append(actor)
        return sql.SQL(", ").join(parts), params

    # --- users -------------------------------------------------------------

    def get_user(self, user_id: int) -> Optional[User]:
        return _build(User, self._one("select * from users where id = %s", (user_id,)))

    def find_user_by_email(self, email: str) -> Optional[User]:
        return _build(User, self._one("select * from users where lower(email) = lower(%s)", ((email or "").strip(),)))

    def username_exists(self, username: str) -> bool:
        return self._one("select 1 as x from users where lower(username) = lower(%s)", (username,)) is not None

    def email_exists(self, email: str) -> bool:
        return self.find_user_by_email(email) is not None

    def count_active_admins(self) -> int:
        row = self._one("select count(*) as n from users where role = 'ADMIN' and active")
        return int(row["n"])

    @staticmethod
    def _insert_user(cur, *, username: str, email: str, password_hash: str, role: str, actor: Optional[str]) -> Dict[str, Any]:
        cur.execute(
            """
            insert into users (username, email, password_hash, role, active, created_by)
            values (%s, %s, %s, %s, true, %s)
            returning *
            """,
            (username, email, password_hash, role, actor),
        )
        return cur.fetchone()

    def create_user(self, *, username: str, email: str, password_hash: str, role: str, actor: Optional[str] = None) -> User:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    row = self._insert_user(cur, username=username, email=email, password_hash=password_hash, role=role, actor=actor)
        except UniqueViolation as exc:
            raise _duplicate(exc) from exc
        return _build(User, row)

    def update_user_password(self, user_id: int, password_hash: str, *, actor: Optional[str] = None) -> None:
        with self._connect() as conn:
            cur = conn.execute(
                "update users set password_hash = %s, updated_at = now(), updated_by = %s where id = %s",
                (password_hash, actor, user_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("User", user_id)

    # --- departments ---------------------------------------------------------

    def create_department(self, *, name: str, code: str, description: Optional[str], actor: Optional[str]) -> Department:
        try:
            row = self._one(
                "insert into departments (name, code, description, created_by) values (%s, %s, %s, %s) returning *",
                (name, code, description, actor),
            )
        except UniqueViolation as exc:
            raise _duplicate(exc) from exc
        return _build(Department, row)

    def get_department(self, department_id: int) -> Optional[Department]:
        return _build(Department, self._one("select * from departments where id = %s", (department_id,)))

    def list_departments(self, page: PageRequest, *, search: Optional[str] = None) -> Page:
        clauses: List[sql.Composable] = []
        params: List[Any] = []
        if search and search.strip():
            clauses.append(sql.SQL("(lower(d.name) like %s or lower(d.code) like %s)"))
            params += [_like(search)] * 2
        return self._page(Department, "select d.* from departments d", clauses, params, page, alias="d")

    def update_department(self, department_id: int, *, name: str, code: str, description: Optional[str], actor: Optional[str]) -> Department:
        try:
            row = self._one(
                """
                update departments
                   set name = %s, code = %s, description = %s, updated_at = now(), updated_by = %s
                 where id = %s
                returning *
                """,
                (name, code, description, actor, department_id),
            )
        except UniqueViolation as exc:
            raise _duplicate(exc) from exc
        if row is None:
            raise NotFoundError("Department", department_id)
        return _build(Department, row)

    def count_department_dependents(self, department_id: int) -> Tuple[int, int]:
        row = self._one(
            """
            select (select count(*) from students where department_id = %s and not deleted) as students,
                   (select count(*) from courses where department_id = %s) as courses
            """,
            (department_id, department_id),
        )
        return int(row["students"]), int(row["courses"])

    def count_departments(self) -> int:
        return int(self._one("select count(*) as n from departments")["n"])

    def delete_department(self, department_id: int) -> None:
        with self._connect() as conn:
            cur = conn.execute("delete from departments where id = %s", (department_id,))
            if cur.rowcount == 0:
                raise NotFoundError("Department", department_id)

    # --- students ------------------------------------------------------------

    def create_student(self, *, username: str, password_hash: str, profile: Dict[str, Any], actor: Optional[str]) -> Student:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    user = self._insert_user(cur, username=username, email=profile["email"], password_hash=password_hash, role="STUDENT", actor=actor)
                    cur.execute(
                        """
                        insert into students (user_id, first_name, last_name, email, phone, date_of_birth,
                                              address, department_id, enrollment_date, status, created_by)
                        values (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                        returning *
                        """,
                        (
                            user["id"], profile["first_name"], profile["last_name"], profile["email"],
                            profile.get("phone"), profile.get("date_of_birth"), profile.get("address"),
                            profile.get("department_id"), profile.get("enrollment_date"), profile.get("status", "ACTIVE"),
                            actor,
                        ),
                    )
                    row = cur.fetchone()
        except UniqueViolation as exc:
            raise _duplicate(exc) from exc
        return _build(Student, row)

    def get_student(self, student_id: int, *, include_deleted: bool = False) -> Optional[Student]:
        row = self._one("select * from students where id = %s and (%s or not deleted)", (student_id, include_deleted))
        return _build(Student, row)

    def get_student_by_user(self, user_id: int, *, include_deleted: bool = False) -> Optional[Student]:
        row = self._one("select * from students where user_id = %s and (%s or not deleted)", (user_id, include_deleted))
        return _build(Student, row)

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
        clauses: List[sql.Composable] = []
        params: List[Any] = []
        if deleted_only:
            clauses.append(sql.SQL("s.deleted"))
        elif not include_deleted:
            clauses.append(sql.SQL("not s.deleted"))
        if department_id is not None:
            clauses.append(sql.SQL("s.department_id = %s"))
            params.append(department_id)
        if status is not None:
            clauses.append(sql.SQL("s.status = %s"))
            params.append(status)
        if search and search.strip():
            clauses.append(sql.SQL("(lower(s.first_name) like %s or lower(s.last_name) like %s or lower(s.email) like %s)"))
            params += [_like(search)] * 3
        return self._page(Student, "select s.* from students s", clauses, params, page, alias="s")

    def _update_profile(self, table: str, cls: Type[T], entity: str, allowed, record_id: int, changes: Dict[str, Any], actor: Optional[str], sync_user_email: bool) -> T:
        set_clause, params = self._set_clause(changes, allowed, actor)
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute(
                        sql.SQL("update {} set {} where id = %s and not deleted returning *").format(sql.Identifier(table), set_clause),
                        [*params, record_id],
                    )
                    row = cur.fetchone()
                    if row is None:
                        raise NotFoundError(entity, record_id)
                    if sync_user_email and "email" in changes:
                        cur.execute(
                            "update users set email = %s, updated_at = now(), updated_by = %s where id = %s",
                            (changes["email"], actor, row["user_id"]),
                        )
        except UniqueViolation as exc:
            raise _duplicate(exc) from exc
        return _build(cls, row)

    def update_student(self, student_id: int, changes: Dict[str, Any], *, actor: Optional[str], sync_user_email: bool = False) -> Student:
        return self._update_profile("students", Student, "Student", _STUDENT_COLUMNS, student_id, changes, actor, sync_user_email)

    def soft_delete_student(self, student_id: int, *, actor: Optional[str]) -> Student:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute(
                    """
                    update students
                       set deleted = true, deleted_at = now(), deleted_by = %s, status = 'INACTIVE'
                     where id = %s and not deleted
                    returning *
                    """,
                    (actor, student_id),
                )
                row = cur.fetchone()
                if row is None:
                    raise NotFoundError("Student", student_id)
                cur.execute(
                    "update users set active = false, updated_at = now(), updated_by = %s where id = %s",
                    (actor, row["user_id"]),
                )
        return _build(Student, row)

    def restore_student(self, student_id: int, *, actor: Optional[str]) -> Student:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("select deleted, user_id from students where id = %s for update", (student_id,))
                current = cur.fetchone()
                if current is None:
                    raise NotFoundError("Student", student_id)
                if not current["deleted"]:
                    raise BusinessRuleViolation("Student is not deleted", code="not_deleted")
                cur.execute(
                    """
                    update students
                       set deleted = false, deleted_at = null, deleted_by = null, status = 'ACTIVE',
                           updated_at = now(), updated_by = %s
                     where id = %s
                    returning *
                    """,
                    (actor, student_id),
                )
                row = cur.fetchone()
                cur.execute(
                    "update users set active = true, updated_at = now(), updated_by = %s where id = %s",
                    (actor, current["user_id"]),
                )
        return _build(Student, row)

    def count_students_by_status(self) -> Dict[str, int]:
        rows = self._all("select status, count(*) as n from students where not deleted group by status")
        return {r["status"]: int(r["n"]) for r in rows}

    # --- teachers ------------------------------------------------------------

    def create_teacher(self, *, username: str, password_hash: str, profile: Dict[str, Any], actor: Optional[str]) -> Teacher:
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    user = self._insert_user(cur, username=username, email=profile["email"], password_hash=password_hash, role="TEACHER", actor=actor)
                    cur.execute(
                        """
                        insert into teachers (user_id, first_name, last_name, email, phone, specialization,
                                              department_id, hire_date, created_by)
                        values (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                        returning *
                        """,
                        (
                            user["id"], profile["first_name"], profile["last_name"], profile["email"],
                            profile.get("phone"), profile.get("specialization"), profile.get("department_id"),
                            profile.get("hire_date"), actor,
                        ),
                    )
                    row = cur.fetchone()
        except UniqueViolation as exc:
            raise _duplicate(exc) from exc
        return _build(Teacher, row)

    def get_teacher(self, teacher_id: int, *, include_deleted: bool = False) -> Optional[Teacher]:
        row = self._one("select * from teachers where id = %s and (%s or not deleted)", (teacher_id, include_deleted))
        return _build(Teacher, row)

    def get_teacher_by_user(self, user_id: int, *, include_deleted: bool = False) -> Optional[Teacher]:
        row = self._one("select * from teachers where user_id = %s and (%s or not deleted)", (user_id, include_deleted))
        return _build(Teacher, row)

    def list_teachers(
        self,
        page: PageRequest,
        *,
        search: Optional[str] = None,
        department_id: Optional[int] = None,
        include_deleted: bool = False,
        deleted_only: bool = False,
    ) -> Page:
        clauses: List[sql.Composable] = []
        params: List[Any] = []
        if deleted_only:
            clauses.append(sql.SQL("t.deleted"))
        elif not include_deleted:
            clauses.append(sql.SQL("not t.deleted"))
        if department_id is not None:
            clauses.append(sql.SQL("t.department_id = %s"))
            params.append(department_id)
        if search and search.strip():
            clauses.append(sql.SQL(
                "(lower(t.first_name) like %s or lower(t.last_name) like %s or lower(t.email) like %s"
                " or lower(coalesce(t.specialization, '')) like %s)"
            ))
            params += [_like(search)] * 4
        return self._page(Teacher, "select t.* from teachers t", clauses, params, page, alias="t")

    def update_teacher(self, teacher_id: int, changes: Dict[str, Any], *, actor: Optional[str], sync_user_email: bool = False) -> Teacher:
        return self._update_profile("teachers", Teacher, "Teacher", _TEACHER_COLUMNS, teacher_id, changes, actor, sync_user_email)

    def count_teacher_courses(self, teacher_id: int) -> int:
        return int(self._one("select count(*) as n from courses where teacher_id = %s", (teacher_id,))["n"])

    def soft_delete_teacher(self, teacher_id: int, *, actor: Optional[str]) -> Teacher:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("select user_id from teachers where id = %s and not deleted for update", (teacher_id,))
                current = cur.fetchone()
                if current is None:
                    raise NotFoundError("Teacher", teacher_id)
                cur.execute("select count(*) as n from courses where teacher_id = %s", (teacher_id,))
                owned = int(cur.fetchone()["n"])
                if owned:
                    raise BusinessRuleViolation(
                        f"Cannot delete teacher with {owned} assigned course(s). Reassign the courses first.",
                        code="teacher_has_courses",
                    )
                cur.execute(
                    "update teachers set deleted = true, deleted_at = now(), deleted_by = %s where id = %s returning *",
                    (actor, teacher_id),
                )
                row = cur.fetchone()
                cur.execute(
                    "update users set active = false, updated_at = now(), updated_by = %s where id = %s",
                    (actor, current["user_id"]),
                )
        return _build(Teacher, row)

    def restore_teacher(self, teacher_id: int, *, actor: Optional[str]) -> Teacher:
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("select deleted, user_id from teachers where id = %s for update", (teacher_id,))
                current = cur.fetchone()
                if current is None:
                    raise NotFoundError("Teacher", teacher_id)
                if not current["deleted"]:
                    raise BusinessRuleViolation("Teacher is not deleted", code="not_deleted")
                cur.execute(
                    """
                    update teachers
                       set deleted = false, deleted_at = null, deleted_by = null, updated_at = now(), updated_by = %s
                     where id = %s
                    returning *
                    """,
                    (actor, teacher_id),
                )
                row = cur.fetchone()
                cur.execute(
                    "update users set active = true, updated_at = now(), updated_by = %s where id = %s",
                    (actor, current["user_id"]),
                )
        return _build(Teacher, row)

    def count_teachers(self) -> int:
        return int(self._one("select count(*) as n from teachers where not deleted")["n"])

    # --- courses -------------------------------------------------------------

    def create_course(self, *, profile: Dict[str, Any], actor: Optional[str]) -> Course:
        try:
            row = self._one(
                """
                insert into courses (code, name, description, credits, semester, max_capacity,
                                     department_id, teacher_id, created_by)
                values (%s, %s, %s, %s, %s, %s, %s, %s, %s)
                returning id
                """,
                (
                    profile["code"], profile["name"], profile.get("description"), profile["credits"],
                    profile["semester"], profile["max_capacity"], profile["department_id"],
                    profile.get("teacher_id"), actor,
                ),
            )
        except UniqueViolation as exc:
            raise _duplicate(exc) from exc
        return self.get_course(row["id"])

    def get_course(self, course_id: int) -> Optional[Course]:
        return _build(Course, self._one(_COURSE_SELECT + " where c.id = %s", (course_id,)))

    def get_course_by_code(self, code: str) -> Optional[Course]:
        return _build(Course, self._one(_COURSE_SELECT + " where lower(c.code) = lower(%s)", (code,)))

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
        clauses: List[sql.Composable] = []
        params: List[Any] = []
        if department_id is not None:
            clauses.append(sql.SQL("c.department_id = %s"))
            params.append(department_id)
        if semester is not None:
            clauses.append(sql.SQL("c.semester = %s"))
            params.append(semester)
        if teacher_id is not None:
            clauses.append(sql.SQL("c.teacher_id = %s"))
            params.append(teacher_id)
        if search and search.strip():
            clauses.append(sql.SQL("(lower(c.code) like %s or lower(c.name) like %s)"))
            params += [_like(search)] * 2
        if available_only:
            clauses.append(sql.SQL(
                "(select count(*) from enrollments x where x.course_id = c.id and x.status = 'ACTIVE') < c.max_capacity"
            ))
        return self._page(Course, _COURSE_SELECT, clauses, params, page, alias="c")

    def update_course(self, course_id: int, changes: Dict[str, Any], *, actor: Optional[str]) -> Course:
        set_clause, params = self._set_clause(changes, _COURSE_COLUMNS, actor)
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute("select id from courses where id = %s for update", (course_id,))
                    if cur.fetchone() is None:
                        raise NotFoundError("Course", course_id)
                    if "max_capacity" in changes:
                        cur.execute(
                            "select count(*) as n from enrollments where course_id = %s and status = 'ACTIVE'",
                            (course_id,),
                        )
                        active = int(cur.fetchone()["n"])
                        if changes["max_capacity"] < active:
                            raise BusinessRuleViolation(
                                f"Cannot reduce max capacity to {changes['max_capacity']}. Current enrollment: {active}",
                                code="capacity_below_enrollment",
                            )
                    cur.execute(
                        sql.SQL("update courses set {} where id = %s").format(set_clause),
                        [*params, course_id],
                    )
        except UniqueViolation as exc:
            raise _duplicate(exc) from exc
        return self.get_course(course_id)

    def count_course_enrollments(self, course_id: int) -> int:
        return int(self._one("select count(*) as n from enrollments where course_id = %s", (course_id,))["n"])

    def delete_course(self, course_id: int) -> None:
        with self._connect() as conn:
            cur = conn.execute("delete from courses where id = %s", (course_id,))
            if cur.rowcount == 0:
                raise NotFoundError("Course", course_id)

    def count_courses(self) -> int:
        return int(self._one("select count(*) as n from courses")["n"])

    # --- enrollments ---------------------------------------------------------

    def enroll(self, student_id: int, course_id: int, *, enrollment_date: date, actor: Optional[str]) -> Enrollment:
        """Insert an ACTIVE enrollment while holding the course row lock."""
        try:
            with self._connect() as conn:
                with conn.cursor() as cur:
                    cur.execute("select max_capacity from courses where id = %s for update", (course_id,))
                    course = cur.fetchone()
                    if course is None:
                        raise NotFoundError("Course", course_id)
                    cur.execute(
                        """
                        select count(*) filter (where student_id = %s) as mine,
                               count(*) as active
                          from enrollments
                         where course_id = %s and status = 'ACTIVE'
                        """,
                        (student_id, course_id),
                    )
                    counts = cur.fetchone()
                    if counts["mine"]:
                        raise DuplicateResourceError("Student is already enrolled in this course", code="duplicate_enrollment")
                    if counts["active"] >= course["max_capacity"]:
                        raise BusinessRuleViolation("Course is full", code="course_full")
                    cur.execute(
                        """
                        insert into enrollments (student_id, course_id, enrollment_date, status, created_by)
                        values (%s, %s, %s, 'ACTIVE', %s)
                        returning id
                        """,
                        (student_id, course_id, enrollment_date, actor),
                    )
                    enrollment_id = cur.fetchone()["id"]
        except UniqueViolation as exc:
            raise _duplicate(exc) from exc
        return self.get_enrollment(enrollment_id)

    def get_enrollment(self, enrollment_id: int) -> Optional[Enrollment]:
        return _build(Enrollment, self._one(_ENROLLMENT_SELECT + " where e.id = %s", (enrollment_id,)))

    def has_active_enrollment(self, student_id: int, course_id: int) -> bool:
        row = self._one(
            "select 1 as x from enrollments where student_id = %s and course_id = %s and status = 'ACTIVE'",
            (student_id, course_id),
        )
        return row is not None

    def list_enrollments(
        self,
        page: Optional[PageRequest] = None,
        *,
        student_id: Optional[int] = None,
        course_id: Optional[int] = None,
        status: Optional[str] = None,
        course_owner_id: Optional[int] = None,
    ) -> Page:
        clauses: List[sql.Composable] = []
        params: List[Any] = []
        if student_id is not None:
            clauses.append(sql.SQL("e.student_id = %s"))
            params.append(student_id)
        if course_id is not None:
            clauses.append(sql.SQL("e.course_id = %s"))
            params.append(course_id)
        if status is not None:
            clauses.append(sql.SQL("e.status = %s"))
            params.append(status)
        if course_owner_id is not None:
            clauses.append(sql.SQL("t.user_id = %s"))
            params.append(course_owner_id)
        if page is not None:
            return self._page(Enrollment, _ENROLLMENT_SELECT, clauses, params, page, alias="e")
        rows = self._all(sql.SQL(_ENROLLMENT_SELECT) + _where(clauses) + sql.SQL(" order by e.id"), params)
        items = [_build(Enrollment, r) for r in rows]
        return Page(items=items, page=0, size=len(items), total=len(items))

    def drop_enrollment(self, enrollment_id: int, *, actor: Optional[str]) -> Enrollment:
        """Mark an enrollment DROPPED while holding its row lock.

        Grade upserts take the same lock, so a grade cannot land between the
        graded check and the status write.
        """
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("select status from enrollments where id = %s for update", (enrollment_id,))
                row = cur.fetchone()
                if row is None:
                    raise NotFoundError("Enrollment", enrollment_id)
                if row["status"] == "DROPPED":
                    raise BusinessRuleViolation("Enrollment is already dropped", code="already_dropped")
                cur.execute("select 1 as x from grades where enrollment_id = %s", (enrollment_id,))
                if cur.fetchone() is not None:
                    raise BusinessRuleViolation("Cannot drop a course after grading", code="already_graded")
                cur.execute(
                    "update enrollments set status = 'DROPPED', updated_at = now(), updated_by = %s where id = %s",
                    (actor, enrollment_id),
                )
        return self.get_enrollment(enrollment_id)

    def count_enrollments_by_status(self) -> Dict[str, int]:
        rows = self._all("select status, count(*) as n from enrollments group by status")
        return {r["status"]: int(r["n"]) for r in rows}

    # --- grades --------------------------------------------------------------

    def upsert_grade(
        self,
        enrollment_id: int,
        *,
        letter: str,
        remarks: Optional[str],
        graded_date: date,
        actor: Optional[str],
    ) -> Grade:
        """Insert or replace the grade while holding the enrollment row lock."""
        with self._connect() as conn:
            with conn.cursor() as cur:
                cur.execute("select status from enrollments where id = %s for update", (enrollment_id,))
                enrollment = cur.fetchone()
                if enrollment is None:
                    raise NotFoundError("Enrollment", enrollment_id)
                if enrollment["status"] != "ACTIVE":
                    raise BusinessRuleViolation("Cannot grade dropped enrollment", code="enrollment_not_active")
                cur.execute(
                    """
                    insert into grades (enrollment_id, letter, remarks, graded_date, created_by)
                    values (%s, %s, %s, %s, %s)
                    on conflict (enrollment_id) do update
                       set letter = excluded.letter,
                           remarks = excluded.remarks,
                           graded_date = excluded.graded_date,
                           updated_at = now(),
                           updated_by = excluded.created_by
                    returning id
                    """,
                    (enrollment_id, letter, remarks, graded_date, actor),
                )
                grade_id = cur.fetchone()["id"]
        return self.get_grade(grade_id)

    def get_grade(self, grade_id: int) -> Optional[Grade]:
        return _build(Grade, self._one(_GRADE_SELECT + " where g.id = %s", (grade_id,)))

    def get_grade_by_enrollment(self, enrollment_id: int) -> Optional[Grade]:
        return _build(Grade, self._one(_GRADE_SELECT + " where g.enrollment_id = %s", (enrollment_id,)))

    def delete_grade(self, grade_id: int) -> None:
        with self._connect() as conn:
            cur = conn.execute("delete from grades where id = %s", (grade_id,))
            if cur.rowcount == 0:
                raise NotFoundError("Grade", grade_id)

    def list_grades(
        self,
        *,
        student_id: Optional[int] = None,
        course_id: Optional[int] = None,
        semester: Optional[str] = None,
        course_owner_id: Optional[int] = None,
    ) -> List[Grade]:
        clauses: List[sql.Composable] = []
        params: List[Any] = []
        for column, value in (
            ("e.student_id", student_id),
            ("e.course_id", course_id),
            ("c.semester", semester),
            ("t.user_id", course_owner_id),
        ):
            if value is not None:
                clauses.append(sql.SQL(column + " = %s"))
                params.append(value)
        rows = self._all(sql.SQL(_GRADE_SELECT) + _where(clauses) + sql.SQL(" order by g.id"), params)
        return [_build(Grade, r) for r in rows]

    # --- attendance ----------------------------------------------------------

    def upsert_attendance(
        self,
        on_date: date,
        entries: Sequence[Tuple[int, str, Optional[str]]],
        *,
        actor: Optional[str],
    ) -> List[Attendance]:
        ids: List[int] = []
        with self._connect() as conn:
            with conn.cursor() as cur:
                for enrollment_id, status, remarks in entries:
                    cur.execute(
                        """
                        insert into attendance (enrollment_id, attendance_date, status, remarks, created_by)
                        values (%s, %s, %s, %s, %s)
                        on conflict (enrollment_id, attendance_date) do update
                           set status = excluded.status,
                               remarks = excluded.remarks,
                               updated_at = now(),
                               updated_by = excluded.created_by
                        returning id
                        """,
                        (enrollment_id, on_date, status, remarks, actor),
                    )
                    ids.append(cur.fetchone()["id"])
        if not ids:
            return []
        rows = self._all(_ATTENDANCE_SELECT + " where a.id = any(%s) order by a.id", (ids,))
        return [_build(Attendance, r) for r in rows]

    def get_attendance(self, attendance_id: int) -> Optional[Attendance]:
        return _build(Attendance, self._one(_ATTENDANCE_SELECT + " where a.id = %s", (attendance_id,)))

    def update_attendance(self, attendance_id: int, *, status: str, remarks: Optional[str], actor: Optional[str]) -> Attendance:
        with self._connect() as conn:
            cur = conn.execute(
                """
                update attendance
                   set status = %s, remarks = coalesce(%s, remarks), updated_at = now(), updated_by = %s
                 where id = %s
                """,
                (status, remarks, actor, attendance_id),
            )
            if cur.rowcount == 0:
                raise NotFoundError("Attendance", attendance_id)
        return self.get_attendance(attendance_id)

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
        clauses: List[sql.Composable] = []
        params: List[Any] = []
        for fragment, value in (
            ("e.course_id = %s", course_id),
            ("e.student_id = %s", student_id),
            ("a.enrollment_id = %s", enrollment_id),
            ("a.attendance_date = %s", on_date),
            ("a.attendance_date >= %s", start),
            ("a.attendance_date <= %s", end),
            ("t.user_id = %s", course_owner_id),
        ):
            if value is not None:
                clauses.append(sql.SQL(fragment))
                params.append(value)
        rows = self._all(
            sql.SQL(_ATTENDANCE_SELECT) + _where(clauses) + sql.SQL(" order by a.attendance_date, a.id"),
            params,
        )
        return [_build(Attendance, r) for r in rows]

    def attendance_status_counts(self, *, course_id: Optional[int] = None) -> Dict[str, int]:
        if course_id is None:
            rows = self._all("select status, count(*) as n from attendance group by status")
        else:
            rows = self._all(
                """
                select a.status, count(*) as n
                  from attendance a join enrollments e on e.id = a.enrollment_id
                 where e.course_id = %s
                 group by a.status
                """,
                (course_id,),
            )
        return {r["status"]: int(r["n"]) for r in rows}


__all__ = ["DBAcademicsRepo", "SCHEMA_SQL"]
