"""
Attendance use cases.

Why:
    Marking attendance is an idempotent upsert per (enrollment, date): marking
    the same day twice updates the earlier record. Future dates are refused,
    and every submitted record must belong to an ACTIVE enrollment of the
    course being marked.

Permissions:
    ADMIN marks and edits any course. A TEACHER marks courses they own and may
    edit an existing record only within the edit window (default 7 days).
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
import logging
from typing import Callable, Dict, List, Optional, Protocol, Sequence, Tuple

from backend.identity_access.domain import Principal
from backend.identity_access.policy import Action, Ownership

from .. import validation as v
from ..errors import BusinessRuleViolation, ValidationFailure
from ..paging import Page, PageRequest
from ..records import (
    ABSENT,
    ATTENDANCE_STATUSES,
    ENROLLMENT_ACTIVE,
    LATE,
    PRESENT,
    Attendance,
    AttendanceSummary,
    Course,
    Enrollment,
    Student,
)
from .access import course_scope, guarded_fetch, student_scope

logger = logging.getLogger("studify.academics.attendance")

DEFAULT_EDIT_WINDOW_DAYS = 7


class AttendanceRepoProtocol(Protocol):
    def get_student(self, student_id: int, *, include_deleted: bool = False) -> Optional[Student]:
        ...

    def get_course(self, course_id: int) -> Optional[Course]:
        ...

    def get_enrollment(self, enrollment_id: int) -> Optional[Enrollment]:
        ...

    def list_enrollments(
        self,
        page: Optional[PageRequest] = None,
        *,
        student_id: Optional[int] = None,
        course_id: Optional[int] = None,
        status: Optional[str] = None,
        course_owner_id: Optional[int] = None,
    ) -> Page:
        ...

    def upsert_attendance(
        self,
        on_date: date,
        entries: Sequence[Tuple[int, str, Optional[str]]],
        *,
        actor: Optional[str],
    ) -> List[Attendance]:
        ...

    def get_attendance(self, attendance_id: int) -> Optional[Attendance]:
        ...

    def update_attendance(self, attendance_id: int, *, status: str, remarks: Optional[str], actor: Optional[str]) -> Attendance:
        ...

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
        ...


@dataclass
class AttendanceEntry:
    enrollment_id: int
    status: str
    remarks: Optional[str] = None


@dataclass
class AttendanceStatistics:
    course_id: int
    total_records: int
    counts: Dict[str, int]

    @property
    def attendance_rate(self) -> float:
        if self.total_records == 0:
            return 0.0
        attended = self.counts.get(PRESENT, 0) + self.counts.get(LATE, 0)
        return attended * 100.0 / self.total_records


def _normalize_entries(records: Sequence[AttendanceEntry]) -> List[Tuple[int, str, Optional[str]]]:
    if not records:
        raise ValidationFailure({"records": "must contain at least one record"})
    errors = v.FieldErrors()
    normalized = []
    for idx, entry in enumerate(records):
        status = v.one_of(errors, f"records[{idx}].status", entry.status, ATTENDANCE_STATUSES)
        remarks = v.text(errors, f"records[{idx}].remarks", entry.remarks, max_len=255, required=False)
        normalized.append((entry.enrollment_id, status, remarks))
    errors.raise_if_any()
    return normalized


@dataclass
class AttendanceService:
    repo: AttendanceRepoProtocol
    today: Callable[[], date] = field(default=date.today)
    edit_window_days: int = DEFAULT_EDIT_WINDOW_DAYS

    def mark(self, principal: Principal, course_id: int, on_date: date, records: Sequence[AttendanceEntry]) -> AttendanceSummary:
        """Upsert one record per submitted enrollment for the given day.

        The returned rate divides present+late by the number of ACTIVE
        enrollments of the course, so a partial submission is measured
        against the full roster.
        """
        if on_date > self.today():
            raise BusinessRuleViolation("Cannot mark attendance for future dates", code="future_date")
        course_scope(principal, Action.MARK_ATTENDANCE, self.repo, course_id)
        entries = _normalize_entries(records)

        active_ids = {e.id for e in self.repo.list_enrollments(course_id=course_id, status=ENROLLMENT_ACTIVE).items}
        foreign = sorted({eid for eid, _, _ in entries if eid not in active_ids})
        if foreign:
            raise BusinessRuleViolation(
                "Enrollment(s) not active in this course: " + ", ".join(str(i) for i in foreign),
                code="enrollment_not_in_course",
            )

        self.repo.upsert_attendance(on_date, entries, actor=principal.actor)
        current = [
            a for a in self.repo.list_attendance(course_id=course_id, on_date=on_date)
            if a.enrollment_id in active_ids
        ]
        summary = AttendanceSummary(course_id=course_id, date=on_date, total_active=len(active_ids), records=current)
        for record in current:
            if record.status == PRESENT:
                summary.present += 1
            elif record.status == ABSENT:
                summary.absent += 1
            elif record.status == LATE:
                summary.late += 1
        logger.info("attendance.marked course_id=%s date=%s records=%s", course_id, on_date.isoformat(), len(entries))
        return summary

    def update(self, principal: Principal, attendance_id: int, *, status: object, remarks: object = None) -> Attendance:
        record = guarded_fetch(
            principal,
            Action.MARK_ATTENDANCE,
            lambda: self.repo.get_attendance(attendance_id),
            lambda a: Ownership(course_owner_id=a.course_owner_id),
            entity="Attendance",
            key=attendance_id,
        )
        errors = v.FieldErrors()
        status_v = v.one_of(errors, "status", status, ATTENDANCE_STATUSES)
        remarks_v = v.text(errors, "remarks", remarks, max_len=255, required=False)
        errors.raise_if_any()
        if principal.is_teacher and (self.today() - record.date).days > self.edit_window_days:
            raise BusinessRuleViolation(
                f"Teachers can only edit attendance within {self.edit_window_days} days",
                code="edit_window_closed",
            )
        updated = self.repo.update_attendance(attendance_id, status=status_v, remarks=remarks_v, actor=principal.actor)
        logger.info("attendance.updated id=%s", attendance_id)
        return updated

    def by_course_and_date(self, principal: Principal, course_id: int, on_date: date) -> List[Attendance]:
        course_scope(principal, Action.VIEW_COURSE_ATTENDANCE, self.repo, course_id)
        return self.repo.list_attendance(course_id=course_id, on_date=on_date)

    def by_student(
        self,
        principal: Principal,
        student_id: int,
        *,
        course_id: Optional[int] = None,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> List[Attendance]:
        if start is not None and end is not None and start > end:
            raise ValidationFailure({"start_date": "must not be after end_date"})
        owner = student_scope(principal, Action.VIEW_STUDENT_ATTENDANCE, self.repo, student_id)
        return self.repo.list_attendance(
            student_id=student_id,
            course_id=course_id,
            start=start,
            end=end,
            course_owner_id=owner,
        )

    def statistics(self, principal: Principal, course_id: int) -> AttendanceStatistics:
        course_scope(principal, Action.VIEW_COURSE_ATTENDANCE, self.repo, course_id)
        counts = {status: 0 for status in (PRESENT, ABSENT, LATE)}
        records = self.repo.list_attendance(course_id=course_id)
        for record in records:
            counts[record.status] = counts.get(record.status, 0) + 1
        return AttendanceStatistics(course_id=course_id, total_records=len(records), counts=counts)

    def enrollment_percentage(self, principal: Principal, enrollment_id: int) -> float:
        enrollment = guarded_fetch(
            principal,
            Action.VIEW_STUDENT_ATTENDANCE,
            lambda: self.repo.get_enrollment(enrollment_id),
            lambda e: Ownership(user_id=e.student_user_id, course_owner_id=e.course_owner_id),
            entity="Enrollment",
            key=enrollment_id,
        )
        return enrollment.attendance_percentage
