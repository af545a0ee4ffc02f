"""
Attendance API routes.

Behavior:
    - POST marks a whole day for a course: one record per enrollment, upserted.
      Future dates and enrollments not ACTIVE in the course are refused (400).
    - PUT edits one record; teachers only within the edit window.
"""
from __future__ import annotations

import datetime as dt
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Query, Request
from pydantic import BaseModel, Field

from backend.academics.services.attendance import AttendanceEntry

from .. import wiring
from ..responses import attendance_out, current_principal, json_private, summary_out

attendance_router = APIRouter(prefix="/api/v1/attendance", tags=["Attendance"])


class AttendanceRecordIn(BaseModel):
    enrollment_id: int
    status: Optional[str] = None
    remarks: Optional[str] = None


class MarkAttendanceRequest(BaseModel):
    course_id: int
    date: dt.date
    records: List[AttendanceRecordIn] = Field(default_factory=list)


class UpdateAttendanceRequest(BaseModel):
    status: Optional[str] = None
    remarks: Optional[str] = None


@attendance_router.post("")
async def mark_attendance(request: Request, payload: MarkAttendanceRequest):
    entries = [AttendanceEntry(enrollment_id=r.enrollment_id, status=r.status, remarks=r.remarks) for r in payload.records]
    summary = wiring.attendance_service().mark(current_principal(request), payload.course_id, payload.date, entries)
    return json_private(summary_out(summary))


@attendance_router.put("/{attendance_id}")
async def update_attendance(request: Request, attendance_id: int, payload: UpdateAttendanceRequest):
    record = wiring.attendance_service().update(
        current_principal(request), attendance_id, status=payload.status, remarks=payload.remarks
    )
    return json_private(attendance_out(record))


@attendance_router.get("/course/{course_id}")
async def attendance_by_course_and_date(request: Request, course_id: int, on_date: date = Query(..., alias="date")):
    records = wiring.attendance_service().by_course_and_date(current_principal(request), course_id, on_date)
    return json_private([attendance_out(a) for a in records])


@attendance_router.get("/course/{course_id}/statistics")
async def attendance_statistics(request: Request, course_id: int):
    stats = wiring.attendance_service().statistics(current_principal(request), course_id)
    return json_private({
        "course_id": stats.course_id,
        "total_records": stats.total_records,
        "counts": stats.counts,
        "attendance_rate": round(stats.attendance_rate, 2),
    })


@attendance_router.get("/student/{student_id}")
async def attendance_by_student(
    request: Request,
    student_id: int,
    course_id: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
):
    records = wiring.attendance_service().by_student(
        current_principal(request), student_id, course_id=course_id, start=start_date, end=end_date
    )
    return json_private([attendance_out(a) for a in records])


@attendance_router.get("/enrollment/{enrollment_id}/percentage")
async def enrollment_attendance_percentage(request: Request, enrollment_id: int):
    percentage = wiring.attendance_service().enrollment_percentage(current_principal(request), enrollment_id)
    return json_private({"enrollment_id": enrollment_id, "attendance_percentage": round(percentage, 2)})
