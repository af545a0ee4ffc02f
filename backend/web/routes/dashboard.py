"""Administrative dashboard route (ADMIN only)."""
from __future__ import annotations

from fastapi import APIRouter, Request

from .. import wiring
from ..responses import current_principal, fraction_fields, json_private

dashboard_router = APIRouter(prefix="/api/v1/dashboard", tags=["Dashboard"])


@dashboard_router.get("")
async def dashboard(request: Request):
    overview = wiring.dashboard_service().overview(current_principal(request))
    body = {
        "total_students": overview.total_students,
        "students_by_status": overview.students_by_status,
        "total_teachers": overview.total_teachers,
        "total_courses": overview.total_courses,
        "total_departments": overview.total_departments,
        "total_enrollments": overview.total_enrollments,
        "active_enrollments": overview.active_enrollments,
        "average_attendance_rate": round(overview.average_attendance_rate, 2),
    }
    body.update(fraction_fields(overview.average_gpa, "average_gpa"))
    return json_private(body)
