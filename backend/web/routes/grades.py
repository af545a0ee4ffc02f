"""
Grade API routes.

Why:
    One grade per enrollment; POST upserts it. The grade point is derived from
    the letter and never accepted as input.

Serialization:
    Averages are exact rationals; they are returned both as a rounded float
    (`gpa`, `average`) and as an exact string (`gpa_exact`, e.g. "37/12").
"""
from __future__ import annotations

from datetime import date
from typing import Optional

from fastapi import APIRouter, Request
from pydantic import BaseModel

from .. import wiring
from ..responses import current_principal, fraction_fields, grade_out, json_private, no_content, student_out

grades_router = APIRouter(prefix="/api/v1/grades", tags=["Grades"])


class GradeRequest(BaseModel):
    enrollment_id: int
    grade: Optional[str] = None
    remarks: Optional[str] = None
    graded_date: Optional[date] = None


@grades_router.post("")
async def add_or_update_grade(request: Request, payload: GradeRequest):
    grade = wiring.grades_service().add_or_update(
        current_principal(request),
        payload.enrollment_id,
        letter=payload.grade,
        remarks=payload.remarks,
        graded_date=payload.graded_date,
    )
    return json_private(grade_out(grade))


@grades_router.get("/enrollment/{enrollment_id}")
async def grade_by_enrollment(request: Request, enrollment_id: int):
    return json_private(grade_out(wiring.grades_service().get_by_enrollment(current_principal(request), enrollment_id)))


@grades_router.get("/student/{student_id}")
async def grades_by_student(request: Request, student_id: int, semester: Optional[str] = None):
    grades = wiring.grades_service().by_student(current_principal(request), student_id, semester=semester)
    return json_private([grade_out(g) for g in grades])


@grades_router.get("/student/{student_id}/gpa")
async def student_gpa(request: Request, student_id: int, semester: Optional[str] = None):
    result = wiring.grades_service().gpa(current_principal(request), student_id, semester=semester)
    body = {"student_id": result.student_id, "semester": result.semester, "graded_courses": result.graded_courses}
    body.update(fraction_fields(result.gpa))
    return json_private(body)


@grades_router.get("/student/{student_id}/transcript")
async def student_transcript(request: Request, student_id: int):
    transcript = wiring.grades_service().transcript(current_principal(request), student_id)
    semesters = []
    for record in transcript.semesters:
        entry = {
            "semester": record.semester,
            "grades": [grade_out(g) for g in record.grades],
            "total_credits": record.total_credits,
        }
        entry.update(fraction_fields(record.gpa))
        semesters.append(entry)
    body = {
        "student": student_out(transcript.student),
        "semesters": semesters,
        "total_credits_earned": transcript.total_credits_earned,
    }
    body.update(fraction_fields(transcript.cumulative_gpa, "cumulative_gpa"))
    return json_private(body)


@grades_router.get("/course/{course_id}")
async def grades_by_course(request: Request, course_id: int):
    grades = wiring.grades_service().by_course(current_principal(request), course_id)
    return json_private([grade_out(g) for g in grades])


@grades_router.get("/course/{course_id}/average")
async def course_average(request: Request, course_id: int):
    body = {"course_id": course_id}
    body.update(fraction_fields(wiring.grades_service().course_average(current_principal(request), course_id), "average"))
    return json_private(body)


@grades_router.get("/course/{course_id}/distribution")
async def grade_distribution(request: Request, course_id: int):
    return json_private(wiring.grades_service().distribution(current_principal(request), course_id))


@grades_router.get("/course/{course_id}/top")
async def top_performers(request: Request, course_id: int, limit: int = 5):
    grades = wiring.grades_service().top_performers(current_principal(request), course_id, limit=limit)
    return json_private([grade_out(g) for g in grades])


@grades_router.get("/{grade_id}")
async def get_grade(request: Request, grade_id: int):
    return json_private(grade_out(wiring.grades_service().get(current_principal(request), grade_id)))


@grades_router.delete("/{grade_id}")
async def delete_grade(request: Request, grade_id: int):
    wiring.grades_service().delete(current_principal(request), grade_id)
    return no_content()
