"""
Academic records API: status codes, error envelopes and serialized shapes
for the main flows (catalogue, enrollment, grading, attendance, dashboard).
"""
from __future__ import annotations

from datetime import date, timedelta

import httpx
import pytest
from httpx import ASGITransport

from backend.web import main

from conftest import ADMIN_EMAIL, ADMIN_PASSWORD, MEMBER_PASSWORD

pytestmark = pytest.mark.anyio("asyncio")


def _client() -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=ASGITransport(app=main.app), base_url="http://test")


async def _headers(client: httpx.AsyncClient, email: str, password: str = MEMBER_PASSWORD) -> dict:
    r = await client.post("/api/auth/login", json={"email": email, "password": password})
    assert r.status_code == 200, r.text
    return {"Authorization": f"Bearer {r.json()['token']}"}


async def _admin(client: httpx.AsyncClient) -> dict:
    return await _headers(client, ADMIN_EMAIL, ADMIN_PASSWORD)


async def test_department_crud(repo, admin):
    async with _client() as client:
        h = await _admin(client)
        created = await client.post("/api/v1/departments", json={"name": "History", "code": "hist"}, headers=h)
        dept_id = created.json()["id"]
        dup = await client.post("/api/v1/departments", json={"name": "History", "code": "HIS2"}, headers=h)
        listed = await client.get("/api/v1/departments", params={"search": "hist"}, headers=h)
        updated = await client.put(
            f"/api/v1/departments/{dept_id}", json={"name": "World History", "code": "WHIST"}, headers=h
        )
        deleted = await client.delete(f"/api/v1/departments/{dept_id}", headers=h)
        missing = await client.get(f"/api/v1/departments/{dept_id}", headers=h)

    assert created.status_code == 201
    assert created.json()["code"] == "HIST"
    assert dup.status_code == 409
    assert listed.json()["total_elements"] == 1
    assert listed.json()["content"][0]["name"] == "History"
    assert updated.json()["code"] == "WHIST"
    assert deleted.status_code == 204
    assert missing.status_code == 404
    body = missing.json()
    assert body["error"] == "Not Found"
    assert body["path"] == f"/api/v1/departments/{dept_id}"
    assert missing.headers.get("Cache-Control") == "private, no-store"


async def test_department_delete_with_students_is_400(campus):
    async with _client() as client:
        h = await _admin(client)
        r = await client.delete(f"/api/v1/departments/{campus.department.id}", headers=h)
    assert r.status_code == 400
    assert r.json()["message"] == "Cannot delete department with 2 active student(s)"


async def test_student_role_is_forbidden_from_admin_routes(campus):
    async with _client() as client:
        h = await _headers(client, campus.students[0].email)
        r = await client.post("/api/v1/departments", json={"name": "Art", "code": "ART"}, headers=h)
        dash = await client.get("/api/v1/dashboard", headers=h)
    assert r.status_code == 403
    assert r.json()["error"] == "Forbidden"
    assert dash.status_code == 403


async def test_create_student_returns_credentials_once(campus):
    payload = {
        "first_name": "Katherine",
        "last_name": "Johnson",
        "email": "kj@studify.test",
        "date_of_birth": "2003-08-26",
        "department_id": campus.department.id,
    }
    async with _client() as client:
        h = await _admin(client)
        r = await client.post("/api/v1/students", json=payload, headers=h)
        fetched = await client.get(f"/api/v1/students/{r.json()['id']}", headers=h)
    assert r.status_code == 201
    body = r.json()
    assert body["username"] == "katherine.johnson"
    assert body["initial_password"]
    assert body["full_name"] == "Katherine Johnson"
    assert "initial_password" not in fetched.json()


async def test_student_me_and_foreign_profile(campus):
    async with _client() as client:
        h = await _headers(client, campus.students[0].email)
        me = await client.get("/api/v1/students/me", headers=h)
        other = await client.get(f"/api/v1/students/{campus.students[1].id}", headers=h)
    assert me.json()["id"] == campus.students[0].id
    assert other.status_code == 403


async def test_student_soft_delete_and_restore_via_api(campus):
    sid = campus.students[1].id
    async with _client() as client:
        h = await _admin(client)
        gone = await client.delete(f"/api/v1/students/{sid}", headers=h)
        hidden = await client.get(f"/api/v1/students/{sid}", headers=h)
        deleted = await client.get("/api/v1/students/deleted", headers=h)
        restored = await client.post(f"/api/v1/students/{sid}/restore", headers=h)
        again = await client.post(f"/api/v1/students/{sid}/restore", headers=h)
    assert gone.status_code == 204
    assert hidden.status_code == 404
    assert [s["id"] for s in deleted.json()["content"]] == [sid]
    assert restored.json()["status"] == "ACTIVE"
    assert again.status_code == 400


async def test_course_payload_carries_seats_and_hides_owner_ids(campus):
    async with _client() as client:
        h = await _headers(client, campus.students[0].email)
        r = await client.get(f"/api/v1/courses/{campus.course.id}", headers=h)
        by_code = await client.get("/api/v1/courses/code/cs101", headers=h)
    body = r.json()
    assert body["available_seats"] == 30
    assert body["is_full"] is False
    assert "teacher_user_id" not in body
    assert by_code.json()["id"] == campus.course.id


async def test_course_capacity_reduction_below_enrollment(campus):
    async with _client() as client:
        h = await _admin(client)
        course = campus.add_course("CS140", max_capacity=12)
        for _ in range(11):
            s = campus.add_student()
            r = await client.post("/api/v1/enrollments", json={"student_id": s.id, "course_id": course.id}, headers=h)
            assert r.status_code == 201
        shrink = await client.put(f"/api/v1/courses/{course.id}", json={"max_capacity": 10}, headers=h)
        bad = await client.put(f"/api/v1/courses/{course.id}", json={"max_capacity": 500}, headers=h)
        after = await client.get(f"/api/v1/courses/{course.id}", headers=h)
    assert shrink.status_code == 400
    assert bad.status_code == 400
    assert "max_capacity" in bad.json()["fieldErrors"]
    assert after.json()["max_capacity"] == 12
    assert after.json()["enrolled_count"] == 11


async def test_course_teacher_cleared_by_explicit_null(campus):
    async with _client() as client:
        h = await _admin(client)
        renamed = await client.put(f"/api/v1/courses/{campus.course.id}", json={"name": "Intro to CS"}, headers=h)
        cleared = await client.put(f"/api/v1/courses/{campus.course.id}", json={"teacher_id": None}, headers=h)
    assert renamed.json()["teacher_id"] == campus.teacher.id
    assert cleared.status_code == 200
    assert cleared.json()["teacher_id"] is None


async def test_enrollment_flow(campus):
    ada = campus.students[0]
    async with _client() as client:
        h = await _headers(client, ada.email)
        created = await client.post("/api/v1/enrollments", json={"student_id": ada.id, "course_id": campus.course.id}, headers=h)
        dup = await client.post("/api/v1/enrollments", json={"student_id": ada.id, "course_id": campus.course.id}, headers=h)
        foreign = await client.post(
            "/api/v1/enrollments", json={"student_id": campus.students[1].id, "course_id": campus.course.id}, headers=h
        )
        mine = await client.get(f"/api/v1/enrollments/student/{ada.id}", headers=h)
        dropped = await client.put(f"/api/v1/enrollments/{created.json()['id']}/drop", headers=h)
        active = await client.get(f"/api/v1/enrollments/student/{ada.id}/active", headers=h)
    assert created.status_code == 201
    assert created.json()["status"] == "ACTIVE"
    assert created.json()["attendance_percentage"] == 0.0
    assert dup.status_code == 409
    assert dup.json()["message"] == "Student is already enrolled in this course"
    assert foreign.status_code == 403
    assert mine.json()["total_elements"] == 1
    assert dropped.json()["status"] == "DROPPED"
    assert active.json() == []


async def test_grades_and_exact_gpa(campus):
    ada = campus.students[0]
    second = campus.add_course("CS160")
    third = campus.add_course("CS170")
    async with _client() as client:
        admin_h = await _admin(client)
        teacher_h = await _headers(client, campus.teacher.email)
        enrollment_ids = []
        for course in (campus.course, second, third):
            r = await client.post("/api/v1/enrollments", json={"student_id": ada.id, "course_id": course.id}, headers=admin_h)
            enrollment_ids.append(r.json()["id"])
        by_teacher = await client.post("/api/v1/grades", json={"enrollment_id": enrollment_ids[0], "grade": "A+"}, headers=teacher_h)
        foreign = await client.post("/api/v1/grades", json={"enrollment_id": enrollment_ids[1], "grade": "A"}, headers=teacher_h)
        await client.post("/api/v1/grades", json={"enrollment_id": enrollment_ids[1], "grade": "B"}, headers=admin_h)
        await client.post("/api/v1/grades", json={"enrollment_id": enrollment_ids[2], "grade": "C"}, headers=admin_h)
        student_h = await _headers(client, ada.email)
        gpa = await client.get(f"/api/v1/grades/student/{ada.id}/gpa", headers=student_h)
        transcript = await client.get(f"/api/v1/grades/student/{ada.id}/transcript", headers=student_h)
        other_h = await _headers(client, campus.students[1].email)
        peek = await client.get(f"/api/v1/grades/student/{ada.id}", headers=other_h)
        distribution = await client.get(f"/api/v1/grades/course/{campus.course.id}/distribution", headers=teacher_h)
    assert by_teacher.status_code == 200
    assert by_teacher.json()["grade"] == "A+"
    assert by_teacher.json()["grade_point"] == 4.0
    assert foreign.status_code == 403
    assert gpa.json()["gpa_exact"] == "37/12"
    assert gpa.json()["gpa"] == round(37 / 12, 4)
    assert gpa.json()["graded_courses"] == 3
    assert transcript.json()["cumulative_gpa_exact"] == "37/12"
    assert transcript.json()["total_credits_earned"] == 9
    assert peek.status_code == 403
    assert distribution.json()["A+"] == 1


async def test_grade_by_id_is_forbidden_to_other_students(campus):
    linus = campus.students[1]
    async with _client() as client:
        admin_h = await _admin(client)
        enrollment = (
            await client.post("/api/v1/enrollments", json={"student_id": linus.id, "course_id": campus.course.id}, headers=admin_h)
        ).json()
        grade = (await client.post("/api/v1/grades", json={"enrollment_id": enrollment["id"], "grade": "B+"}, headers=admin_h)).json()
        ada_h = await _headers(client, campus.students[0].email)
        foreign = await client.get(f"/api/v1/grades/{grade['id']}", headers=ada_h)
        missing = await client.get("/api/v1/grades/999", headers=ada_h)
        own = await client.get(f"/api/v1/grades/{grade['id']}", headers=await _headers(client, linus.email))
    assert foreign.status_code == 403
    assert missing.status_code == 403
    assert missing.json()["error"] == "Forbidden"
    assert own.json()["grade"] == "B+"


async def test_attendance_via_api(campus):
    ada = campus.students[0]
    today = date.today()
    async with _client() as client:
        admin_h = await _admin(client)
        enrollment = (
            await client.post("/api/v1/enrollments", json={"student_id": ada.id, "course_id": campus.course.id}, headers=admin_h)
        ).json()
        teacher_h = await _headers(client, campus.teacher.email)
        future = await client.post(
            "/api/v1/attendance",
            json={
                "course_id": campus.course.id,
                "date": (today + timedelta(days=1)).isoformat(),
                "records": [{"enrollment_id": enrollment["id"], "status": "PRESENT"}],
            },
            headers=teacher_h,
        )
        marked = await client.post(
            "/api/v1/attendance",
            json={
                "course_id": campus.course.id,
                "date": today.isoformat(),
                "records": [{"enrollment_id": enrollment["id"], "status": "LATE", "remarks": "Traffic"}],
            },
            headers=teacher_h,
        )
        by_day = await client.get(
            f"/api/v1/attendance/course/{campus.course.id}", params={"date": today.isoformat()}, headers=teacher_h
        )
        pct = await client.get(f"/api/v1/attendance/enrollment/{enrollment['id']}/percentage", headers=teacher_h)
        other_h = await _headers(client, campus.other_teacher.email)
        stats = await client.get(f"/api/v1/attendance/course/{campus.course.id}/statistics", headers=other_h)
    assert future.status_code == 400
    assert future.json()["message"] == "Cannot mark attendance for future dates"
    assert marked.status_code == 200
    summary = marked.json()
    assert summary["late"] == 1
    assert summary["total_active_enrollments"] == 1
    assert summary["attendance_rate"] == 100.0
    assert by_day.json()[0]["status"] == "LATE"
    assert pct.json()["attendance_percentage"] == 100.0
    assert stats.status_code == 403


async def test_dashboard_shape(campus):
    async with _client() as client:
        h = await _admin(client)
        r = await client.get("/api/v1/dashboard", headers=h)
    body = r.json()
    assert r.status_code == 200
    assert body["total_students"] == 2
    assert body["total_teachers"] == 2
    assert body["average_gpa"] is None
    assert body["average_gpa_exact"] is None


async def test_invalid_paging_is_400_with_field_errors(campus):
    async with _client() as client:
        h = await _admin(client)
        r = await client.get("/api/v1/courses", params={"sort": "secret", "size": 0}, headers=h)
    assert r.status_code == 400
    assert set(r.json()["fieldErrors"]) == {"sort", "size"}


async def test_unknown_route_uses_envelope(campus):
    async with _client() as client:
        h = await _admin(client)
        r = await client.get("/api/v1/nothing-here", headers=h)
    assert r.status_code == 404
    assert r.json()["error"] == "Not Found"
