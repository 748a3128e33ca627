from __future__ import annotations

import os
import unittest
from collections.abc import Generator
from datetime import datetime, timedelta, timezone
from unittest.mock import patch

from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy import select
from sqlalchemy.orm import Session

from hr_attendance.db import get_db
from hr_attendance.main import app
from hr_attendance.models import (
    AppRole,
    AttendanceCorrection,
    AuditLog,
    CorrectionStatus,
    OvertimeSession,
    OvertimeStatus,
)
from hr_attendance.routers.attendance import XLSX_MEDIA_TYPE
from hr_attendance.security import AuthIdentity, require_identity
from hr_attendance.settings import get_settings
from support import FAR_LAT, SITE_LAT, SITE_LON, Workspace, make_session, utc

REASON = "Phone battery died before I could clock out at the office."


class ApiTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.ws = Workspace(self.db)
        self.employee = self.ws.add_employee("amina")
        self.admin = self.ws.add_employee("hr-lead", roles=(AppRole.COMPANY_ADMIN,))
        self.user_id = self.employee.user_id
        app.dependency_overrides[get_db] = self._override_db
        app.dependency_overrides[require_identity] = self._override_identity
        self.client = TestClient(app)

    def tearDown(self) -> None:
        app.dependency_overrides.clear()
        self.db.close()

    def _override_db(self) -> Generator[Session, None, None]:
        yield self.db

    def _override_identity(self) -> AuthIdentity:
        return AuthIdentity(user_id=self.user_id, claims={"sub": self.user_id})

    def _audit_actions(self) -> list[str]:
        return list(self.db.scalars(select(AuditLog.action).order_by(AuditLog.id)).all())


class PlatformEndpointTests(ApiTestCase):
    def test_health_reports_worker_state(self) -> None:
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "scheduler_worker": False})

    def test_missing_token_returns_error_envelope(self) -> None:
        del app.dependency_overrides[require_identity]

        response = self.client.get("/hr-attendance/my-status", headers={"X-Request-Id": "req-401"})

        self.assertEqual(response.status_code, 401)
        self.assertEqual(
            response.json(),
            {"error": "Unauthorized", "code": "INVALID_TOKEN", "request_id": "req-401"},
        )
        self.assertEqual(response.headers["X-Request-Id"], "req-401")

    def test_valid_bearer_token_resolves_employee(self) -> None:
        del app.dependency_overrides[require_identity]
        token = jwt.encode(
            {
                "sub": self.employee.user_id,
                "aud": "authenticated",
                "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
            },
            "api-test-secret",
            algorithm="HS256",
        )
        with patch.dict(os.environ, {"JWT_SECRET": "api-test-secret"}, clear=False):
            get_settings.cache_clear()
            try:
                response = self.client.get(
                    "/hr-attendance/my-status",
                    headers={"Authorization": f"Bearer {token}"},
                )
            finally:
                get_settings.cache_clear()

        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["has_clocked_in"])

    def test_unset_secret_rejects_self_signed_token(self) -> None:
        del app.dependency_overrides[require_identity]
        token = jwt.encode(
            {
                "sub": self.employee.user_id,
                "aud": "authenticated",
                "exp": datetime.now(timezone.utc) + timedelta(minutes=5),
            },
            "",
            algorithm="HS256",
        )
        with patch.dict(os.environ, {"JWT_SECRET": ""}, clear=False):
            get_settings.cache_clear()
            try:
                response = self.client.get(
                    "/hr-attendance/my-status",
                    headers={"Authorization": f"Bearer {token}"},
                )
            finally:
                get_settings.cache_clear()

        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["code"], "AUTH_NOT_CONFIGURED")

    def test_unknown_user_has_no_employee_record(self) -> None:
        self.user_id = "ghost"
        response = self.client.get("/hr-attendance/my-status")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "EMPLOYEE_NOT_FOUND")

    def test_unknown_route_uses_error_envelope(self) -> None:
        response = self.client.get("/hr-attendance/does-not-exist/123")
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "NOT_FOUND")

    def test_validation_error_envelope(self) -> None:
        response = self.client.post(
            "/hr-attendance/clock-in",
            json={"site_id": self.ws.site.id, "latitude": 120.0, "longitude": SITE_LON},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "VALIDATION_ERROR")

    def test_unexpected_error_is_hidden_from_client(self) -> None:
        client = TestClient(app, raise_server_exceptions=False)
        with patch(
            "hr_attendance.routers.attendance.get_today_summary",
            side_effect=RuntimeError("database password is hunter2"),
        ):
            response = client.get("/hr-attendance/today-summary")

        self.assertEqual(response.status_code, 500)
        body = response.json()
        self.assertEqual(body["code"], "INTERNAL_ERROR")
        self.assertEqual(body["error"], "Internal server error")
        self.assertNotIn("hunter2", response.text)


class ClockEndpointTests(ApiTestCase):
    def _clock_in(self, lat: float = SITE_LAT):
        return self.client.post(
            "/hr-attendance/clock-in",
            json={"site_id": self.ws.site.id, "latitude": lat, "longitude": SITE_LON},
        )

    def test_clock_in_then_status_then_duplicate(self) -> None:
        first = self._clock_in()
        self.assertEqual(first.status_code, 200)
        attendance = first.json()["attendance"]
        self.assertTrue(first.json()["success"])
        self.assertIsNotNone(attendance["clock_in_time"])
        self.assertEqual(attendance["site_id"], self.ws.site.id)

        status = self.client.get("/hr-attendance/my-status").json()
        self.assertTrue(status["has_clocked_in"])
        self.assertFalse(status["has_clocked_out"])
        self.assertEqual(status["attendance"]["site"]["site_name"], "Head Office")
        self.assertIsNone(status["active_ot_session"])

        duplicate = self._clock_in()
        self.assertEqual(duplicate.status_code, 400)
        self.assertEqual(duplicate.json()["code"], "ALREADY_CLOCKED_IN")
        self.assertEqual(duplicate.json()["attendance_id"], attendance["id"])

    def test_clock_in_outside_geofence(self) -> None:
        response = self._clock_in(lat=FAR_LAT)
        self.assertEqual(response.status_code, 400)
        body = response.json()
        self.assertEqual(body["code"], "OUTSIDE_GEOFENCE")
        self.assertGreater(body["distance_m"], 1000)
        self.assertEqual(body["radius_m"], 100)

    def test_clock_out_unknown_record(self) -> None:
        response = self.client.post(
            "/hr-attendance/clock-out",
            json={"attendance_record_id": 9999, "latitude": SITE_LAT, "longitude": SITE_LON},
        )
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "ATTENDANCE_NOT_FOUND")

    def test_today_summary_and_sites(self) -> None:
        self._clock_in()

        summary = self.client.get("/hr-attendance/today-summary").json()
        self.assertEqual(summary["present_count"], 1)
        self.assertEqual(summary["total_employees"], 1)

        sites = self.client.get("/hr-attendance/sites").json()["sites"]
        self.assertEqual([site["site_name"] for site in sites], ["Head Office"])

    def test_list_records_rejects_inverted_range(self) -> None:
        response = self.client.get(
            "/hr-attendance",
            params={"start_date": "2026-03-10", "end_date": "2026-03-01"},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "INVALID_DATE_RANGE")


class CorrectionEndpointTests(ApiTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.record = self.ws.add_record(self.employee, clock_in=utc(1, 5))

    def _submit(self):
        return self.client.post(
            "/hr-attendance/corrections",
            json={
                "attendance_record_id": self.record.id,
                "correction_type": "clock_out",
                "requested_clock_out": "2026-03-02T10:00:00Z",
                "reason": REASON,
            },
        )

    def test_submit_then_review(self) -> None:
        created = self._submit()
        self.assertEqual(created.status_code, 200)
        correction_id = created.json()["correction"]["id"]
        self.assertEqual(created.json()["correction"]["status"], "pending")

        forbidden = self.client.post(
            "/hr-attendance/corrections",
            params={"action": "review"},
            json={"correction_id": correction_id, "action": "approve"},
        )
        self.assertEqual(forbidden.status_code, 403)
        self.assertEqual(forbidden.json()["code"], "FORBIDDEN")

        self.user_id = self.admin.user_id
        approved = self.client.post(
            "/hr-attendance/corrections",
            params={"action": "review"},
            json={"correction_id": correction_id, "action": "approve", "reviewer_notes": "ok"},
        )
        self.assertEqual(approved.status_code, 200)
        self.assertEqual(approved.json()["message"], "Correction approved successfully")
        self.assertEqual(self._audit_actions(), ["CORRECTION_APPROVED"])

        self.db.refresh(self.record)
        self.assertTrue(self.record.locked_for_payroll)

    def test_review_body_is_validated(self) -> None:
        self.user_id = self.admin.user_id
        response = self.client.post(
            "/hr-attendance/corrections",
            params={"action": "review"},
            json={"correction_id": 1},
        )
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "VALIDATION_ERROR")

    def test_short_reason_is_business_error(self) -> None:
        response = self.client.post(
            "/hr-attendance/corrections",
            json={
                "attendance_record_id": self.record.id,
                "correction_type": "clock_out",
                "requested_clock_out": "2026-03-02T10:00:00Z",
                "reason": "forgot",
            },
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["code"], "REASON_TOO_SHORT")

    def test_patch_review_and_listing(self) -> None:
        correction_id = self._submit().json()["correction"]["id"]
        self.user_id = self.admin.user_id

        rejected = self.client.patch(
            f"/hr-attendance/corrections/{correction_id}",
            json={"action": "reject", "reviewer_notes": "Badge log shows 17:30."},
        )
        self.assertEqual(rejected.status_code, 200)
        self.assertEqual(rejected.json()["action"], "reject")

        again = self.client.patch(f"/hr-attendance/corrections/{correction_id}", json={"action": "approve"})
        self.assertEqual(again.status_code, 400)
        self.assertEqual(again.json()["code"], "CORRECTION_ALREADY_REVIEWED")
        self.assertEqual(again.json()["status"], "rejected")

        listed = self.client.get("/hr-attendance/corrections", params={"status": "rejected"}).json()
        self.assertEqual([item["id"] for item in listed["corrections"]], [correction_id])
        stored = self.db.get(AttendanceCorrection, correction_id)
        self.db.refresh(stored)
        self.assertEqual(stored.status, CorrectionStatus.REJECTED)


class OvertimeEndpointTests(ApiTestCase):
    def test_reviewer_approves_completed_session(self) -> None:
        record = self.ws.add_record(self.employee, clock_in=utc(1, 0), clock_out=utc(10, 0))
        session = OvertimeSession(
            employee_id=self.employee.id,
            attendance_record_id=record.id,
            site_id=self.ws.site.id,
            ot_in_time=utc(10, 30),
            ot_in_latitude=SITE_LAT,
            ot_in_longitude=SITE_LON,
            ot_out_time=utc(12, 30),
            status=OvertimeStatus.COMPLETED,
            total_ot_hours=2.0,
        )
        self.db.add(session)
        self.db.commit()

        self.user_id = self.admin.user_id
        response = self.client.patch(f"/hr-attendance/ot-sessions/{session.id}/approve")

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["ot_session"]["is_approved"])
        self.assertEqual(response.json()["ot_session"]["approved_by"], self.admin.id)
        self.assertEqual(self._audit_actions(), ["OT_SESSION_APPROVED"])

        listed = self.client.get("/hr-attendance/ot-sessions", params={"status": "completed"}).json()
        self.assertEqual([item["id"] for item in listed["ot_sessions"]], [session.id])


class SettingsAndExportTests(ApiTestCase):
    def test_employee_reads_defaults_but_cannot_update(self) -> None:
        current = self.client.get("/hr-attendance/settings")
        self.assertEqual(current.status_code, 200)
        self.assertEqual(current.json()["correction_window_hours"], 24)
        self.assertTrue(current.json()["auto_clockout_enabled"])

        response = self.client.put("/hr-attendance/settings", json={"grace_period_minutes": 15})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(self._audit_actions(), [])

    def test_reviewer_updates_settings(self) -> None:
        self.user_id = self.admin.user_id

        response = self.client.put(
            "/hr-attendance/settings",
            json={"grace_period_minutes": 15, "notification_settings": {"late_arrival": False}},
        )

        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertEqual(body["grace_period_minutes"], 15)
        self.assertEqual(body["notification_settings"], {"late_arrival": False})
        self.assertEqual(body["ot_auto_close_hours"], 4)
        self.assertEqual(self._audit_actions(), ["ATTENDANCE_SETTINGS_UPDATED"])

    def test_reviewer_downloads_workbook(self) -> None:
        self.ws.add_record(self.employee, clock_in=utc(1, 0), clock_out=utc(10, 0))
        self.user_id = self.admin.user_id

        response = self.client.get(
            "/hr-attendance/export.xlsx",
            params={"start_date": "2026-03-01", "end_date": "2026-03-31"},
        )

        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.headers["content-type"].startswith(XLSX_MEDIA_TYPE))
        self.assertIn("attendance-2026-03-01-2026-03-31.xlsx", response.headers["content-disposition"])
        self.assertEqual(response.content[:2], b"PK")
        self.assertEqual(self._audit_actions(), ["ATTENDANCE_EXPORT_XLSX"])

    def test_export_guards(self) -> None:
        forbidden = self.client.get(
            "/hr-attendance/export.xlsx",
            params={"start_date": "2026-03-01", "end_date": "2026-03-31"},
        )
        self.assertEqual(forbidden.status_code, 403)

        self.user_id = self.admin.user_id
        inverted = self.client.get(
            "/hr-attendance/export.xlsx",
            params={"start_date": "2026-03-31", "end_date": "2026-03-01"},
        )
        self.assertEqual(inverted.status_code, 422)
        self.assertEqual(inverted.json()["code"], "INVALID_DATE_RANGE")


class SiteEndpointTests(ApiTestCase):
    def test_employee_cannot_manage_sites(self) -> None:
        created = self.client.post(
            "/hr-attendance/sites",
            json={"site_name": "Warehouse", "latitude": 3.2, "longitude": 101.7},
        )
        removed = self.client.delete(f"/hr-attendance/sites/{self.ws.site.id}")

        self.assertEqual(created.status_code, 403)
        self.assertEqual(removed.status_code, 403)
        self.assertEqual(self._audit_actions(), [])

    def test_site_lifecycle_and_my_sites(self) -> None:
        self.user_id = self.admin.user_id
        created = self.client.post(
            "/hr-attendance/sites",
            json={"site_name": "Warehouse", "latitude": 3.2, "longitude": 101.7},
        )
        self.assertEqual(created.status_code, 201)
        site = created.json()["site"]
        self.assertIsNone(site["radius_meters"])

        updated = self.client.patch(f"/hr-attendance/sites/{site['id']}", json={"radius_meters": 250})
        self.assertEqual(updated.json()["site"]["radius_meters"], 250)

        assigned = self.client.post(
            f"/hr-attendance/sites/{site['id']}/assignments",
            json={"employee_id": self.employee.id, "is_primary": True},
        )
        self.assertEqual(assigned.status_code, 200)
        self.assertTrue(assigned.json()["assignment"]["is_primary"])

        self.user_id = self.employee.user_id
        mine = self.client.get("/hr-attendance/my-sites").json()["sites"]
        self.assertEqual([item["site_name"] for item in mine], ["Warehouse"])

        self.user_id = self.admin.user_id
        removed = self.client.delete(f"/hr-attendance/sites/{site['id']}")
        self.assertEqual(removed.status_code, 200)
        self.assertFalse(removed.json()["site"]["is_active"])

        sites = self.client.get("/hr-attendance/sites").json()["sites"]
        self.assertEqual([item["site_name"] for item in sites], ["Head Office"])
        self.assertEqual(
            self._audit_actions(),
            ["WORK_SITE_CREATED", "WORK_SITE_UPDATED", "EMPLOYEE_SITE_ASSIGNED", "WORK_SITE_DEACTIVATED"],
        )

    def test_unknown_site_is_not_found(self) -> None:
        self.user_id = self.admin.user_id
        response = self.client.patch("/hr-attendance/sites/9999", json={"site_name": "Nowhere"})
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "SITE_NOT_FOUND")


class ReportEndpointTests(ApiTestCase):
    def test_reviewer_reads_reports(self) -> None:
        self.ws.add_record(self.employee, clock_in=utc(1, 0), clock_out=utc(10, 0))
        self.user_id = self.admin.user_id

        daily = self.client.get("/hr-attendance/reports/daily", params={"date": "2026-03-02"})
        self.assertEqual(daily.status_code, 200)
        self.assertEqual(daily.json()["present_count"], 1)
        self.assertEqual(daily.json()["total_staff"], 2)
        self.assertEqual(daily.json()["attendance_rate"], 50.0)

        monthly = self.client.get("/hr-attendance/reports/monthly", params={"year": 2026, "month": 3})
        self.assertEqual(monthly.status_code, 200)
        self.assertEqual(monthly.json()["working_days"], 22)

        stats = self.client.get(
            "/hr-attendance/reports/statistics",
            params={"start_date": "2026-03-01", "end_date": "2026-03-31"},
        )
        self.assertEqual(stats.status_code, 200)
        self.assertEqual(stats.json()["trend"], [{"date": "2026-03-02", "rate": 100.0}])

    def test_employee_cannot_read_reports(self) -> None:
        response = self.client.get("/hr-attendance/reports/daily", params={"date": "2026-03-02"})
        self.assertEqual(response.status_code, 403)

    def test_month_out_of_range_is_validation_error(self) -> None:
        self.user_id = self.admin.user_id
        response = self.client.get("/hr-attendance/reports/monthly", params={"year": 2026, "month": 13})
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["code"], "VALIDATION_ERROR")


if __name__ == "__main__":
    unittest.main()
