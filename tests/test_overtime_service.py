from __future__ import annotations

import unittest

from sqlalchemy.exc import IntegrityError

from hr_attendance.errors import ApiError
from hr_attendance.models import AppRole, OvertimeSession, OvertimeStatus
from hr_attendance.services.overtime import approve_ot_session, list_ot_sessions, ot_clock_in, ot_clock_out
from support import FAR_LAT, SITE_LAT, SITE_LON, Workspace, as_utc, make_session, utc


class OvertimeTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.ws = Workspace(self.db)
        self.employee = self.ws.add_employee("amina")
        self.caller = self.ws.caller(self.employee)
        self.closed_day = self.ws.add_record(self.employee, clock_in=utc(1, 0), clock_out=utc(10, 0))

    def tearDown(self) -> None:
        self.db.close()

    def _start(self, when=None) -> OvertimeSession:
        return ot_clock_in(
            self.db,
            self.caller,
            site_id=self.ws.site.id,
            attendance_record_id=self.closed_day.id,
            lat=SITE_LAT,
            lon=SITE_LON,
            now_utc=when or utc(10, 30),
        )


class OTClockInTests(OvertimeTestCase):
    def test_ot_in_requires_regular_clock_out(self) -> None:
        colleague = self.ws.add_employee("badrul")
        open_day = self.ws.add_record(colleague, clock_in=utc(1, 0))
        with self.assertRaises(ApiError) as ctx:
            ot_clock_in(
                self.db,
                self.ws.caller(colleague),
                site_id=self.ws.site.id,
                attendance_record_id=open_day.id,
                lat=SITE_LAT,
                lon=SITE_LON,
            )
        self.assertEqual(ctx.exception.code, "CLOCK_OUT_REQUIRED")

    def test_ot_in_opens_active_session(self) -> None:
        session = self._start()
        self.assertEqual(session.status, OvertimeStatus.ACTIVE)
        self.assertEqual(session.site_id, self.ws.site.id)
        self.assertIsNone(session.ot_out_time)

    def test_second_ot_in_is_rejected(self) -> None:
        first = self._start()
        with self.assertRaises(ApiError) as ctx:
            self._start(utc(11, 0))
        self.assertEqual(ctx.exception.code, "OT_SESSION_ACTIVE")
        self.assertEqual(ctx.exception.extra["ot_session_id"], first.id)

    def test_ot_in_outside_geofence(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            ot_clock_in(
                self.db,
                self.caller,
                site_id=self.ws.site.id,
                attendance_record_id=self.closed_day.id,
                lat=FAR_LAT,
                lon=SITE_LON,
            )
        self.assertEqual(ctx.exception.code, "OUTSIDE_GEOFENCE")

    def test_storage_allows_only_one_active_session(self) -> None:
        self._start()
        self.db.add(
            OvertimeSession(
                employee_id=self.employee.id,
                attendance_record_id=self.closed_day.id,
                site_id=self.ws.site.id,
                ot_in_time=utc(11, 0),
                ot_in_latitude=SITE_LAT,
                ot_in_longitude=SITE_LON,
                status=OvertimeStatus.ACTIVE,
            )
        )
        with self.assertRaises(IntegrityError):
            self.db.commit()
        self.db.rollback()


class OTClockOutTests(OvertimeTestCase):
    def test_ot_out_completes_session(self) -> None:
        session = self._start(utc(10, 30))

        closed = ot_clock_out(self.db, self.caller, lat=SITE_LAT, lon=SITE_LON, now_utc=utc(12, 45))

        self.assertEqual(closed.id, session.id)
        self.assertEqual(closed.status, OvertimeStatus.COMPLETED)
        self.assertEqual(closed.total_ot_hours, 2.25)
        self.assertEqual(as_utc(closed.ot_out_time), utc(12, 45))

    def test_mismatched_site_is_rejected_even_inside_its_geofence(self) -> None:
        annex = self.ws.add_site("Annex", FAR_LAT, SITE_LON)
        session = self._start()

        with self.assertRaises(ApiError) as ctx:
            ot_clock_out(
                self.db,
                self.caller,
                ot_session_id=session.id,
                site_id=annex.id,
                lat=annex.latitude,
                lon=annex.longitude,
            )

        self.assertEqual(ctx.exception.code, "OT_SITE_MISMATCH")
        self.db.refresh(session)
        self.assertEqual(session.status, OvertimeStatus.ACTIVE)

    def test_ot_out_outside_original_site(self) -> None:
        self._start()
        with self.assertRaises(ApiError) as ctx:
            ot_clock_out(self.db, self.caller, lat=FAR_LAT, lon=SITE_LON)
        self.assertEqual(ctx.exception.code, "OUTSIDE_GEOFENCE_CLOCK_OUT")

    def test_completed_session_cannot_be_closed_again(self) -> None:
        session = self._start()
        ot_clock_out(self.db, self.caller, lat=SITE_LAT, lon=SITE_LON, now_utc=utc(11, 30))

        with self.assertRaises(ApiError) as ctx:
            ot_clock_out(self.db, self.caller, ot_session_id=session.id, lat=SITE_LAT, lon=SITE_LON)

        self.assertEqual(ctx.exception.code, "OT_SESSION_NOT_ACTIVE")
        self.assertEqual(ctx.exception.extra["status"], "completed")

    def test_ot_out_without_active_session(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            ot_clock_out(self.db, self.caller, lat=SITE_LAT, lon=SITE_LON)
        self.assertEqual(ctx.exception.code, "OT_SESSION_NOT_FOUND")


class OTApprovalTests(OvertimeTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.admin = self.ws.add_employee("hr-lead", roles=(AppRole.COMPANY_ADMIN,))
        self.admin_caller = self.ws.caller(self.admin)

    def test_employee_cannot_approve(self) -> None:
        session = self._start()
        ot_clock_out(self.db, self.caller, lat=SITE_LAT, lon=SITE_LON, now_utc=utc(11, 30))
        with self.assertRaises(ApiError) as ctx:
            approve_ot_session(self.db, self.caller, ot_session_id=session.id)
        self.assertEqual(ctx.exception.code, "FORBIDDEN")

    def test_reviewer_approves_completed_session_once(self) -> None:
        session = self._start()
        ot_clock_out(self.db, self.caller, lat=SITE_LAT, lon=SITE_LON, now_utc=utc(11, 30))

        approved = approve_ot_session(self.db, self.admin_caller, ot_session_id=session.id, now_utc=utc(12, 0))

        self.assertTrue(approved.is_approved)
        self.assertEqual(approved.approved_by, self.admin.id)
        with self.assertRaises(ApiError) as ctx:
            approve_ot_session(self.db, self.admin_caller, ot_session_id=session.id)
        self.assertEqual(ctx.exception.code, "OT_NOT_APPROVABLE")

    def test_active_session_is_not_approvable(self) -> None:
        session = self._start()
        with self.assertRaises(ApiError) as ctx:
            approve_ot_session(self.db, self.admin_caller, ot_session_id=session.id)
        self.assertEqual(ctx.exception.code, "OT_NOT_APPROVABLE")

    def test_reviewer_of_other_company_sees_not_found(self) -> None:
        session = self._start()
        other = Workspace(self.db, name="Other Co")
        outsider = other.add_employee("outside-admin", roles=(AppRole.COMPANY_ADMIN,))
        with self.assertRaises(ApiError) as ctx:
            approve_ot_session(self.db, other.caller(outsider), ot_session_id=session.id)
        self.assertEqual(ctx.exception.code, "OT_SESSION_NOT_FOUND")

    def test_list_ot_sessions_scoping(self) -> None:
        session = self._start()
        colleague = self.ws.add_employee("badrul")

        self.assertEqual([item.id for item in list_ot_sessions(self.db, self.admin_caller)], [session.id])
        self.assertEqual(list_ot_sessions(self.db, self.ws.caller(colleague)), [])
        self.assertEqual(
            list_ot_sessions(self.db, self.caller, status=OvertimeStatus.COMPLETED),
            [],
        )


if __name__ == "__main__":
    unittest.main()
