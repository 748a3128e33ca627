from __future__ import annotations

import unittest
from datetime import date, datetime, timezone

from sqlalchemy import select

from hr_attendance.errors import ApiError
from hr_attendance.models import (
    AppRole,
    AttendanceCorrection,
    AttendanceStatus,
    CorrectionStatus,
    CorrectionType,
    NotificationLog,
    NotificationType,
)
from hr_attendance.schemas import CorrectionCreateRequest
from hr_attendance.services.corrections import list_corrections, review_correction, submit_correction
from support import Workspace, as_utc, make_session, utc

REASON = "Phone battery died before I could clock out at the office."


class CorrectionTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.db = make_session()
        self.ws = Workspace(self.db)
        self.employee = self.ws.add_employee("amina")
        self.caller = self.ws.caller(self.employee)
        self.admin = self.ws.add_employee("hr-lead", roles=(AppRole.COMPANY_ADMIN,))
        self.hr_manager = self.ws.add_employee("hr-manager", roles=(AppRole.HR_MANAGER,))
        self.record = self.ws.add_record(self.employee, clock_in=utc(1, 5))

    def tearDown(self) -> None:
        self.db.close()

    def _payload(self, **overrides) -> CorrectionCreateRequest:
        values = {
            "attendance_record_id": self.record.id,
            "correction_type": CorrectionType.CLOCK_OUT,
            "requested_clock_out": utc(10, 0),
            "reason": REASON,
        }
        values.update(overrides)
        return CorrectionCreateRequest(**values)

    def _submit(self, **overrides) -> AttendanceCorrection:
        return submit_correction(self.db, self.caller, self._payload(**overrides), now_utc=utc(12, 0)).correction

    def _notifications(self, notification_type: NotificationType) -> list[NotificationLog]:
        return list(
            self.db.scalars(
                select(NotificationLog)
                .where(NotificationLog.notification_type == notification_type)
                .order_by(NotificationLog.employee_id)
            ).all()
        )


class SubmitCorrectionTests(CorrectionTestCase):
    def test_short_reason_is_rejected_after_trimming(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            self._submit(reason="   forgot to clock   ")
        self.assertEqual(ctx.exception.code, "REASON_TOO_SHORT")
        self.assertEqual(ctx.exception.extra["min_length"], 20)

    def test_submission_inside_window(self) -> None:
        result = submit_correction(self.db, self.caller, self._payload(), now_utc=utc(12, 0))

        self.assertTrue(result.within_deadline)
        self.assertEqual(as_utc(result.deadline), datetime(2026, 3, 2, 16, 0, tzinfo=timezone.utc))
        self.assertEqual(result.correction.status, CorrectionStatus.PENDING)
        self.assertEqual(result.correction.reason, REASON)

    def test_late_submission_is_accepted_but_flagged(self) -> None:
        result = submit_correction(
            self.db,
            self.caller,
            self._payload(),
            now_utc=datetime(2026, 3, 3, 9, 0, tzinfo=timezone.utc),
        )

        self.assertFalse(result.within_deadline)
        self.assertFalse(result.correction.is_within_deadline)
        self.assertEqual(result.correction.status, CorrectionStatus.PENDING)

    def test_reviewers_of_own_company_are_notified(self) -> None:
        other = Workspace(self.db, name="Other Co")
        other.add_employee("outside-admin", roles=(AppRole.COMPANY_ADMIN,))

        correction = self._submit()

        notified = self._notifications(NotificationType.CORRECTION_SUBMITTED)
        self.assertEqual([item.employee_id for item in notified], [self.admin.id, self.hr_manager.id])
        self.assertEqual(notified[0].data["correction_id"], correction.id)

    def test_reviewer_submitting_own_correction_is_not_notified(self) -> None:
        admin_record = self.ws.add_record(self.admin, clock_in=utc(1, 0))
        submit_correction(
            self.db,
            self.ws.caller(self.admin),
            self._payload(attendance_record_id=admin_record.id),
            now_utc=utc(12, 0),
        )

        notified = self._notifications(NotificationType.CORRECTION_SUBMITTED)
        self.assertEqual([item.employee_id for item in notified], [self.hr_manager.id])

    def test_second_pending_correction_is_rejected(self) -> None:
        first = self._submit()
        with self.assertRaises(ApiError) as ctx:
            self._submit()
        self.assertEqual(ctx.exception.code, "CORRECTION_PENDING")
        self.assertEqual(ctx.exception.extra["correction_id"], first.id)

    def test_missing_requested_time_is_invalid(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            self._submit(correction_type=CorrectionType.BOTH)
        self.assertEqual(ctx.exception.code, "INVALID_CORRECTION")

    def test_requested_out_before_in_is_invalid(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            self._submit(
                correction_type=CorrectionType.BOTH,
                requested_clock_in=utc(9, 0),
                requested_clock_out=utc(8, 0),
            )
        self.assertEqual(ctx.exception.code, "INVALID_CORRECTION")

    def test_cannot_correct_someone_elses_record(self) -> None:
        colleague = self.ws.add_employee("badrul")
        with self.assertRaises(ApiError) as ctx:
            submit_correction(self.db, self.ws.caller(colleague), self._payload(), now_utc=utc(12, 0))
        self.assertEqual(ctx.exception.code, "ATTENDANCE_NOT_FOUND")


class ReviewCorrectionTests(CorrectionTestCase):
    def setUp(self) -> None:
        super().setUp()
        self.correction = self._submit()
        self.admin_caller = self.ws.caller(self.admin)

    def test_employee_cannot_review(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            review_correction(self.db, self.caller, correction_id=self.correction.id, action="approve")
        self.assertEqual(ctx.exception.code, "FORBIDDEN")
        self.db.refresh(self.correction)
        self.assertEqual(self.correction.status, CorrectionStatus.PENDING)

    def test_hr_manager_is_notified_but_cannot_review(self) -> None:
        with self.assertRaises(ApiError) as ctx:
            review_correction(
                self.db,
                self.ws.caller(self.hr_manager),
                correction_id=self.correction.id,
                action="approve",
            )
        self.assertEqual(ctx.exception.status_code, 403)

    def test_approval_rewrites_and_locks_record(self) -> None:
        reviewed = review_correction(
            self.db,
            self.admin_caller,
            correction_id=self.correction.id,
            action="approve",
            reviewer_notes="Confirmed with site supervisor.",
            now_utc=utc(13, 0),
        )

        self.assertEqual(reviewed.status, CorrectionStatus.APPROVED)
        self.assertEqual(reviewed.reviewed_by, self.admin.id)
        self.db.refresh(self.record)
        self.assertEqual(as_utc(self.record.clock_in_time), utc(1, 5))
        self.assertEqual(as_utc(self.record.clock_out_time), utc(10, 0))
        self.assertTrue(self.record.locked_for_payroll)
        self.assertFalse(self.record.is_provisional)
        self.assertTrue(self.record.is_manually_adjusted)
        self.assertEqual(self.record.correction_id, self.correction.id)
        # 08:55 span minus a 60 minute lunch.
        self.assertEqual(self.record.hours_worked, 7.92)
        self.assertEqual(self.record.status, AttendanceStatus.ON_TIME)

        notified = self._notifications(NotificationType.CORRECTION_APPROVED)
        self.assertEqual([item.employee_id for item in notified], [self.employee.id])
        self.assertEqual(notified[0].data["reviewer_notes"], "Confirmed with site supervisor.")

    def test_clock_in_only_approval_keeps_existing_clock_out(self) -> None:
        friday = date(2026, 2, 27)
        record = self.ws.add_record(
            self.employee,
            day=friday,
            clock_in=utc(1, 30, day=friday),
            clock_out=utc(10, 0, day=friday),
            status=AttendanceStatus.LATE,
        )
        record.hours_worked = 7.5
        self.db.commit()
        correction = self._submit(
            attendance_record_id=record.id,
            correction_type=CorrectionType.CLOCK_IN,
            requested_clock_in=utc(1, 0, day=friday),
            requested_clock_out=None,
        )

        review_correction(self.db, self.admin_caller, correction_id=correction.id, action="approve")

        self.db.refresh(record)
        self.assertEqual(as_utc(record.clock_in_time), utc(1, 0, day=friday))
        self.assertEqual(as_utc(record.clock_out_time), utc(10, 0, day=friday))
        self.assertTrue(record.locked_for_payroll)
        self.assertEqual(record.hours_worked, 8.0)
        self.assertEqual(record.overtime_hours, 0.0)
        self.assertEqual(record.status, AttendanceStatus.ON_TIME)

    def test_rejection_leaves_record_untouched(self) -> None:
        reviewed = review_correction(self.db, self.admin_caller, correction_id=self.correction.id, action="reject")

        self.assertEqual(reviewed.status, CorrectionStatus.REJECTED)
        self.db.refresh(self.record)
        self.assertIsNone(self.record.clock_out_time)
        self.assertFalse(self.record.locked_for_payroll)
        self.assertEqual(len(self._notifications(NotificationType.CORRECTION_REJECTED)), 1)

    def test_correction_is_reviewed_only_once(self) -> None:
        review_correction(self.db, self.admin_caller, correction_id=self.correction.id, action="reject")

        with self.assertRaises(ApiError) as ctx:
            review_correction(self.db, self.admin_caller, correction_id=self.correction.id, action="approve")

        self.assertEqual(ctx.exception.code, "CORRECTION_ALREADY_REVIEWED")
        self.assertEqual(ctx.exception.extra["status"], "rejected")
        self.db.refresh(self.record)
        self.assertIsNone(self.record.clock_out_time)

    def test_reviewer_of_other_company_sees_not_found(self) -> None:
        other = Workspace(self.db, name="Other Co")
        outsider = other.add_employee("outside-admin", roles=(AppRole.COMPANY_ADMIN,))
        with self.assertRaises(ApiError) as ctx:
            review_correction(self.db, other.caller(outsider), correction_id=self.correction.id, action="approve")
        self.assertEqual(ctx.exception.code, "CORRECTION_NOT_FOUND")

    def test_super_admin_reviews_across_companies(self) -> None:
        other = Workspace(self.db, name="Other Co")
        root = other.add_employee("root", roles=(AppRole.SUPER_ADMIN,))

        reviewed = review_correction(self.db, other.caller(root), correction_id=self.correction.id, action="reject")

        self.assertEqual(reviewed.status, CorrectionStatus.REJECTED)

    def test_invalid_resulting_record_keeps_correction_pending(self) -> None:
        pending = AttendanceCorrection(
            employee_id=self.employee.id,
            attendance_record_id=self.record.id,
            correction_type=CorrectionType.CLOCK_OUT,
            requested_clock_out=utc(0, 30),
            reason=REASON,
            submission_deadline=utc(16, 0),
            is_within_deadline=True,
            status=CorrectionStatus.PENDING,
        )
        self.db.add(pending)
        self.db.commit()

        with self.assertRaises(ApiError) as ctx:
            review_correction(self.db, self.admin_caller, correction_id=pending.id, action="approve")

        self.assertEqual(ctx.exception.code, "INVALID_CORRECTION")
        self.db.refresh(pending)
        self.db.refresh(self.record)
        self.assertEqual(pending.status, CorrectionStatus.PENDING)
        self.assertIsNone(self.record.clock_out_time)
        self.assertFalse(self.record.locked_for_payroll)

    def test_list_corrections_scoping(self) -> None:
        colleague = self.ws.add_employee("badrul")

        self.assertEqual([item.id for item in list_corrections(self.db, self.admin_caller)], [self.correction.id])
        self.assertEqual([item.id for item in list_corrections(self.db, self.caller)], [self.correction.id])
        self.assertEqual(list_corrections(self.db, self.ws.caller(colleague)), [])
        self.assertEqual(list_corrections(self.db, self.admin_caller, status=CorrectionStatus.APPROVED), [])


if __name__ == "__main__":
    unittest.main()
