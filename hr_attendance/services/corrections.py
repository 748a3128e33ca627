"""Correction requests against past attendance records.

A request is created by the record's owner and resolved exactly once by a
reviewer. Approval rewrites the requested clock times on the parent record
and locks it for payroll in the same transaction that flips the request to
``approved``; rejection leaves the parent record untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
from typing import Literal

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from hr_attendance.errors import ApiError
from hr_attendance.models import (
    AttendanceCorrection,
    AttendanceRecord,
    CorrectionStatus,
    CorrectionType,
    Employee,
    NotificationType,
)
from hr_attendance.schemas import CorrectionCreateRequest
from hr_attendance.services.attendance import get_owned_record
from hr_attendance.services.attendance_config import get_attendance_config
from hr_attendance.services.identity import Caller, list_company_reviewers, require_reviewer
from hr_attendance.services.notifications import enqueue_for_employees, enqueue_notification
from hr_attendance.services.timesheet import apply_derived_metrics, local_day_start_utc, normalize_ts
from hr_attendance.settings import get_settings

logger = logging.getLogger("hr_attendance.corrections")

ReviewAction = Literal["approve", "reject"]
CORRECTION_LIST_LIMIT = 500


@dataclass(frozen=True)
class SubmittedCorrection:
    correction: AttendanceCorrection
    deadline: datetime
    within_deadline: bool


def compute_submission_deadline(record: AttendanceRecord, window_hours: int) -> datetime:
    return local_day_start_utc(record.attendance_date) + timedelta(hours=window_hours)


def _invalid(message: str) -> ApiError:
    return ApiError(status_code=400, code="INVALID_CORRECTION", message=message)


def _validate_requested_times(payload: CorrectionCreateRequest) -> None:
    requested_in = payload.requested_clock_in
    requested_out = payload.requested_clock_out
    correction_type = payload.correction_type

    if correction_type == CorrectionType.CLOCK_IN and requested_in is None:
        raise _invalid("requested_clock_in is required for a clock-in correction.")
    if correction_type == CorrectionType.CLOCK_OUT and requested_out is None:
        raise _invalid("requested_clock_out is required for a clock-out correction.")
    if correction_type == CorrectionType.BOTH and (requested_in is None or requested_out is None):
        raise _invalid("Both requested_clock_in and requested_clock_out are required.")
    if correction_type == CorrectionType.FULL_RECORD and requested_in is None and requested_out is None:
        raise _invalid("At least one requested time is required.")
    if requested_in is not None and requested_out is not None:
        if normalize_ts(requested_out) <= normalize_ts(requested_in):
            raise _invalid("requested_clock_out must be later than requested_clock_in.")


def submit_correction(
    db: Session,
    caller: Caller,
    payload: CorrectionCreateRequest,
    *,
    now_utc: datetime | None = None,
) -> SubmittedCorrection:
    now = normalize_ts(now_utc)
    record = get_owned_record(db, caller, payload.attendance_record_id)

    min_length = get_settings().correction_reason_min_length
    reason = payload.reason.strip()
    if len(reason) < min_length:
        raise ApiError(
            status_code=400,
            code="REASON_TOO_SHORT",
            message=f"Reason must be at least {min_length} characters",
            extra={"min_length": min_length},
        )
    _validate_requested_times(payload)

    pending_id = db.scalar(
        select(AttendanceCorrection.id).where(
            AttendanceCorrection.attendance_record_id == record.id,
            AttendanceCorrection.status == CorrectionStatus.PENDING,
        )
    )
    if pending_id is not None:
        raise ApiError(
            status_code=400,
            code="CORRECTION_PENDING",
            message="A correction for this attendance record is already awaiting review.",
            extra={"correction_id": pending_id},
        )

    config = get_attendance_config(db, caller.company_id)
    deadline = compute_submission_deadline(record, config.correction_window_hours)
    # Informational only: late submissions are accepted and left to reviewer discretion.
    within_deadline = now <= deadline

    correction = AttendanceCorrection(
        employee_id=caller.employee_id,
        attendance_record_id=record.id,
        correction_type=payload.correction_type,
        requested_clock_in=normalize_ts(payload.requested_clock_in) if payload.requested_clock_in else None,
        requested_clock_out=normalize_ts(payload.requested_clock_out) if payload.requested_clock_out else None,
        reason=reason,
        attachment_url=payload.attachment_url,
        submission_deadline=deadline,
        is_within_deadline=within_deadline,
        status=CorrectionStatus.PENDING,
    )
    db.add(correction)
    db.flush()

    reviewers = [
        reviewer
        for reviewer in list_company_reviewers(db, caller.company_id)
        if reviewer.id != caller.employee_id
    ]
    enqueue_for_employees(
        db,
        recipients=reviewers,
        notification_type=NotificationType.CORRECTION_SUBMITTED,
        title="Attendance Correction Submitted",
        message=(
            f"{caller.employee.full_name} requested a {payload.correction_type.value.replace('_', ' ')} "
            f"correction for {record.attendance_date.isoformat()}."
        ),
        data={
            "correction_id": correction.id,
            "attendance_id": record.id,
            "employee_id": caller.employee_id,
            "within_deadline": within_deadline,
        },
        now_utc=now,
    )
    db.commit()
    db.refresh(correction)

    logger.info(
        "correction_submitted",
        extra={
            "employee_id": caller.employee_id,
            "correction_id": correction.id,
            "attendance_id": record.id,
            "within_deadline": within_deadline,
            "notified_reviewers": len(reviewers),
        },
    )
    return SubmittedCorrection(correction=correction, deadline=deadline, within_deadline=within_deadline)


def _already_reviewed(correction: AttendanceCorrection) -> ApiError:
    return ApiError(
        status_code=400,
        code="CORRECTION_ALREADY_REVIEWED",
        message=f"This correction has already been reviewed (status: {correction.status.value}).",
        extra={"correction_id": correction.id, "status": correction.status.value},
    )


def _load_reviewable_correction(db: Session, caller: Caller, correction_id: int) -> AttendanceCorrection:
    correction = db.get(AttendanceCorrection, correction_id)
    if correction is None:
        raise ApiError(status_code=404, code="CORRECTION_NOT_FOUND", message="Correction request not found")
    owner = db.get(Employee, correction.employee_id)
    if owner is None or not caller.can_access_company(owner.company_id):
        raise ApiError(status_code=404, code="CORRECTION_NOT_FOUND", message="Correction request not found")
    return correction


def _apply_correction_to_record(
    record: AttendanceRecord,
    correction: AttendanceCorrection,
    *,
    reviewer_id: int,
    company_grace_minutes: int | None = None,
) -> None:
    if correction.requested_clock_in is not None:
        record.clock_in_time = correction.requested_clock_in
    if correction.requested_clock_out is not None:
        record.clock_out_time = correction.requested_clock_out

    if record.clock_out_time is not None:
        if record.clock_in_time is None:
            raise _invalid("Cannot set a clock-out time on a record without a clock-in time.")
        if normalize_ts(record.clock_out_time) <= normalize_ts(record.clock_in_time):
            raise _invalid("Corrected clock-out must be later than clock-in.")

    record.locked_for_payroll = True
    record.is_provisional = False
    record.is_manually_adjusted = True
    record.adjusted_by = reviewer_id
    record.correction_id = correction.id
    apply_derived_metrics(record, record.shift, company_grace_minutes=company_grace_minutes)


def review_correction(
    db: Session,
    caller: Caller,
    *,
    correction_id: int,
    action: ReviewAction,
    reviewer_notes: str | None = None,
    now_utc: datetime | None = None,
) -> AttendanceCorrection:
    require_reviewer(caller, message="Only HR administrators can review correction requests.")
    now = normalize_ts(now_utc)
    correction = _load_reviewable_correction(db, caller, correction_id)
    if correction.status != CorrectionStatus.PENDING:
        raise _already_reviewed(correction)

    new_status = CorrectionStatus.APPROVED if action == "approve" else CorrectionStatus.REJECTED
    result = db.execute(
        update(AttendanceCorrection)
        .where(
            AttendanceCorrection.id == correction.id,
            AttendanceCorrection.status == CorrectionStatus.PENDING,
        )
        .values(
            status=new_status,
            reviewed_by=caller.employee_id,
            reviewed_at=now,
            reviewer_notes=reviewer_notes,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(correction)
        raise _already_reviewed(correction)
    db.refresh(correction)

    record = correction.attendance_record
    try:
        if new_status == CorrectionStatus.APPROVED:
            config = get_attendance_config(db, correction.employee.company_id)
            _apply_correction_to_record(
                record,
                correction,
                reviewer_id=caller.employee_id,
                company_grace_minutes=config.grace_period_minutes,
            )
            notification_type = NotificationType.CORRECTION_APPROVED
            title = "Correction Approved"
            message = f"Your attendance correction for {record.attendance_date.isoformat()} was approved."
        else:
            notification_type = NotificationType.CORRECTION_REJECTED
            title = "Correction Rejected"
            message = f"Your attendance correction for {record.attendance_date.isoformat()} was rejected."

        enqueue_notification(
            db,
            employee_id=correction.employee_id,
            notification_type=notification_type,
            title=title,
            message=message,
            data={
                "correction_id": correction.id,
                "attendance_id": record.id,
                "reviewer_notes": reviewer_notes,
            },
            now_utc=now,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(correction)

    logger.info(
        "correction_reviewed",
        extra={
            "correction_id": correction.id,
            "attendance_id": record.id,
            "action": action,
            "reviewer_id": caller.employee_id,
            "within_deadline": correction.is_within_deadline,
        },
    )
    return correction


def list_corrections(
    db: Session,
    caller: Caller,
    *,
    status: CorrectionStatus | None = None,
) -> list[AttendanceCorrection]:
    stmt = select(AttendanceCorrection).join(Employee, Employee.id == AttendanceCorrection.employee_id)
    if caller.is_reviewer:
        stmt = stmt.where(Employee.company_id == caller.company_id)
    else:
        stmt = stmt.where(AttendanceCorrection.employee_id == caller.employee_id)
    if status is not None:
        stmt = stmt.where(AttendanceCorrection.status == status)
    stmt = stmt.order_by(AttendanceCorrection.created_at.desc(), AttendanceCorrection.id.desc()).limit(
        CORRECTION_LIST_LIMIT
    )
    return list(db.scalars(stmt).all())
