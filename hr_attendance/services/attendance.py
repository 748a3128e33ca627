from __future__ import annotations

from datetime import date, datetime
import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from hr_attendance.errors import ApiError
from hr_attendance.models import (
    AttendanceRecord,
    AttendanceStatus,
    Employee,
    OvertimeSession,
    OvertimeStatus,
)
from hr_attendance.services.attendance_config import get_attendance_config
from hr_attendance.services.identity import Caller
from hr_attendance.services.leaves import is_employee_on_leave
from hr_attendance.services.location import resolve_site, validate_site_geofence
from hr_attendance.services.shifts import resolve_effective_shift
from hr_attendance.services.timesheet import apply_derived_metrics, local_day, normalize_ts

logger = logging.getLogger("hr_attendance.attendance")

RECORD_LIST_LIMIT = 500


def _iso(value: datetime | None) -> str | None:
    if value is None:
        return None
    return normalize_ts(value).isoformat()


def _find_record_for_day(db: Session, *, employee_id: int, day: date) -> AttendanceRecord | None:
    return db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.employee_id == employee_id,
            AttendanceRecord.attendance_date == day,
        )
    )


def get_owned_record(db: Session, caller: Caller, attendance_record_id: int) -> AttendanceRecord:
    record = db.scalar(
        select(AttendanceRecord).where(
            AttendanceRecord.id == attendance_record_id,
            AttendanceRecord.employee_id == caller.employee_id,
        )
    )
    if record is None:
        raise ApiError(status_code=404, code="ATTENDANCE_NOT_FOUND", message="Attendance record not found")
    return record


def _already_clocked_in(record: AttendanceRecord) -> ApiError:
    return ApiError(
        status_code=400,
        code="ALREADY_CLOCKED_IN",
        message="Already clocked in today",
        extra={"attendance_id": record.id, "clock_in_time": _iso(record.clock_in_time)},
    )


def _already_clocked_out(record: AttendanceRecord) -> ApiError:
    return ApiError(
        status_code=400,
        code="ALREADY_CLOCKED_OUT",
        message="Already clocked out",
        extra={"attendance_id": record.id, "clock_out_time": _iso(record.clock_out_time)},
    )


def _record_locked(record: AttendanceRecord) -> ApiError:
    return ApiError(
        status_code=400,
        code="RECORD_LOCKED",
        message="This attendance record is locked for payroll. Please contact HR to make changes.",
        extra={"attendance_id": record.id},
    )


def clock_in(
    db: Session,
    caller: Caller,
    *,
    site_id: int,
    lat: float,
    lon: float,
    now_utc: datetime | None = None,
) -> AttendanceRecord:
    now = normalize_ts(now_utc)
    today = local_day(now)
    employee = caller.employee

    if is_employee_on_leave(db, employee, today):
        raise ApiError(
            status_code=400,
            code="ON_LEAVE",
            message="You are on approved leave or today is a public holiday. Clock-in is not required.",
        )

    site = resolve_site(db, site_id=site_id, company_id=employee.company_id)
    geofence = validate_site_geofence(db, site, lat, lon)
    if not geofence.inside:
        raise ApiError(
            status_code=400,
            code="OUTSIDE_GEOFENCE",
            message=(
                "You are outside the permitted location radius. "
                "Please ensure you are within the work site area."
            ),
            extra={"distance_m": geofence.distance_m, "radius_m": geofence.radius_m},
        )

    existing = _find_record_for_day(db, employee_id=employee.id, day=today)
    if existing is not None and existing.clock_in_time is not None:
        raise _already_clocked_in(existing)
    if existing is not None and existing.locked_for_payroll:
        raise _record_locked(existing)

    shift = resolve_effective_shift(db, employee_id=employee.id, day=today)
    record = existing or AttendanceRecord(employee_id=employee.id, attendance_date=today)
    record.site_id = site.id
    record.shift_id = shift.id if shift is not None else None
    record.clock_in_time = now
    record.clock_in_latitude = lat
    record.clock_in_longitude = lon
    # Placeholder; lateness is derived once the day is closed.
    record.status = AttendanceStatus.ON_TIME
    if existing is None:
        db.add(record)

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        concurrent = _find_record_for_day(db, employee_id=employee.id, day=today)
        if concurrent is not None and concurrent.clock_in_time is not None:
            raise _already_clocked_in(concurrent) from None
        raise
    db.refresh(record)

    logger.info(
        "clock_in_recorded",
        extra={
            "employee_id": employee.id,
            "attendance_id": record.id,
            "site_id": site.id,
            "shift_id": record.shift_id,
            "distance_m": geofence.distance_m,
        },
    )
    return record


def clock_out(
    db: Session,
    caller: Caller,
    *,
    attendance_record_id: int,
    lat: float,
    lon: float,
    now_utc: datetime | None = None,
) -> AttendanceRecord:
    now = normalize_ts(now_utc)
    record = get_owned_record(db, caller, attendance_record_id)

    if record.clock_in_time is None:
        raise ApiError(
            status_code=400,
            code="CLOCK_IN_REQUIRED",
            message="You have not clocked in for this attendance record.",
        )
    if record.clock_out_time is not None:
        raise _already_clocked_out(record)
    if record.locked_for_payroll:
        raise _record_locked(record)

    site = record.site
    if site is None:
        raise ApiError(status_code=404, code="SITE_NOT_FOUND", message="Work site not found.")
    geofence = validate_site_geofence(db, site, lat, lon)
    if not geofence.inside:
        raise ApiError(
            status_code=400,
            code="OUTSIDE_GEOFENCE_CLOCK_OUT",
            message=(
                "You are outside the permitted radius of the site you clocked in at. "
                "Please clock out from the work site area."
            ),
            extra={"distance_m": geofence.distance_m, "radius_m": geofence.radius_m},
        )

    result = db.execute(
        update(AttendanceRecord)
        .where(
            AttendanceRecord.id == record.id,
            AttendanceRecord.clock_out_time.is_(None),
            AttendanceRecord.locked_for_payroll.is_(False),
        )
        .values(clock_out_time=now, clock_out_latitude=lat, clock_out_longitude=lon)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(record)
        if record.locked_for_payroll:
            raise _record_locked(record)
        raise _already_clocked_out(record)

    db.refresh(record)
    config = get_attendance_config(db, caller.company_id)
    apply_derived_metrics(record, record.shift, company_grace_minutes=config.grace_period_minutes)
    db.commit()
    db.refresh(record)

    logger.info(
        "clock_out_recorded",
        extra={
            "employee_id": caller.employee_id,
            "attendance_id": record.id,
            "hours_worked": record.hours_worked,
            "overtime_hours": record.overtime_hours,
        },
    )
    return record


def find_active_ot_session(db: Session, *, employee_id: int) -> OvertimeSession | None:
    return db.scalar(
        select(OvertimeSession)
        .where(
            OvertimeSession.employee_id == employee_id,
            OvertimeSession.status == OvertimeStatus.ACTIVE,
        )
        .order_by(OvertimeSession.ot_in_time.desc(), OvertimeSession.id.desc())
        .limit(1)
    )


def get_my_status(db: Session, caller: Caller, *, now_utc: datetime | None = None) -> dict[str, Any]:
    today = local_day(now_utc)
    record = db.scalar(
        select(AttendanceRecord)
        .options(selectinload(AttendanceRecord.site), selectinload(AttendanceRecord.shift))
        .where(
            AttendanceRecord.employee_id == caller.employee_id,
            AttendanceRecord.attendance_date == today,
        )
    )
    return {
        "attendance": record,
        "has_clocked_in": bool(record is not None and record.clock_in_time is not None),
        "has_clocked_out": bool(record is not None and record.clock_out_time is not None),
        "active_ot_session": find_active_ot_session(db, employee_id=caller.employee_id),
    }


def get_today_summary(db: Session, caller: Caller, *, now_utc: datetime | None = None) -> dict[str, Any]:
    today = local_day(now_utc)
    records = list(
        db.scalars(
            select(AttendanceRecord)
            .join(Employee, Employee.id == AttendanceRecord.employee_id)
            .where(
                Employee.company_id == caller.company_id,
                AttendanceRecord.attendance_date == today,
            )
        ).all()
    )

    present = sum(
        1 for item in records if item.clock_in_time is not None and item.status != AttendanceStatus.ABSENT
    )
    late = sum(1 for item in records if item.status in (AttendanceStatus.LATE, AttendanceStatus.HALF_DAY))
    absent = sum(1 for item in records if item.status == AttendanceStatus.ABSENT)
    total_hours = sum(float(item.hours_worked or 0) for item in records)
    average_hours = total_hours / (len(records) or 1)

    return {
        "present_count": present,
        "late_count": late,
        "absent_count": absent,
        "average_hours": round(average_hours, 2),
        "total_employees": len(records),
    }


def list_records(
    db: Session,
    caller: Caller,
    *,
    start_date: date | None = None,
    end_date: date | None = None,
    status: AttendanceStatus | None = None,
) -> list[AttendanceRecord]:
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message="end_date must be greater than or equal to start_date",
        )

    stmt = select(AttendanceRecord).join(Employee, Employee.id == AttendanceRecord.employee_id)
    if caller.is_reviewer:
        stmt = stmt.where(Employee.company_id == caller.company_id)
    else:
        stmt = stmt.where(AttendanceRecord.employee_id == caller.employee_id)
    if start_date is not None:
        stmt = stmt.where(AttendanceRecord.attendance_date >= start_date)
    if end_date is not None:
        stmt = stmt.where(AttendanceRecord.attendance_date <= end_date)
    if status is not None:
        stmt = stmt.where(AttendanceRecord.status == status)

    stmt = stmt.order_by(AttendanceRecord.attendance_date.desc(), AttendanceRecord.id.desc()).limit(
        RECORD_LIST_LIMIT
    )
    return list(db.scalars(stmt).all())
