from __future__ import annotations

from datetime import datetime, timedelta
import logging
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, selectinload

from hr_attendance.db import SessionLocal
from hr_attendance.models import (
    AttendanceRecord,
    Employee,
    NotificationLog,
    NotificationType,
    OvertimeSession,
    OvertimeStatus,
)
from hr_attendance.services.attendance_config import ResolvedAttendanceConfig, get_attendance_config
from hr_attendance.services.corrections import compute_submission_deadline
from hr_attendance.services.leaves import is_employee_on_leave
from hr_attendance.services.notifications import enqueue_notification
from hr_attendance.services.shifts import list_effective_assignments
from hr_attendance.services.timesheet import (
    apply_derived_metrics,
    attendance_timezone,
    effective_grace_minutes,
    local_day,
    local_day_start_utc,
    normalize_ts,
    shift_window_utc,
)
from hr_attendance.settings import get_settings

logger = logging.getLogger("hr_attendance.schedulers")

AUTO_CLOCKOUT_NOTE = "Auto-clocked out by system. Please submit correction if needed."


class _ConfigCache:
    def __init__(self, db: Session) -> None:
        self._db = db
        self._items: dict[int, ResolvedAttendanceConfig] = {}

    def get(self, company_id: int) -> ResolvedAttendanceConfig:
        if company_id not in self._items:
            self._items[company_id] = get_attendance_config(self._db, company_id)
        return self._items[company_id]


def run_auto_clockout(now_utc: datetime, db: Session | None = None) -> list[int]:
    if db is None:
        with SessionLocal() as managed_db:
            return run_auto_clockout(now_utc, db=managed_db)

    now = normalize_ts(now_utc)
    today = local_day(now)
    grace = timedelta(minutes=get_settings().auto_clockout_grace_minutes)
    configs = _ConfigCache(db)
    records = list(
        db.scalars(
            select(AttendanceRecord)
            .options(selectinload(AttendanceRecord.shift), selectinload(AttendanceRecord.employee))
            .where(
                AttendanceRecord.attendance_date.in_((today - timedelta(days=1), today)),
                AttendanceRecord.clock_in_time.is_not(None),
                AttendanceRecord.clock_out_time.is_(None),
                AttendanceRecord.locked_for_payroll.is_(False),
                AttendanceRecord.shift_id.is_not(None),
            )
            .order_by(AttendanceRecord.id.asc())
        ).all()
    )

    closed_ids: list[int] = []
    for record in records:
        shift = record.shift
        if shift is None:
            continue
        _, shift_end = shift_window_utc(record.attendance_date, shift)
        if now < shift_end + grace:
            continue
        if normalize_ts(record.clock_in_time) >= shift_end:
            # Clock-in after shift end cannot be closed at shift end.
            continue
        config = configs.get(record.employee.company_id)
        if not config.auto_clockout_enabled:
            continue

        try:
            result = db.execute(
                update(AttendanceRecord)
                .where(
                    AttendanceRecord.id == record.id,
                    AttendanceRecord.clock_out_time.is_(None),
                    AttendanceRecord.locked_for_payroll.is_(False),
                )
                .values(clock_out_time=shift_end, is_provisional=True, notes=AUTO_CLOCKOUT_NOTE)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                continue
            db.refresh(record)
            apply_derived_metrics(record, shift, company_grace_minutes=config.grace_period_minutes)

            deadline = compute_submission_deadline(record, config.correction_window_hours)
            local_end = shift_end.astimezone(attendance_timezone())
            enqueue_notification(
                db,
                employee_id=record.employee_id,
                notification_type=NotificationType.MISSED_CLOCKOUT,
                title="Missed Clock-Out",
                message=(
                    f"You were automatically clocked out at {local_end.strftime('%H:%M')}. "
                    "Submit a correction if this is incorrect. "
                    f"Deadline: {deadline.astimezone(attendance_timezone()).strftime('%Y-%m-%d %H:%M')}"
                ),
                data={
                    "attendance_id": record.id,
                    "auto_clockout_time": shift_end.isoformat(),
                    "deadline": deadline.isoformat(),
                },
                now_utc=now,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("auto_clockout_failed", extra={"attendance_id": record.id})
            continue

        closed_ids.append(record.id)
        logger.info(
            "auto_clockout_recorded",
            extra={"attendance_id": record.id, "clock_out_time": shift_end.isoformat()},
        )
    return closed_ids


def run_ot_auto_close(now_utc: datetime, db: Session | None = None) -> list[int]:
    if db is None:
        with SessionLocal() as managed_db:
            return run_ot_auto_close(now_utc, db=managed_db)

    now = normalize_ts(now_utc)
    configs = _ConfigCache(db)
    rows = db.execute(
        select(OvertimeSession, Employee.company_id)
        .join(Employee, Employee.id == OvertimeSession.employee_id)
        .where(OvertimeSession.status == OvertimeStatus.ACTIVE)
        .order_by(OvertimeSession.id.asc())
    ).all()

    closed_ids: list[int] = []
    for session, company_id in rows:
        limit_hours = configs.get(company_id).ot_auto_close_hours
        close_at = normalize_ts(session.ot_in_time) + timedelta(hours=limit_hours)
        if now < close_at:
            continue

        try:
            result = db.execute(
                update(OvertimeSession)
                .where(
                    OvertimeSession.id == session.id,
                    OvertimeSession.status == OvertimeStatus.ACTIVE,
                )
                .values(
                    ot_out_time=close_at,
                    status=OvertimeStatus.AUTO_CLOSED,
                    auto_closed_at=now,
                    total_ot_hours=float(limit_hours),
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                db.rollback()
                continue
            enqueue_notification(
                db,
                employee_id=session.employee_id,
                notification_type=NotificationType.OT_AUTO_CLOSED,
                title="OT Session Auto-Closed",
                message=(
                    f"Your OT session was automatically closed after {limit_hours} hours. "
                    f"Total OT: {float(limit_hours):.1f} hours. Please verify with HR if this is incorrect."
                ),
                data={
                    "ot_session_id": session.id,
                    "auto_close_time": close_at.isoformat(),
                    "ot_in_time": normalize_ts(session.ot_in_time).isoformat(),
                },
                now_utc=now,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("ot_auto_close_failed", extra={"ot_session_id": session.id})
            continue

        closed_ids.append(session.id)
        logger.info("ot_auto_closed", extra={"ot_session_id": session.id, "ot_out_time": close_at.isoformat()})
    return closed_ids


def _already_notified_today(db: Session, *, employee_id: int, day_start_utc: datetime) -> bool:
    existing = db.scalar(
        select(NotificationLog.id).where(
            NotificationLog.employee_id == employee_id,
            NotificationLog.notification_type == NotificationType.LATE_ARRIVAL,
            NotificationLog.sent_at >= day_start_utc,
        )
    )
    return existing is not None


def run_late_arrival_notifier(now_utc: datetime, db: Session | None = None) -> list[int]:
    if db is None:
        with SessionLocal() as managed_db:
            return run_late_arrival_notifier(now_utc, db=managed_db)

    now = normalize_ts(now_utc)
    today = local_day(now)
    weekday_name = now.astimezone(attendance_timezone()).strftime("%A")
    day_start = local_day_start_utc(today)
    configs = _ConfigCache(db)

    notified: list[int] = []
    seen_employees: set[int] = set()
    for assignment in list_effective_assignments(db, day=today):
        employee = assignment.employee
        shift = assignment.shift
        # Assignments are ordered newest first; only the effective one counts.
        if employee.id in seen_employees:
            continue
        seen_employees.add(employee.id)
        if not employee.is_active:
            continue
        if weekday_name not in (assignment.work_days or []):
            continue

        config = configs.get(employee.company_id)
        if not config.notification_enabled(NotificationType.LATE_ARRIVAL):
            continue
        grace_minutes = effective_grace_minutes(shift, config.grace_period_minutes)
        shift_start, _ = shift_window_utc(today, shift)
        late_threshold = shift_start + timedelta(minutes=grace_minutes)
        if now < late_threshold:
            continue

        clocked_in = db.scalar(
            select(AttendanceRecord.id).where(
                AttendanceRecord.employee_id == employee.id,
                AttendanceRecord.attendance_date == today,
                AttendanceRecord.clock_in_time.is_not(None),
            )
        )
        if clocked_in is not None:
            continue
        if is_employee_on_leave(db, employee, today):
            continue
        if _already_notified_today(db, employee_id=employee.id, day_start_utc=day_start):
            continue

        late_by_minutes = int((now - late_threshold).total_seconds() // 60)
        try:
            enqueue_notification(
                db,
                employee_id=employee.id,
                notification_type=NotificationType.LATE_ARRIVAL,
                title="Late Arrival Alert",
                message=(
                    f"You haven't clocked in yet. Your shift {shift.shift_name} started at "
                    f"{shift.start_time.strftime('%H:%M')}. Please clock in as soon as possible."
                ),
                data={
                    "shift_name": shift.shift_name,
                    "shift_start": shift.start_time.isoformat(timespec="minutes"),
                    "late_by_minutes": late_by_minutes,
                },
                now_utc=now,
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("late_arrival_notification_failed", extra={"employee_id": employee.id})
            continue
        notified.append(employee.id)
    return notified


def run_scheduler_tick(now_utc: datetime) -> dict[str, Any]:
    return {
        "auto_clockout": len(run_auto_clockout(now_utc)),
        "ot_auto_close": len(run_ot_auto_close(now_utc)),
        "late_arrival": len(run_late_arrival_notifier(now_utc)),
    }
