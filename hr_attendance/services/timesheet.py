"""Time arithmetic for attendance records.

Shift start/end are wall-clock times in the configured attendance timezone;
everything stored is UTC. Hours are reported with two decimals.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta, timezone
from functools import lru_cache
import logging
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from hr_attendance.models import AttendanceRecord, AttendanceStatus, Shift
from hr_attendance.settings import get_settings

logger = logging.getLogger("hr_attendance.timesheet")

FALLBACK_TIMEZONE = "Asia/Kuala_Lumpur"


@lru_cache
def attendance_timezone() -> ZoneInfo:
    raw_name = (get_settings().attendance_timezone or "").strip() or FALLBACK_TIMEZONE
    try:
        return ZoneInfo(raw_name)
    except ZoneInfoNotFoundError:
        logger.warning("attendance_timezone_invalid", extra={"timezone": raw_name})
        return ZoneInfo(FALLBACK_TIMEZONE)


def normalize_ts(ts_utc: datetime | None) -> datetime:
    if ts_utc is None:
        return datetime.now(timezone.utc)
    if ts_utc.tzinfo is None:
        return ts_utc.replace(tzinfo=timezone.utc)
    return ts_utc.astimezone(timezone.utc)


def local_day(ts_utc: datetime | None = None) -> date:
    return normalize_ts(ts_utc).astimezone(attendance_timezone()).date()


def combine_local(day: date, wall_time: time) -> datetime:
    return datetime.combine(day, wall_time, tzinfo=attendance_timezone()).astimezone(timezone.utc)


def local_day_start_utc(day: date) -> datetime:
    return combine_local(day, time.min)


def shift_window_utc(day: date, shift: Shift) -> tuple[datetime, datetime]:
    start = combine_local(day, shift.start_time)
    end_day = day + timedelta(days=1) if shift.end_time <= shift.start_time else day
    end = combine_local(end_day, shift.end_time)
    return start, end


def _hours(delta: timedelta) -> float:
    return round(delta.total_seconds() / 3600, 2)


def calculate_hours_worked(
    clock_in: datetime,
    clock_out: datetime,
    lunch_break_minutes: int = 0,
) -> float:
    span = normalize_ts(clock_out) - normalize_ts(clock_in)
    if span <= timedelta(0):
        return 0.0
    lunch = timedelta(minutes=max(0, lunch_break_minutes))
    if span > lunch:
        span -= lunch
    return _hours(span)


def calculate_overtime_hours(clock_out: datetime, shift_end: datetime) -> float:
    excess = normalize_ts(clock_out) - normalize_ts(shift_end)
    if excess <= timedelta(0):
        return 0.0
    return _hours(excess)


def calculate_ot_hours(ot_in: datetime, ot_out: datetime) -> float:
    span = normalize_ts(ot_out) - normalize_ts(ot_in)
    return max(0.0, _hours(span))


def determine_attendance_status(
    clock_in: datetime,
    shift_start: datetime,
    shift_end: datetime,
    grace_period_minutes: int,
) -> AttendanceStatus:
    arrived = normalize_ts(clock_in)
    start = normalize_ts(shift_start)
    if arrived <= start + timedelta(minutes=max(0, grace_period_minutes)):
        return AttendanceStatus.ON_TIME
    midpoint = start + (normalize_ts(shift_end) - start) / 2
    if arrived > midpoint:
        return AttendanceStatus.HALF_DAY
    return AttendanceStatus.LATE


def effective_grace_minutes(shift: Shift, company_grace_minutes: int | None = None) -> int:
    if shift.grace_period_minutes is not None:
        return shift.grace_period_minutes
    if company_grace_minutes is not None:
        return company_grace_minutes
    return get_settings().default_grace_period_minutes


def apply_derived_metrics(
    record: AttendanceRecord,
    shift: Shift | None,
    *,
    company_grace_minutes: int | None = None,
) -> None:
    """Recompute hours, overtime and status for a record that has both clock times.

    A shift without its own grace period uses ``company_grace_minutes``.
    """
    if record.clock_in_time is None or record.clock_out_time is None:
        return

    lunch_break_minutes = shift.lunch_break_minutes if shift is not None else 0
    record.hours_worked = calculate_hours_worked(
        record.clock_in_time,
        record.clock_out_time,
        lunch_break_minutes,
    )
    if shift is None:
        record.overtime_hours = 0.0
        return

    shift_start, shift_end = shift_window_utc(record.attendance_date, shift)
    record.overtime_hours = calculate_overtime_hours(record.clock_out_time, shift_end)
    if record.status in (AttendanceStatus.ON_TIME, AttendanceStatus.LATE, AttendanceStatus.HALF_DAY):
        record.status = determine_attendance_status(
            record.clock_in_time,
            shift_start,
            shift_end,
            effective_grace_minutes(shift, company_grace_minutes),
        )
