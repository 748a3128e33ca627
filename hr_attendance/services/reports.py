"""Attendance reports for HR reviewers.

Daily, monthly and range statistics over one company's attendance records.
A record counts as present when its status is on_time, late or half_day.
Rates are percentages rounded to two decimals.
"""

from __future__ import annotations

from calendar import monthrange
from collections import defaultdict
from datetime import date, timedelta

from sqlalchemy import func, select
from sqlalchemy.orm import Session, selectinload

from hr_attendance.errors import ApiError
from hr_attendance.models import AttendanceRecord, AttendanceStatus, Department, Employee
from hr_attendance.schemas import (
    AttendanceStatistics,
    AttendanceTrendPoint,
    DailyAttendanceSummary,
    DepartmentRateItem,
    MonthlyAttendanceSummary,
    MonthlyEmployeeSummaryItem,
    StatusDistributionItem,
)
from hr_attendance.services.identity import Caller, require_reviewer
from hr_attendance.services.location import primary_site_names

PRESENT_STATUSES = frozenset({AttendanceStatus.ON_TIME, AttendanceStatus.LATE, AttendanceStatus.HALF_DAY})
NO_DEPARTMENT = "No Department"
REPORTS_MESSAGE = "Only HR administrators can view attendance reports."


def _rate(part: int, whole: int) -> float:
    if whole <= 0:
        return 0.0
    return round(part / whole * 100, 2)


def _month_bounds(year: int, month: int) -> tuple[date, date]:
    if month < 1 or month > 12:
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message="month must be between 1 and 12")
    last_day = monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def count_working_days(start_date: date, end_date: date) -> int:
    """Monday to Friday days in the inclusive range."""
    days = 0
    cursor = start_date
    while cursor <= end_date:
        if cursor.weekday() < 5:
            days += 1
        cursor += timedelta(days=1)
    return days


def _company_records(db: Session, *, company_id: int, start_date: date, end_date: date, active_only: bool):
    stmt = (
        select(AttendanceRecord, Employee.department_id)
        .join(Employee, Employee.id == AttendanceRecord.employee_id)
        .where(
            Employee.company_id == company_id,
            AttendanceRecord.attendance_date >= start_date,
            AttendanceRecord.attendance_date <= end_date,
        )
        .order_by(AttendanceRecord.attendance_date.asc(), AttendanceRecord.id.asc())
    )
    if active_only:
        stmt = stmt.where(Employee.is_active.is_(True))
    return db.execute(stmt).all()


def calculate_daily_summary(db: Session, caller: Caller, *, day: date) -> DailyAttendanceSummary:
    require_reviewer(caller, message=REPORTS_MESSAGE)
    total_staff = db.scalar(
        select(func.count(Employee.id)).where(
            Employee.company_id == caller.company_id,
            Employee.is_active.is_(True),
        )
    ) or 0
    rows = _company_records(db, company_id=caller.company_id, start_date=day, end_date=day, active_only=True)
    statuses = [record.status for record, _ in rows]

    present = sum(1 for status in statuses if status in PRESENT_STATUSES)
    return DailyAttendanceSummary(
        date=day,
        total_staff=total_staff,
        present_count=present,
        on_time_count=sum(1 for status in statuses if status == AttendanceStatus.ON_TIME),
        late_count=sum(1 for status in statuses if status == AttendanceStatus.LATE),
        attendance_rate=_rate(present, total_staff),
    )


def calculate_monthly_summary(db: Session, caller: Caller, *, year: int, month: int) -> MonthlyAttendanceSummary:
    require_reviewer(caller, message=REPORTS_MESSAGE)
    start_date, end_date = _month_bounds(year, month)
    working_days = count_working_days(start_date, end_date)

    employees = list(
        db.scalars(
            select(Employee)
            .options(selectinload(Employee.department))
            .where(Employee.company_id == caller.company_id, Employee.is_active.is_(True))
            .order_by(Employee.full_name.asc(), Employee.id.asc())
        ).all()
    )
    rows = _company_records(
        db,
        company_id=caller.company_id,
        start_date=start_date,
        end_date=end_date,
        active_only=True,
    )
    records_by_employee: dict[int, list[AttendanceRecord]] = defaultdict(list)
    for record, _ in rows:
        records_by_employee[record.employee_id].append(record)
    site_names = primary_site_names(db, employee_ids=[employee.id for employee in employees])

    items: list[MonthlyEmployeeSummaryItem] = []
    for employee in employees:
        records = records_by_employee.get(employee.id, [])
        present_days = sum(1 for record in records if record.status in PRESENT_STATUSES)
        items.append(
            MonthlyEmployeeSummaryItem(
                employee_id=employee.id,
                employee_name=employee.full_name,
                department_name=employee.department.name if employee.department is not None else None,
                site_name=site_names.get(employee.id),
                present_days=present_days,
                absent_days=sum(1 for record in records if record.status == AttendanceStatus.ABSENT),
                late_count=sum(1 for record in records if record.status == AttendanceStatus.LATE),
                total_hours=round(sum(float(record.hours_worked or 0) for record in records), 2),
                attendance_rate=_rate(present_days, working_days),
            )
        )

    return MonthlyAttendanceSummary(year=year, month=month, working_days=working_days, employees=items)


def calculate_statistics(
    db: Session,
    caller: Caller,
    *,
    start_date: date,
    end_date: date,
) -> AttendanceStatistics:
    require_reviewer(caller, message=REPORTS_MESSAGE)
    if end_date < start_date:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message="end_date must be greater than or equal to start_date",
        )

    rows = _company_records(
        db,
        company_id=caller.company_id,
        start_date=start_date,
        end_date=end_date,
        active_only=False,
    )
    department_names = dict(
        db.execute(select(Department.id, Department.name).where(Department.company_id == caller.company_id)).all()
    )

    by_department: dict[str, list[int]] = {}
    by_day: dict[date, list[int]] = {}
    distribution = {"Present": 0, "Absent": 0, "Late": 0, "On Leave": 0}
    for record, department_id in rows:
        is_present = int(record.status in PRESENT_STATUSES)
        department = department_names.get(department_id, NO_DEPARTMENT)
        department_counts = by_department.setdefault(department, [0, 0])
        department_counts[0] += is_present
        department_counts[1] += 1
        day_counts = by_day.setdefault(record.attendance_date, [0, 0])
        day_counts[0] += is_present
        day_counts[1] += 1

        if record.status in (AttendanceStatus.ON_TIME, AttendanceStatus.HALF_DAY):
            distribution["Present"] += 1
        elif record.status == AttendanceStatus.LATE:
            distribution["Late"] += 1
        elif record.status == AttendanceStatus.ABSENT:
            distribution["Absent"] += 1
        elif record.status == AttendanceStatus.LEAVE:
            distribution["On Leave"] += 1

    return AttendanceStatistics(
        start_date=start_date,
        end_date=end_date,
        department_rates=[
            DepartmentRateItem(department=name, rate=_rate(present, total))
            for name, (present, total) in sorted(by_department.items())
        ],
        distribution=[StatusDistributionItem(name=name, value=value) for name, value in distribution.items()],
        trend=[
            AttendanceTrendPoint(date=day, rate=_rate(present, total))
            for day, (present, total) in sorted(by_day.items())
        ],
    )
