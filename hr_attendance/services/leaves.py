from __future__ import annotations

from datetime import date

from sqlalchemy import and_, or_, select
from sqlalchemy.orm import Session

from hr_attendance.models import Employee, LeaveRequest, LeaveStatus, PublicHoliday


def has_approved_leave(db: Session, *, employee_id: int, day: date) -> bool:
    leave_id = db.scalar(
        select(LeaveRequest.id).where(
            LeaveRequest.employee_id == employee_id,
            LeaveRequest.status == LeaveStatus.APPROVED,
            LeaveRequest.start_date <= day,
            LeaveRequest.end_date >= day,
        )
    )
    return leave_id is not None


def find_public_holiday(db: Session, *, company_id: int, day: date) -> PublicHoliday | None:
    candidates = db.scalars(
        select(PublicHoliday)
        .where(
            PublicHoliday.company_id == company_id,
            or_(
                PublicHoliday.holiday_date == day,
                and_(PublicHoliday.is_recurring.is_(True), PublicHoliday.holiday_date <= day),
            ),
        )
        .order_by(PublicHoliday.id.asc())
    ).all()
    for holiday in candidates:
        if holiday.holiday_date == day:
            return holiday
        # Recurring holidays repeat on the same month/day every year.
        if (holiday.holiday_date.month, holiday.holiday_date.day) == (day.month, day.day):
            return holiday
    return None


def is_employee_on_leave(db: Session, employee: Employee, day: date) -> bool:
    if has_approved_leave(db, employee_id=employee.id, day=day):
        return True
    return find_public_holiday(db, company_id=employee.company_id, day=day) is not None
