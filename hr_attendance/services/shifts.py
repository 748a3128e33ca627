from __future__ import annotations

from datetime import date

from sqlalchemy import or_, select
from sqlalchemy.orm import Session, selectinload

from hr_attendance.models import EmployeeShift, Shift


def resolve_effective_assignment(db: Session, *, employee_id: int, day: date) -> EmployeeShift | None:
    return db.scalar(
        select(EmployeeShift)
        .options(selectinload(EmployeeShift.shift))
        .join(Shift, Shift.id == EmployeeShift.shift_id)
        .where(
            EmployeeShift.employee_id == employee_id,
            EmployeeShift.effective_from <= day,
            or_(EmployeeShift.effective_until.is_(None), EmployeeShift.effective_until >= day),
            Shift.is_active.is_(True),
        )
        .order_by(EmployeeShift.effective_from.desc(), EmployeeShift.id.desc())
        .limit(1)
    )


def resolve_effective_shift(db: Session, *, employee_id: int, day: date) -> Shift | None:
    assignment = resolve_effective_assignment(db, employee_id=employee_id, day=day)
    if assignment is None:
        return None
    return assignment.shift


def list_effective_assignments(db: Session, *, day: date) -> list[EmployeeShift]:
    return list(
        db.scalars(
            select(EmployeeShift)
            .options(selectinload(EmployeeShift.shift), selectinload(EmployeeShift.employee))
            .join(Shift, Shift.id == EmployeeShift.shift_id)
            .where(
                EmployeeShift.effective_from <= day,
                or_(EmployeeShift.effective_until.is_(None), EmployeeShift.effective_until >= day),
                Shift.is_active.is_(True),
            )
            .order_by(EmployeeShift.employee_id.asc(), EmployeeShift.effective_from.desc())
        ).all()
    )
