from __future__ import annotations

from datetime import date, datetime, time, timezone

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from hr_attendance.db import Base
from hr_attendance.models import (
    AppRole,
    AttendanceRecord,
    AttendanceStatus,
    Company,
    Department,
    Employee,
    EmployeeShift,
    EmployeeSite,
    Shift,
    UserRole,
    WorkSite,
)
from hr_attendance.services.identity import Caller, resolve_caller

# 2026-03-02 is a Monday; Asia/Kuala_Lumpur is UTC+8 all year.
WORK_DAY = date(2026, 3, 2)
WEEKDAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday"]
SITE_LAT = 3.1390
SITE_LON = 101.6869
FAR_LAT = 3.1500


def utc(hour: int, minute: int = 0, *, day: date = WORK_DAY) -> datetime:
    return datetime(day.year, day.month, day.day, hour, minute, tzinfo=timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def make_session() -> Session:
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    return factory()


class Workspace:
    """One company with a head-office site, a 09:00-18:00 shift and helpers to add people."""

    def __init__(self, db: Session, *, name: str = "Acme Sdn Bhd") -> None:
        self.db = db
        self.company = Company(name=name)
        db.add(self.company)
        db.flush()
        self.site = WorkSite(
            company_id=self.company.id,
            site_name="Head Office",
            latitude=SITE_LAT,
            longitude=SITE_LON,
            radius_meters=100,
        )
        self.shift = Shift(
            company_id=self.company.id,
            shift_name="Office",
            start_time=time(9, 0),
            end_time=time(18, 0),
            grace_period_minutes=10,
            lunch_break_minutes=60,
        )
        db.add_all([self.site, self.shift])
        db.commit()

    def add_employee(
        self,
        user_id: str,
        *,
        roles: tuple[AppRole, ...] = (AppRole.EMPLOYEE,),
        work_days: list[str] | None = None,
        with_shift: bool = True,
        is_active: bool = True,
        department: Department | None = None,
    ) -> Employee:
        employee = Employee(
            user_id=user_id,
            company_id=self.company.id,
            full_name=user_id.replace("-", " ").title(),
            is_active=is_active,
            department_id=department.id if department is not None else None,
        )
        self.db.add(employee)
        self.db.flush()
        for role in roles:
            self.db.add(UserRole(user_id=user_id, role=role))
        if with_shift:
            self.db.add(
                EmployeeShift(
                    employee_id=employee.id,
                    shift_id=self.shift.id,
                    effective_from=date(2020, 1, 1),
                    work_days=list(WEEKDAYS if work_days is None else work_days),
                )
            )
        self.db.commit()
        return employee

    def add_site(self, name: str, lat: float, lon: float, radius: int | None = 100) -> WorkSite:
        site = WorkSite(company_id=self.company.id, site_name=name, latitude=lat, longitude=lon, radius_meters=radius)
        self.db.add(site)
        self.db.commit()
        return site

    def assign_site(self, employee: Employee, site: WorkSite, *, primary: bool = False) -> EmployeeSite:
        assignment = EmployeeSite(employee_id=employee.id, site_id=site.id, is_primary=primary)
        self.db.add(assignment)
        self.db.commit()
        return assignment

    def add_department(self, name: str) -> Department:
        department = Department(company_id=self.company.id, name=name)
        self.db.add(department)
        self.db.commit()
        return department

    def add_record(
        self,
        employee: Employee,
        *,
        day: date = WORK_DAY,
        clock_in: datetime | None = None,
        clock_out: datetime | None = None,
        locked: bool = False,
        status: AttendanceStatus = AttendanceStatus.ON_TIME,
    ) -> AttendanceRecord:
        record = AttendanceRecord(
            employee_id=employee.id,
            attendance_date=day,
            site_id=self.site.id,
            shift_id=self.shift.id,
            clock_in_time=clock_in,
            clock_in_latitude=SITE_LAT if clock_in else None,
            clock_in_longitude=SITE_LON if clock_in else None,
            clock_out_time=clock_out,
            clock_out_latitude=SITE_LAT if clock_out else None,
            clock_out_longitude=SITE_LON if clock_out else None,
            locked_for_payroll=locked,
            status=status,
        )
        self.db.add(record)
        self.db.commit()
        return record

    def caller(self, employee: Employee) -> Caller:
        return resolve_caller(self.db, employee.user_id)
