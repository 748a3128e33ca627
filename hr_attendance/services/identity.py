from __future__ import annotations

from dataclasses import dataclass, field

from sqlalchemy import select
from sqlalchemy.orm import Session

from hr_attendance.errors import ApiError
from hr_attendance.models import AppRole, Employee, UserRole

REVIEWER_ROLES: frozenset[AppRole] = frozenset({AppRole.COMPANY_ADMIN, AppRole.SUPER_ADMIN})
NOTIFIED_REVIEWER_ROLES: frozenset[AppRole] = REVIEWER_ROLES | {AppRole.HR_MANAGER}


@dataclass(frozen=True)
class Caller:
    employee: Employee
    roles: frozenset[AppRole] = field(default_factory=frozenset)

    @property
    def employee_id(self) -> int:
        return self.employee.id

    @property
    def company_id(self) -> int:
        return self.employee.company_id

    @property
    def is_reviewer(self) -> bool:
        return bool(self.roles & REVIEWER_ROLES)

    @property
    def is_super_admin(self) -> bool:
        return AppRole.SUPER_ADMIN in self.roles

    def can_access_company(self, company_id: int) -> bool:
        return self.is_super_admin or company_id == self.company_id


def resolve_employee(db: Session, user_id: str) -> Employee:
    employee = db.scalar(select(Employee).where(Employee.user_id == user_id))
    if employee is None:
        raise ApiError(
            status_code=404,
            code="EMPLOYEE_NOT_FOUND",
            message="Employee record not found. Please contact HR.",
        )
    if not employee.is_active:
        raise ApiError(
            status_code=403,
            code="EMPLOYEE_INACTIVE",
            message="Inactive employee cannot perform attendance actions.",
        )
    return employee


def get_user_roles(db: Session, user_id: str) -> frozenset[AppRole]:
    roles = db.scalars(select(UserRole.role).where(UserRole.user_id == user_id)).all()
    return frozenset(roles)


def resolve_caller(db: Session, user_id: str) -> Caller:
    employee = resolve_employee(db, user_id)
    return Caller(employee=employee, roles=get_user_roles(db, user_id))


def require_reviewer(caller: Caller, *, message: str = "Insufficient permissions.") -> None:
    if not caller.is_reviewer:
        raise ApiError(status_code=403, code="FORBIDDEN", message=message)


def list_company_reviewers(db: Session, company_id: int) -> list[Employee]:
    stmt = (
        select(Employee)
        .join(UserRole, UserRole.user_id == Employee.user_id)
        .where(
            Employee.company_id == company_id,
            Employee.is_active.is_(True),
            UserRole.role.in_(tuple(NOTIFIED_REVIEWER_ROLES)),
        )
        .order_by(Employee.id.asc())
        .distinct()
    )
    return list(db.scalars(stmt).all())
