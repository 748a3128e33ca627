from __future__ import annotations

from dataclasses import dataclass
import logging
from math import asin, cos, radians, sin, sqrt

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hr_attendance.errors import ApiError
from hr_attendance.models import Employee, EmployeeSite, WorkSite
from hr_attendance.schemas import SiteAssignmentRequest, WorkSiteCreate, WorkSiteUpdate
from hr_attendance.services.attendance_config import get_attendance_config
from hr_attendance.services.identity import Caller, require_reviewer
from hr_attendance.settings import get_settings

logger = logging.getLogger("hr_attendance.location")

EARTH_RADIUS_M = 6371000.0
REQUIRED_SITE_FIELDS = ("site_name", "latitude", "longitude", "is_active")
SITE_ADMIN_MESSAGE = "Only HR administrators can manage work sites."


@dataclass(frozen=True)
class GeofenceResult:
    inside: bool
    distance_m: float
    radius_m: int


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return EARTH_RADIUS_M * c


def effective_radius_m(site: WorkSite, company_radius_m: int | None = None) -> int:
    if site.radius_meters is not None:
        return site.radius_meters
    if company_radius_m is not None:
        return company_radius_m
    return get_settings().default_geofence_radius_meters


def validate_geofence(
    site: WorkSite,
    lat: float,
    lon: float,
    *,
    company_radius_m: int | None = None,
) -> GeofenceResult:
    radius = effective_radius_m(site, company_radius_m)
    distance_value = distance_m(site.latitude, site.longitude, lat, lon)
    return GeofenceResult(
        inside=distance_value <= radius,
        distance_m=round(distance_value, 2),
        radius_m=radius,
    )


def validate_site_geofence(db: Session, site: WorkSite, lat: float, lon: float) -> GeofenceResult:
    """Geofence check using the company radius for sites without their own."""
    company_radius = None
    if site.radius_meters is None:
        company_radius = get_attendance_config(db, site.company_id).geofence_radius_meters
    return validate_geofence(site, lat, lon, company_radius_m=company_radius)


def resolve_site(db: Session, *, site_id: int, company_id: int) -> WorkSite:
    site = db.get(WorkSite, site_id)
    if site is None or not site.is_active or site.company_id != company_id:
        raise ApiError(status_code=404, code="SITE_NOT_FOUND", message="Work site not found.")
    return site


def list_company_sites(db: Session, *, company_id: int) -> list[WorkSite]:
    return list(
        db.scalars(
            select(WorkSite)
            .where(WorkSite.company_id == company_id, WorkSite.is_active.is_(True))
            .order_by(WorkSite.site_name.asc(), WorkSite.id.asc())
        ).all()
    )


def list_employee_sites(db: Session, caller: Caller) -> list[WorkSite]:
    """Active sites assigned to the caller, primary first.

    Employees without any assignment can clock in anywhere in their company,
    so they get every active company site.
    """
    assigned = list(
        db.scalars(
            select(WorkSite)
            .join(EmployeeSite, EmployeeSite.site_id == WorkSite.id)
            .where(
                EmployeeSite.employee_id == caller.employee_id,
                WorkSite.is_active.is_(True),
            )
            .order_by(EmployeeSite.is_primary.desc(), WorkSite.site_name.asc(), WorkSite.id.asc())
        ).all()
    )
    if assigned:
        return assigned
    return list_company_sites(db, company_id=caller.company_id)


def primary_site_names(db: Session, *, employee_ids: list[int]) -> dict[int, str]:
    if not employee_ids:
        return {}
    rows = db.execute(
        select(EmployeeSite.employee_id, WorkSite.site_name)
        .join(WorkSite, WorkSite.id == EmployeeSite.site_id)
        .where(EmployeeSite.employee_id.in_(employee_ids))
        .order_by(EmployeeSite.employee_id.asc(), EmployeeSite.is_primary.desc(), EmployeeSite.id.asc())
    ).all()
    names: dict[int, str] = {}
    for employee_id, site_name in rows:
        names.setdefault(employee_id, site_name)
    return names


def _clean_site_name(raw: str) -> str:
    name = raw.strip()
    if not name:
        raise ApiError(status_code=422, code="VALIDATION_ERROR", message="site_name cannot be blank.")
    return name


def _get_managed_site(db: Session, caller: Caller, site_id: int) -> WorkSite:
    # Inactive sites stay reachable here so they can be re-activated.
    site = db.get(WorkSite, site_id)
    if site is None or not caller.can_access_company(site.company_id):
        raise ApiError(status_code=404, code="SITE_NOT_FOUND", message="Work site not found.")
    return site


def create_site(db: Session, caller: Caller, payload: WorkSiteCreate) -> WorkSite:
    require_reviewer(caller, message=SITE_ADMIN_MESSAGE)
    site = WorkSite(
        company_id=caller.company_id,
        site_name=_clean_site_name(payload.site_name),
        address=payload.address,
        latitude=payload.latitude,
        longitude=payload.longitude,
        radius_meters=payload.radius_meters,
        is_active=True,
    )
    db.add(site)
    db.commit()
    db.refresh(site)
    logger.info("work_site_created", extra={"site_id": site.id, "company_id": site.company_id})
    return site


def update_site(db: Session, caller: Caller, site_id: int, payload: WorkSiteUpdate) -> WorkSite:
    require_reviewer(caller, message=SITE_ADMIN_MESSAGE)
    site = _get_managed_site(db, caller, site_id)

    changes = payload.model_dump(exclude_unset=True)
    for key in REQUIRED_SITE_FIELDS:
        if key in changes and changes[key] is None:
            raise ApiError(
                status_code=422,
                code="VALIDATION_ERROR",
                message=f"{key} cannot be cleared.",
            )
    if "site_name" in changes:
        changes["site_name"] = _clean_site_name(changes["site_name"])
    for key, value in changes.items():
        setattr(site, key, value)

    db.commit()
    db.refresh(site)
    logger.info("work_site_updated", extra={"site_id": site.id, "fields": sorted(changes)})
    return site


def deactivate_site(db: Session, caller: Caller, site_id: int) -> WorkSite:
    """Soft delete: attendance and OT rows keep pointing at the site."""
    require_reviewer(caller, message=SITE_ADMIN_MESSAGE)
    site = _get_managed_site(db, caller, site_id)
    if not site.is_active:
        return site
    site.is_active = False
    db.commit()
    db.refresh(site)
    logger.info("work_site_deactivated", extra={"site_id": site.id})
    return site


def assign_employee_site(
    db: Session,
    caller: Caller,
    site_id: int,
    payload: SiteAssignmentRequest,
) -> EmployeeSite:
    require_reviewer(caller, message=SITE_ADMIN_MESSAGE)
    site = _get_managed_site(db, caller, site_id)
    if not site.is_active:
        raise ApiError(status_code=404, code="SITE_NOT_FOUND", message="Work site not found.")
    employee = db.get(Employee, payload.employee_id)
    if employee is None or employee.company_id != site.company_id:
        raise ApiError(status_code=404, code="EMPLOYEE_NOT_FOUND", message="Employee not found.")

    if payload.is_primary:
        db.execute(
            update(EmployeeSite)
            .where(EmployeeSite.employee_id == employee.id, EmployeeSite.site_id != site.id)
            .values(is_primary=False)
            .execution_options(synchronize_session=False)
        )

    assignment = db.scalar(
        select(EmployeeSite).where(EmployeeSite.employee_id == employee.id, EmployeeSite.site_id == site.id)
    )
    if assignment is None:
        assignment = EmployeeSite(employee_id=employee.id, site_id=site.id)
        db.add(assignment)
    assignment.is_primary = payload.is_primary

    try:
        db.commit()
    except IntegrityError:
        db.rollback()
        raise ApiError(
            status_code=409,
            code="SITE_ASSIGNMENT_CONFLICT",
            message="Employee is already assigned to this site.",
        ) from None
    db.refresh(assignment)
    logger.info(
        "employee_site_assigned",
        extra={"employee_id": employee.id, "site_id": site.id, "is_primary": assignment.is_primary},
    )
    return assignment


def unassign_employee_site(db: Session, caller: Caller, site_id: int, employee_id: int) -> None:
    require_reviewer(caller, message=SITE_ADMIN_MESSAGE)
    site = _get_managed_site(db, caller, site_id)
    assignment = db.scalar(
        select(EmployeeSite).where(EmployeeSite.employee_id == employee_id, EmployeeSite.site_id == site.id)
    )
    if assignment is None:
        raise ApiError(
            status_code=404,
            code="SITE_ASSIGNMENT_NOT_FOUND",
            message="Employee is not assigned to this site.",
        )
    db.delete(assignment)
    db.commit()
    logger.info("employee_site_unassigned", extra={"employee_id": employee_id, "site_id": site.id})
