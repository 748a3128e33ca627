from __future__ import annotations

from datetime import datetime
import logging

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from hr_attendance.errors import ApiError
from hr_attendance.models import Employee, OvertimeSession, OvertimeStatus
from hr_attendance.services.attendance import find_active_ot_session, get_owned_record
from hr_attendance.services.identity import Caller, require_reviewer
from hr_attendance.services.location import resolve_site, validate_site_geofence
from hr_attendance.services.timesheet import calculate_ot_hours, normalize_ts

logger = logging.getLogger("hr_attendance.overtime")

APPROVABLE_STATUSES = (OvertimeStatus.COMPLETED, OvertimeStatus.AUTO_CLOSED)
SESSION_LIST_LIMIT = 500


def _active_session_exists(session: OvertimeSession) -> ApiError:
    return ApiError(
        status_code=400,
        code="OT_SESSION_ACTIVE",
        message="You already have an active OT session. Please clock out from it first.",
        extra={"ot_session_id": session.id, "ot_in_time": normalize_ts(session.ot_in_time).isoformat()},
    )


def _session_not_active(session: OvertimeSession) -> ApiError:
    return ApiError(
        status_code=400,
        code="OT_SESSION_NOT_ACTIVE",
        message="This OT session is not active.",
        extra={"ot_session_id": session.id, "status": session.status.value},
    )


def ot_clock_in(
    db: Session,
    caller: Caller,
    *,
    site_id: int,
    attendance_record_id: int,
    lat: float,
    lon: float,
    now_utc: datetime | None = None,
) -> OvertimeSession:
    now = normalize_ts(now_utc)
    record = get_owned_record(db, caller, attendance_record_id)
    if record.clock_out_time is None:
        raise ApiError(
            status_code=400,
            code="CLOCK_OUT_REQUIRED",
            message="You must clock out from your regular shift before starting overtime.",
            extra={"attendance_id": record.id},
        )

    active = find_active_ot_session(db, employee_id=caller.employee_id)
    if active is not None:
        raise _active_session_exists(active)

    site = resolve_site(db, site_id=site_id, company_id=caller.company_id)
    geofence = validate_site_geofence(db, site, lat, lon)
    if not geofence.inside:
        raise ApiError(
            status_code=400,
            code="OUTSIDE_GEOFENCE",
            message="You are outside the permitted location radius for overtime clock-in.",
            extra={"distance_m": geofence.distance_m, "radius_m": geofence.radius_m},
        )

    session = OvertimeSession(
        employee_id=caller.employee_id,
        attendance_record_id=record.id,
        site_id=site.id,
        ot_in_time=now,
        ot_in_latitude=lat,
        ot_in_longitude=lon,
        status=OvertimeStatus.ACTIVE,
    )
    db.add(session)
    try:
        db.commit()
    except IntegrityError:
        # Partial unique index on active sessions lost a race with another request.
        db.rollback()
        concurrent = find_active_ot_session(db, employee_id=caller.employee_id)
        if concurrent is not None:
            raise _active_session_exists(concurrent) from None
        raise
    db.refresh(session)

    logger.info(
        "ot_clock_in_recorded",
        extra={"employee_id": caller.employee_id, "ot_session_id": session.id, "site_id": site.id},
    )
    return session


def _resolve_owned_session(db: Session, caller: Caller, ot_session_id: int | None) -> OvertimeSession:
    if ot_session_id is None:
        session = find_active_ot_session(db, employee_id=caller.employee_id)
    else:
        session = db.scalar(
            select(OvertimeSession).where(
                OvertimeSession.id == ot_session_id,
                OvertimeSession.employee_id == caller.employee_id,
            )
        )
    if session is None:
        raise ApiError(status_code=404, code="OT_SESSION_NOT_FOUND", message="OT session not found")
    return session


def ot_clock_out(
    db: Session,
    caller: Caller,
    *,
    lat: float,
    lon: float,
    ot_session_id: int | None = None,
    site_id: int | None = None,
    now_utc: datetime | None = None,
) -> OvertimeSession:
    now = normalize_ts(now_utc)
    session = _resolve_owned_session(db, caller, ot_session_id)
    if session.status != OvertimeStatus.ACTIVE:
        raise _session_not_active(session)

    if site_id is not None and site_id != session.site_id:
        raise ApiError(
            status_code=400,
            code="OT_SITE_MISMATCH",
            message="OT clock-out must be done at the same site as OT clock-in.",
            extra={"ot_session_id": session.id, "expected_site_id": session.site_id},
        )

    geofence = validate_site_geofence(db, session.site, lat, lon)
    if not geofence.inside:
        raise ApiError(
            status_code=400,
            code="OUTSIDE_GEOFENCE_CLOCK_OUT",
            message="You are outside the permitted radius of the site where overtime started.",
            extra={"distance_m": geofence.distance_m, "radius_m": geofence.radius_m},
        )

    total_hours = calculate_ot_hours(session.ot_in_time, now)
    result = db.execute(
        update(OvertimeSession)
        .where(
            OvertimeSession.id == session.id,
            OvertimeSession.status == OvertimeStatus.ACTIVE,
        )
        .values(
            ot_out_time=now,
            ot_out_latitude=lat,
            ot_out_longitude=lon,
            status=OvertimeStatus.COMPLETED,
            total_ot_hours=total_hours,
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(session)
        raise _session_not_active(session)
    db.commit()
    db.refresh(session)

    logger.info(
        "ot_clock_out_recorded",
        extra={
            "employee_id": caller.employee_id,
            "ot_session_id": session.id,
            "total_ot_hours": session.total_ot_hours,
        },
    )
    return session


def approve_ot_session(
    db: Session,
    caller: Caller,
    *,
    ot_session_id: int,
    now_utc: datetime | None = None,
) -> OvertimeSession:
    require_reviewer(caller, message="Only HR administrators can approve overtime.")
    session = db.get(OvertimeSession, ot_session_id)
    if session is None:
        raise ApiError(status_code=404, code="OT_SESSION_NOT_FOUND", message="OT session not found")
    owner = db.get(Employee, session.employee_id)
    if owner is None or not caller.can_access_company(owner.company_id):
        raise ApiError(status_code=404, code="OT_SESSION_NOT_FOUND", message="OT session not found")

    if session.status not in APPROVABLE_STATUSES or session.is_approved:
        raise ApiError(
            status_code=400,
            code="OT_NOT_APPROVABLE",
            message="Only closed, unapproved OT sessions can be approved.",
            extra={"status": session.status.value, "is_approved": session.is_approved},
        )

    result = db.execute(
        update(OvertimeSession)
        .where(
            OvertimeSession.id == session.id,
            OvertimeSession.status.in_(APPROVABLE_STATUSES),
            OvertimeSession.is_approved.is_(False),
        )
        .values(is_approved=True, approved_by=caller.employee_id, approved_at=normalize_ts(now_utc))
        .execution_options(synchronize_session=False)
    )
    if result.rowcount == 0:
        db.rollback()
        db.refresh(session)
        raise ApiError(
            status_code=400,
            code="OT_NOT_APPROVABLE",
            message="Only closed, unapproved OT sessions can be approved.",
            extra={"status": session.status.value, "is_approved": session.is_approved},
        )
    db.commit()
    db.refresh(session)

    logger.info(
        "ot_session_approved",
        extra={"ot_session_id": session.id, "approved_by": caller.employee_id},
    )
    return session


def list_ot_sessions(
    db: Session,
    caller: Caller,
    *,
    status: OvertimeStatus | None = None,
) -> list[OvertimeSession]:
    stmt = select(OvertimeSession).join(Employee, Employee.id == OvertimeSession.employee_id)
    if caller.is_reviewer:
        stmt = stmt.where(Employee.company_id == caller.company_id)
    else:
        stmt = stmt.where(OvertimeSession.employee_id == caller.employee_id)
    if status is not None:
        stmt = stmt.where(OvertimeSession.status == status)
    stmt = stmt.order_by(OvertimeSession.ot_in_time.desc(), OvertimeSession.id.desc()).limit(SESSION_LIST_LIMIT)
    return list(db.scalars(stmt).all())
