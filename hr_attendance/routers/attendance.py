from datetime import date
from typing import Any, Literal

from fastapi import APIRouter, Body, Depends, Query, Request, Response
from fastapi.exceptions import RequestValidationError
from pydantic import BaseModel, ValidationError
from sqlalchemy.orm import Session

from hr_attendance.audit import record_audit
from hr_attendance.db import get_db
from hr_attendance.models import AttendanceStatus, CorrectionStatus, OvertimeStatus
from hr_attendance.schemas import (
    AttendanceRecordDetailRead,
    AttendanceRecordListResponse,
    AttendanceRecordRead,
    AttendanceSettingsRead,
    AttendanceSettingsUpdate,
    AttendanceStatistics,
    ClockInRequest,
    ClockInResponse,
    ClockOutRequest,
    ClockOutResponse,
    CorrectionCreateRequest,
    CorrectionCreateResponse,
    CorrectionListResponse,
    CorrectionRead,
    CorrectionReviewBody,
    CorrectionReviewRequest,
    CorrectionReviewResponse,
    DailyAttendanceSummary,
    MonthlyAttendanceSummary,
    MyStatusResponse,
    OTApproveResponse,
    OTClockInRequest,
    OTClockInResponse,
    OTClockOutRequest,
    OTClockOutResponse,
    OvertimeSessionListResponse,
    OvertimeSessionRead,
    SiteAssignmentRead,
    SiteAssignmentRequest,
    SiteAssignmentResponse,
    TodaySummaryResponse,
    WorkSiteCreate,
    WorkSiteListResponse,
    WorkSiteRead,
    WorkSiteResponse,
    WorkSiteUpdate,
)
from hr_attendance.security import get_caller
from hr_attendance.services.attendance import (
    clock_in,
    clock_out,
    get_my_status,
    get_today_summary,
    list_records,
)
from hr_attendance.services.attendance_config import get_attendance_config, upsert_attendance_config
from hr_attendance.services.corrections import list_corrections, review_correction, submit_correction
from hr_attendance.services.exports import build_attendance_xlsx_bytes
from hr_attendance.services.identity import Caller, require_reviewer
from hr_attendance.services.location import (
    assign_employee_site,
    create_site,
    deactivate_site,
    list_company_sites,
    list_employee_sites,
    unassign_employee_site,
    update_site,
)
from hr_attendance.services.overtime import approve_ot_session, list_ot_sessions, ot_clock_in, ot_clock_out
from hr_attendance.services.reports import calculate_daily_summary, calculate_monthly_summary, calculate_statistics

router = APIRouter(prefix="/hr-attendance", tags=["hr-attendance"])
XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _parse_body(model: type[BaseModel], payload: dict[str, Any]) -> Any:
    try:
        return model.model_validate(payload)
    except ValidationError as exc:
        raise RequestValidationError(exc.errors()) from exc


@router.post("/clock-in", response_model=ClockInResponse)
def post_clock_in(
    payload: ClockInRequest,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> ClockInResponse:
    record = clock_in(
        db,
        caller,
        site_id=payload.site_id,
        lat=payload.latitude,
        lon=payload.longitude,
    )
    request.state.attendance_id = record.id
    return ClockInResponse(
        message="Clocked in successfully",
        attendance=AttendanceRecordRead.model_validate(record),
    )


@router.post("/clock-out", response_model=ClockOutResponse)
def post_clock_out(
    payload: ClockOutRequest,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> ClockOutResponse:
    request.state.attendance_id = payload.attendance_record_id
    record = clock_out(
        db,
        caller,
        attendance_record_id=payload.attendance_record_id,
        lat=payload.latitude,
        lon=payload.longitude,
    )
    return ClockOutResponse(
        message="Clocked out successfully",
        attendance=AttendanceRecordRead.model_validate(record),
        hours_worked=record.hours_worked,
        overtime_hours=record.overtime_hours,
    )


@router.post("/ot-in", response_model=OTClockInResponse)
def post_ot_in(
    payload: OTClockInRequest,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> OTClockInResponse:
    request.state.attendance_id = payload.attendance_record_id
    session = ot_clock_in(
        db,
        caller,
        site_id=payload.site_id,
        attendance_record_id=payload.attendance_record_id,
        lat=payload.latitude,
        lon=payload.longitude,
    )
    request.state.ot_session_id = session.id
    return OTClockInResponse(
        message="OT clock-in successful",
        ot_session=OvertimeSessionRead.model_validate(session),
    )


@router.post("/ot-out", response_model=OTClockOutResponse)
def post_ot_out(
    payload: OTClockOutRequest,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> OTClockOutResponse:
    session = ot_clock_out(
        db,
        caller,
        lat=payload.latitude,
        lon=payload.longitude,
        ot_session_id=payload.ot_session_id,
        site_id=payload.site_id,
    )
    request.state.ot_session_id = session.id
    return OTClockOutResponse(
        message="OT clock-out successful",
        ot_session=OvertimeSessionRead.model_validate(session),
        total_hours=session.total_ot_hours,
    )


def _review(
    request: Request,
    db: Session,
    caller: Caller,
    *,
    correction_id: int,
    body: CorrectionReviewBody,
) -> CorrectionReviewResponse:
    request.state.correction_id = correction_id
    correction = review_correction(
        db,
        caller,
        correction_id=correction_id,
        action=body.action,
        reviewer_notes=body.reviewer_notes,
    )
    record_audit(
        db,
        request,
        caller=caller,
        action="CORRECTION_APPROVED" if body.action == "approve" else "CORRECTION_REJECTED",
        entity_type="attendance_correction",
        entity_id=correction.id,
        details={
            "attendance_record_id": correction.attendance_record_id,
            "employee_id": correction.employee_id,
            "within_deadline": correction.is_within_deadline,
        },
    )
    past_tense = "approved" if body.action == "approve" else "rejected"
    return CorrectionReviewResponse(message=f"Correction {past_tense} successfully", action=body.action)


@router.post("/corrections", response_model=None)
def post_corrections(
    request: Request,
    payload: dict[str, Any] = Body(...),
    action: Literal["review"] | None = Query(default=None),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> CorrectionCreateResponse | CorrectionReviewResponse:
    if action == "review":
        review_request = _parse_body(CorrectionReviewRequest, payload)
        return _review(
            request,
            db,
            caller,
            correction_id=review_request.correction_id,
            body=review_request,
        )

    create_request = _parse_body(CorrectionCreateRequest, payload)
    request.state.attendance_id = create_request.attendance_record_id
    submitted = submit_correction(db, caller, create_request)
    request.state.correction_id = submitted.correction.id
    return CorrectionCreateResponse(
        correction=CorrectionRead.model_validate(submitted.correction),
        deadline=submitted.deadline,
        within_deadline=submitted.within_deadline,
    )


@router.get("/corrections", response_model=CorrectionListResponse)
def get_corrections(
    status_filter: CorrectionStatus | None = Query(default=None, alias="status"),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> CorrectionListResponse:
    corrections = list_corrections(db, caller, status=status_filter)
    return CorrectionListResponse(corrections=[CorrectionRead.model_validate(item) for item in corrections])


@router.patch("/corrections/{correction_id}", response_model=CorrectionReviewResponse)
def patch_correction(
    correction_id: int,
    payload: CorrectionReviewBody,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> CorrectionReviewResponse:
    return _review(request, db, caller, correction_id=correction_id, body=payload)


@router.get("/my-status", response_model=MyStatusResponse)
def get_my_status_endpoint(
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> MyStatusResponse:
    snapshot = get_my_status(db, caller)
    record = snapshot["attendance"]
    active_session = snapshot["active_ot_session"]
    return MyStatusResponse(
        attendance=AttendanceRecordDetailRead.model_validate(record) if record is not None else None,
        has_clocked_in=snapshot["has_clocked_in"],
        has_clocked_out=snapshot["has_clocked_out"],
        active_ot_session=OvertimeSessionRead.model_validate(active_session) if active_session is not None else None,
    )


@router.get("/today-summary", response_model=TodaySummaryResponse)
def get_today_summary_endpoint(
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> TodaySummaryResponse:
    return TodaySummaryResponse(**get_today_summary(db, caller))


@router.get("", response_model=AttendanceRecordListResponse)
def get_records(
    start_date: date | None = Query(default=None),
    end_date: date | None = Query(default=None),
    status_filter: AttendanceStatus | None = Query(default=None, alias="status"),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> AttendanceRecordListResponse:
    records = list_records(db, caller, start_date=start_date, end_date=end_date, status=status_filter)
    return AttendanceRecordListResponse(records=[AttendanceRecordRead.model_validate(item) for item in records])


@router.get("/ot-sessions", response_model=OvertimeSessionListResponse)
def get_ot_sessions(
    status_filter: OvertimeStatus | None = Query(default=None, alias="status"),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> OvertimeSessionListResponse:
    sessions = list_ot_sessions(db, caller, status=status_filter)
    return OvertimeSessionListResponse(ot_sessions=[OvertimeSessionRead.model_validate(item) for item in sessions])


@router.patch("/ot-sessions/{ot_session_id}/approve", response_model=OTApproveResponse)
def patch_approve_ot_session(
    ot_session_id: int,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> OTApproveResponse:
    request.state.ot_session_id = ot_session_id
    session = approve_ot_session(db, caller, ot_session_id=ot_session_id)
    record_audit(
        db,
        request,
        caller=caller,
        action="OT_SESSION_APPROVED",
        entity_type="overtime_session",
        entity_id=session.id,
        details={"employee_id": session.employee_id, "total_ot_hours": session.total_ot_hours},
    )
    return OTApproveResponse(
        message="OT session approved",
        ot_session=OvertimeSessionRead.model_validate(session),
    )


@router.get("/settings", response_model=AttendanceSettingsRead)
def get_settings_endpoint(
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> AttendanceSettingsRead:
    return AttendanceSettingsRead(**get_attendance_config(db, caller.company_id).to_dict())


@router.put("/settings", response_model=AttendanceSettingsRead)
def put_settings(
    payload: AttendanceSettingsUpdate,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> AttendanceSettingsRead:
    require_reviewer(caller, message="Only HR administrators can change attendance settings.")
    config = upsert_attendance_config(db, company_id=caller.company_id, payload=payload)
    record_audit(
        db,
        request,
        caller=caller,
        action="ATTENDANCE_SETTINGS_UPDATED",
        entity_type="attendance_config",
        entity_id=caller.company_id,
        details=payload.model_dump(exclude_unset=True),
    )
    return AttendanceSettingsRead(**config.to_dict())


@router.get("/sites", response_model=WorkSiteListResponse)
def get_sites(
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> WorkSiteListResponse:
    sites = list_company_sites(db, company_id=caller.company_id)
    return WorkSiteListResponse(sites=[WorkSiteRead.model_validate(item) for item in sites])


@router.get("/my-sites", response_model=WorkSiteListResponse)
def get_my_sites(
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> WorkSiteListResponse:
    sites = list_employee_sites(db, caller)
    return WorkSiteListResponse(sites=[WorkSiteRead.model_validate(item) for item in sites])


@router.post("/sites", response_model=WorkSiteResponse, status_code=201)
def post_site(
    payload: WorkSiteCreate,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> WorkSiteResponse:
    site = create_site(db, caller, payload)
    record_audit(
        db,
        request,
        caller=caller,
        action="WORK_SITE_CREATED",
        entity_type="work_site",
        entity_id=site.id,
        details=payload.model_dump(),
    )
    return WorkSiteResponse(message="Work site created", site=WorkSiteRead.model_validate(site))


@router.patch("/sites/{site_id}", response_model=WorkSiteResponse)
def patch_site(
    site_id: int,
    payload: WorkSiteUpdate,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> WorkSiteResponse:
    site = update_site(db, caller, site_id, payload)
    record_audit(
        db,
        request,
        caller=caller,
        action="WORK_SITE_UPDATED",
        entity_type="work_site",
        entity_id=site.id,
        details=payload.model_dump(exclude_unset=True),
    )
    return WorkSiteResponse(message="Work site updated", site=WorkSiteRead.model_validate(site))


@router.delete("/sites/{site_id}", response_model=WorkSiteResponse)
def delete_site(
    site_id: int,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> WorkSiteResponse:
    site = deactivate_site(db, caller, site_id)
    record_audit(
        db,
        request,
        caller=caller,
        action="WORK_SITE_DEACTIVATED",
        entity_type="work_site",
        entity_id=site.id,
    )
    return WorkSiteResponse(message="Work site deactivated", site=WorkSiteRead.model_validate(site))


@router.post("/sites/{site_id}/assignments", response_model=SiteAssignmentResponse)
def post_site_assignment(
    site_id: int,
    payload: SiteAssignmentRequest,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> SiteAssignmentResponse:
    assignment = assign_employee_site(db, caller, site_id, payload)
    record_audit(
        db,
        request,
        caller=caller,
        action="EMPLOYEE_SITE_ASSIGNED",
        entity_type="work_site",
        entity_id=site_id,
        details={"employee_id": assignment.employee_id, "is_primary": assignment.is_primary},
    )
    return SiteAssignmentResponse(
        message="Employee assigned to site",
        assignment=SiteAssignmentRead.model_validate(assignment),
    )


@router.delete("/sites/{site_id}/assignments/{employee_id}")
def delete_site_assignment(
    site_id: int,
    employee_id: int,
    request: Request,
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> dict[str, str]:
    unassign_employee_site(db, caller, site_id, employee_id)
    record_audit(
        db,
        request,
        caller=caller,
        action="EMPLOYEE_SITE_UNASSIGNED",
        entity_type="work_site",
        entity_id=site_id,
        details={"employee_id": employee_id},
    )
    return {"message": "Employee removed from site"}


@router.get("/reports/daily", response_model=DailyAttendanceSummary)
def get_daily_report(
    day: date = Query(..., alias="date"),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> DailyAttendanceSummary:
    return calculate_daily_summary(db, caller, day=day)


@router.get("/reports/monthly", response_model=MonthlyAttendanceSummary)
def get_monthly_report(
    year: int = Query(..., ge=2000, le=2100),
    month: int = Query(..., ge=1, le=12),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> MonthlyAttendanceSummary:
    return calculate_monthly_summary(db, caller, year=year, month=month)


@router.get("/reports/statistics", response_model=AttendanceStatistics)
def get_statistics_report(
    start_date: date = Query(...),
    end_date: date = Query(...),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> AttendanceStatistics:
    return calculate_statistics(db, caller, start_date=start_date, end_date=end_date)


@router.get("/export.xlsx")
def export_attendance_xlsx(
    request: Request,
    start_date: date = Query(...),
    end_date: date = Query(...),
    caller: Caller = Depends(get_caller),
    db: Session = Depends(get_db),
) -> Response:
    payload = build_attendance_xlsx_bytes(db, caller, start_date=start_date, end_date=end_date)
    record_audit(
        db,
        request,
        caller=caller,
        action="ATTENDANCE_EXPORT_XLSX",
        entity_type="export",
        entity_id=f"{start_date.isoformat()}:{end_date.isoformat()}",
        details={"start_date": start_date.isoformat(), "end_date": end_date.isoformat()},
    )
    return Response(
        content=payload,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": (
                f'attachment; filename="attendance-{start_date.isoformat()}-{end_date.isoformat()}.xlsx"'
            ),
        },
    )
