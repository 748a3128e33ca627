from datetime import date, datetime, time
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from hr_attendance.models import (
    AttendanceStatus,
    CorrectionStatus,
    CorrectionType,
    OvertimeStatus,
)


class GeoFix(BaseModel):
    latitude: float = Field(ge=-90, le=90)
    longitude: float = Field(ge=-180, le=180)


class ClockInRequest(GeoFix):
    site_id: int = Field(ge=1)


class ClockOutRequest(GeoFix):
    attendance_record_id: int = Field(ge=1)


class OTClockInRequest(GeoFix):
    site_id: int = Field(ge=1)
    attendance_record_id: int = Field(ge=1)


class OTClockOutRequest(GeoFix):
    ot_session_id: int | None = Field(default=None, ge=1)
    site_id: int | None = Field(default=None, ge=1)


class CorrectionCreateRequest(BaseModel):
    attendance_record_id: int = Field(ge=1)
    correction_type: CorrectionType
    requested_clock_in: datetime | None = None
    requested_clock_out: datetime | None = None
    # Length rule is enforced by the service so it surfaces as a 400.
    reason: str
    attachment_url: str | None = Field(default=None, max_length=1000)


class CorrectionReviewBody(BaseModel):
    action: Literal["approve", "reject"]
    reviewer_notes: str | None = Field(default=None, max_length=2000)


class CorrectionReviewRequest(CorrectionReviewBody):
    correction_id: int = Field(ge=1)


class WorkSiteRead(BaseModel):
    id: int
    site_name: str
    address: str | None = None
    latitude: float
    longitude: float
    radius_meters: int | None
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True)


class WorkSiteCreate(GeoFix):
    site_name: str = Field(min_length=1, max_length=255)
    address: str | None = Field(default=None, max_length=500)
    # Omitted radius uses the company geofence radius.
    radius_meters: int | None = Field(default=None, ge=10, le=50_000)


class WorkSiteUpdate(BaseModel):
    site_name: str | None = Field(default=None, min_length=1, max_length=255)
    address: str | None = Field(default=None, max_length=500)
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    radius_meters: int | None = Field(default=None, ge=10, le=50_000)
    is_active: bool | None = None


class SiteAssignmentRequest(BaseModel):
    employee_id: int = Field(ge=1)
    is_primary: bool = False


class SiteAssignmentRead(BaseModel):
    id: int
    employee_id: int
    site_id: int
    is_primary: bool

    model_config = ConfigDict(from_attributes=True)


class ShiftRead(BaseModel):
    id: int
    shift_name: str
    start_time: time
    end_time: time
    grace_period_minutes: int | None
    lunch_break_minutes: int

    model_config = ConfigDict(from_attributes=True)


class AttendanceRecordRead(BaseModel):
    id: int
    employee_id: int
    site_id: int | None
    shift_id: int | None
    attendance_date: date
    clock_in_time: datetime | None
    clock_in_latitude: float | None
    clock_in_longitude: float | None
    clock_out_time: datetime | None
    clock_out_latitude: float | None
    clock_out_longitude: float | None
    status: AttendanceStatus
    hours_worked: float | None
    overtime_hours: float | None
    locked_for_payroll: bool
    is_provisional: bool
    is_manually_adjusted: bool
    correction_id: int | None
    notes: str | None

    model_config = ConfigDict(from_attributes=True)


class AttendanceRecordDetailRead(AttendanceRecordRead):
    site: WorkSiteRead | None = None
    shift: ShiftRead | None = None


class OvertimeSessionRead(BaseModel):
    id: int
    employee_id: int
    attendance_record_id: int
    site_id: int
    ot_in_time: datetime
    ot_in_latitude: float
    ot_in_longitude: float
    ot_out_time: datetime | None
    ot_out_latitude: float | None
    ot_out_longitude: float | None
    status: OvertimeStatus
    total_ot_hours: float | None
    is_approved: bool
    approved_by: int | None
    approved_at: datetime | None
    auto_closed_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class CorrectionRead(BaseModel):
    id: int
    employee_id: int
    attendance_record_id: int
    correction_type: CorrectionType
    requested_clock_in: datetime | None
    requested_clock_out: datetime | None
    reason: str
    attachment_url: str | None
    submission_deadline: datetime
    is_within_deadline: bool
    status: CorrectionStatus
    reviewed_by: int | None
    reviewer_notes: str | None
    reviewed_at: datetime | None

    model_config = ConfigDict(from_attributes=True)


class ClockInResponse(BaseModel):
    success: bool = True
    message: str
    attendance: AttendanceRecordRead


class ClockOutResponse(BaseModel):
    success: bool = True
    message: str
    attendance: AttendanceRecordRead
    hours_worked: float | None
    overtime_hours: float | None


class OTClockInResponse(BaseModel):
    success: bool = True
    message: str
    ot_session: OvertimeSessionRead


class OTClockOutResponse(BaseModel):
    success: bool = True
    message: str
    ot_session: OvertimeSessionRead
    total_hours: float | None


class OTApproveResponse(BaseModel):
    success: bool = True
    message: str
    ot_session: OvertimeSessionRead


class CorrectionCreateResponse(BaseModel):
    success: bool = True
    correction: CorrectionRead
    deadline: datetime
    within_deadline: bool


class CorrectionReviewResponse(BaseModel):
    success: bool = True
    message: str
    action: Literal["approve", "reject"]


class MyStatusResponse(BaseModel):
    attendance: AttendanceRecordDetailRead | None
    has_clocked_in: bool
    has_clocked_out: bool
    active_ot_session: OvertimeSessionRead | None


class TodaySummaryResponse(BaseModel):
    present_count: int
    late_count: int
    absent_count: int
    average_hours: float
    total_employees: int


class AttendanceRecordListResponse(BaseModel):
    records: list[AttendanceRecordRead]


class CorrectionListResponse(BaseModel):
    corrections: list[CorrectionRead]


class OvertimeSessionListResponse(BaseModel):
    ot_sessions: list[OvertimeSessionRead]


class WorkSiteListResponse(BaseModel):
    sites: list[WorkSiteRead]


class WorkSiteResponse(BaseModel):
    message: str
    site: WorkSiteRead


class SiteAssignmentResponse(BaseModel):
    message: str
    assignment: SiteAssignmentRead


class DailyAttendanceSummary(BaseModel):
    date: date
    total_staff: int
    present_count: int
    on_time_count: int
    late_count: int
    attendance_rate: float


class MonthlyEmployeeSummaryItem(BaseModel):
    employee_id: int
    employee_name: str
    department_name: str | None
    site_name: str | None
    present_days: int
    absent_days: int
    late_count: int
    total_hours: float
    attendance_rate: float


class MonthlyAttendanceSummary(BaseModel):
    year: int
    month: int
    working_days: int
    employees: list[MonthlyEmployeeSummaryItem]


class DepartmentRateItem(BaseModel):
    department: str
    rate: float


class StatusDistributionItem(BaseModel):
    name: str
    value: int


class AttendanceTrendPoint(BaseModel):
    date: date
    rate: float


class AttendanceStatistics(BaseModel):
    start_date: date
    end_date: date
    department_rates: list[DepartmentRateItem]
    distribution: list[StatusDistributionItem]
    trend: list[AttendanceTrendPoint]


class AttendanceSettingsRead(BaseModel):
    company_id: int
    correction_window_hours: int
    grace_period_minutes: int
    geofence_radius_meters: int | None
    auto_clockout_enabled: bool
    ot_auto_close_hours: int
    notification_settings: dict[str, Any]


class AttendanceSettingsUpdate(BaseModel):
    correction_window_hours: int | None = Field(default=None, ge=1, le=24 * 31)
    grace_period_minutes: int | None = Field(default=None, ge=0, le=240)
    geofence_radius_meters: int | None = Field(default=None, ge=10, le=50_000)
    auto_clockout_enabled: bool | None = None
    ot_auto_close_hours: int | None = Field(default=None, ge=1, le=24)
    notification_settings: dict[str, bool] | None = None
