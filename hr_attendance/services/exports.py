from __future__ import annotations

from datetime import date, datetime, timezone
from io import BytesIO

from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter
from openpyxl.worksheet.worksheet import Worksheet
from sqlalchemy import select
from sqlalchemy.orm import Session

from hr_attendance.errors import ApiError
from hr_attendance.models import AttendanceRecord, AttendanceStatus, Employee, OvertimeSession, WorkSite
from hr_attendance.services.identity import Caller, require_reviewer
from hr_attendance.services.timesheet import attendance_timezone

RECORD_HEADERS = [
    "Date",
    "Employee ID",
    "Employee",
    "Site",
    "Clock In",
    "Clock Out",
    "Hours Worked",
    "Overtime Hours",
    "Status",
    "Provisional",
    "Locked",
    "Notes",
]

OT_HEADERS = [
    "Employee ID",
    "Employee",
    "OT In",
    "OT Out",
    "Total OT Hours",
    "Status",
    "Approved",
]

HEADER_FILL = PatternFill(fill_type="solid", fgColor="0B4F73")
META_LABEL_FILL = PatternFill(fill_type="solid", fgColor="EAF4F9")
WARNING_FILL = PatternFill(fill_type="solid", fgColor="FFF3CD")
ALERT_FILL = PatternFill(fill_type="solid", fgColor="FDE2E4")

HEADER_FONT = Font(bold=True, color="FFFFFF")
BOLD_FONT = Font(bold=True, color="0F172A")
TITLE_FONT = Font(bold=True, color="0B4F73", size=14)

THIN_SIDE = Side(style="thin", color="D5E2EC")
THIN_BORDER = Border(left=THIN_SIDE, right=THIN_SIDE, top=THIN_SIDE, bottom=THIN_SIDE)

STATUS_FILLS = {
    AttendanceStatus.LATE.value: WARNING_FILL,
    AttendanceStatus.HALF_DAY.value: WARNING_FILL,
    AttendanceStatus.ABSENT.value: ALERT_FILL,
}


def _to_local_excel_datetime(value: datetime | None) -> datetime | None:
    # Excel has no timezone support; cells carry local wall time.
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(attendance_timezone()).replace(tzinfo=None)


def _style_header(ws: Worksheet, row: int) -> None:
    for cell in ws[row]:
        cell.font = HEADER_FONT
        cell.fill = HEADER_FILL
        cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
        cell.border = THIN_BORDER


def _auto_width(ws: Worksheet) -> None:
    for column_cells in ws.iter_cols(min_row=1, max_row=ws.max_row, min_col=1, max_col=ws.max_column):
        col_letter = get_column_letter(column_cells[0].column)
        max_len = 0
        for cell in column_cells:
            if cell.coordinate in ws.merged_cells:
                continue
            max_len = max(max_len, len("" if cell.value is None else str(cell.value)))
        ws.column_dimensions[col_letter].width = min(max_len + 2, 45)


def _write_title(ws: Worksheet, title: str, meta: list[tuple[str, object]], width: int) -> int:
    ws.merge_cells(start_row=1, start_column=1, end_row=1, end_column=width)
    title_cell = ws.cell(row=1, column=1, value=title)
    title_cell.font = TITLE_FONT
    title_cell.alignment = Alignment(horizontal="left", vertical="center")
    for label, value in meta:
        ws.append([label, value])
        label_cell = ws.cell(row=ws.max_row, column=1)
        label_cell.font = BOLD_FONT
        label_cell.fill = META_LABEL_FILL
        label_cell.border = THIN_BORDER
    ws.append([])
    return ws.max_row + 1


def _finish_table(ws: Worksheet, *, header_row: int, datetime_cols: tuple[int, ...]) -> None:
    data_start = header_row + 1
    ws.freeze_panes = f"A{data_start}"
    if ws.max_row < data_start:
        return
    ws.auto_filter.ref = f"A{header_row}:{get_column_letter(ws.max_column)}{ws.max_row}"
    for row in ws.iter_rows(min_row=data_start, max_row=ws.max_row):
        for col_idx in datetime_cols:
            if row[col_idx].value is not None:
                row[col_idx].number_format = "yyyy-mm-dd hh:mm"


def _fetch_record_rows(
    db: Session,
    *,
    company_id: int,
    start_date: date,
    end_date: date,
) -> list[tuple[AttendanceRecord, Employee, WorkSite | None]]:
    stmt = (
        select(AttendanceRecord, Employee, WorkSite)
        .join(Employee, Employee.id == AttendanceRecord.employee_id)
        .outerjoin(WorkSite, WorkSite.id == AttendanceRecord.site_id)
        .where(
            Employee.company_id == company_id,
            AttendanceRecord.attendance_date >= start_date,
            AttendanceRecord.attendance_date <= end_date,
        )
        .order_by(AttendanceRecord.attendance_date.asc(), Employee.full_name.asc(), AttendanceRecord.id.asc())
    )
    return list(db.execute(stmt).all())


def _fetch_ot_rows(
    db: Session,
    *,
    company_id: int,
    start_date: date,
    end_date: date,
) -> list[tuple[OvertimeSession, Employee]]:
    stmt = (
        select(OvertimeSession, Employee)
        .join(Employee, Employee.id == OvertimeSession.employee_id)
        .join(AttendanceRecord, AttendanceRecord.id == OvertimeSession.attendance_record_id)
        .where(
            Employee.company_id == company_id,
            AttendanceRecord.attendance_date >= start_date,
            AttendanceRecord.attendance_date <= end_date,
        )
        .order_by(OvertimeSession.ot_in_time.asc(), OvertimeSession.id.asc())
    )
    return list(db.execute(stmt).all())


def _write_records_sheet(
    ws: Worksheet,
    rows: list[tuple[AttendanceRecord, Employee, WorkSite | None]],
    *,
    start_date: date,
    end_date: date,
) -> None:
    ws.title = "Attendance"
    header_row = _write_title(
        ws,
        "ATTENDANCE REPORT",
        [
            ("Period", f"{start_date.isoformat()} to {end_date.isoformat()}"),
            ("Records", len(rows)),
            ("Generated (UTC)", datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M:%S")),
        ],
        len(RECORD_HEADERS),
    )
    ws.append(RECORD_HEADERS)
    _style_header(ws, header_row)

    status_col = RECORD_HEADERS.index("Status") + 1
    for record, employee, site in rows:
        ws.append(
            [
                record.attendance_date,
                employee.id,
                employee.full_name,
                site.site_name if site is not None else "-",
                _to_local_excel_datetime(record.clock_in_time),
                _to_local_excel_datetime(record.clock_out_time),
                float(record.hours_worked or 0),
                float(record.overtime_hours or 0),
                record.status.value,
                "yes" if record.is_provisional else "no",
                "yes" if record.locked_for_payroll else "no",
                record.notes or "",
            ]
        )
        fill = STATUS_FILLS.get(record.status.value)
        if fill is not None:
            ws.cell(row=ws.max_row, column=status_col).fill = fill
        ws.cell(row=ws.max_row, column=1).number_format = "yyyy-mm-dd"

    _finish_table(ws, header_row=header_row, datetime_cols=(4, 5))
    _auto_width(ws)


def _write_ot_sheet(ws: Worksheet, rows: list[tuple[OvertimeSession, Employee]]) -> None:
    header_row = _write_title(ws, "OVERTIME SESSIONS", [("Sessions", len(rows))], len(OT_HEADERS))
    ws.append(OT_HEADERS)
    _style_header(ws, header_row)
    for session, employee in rows:
        ws.append(
            [
                employee.id,
                employee.full_name,
                _to_local_excel_datetime(session.ot_in_time),
                _to_local_excel_datetime(session.ot_out_time),
                float(session.total_ot_hours) if session.total_ot_hours is not None else None,
                session.status.value,
                "yes" if session.is_approved else "no",
            ]
        )
    _finish_table(ws, header_row=header_row, datetime_cols=(2, 3))
    _auto_width(ws)


def build_attendance_xlsx_bytes(
    db: Session,
    caller: Caller,
    *,
    start_date: date,
    end_date: date,
) -> bytes:
    require_reviewer(caller, message="Only HR administrators can export attendance.")
    if end_date < start_date:
        raise ApiError(
            status_code=422,
            code="INVALID_DATE_RANGE",
            message="end_date must be greater than or equal to start_date",
        )

    wb = Workbook()
    _write_records_sheet(
        wb.active,
        _fetch_record_rows(db, company_id=caller.company_id, start_date=start_date, end_date=end_date),
        start_date=start_date,
        end_date=end_date,
    )
    _write_ot_sheet(
        wb.create_sheet("Overtime"),
        _fetch_ot_rows(db, company_id=caller.company_id, start_date=start_date, end_date=end_date),
    )

    stream = BytesIO()
    wb.save(stream)
    return stream.getvalue()
