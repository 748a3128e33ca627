from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from hr_attendance.models import AttendanceConfig, NotificationType
from hr_attendance.schemas import AttendanceSettingsUpdate
from hr_attendance.settings import get_settings


@dataclass(frozen=True)
class ResolvedAttendanceConfig:
    company_id: int
    correction_window_hours: int
    grace_period_minutes: int
    geofence_radius_meters: int | None
    auto_clockout_enabled: bool
    ot_auto_close_hours: int
    notification_settings: dict[str, Any] = field(default_factory=dict)

    def notification_enabled(self, notification_type: NotificationType) -> bool:
        return self.notification_settings.get(notification_type.value) is not False

    def to_dict(self) -> dict[str, Any]:
        return {
            "company_id": self.company_id,
            "correction_window_hours": self.correction_window_hours,
            "grace_period_minutes": self.grace_period_minutes,
            "geofence_radius_meters": self.geofence_radius_meters,
            "auto_clockout_enabled": self.auto_clockout_enabled,
            "ot_auto_close_hours": self.ot_auto_close_hours,
            "notification_settings": dict(self.notification_settings),
        }


def _positive_or(value: int | None, default: int) -> int:
    if value is None or value <= 0:
        return default
    return value


def resolve_config(company_id: int, row: AttendanceConfig | None) -> ResolvedAttendanceConfig:
    settings = get_settings()
    if row is None:
        return ResolvedAttendanceConfig(
            company_id=company_id,
            correction_window_hours=settings.default_correction_window_hours,
            grace_period_minutes=settings.default_grace_period_minutes,
            geofence_radius_meters=None,
            auto_clockout_enabled=True,
            ot_auto_close_hours=settings.default_ot_auto_close_hours,
        )
    return ResolvedAttendanceConfig(
        company_id=company_id,
        correction_window_hours=_positive_or(row.correction_window_hours, settings.default_correction_window_hours),
        grace_period_minutes=(
            row.grace_period_minutes
            if row.grace_period_minutes is not None
            else settings.default_grace_period_minutes
        ),
        geofence_radius_meters=row.geofence_radius_meters,
        auto_clockout_enabled=row.auto_clockout_enabled is not False,
        ot_auto_close_hours=_positive_or(row.ot_auto_close_hours, settings.default_ot_auto_close_hours),
        notification_settings=dict(row.notification_settings or {}),
    )


def get_attendance_config(db: Session, company_id: int) -> ResolvedAttendanceConfig:
    row = db.scalar(select(AttendanceConfig).where(AttendanceConfig.company_id == company_id))
    return resolve_config(company_id, row)


def upsert_attendance_config(
    db: Session,
    *,
    company_id: int,
    payload: AttendanceSettingsUpdate,
) -> ResolvedAttendanceConfig:
    row = db.scalar(select(AttendanceConfig).where(AttendanceConfig.company_id == company_id))
    if row is None:
        row = AttendanceConfig(company_id=company_id)
        db.add(row)

    changes = payload.model_dump(exclude_unset=True)
    for key, value in changes.items():
        if key == "notification_settings" and value is not None:
            merged = dict(row.notification_settings or {})
            merged.update(value)
            value = merged
        setattr(row, key, value)

    db.commit()
    db.refresh(row)
    return resolve_config(company_id, row)
