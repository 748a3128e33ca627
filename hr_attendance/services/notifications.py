"""Notification outbox.

Rows are added to the caller's session and become visible only when the
surrounding state change commits, so a notification never describes a
change that was rolled back.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from hr_attendance.models import Employee, NotificationLog, NotificationType
from hr_attendance.services.timesheet import normalize_ts


def enqueue_notification(
    db: Session,
    *,
    employee_id: int,
    notification_type: NotificationType,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
    now_utc: datetime | None = None,
) -> NotificationLog:
    notification = NotificationLog(
        employee_id=employee_id,
        notification_type=notification_type,
        title=title,
        message=message,
        data=data or {},
        sent_at=normalize_ts(now_utc),
    )
    db.add(notification)
    return notification


def enqueue_for_employees(
    db: Session,
    *,
    recipients: list[Employee],
    notification_type: NotificationType,
    title: str,
    message: str,
    data: dict[str, Any] | None = None,
    now_utc: datetime | None = None,
) -> list[NotificationLog]:
    return [
        enqueue_notification(
            db,
            employee_id=recipient.id,
            notification_type=notification_type,
            title=title,
            message=message,
            data=data,
            now_utc=now_utc,
        )
        for recipient in recipients
    ]
