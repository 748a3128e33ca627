from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from fastapi import Request
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from hr_attendance.models import AuditActorType, AuditLog
from hr_attendance.services.identity import Caller

logger = logging.getLogger("hr_attendance.audit")


def client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def record_audit(
    db: Session,
    request: Request,
    *,
    caller: Caller,
    action: str,
    entity_type: str,
    entity_id: int | str,
    details: dict[str, Any] | None = None,
) -> None:
    """Persist an audit row for an already committed decision.

    The write runs in its own commit; a failure here is logged and swallowed
    because the decision it describes has already been made durable.
    """
    actor_type = AuditActorType.REVIEWER if caller.is_reviewer else AuditActorType.EMPLOYEE
    request_id = getattr(request.state, "request_id", None)
    entry = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=str(caller.employee_id),
        action=action,
        entity_type=entity_type,
        entity_id=str(entity_id),
        ip=client_ip(request),
        user_agent=request.headers.get("user-agent"),
        success=True,
        details=details or {},
    )
    db.add(entry)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={"request_id": request_id, "action": action, "actor_id": entry.actor_id},
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": entry.actor_id,
            "entity_type": entity_type,
            "entity_id": entry.entity_id,
            "details": details or {},
        },
    )
