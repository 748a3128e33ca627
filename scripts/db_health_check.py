#!/usr/bin/env python
from __future__ import annotations

import json
import os
from datetime import datetime, timezone
from pathlib import Path

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url


EXPECTED_HEAD = "0002_sites_and_reports"
REQUIRED_TABLES = (
    "companies",
    "departments",
    "employees",
    "user_roles",
    "work_sites",
    "employee_sites",
    "shifts",
    "employee_shifts",
    "attendance_config",
    "public_holidays",
    "leave_requests",
    "attendance_records",
    "overtime_sessions",
    "attendance_corrections",
    "notification_log",
    "audit_logs",
)


def load_env_if_exists() -> None:
    env_file = Path(".env")
    if not env_file.exists():
        return
    for raw_line in env_file.read_text(encoding="utf-8").splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        os.environ.setdefault(key.strip(), value.strip())


def run() -> dict:
    load_env_if_exists()
    database_url = os.environ.get("DATABASE_URL")
    if not database_url:
        raise RuntimeError("DATABASE_URL not found (.env or env vars).")

    engine = create_engine(database_url)
    report: dict = {
        "generated_at_utc": datetime.now(timezone.utc).isoformat(),
        "database_url": make_url(database_url).render_as_string(hide_password=True),
        "checks": [],
    }

    def add(name: str, status: str, details: dict) -> None:
        report["checks"].append({"name": name, "status": status, "details": details})

    with engine.connect() as conn:
        tables = set(
            conn.execute(
                text(
                    """
                    select table_name
                    from information_schema.tables
                    where table_schema='public'
                    """
                )
            ).scalars()
        )

        current_versions: list[str] = []
        if "alembic_version" in tables:
            current_versions = [
                row[0]
                for row in conn.execute(text("select version_num from alembic_version")).fetchall()
            ]
        add(
            "migration_up_to_date",
            "ok" if EXPECTED_HEAD in current_versions else "warn",
            {"expected_head": EXPECTED_HEAD, "current": current_versions},
        )

        missing = [table for table in REQUIRED_TABLES if table not in tables]
        add("missing_tables", "fail" if missing else "ok", {"tables": missing})

        if "attendance_records" in tables:
            duplicate_days = conn.execute(
                text(
                    """
                    select employee_id, attendance_date, count(*)
                    from attendance_records
                    group by employee_id, attendance_date
                    having count(*) > 1
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "duplicate_attendance_day",
                "fail" if duplicate_days else "ok",
                {"rows": [[row[0], row[1].isoformat(), row[2]] for row in duplicate_days]},
            )

        if "overtime_sessions" in tables:
            multiple_active = conn.execute(
                text(
                    """
                    select employee_id, count(*)
                    from overtime_sessions
                    where status = 'active'
                    group by employee_id
                    having count(*) > 1
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "multiple_active_ot_sessions",
                "fail" if multiple_active else "ok",
                {"rows": [list(row) for row in multiple_active]},
            )

        if "attendance_corrections" in tables:
            overdue_pending = conn.execute(
                text(
                    """
                    select id, employee_id, submission_deadline
                    from attendance_corrections
                    where status = 'pending'
                      and submission_deadline < now()
                    order by submission_deadline asc
                    limit 20
                    """
                )
            ).fetchall()
            add(
                "pending_corrections_past_deadline",
                "warn" if overdue_pending else "ok",
                {
                    "sample": [
                        {"id": row[0], "employee_id": row[1], "deadline": row[2].isoformat()}
                        for row in overdue_pending
                    ]
                },
            )

    return report


if __name__ == "__main__":
    print(json.dumps(run(), ensure_ascii=False, indent=2))
