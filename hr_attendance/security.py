from __future__ import annotations

from dataclasses import dataclass
import logging
from typing import Any

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from hr_attendance.db import get_db
from hr_attendance.errors import ApiError
from hr_attendance.services.identity import Caller, resolve_caller
from hr_attendance.settings import get_settings

logger = logging.getLogger("hr_attendance.security")

bearer_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class AuthIdentity:
    user_id: str
    claims: dict[str, Any]


def decode_access_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    if not settings.jwt_secret.strip():
        # An empty HS256 key would accept tokens anyone can sign.
        logger.error("jwt_secret_not_configured")
        raise ApiError(
            status_code=500,
            code="AUTH_NOT_CONFIGURED",
            message="Authentication is not configured.",
        )
    options: dict[str, bool] = {"require_sub": True, "require_exp": True}
    if not settings.jwt_issuer:
        options["verify_iss"] = False
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options=options,
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Unauthorized") from exc

    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Unauthorized")
    return payload


def require_identity(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthIdentity:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Unauthorized")

    payload = decode_access_token(credentials.credentials)
    identity = AuthIdentity(user_id=str(payload["sub"]), claims=payload)
    request.state.actor = "user"
    request.state.actor_id = identity.user_id
    return identity


def get_caller(
    request: Request,
    identity: AuthIdentity = Depends(require_identity),
    db: Session = Depends(get_db),
) -> Caller:
    caller = resolve_caller(db, identity.user_id)
    request.state.actor = "reviewer" if caller.is_reviewer else "employee"
    request.state.employee_id = caller.employee_id
    return caller
