from contextlib import asynccontextmanager
import logging
import time
from typing import Any
from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from hr_attendance.errors import ApiError, error_response
from hr_attendance.logging_utils import setup_json_logging
from hr_attendance.routers import attendance
from hr_attendance.settings import get_cors_origins, get_settings
from hr_attendance.worker import SchedulerWorker

setup_json_logging()
logger = logging.getLogger("hr_attendance.request")
settings = get_settings()

HTTP_ERROR_CODES = {
    401: "INVALID_TOKEN",
    403: "FORBIDDEN",
    404: "NOT_FOUND",
    405: "METHOD_NOT_ALLOWED",
}
REQUEST_CONTEXT_FIELDS = ("employee_id", "attendance_id", "ot_session_id", "correction_id")


@asynccontextmanager
async def lifespan(app_instance: FastAPI):
    worker: SchedulerWorker | None = None
    if settings.scheduler_worker_enabled:
        worker = SchedulerWorker(settings.scheduler_worker_interval_seconds)
        worker.start()
    app_instance.state.scheduler_worker = worker
    try:
        yield
    finally:
        if worker is not None:
            await worker.stop()
        app_instance.state.scheduler_worker = None


app = FastAPI(title=settings.app_name, version="0.1.0", lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=get_cors_origins(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_middleware(request: Request, call_next):
    request_id = request.headers.get("X-Request-Id") or str(uuid4())
    request.state.request_id = request_id
    started = time.perf_counter()
    status_code = 500
    try:
        response = await call_next(request)
        status_code = response.status_code
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        context = {field: getattr(request.state, field, None) for field in REQUEST_CONTEXT_FIELDS}
        logger.info(
            "request_complete",
            extra={
                "request_id": request_id,
                "method": request.method,
                "path": request.url.path,
                "status_code": status_code,
                "latency_ms": round((time.perf_counter() - started) * 1000, 2),
                "actor": getattr(request.state, "actor", "anonymous"),
                "actor_id": getattr(request.state, "actor_id", None),
                **context,
            },
        )


@app.exception_handler(ApiError)
async def handle_api_error(request: Request, exc: ApiError) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=exc.code,
        message=exc.message,
        extra=exc.extra,
    )


@app.exception_handler(StarletteHTTPException)
async def handle_http_exception(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return error_response(
        request,
        status_code=exc.status_code,
        code=HTTP_ERROR_CODES.get(exc.status_code, "HTTP_ERROR"),
        message=str(exc.detail) if exc.detail else "Request failed.",
    )


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return error_response(
        request,
        status_code=422,
        code="VALIDATION_ERROR",
        message=str(exc.errors()),
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    # Internals stay in the log; the client only sees the generic message.
    logger.exception(
        "unhandled_error",
        extra={
            "request_id": getattr(request.state, "request_id", "unknown"),
            "path": request.url.path,
            "method": request.method,
        },
    )
    return error_response(
        request,
        status_code=500,
        code="INTERNAL_ERROR",
        message="Internal server error",
    )


app.include_router(attendance.router)


@app.get("/health")
def health() -> dict[str, Any]:
    worker: SchedulerWorker | None = getattr(app.state, "scheduler_worker", None)
    return {
        "status": "ok",
        "scheduler_worker": bool(worker is not None and worker.running),
    }
