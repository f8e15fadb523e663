from contextlib import asynccontextmanager
from datetime import UTC, datetime
import logging
import traceback

from apscheduler.schedulers.background import BackgroundScheduler
from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.responses import FileResponse, JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from mediacheck import config
from mediacheck.cache import clean_expired_cache
from mediacheck.compression import clean_optimized_files
from mediacheck.errors import ERROR_MESSAGES, AppError, ErrorType, clear_old_logs, log_error, user_message
from mediacheck.logging_config import setup_logging
from mediacheck.routers import analyze, errors, performance, security, upload
from mediacheck.security import (
    RateLimitExceeded,
    SanitizeInputMiddleware,
    apply_security_headers,
    check_blocked_ip,
    check_csrf,
    client_ip,
    detect_suspicious_activity,
    general_api_limiter,
    rate_limit_response,
    security_state,
)
from mediacheck.storage import auto_delete_service

logger = logging.getLogger("mediacheck")


@asynccontextmanager
async def lifespan(app: FastAPI):
    setup_logging()
    for directory in (config.UPLOAD_DIR, config.TEMP_DIR, config.CACHE_DIR,
                      config.OPTIMIZED_DIR, config.LOG_DIR):
        directory.mkdir(parents=True, exist_ok=True)

    clear_old_logs(30)

    scheduler = BackgroundScheduler()
    try:
        auto_delete_service.start(scheduler)
        scheduler.add_job(clean_expired_cache, "interval", hours=1, id="cache_cleanup")
        scheduler.add_job(security_state.clear_counters, "interval", hours=1, id="suspicious_counters_reset")
        scheduler.add_job(clean_optimized_files, "interval", minutes=30, id="optimized_cleanup")
        scheduler.start()
        app.state.scheduler = scheduler
    except Exception:
        # Stay available even if background jobs can't be scheduled.
        logger.exception("Failed to start background jobs")

    logger.info(
        "MediaCheck started: environment=%s upload_dir=%s max_file_size=%d",
        config.ENVIRONMENT, config.UPLOAD_DIR, config.MAX_FILE_SIZE,
    )
    try:
        yield
    finally:
        auto_delete_service.stop()
        if scheduler.running:
            scheduler.shutdown(wait=False)
        app.state.scheduler = None


app = FastAPI(title="MediaCheck API", version=config.VERSION, lifespan=lifespan)

app.include_router(upload.router)
app.include_router(analyze.router)
app.include_router(security.router)
app.include_router(errors.router)
app.include_router(performance.router)

app.add_middleware(SanitizeInputMiddleware)


@app.middleware("http")
async def security_middleware(request: Request, call_next):
    if config.is_production():
        blocked = check_blocked_ip(request) or detect_suspicious_activity(request)
        if blocked is not None:
            apply_security_headers(blocked.headers)
            return blocked

    rejected = check_csrf(request)
    if rejected is not None:
        apply_security_headers(rejected.headers)
        return rejected

    response = await call_next(request)
    apply_security_headers(response.headers)
    return response


app.add_middleware(GZipMiddleware, minimum_size=1024)
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization", "X-Requested-With"],
)


def error_response(
    request: Request,
    status_code: int,
    code: str,
    message: str,
    details: dict | None = None,
    error: BaseException | None = None,
) -> JSONResponse:
    content = {
        "success": False,
        "error": message,
        "code": code,
        "timestamp": datetime.now(UTC).isoformat(),
    }
    if config.is_development():
        content["details"] = details or {}
        content["path"] = request.url.path
        if error is not None and error.__traceback__ is not None:
            content["stack"] = "".join(traceback.format_exception(type(error), error, error.__traceback__))
    return JSONResponse(status_code=status_code, content=content)


def _request_context(request: Request) -> dict:
    return {
        "url": request.url.path,
        "method": request.method,
        "ip": client_ip(request),
        "user_agent": request.headers.get("user-agent"),
    }


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded):
    response = rate_limit_response(exc)
    apply_security_headers(response.headers)
    return response


@app.exception_handler(AppError)
async def app_error_handler(request: Request, exc: AppError):
    error_type = exc.error_type or (
        ErrorType.SYSTEM_ERROR if exc.status_code >= 500 else ErrorType.VALIDATION_ERROR
    )
    log_error(error_type, exc.code, exc, {**exc.context, **_request_context(request)})

    message = user_message(exc.code) if exc.code in ERROR_MESSAGES else exc.message
    return error_response(request, exc.status_code, exc.code, message, exc.context, exc)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    log_error(ErrorType.VALIDATION_ERROR, "INVALID_REQUEST", None, _request_context(request))
    return error_response(
        request, 400, "INVALID_REQUEST", user_message("INVALID_REQUEST"),
        {"errors": jsonable_errors(exc)},
    )


@app.exception_handler(StarletteHTTPException)
async def http_error_handler(request: Request, exc: StarletteHTTPException):
    code = "NOT_FOUND" if exc.status_code == 404 else f"HTTP_{exc.status_code}"
    return error_response(request, exc.status_code, code, str(exc.detail))


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    log_error(ErrorType.SYSTEM_ERROR, "INTERNAL_SERVER_ERROR", exc, _request_context(request))
    return error_response(
        request, 500, "INTERNAL_SERVER_ERROR", user_message("INTERNAL_ERROR"), error=exc
    )


def jsonable_errors(exc: RequestValidationError) -> list[dict]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


@app.get("/api/health", dependencies=[Depends(general_api_limiter)])
def health():
    return {
        "status": "OK",
        "message": "MediaCheck API is running",
        "timestamp": datetime.now(UTC).isoformat(),
        "version": config.VERSION,
    }


@app.api_route("/api/{path:path}", methods=["GET", "POST", "PUT", "DELETE", "PATCH"])
def api_not_found(path: str):
    raise AppError("API endpoint not found", 404, "NOT_FOUND", ErrorType.VALIDATION_ERROR,
                   {"path": f"/api/{path}"})


@app.get("/{full_path:path}")
def frontend(full_path: str):
    root = config.FRONTEND_DIR.resolve()
    index = root / "index.html"
    if not index.is_file():
        raise AppError("Frontend is not built", 503, "FRONTEND_UNAVAILABLE", ErrorType.SYSTEM_ERROR)

    requested = (root / full_path).resolve()
    if full_path and requested.is_relative_to(root) and requested.is_file():
        return FileResponse(requested)
    return FileResponse(index)
