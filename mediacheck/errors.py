"""
Error catalog, persistent error log and retry helper.

Every error the service wants to keep is written as one JSON line to
LOG_DIR/errors.log and mirrored to the "mediacheck.errors" logger at a level
matching its severity. The development-only /api/errors routes read the
same file back.
"""

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from enum import Enum
from pathlib import Path
from threading import Lock
from typing import Any, Awaitable, Callable, TypeVar
import asyncio
import json
import logging
import traceback

import requests
from fastapi import HTTPException

from mediacheck import config

logger = logging.getLogger("mediacheck.errors")

T = TypeVar("T")


class ErrorType(str, Enum):
    FILE_UPLOAD = "FILE_UPLOAD"
    FILE_PROCESSING = "FILE_PROCESSING"
    API_ERROR = "API_ERROR"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    SYSTEM_ERROR = "SYSTEM_ERROR"
    NETWORK_ERROR = "NETWORK_ERROR"
    TIMEOUT_ERROR = "TIMEOUT_ERROR"


class ErrorSeverity(str, Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


# code -> (internal message, message shown to the user)
ERROR_MESSAGES: dict[str, tuple[str, str]] = {
    "FILE_TOO_LARGE": (
        "File is too large",
        "The selected file is too large. The maximum allowed size is {max_size}.",
    ),
    "INVALID_FILE_TYPE": (
        "Unsupported file type",
        "Unsupported file type. Please choose an image, video or audio file.",
    ),
    "FILE_CORRUPTED": (
        "File is corrupted or unreadable",
        "The file is corrupted or unreadable. Please try another file.",
    ),
    "UPLOAD_FAILED": (
        "File upload failed",
        "Something went wrong while uploading the file. Please try again.",
    ),
    "PROCESSING_FAILED": (
        "File processing failed",
        "Something went wrong while processing the file. Please try again.",
    ),
    "ANALYSIS_TIMEOUT": (
        "Analysis timed out",
        "The analysis took longer than expected. Please try a smaller file.",
    ),
    "INSUFFICIENT_STORAGE": (
        "Not enough storage",
        "Temporary storage is full. Please try again later.",
    ),
    "API_UNAVAILABLE": (
        "Detection service unavailable",
        "The detection service is currently unavailable. Local analysis will be used.",
    ),
    "API_RATE_LIMIT": (
        "Request limit exceeded",
        "Too many requests. Please try again shortly.",
    ),
    "API_KEY_INVALID": (
        "Invalid API key",
        "A configuration error occurred. Local analysis will be used.",
    ),
    "API_TIMEOUT": (
        "Detection API timed out",
        "The detection service took too long to respond. Local analysis will be used.",
    ),
    "MISSING_FILE": (
        "No file selected",
        "Please choose a file to analyze.",
    ),
    "INVALID_REQUEST": (
        "Invalid request",
        "The submitted data is invalid. Please try again.",
    ),
    "SYSTEM_OVERLOAD": (
        "System overloaded",
        "The system is busy right now. Please try again shortly.",
    ),
    "INTERNAL_ERROR": (
        "Internal error",
        "An unexpected error occurred. Please try again later.",
    ),
    "NETWORK_ERROR": (
        "Network error",
        "A connection error occurred. Please check your connection and try again.",
    ),
    "CONNECTION_TIMEOUT": (
        "Connection timed out",
        "The connection timed out. Please try again.",
    ),
}

_UNKNOWN_MESSAGES = ("Unknown error", "An unexpected error occurred")


def _megabytes(size: int) -> str:
    return f"{round(size / (1024 * 1024), 2):g} MB"


def user_message(code: str) -> str:
    """Catalog message for code, with limits filled in from the current config."""
    _internal, message = ERROR_MESSAGES.get(code, _UNKNOWN_MESSAGES)
    return message.format(max_size=_megabytes(config.MAX_FILE_SIZE))


_SEVERITY_BY_TYPE = {
    ErrorType.SYSTEM_ERROR: ErrorSeverity.CRITICAL,
    ErrorType.API_ERROR: ErrorSeverity.HIGH,
    ErrorType.FILE_PROCESSING: ErrorSeverity.HIGH,
    ErrorType.NETWORK_ERROR: ErrorSeverity.MEDIUM,
    ErrorType.TIMEOUT_ERROR: ErrorSeverity.MEDIUM,
}

_LOG_LEVEL_BY_SEVERITY = {
    ErrorSeverity.CRITICAL: logging.ERROR,
    ErrorSeverity.HIGH: logging.ERROR,
    ErrorSeverity.MEDIUM: logging.WARNING,
    ErrorSeverity.LOW: logging.INFO,
}


@dataclass
class ErrorDetails:
    type: ErrorType
    severity: ErrorSeverity
    code: str
    message: str
    internal_message: str
    user_message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))
    context: dict[str, Any] | None = None
    stack_trace: str | None = None

    def to_dict(self) -> dict:
        data = asdict(self)
        data["type"] = self.type.value
        data["severity"] = self.severity.value
        data["timestamp"] = self.timestamp.isoformat()
        return data


class AppError(HTTPException):
    """HTTP error carrying an error code, an error type and log context."""

    def __init__(
        self,
        message: str,
        status_code: int = 500,
        code: str | None = None,
        error_type: ErrorType | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(status_code=status_code, detail=message)
        self.message = message
        self.code = code or "INTERNAL_SERVER_ERROR"
        self.error_type = error_type
        self.context = context or {}

    def __str__(self) -> str:
        return self.message


class ErrorLogger:
    """Appends errors as JSON lines and reads them back."""

    def __init__(self, log_dir: Path):
        self.log_dir = log_dir
        self.log_file = log_dir / "errors.log"
        self._lock = Lock()

    def _ensure_log_directory(self) -> None:
        self.log_dir.mkdir(parents=True, exist_ok=True)

    def log_error(self, error: ErrorDetails) -> None:
        entry = json.dumps(error.to_dict(), default=str, ensure_ascii=False)
        try:
            with self._lock:
                self._ensure_log_directory()
                with self.log_file.open("a", encoding="utf-8") as fh:
                    fh.write(entry + "\n")
        except OSError:
            logger.exception("Failed to write error log entry code=%s", error.code)

        logger.log(
            _LOG_LEVEL_BY_SEVERITY[error.severity],
            "%s: %s",
            error.code,
            error.message,
            extra={
                "error_type": error.type.value,
                "severity": error.severity.value,
                "context": error.context,
            },
        )

    def get_recent_errors(self, limit: int = 100) -> list[dict]:
        if not self.log_file.exists():
            return []
        try:
            with self._lock:
                lines = self.log_file.read_text(encoding="utf-8").strip().splitlines()
        except OSError:
            logger.exception("Failed to read error log")
            return []

        entries = []
        for line in lines[-limit:] if limit > 0 else []:
            if not line.strip():
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                continue
        return entries

    def clear_old_logs(self, days_to_keep: int = 30) -> int:
        """Drop entries older than days_to_keep; returns the number kept."""
        if not self.log_file.exists():
            return 0

        cutoff = datetime.now(UTC) - timedelta(days=days_to_keep)
        kept: list[str] = []
        try:
            with self._lock:
                for line in self.log_file.read_text(encoding="utf-8").splitlines():
                    try:
                        timestamp = datetime.fromisoformat(json.loads(line)["timestamp"])
                    except (json.JSONDecodeError, KeyError, TypeError, ValueError):
                        continue
                    if timestamp.tzinfo is None:
                        timestamp = timestamp.replace(tzinfo=UTC)
                    if timestamp >= cutoff:
                        kept.append(line)
                self.log_file.write_text(
                    "\n".join(kept) + ("\n" if kept else ""), encoding="utf-8"
                )
        except OSError:
            logger.exception("Failed to clean error log")
            return 0

        logger.info("Error log cleaned: kept %d entries", len(kept))
        return len(kept)


error_logger = ErrorLogger(config.LOG_DIR)


def create_error_details(
    error_type: ErrorType,
    code: str,
    original_error: BaseException | None = None,
    context: dict[str, Any] | None = None,
) -> ErrorDetails:
    internal_message = ERROR_MESSAGES.get(code, _UNKNOWN_MESSAGES)[0]
    stack_trace = None
    if original_error is not None and original_error.__traceback__ is not None:
        stack_trace = "".join(
            traceback.format_exception(
                type(original_error), original_error, original_error.__traceback__
            )
        )

    return ErrorDetails(
        type=error_type,
        severity=_SEVERITY_BY_TYPE.get(error_type, ErrorSeverity.LOW),
        code=code,
        message=str(original_error) if original_error is not None else internal_message,
        internal_message=internal_message,
        user_message=user_message(code),
        context=context,
        stack_trace=stack_trace,
    )


def log_error(
    error_type: ErrorType,
    code: str,
    original_error: BaseException | None = None,
    context: dict[str, Any] | None = None,
) -> ErrorDetails:
    details = create_error_details(error_type, code, original_error, context)
    error_logger.log_error(details)
    return details


def get_recent_errors(limit: int = 100) -> list[dict]:
    return error_logger.get_recent_errors(limit)


def clear_old_logs(days_to_keep: int = 30) -> int:
    return error_logger.clear_old_logs(days_to_keep)


async def retry_with_logging(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    delay_seconds: float = 1.0,
    error_type: ErrorType = ErrorType.API_ERROR,
    context: dict[str, Any] | None = None,
) -> T:
    """Run operation up to max_retries times, waiting delay * attempt in between."""
    last_error: Exception | None = None
    for attempt in range(1, max_retries + 1):
        try:
            return await operation()
        except Exception as exc:
            last_error = exc
            log_error(
                error_type,
                "RETRY_ATTEMPT_FAILED",
                exc,
                {**(context or {}), "attempt": attempt, "max_retries": max_retries},
            )
            if attempt == max_retries:
                break
            await asyncio.sleep(delay_seconds * attempt)

    log_error(
        error_type,
        "ALL_RETRIES_FAILED",
        last_error,
        {**(context or {}), "total_attempts": max_retries},
    )
    assert last_error is not None
    raise last_error


def handle_api_error(
    error: Exception, api_name: str, context: dict[str, Any] | None = None
) -> ErrorDetails:
    """Classify a failed external API call."""
    code = "API_UNKNOWN_ERROR"
    error_type = ErrorType.API_ERROR
    response = getattr(error, "response", None)
    status = getattr(response, "status_code", None)

    if isinstance(error, requests.Timeout) or "timeout" in str(error).lower():
        code = "API_TIMEOUT"
        error_type = ErrorType.TIMEOUT_ERROR
    elif isinstance(error, requests.ConnectionError):
        code = "API_UNAVAILABLE"
        error_type = ErrorType.NETWORK_ERROR
    elif status == 429:
        code = "API_RATE_LIMIT"
    elif status in (401, 403):
        code = "API_KEY_INVALID"
    elif status is not None and status >= 500:
        code = "API_UNAVAILABLE"

    return create_error_details(
        error_type,
        code,
        error,
        {**(context or {}), "api_name": api_name, "status_code": status},
    )
