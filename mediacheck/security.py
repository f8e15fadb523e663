"""
Request-level protection: rate limits, IP blocking, suspicious activity
scoring, input sanitization, CSRF origin checks and security headers.

All state lives in process memory and is lost on restart.
"""

from collections import deque
from threading import Lock
from time import monotonic
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlparse
import json
import logging
import re

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from mediacheck import config
from mediacheck.errors import AppError, ErrorType, log_error

logger = logging.getLogger("mediacheck.security")

BLOCK_AFTER_SUSPICIOUS = 5

SUSPICIOUS_USER_AGENTS = (
    "bot", "crawler", "spider", "scraper", "curl", "wget",
    "python", "java", "go-http", "postman",
)
PROXY_HEADERS = ("x-forwarded-for", "x-real-ip", "x-originating-ip")
SENSITIVE_PATHS = ("/admin", "/config", "/env", "/.env", "/backup")
LOOPBACK_HOSTS = ("127.0.0.1", "::1", "localhost")

SECURITY_HEADERS = {
    "Content-Security-Policy": (
        "default-src 'self'; style-src 'self' 'unsafe-inline'; script-src 'self'; "
        "img-src 'self' data: https:; connect-src 'self'; font-src 'self'; "
        "object-src 'none'; media-src 'self'; frame-src 'none'"
    ),
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains; preload",
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "0",
    "Referrer-Policy": "no-referrer",
}

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.I)
_JS_PROTOCOL_RE = re.compile(r"javascript:", re.I)
_EVENT_HANDLER_RE = re.compile(r"on\w+\s*=", re.I)


def client_ip(request: Request) -> str:
    return request.client.host if request.client else "unknown"


class SecurityState:
    """Blocked IPs and per-IP suspicious request counters."""

    def __init__(self):
        self._lock = Lock()
        self.blocked_ips: set[str] = set()
        self.suspicious_requests: dict[str, int] = {}

    def record_suspicious(self, ip: str) -> int:
        """Increment the counter and return the value it had before."""
        with self._lock:
            previous = self.suspicious_requests.get(ip, 0)
            self.suspicious_requests[ip] = previous + 1
            return previous

    def suspicious_count(self, ip: str) -> int:
        with self._lock:
            return self.suspicious_requests.get(ip, 0)

    def block(self, ip: str) -> None:
        with self._lock:
            self.blocked_ips.add(ip)
        logger.warning("Temporarily blocked IP %s", ip)

    def unblock(self, ip: str) -> bool:
        with self._lock:
            if ip not in self.blocked_ips:
                return False
            self.blocked_ips.discard(ip)
            self.suspicious_requests.pop(ip, None)
        logger.info("Unblocked IP %s", ip)
        return True

    def is_blocked(self, ip: str) -> bool:
        with self._lock:
            return ip in self.blocked_ips

    def clear_counters(self) -> None:
        with self._lock:
            self.suspicious_requests.clear()
        logger.info("Suspicious request counters cleared")

    def reset(self) -> None:
        with self._lock:
            self.blocked_ips.clear()
            self.suspicious_requests.clear()

    def stats(self) -> dict:
        with self._lock:
            return {
                "blocked_ips": sorted(self.blocked_ips),
                "suspicious_requests": dict(self.suspicious_requests),
                "total_blocked_ips": len(self.blocked_ips),
                "total_suspicious_requests": sum(self.suspicious_requests.values()),
            }


security_state = SecurityState()


def _request_info(request: Request) -> dict:
    return {
        "ip": client_ip(request),
        "user_agent": request.headers.get("user-agent", "unknown"),
        "method": request.method,
        "url": str(request.url.path),
    }


class RateLimitExceeded(AppError):
    def __init__(self, message: str, retry_after: int):
        super().__init__(message, 429, "RATE_LIMIT_EXCEEDED", ErrorType.SYSTEM_ERROR)
        self.retry_after = retry_after


class RateLimiter:
    """Sliding-window limiter, used as a FastAPI dependency."""

    def __init__(self, name: str, limit: int, window_seconds: int, message: str):
        self.name = name
        self.limit = limit
        self.window_seconds = window_seconds
        self.message = message
        self._lock = Lock()
        self._requests: dict[str, deque[float]] = {}

    def hit(self, client_id: str) -> None:
        now = monotonic()
        with self._lock:
            stale = [
                cid for cid, ts in self._requests.items()
                if not ts or now - ts[-1] >= self.window_seconds
            ]
            for cid in stale:
                del self._requests[cid]

            timestamps = self._requests.setdefault(client_id, deque())
            while timestamps and now - timestamps[0] >= self.window_seconds:
                timestamps.popleft()

            if len(timestamps) < self.limit:
                timestamps.append(now)
                return

        raise RateLimitExceeded(self.message, self.window_seconds)

    def release(self, client_id: str) -> None:
        """Forget the most recent request, for limits that only count failures."""
        with self._lock:
            timestamps = self._requests.get(client_id)
            if timestamps:
                timestamps.pop()

    def reset(self) -> None:
        with self._lock:
            self._requests.clear()

    async def __call__(self, request: Request) -> None:
        ip = client_ip(request)
        try:
            self.hit(ip)
        except RateLimitExceeded as exc:
            info = {**_request_info(request), "limiter": self.name}
            log_error(ErrorType.SYSTEM_ERROR, "RATE_LIMIT_EXCEEDED", exc, info)
            if security_state.record_suspicious(ip) >= BLOCK_AFTER_SUSPICIOUS:
                security_state.block(ip)
                log_error(ErrorType.SYSTEM_ERROR, "IP_TEMPORARILY_BLOCKED", None, info)
            raise


general_api_limiter = RateLimiter(
    "general", 100, 15 * 60, "Too many requests. Please try again in 15 minutes."
)
upload_limiter = RateLimiter(
    "upload", 10, 15 * 60, "Upload limit exceeded. Please try again in 15 minutes."
)
analysis_limiter = RateLimiter(
    "analysis", 20, 10 * 60, "Analysis limit exceeded. Please try again in 10 minutes."
)


def rate_limit_response(exc: RateLimitExceeded) -> JSONResponse:
    return JSONResponse(
        status_code=429,
        content={"error": exc.message, "code": exc.code, "retry_after": exc.retry_after},
        headers={"Retry-After": str(exc.retry_after)},
    )


def suspicious_score(request: Request) -> tuple[int, list[str]]:
    score = 0
    indicators = []
    user_agent = request.headers.get("user-agent", "")

    if any(agent in user_agent.lower() for agent in SUSPICIOUS_USER_AGENTS):
        score += 2
        indicators.append("Suspicious User-Agent")

    if not user_agent:
        score += 3
        indicators.append("Missing User-Agent")

    if security_state.suspicious_count(client_ip(request)) > 3:
        score += 2
        indicators.append("Rapid consecutive requests")

    content_length = request.headers.get("content-length", "0")
    if content_length.isdigit() and int(content_length) > 100 * 1024 * 1024:
        score += 3
        indicators.append("Very large request")

    if any(request.headers.get(header) for header in PROXY_HEADERS):
        score += 1
        indicators.append("Proxy headers present")

    url = str(request.url.path)
    if request.url.query:
        url = f"{url}?{request.url.query}"
    if any(path in url for path in SENSITIVE_PATHS):
        score += 4
        indicators.append("Attempt to access a sensitive path")

    return score, indicators


def check_blocked_ip(request: Request) -> JSONResponse | None:
    if security_state.is_blocked(client_ip(request)):
        return JSONResponse(
            status_code=403,
            content={
                "error": "Your IP address has been temporarily blocked due to suspicious activity",
                "code": "IP_BLOCKED",
            },
        )
    return None


def detect_suspicious_activity(request: Request) -> JSONResponse | None:
    score, indicators = suspicious_score(request)
    info = {**_request_info(request), "suspicious_score": score, "indicators": indicators}
    threshold = 5 if config.is_production() else 8

    if score >= threshold:
        log_error(ErrorType.SYSTEM_ERROR, "SUSPICIOUS_ACTIVITY_DETECTED", None, info)
        ip = info["ip"]
        if config.is_production() or ip not in LOOPBACK_HOSTS:
            security_state.block(ip)
        return JSONResponse(
            status_code=403,
            content={
                "error": "Suspicious activity detected. Access has been temporarily blocked",
                "code": "SUSPICIOUS_ACTIVITY",
            },
        )

    if score >= 3:
        log_error(ErrorType.SYSTEM_ERROR, "MODERATE_SUSPICIOUS_ACTIVITY", None, info)
    return None


def check_csrf(request: Request) -> JSONResponse | None:
    if request.method in ("GET", "HEAD", "OPTIONS") or not config.is_production():
        return None

    origin = request.headers.get("origin")
    referer = request.headers.get("referer")
    if not origin and not referer:
        return JSONResponse(
            status_code=403,
            content={"error": "Unsafe request: Origin or Referer required", "code": "CSRF_PROTECTION"},
        )

    if origin:
        origin_host = urlparse(origin).netloc
        if origin_host and origin_host != request.headers.get("host"):
            return JSONResponse(
                status_code=403,
                content={"error": "Unsafe request: Origin mismatch", "code": "CSRF_PROTECTION"},
            )
    return None


def apply_security_headers(headers) -> None:
    for name, value in SECURITY_HEADERS.items():
        headers.setdefault(name, value)


def sanitize_value(value: str) -> str:
    value = _SCRIPT_RE.sub("", value)
    value = _JS_PROTOCOL_RE.sub("", value)
    return _EVENT_HANDLER_RE.sub("", value)


def sanitize_data(data: Any) -> Any:
    if isinstance(data, str):
        return sanitize_value(data)
    if isinstance(data, dict):
        return {key: sanitize_data(value) for key, value in data.items()}
    if isinstance(data, list):
        return [sanitize_data(item) for item in data]
    return data


def sanitize_query_string(raw: bytes) -> bytes:
    pairs = parse_qsl(raw.decode("latin-1"), keep_blank_values=True)
    return urlencode([(key, sanitize_value(value)) for key, value in pairs]).encode("latin-1")


class SanitizeInputMiddleware:
    """Strips script payloads from query values and JSON request bodies."""

    def __init__(self, app: ASGIApp):
        self.app = app

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        scope = dict(scope)
        if scope.get("query_string"):
            scope["query_string"] = sanitize_query_string(scope["query_string"])

        content_type = Headers(scope=scope).get("content-type", "")
        if "application/json" not in content_type.lower():
            await self.app(scope, receive, send)
            return

        body = b""
        while True:
            message = await receive()
            if message["type"] != "http.request":
                await self.app(scope, receive, send)
                return
            body += message.get("body", b"")
            if not message.get("more_body", False):
                break

        body = self._sanitize_body(body)
        scope["headers"] = [
            (key, value) for key, value in scope["headers"] if key.lower() != b"content-length"
        ] + [(b"content-length", str(len(body)).encode("latin-1"))]

        replayed = False

        async def replay() -> Message:
            nonlocal replayed
            if not replayed:
                replayed = True
                return {"type": "http.request", "body": body, "more_body": False}
            return await receive()

        await self.app(scope, replay, send)

    @staticmethod
    def _sanitize_body(body: bytes) -> bytes:
        if not body:
            return body
        try:
            data = json.loads(body)
        except (json.JSONDecodeError, UnicodeDecodeError):
            return body
        return json.dumps(sanitize_data(data), ensure_ascii=False).encode("utf-8")


def require_json(request: Request) -> None:
    """Dependency for JSON POST endpoints."""
    content_type = request.headers.get("content-type")
    if not content_type:
        raise AppError("Content type is required", 400, "CONTENT_TYPE_REQUIRED", ErrorType.VALIDATION_ERROR)
    if "application/json" not in content_type.lower():
        raise AppError(
            "Unsupported content type",
            400,
            "INVALID_CONTENT_TYPE",
            ErrorType.VALIDATION_ERROR,
            {"allowed_types": ["application/json"]},
        )


def require_development() -> None:
    """Dependency for diagnostic endpoints that must stay closed in production."""
    if not config.is_development():
        raise AppError(
            "This endpoint is only available in development",
            403,
            "ACCESS_DENIED",
            ErrorType.VALIDATION_ERROR,
        )
