"""
Clients for the optional third-party detection APIs.

Hive is used for images and audio when HIVE_API_KEY is set. Deepware is used
for video only when USE_DEEPWARE is enabled. Every call goes through
monitored_api_request so /api/performance can report per-API latency and
success rates. Callers treat any exception as "no external opinion".
"""

from pathlib import Path
from threading import Lock
from time import monotonic, sleep, time
from typing import Any
import logging

import requests

from mediacheck import config
from mediacheck.errors import handle_api_error, error_logger
from mediacheck.models import AnalysisResult, FileMetadata

logger = logging.getLogger("mediacheck.external")

REQUEST_TIMEOUT_SECONDS = 30
MAX_RETRIES = 2
RETRY_DELAY_SECONDS = 1.0
RETRYABLE_STATUS_CODES = {429, 502, 503, 504}

HIVE_IMAGE_TIMEOUT_SECONDS = 30
HIVE_AUDIO_TIMEOUT_SECONDS = 45
DEEPWARE_TIMEOUT_SECONDS = 60

_session = requests.Session()
_session.headers.update({"Accept-Encoding": "gzip, deflate", "Connection": "keep-alive"})


def _should_retry(exc: requests.RequestException) -> bool:
    if isinstance(exc, (requests.ConnectionError, requests.Timeout)):
        return True
    response = getattr(exc, "response", None)
    return response is not None and response.status_code in RETRYABLE_STATUS_CODES


def optimized_request(
    method: str,
    url: str,
    retries: int = MAX_RETRIES,
    **kwargs: Any,
) -> requests.Response:
    kwargs.setdefault("timeout", REQUEST_TIMEOUT_SECONDS)
    attempt = 0
    while True:
        started = monotonic()
        try:
            response = _session.request(method, url, **kwargs)
            response.raise_for_status()
            logger.info(
                "External API %s %s -> %s in %dms",
                method, url, response.status_code, (monotonic() - started) * 1000,
            )
            return response
        except requests.RequestException as exc:
            if attempt < retries and _should_retry(exc):
                attempt += 1
                logger.warning("Retrying %s %s (%d/%d): %s", method, url, attempt, retries, exc)
                sleep(RETRY_DELAY_SECONDS)
                continue
            raise


class APIPerformanceMonitor:
    """Per-API request counters and response times."""

    _instance: "APIPerformanceMonitor | None" = None
    _instance_lock = Lock()

    def __init__(self):
        self._lock = Lock()
        self._metrics: dict[str, dict] = {}

    @classmethod
    def get_instance(cls) -> "APIPerformanceMonitor":
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def record_request(self, api_name: str, response_time_ms: float, success: bool) -> None:
        with self._lock:
            current = self._metrics.setdefault(
                api_name,
                {
                    "total_requests": 0,
                    "successful_requests": 0,
                    "failed_requests": 0,
                    "total_response_time": 0.0,
                    "average_response_time": 0.0,
                    "last_request_time": None,
                },
            )
            current["total_requests"] += 1
            current["total_response_time"] += response_time_ms
            current["average_response_time"] = current["total_response_time"] / current["total_requests"]
            current["last_request_time"] = int(time() * 1000)
            if success:
                current["successful_requests"] += 1
            else:
                current["failed_requests"] += 1

    def get_metrics(self, api_name: str | None = None) -> dict | None:
        with self._lock:
            if api_name is not None:
                metrics = self._metrics.get(api_name)
                return self._with_success_rate(metrics) if metrics else None
            return {name: self._with_success_rate(value) for name, value in self._metrics.items()}

    def reset_metrics(self, api_name: str | None = None) -> None:
        with self._lock:
            if api_name is None:
                self._metrics.clear()
            else:
                self._metrics.pop(api_name, None)

    @staticmethod
    def _with_success_rate(metrics: dict) -> dict:
        total = metrics["total_requests"]
        rate = metrics["successful_requests"] / total * 100 if total else 0.0
        return {**metrics, "success_rate": round(rate, 2)}


def monitored_api_request(api_name: str, method: str, url: str, **kwargs: Any) -> requests.Response:
    monitor = APIPerformanceMonitor.get_instance()
    started = monotonic()
    try:
        response = optimized_request(method, url, **kwargs)
    except Exception:
        monitor.record_request(api_name, (monotonic() - started) * 1000, False)
        raise
    monitor.record_request(api_name, (monotonic() - started) * 1000, True)
    return response


def _hive_class_score(payload: dict, class_name: str) -> float:
    try:
        classes = payload["status"][0]["response"]["output"][0]["classes"]
    except (KeyError, IndexError, TypeError):
        return 0.0
    for item in classes:
        if item.get("class") == class_name:
            return float(item.get("score") or 0.0)
    return 0.0


def _query_hive(
    api_name: str,
    path: Path,
    metadata: FileMetadata,
    class_name: str,
    feature: str,
    timeout: int,
) -> AnalysisResult | None:
    if not config.HIVE_API_KEY:
        return None

    try:
        # retries resend the same bytes
        content = path.read_bytes()
        response = monitored_api_request(
            api_name,
            "POST",
            config.HIVE_ENDPOINT,
            files={"media": (path.name, content)},
            headers={"Authorization": f"Token {config.HIVE_API_KEY}"},
            timeout=timeout,
        )
        score = _hive_class_score(response.json(), class_name)
    except (requests.RequestException, OSError, ValueError) as exc:
        error_logger.log_error(handle_api_error(exc, api_name, {"file_name": metadata.name}))
        logger.info("Hive unavailable, relying on local analysis")
        return None

    is_ai = score > 0.5
    return AnalysisResult(
        is_ai_generated=is_ai,
        confidence_score=max(0, min(100, round(score * 100))),
        detection_method="Hive AI",
        file_info=metadata,
        detected_features=[feature] if is_ai else [],
    )


def query_hive_image(path: Path, metadata: FileMetadata) -> AnalysisResult | None:
    return _query_hive(
        "hive-image", path, metadata, "ai_generated", "Hive AI detection",
        HIVE_IMAGE_TIMEOUT_SECONDS,
    )


def query_hive_audio(path: Path, metadata: FileMetadata) -> AnalysisResult | None:
    return _query_hive(
        "hive-audio", path, metadata, "synthetic_speech", "Hive AI synthetic speech detection",
        HIVE_AUDIO_TIMEOUT_SECONDS,
    )


def query_deepware_video(path: Path, metadata: FileMetadata) -> AnalysisResult | None:
    if not config.USE_DEEPWARE:
        return None

    try:
        content = path.read_bytes()
        response = monitored_api_request(
            "deepware-video",
            "POST",
            config.DEEPWARE_ENDPOINT,
            files={"video": (path.name, content)},
            timeout=DEEPWARE_TIMEOUT_SECONDS,
        )
        probability = float(response.json().get("fake_probability") or 0.0)
    except (requests.RequestException, OSError, ValueError, AttributeError) as exc:
        error_logger.log_error(handle_api_error(exc, "deepware-video", {"file_name": metadata.name}))
        logger.info("Deepware unavailable, relying on local analysis")
        return None

    is_ai = probability > 0.5
    return AnalysisResult(
        is_ai_generated=is_ai,
        confidence_score=max(0, min(100, round(probability * 100))),
        detection_method="Deepware Scanner",
        file_info=metadata,
        detected_features=["Deepware Scanner detection"] if is_ai else [],
    )
