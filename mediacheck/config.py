from pathlib import Path
import os

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = int(value)
        return parsed if parsed > 0 else default
    except ValueError:
        return default


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None:
        return default
    try:
        parsed = float(value)
        return parsed if parsed >= 0 else default
    except ValueError:
        return default


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


ENVIRONMENT = os.getenv("ENVIRONMENT", "production").strip().lower()
PORT = _env_int("PORT", 5000)
LOG_LEVEL = os.getenv("LOG_LEVEL", "").strip().upper()
VERSION = "1.0.0"

BASE_DIR = Path(os.getenv("MEDIACHECK_HOME", os.getcwd())).resolve()
UPLOAD_DIR = Path(os.getenv("UPLOAD_DIR", str(BASE_DIR / "uploads"))).resolve()
TEMP_DIR = Path(os.getenv("TEMP_DIR", str(BASE_DIR / "temp"))).resolve()
CACHE_DIR = TEMP_DIR / "cache"
OPTIMIZED_DIR = TEMP_DIR / "optimized"
LOG_DIR = Path(os.getenv("LOG_DIR", str(BASE_DIR / "logs"))).resolve()
FRONTEND_DIR = Path(os.getenv("FRONTEND_DIR", str(BASE_DIR / "frontend" / "dist"))).resolve()

MAX_FILE_SIZE = _env_int("MAX_FILE_SIZE", 50 * 1024 * 1024)

AUTO_DELETE_MAX_AGE_MINUTES = _env_int("AUTO_DELETE_MAX_AGE_MINUTES", 30)
AUTO_DELETE_MAX_FILES = _env_int("AUTO_DELETE_MAX_FILES", 100)
AUTO_DELETE_CHECK_INTERVAL_MINUTES = _env_int("AUTO_DELETE_CHECK_INTERVAL_MINUTES", 5)

CACHE_EXPIRY_SECONDS = _env_int("CACHE_EXPIRY_SECONDS", 24 * 60 * 60)
CACHE_MAX_SIZE_BYTES = _env_int("CACHE_MAX_SIZE_BYTES", 100 * 1024 * 1024)

ANALYSIS_MAX_RETRIES = _env_int("ANALYSIS_MAX_RETRIES", 2)
ANALYSIS_RETRY_DELAY_SECONDS = _env_float("ANALYSIS_RETRY_DELAY_SECONDS", 2.0)
ANALYSIS_DELETE_DELAY_SECONDS = _env_float("ANALYSIS_DELETE_DELAY_SECONDS", 5.0)

HIVE_API_KEY = os.getenv("HIVE_API_KEY", "").strip()
HIVE_ENDPOINT = os.getenv("HIVE_ENDPOINT", "https://api.thehive.ai/api/v2/task/sync")
USE_DEEPWARE = _env_bool("USE_DEEPWARE", False)
DEEPWARE_ENDPOINT = os.getenv("DEEPWARE_ENDPOINT", "https://api.deepware.ai/deepfakeDetection")
VIDEO_FRAME_ANALYSIS = _env_bool("VIDEO_FRAME_ANALYSIS", True)

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000"
    ).split(",")
    if origin.strip()
]


def is_production() -> bool:
    return ENVIRONMENT == "production"


def is_development() -> bool:
    return ENVIRONMENT == "development"
