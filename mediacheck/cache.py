from datetime import UTC, datetime
from hashlib import md5
from pathlib import Path
from time import time
import json
import logging

from pydantic import ValidationError

from mediacheck import config
from mediacheck.models import AnalysisResult

logger = logging.getLogger("mediacheck.cache")

EVICTION_TARGET_RATIO = 0.8


def _cache_dir() -> Path:
    return config.CACHE_DIR


def _ensure_cache_dir() -> Path:
    cache_dir = _cache_dir()
    cache_dir.mkdir(parents=True, exist_ok=True)
    return cache_dir


def generate_cache_key(file_path: str | Path, file_size: int, last_modified_ms: int) -> str:
    """Fingerprint for a file on disk: md5 of path, size and mtime."""
    data = f"{file_path}-{file_size}-{last_modified_ms}"
    return md5(data.encode("utf-8")).hexdigest()


def fingerprint_file(path: Path) -> str:
    stats = path.stat()
    return generate_cache_key(str(path), stats.st_size, int(stats.st_mtime * 1000))


def cache_result(key: str, result: AnalysisResult) -> None:
    try:
        cache_file = _ensure_cache_dir() / f"{key}.json"
        payload = {
            "timestamp": int(time() * 1000),
            "result": result.model_dump(mode="json"),
        }
        cache_file.write_text(json.dumps(payload, indent=2, ensure_ascii=False), encoding="utf-8")
        logger.info("Cached analysis result key=%s", key)
    except (OSError, TypeError, ValueError):
        logger.exception("Failed to cache analysis result key=%s", key)


def get_cached_result(key: str) -> AnalysisResult | None:
    cache_file = _cache_dir() / f"{key}.json"
    if not cache_file.exists():
        return None

    try:
        payload = json.loads(cache_file.read_text(encoding="utf-8"))
        age_seconds = time() - payload["timestamp"] / 1000
        if age_seconds > config.CACHE_EXPIRY_SECONDS:
            cache_file.unlink(missing_ok=True)
            logger.info("Expired cache entry removed key=%s", key)
            return None
        result = AnalysisResult.model_validate(payload["result"])
    except (OSError, json.JSONDecodeError, KeyError, TypeError, ValidationError):
        logger.warning("Unreadable cache entry key=%s", key)
        return None

    logger.info("Cache hit key=%s", key)
    return result


def _cache_entries() -> list[tuple[Path, float, int]]:
    cache_dir = _cache_dir()
    if not cache_dir.exists():
        return []
    entries = []
    for entry in cache_dir.glob("*.json"):
        try:
            stats = entry.stat()
        except OSError:
            continue
        entries.append((entry, stats.st_mtime, stats.st_size))
    return entries


def clean_expired_cache() -> int:
    """Remove expired entries, then evict oldest entries while over the size cap."""
    now = time()
    removed = 0
    survivors = []

    for entry, mtime, size in _cache_entries():
        if now - mtime > config.CACHE_EXPIRY_SECONDS:
            try:
                entry.unlink()
                removed += 1
            except OSError:
                logger.warning("Failed to remove expired cache entry %s", entry.name)
            continue
        survivors.append((entry, mtime, size))

    total_size = sum(size for _entry, _mtime, size in survivors)
    if total_size > config.CACHE_MAX_SIZE_BYTES:
        target = config.CACHE_MAX_SIZE_BYTES * EVICTION_TARGET_RATIO
        for entry, _mtime, size in sorted(survivors, key=lambda row: row[1]):
            if total_size <= target:
                break
            try:
                entry.unlink()
                total_size -= size
                removed += 1
            except OSError:
                logger.warning("Failed to evict cache entry %s", entry.name)

    if removed:
        logger.info("Cache cleanup removed %d entries", removed)
    return removed


def get_cache_stats() -> dict:
    entries = _cache_entries()
    if not entries:
        return {"total_files": 0, "total_size": 0, "oldest_file": None, "newest_file": None}

    mtimes = [mtime for _entry, mtime, _size in entries]
    return {
        "total_files": len(entries),
        "total_size": sum(size for _entry, _mtime, size in entries),
        "oldest_file": datetime.fromtimestamp(min(mtimes), UTC).isoformat(),
        "newest_file": datetime.fromtimestamp(max(mtimes), UTC).isoformat(),
    }
