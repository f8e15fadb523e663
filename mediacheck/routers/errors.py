from datetime import UTC, datetime, timedelta

from fastapi import APIRouter, Depends, Query

from mediacheck.errors import clear_old_logs, get_recent_errors
from mediacheck.models import ErrorCleanupRequest
from mediacheck.security import general_api_limiter, require_development, require_json

router = APIRouter(
    prefix="/api/errors",
    tags=["Errors"],
    dependencies=[Depends(general_api_limiter), Depends(require_development)],
)

STATS_WINDOW = 1000


def _parse_timestamp(value) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value)
    except (TypeError, ValueError):
        return None
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=UTC)


def build_error_stats(entries: list[dict]) -> dict:
    now = datetime.now(UTC)
    day_ago = now - timedelta(hours=24)
    week_ago = now - timedelta(days=7)

    by_type: dict[str, int] = {}
    by_severity: dict[str, int] = {}
    by_code: dict[str, int] = {}
    last_24_hours = 0
    last_week = 0

    for entry in entries:
        for bucket, key in ((by_type, "type"), (by_severity, "severity"), (by_code, "code")):
            value = entry.get(key) or "UNKNOWN"
            bucket[value] = bucket.get(value, 0) + 1

        timestamp = _parse_timestamp(entry.get("timestamp"))
        if timestamp is None:
            continue
        if timestamp >= day_ago:
            last_24_hours += 1
        if timestamp >= week_ago:
            last_week += 1

    return {
        "total": len(entries),
        "by_type": by_type,
        "by_severity": by_severity,
        "by_code": by_code,
        "last_24_hours": last_24_hours,
        "last_week": last_week,
    }


@router.get("/recent")
def recent_errors(limit: int = Query(50, ge=1, le=1000)):
    errors = get_recent_errors(limit)
    return {"success": True, "data": {"errors": errors, "count": len(errors)}}


@router.post("/cleanup", dependencies=[Depends(require_json)])
def cleanup_errors(body: ErrorCleanupRequest):
    kept = clear_old_logs(body.days_to_keep)
    return {
        "success": True,
        "message": f"Kept error log entries from the last {body.days_to_keep} days",
        "data": {"kept": kept},
    }


@router.get("/stats")
def error_stats():
    return {"success": True, "data": build_error_stats(get_recent_errors(STATS_WINDOW))}
