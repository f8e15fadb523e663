from datetime import UTC, datetime
import logging

from fastapi import APIRouter, Depends

from mediacheck.errors import AppError, ErrorType
from mediacheck.models import CleanupConfigRequest, UnblockIpRequest
from mediacheck.security import general_api_limiter, require_development, require_json, security_state
from mediacheck.storage import auto_delete_service

logger = logging.getLogger("mediacheck.routers.security")

router = APIRouter(
    prefix="/api/security",
    tags=["Security"],
    dependencies=[Depends(general_api_limiter)],
)

UPLOAD_FILES_WARNING = 50
TEMP_FILES_WARNING = 20
BLOCKED_IPS_WARNING = 10
SUSPICIOUS_REQUESTS_CRITICAL = 50


@router.get("/stats", dependencies=[Depends(require_development)])
def security_stats():
    return {
        "success": True,
        "data": {
            "security": security_state.stats(),
            "cleanup": auto_delete_service.get_cleanup_stats(),
            "timestamp": datetime.now(UTC).isoformat(),
        },
    }


@router.post("/unblock-ip", dependencies=[Depends(require_development), Depends(require_json)])
def unblock_ip(body: UnblockIpRequest):
    if not security_state.unblock(body.ip):
        raise AppError("IP address is not blocked", 404, "IP_NOT_BLOCKED", ErrorType.VALIDATION_ERROR,
                       {"ip": body.ip})
    return {"success": True, "message": f"IP {body.ip} unblocked"}


@router.post("/cleanup-now", dependencies=[Depends(require_development)])
def cleanup_now():
    deleted = auto_delete_service.cleanup_files()
    return {
        "success": True,
        "message": "Cleanup completed",
        "data": {"deleted_files": deleted, "stats": auto_delete_service.get_cleanup_stats()},
    }


@router.post("/configure-cleanup", dependencies=[Depends(require_development), Depends(require_json)])
def configure_cleanup(body: CleanupConfigRequest):
    applied = auto_delete_service.configure(
        max_age=body.max_age,
        max_files=body.max_files,
        check_interval=body.check_interval,
    )
    logger.info("Auto-delete configuration updated: %s", applied)
    return {
        "success": True,
        "message": "Cleanup configuration updated",
        "data": auto_delete_service.get_cleanup_stats()["config"],
    }


@router.get("/health")
def security_health():
    security = security_state.stats()
    cleanup = auto_delete_service.get_cleanup_stats()

    warnings = []
    status = "healthy"

    if cleanup["upload_dir"]["file_count"] > UPLOAD_FILES_WARNING:
        warnings.append("Many files in the upload directory")
        status = "warning"
    if cleanup["temp_dir"]["file_count"] > TEMP_FILES_WARNING:
        warnings.append("Many files in the temp directory")
        status = "warning"
    if security["total_blocked_ips"] > BLOCKED_IPS_WARNING:
        warnings.append("Many blocked IP addresses")
        status = "warning"
    if security["total_suspicious_requests"] > SUSPICIOUS_REQUESTS_CRITICAL:
        warnings.append("High volume of suspicious requests")
        status = "critical"

    return {
        "success": True,
        "data": {
            "status": status,
            "warnings": warnings,
            "auto_delete_running": cleanup["is_running"],
            "blocked_ips": security["total_blocked_ips"],
            "upload_files": cleanup["upload_dir"]["file_count"],
            "temp_files": cleanup["temp_dir"]["file_count"],
            "timestamp": datetime.now(UTC).isoformat(),
        },
    }
