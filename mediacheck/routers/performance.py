from datetime import UTC, datetime

from fastapi import APIRouter, Depends

from mediacheck import cache
from mediacheck.detection import analysis_stats
from mediacheck.external import APIPerformanceMonitor
from mediacheck.models import ResetMetricsRequest
from mediacheck.security import general_api_limiter, require_json

router = APIRouter(
    prefix="/api/performance",
    tags=["Performance"],
    dependencies=[Depends(general_api_limiter)],
)

MB = 1024 * 1024
HEALTHY_FAILURE_RATE = 0.5
HEALTHY_RESPONSE_TIME_MS = 30_000
HEALTHY_CACHE_SIZE = 90 * MB


def _cache_stats() -> dict:
    stats = cache.get_cache_stats()
    return {**stats, "total_size_mb": round(stats["total_size"] / MB, 2)}


@router.get("/api-metrics")
def api_metrics(api_name: str | None = None):
    metrics = APIPerformanceMonitor.get_instance().get_metrics(api_name)
    return {
        "success": True,
        "data": metrics or {},
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/cache-stats")
def cache_stats():
    return {"success": True, "data": _cache_stats(), "timestamp": datetime.now(UTC).isoformat()}


@router.get("/overview")
def overview():
    metrics = APIPerformanceMonitor.get_instance().get_metrics() or {}
    analyses = analysis_stats.snapshot()

    total_requests = sum(m["total_requests"] for m in metrics.values())
    successful = sum(m["successful_requests"] for m in metrics.values())
    total_time = sum(m["total_response_time"] for m in metrics.values())

    return {
        "success": True,
        "data": {
            "api_metrics": metrics,
            "cache": _cache_stats(),
            "analysis": analyses,
            "summary": {
                "total_api_requests": total_requests,
                "overall_success_rate": round(successful / total_requests * 100, 2) if total_requests else 0,
                "average_response_time": round(total_time / total_requests, 2) if total_requests else 0,
                "cache_hit_rate": (
                    round(analyses["cache_hits"] / analyses["total_analyses"] * 100, 2)
                    if analyses["total_analyses"] else 0
                ),
            },
        },
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.get("/health-check")
def health_check():
    metrics = APIPerformanceMonitor.get_instance().get_metrics() or {}
    stats = _cache_stats()

    apis = {}
    for name, m in metrics.items():
        failure_rate = m["failed_requests"] / m["total_requests"] if m["total_requests"] else 0
        healthy = failure_rate < HEALTHY_FAILURE_RATE and m["average_response_time"] < HEALTHY_RESPONSE_TIME_MS
        apis[name] = {
            "status": "healthy" if healthy else "unhealthy",
            "success_rate": m["success_rate"],
            "average_response_time": round(m["average_response_time"], 2),
        }

    cache_healthy = stats["total_size"] < HEALTHY_CACHE_SIZE
    all_healthy = cache_healthy and all(api["status"] == "healthy" for api in apis.values())

    return {
        "success": True,
        "data": {
            "status": "healthy" if all_healthy else "degraded",
            "apis": apis,
            "cache": {
                "status": "healthy" if cache_healthy else "warning",
                "total_files": stats["total_files"],
                "total_size_mb": stats["total_size_mb"],
            },
        },
        "timestamp": datetime.now(UTC).isoformat(),
    }


@router.post("/reset-metrics", dependencies=[Depends(require_json)])
def reset_metrics(body: ResetMetricsRequest):
    APIPerformanceMonitor.get_instance().reset_metrics(body.api_name)
    target = body.api_name or "all APIs"
    return {"success": True, "message": f"Metrics reset for {target}"}
