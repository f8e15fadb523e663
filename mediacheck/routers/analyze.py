from datetime import UTC, datetime, timedelta
from pathlib import Path
import logging

from fastapi import APIRouter, Depends, Request

from mediacheck import config
from mediacheck.detection import analysis_stats, analyze_file
from mediacheck.errors import AppError, ErrorType
from mediacheck.models import AnalyzeByIdRequest, AnalyzeRequest, AnalyzeResponse, FileMetadata, FileType
from mediacheck.security import analysis_limiter, general_api_limiter, require_json
from mediacheck.storage import delete_file, find_upload_by_id, get_file_type, resolve_upload_path

logger = logging.getLogger("mediacheck.routers.analyze")

router = APIRouter(
    prefix="/api/analyze",
    tags=["Analysis"],
    dependencies=[Depends(general_api_limiter)],
)

SUPPORTED_TYPES = ["image", "video", "audio"]


def schedule_delete(request: Request, path: Path) -> None:
    """Delete the analyzed file after ANALYSIS_DELETE_DELAY_SECONDS."""
    delay = config.ANALYSIS_DELETE_DELAY_SECONDS
    scheduler = getattr(request.app.state, "scheduler", None)
    if delay <= 0 or scheduler is None or not scheduler.running:
        delete_file(path)
        return

    scheduler.add_job(
        delete_file,
        "date",
        run_date=datetime.now(UTC) + timedelta(seconds=delay),
        args=[str(path)],
    )
    logger.debug("Scheduled deletion of %s in %.1f seconds", path.name, delay)


def _check_type_matches(file_type: FileType, metadata: FileMetadata) -> None:
    try:
        actual = get_file_type(metadata.type)
    except AppError:
        actual = None
    if actual != file_type:
        raise AppError(
            "File type does not match its MIME type",
            400,
            "FILE_TYPE_MISMATCH",
            ErrorType.VALIDATION_ERROR,
            {"file_type": file_type, "mime_type": metadata.type},
        )


async def _analyze_and_delete(request: Request, path: Path, file_type: FileType, metadata: FileMetadata):
    try:
        _check_type_matches(file_type, metadata)
        result = await analyze_file(path, file_type, metadata)
    finally:
        schedule_delete(request, path)

    logger.info(
        "Analysis finished: file=%s ai=%s confidence=%d method=%s",
        metadata.name, result.is_ai_generated, result.confidence_score, result.detection_method,
    )
    return AnalyzeResponse(success=True, result=result)


@router.post(
    "",
    response_model=AnalyzeResponse,
    dependencies=[Depends(require_json), Depends(analysis_limiter)],
)
async def analyze(request: Request, body: AnalyzeRequest):
    path = resolve_upload_path(body.file_path)
    if path is None:
        raise AppError("File not found", 404, "FILE_NOT_FOUND", ErrorType.FILE_PROCESSING,
                       {"file_path": body.file_path})

    return await _analyze_and_delete(request, path, body.file_type, body.metadata)


@router.post(
    "/by-id/{file_id}",
    response_model=AnalyzeResponse,
    dependencies=[Depends(require_json), Depends(analysis_limiter)],
)
async def analyze_by_id(request: Request, file_id: str, body: AnalyzeByIdRequest):
    path = find_upload_by_id(file_id)
    if path is None:
        raise AppError("File not found", 404, "FILE_NOT_FOUND", ErrorType.FILE_PROCESSING,
                       {"file_id": file_id})

    return await _analyze_and_delete(request, path, body.file_type, body.metadata)


@router.get("/status")
def analyze_status():
    return {
        "success": True,
        "data": {
            "status": "operational",
            "supported_types": SUPPORTED_TYPES,
            "apis": {
                "hive": bool(config.HIVE_API_KEY),
                "deepware": config.USE_DEEPWARE,
            },
            "frame_analysis": config.VIDEO_FRAME_ANALYSIS,
            "max_retries": config.ANALYSIS_MAX_RETRIES,
        },
    }


@router.get("/stats")
def analyze_stats():
    return {"success": True, "data": analysis_stats.snapshot()}
