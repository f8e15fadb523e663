import asyncio
import logging

from fastapi import APIRouter, Depends, File, Request, UploadFile

from mediacheck import config
from mediacheck.errors import AppError, ErrorType, log_error
from mediacheck.models import UploadedFile
from mediacheck.security import client_ip, general_api_limiter, upload_limiter
from mediacheck.storage import (
    ALLOWED_MIME_TYPES,
    auto_delete_service,
    build_metadata,
    format_file_size,
    get_file_type,
    sanitize_filename,
    save_upload,
    validate_mime_type,
)

logger = logging.getLogger("mediacheck.routers.upload")

router = APIRouter(
    prefix="/api/upload",
    tags=["Upload"],
    dependencies=[Depends(general_api_limiter)],
)


@router.post("", dependencies=[Depends(upload_limiter)])
async def upload(request: Request, file: UploadFile | None = File(None)):
    if file is None:
        raise AppError("No file uploaded", 400, "NO_FILE_UPLOADED", ErrorType.FILE_UPLOAD)

    filename = sanitize_filename(file.filename)
    mime_type = validate_mime_type(file.content_type)
    file_type = get_file_type(mime_type)

    # Early rejection based on Content-Length header (before reading body)
    cl = request.headers.get("content-length")
    if cl and cl.isdigit() and int(cl) > config.MAX_FILE_SIZE + 1024 * 1024:
        raise AppError("File too large", 413, "FILE_TOO_LARGE", ErrorType.FILE_UPLOAD,
                       {"filename": filename, "max_size": config.MAX_FILE_SIZE})

    path = await save_upload(file, filename, config.MAX_FILE_SIZE)
    try:
        metadata = await asyncio.to_thread(build_metadata, path, filename, mime_type, file_type)
    except Exception as exc:
        path.unlink(missing_ok=True)
        log_error(ErrorType.FILE_UPLOAD, "UPLOAD_FAILED", exc, {"filename": filename})
        raise AppError("File upload failed", 500, "UPLOAD_FAILED", ErrorType.FILE_UPLOAD) from exc

    uploaded = UploadedFile(id=path.stem, path=str(path), type=file_type, metadata=metadata)
    upload_limiter.release(client_ip(request))

    logger.info(
        "Upload stored: file=%s type=%s size=%s",
        filename, file_type, format_file_size(metadata.size),
    )
    return {
        "success": True,
        "message": "File uploaded successfully",
        "file": uploaded.model_dump(mode="json"),
    }


@router.get("/status")
def upload_status():
    return {
        "success": True,
        "data": {
            "max_file_size": config.MAX_FILE_SIZE,
            "max_file_size_formatted": format_file_size(config.MAX_FILE_SIZE),
            "allowed_types": sorted(ALLOWED_MIME_TYPES),
            "auto_delete": auto_delete_service.get_cleanup_stats()["config"],
            "rate_limit": {
                "uploads": upload_limiter.limit,
                "window_seconds": upload_limiter.window_seconds,
            },
        },
    }
