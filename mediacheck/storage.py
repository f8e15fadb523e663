from dataclasses import asdict, dataclass
from pathlib import Path, PurePosixPath
from threading import Lock
from time import time
import logging
import re
import secrets

from apscheduler.schedulers.base import BaseScheduler
import cv2
from fastapi import UploadFile
from PIL import Image, UnidentifiedImageError

from mediacheck import config
from mediacheck.errors import AppError, ErrorType, log_error
from mediacheck.models import Dimensions, FileMetadata, FileType

logger = logging.getLogger("mediacheck.storage")

ALLOWED_MIME_TYPES = {
    # Images
    "image/jpeg", "image/jpg", "image/png", "image/gif", "image/bmp",
    "image/webp", "image/tiff", "image/avif", "image/heic",
    # Video
    "video/mp4", "video/avi", "video/mov", "video/webm",
    "video/wmv", "video/flv", "video/mkv", "video/m4v",
    # Audio
    "audio/mp3", "audio/wav", "audio/mpeg", "audio/aac",
    "audio/ogg", "audio/flac", "audio/m4a", "audio/wma",
}

BLOCKED_NAME_TOKENS = ("script", "exe", "bat", "cmd", "php", "asp", "jsp")
MAX_FILENAME_LENGTH = 255
SAFE_EXTENSION_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")
CHUNK_SIZE = 1024 * 1024


def sanitize_filename(raw: str | None) -> str:
    """Strip path components from a client filename and validate it."""
    if not raw:
        raise AppError("No file uploaded", 400, "NO_FILE_UPLOADED", ErrorType.VALIDATION_ERROR)

    name = PurePosixPath(raw).name
    name = name.split("\\")[-1].strip()

    if not name or name in (".", ".."):
        raise AppError("Invalid filename", 400, "INVALID_FILENAME", ErrorType.VALIDATION_ERROR)

    if len(name) > MAX_FILENAME_LENGTH:
        raise AppError("Filename too long", 400, "INVALID_FILENAME", ErrorType.VALIDATION_ERROR)

    lowered = name.lower()
    if any(token in lowered for token in BLOCKED_NAME_TOKENS):
        logger.warning("Rejected suspicious filename: %s", name)
        raise AppError(
            "Filename contains disallowed words",
            400,
            "SUSPICIOUS_FILENAME",
            ErrorType.VALIDATION_ERROR,
            {"filename": name},
        )

    return name


def validate_mime_type(content_type: str | None) -> str:
    if content_type not in ALLOWED_MIME_TYPES:
        logger.warning("Rejected unsupported content type: %s", content_type)
        raise AppError(
            f"File type {content_type} is not supported",
            415,
            "INVALID_FILE_TYPE",
            ErrorType.FILE_UPLOAD,
            {"content_type": content_type},
        )
    return content_type


def get_file_type(mime_type: str) -> FileType:
    if mime_type.startswith("image/"):
        return "image"
    if mime_type.startswith("video/"):
        return "video"
    if mime_type.startswith("audio/"):
        return "audio"
    raise AppError("Unknown file type", 400, "UNKNOWN_FILE_TYPE", ErrorType.VALIDATION_ERROR)


def _stored_name(original_name: str) -> str:
    suffix = PurePosixPath(original_name).suffix
    if not SAFE_EXTENSION_RE.match(suffix):
        suffix = ""
    return f"file-{int(time() * 1000)}-{secrets.randbelow(10**9)}{suffix.lower()}"


async def save_upload(upload: UploadFile, filename: str, max_size: int) -> Path:
    """Stream an upload into UPLOAD_DIR, enforcing max_size."""
    config.UPLOAD_DIR.mkdir(parents=True, exist_ok=True)
    destination = config.UPLOAD_DIR / _stored_name(filename)

    written = 0
    try:
        with destination.open("wb") as fh:
            while chunk := await upload.read(CHUNK_SIZE):
                written += len(chunk)
                if written > max_size:
                    raise AppError(
                        "File too large", 413, "FILE_TOO_LARGE", ErrorType.FILE_UPLOAD,
                        {"filename": filename, "max_size": max_size},
                    )
                fh.write(chunk)
    except BaseException:
        destination.unlink(missing_ok=True)
        raise

    if written == 0:
        destination.unlink(missing_ok=True)
        raise AppError("Uploaded file is empty", 400, "MISSING_FILE", ErrorType.FILE_UPLOAD)

    return destination


def probe_image_dimensions(path: Path) -> Dimensions | None:
    try:
        with Image.open(path) as image:
            width, height = image.size
        return Dimensions(width=width, height=height)
    except (UnidentifiedImageError, OSError):
        logger.info("Could not read image dimensions for %s", path.name)
        return None


def probe_video(path: Path) -> tuple[float | None, Dimensions | None]:
    capture = cv2.VideoCapture(str(path))
    try:
        if not capture.isOpened():
            return None, None
        width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH) or 0)
        height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT) or 0)
        fps = capture.get(cv2.CAP_PROP_FPS) or 0
        frames = capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0
        duration = round(frames / fps, 2) if fps > 0 and frames > 0 else None
        dimensions = Dimensions(width=width, height=height) if width and height else None
        return duration, dimensions
    finally:
        capture.release()


def build_metadata(path: Path, name: str, mime_type: str, file_type: FileType) -> FileMetadata:
    metadata = FileMetadata(name=name, size=path.stat().st_size, type=mime_type)
    if file_type == "image":
        metadata.dimensions = probe_image_dimensions(path)
    elif file_type == "video":
        metadata.duration, metadata.dimensions = probe_video(path)
    return metadata


def resolve_upload_path(raw_path: str) -> Path | None:
    """Return the path if it points at an existing file inside UPLOAD_DIR."""
    candidate = Path(raw_path)
    if not candidate.is_absolute():
        candidate = config.UPLOAD_DIR / candidate
    try:
        resolved = candidate.resolve()
    except OSError:
        return None
    if not resolved.is_relative_to(config.UPLOAD_DIR) or not resolved.is_file():
        return None
    return resolved


def find_upload_by_id(file_id: str) -> Path | None:
    if not file_id or "/" in file_id or "\\" in file_id or file_id in (".", ".."):
        return None
    if not config.UPLOAD_DIR.exists():
        return None
    for entry in config.UPLOAD_DIR.iterdir():
        if entry.is_file() and entry.stem == file_id:
            return entry
    return None


def format_file_size(size: int) -> str:
    if size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB"]
    value = float(size)
    index = 0
    while value >= 1024 and index < len(units) - 1:
        value /= 1024
        index += 1
    return f"{round(value, 2):g} {units[index]}"


@dataclass
class AutoDeleteConfig:
    max_age: int = 30  # minutes
    max_files: int = 100
    check_interval: int = 5  # minutes


class AutoDeleteService:
    """Interval sweep that deletes stale uploads and temp files."""

    JOB_ID = "auto_delete_sweep"

    def __init__(self, cfg: AutoDeleteConfig | None = None, directories: list[Path] | None = None):
        self.config = cfg or AutoDeleteConfig()
        self.directories = directories or [config.UPLOAD_DIR, config.TEMP_DIR]
        self.is_running = False
        self._scheduler: BaseScheduler | None = None
        self._lock = Lock()

    def start(self, scheduler: BaseScheduler | None = None) -> None:
        if self.is_running:
            logger.warning("Auto-delete service is already running")
            return

        logger.info(
            "Starting auto-delete service, sweeping every %d minutes",
            self.config.check_interval,
        )
        self.is_running = True
        self.cleanup_files()

        if scheduler is not None:
            self._scheduler = scheduler
            scheduler.add_job(
                self.cleanup_files,
                "interval",
                minutes=self.config.check_interval,
                id=self.JOB_ID,
                replace_existing=True,
            )

    def stop(self) -> None:
        if self._scheduler is not None and self._scheduler.get_job(self.JOB_ID):
            self._scheduler.remove_job(self.JOB_ID)
        self.is_running = False
        logger.info("Auto-delete service stopped")

    def restart(self) -> None:
        scheduler = self._scheduler
        self.stop()
        self.start(scheduler)

    def configure(
        self,
        max_age: int | None = None,
        max_files: int | None = None,
        check_interval: int | None = None,
    ) -> AutoDeleteConfig:
        if max_age is not None and not 1 <= max_age <= 1440:
            raise AppError("max_age must be between 1 and 1440 minutes", 400, "INVALID_MAX_AGE",
                           ErrorType.VALIDATION_ERROR)
        if max_files is not None and not 1 <= max_files <= 1000:
            raise AppError("max_files must be between 1 and 1000", 400, "INVALID_MAX_FILES",
                           ErrorType.VALIDATION_ERROR)
        if check_interval is not None and not 1 <= check_interval <= 60:
            raise AppError("check_interval must be between 1 and 60 minutes", 400,
                           "INVALID_CHECK_INTERVAL", ErrorType.VALIDATION_ERROR)

        if max_age is not None:
            self.config.max_age = max_age
        if max_files is not None:
            self.config.max_files = max_files
        if check_interval is not None:
            self.config.check_interval = check_interval

        if self.is_running:
            self.restart()
        return self.config

    def cleanup_files(self) -> int:
        deleted = 0
        with self._lock:
            for directory in self.directories:
                try:
                    deleted += self._cleanup_directory(directory)
                except Exception as exc:
                    log_error(ErrorType.SYSTEM_ERROR, "DIRECTORY_CLEANUP_FAILED", exc,
                              {"dir_path": str(directory)})
        return deleted

    def _cleanup_directory(self, directory: Path) -> int:
        if not directory.exists():
            return 0

        now = time()
        max_age_seconds = self.config.max_age * 60
        deleted_count = 0
        deleted_size = 0

        for entry in directory.iterdir():
            try:
                if not entry.is_file():
                    continue
                stats = entry.stat()
                if now - stats.st_mtime > max_age_seconds:
                    entry.unlink()
                    deleted_count += 1
                    deleted_size += stats.st_size
                    logger.info("Deleted stale file %s (%s)", entry.name, format_file_size(stats.st_size))
            except OSError as exc:
                logger.warning("Failed to process file %s: %s", entry.name, exc)

        remaining = [entry for entry in directory.iterdir() if entry.is_file()]
        if len(remaining) > self.config.max_files:
            deleted_count += self._cleanup_oldest_files(remaining, len(remaining) - self.config.max_files)

        if deleted_count:
            logger.info("Removed %d files (%s) from %s", deleted_count,
                        format_file_size(deleted_size), directory)
        return deleted_count

    def _cleanup_oldest_files(self, files: list[Path], count_to_delete: int) -> int:
        dated = []
        for entry in files:
            try:
                stats = entry.stat()
            except OSError:
                continue
            dated.append((stats.st_mtime, stats.st_size, entry))
        dated.sort(key=lambda row: row[0])

        deleted = 0
        for _mtime, size, entry in dated[:count_to_delete]:
            try:
                entry.unlink()
                deleted += 1
                logger.info("Deleted file over count limit %s (%s)", entry.name, format_file_size(size))
            except OSError as exc:
                logger.warning("Failed to delete %s: %s", entry.name, exc)
        return deleted

    def delete_file_immediately(self, path: Path | str) -> bool:
        target = Path(path)
        try:
            if target.is_file():
                target.unlink()
                logger.info("Deleted file %s", target.name)
                return True
            return False
        except OSError as exc:
            log_error(ErrorType.SYSTEM_ERROR, "IMMEDIATE_DELETE_FAILED", exc, {"file_path": str(target)})
            return False

    def get_cleanup_stats(self) -> dict:
        def directory_stats(directory: Path) -> dict:
            if not directory.exists():
                return {"file_count": 0, "total_size": 0}
            count = 0
            total = 0
            for entry in directory.iterdir():
                try:
                    if entry.is_file():
                        count += 1
                        total += entry.stat().st_size
                except OSError:
                    continue
            return {"file_count": count, "total_size": total}

        return {
            "upload_dir": directory_stats(config.UPLOAD_DIR),
            "temp_dir": directory_stats(config.TEMP_DIR),
            "config": asdict(self.config),
            "is_running": self.is_running,
        }


auto_delete_service = AutoDeleteService(
    AutoDeleteConfig(
        max_age=config.AUTO_DELETE_MAX_AGE_MINUTES,
        max_files=config.AUTO_DELETE_MAX_FILES,
        check_interval=config.AUTO_DELETE_CHECK_INTERVAL_MINUTES,
    )
)


def delete_file(path: Path | str) -> bool:
    try:
        return auto_delete_service.delete_file_immediately(path)
    except Exception as exc:
        log_error(ErrorType.FILE_PROCESSING, "FILE_DELETE_FAILED", exc, {"file_path": str(path)})
        return False
