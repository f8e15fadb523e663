from pathlib import Path
from time import time
import logging

from PIL import Image, ImageOps, UnidentifiedImageError

from mediacheck import config
from mediacheck.models import FileType

logger = logging.getLogger("mediacheck.compression")

ANALYSIS_MAX_SIZE = (800, 600)
ANALYSIS_QUALITY = 70
OPTIMIZED_MAX_AGE_SECONDS = 60 * 60


def _save_resized(source: Path, destination: Path, max_size: tuple[int, int], quality: int) -> None:
    with Image.open(source) as image:
        image = ImageOps.exif_transpose(image)
        image.thumbnail(max_size, Image.Resampling.LANCZOS)
        if image.mode not in ("RGB", "L"):
            image = image.convert("RGB")
        image.save(destination, "JPEG", quality=quality, optimize=True)


def optimize_for_analysis(path: Path, file_type: FileType) -> Path:
    """Return a smaller copy for pixel analysis, or the original path."""
    if file_type != "image":
        return path

    try:
        config.OPTIMIZED_DIR.mkdir(parents=True, exist_ok=True)
        destination = config.OPTIMIZED_DIR / f"{path.stem}_optimized.jpg"
        _save_resized(path, destination, ANALYSIS_MAX_SIZE, ANALYSIS_QUALITY)
        return destination
    except (OSError, UnidentifiedImageError, ValueError):
        logger.warning("Optimization failed for %s, analysing original", path.name)
        return path


def clean_optimized_files(max_age_seconds: int = OPTIMIZED_MAX_AGE_SECONDS) -> int:
    directory = config.OPTIMIZED_DIR
    if not directory.exists():
        return 0

    now = time()
    removed = 0
    for entry in directory.iterdir():
        try:
            if entry.is_file() and now - entry.stat().st_mtime > max_age_seconds:
                entry.unlink()
                removed += 1
        except OSError:
            logger.warning("Failed to remove optimized file %s", entry.name)

    if removed:
        logger.info("Removed %d optimized files", removed)
    return removed
