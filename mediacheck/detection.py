"""
Detection dispatch.

Runs the local detector for a file type, asks the matching external API when
one is configured, and combines both into a single AnalysisResult. When the
local detector itself fails a cheap size/name fallback answers instead.

analyze_file wraps the whole thing with the fingerprint cache, the analysis
copy from compression.optimize_for_analysis and a short retry loop.
"""

from pathlib import Path
from threading import Lock
from time import monotonic
import asyncio
import logging

from mediacheck import cache, compression, config, external
from mediacheck.detectors import (
    perform_advanced_audio_analysis,
    perform_advanced_image_analysis,
    perform_advanced_video_analysis,
    perform_simple_video_analysis,
)
from mediacheck.errors import AppError, ErrorType, log_error, retry_with_logging
from mediacheck.models import AnalysisResult, FileMetadata, FileType

logger = logging.getLogger("mediacheck.detection")

FALLBACK_EXPLANATION_AI = "Some suspicious signs were found (basic analysis)"
FALLBACK_EXPLANATION_CLEAN = "No clear signs were found (basic analysis)"


def _elapsed_ms(started: float) -> int:
    return round((monotonic() - started) * 1000)


def combine_analysis_results(
    local: AnalysisResult,
    remote: AnalysisResult | None,
    local_weight: float,
    remote_weight: float,
    method: str,
    subject: str,
) -> AnalysisResult:
    if remote is None or remote.confidence_score == 0:
        return local

    combined = round(local.confidence_score * local_weight + remote.confidence_score * remote_weight)
    is_ai = combined > 50
    features = [*local.detected_features, *remote.detected_features]

    if is_ai:
        explanation = f"Multi-source {subject} analysis found {len(features)} suspicious signs"
    else:
        explanation = f"Multi-source {subject} analysis found no clear signs of manipulation"

    return local.model_copy(
        update={
            "is_ai_generated": is_ai,
            "confidence_score": combined,
            "detection_method": method,
            "detected_features": features,
            "explanation": explanation,
        }
    )


def combine_image_results(local: AnalysisResult, hive: AnalysisResult | None) -> AnalysisResult:
    return combine_analysis_results(
        local, hive, 0.7, 0.3, "Advanced Multi-Source Analysis (Local + Hive AI)", "image"
    )


def combine_audio_results(local: AnalysisResult, hive: AnalysisResult | None) -> AnalysisResult:
    return combine_analysis_results(
        local, hive, 0.65, 0.35, "Advanced Multi-Source Audio Analysis (Local + Hive AI)", "audio"
    )


def combine_video_results(local: AnalysisResult, deepware: AnalysisResult | None) -> AnalysisResult:
    if deepware is None or deepware.confidence_score == 0:
        return local

    combined = round(local.confidence_score * 0.7 + deepware.confidence_score * 0.3)
    is_ai = local.is_ai_generated or deepware.is_ai_generated or combined > 50
    features = [*local.detected_features, *deepware.detected_features]

    if is_ai:
        explanation = f"Multi-source video analysis found {len(features)} signs of deepfake manipulation"
    else:
        explanation = "Multi-source video analysis found no clear signs of manipulation"

    return local.model_copy(
        update={
            "is_ai_generated": is_ai,
            "confidence_score": max(combined, local.confidence_score),
            "detection_method": "Advanced Multi-Source Video Analysis (Local + Deepware)",
            "detected_features": features,
            "explanation": explanation,
        }
    )


def _fallback_result(
    metadata: FileMetadata,
    factors: list[str],
    weight: int,
    cap: int,
    method: str,
    processing_time: int,
) -> AnalysisResult:
    is_ai = bool(factors)
    return AnalysisResult(
        is_ai_generated=is_ai,
        confidence_score=min(len(factors) * weight, cap),
        detection_method=method,
        processing_time=processing_time,
        file_info=metadata,
        detected_features=factors,
        explanation=FALLBACK_EXPLANATION_AI if is_ai else FALLBACK_EXPLANATION_CLEAN,
    )


def fallback_image_analysis(path: Path, metadata: FileMetadata, processing_time: int) -> AnalysisResult:
    factors = []
    if path.stat().st_size < 50_000:
        factors.append("Very small file size")
    if "generated" in metadata.name or "ai" in metadata.name:
        factors.append("Filename suggests generation")
    return _fallback_result(
        metadata, factors, 30, 85, "Fallback Analysis - Metadata & Pattern Check", processing_time
    )


def fallback_video_analysis(path: Path, metadata: FileMetadata, processing_time: int) -> AnalysisResult:
    factors = []
    if path.stat().st_size < 1_000_000:
        factors.append("Very small video size")
    if "deepfake" in metadata.name.lower():
        factors.append("Filename suggests manipulation")
    return _fallback_result(
        metadata, factors, 25, 75, "Fallback Analysis - Basic Video Check", processing_time
    )


def fallback_audio_analysis(path: Path, metadata: FileMetadata, processing_time: int) -> AnalysisResult:
    factors = []
    lowered = metadata.name.lower()
    if path.stat().st_size < 100_000:
        factors.append("Very small audio file")
    if "synthetic" in lowered or "tts" in lowered:
        factors.append("Filename suggests synthetic generation")
    return _fallback_result(
        metadata, factors, 35, 80, "Fallback Analysis - Basic Audio Check", processing_time
    )


def detect_image_manipulation(
    path: Path, metadata: FileMetadata, exif_path: Path | None = None
) -> AnalysisResult:
    started = monotonic()
    try:
        local = perform_advanced_image_analysis(path, metadata, exif_path=exif_path)
        combined = combine_image_results(local, external.query_hive_image(path, metadata))
    except Exception:
        logger.exception("Image detection failed for %s, using fallback", metadata.name)
        return fallback_image_analysis(path, metadata, _elapsed_ms(started))
    return combined.model_copy(update={"processing_time": _elapsed_ms(started)})


def detect_video_manipulation(path: Path, metadata: FileMetadata) -> AnalysisResult:
    started = monotonic()
    try:
        local = None
        if config.VIDEO_FRAME_ANALYSIS:
            try:
                local = perform_advanced_video_analysis(path, metadata)
            except Exception as exc:
                logger.warning(
                    "Frame analysis failed for %s, using simple analysis: %s", metadata.name, exc
                )
        if local is None:
            local = perform_simple_video_analysis(path, metadata)
        combined = combine_video_results(local, external.query_deepware_video(path, metadata))
    except Exception:
        logger.exception("Video detection failed for %s", metadata.name)
        try:
            return perform_simple_video_analysis(path, metadata)
        except Exception:
            logger.exception("Simple video analysis failed for %s, using fallback", metadata.name)
            return fallback_video_analysis(path, metadata, _elapsed_ms(started))
    return combined.model_copy(update={"processing_time": _elapsed_ms(started)})


def detect_audio_manipulation(path: Path, metadata: FileMetadata) -> AnalysisResult:
    started = monotonic()
    try:
        local = perform_advanced_audio_analysis(path, metadata)
        combined = combine_audio_results(local, external.query_hive_audio(path, metadata))
    except Exception:
        logger.exception("Audio detection failed for %s, using fallback", metadata.name)
        return fallback_audio_analysis(path, metadata, _elapsed_ms(started))
    return combined.model_copy(update={"processing_time": _elapsed_ms(started)})


class AnalysisStats:
    """In-memory counters for /api/analyze/stats."""

    def __init__(self):
        self._lock = Lock()
        self.reset()

    def reset(self) -> None:
        self.total = 0
        self.by_type = {"image": 0, "video": 0, "audio": 0}
        self.ai_detected = 0
        self.cache_hits = 0
        self.failures = 0
        self._total_processing_ms = 0

    def record(self, file_type: FileType, result: AnalysisResult, cached: bool = False) -> None:
        with self._lock:
            self.total += 1
            self.by_type[file_type] = self.by_type.get(file_type, 0) + 1
            if result.is_ai_generated:
                self.ai_detected += 1
            if cached:
                self.cache_hits += 1
            self._total_processing_ms += result.processing_time

    def record_failure(self) -> None:
        with self._lock:
            self.failures += 1

    def snapshot(self) -> dict:
        with self._lock:
            return {
                "total_analyses": self.total,
                "by_type": dict(self.by_type),
                "ai_detected": self.ai_detected,
                "authentic": self.total - self.ai_detected,
                "cache_hits": self.cache_hits,
                "failures": self.failures,
                "average_processing_time": round(self._total_processing_ms / self.total) if self.total else 0,
            }


analysis_stats = AnalysisStats()


def _dispatch(file_type: FileType, analysis_path: Path, original_path: Path, metadata: FileMetadata):
    if file_type == "image":
        return detect_image_manipulation(analysis_path, metadata, exif_path=original_path)
    if file_type == "video":
        return detect_video_manipulation(analysis_path, metadata)
    return detect_audio_manipulation(analysis_path, metadata)


async def analyze_file(path: Path, file_type: str, metadata: FileMetadata) -> AnalysisResult:
    if file_type not in ("image", "video", "audio"):
        raise AppError(
            "Unsupported file type for analysis",
            400,
            "UNSUPPORTED_FILE_TYPE",
            ErrorType.VALIDATION_ERROR,
            {"file_type": file_type, "file_name": metadata.name},
        )

    context = {"file_type": file_type, "file_name": metadata.name, "file_size": metadata.size}
    logger.info("Starting %s analysis of %s", file_type, metadata.name)

    try:
        cache_key = cache.fingerprint_file(path)
        cached = cache.get_cached_result(cache_key)
        if cached is not None:
            logger.info("Using cached result for %s", metadata.name)
            analysis_stats.record(file_type, cached, cached=True)
            return cached

        analysis_path = await asyncio.to_thread(compression.optimize_for_analysis, path, file_type)
        try:
            result = await retry_with_logging(
                lambda: asyncio.to_thread(_dispatch, file_type, analysis_path, path, metadata),
                max_retries=config.ANALYSIS_MAX_RETRIES,
                delay_seconds=config.ANALYSIS_RETRY_DELAY_SECONDS,
                error_type=ErrorType.FILE_PROCESSING,
                context=context,
            )
        finally:
            if analysis_path != path:
                analysis_path.unlink(missing_ok=True)

        cache.cache_result(cache_key, result)
    except Exception as exc:
        analysis_stats.record_failure()
        log_error(ErrorType.FILE_PROCESSING, "ANALYSIS_FAILED", exc, context)
        raise AppError(
            "File analysis failed",
            500,
            "ANALYSIS_FAILED",
            ErrorType.FILE_PROCESSING,
            {**context, "original_error": str(exc)},
        ) from exc

    analysis_stats.record(file_type, result)
    return result
