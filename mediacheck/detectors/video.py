"""
Video analysis.

Two levels: a simple pass over file properties (name, size, timestamps,
header bytes, duration, resolution) that always works, and a frame-based pass
that samples frames with OpenCV and scores how consistent they are. The
frame-based pass raises when the container cannot be decoded so the caller
can fall back to the simple pass.
"""

from pathlib import Path, PurePosixPath
from time import monotonic
import logging
import re

import cv2
import numpy as np

from mediacheck.models import AnalysisResult, FileMetadata

logger = logging.getLogger("mediacheck.detectors.video")

SIMPLE_METHOD = "Simple Video Analysis - File Properties & Metadata"
KEYWORD_METHOD = "Simple Video Analysis - AI Keyword Detection"
ADVANCED_METHOD = "Advanced Video Analysis - Frame + Motion + Face Detection"

SUSPICIOUS_KEYWORDS = (
    "deepfake", "faceswap", "generated", "ai", "synthetic", "fake",
    "swap", "morph", "artificial", "bot", "avatar", "virtual", "sora",
    "runway", "pika", "stable", "diffusion", "midjourney", "dall",
)
AI_KEYWORDS = ("ai", "generated", "deepfake", "synthetic", "artificial")
COMMON_EXTENSIONS = {".mp4", ".avi", ".mov", ".mkv"}
HEADER_PATTERNS = ("ffff", "0000000000000000")
DEFAULT_NAME_PATTERNS = [
    re.compile(r"^video_\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}"),
    re.compile(r"^output_\d+"),
    re.compile(r"^render_\d+"),
    re.compile(r"^generated_\d+"),
    re.compile(r"^ai_video_\d+"),
]

MB = 1_000_000
COMPARE_SIZE = 64
SUSPICIOUS_FRAME_THRESHOLD = 60


def _read_header(path: Path, size: int = 1024) -> bytes:
    try:
        with path.open("rb") as fh:
            return fh.read(size)
    except OSError:
        return b""


def perform_simple_video_analysis(path: Path, metadata: FileMetadata) -> AnalysisResult:
    started = monotonic()
    logger.info("Starting simple video analysis for %s", metadata.name)

    stats = path.stat()
    size = stats.st_size
    file_name = metadata.name.lower()
    pure_name = PurePosixPath(file_name)
    name_length = len(pure_name.stem)

    features: list[str] = []
    score = 0

    if any(keyword in file_name for keyword in SUSPICIOUS_KEYWORDS):
        score += 60
        features.append("Filename contains suspicious words")

    if re.search(r"\d{4,}", file_name) and name_length < 15:
        score += 15
        features.append("Filename contains random-looking numbers")

    if size < 1 * MB:
        score += 20
        features.append("Very small video file")
    elif size > 100 * MB:
        score += 10
        features.append("Very large video file")

    if pure_name.suffix not in COMMON_EXTENSIONS:
        score += 15
        features.append("Uncommon file extension")

    if name_length < 5 and size > 10 * MB:
        score += 15
        features.append("Unusual ratio between filename and file size")

    created = getattr(stats, "st_birthtime", stats.st_ctime)
    if abs(created - stats.st_mtime) < 1:
        score += 10
        features.append("Matching creation and modification times")

    if "quicktime" in (metadata.type or "").lower() and size < 5 * MB:
        score += 15
        features.append("Suspicious MIME type and size")

    header = _read_header(path).hex()
    if all(pattern in header for pattern in HEADER_PATTERNS):
        score += 20
        features.append("Suspicious patterns at the start of the file")

    if metadata.duration is not None:
        if metadata.duration < 5:
            score += 35
            features.append("Very short video, common for generated clips")
        elif metadata.duration > 600:
            score += 10
            features.append("Long video")

    if size < 10 * MB and metadata.dimensions:
        if metadata.dimensions.width > 720 or metadata.dimensions.height > 720:
            score += 20
            features.append("High resolution with high compression")

    if any(pattern.search(file_name) for pattern in DEFAULT_NAME_PATTERNS):
        score += 40
        features.append("Default naming pattern of generation tools")

    if 5 * MB < size < 20 * MB and name_length < 10:
        score += 20
        features.append("Size and naming pattern common for AI videos")

    confidence = min(score, 95)
    processing_time = round((monotonic() - started) * 1000)

    logger.info(
        "Simple video analysis for %s: score=%d features=%d",
        metadata.name, score, len(features),
    )

    if any(keyword in file_name for keyword in AI_KEYWORDS):
        return AnalysisResult(
            is_ai_generated=True,
            confidence_score=max(confidence, 85),
            detection_method=KEYWORD_METHOD,
            processing_time=processing_time,
            file_info=metadata,
            detected_features=[*features, "Filename clearly indicates AI generation"],
            explanation="The filename contains words that clearly indicate AI generation",
        )

    is_ai = confidence > 40 or len(features) >= 3
    if is_ai:
        explanation = f"Simple video analysis found {len(features)} suspicious signs of AI manipulation"
    else:
        explanation = "Simple video analysis found no clear signs of AI manipulation"

    return AnalysisResult(
        is_ai_generated=is_ai,
        confidence_score=confidence,
        detection_method=SIMPLE_METHOD,
        processing_time=processing_time,
        file_info=metadata,
        detected_features=features,
        explanation=explanation,
    )


def sample_frames(path: Path, max_frames: int) -> list[np.ndarray]:
    capture = cv2.VideoCapture(str(path))
    try:
        if not capture.isOpened():
            raise ValueError(f"Cannot open video {path.name}")

        total = int(capture.get(cv2.CAP_PROP_FRAME_COUNT) or 0)
        if total > 0:
            positions = np.linspace(0, total - 1, num=min(max_frames, total)).astype(int)
        else:
            positions = range(max_frames)

        frames = []
        for position in positions:
            if total > 0:
                capture.set(cv2.CAP_PROP_POS_FRAMES, int(position))
            ok, frame = capture.read()
            if not ok:
                break
            frames.append(frame)
        return frames
    finally:
        capture.release()


def frame_quality(frame: np.ndarray) -> float:
    """Quality 0-100 from the share of sharp gradient artifacts."""
    summed = frame.astype(np.int32).sum(axis=2)
    height, width = summed.shape
    step = max(1, min(width, height) // 50)

    ys = np.arange(step, height - step, step)
    xs = np.arange(step, width - step, step)
    if ys.size == 0 or xs.size == 0:
        return 100.0

    current = summed[np.ix_(ys, xs)]
    right = summed[np.ix_(ys, xs + step)]
    below = summed[np.ix_(ys + step, xs)]
    sharpness = np.abs(current - right) + np.abs(current - below)

    artifact_ratio = np.count_nonzero(sharpness > 300) / sharpness.size
    return max(0.0, min(100.0, 100 - artifact_ratio * 200))


def compare_frames(first: np.ndarray, second: np.ndarray) -> int:
    a = cv2.resize(first, (COMPARE_SIZE, COMPARE_SIZE), interpolation=cv2.INTER_AREA).astype(np.int32)
    b = cv2.resize(second, (COMPARE_SIZE, COMPARE_SIZE), interpolation=cv2.INTER_AREA).astype(np.int32)
    avg_diff = np.abs(a - b).sum(axis=2).mean()
    return round(max(0.0, 100 - avg_diff / 7.65))


def analyze_video_frames(path: Path, max_frames: int = 10) -> dict:
    frames = sample_frames(path, max_frames)
    if not frames:
        raise ValueError(f"No decodable frames in {path.name}")

    qualities = [frame_quality(frame) for frame in frames]
    suspicious = []
    consistencies = []
    for index in range(1, len(frames)):
        consistency = compare_frames(frames[index - 1], frames[index])
        consistencies.append(consistency)
        if consistency < SUSPICIOUS_FRAME_THRESHOLD:
            suspicious.append(index)

    return {
        "frame_consistency": round(sum(consistencies) / len(consistencies)) if consistencies else 100,
        "suspicious_frames": suspicious,
        "average_quality": round(sum(qualities) / len(qualities)),
    }


def analyze_motion_and_lighting(frames: dict) -> dict:
    motion = frames["frame_consistency"]
    lighting = frames["average_quality"]
    if len(frames["suspicious_frames"]) > 2:
        motion -= 20
        lighting -= 15
    return {
        "motion_consistency": max(0, motion),
        "lighting_consistency": max(0, lighting),
        "unnatural_transitions": len(frames["suspicious_frames"]),
    }


def detect_face_manipulation(frames: dict) -> dict:
    face_score = 100
    suspicious_regions = 0
    blinking = 100

    if frames["frame_consistency"] < 70:
        face_score -= 30
        suspicious_regions = len(frames["suspicious_frames"])

    if frames["average_quality"] < 60:
        face_score -= 20
        blinking -= 25

    return {
        "face_inconsistencies": max(0, 100 - face_score),
        "suspicious_face_regions": suspicious_regions,
        "blinking_patterns": max(0, 100 - blinking),
    }


def perform_advanced_video_analysis(path: Path, metadata: FileMetadata) -> AnalysisResult:
    started = monotonic()
    logger.info("Starting frame analysis for %s", metadata.name)

    frames = analyze_video_frames(path, 10)
    motion = analyze_motion_and_lighting(analyze_video_frames(path, 8))
    faces = detect_face_manipulation(analyze_video_frames(path, 6))

    checks = [
        (frames["frame_consistency"] < 70, 25, "Inconsistency between frames"),
        (len(frames["suspicious_frames"]) > 2, 20,
         f"{len(frames['suspicious_frames'])} suspicious frames"),
        (motion["motion_consistency"] < 60, 30, "Unnatural motion patterns"),
        (motion["lighting_consistency"] < 60, 25, "Lighting variation"),
        (motion["unnatural_transitions"] > 3, 20, "Unnatural transitions between frames"),
        (faces["face_inconsistencies"] > 40, 35, "Signs of manipulation in the face area"),
        (faces["suspicious_face_regions"] > 1, 15, "Suspicious face regions"),
        (frames["average_quality"] < 50, 15, "Low video quality, possibly recompressed after editing"),
    ]

    score = 0
    features = []
    for flagged, weight, feature in checks:
        if flagged:
            score += weight
            features.append(feature)

    confidence = min(score, 95)
    is_ai = confidence > 50

    if is_ai:
        explanation = f"Frame analysis found {len(features)} suspicious signs of deepfake manipulation"
    else:
        explanation = "Frame analysis found no clear signs of AI manipulation"

    return AnalysisResult(
        is_ai_generated=is_ai,
        confidence_score=confidence,
        detection_method=ADVANCED_METHOD,
        processing_time=round((monotonic() - started) * 1000),
        file_info=metadata,
        detected_features=features,
        explanation=explanation,
    )
