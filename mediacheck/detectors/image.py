"""
Local image analysis.

Scores an image on a handful of independent signals: EXIF presence and
anomalies, noise and block variance, edge sharpness, colour histogram peaks,
the compression fingerprint and the filename. Each signal adds a fixed amount
to a suspicion score; the confidence is that score capped at 95.

EXIF is read from the original upload because the downscaled analysis copy
does not carry it. Pixel statistics use the analysis copy.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path, PurePosixPath
from time import monotonic
from urllib.parse import unquote
import logging
import re

import numpy as np
from PIL import ExifTags, Image, UnidentifiedImageError

from mediacheck.detectors.fingerprint import (
    analyze_compression_fingerprint,
    analyze_tool_fingerprint,
    block_variances,
)
from mediacheck.models import AnalysisResult, FileMetadata

logger = logging.getLogger("mediacheck.detectors.image")

DETECTION_METHOD = "Advanced Image Analysis - EXIF + Noise + Edge + Color"
KEYWORD_FEATURE = "Filename clearly indicates AI generation"

NOISE_GRID_SIZE = 8
EDGE_SAMPLE_SIZE = 100

SUSPICIOUS_CAMERAS = ("ai camera", "generated", "synthetic", "virtual")
SUSPICIOUS_SOFTWARE = ("photoshop", "gimp", "ai", "generated", "deepfake", "faceswap")

AI_KEYWORDS = (
    "generated", "ai", "artificial", "midjourney", "dalle", "dall-e",
    "stable", "diffusion", "gemini", "chatgpt", "gpt", "synthetic",
    "deepfake", "fake", "created", "made", "bot", "automatic", "render",
    "ذكاء", "اصطناعي", "مولد", "تركيب", "معدل", "مصطنع",
)

# Arabic words seen in mis-decoded filenames from generator sites
MOJIBAKE_AI_WORDS = ("تركيب", "صور", "ذكاء", "اصطناعي")
MOJIBAKE_GENERATOR_WORDS = ("مولد", "معدل")

AI_FILENAME_PATTERNS = [
    re.compile(p, re.I)
    for p in (
        r"generated.*image",
        r"image.*generated",
        r"ai.*image",
        r"image.*ai",
        r"_generated_",
        r"output_\d+",
        r"render_\d+",
        r"\w+_generated_\w+",
    )
]

MODERN_EXTENSIONS = {"webp", "avif", "heic"}


@dataclass
class ExifAnalysis:
    has_exif: bool
    anomalies: list[str] = field(default_factory=list)
    suspicious_fields: list[str] = field(default_factory=list)


@dataclass
class FilenameAnalysis:
    score: int = 0
    features: list[str] = field(default_factory=list)
    keyword_hit: bool = False


def _parse_exif_date(value) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(str(value).strip(), "%Y:%m:%d %H:%M:%S")
    except ValueError:
        return None


def _gps_coordinate(value) -> float | None:
    try:
        degrees, minutes, seconds = (float(part) for part in value)
    except (TypeError, ValueError, ZeroDivisionError):
        return None
    return degrees + minutes / 60 + seconds / 3600


def analyze_exif_data(path: Path) -> ExifAnalysis:
    try:
        with Image.open(path) as image:
            exif = image.getexif()
            exif_ifd = exif.get_ifd(ExifTags.IFD.Exif)
            gps_ifd = exif.get_ifd(ExifTags.IFD.GPSInfo)
    except (OSError, UnidentifiedImageError, ValueError) as exc:
        logger.warning("Failed to read EXIF from %s: %s", path.name, exc)
        return ExifAnalysis(False, ["Failed to read EXIF data"])

    if not exif:
        return ExifAnalysis(False, ["No EXIF data, possibly stripped on purpose"])

    result = ExifAnalysis(True)

    created = _parse_exif_date(exif_ifd.get(ExifTags.Base.DateTimeDigitized))
    modified = _parse_exif_date(exif.get(ExifTags.Base.DateTime))
    if created and modified and modified < created:
        result.anomalies.append("Modification date earlier than creation date")

    make = exif.get(ExifTags.Base.Make)
    model = exif.get(ExifTags.Base.Model)
    if make and model:
        camera = f"{make} {model}".lower()
        if any(token in camera for token in SUSPICIOUS_CAMERAS):
            result.anomalies.append("Suspicious camera information")
            result.suspicious_fields.append("Camera")

    software = exif.get(ExifTags.Base.Software)
    if software:
        lowered = str(software).lower()
        if any(token in lowered for token in SUSPICIOUS_SOFTWARE):
            result.anomalies.append("Suspicious editing software in metadata")
            result.suspicious_fields.append("Software")

    latitude = _gps_coordinate(gps_ifd.get(ExifTags.GPS.GPSLatitude))
    longitude = _gps_coordinate(gps_ifd.get(ExifTags.GPS.GPSLongitude))
    if latitude == 0 and longitude == 0:
        result.anomalies.append("Suspicious GPS coordinates (0,0)")

    return result


def load_rgb(path: Path) -> np.ndarray | None:
    try:
        with Image.open(path) as image:
            return np.asarray(image.convert("RGB"), dtype=np.float32)
    except (OSError, UnidentifiedImageError, ValueError) as exc:
        logger.warning("Could not decode pixels of %s: %s", path.name, exc)
        return None


def to_gray(rgb: np.ndarray) -> np.ndarray:
    return rgb.sum(axis=2) / 3


def analyze_noise_patterns(gray: np.ndarray) -> tuple[float, bool]:
    """Average 8x8 grid variance and whether any cell is suspiciously flat."""
    height, width = gray.shape
    cell_height = height // NOISE_GRID_SIZE
    cell_width = width // NOISE_GRID_SIZE

    total = 0.0
    artificial = False
    for i in range(NOISE_GRID_SIZE):
        for j in range(NOISE_GRID_SIZE):
            cell = gray[j * cell_height:(j + 1) * cell_height, i * cell_width:(i + 1) * cell_width]
            variance = float(cell.var()) if cell.size else 0.0
            total += variance
            if variance < 10:
                artificial = True

    return total / NOISE_GRID_SIZE ** 2, artificial


def jpeg_block_artifacts(gray: np.ndarray) -> int:
    """Percentage of 8x8 blocks that are nearly flat."""
    variances = block_variances(gray)
    if variances.size == 0:
        return 0
    return round(np.count_nonzero(variances < 5) / variances.size * 100)


def analyze_edge_consistency(gray: np.ndarray) -> int:
    sample = min(gray.shape[0], gray.shape[1], EDGE_SAMPLE_SIZE)
    if sample < 3:
        return 100

    current = gray[1:sample - 1, 1:sample - 1]
    right = gray[1:sample - 1, 2:sample]
    below = gray[2:sample, 1:sample - 1]
    magnitude = np.abs(current - right) + np.abs(current - below)

    edges = np.count_nonzero(magnitude > 50)
    if edges == 0:
        return 100
    sharp = np.count_nonzero(magnitude > 150)
    return round((edges - sharp) / edges * 100)


def count_unnatural_color_peaks(rgb: np.ndarray) -> int:
    pixels = rgb.shape[0] * rgb.shape[1]
    peaks = 0
    for channel in range(3):
        histogram = np.bincount(rgb[..., channel].astype(np.uint8).ravel(), minlength=256)
        current = histogram[1:255]
        previous = histogram[:254]
        following = histogram[2:]
        sharp = (current > previous * 3) & (current > following * 3) & (current > pixels * 0.05)
        peaks += int(np.count_nonzero(sharp))
    return peaks


def decode_filename(name: str) -> tuple[str, bool]:
    """URL-decode a filename and repair UTF-8 that was read as Latin-1."""
    decoded = unquote(name)
    if decoded == name:
        decoded = unquote(unquote(name))

    try:
        repaired = decoded.encode("latin-1").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return decoded, False
    return repaired, repaired != decoded


def analyze_filename(name: str) -> FilenameAnalysis:
    decoded, was_mojibake = decode_filename(name)
    file_name = decoded.lower()
    result = FilenameAnalysis()

    if "lmarena" in file_name or (
        was_mojibake and any(word in file_name for word in MOJIBAKE_AI_WORDS)
    ):
        result.score += 90
        result.features.append("Filename contains text indicating AI generation")
    elif was_mojibake and any(word in file_name for word in MOJIBAKE_GENERATOR_WORDS):
        result.score += 80
        result.features.append("Filename contains Arabic text indicating AI generation")

    if any(keyword in file_name for keyword in AI_KEYWORDS):
        result.score += 70
        result.features.append(KEYWORD_FEATURE)
        result.keyword_hit = True

    return result


def _matches_generator_pattern(name: str) -> bool:
    file_name = decode_filename(name)[0].lower()
    return any(pattern.search(file_name) for pattern in AI_FILENAME_PATTERNS)


def perform_advanced_image_analysis(
    path: Path,
    metadata: FileMetadata,
    exif_path: Path | None = None,
) -> AnalysisResult:
    started = monotonic()
    logger.info("Starting image analysis for %s", metadata.name)

    exif = analyze_exif_data(exif_path or path)
    rgb = load_rgb(path)
    gray = to_gray(rgb) if rgb is not None else None

    features: list[str] = []
    score = 0.0

    filename = analyze_filename(metadata.name)
    score += filename.score
    features.extend(filename.features)

    if not exif.has_exif:
        score += 20
        features.append("EXIF data missing")
    elif exif.anomalies:
        score += 15 * len(exif.anomalies)
        features.extend(exif.anomalies)

    if gray is not None:
        _noise_level, artificial = analyze_noise_patterns(gray)
        if artificial:
            score += 25
            features.append("Artificial noise patterns")
        if jpeg_block_artifacts(gray) > 50:
            score += 20
            features.append("Signs of multiple compression")
        if analyze_edge_consistency(gray) < 70:
            score += 30
            features.append("Inconsistent edges")
        if count_unnatural_color_peaks(rgb) > 3:
            score += 25
            features.append("Unnatural colour distribution")

    fingerprint = analyze_compression_fingerprint(gray)
    if fingerprint.is_ai_generated:
        score += fingerprint.confidence * 0.4
        features.extend(fingerprint.evidence)

    tool = analyze_tool_fingerprint(metadata.name)
    if tool.confidence > 70:
        if tool.is_ai_tool:
            score += 60
            features.append(f"AI tool detected: {tool.detected_tool}")
        else:
            score -= 20
            features.append(f"Traditional editing tool detected: {tool.detected_tool}")

    if _matches_generator_pattern(metadata.name):
        score += 60
        features.append("Filename pattern typical of AI generation tools")

    if score == 0 and not features:
        extension = PurePosixPath(metadata.name.lower()).suffix.lstrip(".")
        if extension in MODERN_EXTENSIONS:
            score += 10
            features.append("Modern file format often used by generation tools")

    confidence = max(0, min(round(score), 95))
    is_ai = confidence > 40 or filename.keyword_hit

    logger.info(
        "Image analysis for %s: score=%.1f confidence=%d ai=%s features=%d",
        metadata.name, score, confidence, is_ai, len(features),
    )

    if is_ai:
        explanation = f"Found {len(features)} suspicious signs suggesting AI manipulation"
    else:
        explanation = "Advanced analysis found no clear signs of AI manipulation"

    return AnalysisResult(
        is_ai_generated=is_ai,
        confidence_score=confidence,
        detection_method=DETECTION_METHOD,
        processing_time=round((monotonic() - started) * 1000),
        file_info=metadata,
        detected_features=features,
        explanation=explanation,
    )
