from dataclasses import dataclass, field
import logging
import re

import numpy as np

logger = logging.getLogger("mediacheck.detectors.fingerprint")

BLOCK_SIZE = 8
PERIODIC_STEP = 10
MIN_PATTERN_SIZE = 10


@dataclass
class CompressionFingerprint:
    is_ai_generated: bool
    confidence: int
    evidence: list[str] = field(default_factory=list)


@dataclass
class ToolFingerprint:
    detected_tool: str
    confidence: int
    is_ai_tool: bool


AI_TOOL_PATTERNS = [
    (re.compile(r"midjourney", re.I), "Midjourney", 95),
    (re.compile(r"dall.*e", re.I), "DALL-E", 95),
    (re.compile(r"stable.*diffusion", re.I), "Stable Diffusion", 95),
    (re.compile(r"leonardo", re.I), "Leonardo AI", 90),
    (re.compile(r"firefly", re.I), "Adobe Firefly", 85),
    (re.compile(r"generated", re.I), "AI Generated", 80),
    (re.compile(r"synthetic", re.I), "Synthetic Media", 85),
]

TRADITIONAL_TOOL_PATTERNS = [
    (re.compile(r"photoshop", re.I), "Adobe Photoshop", 90),
    (re.compile(r"lightroom", re.I), "Adobe Lightroom", 85),
    (re.compile(r"gimp", re.I), "GIMP", 80),
    (re.compile(r"canva", re.I), "Canva", 75),
]


def block_variances(gray: np.ndarray, block_size: int = BLOCK_SIZE) -> np.ndarray:
    """Variance of every full block_size x block_size tile."""
    rows = gray.shape[0] // block_size
    cols = gray.shape[1] // block_size
    if rows == 0 or cols == 0:
        return np.empty(0)
    tiles = gray[: rows * block_size, : cols * block_size].reshape(rows, block_size, cols, block_size)
    return tiles.var(axis=(1, 3)).ravel()


def has_dct_ai_pattern(gray: np.ndarray) -> bool:
    variances = block_variances(gray)
    if variances.size == 0:
        return False
    suspicious = np.count_nonzero((variances < 5) | (variances > 200))
    return suspicious / variances.size > 0.3


def pattern_repetition(pattern: np.ndarray) -> int:
    """Largest count of consecutive similar chunks over all chunk sizes."""
    length = pattern.size
    max_repetition = 0
    pattern_size = MIN_PATTERN_SIZE
    while pattern_size < length / 4:
        chunks = (length - 2 * pattern_size + pattern_size - 1) // pattern_size
        if chunks > 0:
            segments = pattern[: (chunks + 1) * pattern_size].reshape(chunks + 1, pattern_size)
            avg_diff = np.abs(np.diff(segments, axis=0)).mean(axis=1)
            similarity = 1 - avg_diff / 255
            max_repetition = max(max_repetition, int(np.count_nonzero(similarity > 0.9)))
        pattern_size += 1
    return max_repetition


def has_periodic_pattern(gray: np.ndarray) -> bool:
    score = 0
    lines = [gray[y, :] for y in range(0, gray.shape[0], PERIODIC_STEP)]
    lines += [gray[:, x] for x in range(0, gray.shape[1], PERIODIC_STEP)]
    for line in lines:
        repetitions = pattern_repetition(line)
        if repetitions > 3:
            score += min(repetitions * 10, 100)
    return score > 50


def mirror_symmetry(gray: np.ndarray, axis: int) -> float:
    size = gray.shape[axis]
    if size == 0:
        return 0.0
    half = (size + 1) // 2
    flipped = np.flip(gray, axis=axis)
    first = np.take(gray, range(half), axis=axis)
    mirrored = np.take(flipped, range(half), axis=axis)
    avg_diff = float(np.abs(first - mirrored).mean())
    return max(0.0, 1 - avg_diff / 255)


def has_unnatural_symmetry(gray: np.ndarray) -> bool:
    return mirror_symmetry(gray, axis=1) > 0.95 or mirror_symmetry(gray, axis=0) > 0.95


def analyze_compression_fingerprint(gray: np.ndarray | None) -> CompressionFingerprint:
    if gray is None or gray.size == 0:
        return CompressionFingerprint(False, 0, ["Advanced analysis failed"])

    evidence = []
    score = 0

    if has_dct_ai_pattern(gray):
        score += 30
        evidence.append("DCT block pattern typical of AI generation")

    if has_periodic_pattern(gray):
        score += 25
        evidence.append("Periodic repetition typical of AI generation")

    if has_unnatural_symmetry(gray):
        score += 20
        evidence.append("Unnatural symmetry suggesting automatic generation")

    return CompressionFingerprint(score > 40, min(score, 95), evidence)


def analyze_tool_fingerprint(file_name: str) -> ToolFingerprint:
    lowered = file_name.lower()
    for pattern, tool, confidence in AI_TOOL_PATTERNS:
        if pattern.search(lowered):
            return ToolFingerprint(tool, confidence, True)
    for pattern, tool, confidence in TRADITIONAL_TOOL_PATTERNS:
        if pattern.search(lowered):
            return ToolFingerprint(tool, confidence, False)
    return ToolFingerprint("unknown", 0, False)
