import numpy as np
import pytest
from PIL import ExifTags, Image

from mediacheck.detectors.fingerprint import (
    analyze_compression_fingerprint,
    analyze_tool_fingerprint,
    block_variances,
    has_dct_ai_pattern,
    mirror_symmetry,
    pattern_repetition,
)
from mediacheck.detectors.image import (
    DETECTION_METHOD,
    KEYWORD_FEATURE,
    analyze_edge_consistency,
    analyze_exif_data,
    analyze_filename,
    analyze_noise_patterns,
    count_unnatural_color_peaks,
    decode_filename,
    jpeg_block_artifacts,
    perform_advanced_image_analysis,
)
from mediacheck.models import FileMetadata


def _metadata(name, size=0, mime="image/png"):
    return FileMetadata(name=name, size=size, type=mime)


def _noise(shape, seed=1):
    return np.random.default_rng(seed).integers(0, 256, size=shape).astype(np.float32)


class TestPixelStatistics:
    def test_flat_image_has_artificial_noise(self):
        avg, artificial = analyze_noise_patterns(np.full((64, 64), 128.0))
        assert avg == 0
        assert artificial is True

    def test_noisy_image_is_natural(self):
        avg, artificial = analyze_noise_patterns(_noise((64, 64)))
        assert avg > 1000
        assert artificial is False

    def test_block_artifacts(self):
        assert jpeg_block_artifacts(np.zeros((32, 32))) == 100
        assert jpeg_block_artifacts(_noise((32, 32))) == 0
        assert jpeg_block_artifacts(np.zeros((4, 4))) == 0

    def test_edge_consistency(self):
        assert analyze_edge_consistency(np.zeros((50, 50))) == 100
        checkerboard = (np.indices((50, 50)).sum(axis=0) % 2) * 255.0
        assert analyze_edge_consistency(checkerboard) == 0

    def test_colour_peaks(self):
        rgb = np.zeros((20, 20, 3), dtype=np.float32)
        rgb[:10] = 100
        rgb[10:] = 200
        assert count_unnatural_color_peaks(rgb) == 6
        assert count_unnatural_color_peaks(_noise((64, 64, 3))) == 0


class TestFingerprint:
    def test_block_variances_shape(self):
        assert block_variances(np.zeros((16, 24))).shape == (6,)
        assert block_variances(np.zeros((7, 7))).size == 0

    def test_dct_pattern(self):
        assert has_dct_ai_pattern(np.zeros((32, 32))) is True

    def test_pattern_repetition_on_constant_line(self):
        assert pattern_repetition(np.zeros(64)) == 5
        assert pattern_repetition(np.zeros(30)) == 0

    def test_mirror_symmetry(self):
        symmetric = np.array([[10.0, 200.0, 10.0]] * 4)
        assert mirror_symmetry(symmetric, axis=1) == 1.0
        ramp = np.tile(np.linspace(0, 255, 20), (4, 1))
        assert mirror_symmetry(ramp, axis=1) < 0.6

    def test_flat_image_fingerprint(self):
        fingerprint = analyze_compression_fingerprint(np.zeros((64, 64)))
        assert fingerprint.is_ai_generated is True
        assert fingerprint.confidence == 75
        assert len(fingerprint.evidence) == 3

    def test_missing_pixels(self):
        fingerprint = analyze_compression_fingerprint(None)
        assert fingerprint.is_ai_generated is False
        assert fingerprint.confidence == 0

    @pytest.mark.parametrize(
        "name, tool, confidence, is_ai",
        [
            ("my_midjourney_art.png", "Midjourney", 95, True),
            ("Stable-Diffusion-xl.png", "Stable Diffusion", 95, True),
            ("leonardo_portrait.jpg", "Leonardo AI", 90, True),
            ("edit_photoshop.jpg", "Adobe Photoshop", 90, False),
            ("canva_flyer.png", "Canva", 75, False),
            ("holiday.jpg", "unknown", 0, False),
        ],
    )
    def test_tool_fingerprint(self, name, tool, confidence, is_ai):
        result = analyze_tool_fingerprint(name)
        assert (result.detected_tool, result.confidence, result.is_ai_tool) == (tool, confidence, is_ai)


class TestFilename:
    def test_plain_name(self):
        result = analyze_filename("holiday.jpg")
        assert result.score == 0
        assert result.keyword_hit is False

    def test_english_keyword(self):
        result = analyze_filename("dalle_sunset.png")
        assert result.score == 70
        assert result.keyword_hit is True
        assert KEYWORD_FEATURE in result.features

    def test_lmarena(self):
        result = analyze_filename("lmarena_1234.png")
        assert result.score == 90
        assert result.keyword_hit is False

    def test_mojibake_arabic_name(self):
        garbled = "صورة ذكاء.png".encode("utf-8").decode("latin-1")
        decoded, was_mojibake = decode_filename(garbled)
        assert decoded == "صورة ذكاء.png"
        assert was_mojibake is True

        result = analyze_filename(garbled)
        # +90 for the repaired Arabic text, +70 for the Arabic keyword
        assert result.score == 160
        assert result.keyword_hit is True

    def test_url_encoded_name(self):
        decoded, was_mojibake = decode_filename("my%20holiday.png")
        assert decoded == "my holiday.png"
        assert was_mojibake is False


class TestExif:
    def test_png_without_exif(self, png_file):
        result = analyze_exif_data(png_file)
        assert result.has_exif is False
        assert result.anomalies == ["No EXIF data, possibly stripped on purpose"]

    def test_unreadable_file(self, tmp_path):
        path = tmp_path / "broken.jpg"
        path.write_bytes(b"not an image")
        assert analyze_exif_data(path).anomalies == ["Failed to read EXIF data"]

    def test_suspicious_software_and_camera(self, tmp_path):
        exif = Image.Exif()
        exif[ExifTags.Base.Software] = "GIMP 2.10"
        exif[ExifTags.Base.Make] = "Virtual"
        exif[ExifTags.Base.Model] = "Cam 1"
        path = tmp_path / "photo.jpg"
        Image.new("RGB", (32, 32), (120, 80, 40)).save(path, "JPEG", exif=exif)

        result = analyze_exif_data(path)
        assert result.has_exif is True
        assert "Suspicious editing software in metadata" in result.anomalies
        assert "Suspicious camera information" in result.anomalies
        assert result.suspicious_fields == ["Camera", "Software"]

    def test_camera_exif_without_anomalies(self, tmp_path):
        exif = Image.Exif()
        exif[ExifTags.Base.Make] = "Canon"
        exif[ExifTags.Base.Model] = "EOS 5D"
        path = tmp_path / "photo.jpg"
        Image.new("RGB", (32, 32), (120, 80, 40)).save(path, "JPEG", exif=exif)

        result = analyze_exif_data(path)
        assert result.has_exif is True
        assert result.anomalies == []


class TestAdvancedImageAnalysis:
    def test_noisy_png_without_exif(self, png_file):
        result = perform_advanced_image_analysis(png_file, _metadata("holiday.png"))
        assert result.detection_method == DETECTION_METHOD
        assert "EXIF data missing" in result.detected_features
        assert "Artificial noise patterns" not in result.detected_features
        assert 0 <= result.confidence_score <= 95

    def test_flat_image_scores_high(self, tmp_path):
        path = tmp_path / "holiday.png"
        Image.new("RGB", (64, 64), (90, 90, 90)).save(path)
        result = perform_advanced_image_analysis(path, _metadata("holiday.png"))
        assert result.is_ai_generated is True
        assert result.confidence_score == 95
        assert "Artificial noise patterns" in result.detected_features
        assert "Signs of multiple compression" in result.detected_features

    def test_keyword_forces_ai_verdict(self, png_file):
        result = perform_advanced_image_analysis(png_file, _metadata("ai_image_01.png"))
        assert result.is_ai_generated is True
        assert KEYWORD_FEATURE in result.detected_features
        assert "Filename pattern typical of AI generation tools" in result.detected_features

    def test_exif_read_from_original(self, tmp_path, png_file):
        exif = Image.Exif()
        exif[ExifTags.Base.Make] = "Canon"
        exif[ExifTags.Base.Model] = "EOS 5D"
        original = tmp_path / "original.jpg"
        Image.open(png_file).save(original, "JPEG", exif=exif)

        result = perform_advanced_image_analysis(png_file, _metadata("holiday.png"), exif_path=original)
        assert "EXIF data missing" not in result.detected_features

    def test_traditional_tool_lowers_score(self, png_file):
        plain = perform_advanced_image_analysis(png_file, _metadata("holiday.png"))
        edited = perform_advanced_image_analysis(png_file, _metadata("holiday_photoshop.png"))
        assert "Traditional editing tool detected: Adobe Photoshop" in edited.detected_features
        assert edited.confidence_score == max(0, plain.confidence_score - 20)
