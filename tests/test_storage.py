import os
from time import time
from unittest.mock import MagicMock

import pytest
from PIL import Image

from mediacheck import cache, compression, config
from mediacheck.errors import AppError
from mediacheck.models import AnalysisResult, FileMetadata
from mediacheck.storage import (
    AutoDeleteConfig,
    AutoDeleteService,
    delete_file,
    find_upload_by_id,
    format_file_size,
    get_file_type,
    resolve_upload_path,
    sanitize_filename,
    validate_mime_type,
)


def _age(path, seconds):
    old = time() - seconds
    os.utime(path, (old, old))


def _result(name="holiday.png"):
    return AnalysisResult(
        is_ai_generated=False,
        confidence_score=20,
        detection_method="test",
        processing_time=5,
        file_info=FileMetadata(name=name, size=10, type="image/png"),
        detected_features=["EXIF data missing"],
    )


class TestFilenames:
    def test_strips_posix_and_windows_paths(self):
        assert sanitize_filename("../../a/holiday.png") == "holiday.png"
        assert sanitize_filename("C:\\Users\\me\\holiday.png") == "holiday.png"

    @pytest.mark.parametrize("raw, code", [
        (None, "NO_FILE_UPLOADED"),
        ("..", "INVALID_FILENAME"),
        ("x" * 256, "INVALID_FILENAME"),
        ("index.php.png", "SUSPICIOUS_FILENAME"),
        ("run.bat.mp3", "SUSPICIOUS_FILENAME"),
    ])
    def test_rejections(self, raw, code):
        with pytest.raises(AppError) as exc_info:
            sanitize_filename(raw)
        assert exc_info.value.code == code
        assert exc_info.value.status_code == 400

    def test_mime_validation(self):
        assert validate_mime_type("video/mp4") == "video/mp4"
        with pytest.raises(AppError) as exc_info:
            validate_mime_type("application/pdf")
        assert exc_info.value.status_code == 415

    def test_file_type(self):
        assert get_file_type("image/heic") == "image"
        assert get_file_type("video/webm") == "video"
        assert get_file_type("audio/flac") == "audio"
        with pytest.raises(AppError) as exc_info:
            get_file_type("text/plain")
        assert exc_info.value.code == "UNKNOWN_FILE_TYPE"

    def test_format_file_size(self):
        assert format_file_size(0) == "0 B"
        assert format_file_size(1536) == "1.5 KB"
        assert format_file_size(5 * 1024 * 1024) == "5 MB"


class TestUploadPaths:
    def test_resolve_inside_upload_dir(self):
        path = config.UPLOAD_DIR / "file-1-1.png"
        path.write_bytes(b"x")
        assert resolve_upload_path(str(path)) == path
        assert resolve_upload_path("file-1-1.png") == path

    def test_resolve_rejects_outside_and_missing(self, png_file):
        assert resolve_upload_path(str(png_file)) is None
        assert resolve_upload_path(str(config.UPLOAD_DIR / "missing.png")) is None
        assert resolve_upload_path("../uploads/../logs") is None

    def test_find_by_id(self):
        path = config.UPLOAD_DIR / "file-123-456.png"
        path.write_bytes(b"x")
        assert find_upload_by_id("file-123-456") == path
        assert find_upload_by_id("file-123") is None
        assert find_upload_by_id("file") is None
        assert find_upload_by_id("../file-123-456") is None
        assert find_upload_by_id("") is None

    def test_delete_file(self):
        path = config.UPLOAD_DIR / "file-1-1.png"
        path.write_bytes(b"x")
        assert delete_file(path) is True
        assert not path.exists()
        assert delete_file(path) is False


class TestAutoDeleteService:
    def test_deletes_old_files_then_excess(self, tmp_path):
        for i in range(5):
            (tmp_path / f"f{i}.bin").write_bytes(b"x" * 10)
            _age(tmp_path / f"f{i}.bin", 60 * (5 - i))
        old = tmp_path / "old.bin"
        old.write_bytes(b"x")
        _age(old, 2 * 60 * 60)
        (tmp_path / "nested").mkdir()

        service = AutoDeleteService(AutoDeleteConfig(max_age=30, max_files=3), directories=[tmp_path])
        assert service.cleanup_files() == 3

        remaining = sorted(p.name for p in tmp_path.iterdir() if p.is_file())
        assert remaining == ["f2.bin", "f3.bin", "f4.bin"]
        assert (tmp_path / "nested").is_dir()

    def test_missing_directory(self, tmp_path):
        service = AutoDeleteService(directories=[tmp_path / "nope"])
        assert service.cleanup_files() == 0

    def test_start_schedules_interval_job(self, tmp_path):
        scheduler = MagicMock()
        service = AutoDeleteService(AutoDeleteConfig(check_interval=7), directories=[tmp_path])
        service.start(scheduler)
        assert service.is_running is True
        _args, kwargs = scheduler.add_job.call_args
        assert kwargs["minutes"] == 7
        assert kwargs["id"] == AutoDeleteService.JOB_ID

        service.stop()
        assert service.is_running is False
        scheduler.remove_job.assert_called_once_with(AutoDeleteService.JOB_ID)

    @pytest.mark.parametrize("kwargs, code", [
        ({"max_age": 2000}, "INVALID_MAX_AGE"),
        ({"max_files": 0}, "INVALID_MAX_FILES"),
        ({"check_interval": 61}, "INVALID_CHECK_INTERVAL"),
    ])
    def test_configure_validation(self, kwargs, code):
        service = AutoDeleteService()
        with pytest.raises(AppError) as exc_info:
            service.configure(**kwargs)
        assert exc_info.value.code == code
        assert service.config == AutoDeleteConfig()

    def test_cleanup_stats(self):
        (config.UPLOAD_DIR / "a.png").write_bytes(b"12345")
        stats = AutoDeleteService().get_cleanup_stats()
        assert stats["upload_dir"] == {"file_count": 1, "total_size": 5}
        assert stats["config"] == {"max_age": 30, "max_files": 100, "check_interval": 5}
        assert stats["is_running"] is False


class TestCache:
    def test_key_is_md5_of_path_size_mtime(self):
        key = cache.generate_cache_key("/tmp/a.png", 10, 1234)
        assert key == cache.generate_cache_key("/tmp/a.png", 10, 1234)
        assert key != cache.generate_cache_key("/tmp/a.png", 11, 1234)
        assert len(key) == 32

    def test_round_trip_and_stats(self):
        result = _result()
        cache.cache_result("abc", result)
        assert cache.get_cached_result("abc") == result

        stats = cache.get_cache_stats()
        assert stats["total_files"] == 1
        assert stats["total_size"] > 0
        assert stats["oldest_file"] is not None

    def test_miss_and_corrupt_entry(self):
        assert cache.get_cached_result("missing") is None
        config.CACHE_DIR.mkdir(parents=True, exist_ok=True)
        (config.CACHE_DIR / "bad.json").write_text("{not json", encoding="utf-8")
        assert cache.get_cached_result("bad") is None

    def test_expired_entry_is_removed(self, monkeypatch):
        cache.cache_result("old", _result())
        monkeypatch.setattr("mediacheck.config.CACHE_EXPIRY_SECONDS", -1)
        assert cache.get_cached_result("old") is None
        assert not (config.CACHE_DIR / "old.json").exists()

    def test_clean_expired_and_oversized(self, monkeypatch):
        for key in ("a", "b", "c", "d"):
            cache.cache_result(key, _result())
        _age(config.CACHE_DIR / "a.json", 2 * 24 * 60 * 60)
        _age(config.CACHE_DIR / "b.json", 300)
        _age(config.CACHE_DIR / "c.json", 200)
        entry_size = (config.CACHE_DIR / "d.json").stat().st_size

        monkeypatch.setattr("mediacheck.config.CACHE_MAX_SIZE_BYTES", entry_size * 2)
        assert cache.clean_expired_cache() == 3
        assert [p.stem for p in config.CACHE_DIR.glob("*.json")] == ["d"]

    def test_empty_stats(self):
        assert cache.get_cache_stats() == {
            "total_files": 0, "total_size": 0, "oldest_file": None, "newest_file": None,
        }


class TestCompression:
    def test_optimize_image(self, tmp_path):
        path = tmp_path / "big.png"
        Image.new("RGB", (1600, 1200), (10, 20, 30)).save(path)

        optimized = compression.optimize_for_analysis(path, "image")
        assert optimized.parent == config.OPTIMIZED_DIR
        assert optimized.name == "big_optimized.jpg"
        with Image.open(optimized) as image:
            assert image.size == (800, 600)

    def test_optimize_passthrough(self, tmp_path):
        audio = tmp_path / "voice.mp3"
        audio.write_bytes(b"ID3")
        assert compression.optimize_for_analysis(audio, "audio") == audio

        broken = tmp_path / "broken.png"
        broken.write_bytes(b"not an image")
        assert compression.optimize_for_analysis(broken, "image") == broken

    def test_clean_optimized_files(self):
        config.OPTIMIZED_DIR.mkdir(parents=True, exist_ok=True)
        old = config.OPTIMIZED_DIR / "old_optimized.jpg"
        old.write_bytes(b"x")
        _age(old, 2 * 60 * 60)
        fresh = config.OPTIMIZED_DIR / "new_optimized.jpg"
        fresh.write_bytes(b"x")

        assert compression.clean_optimized_files() == 1
        assert fresh.exists()
