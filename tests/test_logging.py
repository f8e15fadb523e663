import json
import logging

from mediacheck import config
from mediacheck.logging_config import MediaCheckJsonFormatter, default_log_level, setup_logging


def _record(msg="Cached analysis result key=%s", args=("abc",)):
    return logging.LogRecord("mediacheck.cache", logging.INFO, __file__, 1, msg, args, None)


def test_formatter_renames_and_adds_fields():
    formatter = MediaCheckJsonFormatter(
        fmt="%(asctime)s %(levelname)s %(name)s %(message)s",
        rename_fields={"asctime": "timestamp"},
    )
    payload = json.loads(formatter.format(_record()))

    assert payload["message"] == "Cached analysis result key=abc"
    assert payload["level"] == "INFO"
    assert payload["logger"] == "mediacheck.cache"
    assert payload["service"] == "mediacheck"
    assert payload["environment"] == "development"
    assert "timestamp" in payload
    assert "levelname" not in payload


def test_default_level_follows_environment(monkeypatch):
    assert default_log_level() == "DEBUG"
    monkeypatch.setattr("mediacheck.config.ENVIRONMENT", "production")
    assert default_log_level() == "INFO"
    monkeypatch.setattr("mediacheck.config.LOG_LEVEL", "WARNING")
    assert default_log_level() == "WARNING"


def test_setup_logging_writes_json_file():
    setup_logging("INFO")
    logger = logging.getLogger("mediacheck.tests")
    logger.info("Upload stored", extra={"file_type": "image"})
    for handler in logging.getLogger("mediacheck").handlers:
        handler.flush()

    lines = (config.LOG_DIR / "mediacheck.log").read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[-1])
    assert entry["message"] == "Upload stored"
    assert entry["file_type"] == "image"
    assert entry["logger"] == "mediacheck.tests"
