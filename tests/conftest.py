import io
import os
import shutil
import tempfile

import numpy as np
import pytest
from fastapi.testclient import TestClient
from PIL import Image

# Point the service at a throwaway directory before mediacheck is imported
_TEST_HOME = tempfile.mkdtemp(prefix="mediacheck-tests-")
os.environ["MEDIACHECK_HOME"] = _TEST_HOME
os.environ["UPLOAD_DIR"] = os.path.join(_TEST_HOME, "uploads")
os.environ["TEMP_DIR"] = os.path.join(_TEST_HOME, "temp")
os.environ["LOG_DIR"] = os.path.join(_TEST_HOME, "logs")
os.environ["FRONTEND_DIR"] = os.path.join(_TEST_HOME, "frontend")
os.environ["ENVIRONMENT"] = "development"
os.environ["ANALYSIS_RETRY_DELAY_SECONDS"] = "0"
os.environ["ANALYSIS_DELETE_DELAY_SECONDS"] = "0"
os.environ["HIVE_API_KEY"] = ""
os.environ["USE_DEEPWARE"] = "false"

from mediacheck import config
from mediacheck.detection import analysis_stats
from mediacheck.external import APIPerformanceMonitor
from mediacheck.main import app
from mediacheck.security import analysis_limiter, general_api_limiter, security_state, upload_limiter


def _reset_state():
    for limiter in (general_api_limiter, upload_limiter, analysis_limiter):
        limiter.reset()
    security_state.reset()
    analysis_stats.reset()
    APIPerformanceMonitor.get_instance().reset_metrics()
    for directory in (config.UPLOAD_DIR, config.TEMP_DIR, config.LOG_DIR):
        shutil.rmtree(directory, ignore_errors=True)
        directory.mkdir(parents=True, exist_ok=True)


@pytest.fixture(autouse=True)
def clean_state():
    _reset_state()
    yield


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def make_image_bytes(size=(64, 64), fmt="PNG", seed=0, **save_kwargs) -> bytes:
    rng = np.random.default_rng(seed)
    pixels = rng.integers(0, 256, size=(size[1], size[0], 3), dtype=np.uint8)
    buffer = io.BytesIO()
    Image.fromarray(pixels).save(buffer, fmt, **save_kwargs)
    return buffer.getvalue()


@pytest.fixture
def png_bytes():
    return make_image_bytes()


@pytest.fixture
def png_file(tmp_path):
    path = tmp_path / "holiday.png"
    path.write_bytes(make_image_bytes())
    return path


@pytest.fixture
def image_factory():
    return make_image_bytes
