"""Pytest configuration and shared fixtures for the object measurement pipeline.

Provides configuration objects, sample frames and in-process doubles for
the camera and detector backend so that pipeline tests run without
hardware or model weights.
"""
import asyncio
import os
import sys
import tempfile
import threading
import time
import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional
from unittest.mock import Mock, patch

import numpy as np
import cv2
import pytest

# Add the project root to Python path
PROJECT_ROOT = Path(__file__).parent.parent
sys.path.insert(0, str(PROJECT_ROOT))

from object_measure.backends.base_backend import BaseBackend
from object_measure.config.defaults import DEFAULT_CONFIG
from object_measure.config.settings import Config, load_config
from object_measure.core.entities import CameraConstraints, DetectedRegion, Frame
from object_measure.core.exceptions import CameraAccessError, ModelError, ModelLoadError
from object_measure.services.detector_service import clear_model_cache


# Configure logging for tests
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[logging.StreamHandler()]
)

# Disable some verbose loggers during testing
logging.getLogger('ultralytics').setLevel(logging.WARNING)


class FakeBackend(BaseBackend):
    """In-process detector backend returning canned regions."""

    def __init__(self, config: Optional[Dict[str, Any]] = None,
                 regions: Optional[List[DetectedRegion]] = None,
                 fail_load: bool = False,
                 fail_predict: bool = False,
                 predict_delay: float = 0.0):
        super().__init__(config or {})
        self.regions = list(regions or [])
        self.fail_load = fail_load
        self.fail_predict = fail_predict
        self.predict_delay = predict_delay
        self.load_calls = 0
        self.predict_calls = 0
        self.active = 0
        self.max_active = 0
        self._count_lock = threading.Lock()

    def load_model(self, model_path_or_name: str) -> bool:
        self.load_calls += 1
        if self.fail_load:
            raise ModelLoadError(f"cannot load {model_path_or_name}")
        self.is_loaded = True
        self.model_info = {'backend': 'fake', 'model_path': model_path_or_name}
        return True

    def predict(self, image: np.ndarray, **kwargs) -> List[DetectedRegion]:
        with self._count_lock:
            self.predict_calls += 1
            self.active += 1
            self.max_active = max(self.max_active, self.active)
        try:
            if self.predict_delay:
                time.sleep(self.predict_delay)
            if self.fail_predict:
                raise ModelError("inference failed")
            return list(self.regions)
        finally:
            with self._count_lock:
                self.active -= 1

    def get_model_info(self) -> Dict[str, Any]:
        if not self.is_loaded:
            return {'status': 'not_loaded'}
        return dict(self.model_info)


class FakeCamera:
    """Camera session double with the same interface as ``CameraSession``."""

    def __init__(self, frame: Optional[Frame] = None, fail: bool = False, open_delay: float = 0.0):
        self.frame = frame
        self.fail = fail
        self.open_delay = open_delay
        self.stalled = False
        self.start_calls = 0
        self.stop_calls = 0
        self._is_open = False
        self._generation = 0

    async def start(self, constraints: Optional[CameraConstraints] = None) -> "FakeCamera":
        self.stop()
        self.start_calls += 1
        generation = self._generation
        if self.open_delay:
            await asyncio.sleep(self.open_delay)
        if self.fail:
            raise CameraAccessError("Permission denied")
        if generation == self._generation:
            self._is_open = True
        return self

    def stop(self) -> None:
        self._generation += 1
        if self._is_open:
            self.stop_calls += 1
        self._is_open = False

    def read_frame(self) -> Optional[Frame]:
        return self.frame if self._is_open else None

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def is_stalled(self) -> bool:
        return self._is_open and self.stalled


async def wait_until(predicate, timeout: float = 2.0, interval: float = 0.01) -> bool:
    """Poll ``predicate`` on the running loop until it holds or ``timeout`` expires."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() >= deadline:
            return False
        await asyncio.sleep(interval)
    return True


def make_frame(width: int = 1280, height: int = 720, sequence: int = 1) -> Frame:
    """Gray BGR frame of the given size."""
    return Frame(image=np.full((height, width, 3), 128, dtype=np.uint8), sequence=sequence)


@pytest.fixture(scope="session")
def project_root():
    """Provide project root directory path."""
    return PROJECT_ROOT


@pytest.fixture
def temp_dir():
    """Provide a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def clean_env():
    """Remove OBJECT_MEASURE_* variables for the duration of a test."""
    cleaned = {k: v for k, v in os.environ.items() if not k.startswith("OBJECT_MEASURE_")}
    with patch.dict(os.environ, cleaned, clear=True):
        yield


@pytest.fixture
def mock_config():
    """Provide a mock configuration object backed by the defaults."""
    values = dict(DEFAULT_CONFIG)
    values.update({
        "camera_width": 640,
        "camera_height": 480,
        "debug": True,
    })
    config = Mock(spec=Config)
    for key, value in values.items():
        setattr(config, key, value)
    config.get.side_effect = lambda key, default=None: values.get(key, default)
    return config


@pytest.fixture
def real_config(temp_dir, clean_env):
    """Provide a real configuration object loaded from a temporary file."""
    config_data = {
        "camera_width": 640,
        "camera_height": 480,
        "camera_fps": 30,
        "scale_constant": 1.5,
        "schedule_policy": "interval",
        "interval_ms": 50,
        "refresh_rate_hz": 120,
        "debug": True,
    }

    config_file = temp_dir / "config.json"
    with open(config_file, 'w') as f:
        json.dump(config_data, f, indent=2)

    return load_config(str(config_file), env_file=str(temp_dir / ".env"))


@pytest.fixture
def sample_frame():
    """Provide a 1280x720 frame."""
    return make_frame(1280, 720)


@pytest.fixture
def sample_image():
    """Provide a sample BGR image with a few shapes."""
    image = np.zeros((100, 100, 3), dtype=np.uint8)
    image[10:40, 10:40] = [255, 0, 0]
    cv2.circle(image, (50, 50), 15, (0, 255, 0), -1)
    image[60:90, 60:90] = [0, 0, 255]
    return image


@pytest.fixture
def sample_region():
    """A 320x180 px cup whose top-left corner is at (400, 300)."""
    return DetectedRegion(class_label="cup", x=400, y=300, width=320, height=180, score=0.9, class_id=41)


@pytest.fixture
def fake_backend(sample_region):
    """Provide a loaded-on-demand fake backend that always finds ``sample_region``."""
    return FakeBackend(regions=[sample_region])


@pytest.fixture
def fake_camera(sample_frame):
    """Provide a camera double that serves ``sample_frame``."""
    return FakeCamera(frame=sample_frame)


@pytest.fixture
def mock_opencv_capture():
    """Provide a mock OpenCV VideoCapture object."""
    cap = Mock()
    cap.isOpened.return_value = True
    cap.read.return_value = (True, np.zeros((480, 640, 3), dtype=np.uint8))
    cap.get.side_effect = lambda prop: {
        cv2.CAP_PROP_FRAME_WIDTH: 640,
        cv2.CAP_PROP_FRAME_HEIGHT: 480,
        cv2.CAP_PROP_FPS: 30,
    }.get(prop, 0)
    cap.set.return_value = True
    cap.release.return_value = None
    return cap


@pytest.fixture(autouse=True)
def reset_model_cache():
    """Forget shared detector backends between tests."""
    clear_model_cache()
    yield
    clear_model_cache()


# Test markers and utilities
def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line("markers", "slow: mark test as slow running")
    config.addinivalue_line("markers", "integration: mark test as integration test")
    config.addinivalue_line("markers", "unit: mark test as unit test")
    config.addinivalue_line("markers", "webcam: mark test as requiring webcam access")


def pytest_collection_modifyitems(config, items):
    """Modify test collection to add markers and skip conditions."""
    for item in items:
        # Add markers based on test file location
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)
        elif "unit" in str(item.fspath):
            item.add_marker(pytest.mark.unit)

        if item.get_closest_marker("webcam") and not os.getenv("RUN_WEBCAM_TESTS"):
            item.add_marker(pytest.mark.skip(reason="Webcam tests disabled"))
