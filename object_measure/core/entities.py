"""Domain entities (data-only structures) used across services."""
from __future__ import annotations
from dataclasses import dataclass, field
from typing import Optional
import time

import numpy as np

from .constants import FACING_ENVIRONMENT

@dataclass(frozen=True, slots=True, eq=False)
class Frame:
    """One still image sampled from a video source (BGR)."""
    image: np.ndarray
    sequence: int = 0
    timestamp: float = field(default_factory=time.time)

    @property
    def width(self) -> int:
        return int(self.image.shape[1])

    @property
    def height(self) -> int:
        return int(self.image.shape[0])

@dataclass(frozen=True, slots=True)
class DetectedRegion:
    """Detector bounding box in frame pixels, origin top-left."""
    class_label: str
    x: float
    y: float
    width: float
    height: float
    score: Optional[float] = None
    class_id: Optional[int] = None

@dataclass(frozen=True, slots=True)
class Measurement:
    width_m: float
    height_m: float
    object_label: str

@dataclass(frozen=True, slots=True)
class CameraConstraints:
    """Requested camera settings. Hints only; actual values are read back."""
    facing_mode: str = FACING_ENVIRONMENT
    width: int = 1280
    height: int = 720
    frame_rate: Optional[int] = None
    device_index: Optional[int] = None

@dataclass(slots=True)
class PipelineState:
    video_on: bool = False
    measuring: bool = False
    loading: bool = False
    error: Optional[str] = None
    last_measurement: Optional[Measurement] = None
    captured_image: Optional[str] = None  # PNG data URL of the held still
    policy: str = "continuous"

@dataclass(frozen=True, slots=True)
class CycleResult:
    """Outcome of one capture/detect/render cycle."""
    measurement: Optional[Measurement] = None
    detected: bool = False
    discarded: bool = False  # result arrived after cancellation
    frame: Optional[Frame] = None
