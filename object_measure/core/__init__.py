"""Core domain entities and constants."""

from .entities import (
    Frame, DetectedRegion, Measurement, CameraConstraints, PipelineState, CycleResult
)
from .exceptions import (
    ApplicationError, ConfigError, ValidationError, ModelError, ModelLoadError,
    WebcamError, CameraAccessError, DetectionError, DetectionCycleError
)
from .constants import APP_NAME, VERSION, DEFAULT_SCALE_CONSTANT

__all__ = [
    "Frame", "DetectedRegion", "Measurement", "CameraConstraints", "PipelineState", "CycleResult",
    "ApplicationError", "ConfigError", "ValidationError", "ModelError", "ModelLoadError",
    "WebcamError", "CameraAccessError", "DetectionError", "DetectionCycleError",
    "APP_NAME", "VERSION", "DEFAULT_SCALE_CONSTANT"
]
