"""Services package for the measurement pipeline."""

from .camera_session import CameraSession
from .detector_service import DetectorService, clear_model_cache
from .detection_scheduler import (
    SchedulePolicy, LivenessToken, DetectionScheduler,
    IntervalScheduler, ContinuousScheduler, SingleShotScheduler, create_scheduler,
)
from .measurement import convert, measure, pixels_per_meter, round_meters, format_meters
from .overlay_renderer import OverlayRenderer, OverlaySurface, LabelRect
from .pipeline_controller import PipelineController

__all__ = [
    "CameraSession", "DetectorService", "clear_model_cache",
    "SchedulePolicy", "LivenessToken", "DetectionScheduler",
    "IntervalScheduler", "ContinuousScheduler", "SingleShotScheduler", "create_scheduler",
    "convert", "measure", "pixels_per_meter", "round_meters", "format_meters",
    "OverlayRenderer", "OverlaySurface", "LabelRect",
    "PipelineController",
]
