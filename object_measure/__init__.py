"""
Object Measure: live object detection and rough physical size estimation.
"""

__version__ = "1.0.0"
__author__ = "Object Measure Team"

from .config.settings import Config, load_config, save_config
from .core.entities import CameraConstraints, DetectedRegion, Frame, Measurement, PipelineState
from .services.pipeline_controller import PipelineController

__all__ = [
    "Config", "load_config", "save_config",
    "CameraConstraints", "DetectedRegion", "Frame", "Measurement", "PipelineState",
    "PipelineController",
]
