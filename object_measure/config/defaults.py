"""Default configuration values."""

from typing import Any, Dict

DEFAULT_CONFIG: Dict[str, Any] = {
    # Camera settings
    "camera_index": 0,  # environment-facing device
    "user_camera_index": 1,  # user-facing device
    "facing_mode": "environment",
    "camera_width": 1280,
    "camera_height": 720,
    "camera_fps": 30,

    # Detector settings
    "model_name": "yolo12n.pt",
    "detection_confidence_threshold": 0.5,  # 0.0 to 1.0
    "detection_iou_threshold": 0.45,  # 0.0 to 1.0

    # Measurement settings
    "scale_constant": 1.5,  # heuristic, not calibrated

    # Scheduling settings
    "schedule_policy": "continuous",  # interval | continuous | single_shot
    "interval_ms": 500,
    "refresh_rate_hz": 60,

    # Debug and Logging Settings
    "debug": False,
    "log_level": "INFO",
    "log_dir": "logs",
    "file_logging": False,
    "structured_logging": False,
}
