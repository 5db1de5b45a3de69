"""Configuration dataclass and loading utilities.

Provides a strongly-typed configuration object that is injected into
services instead of relying on a global module-level dictionary.

Precedence, lowest to highest: ``DEFAULT_CONFIG``, the JSON config file,
``OBJECT_MEASURE_*`` environment variables.
"""
from __future__ import annotations
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional
import json, os, logging
from ..core.constants import FACING_MODES
from .defaults import DEFAULT_CONFIG
from .env_config import load_environment_config, EnvironmentConfigError

logger = logging.getLogger(__name__)

VALID_POLICIES = ("interval", "continuous", "single_shot")
VALID_FACING_MODES = FACING_MODES

@dataclass(slots=True)
class Config:
    # Camera settings
    camera_index: int = DEFAULT_CONFIG["camera_index"]
    user_camera_index: int = DEFAULT_CONFIG["user_camera_index"]
    facing_mode: str = DEFAULT_CONFIG["facing_mode"]
    camera_width: int = DEFAULT_CONFIG["camera_width"]
    camera_height: int = DEFAULT_CONFIG["camera_height"]
    camera_fps: int = DEFAULT_CONFIG["camera_fps"]

    # Detector settings
    model_name: str = DEFAULT_CONFIG["model_name"]
    detection_confidence_threshold: float = DEFAULT_CONFIG["detection_confidence_threshold"]
    detection_iou_threshold: float = DEFAULT_CONFIG["detection_iou_threshold"]

    # Measurement settings
    scale_constant: float = DEFAULT_CONFIG["scale_constant"]

    # Scheduling settings
    schedule_policy: str = DEFAULT_CONFIG["schedule_policy"]
    interval_ms: int = DEFAULT_CONFIG["interval_ms"]
    refresh_rate_hz: int = DEFAULT_CONFIG["refresh_rate_hz"]

    # Debug and logging settings
    debug: bool = DEFAULT_CONFIG["debug"]
    log_level: str = DEFAULT_CONFIG["log_level"]
    log_dir: str = DEFAULT_CONFIG["log_dir"]
    file_logging: bool = DEFAULT_CONFIG["file_logging"]
    structured_logging: bool = DEFAULT_CONFIG["structured_logging"]

    # Arbitrary extra values retained for forward compatibility
    extra: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        d = asdict(self)
        # merge extra keys at top-level for saving
        extra = d.pop("extra", {})
        d.update(extra)
        return d

    def get(self, key: str, default: Any = None) -> Any:
        if key in Config.__dataclass_fields__ and key != "extra":
            return getattr(self, key)
        return self.extra.get(key, default)


def load_config(path: str = "config.json", env_file: Optional[str] = None) -> Config:
    """Load configuration from a JSON file with environment overrides.

    Unreadable files and out-of-range values fall back to defaults with a
    logged warning; loading never fails outright.

    Args:
        path: Path to config.json file
        env_file: Path to .env file (optional)
    """
    data: Dict[str, Any] = {}

    if os.path.isfile(path):
        try:
            with open(path, "r", encoding="utf-8") as f:
                loaded_data = json.load(f)
            if isinstance(loaded_data, dict):
                data = loaded_data
                logger.info(f"Loaded configuration from '{path}'")
            else:
                logger.error(f"Configuration file '{path}' does not contain a JSON object, using defaults")
        except json.JSONDecodeError as e:
            logger.error(f"Failed to parse JSON configuration file '{path}': {e}. Using defaults.")
        except OSError as e:
            logger.error(f"Cannot read configuration file '{path}': {e}. Using defaults.")
    else:
        logger.info(f"Configuration file '{path}' does not exist. Using defaults.")

    merged = {**DEFAULT_CONFIG, **data}

    try:
        env_config = load_environment_config(env_file)
        merged.update(env_config.overrides())
    except EnvironmentConfigError as e:
        logger.warning(f"Ignoring environment configuration: {e}")

    merged = _sanitize_config_values(merged)

    # capture unknown keys
    known = set(Config.__dataclass_fields__) - {"extra"}
    extra = {k: v for k, v in merged.items() if k not in known}
    if extra:
        logger.info(f"Found extra configuration keys: {list(extra.keys())}")

    return Config(**{k: merged[k] for k in known}, extra=extra)


def save_config(cfg: Config, path: str = "config.json") -> None:
    """Save configuration to a JSON file."""
    try:
        with open(path, "w", encoding="utf-8") as f:
            json.dump(cfg.to_dict(), f, indent=2, ensure_ascii=False)
        logger.info(f"Configuration saved to '{path}'")
    except OSError as e:
        logger.error(f"Failed to save configuration file '{path}': {e}")


def _sanitize_config_values(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Replace out-of-range or mistyped values with their defaults."""
    sanitized = config_dict.copy()

    numeric_validations = {
        'camera_index': (0, 63),
        'user_camera_index': (0, 63),
        'camera_width': (1, 7680),
        'camera_height': (1, 4320),
        'camera_fps': (1, 240),
        'detection_confidence_threshold': (0.0, 1.0),
        'detection_iou_threshold': (0.0, 1.0),
        'scale_constant': (0.01, 100.0),
        'interval_ms': (10, 60000),
        'refresh_rate_hz': (1, 240),
    }

    for key, (min_val, max_val) in numeric_validations.items():
        value = sanitized.get(key)
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            logger.warning(f"Value {key}={value!r} is not numeric, using default")
            sanitized[key] = DEFAULT_CONFIG[key]
        elif not (min_val <= value <= max_val):
            logger.warning(f"Value {key}={value} out of range [{min_val}, {max_val}], using default")
            sanitized[key] = DEFAULT_CONFIG[key]

    choice_validations = {
        'schedule_policy': VALID_POLICIES,
        'facing_mode': VALID_FACING_MODES,
    }

    for key, choices in choice_validations.items():
        if sanitized.get(key) not in choices:
            logger.warning(f"Value {key}={sanitized.get(key)!r} not in {choices}, using default")
            sanitized[key] = DEFAULT_CONFIG[key]

    if not isinstance(sanitized.get('model_name'), str) or not sanitized['model_name'].strip():
        logger.warning("Model name is empty, using default")
        sanitized['model_name'] = DEFAULT_CONFIG['model_name']

    return sanitized
