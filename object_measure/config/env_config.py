"""Environment variable configuration.

Values from ``OBJECT_MEASURE_*`` variables (or a ``.env`` file) override the
JSON configuration file. Every value is validated; a bad value raises
``EnvironmentConfigError`` which ``load_config`` logs and ignores.
"""
import os
import logging
from typing import Optional, Dict, Union
from pathlib import Path
from dataclasses import dataclass

from ..core.exceptions import ConfigError

logger = logging.getLogger(__name__)

ENV_PREFIX = "OBJECT_MEASURE_"

VALID_POLICIES = {"interval", "continuous", "single_shot"}
VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


@dataclass(frozen=True)
class EnvironmentConfig:
    """Immutable environment configuration object. ``None`` means unset."""

    camera_index: Optional[int] = None
    model_name: Optional[str] = None
    schedule_policy: Optional[str] = None
    interval_ms: Optional[int] = None
    scale_constant: Optional[float] = None
    log_level: Optional[str] = None
    debug_logging: bool = False

    def overrides(self) -> Dict[str, Union[int, float, str, bool]]:
        """Return only the values that were actually set."""
        values = {
            "camera_index": self.camera_index,
            "model_name": self.model_name,
            "schedule_policy": self.schedule_policy,
            "interval_ms": self.interval_ms,
            "scale_constant": self.scale_constant,
            "log_level": self.log_level,
        }
        result = {k: v for k, v in values.items() if v is not None}
        if self.debug_logging:
            result["debug"] = True
            result["log_level"] = "DEBUG"
        return result


class EnvironmentConfigError(ConfigError):
    """Invalid environment configuration value."""
    pass


class EnvironmentValidator:
    """Validates environment variable values."""

    @classmethod
    def validate_numeric_range(cls, value: Union[str, int, float],
                               min_val: Optional[Union[int, float]] = None,
                               max_val: Optional[Union[int, float]] = None,
                               value_type: type = int) -> Union[int, float]:
        """Validate numeric value within specified range.

        Raises:
            EnvironmentConfigError: If validation fails
        """
        try:
            numeric_value = value_type(value)
        except (ValueError, TypeError):
            raise EnvironmentConfigError(f"Invalid {value_type.__name__} value: {value}")

        if min_val is not None and numeric_value < min_val:
            raise EnvironmentConfigError(f"Value {numeric_value} below minimum {min_val}")

        if max_val is not None and numeric_value > max_val:
            raise EnvironmentConfigError(f"Value {numeric_value} above maximum {max_val}")

        return numeric_value

    @classmethod
    def validate_choice(cls, value: str, choices: set, name: str) -> str:
        if value not in choices:
            raise EnvironmentConfigError(
                f"Invalid {name} '{value}', expected one of {sorted(choices)}"
            )
        return value


def load_env_file(env_path: Optional[str] = None) -> Dict[str, str]:
    """Load KEY=VALUE pairs from a .env file.

    Args:
        env_path: Path to .env file. Defaults to .env in current directory.
    """
    env_file_path = Path(env_path or ".env")
    env_vars: Dict[str, str] = {}

    if not env_file_path.exists():
        logger.debug(f"Environment file {env_file_path} not found, using system environment only")
        return env_vars

    with open(env_file_path, 'r', encoding='utf-8') as f:
        for line_num, line in enumerate(f, 1):
            line = line.strip()
            if not line or line.startswith('#'):
                continue

            if '=' not in line:
                logger.warning(f"Invalid line format in {env_file_path}:{line_num}: {line}")
                continue

            key, value = line.split('=', 1)
            value = value.strip()
            if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
                value = value[1:-1]
            env_vars[key.strip()] = value

    logger.info(f"Loaded {len(env_vars)} variables from {env_file_path}")
    return env_vars


def get_env_var(key: str, default: Optional[str] = None,
                env_vars: Optional[Dict[str, str]] = None) -> Optional[str]:
    """Get an ``OBJECT_MEASURE_`` variable, preferring values from a .env file."""
    full_key = f"{ENV_PREFIX}{key}"
    if env_vars and full_key in env_vars:
        value = env_vars[full_key]
    else:
        value = os.getenv(full_key, default)
    if value is not None and not value.strip():
        return default
    return value


def load_environment_config(env_file_path: Optional[str] = None) -> EnvironmentConfig:
    """Load and validate environment configuration.

    Raises:
        EnvironmentConfigError: If any provided value is invalid
    """
    env_vars = load_env_file(env_file_path)
    validator = EnvironmentValidator()

    camera_index = get_env_var("CAMERA_INDEX", env_vars=env_vars)
    if camera_index is not None:
        camera_index = validator.validate_numeric_range(camera_index, 0, 63, int)

    interval_ms = get_env_var("INTERVAL_MS", env_vars=env_vars)
    if interval_ms is not None:
        interval_ms = validator.validate_numeric_range(interval_ms, 10, 60000, int)

    scale_constant = get_env_var("SCALE_CONSTANT", env_vars=env_vars)
    if scale_constant is not None:
        scale_constant = validator.validate_numeric_range(scale_constant, 0.01, 100.0, float)

    policy = get_env_var("SCHEDULE_POLICY", env_vars=env_vars)
    if policy is not None:
        policy = validator.validate_choice(policy.strip().lower(), VALID_POLICIES, "schedule policy")

    log_level = get_env_var("LOG_LEVEL", env_vars=env_vars)
    if log_level is not None:
        log_level = validator.validate_choice(log_level.strip().upper(), VALID_LOG_LEVELS, "log level")

    debug_str = get_env_var("DEBUG", "false", env_vars=env_vars)
    debug_logging = debug_str.lower() in ('true', '1', 'yes', 'on')

    return EnvironmentConfig(
        camera_index=camera_index,
        model_name=get_env_var("MODEL", env_vars=env_vars),
        schedule_policy=policy,
        interval_ms=interval_ms,
        scale_constant=scale_constant,
        log_level=log_level,
        debug_logging=debug_logging,
    )


__all__ = [
    "EnvironmentConfig",
    "EnvironmentConfigError",
    "EnvironmentValidator",
    "load_environment_config",
    "load_env_file",
    "get_env_var"
]
