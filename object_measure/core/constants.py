"""Application-wide constants and user-facing messages."""

APP_NAME = "Object Measure"
VERSION = "1.0.0"

# Notional width in meters spanned by the full frame. Heuristic, not calibrated.
DEFAULT_SCALE_CONSTANT = 1.5

DEFAULT_INTERVAL_MS = 500
DEFAULT_REFRESH_RATE_HZ = 60

FACING_ENVIRONMENT = "environment"
FACING_USER = "user"
FACING_MODES = (FACING_ENVIRONMENT, FACING_USER)

MSG_MODEL_LOAD_FAILED = "Failed to load detection model"
MSG_MODEL_NOT_READY = "Detection model is not available"
MSG_CAMERA_ACCESS_FAILED = "Unable to access camera"
MSG_DETECTION_FAILED = "Object detection failed"
MSG_NO_OBJECT = "no object detected"
MSG_NO_FRAME = "No frame available from camera"
MSG_NOT_SINGLE_SHOT = "Capture is only available in single-shot mode"
