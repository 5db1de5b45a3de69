"""Custom exceptions for the application."""

class ApplicationError(Exception):
    """Base application error."""
    pass

class ConfigError(ApplicationError):
    """Configuration-related errors."""
    pass

class ValidationError(ApplicationError):
    """Data validation errors."""
    pass

class ModelError(ApplicationError):
    """Model loading/inference errors."""
    pass

class ModelLoadError(ModelError):
    """Detector failed to initialize; measuring is unavailable until reload."""
    pass

class WebcamError(ApplicationError):
    """Webcam access errors."""
    pass

class CameraAccessError(WebcamError):
    """Camera permission denied or no usable device."""
    pass

class DetectionError(ApplicationError):
    """Base exception for detection-related errors."""
    pass

class DetectionCycleError(DetectionError):
    """A single detect/render cycle failed; the pipeline keeps running."""
    pass
