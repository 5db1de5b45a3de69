"""Pixel to physical size conversion.

The conversion is a heuristic, not a calibrated measurement:

    pixels_per_meter = frame_width_px / scale_constant
    size_m           = size_px / pixels_per_meter

``scale_constant`` is the notional width, in meters, that the full frame
width is assumed to span. No lens model or distance estimate is involved, so
results are only meaningful as rough estimates. ``frame_width_px`` is always
the raw frame pixel width, which is also the overlay surface width.
"""

from decimal import Decimal, ROUND_HALF_UP
from typing import Tuple

from ..core.constants import DEFAULT_SCALE_CONSTANT
from ..core.entities import DetectedRegion, Measurement
from ..core.exceptions import ValidationError


def pixels_per_meter(frame_width_px: float, scale_constant: float = DEFAULT_SCALE_CONSTANT) -> float:
    """Pixels corresponding to one meter for a frame of this width."""
    if frame_width_px <= 0:
        raise ValidationError(f"Frame width must be positive, got {frame_width_px}")
    if scale_constant <= 0:
        raise ValidationError(f"Scale constant must be positive, got {scale_constant}")
    return frame_width_px / scale_constant


def round_meters(value: float) -> float:
    """Round to centimeters, halves away from zero (0.375 -> 0.38)."""
    return float(Decimal(repr(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def convert(region: DetectedRegion, frame_width_px: float,
            scale_constant: float = DEFAULT_SCALE_CONSTANT) -> Tuple[float, float]:
    """Convert a region's pixel size to (width_m, height_m), rounded to 2 decimals."""
    pixels_per_meter(frame_width_px, scale_constant)  # validates both inputs
    # size_px / (frame_width_px / k), multiplied out to avoid an inexact intermediate
    return (round_meters(region.width * scale_constant / frame_width_px),
            round_meters(region.height * scale_constant / frame_width_px))


def measure(region: DetectedRegion, frame_width_px: float,
            scale_constant: float = DEFAULT_SCALE_CONSTANT) -> Measurement:
    """Build a Measurement for a detected region."""
    width_m, height_m = convert(region, frame_width_px, scale_constant)
    return Measurement(width_m=width_m, height_m=height_m, object_label=region.class_label)


def format_meters(value: float) -> str:
    return f"{value:.2f}m"
