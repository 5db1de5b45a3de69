"""Utility functions package."""

from .geometry import xyxy_to_xywh, xywh_to_xyxy, clamp, clamp_box_origin
from .image_utils import blank_image, encode_data_url, decode_data_url

__all__ = [
    "xyxy_to_xywh", "xywh_to_xyxy", "clamp", "clamp_box_origin",
    "blank_image", "encode_data_url", "decode_data_url"
]
