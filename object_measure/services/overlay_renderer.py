"""Overlay rendering for detected regions and their measurements."""

import logging
from dataclasses import dataclass
from typing import Optional, Tuple

import cv2
import numpy as np

from ..core.entities import DetectedRegion, Frame, Measurement
from ..utils.geometry import clamp_box_origin, xywh_to_xyxy
from ..utils.image_utils import encode_data_url
from .measurement import format_meters

logger = logging.getLogger(__name__)

Color = Tuple[int, int, int]


class OverlaySurface:
    """Mutable BGR drawing surface, resized to match each frame."""

    def __init__(self, width: int = 0, height: int = 0):
        self._image = np.zeros((max(0, height), max(0, width), 3), dtype=np.uint8)

    @property
    def image(self) -> np.ndarray:
        return self._image

    @property
    def width(self) -> int:
        return int(self._image.shape[1])

    @property
    def height(self) -> int:
        return int(self._image.shape[0])

    def resize(self, width: int, height: int) -> None:
        """Match the given pixel dimensions exactly. Contents are undefined afterwards."""
        if (self.width, self.height) != (width, height):
            self._image = np.zeros((height, width, 3), dtype=np.uint8)

    def snapshot(self) -> np.ndarray:
        return self._image.copy()

    def to_data_url(self) -> str:
        return encode_data_url(self._image)


@dataclass(frozen=True)
class LabelRect:
    """Background box of a label and the text origin (baseline-left) inside it."""
    x: int
    y: int
    width: int
    height: int
    text_origin: Tuple[int, int]


class OverlayRenderer:
    """Draws the frame, bounding box, guide marks and measurement labels."""

    def __init__(self,
                 fill_color: Color = (0, 0, 0),
                 fill_alpha: float = 0.5,
                 stroke_color: Color = (255, 255, 255),
                 stroke_thickness: int = 3,
                 label_background: Color = (0, 0, 0),
                 text_color: Color = (255, 255, 255),
                 font_face: int = cv2.FONT_HERSHEY_SIMPLEX,
                 font_scale: float = 0.6,
                 font_thickness: int = 2,
                 guide_offset: int = 20,
                 tick_size: int = 5,
                 label_padding: int = 4):
        self.fill_color = fill_color
        self.fill_alpha = fill_alpha
        self.stroke_color = stroke_color
        self.stroke_thickness = stroke_thickness
        self.label_background = label_background
        self.text_color = text_color
        self.font_face = font_face
        self.font_scale = font_scale
        self.font_thickness = font_thickness
        self.guide_offset = guide_offset
        self.tick_size = tick_size
        self.label_padding = label_padding

    def render(self, surface: OverlaySurface, frame: Frame,
               region: Optional[DetectedRegion] = None,
               measurement: Optional[Measurement] = None) -> OverlaySurface:
        """Redraw the surface for one frame.

        The surface is resized to the frame's exact dimensions on every call.
        Without a region only the base frame is drawn.
        """
        surface.resize(frame.width, frame.height)
        image = frame.image
        if image.ndim == 2:
            image = cv2.cvtColor(image, cv2.COLOR_GRAY2BGR)
        np.copyto(surface.image, image[:, :, :3])

        if region is None:
            return surface

        canvas = surface.image
        x1, y1, x2, y2 = (int(round(v)) for v in xywh_to_xyxy(
            (region.x, region.y, region.width, region.height)))

        self._draw_box(canvas, x1, y1, x2, y2)
        self._draw_guides(canvas, x1, y1, x2, y2)

        if measurement is not None:
            width_rect, height_rect = self.layout_labels(
                region, format_meters(measurement.width_m), format_meters(measurement.height_m),
                surface.width, surface.height)
            self._draw_label(canvas, format_meters(measurement.width_m), width_rect)
            self._draw_label(canvas, format_meters(measurement.height_m), height_rect)

        return surface

    def _draw_box(self, canvas: np.ndarray, x1: int, y1: int, x2: int, y2: int) -> None:
        overlay = canvas.copy()
        cv2.rectangle(overlay, (x1, y1), (x2, y2), self.fill_color, -1)
        cv2.addWeighted(overlay, self.fill_alpha, canvas, 1 - self.fill_alpha, 0, dst=canvas)
        cv2.rectangle(canvas, (x1, y1), (x2, y2), self.stroke_color, self.stroke_thickness)

    def _draw_guides(self, canvas: np.ndarray, x1: int, y1: int, x2: int, y2: int) -> None:
        """Dimension lines with end ticks above and to the left of the box."""
        gy = y1 - self.guide_offset
        gx = x1 - self.guide_offset
        t = self.tick_size
        color, thickness = self.stroke_color, 2

        cv2.line(canvas, (x1, gy), (x2, gy), color, thickness)
        cv2.line(canvas, (x1, gy - t), (x1, gy + t), color, thickness)
        cv2.line(canvas, (x2, gy - t), (x2, gy + t), color, thickness)

        cv2.line(canvas, (gx, y1), (gx, y2), color, thickness)
        cv2.line(canvas, (gx - t, y1), (gx + t, y1), color, thickness)
        cv2.line(canvas, (gx - t, y2), (gx + t, y2), color, thickness)

    def label_rect(self, text: str, left: int, baseline_y: int,
                   surface_width: int, surface_height: int) -> LabelRect:
        """Background box for ``text`` sized from real text metrics, kept on the surface."""
        (text_w, text_h), baseline = cv2.getTextSize(
            text, self.font_face, self.font_scale, self.font_thickness)
        pad = self.label_padding
        box_w = text_w + 2 * pad
        box_h = text_h + baseline + 2 * pad

        box_x, box_y = clamp_box_origin(
            left - pad, baseline_y - text_h - pad, box_w, box_h, surface_width, surface_height)
        return LabelRect(
            x=box_x, y=box_y, width=box_w, height=box_h,
            text_origin=(box_x + pad, box_y + pad + text_h),
        )

    def layout_labels(self, region: DetectedRegion, width_text: str, height_text: str,
                      surface_width: int, surface_height: int) -> Tuple[LabelRect, LabelRect]:
        """Width label centered above the top guide, height label left of the side guide."""
        (w_text_w, _), _ = cv2.getTextSize(width_text, self.font_face, self.font_scale, self.font_thickness)
        (h_text_w, h_text_h), _ = cv2.getTextSize(height_text, self.font_face, self.font_scale, self.font_thickness)
        reach = self.guide_offset + self.tick_size + self.label_padding

        width_rect = self.label_rect(
            width_text,
            int(region.x + region.width / 2 - w_text_w / 2),
            int(region.y - reach - self.label_padding),
            surface_width, surface_height)
        height_rect = self.label_rect(
            height_text,
            int(region.x - reach - self.label_padding - h_text_w),
            int(region.y + region.height / 2 + h_text_h / 2),
            surface_width, surface_height)
        return width_rect, height_rect

    def _draw_label(self, canvas: np.ndarray, text: str, rect: LabelRect) -> None:
        cv2.rectangle(canvas, (rect.x, rect.y),
                      (rect.x + rect.width - 1, rect.y + rect.height - 1),
                      self.label_background, -1)
        cv2.putText(canvas, text, rect.text_origin, self.font_face, self.font_scale,
                    self.text_color, self.font_thickness, cv2.LINE_AA)
