"""Geometry and bounding box utilities."""

def xyxy_to_xywh(xyxy):
    """Convert x1,y1,x2,y2 format to x,y,width,height (top-left origin)."""
    x1, y1, x2, y2 = xyxy
    return [x1, y1, max(0, x2 - x1), max(0, y2 - y1)]

def xywh_to_xyxy(box):
    """Convert x,y,width,height (top-left origin) to x1,y1,x2,y2 format."""
    x, y, w, h = box
    return [x, y, x + w, y + h]

def clamp(value, low, high):
    """Clamp value into [low, high]; ``high`` wins when the range is empty."""
    return max(low, min(value, high)) if high >= low else high

def clamp_box_origin(x, y, box_w, box_h, surface_w, surface_h):
    """Move a box's top-left corner so the box stays inside the surface."""
    return (
        int(clamp(x, 0, surface_w - box_w)),
        int(clamp(y, 0, surface_h - box_h)),
    )
