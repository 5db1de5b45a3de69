"""Image processing utilities."""

import base64

import cv2
import numpy as np

def blank_image(width: int, height: int) -> np.ndarray:
    """Create a black BGR image."""
    return np.zeros((max(1, height), max(1, width), 3), dtype=np.uint8)

def encode_data_url(image: np.ndarray, ext: str = ".png") -> str:
    """Encode an image as a raster data URL held in memory."""
    success, buf = cv2.imencode(ext, image)
    if not success:
        raise RuntimeError("Failed to encode image buffer.")
    mime = "jpeg" if ext.lower() in (".jpg", ".jpeg") else ext.lstrip(".").lower()
    b64 = base64.b64encode(buf.tobytes()).decode("ascii")
    return f"data:image/{mime};base64,{b64}"

def decode_data_url(data_url: str) -> np.ndarray:
    """Decode a data URL produced by ``encode_data_url`` back into an image."""
    _, _, payload = data_url.partition(",")
    arr = np.frombuffer(base64.b64decode(payload), dtype=np.uint8)
    img = cv2.imdecode(arr, cv2.IMREAD_COLOR)
    if img is None:
        raise ValueError("Failed to decode image buffer")
    return img
