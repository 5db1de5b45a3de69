"""YOLO backend implementation using Ultralytics."""
import logging
from typing import List, Dict, Any
import numpy as np
from .base_backend import BaseBackend
from ..core.entities import DetectedRegion
from ..core.exceptions import ModelError, ModelLoadError
from ..utils.geometry import xyxy_to_xywh

logger = logging.getLogger(__name__)

# Try to import ultralytics
HAS_ULTRALYTICS = False
try:
    from ultralytics import YOLO
    HAS_ULTRALYTICS = True
except ImportError:
    YOLO = None
    HAS_ULTRALYTICS = False

class YoloBackend(BaseBackend):
    """YOLO backend using Ultralytics implementation."""

    def __init__(self, config: Dict[str, Any]):
        super().__init__(config)
        self.model = None
        self.model_path = None

    def load_model(self, model_path_or_name: str) -> bool:
        """Load a YOLO model from path or model name.

        Raises:
            ModelLoadError: If ultralytics is missing or the weights cannot be loaded
        """
        if not HAS_ULTRALYTICS:
            raise ModelLoadError("Ultralytics not installed. Cannot use YOLO backend.")

        try:
            self.model = YOLO(model_path_or_name)
        except Exception as e:
            self.is_loaded = False
            raise ModelLoadError(f"Failed to load YOLO model {model_path_or_name}: {e}") from e

        self.model_path = model_path_or_name
        self.is_loaded = True
        self.model_info = {
            'backend': 'ultralytics',
            'model_type': 'YOLO',
            'model_path': model_path_or_name,
            'device': str(self.model.device) if hasattr(self.model, 'device') else 'unknown'
        }
        logger.info(f"Loaded YOLO model: {model_path_or_name}")
        return True

    def predict(self, image: np.ndarray, **kwargs) -> List[DetectedRegion]:
        """Run YOLO inference on an image.

        Returns:
            Regions in ``x, y, width, height`` pixel form, highest score first
        """
        if not self.is_loaded or not self.model:
            raise ModelError("No model loaded")

        conf_threshold = kwargs.get('conf', self.config.get('detection_confidence_threshold', 0.5))
        iou_threshold = kwargs.get('iou', self.config.get('detection_iou_threshold', 0.45))

        try:
            results = self.model(
                image,
                conf=conf_threshold,
                iou=iou_threshold,
                verbose=False
            )
        except Exception as e:
            raise ModelError(f"YOLO prediction failed: {e}") from e

        regions: List[DetectedRegion] = []
        for result in results:
            if result.boxes is None or len(result.boxes) == 0:
                continue

            xyxy = result.boxes.xyxy.cpu().numpy()  # [x1, y1, x2, y2]
            conf = result.boxes.conf.cpu().numpy()
            cls = result.boxes.cls.cpu().numpy().astype(int)
            names = result.names or {}

            for box, score, class_id in zip(xyxy, conf, cls):
                x, y, w, h = xyxy_to_xywh([float(v) for v in box])
                regions.append(DetectedRegion(
                    class_label=str(names.get(int(class_id), f"class_{int(class_id)}")),
                    x=x,
                    y=y,
                    width=float(w),
                    height=float(h),
                    score=float(score),
                    class_id=int(class_id),
                ))

        regions.sort(key=lambda r: r.score or 0.0, reverse=True)
        logger.debug(f"YOLO returned {len(regions)} regions")
        return regions

    def get_model_info(self) -> Dict[str, Any]:
        """Get information about the loaded YOLO model."""
        if not self.is_loaded:
            return {'status': 'not_loaded'}

        info = self.model_info.copy()
        if self.model and hasattr(self.model, 'names'):
            info['num_classes'] = len(self.model.names)
        return info

    def unload_model(self) -> None:
        """Unload the current YOLO model."""
        self.model = None
        super().unload_model()
        self.model_path = None
