"""Asynchronous detector service wrapping a model backend."""

import asyncio
import logging
import threading
import weakref
from typing import Callable, Dict, List, Optional, Tuple

from ..backends.base_backend import BaseBackend
from ..backends.yolo_backend import YoloBackend
from ..core.constants import MSG_MODEL_NOT_READY
from ..core.entities import DetectedRegion, Frame
from ..core.exceptions import DetectionCycleError, ModelError, ModelLoadError

logger = logging.getLogger(__name__)

BackendFactory = Callable[[dict], BaseBackend]

# Loaded backends shared by every DetectorService in the process
_shared_backends: Dict[Tuple[BackendFactory, str], BaseBackend] = {}
_shared_lock = threading.Lock()

# predict() is not thread-safe; a cancelled cycle may still be running in its worker thread
_inference_locks: "weakref.WeakKeyDictionary[BaseBackend, threading.Lock]" = weakref.WeakKeyDictionary()
_inference_locks_guard = threading.Lock()


def _load_shared_backend(factory: BackendFactory, model_name: str, config: dict) -> BaseBackend:
    """Load a backend once per (factory, model) pair. Runs in a worker thread."""
    key = (factory, model_name)
    with _shared_lock:
        backend = _shared_backends.get(key)
        if backend is None:
            backend = factory(config)
            backend.load_model(model_name)
            _shared_backends[key] = backend
        else:
            logger.debug(f"Reusing loaded model: {model_name}")
        return backend


def _inference_lock(backend: BaseBackend) -> threading.Lock:
    with _inference_locks_guard:
        lock = _inference_locks.get(backend)
        if lock is None:
            lock = _inference_locks[backend] = threading.Lock()
        return lock


def _predict_exclusive(backend: BaseBackend, image):
    """Run one prediction while holding the backend's inference lock. Runs in a worker thread."""
    with _inference_lock(backend):
        return backend.predict(image)


def clear_model_cache() -> None:
    """Unload and forget every shared backend."""
    with _shared_lock:
        for backend in _shared_backends.values():
            backend.unload_model()
        _shared_backends.clear()


class DetectorService:
    """Loads the detector once and runs per-frame detection off the event loop."""

    def __init__(self, config=None, backend: Optional[BaseBackend] = None,
                 backend_factory: BackendFactory = YoloBackend):
        """Initialize detector service.

        Args:
            config: Application configuration (model name, thresholds)
            backend: Explicit backend instance; bypasses the shared cache
            backend_factory: Backend class used when no instance is given
        """
        self.config = config
        self.model_name = config.get("model_name", "yolo12n.pt") if config else "yolo12n.pt"
        self._backend = backend
        self._backend_factory = backend_factory
        self._loaded = False
        self._load_task: Optional[asyncio.Task] = None

    def _backend_config(self) -> dict:
        if self.config is None:
            return {}
        return {
            "detection_confidence_threshold": self.config.get("detection_confidence_threshold", 0.5),
            "detection_iou_threshold": self.config.get("detection_iou_threshold", 0.45),
        }

    async def load(self) -> None:
        """Load the model. Subsequent calls return immediately.

        Concurrent callers share one load; a failed load may be retried.

        Raises:
            ModelLoadError: If the model cannot be initialized
        """
        if self._loaded:
            return

        if self._load_task is None:
            self._load_task = asyncio.create_task(self._load())
        task = self._load_task
        try:
            await asyncio.shield(task)
        finally:
            if task.done() and (task.cancelled() or task.exception() is not None):
                self._load_task = None

    async def _load(self) -> None:
        logger.info(f"Loading detection model: {self.model_name}")
        try:
            if self._backend is not None:
                if not self._backend.is_model_loaded():
                    await asyncio.to_thread(self._backend.load_model, self.model_name)
            else:
                self._backend = await asyncio.to_thread(
                    _load_shared_backend, self._backend_factory, self.model_name, self._backend_config()
                )
        except ModelLoadError:
            raise
        except Exception as e:
            raise ModelLoadError(f"Failed to load model {self.model_name}: {e}") from e

        self._loaded = True
        logger.info(f"Detection model ready: {self.model_name}")

    async def detect(self, frame: Frame) -> List[DetectedRegion]:
        """Detect objects in a frame.

        Returns:
            Regions, highest confidence first; empty when nothing was found

        Raises:
            ModelLoadError: If called before ``load`` succeeded
            DetectionCycleError: If inference fails
        """
        if not self._loaded or self._backend is None:
            raise ModelLoadError(MSG_MODEL_NOT_READY)

        try:
            regions = await asyncio.to_thread(_predict_exclusive, self._backend, frame.image)
        except ModelError as e:
            raise DetectionCycleError(str(e)) from e
        except Exception as e:
            raise DetectionCycleError(f"Detection failed: {e}") from e

        return list(regions or [])

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    def get_model_info(self) -> dict:
        if self._backend is None:
            return {'status': 'not_loaded'}
        return self._backend.get_model_info()
