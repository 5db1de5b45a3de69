"""Camera session: acquisition and teardown of a live video source."""

import asyncio
import logging
import platform
import threading
import time
import uuid
from typing import Optional, Tuple

import cv2

from ..core.constants import FACING_USER
from ..core.entities import CameraConstraints, Frame
from ..core.exceptions import CameraAccessError

logger = logging.getLogger(__name__)

# Consecutive failed reads after which the last frame is dropped
MAX_FAILED_READS = 10


class CameraSession:
    """Owns one live ``cv2.VideoCapture`` and the thread that reads from it.

    At most one capture is open per session object. ``start`` on an open
    session stops it first; ``stop`` is idempotent.
    """

    def __init__(self, config=None):
        """Initialize camera session.

        Args:
            config: Application configuration (camera indices, default size and fps)
        """
        self.config = config

        self._capture: Optional[cv2.VideoCapture] = None
        self._is_open = False
        self._generation = 0
        self._session_id: Optional[str] = None
        self._device_index: Optional[int] = None

        self._reader_thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._frame_lock = threading.Lock()
        self._current_frame: Optional[Frame] = None
        self._frame_seq = 0
        self._failed_reads = 0

        self._actual_width = 0
        self._actual_height = 0
        self._target_fps = 30
        self._actual_fps = 0.0
        self._frame_count = 0
        self._fps_start_time = time.time()

    def _config_value(self, key: str, default):
        if self.config is None:
            return default
        return self.config.get(key, default)

    def default_constraints(self) -> CameraConstraints:
        """Constraints built from configuration."""
        return CameraConstraints(
            facing_mode=self._config_value("facing_mode", "environment"),
            width=self._config_value("camera_width", 1280),
            height=self._config_value("camera_height", 720),
            frame_rate=self._config_value("camera_fps", None),
        )

    def resolve_device_index(self, constraints: CameraConstraints) -> int:
        """Map a facing mode onto an OpenCV device index."""
        if constraints.device_index is not None:
            return constraints.device_index
        if constraints.facing_mode == FACING_USER:
            return self._config_value("user_camera_index", 1)
        return self._config_value("camera_index", 0)

    async def start(self, constraints: Optional[CameraConstraints] = None) -> "CameraSession":
        """Open the camera and start reading frames.

        Args:
            constraints: Requested settings; defaults come from configuration

        Returns:
            This session. If ``stop`` or another ``start`` ran while the device
            was opening, the late handle is released and the session stays closed.

        Raises:
            CameraAccessError: If the device cannot be opened
        """
        if self._is_open:
            logger.info("Camera already open, restarting")
        self.stop()

        constraints = constraints or self.default_constraints()
        index = self.resolve_device_index(constraints)
        generation = self._generation

        logger.info(f"Opening camera {index} ({constraints.facing_mode}, "
                    f"ideal {constraints.width}x{constraints.height})")
        try:
            capture = await asyncio.to_thread(self._open_capture, index, constraints)
        except CameraAccessError:
            raise
        except Exception as e:
            raise CameraAccessError(f"Error opening camera {index}: {e}") from e

        if generation != self._generation:
            logger.debug(f"Camera {index} opened after session was superseded, releasing")
            capture.release()
            return self

        self._capture = capture
        self._device_index = index
        self._actual_width = int(capture.get(cv2.CAP_PROP_FRAME_WIDTH))
        self._actual_height = int(capture.get(cv2.CAP_PROP_FRAME_HEIGHT))
        self._target_fps = constraints.frame_rate or int(capture.get(cv2.CAP_PROP_FPS)) or 30
        self._session_id = uuid.uuid4().hex[:12]
        self._frame_count = 0
        self._fps_start_time = time.time()
        self._failed_reads = 0
        self._stop_event = threading.Event()
        self._is_open = True

        logger.info(f"Camera opened: {self._actual_width}x{self._actual_height} "
                    f"@ {self._target_fps}fps (session {self._session_id})")

        self._reader_thread = threading.Thread(
            target=self._read_loop,
            args=(capture, self._stop_event),
            name=f"camera-reader-{index}",
            daemon=True,
        )
        self._reader_thread.start()
        return self

    @staticmethod
    def _open_capture(index: int, constraints: CameraConstraints) -> cv2.VideoCapture:
        """Open and configure a capture device. Runs in a worker thread."""
        if platform.system() == "Windows":
            capture = cv2.VideoCapture(index, cv2.CAP_DSHOW)
        else:
            capture = cv2.VideoCapture(index)

        if not capture.isOpened():
            capture.release()
            raise CameraAccessError(f"Failed to open camera {index}")

        capture.set(cv2.CAP_PROP_FRAME_WIDTH, constraints.width)
        capture.set(cv2.CAP_PROP_FRAME_HEIGHT, constraints.height)
        if constraints.frame_rate:
            capture.set(cv2.CAP_PROP_FPS, constraints.frame_rate)
        return capture

    def stop(self) -> None:
        """Stop reading and release the device. Safe to call at any time."""
        self._generation += 1
        if not self._is_open and self._capture is None:
            return

        self._stop_event.set()
        thread = self._reader_thread
        if thread and thread.is_alive() and thread is not threading.current_thread():
            thread.join(timeout=2.0)
        self._reader_thread = None

        if self._capture is not None:
            self._capture.release()
            self._capture = None

        with self._frame_lock:
            self._current_frame = None

        self._is_open = False
        self._actual_fps = 0.0
        logger.info(f"Camera session {self._session_id} stopped")

    def _read_loop(self, capture: cv2.VideoCapture, stop_event: threading.Event) -> None:
        """Keep the most recent frame. Runs in the reader thread."""
        frame_delay = 1.0 / max(1, self._target_fps)

        while not stop_event.is_set():
            loop_start = time.time()

            ret, image = capture.read()
            if ret and image is not None:
                self._failed_reads = 0
                with self._frame_lock:
                    self._frame_seq += 1
                    self._current_frame = Frame(image=image, sequence=self._frame_seq)

                self._frame_count += 1
                elapsed = time.time() - self._fps_start_time
                if elapsed >= 1.0:
                    self._actual_fps = self._frame_count / elapsed
                    self._frame_count = 0
                    self._fps_start_time = time.time()
            else:
                failures = self._failed_reads + 1
                if failures == MAX_FAILED_READS:
                    logger.error(f"Camera returned no frame {MAX_FAILED_READS} times in a row, dropping last frame")
                    with self._frame_lock:
                        self._current_frame = None
                else:
                    logger.warning("Failed to read frame from camera")
                self._failed_reads = failures
                stop_event.wait(0.1)
                continue

            sleep_time = frame_delay - (time.time() - loop_start)
            if sleep_time > 0:
                stop_event.wait(sleep_time)

    def read_frame(self) -> Optional[Frame]:
        """Most recent frame, or None if no frame has arrived yet."""
        with self._frame_lock:
            return self._current_frame

    @property
    def is_open(self) -> bool:
        return self._is_open

    @property
    def is_stalled(self) -> bool:
        """True while the open device keeps failing to deliver frames."""
        return self._is_open and self._failed_reads >= MAX_FAILED_READS

    @property
    def session_id(self) -> Optional[str]:
        return self._session_id

    @property
    def device_index(self) -> Optional[int]:
        return self._device_index

    @property
    def actual_resolution(self) -> Tuple[int, int]:
        """Resolution reported by the device, (0, 0) when closed."""
        if not self._is_open:
            return (0, 0)
        return (self._actual_width, self._actual_height)

    @property
    def fps(self) -> float:
        return self._actual_fps
