"""Top-level measurement pipeline state machine."""
from __future__ import annotations

import logging
from dataclasses import replace
from typing import Callable, List, Optional

import numpy as np

from ..core.constants import (
    DEFAULT_SCALE_CONSTANT, MSG_CAMERA_ACCESS_FAILED, MSG_DETECTION_FAILED,
    MSG_MODEL_LOAD_FAILED, MSG_NO_FRAME, MSG_NO_OBJECT, MSG_NOT_SINGLE_SHOT,
)
from ..core.entities import CameraConstraints, CycleResult, DetectedRegion, Frame, Measurement, PipelineState
from ..core.exceptions import CameraAccessError, DetectionCycleError, ModelLoadError
from ..core.logging_config import set_correlation_id
from .camera_session import CameraSession
from .detection_scheduler import (
    DetectionScheduler, LivenessToken, SchedulePolicy, SingleShotScheduler, create_scheduler,
)
from .detector_service import DetectorService
from .measurement import measure
from .overlay_renderer import OverlayRenderer, OverlaySurface

logger = logging.getLogger(__name__)

StateListener = Callable[[PipelineState], None]


class PipelineController:
    """Coordinates camera, detector, scheduler and renderer.

    ``PipelineState`` is the single source of truth; listeners receive a copy
    on every change. All failures end up in ``state.error`` and leave the
    controller in a restartable idle configuration.
    """

    def __init__(self, config=None,
                 camera: Optional[CameraSession] = None,
                 detector: Optional[DetectorService] = None,
                 renderer: Optional[OverlayRenderer] = None,
                 scheduler: Optional[DetectionScheduler] = None,
                 policy: Optional[str] = None):
        """Initialize the controller.

        Args:
            config: Application configuration
            camera: Camera session (default: ``CameraSession(config)``)
            detector: Detector service (default: ``DetectorService(config)``)
            renderer: Overlay renderer (default: ``OverlayRenderer()``)
            scheduler: Scheduler; its policy wins over ``policy`` and config
            policy: Scheduling policy name when no scheduler is given
        """
        self.config = config
        get = config.get if config is not None else (lambda key, default=None: default)

        if scheduler is None:
            scheduler = create_scheduler(policy or get("schedule_policy", "continuous"), config)
        self.scheduler = scheduler
        self.scheduler.on_error = self._on_cycle_error
        self.policy: SchedulePolicy = scheduler.policy

        self.camera = camera or CameraSession(config)
        self.detector = detector or DetectorService(config)
        self.renderer = renderer or OverlayRenderer()
        self.surface = OverlaySurface()
        self._preview = OverlaySurface()
        self.overlay_region: Optional[DetectedRegion] = None
        self.overlay_measurement: Optional[Measurement] = None
        self.scale_constant = get("scale_constant", DEFAULT_SCALE_CONSTANT)

        self._state = PipelineState(policy=self.policy.value)
        self._listeners: List[StateListener] = []
        self._session_generation = 0

    # Observers

    def add_listener(self, callback: StateListener) -> None:
        """Add a listener for pipeline state updates."""
        self._listeners.append(callback)

    def remove_listener(self, callback: StateListener) -> None:
        """Remove a pipeline state listener."""
        if callback in self._listeners:
            self._listeners.remove(callback)

    @property
    def state(self) -> PipelineState:
        """Snapshot of the current state."""
        return replace(self._state)

    def _update(self, **changes) -> None:
        new_state = replace(self._state, **changes)
        if new_state == self._state:
            return
        self._state = new_state
        snapshot = replace(new_state)
        for callback in list(self._listeners):
            try:
                callback(snapshot)
            except Exception as e:
                logger.error(f"Error in pipeline listener: {e}", exc_info=True)

    # Lifecycle

    async def initialize(self) -> bool:
        """Load the detector. Returns False (with ``error`` set) on failure."""
        self._update(loading=True)
        try:
            await self.detector.load()
        except ModelLoadError as e:
            logger.error(f"Detector initialization failed: {e}")
            self._update(loading=False, error=MSG_MODEL_LOAD_FAILED)
            return False

        changes = {"loading": False}
        if self._state.error == MSG_MODEL_LOAD_FAILED:
            changes["error"] = None
        self._update(**changes)
        return True

    async def start_camera(self, constraints: Optional[CameraConstraints] = None) -> bool:
        """Open a camera session and start measuring.

        Returns:
            True if the session is live. False when the model or camera is
            unavailable (``error`` is set) or when a later start/stop superseded
            this call.
        """
        if not self.detector.is_loaded and not await self.initialize():
            return False

        self._teardown()
        self._session_generation += 1
        generation = self._session_generation
        self._reset_overlay()
        session_id = set_correlation_id()
        logger.info(f"Starting measurement session {session_id} ({self.policy.value})")

        self._update(video_on=False, measuring=False, error=None,
                     last_measurement=None, captured_image=None)

        try:
            await self.camera.start(constraints)
        except CameraAccessError as e:
            if generation == self._session_generation:
                logger.error(f"Camera access failed: {e}")
                self._update(video_on=False, measuring=False, error=MSG_CAMERA_ACCESS_FAILED)
            return False

        if generation != self._session_generation or not self.camera.is_open:
            logger.debug(f"Session {session_id} superseded while opening camera")
            return False

        self._update(video_on=True, measuring=self.policy.is_continuous)
        self.scheduler.start(self._measure_cycle)
        return True

    def stop_camera(self) -> None:
        """Stop the scheduler, then the camera. Idempotent."""
        self._session_generation += 1
        self._teardown()
        self._reset_overlay()
        self._update(video_on=False, measuring=False,
                     last_measurement=None, captured_image=None)

    def _teardown(self) -> None:
        self.scheduler.stop()
        self.camera.stop()

    def _reset_overlay(self) -> None:
        self.surface.resize(0, 0)
        self.overlay_region = None
        self.overlay_measurement = None

    def render_live(self, frame: Frame) -> np.ndarray:
        """Draw the latest overlay onto a live frame for display."""
        self.renderer.render(self._preview, frame, self.overlay_region, self.overlay_measurement)
        return self._preview.snapshot()

    async def shutdown(self) -> None:
        """Release every resource; the controller may be started again later."""
        self.stop_camera()
        logger.info("Pipeline shut down")

    # Single-shot

    async def capture(self) -> Optional[Measurement]:
        """Run one cycle and hold the rendered still (single-shot policy only).

        Returns:
            The measurement, or None if nothing was measured
        """
        if not isinstance(self.scheduler, SingleShotScheduler):
            self._update(error=MSG_NOT_SINGLE_SHOT)
            return None
        if not self._state.video_on or not self.scheduler.is_armed:
            logger.warning("Capture requested without a live camera session")
            return None

        generation = self._session_generation
        self._update(measuring=True, error=None)
        result = await self.scheduler.trigger()

        if generation != self._session_generation:
            return None

        if result is None or result.frame is None:
            # Detection failed or no frame yet: stay live so the user can retry
            changes = {"measuring": False}
            if result is not None:
                changes["error"] = MSG_NO_FRAME
            self._update(**changes)
            self.scheduler.start(self._measure_cycle)
            return None

        still = self.surface.to_data_url()
        self.camera.stop()
        self._update(
            video_on=False,
            measuring=False,
            captured_image=still,
            last_measurement=result.measurement,
            error=None if result.detected else MSG_NO_OBJECT,
        )
        return result.measurement

    async def new_measurement(self) -> bool:
        """Drop the held still and return to a live session."""
        self.stop_camera()
        return await self.start_camera()

    # Cycle

    async def _measure_cycle(self, token: LivenessToken) -> CycleResult:
        """Capture, detect, measure, render and publish one frame."""
        frame = self.camera.read_frame()
        if frame is None:
            if self.camera.is_stalled and self._state.error != MSG_NO_FRAME:
                logger.warning("Camera stopped delivering frames")
                self._update(error=MSG_NO_FRAME)
            return CycleResult()

        try:
            regions = await self.detector.detect(frame)
        except ModelLoadError as e:
            raise DetectionCycleError(str(e)) from e

        if not token.alive:
            logger.debug("Discarding detection result from a cancelled cycle")
            return CycleResult(discarded=True, frame=frame)

        region = regions[0] if regions else None
        try:
            # frame.width is also the surface width after render()
            measurement = measure(region, frame.width, self.scale_constant) if region else None
            self.renderer.render(self.surface, frame, region, measurement)
        except Exception as e:
            raise DetectionCycleError(f"Rendering failed: {e}") from e
        self.overlay_region = region
        self.overlay_measurement = measurement

        changes = {}
        if measurement is not None:
            changes["last_measurement"] = measurement
            logger.debug(f"Measured {measurement.object_label}: "
                         f"{measurement.width_m}m x {measurement.height_m}m")
        if self._state.error in (MSG_DETECTION_FAILED, MSG_NO_FRAME):
            changes["error"] = None
        if changes:
            self._update(**changes)

        return CycleResult(measurement=measurement, detected=region is not None, frame=frame)

    def _on_cycle_error(self, error: DetectionCycleError) -> None:
        self._update(error=MSG_DETECTION_FAILED)
