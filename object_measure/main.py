"""Main entry point: OpenCV front end for the measurement pipeline.

Keys: ``s`` start/stop camera, ``c`` capture (single-shot), ``n`` new
measurement, ``q``/Esc quit.
"""

import argparse
import asyncio
import logging
import sys
from typing import Optional, Set

import cv2
import numpy as np

from .config.settings import VALID_POLICIES, Config, load_config
from .core.constants import APP_NAME, VERSION
from .core.entities import PipelineState
from .core.logging_config import configure_logging, shutdown_logging
from .services.pipeline_controller import PipelineController
from .utils.image_utils import blank_image, decode_data_url

logger = logging.getLogger(__name__)

STATUS_BAR_HEIGHT = 32
KEY_ESC = 27


def status_text(state: PipelineState) -> str:
    """One-line summary of the pipeline state for the status bar."""
    if state.loading:
        return "Loading model..."
    if state.error:
        return f"Error: {state.error}"
    m = state.last_measurement
    if m is not None:
        return f"{m.object_label}  W: {m.width_m:.2f}m  H: {m.height_m:.2f}m"
    if state.measuring:
        return "Measuring..."
    if state.video_on:
        return "Press 'c' to capture" if state.policy == "single_shot" else "Camera on"
    if state.captured_image:
        return "Press 'n' for a new measurement"
    return "Press 's' to start the camera"


class MeasureApp:
    """Displays the overlay surface (or the held still) and maps keys onto controller actions."""

    def __init__(self, controller: PipelineController, window_name: str = APP_NAME,
                 refresh_rate_hz: int = 60):
        self.controller = controller
        self.window_name = window_name
        self.frame_period = 1.0 / max(1, refresh_rate_hz)
        self.state = controller.state
        self._held_still: Optional[np.ndarray] = None
        self._tasks: Set[asyncio.Task] = set()
        controller.add_listener(self._on_state)

    def _on_state(self, state: PipelineState) -> None:
        if state.captured_image != self.state.captured_image:
            self._held_still = decode_data_url(state.captured_image) if state.captured_image else None
        self.state = state

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def compose_view(self) -> np.ndarray:
        """Current picture with the status bar appended below it."""
        frame = self.controller.camera.read_frame() if self.state.video_on else None
        if self._held_still is not None:
            view = self._held_still
        elif frame is not None:
            view = self.controller.render_live(frame)
        else:
            view = blank_image(640, 480)

        bar = np.zeros((STATUS_BAR_HEIGHT, view.shape[1], 3), dtype=np.uint8)
        cv2.putText(bar, status_text(self.state), (8, STATUS_BAR_HEIGHT - 10),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.6, (255, 255, 255), 1, cv2.LINE_AA)
        return np.vstack([view, bar])

    def handle_key(self, key: int) -> bool:
        """Dispatch a key press. Returns False when the app should quit."""
        if key in (ord('q'), KEY_ESC):
            return False
        if key == ord('s'):
            if self.state.video_on:
                self.controller.stop_camera()
            else:
                self._spawn(self.controller.start_camera())
        elif key == ord('c'):
            self._spawn(self.controller.capture())
        elif key == ord('n'):
            self._spawn(self.controller.new_measurement())
        return True

    async def run(self) -> None:
        cv2.namedWindow(self.window_name, cv2.WINDOW_NORMAL)
        self._spawn(self.controller.initialize())
        try:
            while True:
                cv2.imshow(self.window_name, self.compose_view())
                key = cv2.waitKey(1) & 0xFF
                if key != 0xFF and not self.handle_key(key):
                    break
                await asyncio.sleep(self.frame_period)
        finally:
            for task in list(self._tasks):
                task.cancel()
            await self.controller.shutdown()
            cv2.destroyWindow(self.window_name)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description=f"{APP_NAME} {VERSION}")
    parser.add_argument("--config", default="config.json", help="Path to the JSON configuration file")
    parser.add_argument("--env-file", default=None, help="Path to a .env file")
    parser.add_argument("--policy", choices=VALID_POLICIES, help="Detection scheduling policy")
    parser.add_argument("--camera", type=int, dest="camera_index", help="Camera device index")
    parser.add_argument("--model", dest="model_name", help="Detection model weights")
    parser.add_argument("--interval", type=int, dest="interval_ms", help="Interval policy period in ms")
    parser.add_argument("--log-level", choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
                        help="Logging level")
    return parser


def apply_cli_overrides(config: Config, args: argparse.Namespace) -> Config:
    """Command line flags win over file and environment values."""
    overrides = {
        "schedule_policy": args.policy,
        "camera_index": args.camera_index,
        "model_name": args.model_name,
        "interval_ms": args.interval_ms,
        "log_level": args.log_level,
    }
    for key, value in overrides.items():
        if value is not None:
            setattr(config, key, value)
    return config


def main(argv=None) -> int:
    """Application entry point."""
    args = build_parser().parse_args(argv)
    config = apply_cli_overrides(load_config(args.config, args.env_file), args)

    configure_logging(
        log_level=config.log_level,
        log_dir=config.log_dir,
        enable_file_logging=config.file_logging,
        structured_logging=config.structured_logging,
    )
    logger.info(f"Starting {APP_NAME} {VERSION} ({config.schedule_policy} policy)")

    controller = PipelineController(config)
    app = MeasureApp(controller, refresh_rate_hz=config.refresh_rate_hz)
    try:
        asyncio.run(app.run())
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.critical(f"Application error: {e}", exc_info=True)
        return 1
    finally:
        shutdown_logging()
    return 0


if __name__ == "__main__":
    sys.exit(main())
