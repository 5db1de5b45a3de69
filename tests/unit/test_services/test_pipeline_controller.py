"""Unit tests for PipelineController."""
import asyncio

import numpy as np
import pytest

from conftest import FakeBackend, FakeCamera, wait_until
from object_measure.core.constants import (
    MSG_CAMERA_ACCESS_FAILED, MSG_DETECTION_FAILED, MSG_MODEL_LOAD_FAILED,
    MSG_NO_FRAME, MSG_NO_OBJECT, MSG_NOT_SINGLE_SHOT,
)
from object_measure.core.entities import Frame, Measurement
from object_measure.services.detection_scheduler import SchedulePolicy
from object_measure.services.detector_service import DetectorService
from object_measure.services.pipeline_controller import PipelineController

CUP = Measurement(width_m=0.38, height_m=0.21, object_label="cup")


def build_controller(config, backend, camera, policy="continuous"):
    controller = PipelineController(
        config,
        camera=camera,
        detector=DetectorService(config, backend=backend),
        policy=policy,
    )
    states = []
    controller.add_listener(states.append)
    return controller, states


class TestInitialization:

    @pytest.mark.asyncio
    async def test_initialize_toggles_loading(self, mock_config, fake_backend, fake_camera):
        controller, states = build_controller(mock_config, fake_backend, fake_camera)

        assert await controller.initialize() is True

        assert [s.loading for s in states] == [True, False]
        assert controller.state.error is None

    @pytest.mark.asyncio
    async def test_model_load_failure_sets_error(self, mock_config, fake_camera):
        controller, _ = build_controller(mock_config, FakeBackend(fail_load=True), fake_camera)

        assert await controller.initialize() is False

        state = controller.state
        assert state.loading is False
        assert state.error == MSG_MODEL_LOAD_FAILED

    @pytest.mark.asyncio
    async def test_start_refused_without_model(self, mock_config, fake_camera):
        controller, _ = build_controller(mock_config, FakeBackend(fail_load=True), fake_camera)

        assert await controller.start_camera() is False

        assert fake_camera.start_calls == 0
        assert controller.state.video_on is False
        assert controller.state.error == MSG_MODEL_LOAD_FAILED

    @pytest.mark.asyncio
    async def test_start_retries_a_failed_load(self, mock_config, fake_camera, sample_region):
        backend = FakeBackend(regions=[sample_region], fail_load=True)
        controller, _ = build_controller(mock_config, backend, fake_camera)
        await controller.initialize()

        backend.fail_load = False
        try:
            assert await controller.start_camera() is True
            assert controller.state.error is None
        finally:
            controller.stop_camera()

    def test_policy_follows_argument(self, mock_config, fake_backend, fake_camera):
        controller, _ = build_controller(mock_config, fake_backend, fake_camera, policy="single_shot")

        assert controller.policy is SchedulePolicy.SINGLE_SHOT
        assert controller.state.policy == "single_shot"


class TestContinuousMeasurement:

    @pytest.mark.asyncio
    async def test_measurement_is_published(self, mock_config, fake_backend, fake_camera):
        controller, _ = build_controller(mock_config, fake_backend, fake_camera)
        await controller.initialize()

        try:
            assert await controller.start_camera() is True
            assert controller.state.video_on is True
            assert controller.state.measuring is True

            assert await wait_until(lambda: controller.state.last_measurement is not None)
            assert controller.state.last_measurement == CUP
            assert (controller.surface.width, controller.surface.height) == (1280, 720)
        finally:
            controller.stop_camera()

    @pytest.mark.asyncio
    async def test_empty_detection_keeps_last_measurement(self, mock_config, fake_backend, fake_camera):
        controller, _ = build_controller(mock_config, fake_backend, fake_camera)
        await controller.initialize()

        try:
            await controller.start_camera()
            assert await wait_until(lambda: controller.state.last_measurement is not None)

            fake_backend.regions = []
            calls = fake_backend.predict_calls
            assert await wait_until(lambda: fake_backend.predict_calls >= calls + 3)

            assert controller.state.last_measurement == CUP
            assert controller.state.error is None
        finally:
            controller.stop_camera()

    @pytest.mark.asyncio
    async def test_detection_failure_is_reported_then_cleared(self, mock_config, fake_backend, fake_camera):
        fake_backend.fail_predict = True
        controller, _ = build_controller(mock_config, fake_backend, fake_camera)
        await controller.initialize()

        try:
            await controller.start_camera()
            assert await wait_until(lambda: controller.state.error == MSG_DETECTION_FAILED)
            assert controller.state.video_on is True

            fake_backend.fail_predict = False
            assert await wait_until(lambda: controller.state.error is None)
            assert await wait_until(lambda: controller.state.last_measurement == CUP)
        finally:
            controller.stop_camera()

    @pytest.mark.asyncio
    async def test_stop_clears_measurement(self, mock_config, fake_backend, fake_camera):
        controller, states = build_controller(mock_config, fake_backend, fake_camera)
        await controller.initialize()
        await controller.start_camera()
        await wait_until(lambda: controller.state.last_measurement is not None)

        controller.stop_camera()
        published = len(states)
        controller.stop_camera()

        state = controller.state
        assert state.video_on is False
        assert state.measuring is False
        assert state.last_measurement is None
        assert fake_camera.is_open is False
        assert controller.scheduler.live_handles == 0
        assert len(states) == published

    @pytest.mark.asyncio
    async def test_stop_discards_in_flight_detection(self, mock_config, sample_region, fake_camera):
        backend = FakeBackend(regions=[sample_region], predict_delay=0.2)
        controller, _ = build_controller(mock_config, backend, fake_camera)
        await controller.initialize()

        await controller.start_camera()
        assert await wait_until(lambda: backend.predict_calls == 1)
        controller.stop_camera()
        await asyncio.sleep(0.3)

        assert controller.state.last_measurement is None
        assert controller.surface.width == 0

    @pytest.mark.asyncio
    async def test_restart_never_overlaps_abandoned_prediction(self, mock_config, sample_region, fake_camera):
        backend = FakeBackend(regions=[sample_region], predict_delay=0.3)
        controller, _ = build_controller(mock_config, backend, fake_camera, policy="interval")
        await controller.initialize()

        try:
            await controller.start_camera()
            assert await wait_until(lambda: backend.predict_calls == 1)
            controller.stop_camera()
            await controller.start_camera()

            assert await wait_until(lambda: backend.predict_calls == 2)
            assert await wait_until(lambda: controller.state.last_measurement == CUP)
        finally:
            controller.stop_camera()

        assert backend.max_active == 1

    @pytest.mark.asyncio
    async def test_live_view_carries_latest_overlay(self, mock_config, fake_backend, fake_camera, sample_frame):
        controller, _ = build_controller(mock_config, fake_backend, fake_camera)
        await controller.initialize()

        try:
            await controller.start_camera()
            assert await wait_until(lambda: controller.overlay_region is not None)

            view = controller.render_live(sample_frame)

            assert view.shape == sample_frame.image.shape
            assert not np.array_equal(view, sample_frame.image)
        finally:
            controller.stop_camera()

        assert controller.overlay_region is None
        assert controller.overlay_measurement is None
        assert np.array_equal(controller.render_live(sample_frame), sample_frame.image)

    @pytest.mark.asyncio
    async def test_stalled_camera_is_reported_then_cleared(self, mock_config, fake_backend, sample_frame):
        camera = FakeCamera(frame=None)
        camera.stalled = True
        controller, _ = build_controller(mock_config, fake_backend, camera)
        await controller.initialize()

        try:
            await controller.start_camera()
            assert await wait_until(lambda: controller.state.error == MSG_NO_FRAME)

            camera.stalled = False
            camera.frame = sample_frame
            assert await wait_until(lambda: controller.state.error is None)
            assert await wait_until(lambda: controller.state.last_measurement == CUP)
        finally:
            controller.stop_camera()

    @pytest.mark.asyncio
    async def test_capture_requires_single_shot(self, mock_config, fake_backend, fake_camera):
        controller, _ = build_controller(mock_config, fake_backend, fake_camera)

        assert await controller.capture() is None
        assert controller.state.error == MSG_NOT_SINGLE_SHOT


class TestCameraFailures:

    @pytest.mark.asyncio
    async def test_camera_permission_denied(self, mock_config, fake_backend):
        camera = FakeCamera(fail=True)
        controller, _ = build_controller(mock_config, fake_backend, camera)
        await controller.initialize()

        assert await controller.start_camera() is False

        state = controller.state
        assert state.video_on is False
        assert state.error == MSG_CAMERA_ACCESS_FAILED
        assert not controller.scheduler.is_running
        assert controller.scheduler.live_handles == 0

    @pytest.mark.asyncio
    async def test_rapid_start_stop_start(self, mock_config, fake_backend, sample_frame):
        camera = FakeCamera(frame=sample_frame, open_delay=0.05)
        controller, _ = build_controller(mock_config, fake_backend, camera)
        await controller.initialize()

        try:
            first = asyncio.create_task(controller.start_camera())
            await asyncio.sleep(0.01)
            controller.stop_camera()
            second = await controller.start_camera()

            assert await first is False
            assert second is True
            assert camera.is_open
            assert controller.scheduler.live_handles == 1
            assert controller.state.video_on is True
        finally:
            controller.stop_camera()

    @pytest.mark.asyncio
    async def test_stop_while_camera_opening(self, mock_config, fake_backend, sample_frame):
        camera = FakeCamera(frame=sample_frame, open_delay=0.05)
        controller, _ = build_controller(mock_config, fake_backend, camera)
        await controller.initialize()

        task = asyncio.create_task(controller.start_camera())
        await asyncio.sleep(0.01)
        controller.stop_camera()

        assert await task is False
        assert camera.is_open is False
        assert controller.state.video_on is False
        assert not controller.scheduler.is_running


class TestSingleShot:

    @pytest.mark.asyncio
    async def test_capture_holds_still_and_stops_camera(self, mock_config, fake_backend, fake_camera):
        controller, _ = build_controller(mock_config, fake_backend, fake_camera, policy="single_shot")
        await controller.initialize()
        await controller.start_camera()

        assert controller.state.measuring is False
        assert fake_backend.predict_calls == 0

        measurement = await controller.capture()

        state = controller.state
        assert measurement == CUP
        assert state.last_measurement == CUP
        assert state.captured_image.startswith("data:image/png;base64,")
        assert state.video_on is False
        assert state.measuring is False
        assert fake_camera.is_open is False
        assert not controller.scheduler.is_running

    @pytest.mark.asyncio
    async def test_capture_marks_measuring_while_running(self, mock_config, fake_backend, fake_camera):
        controller, states = build_controller(mock_config, fake_backend, fake_camera, policy="single_shot")
        await controller.initialize()
        await controller.start_camera()

        await controller.capture()

        assert any(s.measuring for s in states)

    @pytest.mark.asyncio
    async def test_capture_without_detection(self, mock_config, fake_camera):
        controller, _ = build_controller(mock_config, FakeBackend(regions=[]), fake_camera, policy="single_shot")
        await controller.initialize()
        await controller.start_camera()

        assert await controller.capture() is None

        state = controller.state
        assert state.error == MSG_NO_OBJECT
        assert state.last_measurement is None
        assert state.captured_image is not None
        assert state.video_on is False

    @pytest.mark.asyncio
    async def test_failed_capture_stays_live(self, mock_config, fake_camera):
        backend = FakeBackend(fail_predict=True)
        controller, _ = build_controller(mock_config, backend, fake_camera, policy="single_shot")
        await controller.initialize()
        await controller.start_camera()

        try:
            assert await controller.capture() is None

            assert controller.state.error == MSG_DETECTION_FAILED
            assert controller.state.video_on is True
            assert controller.scheduler.is_armed
        finally:
            controller.stop_camera()

    @pytest.mark.asyncio
    async def test_new_measurement_returns_to_live(self, mock_config, fake_backend, fake_camera):
        controller, _ = build_controller(mock_config, fake_backend, fake_camera, policy="single_shot")
        await controller.initialize()
        await controller.start_camera()
        await controller.capture()

        try:
            assert await controller.new_measurement() is True

            state = controller.state
            assert state.video_on is True
            assert state.captured_image is None
            assert state.last_measurement is None
            assert controller.scheduler.is_armed
        finally:
            controller.stop_camera()

    @pytest.mark.asyncio
    async def test_new_measurement_shows_the_live_camera(self, mock_config, fake_backend):
        camera = FakeCamera(frame=Frame(image=np.full((720, 1280, 3), 10, dtype=np.uint8), sequence=1))
        controller, _ = build_controller(mock_config, fake_backend, camera, policy="single_shot")
        await controller.initialize()
        await controller.start_camera()
        await controller.capture()

        try:
            await controller.new_measurement()
            camera.frame = Frame(image=np.full((720, 1280, 3), 200, dtype=np.uint8), sequence=2)

            view = controller.render_live(camera.read_frame())

            assert controller.surface.width == 0
            assert np.all(view == 200)
        finally:
            controller.stop_camera()


class TestListeners:

    @pytest.mark.asyncio
    async def test_listener_errors_do_not_break_pipeline(self, mock_config, fake_backend, fake_camera):
        controller, states = build_controller(mock_config, fake_backend, fake_camera)

        def broken(state):
            raise RuntimeError("listener failed")

        controller.add_listener(broken)
        assert await controller.initialize() is True
        assert states

    @pytest.mark.asyncio
    async def test_removed_listener_is_not_called(self, mock_config, fake_backend, fake_camera):
        controller, states = build_controller(mock_config, fake_backend, fake_camera)
        controller.remove_listener(states.append)

        await controller.initialize()

        assert states == []

    def test_state_is_a_snapshot(self, mock_config, fake_backend, fake_camera):
        controller, _ = build_controller(mock_config, fake_backend, fake_camera)

        controller.state.video_on = True

        assert controller.state.video_on is False

    @pytest.mark.asyncio
    async def test_shutdown_stops_everything(self, mock_config, fake_backend, fake_camera):
        controller, _ = build_controller(mock_config, fake_backend, fake_camera)
        await controller.initialize()
        await controller.start_camera()

        await controller.shutdown()

        assert controller.state.video_on is False
        assert fake_camera.is_open is False
        assert not controller.scheduler.is_running
