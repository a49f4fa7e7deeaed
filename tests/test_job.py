"""Tests for the job controller."""

from __future__ import annotations

import random
import threading

import numpy as np
import pytest

from conftest import nearest_upscale
from errors import ConfigurationError, InferenceError
from seamtile.job import (
    JobController,
    JobOutcome,
    JobSignal,
    JobState,
    LiveParameters,
    RenderParams,
    RenderServices,
)
from seamtile.transforms import TorchTransforms


def _params(image: np.ndarray, **overrides) -> RenderParams:
    values = dict(image=image, model_id="model", scale=2, offset=16, tile_size=64)
    values.update(overrides)
    return RenderParams(**values)


def _controller(engine, reports: list | None = None, **kwargs) -> JobController:
    services = RenderServices(engine=engine, transforms=TorchTransforms())
    callback = reports.append if reports is not None else None
    return JobController(services, report_callback=callback, **kwargs)


def _kinds(reports: list) -> list[str]:
    return [report.kind for report in reports]


class TestJobSignal:
    """Test the condition-variable state holder."""

    def test_transition_only_from_source(self) -> None:
        signal = JobSignal(JobState.RUNNING)
        assert signal.transition(JobState.RUNNING, JobState.PAUSED)
        assert not signal.transition(JobState.RUNNING, JobState.STOPPED)
        assert signal.state is JobState.PAUSED

    def test_wait_returns_after_change(self) -> None:
        signal = JobSignal(JobState.PAUSED)
        timer = threading.Timer(0.05, signal.set, args=(JobState.RUNNING,))
        timer.start()
        assert signal.wait_while_paused(timeout=5) is JobState.RUNNING
        timer.join()


class TestCompletedJobs:
    """Full renders with the nearest-neighbour stand-in model."""

    def test_reproduces_upscale(self, noise_rgba: np.ndarray, make_engine) -> None:
        controller = _controller(make_engine(2, 16))
        result = controller.start(_params(noise_rgba))

        assert result.outcome is JobOutcome.COMPLETED
        assert result.ok
        assert result.tiles_completed == result.tiles_total == 9
        np.testing.assert_array_equal(result.image, nearest_upscale(noise_rgba, 2))

    def test_canvas_matches_final_image(self, noise_rgba: np.ndarray, make_engine) -> None:
        controller = _controller(make_engine(2, 16))
        result = controller.start(_params(noise_rgba))
        np.testing.assert_array_equal(controller.canvas, result.image)

    def test_offset_not_divisible_by_scale(self, make_engine) -> None:
        rgba = np.random.default_rng(11).integers(0, 256, size=(37, 53, 4), dtype=np.uint8)
        rgba[..., 3] = 255
        controller = _controller(make_engine(2, 7))
        result = controller.start(_params(rgba, offset=7, tile_size=32))
        np.testing.assert_array_equal(result.image, nearest_upscale(rgba, 2))

    def test_scale_four(self, make_engine) -> None:
        rgba = np.random.default_rng(12).integers(0, 256, size=(30, 45, 4), dtype=np.uint8)
        rgba[..., 3] = 255
        controller = _controller(make_engine(4, 32))
        result = controller.start(_params(rgba, scale=4, offset=32, tile_size=64))
        assert result.image.shape == (120, 180, 4)
        np.testing.assert_array_equal(result.image, nearest_upscale(rgba, 4))

    def test_alpha_stream(self, transparent_rgba: np.ndarray, make_engine) -> None:
        controller = _controller(make_engine(2, 16))
        result = controller.start(
            _params(transparent_rgba, alpha=True, alpha_model_id="model")
        )
        expected = nearest_upscale(transparent_rgba, 2)
        np.testing.assert_array_equal(result.image[..., 3], expected[..., 3])
        visible = expected[..., 3] > 0
        np.testing.assert_array_equal(result.image[visible, :3], expected[visible, :3])

    def test_flattened_without_alpha(self, transparent_rgba: np.ndarray, make_engine) -> None:
        controller = _controller(make_engine(2, 16))
        result = controller.start(_params(transparent_rgba))
        assert np.all(result.image[..., 3] == 255)
        assert np.all(result.image[:20, :, :3] == 255)

    def test_uniform_image_skips_model(self, make_engine) -> None:
        rgba = np.zeros((100, 100, 4), dtype=np.uint8)
        rgba[...] = (200, 100, 50, 255)
        engine = make_engine(2, 16)
        reports: list = []
        result = _controller(engine, reports).start(_params(rgba))

        assert engine.calls == []
        assert np.all(result.image == np.array([200, 100, 50, 255], dtype=np.uint8))
        completed = [r for r in reports if r.kind == "tile-completed"]
        assert all(r.uniform for r in completed)

    def test_tta_result_matches_plain(self, noise_rgba: np.ndarray, make_engine) -> None:
        plain = _controller(make_engine(2, 16)).start(_params(noise_rgba))
        folded = _controller(make_engine(2, 16)).start(_params(noise_rgba, tta_level=2))
        np.testing.assert_array_equal(folded.image, plain.image)

    def test_random_order_gives_same_image(self, noise_rgba: np.ndarray, make_engine) -> None:
        reports: list = []
        controller = _controller(
            make_engine(2, 16), reports,
            live=LiveParameters(tile_random=True), rng=random.Random(3),
        )
        result = controller.start(_params(noise_rgba))

        order = [r.tile for r in reports if r.kind == "tile-started"]
        assert len(set(order)) == 9
        np.testing.assert_array_equal(result.image, nearest_upscale(noise_rgba, 2))

    def test_focus_picks_nearest_first(self, noise_rgba: np.ndarray, make_engine) -> None:
        reports: list = []
        controller = _controller(
            make_engine(2, 16), reports, live=LiveParameters(tile_focus=(400.0, 400.0))
        )
        controller.start(_params(noise_rgba))
        first = next(r.tile for r in reports if r.kind == "tile-started")
        assert (first.row, first.col) == (2, 2)

    def test_report_sequence(self, noise_rgba: np.ndarray, make_engine) -> None:
        reports: list = []
        _controller(make_engine(2, 16), reports).start(_params(noise_rgba))

        kinds = _kinds(reports)
        assert kinds[0] == "start"
        assert kinds[-1] == "completed"
        assert kinds[1:-1] == ["tile-started", "tile-completed"] * 9
        last_tile = reports[-2]
        assert last_tile.tiles_completed == 9
        assert last_tile.pixels_completed == last_tile.pixels_total == 9 * 64 * 64

    def test_controller_is_reusable(self, noise_rgba: np.ndarray, make_engine) -> None:
        controller = _controller(make_engine(2, 16))
        controller.start(_params(noise_rgba))
        assert controller.state is JobState.STOPPED
        assert controller.start(_params(noise_rgba)).ok

    def test_failing_callback_is_ignored(self, noise_rgba: np.ndarray, make_engine) -> None:
        def callback(report) -> None:
            raise ValueError("listener bug")

        services = RenderServices(engine=make_engine(2, 16), transforms=TorchTransforms())
        result = JobController(services, report_callback=callback).start(_params(noise_rgba))
        assert result.ok


class TestPauseAndStop:
    """Cooperative suspension."""

    def test_pause_and_resume_loses_no_tiles(self, noise_rgba: np.ndarray, make_engine) -> None:
        reports: list = []
        holder: dict = {}

        def hook(index: int) -> None:
            if index == 3:
                assert holder["controller"].pause()
                threading.Timer(0.05, holder["controller"].resume).start()

        controller = _controller(make_engine(2, 16, hook=hook), reports)
        holder["controller"] = controller
        result = controller.start(_params(noise_rgba))

        assert result.ok
        kinds = _kinds(reports)
        assert kinds.count("paused") == 1
        assert kinds.count("unpaused") == 1
        assert kinds.index("paused") < kinds.index("unpaused")
        completed = [r.tile for r in reports if r.kind == "tile-completed"]
        assert len(completed) == len(set(completed)) == 9
        np.testing.assert_array_equal(result.image, nearest_upscale(noise_rgba, 2))

    def test_stop_aborts_and_keeps_partial_canvas(self, noise_rgba: np.ndarray, make_engine) -> None:
        reports: list = []
        holder: dict = {}

        def hook(index: int) -> None:
            if index == 2:
                holder["controller"].stop()

        controller = _controller(make_engine(2, 16, hook=hook), reports)
        holder["controller"] = controller
        result = controller.start(_params(noise_rgba))

        completed = sum(1 for r in reports if r.kind == "tile-completed")
        assert result.outcome is JobOutcome.ABORTED
        assert _kinds(reports)[-1] == "aborted"
        assert result.tiles_completed == completed == 2
        assert len(controller.dispatcher.remaining) == 9 - completed
        assert not controller.dispatcher.taken
        assert result.image is not None
        assert result.image[..., 3].any()

    def test_stop_while_paused(self, noise_rgba: np.ndarray, make_engine) -> None:
        reports: list = []
        holder: dict = {}

        def hook(index: int) -> None:
            if index == 1:
                holder["controller"].pause()
                threading.Timer(0.05, holder["controller"].stop).start()

        controller = _controller(make_engine(2, 16, hook=hook), reports)
        holder["controller"] = controller
        result = controller.start(_params(noise_rgba))

        kinds = _kinds(reports)
        assert result.outcome is JobOutcome.ABORTED
        assert "paused" in kinds
        assert "unpaused" not in kinds
        assert result.tiles_completed == 1
        assert len(controller.dispatcher.remaining) == 8

    def test_controls_ignored_when_idle(self, make_engine) -> None:
        controller = _controller(make_engine(2, 16))
        assert controller.state is JobState.STOPPED
        assert not controller.pause()
        assert not controller.resume()
        assert not controller.stop()


class TestFailures:
    """Errored jobs and configuration errors."""

    def test_model_error_ends_job_as_errored(self, noise_rgba: np.ndarray, make_engine) -> None:
        reports: list = []

        def hook(index: int) -> None:
            if index == 4:
                raise RuntimeError("out of memory")

        controller = _controller(make_engine(2, 16, hook=hook), reports)
        result = controller.start(_params(noise_rgba))

        assert result.outcome is JobOutcome.ERRORED
        assert isinstance(result.error, InferenceError)
        assert result.tiles_completed == 4
        assert _kinds(reports)[-1] == "errored"
        assert controller.state is JobState.STOPPED
        # The first tile row is already blended into the partial canvas
        expected = nearest_upscale(noise_rgba, 2)
        np.testing.assert_array_equal(result.image[:80], expected[:80])

    def test_configuration_error_before_any_report(self, noise_rgba: np.ndarray, make_engine) -> None:
        reports: list = []
        controller = _controller(make_engine(2, 16), reports)
        with pytest.raises(ConfigurationError):
            controller.start(_params(noise_rgba, tile_size=16))
        assert reports == []
        assert controller.state is JobState.STOPPED

    @pytest.mark.parametrize(
        "overrides",
        [
            {"tta_level": 3},
            {"alpha": True},
            {"image": np.zeros((10, 10, 3), dtype=np.uint8)},
            {"image": np.zeros((10, 10, 4), dtype=np.float32)},
        ],
    )
    def test_invalid_params(self, noise_rgba: np.ndarray, make_engine, overrides: dict) -> None:
        overrides = dict(overrides)
        image = overrides.pop("image", noise_rgba)
        controller = _controller(make_engine(2, 16))
        with pytest.raises(ConfigurationError):
            controller.start(_params(image, **overrides))
