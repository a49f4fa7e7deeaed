"""Job controller: one end-to-end tiled render.

The controller runs the dispatch loop on the calling thread. Other
threads steer it through ``pause``, ``resume`` and ``stop``; the loop
observes those requests at its suspension points, which are before and
after every external call made while preparing the source or rendering
a tile. While paused the loop blocks on a condition variable.

A stop never interrupts an external call that is already running. Its
result is dropped, the tile goes back to the dispatcher and the job ends
as aborted. Any exception while rendering ends the job as errored. In
both cases the result carries the canvas with every tile blended so far.
"""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, ClassVar

import numpy as np

from constants import BACKGROUND_COLOR, BLEND_SIZE
from errors import ConfigurationError
from seamtile import convert, geometry, tta
from seamtile.blending import SeamBlender
from seamtile.dispatcher import TileDispatcher
from seamtile.geometry import Tile, TileGrid
from seamtile.pipeline import InferenceEngine, Stages, TilePipeline, prepare_source
from seamtile.transforms import UtilityTransforms
from timer import StageTimer

logger = logging.getLogger(__name__)


class JobState(Enum):
    STOPPED = "stopped"
    RUNNING = "running"
    PAUSED = "paused"


class JobOutcome(Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"
    ERRORED = "errored"


class JobSignal:
    """Thread-safe job state that the render loop can block on."""

    def __init__(self, state: JobState = JobState.STOPPED) -> None:
        self._state = state
        self._changed = threading.Condition()

    @property
    def state(self) -> JobState:
        with self._changed:
            return self._state

    def set(self, state: JobState) -> None:
        with self._changed:
            self._state = state
            self._changed.notify_all()

    def transition(self, source: JobState, target: JobState) -> bool:
        """Move to ``target`` only from ``source``; return whether it moved."""
        with self._changed:
            if self._state is not source:
                return False
            self._state = target
            self._changed.notify_all()
            return True

    def wait_while_paused(self, timeout: float | None = None) -> JobState:
        with self._changed:
            self._changed.wait_for(lambda: self._state is not JobState.PAUSED, timeout)
            return self._state


# ── Reports ─────────────────────────────────────────────────────────


@dataclass
class StartedReport:
    kind: ClassVar[str] = "start"
    tiles_total: int
    pixels_total: int


@dataclass
class TileStartedReport:
    kind: ClassVar[str] = "tile-started"
    tile: Tile
    tiles_total: int
    tiles_completed: int
    pixels_total: int
    pixels_completed: int
    pixels_started: int


@dataclass
class TileCompletedReport:
    kind: ClassVar[str] = "tile-completed"
    tile: Tile
    tiles_total: int
    tiles_completed: int
    pixels_total: int
    pixels_completed: int
    pixels_just_completed: int
    uniform: bool = False


@dataclass
class PausedReport:
    kind: ClassVar[str] = "paused"


@dataclass
class UnpausedReport:
    kind: ClassVar[str] = "unpaused"


@dataclass
class CompletedReport:
    kind: ClassVar[str] = "completed"
    image: np.ndarray


@dataclass
class AbortedReport:
    kind: ClassVar[str] = "aborted"
    tiles_completed: int


@dataclass
class ErroredReport:
    kind: ClassVar[str] = "errored"
    error: BaseException


Report = (
    StartedReport
    | TileStartedReport
    | TileCompletedReport
    | PausedReport
    | UnpausedReport
    | CompletedReport
    | AbortedReport
    | ErroredReport
)


# ── Parameters and result ───────────────────────────────────────────


@dataclass
class RenderParams:
    """Everything fixed for the duration of one render.

    ``image`` is an ``(H, W, 4)`` uint8 raster. ``alpha`` keeps
    transparency as its own stream rendered with ``alpha_model_id``;
    otherwise the image is flattened over ``background``.
    """

    image: np.ndarray
    model_id: str
    scale: int
    offset: int
    tile_size: int
    alpha: bool = False
    alpha_model_id: str | None = None
    blend_size: int = BLEND_SIZE
    tta_level: int = 0
    antialias: bool = False
    background: float = BACKGROUND_COLOR
    model_name: str = ""


@dataclass
class LiveParameters:
    """Tile ordering the caller may change while the job runs."""

    tile_random: bool = False
    tile_focus: tuple[float, float] | None = None


@dataclass
class RenderServices:
    engine: InferenceEngine
    transforms: UtilityTransforms


@dataclass
class JobResult:
    outcome: JobOutcome
    image: np.ndarray | None = None
    error: BaseException | None = None
    tiles_completed: int = 0
    tiles_total: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome is JobOutcome.COMPLETED


# ── Controller ──────────────────────────────────────────────────────


class JobController:
    """Coordinates one render at a time.

    Args:
        services: Inference engine and utility transforms.
        report_callback: Receives every report; exceptions it raises are
            logged and ignored.
        live: Tile ordering read before each tile is picked.
        rng: Random source for random tile order.
    """

    def __init__(
        self,
        services: RenderServices,
        report_callback: Callable[[Report], Any] | None = None,
        live: LiveParameters | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.services = services
        self.live = live or LiveParameters()
        self.report_callback = report_callback
        self.rng = rng
        self.dispatcher: TileDispatcher | None = None
        self.canvas: np.ndarray | None = None
        self.timer = StageTimer()
        self._signal = JobSignal()
        self._tiles_completed = 0

    # ── External control ─────────────────────────────────────────────

    @property
    def state(self) -> JobState:
        return self._signal.state

    def pause(self) -> bool:
        return self._signal.transition(JobState.RUNNING, JobState.PAUSED)

    def resume(self) -> bool:
        return self._signal.transition(JobState.PAUSED, JobState.RUNNING)

    def stop(self) -> bool:
        if self._signal.transition(JobState.RUNNING, JobState.STOPPED):
            return True
        return self._signal.transition(JobState.PAUSED, JobState.STOPPED)

    # ── Job ──────────────────────────────────────────────────────────

    def start(self, params: RenderParams) -> JobResult:
        """Render ``params.image`` and block until the job ends.

        Raises:
            ConfigurationError: If the parameters are invalid. No job
                state exists at that point and no report is sent.
            RuntimeError: If a job is already running on this controller.
        """
        if self.state is not JobState.STOPPED:
            raise RuntimeError("A job is already running on this controller")

        grid = self._validate(params)
        self.timer = StageTimer()
        self.dispatcher = TileDispatcher(grid, self.rng)
        self.canvas = np.zeros((*grid.output_size, 4), dtype=np.uint8)
        self._tiles_completed = 0
        self._signal.set(JobState.RUNNING)

        logger.info(
            "Rendering %dx%d at %dx: %d tiles (%dx%d grid)",
            grid.input_width, grid.input_height, grid.scale,
            grid.tiles_total, grid.rows, grid.cols,
        )
        self._report(StartedReport(grid.tiles_total, grid.tiles_total * grid.tile_size ** 2))

        try:
            image = self._run(params, grid)
        except Exception as error:
            logger.error("Render failed after %d tiles: %s", self._tiles_completed, error)
            logger.debug("Render failure", exc_info=True)
            self._signal.set(JobState.STOPPED)
            result = self._result(JobOutcome.ERRORED, self.canvas, error)
            self._finish(params, ErroredReport(error))
            return result

        if image is None:
            self.dispatcher.cancel_all()
            result = self._result(JobOutcome.ABORTED, self.canvas)
            self._finish(params, AbortedReport(self._tiles_completed))
            return result

        self._signal.set(JobState.STOPPED)
        result = self._result(JobOutcome.COMPLETED, image)
        self._finish(params, CompletedReport(image))
        return result

    def _validate(self, params: RenderParams) -> TileGrid:
        image = np.asarray(params.image)
        if image.ndim != 3 or image.shape[2] != 4 or image.dtype != np.uint8:
            raise ConfigurationError(
                f"Image must be an (H, W, 4) uint8 raster, got {image.shape} {image.dtype}"
            )
        tta.check_level(params.tta_level)
        if params.alpha and not params.alpha_model_id:
            raise ConfigurationError("alpha_model_id is required when alpha is enabled")
        height, width = image.shape[:2]
        return geometry.compute(
            width, height, params.scale, params.offset, params.tile_size, params.blend_size
        )

    def _run(self, params: RenderParams, grid: TileGrid) -> np.ndarray | None:
        """The dispatch loop; returns the final image, or None when stopped."""
        services = self.services
        dispatcher = self.dispatcher
        timer = self.timer
        pixels_per_tile = grid.tile_size ** 2
        pixels_total = grid.tiles_total * pixels_per_tile

        timer.push("run")
        timer.push("prepare")
        source = self._drive(
            prepare_source(params.image, grid, services.transforms, params.alpha, params.background)
        )
        if source is None:
            return None

        timer.transition("blend_filter")
        color_blender = SeamBlender.build(grid, services.transforms)
        alpha_blender = SeamBlender.build(grid, services.transforms) if params.alpha else None
        pipeline = TilePipeline(
            source,
            services.engine,
            services.transforms,
            params.model_id,
            alpha_model_id=params.alpha_model_id,
            tta_level=params.tta_level,
            antialias=params.antialias,
            background=params.background,
        )

        timer.transition("tiles")
        while True:
            if not self._checkpoint():
                return None
            tile = dispatcher.take(random_order=self.live.tile_random, focus=self.live.tile_focus)
            if tile is None:
                break

            self._report(TileStartedReport(
                tile=tile,
                tiles_total=grid.tiles_total,
                tiles_completed=self._tiles_completed,
                pixels_total=pixels_total,
                pixels_completed=self._tiles_completed * pixels_per_tile,
                pixels_started=pixels_per_tile,
            ))

            timer.push("tile")
            output = self._drive(pipeline.render(tile))
            if output is None:
                timer.pop()
                dispatcher.cancel(tile)
                return None

            timer.transition("blend")
            rgb = color_blender.blend(output.rgb, tile.row, tile.col)
            alpha3 = alpha_blender.blend(output.alpha3, tile.row, tile.col) if alpha_blender else None
            dispatcher.submit(tile)
            self._write_tile(grid, tile, rgb, alpha3)
            self._tiles_completed += 1
            timer.pop()

            logger.debug(
                "Tile (%d, %d) done, %d/%d", tile.row, tile.col, self._tiles_completed, grid.tiles_total
            )
            self._report(TileCompletedReport(
                tile=tile,
                tiles_total=grid.tiles_total,
                tiles_completed=self._tiles_completed,
                pixels_total=pixels_total,
                pixels_completed=self._tiles_completed * pixels_per_tile,
                pixels_just_completed=pixels_per_tile,
                uniform=output.uniform,
            ))

        timer.transition("crop")
        image = convert.to_rgba8(
            color_blender.crop(), alpha_blender.crop() if alpha_blender else None
        )
        timer.pop()
        timer.pop()
        return image

    # ── Suspension points ────────────────────────────────────────────

    def _checkpoint(self) -> bool:
        """Block while paused; False once the job has been stopped."""
        state = self._signal.state
        if state is JobState.PAUSED:
            logger.info("Render paused")
            self._report(PausedReport())
            state = self._signal.wait_while_paused()
            if state is JobState.STOPPED:
                return False
            logger.info("Render resumed")
            self._report(UnpausedReport())
        return state is not JobState.STOPPED

    def _drive(self, stages: Stages) -> Any:
        """Run a stage generator, checking for pause/stop around each call.

        Returns the generator's value, or None if the job was stopped.
        """
        try:
            call = next(stages)
            while True:
                if not self._checkpoint():
                    return None
                self.timer.push(call.stage)
                try:
                    result = call()
                finally:
                    self.timer.pop()
                if not self._checkpoint():
                    return None
                call = stages.send(result)
        except StopIteration as finished:
            return finished.value
        finally:
            stages.close()

    # ── Output ───────────────────────────────────────────────────────

    def _write_tile(
        self, grid: TileGrid, tile: Tile, rgb: np.ndarray, alpha3: np.ndarray | None
    ) -> None:
        """Copy a tile's blended pixels into the visible canvas, clipped to the image."""
        height, width = grid.output_size
        origin = grid.crop_origin
        y0 = tile.out_y - origin
        x0 = tile.out_x - origin
        top, left = max(0, -y0), max(0, -x0)
        bottom = min(tile.out_size, height - y0)
        right = min(tile.out_size, width - x0)
        if bottom <= top or right <= left:
            return
        window = (slice(None), slice(None), slice(top, bottom), slice(left, right))
        patch = convert.to_rgba8(rgb[window], alpha3[window] if alpha3 is not None else None)
        self.canvas[y0 + top:y0 + bottom, x0 + left:x0 + right] = patch

    def _result(
        self, outcome: JobOutcome, image: np.ndarray | None, error: BaseException | None = None
    ) -> JobResult:
        return JobResult(
            outcome=outcome,
            image=image,
            error=error,
            tiles_completed=self._tiles_completed,
            tiles_total=self.dispatcher.tiles_total if self.dispatcher else 0,
        )

    def _report(self, report: Report) -> None:
        if self.report_callback is None:
            return
        try:
            self.report_callback(report)
        except Exception:
            logger.warning("Report callback failed for %s", report.kind, exc_info=True)

    def _finish(self, params: RenderParams, report: Report) -> None:
        label = {"aborted": "aborted", "errored": "FAILED"}.get(report.kind, "completed")
        height, width = params.image.shape[:2]
        logger.info("Job %s", label)
        logger.info("· Input: %dx%d (%dpx)", width, height, width * height)
        logger.info(
            "· Output: %dx%d (%dpx)",
            width * params.scale, height * params.scale, width * height * params.scale ** 2,
        )
        logger.info("· Model: %s", params.model_name or params.model_id)
        logger.info("· Scale: %d", params.scale)
        logger.info("· Tile size: %d", params.tile_size)
        logger.info("· TTA level: %d", params.tta_level)
        logger.info("· Alpha: %s", params.alpha)
        self.timer.log_summary(logging.DEBUG)
        self._report(report)
