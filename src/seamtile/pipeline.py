"""Source preparation and the per-tile render stages.

Both ``prepare_source`` and ``TilePipeline.render`` are generators that
yield a ``Call`` for every external operation (utility transform or model
run) and receive its result back through ``send``. The job controller
drives them so it can check for pause and stop before and after each
call; ``run_stages`` drives one straight through with no checks.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Generator, NamedTuple, Protocol, TypeVar

import numpy as np

from constants import BACKGROUND_COLOR
from errors import ConfigurationError, InferenceError, SeamtileError
from seamtile import convert, tta, uniform
from seamtile.geometry import Tile, TileGrid
from seamtile.transforms import UtilityTransforms

logger = logging.getLogger(__name__)

T = TypeVar("T")


class InferenceEngine(Protocol):
    def run_model(self, model_id: str, tensor: np.ndarray) -> np.ndarray: ...


class Call(NamedTuple):
    """One external operation requested by a stage generator."""

    stage: str
    func: Callable[..., Any]
    args: tuple = ()

    def __call__(self) -> Any:
        return self.func(*self.args)


Stages = Generator[Call, Any, T]


def run_stages(stages: Stages[T]) -> T:
    """Drive a stage generator to completion without suspension points."""
    try:
        call = next(stages)
        while True:
            call = stages.send(call())
    except StopIteration as finished:
        return finished.value


def _expect_shape(tensor: np.ndarray, shape: tuple, what: str) -> np.ndarray:
    tensor = np.asarray(tensor, dtype=np.float32)
    if tensor.shape != shape:
        raise InferenceError(f"{what} returned shape {tensor.shape}, expected {shape}")
    return tensor


# ── Source preparation ──────────────────────────────────────────────


@dataclass
class PreparedSource:
    """Padded planar source buffers for one job.

    ``alpha3`` is None when the job does not preserve transparency; the
    color plane has then already been composited over the background.
    """

    grid: TileGrid
    rgb: np.ndarray
    alpha3: np.ndarray | None = None

    @property
    def has_alpha(self) -> bool:
        return self.alpha3 is not None

    def capture(self, tile: Tile) -> tuple[np.ndarray, np.ndarray | None]:
        """Copy the tile's input window out of the padded source."""
        rows = slice(tile.in_y, tile.in_y + tile.in_size)
        cols = slice(tile.in_x, tile.in_x + tile.in_size)
        rgb = np.ascontiguousarray(self.rgb[:, :, rows, cols])
        if self.alpha3 is None:
            return rgb, None
        return rgb, np.ascontiguousarray(self.alpha3[:, :, rows, cols])


def prepare_source(
    rgba: np.ndarray,
    grid: TileGrid,
    transforms: UtilityTransforms,
    alpha: bool,
    background: float = BACKGROUND_COLOR,
) -> Stages[PreparedSource]:
    """Build the padded, alpha-border-extended source for tiling.

    Args:
        rgba: ``(H, W, 4)`` uint8 input raster.
        grid: Geometry computed for this image.
        transforms: Utility transforms used for padding and border fill.
        alpha: Keep transparency as a separate stream. When False the
            image is flattened over ``background`` first.
        background: Gray level for flattening.

    Raises:
        ConfigurationError: If the raster does not match ``grid``.
        InferenceError: If a transform returns an unexpected shape.
    """
    height, width = rgba.shape[:2]
    if (width, height) != (grid.input_width, grid.input_height):
        raise ConfigurationError(
            f"Image is {width}x{height} but the grid was computed for "
            f"{grid.input_width}x{grid.input_height}"
        )

    rgb, alpha1 = convert.to_planar(rgba)
    pad = grid.padding
    pad_args = (pad.left, pad.right, pad.top, pad.bottom)
    padded_h, padded_w = grid.padded_input_size

    if not alpha:
        rgb = convert.composite(rgb, alpha1, background)
        rgb = yield Call("pad", transforms.pad, (rgb, *pad_args))
        rgb = _expect_shape(rgb, (1, 3, padded_h, padded_w), "pad")
        return PreparedSource(grid, rgb)

    rgb = yield Call("alpha_border_pad", transforms.alpha_border_pad, (rgb, alpha1, grid.offset))
    rgb = _expect_shape(rgb, (1, 3, height, width), "alpha_border_pad")
    rgb = yield Call("pad", transforms.pad, (rgb, *pad_args))
    rgb = _expect_shape(rgb, (1, 3, padded_h, padded_w), "pad")
    alpha3 = yield Call("pad_alpha", transforms.pad, (convert.stretch_alpha(alpha1), *pad_args))
    alpha3 = _expect_shape(alpha3, (1, 3, padded_h, padded_w), "pad")
    return PreparedSource(grid, rgb, alpha3)


# ── Per-tile stages ─────────────────────────────────────────────────


@dataclass
class TileOutput:
    """Model output for one tile, trimmed to ``[1, 3, S, S]``."""

    tile: Tile
    rgb: np.ndarray
    alpha3: np.ndarray | None = None
    uniform: bool = False


class TilePipeline:
    """Uniform shortcut or TTA-split, antialias, model, TTA-merge for one tile.

    Args:
        source: Prepared source buffers.
        engine: Runs the upscaling models.
        transforms: Utility transforms.
        model_id: Model for the color stream.
        alpha_model_id: Model for the stretched alpha stream; required
            when ``source`` carries alpha.
        tta_level: 0, 2 or 4.
        antialias: Soften the input before the model runs.
        background: Gray level used when flattening uniform tiles.
    """

    def __init__(
        self,
        source: PreparedSource,
        engine: InferenceEngine,
        transforms: UtilityTransforms,
        model_id: str,
        alpha_model_id: str | None = None,
        tta_level: int = 0,
        antialias: bool = False,
        background: float = BACKGROUND_COLOR,
    ) -> None:
        if source.has_alpha and alpha_model_id is None:
            raise ConfigurationError("An alpha model is required to render with alpha")
        self.source = source
        self.engine = engine
        self.transforms = transforms
        self.model_id = model_id
        self.alpha_model_id = alpha_model_id
        self.tta_level = tta.check_level(tta_level)
        self.antialias = antialias
        self.background = background

    @property
    def output_size(self) -> int:
        return self.source.grid.output_tile_size

    def run_model(self, model_id: str, tensor: np.ndarray) -> np.ndarray:
        """Run one model and check the output is the trimmed tile size.

        Raises:
            InferenceError: If the engine fails or returns the wrong shape.
        """
        try:
            output = self.engine.run_model(model_id, tensor)
        except SeamtileError:
            raise
        except Exception as error:
            raise InferenceError(f"Model {model_id} failed: {error}", model_id=model_id) from error
        size = self.output_size
        expected = (tensor.shape[0], 3, size, size)
        output = np.asarray(output, dtype=np.float32)
        if output.shape != expected:
            raise InferenceError(
                f"Model {model_id} returned shape {output.shape}, expected {expected}",
                model_id=model_id,
            )
        return output

    def render(self, tile: Tile) -> Stages[TileOutput]:
        rgb, alpha3 = self.source.capture(tile)

        color = uniform.detect(
            convert.planar_rgba(rgb, alpha3),
            include_alpha=self.source.has_alpha,
            background=self.background,
        )
        if color is not None:
            solid_rgb, solid_alpha3 = uniform.solid_tensors(color, self.output_size)
            logger.debug("Tile (%d, %d) is uniform %s", tile.row, tile.col, color)
            return TileOutput(tile, solid_rgb, solid_alpha3 if self.source.has_alpha else None, uniform=True)

        level = self.tta_level
        if level:
            views = (tta.batch_size(level), 3, tile.in_size, tile.in_size)
            rgb = yield Call("tta_split", tta.split, (self.transforms, rgb, level))
            rgb = _expect_shape(rgb, views, "tta_split")
            if alpha3 is not None:
                alpha3 = yield Call("tta_split_alpha", tta.split, (self.transforms, alpha3, level))
                alpha3 = _expect_shape(alpha3, views, "tta_split")

        if self.antialias:
            rgb = yield Call("antialias", self.transforms.antialias, (rgb,))
            if alpha3 is not None:
                alpha3 = yield Call("antialias_alpha", self.transforms.antialias, (alpha3,))

        if alpha3 is not None and level == 0 and self.alpha_model_id == self.model_id:
            # TTA batches on its own, so only plain runs share one call
            joined = yield Call("model", self.run_model, (self.model_id, convert.batch(rgb, alpha3)))
            rgb, alpha3 = convert.unbatch(joined)
        else:
            rgb = yield Call("model", self.run_model, (self.model_id, rgb))
            if alpha3 is not None:
                alpha3 = yield Call("model_alpha", self.run_model, (self.alpha_model_id, alpha3))

        if level:
            rgb = yield Call("tta_merge", tta.merge, (self.transforms, rgb, level))
            if alpha3 is not None:
                alpha3 = yield Call("tta_merge_alpha", tta.merge, (self.transforms, alpha3, level))

        size = self.output_size
        rgb = _expect_shape(rgb, (1, 3, size, size), "tta_merge")
        if alpha3 is not None:
            alpha3 = _expect_shape(alpha3, (1, 3, size, size), "tta_merge")
        return TileOutput(tile, rgb, alpha3)
