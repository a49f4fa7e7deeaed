"""Seam blending of overlapping tile outputs.

Each output pixel keeps a running weighted mean: the blended value and
the total kernel weight that has contributed to it so far. Adding a tile
with kernel weight ``k`` at a pixel moves the mean toward the tile value
by ``k / (w_old + k)``. Because the kernel tapers toward the tile border,
a tile's influence fades out across the overlap and no hard seam is
left. The final mean does not depend on the order tiles arrive in.
"""

from __future__ import annotations

import logging

import numpy as np

from errors import ConfigurationError, InferenceError
from seamtile.geometry import TileGrid
from seamtile.transforms import UtilityTransforms

logger = logging.getLogger(__name__)


class SeamBlender:
    """Job-wide accumulation buffers for one stream (color or alpha).

    Args:
        grid: Geometry of the render.
        blend_filter: ``(C, S, S)`` kernel, ``S`` being the tile output size.
    """

    def __init__(self, grid: TileGrid, blend_filter: np.ndarray) -> None:
        size = grid.output_tile_size
        kernel = np.asarray(blend_filter, dtype=np.float32)
        if kernel.ndim == 4:
            kernel = kernel[0]
        if kernel.ndim != 3 or kernel.shape[1:] != (size, size):
            raise ConfigurationError(
                f"Blend filter must be (C, {size}, {size}), got {kernel.shape}"
            )
        if not (kernel > 0).all():
            raise ConfigurationError("Blend filter must be strictly positive")

        self.grid = grid
        self.kernel = kernel
        self.channels = kernel.shape[0]
        buffer_h, buffer_w = grid.output_buffer_size
        self.pixels = np.zeros((self.channels, buffer_h, buffer_w), dtype=np.float32)
        self.weights = np.zeros((self.channels, buffer_h, buffer_w), dtype=np.float32)

    @classmethod
    def build(cls, grid: TileGrid, transforms: UtilityTransforms) -> "SeamBlender":
        """Create a blender with the kernel produced by ``transforms``."""
        kernel = transforms.create_blend_filter(
            grid.scale, grid.offset, grid.tile_size, grid.blend_size
        )
        logger.debug(
            "Blend filter %s for scale=%d offset=%d tile=%d blend=%d",
            np.shape(kernel), grid.scale, grid.offset, grid.tile_size, grid.blend_size,
        )
        return cls(grid, kernel)

    def blend(self, tensor: np.ndarray, row: int, col: int) -> np.ndarray:
        """Blend one tile's model output into the buffers.

        Args:
            tensor: ``[1, C, S, S]`` (or ``(C, S, S)``) tile output.
            row: Grid row of the tile.
            col: Grid column of the tile.

        Returns:
            The blended pixels of the tile footprint, same shape as ``tensor``.

        Raises:
            InferenceError: If the tile output has the wrong shape.
        """
        values = np.asarray(tensor, dtype=np.float32)
        batched = values.ndim == 4
        if batched:
            if values.shape[0] != 1:
                raise InferenceError(f"Expected a single tile, got batch of {values.shape[0]}")
            values = values[0]
        if values.shape != self.kernel.shape:
            raise InferenceError(
                f"Tile output shape {values.shape} does not match blend filter {self.kernel.shape}"
            )

        tile = self.grid.tile(row, col)
        window = (
            slice(None),
            slice(tile.out_y, tile.out_y + tile.out_size),
            slice(tile.out_x, tile.out_x + tile.out_size),
        )
        old_weight = self.weights[window]
        new_weight = old_weight + self.kernel
        keep = old_weight / new_weight
        blended = self.pixels[window] * keep + values * (1.0 - keep)

        self.pixels[window] = blended
        self.weights[window] = new_weight

        return blended[None] if batched else blended

    def weight_sum(self) -> float:
        return float(self.weights.sum(dtype=np.float64))

    def crop(self) -> np.ndarray:
        """The image window of the buffer as ``[1, C, H*scale, W*scale]``."""
        origin = self.grid.crop_origin
        height, width = self.grid.output_size
        return self.pixels[None, :, origin:origin + height, origin:origin + width].copy()
