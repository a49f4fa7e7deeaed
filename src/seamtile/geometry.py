"""Tile-grid geometry for overlapping tiled inference.

Pure integer math: given the input size, the model's scale and context
offset, the tile size and the blend margin, compute the grid, the
whole-image padding, and per-tile input/output rectangles.

The leading edges are padded by exactly the model context so that the
first tile's trimmed output starts at the image's first pixel. The
trailing edges absorb whatever is left over to reach the last block, and
that overshoot is cropped away after blending.
"""

from __future__ import annotations

import numbers
from dataclasses import dataclass
from typing import Iterator

from constants import BLEND_SIZE, INT64_MAX
from errors import ConfigurationError


@dataclass(frozen=True)
class Padding:
    left: int
    right: int
    top: int
    bottom: int


@dataclass(frozen=True)
class Tile:
    """One grid cell: where it reads input and where its output lands."""

    row: int
    col: int
    in_x: int
    in_y: int
    in_size: int
    out_x: int
    out_y: int
    out_size: int

    @property
    def center(self) -> tuple[float, float]:
        """Center of the input rectangle in padded input coordinates."""
        half = self.in_size / 2
        return self.in_x + half, self.in_y + half

    @property
    def pixels(self) -> int:
        return self.in_size * self.in_size


@dataclass(frozen=True)
class TileGrid:
    input_width: int
    input_height: int
    scale: int
    offset: int
    tile_size: int
    blend_size: int
    input_offset: int
    input_blend_size: int
    input_tile_step: int
    output_tile_step: int
    rows: int
    cols: int
    padding: Padding

    @property
    def grid(self) -> tuple[int, int]:
        return self.rows, self.cols

    @property
    def tiles_total(self) -> int:
        return self.rows * self.cols

    @property
    def output_tile_size(self) -> int:
        return self.tile_size * self.scale - self.offset * 2

    @property
    def padded_input_size(self) -> tuple[int, int]:
        """(height, width) of the padded source."""
        return (
            self.input_height + self.padding.top + self.padding.bottom,
            self.input_width + self.padding.left + self.padding.right,
        )

    @property
    def output_buffer_size(self) -> tuple[int, int]:
        """(height, width) of the accumulation buffer."""
        padded_h, padded_w = self.padded_input_size
        return padded_h * self.scale, padded_w * self.scale

    @property
    def output_size(self) -> tuple[int, int]:
        """(height, width) of the final, cropped image."""
        return self.input_height * self.scale, self.input_width * self.scale

    @property
    def crop_origin(self) -> int:
        """Buffer coordinate of the image's first output pixel on both axes.

        Zero whenever ``offset`` is a multiple of ``scale``.
        """
        return self.input_offset * self.scale - self.offset

    def tile(self, row: int, col: int) -> Tile:
        if not (0 <= row < self.rows and 0 <= col < self.cols):
            raise IndexError(f"Tile ({row}, {col}) outside {self.rows}x{self.cols} grid")
        return Tile(
            row=row,
            col=col,
            in_x=col * self.input_tile_step,
            in_y=row * self.input_tile_step,
            in_size=self.tile_size,
            out_x=col * self.output_tile_step,
            out_y=row * self.output_tile_step,
            out_size=self.output_tile_size,
        )

    def image_center(self, tile: Tile) -> tuple[float, float]:
        """Center of the tile's input rectangle in unpadded image coordinates."""
        center_x, center_y = tile.center
        return center_x - self.padding.left, center_y - self.padding.top

    def tiles(self) -> Iterator[Tile]:
        """All tiles in row-major order."""
        for row in range(self.rows):
            for col in range(self.cols):
                yield self.tile(row, col)


def _ceil_div(a: int, b: int) -> int:
    return -(-a // b)


def _check_int(name: str, value: object, minimum: int) -> int:
    if isinstance(value, bool) or not isinstance(value, numbers.Integral):
        raise ConfigurationError(f"{name} must be an integer, got {value!r}")
    value = int(value)
    if value < minimum:
        raise ConfigurationError(f"{name} must be >= {minimum}, got {value}")
    if value > INT64_MAX:
        raise ConfigurationError(f"{name} exceeds the 64-bit range: {value}")
    return value


def min_tile_size(scale: int, offset: int, blend_size: int = BLEND_SIZE) -> int:
    """Smallest tile size whose step between tiles is still positive."""
    return 2 * _ceil_div(offset, scale) + _ceil_div(blend_size, scale) + 1


def _count_blocks(span: int, tile_size: int, step: int) -> tuple[int, int]:
    """Fewest blocks whose coverage ``tile_size + (n - 1) * step`` reaches ``span``."""
    blocks = 1 + max(0, _ceil_div(span - tile_size, step))
    return blocks, (blocks - 1) * step + tile_size


def compute(
    input_w: int,
    input_h: int,
    scale: int,
    offset: int,
    tile_size: int,
    blend_size: int = BLEND_SIZE,
) -> TileGrid:
    """Compute the tile grid and padding for one image.

    Args:
        input_w: Input image width in pixels.
        input_h: Input image height in pixels.
        scale: Integer upscale factor of the model.
        offset: Output-space context the model discards per side.
        tile_size: Input-space tile edge length.
        blend_size: Output-space overlap margin between tiles.

    Returns:
        The ``TileGrid`` describing every tile of the render.

    Raises:
        ConfigurationError: If any value is out of range or the tile is
            too small to advance between blocks.
    """
    input_w = _check_int("input_w", input_w, 1)
    input_h = _check_int("input_h", input_h, 1)
    scale = _check_int("scale", scale, 1)
    offset = _check_int("offset", offset, 0)
    tile_size = _check_int("tile_size", tile_size, 1)
    blend_size = _check_int("blend_size", blend_size, 0)

    input_offset = _ceil_div(offset, scale)
    input_blend_size = _ceil_div(blend_size, scale)
    input_tile_step = tile_size - (input_offset * 2 + input_blend_size)

    if input_tile_step <= 0:
        raise ConfigurationError(
            f"tile_size {tile_size} is too small for scale={scale}, offset={offset}, "
            f"blend_size={blend_size}; minimum is {min_tile_size(scale, offset, blend_size)}"
        )
    if tile_size * scale - offset * 2 <= 0:
        raise ConfigurationError(
            f"offset {offset} consumes the whole {tile_size * scale}px tile output"
        )

    rows, covered_h = _count_blocks(input_h + input_offset * 2, tile_size, input_tile_step)
    cols, covered_w = _count_blocks(input_w + input_offset * 2, tile_size, input_tile_step)

    if covered_h * scale > INT64_MAX or covered_w * scale > INT64_MAX:
        raise ConfigurationError("Output buffer dimensions exceed the 64-bit range")

    padding = Padding(
        left=input_offset,
        right=covered_w - (input_w + input_offset),
        top=input_offset,
        bottom=covered_h - (input_h + input_offset),
    )

    return TileGrid(
        input_width=input_w,
        input_height=input_h,
        scale=scale,
        offset=offset,
        tile_size=tile_size,
        blend_size=blend_size,
        input_offset=input_offset,
        input_blend_size=input_blend_size,
        input_tile_step=input_tile_step,
        output_tile_step=input_tile_step * scale,
        rows=rows,
        cols=cols,
        padding=padding,
    )
