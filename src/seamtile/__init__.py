"""Tiled neural upscaling with seam blending.

The renderer cuts an image into overlapping tiles, runs each through an
image-to-image model, and blends the overlaps back into one seamless
result. ``JobController`` drives a render; everything it needs from the
outside comes in through ``RenderServices``.
"""

from __future__ import annotations

from seamtile.blending import SeamBlender
from seamtile.convert import has_alpha_channel, to_planar, to_rgba8
from seamtile.dispatcher import TileDispatcher
from seamtile.geometry import Padding, Tile, TileGrid, compute, min_tile_size
from seamtile.job import (
    JobController,
    JobOutcome,
    JobResult,
    JobState,
    LiveParameters,
    RenderParams,
    RenderServices,
)
from seamtile.pipeline import InferenceEngine, PreparedSource, TilePipeline, prepare_source
from seamtile.transforms import TorchTransforms, UtilityTransforms

__all__ = [
    # Geometry
    "Padding",
    "Tile",
    "TileGrid",
    "compute",
    "min_tile_size",
    # Rendering
    "SeamBlender",
    "TileDispatcher",
    "TilePipeline",
    "PreparedSource",
    "prepare_source",
    # Job control
    "JobController",
    "JobOutcome",
    "JobResult",
    "JobState",
    "LiveParameters",
    "RenderParams",
    "RenderServices",
    # Collaborators
    "InferenceEngine",
    "UtilityTransforms",
    "TorchTransforms",
    # Rasters
    "has_alpha_channel",
    "to_planar",
    "to_rgba8",
]
