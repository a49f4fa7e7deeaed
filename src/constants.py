"""Shared constants for tiled rendering, model lookup, and format support.

All modules reference these constants rather than hard-coding values,
so changing a default (tile size, blend margin, model root) requires
updating only this file.
"""

# Supported image formats
SUPPORTED_FORMATS = {".png", ".jpg", ".jpeg", ".webp", ".bmp"}

# Output-space overlap margin between neighbouring tiles
BLEND_SIZE = 16

# Input-space tile edge before per-architecture adjustment
DEFAULT_TILE_SIZE = 64

TILE_SIZES = [64, 128, 256, 400, 640]

TTA_LEVELS = (0, 2, 4)

# Composite color for transparent pixels when alpha is not preserved
BACKGROUND_COLOR = 1.0

# RGBA8 -> float conversion and rounding used at the raster boundary
CHANNEL_MAX = 255.0
ROUNDING_BIAS = 0.49999

# Model files live under <root>/<arch>/<style>/<method>.onnx
DEFAULT_MODEL_DIR = "models"
MODEL_DIR_ENV = "SEAMTILE_MODEL_DIR"
UTILITY_SUBDIR = "utils"

# Utility model names under <root>/utils/
UTILITY_MODELS = (
    "pad",
    "tta_split",
    "tta_merge",
    "alpha_border_padding",
    "antialias",
    "create_seam_blending_filter",
)

# Geometry values must fit in a signed 64-bit integer
INT64_MAX = 2**63 - 1
