"""Model architecture registry, method naming, and model file lookup.

Pure configuration and lookup functions with no ML dependencies.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from constants import DEFAULT_MODEL_DIR, MODEL_DIR_ENV, UTILITY_SUBDIR
from errors import ConfigurationError

DEFAULT_MODEL_NAME = "swin_unet.art"

NOISE_LEVELS = (-1, 0, 1, 2, 3)

# Output-space context (pixels discarded per side) for each scale
ARCHITECTURES: dict[str, dict[str, tuple]] = {
    "swin_unet": {
        "styles": ("art", "photo"),
        "offsets": ((1, 8), (2, 16), (4, 32)),
    },
    "cunet": {
        "styles": ("art",),
        "offsets": ((1, 28), (2, 36)),
    },
}


@dataclass(frozen=True)
class ModelConfig:
    """One concrete model file and the geometry it imposes."""

    arch: str
    style: str
    method: str
    scale: int
    offset: int
    path: Path

    @property
    def model_id(self) -> str:
        return str(self.path)

    def calc_tile_size(self, tile_size: int) -> int:
        return calc_tile_size(self.arch, tile_size, self.offset)


def parse_model_name(name: str) -> tuple[str, str]:
    """Split ``arch.style`` into its parts; a bare arch means its first style."""
    normalized = name.strip().lower()
    arch, _, style = normalized.partition(".")
    if arch not in ARCHITECTURES:
        raise ConfigurationError(
            f"Unknown model '{name}'. Use one of: {', '.join(list_model_names())}."
        )
    styles = ARCHITECTURES[arch]["styles"]
    style = style or styles[0]
    if style not in styles:
        raise ConfigurationError(
            f"Model '{arch}' has no style '{style}'. Use one of: {', '.join(styles)}."
        )
    return arch, style


def list_model_names() -> list[str]:
    return [f"{arch}.{style}" for arch, info in ARCHITECTURES.items() for style in info["styles"]]


def get_offset(arch: str, scale: int) -> int:
    offsets = dict(ARCHITECTURES[arch]["offsets"])
    if scale not in offsets:
        supported = ", ".join(str(s) for s in offsets)
        raise ConfigurationError(
            f"Model '{arch}' does not support scale {scale}. Use one of: {supported}."
        )
    return offsets[scale]


def get_method_name(scale: int, noise: int) -> str:
    """Map scale and denoise level to the model file stem.

    Args:
        scale: Upscale factor.
        noise: Denoise level, -1 for none.

    Returns:
        ``scale2x``, ``noise1``, ``noise0_scale4x`` and so on.
    """
    if noise not in NOISE_LEVELS:
        raise ConfigurationError(f"Noise level must be one of {NOISE_LEVELS}, got {noise}")
    if scale == 1:
        if noise == -1:
            raise ConfigurationError("Scale 1 requires a noise reduction level (0-3)")
        return f"noise{noise}"
    if noise == -1:
        return f"scale{scale}x"
    return f"noise{noise}_scale{scale}x"


def get_alpha_method_name(scale: int) -> str:
    """Alpha is upscaled with the plain scale model, never a denoise model."""
    return f"scale{scale}x"


def calc_tile_size(arch: str, tile_size: int, offset: int) -> int:
    """Adjust a requested tile size to one the architecture accepts."""
    if arch == "swin_unet":
        while (tile_size - 16) % 12 != 0 or (tile_size - 16) % 16 != 0:
            tile_size += 1
        return tile_size
    if arch == "cunet":
        tile_size = tile_size + (offset - 16) * 2
        return tile_size - tile_size % 4
    raise ConfigurationError(f"Unknown architecture '{arch}'")


def resolve_model_dir(model_dir: str | Path | None = None) -> Path:
    """Explicit directory, then ``SEAMTILE_MODEL_DIR``, then ``./models``."""
    if model_dir is not None:
        return Path(model_dir)
    return Path(os.environ.get(MODEL_DIR_ENV, DEFAULT_MODEL_DIR))


def get_model_path(root: Path, arch: str, style: str, method: str) -> Path:
    return root / arch / style / f"{method}.onnx"


def get_utility_path(root: Path, name: str) -> Path:
    return root / UTILITY_SUBDIR / f"{name}.onnx"


def get_model_config(
    name: str,
    scale: int,
    noise: int = -1,
    model_dir: str | Path | None = None,
) -> ModelConfig:
    """Resolve a model name, scale and noise level to a ``ModelConfig``."""
    arch, style = parse_model_name(name)
    offset = get_offset(arch, scale)
    method = get_method_name(scale, noise)
    root = resolve_model_dir(model_dir)
    return ModelConfig(
        arch=arch,
        style=style,
        method=method,
        scale=scale,
        offset=offset,
        path=get_model_path(root, arch, style, method),
    )


def get_alpha_model_config(
    name: str,
    scale: int,
    model_dir: str | Path | None = None,
) -> ModelConfig:
    """Config of the scale-only model used for the stretched alpha stream."""
    arch, style = parse_model_name(name)
    method = get_alpha_method_name(scale)
    root = resolve_model_dir(model_dir)
    return ModelConfig(
        arch=arch,
        style=style,
        method=method,
        scale=scale,
        offset=get_offset(arch, scale),
        path=get_model_path(root, arch, style, method),
    )
