"""Conversions between RGBA8 rasters and planar float tensors.

Images enter and leave the renderer as ``(H, W, 4)`` uint8 arrays; every
stage in between works on planar ``[batch, channels, H, W]`` float32
tensors so that each channel plane can be sliced independently.
"""

from __future__ import annotations

import numpy as np

from constants import BACKGROUND_COLOR, CHANNEL_MAX, ROUNDING_BIAS


def _check_rgba(rgba: np.ndarray) -> None:
    if rgba.ndim != 3 or rgba.shape[2] != 4:
        raise ValueError(f"Expected an (H, W, 4) RGBA raster, got shape {rgba.shape}")


def has_alpha_channel(rgba: np.ndarray) -> bool:
    """True if any pixel is not fully opaque."""
    _check_rgba(rgba)
    return bool((rgba[..., 3] != 255).any())


def to_planar(rgba: np.ndarray) -> tuple[np.ndarray, np.ndarray]:
    """Split an RGBA8 raster into ``[1, 3, H, W]`` color and ``[1, 1, H, W]`` alpha."""
    _check_rgba(rgba)
    planes = np.transpose(rgba, (2, 0, 1)).astype(np.float32) / CHANNEL_MAX
    return np.ascontiguousarray(planes[None, :3]), np.ascontiguousarray(planes[None, 3:])


def composite(rgb: np.ndarray, alpha: np.ndarray, background: float = BACKGROUND_COLOR) -> np.ndarray:
    """Flatten color over a uniform background using its alpha."""
    return (alpha * rgb + (1.0 - alpha) * background).astype(np.float32)


def stretch_alpha(alpha: np.ndarray) -> np.ndarray:
    """Repeat a 1-channel alpha into 3 channels so a color model can run on it."""
    return np.ascontiguousarray(np.repeat(alpha, 3, axis=1))


def squeeze_alpha(alpha3: np.ndarray) -> np.ndarray:
    """Average a stretched alpha back down to one channel."""
    return alpha3.mean(axis=1, keepdims=True, dtype=np.float32)


def planar_rgba(rgb: np.ndarray, alpha: np.ndarray | None) -> np.ndarray:
    """Stack color and (1- or 3-channel) alpha into one ``(4, H, W)`` buffer."""
    color = rgb[0]
    if alpha is None:
        opaque = np.ones((1, *color.shape[1:]), dtype=color.dtype)
        return np.concatenate([color, opaque], axis=0)
    return np.concatenate([color, alpha[0, :1]], axis=0)


def to_rgba8(rgb: np.ndarray, alpha3: np.ndarray | None = None) -> np.ndarray:
    """Quantize planar color (and optional stretched alpha) to an RGBA8 raster.

    Args:
        rgb: ``(3, H, W)`` or ``[1, 3, H, W]`` color in ``[0, 1]``.
        alpha3: Matching stretched alpha, or None for an opaque result.

    Returns:
        ``(H, W, 4)`` uint8 raster.
    """
    color = rgb[0] if rgb.ndim == 4 else rgb
    height, width = color.shape[1:]
    out = np.empty((height, width, 4), dtype=np.uint8)
    out[..., :3] = _quantize(np.transpose(color, (1, 2, 0)))
    if alpha3 is None:
        out[..., 3] = 255
    else:
        alpha = squeeze_alpha(alpha3 if alpha3.ndim == 4 else alpha3[None])
        out[..., 3] = _quantize(alpha[0, 0])
    return out


def _quantize(values: np.ndarray) -> np.ndarray:
    return np.clip(values * CHANNEL_MAX + ROUNDING_BIAS, 0, 255).astype(np.uint8)


def batch(*tensors: np.ndarray) -> np.ndarray:
    """Concatenate single images into one batch."""
    for tensor in tensors:
        if tensor.shape[0] != 1:
            raise ValueError("Tensor is already batched")
    return np.concatenate(tensors, axis=0)


def unbatch(tensor: np.ndarray) -> list[np.ndarray]:
    return [tensor[i:i + 1] for i in range(tensor.shape[0])]
