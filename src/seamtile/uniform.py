"""Single-color tile detection.

A tile whose source pixels all share one exact RGBA value comes out of
any image-to-image upscaler as that same flat color, so the model call
can be skipped and the output tensors built directly.
"""

from __future__ import annotations

import numpy as np

from constants import BACKGROUND_COLOR


def detect(
    pixel_buffer: np.ndarray,
    include_alpha: bool,
    background: float = BACKGROUND_COLOR,
) -> tuple[float, float, float, float] | None:
    """Return the shared RGBA value of a planar buffer, or None.

    Args:
        pixel_buffer: ``(4, H, W)`` (or ``[1, 4, H, W]``) floats in ``[0, 1]``.
        include_alpha: Keep the alpha value. When False the color is
            composited over ``background`` and alpha is reported as 1.0.
        background: Gray level used for compositing.

    Returns:
        ``(r, g, b, a)`` if every pixel matches bit-exactly, else None.
        A buffer with no pixels returns None.
    """
    buffer = np.asarray(pixel_buffer)
    if buffer.ndim == 4:
        buffer = buffer[0]
    if buffer.ndim != 3 or buffer.shape[0] != 4:
        raise ValueError(f"Expected a (4, H, W) buffer, got shape {buffer.shape}")
    if buffer.shape[1] == 0 or buffer.shape[2] == 0:
        return None

    first = buffer[:, :1, :1]
    if not (buffer == first).all():
        return None

    r, g, b, a = (float(v) for v in first.reshape(4))
    if include_alpha:
        return r, g, b, a
    return (
        a * r + (1.0 - a) * background,
        a * g + (1.0 - a) * background,
        a * b + (1.0 - a) * background,
        1.0,
    )


def solid_tensors(color: tuple[float, float, float, float], size: int) -> tuple[np.ndarray, np.ndarray]:
    """Build ``([1, 3, size, size] rgb, [1, 3, size, size] alpha3)`` of one color."""
    if size <= 0:
        raise ValueError(f"size must be positive, got {size}")
    rgb = np.empty((1, 3, size, size), dtype=np.float32)
    for channel in range(3):
        rgb[0, channel] = color[channel]
    alpha3 = np.full((1, 3, size, size), color[3], dtype=np.float32)
    return rgb, alpha3
