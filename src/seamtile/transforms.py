"""Utility transforms consumed by the tiled renderer.

The renderer only depends on the ``UtilityTransforms`` protocol. This
module provides ``TorchTransforms``, an in-process implementation built
on torch; ``seamtile.onnx_backend.OnnxTransforms`` provides the same
surface backed by exported utility models.

All tensors crossing this boundary are planar ``float32`` numpy arrays
shaped ``[batch, channels, height, width]``.
"""

from __future__ import annotations

import logging
from typing import Protocol

import numpy as np
import torch
import torch.nn.functional as F

from errors import ConfigurationError

logger = logging.getLogger(__name__)


class UtilityTransforms(Protocol):
    def pad(self, tensor: np.ndarray, left: int, right: int, top: int, bottom: int) -> np.ndarray: ...

    def tta_split(self, tensor: np.ndarray, level: int) -> np.ndarray: ...

    def tta_merge(self, tensor: np.ndarray, level: int) -> np.ndarray: ...

    def alpha_border_pad(self, rgb: np.ndarray, alpha: np.ndarray, offset: int) -> np.ndarray: ...

    def antialias(self, tensor: np.ndarray) -> np.ndarray: ...

    def create_blend_filter(
        self, scale: int, offset: int, tile_size: int, blend_size: int
    ) -> np.ndarray: ...


def _to_torch(tensor: np.ndarray) -> torch.Tensor:
    return torch.from_numpy(np.ascontiguousarray(tensor, dtype=np.float32))


def _to_numpy(tensor: torch.Tensor) -> np.ndarray:
    return tensor.detach().cpu().contiguous().numpy()


# Every view is its own inverse, so merge reapplies the same op
_TTA_OPS = {
    2: (lambda x: x, lambda x: x.flip(-1)),
    4: (
        lambda x: x,
        lambda x: x.flip(-1),
        lambda x: x.flip(-2),
        lambda x: x.flip(-1).flip(-2),
    ),
}


def _tta_ops(level: int) -> tuple:
    if level not in _TTA_OPS:
        raise ConfigurationError(f"TTA level must be one of 0, 2, 4, got {level}")
    return _TTA_OPS[level]


def blend_filter(scale: int, offset: int, tile_size: int, blend_size: int) -> np.ndarray:
    """Seam blending weights for one tile output.

    The weight is 1.0 in the interior and drops linearly over the outer
    ``blend_size`` pixels to ``1 / (blend_size + 1)`` on the outermost
    ring, so it never reaches zero.

    Returns:
        ``(3, S, S)`` array where ``S = tile_size * scale - 2 * offset``.
    """
    size = tile_size * scale - offset * 2
    if size <= 0:
        raise ConfigurationError(f"Tile output size must be positive, got {size}")
    idx = np.arange(size)
    edge = np.minimum(idx, size - 1 - idx)
    dist = np.minimum(edge[:, None], edge[None, :])
    weights = np.minimum(1.0, (dist + 1) / (blend_size + 1)).astype(np.float32)
    return np.repeat(weights[None], 3, axis=0)


class TorchTransforms:
    """In-process utility transforms.

    Args:
        device: Torch device the transforms run on.
    """

    def __init__(self, device: str = "cpu") -> None:
        self.device = device

    def pad(self, tensor: np.ndarray, left: int, right: int, top: int, bottom: int) -> np.ndarray:
        """Replicate-pad the spatial dimensions."""
        if min(left, right, top, bottom) < 0:
            raise ConfigurationError("Padding amounts must be non-negative")
        with torch.inference_mode():
            x = _to_torch(tensor).to(self.device)
            y = F.pad(x, (left, right, top, bottom), mode="replicate")
            return _to_numpy(y)

    def tta_split(self, tensor: np.ndarray, level: int) -> np.ndarray:
        """Expand one image into a batch of flipped views."""
        if level == 0:
            return tensor
        ops = _tta_ops(level)
        with torch.inference_mode():
            x = _to_torch(tensor).to(self.device)
            return _to_numpy(torch.cat([op(x) for op in ops], dim=0))

    def tta_merge(self, tensor: np.ndarray, level: int) -> np.ndarray:
        """Undo each view's flip and average the batch back to one image."""
        if level == 0:
            return tensor
        ops = _tta_ops(level)
        with torch.inference_mode():
            x = _to_torch(tensor).to(self.device)
            if x.shape[0] != level:
                raise ConfigurationError(
                    f"TTA merge expected a batch of {level}, got {x.shape[0]}"
                )
            views = x.split(1, dim=0)
            restored = torch.cat([op(view) for op, view in zip(ops, views)], dim=0)
            return _to_numpy(restored.mean(dim=0, keepdim=True))

    def alpha_border_pad(self, rgb: np.ndarray, alpha: np.ndarray, offset: int) -> np.ndarray:
        """Extrapolate colors from opaque pixels into transparent ones.

        Each of ``offset`` passes fills transparent pixels that touch the
        current opaque region with the mean of their opaque 3x3
        neighbours, then grows the region. Pixels farther than ``offset``
        from any opaque pixel keep their original color.
        """
        with torch.inference_mode():
            color = _to_torch(rgb).to(self.device).clone()
            mask = (_to_torch(alpha).to(self.device) > 0).to(color.dtype)
            kernel = torch.ones((1, 1, 3, 3), dtype=color.dtype, device=self.device)
            channels = color.shape[1]
            for _ in range(offset):
                if bool(mask.all()):
                    break
                count = F.conv2d(mask, kernel, padding=1)
                total = F.conv2d(
                    (color * mask).reshape(-1, 1, *color.shape[-2:]), kernel, padding=1
                ).reshape(color.shape)
                grow = (count > 0) & (mask == 0)
                if not bool(grow.any()):
                    break
                mean = total / count.clamp(min=1.0)
                color = torch.where(grow.expand(-1, channels, -1, -1), mean, color)
                mask = torch.maximum(mask, grow.to(mask.dtype))
            return _to_numpy(color)

    def antialias(self, tensor: np.ndarray) -> np.ndarray:
        """Soften aliasing by a bicubic 2x round trip."""
        with torch.inference_mode():
            x = _to_torch(tensor).to(self.device)
            height, width = x.shape[-2:]
            up = F.interpolate(x, scale_factor=2, mode="bicubic", align_corners=False)
            down = F.interpolate(
                up, size=(height, width), mode="bicubic", align_corners=False, antialias=True
            )
            return _to_numpy(down.clamp(0.0, 1.0))

    def create_blend_filter(
        self, scale: int, offset: int, tile_size: int, blend_size: int
    ) -> np.ndarray:
        return blend_filter(scale, offset, tile_size, blend_size)
