"""Test-time augmentation folding around one model call."""

from __future__ import annotations

import numpy as np

from constants import TTA_LEVELS
from errors import ConfigurationError
from seamtile.transforms import UtilityTransforms


def check_level(level: int) -> int:
    if isinstance(level, bool) or level not in TTA_LEVELS:
        raise ConfigurationError(f"TTA level must be one of {TTA_LEVELS}, got {level!r}")
    return level


def split(transforms: UtilityTransforms, tensor: np.ndarray, level: int) -> np.ndarray:
    """Expand ``tensor`` into the augmented batch for ``level``; identity at 0."""
    if check_level(level) == 0:
        return tensor
    return transforms.tta_split(tensor, level)


def merge(transforms: UtilityTransforms, batch: np.ndarray, level: int) -> np.ndarray:
    """Fold an augmented batch back into one image; identity at 0."""
    if check_level(level) == 0:
        return batch
    return transforms.tta_merge(batch, level)


def batch_size(level: int) -> int:
    return max(1, check_level(level))
