"""Low-level utility helpers used across the CLI and renderer.

Kept deliberately small: format detection, raster I/O and device
selection live here so that higher-level modules can import without
circular dependencies.
"""

from __future__ import annotations

from pathlib import Path

import numpy as np
import torch
from PIL import Image

from constants import SUPPORTED_FORMATS


def is_supported_format(file_path: Path) -> bool:
    """
    Check if the file format is supported.

    Args:
        file_path: Path to the image file.

    Returns:
        True if the format is supported, False otherwise.
    """
    return file_path.suffix.lower() in SUPPORTED_FORMATS


def get_image_format(file_path: Path) -> str:
    """
    Get the Pillow save format from file path.

    Args:
        file_path: Path to the image file.

    Returns:
        Format string (PNG, JPEG, WEBP or BMP). Unknown suffixes map to PNG.
    """
    suffix = file_path.suffix.lower()
    if suffix in {".jpg", ".jpeg"}:
        return "JPEG"
    if suffix == ".webp":
        return "WEBP"
    if suffix == ".bmp":
        return "BMP"
    return "PNG"


def load_rgba(file_path: Path) -> np.ndarray:
    """Read an image as an ``(H, W, 4)`` uint8 RGBA raster."""
    with Image.open(file_path) as img:
        return np.asarray(img.convert("RGBA"), dtype=np.uint8).copy()


def save_rgba(rgba: np.ndarray, file_path: Path) -> Path:
    """Write an RGBA raster, dropping alpha for formats that cannot hold it."""
    image_format = get_image_format(file_path)
    img = Image.fromarray(np.ascontiguousarray(rgba, dtype=np.uint8))
    if image_format in {"JPEG", "BMP"}:
        img = img.convert("RGB")
    file_path.parent.mkdir(parents=True, exist_ok=True)
    img.save(file_path, image_format)
    return file_path


def get_device() -> str:
    """Get the best available torch device for the utility transforms."""
    if torch.cuda.is_available():
        return "cuda"
    if hasattr(torch.backends, "mps") and torch.backends.mps.is_available():
        return "mps"
    return "cpu"
