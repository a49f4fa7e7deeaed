"""Test configuration and fixtures."""

from __future__ import annotations

import tempfile
from pathlib import Path
from typing import Callable, Generator

import numpy as np
import pytest
from PIL import Image


class NearestEngine:
    """Stand-in upscaler: nearest-neighbour upscale, then trim ``offset`` per side.

    Its output lines up with the tile geometry exactly like a real model,
    so a full render reproduces a nearest-neighbour upscale of the input.
    ``hook`` runs before every call with the call index.
    """

    def __init__(
        self,
        scale: int,
        offset: int,
        hook: Callable[[int], None] | None = None,
    ) -> None:
        self.scale = scale
        self.offset = offset
        self.hook = hook
        self.calls: list[tuple[str, tuple[int, ...]]] = []

    def run_model(self, model_id: str, tensor: np.ndarray) -> np.ndarray:
        index = len(self.calls)
        self.calls.append((model_id, tuple(tensor.shape)))
        if self.hook is not None:
            self.hook(index)
        out = np.repeat(np.repeat(tensor, self.scale, axis=2), self.scale, axis=3)
        if self.offset:
            out = out[:, :, self.offset:-self.offset, self.offset:-self.offset]
        return np.ascontiguousarray(out, dtype=np.float32)


def nearest_upscale(rgba: np.ndarray, scale: int) -> np.ndarray:
    return np.repeat(np.repeat(rgba, scale, axis=0), scale, axis=1)


@pytest.fixture
def make_engine() -> Callable[..., NearestEngine]:
    """Factory for ``NearestEngine`` instances."""
    return NearestEngine


@pytest.fixture
def noise_rgba() -> np.ndarray:
    """An opaque 100x100 raster of random colors."""
    rng = np.random.default_rng(1234)
    rgba = rng.integers(0, 256, size=(100, 100, 4), dtype=np.uint8)
    rgba[..., 3] = 255
    return rgba


@pytest.fixture
def transparent_rgba() -> np.ndarray:
    """A 48x40 raster with random colors and a mix of alpha values."""
    rng = np.random.default_rng(99)
    rgba = rng.integers(0, 256, size=(40, 48, 4), dtype=np.uint8)
    rgba[:10, :, 3] = 0
    rgba[10:20, :, 3] = 128
    rgba[20:, :, 3] = 255
    return rgba


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def sample_png(temp_dir: Path) -> Path:
    """Create a sample PNG image with random pixels for testing."""
    img_path = temp_dir / "sample.png"
    rng = np.random.default_rng(7)
    pixels = rng.integers(0, 256, size=(30, 40, 3), dtype=np.uint8)
    Image.fromarray(pixels).save(img_path, "PNG")
    return img_path


@pytest.fixture
def sample_jpg(temp_dir: Path) -> Path:
    """Create a sample JPG image for testing."""
    img_path = temp_dir / "sample.jpg"
    img = Image.new("RGB", (100, 100), color="blue")
    img.save(img_path, "JPEG")
    return img_path


@pytest.fixture
def sample_png_rgba(temp_dir: Path) -> Path:
    """Create a PNG image with alpha channel."""
    img_path = temp_dir / "sample_rgba.png"
    img = Image.new("RGBA", (100, 100), color=(255, 0, 0, 128))
    img.save(img_path, "PNG")
    return img_path
