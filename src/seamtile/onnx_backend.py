"""onnxruntime-backed inference engine and utility transforms.

Upscaling models take ``x`` and return ``y``. The utility models under
``<model root>/utils/`` take their integer parameters as 0-d int64
tensors. Sessions are cached per model path for the life of the process
and shared by every job.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

import numpy as np

from constants import BLEND_SIZE, UTILITY_MODELS
from errors import ConfigurationError, InferenceError
from model_profiles import get_utility_path, resolve_model_dir

logger = logging.getLogger(__name__)

# Check for optional dependencies
_HAS_ONNXRUNTIME = False

try:
    import onnxruntime as ort

    _HAS_ONNXRUNTIME = True
except ImportError:
    ort = None  # type: ignore


def is_onnx_available() -> bool:
    """Check if the onnxruntime backend can be used."""
    return _HAS_ONNXRUNTIME


def get_providers(device: str = "cpu") -> list[str]:
    if device == "cuda":
        return ["CUDAExecutionProvider", "CPUExecutionProvider"]
    return ["CPUExecutionProvider"]


def _int64(value: int) -> np.ndarray:
    return np.array(value, dtype=np.int64)


class SessionCache:
    """Process-wide ``InferenceSession`` cache keyed by model path."""

    def __init__(self, providers: list[str] | None = None) -> None:
        if not _HAS_ONNXRUNTIME:
            raise ImportError(
                "onnxruntime is required for ONNX models. Install with: pip install 'seamtile[onnx]'"
            )
        self.providers = providers or get_providers()
        self._sessions: dict[str, "ort.InferenceSession"] = {}
        self._lock = threading.Lock()

    def get(self, path: str | Path) -> "ort.InferenceSession":
        key = str(path)
        with self._lock:
            session = self._sessions.get(key)
            if session is None:
                if not Path(key).is_file():
                    raise InferenceError(f"Model file not found: {key}", model_id=key)
                logger.info("Loading model %s", key)
                session = ort.InferenceSession(key, providers=self.providers)
                self._sessions[key] = session
            return session

    def __contains__(self, path: object) -> bool:
        return str(path) in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)

    def clear(self) -> None:
        with self._lock:
            self._sessions.clear()


_shared_cache: SessionCache | None = None


def shared_session_cache() -> SessionCache:
    global _shared_cache
    if _shared_cache is None:
        _shared_cache = SessionCache()
    return _shared_cache


def _run(cache: SessionCache, path: str | Path, inputs: dict[str, np.ndarray]) -> np.ndarray:
    session = cache.get(path)
    try:
        return session.run(["y"], inputs)[0]
    except Exception as error:
        raise InferenceError(f"{Path(path).name} failed: {error}", model_id=str(path)) from error


class OnnxInferenceEngine:
    """Runs upscaling models; ``model_id`` is the model file path."""

    def __init__(self, cache: SessionCache | None = None) -> None:
        self.cache = cache or shared_session_cache()

    def run_model(self, model_id: str, tensor: np.ndarray) -> np.ndarray:
        return _run(self.cache, model_id, {"x": np.ascontiguousarray(tensor, dtype=np.float32)})


class OnnxTransforms:
    """Utility transforms backed by the exported ``utils/*.onnx`` models.

    Args:
        model_dir: Model root; see ``model_profiles.resolve_model_dir``.
        cache: Session cache, the shared one by default.
    """

    def __init__(self, model_dir: str | Path | None = None, cache: SessionCache | None = None) -> None:
        self.root = resolve_model_dir(model_dir)
        self.cache = cache or shared_session_cache()

    def _path(self, name: str) -> Path:
        if name not in UTILITY_MODELS:
            raise ConfigurationError(f"Unknown utility model '{name}'")
        return get_utility_path(self.root, name)

    def missing(self) -> list[str]:
        """Names of utility models whose files are not under the model root."""
        return [name for name in UTILITY_MODELS if not self._path(name).is_file()]

    def pad(self, tensor: np.ndarray, left: int, right: int, top: int, bottom: int) -> np.ndarray:
        return _run(self.cache, self._path("pad"), {
            "x": np.ascontiguousarray(tensor, dtype=np.float32),
            "left": _int64(left),
            "right": _int64(right),
            "top": _int64(top),
            "bottom": _int64(bottom),
        })

    def tta_split(self, tensor: np.ndarray, level: int) -> np.ndarray:
        return _run(self.cache, self._path("tta_split"), {
            "x": np.ascontiguousarray(tensor, dtype=np.float32),
            "tta_level": _int64(level),
        })

    def tta_merge(self, tensor: np.ndarray, level: int) -> np.ndarray:
        return _run(self.cache, self._path("tta_merge"), {
            "x": np.ascontiguousarray(tensor, dtype=np.float32),
            "tta_level": _int64(level),
        })

    def alpha_border_pad(self, rgb: np.ndarray, alpha: np.ndarray, offset: int) -> np.ndarray:
        # This model works on unbatched (C, H, W) tensors
        out = _run(self.cache, self._path("alpha_border_padding"), {
            "rgb": np.ascontiguousarray(rgb[0], dtype=np.float32),
            "alpha": np.ascontiguousarray(alpha[0], dtype=np.float32),
            "offset": _int64(offset),
        })
        return out[None]

    def antialias(self, tensor: np.ndarray) -> np.ndarray:
        return _run(self.cache, self._path("antialias"), {
            "x": np.ascontiguousarray(tensor, dtype=np.float32),
        })

    def create_blend_filter(self, scale: int, offset: int, tile_size: int, blend_size: int) -> np.ndarray:
        if blend_size != BLEND_SIZE:
            raise ConfigurationError(
                f"The exported blend filter model only supports blend_size={BLEND_SIZE}"
            )
        return _run(self.cache, self._path("create_seam_blending_filter"), {
            "scale": _int64(scale),
            "offset": _int64(offset),
            "tile_size": _int64(tile_size),
        })
