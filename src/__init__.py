"""seamtile — tiled neural image upscaling with seam blending.

This package exposes two layers:

1. **Renderer** (``seamtile`` subpackage): tile geometry, dispatch,
   seam blending, the uniform-tile shortcut, TTA folding and the job
   controller with pause/resume/stop.
2. **Model runtime** (optional ``[onnx]`` extra): onnxruntime sessions
   for the upscaling models and the exported utility transforms.
"""

__version__ = "0.1.0"

from errors import ConfigurationError, InferenceError, SeamtileError, TileStateError
from model_profiles import get_alpha_model_config, get_model_config, list_model_names

from seamtile import (
    JobController,
    RenderParams,
    RenderServices,
    TorchTransforms,
    compute,
)

# ONNX runtime (sessions need the optional onnx extra)
from seamtile.onnx_backend import OnnxInferenceEngine, OnnxTransforms, is_onnx_available

__all__ = [
    # Errors
    "SeamtileError",
    "ConfigurationError",
    "InferenceError",
    "TileStateError",
    # Models
    "get_model_config",
    "get_alpha_model_config",
    "list_model_names",
    # Rendering
    "JobController",
    "RenderParams",
    "RenderServices",
    "TorchTransforms",
    "compute",
    # ONNX runtime (optional)
    "OnnxInferenceEngine",
    "OnnxTransforms",
    "is_onnx_available",
]
