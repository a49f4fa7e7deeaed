"""Command-line interface for seamtile.

Provides the ``seamtile`` entry point:

- ``seamtile input.png -o output.png``: tiled upscale with seam blending
- ``seamtile --list-models``: print the available model names

The progress animation lives in the separate ``progress`` module to
keep this file focused on argument parsing and running the job.
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from constants import DEFAULT_TILE_SIZE, SUPPORTED_FORMATS, TILE_SIZES, TTA_LEVELS, UTILITY_SUBDIR
from errors import ConfigurationError, SeamtileError
from model_profiles import (
    DEFAULT_MODEL_NAME,
    NOISE_LEVELS,
    get_alpha_model_config,
    get_model_config,
    list_model_names,
)
from utils import is_supported_format


# ── Argument parser construction ────────────────────────────────────

def _build_parser() -> argparse.ArgumentParser:
    """Construct and return the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="seamtile",
        description="Upscale images with tiled neural inference and seam blending.",
        epilog="Example: seamtile photo.png -o photo_2x.png --scale 2 --noise 1",
    )

    parser.add_argument(
        "source", type=Path, nargs="?",
        help=f"Input image file (formats: {', '.join(sorted(SUPPORTED_FORMATS))})",
    )
    parser.add_argument(
        "-o", "--output", type=Path,
        help="Output file path (default: <source>_<scale>x.png next to the source)",
    )
    parser.add_argument(
        "-m", "--model", type=str, default=DEFAULT_MODEL_NAME,
        help=f"Model as arch.style. Default: {DEFAULT_MODEL_NAME}",
    )
    parser.add_argument(
        "-s", "--scale", type=int, default=2, choices=[1, 2, 4],
        help="Upscale factor. Default: 2",
    )
    parser.add_argument(
        "-n", "--noise", type=int, default=-1, choices=list(NOISE_LEVELS),
        help="Denoise level, -1 for none. Default: -1",
    )
    parser.add_argument(
        "-t", "--tile-size", type=int, default=DEFAULT_TILE_SIZE,
        help=(
            "Requested tile size before model adjustment "
            f"(common: {', '.join(str(size) for size in TILE_SIZES)}). Default: {DEFAULT_TILE_SIZE}"
        ),
    )
    parser.add_argument(
        "--tta", type=int, default=0, choices=list(TTA_LEVELS),
        help="Test-time augmentation level. Default: 0",
    )
    parser.add_argument(
        "--no-alpha", action="store_true",
        help="Flatten transparency onto white instead of upscaling it",
    )
    parser.add_argument(
        "--antialias", action="store_true",
        help="Soften aliasing in the input before it reaches the model",
    )
    parser.add_argument(
        "--random", action="store_true",
        help="Render tiles in random order",
    )
    parser.add_argument(
        "--seed", type=int, default=None,
        help="Seed for --random tile order",
    )
    parser.add_argument(
        "--model-dir", type=Path, default=None,
        help="Model root directory. Falls back to SEAMTILE_MODEL_DIR, then ./models",
    )
    parser.add_argument(
        "--transforms", type=str, default="torch", choices=["torch", "onnx"],
        help="Backend for padding, TTA and blend filters. Default: torch",
    )
    parser.add_argument(
        "--device", type=str, default="auto",
        choices=["auto", "cpu", "mps", "cuda"],
        help="Device for torch transforms and ONNX sessions. Default: auto",
    )
    parser.add_argument(
        "--list-models", action="store_true",
        help="List available model names and exit",
    )
    parser.add_argument(
        "-v", "--verbose", action="store_true",
        help="Log job details instead of showing the progress animation",
    )

    return parser


def _default_output(source: Path, scale: int) -> Path:
    return source.with_name(f"{source.stem}_{scale}x.png")


# ── Command handler ─────────────────────────────────────────────────

def _handle_upscale(args: argparse.Namespace) -> int:
    """Load the image, run one job, and save the result."""
    import random

    from seamtile import (
        JobController,
        JobOutcome,
        LiveParameters,
        RenderParams,
        RenderServices,
        TorchTransforms,
        has_alpha_channel,
    )
    from seamtile.onnx_backend import (
        OnnxInferenceEngine,
        OnnxTransforms,
        SessionCache,
        get_providers,
        is_onnx_available,
    )
    from utils import get_device, load_rgba, save_rgba

    if not is_onnx_available():
        print("Error: Running models requires onnxruntime.", file=sys.stderr)
        print("Install it with: pip install 'seamtile[onnx]'", file=sys.stderr)
        return 1

    output_path = args.output or _default_output(args.source, args.scale)
    device = get_device() if args.device == "auto" else args.device

    try:
        config = get_model_config(args.model, args.scale, args.noise, args.model_dir)
        image = load_rgba(args.source)
        alpha = not args.no_alpha and has_alpha_channel(image)
        alpha_config = get_alpha_model_config(args.model, args.scale, args.model_dir) if alpha else None
        tile_size = config.calc_tile_size(args.tile_size)

        cache = SessionCache(get_providers(device))
        transforms = (
            OnnxTransforms(args.model_dir, cache)
            if args.transforms == "onnx"
            else TorchTransforms(device)
        )
        missing = transforms.missing() if args.transforms == "onnx" else []
        if missing:
            raise ConfigurationError(
                f"Missing utility models in {transforms.root / UTILITY_SUBDIR}: {', '.join(missing)}"
            )
        services = RenderServices(engine=OnnxInferenceEngine(cache), transforms=transforms)
        params = RenderParams(
            image=image,
            model_id=config.model_id,
            scale=config.scale,
            offset=config.offset,
            tile_size=tile_size,
            alpha=alpha,
            alpha_model_id=alpha_config.model_id if alpha_config else None,
            tta_level=args.tta,
            antialias=args.antialias,
            model_name=f"{config.arch}.{config.style} {config.method}",
        )
    except (SeamtileError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    progress_state: dict[str, str] = {"message": "Starting upscale..."}

    def set_progress(message: str) -> None:
        progress_state["message"] = message

    from progress import make_report_handler, run_with_progress

    controller = JobController(
        services,
        report_callback=make_report_handler(set_progress),
        live=LiveParameters(tile_random=args.random),
        rng=random.Random(args.seed),
    )

    try:
        if args.verbose:
            logging.basicConfig(level=logging.INFO)
            print(f"Source: {args.source}")
            print(f"Output: {output_path}")
            print(f"Model: {config.path}")
            if alpha_config:
                print(f"Alpha model: {alpha_config.path}")
            print(f"Scale: {config.scale} (offset {config.offset})")
            print(f"Tile size: {tile_size} (requested {args.tile_size})")
            print(f"TTA level: {args.tta}")
            print(f"Transforms: {args.transforms} on {device}")
            print()
            result = controller.start(params)
        else:
            result = run_with_progress(
                lambda: controller.start(params),
                progress_state,
                on_interrupt=controller.stop,
            )
    except KeyboardInterrupt:
        print("Interrupted.", file=sys.stderr)
        return 130
    except SeamtileError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    if result.outcome is JobOutcome.COMPLETED:
        save_rgba(result.image, output_path)
        print(f"Successfully upscaled {args.source} to: {output_path}")
        return 0

    if result.image is not None and result.tiles_completed > 0:
        save_rgba(result.image, output_path)
        print(
            f"Partial result ({result.tiles_completed}/{result.tiles_total} tiles) "
            f"saved to: {output_path}",
            file=sys.stderr,
        )
    if result.outcome is JobOutcome.ERRORED:
        print(f"Error: {result.error}", file=sys.stderr)
    else:
        print("Stopped before all tiles were rendered.", file=sys.stderr)
    return 1


# ── Entry point ─────────────────────────────────────────────────────

def main(argv: list[str] | None = None) -> int:
    """Parse arguments and run the requested command."""
    parser = _build_parser()
    argv = sys.argv[1:] if argv is None else argv

    if not argv:
        parser.print_help()
        return 0

    args = parser.parse_args(argv)

    if args.list_models:
        for name in list_model_names():
            print(name)
        return 0

    if args.source is None:
        print("Error: An input image is required.", file=sys.stderr)
        print("Usage: seamtile input.png [-o output.png] [--scale 2]", file=sys.stderr)
        return 1
    if not args.source.exists():
        print(f"Error: Source file '{args.source}' does not exist.", file=sys.stderr)
        return 1
    if not is_supported_format(args.source):
        print(
            f"Warning: Source file '{args.source}' may not be a supported format "
            f"({', '.join(sorted(SUPPORTED_FORMATS))}).",
            file=sys.stderr,
        )

    return _handle_upscale(args)


if __name__ == "__main__":
    sys.exit(main())
