"""Command-line interface for rastertrace."""

import argparse
import logging
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

from rastertrace.pipeline import TracePipeline
from rastertrace.presets import PRESETS
from rastertrace.types import TraceConfig, VectorizationError

IMAGE_EXTENSIONS = {'.jpg', '.jpeg', '.png', '.bmp', '.gif', '.tiff', '.webp'}


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI."""
    parser = argparse.ArgumentParser(
        prog="rastertrace",
        description="Trace raster images into layered SVG paths",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rastertrace input.png -o output.svg
  rastertrace input.png --preset posterized2 --scale 2
  rastertrace photos/ -o svgs/ --colors 8 --parallel
        """,
    )

    parser.add_argument("input", help="Input image file or folder of images")

    parser.add_argument(
        "-o",
        "--output",
        default=None,
        help="Output SVG file, or folder when INPUT is a folder "
             "(default: next to the input with .svg extension)",
    )

    parser.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        default=None,
        help="Named option preset; explicit flags override it",
    )

    parser.add_argument(
        "--colors",
        "-c",
        type=int,
        default=None,
        help="Maximum number of palette colors (default: 16)",
    )

    parser.add_argument(
        "--ltres",
        type=float,
        default=None,
        help="Straight-line error threshold in pixels (default: 1.0)",
    )

    parser.add_argument(
        "--qtres",
        type=float,
        default=None,
        help="Curve error threshold in pixels (default: 1.0)",
    )

    parser.add_argument(
        "--pathomit",
        type=float,
        default=None,
        help="Drop regions smaller than this many pixels (default: 8)",
    )

    parser.add_argument(
        "--scale",
        type=float,
        default=None,
        help="Output coordinate scale factor (default: 1.0)",
    )

    parser.add_argument(
        "--round",
        type=int,
        default=None,
        help="Decimal places for coordinates (default: 1)",
    )

    parser.add_argument(
        "--simplify",
        type=float,
        default=None,
        help="Douglas-Peucker tolerance in pixels, 0 disables (default: 0)",
    )

    parser.add_argument(
        "--connectivity",
        type=int,
        choices=[4, 8],
        default=None,
        help="Pixel connectivity for regions (default: 4)",
    )

    parser.add_argument(
        "--sampling",
        choices=["per_pixel", "histogram"],
        default=None,
        help="Color seeding mode (default: per_pixel)",
    )

    parser.add_argument(
        "--no-viewbox",
        action="store_true",
        help="Omit the viewBox attribute",
    )

    parser.add_argument(
        "--parallel",
        action="store_true",
        help="Trace color layers in worker processes",
    )

    parser.add_argument(
        "--stages",
        default=None,
        help="Folder to save intermediate stage outputs in",
    )

    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )

    return parser


def build_options(parsed: argparse.Namespace) -> Dict[str, Any]:
    """Translate parsed flags into an options mapping."""
    options: Dict[str, Any] = {}
    if parsed.preset:
        options["preset"] = parsed.preset

    flags = {
        "colors": "number_of_colors",
        "ltres": "line_threshold",
        "qtres": "quad_threshold",
        "pathomit": "path_omit_threshold",
        "scale": "scale",
        "round": "round_coordinates",
        "simplify": "simplify_tolerance",
        "connectivity": "connectivity",
        "sampling": "color_sampling_mode",
    }
    for flag, name in flags.items():
        value = getattr(parsed, flag)
        if value is not None:
            options[name] = value

    if parsed.no_viewbox:
        options["include_viewbox"] = False
    if parsed.parallel:
        options["parallel"] = True
    return options


def get_image_files(folder: Path, extensions: Optional[Set[str]] = None) -> List[Path]:
    """Get all image files from a folder, sorted."""
    if extensions is None:
        extensions = IMAGE_EXTENSIONS

    folder = Path(folder)
    if not folder.exists():
        raise FileNotFoundError(f"Input folder not found: {folder}")

    return sorted(
        p for p in folder.iterdir()
        if p.is_file() and p.suffix.lower() in extensions
    )


def run_batch(pipeline: TracePipeline, folder: Path, output: Optional[str]) -> int:
    """Trace every image in a folder; returns the number of failures."""
    images = get_image_files(folder)
    output_dir = Path(output) if output else folder
    output_dir.mkdir(parents=True, exist_ok=True)

    print(f"Found {len(images)} images in {folder}")
    failures = 0
    for i, image_path in enumerate(images, 1):
        output_path = output_dir / f"{image_path.stem}.svg"
        try:
            pipeline.process(image_path, output_path)
            print(f"  [{i}/{len(images)}] {image_path.name} -> {output_path}")
        except (VectorizationError, OSError) as e:
            failures += 1
            print(f"  [{i}/{len(images)}] {image_path.name} FAILED: {e}", file=sys.stderr)

    print(f"Done: {len(images) - failures} succeeded, {failures} failed")
    return failures


def main(args: Optional[list] = None) -> int:
    """Main entry point for CLI.

    Args:
        args: Command-line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parser = create_parser()
    parsed = parser.parse_args(args)

    logging.basicConfig(
        level=logging.DEBUG if parsed.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    input_path = Path(parsed.input)

    try:
        config = TraceConfig.from_options(build_options(parsed))
        pipeline = TracePipeline(config, stages_dir=parsed.stages)

        start_time = time.time()
        if input_path.is_dir():
            failures = run_batch(pipeline, input_path, parsed.output)
            print(f"Total time: {time.time() - start_time:.2f}s")
            return 1 if failures else 0

        output_path = parsed.output or str(input_path.with_suffix(".svg"))
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)

        print(f"Processing: {input_path}")
        print(f"  Colors: {config.number_of_colors}")
        print(f"  Thresholds: line {config.line_threshold}, curve {config.quad_threshold}")

        pipeline.process(input_path, output_path)

        print(f"  Output saved: {output_path}")
        print(f"  Time: {time.time() - start_time:.2f}s")
        return 0

    except FileNotFoundError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    except VectorizationError as e:
        print(f"Error processing image: {e}", file=sys.stderr)
        return 1
    except OSError as e:
        print(f"Error writing output: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
