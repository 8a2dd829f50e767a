"""Main pipeline orchestrator for rastertrace."""
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Mapping, Optional, Tuple, Union
import logging
import os
import time

import numpy as np
from PIL import Image

from rastertrace.boundary_tracing import trace_layers
from rastertrace.curve_fitting import CurveFitter
from rastertrace.index_mapping import map_to_palette
from rastertrace.quantization import quantize_colors
from rastertrace.raster_ingest import load_raster, selective_blur
from rastertrace.simplify import simplify_contour
from rastertrace.svg_export import build_document, save_svg, to_svg
from rastertrace.types import (
    CompoundPath,
    DegenerateInputError,
    IndexMap,
    Layer,
    Palette,
    Raster,
    TraceConfig,
    TracingFailureError,
    VectorDocument,
    VectorizationError,
    VectorLayer,
)

logger = logging.getLogger(__name__)

Options = Union[TraceConfig, Mapping[str, Any], None]


@dataclass(frozen=True)
class TraceArtifacts:
    """Intermediate and final products of one pipeline run."""
    raster: Raster
    palette: Palette
    index_map: Optional[IndexMap]
    layers: Tuple[Layer, ...]
    vector_layers: Tuple[VectorLayer, ...]
    document: VectorDocument


@dataclass(frozen=True)
class TraceResult:
    """Outcome of a trace: a document or the error that aborted it."""
    document: Optional[VectorDocument] = None
    error: Optional[VectorizationError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


def resolve_config(options: Options) -> TraceConfig:
    """Accept a TraceConfig, an options mapping or None."""
    if isinstance(options, TraceConfig):
        return options
    return TraceConfig.from_options(options)


def vectorize_layer(layer: Layer, coverage: float, config: TraceConfig) -> VectorLayer:
    """
    Simplify and fit every region of one traced layer.

    Module-level so it can run in a worker process.

    Args:
        layer: Layer with raw regions
        coverage: Coverage ratio of the layer's palette entry
        config: Pipeline configuration

    Returns:
        Unscaled vector layer
    """
    fitter = CurveFitter(config)

    shapes = []
    for region in layer.regions:
        outer = fitter.fit_contour(region.outer, simplify_contour(region.outer, config))
        holes = tuple(
            fitter.fit_contour(hole, simplify_contour(hole, config))
            for hole in region.holes
        )
        shapes.append(CompoundPath(outer, holes))

    return VectorLayer(
        palette_index=layer.index,
        color=layer.color,
        coverage=coverage,
        paths=tuple(shapes),
    )


def _vectorize_layer_task(args) -> VectorLayer:
    return vectorize_layer(*args)


class TracePipeline:
    """Raster to vector tracing pipeline."""

    def __init__(self, config: Optional[TraceConfig] = None, stages_dir: Optional[Path] = None):
        """
        Initialize pipeline with configuration.

        Args:
            config: Pipeline configuration. Uses defaults if None.
            stages_dir: If set, intermediate stages are written there
        """
        self.config = config or TraceConfig()
        self.stages_dir = Path(stages_dir) if stages_dir else None

        if self.stages_dir:
            self.stages_dir.mkdir(parents=True, exist_ok=True)

    def run(self, raster: Raster) -> TraceArtifacts:
        """
        Run every stage on a raster.

        Args:
            raster: Decoded input raster

        Returns:
            TraceArtifacts including the final document

        Raises:
            VectorizationError: If any stage fails; nothing partial is returned
        """
        try:
            return self._run(raster)
        except VectorizationError:
            raise
        except Exception as e:
            raise TracingFailureError(f"Tracing failed: {e}") from e

    def _run(self, raster: Raster) -> TraceArtifacts:
        config = self.config
        start_time = time.perf_counter()

        # Step 1: Preprocess
        if config.blur_radius > 0:
            raster = selective_blur(raster, config.blur_radius, config.blur_delta)

        # Step 2: Color quantization
        try:
            palette = quantize_colors(raster, config)
        except DegenerateInputError as e:
            logger.info(f"{e}; emitting empty document")
            document = build_document((), raster.width, raster.height, config)
            return TraceArtifacts(raster, Palette(()), None, (), (), document)

        # Step 3: Index mapping
        index_map = map_to_palette(raster, palette, config.alpha_threshold)
        self._save_quantized(index_map, palette)

        # Step 4: Per-layer tracing, simplification and curve fitting
        layers, vector_layers = self._vectorize_layers(index_map, palette)

        # Step 5: Document assembly
        document = build_document(vector_layers, raster.width, raster.height, config)

        elapsed = time.perf_counter() - start_time
        logger.info(
            f"Traced {raster.width}x{raster.height} into {document.path_count} paths "
            f"in {elapsed:.2f}s"
        )
        return TraceArtifacts(raster, palette, index_map, layers, vector_layers, document)

    def _vectorize_layers(
        self, index_map: IndexMap, palette: Palette
    ) -> Tuple[Tuple[Layer, ...], Tuple[VectorLayer, ...]]:
        """Trace and fit visible layers, merging results in palette index order."""
        n_visible = sum(1 for entry in palette if not entry.is_transparent)

        workers = self.config.max_workers or min(os.cpu_count() or 1, n_visible)
        if self.config.parallel and workers > 1 and n_visible > 1:
            logger.info(f"Vectorizing {n_visible} layers using {workers} workers...")
            with ProcessPoolExecutor(max_workers=workers) as executor:
                # map() yields results in submission order
                layers = trace_layers(index_map, palette, self.config, executor.map)
                vector_layers = self._fit_layers(layers, palette, executor.map)
        else:
            layers = trace_layers(index_map, palette, self.config)
            vector_layers = self._fit_layers(layers, palette, map)

        return layers, vector_layers

    def _fit_layers(self, layers, palette: Palette, map_fn) -> Tuple[VectorLayer, ...]:
        tasks = [
            (layer, entry.coverage, self.config)
            for layer, entry in zip(layers, palette)
            if not entry.is_transparent
        ]
        return tuple(map_fn(_vectorize_layer_task, tasks))

    def _save_quantized(self, index_map: IndexMap, palette: Palette) -> None:
        if not self.stages_dir:
            return
        colors = np.array([entry.color for entry in palette], dtype=np.uint8)
        path = self.stages_dir / "stage_02_quantized.png"
        Image.fromarray(colors[index_map.indices]).save(path)
        logger.info(f"Saved stage: {path}")

    def trace(self, raster: Raster) -> VectorDocument:
        """Trace a raster into a VectorDocument."""
        return self.run(raster).document

    def process(
        self,
        input_path: Union[str, Path],
        output_path: Optional[Union[str, Path]] = None,
    ) -> str:
        """
        Trace an image file.

        Args:
            input_path: Path to input image
            output_path: Optional path for output SVG

        Returns:
            SVG string

        Raises:
            FileNotFoundError: If input file doesn't exist
            VectorizationError: If processing fails
        """
        raster = load_raster(input_path)
        svg_string = to_svg(self.trace(raster))

        if output_path:
            save_svg(svg_string, output_path)
            logger.info(f"Saved SVG to: {output_path}")

        if self.stages_dir:
            save_svg(svg_string, self.stages_dir / "stage_05_svg.svg")

        return svg_string


def trace(raster: Raster, options: Options = None) -> VectorDocument:
    """
    Trace a raster into a VectorDocument.

    Args:
        raster: Decoded input raster
        options: TraceConfig or options mapping (camelCase, snake_case or
            short names); missing fields take defaults

    Returns:
        VectorDocument

    Raises:
        VectorizationError: On invalid input, invalid options or internal failure
    """
    return TracePipeline(resolve_config(options)).trace(raster)


def trace_result(raster: Raster, options: Options = None) -> TraceResult:
    """Like trace(), but reports failures in the returned TraceResult."""
    try:
        return TraceResult(document=trace(raster, options))
    except VectorizationError as e:
        logger.warning(f"Tracing failed: {e}")
        return TraceResult(error=e)


def trace_to_svg(raster: Raster, options: Options = None) -> str:
    """Trace a raster and render the document as SVG."""
    return to_svg(trace(raster, options))


def process_image(
    image_path: Union[str, Path],
    output_path: Optional[Union[str, Path]] = None,
    options: Options = None,
) -> str:
    """
    Trace an image file to SVG.

    Convenience function for one-off processing.

    Args:
        image_path: Path to input image
        output_path: Optional path to save SVG output
        options: TraceConfig or options mapping

    Returns:
        SVG string

    Example:
        >>> svg = process_image("input.png", "output.svg")
        >>> svg = process_image("input.png", options={"numberOfColors": 8})
    """
    return TracePipeline(resolve_config(options)).process(image_path, output_path)
