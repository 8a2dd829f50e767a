"""Vector document assembly and SVG export."""
from pathlib import Path as FilePath
from typing import Iterable, List, Optional, Union
import logging

import numpy as np

from rastertrace.types import (
    RGBA,
    CompoundPath,
    Path,
    Segment,
    SegmentKind,
    TraceConfig,
    VectorDocument,
    VectorLayer,
)

logger = logging.getLogger(__name__)

SVG_NAMESPACE = "http://www.w3.org/2000/svg"

_COMMANDS = {SegmentKind.LINE: "L", SegmentKind.QUADRATIC: "Q", SegmentKind.CUBIC: "C"}


def format_color(rgba: RGBA) -> str:
    """
    Format the RGB part of a color as a hex string.

    Uses #RGB shorthand when possible.
    """
    r, g, b = (int(min(255, max(0, c))) for c in rgba[:3])

    # Check if we can use shorthand #RGB
    if (r % 17 == 0) and (g % 17 == 0) and (b % 17 == 0):
        return f"#{r//17:x}{g//17:x}{b//17:x}"
    return f"#{r:02x}{g:02x}{b:02x}"


def format_number(x: float, precision: Optional[int] = None) -> str:
    """
    Format a coordinate.

    Args:
        x: Number to format
        precision: Decimal places, or None for the shortest exact form

    Returns:
        Formatted string without trailing zeros
    """
    if precision is None:
        formatted = np.format_float_positional(float(x), trim='-')
    else:
        formatted = f"{x:.{precision}f}"
        # Remove trailing zeros and decimal point if not needed
        if '.' in formatted:
            formatted = formatted.rstrip('0').rstrip('.')
    if formatted in ("-0", "-0."):
        formatted = "0"
    return formatted


def _transform(value: float, scale: float, precision: Optional[int]) -> float:
    value = value * scale
    if precision is not None:
        value = round(value, precision)
    # Normalizes -0.0
    return value + 0.0


def transform_path(path: Path, scale: float, precision: Optional[int]) -> Path:
    """Scale a path's coordinates and round them to ``precision`` decimals."""
    return Path(tuple(
        Segment(
            segment.kind,
            tuple(
                (_transform(x, scale, precision), _transform(y, scale, precision))
                for x, y in segment.points
            ),
        )
        for segment in path.segments
    ))


def build_document(
    layers: Iterable[VectorLayer],
    width: int,
    height: int,
    config: Optional[TraceConfig] = None,
) -> VectorDocument:
    """
    Assemble traced layers into a scaled vector document.

    Coordinates are multiplied by ``config.scale`` and rounded to
    ``config.round_coordinates`` decimals. Layers are ordered by coverage
    (smallest first, or largest first when ``config.descending_order``), ties
    by palette index.
    Fully transparent and empty layers are left out; a document without
    layers is valid.

    Args:
        layers: Unscaled traced layers
        width: Raster width in pixels
        height: Raster height in pixels
        config: Pipeline configuration. Uses defaults if None.

    Returns:
        VectorDocument
    """
    config = config or TraceConfig()
    scale, precision = config.scale, config.round_coordinates

    visible = [layer for layer in layers if layer.color[3] > 0 and layer.paths]
    if config.descending_order:
        visible.sort(key=lambda layer: (-layer.coverage, layer.palette_index))
    else:
        visible.sort(key=lambda layer: (layer.coverage, layer.palette_index))

    document_layers = tuple(
        VectorLayer(
            palette_index=layer.palette_index,
            color=layer.color,
            coverage=layer.coverage,
            paths=tuple(
                CompoundPath(
                    transform_path(shape.outer, scale, precision),
                    tuple(transform_path(hole, scale, precision) for hole in shape.holes),
                )
                for shape in layer.paths
            ),
        )
        for layer in visible
    )

    document = VectorDocument(
        width=width,
        height=height,
        scale=scale,
        layers=document_layers,
        include_viewbox=config.include_viewbox,
        stroke_width=config.stroke_width,
    )
    logger.info(
        f"Document {format_number(document.frame_width)}x{format_number(document.frame_height)}: "
        f"{len(document_layers)} layers, {document.path_count} paths"
    )
    return document


def path_data(path: Path) -> str:
    """SVG path commands for one closed path."""
    if not path.segments:
        return ""
    fmt = format_number
    x0, y0 = path.segments[0].start
    commands = [f"M{fmt(x0)},{fmt(y0)}"]
    for segment in path.segments:
        coords = ' '.join(f"{fmt(x)},{fmt(y)}" for x, y in segment.points[1:])
        commands.append(f"{_COMMANDS[segment.kind]}{coords}")
    commands.append("Z")
    return ' '.join(commands)


def compound_path_element(shape: CompoundPath, color: RGBA, stroke_width: float = 0.0) -> str:
    """
    SVG path element for an outer path and its holes.

    Args:
        shape: Outer path plus holes
        color: RGBA fill color
        stroke_width: Stroke in the fill color, 0 for none

    Returns:
        SVG path element string
    """
    data = ' '.join(path_data(p) for p in (shape.outer,) + shape.holes)
    fill = format_color(color)
    attributes = [f'fill="{fill}"']
    if color[3] < 255:
        attributes.append(f'fill-opacity="{format_number(color[3] / 255.0, 3)}"')
    attributes.append('fill-rule="evenodd"')
    if stroke_width > 0:
        attributes.append(f'stroke="{fill}" stroke-width="{format_number(stroke_width)}"')
    attributes.append(f'd="{data}"')
    return f"<path {' '.join(attributes)}/>"


def to_svg(document: VectorDocument) -> str:
    """
    Render a VectorDocument as an SVG string.

    Args:
        document: Document to render

    Returns:
        Complete SVG string
    """
    width = format_number(document.frame_width)
    height = format_number(document.frame_height)

    header = f'<svg xmlns="{SVG_NAMESPACE}" version="1.1" width="{width}" height="{height}"'
    if document.include_viewbox:
        header += f' viewBox="0 0 {width} {height}"'
    header += '>'

    elements: List[str] = []
    for layer in document.layers:
        for shape in layer.paths:
            elements.append(compound_path_element(shape, layer.color, document.stroke_width))

    if not elements:
        return header + '</svg>'

    # Assemble SVG
    svg_content = '\n  '.join(elements)
    return f"{header}\n  {svg_content}\n</svg>"


def save_svg(svg_string: str, output_path: Union[str, FilePath]) -> None:
    """
    Save SVG string to file.

    Args:
        svg_string: SVG content
        output_path: Output file path
    """
    with open(output_path, 'w', encoding='utf-8') as f:
        f.write(svg_string)
