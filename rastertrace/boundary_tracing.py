"""Boundary following at pixel-corner resolution."""
from typing import Callable, List, Tuple
import logging

import numpy as np
from scipy import ndimage

from rastertrace.types import (
    IndexMap,
    Layer,
    Palette,
    Region,
    TraceConfig,
    InvalidOptionError,
    TracingFailureError,
)

logger = logging.getLogger(__name__)

# Directions in clockwise screen order (y grows downwards): E, S, W, N
_STEPS = ((1, 0), (0, 1), (-1, 0), (0, -1))

# Pixel offsets (dx, dy) from a corner to the pixels ahead-left and ahead-right
_AHEAD = (
    ((0, -1), (0, 0)),    # E
    ((0, 0), (-1, 0)),    # S
    ((-1, 0), (-1, -1)),  # W
    ((-1, -1), (0, -1)),  # N
)


def connectivity_structure(connectivity: int) -> np.ndarray:
    """Structuring element for 4- or 8-connected labelling."""
    if connectivity == 4:
        return ndimage.generate_binary_structure(2, 1)
    if connectivity == 8:
        return ndimage.generate_binary_structure(2, 2)
    raise InvalidOptionError(f"connectivity must be 4 or 8, got {connectivity}")


def trace_outline(mask: np.ndarray, connectivity: int = 4) -> np.ndarray:
    """
    Walk the outer boundary of a single connected component.

    The walk follows pixel edges on the corner lattice, keeping the
    component on its right, so the outline runs clockwise on screen. It
    starts at the top-left corner of the first pixel in scan order and
    records every unit step. Diagonal contacts are joined for
    8-connectivity and split for 4-connectivity.

    Args:
        mask: Boolean (H, W) mask with a one-pixel False border, containing
            exactly one component under ``connectivity``
        connectivity: 4 or 8

    Returns:
        (N, 2) array of (x, y) corner points in mask coordinates, the
        closing point not repeated

    Raises:
        TracingFailureError: If the walk does not close
    """
    if connectivity not in (4, 8):
        raise InvalidOptionError(f"connectivity must be 4 or 8, got {connectivity}")

    flat_index = int(np.argmax(mask))
    if not mask.flat[flat_index]:
        raise TracingFailureError("Cannot trace an empty mask")

    height, width = mask.shape
    start_y, start_x = divmod(flat_index, width)
    rows = mask.tolist()
    join_diagonals = connectivity == 8

    def inside(px: int, py: int) -> bool:
        return 0 <= py < height and 0 <= px < width and rows[py][px]

    points = [(start_x, start_y)]
    x, y, direction = start_x + 1, start_y, 0
    max_steps = 4 * height * width + 4

    while (x, y) != (start_x, start_y):
        if len(points) > max_steps:
            raise TracingFailureError(
                f"Boundary walk from ({start_x}, {start_y}) did not close"
            )
        points.append((x, y))

        (lx, ly), (rx, ry) = _AHEAD[direction]
        left = inside(x + lx, y + ly)
        right = inside(x + rx, y + ry)

        if left and right:
            direction = (direction - 1) % 4
        elif right:
            pass
        elif not left:
            direction = (direction + 1) % 4
        else:
            # Diagonal contact
            direction = (direction - 1) % 4 if join_diagonals else (direction + 1) % 4

        dx, dy = _STEPS[direction]
        x, y = x + dx, y + dy

    return np.array(points, dtype=np.float64)


def signed_area(contour: np.ndarray) -> float:
    """Shoelace area; positive for clockwise-on-screen contours."""
    x, y = contour[:, 0], contour[:, 1]
    return 0.5 * float(np.dot(x, np.roll(y, -1)) - np.dot(np.roll(x, -1), y))


def trace_regions(
    index_map: IndexMap,
    palette_index: int,
    connectivity: int = 4,
    path_omit_threshold: float = 0,
) -> Tuple[Region, ...]:
    """
    Extract the regions of one palette index.

    Components are discovered in raster scan order. Each yields an outer
    contour plus one hole contour per enclosed area of other colors.
    Components and holes smaller than ``path_omit_threshold`` pixels are
    dropped.

    Args:
        index_map: Per-pixel palette indices
        palette_index: Layer to trace
        connectivity: 4 or 8 for the layer's own pixels; holes use the other
        path_omit_threshold: Minimum pixel area to keep

    Returns:
        Tuple of Regions in scan order
    """
    structure = connectivity_structure(connectivity)
    hole_connectivity = 12 - connectivity
    hole_structure = connectivity_structure(hole_connectivity)

    mask = index_map.indices == palette_index
    labels, n_components = ndimage.label(mask, structure=structure)
    if n_components == 0:
        return ()

    areas = np.bincount(labels.ravel())
    regions: List[Region] = []
    omitted = 0

    for label, bounds in enumerate(ndimage.find_objects(labels), start=1):
        area = int(areas[label])
        if area < path_omit_threshold:
            omitted += 1
            continue

        rows, cols = bounds
        component = np.pad(labels[bounds] == label, 1)
        offset = np.array([cols.start - 1, rows.start - 1], dtype=np.float64)

        outer = trace_outline(component, connectivity)
        enclosed = signed_area(outer)

        holes = []
        hole_labels, n_holes = ndimage.label(~component, structure=hole_structure)
        outside = hole_labels[0, 0]
        hole_areas = np.bincount(hole_labels.ravel(), minlength=n_holes + 1)
        for hole_label in range(1, n_holes + 1):
            if hole_label == outside:
                continue
            hole_area = int(hole_areas[hole_label])
            enclosed -= hole_area
            if hole_area < path_omit_threshold:
                continue
            hole = trace_outline(hole_labels == hole_label, hole_connectivity)
            # Counter-clockwise, keeping the start point first
            hole = np.vstack([hole[:1], hole[:0:-1]])
            holes.append(hole + offset)

        if abs(enclosed - area) > 1e-6:
            raise TracingFailureError(
                f"Region {label} of layer {palette_index}: contours enclose "
                f"{enclosed} pixels, expected {area}"
            )

        regions.append(Region(outer + offset, tuple(holes), area))

    logger.debug(
        f"Layer {palette_index}: {len(regions)} regions traced, {omitted} omitted"
    )
    return tuple(regions)


def _trace_layer_task(args) -> Tuple[Region, ...]:
    index_map, palette_index, config = args
    return trace_regions(
        index_map, palette_index, config.connectivity, config.path_omit_threshold
    )


def trace_layers(
    index_map: IndexMap,
    palette: Palette,
    config: TraceConfig,
    map_fn: Callable = map,
) -> Tuple[Layer, ...]:
    """
    Trace every palette index into a layer arena indexed by palette index.

    Transparent entries keep their slot but are not traced.

    Args:
        index_map: Per-pixel palette indices
        palette: Palette the index map refers to
        config: Pipeline configuration
        map_fn: Runs the per-layer tracing; ``executor.map`` traces layers in
            worker processes. Results must come back in submission order.

    Returns:
        One Layer per palette entry
    """
    visible = [i for i, entry in enumerate(palette) if not entry.is_transparent]
    traced = dict(zip(
        visible,
        map_fn(_trace_layer_task, [(index_map, i, config) for i in visible]),
    ))
    return tuple(
        Layer(index=i, color=entry.color, regions=traced.get(i, ()))
        for i, entry in enumerate(palette)
    )
