"""Contour simplification and corner detection."""
from typing import List
import logging

import cv2
import numpy as np

from rastertrace.types import Contour, SimplifiedContour, TraceConfig, TracingFailureError

logger = logging.getLogger(__name__)

# Turning angle per unit of quad_threshold above which a vertex is a corner
CORNER_DEGREES_PER_UNIT = 45.0
MAX_CORNER_DEGREES = 170.0


def turn_vertices(contour: Contour) -> np.ndarray:
    """
    Indices of vertices where a closed contour changes direction.

    Points in the middle of straight runs are dropped. Index 0 is always
    kept as the fixed start vertex.
    """
    prev_edge = contour - np.roll(contour, 1, axis=0)
    next_edge = np.roll(contour, -1, axis=0) - contour
    cross = prev_edge[:, 0] * next_edge[:, 1] - prev_edge[:, 1] * next_edge[:, 0]
    dot = (prev_edge * next_edge).sum(axis=1)

    is_turn = (np.abs(cross) > 1e-12) | (dot < 0)
    is_turn[0] = True
    return np.flatnonzero(is_turn)


def _max_deviation(points: np.ndarray, start: np.ndarray, end: np.ndarray) -> float:
    """Largest distance from points to the segment start-end."""
    if len(points) == 0:
        return 0.0
    chord = end - start
    length_sq = float(np.dot(chord, chord))
    if length_sq == 0.0:
        return float(np.max(np.linalg.norm(points - start, axis=1)))
    t = np.clip(((points - start) @ chord) / length_sq, 0.0, 1.0)
    projections = start + t[:, None] * chord
    return float(np.max(np.linalg.norm(points - projections, axis=1)))


def collapse_collinear(contour: Contour, line_threshold: float) -> np.ndarray:
    """
    Greedy collinear-run collapse of a closed contour.

    Starting at vertex 0, each run is extended over direction-change
    vertices for as long as every skipped vertex stays strictly within
    ``line_threshold`` of the run's chord.

    Args:
        contour: (N, 2) closed point sequence
        line_threshold: Maximum perpendicular deviation

    Returns:
        Increasing indices into ``contour`` of the kept vertices
    """
    turns = turn_vertices(contour)
    m = len(turns)
    if line_threshold <= 0 or m < 3:
        return turns

    # Positions 0..m, where m wraps back to turns[0]
    candidates = np.vstack([contour[turns], contour[turns[:1]]])
    kept: List[int] = [0]
    a = 0
    while True:
        best = a + 1
        b = a + 2
        while b <= m:
            deviation = _max_deviation(candidates[a + 1:b], candidates[a], candidates[b])
            if deviation >= line_threshold:
                break
            best = b
            b += 1
        if best >= m:
            break
        kept.append(best)
        a = best

    return turns[kept]


def douglas_peucker(contour: Contour, indices: np.ndarray, tolerance: float) -> np.ndarray:
    """
    Closed Douglas-Peucker reduction of the selected vertices.

    Args:
        contour: (N, 2) raw contour
        indices: Increasing indices of the vertices to reduce
        tolerance: Maximum distance (epsilon) in pixels

    Returns:
        Increasing subset of ``indices``
    """
    if tolerance <= 0 or len(indices) <= 3:
        return indices

    selected = contour[indices].astype(np.float32)
    approx = cv2.approxPolyDP(selected.reshape(-1, 1, 2), tolerance, closed=True)
    approx = approx.reshape(-1, 2)

    # approxPolyDP returns coordinates; match them back to positions in order
    matched = []
    for point in approx:
        hits = np.flatnonzero(np.all(np.isclose(selected, point, atol=1e-3), axis=1))
        unused = [h for h in hits if h not in matched]
        if unused:
            matched.append(unused[0])
    return indices[np.sort(np.array(matched, dtype=np.int64))]


def extreme_triangle(contour: Contour) -> np.ndarray:
    """
    Three well-separated vertices of a contour.

    Vertex 0, the vertex farthest from it, and the vertex farthest from
    the line through those two.

    Raises:
        TracingFailureError: If the contour has no three non-collinear points
    """
    p0 = contour[0]
    i1 = int(np.argmax(np.linalg.norm(contour - p0, axis=1)))
    chord = contour[i1] - p0
    offsets = contour - p0
    distances = np.abs(offsets[:, 0] * chord[1] - offsets[:, 1] * chord[0])
    i2 = int(np.argmax(distances))
    if distances[i2] <= 1e-12 or i1 == 0:
        raise TracingFailureError("Contour has fewer than 3 non-collinear points")
    return np.array(sorted({0, i1, i2}), dtype=np.int64)


def corner_angle_threshold(quad_threshold: float) -> float:
    """Turning angle in degrees above which a vertex is flagged as a corner."""
    return min(MAX_CORNER_DEGREES, CORNER_DEGREES_PER_UNIT * quad_threshold)


def turning_angles(points: np.ndarray) -> np.ndarray:
    """Turning angle in degrees at every vertex of a closed polygon."""
    incoming = points - np.roll(points, 1, axis=0)
    outgoing = np.roll(points, -1, axis=0) - points
    norms = np.linalg.norm(incoming, axis=1) * np.linalg.norm(outgoing, axis=1)
    safe = np.where(norms > 0, norms, 1.0)
    cosines = np.where(norms > 0, (incoming * outgoing).sum(axis=1) / safe, 1.0)
    return np.degrees(np.arccos(np.clip(cosines, -1.0, 1.0)))


def detect_corners(
    points: np.ndarray, quad_threshold: float, right_angle_enhance: bool = True
) -> np.ndarray:
    """
    Flag polygon vertices that should stay sharp.

    Args:
        points: (M, 2) closed polygon
        quad_threshold: Curve tolerance; 0 makes every vertex a corner
        right_angle_enhance: Always keep axis-aligned right angles

    Returns:
        (M,) bool corner flags
    """
    if quad_threshold <= 0:
        return np.ones(len(points), dtype=bool)

    corners = turning_angles(points) > corner_angle_threshold(quad_threshold)

    if right_angle_enhance:
        incoming = points - np.roll(points, 1, axis=0)
        outgoing = np.roll(points, -1, axis=0) - points
        axis_in = (incoming == 0).any(axis=1)
        axis_out = (outgoing == 0).any(axis=1)
        perpendicular = np.abs((incoming * outgoing).sum(axis=1)) < 1e-12
        corners |= axis_in & axis_out & perpendicular

    return corners


def simplify_contour(contour: Contour, config: TraceConfig) -> SimplifiedContour:
    """
    Reduce a closed contour to its significant vertices.

    Collapses near-collinear runs within ``config.line_threshold``, applies
    Douglas-Peucker when ``config.simplify_tolerance`` is positive, and
    flags corners from ``config.quad_threshold``. The result always has at
    least three distinct vertices.

    Args:
        contour: (N, 2) closed point sequence at corner resolution
        config: Pipeline configuration

    Returns:
        SimplifiedContour referencing the raw contour by index
    """
    contour = np.asarray(contour, dtype=np.float64)
    if len(contour) < 3:
        raise TracingFailureError(f"Contour has only {len(contour)} points")

    indices = collapse_collinear(contour, config.line_threshold)
    indices = douglas_peucker(contour, indices, config.simplify_tolerance)

    if len(np.unique(contour[indices], axis=0)) < 3:
        # Thin shapes can collapse completely; fall back to exact turns
        indices = turn_vertices(contour)
        if len(np.unique(contour[indices], axis=0)) < 3:
            logger.debug(f"Contour of {len(contour)} points collapsed, using extreme triangle")
            indices = extreme_triangle(contour)

    points = contour[indices]
    corners = detect_corners(points, config.quad_threshold, config.right_angle_enhance)
    return SimplifiedContour(points, corners, indices)
