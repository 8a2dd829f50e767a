"""Line and Bézier fitting between corners."""
from typing import List, Sequence
import logging

import numpy as np
from scipy.special import comb

from rastertrace.types import (
    Contour,
    Path,
    Segment,
    SegmentKind,
    SimplifiedContour,
    TraceConfig,
    TracingFailureError,
)

logger = logging.getLogger(__name__)

REPARAMETERIZE_ITERATIONS = 2

_KINDS = {1: SegmentKind.LINE, 2: SegmentKind.QUADRATIC, 3: SegmentKind.CUBIC}


def bernstein(i: int, n: int, t: np.ndarray) -> np.ndarray:
    """Bernstein basis polynomial b_{i,n}(t)."""
    return comb(n, i) * (t ** i) * ((1 - t) ** (n - i))


def bezier_points(control: np.ndarray, t: np.ndarray) -> np.ndarray:
    """Evaluate a Bézier curve of any degree at parameters t."""
    n = len(control) - 1
    basis = np.stack([bernstein(i, n, t) for i in range(n + 1)], axis=1)
    return basis @ control


def chord_length_parameters(points: np.ndarray) -> np.ndarray:
    """Parameters in [0, 1] proportional to cumulative chord length."""
    lengths = np.linalg.norm(np.diff(points, axis=0), axis=1)
    cumulative = np.concatenate([[0.0], np.cumsum(lengths)])
    if cumulative[-1] == 0:
        return np.linspace(0.0, 1.0, len(points))
    return cumulative / cumulative[-1]


def fit_bezier(points: np.ndarray, degree: int, t: np.ndarray) -> np.ndarray:
    """
    Least-squares Bézier fit with fixed endpoints.

    Args:
        points: (N, 2) points with N >= degree + 1
        degree: 2 for quadratic, 3 for cubic
        t: (N,) parameter for each point

    Returns:
        (degree + 1, 2) control points
    """
    p0, pn = points[0], points[-1]
    inner = np.stack([bernstein(i, degree, t) for i in range(1, degree)], axis=1)
    rhs = points - np.outer(bernstein(0, degree, t), p0) - np.outer(bernstein(degree, degree, t), pn)
    solution = np.linalg.lstsq(inner, rhs, rcond=None)[0]
    return np.vstack([p0, solution, pn])


def reparameterize(control: np.ndarray, points: np.ndarray, t: np.ndarray) -> np.ndarray:
    """One Newton-Raphson step moving each t toward its nearest curve point."""
    n = len(control) - 1
    first = n * np.diff(control, axis=0)
    second = (n - 1) * np.diff(first, axis=0) if n > 1 else np.zeros((1, 2))

    offset = bezier_points(control, t) - points
    d1 = bezier_points(first, t)
    d2 = bezier_points(second, t)
    numerator = (offset * d1).sum(axis=1)
    denominator = (d1 * d1).sum(axis=1) + (offset * d2).sum(axis=1)

    safe = np.where(np.abs(denominator) > 1e-12, denominator, 1.0)
    step = np.where(np.abs(denominator) > 1e-12, numerator / safe, 0.0)
    updated = np.clip(t - step, 0.0, 1.0)
    updated[0], updated[-1] = 0.0, 1.0
    return updated


def fit_error(control: np.ndarray, points: np.ndarray, t: np.ndarray) -> float:
    """Largest distance between each point and the curve at its parameter."""
    return float(np.max(np.linalg.norm(bezier_points(control, t) - points, axis=1)))


def _segment_deviation(points: np.ndarray) -> np.ndarray:
    """Distance of each point from the chord between the first and last point."""
    start, end = points[0], points[-1]
    chord = end - start
    length_sq = float(np.dot(chord, chord))
    if length_sq == 0.0:
        return np.linalg.norm(points - start, axis=1)
    s = np.clip(((points - start) @ chord) / length_sq, 0.0, 1.0)
    return np.linalg.norm(points - (start + s[:, None] * chord), axis=1)


def _bias_controls(control: np.ndarray, ratio: float) -> np.ndarray:
    """Pull inner control points toward their straight-line positions."""
    if ratio <= 0:
        return control
    degree = len(control) - 1
    p0, pn = control[0], control[-1]
    biased = control.copy()
    for i in range(1, degree):
        on_chord = p0 + (pn - p0) * (i / degree)
        biased[i] = control[i] + ratio * (on_chord - control[i])
    return biased


def _make_segment(control: np.ndarray) -> Segment:
    return Segment(
        _KINDS[len(control) - 1],
        tuple((float(x), float(y)) for x, y in control),
    )


class CurveFitter:
    """Fits segments to the raw points between consecutive corners."""

    def __init__(self, config: TraceConfig):
        self.line_threshold = config.line_threshold
        self.quad_threshold = config.quad_threshold
        self.line_ratio = config.line_control_point_ratio
        self.quad_ratio = config.quad_control_point_ratio

    def fit_contour(self, contour: Contour, simplified: SimplifiedContour) -> Path:
        """
        Convert a simplified contour into a closed Path.

        Args:
            contour: (N, 2) raw contour the simplified vertices index into
            simplified: Reduced vertices with corner flags

        Returns:
            Closed Path starting at the first split vertex
        """
        contour = np.asarray(contour, dtype=np.float64)
        n = len(contour)
        sources = simplified.source_indices
        m = len(sources)
        if m < 3:
            raise TracingFailureError(f"Simplified contour has only {m} vertices")

        splits = set(np.flatnonzero(simplified.corners).tolist())
        if len(splits) < 2:
            splits |= {0, m // 2}
        splits = sorted(splits)

        segments: List[Segment] = []
        for k, a in enumerate(splits):
            b = splits[(k + 1) % len(splits)]
            # Vertex positions strictly between a and b, walking forward
            span_positions = [(a + j) % m for j in range(1, (b - a) % m or m)]
            start = sources[a]
            stop = sources[b] if sources[b] > start else sources[b] + n
            points = contour[np.arange(start, stop + 1) % n]
            interior = [
                (sources[p] - start) % n for p in span_positions
            ]
            segments.extend(self.fit_span(points, interior))

        path = Path(tuple(segments))
        if not path.is_closed():
            raise TracingFailureError("Fitted path is not closed")
        return path

    def fit_span(self, points: np.ndarray, split_offsets: Sequence[int]) -> List[Segment]:
        """
        Fit one span, recursing on failure.

        Tries a line, then a quadratic, then a cubic. If none fits within
        tolerance the span is split at the simplified vertex closest to the
        worst point; a span with no vertex left becomes a line.

        Args:
            points: (N, 2) raw points, first and last are the span endpoints
            split_offsets: Offsets into ``points`` of interior simplified vertices

        Returns:
            Chained segments from points[0] to points[-1]
        """
        endpoints = np.vstack([points[0], points[-1]])
        deviation = _segment_deviation(points)

        if len(points) <= 2 or float(np.max(deviation)) <= self.line_threshold:
            return [_make_segment(endpoints)]

        if self.quad_threshold > 0:
            for degree, ratio in ((2, self.quad_ratio), (3, self.line_ratio)):
                if len(points) < degree + 1:
                    continue
                control = self._fit_degree(points, degree, ratio)
                if control is not None:
                    return [_make_segment(control)]

        if not split_offsets:
            return [_make_segment(endpoints)]

        worst = int(np.argmax(deviation))
        split = min(split_offsets, key=lambda o: (abs(o - worst), o))
        before = [o for o in split_offsets if o < split]
        after = [o - split for o in split_offsets if o > split]
        return (
            self.fit_span(points[:split + 1], before)
            + self.fit_span(points[split:], after)
        )

    def _fit_degree(self, points: np.ndarray, degree: int, ratio: float):
        t = chord_length_parameters(points)
        control = fit_bezier(points, degree, t)
        for _ in range(REPARAMETERIZE_ITERATIONS):
            t = reparameterize(control, points, t)
            control = fit_bezier(points, degree, t)
        control = _bias_controls(control, ratio)
        if fit_error(control, points, t) <= self.quad_threshold:
            return control
        return None


def fit_contour(contour: Contour, simplified: SimplifiedContour, config: TraceConfig) -> Path:
    """Convenience wrapper around CurveFitter.fit_contour."""
    return CurveFitter(config).fit_contour(contour, simplified)
