"""Color quantization by deterministically seeded K-means refinement."""
from typing import Optional, Tuple
import logging
import warnings

import numpy as np
from sklearn.cluster import KMeans
from sklearn.exceptions import ConvergenceWarning

from rastertrace.index_mapping import (
    nearest_indices,
    pack_colors,
    threshold_alpha,
    unpack_colors,
)
from rastertrace.types import (
    Raster,
    Palette,
    PaletteEntry,
    SamplingMode,
    TraceConfig,
    DegenerateInputError,
    InvalidOptionError,
    TRANSPARENT,
)

logger = logging.getLogger(__name__)

# Bits kept per channel when building the seeding histogram
HISTOGRAM_BITS = 4


def color_histogram(pixels: np.ndarray) -> Tuple[np.ndarray, np.ndarray]:
    """
    Distinct colors and their pixel counts.

    Args:
        pixels: (..., 4) uint8 RGBA array

    Returns:
        Tuple of (colors, counts): (M, 4) uint8 colors sorted by packed
        value and (M,) int64 counts
    """
    keys, counts = np.unique(pack_colors(pixels), return_counts=True)
    return unpack_colors(keys), counts.astype(np.int64)


def quantize_colors(raster: Raster, config: Optional[TraceConfig] = None) -> Palette:
    """
    Build a bounded palette for a raster.

    Reduces the image to at most ``config.number_of_colors`` colors. When the
    raster already has few enough distinct colors they are used as-is;
    otherwise the opaque colors are clustered with K-means seeded from the
    data (histogram peaks or a strided pixel sample), never from random
    state. Fully transparent pixels share one reserved palette slot.
    Entries covering less than ``min_color_ratio`` of the image are merged
    into their nearest surviving neighbour.

    Args:
        raster: Input raster
        config: Pipeline configuration. Uses defaults if None.

    Returns:
        Palette ordered by coverage, largest first

    Raises:
        DegenerateInputError: If no opaque pixel remains after alpha thresholding
    """
    config = config or TraceConfig()
    n_colors = config.number_of_colors

    pixels = threshold_alpha(raster.pixels, config.alpha_threshold).reshape(-1, 4)
    colors, counts = color_histogram(pixels)

    opaque = colors[:, 3] > 0
    if not np.any(opaque):
        raise DegenerateInputError("Raster has no opaque pixels")

    has_transparent = not np.all(opaque)

    if config.palette is not None:
        logger.info(f"Using fixed palette of {len(config.palette)} colors")
        fixed = np.array(config.palette, dtype=np.float64)
        if has_transparent:
            fixed = np.vstack([fixed, np.array([TRANSPARENT], dtype=np.float64)])
        return _finalize_palette(fixed, colors, counts, max_colors=len(fixed), min_ratio=0.0)

    if len(colors) <= n_colors:
        logger.info(f"Raster has {len(colors)} distinct colors, no clustering needed")
        centroids = colors.astype(np.float64)
    else:
        budget = max(1, n_colors - 1 if has_transparent else n_colors)
        op_colors, op_counts = colors[opaque], counts[opaque]

        if len(op_colors) <= budget:
            centroids = op_colors.astype(np.float64)
        else:
            centroids = _cluster_opaque(pixels, op_colors, op_counts, budget, config)

        if has_transparent:
            centroids = np.vstack([centroids, np.array([TRANSPARENT], dtype=np.float64)])

    return _finalize_palette(centroids, colors, counts, n_colors, config.min_color_ratio)


def _cluster_opaque(
    pixels: np.ndarray,
    op_colors: np.ndarray,
    op_counts: np.ndarray,
    budget: int,
    config: TraceConfig,
) -> np.ndarray:
    """Seed and refine ``budget`` centroids for the opaque colors."""
    if config.color_sampling_mode == SamplingMode.HISTOGRAM:
        seeds = histogram_seeds(op_colors, op_counts, budget)
        samples = op_colors.astype(np.float64)
        weights = op_counts.astype(np.float64)
    else:
        opaque_pixels = pixels[pixels[:, 3] > 0]
        samples = strided_sample(opaque_pixels, config.max_samples).astype(np.float64)
        weights = None
        seeds = sample_seeds(samples, op_colors, op_counts, budget)

    logger.info(
        f"Quantizing {len(op_colors)} opaque colors to {budget} "
        f"({config.color_sampling_mode.value}, {config.quantization_cycles} cycles)"
    )
    return refine_centroids(samples, seeds, config.quantization_cycles, weights)


def histogram_seeds(colors: np.ndarray, counts: np.ndarray, n_seeds: int) -> np.ndarray:
    """
    Seed centroids from the most populated cells of a coarse histogram.

    Each channel keeps its top ``HISTOGRAM_BITS`` bits. A seed is the
    count-weighted mean color of one cell; cells are taken by population,
    ties broken by cell key. When there are fewer occupied cells than seeds,
    the most frequent distinct colors fill the remainder.

    Args:
        colors: (M, 4) distinct colors
        counts: (M,) pixel counts
        n_seeds: Number of seeds wanted (<= M)

    Returns:
        (n_seeds, 4) float seeds
    """
    shift = 8 - HISTOGRAM_BITS
    cell_keys = pack_colors(colors >> shift)
    cells, inverse = np.unique(cell_keys, return_inverse=True)
    inverse = inverse.reshape(-1)

    weights = counts.astype(np.float64)
    populations = np.bincount(inverse, weights=weights, minlength=len(cells))
    sums = np.zeros((len(cells), 4), dtype=np.float64)
    np.add.at(sums, inverse, colors.astype(np.float64) * weights[:, None])
    means = sums / populations[:, None]

    # Stable sort on -population keeps cell-key order for ties
    order = np.argsort(-populations, kind='stable')
    seeds = [means[i] for i in order[:n_seeds]]
    return _fill_seeds(seeds, colors, counts, n_seeds)


def sample_seeds(
    samples: np.ndarray, colors: np.ndarray, counts: np.ndarray, n_seeds: int
) -> np.ndarray:
    """
    Seed centroids from distinct sampled colors, evenly spread in scan order.

    Args:
        samples: (S, 4) sampled pixels in scan order
        colors: (M, 4) all distinct opaque colors, used to top up
        counts: (M,) pixel counts of ``colors``
        n_seeds: Number of seeds wanted (<= M)

    Returns:
        (n_seeds, 4) float seeds
    """
    _, first = np.unique(pack_colors(samples.astype(np.uint8)), return_index=True)
    distinct = samples[np.sort(first)]

    if len(distinct) >= n_seeds:
        picks = np.linspace(0, len(distinct) - 1, n_seeds).astype(int)
        return distinct[picks].astype(np.float64)

    return _fill_seeds(list(distinct.astype(np.float64)), colors, counts, n_seeds)


def _fill_seeds(seeds, colors, counts, n_seeds) -> np.ndarray:
    seen = {tuple(np.round(s).astype(int)) for s in seeds}
    for i in np.argsort(-counts, kind='stable'):
        if len(seeds) >= n_seeds:
            break
        key = tuple(int(c) for c in colors[i])
        if key not in seen:
            seen.add(key)
            seeds.append(colors[i].astype(np.float64))
    return np.array(seeds[:n_seeds], dtype=np.float64).reshape(-1, 4)


def strided_sample(pixels: np.ndarray, max_samples: int) -> np.ndarray:
    """Take every k-th pixel so that at most ``max_samples`` remain."""
    if len(pixels) <= max_samples:
        return pixels
    step = int(np.ceil(len(pixels) / max_samples))
    return pixels[::step]


def refine_centroids(
    samples: np.ndarray,
    seeds: np.ndarray,
    cycles: int,
    weights: Optional[np.ndarray] = None,
) -> np.ndarray:
    """
    Refine seeds with at most ``cycles`` rounds of Lloyd iteration.

    Args:
        samples: (S, 4) float samples
        seeds: (K, 4) float initial centroids
        cycles: Maximum K-means iterations; 0 returns the seeds
        weights: Optional (S,) sample weights

    Returns:
        (K', 4) centroids rounded to 0-255, duplicates removed
    """
    if cycles < 0:
        raise InvalidOptionError(f"quantization cycles must be >= 0, got {cycles}")

    centroids = seeds
    if cycles > 0 and len(samples) >= len(seeds):
        kmeans = KMeans(
            n_clusters=len(seeds),
            init=seeds,
            n_init=1,
            max_iter=cycles,
            random_state=0,
        )
        with warnings.catch_warnings():
            # Few distinct samples or few cycles are expected here
            warnings.simplefilter("ignore", ConvergenceWarning)
            kmeans.fit(samples, sample_weight=weights)
        centroids = kmeans.cluster_centers_

    return _dedupe(np.clip(np.round(centroids), 0, 255))


def _dedupe(centroids: np.ndarray) -> np.ndarray:
    _, first = np.unique(pack_colors(centroids.astype(np.uint8)), return_index=True)
    return centroids[np.sort(first)]


def _finalize_palette(
    centroids: np.ndarray,
    colors: np.ndarray,
    counts: np.ndarray,
    max_colors: int,
    min_ratio: float,
) -> Palette:
    """
    Measure coverage and merge small or surplus entries.

    Each round reassigns every distinct color to its nearest surviving
    centroid, drops entries that received nothing, then removes the smallest
    entry if it is below ``min_ratio`` or the palette is over ``max_colors``.
    Its pixels fall to their nearest surviving neighbour on the next round.

    Visible entries merge only into visible entries. The transparent entry
    is never merged for low coverage, and it gives way to the size bound
    only once a single visible entry is left.
    """
    centroids = _dedupe(np.clip(np.round(centroids), 0, 255))
    total = float(counts.sum())

    while True:
        assignment = nearest_indices(colors, centroids)
        coverage = np.bincount(assignment, weights=counts, minlength=len(centroids)) / total

        used = coverage > 0
        if not np.all(used):
            centroids, coverage = centroids[used], coverage[used]

        if len(centroids) <= 1:
            break
        over_bound = len(centroids) > max_colors

        visible = np.flatnonzero(centroids[:, 3] > 0)
        if len(visible) > 1:
            candidates = visible
        elif over_bound:
            candidates = np.flatnonzero(centroids[:, 3] == 0)
        else:
            break

        smallest = int(candidates[np.argmin(coverage[candidates])])
        if not over_bound and coverage[smallest] >= min_ratio:
            break

        logger.debug(
            f"Merging palette color {tuple(int(c) for c in centroids[smallest])} "
            f"(coverage {coverage[smallest]:.4f})"
        )
        centroids = np.delete(centroids, smallest, axis=0)

    entries = [
        PaletteEntry(tuple(int(c) for c in color), float(cov))
        for color, cov in zip(centroids, coverage)
    ]
    entries.sort(key=lambda e: (-e.coverage, e.color))

    logger.info(f"Palette: {len(entries)} colors")
    return Palette(tuple(entries))
