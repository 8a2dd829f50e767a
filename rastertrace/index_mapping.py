"""Nearest-palette-color assignment."""
import numpy as np

from rastertrace.types import Raster, Palette, IndexMap

# Rows of pixels compared against the palette per chunk
_CHUNK_PIXELS = 1 << 16


def threshold_alpha(pixels: np.ndarray, alpha_threshold: int = 0) -> np.ndarray:
    """
    Collapse near-transparent pixels to (0, 0, 0, 0).

    Args:
        pixels: (..., 4) uint8 RGBA array
        alpha_threshold: Pixels with alpha <= this value become transparent

    Returns:
        Copy of ``pixels`` with transparent pixels normalized
    """
    result = np.array(pixels, dtype=np.uint8, copy=True)
    result[result[..., 3] <= alpha_threshold] = 0
    return result


def nearest_indices(colors: np.ndarray, palette_colors: np.ndarray) -> np.ndarray:
    """
    Index of the nearest palette color for each color.

    Euclidean distance in RGBA; ties resolve to the lowest palette index.
    When the palette holds both visible (alpha > 0) and transparent entries,
    visible colors only match visible entries and transparent colors only
    match transparent ones.

    Args:
        colors: (N, 4) colors
        palette_colors: (K, 4) palette colors

    Returns:
        (N,) int32 array of palette indices
    """
    colors = np.asarray(colors, dtype=np.float64).reshape(-1, 4)
    palette_colors = np.asarray(palette_colors, dtype=np.float64).reshape(-1, 4)
    result = np.empty(len(colors), dtype=np.int32)

    palette_visible = palette_colors[:, 3] > 0
    split = bool(np.any(palette_visible)) and not bool(np.all(palette_visible))

    for start in range(0, len(colors), _CHUNK_PIXELS):
        chunk = colors[start:start + _CHUNK_PIXELS]
        distances = ((chunk[:, None, :] - palette_colors[None, :, :]) ** 2).sum(axis=2)
        if split:
            mismatch = (chunk[:, 3] > 0)[:, None] != palette_visible[None, :]
            distances[mismatch] = np.inf
        # argmin returns the first minimum, i.e. the lowest index on ties
        result[start:start + len(chunk)] = np.argmin(distances, axis=1)

    return result


def map_to_palette(raster: Raster, palette: Palette, alpha_threshold: int = 0) -> IndexMap:
    """
    Assign every pixel its nearest palette entry.

    Args:
        raster: Input raster
        palette: Palette to map onto
        alpha_threshold: Same alpha threshold the palette was built with

    Returns:
        IndexMap of shape (height, width)
    """
    pixels = threshold_alpha(raster.pixels, alpha_threshold).reshape(-1, 4)

    # Map distinct colors once, then scatter back to pixels
    keys = pack_colors(pixels)
    unique_keys, inverse = np.unique(keys, return_inverse=True)
    unique_indices = nearest_indices(unpack_colors(unique_keys), palette.colors)

    indices = unique_indices[inverse.reshape(-1)].reshape(raster.height, raster.width)
    return IndexMap(indices, len(palette))


def pack_colors(pixels: np.ndarray) -> np.ndarray:
    """Pack (N, 4) uint8 RGBA rows into uint32 keys."""
    p = np.asarray(pixels, dtype=np.uint32).reshape(-1, 4)
    return (p[:, 0] << 24) | (p[:, 1] << 16) | (p[:, 2] << 8) | p[:, 3]


def unpack_colors(keys: np.ndarray) -> np.ndarray:
    """Inverse of pack_colors."""
    keys = np.asarray(keys, dtype=np.uint32)
    return np.stack(
        [(keys >> 24) & 0xFF, (keys >> 16) & 0xFF, (keys >> 8) & 0xFF, keys & 0xFF],
        axis=1,
    ).astype(np.uint8)
